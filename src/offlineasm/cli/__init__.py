"""
offlineasm Command-Line Interface
=================================

- **oasm**: compiles a parsed macro-assembly unit (JSON interchange) for
  one backend

The tool is a Click-based CLI application sharing the exit codes and
error reporting in errors.py.
"""

__all__ = ["oasm"]
