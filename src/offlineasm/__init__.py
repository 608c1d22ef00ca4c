"""
offlineasm - Offline Cross-Architecture Macro-Assembler Compiler
================================================================

This package compiles the interpreter's portable macro-assembly language
into inline assembly for one target architecture, or into a C++
representation for the generic interpreter loop.

The parser is an external tool; this package starts from its AST
(delivered as a JSON interchange document) and runs three passes:

- **folding**: resolves every `if SETTING ... else ... end` against a
  fixed configuration and prunes the dead branches
- **macros**: expands macro invocations, binding operands, renaming local
  labels per expansion and interpolating `%param%` label names
- **backends**: lowers the flat tree to text for the selected backend

Main Components
---------------
- **ast**: node model, tree walking and dumping
- **symbols**: run-scoped interning of registers, variables and labels
- **settings**: immutable Configuration (flags, register names, layout)
- **widths**: narrow / wide16 / wide32 opcode specialization
- **loader**: JSON interchange document to AST
- **compiler**: Compilation run object driving the passes

Quick Start
-----------
    >>> from offlineasm import Compilation, Configuration
    >>> compilation = Compilation(Configuration.for_backend("X86_64"))
    >>> emission = compilation.run(document)
    >>> print(emission.text)

Or use the command-line tool:
    $ oasm -b X86_64 unit.json -o unit.h
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from offlineasm.errors import (
    OfflineAsmError,
    SourceLocation,
    ConfigurationError,
    UndefinedSettingError,
    CompilationError,
    MalformedNodeError,
    NameResolutionError,
    UndefinedMacroError,
    MacroArityError,
    UnboundVariableError,
    MacroError,
    LabelDeclarationError,
    EmissionError,
    UnhandledOpcodeError,
    StageError,
)
from offlineasm.settings import Configuration
from offlineasm.symbols import SymbolTable
from offlineasm.folding import fold_configuration
from offlineasm.macros import expand_macros
from offlineasm.widths import Width, specialize
from offlineasm.loader import load_file, load_tree
from offlineasm.compiler import Compilation, Emission, Stage, compile_tree

__all__ = [
    # Version
    "__version__",
    # Errors
    "OfflineAsmError",
    "SourceLocation",
    "ConfigurationError",
    "UndefinedSettingError",
    "CompilationError",
    "MalformedNodeError",
    "NameResolutionError",
    "UndefinedMacroError",
    "MacroArityError",
    "UnboundVariableError",
    "MacroError",
    "LabelDeclarationError",
    "EmissionError",
    "UnhandledOpcodeError",
    "StageError",
    # Passes
    "Configuration",
    "SymbolTable",
    "fold_configuration",
    "expand_macros",
    "Width",
    "specialize",
    "load_file",
    "load_tree",
    "Compilation",
    "Emission",
    "Stage",
    "compile_tree",
]
