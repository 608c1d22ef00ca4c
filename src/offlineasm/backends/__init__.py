"""
offlineasm Emission Backends
============================

One backend per architecture flag:

    ARM64, ARM64E, X86_64, RISCV64, ARMv7   inline assembly (asm.py)
    C_LOOP                                  C++ representation (cpp.py)

Usage:
    >>> from offlineasm.backends import backend_for
    >>> backend = backend_for(configuration, table)
    >>> lines = backend.emit(tree)
"""

from offlineasm.backends.asm import (
    ARM64Backend,
    ARM64EBackend,
    ARMv7Backend,
    AsmBackend,
    RISCV64Backend,
    X86_64Backend,
)
from offlineasm.backends.base import Backend
from offlineasm.backends.cpp import CppBackend
from offlineasm.settings import Configuration
from offlineasm.symbols import SymbolTable

BACKENDS: dict[str, type[Backend]] = {
    "ARM64": ARM64Backend,
    "ARM64E": ARM64EBackend,
    "X86_64": X86_64Backend,
    "RISCV64": RISCV64Backend,
    "ARMv7": ARMv7Backend,
    "C_LOOP": CppBackend,
}


def backend_for(configuration: Configuration, table: SymbolTable) -> Backend:
    """Instantiate the backend selected by the configuration's architecture flag."""
    return BACKENDS[configuration.backend](configuration, table)


__all__ = [
    "ARM64Backend",
    "ARM64EBackend",
    "ARMv7Backend",
    "AsmBackend",
    "BACKENDS",
    "Backend",
    "CppBackend",
    "RISCV64Backend",
    "X86_64Backend",
    "backend_for",
]
