"""
offlineasm - Test Configuration
===============================

Shared fixtures for the offlineasm test suite.

It provides:
- a fresh SymbolTable per test (tables are run-scoped)
- an origin factory for building nodes by hand
- configurations for the architectures most tests target
"""

import pytest

from offlineasm.errors import SourceLocation
from offlineasm.settings import Configuration
from offlineasm.symbols import SymbolTable


# =============================================================================
# Symbol Tables and Locations
# =============================================================================

@pytest.fixture
def table() -> SymbolTable:
    """Fresh symbol table for one compilation run."""
    return SymbolTable()


@pytest.fixture
def loc():
    """
    Origin factory.

    loc() gives test.asm:1:1; loc(12) gives test.asm:12:1.
    """
    def make(line: int = 1, column: int = 1, filename: str = "test.asm") -> SourceLocation:
        return SourceLocation(filename, line, column)
    return make


# =============================================================================
# Configurations
# =============================================================================

LAYOUT = {
    "JSCell::m_structureID": 0,
    "CallFrame::callee": 16,
    "sizeof Register": 8,
    "sizeof(void*)": 8,
}


@pytest.fixture
def layout() -> dict:
    return dict(LAYOUT)


@pytest.fixture
def arm64() -> Configuration:
    return Configuration.for_backend("ARM64", layout=LAYOUT)


@pytest.fixture
def x86_64() -> Configuration:
    return Configuration.for_backend("X86_64", layout=LAYOUT)


@pytest.fixture
def riscv64() -> Configuration:
    return Configuration.for_backend("RISCV64", layout=LAYOUT)


@pytest.fixture
def armv7() -> Configuration:
    return Configuration.for_backend("ARMv7", layout=LAYOUT)


@pytest.fixture
def cloop() -> Configuration:
    return Configuration.for_backend("C_LOOP")
