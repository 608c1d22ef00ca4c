"""
offlineasm Error Hierarchy
==========================

This module defines the exception hierarchy for the whole compiler.
All exceptions inherit from OfflineAsmError, allowing callers to catch
every compiler-related error with a single except clause if desired.

Exception Hierarchy
-------------------
OfflineAsmError (base)
├── ConfigurationError - invalid flag set (e.g. two architectures)
│   └── UndefinedSettingError - conditional names an unknown flag
└── CompilationError (location-tagged)
    ├── MalformedNodeError - node failed construction-time validation
    ├── NameResolutionError
    │   ├── UndefinedMacroError - invocation of an unknown macro
    │   ├── MacroArityError - operand count differs from parameter count
    │   └── UnboundVariableError - variable survived to emission
    ├── MacroError - expansion failure not tied to a name
    ├── LabelDeclarationError - label declared global/aligned twice
    ├── EmissionError - backend cannot render a construct
    │   └── UnhandledOpcodeError - opcode has no lowering rule
    └── StageError - pipeline stage invoked out of order

Design Philosophy
-----------------
Every error is fatal to the compilation run that raised it. There is no
collection of multiple errors and no partial output: the generated code
runs at trap level in the consuming interpreter, so it is all or nothing.

Error messages follow this format:
    filename:line:column: error: description
        offending construct (dumped)
    hint: suggestion for fixing (when available)
"""

from dataclasses import dataclass
from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class OfflineAsmError(Exception):
    """
    Base exception for all offlineasm errors.

        try:
            compilation.run(tree)
        except OfflineAsmError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Source Location Tracking
# =============================================================================

@dataclass(frozen=True)
class SourceLocation:
    """
    Provenance of an AST node, used for diagnostics only.

    Attributes:
        filename: Name of the macro-assembly source file
        line: Line number (1-indexed, 0 when unknown)
        column: Column number (1-indexed, 0 when unknown)
    """
    filename: str
    line: int = 0
    column: int = 0

    @classmethod
    def none(cls) -> "SourceLocation":
        """Location used by synthesised nodes (singletons, generated code)."""
        return _NO_LOCATION

    @property
    def is_none(self) -> bool:
        return self == _NO_LOCATION

    def __str__(self) -> str:
        """Format as 'filename:line:column' for error messages."""
        if self.column:
            return f"{self.filename}:{self.line}:{self.column}"
        return f"{self.filename}:{self.line}"


_NO_LOCATION = SourceLocation("<none>", 0, 0)


# =============================================================================
# Configuration Exceptions
# =============================================================================

class ConfigurationError(OfflineAsmError):
    """
    The configuration handed to the compiler is not usable.

    Raised when:
    - No architecture flag, or more than one, is set
    - A backend name is not recognised
    - A -D define cannot be parsed
    """
    pass


class UndefinedSettingError(ConfigurationError):
    """
    A conditional references a setting the configuration does not define.

    Unknown settings are never silently treated as false: a typo in an
    architecture name would otherwise prune live code.
    """

    def __init__(self, name: str, location: Optional[SourceLocation] = None):
        self.name = name
        self.location = location
        where = f"{location}: " if location else ""
        super().__init__(f"{where}error: undefined setting '{name}'")


# =============================================================================
# Compilation Exceptions
# =============================================================================

class CompilationError(OfflineAsmError):
    """
    Base exception for errors raised while processing the AST.

    Attributes:
        message: The error description
        location: Source location of the offending construct (optional)
        hint: A suggestion for fixing the error (optional)
        construct: Dumped text of the offending construct (optional)
    """

    def __init__(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        hint: Optional[str] = None,
        construct: Optional[str] = None,
    ):
        self.message = message
        self.location = location
        self.hint = hint
        self.construct = construct
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """
        Format the error message with location, construct, and hint.

        Example output:
            LowLevelInterpreter.asm:112:5: error: unhandled opcode 'addz'
                addz t0, t1
            hint: no lowering rule in the ARM64 backend
        """
        parts = []

        if self.location and not self.location.is_none:
            parts.append(f"{self.location}: error: {self.message}")
        else:
            parts.append(f"error: {self.message}")

        if self.construct:
            parts.append(f"    {self.construct.strip()}")

        if self.hint:
            parts.append(f"hint: {self.hint}")

        return "\n".join(parts)


class MalformedNodeError(CompilationError):
    """
    A node failed construction-time validation.

    Examples:
        - Address whose base is not a register or variable
        - BaseIndex with a scale outside {1, 2, 4, 8}
        - MacroCall with an empty operand list
    """
    pass


class NameResolutionError(CompilationError):
    """Base class for names that cannot be resolved during expansion."""
    pass


class UndefinedMacroError(NameResolutionError):
    """Invocation of a macro that is neither defined nor bound."""

    def __init__(
        self,
        name: str,
        location: Optional[SourceLocation] = None,
        construct: Optional[str] = None,
        known_macros: Optional[list[str]] = None,
    ):
        self.name = name
        self.known_macros = known_macros or []

        hint = None
        similar = [m for m in self.known_macros if m.lower() == name.lower()]
        if similar:
            hint = f"did you mean '{similar[0]}'?"

        super().__init__(
            f"undefined macro '{name}'",
            location=location,
            hint=hint,
            construct=construct,
        )


class MacroArityError(NameResolutionError):
    """The number of operands at a call site differs from the parameters."""

    def __init__(
        self,
        name: str,
        expected: int,
        actual: int,
        location: Optional[SourceLocation] = None,
        construct: Optional[str] = None,
    ):
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"macro '{name}' takes {expected} operand(s) but was given {actual}",
            location=location,
            construct=construct,
        )


class UnboundVariableError(NameResolutionError):
    """A variable reached emission without being bound to a value."""

    def __init__(
        self,
        name: str,
        location: Optional[SourceLocation] = None,
        construct: Optional[str] = None,
    ):
        self.name = name
        super().__init__(
            f"unbound variable '{name}'",
            location=location,
            hint="declare it with 'const' or pass it as a macro operand",
            construct=construct,
        )


class MacroError(CompilationError):
    """
    Error in macro expansion.

    Raised when:
    - Expansion recurses deeper than the configured limit
    - A macro definition appears somewhere it cannot be collected
    """
    pass


class LabelDeclarationError(CompilationError):
    """
    Conflicting attribute declaration on an interned label.

    Label attributes are monotonic: a label can be made global once and
    given an explicit alignment once.
    """
    pass


class EmissionError(CompilationError):
    """A backend cannot render a construct in its target syntax."""
    pass


class UnhandledOpcodeError(EmissionError):
    """An instruction reached emission with no lowering rule."""

    def __init__(
        self,
        opcode: str,
        backend: str,
        location: Optional[SourceLocation] = None,
        construct: Optional[str] = None,
    ):
        self.opcode = opcode
        self.backend = backend
        super().__init__(
            f"unhandled opcode '{opcode}'",
            location=location,
            hint=f"no lowering rule in the {backend} backend",
            construct=construct,
        )


class StageError(CompilationError):
    """A pipeline stage was invoked out of order or after an abort."""
    pass
