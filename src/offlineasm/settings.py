"""
offlineasm Configuration
========================

The fixed set of named boolean flags a compilation is folded against,
together with the data tables the emission pass needs.

A Configuration can come from:
- Configuration.for_backend("ARM64", ASSERT_ENABLED=True)
- Configuration.from_defines("X86_64", ["ASSERT_ENABLED", "JIT=0"])
- Environment variables (Configuration.from_env)

Architecture Flags
------------------
Exactly one of ARM64, ARM64E, X86_64, RISCV64, ARMv7 and C_LOOP is true.
C_LOOP selects the generic interpreter loop, which is emitted through
the C++ backend rather than as inline assembly.

Feature Flags
-------------
ASSERT_ENABLED controls the debug trailer of width-specialized opcodes
and defaults to false. Any other flag must be defined explicitly before
a conditional may test it.
"""

import os
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from offlineasm.errors import ConfigurationError, SourceLocation, UndefinedSettingError
from offlineasm.registers import REGISTER_TABLES


ARCHITECTURES = ("ARM64", "ARM64E", "X86_64", "RISCV64", "ARMv7", "C_LOOP")

DEFAULT_FEATURES: dict[str, bool] = {
    "ASSERT_ENABLED": False,
}

_FALSE_WORDS = ("0", "false", "no", "off")
_TRUE_WORDS = ("1", "true", "yes", "on")


def canonical_architecture(name: str) -> str:
    """
    Map a backend name as typed on a command line to its flag name.

    >>> canonical_architecture("x86_64")
    'X86_64'
    >>> canonical_architecture("cloop")
    'C_LOOP'
    """
    wanted = name.strip().upper().replace("-", "_")
    if wanted in ("CLOOP", "CPP"):
        wanted = "C_LOOP"
    for arch in ARCHITECTURES:
        if arch.upper() == wanted:
            return arch
    raise ConfigurationError(
        f"unknown backend '{name}' (expected one of {', '.join(ARCHITECTURES)})"
    )


def parse_define(define: str) -> tuple[str, bool]:
    """
    Parse one -D style define into a (name, value) pair.

    Accepted forms:
        NAME            -> True
        NAME=0 / false / no / off
        NAME=1 / true / yes / on
        NAME=$1F / 0x1F / 31   (numeric, true when non-zero)
    """
    if "=" not in define:
        name = define.strip()
        if not name:
            raise ConfigurationError("empty define")
        return name, True

    name, value_str = define.split("=", 1)
    name = name.strip()
    value_str = value_str.strip()
    if not name:
        raise ConfigurationError(f"invalid define '{define}'")

    lowered = value_str.lower()
    if lowered in _FALSE_WORDS:
        return name, False
    if lowered in _TRUE_WORDS:
        return name, True

    try:
        if value_str.startswith("$"):
            value = int(value_str[1:], 16)
        elif lowered.startswith("0x"):
            value = int(value_str[2:], 16)
        else:
            value = int(value_str)
    except ValueError:
        raise ConfigurationError(f"invalid value in define '{define}'") from None
    return name, value != 0


@dataclass(frozen=True)
class Configuration:
    """
    Immutable compile-time configuration.

    Attributes:
        flags: Setting name -> value. Architecture flags missing from the
               mapping are false; ASSERT_ENABLED defaults to false.
        register_names: Logical register name -> physical spelling
        layout: Host layout constants, keyed "Struct::field",
                "sizeof Struct", or the constexpr source text
    """
    flags: Mapping[str, bool]
    register_names: Mapping[str, str] = field(default_factory=dict)
    layout: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self):
        flags = {arch: False for arch in ARCHITECTURES}
        flags.update(DEFAULT_FEATURES)
        flags.update({name: bool(value) for name, value in self.flags.items()})

        selected = [arch for arch in ARCHITECTURES if flags[arch]]
        if len(selected) != 1:
            described = ", ".join(selected) if selected else "none"
            raise ConfigurationError(
                f"exactly one architecture flag must be set (got {described})"
            )

        object.__setattr__(self, "flags", MappingProxyType(flags))
        object.__setattr__(self, "register_names", MappingProxyType(dict(self.register_names)))
        object.__setattr__(self, "layout", MappingProxyType(dict(self.layout)))

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def for_backend(
        cls,
        name: str,
        layout: Optional[Mapping[str, int]] = None,
        **features: bool,
    ) -> "Configuration":
        """Configuration for one architecture, with its register table."""
        arch = canonical_architecture(name)
        flags = {a: a == arch for a in ARCHITECTURES}
        flags.update(features)
        return cls(flags, REGISTER_TABLES[arch], layout or {})

    @classmethod
    def from_defines(
        cls,
        backend: str,
        defines: Iterable[str] = (),
        layout: Optional[Mapping[str, int]] = None,
    ) -> "Configuration":
        features = dict(parse_define(define) for define in defines)
        return cls.for_backend(backend, layout=layout, **features)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Configuration":
        """
        Create a Configuration from environment variables.

        Environment variables (all optional):
            OFFLINEASM_BACKEND: Architecture name (default: ARM64)
            OFFLINEASM_DEFINES: Comma separated defines, e.g. "ASSERT_ENABLED,JIT=0"
        """
        environ = os.environ if environ is None else environ
        backend = environ.get("OFFLINEASM_BACKEND") or "ARM64"
        defines = []
        if raw := environ.get("OFFLINEASM_DEFINES"):
            defines = [d for d in raw.split(",") if d.strip()]
        return cls.from_defines(backend, defines)

    def with_flags(self, **flags: bool) -> "Configuration":
        merged = dict(self.flags)
        merged.update(flags)
        return replace(self, flags=merged)

    def with_layout(self, layout: Mapping[str, int]) -> "Configuration":
        merged = dict(self.layout)
        merged.update(layout)
        return replace(self, layout=merged)

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def backend(self) -> str:
        """Name of the selected architecture flag."""
        for arch in ARCHITECTURES:
            if self.flags[arch]:
                return arch
        raise ConfigurationError("no architecture selected")

    @property
    def emits_cpp(self) -> bool:
        return self.backend == "C_LOOP"

    def is_defined(self, name: str) -> bool:
        return name in self.flags

    def is_set(self, name: str, origin: Optional[SourceLocation] = None) -> bool:
        if not self.is_defined(name):
            raise UndefinedSettingError(name, origin)
        return self.flags[name]

    def register_name(self, name: str) -> Optional[str]:
        """
        Physical spelling of a logical register, or None when unknown.

        The C++ backend keeps logical names, so under C_LOOP an unknown
        register maps to itself.
        """
        if name in self.register_names:
            return self.register_names[name]
        if self.emits_cpp:
            return name
        return None

    def layout_value(self, key: str) -> Optional[int]:
        return self.layout.get(key)

    def __str__(self) -> str:
        enabled = sorted(
            name for name, value in self.flags.items()
            if value and name not in ARCHITECTURES
        )
        features = f" [{', '.join(enabled)}]" if enabled else ""
        return f"{self.backend}{features}"
