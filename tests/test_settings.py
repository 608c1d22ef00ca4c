# =============================================================================
# test_settings.py - Configuration Tests
# =============================================================================
# Tests for Configuration construction, -D define parsing, environment
# configuration and the register naming tables.
# =============================================================================

import pytest

from offlineasm.errors import ConfigurationError, UndefinedSettingError
from offlineasm.registers import REGISTER_TABLES, register_table
from offlineasm.settings import (
    ARCHITECTURES,
    Configuration,
    canonical_architecture,
    parse_define,
)


# =============================================================================
# Define Parsing
# =============================================================================

class TestParseDefine:
    """Test -D style define parsing."""

    def test_bare_name_is_true(self):
        assert parse_define("ASSERT_ENABLED") == ("ASSERT_ENABLED", True)

    @pytest.mark.parametrize("value", ["0", "false", "no", "off", "OFF", "$0", "0x0"])
    def test_false_values(self, value):
        assert parse_define(f"JIT={value}") == ("JIT", False)

    @pytest.mark.parametrize("value", ["1", "true", "yes", "on", "$1F", "0x10", "42"])
    def test_true_values(self, value):
        assert parse_define(f"JIT={value}") == ("JIT", True)

    def test_whitespace_is_stripped(self):
        assert parse_define(" JIT = 1 ") == ("JIT", True)

    def test_invalid_value(self):
        with pytest.raises(ConfigurationError, match="invalid value"):
            parse_define("JIT=maybe")

    def test_empty_name(self):
        with pytest.raises(ConfigurationError):
            parse_define("=1")


# =============================================================================
# Construction
# =============================================================================

class TestConfiguration:
    """Test Configuration construction and queries."""

    def test_for_backend_sets_one_architecture(self):
        config = Configuration.for_backend("X86_64")
        assert config.backend == "X86_64"
        assert [arch for arch in ARCHITECTURES if config.flags[arch]] == ["X86_64"]

    def test_assert_enabled_defaults_false(self):
        assert Configuration.for_backend("ARM64").is_set("ASSERT_ENABLED") is False

    def test_features(self):
        config = Configuration.for_backend("ARM64", ASSERT_ENABLED=True, JIT=False)
        assert config.is_set("ASSERT_ENABLED")
        assert not config.is_set("JIT")

    def test_no_architecture_fails(self):
        with pytest.raises(ConfigurationError, match="exactly one architecture"):
            Configuration({"JIT": True})

    def test_two_architectures_fail(self):
        with pytest.raises(ConfigurationError, match="ARM64, X86_64"):
            Configuration({"ARM64": True, "X86_64": True})

    def test_unknown_setting_is_fatal(self):
        """An undefined setting is never silently false."""
        config = Configuration.for_backend("ARM64")
        with pytest.raises(UndefinedSettingError, match="ARM46"):
            config.is_set("ARM46")

    def test_flags_are_read_only(self):
        config = Configuration.for_backend("ARM64")
        with pytest.raises(TypeError):
            config.flags["JIT"] = True

    def test_with_flags_returns_new_configuration(self):
        base = Configuration.for_backend("ARM64")
        derived = base.with_flags(JIT=True)
        assert derived.is_set("JIT")
        assert not base.is_defined("JIT")

    def test_with_flags_cannot_add_second_architecture(self):
        with pytest.raises(ConfigurationError):
            Configuration.for_backend("ARM64").with_flags(X86_64=True)

    def test_with_layout_merges(self):
        config = Configuration.for_backend("ARM64", layout={"a::b": 1})
        merged = config.with_layout({"sizeof C": 8})
        assert merged.layout_value("a::b") == 1
        assert merged.layout_value("sizeof C") == 8
        assert config.layout_value("sizeof C") is None

    def test_from_defines(self):
        config = Configuration.from_defines("riscv64", ["ASSERT_ENABLED", "JIT=0"])
        assert config.backend == "RISCV64"
        assert config.is_set("ASSERT_ENABLED")
        assert not config.is_set("JIT")

    def test_str_lists_enabled_features(self):
        config = Configuration.for_backend("ARM64", ASSERT_ENABLED=True, JIT=False)
        assert str(config) == "ARM64 [ASSERT_ENABLED]"


class TestFromEnv:
    """Test configuration from environment variables."""

    def test_defaults(self):
        config = Configuration.from_env({})
        assert config.backend == "ARM64"

    def test_backend_and_defines(self):
        config = Configuration.from_env({
            "OFFLINEASM_BACKEND": "x86_64",
            "OFFLINEASM_DEFINES": "ASSERT_ENABLED, JIT=0,",
        })
        assert config.backend == "X86_64"
        assert config.is_set("ASSERT_ENABLED")
        assert not config.is_set("JIT")


# =============================================================================
# Architectures and Registers
# =============================================================================

class TestArchitectures:
    """Test backend names and register tables."""

    @pytest.mark.parametrize("name, expected", [
        ("arm64", "ARM64"),
        ("ARM64E", "ARM64E"),
        ("x86-64", "X86_64"),
        ("armv7", "ARMv7"),
        ("cloop", "C_LOOP"),
        ("cpp", "C_LOOP"),
    ])
    def test_canonical_names(self, name, expected):
        assert canonical_architecture(name) == expected

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError, match="unknown backend"):
            canonical_architecture("mips")

    def test_every_architecture_has_a_table(self):
        assert set(REGISTER_TABLES) == set(ARCHITECTURES)

    def test_register_names(self):
        assert Configuration.for_backend("ARM64").register_name("t0") == "x0"
        assert Configuration.for_backend("X86_64").register_name("sp") == "%rsp"
        assert Configuration.for_backend("RISCV64").register_name("cfr") == "x8"
        assert Configuration.for_backend("ARMv7").register_name("t3") == "r3"

    def test_missing_register_is_none_for_asm(self):
        assert Configuration.for_backend("ARMv7").register_name("csr9") is None

    def test_cloop_keeps_logical_names(self):
        assert Configuration.for_backend("C_LOOP").register_name("t0") == "t0"

    def test_scratch_registers_are_reserved(self):
        """No logical register maps onto a backend's scratch register."""
        assert "%r11" not in register_table("X86_64").values()
        assert "x17" not in register_table("ARM64").values()
        assert "x31" not in register_table("RISCV64").values()
        assert "x30" not in register_table("RISCV64").values()
        assert "r4" not in register_table("ARMv7").values()

    def test_register_table_is_a_copy(self):
        register_table("ARM64")["t0"] = "x99"
        assert REGISTER_TABLES["ARM64"]["t0"] == "x0"
