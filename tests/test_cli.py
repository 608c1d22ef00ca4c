# =============================================================================
# test_cli.py - oasm Command-Line Tests
# =============================================================================
# Tests for the oasm command: options, output destinations and the exit
# codes reported for each class of error.
# =============================================================================

import json
from pathlib import Path

import click
import pytest

from offlineasm.cli.errors import ExitCode, handle_cli_exception
from offlineasm.cli.oasm import load_layout
from offlineasm.errors import ConfigurationError, EmissionError, OfflineAsmError, SourceLocation


def write_unit(path: Path, *items) -> Path:
    path.write_text(json.dumps({
        "kind": "Sequence",
        "origin": [path.name, 1, 1],
        "items": list(items),
    }))
    return path


def op(opcode, *operands):
    return {"kind": "Instruction", "opcode": opcode, "operands": list(operands)}


RET = op("ret")


def invoke(*args):
    from click.testing import CliRunner
    from offlineasm.cli.oasm import main

    return CliRunner().invoke(main, [str(arg) for arg in args])


# =============================================================================
# Layout Files
# =============================================================================

class TestLoadLayout:
    """Test --layout file validation."""

    def test_valid(self, tmp_path):
        path = tmp_path / "offsets.json"
        path.write_text(json.dumps({"CallFrame::callee": 16}))
        assert load_layout(path) == {"CallFrame::callee": 16}

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "offsets.json"
        path.write_text("[16]")
        with pytest.raises(click.BadParameter, match="expected a JSON object"):
            load_layout(path)

    @pytest.mark.parametrize("value", ["16", 1.5, True, None])
    def test_non_integer_value(self, tmp_path, value):
        path = tmp_path / "offsets.json"
        path.write_text(json.dumps({"CallFrame::callee": value}))
        with pytest.raises(click.BadParameter, match="not an integer"):
            load_layout(path)


# =============================================================================
# Exit Codes
# =============================================================================

class TestHandleCliException:
    """Test error classification."""

    @pytest.mark.parametrize("error, code", [
        (EmissionError("bad", SourceLocation("u.asm", 3, 1)), ExitCode.BUILD_ERROR),
        (ConfigurationError("two architectures"), ExitCode.INVALID_ARGS),
        (OfflineAsmError("other"), ExitCode.BUILD_ERROR),
        (click.BadParameter("nope"), ExitCode.INVALID_ARGS),
        (FileNotFoundError("missing.json"), ExitCode.INVALID_ARGS),
        (RuntimeError("boom"), ExitCode.INTERNAL_ERROR),
    ])
    def test_exit_codes(self, error, code):
        with pytest.raises(SystemExit) as exc_info:
            handle_cli_exception(error)
        assert exc_info.value.code == code


# =============================================================================
# Command
# =============================================================================

class TestOasm:
    """Integration tests for the oasm command."""

    def test_default_backend(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", RET)
        result = invoke(unit)
        assert result.exit_code == 0, f"Compile failed: {result.output}"
        assert result.output == 'OFFLINE_ASM_BEGIN\n"\\tret\\n"\nOFFLINE_ASM_END\n'

    def test_backend_option(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", op("break"))
        result = invoke("-b", "x86_64", unit)
        assert result.exit_code == 0
        assert '"\\tint $3\\n"' in result.output

    def test_cloop_backend(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", op("break"))
        result = invoke("--backend", "C_LOOP", unit)
        assert result.exit_code == 0
        assert result.output == "_break();\n"

    def test_defines(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", {
            "kind": "IfThenElse",
            "predicate": {"kind": "Setting", "name": "ASSERT_ENABLED"},
            "then": op("break"),
            "else": RET,
        })
        assert '"\\tret\\n"' in invoke(unit).output
        result = invoke("-D", "ASSERT_ENABLED", unit)
        assert result.exit_code == 0
        assert "brk #0xc471" in result.output

    def test_output_file(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", RET)
        output = tmp_path / "LLIntAssembly.h"
        result = invoke(unit, "-o", output)
        assert result.exit_code == 0
        assert result.output == ""
        assert output.read_text().startswith("OFFLINE_ASM_BEGIN\n")

    def test_externs(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", op("call", {"kind": "LabelReference", "label": "_slow_path"}))
        result = invoke("--externs", unit)
        assert result.exit_code == 0
        assert "extern _slow_path" in result.output

    def test_dump(self, tmp_path):
        unit = write_unit(
            tmp_path / "unit.json",
            {"kind": "Macro", "name": "leave", "variables": [], "body": RET},
            op("leave"),
        )
        result = invoke("--dump", unit)
        assert result.exit_code == 0
        assert result.output == "\tret\n"

    def test_layout(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", op(
            "addp",
            {"kind": "Sizeof", "struct": "Register"},
            {"kind": "RegisterID", "name": "sp"},
        ))
        layout = tmp_path / "offsets.json"
        layout.write_text(json.dumps({"sizeof Register": 8}))
        result = invoke("--layout", layout, unit)
        assert result.exit_code == 0
        assert '"\\tadd sp, sp, #8\\n"' in result.output

    def test_missing_layout_value(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", op(
            "addp",
            {"kind": "Sizeof", "struct": "Register"},
            {"kind": "RegisterID", "name": "sp"},
        ))
        result = invoke(unit)
        assert result.exit_code == ExitCode.BUILD_ERROR
        assert "no layout value for 'sizeof Register'" in result.output

    def test_prelude(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", {
            "kind": "MacroCall",
            "name": "op",
            "operands": [
                {"kind": "Variable", "name": "op_ret"},
                {"kind": "Macro", "variables": [], "body": RET},
            ],
        })
        assert invoke(unit).exit_code == ExitCode.BUILD_ERROR
        result = invoke("--prelude", unit)
        assert result.exit_code == 0
        assert "OFFLINE_ASM_GLUE_LABEL(_op_ret_wide32)" in result.output

    def test_verbose(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", RET)
        result = invoke("-v", unit)
        assert result.exit_code == 0
        assert "Configuration: ARM64" in result.output

    def test_version(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert "oasm" in result.output


class TestOasmErrors:
    """Errors are reported with the matching exit code."""

    def test_compilation_error(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", {
            "kind": "MacroCall",
            "origin": ["unit.asm", 12, 5],
            "name": "missing",
            "operands": [{"kind": "Immediate", "value": 1}],
        })
        result = invoke(unit)
        assert result.exit_code == ExitCode.BUILD_ERROR
        assert "unit.asm:12:5: error: undefined macro 'missing'" in result.output

    def test_unhandled_opcode(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", op("addq", {"kind": "Immediate", "value": 1},
                                                     {"kind": "RegisterID", "name": "t0"}))
        result = invoke("-b", "ARMv7", unit)
        assert result.exit_code == ExitCode.BUILD_ERROR
        assert "unhandled opcode 'addq'" in result.output

    def test_unknown_backend(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", RET)
        result = invoke("-b", "mips", unit)
        assert result.exit_code == ExitCode.INVALID_ARGS
        assert "Configuration error" in result.output

    def test_second_architecture(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", RET)
        result = invoke("-D", "X86_64", unit)
        assert result.exit_code == ExitCode.INVALID_ARGS

    def test_bad_define(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", RET)
        assert invoke("-D", "JIT=maybe", unit).exit_code == ExitCode.INVALID_ARGS

    def test_invalid_json(self, tmp_path):
        unit = tmp_path / "unit.json"
        unit.write_text("{not json")
        result = invoke(unit)
        assert result.exit_code == ExitCode.INVALID_ARGS

    def test_bad_layout(self, tmp_path):
        unit = write_unit(tmp_path / "unit.json", RET)
        layout = tmp_path / "offsets.json"
        layout.write_text(json.dumps({"sizeof Register": "8"}))
        result = invoke("--layout", layout, unit)
        assert result.exit_code == ExitCode.INVALID_ARGS
        assert "not an integer" in result.output

    def test_missing_input(self, tmp_path):
        result = invoke(tmp_path / "absent.json")
        assert result.exit_code == 2
