"""
oasm - Offline Macro-Assembler Command-Line Interface
=====================================================

Compiles one parsed macro-assembly unit for one backend.

The input is the JSON interchange document written by the parser (see
offlineasm.loader). The output is the inline-assembly header consumed
by the interpreter's C++ translation unit or, for the C_LOOP backend,
the C++ representation of the unit.

Usage Examples
--------------
Basic compilation (ARM64, output to stdout):
    $ oasm LowLevelInterpreter.json

Other backend, with settings and output file:
    $ oasm -b X86_64 -D ASSERT_ENABLED -D JIT=0 unit.json -o unit.h

Layout constants from the offsets extractor:
    $ oasm --layout offsets.json unit.json

Inspect the folded and expanded tree:
    $ oasm --dump unit.json
"""

import json
import logging
from pathlib import Path
from typing import Optional

import click

from offlineasm import __version__
from offlineasm.ast import layout_constants_used, settings_used
from offlineasm.cli.errors import handle_cli_exception
from offlineasm.compiler import Compilation
from offlineasm.settings import Configuration


def load_layout(path: Path) -> dict[str, int]:
    """Read a JSON object mapping layout keys ("Struct::field") to integers."""
    with open(path, "r", encoding="utf-8") as f:
        layout = json.load(f)
    if not isinstance(layout, dict):
        raise click.BadParameter(f"{path}: expected a JSON object", param_hint="--layout")
    for key, value in layout.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise click.BadParameter(
                f"{path}: value of '{key}' is not an integer", param_hint="--layout"
            )
    return layout


# =============================================================================
# CLI Definition
# =============================================================================

@click.command()
@click.argument(
    "input_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "-b", "--backend",
    default="ARM64",
    show_default=True,
    help="Target backend: ARM64, ARM64E, X86_64, RISCV64, ARMv7 or C_LOOP",
)
@click.option(
    "-D", "--define",
    multiple=True,
    help="Define setting (format: NAME or NAME=VALUE, can be repeated)",
)
@click.option(
    "-o", "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Output file (default: stdout)",
)
@click.option(
    "--layout",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file of host layout constants",
)
@click.option(
    "--prelude/--no-prelude",
    default=False,
    help="Provide the narrow/wide16/wide32/commonOp/op macros when the unit does not",
)
@click.option(
    "--externs",
    is_flag=True,
    help="List labels referenced but not defined in the unit (on stderr)",
)
@click.option(
    "--dump",
    is_flag=True,
    help="Print the folded and expanded tree instead of emitting code",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
@click.version_option(version=__version__, prog_name="oasm")
def main(
    input_file: Path,
    backend: str,
    define: tuple[str, ...],
    output: Optional[Path],
    layout: Optional[Path],
    prelude: bool,
    externs: bool,
    dump: bool,
    verbose: bool,
) -> None:
    """
    Compile a parsed offline macro-assembly unit.

    INPUT_FILE is the JSON interchange document produced by the parser.

    \b
    Examples:
        oasm unit.json                   # ARM64 to stdout
        oasm -b X86_64 unit.json -o u.h  # Specify backend and output
        oasm -D ASSERT_ENABLED unit.json # Enable the debug trailer
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    try:
        configuration = Configuration.from_defines(
            backend,
            define,
            load_layout(layout) if layout else None,
        )
        if verbose:
            click.echo(f"Configuration: {configuration}", err=True)
            click.echo(f"Compiling {input_file}...", err=True)

        with open(input_file, "r", encoding="utf-8") as f:
            document = json.load(f)

        compilation = Compilation(configuration, include_prelude=prelude)
        tree = compilation.load(document, input_file.name)
        if verbose:
            click.echo(f"Settings used: {', '.join(settings_used(tree)) or 'none'}", err=True)
            constants = [node.dump() for node in layout_constants_used(tree)]
            click.echo(f"Layout constants used: {', '.join(constants) or 'none'}", err=True)

        compilation.fold()
        expanded = compilation.expand()

        if dump:
            text = expanded.dump() + "\n"
        else:
            compilation.lower()
            emission = compilation.emit()
            text = emission.text
            if externs:
                for name in emission.extern_labels:
                    click.echo(f"extern {name}", err=True)

        if output:
            output.write_text(text, encoding="utf-8")
            if verbose:
                click.echo(f"Wrote {len(text.splitlines())} lines to {output}", err=True)
        else:
            click.echo(text, nl=False)

    except Exception as e:
        handle_cli_exception(e, verbose=verbose)


if __name__ == "__main__":
    main()
