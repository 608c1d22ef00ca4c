"""
Instruction Width Specialization
================================

Builds the three entry points of a width-specialized opcode.

Every interpreter opcode exists in three operand encodings:

    Width.NARROW  -> L           one-byte operands
    Width.WIDE16  -> L_wide16    16-bit operands
    Width.WIDE32  -> L_wide32    32-bit operands

Each entry point is laid out the same way:

    L<suffix>:
        <prologue>                shared, identical for all three
        <body for this width>
        if ASSERT_ENABLED         shared debug trailer
            break
            break
        end

The three entries are deliberately independent copies. Dispatch jumps
straight to the entry for the decoded width; there is no shared tail
and no indirect call.

Two ways to use this module:
- specialize() builds the expanded form directly, for hosts that
  assemble opcode trees programmatically.
- prelude() returns the macro definitions (narrow, wide16, wide32,
  commonOp, op) that macro-assembly sources use to get the same shape
  through ordinary macro expansion.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from offlineasm.ast import (
    IfThenElse,
    Instruction,
    Label,
    Macro,
    MacroCall,
    Node,
    Sequence,
)
from offlineasm.errors import SourceLocation
from offlineasm.symbols import SymbolTable

logger = logging.getLogger(__name__)


DEBUG_SETTING = "ASSERT_ENABLED"


class Width(Enum):
    """Operand encoding width; the value is the entry label suffix."""
    NARROW = ""
    WIDE16 = "_wide16"
    WIDE32 = "_wide32"

    @property
    def suffix(self) -> str:
        return self.value

    @property
    def selector(self) -> str:
        """Name of the selector macro that picks this width."""
        return self.name.lower()

    def label_name(self, base: str) -> str:
        return base + self.suffix


WIDTHS = (Width.NARROW, Width.WIDE16, Width.WIDE32)


@dataclass
class SpecializedOpcode:
    """
    Result of specialize().

    Attributes:
        entries: Entry label per width
        tree: The three entry points, in NARROW, WIDE16, WIDE32 order
    """
    entries: dict[Width, Label]
    tree: Sequence

    def entry(self, width: Width) -> Label:
        return self.entries[width]


def debug_trailer(table: SymbolTable, origin: SourceLocation) -> IfThenElse:
    """The trap pair emitted after every entry when assertions are enabled."""
    return IfThenElse(
        origin,
        table.setting(DEBUG_SETTING, origin),
        Sequence(origin, [Instruction(origin, "break"), Instruction(origin, "break")]),
    )


def specialize(
    table: SymbolTable,
    label: str,
    prologue: Node,
    body_for_width: Callable[[Width], Node],
    origin: Optional[SourceLocation] = None,
    trailer: Optional[Node] = None,
) -> SpecializedOpcode:
    """
    Build the three entry points of one opcode.

    The same prologue and trailer node objects appear in all three
    entries; only the body differs.

    Args:
        table: Symbol table the entry labels are interned in
        label: Base entry label, e.g. "_op_add"
        prologue: Statements run on entry, before the body
        body_for_width: Builds the body for one width
        origin: Location for synthesised nodes (default: the prologue's)
        trailer: Replaces the default ASSERT_ENABLED trap pair

    Returns:
        SpecializedOpcode with the entry labels and the entry sequence
    """
    origin = origin or prologue.origin
    trailer = trailer or debug_trailer(table, origin)

    entries: dict[Width, Label] = {}
    items: list[Node] = []
    for width in WIDTHS:
        entry = table.label_definition(width.label_name(label), origin)
        entries[width] = entry
        items.extend([entry, prologue, body_for_width(width), trailer])

    logger.debug(f"Specialized {label} into {len(entries)} entry points")
    return SpecializedOpcode(entries, Sequence(origin, items))


# =============================================================================
# Macro Prelude
# =============================================================================
# The definitions below are the macro-assembly spelling of specialize():
#
#   macro narrow(narrowFn, wide16Fn, wide32Fn, k)
#       k(narrowFn)
#   end
#   (wide16 and wide32 alike)
#
#   macro commonOp(label, prologue, fn)
#   _%label%:
#       prologue()
#       fn(narrow)
#       if ASSERT_ENABLED break break end
#   (repeated for _wide16 and _wide32)
#   end
#
#   macro op(l, fn)
#       commonOp(l, macro () end, macro (size)
#           size(fn, macro() break end, macro() break end, macro(gen) gen() end)
#       end)
#   end
# =============================================================================

_SELECTOR_PARAMS = ("narrowFn", "wide16Fn", "wide32Fn")


def selector_macro(table: SymbolTable, width: Width, origin: SourceLocation) -> Macro:
    params = [table.variable(name, origin) for name in _SELECTOR_PARAMS]
    k = table.variable("k", origin)
    chosen = params[WIDTHS.index(width)]
    body = Sequence(origin, [MacroCall(origin, "k", [chosen])])
    return Macro(origin, width.selector, params + [k], body)


def common_op_macro(table: SymbolTable, origin: SourceLocation) -> Macro:
    label = table.variable("label", origin)
    prologue = table.variable("prologue", origin)
    fn = table.variable("fn", origin)

    specialized = specialize(
        table,
        "_%label%",
        Instruction(origin, "prologue"),
        lambda width: MacroCall(origin, "fn", [table.variable(width.selector, origin)]),
        origin,
    )
    return Macro(origin, "commonOp", [label, prologue, fn], specialized.tree)


def op_macro(table: SymbolTable, origin: SourceLocation) -> Macro:
    opcode_label = table.variable("l", origin)
    fn = table.variable("fn", origin)
    size = table.variable("size", origin)
    gen = table.variable("gen", origin)

    def trap() -> Macro:
        return Macro(origin, None, [], Sequence(origin, [Instruction(origin, "break")]))

    narrow_only = Macro(origin, None, [gen], Sequence(origin, [Instruction(origin, "gen")]))
    select = Macro(
        origin,
        None,
        [size],
        Sequence(origin, [MacroCall(origin, "size", [fn, trap(), trap(), narrow_only])]),
    )
    empty_prologue = Macro(origin, None, [], Sequence(origin, []))
    body = Sequence(origin, [MacroCall(origin, "commonOp", [opcode_label, empty_prologue, select])])
    return Macro(origin, "op", [opcode_label, fn], body)


def prelude(table: SymbolTable, origin: Optional[SourceLocation] = None) -> list[Macro]:
    """Macro definitions for width-specialized opcodes, in definition order."""
    origin = origin or SourceLocation("<prelude>", 0, 0)
    macros = [selector_macro(table, width, origin) for width in WIDTHS]
    macros.append(common_op_macro(table, origin))
    macros.append(op_macro(table, origin))
    return macros
