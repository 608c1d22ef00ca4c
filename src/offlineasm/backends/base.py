"""
Emission Pass Base
==================

Closed, exhaustively checked dispatch from node type to lowering rule.

Every concrete backend provides one `lower_<node_type>` method for each
type in ast.NODE_TYPES (AddImmediates -> lower_add_immediates). The
table is built, and checked for completeness, when the backend class is
defined, so a node type without a rule is an import-time TypeError
rather than a runtime surprise.

A rule returns either:
- str           an operand or expression rendering
- list[str]     zero or more statements

Sequence rules splice statement lists into their parent, so emitted
blocks never accumulate nesting.

Pseudo-Opcodes
--------------
Shared by every backend and handled before the opcode table is
consulted:

    localAnnotation, globalAnnotation     dropped
    emit "text"                           raw line
    tagCodePtr, tagReturnAddress,         no-ops on every supported
    untagReturnAddress, removeCodePtrTag, architecture
    untagArrayPtr, removeArrayPtrTag
"""

import logging
import re
from typing import Callable, ClassVar, Union

from offlineasm.ast import NODE_TYPES, Instruction, Label, Node, Sequence, StringLiteral
from offlineasm.errors import EmissionError, UnhandledOpcodeError
from offlineasm.settings import Configuration
from offlineasm.symbols import SymbolTable

logger = logging.getLogger(__name__)


Lowered = Union[str, list[str]]

ANNOTATION_OPCODES = frozenset({"localAnnotation", "globalAnnotation"})

POINTER_TAG_OPCODES = frozenset({
    "tagCodePtr",
    "tagReturnAddress",
    "untagReturnAddress",
    "removeCodePtrTag",
    "untagArrayPtr",
    "removeArrayPtrTag",
})


def rule_name(node_type: type) -> str:
    """
    Name of the lowering method for a node type.

    >>> rule_name(AddImmediates)
    'lower_add_immediates'
    """
    snake = re.sub(r"(?<!^)(?=[A-Z][a-z])", "_", node_type.__name__)
    snake = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", snake)
    return "lower_" + snake.lower()


class Backend:
    """
    Base class for emission backends.

    Subclasses pass abstract=True in their class statement while they
    still leave rules to their own subclasses.

    Attributes:
        name: Backend name as reported in errors
        configuration: Resolved configuration (register names, layout)
        table: Symbol table of the run, for forward-reference tracking
    """

    name: ClassVar[str] = "abstract"
    _rules: ClassVar[dict[type, Callable[["Backend", Node], Lowered]]] = {}

    def __init_subclass__(cls, abstract: bool = False, **kwargs):
        super().__init_subclass__(**kwargs)
        if abstract:
            return
        missing = [t.__name__ for t in NODE_TYPES if not hasattr(cls, rule_name(t))]
        if missing:
            raise TypeError(
                f"backend {cls.__name__} has no lowering rule for: {', '.join(missing)}"
            )
        cls._rules = {t: getattr(cls, rule_name(t)) for t in NODE_TYPES}

    def __init__(self, configuration: Configuration, table: SymbolTable):
        self.configuration = configuration
        self.table = table

    # =========================================================================
    # Dispatch
    # =========================================================================

    def lower(self, node: Node) -> Lowered:
        rule = self._rules.get(type(node))
        if rule is None:
            raise EmissionError(
                f"no lowering rule for {type(node).__name__}",
                node.origin,
                construct=node.dump(),
            )
        return rule(self, node)

    def lower_statements(self, node: Node) -> list[str]:
        lowered = self.lower(node)
        if isinstance(lowered, list):
            return lowered
        return [lowered] if lowered else []

    def lower_sequence(self, node: Sequence) -> list[str]:
        statements: list[str] = []
        for item in node.items:
            statements.extend(self.lower_statements(item))
        return statements

    def emit(self, tree: Node) -> list[str]:
        """Lower a whole unit to its output lines."""
        lines = self.frame(self.lower_statements(tree))
        logger.debug(f"{self.name}: emitted {len(lines)} lines")
        return lines

    def frame(self, statements: list[str]) -> list[str]:
        return statements

    # =========================================================================
    # Instructions
    # =========================================================================

    def lower_instruction(self, node: Instruction) -> list[str]:
        if node.opcode in ANNOTATION_OPCODES or node.opcode in POINTER_TAG_OPCODES:
            return []
        if node.opcode == "emit":
            return [self.raw_line(self.emit_text(node))]
        return self.lower_opcode(node)

    def emit_text(self, node: Instruction) -> str:
        parts = []
        for operand in node.operands:
            if isinstance(operand, StringLiteral):
                parts.append(operand.value)
            else:
                parts.append(operand.dump())
        return " ".join(parts)

    def raw_line(self, text: str) -> str:
        return text

    def lower_opcode(self, node: Instruction) -> list[str]:
        raise UnhandledOpcodeError(node.opcode, self.name, node.origin, node.dump())

    # =========================================================================
    # Labels
    # =========================================================================

    def note_reference(self, label: Label) -> None:
        self.table.note_label_use(label)

    def check_operands(self, node: Instruction, *counts: int) -> None:
        if len(node.operands) not in counts:
            expected = " or ".join(str(c) for c in counts)
            raise EmissionError(
                f"'{node.opcode}' takes {expected} operand(s), got {len(node.operands)}",
                node.origin,
                construct=node.dump(),
            )
