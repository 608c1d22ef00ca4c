"""
Macro Expansion Pass
====================

Replaces every macro invocation with a bound, renamed copy of the macro
body, and substitutes constants into every use.

Macro Syntax (as produced by the parser)
----------------------------------------
    macro double(x)             Macro("double", [x], body)
        addp x, x
    end

    double(t0)                  MacroCall("double", [t0])
    prologue()                  Instruction("prologue") - zero operands

Invocation semantics:
- Arguments are bound to parameters by position. The operand count must
  equal the parameter count.
- Arguments are bound by identity: a parameter used twice in the body is
  replaced by the same operand node both times.
- Arguments may be macros: a global macro named by a bare identifier, or
  an anonymous `macro (a, b) ... end` written in place. A parameter
  bound to a macro can itself be invoked.
- Anonymous macros close over the bindings of the expansion that
  created them (lexical scoping).
- Label names containing `%param%` are interpolated with the name of the
  bound operand, so `_%label%_wide16:` with label bound to `op_add`
  defines `_op_add_wide16`.
- Local labels (`.loop:`) defined in a macro body are renamed for every
  expansion through SymbolTable.unique_local_label, so a macro can be
  expanded any number of times in one unit.

Constants
---------
Top-level `const NAME = value` declarations are resolved in source order
(a value may refer to earlier constants, including an earlier binding of
its own name) and the final binding of each name is substituted into
every use. Declarations inside macro bodies bind for the remainder of
that expansion only.

Expansion nests up to max_depth invocations deep; deeper recursion is
reported as a MacroError rather than exhausting the Python stack.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Union

from offlineasm.ast import (
    ConstDecl,
    Error,
    IfThenElse,
    Immediate,
    Instruction,
    Label,
    LabelReference,
    LocalLabel,
    LocalLabelReference,
    Macro,
    MacroCall,
    Node,
    RegisterID,
    Sequence,
    Skip,
    StringLiteral,
    Variable,
)
from offlineasm.errors import (
    MacroArityError,
    MacroError,
    UnboundVariableError,
    UndefinedMacroError,
)
from offlineasm.symbols import SymbolTable

logger = logging.getLogger(__name__)


DEFAULT_MAX_DEPTH = 100

_INTERPOLATION = re.compile(r"%(\w+)%")


# =============================================================================
# Expansion Environment
# =============================================================================

@dataclass
class Frame:
    """
    Bindings visible to one macro expansion.

    Attributes:
        bindings: Parameter or local constant name -> bound value
        labels: Local label name as written -> renamed label
        parent: Frame the expanded macro was defined in (None at top level)
    """
    bindings: dict[str, "Value"] = field(default_factory=dict)
    labels: dict[str, LocalLabel] = field(default_factory=dict)
    parent: Optional["Frame"] = None

    def lookup(self, name: str) -> Optional["Value"]:
        frame = self
        while frame is not None:
            if name in frame.bindings:
                return frame.bindings[name]
            frame = frame.parent
        return None

    def local_label(self, name: str) -> Optional[LocalLabel]:
        frame = self
        while frame is not None:
            if name in frame.labels:
                return frame.labels[name]
            frame = frame.parent
        return None


@dataclass
class Closure:
    """A macro paired with the frame its free names resolve in."""
    macro: Macro
    frame: Frame

    @property
    def name(self) -> str:
        return self.macro.name or "<anonymous>"


Value = Union[Node, Closure]


def operand_name(value: Value) -> Optional[str]:
    """The name an operand contributes to `%param%` interpolation."""
    if isinstance(value, (Variable, RegisterID, Label, LocalLabel)):
        return value.name
    if isinstance(value, (LabelReference, LocalLabelReference)):
        return value.name
    if isinstance(value, Immediate):
        return value.name
    if isinstance(value, StringLiteral):
        return value.value
    return None


def _local_labels_defined(body: Node) -> list[LocalLabel]:
    # Labels defined at statement level, excluding nested anonymous macros
    # which rename their own labels when they are expanded.
    if isinstance(body, LocalLabel):
        return [body]
    if isinstance(body, Sequence):
        found: list[LocalLabel] = []
        for item in body.items:
            found.extend(_local_labels_defined(item))
        return found
    if isinstance(body, IfThenElse):
        return _local_labels_defined(body.then_case) + _local_labels_defined(body.else_case)
    return []


# =============================================================================
# Expander
# =============================================================================

class MacroExpander:
    """
    Expands every macro invocation in a tree.

    Example:
        >>> expander = MacroExpander(table)
        >>> flat = expander.expand(tree)
        >>> expander.expansions
        3

    Attributes:
        table: Symbol table labels are interned in
        max_depth: Maximum nesting of invocations
        macros: Global macros by name (filled by expand)
        constants: Final binding of every top-level constant
        expansions: Number of invocations expanded so far
    """

    def __init__(self, table: SymbolTable, max_depth: int = DEFAULT_MAX_DEPTH):
        self.table = table
        self.max_depth = max_depth
        self.macros: dict[str, Macro] = {}
        self.constants: dict[str, Node] = {}
        self.expansions = 0
        self._root = Frame()
        self._resolved_decls: dict[int, Node] = {}

    def expand(self, tree: Node) -> Sequence:
        """
        Expand `tree` and return the flat top-level statement sequence.

        Named macro definitions are removed from the result.
        """
        items = tree.flattened().items if isinstance(tree, Sequence) else [tree]
        self._collect_macros(items)
        self._resolve_constants(items)

        result: list[Node] = []
        for item in items:
            result.extend(self._expand(item, self._root, 0))

        logger.debug(
            f"Expanded {self.expansions} macro invocations "
            f"({len(self.macros)} macros, {len(self.constants)} constants)"
        )
        return Sequence(tree.origin, result)

    # =========================================================================
    # Top-level Collection
    # =========================================================================

    def _collect_macros(self, items: list[Node]) -> None:
        for item in items:
            if not isinstance(item, Macro) or item.name is None:
                continue
            if item.name in self.macros:
                raise MacroError(
                    f"macro '{item.name}' is defined more than once",
                    item.origin,
                    hint=f"first defined at {self.macros[item.name].origin}",
                )
            self.macros[item.name] = item

    def _resolve_constants(self, items: list[Node]) -> None:
        for item in items:
            if not isinstance(item, ConstDecl):
                continue
            name = item.variable.name
            value = self._substitute(item.value, self._root)
            previous = self.constants.get(name)
            if previous is not None:
                if previous.dump() != value.dump():
                    logger.warning(
                        f"{item.origin}: constant '{name}' rebound "
                        f"from {previous.dump()} to {value.dump()}"
                    )
                else:
                    logger.debug(f"{item.origin}: constant '{name}' redeclared")
            self.constants[name] = value
            self._resolved_decls[id(item)] = value

    # =========================================================================
    # Name Resolution
    # =========================================================================

    def _lookup(self, name: str, frame: Frame) -> Optional[Value]:
        value = frame.lookup(name)
        if value is not None:
            return value
        if name in self.constants:
            return self.constants[name]
        if name in self.macros:
            return Closure(self.macros[name], self._root)
        return None

    def _callee(self, name: str, frame: Frame) -> Optional[Closure]:
        value = frame.lookup(name)
        if isinstance(value, Closure):
            return value
        if name in self.macros:
            return Closure(self.macros[name], self._root)
        return None

    def _interpolate(self, name: str, frame: Frame, node: Node) -> str:
        def replace(match: "re.Match[str]") -> str:
            param = match.group(1)
            value = self._lookup(param, frame)
            if value is None:
                raise UnboundVariableError(param, node.origin, node.dump())
            text = operand_name(value)
            if text is None:
                raise MacroError(
                    f"cannot interpolate '{param}' into a label name",
                    node.origin,
                    construct=node.dump(),
                )
            return text

        return _INTERPOLATION.sub(replace, name)

    # =========================================================================
    # Substitution
    # =========================================================================

    def _substitute(self, node: Node, frame: Frame) -> Node:
        """Replace bound variables and renamed local labels inside an operand."""
        if isinstance(node, Variable):
            value = self._lookup(node.name, frame)
            if value is None:
                return node
            if isinstance(value, Closure):
                raise MacroError(
                    f"macro '{value.name}' used as a value",
                    node.origin,
                    construct=node.dump(),
                )
            return value

        if isinstance(node, LocalLabelReference):
            renamed = frame.local_label(node.name)
            if renamed is not None:
                return LocalLabelReference(node.origin, renamed)
            return node

        if isinstance(node, LabelReference) and "%" in node.name:
            name = self._interpolate(node.name, frame, node)
            return self.table.label_reference(name, node.origin, node.offset)

        if isinstance(node, Macro):
            raise MacroError(
                "anonymous macro used outside an operand list",
                node.origin,
                construct=node.dump(),
            )

        return node.map_children(lambda child: self._substitute(child, frame))

    def _evaluate_operand(self, operand: Node, frame: Frame) -> Value:
        if isinstance(operand, Macro):
            return Closure(operand, frame)
        if isinstance(operand, Variable):
            value = self._lookup(operand.name, frame)
            return operand if value is None else value
        return self._substitute(operand, frame)

    # =========================================================================
    # Statement Expansion
    # =========================================================================

    def _expand(self, node: Node, frame: Frame, depth: int) -> list[Node]:
        if isinstance(node, Sequence):
            result: list[Node] = []
            for item in node.items:
                result.extend(self._expand(item, frame, depth))
            return result

        if isinstance(node, MacroCall):
            return self._invoke(node.name, node.display_name, node.operands, frame, node, depth)

        if isinstance(node, Instruction):
            if self._callee(node.opcode, frame) is not None:
                return self._invoke(node.opcode, node.opcode, node.operands, frame, node, depth)
            operands = [self._substitute(op, frame) for op in node.operands]
            return [node.clone_with_operands(operands)]

        if isinstance(node, Label):
            if "%" not in node.name:
                return [node]
            return [self.table.define_label(self._interpolate(node.name, frame, node), node.origin)]

        if isinstance(node, LocalLabel):
            return [frame.local_label(node.name) or node]

        if isinstance(node, ConstDecl):
            return [self._expand_const(node, frame)]

        if isinstance(node, Macro):
            if node.name is not None and frame is self._root:
                return []
            raise MacroError(
                "macro definitions are only allowed at top level",
                node.origin,
                construct=node.dump(),
            )

        if isinstance(node, IfThenElse):
            return [IfThenElse(
                node.origin,
                node.predicate,
                Sequence(node.then_case.origin, self._expand(node.then_case, frame, depth)),
                Sequence(node.else_case.origin, self._expand(node.else_case, frame, depth)),
            )]

        if isinstance(node, Skip):
            return []

        if isinstance(node, Error):
            return [node]

        return [self._substitute(node, frame)]

    def _expand_const(self, node: ConstDecl, frame: Frame) -> ConstDecl:
        resolved = self._resolved_decls.get(id(node))
        if resolved is None:
            resolved = self._substitute(node.value, frame)
            frame.bindings[node.variable.name] = resolved
        return ConstDecl(node.origin, node.variable, resolved)

    def _invoke(
        self,
        name: str,
        display_name: str,
        operands: list[Node],
        frame: Frame,
        call: Node,
        depth: int,
    ) -> list[Node]:
        callee = self._callee(name, frame)
        if callee is None:
            if frame.lookup(name) is not None:
                raise MacroError(
                    f"'{display_name}' is not bound to a macro",
                    call.origin,
                    construct=call.dump(),
                )
            raise UndefinedMacroError(
                display_name, call.origin, call.dump(), sorted(self.macros)
            )

        parameters = callee.macro.variables
        if len(operands) != len(parameters):
            raise MacroArityError(
                callee.macro.name or display_name,
                len(parameters),
                len(operands),
                call.origin,
                call.dump(),
            )

        if depth >= self.max_depth:
            raise MacroError(
                "macro expansion too deep",
                call.origin,
                hint=f"invocations nest more than {self.max_depth} levels; "
                     "check for a macro that invokes itself",
                construct=call.dump(),
            )

        arguments = [self._evaluate_operand(op, frame) for op in operands]
        inner = Frame(
            bindings={param.name: arg for param, arg in zip(parameters, arguments)},
            labels=self._rename_local_labels(callee.macro, display_name),
            parent=callee.frame,
        )

        self.expansions += 1
        logger.debug(f"{call.origin}: expanding {display_name}/{len(arguments)}")
        return self._expand(callee.macro.body, inner, depth + 1)

    def _rename_local_labels(self, macro: Macro, display_name: str) -> dict[str, LocalLabel]:
        renamed: dict[str, LocalLabel] = {}
        prefix = macro.name or display_name
        for label in _local_labels_defined(macro.body):
            if label.name not in renamed:
                comment = f"{prefix}_{label.clean_name}"
                renamed[label.name] = self.table.unique_local_label(comment, label.origin)
        return renamed


def expand_macros(
    tree: Node,
    table: SymbolTable,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Sequence:
    """Expand every macro invocation in `tree`."""
    return MacroExpander(table, max_depth).expand(tree)
