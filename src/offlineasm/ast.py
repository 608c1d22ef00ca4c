"""
offlineasm Abstract Syntax Tree (AST) Definitions
=================================================

This module defines the closed set of node types produced by the
macro-assembly parser and consumed by the folding, expansion and
emission passes.

Node Hierarchy
--------------
Node (base)
├── Leaf values
│   ├── Immediate, StringLiteral
│   ├── RegisterID, FPRegisterID, VecRegisterID, SpecialRegister
│   ├── Variable, ConstExpr
│   └── Setting, TrueLiteral, FalseLiteral
├── Addressing
│   ├── Address - offset[base]
│   ├── BaseIndex - offset[base, index, scale]
│   └── AbsoluteAddress - address[]
├── Immediate arithmetic
│   ├── AddImmediates, SubImmediates, MulImmediates
│   ├── OrImmediates, AndImmediates, XorImmediates
│   └── NegImmediate, BitnotImmediate
├── Boolean expressions
│   └── And, Or, Not (over Setting / TrueLiteral / FalseLiteral)
├── Structural constants
│   └── StructOffset, Sizeof
├── Statements
│   ├── Instruction, MacroCall, Sequence, IfThenElse
│   └── Skip, Error, ConstDecl
├── Definitions
│   └── Macro
└── Labels
    ├── Label, LocalLabel
    └── LabelReference, LocalLabelReference

Tree Walking
------------
    node.children()        immediate subtrees, order-significant
    node.descendants()     all strict descendants, transitively
    node.flatten()         the node itself followed by its descendants
    node.filter(cls)       the flattened nodes that are instances of cls
    node.map_children(fn)  a new node with every child replaced by fn(child)

Examples:
    settings_used(tree)           -> names every conditional depends on
    layout_constants_used(tree)   -> offsets/sizes the host must provide

Design Notes
------------
- Nodes compare by identity. RegisterID, FPRegisterID, VecRegisterID,
  Variable, ConstExpr, Setting, StructOffset, Sizeof and labels are
  interned through a SymbolTable so that two occurrences of one name are
  the same object.
- map_children() is the only way to derive a modified tree. Apart from
  the accumulated declaration flags on Label, nodes are not mutated
  after construction.
- Validation happens in __post_init__ and raises MalformedNodeError with
  the node's source location.
"""

from dataclasses import dataclass, field
from typing import Callable, ClassVar, Optional, Union

from offlineasm.errors import MalformedNodeError, SourceLocation


Transform = Callable[["Node"], "Node"]


# =============================================================================
# AST Node Base Classes
# =============================================================================

@dataclass(eq=False)
class Node:
    """
    Base class for all AST nodes.

    Attributes:
        origin: Source location the parser attached to this node
    """
    origin: SourceLocation

    # Operand classification used by construction-time validation
    is_register: ClassVar[bool] = False
    is_immediate: ClassVar[bool] = False
    is_address: ClassVar[bool] = False
    is_label: ClassVar[bool] = False

    def children(self) -> list["Node"]:
        return []

    def descendants(self) -> list["Node"]:
        result: list[Node] = []
        for child in self.children():
            result.extend(child.flatten())
        return result

    def flatten(self) -> list["Node"]:
        return [self] + self.descendants()

    def filter(self, node_type: type) -> list:
        return [node for node in self.flatten() if isinstance(node, node_type)]

    def map_children(self, transform: Transform) -> "Node":
        return self

    def dump(self) -> str:
        return type(self).__name__

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.dump().strip()!r} at {self.origin}>"


@dataclass(eq=False, repr=False)
class _BinaryNode(Node):
    """Shared shape of the two-operand expression nodes."""
    left: Node
    right: Node

    operator: ClassVar[str] = "?"

    def children(self) -> list[Node]:
        return [self.left, self.right]

    def map_children(self, transform: Transform) -> Node:
        return type(self)(self.origin, transform(self.left), transform(self.right))

    def dump(self) -> str:
        return f"({self.left.dump()} {self.operator} {self.right.dump()})"


@dataclass(eq=False, repr=False)
class _UnaryNode(Node):
    """Shared shape of the one-operand expression nodes."""
    child: Node

    operator: ClassVar[str] = "?"

    def children(self) -> list[Node]:
        return [self.child]

    def map_children(self, transform: Transform) -> Node:
        return type(self)(self.origin, transform(self.child))

    def dump(self) -> str:
        return f"({self.operator}{self.child.dump()})"


# =============================================================================
# Leaf Values
# =============================================================================

@dataclass(eq=False, repr=False)
class Immediate(Node):
    value: int

    is_immediate: ClassVar[bool] = True

    @property
    def name(self) -> str:
        """Hexadecimal spelling, used when an immediate names a label slot."""
        if self.value < 0:
            return f"-0x{-self.value:x}"
        return f"0x{self.value:x}"

    def dump(self) -> str:
        return str(self.value)


@dataclass(eq=False, repr=False)
class StringLiteral(Node):
    value: str

    def dump(self) -> str:
        return f'"{self.value}"'


@dataclass(eq=False, repr=False)
class RegisterID(Node):
    """General purpose register, by logical name (t0, cfr, csr3...)."""
    name: str

    is_register: ClassVar[bool] = True

    def dump(self) -> str:
        return self.name


@dataclass(eq=False, repr=False)
class FPRegisterID(Node):
    name: str

    is_register: ClassVar[bool] = True

    def dump(self) -> str:
        return self.name


@dataclass(eq=False, repr=False)
class VecRegisterID(Node):
    name: str

    is_register: ClassVar[bool] = True

    def dump(self) -> str:
        return self.name


@dataclass(eq=False, repr=False)
class SpecialRegister(Node):
    """Backend-internal physical register, spelled exactly as given."""
    name: str

    is_register: ClassVar[bool] = True

    def dump(self) -> str:
        return self.name


@dataclass(eq=False, repr=False)
class Variable(Node):
    """
    A name bound by a macro parameter list or a const declaration.

    Attributes:
        name: Binding name (unique within a run)
        original_name: Name as written in the source, when the binding
                       was renamed during expansion
    """
    name: str
    original_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.original_name or self.name

    def dump(self) -> str:
        return self.display_name


@dataclass(eq=False, repr=False)
class ConstExpr(Node):
    """Opaque host-language constant expression, e.g. sizeof(void*)."""
    value: str

    is_immediate: ClassVar[bool] = True

    @property
    def key(self) -> str:
        return self.value

    def dump(self) -> str:
        return f"constexpr ({self.value})"


@dataclass(eq=False, repr=False)
class Setting(Node):
    """Named configuration flag referenced by a conditional."""
    name: str

    def dump(self) -> str:
        return self.name


class TrueLiteral(Node):
    """The process-wide `true` value. Use the TRUE constant."""

    _instance: ClassVar[Optional["TrueLiteral"]] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        self.origin = SourceLocation.none()

    @property
    def value(self) -> bool:
        return True

    def dump(self) -> str:
        return "true"


class FalseLiteral(Node):
    """The process-wide `false` value. Use the FALSE constant."""

    _instance: ClassVar[Optional["FalseLiteral"]] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        self.origin = SourceLocation.none()

    @property
    def value(self) -> bool:
        return False

    def dump(self) -> str:
        return "false"


TRUE = TrueLiteral()
FALSE = FalseLiteral()


# =============================================================================
# Structural Constants
# =============================================================================

@dataclass(eq=False, repr=False)
class StructOffset(Node):
    """Offset of `field` within host structure `struct_name`."""
    struct_name: str
    field: str

    is_immediate: ClassVar[bool] = True

    @property
    def key(self) -> str:
        return f"{self.struct_name}::{self.field}"

    def dump(self) -> str:
        return self.key


@dataclass(eq=False, repr=False)
class Sizeof(Node):
    struct_name: str

    is_immediate: ClassVar[bool] = True

    @property
    def key(self) -> str:
        return f"sizeof {self.struct_name}"

    def dump(self) -> str:
        return self.key


# =============================================================================
# Immediate Arithmetic
# =============================================================================
# Evaluated only at emission time. They are never folded early.
# =============================================================================

@dataclass(eq=False, repr=False)
class AddImmediates(_BinaryNode):
    operator: ClassVar[str] = "+"
    is_immediate: ClassVar[bool] = True


@dataclass(eq=False, repr=False)
class SubImmediates(_BinaryNode):
    operator: ClassVar[str] = "-"
    is_immediate: ClassVar[bool] = True


@dataclass(eq=False, repr=False)
class MulImmediates(_BinaryNode):
    operator: ClassVar[str] = "*"
    is_immediate: ClassVar[bool] = True


@dataclass(eq=False, repr=False)
class OrImmediates(_BinaryNode):
    operator: ClassVar[str] = "|"
    is_immediate: ClassVar[bool] = True


@dataclass(eq=False, repr=False)
class AndImmediates(_BinaryNode):
    operator: ClassVar[str] = "&"
    is_immediate: ClassVar[bool] = True


@dataclass(eq=False, repr=False)
class XorImmediates(_BinaryNode):
    operator: ClassVar[str] = "^"
    is_immediate: ClassVar[bool] = True


@dataclass(eq=False, repr=False)
class NegImmediate(_UnaryNode):
    operator: ClassVar[str] = "-"
    is_immediate: ClassVar[bool] = True


@dataclass(eq=False, repr=False)
class BitnotImmediate(_UnaryNode):
    operator: ClassVar[str] = "~"
    is_immediate: ClassVar[bool] = True


# =============================================================================
# Boolean Expressions (configuration sublanguage)
# =============================================================================

@dataclass(eq=False, repr=False)
class And(_BinaryNode):
    operator: ClassVar[str] = "and"


@dataclass(eq=False, repr=False)
class Or(_BinaryNode):
    operator: ClassVar[str] = "or"


@dataclass(eq=False, repr=False)
class Not(_UnaryNode):
    operator: ClassVar[str] = "not "


BOOLEAN_NODE_TYPES = (And, Or, Not, Setting, TrueLiteral, FalseLiteral)


# =============================================================================
# Addressing
# =============================================================================

def _check_base(node: Node, base: Node) -> None:
    if not (isinstance(base, Variable) or base.is_register):
        raise MalformedNodeError(
            f"bad base for address: {base.dump()}",
            node.origin,
            hint="the base of an address must be a register",
        )


def _check_offset(node: Node, offset: Node) -> None:
    if not (isinstance(offset, Variable) or offset.is_immediate):
        raise MalformedNodeError(
            f"bad offset for address: {offset.dump()}",
            node.origin,
            hint="the offset of an address must be an immediate",
        )


def _literal_offset(node: Node, offset: Node) -> int:
    if not isinstance(offset, Immediate):
        raise MalformedNodeError(
            f"cannot add to non-literal offset {offset.dump()}",
            node.origin,
        )
    return offset.value


@dataclass(eq=False, repr=False)
class Address(Node):
    """Memory operand `offset[base]`."""
    base: Node
    offset: Node

    is_address: ClassVar[bool] = True

    def __post_init__(self):
        _check_base(self, self.base)
        _check_offset(self, self.offset)

    def with_offset(self, extra: int) -> "Address":
        current = _literal_offset(self, self.offset)
        return Address(self.origin, self.base, Immediate(self.origin, current + extra))

    def children(self) -> list[Node]:
        return [self.base, self.offset]

    def map_children(self, transform: Transform) -> Node:
        return Address(self.origin, transform(self.base), transform(self.offset))

    def dump(self) -> str:
        return f"{self.offset.dump()}[{self.base.dump()}]"


VALID_SCALES = (1, 2, 4, 8)


@dataclass(eq=False, repr=False)
class BaseIndex(Node):
    """
    Memory operand `offset[base, index, scale]`.

    The scale may arrive as a plain int or as a node. A literal scale is
    validated on construction; a scale still bound to a variable is
    validated once substitution turns it into a literal.
    """
    base: Node
    index: Node
    scale: Union[Node, int]
    offset: Node

    is_address: ClassVar[bool] = True

    def __post_init__(self):
        if isinstance(self.scale, int):
            self.scale = Immediate(self.origin, self.scale)
        _check_base(self, self.base)
        if not (isinstance(self.index, Variable) or self.index.is_register):
            raise MalformedNodeError(
                f"bad index for address: {self.index.dump()}", self.origin
            )
        _check_offset(self, self.offset)
        if isinstance(self.scale, Immediate) and self.scale.value not in VALID_SCALES:
            raise MalformedNodeError(
                f"bad scale: {self.scale.value}",
                self.origin,
                hint="scale must be one of 1, 2, 4 or 8",
            )

    @property
    def scale_value(self) -> int:
        if not isinstance(self.scale, Immediate) or self.scale.value not in VALID_SCALES:
            raise MalformedNodeError(f"bad scale: {self.scale.dump()}", self.origin)
        return self.scale.value

    @property
    def scale_shift(self) -> int:
        return VALID_SCALES.index(self.scale_value)

    def with_offset(self, extra: int) -> "BaseIndex":
        current = _literal_offset(self, self.offset)
        return BaseIndex(
            self.origin, self.base, self.index, self.scale,
            Immediate(self.origin, current + extra),
        )

    def children(self) -> list[Node]:
        return [self.base, self.index, self.scale, self.offset]

    def map_children(self, transform: Transform) -> Node:
        return BaseIndex(
            self.origin,
            transform(self.base),
            transform(self.index),
            transform(self.scale),
            transform(self.offset),
        )

    def dump(self) -> str:
        return (
            f"{self.offset.dump()}[{self.base.dump()}, "
            f"{self.index.dump()}, {self.scale.dump()}]"
        )


@dataclass(eq=False, repr=False)
class AbsoluteAddress(Node):
    """Memory operand `address[]`."""
    address: Node

    is_address: ClassVar[bool] = True

    def with_offset(self, extra: int) -> "AbsoluteAddress":
        current = _literal_offset(self, self.address)
        return AbsoluteAddress(self.origin, Immediate(self.origin, current + extra))

    def children(self) -> list[Node]:
        return [self.address]

    def map_children(self, transform: Transform) -> Node:
        return AbsoluteAddress(self.origin, transform(self.address))

    def dump(self) -> str:
        return f"{self.address.dump()}[]"


# =============================================================================
# Labels
# =============================================================================

@dataclass(eq=False, repr=False)
class Label(Node):
    """
    A global label.

    Declaration flags accumulate as the parser sees declarations; the
    SymbolTable enforces that they only ever move one way.

    Attributes:
        name: Symbol name
        defined_in_file: True once the label is defined in this unit
        is_extern: True while the label is only referenced
        is_global: Declared global (visible outside the unit)
        is_aligned: False for unaligned global declarations
        align_to: Explicit trap-padded alignment, None when not declared
        is_export: Exported from the final image
    """
    name: str
    defined_in_file: bool = False
    is_extern: bool = True
    is_global: bool = False
    is_aligned: bool = True
    align_to: Optional[int] = None
    is_export: bool = False

    is_label: ClassVar[bool] = True

    def clear_extern(self) -> None:
        self.is_extern = False

    def set_global(self) -> None:
        self.is_global = True

    def set_global_export(self) -> None:
        self.is_global = True
        self.is_export = True

    def set_unaligned_global(self) -> None:
        self.is_global = True
        self.is_aligned = False

    def set_unaligned_global_export(self) -> None:
        self.is_global = True
        self.is_aligned = False
        self.is_export = True

    def set_aligned(self, align_to: int) -> None:
        # Alignment padding only works on every linker for global symbols.
        self.align_to = align_to
        self.is_aligned = True
        self.is_global = True

    def dump(self) -> str:
        return f"{self.name}:"


@dataclass(eq=False, repr=False)
class LocalLabel(Node):
    name: str

    is_label: ClassVar[bool] = True

    @property
    def clean_name(self) -> str:
        """Name usable as an assembler symbol (leading '.' becomes '_')."""
        if self.name.startswith("."):
            return "_" + self.name[1:]
        return self.name

    def dump(self) -> str:
        return f"{self.name}:"


@dataclass(eq=False, repr=False)
class LabelReference(Node):
    label: Label
    offset: int = 0

    is_immediate: ClassVar[bool] = True

    def __post_init__(self):
        if not isinstance(self.label, Label):
            raise MalformedNodeError(
                f"label reference to non-label {self.label.dump()}", self.origin
            )

    @property
    def name(self) -> str:
        return self.label.name

    @property
    def is_extern(self) -> bool:
        return self.label.is_extern

    def plus_offset(self, additional: int) -> "LabelReference":
        return LabelReference(self.origin, self.label, self.offset + additional)

    def children(self) -> list[Node]:
        return [self.label]

    def map_children(self, transform: Transform) -> Node:
        return LabelReference(self.origin, transform(self.label), self.offset)

    def dump(self) -> str:
        if self.offset:
            return f"{self.label.name} + {self.offset}"
        return self.label.name


@dataclass(eq=False, repr=False)
class LocalLabelReference(Node):
    label: LocalLabel

    def __post_init__(self):
        if not isinstance(self.label, LocalLabel):
            raise MalformedNodeError(
                f"local label reference to non-local-label {self.label.dump()}",
                self.origin,
            )

    @property
    def name(self) -> str:
        return self.label.name

    def children(self) -> list[Node]:
        return [self.label]

    def map_children(self, transform: Transform) -> Node:
        return LocalLabelReference(self.origin, transform(self.label))

    def dump(self) -> str:
        return self.label.name


# =============================================================================
# Statements
# =============================================================================

@dataclass(eq=False, repr=False)
class Instruction(Node):
    opcode: str
    operands: list[Node] = field(default_factory=list)
    annotation: Optional[str] = None

    def clone_with_operands(self, operands: list[Node]) -> "Instruction":
        return Instruction(self.origin, self.opcode, list(operands), self.annotation)

    def children(self) -> list[Node]:
        return list(self.operands)

    def map_children(self, transform: Transform) -> Node:
        return self.clone_with_operands([transform(op) for op in self.operands])

    def dump(self) -> str:
        operands = ", ".join(op.dump() for op in self.operands)
        return f"\t{self.opcode} {operands}".rstrip()


@dataclass(eq=False, repr=False)
class MacroCall(Node):
    """
    Invocation of a named macro with at least one operand.

    Zero-operand invocations are written as a bare Instruction whose
    opcode names the macro; the expansion pass treats both alike.
    """
    name: str
    operands: list[Node]
    annotation: Optional[str] = None
    original_name: Optional[str] = None

    def __post_init__(self):
        if not self.operands:
            raise MalformedNodeError(
                f"macro call '{self.name}' has no operands", self.origin
            )

    @property
    def display_name(self) -> str:
        return self.original_name or self.name

    def children(self) -> list[Node]:
        return list(self.operands)

    def map_children(self, transform: Transform) -> Node:
        return MacroCall(
            self.origin,
            self.name,
            [transform(op) for op in self.operands],
            self.annotation,
            self.original_name,
        )

    def dump(self) -> str:
        operands = ", ".join(op.dump() for op in self.operands)
        return f"\t{self.display_name}({operands})"


@dataclass(eq=False, repr=False)
class Sequence(Node):
    items: list[Node] = field(default_factory=list)

    def children(self) -> list[Node]:
        return list(self.items)

    def map_children(self, transform: Transform) -> Node:
        return Sequence(self.origin, [transform(item) for item in self.items])

    def flattened(self) -> "Sequence":
        """Return a sequence with every nested sequence spliced in place."""
        items: list[Node] = []
        for item in self.items:
            if isinstance(item, Sequence):
                items.extend(item.flattened().items)
            else:
                items.append(item)
        return Sequence(self.origin, items)

    def dump(self) -> str:
        return "\n".join(item.dump() for item in self.items)


@dataclass(eq=False, repr=False)
class Skip(Node):
    def dump(self) -> str:
        return "\tskip"


@dataclass(eq=False, repr=False)
class Error(Node):
    """Statement that traps when reached."""

    def dump(self) -> str:
        return "\terror"


@dataclass(eq=False, repr=False)
class IfThenElse(Node):
    predicate: Node
    then_case: Node
    else_case: Optional[Node] = None

    def __post_init__(self):
        if self.else_case is None:
            self.else_case = Skip(self.origin)

    def children(self) -> list[Node]:
        return [self.predicate, self.then_case, self.else_case]

    def map_children(self, transform: Transform) -> Node:
        return IfThenElse(
            self.origin,
            transform(self.predicate),
            transform(self.then_case),
            transform(self.else_case),
        )

    def dump(self) -> str:
        return (
            f"if {self.predicate.dump()}\n{self.then_case.dump()}\n"
            f"else\n{self.else_case.dump()}\nend"
        )


@dataclass(eq=False, repr=False)
class ConstDecl(Node):
    variable: Variable
    value: Node

    def __post_init__(self):
        if not isinstance(self.variable, Variable):
            raise MalformedNodeError(
                f"const declaration of non-variable {self.variable.dump()}",
                self.origin,
            )

    def children(self) -> list[Node]:
        return [self.variable, self.value]

    def map_children(self, transform: Transform) -> Node:
        return ConstDecl(self.origin, transform(self.variable), transform(self.value))

    def dump(self) -> str:
        return f"const {self.variable.dump()} = {self.value.dump()}"


# =============================================================================
# Definitions
# =============================================================================

@dataclass(eq=False, repr=False)
class Macro(Node):
    """
    A parameterised statement template.

    Attributes:
        name: Macro name, or None for an anonymous macro passed as operand
        variables: Parameter list (interned Variables)
        body: Statement template
    """
    name: Optional[str]
    variables: list[Variable]
    body: Node

    def children(self) -> list[Node]:
        return list(self.variables) + [self.body]

    def map_children(self, transform: Transform) -> Node:
        return Macro(
            self.origin,
            self.name,
            [transform(var) for var in self.variables],
            transform(self.body),
        )

    def dump(self) -> str:
        params = ", ".join(var.dump() for var in self.variables)
        return f"macro {self.name or ''}({params})\n{self.body.dump()}\nend"


# =============================================================================
# Closed Variant Set
# =============================================================================
# Backends check their rule tables against this tuple when they are
# defined, so adding a variant without a lowering rule fails at import.
# =============================================================================

NODE_TYPES: tuple[type, ...] = (
    Immediate, StringLiteral, RegisterID, FPRegisterID, VecRegisterID,
    SpecialRegister, Variable, ConstExpr, Setting, TrueLiteral, FalseLiteral,
    Address, BaseIndex, AbsoluteAddress,
    AddImmediates, SubImmediates, MulImmediates, NegImmediate,
    OrImmediates, AndImmediates, XorImmediates, BitnotImmediate,
    And, Or, Not,
    StructOffset, Sizeof,
    Instruction, MacroCall, Sequence, IfThenElse, Skip, Error, ConstDecl,
    Macro,
    Label, LocalLabel, LabelReference, LocalLabelReference,
)


# =============================================================================
# Analysis Helpers
# =============================================================================

def unique(nodes: list) -> list:
    """Drop repeated nodes (by identity), keeping first occurrence order."""
    seen: set[int] = set()
    result = []
    for node in nodes:
        if id(node) not in seen:
            seen.add(id(node))
            result.append(node)
    return result


def settings_used(tree: Node) -> list[str]:
    """Names of every setting the tree's conditionals depend on, sorted."""
    return sorted({setting.name for setting in tree.filter(Setting)})


def layout_constants_used(tree: Node) -> list[Node]:
    """
    Every StructOffset, Sizeof and ConstExpr in the tree, sorted by name.

    This is the list of host-side layout constants the offsets extractor
    has to provide before the asm backends can emit the tree.
    """
    constants = unique(tree.filter((StructOffset, Sizeof, ConstExpr)))
    return sorted(constants, key=lambda node: node.dump())
