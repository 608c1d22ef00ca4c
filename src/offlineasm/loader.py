"""
JSON Interchange Loader
=======================

Builds an AST from the JSON document the macro-assembly parser writes,
interning every named node through a SymbolTable.

Document Format
---------------
Every node is an object with a "kind" and an optional "origin"
([file, line, column]); a node without an origin inherits its parent's.

    {"kind": "Sequence", "origin": ["test.asm", 1, 1], "items": [
        {"kind": "LabelDeclaration", "name": "_entry", "declaration": "global"},
        {"kind": "Label", "name": "_entry"},
        {"kind": "Instruction", "opcode": "addp", "operands": [
            {"kind": "Immediate", "value": 16},
            {"kind": "RegisterID", "name": "sp"}
        ]},
        {"kind": "Instruction", "opcode": "jmp", "operands": [
            {"kind": "LabelReference", "label": "_entry"}
        ]}
    ]}

Kinds and their fields:

    Immediate value                 StringLiteral value
    RegisterID name                 FPRegisterID name
    VecRegisterID name              SpecialRegister name
    Variable name [original_name]   ConstExpr value
    Setting name                    True, False
    Address base offset             BaseIndex base index scale offset
    AbsoluteAddress address         StructOffset struct field
    Sizeof struct
    AddImmediates, SubImmediates, MulImmediates, OrImmediates,
    AndImmediates, XorImmediates, And, Or     left right
    NegImmediate, BitnotImmediate, Not        child
    Instruction opcode [operands] [annotation]
    MacroCall name operands [annotation] [original_name]
    Sequence items                  IfThenElse predicate then [else]
    Skip, Error                     ConstDecl variable value
    Macro name variables body       Label name
    LocalLabel name                 LabelReference label [offset]
    LocalLabelReference label
    LabelDeclaration name declaration [alignment]

A LabelDeclaration ("extern", "global", "global_export",
"unaligned_global", "unaligned_global_export" or "aligned") updates the
label's flags where it appears and produces no node.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union

from offlineasm.ast import (
    FALSE,
    TRUE,
    AbsoluteAddress,
    AddImmediates,
    Address,
    And,
    AndImmediates,
    BaseIndex,
    BitnotImmediate,
    ConstDecl,
    Error,
    IfThenElse,
    Immediate,
    Instruction,
    LocalLabelReference,
    Macro,
    MacroCall,
    MulImmediates,
    NegImmediate,
    Node,
    Not,
    Or,
    OrImmediates,
    Sequence,
    Skip,
    SpecialRegister,
    StringLiteral,
    SubImmediates,
    XorImmediates,
)
from offlineasm.errors import MalformedNodeError, SourceLocation
from offlineasm.symbols import SymbolTable

logger = logging.getLogger(__name__)


_BINARY_KINDS = {
    "AddImmediates": AddImmediates,
    "SubImmediates": SubImmediates,
    "MulImmediates": MulImmediates,
    "OrImmediates": OrImmediates,
    "AndImmediates": AndImmediates,
    "XorImmediates": XorImmediates,
    "And": And,
    "Or": Or,
}

_UNARY_KINDS = {
    "NegImmediate": NegImmediate,
    "BitnotImmediate": BitnotImmediate,
    "Not": Not,
}


class TreeLoader:
    """
    Converts one JSON document into nodes.

    Attributes:
        table: Symbol table named nodes are interned in
        filename: Origin file used when the document gives none
        nodes_loaded: Count of nodes built so far
    """

    def __init__(self, table: SymbolTable, filename: str = "<json>"):
        self.table = table
        self.filename = filename
        self.nodes_loaded = 0
        self._builders: dict[str, Callable[[dict, SourceLocation], Node]] = {
            "Immediate": self._immediate,
            "StringLiteral": lambda d, o: StringLiteral(o, str(self._field(d, "value", o))),
            "RegisterID": lambda d, o: self.table.register(self._name(d, o), o),
            "FPRegisterID": lambda d, o: self.table.fp_register(self._name(d, o), o),
            "VecRegisterID": lambda d, o: self.table.vec_register(self._name(d, o), o),
            "SpecialRegister": lambda d, o: SpecialRegister(o, self._name(d, o)),
            "Variable": self._variable,
            "ConstExpr": lambda d, o: self.table.const_expr(str(self._field(d, "value", o)), o),
            "Setting": lambda d, o: self.table.setting(self._name(d, o), o),
            "True": lambda d, o: TRUE,
            "False": lambda d, o: FALSE,
            "Address": self._address,
            "BaseIndex": self._base_index,
            "AbsoluteAddress": lambda d, o: AbsoluteAddress(o, self._child(d, "address", o)),
            "StructOffset": lambda d, o: self.table.struct_offset(
                self._field(d, "struct", o), self._field(d, "field", o), o
            ),
            "Sizeof": lambda d, o: self.table.sizeof(self._field(d, "struct", o), o),
            "Instruction": self._instruction,
            "MacroCall": self._macro_call,
            "Sequence": lambda d, o: Sequence(o, self._children(d, "items", o)),
            "IfThenElse": self._if_then_else,
            "Skip": lambda d, o: Skip(o),
            "Error": lambda d, o: Error(o),
            "ConstDecl": self._const_decl,
            "Macro": self._macro,
            "Label": lambda d, o: self.table.label_definition(self._name(d, o), o),
            "LocalLabel": lambda d, o: self.table.local_label(self._name(d, o), o),
            "LabelReference": lambda d, o: self.table.label_reference(
                self._field(d, "label", o), o, int(d.get("offset", 0))
            ),
            "LocalLabelReference": lambda d, o: LocalLabelReference(
                o, self.table.local_label(self._field(d, "label", o), o)
            ),
            "LabelDeclaration": self._label_declaration,
        }
        for kind, node_type in _BINARY_KINDS.items():
            self._builders[kind] = self._binary_builder(node_type)
        for kind, node_type in _UNARY_KINDS.items():
            self._builders[kind] = self._unary_builder(node_type)

    # =========================================================================
    # Entry Point
    # =========================================================================

    def load(self, document: Any, parent: Optional[SourceLocation] = None) -> Node:
        if not isinstance(document, dict):
            raise MalformedNodeError(
                f"expected a node object, got {type(document).__name__}",
                parent,
            )
        origin = self._origin(document, parent)
        kind = document.get("kind")
        builder = self._builders.get(kind)
        if builder is None:
            raise MalformedNodeError(
                f"unknown node kind {kind!r}",
                origin,
                hint=f"expected one of {', '.join(sorted(self._builders))}",
            )
        self.nodes_loaded += 1
        return builder(document, origin)

    # =========================================================================
    # Field Access
    # =========================================================================

    def _origin(self, document: dict, parent: Optional[SourceLocation]) -> SourceLocation:
        raw = document.get("origin")
        if raw is None:
            return parent or SourceLocation(self.filename, 0, 0)
        if isinstance(raw, dict):
            return SourceLocation(
                str(raw.get("file", self.filename)),
                int(raw.get("line", 0)),
                int(raw.get("column", 0)),
            )
        if isinstance(raw, (list, tuple)) and 1 <= len(raw) <= 3:
            filename, line, column = (list(raw) + [0, 0])[:3]
            return SourceLocation(str(filename), int(line), int(column))
        raise MalformedNodeError(f"bad origin {raw!r}", parent)

    def _field(self, document: dict, key: str, origin: SourceLocation) -> Any:
        if key not in document:
            raise MalformedNodeError(
                f"{document.get('kind')} node is missing field '{key}'", origin
            )
        return document[key]

    def _name(self, document: dict, origin: SourceLocation) -> str:
        return str(self._field(document, "name", origin))

    def _child(self, document: dict, key: str, origin: SourceLocation) -> Node:
        return self.load(self._field(document, key, origin), origin)

    def _children(self, document: dict, key: str, origin: SourceLocation) -> list[Node]:
        items = self._field(document, key, origin)
        if not isinstance(items, list):
            raise MalformedNodeError(f"field '{key}' must be a list", origin)
        return [self.load(item, origin) for item in items]

    # =========================================================================
    # Builders
    # =========================================================================

    def _immediate(self, document: dict, origin: SourceLocation) -> Immediate:
        value = self._field(document, "value", origin)
        if isinstance(value, str):
            try:
                value = int(value, 0)
            except ValueError:
                raise MalformedNodeError(f"bad immediate {value!r}", origin) from None
        return Immediate(origin, int(value))

    def _variable(self, document: dict, origin: SourceLocation) -> Node:
        return self.table.variable(
            self._name(document, origin), origin, document.get("original_name")
        )

    def _address(self, document: dict, origin: SourceLocation) -> Address:
        return Address(
            origin,
            self._child(document, "base", origin),
            self._child(document, "offset", origin),
        )

    def _base_index(self, document: dict, origin: SourceLocation) -> BaseIndex:
        scale = self._field(document, "scale", origin)
        if isinstance(scale, dict):
            scale = self.load(scale, origin)
        return BaseIndex(
            origin,
            self._child(document, "base", origin),
            self._child(document, "index", origin),
            scale,
            self._child(document, "offset", origin),
        )

    def _binary_builder(self, node_type: type) -> Callable[[dict, SourceLocation], Node]:
        def build(document: dict, origin: SourceLocation) -> Node:
            return node_type(
                origin,
                self._child(document, "left", origin),
                self._child(document, "right", origin),
            )
        return build

    def _unary_builder(self, node_type: type) -> Callable[[dict, SourceLocation], Node]:
        def build(document: dict, origin: SourceLocation) -> Node:
            return node_type(origin, self._child(document, "child", origin))
        return build

    def _instruction(self, document: dict, origin: SourceLocation) -> Instruction:
        operands = self._children(document, "operands", origin) if "operands" in document else []
        return Instruction(
            origin,
            str(self._field(document, "opcode", origin)),
            operands,
            document.get("annotation"),
        )

    def _macro_call(self, document: dict, origin: SourceLocation) -> MacroCall:
        return MacroCall(
            origin,
            self._name(document, origin),
            self._children(document, "operands", origin),
            document.get("annotation"),
            document.get("original_name"),
        )

    def _if_then_else(self, document: dict, origin: SourceLocation) -> IfThenElse:
        else_case = None
        if document.get("else") is not None:
            else_case = self.load(document["else"], origin)
        return IfThenElse(
            origin,
            self._child(document, "predicate", origin),
            self._child(document, "then", origin),
            else_case,
        )

    def _const_decl(self, document: dict, origin: SourceLocation) -> ConstDecl:
        variable = self._field(document, "variable", origin)
        if isinstance(variable, str):
            variable = self.table.variable(variable, origin)
        else:
            variable = self.load(variable, origin)
        return ConstDecl(origin, variable, self._child(document, "value", origin))

    def _macro(self, document: dict, origin: SourceLocation) -> Macro:
        variables = []
        for variable in self._field(document, "variables", origin):
            if isinstance(variable, str):
                variables.append(self.table.variable(variable, origin))
            else:
                variables.append(self.load(variable, origin))
        return Macro(
            origin,
            document.get("name"),
            variables,
            self._child(document, "body", origin),
        )

    def _label_declaration(self, document: dict, origin: SourceLocation) -> Skip:
        name = self._name(document, origin)
        declaration = self._field(document, "declaration", origin)
        if declaration == "extern":
            self.table.note_label_use(self.table.label(name, origin))
        elif declaration == "global":
            self.table.declare_global(name, origin)
        elif declaration == "global_export":
            self.table.declare_global_export(name, origin)
        elif declaration == "unaligned_global":
            self.table.declare_unaligned_global(name, origin)
        elif declaration == "unaligned_global_export":
            self.table.declare_unaligned_global_export(name, origin)
        elif declaration == "aligned":
            alignment = int(self._field(document, "alignment", origin))
            self.table.declare_aligned(name, alignment, origin)
        else:
            raise MalformedNodeError(f"unknown label declaration {declaration!r}", origin)
        return Skip(origin)


def load_tree(
    document: Any,
    table: SymbolTable,
    filename: str = "<json>",
) -> Node:
    """Build an AST from a decoded JSON document."""
    loader = TreeLoader(table, filename)
    tree = loader.load(document)
    logger.debug(f"Loaded {loader.nodes_loaded} nodes from {filename}")
    return tree


def load_file(path: Union[str, Path], table: SymbolTable) -> Node:
    """Read and build an AST from a JSON interchange file."""
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        document = json.load(f)
    return load_tree(document, table, path.name)
