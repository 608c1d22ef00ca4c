"""
C++ Backend
===========

Renders a tree as C++ that builds the same program at host start-up,
against the CodeGen.h runtime used by the generic interpreter loop
(C_LOOP).

Renderings:

    Address(b, o)               address(b, o)
    BaseIndex(b, i, s, o)       BaseIndex(b, i, s, o)
    (a + b)                     a + b
    And / Or / Not              a && b / a || b / !a
    ConstDecl                   const auto v = value
    Error                       { puts("..."); std::exit(1); }
    IfThenElse                  #if (p) ... #elif ... #else // p ... #endif // p
    Instruction                 opcode(operands..., annotation)
    Label                       auto n = label("n")->inFile()->global()...
    LabelReference              "n"
    Macro                       [&](auto a, ...) -> Code { ... }
    MacroCall                   name(operands...)
    Sequence                    statements joined with ";\\n", trailing ";"

Registers keep their logical names, which CodeGen.h binds to physical
ones. Conditionals are left to the C++ preprocessor when the tree has
not been folded, and `break` is spelled `_break` because it is a C++
keyword.
"""

import re

from offlineasm.ast import (
    AbsoluteAddress,
    Address,
    BaseIndex,
    ConstDecl,
    ConstExpr,
    Error,
    FalseLiteral,
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
    Setting,
    Sizeof,
    Skip,
    SpecialRegister,
    StringLiteral,
    StructOffset,
    TrueLiteral,
    Variable,
)
from offlineasm.backends.base import Backend

_CPP_KEYWORDS = {"break": "_break"}


def cpp_identifier(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_]", "_", name)


class CppBackend(Backend):
    name = "C_LOOP"

    def frame(self, statements: list[str]) -> list[str]:
        text = self.join(statements)
        return text.split("\n") if text else []

    def render(self, node: Node) -> str:
        """Render a node (statements joined) as one C++ text."""
        lowered = self.lower(node)
        if isinstance(lowered, list):
            return self.join(lowered)
        return lowered

    def join(self, statements: list[str]) -> str:
        statements = [s for s in statements if s]
        if not statements:
            return ""
        return ";\n".join(statements) + ";"

    def raw_line(self, text: str) -> str:
        return f'emit("{text}")'

    # =========================================================================
    # Leaf Values
    # =========================================================================

    def lower_immediate(self, node: Immediate) -> str:
        return str(node.value)

    def lower_string_literal(self, node: StringLiteral) -> str:
        return f'"{node.value}"'

    def _name(self, node: Node) -> str:
        return self.configuration.register_name(node.name) or node.name

    lower_register_id = _name
    lower_fp_register_id = _name
    lower_vec_register_id = _name

    def lower_special_register(self, node: SpecialRegister) -> str:
        return node.name

    def lower_variable(self, node: Variable) -> str:
        return node.name

    def lower_const_expr(self, node: ConstExpr) -> str:
        return node.value

    def lower_setting(self, node: Setting) -> str:
        return node.name

    def lower_true_literal(self, node: TrueLiteral) -> str:
        return "true"

    def lower_false_literal(self, node: FalseLiteral) -> str:
        return "false"

    def lower_struct_offset(self, node: StructOffset) -> str:
        return f"StructOffset({node.struct_name}, {node.field})"

    def lower_sizeof(self, node: Sizeof) -> str:
        return f"sizeof({node.struct_name})"

    # =========================================================================
    # Expressions
    # =========================================================================

    _INFIX = {"and": "&&", "or": "||"}
    _PREFIX = {"not ": "!"}

    def _binary(self, node: Node) -> str:
        operator = self._INFIX.get(node.operator, node.operator)
        return f"{self.lower(node.left)} {operator} {self.lower(node.right)}"

    def _unary(self, node: Node) -> str:
        operator = self._PREFIX.get(node.operator, node.operator)
        return f"{operator}{self.lower(node.child)}"

    lower_add_immediates = _binary
    lower_sub_immediates = _binary
    lower_mul_immediates = _binary
    lower_or_immediates = _binary
    lower_and_immediates = _binary
    lower_xor_immediates = _binary
    lower_neg_immediate = _unary
    lower_bitnot_immediate = _unary
    lower_and = _binary
    lower_or = _binary
    lower_not = _unary

    def lower_address(self, node: Address) -> str:
        return f"address({self.lower(node.base)}, {self.lower(node.offset)})"

    def lower_base_index(self, node: BaseIndex) -> str:
        parts = [node.base, node.index, node.scale, node.offset]
        return f"BaseIndex({', '.join(self.lower(part) for part in parts)})"

    def lower_absolute_address(self, node: AbsoluteAddress) -> str:
        return f"AbsoluteAddress({self.lower(node.address)})"

    # =========================================================================
    # Labels
    # =========================================================================

    def lower_label(self, node: Label) -> str:
        text = f'auto {cpp_identifier(node.name)} = label("{node.name}")'
        if node.defined_in_file:
            text += "->inFile()"
        if node.is_global:
            text += "->global()"
        if node.align_to is not None:
            text += f"->aligned({node.align_to})"
        if node.is_extern:
            text += "->extern_()"
        return text

    def lower_local_label(self, node: LocalLabel) -> str:
        return f'label("{node.name}")'

    def lower_label_reference(self, node: LabelReference) -> str:
        self.note_reference(node.label)
        return f'"{node.name}"'

    def lower_local_label_reference(self, node: LocalLabelReference) -> str:
        return f'"{node.name}"'

    # =========================================================================
    # Statements
    # =========================================================================

    def lower_opcode(self, node: Instruction) -> str:
        opcode = _CPP_KEYWORDS.get(node.opcode, node.opcode)
        arguments = [self.lower(op) for op in node.operands]
        if node.annotation:
            arguments.append(f'"{node.annotation}"')
        return f"{opcode}({', '.join(arguments)})"

    def lower_instruction(self, node: Instruction) -> list[str]:
        lowered = super().lower_instruction(node)
        return lowered if isinstance(lowered, list) else [lowered]

    def lower_macro_call(self, node: MacroCall) -> str:
        arguments = ", ".join(self.lower(op) for op in node.operands)
        call = f"{node.name}({arguments})"
        if node.annotation:
            return f"/* {node.annotation} */ {call}"
        return call

    def lower_macro(self, node: Macro) -> str:
        params = ", ".join(f"auto {self.lower(var)}" for var in node.variables)
        body = self.render(node.body)
        prefix = f"auto {node.name} = " if node.name else ""
        return (
            f"{prefix}[&]({params}) -> Code {{\n"
            f"CodeCollectionScope __;\n"
            f"{{\n{body}\n}}\n"
            f"return __.code();\n"
            f"}}"
        )

    def lower_const_decl(self, node: ConstDecl) -> str:
        return f"const auto {self.lower(node.variable)} = {self.lower(node.value)}"

    def lower_error(self, node: Error) -> str:
        return f'{{ puts("error at {node.origin}"); std::exit(1); }}'

    def lower_skip(self, node: Skip) -> list[str]:
        return []

    def lower_if_then_else(self, node: IfThenElse) -> str:
        return "\n" + self._conditional(node, "#if")

    def _conditional(self, node: IfThenElse, directive: str) -> str:
        predicate = self.lower(node.predicate)
        text = f"{directive} ({predicate})\n{self.render(node.then_case)}\n"
        if isinstance(node.else_case, IfThenElse):
            return text + self._conditional(node.else_case, "#elif")
        if not isinstance(node.else_case, Skip):
            text += f"#else // {predicate}\n{self.render(node.else_case)}\n"
        return text + f"#endif // {predicate}\n"

