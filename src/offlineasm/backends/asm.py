"""
Inline Assembly Backends
========================

Lower a folded, expanded tree to the inline-assembly text the
interpreter's C++ translation unit includes.

Output Format
-------------
    OFFLINE_ASM_BEGIN
    OFFLINE_ASM_GLOBAL_LABEL(_ipint_trampoline)
    "\\tb " SYMBOL_STRING(_ipint_entry) "\\n"
    OFFLINE_ASM_LOCAL_LABEL(_offlineasm__doTest__success)
    "\\tadd x8, x8, #16\\n" // annotation
    OFFLINE_ASM_END

Each instruction is one C string literal line. Label uses are spliced
out of the literal (`" SYMBOL_STRING(name) "`) so the host's symbol
decoration applies.

Label declarations follow the accumulated label flags:

    global, aligned to n          OFFLINE_ASM_ALIGNED_GLOBAL_LABEL(name, n)
    global, unaligned             OFFLINE_ASM_UNALIGNED_GLOBAL_LABEL(name)
    global, unaligned, export     OFFLINE_ASM_UNALIGNED_GLOBAL_EXPORT_LABEL(name)
    global, export                OFFLINE_ASM_GLOBAL_EXPORT_LABEL(name)
    global                        OFFLINE_ASM_GLOBAL_LABEL(name)
    not global                    OFFLINE_ASM_GLUE_LABEL(name)

Immediate arithmetic is evaluated here. StructOffset, Sizeof and
ConstExpr values come from Configuration.layout.

Opcodes
-------
Each architecture implements the opcodes it supports as `op_<opcode>`
methods:

    addp subp addq subq move push pop loadp loadq storep storeq
    loadpairq storepairq break jmp call ret bpeq bpneq nop

ARMv7 has no 64-bit `q` forms. Any other opcode is an
UnhandledOpcodeError.
"""

from typing import ClassVar, Optional

from offlineasm.ast import (
    AbsoluteAddress,
    Address,
    AddImmediates,
    AndImmediates,
    BaseIndex,
    BitnotImmediate,
    ConstDecl,
    ConstExpr,
    Error,
    FPRegisterID,
    IfThenElse,
    Immediate,
    Instruction,
    Label,
    LabelReference,
    LocalLabel,
    LocalLabelReference,
    Macro,
    MacroCall,
    MulImmediates,
    NegImmediate,
    Node,
    OrImmediates,
    RegisterID,
    Sizeof,
    Skip,
    SpecialRegister,
    StringLiteral,
    StructOffset,
    SubImmediates,
    Variable,
    VecRegisterID,
    XorImmediates,
)
from offlineasm.backends.base import Backend
from offlineasm.errors import EmissionError, UnboundVariableError, UnhandledOpcodeError

_BINARY_OPERATORS = {
    AddImmediates: lambda a, b: a + b,
    SubImmediates: lambda a, b: a - b,
    MulImmediates: lambda a, b: a * b,
    OrImmediates: lambda a, b: a | b,
    AndImmediates: lambda a, b: a & b,
    XorImmediates: lambda a, b: a ^ b,
}

_REGISTER_TYPES = (RegisterID, FPRegisterID, VecRegisterID, SpecialRegister)
_LABEL_TYPES = (LabelReference, LocalLabelReference)


def local_symbol(label: LocalLabel) -> str:
    return f"_offlineasm_{label.clean_name}"


def is_register(node: Node) -> bool:
    return isinstance(node, _REGISTER_TYPES)


def is_label(node: Node) -> bool:
    return isinstance(node, _LABEL_TYPES)


def is_immediate(node: Node) -> bool:
    return node.is_immediate and not is_label(node)


class AsmBackend(Backend, abstract=True):
    """
    Rules shared by every inline-assembly architecture.

    Subclasses supply the addressing-mode renderings, immediate syntax,
    the trap instruction and their op_<opcode> methods.
    """

    trap: ClassVar[str] = "brk"

    # =========================================================================
    # Framing and Lines
    # =========================================================================

    def frame(self, statements: list[str]) -> list[str]:
        return ["OFFLINE_ASM_BEGIN", *statements, "OFFLINE_ASM_END"]

    def format_line(self, text: str, annotation: Optional[str] = None) -> str:
        line = f'"\\t{text}\\n"'
        if annotation:
            line += f" // {annotation}"
        return line

    def raw_line(self, text: str) -> str:
        return f'"{text}\\n"'

    def instructions(self, node: Instruction, texts: list[str]) -> list[str]:
        lines = []
        for i, text in enumerate(texts):
            lines.append(self.format_line(text, node.annotation if i == 0 else None))
        return lines

    def lower_opcode(self, node: Instruction) -> list[str]:
        method = getattr(self, f"op_{node.opcode}", None)
        if method is None:
            raise UnhandledOpcodeError(node.opcode, self.name, node.origin, node.dump())
        return self.instructions(node, method(node))

    # =========================================================================
    # Evaluation
    # =========================================================================

    def evaluate(self, node: Node) -> int:
        """Value of an immediate expression, with layout constants resolved."""
        if isinstance(node, Immediate):
            return node.value
        if isinstance(node, (StructOffset, Sizeof, ConstExpr)):
            value = self.configuration.layout_value(node.key)
            if value is None:
                raise EmissionError(
                    f"no layout value for '{node.key}'",
                    node.origin,
                    hint="add it to the layout table of the configuration",
                )
            return value
        operator = _BINARY_OPERATORS.get(type(node))
        if operator is not None:
            return operator(self.evaluate(node.left), self.evaluate(node.right))
        if isinstance(node, NegImmediate):
            return -self.evaluate(node.child)
        if isinstance(node, BitnotImmediate):
            return ~self.evaluate(node.child)
        if isinstance(node, Variable):
            raise UnboundVariableError(node.display_name, node.origin, node.dump())
        raise EmissionError(
            f"expected an immediate, got {node.dump()}", node.origin
        )

    def format_immediate(self, value: int) -> str:
        return str(value)

    def shifted(self, node: Node, extra: int) -> Node:
        """Memory operand `extra` bytes past `node`."""
        if isinstance(node, Address):
            offset = Immediate(node.origin, self.evaluate(node.offset) + extra)
            return Address(node.origin, node.base, offset)
        if isinstance(node, BaseIndex):
            offset = Immediate(node.origin, self.evaluate(node.offset) + extra)
            return BaseIndex(node.origin, node.base, node.index, node.scale, offset)
        if isinstance(node, AbsoluteAddress):
            return AbsoluteAddress(node.origin, Immediate(node.origin, self.evaluate(node.address) + extra))
        raise EmissionError(f"expected a memory operand, got {node.dump()}", node.origin)

    # =========================================================================
    # Operand Checks
    # =========================================================================

    def register(self, node: Node, instruction: Instruction) -> str:
        if isinstance(node, Variable):
            raise UnboundVariableError(node.display_name, node.origin, instruction.dump())
        if not is_register(node):
            raise EmissionError(
                f"'{instruction.opcode}' expects a register, got {node.dump()}",
                instruction.origin,
                construct=instruction.dump(),
            )
        return self.lower(node)

    def memory(self, node: Node, instruction: Instruction) -> Node:
        if not node.is_address:
            raise EmissionError(
                f"'{instruction.opcode}' expects a memory operand, got {node.dump()}",
                instruction.origin,
                construct=instruction.dump(),
            )
        return node

    def target(self, node: Node, instruction: Instruction) -> str:
        if not is_label(node):
            raise EmissionError(
                f"'{instruction.opcode}' expects a label, got {node.dump()}",
                instruction.origin,
                construct=instruction.dump(),
            )
        return self.lower(node)

    # =========================================================================
    # Leaf Values
    # =========================================================================

    def lower_immediate(self, node: Immediate) -> str:
        return self.format_immediate(node.value)

    def lower_string_literal(self, node: StringLiteral) -> str:
        raise EmissionError("string literal outside 'emit'", node.origin, construct=node.dump())

    def _physical(self, node: Node) -> str:
        physical = self.configuration.register_name(node.name)
        if physical is None:
            raise EmissionError(
                f"register '{node.name}' does not exist on {self.name}",
                node.origin,
            )
        return physical

    def lower_register_id(self, node: RegisterID) -> str:
        return self._physical(node)

    def lower_fp_register_id(self, node: FPRegisterID) -> str:
        return self._physical(node)

    def lower_vec_register_id(self, node: VecRegisterID) -> str:
        return self._physical(node)

    def lower_special_register(self, node: SpecialRegister) -> str:
        return node.name

    def lower_variable(self, node: Variable) -> str:
        raise UnboundVariableError(node.display_name, node.origin, node.dump())

    def _unfolded(self, node: Node) -> str:
        raise EmissionError(
            "configuration expression reached emission unfolded",
            node.origin,
            hint="run the configuration folding pass first",
            construct=node.dump(),
        )

    lower_setting = _unfolded
    lower_true_literal = _unfolded
    lower_false_literal = _unfolded
    lower_and = _unfolded
    lower_or = _unfolded
    lower_not = _unfolded

    def _evaluated(self, node: Node) -> str:
        return self.format_immediate(self.evaluate(node))

    lower_const_expr = _evaluated
    lower_struct_offset = _evaluated
    lower_sizeof = _evaluated
    lower_add_immediates = _evaluated
    lower_sub_immediates = _evaluated
    lower_mul_immediates = _evaluated
    lower_or_immediates = _evaluated
    lower_and_immediates = _evaluated
    lower_xor_immediates = _evaluated
    lower_neg_immediate = _evaluated
    lower_bitnot_immediate = _evaluated

    # =========================================================================
    # Labels
    # =========================================================================

    def lower_label(self, node: Label) -> list[str]:
        name = node.name
        if not node.is_global:
            return [f"OFFLINE_ASM_GLUE_LABEL({name})"]
        if node.align_to is not None:
            return [f"OFFLINE_ASM_ALIGNED_GLOBAL_LABEL({name}, {node.align_to})"]
        if not node.is_aligned:
            if node.is_export:
                return [f"OFFLINE_ASM_UNALIGNED_GLOBAL_EXPORT_LABEL({name})"]
            return [f"OFFLINE_ASM_UNALIGNED_GLOBAL_LABEL({name})"]
        if node.is_export:
            return [f"OFFLINE_ASM_GLOBAL_EXPORT_LABEL({name})"]
        return [f"OFFLINE_ASM_GLOBAL_LABEL({name})"]

    def lower_local_label(self, node: LocalLabel) -> list[str]:
        return [f"OFFLINE_ASM_LOCAL_LABEL({local_symbol(node)})"]

    def lower_label_reference(self, node: LabelReference) -> str:
        self.note_reference(node.label)
        reference = f'" SYMBOL_STRING({node.name}) "'
        if node.offset:
            reference += f" + {node.offset}"
        return reference

    def lower_local_label_reference(self, node: LocalLabelReference) -> str:
        return f'" LOCAL_LABEL_STRING({local_symbol(node.label)}) "'

    # =========================================================================
    # Statements
    # =========================================================================

    def lower_skip(self, node: Skip) -> list[str]:
        return []

    def lower_const_decl(self, node: ConstDecl) -> list[str]:
        return []

    def lower_error(self, node: Error) -> list[str]:
        return [self.format_line(self.trap)]

    def lower_if_then_else(self, node: IfThenElse) -> list[str]:
        raise EmissionError(
            "conditional reached emission unfolded",
            node.origin,
            hint="run the configuration folding pass first",
            construct=f"if {node.predicate.dump()}",
        )

    def lower_macro(self, node: Macro) -> list[str]:
        raise EmissionError(
            f"macro '{node.name or '<anonymous>'}' reached emission",
            node.origin,
            hint="run the macro expansion pass first",
        )

    def lower_macro_call(self, node: MacroCall) -> list[str]:
        raise EmissionError(
            f"unexpanded invocation of macro '{node.display_name}'",
            node.origin,
            hint="run the macro expansion pass first",
            construct=node.dump(),
        )

    def lower_address(self, node: Address) -> str:
        raise EmissionError(f"{self.name} cannot address {node.dump()}", node.origin)

    def lower_base_index(self, node: BaseIndex) -> str:
        raise EmissionError(f"{self.name} cannot address {node.dump()}", node.origin)

    def lower_absolute_address(self, node: AbsoluteAddress) -> str:
        raise EmissionError(
            f"absolute addresses are not supported on {self.name}",
            node.origin,
            construct=node.dump(),
        )

    def op_break(self, node: Instruction) -> list[str]:
        self.check_operands(node, 0)
        return [self.trap]

    def op_nop(self, node: Instruction) -> list[str]:
        self.check_operands(node, 0)
        return ["nop"]


# =============================================================================
# ARM64
# =============================================================================

def _fits_unsigned(value: int, bits: int) -> bool:
    return 0 <= value < (1 << bits)


def _fits_signed(value: int, bits: int) -> bool:
    return -(1 << (bits - 1)) <= value < (1 << (bits - 1))


class ARM64Backend(AsmBackend):
    name = "ARM64"
    trap = "brk #0xc471"
    scratch = "x17"
    address_scratch = "x16"

    def format_immediate(self, value: int) -> str:
        return f"#{value}"

    def lower_address(self, node: Address) -> str:
        base = self.lower(node.base)
        return f"[{base}, #{self.evaluate(node.offset)}]"

    def lower_base_index(self, node: BaseIndex) -> str:
        # Register-offset form: the shift is either 0 or the 8-byte access size
        if self.evaluate(node.offset) != 0 or node.scale_value not in (1, 8):
            raise EmissionError(
                "ARM64 register-offset addressing takes scale 1 or 8 and no offset",
                node.origin,
                construct=node.dump(),
            )
        base = self.lower(node.base)
        index = self.lower(node.index)
        if node.scale_value == 1:
            return f"[{base}, {index}]"
        return f"[{base}, {index}, lsl #3]"

    def _memory_operand(
        self, node: Node, instruction: Instruction, pair: bool = False
    ) -> tuple[list[str], str]:
        """Address text plus any lines needed to form it in x16."""
        memory = self.memory(node, instruction)
        if not isinstance(memory, BaseIndex):
            return [], self.lower(memory)
        offset = self.evaluate(memory.offset)
        if not pair and offset == 0 and memory.scale_value in (1, 8):
            return [], self.lower(memory)
        base = self.lower(memory.base)
        index = self.lower(memory.index)
        return [
            f"add {self.address_scratch}, {base}, {index}, lsl #{memory.scale_shift}"
        ], f"[{self.address_scratch}, #{offset}]"

    def materialize(self, value: int, destination: str) -> list[str]:
        if -(1 << 16) < value < (1 << 16):
            return [f"mov {destination}, #{value}"]
        bits = value & 0xFFFF_FFFF_FFFF_FFFF
        lines = [f"movz {destination}, #{bits & 0xFFFF}"]
        for shift in (16, 32, 48):
            chunk = (bits >> shift) & 0xFFFF
            if chunk:
                lines.append(f"movk {destination}, #{chunk}, lsl #{shift}")
        return lines

    def _arithmetic(self, node: Instruction, mnemonic: str, inverse: str) -> list[str]:
        self.check_operands(node, 2, 3)
        source = node.operands[0]
        left = self.register(node.operands[1], node)
        destination = self.register(node.operands[-1], node)
        if not is_immediate(source):
            return [f"{mnemonic} {destination}, {left}, {self.register(source, node)}"]
        value = self.evaluate(source)
        if _fits_unsigned(value, 12):
            return [f"{mnemonic} {destination}, {left}, #{value}"]
        if _fits_unsigned(-value, 12):
            return [f"{inverse} {destination}, {left}, #{-value}"]
        return self.materialize(value, self.scratch) + [
            f"{mnemonic} {destination}, {left}, {self.scratch}"
        ]

    def op_addp(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, "add", "sub")

    def op_addq(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, "add", "sub")

    def op_subp(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, "sub", "add")

    def op_subq(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, "sub", "add")

    def op_move(self, node: Instruction) -> list[str]:
        self.check_operands(node, 2)
        source, destination = node.operands
        destination = self.register(destination, node)
        if is_label(source):
            return [f"adr {destination}, {self.lower(source)}"]
        if is_immediate(source):
            return self.materialize(self.evaluate(source), destination)
        return [f"mov {destination}, {self.register(source, node)}"]

    def op_push(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1, 2)
        registers = [self.register(op, node) for op in node.operands]
        if len(registers) == 2:
            return [f"stp {registers[0]}, {registers[1]}, [sp, #-16]!"]
        return [f"str {registers[0]}, [sp, #-16]!"]

    def op_pop(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1, 2)
        registers = [self.register(op, node) for op in node.operands]
        if len(registers) == 2:
            return [f"ldp {registers[1]}, {registers[0]}, [sp], #16"]
        return [f"ldr {registers[0]}, [sp], #16"]

    def _load(self, node: Instruction) -> list[str]:
        self.check_operands(node, 2)
        lines, address = self._memory_operand(node.operands[0], node)
        return lines + [f"ldr {self.register(node.operands[1], node)}, {address}"]

    def _store(self, node: Instruction) -> list[str]:
        self.check_operands(node, 2)
        source = node.operands[0]
        lines, address = self._memory_operand(node.operands[1], node)
        if is_immediate(source):
            value = self.evaluate(source)
            if value == 0:
                return lines + [f"str xzr, {address}"]
            return self.materialize(value, self.scratch) + lines + [f"str {self.scratch}, {address}"]
        return lines + [f"str {self.register(source, node)}, {address}"]

    op_loadp = _load
    op_loadq = _load
    op_storep = _store
    op_storeq = _store

    def op_loadpairq(self, node: Instruction) -> list[str]:
        self.check_operands(node, 3)
        lines, address = self._memory_operand(node.operands[0], node, pair=True)
        first = self.register(node.operands[1], node)
        second = self.register(node.operands[2], node)
        return lines + [f"ldp {first}, {second}, {address}"]

    def op_storepairq(self, node: Instruction) -> list[str]:
        self.check_operands(node, 3)
        first = self.register(node.operands[0], node)
        second = self.register(node.operands[1], node)
        lines, address = self._memory_operand(node.operands[2], node, pair=True)
        return lines + [f"stp {first}, {second}, {address}"]

    def op_jmp(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1)
        if is_register(node.operands[0]):
            return [f"br {self.lower(node.operands[0])}"]
        return [f"b {self.target(node.operands[0], node)}"]

    def op_call(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1)
        if is_register(node.operands[0]):
            return [f"blr {self.lower(node.operands[0])}"]
        return [f"bl {self.target(node.operands[0], node)}"]

    def op_ret(self, node: Instruction) -> list[str]:
        self.check_operands(node, 0)
        return ["ret"]

    def _compare_and_branch(self, node: Instruction, condition: str) -> list[str]:
        self.check_operands(node, 3)
        left, right, target = node.operands
        if is_immediate(left) and not is_immediate(right):
            left, right = right, left
        lines: list[str] = []
        left = self.register(left, node)
        if is_immediate(right):
            value = self.evaluate(right)
            if _fits_unsigned(value, 12):
                lines.append(f"cmp {left}, #{value}")
            else:
                lines.extend(self.materialize(value, self.scratch))
                lines.append(f"cmp {left}, {self.scratch}")
        else:
            lines.append(f"cmp {left}, {self.register(right, node)}")
        lines.append(f"b.{condition} {self.target(target, node)}")
        return lines

    def op_bpeq(self, node: Instruction) -> list[str]:
        return self._compare_and_branch(node, "eq")

    def op_bpneq(self, node: Instruction) -> list[str]:
        return self._compare_and_branch(node, "ne")


class ARM64EBackend(ARM64Backend):
    """ARM64 with pointer authentication; the pointer tag opcodes are no-ops."""
    name = "ARM64E"


# =============================================================================
# X86_64 (AT&T syntax)
# =============================================================================

class X86_64Backend(AsmBackend):
    name = "X86_64"
    trap = "int $3"
    scratch = "%r11"

    def format_immediate(self, value: int) -> str:
        return f"${value}"

    def lower_address(self, node: Address) -> str:
        return f"{self.evaluate(node.offset)}({self.lower(node.base)})"

    def lower_base_index(self, node: BaseIndex) -> str:
        base = self.lower(node.base)
        index = self.lower(node.index)
        return f"{self.evaluate(node.offset)}({base}, {index}, {node.scale_value})"

    def lower_absolute_address(self, node: AbsoluteAddress) -> str:
        return str(self.evaluate(node.address))

    def _source(self, node: Node, instruction: Instruction) -> tuple[list[str], str]:
        """Source operand, loading wide immediates into the scratch register."""
        if is_immediate(node):
            value = self.evaluate(node)
            if _fits_signed(value, 32):
                return [], f"${value}"
            return [f"movabsq ${value}, {self.scratch}"], self.scratch
        return [], self.register(node, instruction)

    def _arithmetic(self, node: Instruction, mnemonic: str) -> list[str]:
        self.check_operands(node, 2, 3)
        source = node.operands[0]
        left = self.register(node.operands[1], node)
        destination = self.register(node.operands[-1], node)
        lines, operand = self._source(source, node)
        if left != destination:
            if operand == destination:
                if mnemonic == "addq":
                    return lines + [f"addq {left}, {destination}"]
                return lines + [f"negq {destination}", f"addq {left}, {destination}"]
            lines.append(f"movq {left}, {destination}")
        return lines + [f"{mnemonic} {operand}, {destination}"]

    def op_addp(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, "addq")

    def op_addq(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, "addq")

    def op_subp(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, "subq")

    def op_subq(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, "subq")

    def op_move(self, node: Instruction) -> list[str]:
        self.check_operands(node, 2)
        source, destination = node.operands
        destination = self.register(destination, node)
        if is_label(source):
            return [f"leaq {self.lower(source)}(%rip), {destination}"]
        if is_immediate(source):
            value = self.evaluate(source)
            if _fits_signed(value, 32):
                return [f"movq ${value}, {destination}"]
            return [f"movabsq ${value}, {destination}"]
        return [f"movq {self.register(source, node)}, {destination}"]

    def op_push(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1, 2)
        return [f"push {self.register(op, node)}" for op in node.operands]

    def op_pop(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1, 2)
        return [f"pop {self.register(op, node)}" for op in node.operands]

    def _load(self, node: Instruction) -> list[str]:
        self.check_operands(node, 2)
        address = self.lower(self.memory(node.operands[0], node))
        return [f"movq {address}, {self.register(node.operands[1], node)}"]

    def _store(self, node: Instruction) -> list[str]:
        self.check_operands(node, 2)
        lines, operand = self._source(node.operands[0], node)
        address = self.lower(self.memory(node.operands[1], node))
        return lines + [f"movq {operand}, {address}"]

    op_loadp = _load
    op_loadq = _load
    op_storep = _store
    op_storeq = _store

    def op_loadpairq(self, node: Instruction) -> list[str]:
        self.check_operands(node, 3)
        memory = self.memory(node.operands[0], node)
        first = self.register(node.operands[1], node)
        second = self.register(node.operands[2], node)
        return [
            f"movq {self.lower(memory)}, {first}",
            f"movq {self.lower(self.shifted(memory, 8))}, {second}",
        ]

    def op_storepairq(self, node: Instruction) -> list[str]:
        self.check_operands(node, 3)
        first = self.register(node.operands[0], node)
        second = self.register(node.operands[1], node)
        memory = self.memory(node.operands[2], node)
        return [
            f"movq {first}, {self.lower(memory)}",
            f"movq {second}, {self.lower(self.shifted(memory, 8))}",
        ]

    def op_jmp(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1)
        if is_register(node.operands[0]):
            return [f"jmp *{self.lower(node.operands[0])}"]
        return [f"jmp {self.target(node.operands[0], node)}"]

    def op_call(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1)
        if is_register(node.operands[0]):
            return [f"call *{self.lower(node.operands[0])}"]
        return [f"call {self.target(node.operands[0], node)}"]

    def op_ret(self, node: Instruction) -> list[str]:
        self.check_operands(node, 0)
        return ["ret"]

    def _compare_and_branch(self, node: Instruction, jump: str) -> list[str]:
        self.check_operands(node, 3)
        left, right, target = node.operands
        if is_immediate(left) and not is_immediate(right):
            left, right = right, left
        left = self.register(left, node)
        lines, operand = self._source(right, node)
        return lines + [f"cmpq {operand}, {left}", f"{jump} {self.target(target, node)}"]

    def op_bpeq(self, node: Instruction) -> list[str]:
        return self._compare_and_branch(node, "je")

    def op_bpneq(self, node: Instruction) -> list[str]:
        return self._compare_and_branch(node, "jne")


# =============================================================================
# RISCV64
# =============================================================================

class RISCV64Backend(AsmBackend):
    name = "RISCV64"
    trap = "ebreak"
    scratch = "x31"

    def lower_address(self, node: Address) -> str:
        offset = self.evaluate(node.offset)
        if not _fits_signed(offset, 12):
            raise EmissionError(
                f"offset {offset} does not fit a RISCV64 load/store",
                node.origin,
                construct=node.dump(),
            )
        return f"{offset}({self.lower(node.base)})"

    def _memory_operand(self, node: Node, instruction: Instruction) -> tuple[list[str], str]:
        memory = self.memory(node, instruction)
        if isinstance(memory, Address):
            offset = self.evaluate(memory.offset)
            if _fits_signed(offset, 12):
                return [], f"{offset}({self.lower(memory.base)})"
            return [
                f"li {self.scratch}, {offset}",
                f"add {self.scratch}, {self.scratch}, {self.lower(memory.base)}",
            ], f"0({self.scratch})"
        if isinstance(memory, BaseIndex):
            offset = self.evaluate(memory.offset)
            lines = [
                f"slli {self.scratch}, {self.lower(memory.index)}, {memory.scale_shift}",
                f"add {self.scratch}, {self.scratch}, {self.lower(memory.base)}",
            ]
            if not _fits_signed(offset, 12):
                raise EmissionError(
                    f"offset {offset} does not fit a RISCV64 load/store",
                    memory.origin,
                    construct=memory.dump(),
                )
            return lines, f"{offset}({self.scratch})"
        return [f"li {self.scratch}, {self.evaluate(memory.address)}"], f"0({self.scratch})"

    def _arithmetic(self, node: Instruction, negate: bool) -> list[str]:
        self.check_operands(node, 2, 3)
        source = node.operands[0]
        left = self.register(node.operands[1], node)
        destination = self.register(node.operands[-1], node)
        mnemonic = "sub" if negate else "add"
        if not is_immediate(source):
            return [f"{mnemonic} {destination}, {left}, {self.register(source, node)}"]
        value = self.evaluate(source)
        if negate:
            value = -value
        if _fits_signed(value, 12):
            return [f"addi {destination}, {left}, {value}"]
        return [f"li {self.scratch}, {value}", f"add {destination}, {left}, {self.scratch}"]

    def op_addp(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, negate=False)

    def op_addq(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, negate=False)

    def op_subp(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, negate=True)

    def op_subq(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, negate=True)

    def op_move(self, node: Instruction) -> list[str]:
        self.check_operands(node, 2)
        source, destination = node.operands
        destination = self.register(destination, node)
        if is_label(source):
            return [f"la {destination}, {self.lower(source)}"]
        if is_immediate(source):
            return [f"li {destination}, {self.evaluate(source)}"]
        return [f"mv {destination}, {self.register(source, node)}"]

    def op_push(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1, 2)
        registers = [self.register(op, node) for op in node.operands]
        lines = ["addi sp, sp, -16"]
        for slot, register in enumerate(registers):
            lines.append(f"sd {register}, {slot * 8}(sp)")
        return lines

    def op_pop(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1, 2)
        registers = [self.register(op, node) for op in node.operands]
        lines = []
        for slot, register in enumerate(reversed(registers)):
            lines.append(f"ld {register}, {slot * 8}(sp)")
        lines.append("addi sp, sp, 16")
        return lines

    def _load(self, node: Instruction) -> list[str]:
        self.check_operands(node, 2)
        lines, address = self._memory_operand(node.operands[0], node)
        return lines + [f"ld {self.register(node.operands[1], node)}, {address}"]

    def _store(self, node: Instruction) -> list[str]:
        self.check_operands(node, 2)
        source = node.operands[0]
        lines: list[str] = []
        if is_immediate(source):
            value = self.evaluate(source)
            register = "zero"
            if value != 0:
                # x31 may be needed to form the address
                register = "x30"
                lines.append(f"li {register}, {value}")
        else:
            register = self.register(source, node)
        address_lines, address = self._memory_operand(node.operands[1], node)
        return lines + address_lines + [f"sd {register}, {address}"]

    op_loadp = _load
    op_loadq = _load
    op_storep = _store
    op_storeq = _store

    def op_loadpairq(self, node: Instruction) -> list[str]:
        self.check_operands(node, 3)
        memory = self.memory(node.operands[0], node)
        first_lines, first = self._memory_operand(memory, node)
        second_lines, second = self._memory_operand(self.shifted(memory, 8), node)
        return (
            first_lines + [f"ld {self.register(node.operands[1], node)}, {first}"]
            + second_lines + [f"ld {self.register(node.operands[2], node)}, {second}"]
        )

    def op_storepairq(self, node: Instruction) -> list[str]:
        self.check_operands(node, 3)
        memory = self.memory(node.operands[2], node)
        first_lines, first = self._memory_operand(memory, node)
        second_lines, second = self._memory_operand(self.shifted(memory, 8), node)
        return (
            first_lines + [f"sd {self.register(node.operands[0], node)}, {first}"]
            + second_lines + [f"sd {self.register(node.operands[1], node)}, {second}"]
        )

    def op_jmp(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1)
        if is_register(node.operands[0]):
            return [f"jr {self.lower(node.operands[0])}"]
        return [f"j {self.target(node.operands[0], node)}"]

    def op_call(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1)
        if is_register(node.operands[0]):
            return [f"jalr {self.lower(node.operands[0])}"]
        return [f"call {self.target(node.operands[0], node)}"]

    def op_ret(self, node: Instruction) -> list[str]:
        self.check_operands(node, 0)
        return ["ret"]

    def _compare_and_branch(self, node: Instruction, mnemonic: str) -> list[str]:
        self.check_operands(node, 3)
        left, right, target = node.operands
        if is_immediate(left) and not is_immediate(right):
            left, right = right, left
        left = self.register(left, node)
        lines: list[str] = []
        if is_immediate(right):
            lines.append(f"li {self.scratch}, {self.evaluate(right)}")
            right = self.scratch
        else:
            right = self.register(right, node)
        return lines + [f"{mnemonic} {left}, {right}, {self.target(target, node)}"]

    def op_bpeq(self, node: Instruction) -> list[str]:
        return self._compare_and_branch(node, "beq")

    def op_bpneq(self, node: Instruction) -> list[str]:
        return self._compare_and_branch(node, "bne")


# =============================================================================
# ARMv7 (Thumb-2)
# =============================================================================

class ARMv7Backend(AsmBackend):
    """32-bit ARM. Only pointer-sized (p) opcodes exist; q forms are unhandled."""
    name = "ARMv7"
    trap = "bkpt #0"
    scratch = "r4"

    def format_immediate(self, value: int) -> str:
        return f"#{value}"

    def lower_address(self, node: Address) -> str:
        return f"[{self.lower(node.base)}, #{self.evaluate(node.offset)}]"

    def lower_base_index(self, node: BaseIndex) -> str:
        if self.evaluate(node.offset) != 0:
            raise EmissionError(
                "ARMv7 base-index addressing takes no offset",
                node.origin,
                construct=node.dump(),
            )
        base = self.lower(node.base)
        index = self.lower(node.index)
        return f"[{base}, {index}, lsl #{node.scale_shift}]"

    def materialize(self, value: int, destination: str) -> list[str]:
        bits = value & 0xFFFF_FFFF
        lines = [f"movw {destination}, #{bits & 0xFFFF}"]
        if bits >> 16:
            lines.append(f"movt {destination}, #{bits >> 16}")
        return lines

    def op_addp(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, "add")

    def op_subp(self, node: Instruction) -> list[str]:
        return self._arithmetic(node, "sub")

    def _arithmetic(self, node: Instruction, mnemonic: str) -> list[str]:
        self.check_operands(node, 2, 3)
        source = node.operands[0]
        left = self.register(node.operands[1], node)
        destination = self.register(node.operands[-1], node)
        if not is_immediate(source):
            return [f"{mnemonic} {destination}, {left}, {self.register(source, node)}"]
        value = self.evaluate(source)
        if _fits_unsigned(value, 12):
            return [f"{mnemonic} {destination}, {left}, #{value}"]
        return self.materialize(value, self.scratch) + [
            f"{mnemonic} {destination}, {left}, {self.scratch}"
        ]

    def op_move(self, node: Instruction) -> list[str]:
        self.check_operands(node, 2)
        source, destination = node.operands
        destination = self.register(destination, node)
        if is_label(source):
            return [f"adr {destination}, {self.lower(source)}"]
        if is_immediate(source):
            return self.materialize(self.evaluate(source), destination)
        return [f"mov {destination}, {self.register(source, node)}"]

    def op_push(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1, 2)
        return [f"push {{{self.register(op, node)}}}" for op in node.operands]

    def op_pop(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1, 2)
        return [f"pop {{{self.register(op, node)}}}" for op in node.operands]

    def op_loadp(self, node: Instruction) -> list[str]:
        self.check_operands(node, 2)
        address = self.lower(self.memory(node.operands[0], node))
        return [f"ldr {self.register(node.operands[1], node)}, {address}"]

    def op_storep(self, node: Instruction) -> list[str]:
        self.check_operands(node, 2)
        source = node.operands[0]
        address = self.lower(self.memory(node.operands[1], node))
        if is_immediate(source):
            return self.materialize(self.evaluate(source), self.scratch) + [
                f"str {self.scratch}, {address}"
            ]
        return [f"str {self.register(source, node)}, {address}"]

    def op_jmp(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1)
        if is_register(node.operands[0]):
            return [f"bx {self.lower(node.operands[0])}"]
        return [f"b {self.target(node.operands[0], node)}"]

    def op_call(self, node: Instruction) -> list[str]:
        self.check_operands(node, 1)
        if is_register(node.operands[0]):
            return [f"blx {self.lower(node.operands[0])}"]
        return [f"blx {self.target(node.operands[0], node)}"]

    def op_ret(self, node: Instruction) -> list[str]:
        self.check_operands(node, 0)
        return ["bx lr"]

    def _compare_and_branch(self, node: Instruction, condition: str) -> list[str]:
        self.check_operands(node, 3)
        left, right, target = node.operands
        if is_immediate(left) and not is_immediate(right):
            left, right = right, left
        left = self.register(left, node)
        lines: list[str] = []
        if is_immediate(right):
            value = self.evaluate(right)
            if _fits_unsigned(value, 8):
                lines.append(f"cmp {left}, #{value}")
            else:
                lines.extend(self.materialize(value, self.scratch))
                lines.append(f"cmp {left}, {self.scratch}")
        else:
            lines.append(f"cmp {left}, {self.register(right, node)}")
        lines.append(f"b{condition} {self.target(target, node)}")
        return lines

    def op_bpeq(self, node: Instruction) -> list[str]:
        return self._compare_and_branch(node, "eq")

    def op_bpneq(self, node: Instruction) -> list[str]:
        return self._compare_and_branch(node, "ne")
