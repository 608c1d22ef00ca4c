# =============================================================================
# test_ast.py - AST Node Model Tests
# =============================================================================
# Tests for the node model: construction-time validation, tree walking,
# textual dumps and the analysis helpers.
# =============================================================================

import pytest

from offlineasm.ast import (
    FALSE,
    NODE_TYPES,
    TRUE,
    AbsoluteAddress,
    AddImmediates,
    Address,
    And,
    BaseIndex,
    ConstDecl,
    FalseLiteral,
    IfThenElse,
    Immediate,
    Instruction,
    LabelReference,
    LocalLabelReference,
    Macro,
    MacroCall,
    NegImmediate,
    Not,
    Or,
    Sequence,
    Skip,
    StringLiteral,
    TrueLiteral,
    layout_constants_used,
    settings_used,
)
from offlineasm.errors import MalformedNodeError


# =============================================================================
# Leaf Values
# =============================================================================

class TestLeafValues:
    """Test leaf node behaviour."""

    def test_immediate_name_is_hex(self, loc):
        """Immediate.name spells the value in hex."""
        assert Immediate(loc(), 255).name == "0xff"
        assert Immediate(loc(), -16).name == "-0x10"

    def test_boolean_literals_are_singletons(self):
        """TrueLiteral and FalseLiteral have one instance each."""
        assert TrueLiteral() is TRUE
        assert FalseLiteral() is FALSE

    def test_interned_register_identity(self, table, loc):
        """Two occurrences of a register are one node."""
        assert table.register("t0", loc(1)) is table.register("t0", loc(2))

    def test_struct_offset_key(self, table, loc):
        """StructOffset dumps as Struct::field."""
        node = table.struct_offset("CallFrame", "callee", loc())
        assert node.dump() == "CallFrame::callee"
        assert node.key == "CallFrame::callee"

    def test_const_expr_dump(self, table, loc):
        """ConstExpr dumps with the constexpr keyword."""
        assert table.const_expr("sizeof(void*)", loc()).dump() == "constexpr (sizeof(void*))"


# =============================================================================
# Addressing
# =============================================================================

class TestAddressing:
    """Test construction-time validation of memory operands."""

    def test_address_dump(self, table, loc):
        """Address dumps as offset[base]."""
        address = Address(loc(), table.register("t0", loc()), Immediate(loc(), 8))
        assert address.dump() == "8[t0]"

    def test_address_rejects_immediate_base(self, loc):
        """An immediate cannot be the base of an address."""
        with pytest.raises(MalformedNodeError, match="bad base"):
            Address(loc(), Immediate(loc(), 1), Immediate(loc(), 8))

    def test_address_rejects_register_offset(self, table, loc):
        """A register cannot be the offset of an address."""
        t0 = table.register("t0", loc())
        with pytest.raises(MalformedNodeError, match="bad offset"):
            Address(loc(), t0, table.register("t1", loc()))

    def test_address_accepts_variable_base(self, table, loc):
        """A macro parameter may stand in for the base."""
        address = Address(loc(), table.variable("base", loc()), Immediate(loc(), 0))
        assert address.dump() == "0[base]"

    def test_base_index_scales(self, table, loc):
        """Scales 1, 2, 4 and 8 are accepted with matching shifts."""
        t0, t1 = table.register("t0", loc()), table.register("t1", loc())
        for scale, shift in ((1, 0), (2, 1), (4, 2), (8, 3)):
            node = BaseIndex(loc(), t0, t1, scale, Immediate(loc(), 0))
            assert node.scale_value == scale
            assert node.scale_shift == shift

    def test_base_index_rejects_bad_scale(self, table, loc):
        """A scale of 3 is malformed."""
        t0, t1 = table.register("t0", loc()), table.register("t1", loc())
        with pytest.raises(MalformedNodeError, match="bad scale"):
            BaseIndex(loc(), t0, t1, 3, Immediate(loc(), 0))

    def test_base_index_dump(self, table, loc):
        """BaseIndex dumps as offset[base, index, scale]."""
        t0, t1 = table.register("t0", loc()), table.register("t1", loc())
        node = BaseIndex(loc(), t0, t1, 8, Immediate(loc(), 16))
        assert node.dump() == "16[t0, t1, 8]"

    def test_with_offset(self, table, loc):
        """with_offset adds to a literal offset."""
        address = Address(loc(), table.register("t0", loc()), Immediate(loc(), 8))
        assert address.with_offset(8).dump() == "16[t0]"

    def test_absolute_address_dump(self, loc):
        """AbsoluteAddress dumps as address[]."""
        assert AbsoluteAddress(loc(), Immediate(loc(), 4096)).dump() == "4096[]"


# =============================================================================
# Statements
# =============================================================================

class TestStatements:
    """Test statement nodes."""

    def test_macro_call_requires_operands(self, loc):
        """A MacroCall with no operands is malformed."""
        with pytest.raises(MalformedNodeError, match="no operands"):
            MacroCall(loc(), "doTest", [])

    def test_if_then_else_defaults_to_skip(self, table, loc):
        """A missing else branch is Skip."""
        node = IfThenElse(loc(), table.setting("ARM64", loc()), Sequence(loc(), []))
        assert isinstance(node.else_case, Skip)

    def test_clone_with_operands(self, table, loc):
        """clone_with_operands keeps opcode and annotation."""
        instruction = Instruction(loc(), "addp", [Immediate(loc(), 1)], "note")
        clone = instruction.clone_with_operands([table.register("t0", loc())])
        assert clone.opcode == "addp"
        assert clone.annotation == "note"
        assert clone.dump() == "\taddp t0"

    def test_const_decl_requires_variable(self, loc):
        """A const declaration must bind a variable."""
        with pytest.raises(MalformedNodeError):
            ConstDecl(loc(), Immediate(loc(), 1), Immediate(loc(), 2))

    def test_label_reference_plus_offset(self, table, loc):
        """plus_offset accumulates the offset."""
        ref = table.label_reference("_entry", loc()).plus_offset(8).plus_offset(4)
        assert ref.offset == 12
        assert ref.dump() == "_entry + 12"

    def test_label_reference_rejects_non_label(self, loc):
        """A label reference must point at a Label."""
        with pytest.raises(MalformedNodeError):
            LabelReference(loc(), Immediate(loc(), 0))

    def test_local_label_clean_name(self, table, loc):
        """The leading dot of a local label becomes an underscore."""
        label = table.local_label(".loop", loc())
        assert label.clean_name == "_loop"
        assert LocalLabelReference(loc(), label).name == ".loop"


# =============================================================================
# Tree Walking
# =============================================================================

class TestTreeWalking:
    """Test children, flatten, filter and map_children."""

    def test_children_order(self, table, loc):
        """Instruction children are its operands, in order."""
        t0, t1 = table.register("t0", loc()), table.register("t1", loc())
        instruction = Instruction(loc(), "move", [t0, t1])
        assert instruction.children() == [t0, t1]

    def test_flatten_is_preorder(self, table, loc):
        """flatten lists a node before its descendants."""
        t0 = table.register("t0", loc())
        address = Address(loc(), t0, Immediate(loc(), 8))
        instruction = Instruction(loc(), "loadp", [address, t0])
        flat = instruction.flatten()
        assert flat[0] is instruction
        assert flat[1] is address
        assert flat[2] is t0

    def test_filter_by_type(self, loc):
        """filter keeps nodes of the requested type."""
        tree = Sequence(loc(), [
            Instruction(loc(), "addp", [Immediate(loc(), 1), Immediate(loc(), 2)]),
            Instruction(loc(), "ret"),
        ])
        assert [node.value for node in tree.filter(Immediate)] == [1, 2]
        assert len(tree.filter(Instruction)) == 2

    def test_map_children_builds_new_node(self, loc):
        """map_children leaves the original untouched."""
        node = AddImmediates(loc(), Immediate(loc(), 1), Immediate(loc(), 2))
        doubled = node.map_children(lambda child: Immediate(child.origin, child.value * 2))
        assert doubled.dump() == "(2 + 4)"
        assert node.dump() == "(1 + 2)"

    def test_sequence_flattened(self, loc):
        """Nested sequences are spliced in place."""
        inner = Sequence(loc(), [Instruction(loc(), "nop"), Sequence(loc(), [Instruction(loc(), "ret")])])
        flat = Sequence(loc(), [inner, Instruction(loc(), "break")]).flattened()
        assert [item.opcode for item in flat.items] == ["nop", "ret", "break"]

    def test_flattening_flat_sequence_is_noop(self, loc):
        statements = [Instruction(loc(), "nop"), Instruction(loc(), "ret")]
        flat = Sequence(loc(), statements).flattened()
        assert flat.items == statements
        assert flat.flattened().items == statements

    @pytest.mark.parametrize("depth", [1, 2, 3, 5, 10])
    def test_nesting_depth_does_not_matter(self, loc, depth):
        """Wrapping statements N levels deep flattens to the same list."""
        statements = [Instruction(loc(), "nop"), Instruction(loc(), "ret")]
        tree = Sequence(loc(), list(statements))
        for _ in range(depth):
            tree = Sequence(loc(), [tree, Sequence(loc(), [])])
        assert tree.flattened().items == statements

    def test_every_node_type_is_listed(self):
        """The closed variant set has no duplicates."""
        assert len(set(NODE_TYPES)) == len(NODE_TYPES)


# =============================================================================
# Dumping
# =============================================================================

class TestDump:
    """Test the textual form of composite nodes."""

    def test_unary_dump(self, table, loc):
        assert NegImmediate(loc(), Immediate(loc(), 4)).dump() == "(-4)"
        assert Not(loc(), table.setting("JIT", loc())).dump() == "(not JIT)"

    def test_boolean_dump(self, table, loc):
        node = And(loc(), table.setting("ARM64", loc()), TRUE)
        assert node.dump() == "(ARM64 and true)"

    def test_macro_dump(self, table, loc):
        """Macros dump as macro name(params) ... end."""
        x = table.variable("x", loc())
        macro = Macro(loc(), "double", [x], Sequence(loc(), [Instruction(loc(), "addp", [x, x])]))
        assert macro.dump() == "macro double(x)\n\taddp x, x\nend"

    def test_string_literal_dump(self, loc):
        assert StringLiteral(loc(), ".text").dump() == '".text"'

    def test_repr_mentions_origin(self, loc):
        assert "test.asm:3:1" in repr(Immediate(loc(3), 1))


# =============================================================================
# Analysis Helpers
# =============================================================================

class TestAnalysis:
    """Test settings_used and layout_constants_used."""

    def test_settings_used_sorted_unique(self, table, loc):
        """Settings are listed once each, sorted."""
        tree = Sequence(loc(), [
            IfThenElse(loc(), table.setting("X86_64", loc()), Instruction(loc(), "nop")),
            IfThenElse(
                loc(),
                Or(loc(), table.setting("ARM64", loc()), table.setting("JIT", loc())),
                Instruction(loc(), "nop"),
            ),
        ])
        assert settings_used(tree) == ["ARM64", "JIT", "X86_64"]

    def test_layout_constants_used(self, table, loc):
        """StructOffset, Sizeof and ConstExpr nodes are listed once, sorted."""
        t0 = table.register("t0", loc())
        callee = table.struct_offset("CallFrame", "callee", loc())
        tree = Sequence(loc(), [
            Instruction(loc(), "loadp", [Address(loc(), t0, callee), t0]),
            Instruction(loc(), "addp", [table.sizeof("Register", loc()), t0]),
            Instruction(loc(), "loadp", [Address(loc(), t0, callee), t0]),
        ])
        assert [node.dump() for node in layout_constants_used(tree)] == [
            "CallFrame::callee",
            "sizeof Register",
        ]
