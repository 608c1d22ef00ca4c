# =============================================================================
# test_symbols.py - Symbol Table Tests
# =============================================================================
# Tests for interning, the label lifecycle, declaration conflicts and the
# forward-reference list.
# =============================================================================

import pytest

from offlineasm.errors import LabelDeclarationError
from offlineasm.symbols import SymbolTable


# =============================================================================
# Interning
# =============================================================================

class TestInterning:
    """Test that every named kind is interned by name."""

    @pytest.mark.parametrize("method", [
        "register", "fp_register", "vec_register", "variable",
        "const_expr", "setting", "sizeof", "label", "local_label",
    ])
    def test_same_name_same_node(self, table, loc, method):
        """Looking a name up twice returns the same node."""
        intern = getattr(table, method)
        assert intern("x", loc(1)) is intern("x", loc(2))

    def test_first_origin_wins(self, table, loc):
        """The interned node keeps the origin of its first occurrence."""
        table.register("t0", loc(3))
        assert table.register("t0", loc(9)).origin.line == 3

    def test_struct_offset_keyed_by_struct_and_field(self, table, loc):
        a = table.struct_offset("CallFrame", "callee", loc())
        b = table.struct_offset("CallFrame", "callee", loc())
        c = table.struct_offset("CallFrame", "argumentCount", loc())
        assert a is b
        assert a is not c

    def test_kinds_do_not_share_names(self, table, loc):
        """A register and a variable with one name are distinct nodes."""
        assert table.register("t0", loc()) is not table.variable("t0", loc())

    def test_tables_are_independent(self, loc):
        """Two runs never share interned nodes."""
        assert SymbolTable().register("t0", loc()) is not SymbolTable().register("t0", loc())


# =============================================================================
# Unique Local Labels
# =============================================================================

class TestUniqueLocalLabels:
    """Test minting of collision-free local labels."""

    def test_first_then_numbered(self, table, loc):
        """The first label is _comment, later ones _N_comment."""
        first = table.unique_local_label("doTest__success", loc())
        second = table.unique_local_label("doTest__success", loc())
        assert first.name == "_doTest__success"
        assert second.name == "_1_doTest__success"

    def test_skips_existing_names(self, table, loc):
        """A name already present in the table is never reused."""
        table.local_label("_loop", loc())
        assert table.unique_local_label("loop", loc()).name == "_1_loop"

    def test_each_comment_tries_plain_name_first(self, table, loc):
        """The counter is only used on a collision, and is shared by all comments."""
        names = [
            table.unique_local_label(comment, loc()).name
            for comment in ("a", "b", "a", "c", "b")
        ]
        assert names == ["_a", "_b", "_1_a", "_c", "_2_b"]

    def test_labels_are_distinct(self, table, loc):
        names = {table.unique_local_label("x", loc()).name for _ in range(5)}
        assert len(names) == 5


# =============================================================================
# Label Lifecycle
# =============================================================================

class TestLabelLifecycle:
    """Test extern, defined and global label states."""

    def test_new_label_is_extern(self, table, loc):
        label = table.label("_llint_entry", loc())
        assert label.is_extern
        assert not label.is_global
        assert not label.defined_in_file

    def test_definition_clears_extern(self, table, loc):
        label = table.define_label("_llint_entry", loc())
        assert label.defined_in_file
        assert not label.is_extern

    def test_template_label_is_not_defined(self, table, loc):
        """A %param% name is interned but left undefined."""
        label = table.label_definition("_%label%_wide16", loc())
        assert label.is_extern
        assert not label.defined_in_file

    def test_declare_global(self, table, loc):
        label = table.declare_global("_entry", loc())
        assert label.is_global
        assert label.is_aligned

    def test_declare_global_twice_fails(self, table, loc):
        """Declaring a label global twice is an error."""
        table.declare_global("_entry", loc(1))
        with pytest.raises(LabelDeclarationError, match="declared global twice"):
            table.declare_global("_entry", loc(2))

    def test_global_then_export_fails(self, table, loc):
        """Every global variant conflicts with an earlier one."""
        table.declare_unaligned_global("_entry", loc(1))
        with pytest.raises(LabelDeclarationError):
            table.declare_global_export("_entry", loc(2))

    def test_unaligned_global_export(self, table, loc):
        label = table.declare_unaligned_global_export("_entry", loc())
        assert label.is_global
        assert label.is_export
        assert not label.is_aligned

    def test_aligned_implies_global(self, table, loc):
        label = table.declare_aligned("_trampoline", 16, loc())
        assert label.is_global
        assert label.align_to == 16

    def test_declare_aligned_twice_fails(self, table, loc):
        table.declare_aligned("_trampoline", 16, loc(1))
        with pytest.raises(LabelDeclarationError, match="declared aligned twice"):
            table.declare_aligned("_trampoline", 32, loc(2))

    def test_error_reports_first_declaration(self, table, loc):
        """The conflict hint points at the first declaration."""
        table.declare_global("_entry", loc(4))
        with pytest.raises(LabelDeclarationError) as exc_info:
            table.declare_global("_entry", loc(9))
        assert "test.asm:4:1" in str(exc_info.value)
        assert exc_info.value.location.line == 9


# =============================================================================
# Forward References
# =============================================================================

class TestForwardReferences:
    """Test the extern label reference list."""

    def test_reference_before_definition_is_listed(self, table, loc):
        """A label referenced before it is defined is recorded."""
        table.label_reference("_later", loc(1))
        table.define_label("_later", loc(5))
        assert [label.name for label in table.referenced_extern_labels] == ["_later"]
        assert table.unresolved_extern_labels() == []

    def test_first_seen_order_without_duplicates(self, table, loc):
        for name in ("_b", "_a", "_b", "_c", "_a"):
            table.label_reference(name, loc())
        assert [label.name for label in table.referenced_extern_labels] == ["_b", "_a", "_c"]

    def test_reference_after_definition_not_listed(self, table, loc):
        """A label already defined is not a forward reference."""
        table.define_label("_here", loc(1))
        table.label_reference("_here", loc(2))
        assert table.referenced_extern_labels == []

    def test_for_referenced_extern(self, table, loc):
        """The callback sees only labels still undefined."""
        table.label_reference("_extern_a", loc())
        table.label_reference("_local", loc())
        table.define_label("_local", loc())
        seen = []
        table.for_referenced_extern(seen.append)
        assert seen == ["_extern_a"]

    def test_reset_referenced(self, table, loc):
        label = table.label_reference("_a", loc()).label
        table.reset_referenced()
        assert table.referenced_extern_labels == []
        # Labels themselves survive the reset
        assert table.label("_a", loc()) is label
