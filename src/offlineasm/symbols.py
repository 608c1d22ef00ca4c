"""
offlineasm Symbol Table
=======================

Interning of named AST nodes and label lifecycle tracking.

Every named construct the parser produces goes through one SymbolTable,
so two occurrences of `t0`, of a macro parameter, or of a struct field
offset are the *same* node object. Identity comparison is therefore
enough everywhere downstream: substitution maps are keyed by node
identity and backends never need string compares.

Interned Kinds
--------------
    register(name)              -> RegisterID
    fp_register(name)           -> FPRegisterID
    vec_register(name)          -> VecRegisterID
    variable(name, original)    -> Variable
    const_expr(text)            -> ConstExpr
    setting(name)               -> Setting
    struct_offset(struct, fld)  -> StructOffset  (key "struct::fld")
    sizeof(struct)              -> Sizeof
    label(name)                 -> Label
    local_label(name)           -> LocalLabel

Label Lifecycle
---------------
A Label is created the first time its name is seen, reference or
definition, and starts out extern and non-global:

    label_reference()      extern label referenced, added to the
                           forward-reference list in first-seen order
    define_label()         clears extern (the label is in this unit)
    declare_global()       global, errors if already global
    declare_aligned(n)     aligned to n (implies global), errors if
                           alignment was already declared

The table is owned by a single compilation run. Create one per run; it
is not safe to share between concurrent runs.
"""

import logging
from typing import Callable, Optional

from offlineasm.ast import (
    ConstExpr,
    FPRegisterID,
    Label,
    LabelReference,
    LocalLabel,
    RegisterID,
    Setting,
    Sizeof,
    StructOffset,
    Variable,
    VecRegisterID,
)
from offlineasm.errors import LabelDeclarationError, SourceLocation

logger = logging.getLogger(__name__)


class SymbolTable:
    """
    Owner of every interned node for one compilation run.

    Example:
        >>> table = SymbolTable()
        >>> loc = SourceLocation("test.asm", 1, 1)
        >>> table.register("t0", loc) is table.register("t0", loc)
        True
    """

    def __init__(self):
        self._registers: dict[str, RegisterID] = {}
        self._fp_registers: dict[str, FPRegisterID] = {}
        self._vec_registers: dict[str, VecRegisterID] = {}
        self._variables: dict[str, Variable] = {}
        self._const_exprs: dict[str, ConstExpr] = {}
        self._settings: dict[str, Setting] = {}
        self._struct_offsets: dict[str, StructOffset] = {}
        self._sizeofs: dict[str, Sizeof] = {}
        self._labels: dict[str, Label] = {}
        self._local_labels: dict[str, LocalLabel] = {}

        # Extern labels in the order they were first referenced
        self._referenced_extern: list[Label] = []
        self._referenced_extern_names: set[str] = set()

        self._unique_label_counter = 0

    # =========================================================================
    # Interning
    # =========================================================================

    def register(self, name: str, origin: SourceLocation) -> RegisterID:
        if name not in self._registers:
            self._registers[name] = RegisterID(origin, name)
        return self._registers[name]

    def fp_register(self, name: str, origin: SourceLocation) -> FPRegisterID:
        if name not in self._fp_registers:
            self._fp_registers[name] = FPRegisterID(origin, name)
        return self._fp_registers[name]

    def vec_register(self, name: str, origin: SourceLocation) -> VecRegisterID:
        if name not in self._vec_registers:
            self._vec_registers[name] = VecRegisterID(origin, name)
        return self._vec_registers[name]

    def variable(
        self,
        name: str,
        origin: SourceLocation,
        original_name: Optional[str] = None,
    ) -> Variable:
        if name not in self._variables:
            self._variables[name] = Variable(origin, name, original_name)
        return self._variables[name]

    def const_expr(self, value: str, origin: SourceLocation) -> ConstExpr:
        if value not in self._const_exprs:
            self._const_exprs[value] = ConstExpr(origin, value)
        return self._const_exprs[value]

    def setting(self, name: str, origin: SourceLocation) -> Setting:
        if name not in self._settings:
            self._settings[name] = Setting(origin, name)
        return self._settings[name]

    def struct_offset(
        self, struct_name: str, field: str, origin: SourceLocation
    ) -> StructOffset:
        key = f"{struct_name}::{field}"
        if key not in self._struct_offsets:
            self._struct_offsets[key] = StructOffset(origin, struct_name, field)
        return self._struct_offsets[key]

    def sizeof(self, struct_name: str, origin: SourceLocation) -> Sizeof:
        if struct_name not in self._sizeofs:
            self._sizeofs[struct_name] = Sizeof(origin, struct_name)
        return self._sizeofs[struct_name]

    def local_label(self, name: str, origin: SourceLocation) -> LocalLabel:
        if name not in self._local_labels:
            self._local_labels[name] = LocalLabel(origin, name)
        return self._local_labels[name]

    def unique_local_label(self, comment: str, origin: SourceLocation) -> LocalLabel:
        """
        Mint a fresh local label that cannot collide with any source label.

        The plain `_comment` is used when free; on a collision the
        per-table counter is advanced until `_N_comment` is free.
        """
        name = f"_{comment}"
        while name in self._local_labels:
            self._unique_label_counter += 1
            name = f"_{self._unique_label_counter}_{comment}"
        return self.local_label(name, origin)

    # =========================================================================
    # Labels
    # =========================================================================

    def label(self, name: str, origin: SourceLocation) -> Label:
        """Return the interned label, creating it extern and non-global."""
        if name not in self._labels:
            self._labels[name] = Label(origin, name)
        return self._labels[name]

    def label_reference(
        self, name: str, origin: SourceLocation, offset: int = 0
    ) -> LabelReference:
        """
        Reference a label, noting it as a forward reference if extern.

        A `%param%` template is only noted once expansion interpolates it.
        """
        label = self.label(name, origin)
        if "%" not in name:
            self.note_label_use(label)
        return LabelReference(origin, label, offset)

    def note_label_use(self, label: Label) -> None:
        """Record `label` in the forward-reference list if it is extern."""
        if label.is_extern and label.name not in self._referenced_extern_names:
            self._referenced_extern_names.add(label.name)
            self._referenced_extern.append(label)

    def define_label(self, name: str, origin: SourceLocation) -> Label:
        label = self.label(name, origin)
        label.defined_in_file = True
        label.clear_extern()
        return label

    def label_definition(self, name: str, origin: SourceLocation) -> Label:
        """
        Label for a definition site.

        A name still containing `%param%` is a template that macro
        expansion interpolates, so it is interned without being defined.
        """
        if "%" in name:
            return self.label(name, origin)
        return self.define_label(name, origin)

    def _check_not_global(self, label: Label, origin: SourceLocation) -> None:
        if label.is_global:
            raise LabelDeclarationError(
                f"label '{label.name}' is declared global twice",
                origin,
                hint=f"first declared at {label.origin}",
            )

    def declare_global(self, name: str, origin: SourceLocation) -> Label:
        label = self.label(name, origin)
        self._check_not_global(label, origin)
        label.set_global()
        return label

    def declare_global_export(self, name: str, origin: SourceLocation) -> Label:
        label = self.label(name, origin)
        self._check_not_global(label, origin)
        label.set_global_export()
        return label

    def declare_unaligned_global(self, name: str, origin: SourceLocation) -> Label:
        label = self.label(name, origin)
        self._check_not_global(label, origin)
        label.set_unaligned_global()
        return label

    def declare_unaligned_global_export(
        self, name: str, origin: SourceLocation
    ) -> Label:
        label = self.label(name, origin)
        self._check_not_global(label, origin)
        label.set_unaligned_global_export()
        return label

    def declare_aligned(
        self, name: str, align_to: int, origin: SourceLocation
    ) -> Label:
        label = self.label(name, origin)
        if label.align_to is not None:
            raise LabelDeclarationError(
                f"label '{label.name}' is declared aligned twice",
                origin,
                hint=f"already aligned to {label.align_to}",
            )
        label.set_aligned(align_to)
        return label

    # =========================================================================
    # Forward References
    # =========================================================================

    @property
    def referenced_extern_labels(self) -> list[Label]:
        """Labels first seen as extern references, in first-seen order."""
        return list(self._referenced_extern)

    def unresolved_extern_labels(self) -> list[Label]:
        """Referenced labels that were never defined in this unit."""
        return [label for label in self._referenced_extern if label.is_extern]

    def reset_referenced(self) -> None:
        self._referenced_extern.clear()
        self._referenced_extern_names.clear()

    def for_referenced_extern(self, action: Callable[[str], None]) -> None:
        """Invoke `action` with the name of each unresolved extern label."""
        for label in self.unresolved_extern_labels():
            action(label.name)

    @property
    def labels(self) -> list[Label]:
        return list(self._labels.values())

    def __repr__(self) -> str:
        return (
            f"SymbolTable({len(self._labels)} labels, "
            f"{len(self._variables)} variables, "
            f"{len(self._referenced_extern)} extern refs)"
        )
