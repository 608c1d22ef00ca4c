"""
offlineasm Compilation Run
==========================

Drives one tree through the pipeline for one configuration.

Pipeline
--------
    PARSED --load/accept--> INTERNED --fold--> FOLDED --expand--> EXPANDED
           --lower--> LOWERED --emit--> EMITTED

Any error raised by a stage moves the run to ABORTED, which is terminal:
every later stage call raises StageError. A stage called out of order
raises StageError as well, without aborting the run.

Folding runs before expansion, so conditionals in macro bodies are
resolved once at their definition and every expansion inherits the
folded body.

Usage:
    >>> from offlineasm.compiler import Compilation
    >>> from offlineasm.settings import Configuration
    >>> compilation = Compilation(Configuration.for_backend("ARM64"))
    >>> emission = compilation.run(document)
    >>> print(emission.text)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from offlineasm.ast import Macro, Node, Sequence
from offlineasm.backends import backend_for
from offlineasm.errors import OfflineAsmError, StageError
from offlineasm.folding import ConfigurationFolder
from offlineasm.loader import load_tree
from offlineasm.macros import DEFAULT_MAX_DEPTH, MacroExpander
from offlineasm.settings import Configuration
from offlineasm.symbols import SymbolTable
from offlineasm.widths import prelude

logger = logging.getLogger(__name__)


class Stage(Enum):
    PARSED = "parsed"
    INTERNED = "interned"
    FOLDED = "folded"
    EXPANDED = "expanded"
    LOWERED = "lowered"
    EMITTED = "emitted"
    ABORTED = "aborted"


@dataclass
class Emission:
    """
    Output of a completed run.

    Attributes:
        backend: Name of the backend that produced the lines
        lines: Emitted lines, without trailing newlines
        extern_labels: Labels referenced but never defined in the unit
        referenced_labels: Every label first seen as an extern reference,
                           in first-seen order
    """
    backend: str
    lines: list[str]
    extern_labels: list[str] = field(default_factory=list)
    referenced_labels: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        if not self.lines:
            return ""
        return "\n".join(self.lines) + "\n"


class Compilation:
    """
    One compilation run.

    The run owns its SymbolTable. Passing an existing table hands it to
    the run, which resets its forward-reference list.

    Attributes:
        configuration: Configuration the tree is folded and emitted for
        table: Symbol table of the run
        stage: Current pipeline stage
        tree: Tree as of the last completed stage
        include_prelude: Prepend the width-specialization macros
                         (narrow, wide16, wide32, commonOp, op) the unit
                         does not define itself
    """

    def __init__(
        self,
        configuration: Configuration,
        table: Optional[SymbolTable] = None,
        include_prelude: bool = False,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.configuration = configuration
        self.table = table if table is not None else SymbolTable()
        self.table.reset_referenced()
        self.include_prelude = include_prelude
        self.max_depth = max_depth
        self.stage = Stage.PARSED
        self.tree: Optional[Node] = None
        self.backend = backend_for(configuration, self.table)
        self._statements: list[str] = []
        self._emission: Optional[Emission] = None

    # =========================================================================
    # Stage Bookkeeping
    # =========================================================================

    def _require(self, expected: Stage, action: str) -> None:
        if self.stage is Stage.ABORTED:
            raise StageError(f"cannot {action}: the compilation was aborted")
        if self.stage is not expected:
            raise StageError(
                f"cannot {action} in stage '{self.stage.value}'",
                hint=f"{action} requires stage '{expected.value}'",
            )

    def _advance(self, stage: Stage) -> None:
        logger.debug(f"{self.backend.name}: {self.stage.value} -> {stage.value}")
        self.stage = stage

    def _abort(self, error: Exception) -> None:
        logger.debug(f"{self.backend.name}: aborted in stage '{self.stage.value}': {error}")
        self.stage = Stage.ABORTED

    def _guarded(self, action):
        try:
            return action()
        except OfflineAsmError as e:
            self._abort(e)
            raise

    # =========================================================================
    # Stages
    # =========================================================================

    def load(self, document: Any, filename: str = "<json>") -> Node:
        """Build the tree from a JSON interchange document."""
        self._require(Stage.PARSED, "load")
        tree = self._guarded(lambda: load_tree(document, self.table, filename))
        return self.accept(tree)

    def accept(self, tree: Node) -> Node:
        """Take a tree whose names are already interned in this run's table."""
        self._require(Stage.PARSED, "accept")
        if self.include_prelude:
            tree = self._with_prelude(tree)
        self.tree = tree
        self._advance(Stage.INTERNED)
        return tree

    def fold(self) -> Node:
        self._require(Stage.INTERNED, "fold")
        self.tree = self._guarded(lambda: ConfigurationFolder(self.configuration).fold(self.tree))
        self._advance(Stage.FOLDED)
        return self.tree

    def expand(self) -> Node:
        self._require(Stage.FOLDED, "expand")
        expander = MacroExpander(self.table, self.max_depth)
        self.tree = self._guarded(lambda: expander.expand(self.tree))
        self._advance(Stage.EXPANDED)
        return self.tree

    def lower(self) -> list[str]:
        self._require(Stage.EXPANDED, "lower")
        self._statements = self._guarded(lambda: self.backend.lower_statements(self.tree))
        self._advance(Stage.LOWERED)
        return list(self._statements)

    def emit(self) -> Emission:
        self._require(Stage.LOWERED, "emit")
        lines = self._guarded(lambda: self.backend.frame(self._statements))
        self._emission = Emission(
            backend=self.backend.name,
            lines=lines,
            extern_labels=[label.name for label in self.table.unresolved_extern_labels()],
            referenced_labels=[label.name for label in self.table.referenced_extern_labels],
        )
        self._advance(Stage.EMITTED)
        logger.debug(
            f"{self.backend.name}: emitted {len(lines)} lines, "
            f"{len(self._emission.extern_labels)} extern labels"
        )
        return self._emission

    def run(self, source: Union[Node, Any], filename: str = "<json>") -> Emission:
        """Run every stage; `source` is a tree or a JSON document."""
        if isinstance(source, Node):
            self.accept(source)
        else:
            self.load(source, filename)
        self.fold()
        self.expand()
        self.lower()
        return self.emit()

    @property
    def emission(self) -> Optional[Emission]:
        return self._emission

    # =========================================================================
    # Prelude
    # =========================================================================

    def _with_prelude(self, tree: Node) -> Sequence:
        items = tree.flattened().items if isinstance(tree, Sequence) else [tree]
        defined = {item.name for item in items if isinstance(item, Macro) and item.name}
        injected = [macro for macro in prelude(self.table) if macro.name not in defined]
        logger.debug(f"Prelude: injected {len(injected)} macros")
        return Sequence(tree.origin, injected + items)


def compile_tree(
    source: Union[Node, Any],
    configuration: Configuration,
    table: Optional[SymbolTable] = None,
    include_prelude: bool = False,
) -> Emission:
    """Compile a tree or JSON document in one call."""
    return Compilation(configuration, table, include_prelude).run(source)
