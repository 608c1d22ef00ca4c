"""
Configuration Folding Pass
==========================

Statically selects the live branch of every conditional.

Each IfThenElse predicate is an expression over the configuration
sublanguage:

    predicate := Setting | TrueLiteral | FalseLiteral
               | And(predicate, predicate)
               | Or(predicate, predicate)
               | Not(predicate)

The predicate is evaluated against a Configuration and the IfThenElse
is replaced by its selected branch, which is folded in turn. The dead
branch is discarded with everything it alone defines.

Both operands of And/Or are always evaluated, and every setting inside a
discarded branch is looked up, so an undefined setting is reported even
where the rest of the predicate or the configuration would hide it.

After folding the tree holds no IfThenElse, And, Or, Not, Setting,
TrueLiteral or FalseLiteral nodes. A boolean node found outside a
predicate (a setting passed as a macro operand, say) folds to the
immediate 1 or 0.
"""

import logging

from offlineasm.ast import (
    And,
    BOOLEAN_NODE_TYPES,
    FalseLiteral,
    IfThenElse,
    Immediate,
    Node,
    Not,
    Or,
    Sequence,
    Setting,
    Skip,
    TrueLiteral,
)
from offlineasm.errors import MalformedNodeError
from offlineasm.settings import Configuration

logger = logging.getLogger(__name__)


def evaluate_predicate(predicate: Node, configuration: Configuration) -> bool:
    """
    Evaluate a configuration predicate.

    Raises:
        UndefinedSettingError: If the predicate names an unknown setting
        MalformedNodeError: If the predicate is not a boolean expression
    """
    if isinstance(predicate, Setting):
        return configuration.is_set(predicate.name, predicate.origin)
    if isinstance(predicate, (TrueLiteral, FalseLiteral)):
        return predicate.value
    if isinstance(predicate, And):
        left = evaluate_predicate(predicate.left, configuration)
        right = evaluate_predicate(predicate.right, configuration)
        return left and right
    if isinstance(predicate, Or):
        left = evaluate_predicate(predicate.left, configuration)
        right = evaluate_predicate(predicate.right, configuration)
        return left or right
    if isinstance(predicate, Not):
        return not evaluate_predicate(predicate.child, configuration)
    raise MalformedNodeError(
        "conditional predicate is not a boolean expression",
        predicate.origin,
        construct=predicate.dump(),
    )


class ConfigurationFolder:
    """
    Folds one tree against one configuration.

    Attributes:
        configuration: The configuration predicates are evaluated against
        folded: Number of conditionals resolved so far
        pruned: Number of dead branches discarded (non-Skip only)
    """

    def __init__(self, configuration: Configuration):
        self.configuration = configuration
        self.folded = 0
        self.pruned = 0

    def fold(self, tree: Node) -> Node:
        result = self._fold(tree)
        logger.debug(
            f"Folded {self.folded} conditionals for {self.configuration} "
            f"({self.pruned} dead branches pruned)"
        )
        return result

    def _fold(self, node: Node) -> Node:
        if isinstance(node, IfThenElse):
            self.folded += 1
            if evaluate_predicate(node.predicate, self.configuration):
                live, dead = node.then_case, node.else_case
            else:
                live, dead = node.else_case, node.then_case
            if not isinstance(dead, Skip):
                self.pruned += 1
                self._check_settings(dead)
            return self._fold(live)

        if isinstance(node, BOOLEAN_NODE_TYPES):
            value = evaluate_predicate(node, self.configuration)
            return Immediate(node.origin, 1 if value else 0)

        if isinstance(node, Sequence):
            return self._fold_sequence(node)

        return node.map_children(self._fold)

    def _check_settings(self, dead: Node) -> None:
        # A discarded branch still has to name known settings
        for setting in dead.filter(Setting):
            self.configuration.is_set(setting.name, setting.origin)

    def _fold_sequence(self, sequence: Sequence) -> Sequence:
        # Splice the branches that conditionals resolved to so folded
        # code does not accumulate nesting.
        items: list[Node] = []
        for item in sequence.items:
            folded = self._fold(item)
            if isinstance(folded, Sequence):
                items.extend(folded.items)
            elif not isinstance(folded, Skip):
                items.append(folded)
        return Sequence(sequence.origin, items)


def fold_configuration(tree: Node, configuration: Configuration) -> Node:
    """Fold every conditional in `tree` against `configuration`."""
    return ConfigurationFolder(configuration).fold(tree)
