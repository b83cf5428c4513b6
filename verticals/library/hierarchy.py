"""Domain (subject category) hierarchy resolution.

Domains form a forest through their parent_id links. A DomainHierarchy is an
arena of nodes keyed by id plus a parent -> children index, built once from
the full node list and then queried many times. Building it verifies the
forest is acyclic, so every later query is a plain subtree walk.

A node always counts as its own descendant; two nodes are "directly related"
when one lies in the other's subtree.
"""

from collections import defaultdict
from typing import Iterable

from verticals.library.errors import CycleDetected
from verticals.library.models.schemas import DomainNode


class DomainHierarchy:
    """Read-only index over a domain forest.

    Usage::

        hierarchy = DomainHierarchy(await domain_repo.list_all())
        if hierarchy.are_directly_related(algorithms, graph_algorithms):
            ...
    """

    def __init__(self, nodes: Iterable[DomainNode]):
        self._nodes: dict[int, DomainNode] = {}
        self._children: dict[int, list[int]] = defaultdict(list)
        for node in nodes:
            self._nodes[node.id] = node
        for node in self._nodes.values():
            if node.parent_id is not None:
                self._children[node.parent_id].append(node.id)
        self._check_acyclic()

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node: DomainNode) -> bool:
        return node.id in self._nodes

    def get(self, node_id: int) -> DomainNode | None:
        return self._nodes.get(node_id)

    # -- Invariants --

    def _check_acyclic(self) -> None:
        """Walk every ancestor chain, failing on one longer than the forest."""
        limit = len(self._nodes)
        settled: set[int] = set()
        for start in self._nodes:
            chain: list[int] = []
            current: int | None = start
            while current in self._nodes and current not in settled:
                chain.append(current)
                if len(chain) > limit:
                    raise CycleDetected(start, chain)
                current = self._nodes[current].parent_id
            settled.update(chain)

    # -- Queries --

    def descendants(self, target: DomainNode) -> set[DomainNode]:
        """target plus every node whose ancestor chain reaches it."""
        found: dict[int, DomainNode] = {target.id: self._nodes.get(target.id, target)}
        stack = [target.id]
        while stack:
            for child_id in self._children.get(stack.pop(), ()):
                found[child_id] = self._nodes[child_id]
                stack.append(child_id)
        return set(found.values())

    def descendant_ids(self, target: DomainNode) -> set[int]:
        return {node.id for node in self.descendants(target)}

    def are_directly_related(self, a: DomainNode, b: DomainNode) -> bool:
        """True if either node is the other or lies in the other's subtree."""
        return b.id in self.descendant_ids(a) or a.id in self.descendant_ids(b)

    def subject_families(self, nodes: Iterable[DomainNode]) -> list[set[DomainNode]]:
        """Group nodes so that directly related ones share a family.

        Two nodes land in the same family when a chain of ancestor/descendant
        links joins them within the given set.
        """
        families: list[set[DomainNode]] = []
        for node in nodes:
            joined = [
                family for family in families
                if any(self.are_directly_related(node, member) for member in family)
            ]
            merged = {node}
            for family in joined:
                merged |= family
                families.remove(family)
            families.append(merged)
        return families


# ---------------------------------------------------------------------------
# Functional entry points
# ---------------------------------------------------------------------------

def descendants(target: DomainNode, all_nodes: Iterable[DomainNode]) -> set[DomainNode]:
    """Descendants of target within all_nodes, target included."""
    return DomainHierarchy(all_nodes).descendants(target)


def are_directly_related(
    a: DomainNode, b: DomainNode, all_nodes: Iterable[DomainNode]
) -> bool:
    """Whether a and b stand in an ancestor-descendant relationship."""
    return DomainHierarchy(all_nodes).are_directly_related(a, b)
