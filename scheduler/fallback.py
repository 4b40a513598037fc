"""
Fallback Graph Resolver.

Primary -> fallback preceptor relationships form a directed graph per scope
(one scope per clerkship, plus the global scope). Acyclicity is enforced when
an edge is added, so walking a chain at scheduling time never needs a cycle check.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from models import FallbackEdge
from .errors import DuplicateFallbackPriorityError, FallbackCycleError

logger = logging.getLogger(__name__)

MAX_CHAIN_DEPTH = 5

Scope = Optional[str]


@dataclass(frozen=True)
class ChainLink:
    """One step of a resolved chain: the preceptor reached and the edge used to reach it."""
    preceptor_id: str
    edge: FallbackEdge
    depth: int


class FallbackGraph:
    """
    Scoped, priority-ordered fallback edges.
    """

    def __init__(self, edges: Iterable[FallbackEdge] = ()):
        # scope -> primary -> edges sorted by priority
        self._edges: Dict[Scope, Dict[str, List[FallbackEdge]]] = defaultdict(lambda: defaultdict(list))
        self._nodes: Set[str] = set()
        for edge in edges:
            self.add_edge(edge)

    def add_edge(self, edge: FallbackEdge) -> None:
        """Register an edge. Raises a ConfigurationError if it breaks the graph invariants."""
        scope = edge.clerkship_id
        existing = self._edges[scope][edge.primary_preceptor_id]

        if any(e.priority == edge.priority for e in existing):
            raise DuplicateFallbackPriorityError(
                f"Priority {edge.priority} already used in fallback chain of "
                f"{edge.primary_preceptor_id} ({scope or 'global'} scope)"
            )

        if self.would_create_cycle(edge.primary_preceptor_id, edge.fallback_preceptor_id, scope):
            raise FallbackCycleError(edge.primary_preceptor_id, edge.fallback_preceptor_id, scope)

        existing.append(edge)
        existing.sort(key=lambda e: e.priority)
        self._nodes.update((edge.primary_preceptor_id, edge.fallback_preceptor_id))

    def would_create_cycle(self, primary_id: str, fallback_id: str, clerkship_id: Scope = None) -> bool:
        """
        True if primary_id is reachable from fallback_id in any graph a chain
        walk can see. A clerkship sees its own edges plus the global ones, so
        a scoped edge is checked against that union, and a global edge against
        the global scope and every clerkship's union.
        """
        if primary_id == fallback_id:
            return True

        if clerkship_id is not None:
            scopes: List[Scope] = [clerkship_id]
        else:
            scopes = [None] + [s for s in list(self._edges) if s is not None]
        return any(self._reaches(fallback_id, primary_id, scope) for scope in scopes)

    def _reaches(self, source: str, target: str, clerkship_id: Scope) -> bool:
        """
        Walks every path out of source over the edges visible to the scope.
        A revisit of a node on the current path (a cycle already present)
        also counts. The walk is bounded by the node count.
        """
        bound = len(self._nodes) + 2
        visited: Set[str] = set()
        on_path: Set[str] = set()
        steps = 0

        # Iterative DFS: (node, next edge index)
        stack: List[Tuple[str, int]] = [(source, 0)]
        on_path.add(source)
        while stack:
            node, idx = stack.pop()
            if node == target:
                return True
            outgoing = self.edges_from(node, clerkship_id)
            if idx >= len(outgoing):
                on_path.discard(node)
                visited.add(node)
                continue

            stack.append((node, idx + 1))
            nxt = outgoing[idx].fallback_preceptor_id
            steps += 1
            if steps > bound * bound:
                logger.error(f"Fallback walk from {source} exceeded its bound; treating as cyclic")
                return True
            if nxt in on_path:
                return True
            if nxt in visited:
                continue
            on_path.add(nxt)
            stack.append((nxt, 0))
        return False

    def edges_from(self, primary_id: str, clerkship_id: Scope = None) -> List[FallbackEdge]:
        """Direct edges out of primary_id; clerkship-scoped edges before global ones."""
        edges = []
        if clerkship_id is not None:
            edges.extend(self._edges.get(clerkship_id, {}).get(primary_id, []))
        edges.extend(self._edges.get(None, {}).get(primary_id, []))
        return edges

    def chain_links(self, primary_id: str, clerkship_id: Scope = None) -> List[ChainLink]:
        """
        Forward walk of the chain: direct fallbacks by ascending priority, each
        followed by its own fallbacks (cascading), up to MAX_CHAIN_DEPTH.
        """
        links: List[ChainLink] = []
        seen = {primary_id}

        def _walk(node: str, depth: int) -> None:
            if depth > MAX_CHAIN_DEPTH:
                return
            for edge in self.edges_from(node, clerkship_id):
                target = edge.fallback_preceptor_id
                if target in seen:
                    continue
                seen.add(target)
                links.append(ChainLink(preceptor_id=target, edge=edge, depth=depth))
                _walk(target, depth + 1)

        _walk(primary_id, 1)
        return links

    def chain(self, primary_id: str, clerkship_id: Scope = None) -> List[str]:
        """Ordered fallback preceptor ids for primary_id."""
        return [link.preceptor_id for link in self.chain_links(primary_id, clerkship_id)]
