"""
Cross-repository dependency graph.

Nodes are repository names. An edge ``A -> B`` means A depends on B, so B
must be committed no later than A. Declared edges come from the repository
registry; inferred edges come from scanning changed lines for references to
another repository's name.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from commit_divider.core.diff_parser import parse_file_diff
from commit_divider.core.errors import CyclicDependencyError
from commit_divider.core.models import CrossRepoDependency, FileDiff, Repository

IMPORT_CONFIDENCE = 0.9
REFERENCE_CONFIDENCE = 0.7

_IMPORT_LINE_RE = re.compile(
    r"^\s*(?:import|from|require|use|using|include|#include|extern\s+crate|depends?|dependencies)\b"
    r"|\brequire\s*\(|\bimport\s*\(",
    re.IGNORECASE,
)

WHITE, GRAY, BLACK = 0, 1, 2


def name_variants(name: str) -> Set[str]:
    """Spellings of a repository name in code: as-is, with '_' and with '-'."""
    lowered = name.lower()
    return {lowered, lowered.replace("-", "_"), lowered.replace("_", "-")}


def _reference_re(name: str) -> re.Pattern:
    alternatives = "|".join(sorted((re.escape(variant) for variant in name_variants(name)), key=len, reverse=True))
    return re.compile(rf"(?<![A-Za-z0-9_-])(?:{alternatives})(?![A-Za-z0-9_-])", re.IGNORECASE)


@dataclass
class DependencyGraph:
    """Edges among the repositories of one cross-repo diff."""
    nodes: List[str]
    edges: List[CrossRepoDependency] = field(default_factory=list)

    def add_edge(self, dependency: CrossRepoDependency) -> bool:
        """Add an edge unless it is a self-loop or duplicates an existing source/target pair."""
        if dependency.source == dependency.target:
            return False
        if dependency.source not in self.nodes or dependency.target not in self.nodes:
            return False
        if any(edge.source == dependency.source and edge.target == dependency.target for edge in self.edges):
            return False
        self.edges.append(dependency)
        return True

    def dependencies_of(self, node: str) -> List[str]:
        return [edge.target for edge in self.edges if edge.source == node]

    def adjacency(self) -> Dict[str, List[str]]:
        graph: Dict[str, List[str]] = {node: [] for node in self.nodes}
        for edge in self.edges:
            graph[edge.source].append(edge.target)
        return graph

    def find_cycle(self) -> Optional[List[str]]:
        return find_cycle(self.nodes, self.adjacency())

    def check_acyclic(self) -> None:
        cycle = self.find_cycle()
        if cycle:
            raise CyclicDependencyError(cycle)

    def topological_order(self) -> List[str]:
        """Dependencies before dependents; ties keep node order."""
        self.check_acyclic()
        return topological_order(self.nodes, self.adjacency())


def find_cycle(nodes: Sequence[str], graph: Mapping[str, Iterable[str]]) -> Optional[List[str]]:
    """
    Three-color depth-first search with an explicit stack.

    Returns the first cycle found as a closed path (``[a, b, a]``) or None.
    Edges to names outside ``nodes`` are ignored.
    """
    known = set(nodes)
    color: Dict[str, int] = {node: WHITE for node in nodes}
    for root in nodes:
        if color[root] != WHITE:
            continue
        color[root] = GRAY
        path = [root]
        stack = [iter([target for target in graph.get(root, ()) if target in known])]
        while stack:
            target = next(stack[-1], None)
            if target is None:
                stack.pop()
                color[path.pop()] = BLACK
                continue
            if color[target] == GRAY:
                return path[path.index(target):] + [target]
            if color[target] == WHITE:
                color[target] = GRAY
                path.append(target)
                stack.append(iter([nxt for nxt in graph.get(target, ()) if nxt in known]))
    return None


def topological_order(nodes: Sequence[str], graph: Mapping[str, Iterable[str]]) -> List[str]:
    """
    Kahn's algorithm, picking the earliest ready node in ``nodes`` order.

    ``graph`` maps a node to the nodes it depends on. Raises
    CyclicDependencyError when no order exists.
    """
    known = set(nodes)
    pending: Dict[str, Set[str]] = {
        node: {target for target in graph.get(node, ()) if target in known and target != node}
        for node in nodes
    }
    order: List[str] = []
    while pending:
        ready = next((node for node in nodes if node in pending and not pending[node]), None)
        if ready is None:
            cycle = find_cycle([node for node in nodes if node in pending], pending)
            raise CyclicDependencyError(cycle or sorted(pending))
        order.append(ready)
        del pending[ready]
        for targets in pending.values():
            targets.discard(ready)
    return order


def infer_dependencies(
    changes: Mapping[str, Sequence[FileDiff]],
    repositories: Sequence[str],
    min_confidence: float = 0.0,
) -> List[CrossRepoDependency]:
    """
    Edges implied by one repository's changed lines naming another repository.

    A reference on an import-like line is an ``import`` edge, anything else a
    ``reference`` edge. The strongest evidence per source/target pair wins.
    """
    patterns = {name: _reference_re(name) for name in repositories}
    best: Dict[tuple, CrossRepoDependency] = {}
    for source in repositories:
        for file in changes.get(source, ()):
            for line in parse_file_diff(file).changed_lines():
                for target, pattern in patterns.items():
                    if target == source or not pattern.search(line):
                        continue
                    is_import = bool(_IMPORT_LINE_RE.search(line))
                    candidate = CrossRepoDependency(
                        source=source,
                        target=target,
                        kind="import" if is_import else "reference",
                        confidence=IMPORT_CONFIDENCE if is_import else REFERENCE_CONFIDENCE,
                        source_file=file.path,
                        evidence=line.strip()[:200],
                    )
                    current = best.get((source, target))
                    if current is None or candidate.confidence > current.confidence:
                        best[(source, target)] = candidate
    inferred = [edge for edge in best.values() if edge.confidence >= min_confidence]
    if inferred:
        logging.info(f"Inferred {len(inferred)} cross-repository dependencies")
    return inferred


def build_dependency_graph(
    repositories: Sequence[Repository],
    changes: Mapping[str, Sequence[FileDiff]],
    detect: bool = True,
    min_confidence: float = 0.0,
    check: bool = True,
) -> DependencyGraph:
    """
    Declared plus inferred edges among ``repositories``.

    Inferred targets are appended to the source Repository's
    ``dependencies``; declared ones are never removed. Raises
    CyclicDependencyError when the combined edges form a cycle, unless
    ``check`` is off.
    """
    names = [repo.name for repo in repositories]
    graph = DependencyGraph(nodes=names)
    for repo in repositories:
        for target in sorted(repo.dependencies):
            graph.add_edge(CrossRepoDependency(source=repo.name, target=target))

    inferred = []
    if detect:
        inferred = [edge for edge in infer_dependencies(changes, names, min_confidence) if graph.add_edge(edge)]

    if check:
        graph.check_acyclic()
    by_name = {repo.name: repo for repo in repositories}
    for edge in inferred:
        by_name[edge.source].dependencies.add(edge.target)
    return graph
