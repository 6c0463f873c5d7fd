"""
Cross-repository commit division.

Each repository's diff is divided on its own, concurrently. After all of
them finish, the per-repository commits are merged into themed CommitGroups
and the groups are ordered so that a repository's dependencies are always
committed at or before the repository itself.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from commit_divider.core.backend import VersionControlBackend
from commit_divider.core.classifier import file_extension
from commit_divider.core.config import DEFAULT_CLASSIFIER_PRECEDENCE, CrossRepoGrouping, DividerConfig
from commit_divider.core.dependency_graph import DependencyGraph, build_dependency_graph
from commit_divider.core.diff_parser import parse_file_diff
from commit_divider.core.errors import ConfigurationError, DividerError, InvalidProposalFormat
from commit_divider.core.models import (
    ChangeType,
    CommitDivisionProposal,
    CommitGroup,
    CrossRepoCommit,
    CrossRepoDiff,
    CrossRepoProposal,
    Repository,
)
from commit_divider.core.proposal import ProposalBuilder, commit_from_dict
from commit_divider.core.repository import RepositoryRegistry
from commit_divider.core.semantic import dominant_change_type, jaccard


async def collect_cross_repo_diff(
    backend: VersionControlBackend,
    registry: RepositoryRegistry,
    commit_range: str,
    names: Optional[Sequence[str]] = None,
) -> CrossRepoDiff:
    """
    Read ``commit_range`` from every repository concurrently.

    A repository that cannot be read gets an entry in ``errors`` and an
    empty change list; the others are unaffected.
    """
    names = list(names) if names else registry.names()
    repos = [registry.get(name) for name in names]
    missing = [name for name, repo in zip(names, repos) if repo is None]
    if missing:
        raise ConfigurationError(f"Unknown repositories: {', '.join(missing)}")

    async def read(repo: Repository):
        try:
            return (await backend.get_diff_for_commit_range(repo.path, commit_range)).files, None
        except DividerError as e:
            logging.warning(f"Failed to read {commit_range} from repository {repo.name}: {e.message}")
            return [], e.message

    results = await asyncio.gather(*(read(repo) for repo in repos))
    diff = CrossRepoDiff(commit_range=commit_range, repositories=names)
    for name, (files, error) in zip(names, results):
        diff.changes[name] = files
        if error:
            diff.errors[name] = error
    return diff


@dataclass
class _Theme:
    key: str
    name: str
    commits: List[CrossRepoCommit] = field(default_factory=list)

    def keywords(self) -> Set[str]:
        merged: Set[str] = set()
        for commit in self.commits:
            merged.update(commit.keywords)
        return merged


def _extension_key(commit: CrossRepoCommit) -> str:
    counts = Counter(file_extension(change.path) for change in commit.changes)
    if not counts:
        return "none"
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))[0][0]


def _directory_key(commit: CrossRepoCommit) -> str:
    counts = Counter(
        PurePosixPath(change.path).parts[0] if len(PurePosixPath(change.path).parts) > 1 else "root"
        for change in commit.changes
    )
    if not counts:
        return "root"
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))[0][0]


THEME_KEYS: Dict[CrossRepoGrouping, Callable[[CrossRepoCommit], str]] = {
    CrossRepoGrouping.SEMANTIC: lambda commit: commit.change_type.value,
    CrossRepoGrouping.FILETYPE: _extension_key,
    CrossRepoGrouping.DIRECTORY: _directory_key,
}

THEME_NAMES: Dict[CrossRepoGrouping, str] = {
    CrossRepoGrouping.SEMANTIC: "{key} changes",
    CrossRepoGrouping.FILETYPE: "Changes to {key} files",
    CrossRepoGrouping.DIRECTORY: "Changes in {key}",
}


class CrossRepoPlanner:
    """Merges per-repository proposals into dependency-ordered CommitGroups."""

    def __init__(self, config: Optional[DividerConfig] = None):
        self.config = config or DividerConfig()
        self.builder = ProposalBuilder(self.config)

    async def divide_each(self, diff: CrossRepoDiff) -> Dict[str, CommitDivisionProposal]:
        """One proposal per repository, built concurrently in worker threads."""

        async def divide(name: str) -> CommitDivisionProposal:
            if name in diff.errors:
                return self.builder.failed(diff.commit_range, diff.errors[name])
            try:
                return await asyncio.to_thread(self.builder.build, diff.changes.get(name, []), diff.commit_range)
            except DividerError as e:
                logging.warning(f"Division failed for repository {name}: {e.message}")
                diff.errors[name] = e.message
                return self.builder.failed(diff.commit_range, e.message)

        proposals = await asyncio.gather(*(divide(name) for name in diff.repositories))
        return dict(zip(diff.repositories, proposals))

    async def propose(self, diff: CrossRepoDiff, registry: RepositoryRegistry) -> CrossRepoProposal:
        """
        Build a CrossRepoProposal for ``diff``.

        Raises:
            CyclicDependencyError: when declared plus inferred dependencies
                among the included repositories form a cycle.
        """
        repos = []
        for name in diff.repositories:
            repo = registry.get(name)
            if repo is None:
                raise ConfigurationError(f"Repository '{name}' is not in the registry")
            repos.append(repo)

        proposals = await self.divide_each(diff)
        graph = build_dependency_graph(
            repos,
            diff.changes,
            detect=self.config.dependency_detection,
            min_confidence=self.config.min_dependency_confidence,
        )
        order = graph.topological_order()

        commits = []
        for name in order:
            error = diff.errors.get(name)
            for proposed in proposals[name].proposed_commits:
                commits.append(CrossRepoCommit(
                    repository=name,
                    message=proposed.message,
                    changes=list(proposed.changes),
                    change_type=proposed.change_type,
                    keywords=set(proposed.keywords),
                    confidence=proposed.confidence,
                    error=error,
                ))

        themes = self._themes(commits)
        groups = self._order_groups(themes, graph, order)
        groups = self._cap_group_size(groups)

        confidences = [proposals[name].confidence_score for name in diff.repositories]
        proposal = CrossRepoProposal(
            commit_range=diff.commit_range,
            commit_groups=groups,
            confidence_score=sum(confidences) / len(confidences) if confidences else 0.0,
            repositories=list(diff.repositories),
            dependencies=list(graph.edges),
            repository_errors=dict(diff.errors),
        )
        logging.info(
            f"Proposed {len(groups)} commit groups across {len(diff.repositories)} repositories "
            f"(confidence={proposal.confidence_score:.2f})"
        )
        return proposal

    def _themes(self, commits: Sequence[CrossRepoCommit]) -> List[_Theme]:
        """Group commits by theme key, refined by shared keywords when enabled."""
        grouping = CrossRepoGrouping(self.config.cross_repo_grouping)
        key_of = THEME_KEYS[grouping]
        themes: List[_Theme] = []
        for commit in commits:
            key = key_of(commit)
            target = None
            for theme in themes:
                if theme.key != key:
                    continue
                if self.config.refine_by_keywords and commit.keywords and theme.keywords():
                    if jaccard(commit.keywords, theme.keywords()) < self.config.keyword_overlap_threshold:
                        continue
                target = theme
                break
            if target is None:
                target = _Theme(key=key, name=THEME_NAMES[grouping].format(key=key))
                themes.append(target)
            target.commits.append(commit)
        return themes

    def _order_groups(self, themes: List[_Theme], graph: DependencyGraph, order: List[str]) -> List[CommitGroup]:
        """
        Emit themes so no repository appears before its dependencies.

        A theme is emitted whole when every repository it introduces has its
        dependencies already emitted or inside the theme. Otherwise the first
        theme with a ready part is split and only the ready part is emitted.
        """
        rank = {name: index for index, name in enumerate(order)}
        deps = {name: set(graph.dependencies_of(name)) for name in order}
        emitted: Set[str] = set()
        pending = list(themes)
        groups: List[CommitGroup] = []

        def ready_repos(theme: _Theme) -> Set[str]:
            new = {commit.repository for commit in theme.commits} - emitted
            ready: Set[str] = set()
            changed = True
            while changed:
                changed = False
                for name in new - ready:
                    if deps[name] <= emitted | ready:
                        ready.add(name)
                        changed = True
            return ready

        while pending:
            chosen = None
            for theme in pending:
                new = {commit.repository for commit in theme.commits} - emitted
                if ready_repos(theme) == new:
                    chosen = theme
                    break
            if chosen is not None:
                pending.remove(chosen)
                part = chosen
            else:
                chosen = next(theme for theme in pending if ready_repos(theme))
                allowed = emitted | ready_repos(chosen)
                part = _Theme(chosen.key, chosen.name, [c for c in chosen.commits if c.repository in allowed])
                chosen.commits = [c for c in chosen.commits if c.repository not in allowed]
                logging.debug(f"Split theme '{chosen.name}' to respect repository dependencies")

            part.commits.sort(key=lambda commit: rank[commit.repository])
            emitted.update(commit.repository for commit in part.commits)
            groups.append(self._group(part))
        self._dedupe_names(groups)
        return groups

    def _group(self, theme: _Theme) -> CommitGroup:
        change_type = dominant_change_type([commit.change_type for commit in theme.commits],
                                           self.config.classifier_precedence)
        repositories = list(dict.fromkeys(commit.repository for commit in theme.commits))
        return CommitGroup(
            name=theme.name,
            change_type=change_type,
            commits=list(theme.commits),
            description=f"{len(theme.commits)} commit(s) across {len(repositories)} repositories",
            group_type=CrossRepoGrouping(self.config.cross_repo_grouping).value,
            confidence=sum(commit.confidence for commit in theme.commits) / len(theme.commits),
            keywords=theme.keywords(),
        )

    def _cap_group_size(self, groups: List[CommitGroup]) -> List[CommitGroup]:
        size = self.config.max_group_size
        capped: List[CommitGroup] = []
        for group in groups:
            if len(group.commits) <= size:
                capped.append(group)
                continue
            for index in range(0, len(group.commits), size):
                chunk = group.commits[index:index + size]
                capped.append(CommitGroup(
                    name=f"{group.name} (part {index // size + 1})",
                    change_type=group.change_type,
                    commits=chunk,
                    description=group.description,
                    group_type=group.group_type,
                    confidence=sum(commit.confidence for commit in chunk) / len(chunk),
                    keywords={keyword for commit in chunk for keyword in commit.keywords},
                ))
        return capped

    @staticmethod
    def _dedupe_names(groups: List[CommitGroup]) -> None:
        seen: Counter = Counter()
        for group in groups:
            seen[group.name] += 1
            if seen[group.name] > 1:
                group.name = f"{group.name} #{seen[group.name]}"


async def generate_cross_repo_proposal(
    diff: CrossRepoDiff,
    registry: RepositoryRegistry,
    config: Optional[DividerConfig] = None,
) -> CrossRepoProposal:
    return await CrossRepoPlanner(config).propose(diff, registry)


def summarize_cross_repo_diff(diff: CrossRepoDiff, graph: DependencyGraph) -> Dict[str, object]:
    """Per-repository change counts plus the dependency edges, for analysis responses."""
    repositories = []
    for name in diff.repositories:
        files = diff.changes.get(name, [])
        additions = deletions = 0
        for file in files:
            parsed = parse_file_diff(file)
            additions += parsed.additions
            deletions += parsed.deletions
        entry = {"name": name, "changes": {"files": len(files), "additions": additions, "deletions": deletions}}
        if name in diff.errors:
            entry["error"] = diff.errors[name]
        repositories.append(entry)
    cycle = graph.find_cycle()
    return {
        "commitRange": diff.commit_range,
        "repositories": repositories,
        "dependencies": [edge.to_dict() for edge in graph.edges],
        "cycle": cycle,
    }


def cross_repo_proposal_from_dict(data: Any) -> CrossRepoProposal:
    """
    Rebuild a cross-repository proposal from its JSON form.

    Raises:
        InvalidProposalFormat: when groups or commits miss required fields.
    """
    if not isinstance(data, dict) or not isinstance(data.get("commitGroups"), list):
        raise InvalidProposalFormat(
            "Invalid proposal format: missing commitGroups",
            "Pass the 'proposal' object returned by proposeMultiRepoSplit",
        )
    groups: List[CommitGroup] = []
    repositories: List[str] = []
    for group_index, item in enumerate(data["commitGroups"]):
        where = f"commitGroups[{group_index}]"
        if not isinstance(item, dict) or not isinstance(item.get("commits"), list):
            raise InvalidProposalFormat(f"Invalid proposal format: missing commits in {where}")
        commits: List[CrossRepoCommit] = []
        for commit_index, raw in enumerate(item["commits"]):
            commit_where = f"{where}.commits[{commit_index}]"
            repository = raw.get("repository") if isinstance(raw, dict) else None
            if not isinstance(repository, str) or not repository:
                raise InvalidProposalFormat(f"Invalid proposal format: missing repository in {commit_where}")
            parsed = commit_from_dict(raw, commit_where)
            commits.append(CrossRepoCommit(
                repository=repository,
                message=parsed.message,
                changes=parsed.changes,
                change_type=parsed.change_type,
                keywords=parsed.keywords,
                confidence=parsed.confidence,
                error=raw.get("error"),
            ))
            if repository not in repositories:
                repositories.append(repository)
        groups.append(CommitGroup(
            name=str(item.get("name") or f"group {group_index + 1}"),
            change_type=_group_change_type(item.get("changeType"), commits),
            commits=commits,
            description=str(item.get("description", "")),
            group_type=str(item.get("groupType", "semantic")),
            confidence=float(item.get("confidence", 0.0)),
            keywords=set(item.get("keywords") or []),
        ))
    return CrossRepoProposal(
        commit_range=str(data.get("commitRange", "")),
        commit_groups=groups,
        confidence_score=float(data.get("confidenceScore", 0.0)),
        repositories=list(data.get("repositories") or repositories),
        repository_errors=dict(data.get("repositoryErrors") or {}),
    )


def _group_change_type(value: Any, commits: Sequence[CrossRepoCommit]) -> ChangeType:
    try:
        return ChangeType(value)
    except ValueError:
        return dominant_change_type([commit.change_type for commit in commits], DEFAULT_CLASSIFIER_PRECEDENCE)
