"""
Replaying division proposals as real commits.

Execution starts a new change on the original revision and writes each
proposed commit with the file contents of the target revision. The original
commits are left untouched, so a failed run never loses work; it does leave
the commits created so far, which are reported in the raised ExecutionError.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from commit_divider.core.backend import FileChange, VersionControlBackend
from commit_divider.core.diff_parser import parse_file_diff
from commit_divider.core.errors import DividerError, ExecutionError, InvalidProposalFormat
from commit_divider.core.models import CommitDivisionProposal, CrossRepoProposal, FileDiff, FileOperation
from commit_divider.core.proposal import split_commit_range
from commit_divider.core.repository import RepositoryRegistry


def replay_bounds(original: str, target: str) -> Tuple[str, str]:
    """Revision to build on and revision to read contents from."""
    if not original or original == target:
        return f"{target or '@'}-", target or "@"
    return original, target


async def _file_changes(backend: VersionControlBackend, repo_path: str, target: str,
                        changes: Sequence[FileDiff], present: Set[str]) -> List[FileChange]:
    result: List[FileChange] = []
    for change in changes:
        old_path = change.old_path or parse_file_diff(change).old_path
        if old_path and old_path != change.path and old_path not in present:
            result.append((old_path, None))
        if change.change_type == FileOperation.DELETE or change.path not in present:
            result.append((change.path, None))
        else:
            result.append((change.path, await backend.get_file_content(repo_path, target, change.path)))
    return result


def _check_disjoint(commits: Sequence[Tuple[str, Sequence[FileDiff]]]) -> None:
    seen: Dict[Tuple[str, str], int] = {}
    for index, (scope, changes) in enumerate(commits):
        for change in changes:
            key = (scope, change.path)
            if key in seen:
                raise InvalidProposalFormat(
                    f"Invalid proposal format: {change.path} appears in commits {seen[key]} and {index}",
                    "Each file may belong to exactly one proposed commit",
                )
            seen[key] = index


async def execute_proposal(backend: VersionControlBackend, repo_path: str,
                           proposal: CommitDivisionProposal) -> Dict[str, Any]:
    """
    Create one commit per proposed commit in ``repo_path``.

    Commits without changes are skipped and reported by index.

    Raises:
        InvalidProposalFormat: before any backend call, for an empty or
            overlapping proposal.
        ExecutionError: when the backend fails part way; carries the ids of
            commits already created.
    """
    if not proposal.proposed_commits:
        raise InvalidProposalFormat("Invalid proposal format: no proposed commits")
    _check_disjoint([(repo_path, commit.changes) for commit in proposal.proposed_commits])

    base, target = replay_bounds(proposal.original_commit_id, proposal.target_commit_id)
    created: List[str] = []
    skipped: List[int] = []
    try:
        present = set(await backend.list_files(repo_path, target))
        await backend.prepare_working_copy(repo_path, base)
        for index, commit in enumerate(proposal.proposed_commits):
            if not commit.changes:
                skipped.append(index)
                continue
            changes = await _file_changes(backend, repo_path, target, commit.changes, present)
            created.append(await backend.create_commit(repo_path, commit.message, changes))
    except DividerError as e:
        raise ExecutionError(f"Error executing division: {e.message}", {repo_path: created}, e.hint) from e

    logging.info(f"Executed division in {repo_path}: {len(created)} commits created, {len(skipped)} skipped")
    return {"success": True, "commitIds": created, "skippedCommits": skipped}


async def execute_cross_repo_proposal(backend: VersionControlBackend, registry: RepositoryRegistry,
                                      proposal: CrossRepoProposal,
                                      commit_range: Optional[str] = None) -> Dict[str, Any]:
    """
    Replay every CommitGroup in order, committing per repository.

    Each repository gets a new change on its original revision the first
    time one of its commits is replayed. Commits carrying an error
    annotation or no changes are skipped.
    """
    if not proposal.commit_groups:
        raise InvalidProposalFormat("Invalid proposal format: missing commitGroups")
    unknown = sorted({commit.repository for group in proposal.commit_groups for commit in group.commits
                      if commit.repository not in registry})
    if unknown:
        raise InvalidProposalFormat(f"Invalid proposal format: unknown repositories {', '.join(unknown)}")
    _check_disjoint([(commit.repository, commit.changes)
                     for group in proposal.commit_groups for commit in group.commits])

    base, target = replay_bounds(*split_commit_range(commit_range or proposal.commit_range))
    created: Dict[str, List[str]] = {}
    present: Dict[str, Set[str]] = {}
    groups: List[Dict[str, Any]] = []
    try:
        for group in proposal.commit_groups:
            group_ids: List[str] = []
            for commit in group.commits:
                if commit.error or not commit.changes:
                    continue
                repo_path = registry.get(commit.repository).path
                if commit.repository not in present:
                    present[commit.repository] = set(await backend.list_files(repo_path, target))
                    await backend.prepare_working_copy(repo_path, base)
                    created[commit.repository] = []
                changes = await _file_changes(backend, repo_path, target, commit.changes, present[commit.repository])
                commit_id = await backend.create_commit(repo_path, commit.message, changes)
                created[commit.repository].append(commit_id)
                group_ids.append(commit_id)
            groups.append({"name": group.name, "commitIds": group_ids})
    except DividerError as e:
        raise ExecutionError(f"Error executing division: {e.message}", created, e.hint) from e

    logging.info(f"Executed cross-repository split: {sum(len(ids) for ids in created.values())} commits "
                 f"in {len(created)} repositories")
    return {"success": True, "commitIds": created, "groups": groups}
