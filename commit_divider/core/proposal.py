"""
Division proposal building.

A proposal is one ProposedCommit per semantic group, reshaped by a division
strategy and a commit size preference, then bounded by the confidence and
commit-count limits. Reshaping and limits only regroup files: every file of
the input diff lands in exactly one proposed commit.
"""

import logging
from dataclasses import dataclass, replace
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from commit_divider.core.classifier import file_extension
from commit_divider.core.config import CommitSize, DividerConfig, DivisionStrategy
from commit_divider.core.diff_parser import parse_file_diff
from commit_divider.core.errors import AnalysisFailure, InvalidProposalFormat
from commit_divider.core.messages import (
    format_message,
    merged_message,
    parse_commit_type,
    repair_message,
    synthesize_message,
)
from commit_divider.core.models import (
    ChangeType,
    CommitDivisionProposal,
    FileDiff,
    FileOperation,
    ProposedCommit,
    SemanticPattern,
)
from commit_divider.core.semantic import (
    WORKSPACE_ERROR_PATTERN,
    FileProfile,
    SemanticAnalyzer,
    common_area,
    dominant_change_type,
    error_pattern,
)

LARGE_COMMIT_FILES = 5
SMALL_COMMIT_FILES = 3


def split_commit_range(commit_range: str) -> Tuple[str, str]:
    """``"A..B"`` -> ``("A", "B")``; a single revision is both ends."""
    commit_range = (commit_range or "").strip()
    if ".." in commit_range:
        start, end = commit_range.split("..", 1)
        end = end.lstrip(".")
        return start or "root()", end or "@"
    return commit_range, commit_range


@dataclass
class _Draft:
    """A commit under construction: its pattern and member files."""
    pattern: SemanticPattern
    members: List[FileProfile]


def _merge_drafts(drafts: Sequence[_Draft], analyzer: SemanticAnalyzer, name: str) -> _Draft:
    members = [member for draft in drafts for member in draft.members]
    change_type = dominant_change_type([draft.pattern.change_type for draft in drafts],
                                       analyzer.config.classifier_precedence)
    keywords = set()
    for draft in drafts:
        keywords.update(draft.pattern.keywords)
    pattern = SemanticPattern(
        pattern=name,
        change_type=change_type,
        confidence=sum(draft.pattern.confidence for draft in drafts) / len(drafts),
        files={member.path for member in members},
        keywords=keywords,
        area=common_area([member.path for member in members]),
        description=f"{len(drafts)} groups merged",
    )
    return _Draft(pattern, members)


def _balanced(builder: "ProposalBuilder", profiles: List[FileProfile]) -> List[_Draft]:
    by_path = {profile.path: profile for profile in profiles}
    patterns = builder.analyzer.group_profiles(profiles)
    return [_Draft(pattern, [by_path[path] for path in _ordered(pattern.files, by_path)]) for pattern in patterns]


def _semantic(builder: "ProposalBuilder", profiles: List[FileProfile]) -> List[_Draft]:
    clusters = builder.analyzer.cluster(profiles, by_type=False)
    return [_Draft(builder.analyzer.pattern_for(members), members) for members in clusters]


def _by_key(builder: "ProposalBuilder", profiles: List[FileProfile],
            key: Callable[[str], str], name: str) -> List[_Draft]:
    groups: Dict[str, List[FileProfile]] = {}
    for profile in profiles:
        groups.setdefault(key(profile.path), []).append(profile)
    return [
        _Draft(builder.analyzer.pattern_for(members, name.format(key=group_key)), members)
        for group_key, members in groups.items()
    ]


def _parent_dir(path: str) -> str:
    parent = str(PurePosixPath(path).parent)
    return "root" if parent == "." else parent


def _filetype(builder: "ProposalBuilder", profiles: List[FileProfile]) -> List[_Draft]:
    return _by_key(builder, profiles, file_extension, "Changes to {key} files")


def _directory(builder: "ProposalBuilder", profiles: List[FileProfile]) -> List[_Draft]:
    return _by_key(builder, profiles, _parent_dir, "Changes in {key}")


STRATEGIES: Dict[DivisionStrategy, Callable[["ProposalBuilder", List[FileProfile]], List[_Draft]]] = {
    DivisionStrategy.BALANCED: _balanced,
    DivisionStrategy.SEMANTIC: _semantic,
    DivisionStrategy.FILETYPE: _filetype,
    DivisionStrategy.DIRECTORY: _directory,
}


def _keep(builder: "ProposalBuilder", drafts: List[_Draft]) -> List[_Draft]:
    return drafts


def _split_large(builder: "ProposalBuilder", drafts: List[_Draft]) -> List[_Draft]:
    result: List[_Draft] = []
    for draft in drafts:
        if len(draft.members) <= LARGE_COMMIT_FILES:
            result.append(draft)
            continue
        by_dir: Dict[str, List[FileProfile]] = {}
        for member in draft.members:
            by_dir.setdefault(_parent_dir(member.path), []).append(member)
        if len(by_dir) == 1:
            result.append(draft)
            continue
        for members in by_dir.values():
            pattern = builder.analyzer.pattern_for(members)
            pattern.change_type = draft.pattern.change_type
            pattern.keywords = pattern.keywords or set(draft.pattern.keywords)
            result.append(_Draft(pattern, members))
    return result


def _merge_small(builder: "ProposalBuilder", drafts: List[_Draft]) -> List[_Draft]:
    if len(drafts) <= 1:
        return drafts
    large = [draft for draft in drafts if len(draft.members) >= SMALL_COMMIT_FILES]
    small: Dict[ChangeType, List[_Draft]] = {}
    for draft in drafts:
        if len(draft.members) < SMALL_COMMIT_FILES:
            small.setdefault(draft.pattern.change_type, []).append(draft)
    merged: List[_Draft] = []
    for change_type, group in small.items():
        if len(group) == 1:
            merged.append(group[0])
            continue
        combined = _merge_drafts(group, builder.analyzer, f"Combined {change_type.value} changes")
        combined.pattern.change_type = change_type
        merged.append(combined)
    return large + merged


SIZE_PREFERENCES: Dict[CommitSize, Callable[["ProposalBuilder", List[_Draft]], List[_Draft]]] = {
    CommitSize.BALANCED: _keep,
    CommitSize.MANY: _split_large,
    CommitSize.FEW: _merge_small,
}


def _ordered(paths, by_path: Dict[str, FileProfile]) -> List[str]:
    return sorted(paths, key=lambda path: by_path[path].order)


class ProposalBuilder:
    """Builds CommitDivisionProposals for one repository's diff."""

    def __init__(self, config: Optional[DividerConfig] = None):
        self.config = config or DividerConfig()
        self.analyzer = SemanticAnalyzer(self.config)

    def build(
        self,
        files: Sequence[FileDiff],
        commit_range: str,
        strategy: Optional[DivisionStrategy] = None,
        commit_size: Optional[CommitSize] = None,
        min_confidence: Optional[float] = None,
        max_commits: Optional[int] = None,
    ) -> CommitDivisionProposal:
        strategy = DivisionStrategy(strategy or self.config.division_strategy)
        commit_size = CommitSize(commit_size or self.config.commit_size)
        min_confidence = self.config.min_confidence if min_confidence is None else min_confidence
        max_commits = self.config.max_commits if max_commits is None else max(1, max_commits)

        original, target = split_commit_range(commit_range)
        file_map: Dict[str, FileDiff] = {}
        for file in files:
            file_map.setdefault(file.path, file)
        profiles = self.analyzer.profile([parse_file_diff(file) for file in file_map.values()])

        proposal = CommitDivisionProposal(
            original_commit_id=original,
            target_commit_id=target,
            total_changes=len(file_map),
            commit_range=commit_range,
            strategy=strategy.value,
            commit_size=commit_size.value,
        )

        if not profiles:
            patterns = self.analyzer.identify_boundaries([])
            proposal.proposed_commits = [self._sentinel_commit(patterns[0])]
            proposal.confidence_score = patterns[0].confidence
            return proposal

        drafts = STRATEGIES[strategy](self, profiles)
        proposal.confidence_score = sum(draft.pattern.confidence for draft in drafts) / len(drafts)
        drafts = SIZE_PREFERENCES[commit_size](self, drafts)
        drafts = self._apply_limits(drafts, min_confidence, max_commits)

        proposal.proposed_commits = [self._to_commit(draft, file_map) for draft in drafts]
        self._check_complete(proposal, file_map)
        logging.info(
            f"Proposed {len(proposal.proposed_commits)} commits for {commit_range} "
            f"(strategy={strategy.value}, size={commit_size.value}, confidence={proposal.confidence_score:.2f})"
        )
        return proposal

    def failed(self, commit_range: str, description: str) -> CommitDivisionProposal:
        """Proposal holding only the workspace error sentinel."""
        original, target = split_commit_range(commit_range)
        pattern = error_pattern(WORKSPACE_ERROR_PATTERN, description=description)
        return CommitDivisionProposal(
            original_commit_id=original,
            target_commit_id=target,
            proposed_commits=[self._sentinel_commit(pattern)],
            total_changes=0,
            confidence_score=pattern.confidence,
            commit_range=commit_range,
        )

    def _apply_limits(self, drafts: List[_Draft], min_confidence: float, max_commits: int) -> List[_Draft]:
        confident = [draft for draft in drafts if draft.pattern.confidence >= min_confidence]
        weak = [draft for draft in drafts if draft.pattern.confidence < min_confidence]
        if len(weak) > 1:
            weak = [_merge_drafts(weak, self.analyzer, "Low-confidence changes")]
        drafts = confident + weak
        if len(drafts) > max_commits:
            head, tail = drafts[:max_commits - 1], drafts[max_commits - 1:]
            drafts = head + [_merge_drafts(tail, self.analyzer, "Remaining changes")]
        return drafts

    def _to_commit(self, draft: _Draft, file_map: Dict[str, FileDiff]) -> ProposedCommit:
        pattern = draft.pattern
        components = [PurePosixPath(member.path).stem for member in draft.members]
        if pattern.description.endswith("groups merged"):
            message = merged_message(pattern.change_type)
        else:
            message = synthesize_message(pattern, components)
        return ProposedCommit(
            message=message,
            changes=[file_map[member.path] for member in draft.members],
            change_type=pattern.change_type,
            keywords=set(pattern.keywords),
            confidence=pattern.confidence,
        )

    @staticmethod
    def _sentinel_commit(pattern: SemanticPattern) -> ProposedCommit:
        return ProposedCommit(
            message=format_message(ChangeType.CHORE, pattern.description or "nothing to divide"),
            changes=[],
            change_type=ChangeType.CHORE,
            keywords=set(pattern.keywords),
            confidence=pattern.confidence,
        )

    @staticmethod
    def _check_complete(proposal: CommitDivisionProposal, file_map: Dict[str, FileDiff]) -> None:
        seen: List[str] = [change.path for commit in proposal.proposed_commits for change in commit.changes]
        if len(seen) != len(set(seen)) or set(seen) != set(file_map):
            raise AnalysisFailure(
                "Proposal does not cover every changed file exactly once",
                "This is a bug in group assembly; please report the diff that triggered it",
            )


def generate_division_proposal(files: Sequence[FileDiff], commit_range: str,
                               config: Optional[DividerConfig] = None, **options: Any) -> CommitDivisionProposal:
    return ProposalBuilder(config).build(files, commit_range, **options)


def proposal_from_dict(data: Any) -> CommitDivisionProposal:
    """
    Rebuild a proposal from its JSON form.

    Raises:
        InvalidProposalFormat: when required fields are missing or malformed.
    """
    if not isinstance(data, dict) or not isinstance(data.get("proposedCommits"), list):
        raise InvalidProposalFormat(
            "Invalid proposal format: missing proposedCommits",
            "Pass the 'proposal' object returned by proposeCommitDivision",
        )
    commits: List[ProposedCommit] = []
    for index, item in enumerate(data["proposedCommits"]):
        commits.append(commit_from_dict(item, f"proposedCommits[{index}]"))
    original, target = split_commit_range(data.get("commitRange", ""))
    return CommitDivisionProposal(
        original_commit_id=str(data.get("originalCommitId") or original),
        target_commit_id=str(data.get("targetCommitId") or target),
        proposed_commits=commits,
        total_changes=int(data.get("totalChanges", sum(len(commit.changes) for commit in commits))),
        confidence_score=float(data.get("confidenceScore", 0.0)),
        commit_range=str(data.get("commitRange", "")),
        strategy=str(data.get("strategy", DivisionStrategy.BALANCED.value)),
        commit_size=str(data.get("commitSize", CommitSize.BALANCED.value)),
    )


def commit_from_dict(item: Any, where: str) -> ProposedCommit:
    if not isinstance(item, dict):
        raise InvalidProposalFormat(f"Invalid proposal format: {where} is not an object")
    message = item.get("message")
    if not isinstance(message, str) or not message.strip():
        raise InvalidProposalFormat(f"Invalid proposal format: missing message in {where}")
    changes = item.get("changes")
    if not isinstance(changes, list):
        raise InvalidProposalFormat(f"Invalid proposal format: missing changes in {where}")
    return ProposedCommit(
        message=message,
        changes=[_change_from_dict(change, f"{where}.changes[{index}]") for index, change in enumerate(changes)],
        change_type=_change_type(item.get("changeType"), message),
        keywords=set(item.get("keywords") or []),
        confidence=float(item.get("confidence", 0.0)),
    )


def _change_from_dict(change: Any, where: str) -> FileDiff:
    if not isinstance(change, dict) or not isinstance(change.get("path"), str) or not change["path"]:
        raise InvalidProposalFormat(f"Invalid proposal format: missing path in {where}")
    try:
        operation = FileOperation(change.get("changeType", FileOperation.MODIFY.value))
    except ValueError as e:
        raise InvalidProposalFormat(f"Invalid proposal format: unknown changeType in {where}") from e
    old_path = change.get("oldPath")
    if old_path is not None and not isinstance(old_path, str):
        raise InvalidProposalFormat(f"Invalid proposal format: oldPath must be a string in {where}")
    return FileDiff(path=change["path"], change_type=operation, diff=str(change.get("diff", "")),
                    old_path=old_path or None)


def _change_type(value: Any, message: str) -> ChangeType:
    try:
        return ChangeType(value)
    except ValueError:
        return parse_commit_type(message) or ChangeType.CHORE


def validate_commits(commits: Sequence[Any], auto_fix: bool = False) -> Tuple[List[Dict[str, Any]], List[Any]]:
    """
    Check each commit has changes and a conventional prefix.

    Works on ProposedCommit and CrossRepoCommit alike.

    Returns the validation rows and the commits to execute. With
    ``auto_fix`` a bad prefix is rewritten from the commit's change type and
    empty commits are dropped.
    """
    rows: List[Dict[str, Any]] = []
    kept: List[Any] = []
    for index, commit in enumerate(commits):
        problems = []
        if not commit.changes:
            problems.append("no changes")
        if parse_commit_type(commit.message) is None:
            problems.append("message lacks a conventional type prefix")
        row = {
            "commitIndex": index,
            "isValid": not problems,
            "message": "Valid" if not problems else "Invalid: " + "; ".join(problems),
            "autoFixed": False,
        }
        if problems and auto_fix:
            row["autoFixed"] = True
            if not commit.changes:
                rows.append(row)
                continue
            commit = replace(commit, message=repair_message(commit.message, commit.change_type))
        rows.append(row)
        kept.append(commit)
    return rows, kept
