"""
Core data models for diffs, semantic groups and division proposals.

These are plain data structures. Parsing, grouping and ordering live in the
sibling modules; the only behavior here is conversion to and from the JSON
shapes used on the tool surface.
"""

from enum import Enum
from typing import List, Dict, Any, Optional, Set
from dataclasses import dataclass, field


class ChangeType(str, Enum):
    """Semantic category of a change."""
    FEATURE = "feature"
    BUGFIX = "bugfix"
    REFACTOR = "refactor"
    DOCS = "docs"
    TESTS = "tests"
    CHORE = "chore"
    STYLE = "style"
    PERFORMANCE = "performance"


class FileOperation(str, Enum):
    """What happened to a file in a diff."""
    ADD = "add"
    MODIFY = "modify"
    DELETE = "delete"


class DiffLineType(str, Enum):
    CONTEXT = "context"
    ADD = "add"
    DELETE = "delete"


@dataclass(frozen=True)
class FileDiff:
    """Raw diff block for one file, as returned by the backend."""
    path: str
    change_type: FileOperation
    diff: str = ""
    # source path of a rename
    old_path: Optional[str] = None

    def to_dict(self, include_diff: bool = False) -> Dict[str, Any]:
        data = {"path": self.path, "changeType": self.change_type.value}
        if self.old_path:
            data["oldPath"] = self.old_path
        if include_diff:
            data["diff"] = self.diff
        return data


@dataclass
class DiffLine:
    type: DiffLineType
    content: str
    old_line_no: Optional[int] = None
    new_line_no: Optional[int] = None


@dataclass
class DiffHunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    header: str = ""
    lines: List[DiffLine] = field(default_factory=list)


@dataclass
class ParsedFileDiff:
    """Structured form of one file's diff."""
    path: str
    old_path: Optional[str] = None
    change_type: FileOperation = FileOperation.MODIFY
    is_binary: bool = False
    additions: int = 0
    deletions: int = 0
    hunks: List[DiffHunk] = field(default_factory=list)

    def changed_lines(self) -> List[str]:
        """Content of every added or deleted line, in diff order."""
        return [
            line.content
            for hunk in self.hunks
            for line in hunk.lines
            if line.type != DiffLineType.CONTEXT
        ]

    def all_lines(self) -> List[str]:
        return [line.content for hunk in self.hunks for line in hunk.lines]


@dataclass
class DiffStats:
    files: int = 0
    additions: int = 0
    deletions: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"files": self.files, "additions": self.additions, "deletions": self.deletions}


@dataclass
class DiffResult:
    """Backend answer for a commit range."""
    commit_range: str
    files: List[FileDiff] = field(default_factory=list)
    stats: DiffStats = field(default_factory=DiffStats)


@dataclass
class CommitInfo:
    id: str
    author: str = ""
    timestamp: str = ""
    message: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "author": self.author, "timestamp": self.timestamp, "message": self.message}


@dataclass
class SemanticPattern:
    """A semantic group: files judged to share one purpose."""
    pattern: str
    change_type: ChangeType
    confidence: float
    files: Set[str] = field(default_factory=set)
    keywords: Set[str] = field(default_factory=set)
    area: str = ""
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern": self.pattern,
            "changeType": self.change_type.value,
            "confidence": round(self.confidence, 4),
            "files": sorted(self.files),
            "keywords": sorted(self.keywords),
            "description": self.description,
        }


@dataclass
class AnalysisResult:
    """Aggregate view over one diff. Built once, read-only afterwards."""
    files: Set[str] = field(default_factory=set)
    additions: int = 0
    deletions: int = 0
    file_types: Dict[str, int] = field(default_factory=dict)
    change_types: Dict[str, int] = field(default_factory=dict)
    classifications: Dict[str, int] = field(default_factory=dict)
    file_tags: Dict[str, ChangeType] = field(default_factory=dict)
    code_patterns: Set[str] = field(default_factory=set)
    dependencies: Dict[str, List[str]] = field(default_factory=dict)
    semantic_groups: List[SemanticPattern] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": len(self.files),
            "paths": sorted(self.files),
            "changeStats": {
                "additions": self.additions,
                "deletions": self.deletions,
                "totalLines": self.additions + self.deletions,
            },
            "fileTypes": dict(self.file_types),
            "changeTypes": dict(self.change_types),
            "classifications": dict(self.classifications),
            "fileTags": {path: tag.value for path, tag in sorted(self.file_tags.items())},
            "codePatterns": sorted(self.code_patterns),
            "dependencies": {key: list(value) for key, value in sorted(self.dependencies.items())},
            "semanticGroups": [group.to_dict() for group in self.semantic_groups],
        }


@dataclass
class ProposedCommit:
    message: str
    changes: List[FileDiff] = field(default_factory=list)
    change_type: ChangeType = ChangeType.CHORE
    keywords: Set[str] = field(default_factory=set)
    confidence: float = 0.0

    def to_dict(self, include_diff: bool = False) -> Dict[str, Any]:
        return {
            "message": self.message,
            "changeType": self.change_type.value,
            "keywords": sorted(self.keywords),
            "confidence": round(self.confidence, 4),
            "changes": [change.to_dict(include_diff) for change in self.changes],
            "stats": {"filesCount": len(self.changes)},
        }


@dataclass
class CommitDivisionProposal:
    original_commit_id: str
    target_commit_id: str
    proposed_commits: List[ProposedCommit] = field(default_factory=list)
    total_changes: int = 0
    confidence_score: float = 0.0
    commit_range: str = ""
    strategy: str = "balanced"
    commit_size: str = "balanced"

    def to_dict(self, include_diff: bool = False) -> Dict[str, Any]:
        commit_types = {change_type.value: 0 for change_type in ChangeType}
        for commit in self.proposed_commits:
            commit_types[commit.change_type.value] += 1
        return {
            "commitRange": self.commit_range,
            "originalCommitId": self.original_commit_id,
            "targetCommitId": self.target_commit_id,
            "proposedCommits": [commit.to_dict(include_diff) for commit in self.proposed_commits],
            "totalChanges": self.total_changes,
            "confidenceScore": round(self.confidence_score, 4),
            "strategy": self.strategy,
            "commitSize": self.commit_size,
            "summary": {
                "totalCommits": len(self.proposed_commits),
                "meanConfidence": round(self.confidence_score, 4),
                "commitTypes": commit_types,
            },
        }


@dataclass
class Repository:
    name: str
    path: str
    dependencies: Set[str] = field(default_factory=set)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "path": self.path, "dependencies": sorted(self.dependencies)}


@dataclass
class CrossRepoDiff:
    commit_range: str
    repositories: List[str] = field(default_factory=list)
    changes: Dict[str, List[FileDiff]] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CrossRepoDependency:
    """Directed edge: ``source`` depends on ``target``."""
    source: str
    target: str
    kind: str = "declared"
    confidence: float = 1.0
    source_file: Optional[str] = None
    evidence: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "type": self.kind,
            "confidence": self.confidence,
            "sourceFile": self.source_file,
            "evidence": self.evidence,
        }


@dataclass
class CrossRepoCommit:
    repository: str
    message: str
    changes: List[FileDiff] = field(default_factory=list)
    change_type: ChangeType = ChangeType.CHORE
    keywords: Set[str] = field(default_factory=set)
    confidence: float = 0.0
    error: Optional[str] = None

    def to_dict(self, include_diff: bool = False) -> Dict[str, Any]:
        data = {
            "repository": self.repository,
            "message": self.message,
            "changeType": self.change_type.value,
            "keywords": sorted(self.keywords),
            "confidence": round(self.confidence, 4),
            "changes": [change.to_dict(include_diff) for change in self.changes],
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class CommitGroup:
    name: str
    change_type: ChangeType
    commits: List[CrossRepoCommit] = field(default_factory=list)
    description: str = ""
    group_type: str = "semantic"
    confidence: float = 0.0
    keywords: Set[str] = field(default_factory=set)

    def repositories(self) -> List[str]:
        return [commit.repository for commit in self.commits]

    def to_dict(self, include_diff: bool = False) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "groupType": self.group_type,
            "changeType": self.change_type.value,
            "confidence": round(self.confidence, 4),
            "keywords": sorted(self.keywords),
            "commits": [commit.to_dict(include_diff) for commit in self.commits],
        }


@dataclass
class CrossRepoProposal:
    commit_range: str
    commit_groups: List[CommitGroup] = field(default_factory=list)
    confidence_score: float = 0.0
    repositories: List[str] = field(default_factory=list)
    dependencies: List[CrossRepoDependency] = field(default_factory=list)
    repository_errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self, include_diff: bool = False) -> Dict[str, Any]:
        return {
            "commitRange": self.commit_range,
            "repositories": list(self.repositories),
            "commitGroups": [group.to_dict(include_diff) for group in self.commit_groups],
            "confidenceScore": round(self.confidence_score, 4),
            "dependencies": [dependency.to_dict() for dependency in self.dependencies],
            "repositoryErrors": dict(self.repository_errors),
        }
