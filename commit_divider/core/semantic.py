"""
Semantic boundary identification.

Files are first classified (see classifier.py), then clustered into
SemanticPatterns. Documentation, test and configuration files form their
own area groups; the remaining files cluster when they share a change type
and enough keywords. A diff that is empty or could not be read produces a
single low-confidence sentinel pattern instead of an exception.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional, Sequence, Set

from commit_divider.core.classifier import (
    ChangeClassifier,
    Classification,
    content_keywords,
    detect_code_patterns,
    file_extension,
    file_keywords,
    is_config_path,
    is_docs_path,
    is_test_path,
)
from commit_divider.core.config import DividerConfig
from commit_divider.core.diff_parser import parse_file_diff
from commit_divider.core.models import (
    AnalysisResult,
    ChangeType,
    FileDiff,
    ParsedFileDiff,
    SemanticPattern,
)

ERROR_PATTERN = "error"
WORKSPACE_ERROR_PATTERN = "workspace_error"
SENTINEL_CONFIDENCE = 0.1

BASE_COHESION = 0.7
COHESION_STEP = 0.1
MAX_COHESION = 0.95
STRONG_OVERLAP_BONUS = 1.05

PATTERN_NAMES: Dict[ChangeType, str] = {
    ChangeType.FEATURE: "New feature in {area}",
    ChangeType.BUGFIX: "Bug fixes in {area}",
    ChangeType.REFACTOR: "Refactoring in {area}",
    ChangeType.DOCS: "Documentation for {area}",
    ChangeType.TESTS: "Tests for {area}",
    ChangeType.STYLE: "Style changes in {area}",
    ChangeType.PERFORMANCE: "Performance improvements in {area}",
    ChangeType.CHORE: "Maintenance in {area}",
}


@dataclass(frozen=True)
class AreaGroup:
    name: str
    change_type: ChangeType
    confidence: float
    marker: str
    matches: Callable[[str], bool]


AREA_GROUPS: Sequence[AreaGroup] = (
    AreaGroup("Documentation updates", ChangeType.DOCS, 0.95, "docs", is_docs_path),
    AreaGroup("Test changes", ChangeType.TESTS, 0.95, "test", is_test_path),
    AreaGroup("Configuration changes", ChangeType.CHORE, 0.9, "config", is_config_path),
)


@dataclass
class FileProfile:
    parsed: ParsedFileDiff
    classification: Classification
    keywords: Set[str]
    order: int

    @property
    def path(self) -> str:
        return self.parsed.path

    @property
    def change_type(self) -> ChangeType:
        return self.classification.change_type


@dataclass
class _Cluster:
    change_type: ChangeType
    members: List[FileProfile] = field(default_factory=list)


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a and not b:
        return 0.0
    return len(a & b) / len(a | b)


def dominant_change_type(tags: Sequence[ChangeType], precedence: Sequence[ChangeType]) -> ChangeType:
    """Majority vote; ties go to the type ranked earlier in ``precedence``."""
    if not tags:
        return ChangeType.CHORE
    counts = Counter(tags)
    rank = {change_type: index for index, change_type in enumerate(precedence)}
    return min(counts, key=lambda tag: (-counts[tag], rank.get(tag, len(rank))))


def common_area(paths: Sequence[str]) -> str:
    """Deepest directory shared by every path, or "project root"."""
    parents = [PurePosixPath(path).parent.parts for path in paths]
    if not parents:
        return "project root"
    shared: List[str] = []
    for parts in zip(*parents):
        if len(set(parts)) != 1:
            break
        shared.append(parts[0])
    return "/".join(shared) if shared else "project root"


def error_pattern(name: str = ERROR_PATTERN, files: Sequence[str] = (), description: str = "") -> SemanticPattern:
    """The sentinel "analysis failed gracefully" pattern."""
    return SemanticPattern(
        pattern=name,
        change_type=ChangeType.CHORE,
        confidence=SENTINEL_CONFIDENCE,
        files=set(files),
        keywords={"error"},
        area="project root",
        description=description,
    )


def is_sentinel(pattern: SemanticPattern) -> bool:
    return pattern.pattern in (ERROR_PATTERN, WORKSPACE_ERROR_PATTERN) and pattern.confidence <= SENTINEL_CONFIDENCE


class SemanticAnalyzer:
    """Classifies files and identifies semantic boundaries in one diff."""

    def __init__(self, config: Optional[DividerConfig] = None):
        self.config = config or DividerConfig()
        self.classifier = ChangeClassifier(self.config.classifier_precedence)

    def profile(self, files: Sequence[ParsedFileDiff]) -> List[FileProfile]:
        """Classification and keyword set per distinct path, in input order."""
        seen: Set[str] = set()
        profiles: List[FileProfile] = []
        for parsed in files:
            if parsed.path in seen:
                continue
            seen.add(parsed.path)
            profiles.append(FileProfile(
                parsed=parsed,
                classification=self.classifier.classify_file(parsed),
                keywords=file_keywords(parsed),
                order=len(profiles),
            ))
        return profiles

    def identify_boundaries(self, files: Sequence[ParsedFileDiff]) -> List[SemanticPattern]:
        profiles = self.profile(files)
        if not profiles:
            return [error_pattern(description="Empty diff: nothing to divide")]
        return self.group_profiles(profiles)

    def group_profiles(self, profiles: List[FileProfile]) -> List[SemanticPattern]:
        ranked: List[tuple] = []
        remaining = list(profiles)

        if self.config.area_groups:
            for area in AREA_GROUPS:
                members = [profile for profile in remaining if area.matches(profile.path)]
                if not members:
                    continue
                remaining = [profile for profile in remaining if not area.matches(profile.path)]
                for chunk in self._chunks(members):
                    ranked.append((self._area_pattern(area, chunk), chunk[0].order))

        for members in self.cluster(remaining):
            ranked.append((self.pattern_for(members), members[0].order))

        ranked.sort(key=lambda item: (-item[0].confidence, item[1]))
        patterns = [pattern for pattern, _ in ranked]
        self._dedupe_names(patterns)
        logging.info(f"Identified {len(patterns)} semantic groups over {len(profiles)} files")
        return patterns

    def _chunks(self, members: List[FileProfile]) -> List[List[FileProfile]]:
        size = self.config.max_group_size
        return [members[i:i + size] for i in range(0, len(members), size)]

    def cluster(self, profiles: Sequence[FileProfile], by_type: bool = True) -> List[List[FileProfile]]:
        """
        Greedy single-linkage clustering on keyword overlap.

        With ``by_type`` only files sharing a change type may join one cluster.
        """
        threshold = self.config.keyword_overlap_threshold
        clusters: List[_Cluster] = []
        for profile in profiles:
            target = None
            for cluster in clusters:
                if by_type and cluster.change_type != profile.change_type:
                    continue
                if len(cluster.members) >= self.config.max_group_size:
                    continue
                for member in cluster.members:
                    overlap = member.keywords & profile.keywords
                    if overlap and jaccard(member.keywords, profile.keywords) >= threshold:
                        target = cluster
                        break
                if target is not None:
                    break
            if target is None:
                target = _Cluster(profile.change_type)
                clusters.append(target)
            target.members.append(profile)
        return [cluster.members for cluster in clusters]

    def _area_pattern(self, area: AreaGroup, members: List[FileProfile]) -> SemanticPattern:
        paths = [member.path for member in members]
        keywords = {area.marker}
        for member in members:
            if member.change_type == area.change_type:
                keywords.update(member.classification.triggers)
        return SemanticPattern(
            pattern=area.name,
            change_type=area.change_type,
            confidence=area.confidence,
            files=set(paths),
            keywords=keywords,
            area=common_area(paths),
            description=f"{len(paths)} file(s) grouped by location",
        )

    def pattern_for(self, members: Sequence[FileProfile], name: Optional[str] = None) -> SemanticPattern:
        """
        SemanticPattern for a set of files.

        confidence = agreement x cohesion x bonus, capped at 1.0. Agreement is
        the share of files whose own tag equals the majority tag. Cohesion
        rewards a shared directory, a shared extension and more than three
        shared keywords. The bonus applies when keyword overlap is strong
        across the whole group.
        """
        paths = [member.path for member in members]
        tags = [member.change_type for member in members]
        dominant = dominant_change_type(tags, self.config.classifier_precedence)
        agreement = sum(1 for tag in tags if tag == dominant) / len(tags)

        shared = set.intersection(*(member.keywords for member in members))
        cohesion = BASE_COHESION
        if len({str(PurePosixPath(path).parent) for path in paths}) == 1:
            cohesion += COHESION_STEP
        if len({file_extension(path) for path in paths}) == 1:
            cohesion += COHESION_STEP
        if len(shared) > 3:
            cohesion += COHESION_STEP
        cohesion = min(cohesion, MAX_COHESION)

        bonus = 1.0
        if len(members) > 1:
            pairs = [
                jaccard(a.keywords, b.keywords)
                for index, a in enumerate(members)
                for b in members[index + 1:]
            ]
            if sum(pairs) / len(pairs) >= self.config.strong_overlap_threshold:
                bonus = STRONG_OVERLAP_BONUS

        keywords: Set[str] = set()
        for member in members:
            if member.change_type == dominant:
                keywords.update(member.classification.triggers)
        if not keywords:
            keywords = set(sorted(shared)[:5])

        area = common_area(paths)
        return SemanticPattern(
            pattern=name or PATTERN_NAMES[dominant].format(area=area),
            change_type=dominant,
            confidence=min(1.0, agreement * cohesion * bonus),
            files=set(paths),
            keywords=keywords,
            area=area,
            description=f"{len(paths)} file(s) sharing {len(shared)} keyword(s)",
        )

    @staticmethod
    def _dedupe_names(patterns: List[SemanticPattern]) -> None:
        seen: Counter = Counter()
        for pattern in patterns:
            seen[pattern.pattern] += 1
            if seen[pattern.pattern] > 1:
                pattern.pattern = f"{pattern.pattern} #{seen[pattern.pattern]}"

    def analyze(self, files: Sequence[ParsedFileDiff]) -> AnalysisResult:
        """Aggregate statistics, classifications and semantic groups for one diff."""
        profiles = self.profile(files)
        result = AnalysisResult()
        if not profiles:
            result.semantic_groups = [error_pattern(description="Empty diff: nothing to divide")]
            result.code_patterns = {"error: empty diff"}
            return result

        changed: List[str] = []
        for profile in profiles:
            parsed = profile.parsed
            result.files.add(parsed.path)
            result.additions += parsed.additions
            result.deletions += parsed.deletions
            extension = file_extension(parsed.path)
            result.file_types[extension] = result.file_types.get(extension, 0) + 1
            operation = parsed.change_type.value
            result.change_types[operation] = result.change_types.get(operation, 0) + 1
            tag = profile.change_type.value
            result.classifications[tag] = result.classifications.get(tag, 0) + 1
            result.file_tags[parsed.path] = profile.change_type
            changed.extend(parsed.changed_lines())
            if parsed.is_binary:
                result.code_patterns.add(f"binary: {parsed.path}")

        result.code_patterns.update(detect_code_patterns(changed))
        result.dependencies = self._file_dependencies(profiles)
        result.semantic_groups = self.group_profiles(profiles)
        return result

    @staticmethod
    def _file_dependencies(profiles: Sequence[FileProfile]) -> Dict[str, List[str]]:
        """
        Changed files referenced by other changed files.

        Maps a referenced file to the files whose diff mentions its module
        name (file stem). Stems shorter than three characters are ignored.
        """
        dependencies: Dict[str, List[str]] = {}
        for target in profiles:
            stem = PurePosixPath(target.path).stem.lower()
            if len(stem) < 3:
                continue
            for source in profiles:
                if source is target:
                    continue
                if stem in content_keywords(source.parsed):
                    dependencies.setdefault(target.path, []).append(source.path)
        return dependencies


def failed_analysis(description: str, files: Sequence[str] = ()) -> AnalysisResult:
    """AnalysisResult for a repository that could not be read."""
    return AnalysisResult(
        code_patterns={f"error: {description}"},
        semantic_groups=[error_pattern(WORKSPACE_ERROR_PATTERN, files, description)],
    )


def analyze_changes(files: Sequence[FileDiff], config: Optional[DividerConfig] = None) -> AnalysisResult:
    return SemanticAnalyzer(config).analyze([parse_file_diff(file) for file in files])


def identify_semantic_boundaries(files: Sequence[FileDiff], config: Optional[DividerConfig] = None) -> List[SemanticPattern]:
    return SemanticAnalyzer(config).identify_boundaries([parse_file_diff(file) for file in files])
