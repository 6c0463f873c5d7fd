"""Conventional-commit message synthesis."""

import re
from typing import Dict, Iterable, Optional, Sequence

from commit_divider.core.classifier import ChangeClassifier
from commit_divider.core.models import ChangeType, SemanticPattern

COMMIT_PREFIXES: Dict[ChangeType, str] = {
    ChangeType.FEATURE: "feat",
    ChangeType.BUGFIX: "fix",
    ChangeType.DOCS: "docs",
    ChangeType.STYLE: "style",
    ChangeType.REFACTOR: "refactor",
    ChangeType.PERFORMANCE: "perf",
    ChangeType.TESTS: "test",
    ChangeType.CHORE: "chore",
}

PREFIX_TYPES: Dict[str, ChangeType] = {prefix: change_type for change_type, prefix in COMMIT_PREFIXES.items()}

SUBJECTS: Dict[ChangeType, str] = {
    ChangeType.FEATURE: "add new functionality in {area}",
    ChangeType.BUGFIX: "fix issues in {area}",
    ChangeType.REFACTOR: "restructure code in {area}",
    ChangeType.DOCS: "update documentation in {area}",
    ChangeType.TESTS: "update tests in {area}",
    ChangeType.STYLE: "format code in {area}",
    ChangeType.PERFORMANCE: "improve performance in {area}",
    ChangeType.CHORE: "update files in {area}",
}

MERGED_SUBJECTS: Dict[ChangeType, str] = {
    ChangeType.FEATURE: "combine multiple feature changes",
    ChangeType.BUGFIX: "combine multiple bug fixes",
    ChangeType.REFACTOR: "combine multiple refactorings",
    ChangeType.DOCS: "update documentation in multiple locations",
    ChangeType.TESTS: "update tests in multiple locations",
    ChangeType.STYLE: "apply style changes across codebase",
    ChangeType.PERFORMANCE: "improve performance in multiple areas",
    ChangeType.CHORE: "maintenance changes",
}

MAX_BODY_KEYWORDS = 5
MAX_SUBJECT_KEYWORDS = 3

_PREFIX_RE = re.compile(r"^\s*[a-zA-Z]+(?:\([^)]*\))?!?:\s*")


def commit_prefix(change_type: ChangeType) -> str:
    return COMMIT_PREFIXES[change_type]


def parse_commit_type(message: str) -> Optional[ChangeType]:
    """ChangeType named by the text before the first ':' or None."""
    if ":" not in message:
        return None
    return PREFIX_TYPES.get(message.split(":", 1)[0].strip())


def _body(keywords: Iterable[str]) -> str:
    selected = sorted(keywords)[:MAX_BODY_KEYWORDS]
    if not selected:
        return ""
    return "\n\nAffected components: " + ", ".join(selected)


def format_message(change_type: ChangeType, subject: str, keywords: Iterable[str] = ()) -> str:
    subject = subject.strip() or SUBJECTS[change_type].format(area="project root")
    return f"{commit_prefix(change_type)}: {subject}{_body(keywords)}"


def synthesize_message(pattern: SemanticPattern, body_keywords: Iterable[str] = ()) -> str:
    """
    Build ``<type>: <subject>`` for a semantic group.

    The subject joins the type's phrase for the group's area with up to three
    of the group's trigger keywords.
    """
    subject = SUBJECTS[pattern.change_type].format(area=pattern.area or "project root")
    triggers = sorted(keyword for keyword in pattern.keywords if keyword != "error")[:MAX_SUBJECT_KEYWORDS]
    if triggers:
        subject = f"{subject} ({', '.join(triggers)})"
    return format_message(pattern.change_type, subject, body_keywords)


def merged_message(change_type: ChangeType) -> str:
    return format_message(change_type, MERGED_SUBJECTS[change_type])


def generate_commit_message(description: str, files: Sequence[str] = (),
                            precedence: Optional[Sequence[ChangeType]] = None) -> str:
    """
    Turn a free-text description into a conventional commit message.

    The description is classified for its type; an existing conventional
    prefix is replaced rather than doubled.
    """
    change_type = ChangeClassifier(precedence).classify_text(description).change_type
    subject = _PREFIX_RE.sub("", description, count=1).strip()
    if subject:
        subject = subject[0].lower() + subject[1:]
    message = format_message(change_type, subject)
    if files:
        message += "\n\nFiles: " + ", ".join(sorted(files))
    return message


def repair_message(message: str, change_type: ChangeType) -> str:
    """Give ``message`` a valid prefix for ``change_type``, keeping its text."""
    if parse_commit_type(message) is not None:
        return message
    subject = _PREFIX_RE.sub("", message, count=1).strip()
    return format_message(change_type, subject)
