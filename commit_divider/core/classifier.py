"""
Change classification and keyword extraction.

A file (or a free-text description) gets one ChangeType. Rules are tried in a
configurable precedence order and the first rule that fires wins; chore is
the fallback. Keyword rules match whole tokens, so "address" never counts as
"add", while simple inflections fold onto their stem ("fixed", "buggy").
"""

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set

from commit_divider.core.models import ChangeType, ParsedFileDiff

_WORD_RE = re.compile(r"[A-Za-z][A-Za-z0-9]*")
_CAMEL_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|[0-9]+")
_CONVENTIONAL_RE = re.compile(r"^\s*(?P<type>[a-zA-Z]+)(?:\([^)]*\))?!?:")

_DIFF_HEADER_PREFIXES = ("+++", "---", "@@", "diff ", "index ", "new file mode", "deleted file mode",
                         "similarity index", "rename from", "rename to", "Binary files", "\\ No newline")

STOPWORDS: FrozenSet[str] = frozenset({
    # language keywords
    "and", "as", "assert", "async", "await", "break", "case", "catch", "class", "const", "continue",
    "def", "default", "del", "discard", "do", "elif", "else", "end", "enum", "except", "export",
    "extends", "false", "final", "finally", "fn", "for", "from", "func", "function", "global", "if",
    "impl", "import", "in", "interface", "is", "lambda", "let", "mod", "mut", "new", "nil", "none",
    "not", "null", "object", "of", "or", "package", "pass", "private", "proc", "protected", "pub",
    "public", "raise", "return", "self", "static", "struct", "super", "switch", "this", "throw",
    "true", "try", "type", "typeof", "use", "var", "void", "while", "with", "yield",
    # english filler
    "the", "that", "these", "those", "into", "are", "was", "were", "has", "have", "had", "but",
    "all", "any", "can", "will", "its", "our", "your", "their", "there", "here", "now", "than",
    "then", "also", "only", "some", "such", "each", "which", "when", "where", "what", "who", "how",
})

# Trigger words per change type. Matched against token stems.
TRIGGER_KEYWORDS: Dict[ChangeType, FrozenSet[str]] = {
    ChangeType.BUGFIX: frozenset({"fix", "bug", "issue", "error", "bugfix", "hotfix"}),
    ChangeType.FEATURE: frozenset({"feat", "feature", "add", "new", "implement"}),
    ChangeType.DOCS: frozenset({"doc", "docs", "document", "documentation", "readme", "docstring"}),
    ChangeType.TESTS: frozenset({"test", "tests", "spec", "pytest", "unittest"}),
    ChangeType.REFACTOR: frozenset({"refactor", "restructure", "reorganize", "cleanup", "simplify"}),
    ChangeType.STYLE: frozenset({"style", "format", "lint", "whitespace", "indent"}),
    ChangeType.PERFORMANCE: frozenset({"perf", "performance", "optimize", "speed", "faster"}),
}

CONVENTIONAL_TYPES: Dict[str, ChangeType] = {
    "feat": ChangeType.FEATURE,
    "feature": ChangeType.FEATURE,
    "fix": ChangeType.BUGFIX,
    "bugfix": ChangeType.BUGFIX,
    "docs": ChangeType.DOCS,
    "doc": ChangeType.DOCS,
    "style": ChangeType.STYLE,
    "refactor": ChangeType.REFACTOR,
    "perf": ChangeType.PERFORMANCE,
    "test": ChangeType.TESTS,
    "tests": ChangeType.TESTS,
    "chore": ChangeType.CHORE,
}

# Diagnostic code patterns reported by analysis (name, trigger stems)
CODE_PATTERNS: List[tuple] = [
    ("Feature", frozenset({"feat", "feature", "add", "implement", "new"})),
    ("Bug fix", frozenset({"fix", "bug", "issue", "error", "crash", "exception", "fault", "correct"})),
    ("Refactoring", frozenset({"refactor", "clean", "restructure", "reorganize", "simplify", "improve"})),
    ("Documentation", frozenset({"doc", "comment", "readme", "explain", "describe"})),
    ("Tests", frozenset({"test", "spec", "assert", "verify", "validate"})),
    ("Style", frozenset({"style", "format", "indent", "whitespace", "align", "lint"})),
    ("Performance", frozenset({"performance", "speed", "optimize", "fast", "slow", "memory", "cpu"})),
    ("Exception handling", frozenset({"try", "except", "catch", "finally", "raise", "throw"})),
]

DEFAULT_PRECEDENCE: Sequence[ChangeType] = (
    ChangeType.BUGFIX,
    ChangeType.FEATURE,
    ChangeType.DOCS,
    ChangeType.TESTS,
    ChangeType.REFACTOR,
    ChangeType.STYLE,
    ChangeType.PERFORMANCE,
)

DOC_DIRECTORIES = frozenset({"doc", "docs", "documentation"})
DOC_EXTENSIONS = frozenset({".md", ".rst", ".txt", ".adoc"})
DOC_BASENAMES = frozenset({"readme", "contributing", "changelog", "license", "authors"})
TEST_DIRECTORIES = frozenset({"test", "tests", "spec", "specs", "__tests__"})
CONFIG_EXTENSIONS = frozenset({".json", ".yml", ".yaml", ".toml", ".ini", ".cfg", ".conf"})


def split_identifier(word: str) -> List[str]:
    """Split ``fixedFunction`` into ``["fixed", "function"]``."""
    return [part.lower() for part in _CAMEL_RE.findall(word)]


def tokenize(text: str) -> List[str]:
    """Lowercase word parts of ``text`` with camelCase and snake_case split."""
    tokens: List[str] = []
    for word in _WORD_RE.findall(text):
        tokens.extend(split_identifier(word))
    return tokens


def stems(token: str) -> Set[str]:
    """Candidate stems of a token, covering plurals and past tenses."""
    result = {token}
    for suffix in ("ations", "ation", "ing", "ed", "es", "s", "y", "d", "er"):
        if token.endswith(suffix) and len(token) - len(suffix) >= 3:
            base = token[:-len(suffix)]
            result.add(base)
            result.add(base + "e")
            if len(base) > 3 and base[-1] == base[-2]:
                result.add(base[:-1])
    return result


def match_triggers(tokens: Iterable[str], triggers: FrozenSet[str]) -> Set[str]:
    """Trigger words hit by any token (through its stems)."""
    matched: Set[str] = set()
    for token in tokens:
        matched.update(stems(token) & triggers)
    return matched


def content_lines(diff_text: str) -> List[str]:
    """Diff body lines with headers dropped and the +/-/space marker stripped."""
    lines = []
    for line in diff_text.splitlines():
        if not line or line.startswith(_DIFF_HEADER_PREFIXES):
            continue
        if line[0] in "+- ":
            line = line[1:]
        lines.append(line)
    return lines


def extract_keywords(diff_text: str) -> Set[str]:
    """
    Keywords of a raw diff: whole identifiers (lowercased) longer than two
    characters, starting with a letter, that are not language keywords.
    """
    return _keywords_of_lines(content_lines(diff_text))


def _keywords_of_lines(lines: Iterable[str]) -> Set[str]:
    keywords: Set[str] = set()
    for line in lines:
        for word in _WORD_RE.findall(line):
            lowered = word.lower()
            if len(lowered) > 2 and lowered not in STOPWORDS:
                keywords.add(lowered)
    return keywords


def path_keywords(path: str) -> Set[str]:
    """Directory names and file stem of ``path`` as keywords."""
    pure = PurePosixPath(path)
    words = set()
    for part in list(pure.parent.parts) + [pure.stem]:
        for word in _WORD_RE.findall(part):
            lowered = word.lower()
            if len(lowered) > 1 and lowered not in STOPWORDS:
                words.add(lowered)
    return words


def content_keywords(parsed: ParsedFileDiff) -> Set[str]:
    return _keywords_of_lines(parsed.all_lines())


def file_keywords(parsed: ParsedFileDiff) -> Set[str]:
    """Normalized keyword set of one file: path tokens plus diff content."""
    return path_keywords(parsed.path) | content_keywords(parsed)


def file_extension(path: str) -> str:
    """Extension without the dot, or ``"none"``."""
    suffix = PurePosixPath(path).suffix
    return suffix[1:].lower() if suffix else "none"


def is_docs_path(path: str) -> bool:
    pure = PurePosixPath(path.lower())
    if any(part in DOC_DIRECTORIES for part in pure.parent.parts):
        return True
    if pure.stem.startswith("requirements"):
        return False
    if pure.suffix in DOC_EXTENSIONS:
        return True
    return pure.stem in DOC_BASENAMES


def is_test_path(path: str) -> bool:
    pure = PurePosixPath(path)
    if any(part.lower() in TEST_DIRECTORIES for part in pure.parent.parts):
        return True
    if pure.stem.lower() == "conftest":
        return True
    return any(token in ("test", "tests", "spec") for token in tokenize(pure.stem))


def is_config_path(path: str) -> bool:
    pure = PurePosixPath(path.lower())
    return pure.suffix in CONFIG_EXTENSIONS or (pure.stem.startswith("requirements") and pure.suffix == ".txt")


def detect_code_patterns(lines: Iterable[str]) -> Set[str]:
    """Names of the code patterns whose trigger words appear in ``lines``."""
    tokens = [token for line in lines for token in tokenize(line)]
    return {name for name, triggers in CODE_PATTERNS if match_triggers(tokens, triggers)}


@dataclass
class Classification:
    change_type: ChangeType
    triggers: Set[str] = field(default_factory=set)


@dataclass
class _Signals:
    path: Optional[str]
    description_tokens: List[str]
    content_tokens: List[str]


def _keyword_rule(change_type: ChangeType) -> Callable[[_Signals], Set[str]]:
    triggers = TRIGGER_KEYWORDS[change_type]

    def rule(signals: _Signals) -> Set[str]:
        return match_triggers(signals.description_tokens + signals.content_tokens, triggers)
    return rule


def _docs_rule(signals: _Signals) -> Set[str]:
    if signals.path and is_docs_path(signals.path):
        return {"docs"}
    return match_triggers(signals.description_tokens, TRIGGER_KEYWORDS[ChangeType.DOCS])


def _tests_rule(signals: _Signals) -> Set[str]:
    if signals.path and is_test_path(signals.path):
        return {"test"}
    return match_triggers(signals.description_tokens, TRIGGER_KEYWORDS[ChangeType.TESTS])


_RULES: Dict[ChangeType, Callable[[_Signals], Set[str]]] = {
    ChangeType.BUGFIX: _keyword_rule(ChangeType.BUGFIX),
    ChangeType.FEATURE: _keyword_rule(ChangeType.FEATURE),
    ChangeType.DOCS: _docs_rule,
    ChangeType.TESTS: _tests_rule,
    ChangeType.REFACTOR: _keyword_rule(ChangeType.REFACTOR),
    ChangeType.STYLE: _keyword_rule(ChangeType.STYLE),
    ChangeType.PERFORMANCE: _keyword_rule(ChangeType.PERFORMANCE),
}


class ChangeClassifier:
    """Assigns change types using a precedence-ordered rule table."""

    def __init__(self, precedence: Optional[Sequence[ChangeType]] = None):
        self.precedence = list(precedence) if precedence else list(DEFAULT_PRECEDENCE)

    def _classify(self, signals: _Signals) -> Classification:
        for change_type in self.precedence:
            triggers = _RULES[change_type](signals)
            if triggers:
                return Classification(change_type, triggers)
        return Classification(ChangeType.CHORE)

    def classify_file(self, parsed: ParsedFileDiff, description: Optional[str] = None) -> Classification:
        """Classify one file from its path, its changed lines and an optional description."""
        content_tokens = [token for line in parsed.changed_lines() for token in tokenize(line)]
        return self._classify(_Signals(parsed.path, tokenize(description or ""), content_tokens))

    def classify_text(self, text: str) -> Classification:
        """
        Classify free text such as a commit message draft.

        A conventional prefix ("docs: ...") is taken at its word before any
        keyword rule runs.
        """
        match = _CONVENTIONAL_RE.match(text or "")
        if match and match.group("type").lower() in CONVENTIONAL_TYPES:
            prefix = match.group("type").lower()
            return Classification(CONVENTIONAL_TYPES[prefix], {prefix})
        return self._classify(_Signals(None, tokenize(text or ""), []))


def detect_change_type(text: str, precedence: Optional[Sequence[ChangeType]] = None) -> ChangeType:
    return ChangeClassifier(precedence).classify_text(text).change_type
