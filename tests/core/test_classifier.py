import pytest

from commit_divider.core.classifier import (
    ChangeClassifier,
    detect_change_type,
    extract_keywords,
    is_config_path,
    is_docs_path,
    is_test_path,
    split_identifier,
)
from commit_divider.core.diff_parser import parse_unified_diff
from commit_divider.core.models import ChangeType


@pytest.mark.parametrize("text, expected", [
    ("Fix bug in login", ChangeType.BUGFIX),
    ("fixed the crash on startup", ChangeType.BUGFIX),
    ("Add new feature for export", ChangeType.FEATURE),
    ("Update README documentation", ChangeType.DOCS),
    ("Refactor the storage layer", ChangeType.REFACTOR),
    ("Optimize query speed", ChangeType.PERFORMANCE),
    ("bump version", ChangeType.CHORE),
])
def test_detect_change_type(text, expected):
    assert detect_change_type(text) == expected


def test_whole_word_matching():
    """'address' must not count as 'add'."""
    assert detect_change_type("address review comments") == ChangeType.CHORE


def test_conventional_prefix_wins():
    assert detect_change_type("docs: fix typo in guide") == ChangeType.DOCS


def test_precedence_is_configurable():
    assert detect_change_type("fix and add") == ChangeType.BUGFIX
    assert detect_change_type("fix and add", [ChangeType.FEATURE, ChangeType.BUGFIX]) == ChangeType.FEATURE


def test_classify_file_uses_path_for_tests(make_diff):
    parsed = parse_unified_diff(make_diff("tests/test_api.py", ["def check_value():", "    pass"]))[0]

    result = ChangeClassifier().classify_file(parsed)

    assert result.change_type == ChangeType.TESTS
    assert result.triggers == {"test"}


def test_classify_file_content_beats_path(make_diff):
    parsed = parse_unified_diff(make_diff("tests/test_api.py", ["# fix flaky bug"]))[0]

    assert ChangeClassifier().classify_file(parsed).change_type == ChangeType.BUGFIX


def test_extract_keywords_drops_language_keywords():
    keywords = extract_keywords("+def fixedFunction():\n+    return value\n")

    assert "fixedfunction" in keywords
    assert "value" in keywords
    assert "def" not in keywords
    assert "return" not in keywords


def test_split_identifier():
    assert split_identifier("fixedFunction") == ["fixed", "function"]
    assert split_identifier("HTTPServer") == ["http", "server"]


def test_path_predicates():
    assert is_docs_path("docs/guide.rst")
    assert is_docs_path("README")
    assert not is_docs_path("requirements.txt")
    assert is_config_path("requirements.txt")
    assert is_config_path("config/settings.yaml")
    assert is_test_path("src/conftest.py")
    assert is_test_path("pkg/user_test.go")
    assert not is_test_path("src/contest.py")
