from commit_divider.core.messages import (
    COMMIT_PREFIXES,
    generate_commit_message,
    merged_message,
    parse_commit_type,
    repair_message,
    synthesize_message,
)
from commit_divider.core.models import ChangeType, SemanticPattern

VALID_PREFIXES = {"feat", "fix", "docs", "style", "refactor", "perf", "test", "chore"}


def test_prefix_table_is_closed():
    assert set(COMMIT_PREFIXES.values()) == VALID_PREFIXES
    assert set(COMMIT_PREFIXES) == set(ChangeType)


def test_synthesized_messages_have_valid_prefix():
    for change_type in ChangeType:
        pattern = SemanticPattern("p", change_type, 0.9, {"src/a.py"}, {"alpha"}, area="src")
        message = synthesize_message(pattern, ["a"])
        assert message.split(":", 1)[0] in VALID_PREFIXES


def test_synthesize_message_subject_and_body():
    pattern = SemanticPattern("p", ChangeType.BUGFIX, 0.9, {"src/a.py"}, {"fix", "bug", "error"}, area="src")

    message = synthesize_message(pattern, ["parser", "lexer"])

    assert message == "fix: fix issues in src (bug, fix)\n\nAffected components: lexer, parser"


def test_generate_commit_message():
    assert generate_commit_message("Fix crash when saving") == "fix: fix crash when saving"
    assert generate_commit_message("Update readme") == "docs: update readme"
    assert generate_commit_message("feat: Add export button", files=["b.py", "a.py"]) == (
        "feat: add export button\n\nFiles: a.py, b.py"
    )


def test_parse_commit_type():
    assert parse_commit_type("perf: faster lookups") == ChangeType.PERFORMANCE
    assert parse_commit_type("test: cover parser") == ChangeType.TESTS
    assert parse_commit_type("update things") is None
    assert parse_commit_type("wip: half done") is None


def test_repair_message():
    assert repair_message("update things", ChangeType.BUGFIX) == "fix: update things"
    assert repair_message("wip: half done", ChangeType.FEATURE) == "feat: half done"
    assert repair_message("docs: keep me", ChangeType.FEATURE) == "docs: keep me"


def test_merged_message():
    assert merged_message(ChangeType.DOCS) == "docs: update documentation in multiple locations"
