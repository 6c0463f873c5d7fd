"""
Shared fixtures: sample diffs and an in-memory version control backend.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from commit_divider.core.backend import FileChange, VersionControlBackend
from commit_divider.core.diff_parser import parse_file_diff, split_file_diffs
from commit_divider.core.errors import BackendError
from commit_divider.core.models import CommitInfo, DiffResult, DiffStats, FileOperation
from commit_divider.core.repository import RepositoryRegistry

BUGFIX_DIFF = """diff --git a/src/file1.nim b/src/file1.nim
index 1111111..2222222 100644
--- a/src/file1.nim
+++ b/src/file1.nim
@@ -1,2 +1,3 @@
 proc calc(x: int): int =
-  result = x
+  # fix bug in calculation
+  result = x + 1
"""

FEATURE_DIFF = """diff --git a/src/file2.nim b/src/file2.nim
new file mode 100644
index 0000000..3333333
--- /dev/null
+++ b/src/file2.nim
@@ -0,0 +1,2 @@
+proc newFeature(): string =
+  # add new feature
"""

DOCS_DIFF = """diff --git a/docs/readme.md b/docs/readme.md
index 4444444..5555555 100644
--- a/docs/readme.md
+++ b/docs/readme.md
@@ -1,1 +1,2 @@
 # Project
+Usage instructions for the library.
"""


def file_diff_text(path: str, added: Sequence[str], removed: Sequence[str] = (), new: bool = False) -> str:
    """A one-hunk git diff for ``path``."""
    header = [f"diff --git a/{path} b/{path}"]
    if new:
        header += ["new file mode 100644", "--- /dev/null"]
    else:
        header += [f"--- a/{path}"]
    header += [f"+++ b/{path}", f"@@ -1,{len(removed)} +1,{len(added)} @@"]
    body = [f"-{line}" for line in removed] + [f"+{line}" for line in added]
    return "\n".join(header + body) + "\n"


class FakeBackend(VersionControlBackend):
    """
    In-memory backend keyed by the last component of the repository path.

    ``failures`` maps a repository key to the BackendError its reads raise.
    ``fail_after`` makes create_commit fail once that many commits exist.
    """

    def __init__(self, diffs: Optional[Dict[str, str]] = None, failures: Optional[Dict[str, BackendError]] = None,
                 fail_after: Optional[int] = None):
        self.diffs = diffs or {}
        self.failures = failures or {}
        self.fail_after = fail_after
        self.commits: List[tuple] = []
        self.prepared: List[tuple] = []
        self.calls: List[str] = []

    @staticmethod
    def key(repo_path: str) -> str:
        return Path(repo_path).name

    def _check(self, repo_path: str, operation: str) -> None:
        self.calls.append(operation)
        error = self.failures.get(self.key(repo_path))
        if error is not None:
            raise error

    async def get_diff_for_commit_range(self, repo_path: str, commit_range: str) -> DiffResult:
        self._check(repo_path, "diff")
        files = split_file_diffs(self.diffs.get(self.key(repo_path), ""))
        stats = DiffStats(files=len(files))
        for file in files:
            parsed = parse_file_diff(file)
            stats.additions += parsed.additions
            stats.deletions += parsed.deletions
        return DiffResult(commit_range=commit_range, files=files, stats=stats)

    async def get_commit_info(self, repo_path: str, commit_id: str) -> CommitInfo:
        self._check(repo_path, "info")
        return CommitInfo(id=commit_id, author="Test <test@example.com>", message="chore: original")

    async def create_commit(self, repo_path: str, message: str, changes: Sequence[FileChange]) -> str:
        self.calls.append("commit")
        if self.fail_after is not None and len(self.commits) >= self.fail_after:
            raise BackendError("jj describe failed: working copy is stale")
        commit_id = f"commit-{len(self.commits) + 1}"
        self.commits.append((self.key(repo_path), message, list(changes), commit_id))
        return commit_id

    async def list_files(self, repo_path: str, commit_id: str) -> List[str]:
        self._check(repo_path, "list")
        return [file.path for file in split_file_diffs(self.diffs.get(self.key(repo_path), ""))
                if file.change_type != FileOperation.DELETE]

    async def get_file_content(self, repo_path: str, revision: str, path: str) -> bytes:
        self.calls.append("show")
        return f"{path}@{revision}\n".encode()

    async def prepare_working_copy(self, repo_path: str, revision: str) -> None:
        self.calls.append("prepare")
        self.prepared.append((self.key(repo_path), revision))


@pytest.fixture
def scenario_diff() -> str:
    """A bugfix, a new feature file and a documentation change."""
    return BUGFIX_DIFF + FEATURE_DIFF + DOCS_DIFF


@pytest.fixture
def scenario_files(scenario_diff):
    return split_file_diffs(scenario_diff)


@pytest.fixture
def make_diff():
    return file_diff_text


@pytest.fixture
def make_backend():
    """Factory for FakeBackend instances."""
    return FakeBackend


@pytest.fixture
def cross_repo_diffs() -> Dict[str, str]:
    """One changed file per repository; api-service imports core-lib, frontend-app imports api-service."""
    return {
        "core-lib": file_diff_text("src/helper.py", ["def add_helper():", "    return 1"]),
        "api-service": file_diff_text("src/routes.py", ["from core_lib import helper", "def add_route():"]),
        "frontend-app": file_diff_text("src/view.py", ["import api_service", "def add_view():"]),
    }


@pytest.fixture
def chain_registry(tmp_path) -> RepositoryRegistry:
    """core-lib <- api-service <- frontend-app, declared in reverse order."""
    return RepositoryRegistry.from_entries(
        [
            {"name": "frontend-app", "path": "frontend-app", "dependencies": ["api-service"]},
            {"name": "api-service", "path": "api-service", "dependencies": ["core-lib"]},
            {"name": "core-lib", "path": "core-lib"},
        ],
        root_dir=tmp_path,
    )
