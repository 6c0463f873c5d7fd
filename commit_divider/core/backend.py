"""
Version control backend.

The analysis core only reads diffs; the executor also writes commits. Both go
through a VersionControlBackend so tests can swap the ``jj`` subprocess for an
in-memory fake.
"""

import asyncio
import json
import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from commit_divider.core.config import DividerConfig
from commit_divider.core.diff_parser import parse_file_diff, split_file_diffs
from commit_divider.core.errors import BackendError
from commit_divider.core.models import CommitInfo, DiffResult, DiffStats
from commit_divider.core.proposal import split_commit_range

# (path, raw bytes); None deletes the file
FileChange = Tuple[str, Optional[bytes]]

COMMIT_INFO_TEMPLATE = (
    'commit_id ++ "\\n" ++ author.name() ++ " <" ++ author.email() ++ ">\\n"'
    ' ++ author.timestamp() ++ "\\n" ++ description'
)

TRANSIENT_MARKERS = (
    "lock",
    "temporarily unavailable",
    "resource busy",
    "try again",
    "concurrent operation",
)


def is_transient(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in TRANSIENT_MARKERS)


def resolve_in_repo(root: Path, path: str) -> Path:
    """Absolute location of ``path`` inside ``root``; rejects paths that escape it."""
    target = (root / path).resolve()
    if not target.is_relative_to(root.resolve()):
        raise BackendError(f"Path escapes the repository root: {path}", "Use paths relative to the repository root")
    return target


class VersionControlBackend(ABC):
    """What the divider needs from a version control system."""

    @abstractmethod
    async def get_diff_for_commit_range(self, repo_path: str, commit_range: str) -> DiffResult:
        """Per-file diffs and stats for a range; BackendError if the range or repo is invalid."""

    @abstractmethod
    async def get_commit_info(self, repo_path: str, commit_id: str) -> CommitInfo:
        ...

    @abstractmethod
    async def create_commit(self, repo_path: str, message: str, changes: Sequence[FileChange]) -> str:
        """Write ``changes`` into the working copy, record them as one commit, return its id."""

    @abstractmethod
    async def list_files(self, repo_path: str, commit_id: str) -> List[str]:
        ...

    @abstractmethod
    async def get_file_content(self, repo_path: str, revision: str, path: str) -> bytes:
        """Exact bytes of ``path`` at ``revision``."""

    @abstractmethod
    async def prepare_working_copy(self, repo_path: str, revision: str) -> None:
        """Start a new empty change on top of ``revision``."""


class JujutsuBackend(VersionControlBackend):
    """Backend that shells out to the ``jj`` command line."""

    def __init__(self, config: Optional[DividerConfig] = None):
        self.config = config or DividerConfig()

    @staticmethod
    def repo_root(repo_path: str) -> Path:
        root = Path(repo_path).expanduser().resolve()
        if not root.is_dir():
            raise BackendError(f"Repository path does not exist: {repo_path}")
        if not (root / ".jj").is_dir():
            raise BackendError(
                f"Not a Jujutsu repository: {repo_path}",
                "Run 'jj git init --colocate' in the repository first",
            )
        return root

    def _exec(self, root: Path, args: Sequence[str], binary: bool = False) -> Union[str, bytes]:
        cmd = [self.config.jj_path, "--color=never", *args]
        logging.debug(f"Running jj command in {root}: {' '.join(cmd)}")
        try:
            completed = subprocess.run(
                cmd,
                cwd=root,
                check=False,
                capture_output=True,
                timeout=self.config.backend_timeout_seconds,
            )
        except subprocess.TimeoutExpired as e:
            raise BackendError(
                f"jj {args[0]} timed out after {self.config.backend_timeout_seconds}s",
                "Raise backend_timeout_seconds for very large repositories",
            ) from e
        except OSError as e:
            raise BackendError(f"Failed to execute jj: {e}", f"Check that '{self.config.jj_path}' is installed") from e

        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace").strip()
            raise BackendError(f"jj {args[0]} failed: {stderr or 'exit code ' + str(completed.returncode)}",
                               transient=is_transient(stderr))
        if binary:
            return completed.stdout
        return completed.stdout.decode("utf-8", errors="surrogateescape")

    async def _run_jj(self, repo_path: str, args: Sequence[str], mutating: bool = False,
                      binary: bool = False) -> Union[str, bytes]:
        """
        Run one jj command in a worker thread.

        Read-only commands are retried with exponential backoff while the
        failure looks transient; mutating commands run exactly once. With
        ``binary`` the raw stdout bytes are returned undecoded.
        """
        root = self.repo_root(repo_path)
        attempts = 1 if mutating else self.config.backend_retry_attempts
        for attempt in range(attempts):
            try:
                return await asyncio.to_thread(self._exec, root, args, binary)
            except BackendError as e:
                if not e.transient or attempt == attempts - 1:
                    raise
                delay = self.config.backend_retry_backoff_seconds * 2 ** attempt
                logging.warning(f"Transient jj failure ({e.message}); retrying in {delay:.2f}s")
                await asyncio.sleep(delay)
        raise BackendError("jj was not run")

    async def get_diff_for_commit_range(self, repo_path: str, commit_range: str) -> DiffResult:
        if ".." in commit_range:
            start, end = split_commit_range(commit_range)
            args = ["diff", "--git", "--from", start, "--to", end]
        else:
            args = ["diff", "--git", "-r", commit_range or "@"]
        output = await self._run_jj(repo_path, args)
        files = split_file_diffs(output)
        stats = DiffStats(files=len(files))
        for file in files:
            parsed = parse_file_diff(file)
            stats.additions += parsed.additions
            stats.deletions += parsed.deletions
        logging.info(f"Read {stats.files} changed files for {commit_range} in {repo_path}")
        return DiffResult(commit_range=commit_range, files=files, stats=stats)

    async def get_commit_info(self, repo_path: str, commit_id: str) -> CommitInfo:
        output = await self._run_jj(repo_path, ["log", "--no-graph", "-r", commit_id, "-T", COMMIT_INFO_TEMPLATE])
        parts = output.split("\n", 3)
        while len(parts) < 4:
            parts.append("")
        return CommitInfo(id=parts[0].strip(), author=parts[1].strip(), timestamp=parts[2].strip(),
                          message=parts[3].strip())

    async def list_files(self, repo_path: str, commit_id: str) -> List[str]:
        output = await self._run_jj(repo_path, ["file", "list", "-r", commit_id])
        return [line for line in output.splitlines() if line.strip()]

    async def get_file_content(self, repo_path: str, revision: str, path: str) -> bytes:
        resolve_in_repo(self.repo_root(repo_path), path)
        # bytes mode keeps CRLF line endings and binary files intact
        return await self._run_jj(repo_path, ["file", "show", "-r", revision, f"root-file:{json.dumps(path)}"],
                                  binary=True)

    async def prepare_working_copy(self, repo_path: str, revision: str) -> None:
        await self._run_jj(repo_path, ["new", revision], mutating=True)

    async def create_commit(self, repo_path: str, message: str, changes: Sequence[FileChange]) -> str:
        root = self.repo_root(repo_path)
        for path, content in changes:
            target = resolve_in_repo(root, path)
            if content is None:
                target.unlink(missing_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)

        await self._run_jj(repo_path, ["describe", "-m", message], mutating=True)
        commit_id = (await self._run_jj(repo_path, ["log", "--no-graph", "-r", "@", "-T", "commit_id"])).strip()
        await self._run_jj(repo_path, ["new"], mutating=True)
        logging.info(f"Created commit {commit_id[:12]} in {repo_path}: {message.splitlines()[0]}")
        return commit_id
