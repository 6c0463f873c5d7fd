from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import logging

from commit_divider.core.backend import JujutsuBackend, VersionControlBackend
from commit_divider.core.config import CommitSize, DividerConfig, DivisionStrategy
from commit_divider.core.cross_repo import (
    CrossRepoPlanner,
    collect_cross_repo_diff,
    cross_repo_proposal_from_dict,
    summarize_cross_repo_diff,
)
from commit_divider.core.dependency_graph import build_dependency_graph
from commit_divider.core.errors import INVALID_PARAMS, AnalysisFailure, ConfigurationError, DividerError
from commit_divider.core.executor import execute_cross_repo_proposal, execute_proposal
from commit_divider.core.models import CrossRepoProposal
from commit_divider.core.proposal import ProposalBuilder, proposal_from_dict, validate_commits
from commit_divider.core.repository import RepositoryRegistry, load_registry
from commit_divider.core.semantic import SemanticAnalyzer, failed_analysis
from commit_divider.core.diff_parser import parse_file_diff


class DivisionService:
    """
    Implements every divider operation on top of a configuration and a backend.

    Analysis and proposal operations degrade to low-confidence sentinel
    results when a repository cannot be read. Execution operations raise.
    """

    def __init__(self, config: Optional[DividerConfig] = None, backend: Optional[VersionControlBackend] = None):
        self.config = config or DividerConfig()
        self.backend = backend or JujutsuBackend(self.config)
        self.analyzer = SemanticAnalyzer(self.config)
        self.builder = ProposalBuilder(self.config)
        logging.info(f"DivisionService ready (strategy={self.config.division_strategy.value}, "
                     f"backend={type(self.backend).__name__})")

    def _repo(self, repo_path: Optional[str]) -> str:
        return repo_path or self.config.repo_path

    # Single repository

    async def analyze_commit_range(self, commit_range: str, repo_path: Optional[str] = None) -> Dict[str, Any]:
        repo_path = self._repo(repo_path)
        try:
            diff = await self.backend.get_diff_for_commit_range(repo_path, commit_range)
        except DividerError as e:
            logging.warning(f"Analysis of {commit_range} in {repo_path} degraded: {e.message}")
            result = failed_analysis(e.message)
            return {"commitRange": commit_range, "repoPath": repo_path, "analysis": result.to_dict(),
                    "degraded": AnalysisFailure(e.message, e.hint).to_dict()}
        result = self.analyzer.analyze([parse_file_diff(file) for file in diff.files])
        return {"commitRange": commit_range, "repoPath": repo_path, "analysis": result.to_dict()}

    async def propose_division(
        self,
        commit_range: str,
        repo_path: Optional[str] = None,
        strategy: Optional[str] = None,
        commit_size: Optional[str] = None,
        min_confidence: Optional[float] = None,
        max_commits: Optional[int] = None,
    ) -> Dict[str, Any]:
        repo_path = self._repo(repo_path)
        options = self._proposal_options(strategy, commit_size, min_confidence, max_commits)
        try:
            diff = await self.backend.get_diff_for_commit_range(repo_path, commit_range)
        except DividerError as e:
            logging.warning(f"Proposal for {commit_range} in {repo_path} degraded: {e.message}")
            proposal = self.builder.failed(commit_range, e.message)
            return {"proposal": proposal.to_dict(), "repoPath": repo_path,
                    "degraded": AnalysisFailure(e.message, e.hint).to_dict()}
        proposal = self.builder.build(diff.files, commit_range, **options)
        return {"proposal": proposal.to_dict(), "repoPath": repo_path}

    @staticmethod
    def _proposal_options(strategy, commit_size, min_confidence, max_commits) -> Dict[str, Any]:
        try:
            return {
                "strategy": DivisionStrategy(strategy) if strategy else None,
                "commit_size": CommitSize(commit_size) if commit_size else None,
                "min_confidence": min_confidence,
                "max_commits": max_commits,
            }
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid division options: {e}",
                f"strategy is one of {[s.value for s in DivisionStrategy]}, "
                f"commit_size one of {[s.value for s in CommitSize]}",
                code=INVALID_PARAMS,
            ) from e

    async def execute_division(self, proposal: Any, repo_path: Optional[str] = None) -> Dict[str, Any]:
        parsed = proposal_from_dict(proposal)
        return await execute_proposal(self.backend, self._repo(repo_path), parsed)

    async def automate_division(
        self,
        commit_range: str,
        repo_path: Optional[str] = None,
        strategy: Optional[str] = None,
        commit_size: Optional[str] = None,
        min_confidence: Optional[float] = None,
        max_commits: Optional[int] = None,
        dry_run: bool = False,
        validate: bool = True,
        auto_fix: bool = False,
    ) -> Dict[str, Any]:
        """Propose, optionally validate, then execute unless ``dry_run``."""
        repo_path = self._repo(repo_path)
        options = self._proposal_options(strategy, commit_size, min_confidence, max_commits)
        diff = await self.backend.get_diff_for_commit_range(repo_path, commit_range)
        proposal = self.builder.build(diff.files, commit_range, **options)

        result: Dict[str, Any] = {"dryRun": dry_run, "executed": False, "commitIds": []}
        if validate:
            rows, kept = validate_commits(proposal.proposed_commits, auto_fix)
            result["validation"] = rows
            proposal = replace(proposal, proposed_commits=kept)
            blocked = [row["commitIndex"] for row in rows if not row["isValid"] and not row["autoFixed"]]
            if blocked:
                result.update(success=False, proposal=proposal.to_dict(),
                              reason=f"Validation failed for commits {blocked}; rerun with auto_fix")
                return result
        result["proposal"] = proposal.to_dict()
        if dry_run or not proposal.proposed_commits:
            result["success"] = True
            return result

        executed = await execute_proposal(self.backend, repo_path, proposal)
        result.update(success=True, executed=True, commitIds=executed["commitIds"])
        return result

    # Multiple repositories

    def load_repositories(self, config_path: Optional[str] = None,
                          repositories: Optional[Sequence[Any]] = None) -> RepositoryRegistry:
        """
        Resolve the registry for a multi-repository call.

        ``repositories`` may be inline ``{name, path, dependencies}`` objects,
        or names selecting a subset of the registry file.
        """
        if repositories and all(isinstance(entry, dict) for entry in repositories):
            return RepositoryRegistry.from_entries(repositories, root_dir=self.config.repos_dir)
        path = Path(config_path) if config_path else self.config.repos_config_path()
        registry = load_registry(path)
        if repositories:
            return registry.subset([str(name) for name in repositories])
        return registry

    async def analyze_multi_repo_commits(self, commit_range: str, config_path: Optional[str] = None,
                                         repositories: Optional[Sequence[Any]] = None) -> Dict[str, Any]:
        registry = self.load_repositories(config_path, repositories)
        diff = await collect_cross_repo_diff(self.backend, registry, commit_range)
        graph = build_dependency_graph(
            registry.repositories(),
            diff.changes,
            detect=self.config.dependency_detection,
            min_confidence=self.config.min_dependency_confidence,
            check=False,
        )
        summary = summarize_cross_repo_diff(diff, graph)
        summary["errors"] = dict(diff.errors)
        return summary

    async def _cross_repo_proposal(self, commit_range: str, registry: RepositoryRegistry) -> CrossRepoProposal:
        diff = await collect_cross_repo_diff(self.backend, registry, commit_range)
        return await CrossRepoPlanner(self.config).propose(diff, registry)

    async def propose_multi_repo_split(self, commit_range: str, config_path: Optional[str] = None,
                                       repositories: Optional[Sequence[Any]] = None) -> Dict[str, Any]:
        registry = self.load_repositories(config_path, repositories)
        proposal = await self._cross_repo_proposal(commit_range, registry)
        return {"proposal": proposal.to_dict()}

    async def execute_multi_repo_split(self, proposal: Any, config_path: Optional[str] = None,
                                       repositories: Optional[Sequence[Any]] = None) -> Dict[str, Any]:
        parsed = cross_repo_proposal_from_dict(proposal)
        registry = self.load_repositories(config_path, repositories)
        return await execute_cross_repo_proposal(self.backend, registry, parsed)

    async def automate_multi_repo_split(
        self,
        commit_range: str,
        config_path: Optional[str] = None,
        repositories: Optional[Sequence[Any]] = None,
        dry_run: bool = False,
        validate: bool = True,
        auto_fix: bool = False,
    ) -> Dict[str, Any]:
        registry = self.load_repositories(config_path, repositories)
        proposal = await self._cross_repo_proposal(commit_range, registry)

        result: Dict[str, Any] = {"dryRun": dry_run, "executed": False, "commitIds": {}}
        if validate:
            validation: List[Dict[str, Any]] = []
            blocked = False
            groups = []
            for group_index, group in enumerate(proposal.commit_groups):
                rows, kept = validate_commits(group.commits, auto_fix)
                for row in rows:
                    row["groupIndex"] = group_index
                    row["repository"] = group.commits[row["commitIndex"]].repository
                    blocked = blocked or (not row["isValid"] and not row["autoFixed"])
                validation.extend(rows)
                if kept:
                    groups.append(replace(group, commits=kept))
            proposal = replace(proposal, commit_groups=groups)
            result["validation"] = validation
            if blocked:
                result.update(success=False, proposal=proposal.to_dict(),
                              reason="Validation failed; rerun with auto_fix")
                return result
        result["proposal"] = proposal.to_dict()
        if dry_run or not proposal.commit_groups:
            result["success"] = True
            return result

        executed = await execute_cross_repo_proposal(self.backend, registry, proposal)
        result.update(success=True, executed=True, commitIds=executed["commitIds"])
        return result
