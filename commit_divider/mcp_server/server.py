from mcp.server.fastmcp import FastMCP
import logging
import sys
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pydantic import BaseModel, Field
from typing import Annotated, Any, Dict, List, Optional, Union
from commit_divider.core.backend import VersionControlBackend
from commit_divider.core.config import DividerConfig
from commit_divider.core.errors import ConfigurationError, DividerError
from commit_divider.mcp_server.service import DivisionService


# Pydantic models for tools
class ToolError(BaseModel):
    code: int
    message: str
    hint: Optional[str] = None


class AnalysisResponse(BaseModel):
    commit_range: str
    repo_path: Optional[str] = None
    analysis: Optional[dict] = None
    degraded: Optional[ToolError] = None
    error: Optional[ToolError] = None


class ProposalResponse(BaseModel):
    proposal: Optional[dict] = None
    repo_path: Optional[str] = None
    degraded: Optional[ToolError] = None
    error: Optional[ToolError] = None


class ExecutionResponse(BaseModel):
    success: bool
    commit_ids: List[str] | Dict[str, List[str]] = []
    skipped_commits: List[int] = []
    groups: Optional[List[dict]] = None
    error: Optional[ToolError] = None


class AutomationResponse(BaseModel):
    success: bool
    dry_run: bool = False
    executed: bool = False
    proposal: Optional[dict] = None
    validation: Optional[List[dict]] = None
    commit_ids: List[str] | Dict[str, List[str]] = []
    reason: Optional[str] = None
    error: Optional[ToolError] = None


class MultiRepoAnalysisResponse(BaseModel):
    commit_range: str
    repositories: List[dict] = []
    dependencies: List[dict] = []
    cycle: Optional[List[str]] = None
    errors: Dict[str, str] = {}
    error: Optional[ToolError] = None


# Global logger for MCP
logger = logging.getLogger("mcp")
logger.addHandler(logging.StreamHandler(sys.stderr))
logger.setLevel(logging.INFO)


@dataclass
class AppContext:
    service: Optional[DivisionService] = None


async def on_shutdown():
    logger.info("Server shutdown")


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    service = getattr(server, "service", None)
    if service:
        logger.info(f"Server started for repository {service.config.repo_path}")
    else:
        logger.warning("No service configured, tools will report a configuration error")
    try:
        yield AppContext(service=service)
    finally:
        await on_shutdown()

server = FastMCP("CommitDividerMCP", lifespan=lifespan)


def create_server(config: Optional[DividerConfig] = None,
                  backend: Optional[VersionControlBackend] = None) -> FastMCP:
    """Attach a DivisionService built from ``config`` to the tool server."""
    server.config = config or DividerConfig()
    server.service = DivisionService(server.config, backend)
    return server


def _service() -> DivisionService:
    service = getattr(server, "service", None)
    if service is None:
        raise ConfigurationError("Server is not configured", "Call create_server(config) before serving tools")
    return service


def _tool_error(name: str, e: DividerError) -> ToolError:
    logger.warning(f"{name} failed: {e.message}")
    return ToolError(**e.to_dict())


CommitRange = Annotated[str, Field(description="Revision range 'A..B' or a single revision, e.g. '@-..@'")]
RepoPath = Annotated[Optional[str], Field(description="Repository path (defaults to the configured repo_path)")]
ConfigPath = Annotated[Optional[str], Field(description="Repository registry file (.json, .toml or .yaml)")]
Repositories = Annotated[
    Optional[List[Union[str, Dict[str, Any]]]],
    Field(description="Repository names from the registry, or inline {name, path, dependencies} objects"),
]
Strategy = Annotated[Optional[str], Field(description="Division strategy: balanced, semantic, filetype or directory")]
CommitSizeParam = Annotated[Optional[str], Field(description="Commit size preference: balanced, many or few")]
MinConfidence = Annotated[Optional[float], Field(description="Commits below this confidence are merged together")]
MaxCommits = Annotated[Optional[int], Field(description="Upper bound on proposed commits")]
DryRun = Annotated[bool, Field(description="Propose and validate without writing commits")]
Validate = Annotated[bool, Field(description="Validate each commit before execution")]
AutoFix = Annotated[bool, Field(description="Repair message prefixes and drop empty commits")]


# Tool functions with decorators
@server.tool(name="analyzeCommitRange")
async def analyze_commit_range(commit_range: CommitRange, repo_path: RepoPath = None) -> AnalysisResponse:
    """
    Analyze the changes in a commit range: files, line stats, change types and semantic groups.
    """
    try:
        data = await _service().analyze_commit_range(commit_range, repo_path)
    except DividerError as e:
        return AnalysisResponse(commit_range=commit_range, repo_path=repo_path,
                                error=_tool_error("analyzeCommitRange", e))
    return AnalysisResponse(commit_range=commit_range, repo_path=data["repoPath"], analysis=data["analysis"],
                            degraded=data.get("degraded"))


@server.tool(name="proposeCommitDivision")
async def propose_commit_division(commit_range: CommitRange,
                                  repo_path: RepoPath = None,
                                  strategy: Strategy = None,
                                  commit_size: CommitSizeParam = None,
                                  min_confidence: MinConfidence = None,
                                  max_commits: MaxCommits = None) -> ProposalResponse:
    """
    Propose how to split a commit range into smaller conventional commits.
    """
    try:
        data = await _service().propose_division(commit_range, repo_path, strategy, commit_size,
                                                 min_confidence, max_commits)
    except DividerError as e:
        return ProposalResponse(repo_path=repo_path, error=_tool_error("proposeCommitDivision", e))
    return ProposalResponse(proposal=data["proposal"], repo_path=data["repoPath"], degraded=data.get("degraded"))


@server.tool(name="executeCommitDivision")
async def execute_commit_division(proposal: Annotated[dict, Field(description="Proposal returned by proposeCommitDivision")],
                                  repo_path: RepoPath = None) -> ExecutionResponse:
    """
    Create the commits of a division proposal. Invalid proposals are rejected before touching the repository.
    """
    try:
        data = await _service().execute_division(proposal, repo_path)
    except DividerError as e:
        return ExecutionResponse(success=False, commit_ids=[cid for ids in getattr(e, "created", {}).values() for cid in ids],
                                 error=_tool_error("executeCommitDivision", e))
    return ExecutionResponse(success=data["success"], commit_ids=data["commitIds"],
                             skipped_commits=data["skippedCommits"])


@server.tool(name="automateCommitDivision")
async def automate_commit_division(commit_range: CommitRange,
                                   repo_path: RepoPath = None,
                                   strategy: Strategy = None,
                                   commit_size: CommitSizeParam = None,
                                   min_confidence: MinConfidence = None,
                                   max_commits: MaxCommits = None,
                                   dry_run: DryRun = False,
                                   validate: Validate = True,
                                   auto_fix: AutoFix = False) -> AutomationResponse:
    """
    Propose, validate and execute a commit division in one step.
    """
    try:
        data = await _service().automate_division(commit_range, repo_path, strategy, commit_size,
                                                  min_confidence, max_commits, dry_run, validate, auto_fix)
    except DividerError as e:
        return AutomationResponse(success=False, dry_run=dry_run, error=_tool_error("automateCommitDivision", e))
    return _automation_response(data)


def _automation_response(data: Dict[str, Any]) -> AutomationResponse:
    return AutomationResponse(
        success=data["success"],
        dry_run=data["dryRun"],
        executed=data["executed"],
        proposal=data.get("proposal"),
        validation=data.get("validation"),
        commit_ids=data["commitIds"],
        reason=data.get("reason"),
    )


@server.tool(name="analyzeMultiRepoCommits")
async def analyze_multi_repo_commits(commit_range: CommitRange,
                                     config_path: ConfigPath = None,
                                     repositories: Repositories = None) -> MultiRepoAnalysisResponse:
    """
    Analyze a commit range across repositories and report their dependencies.
    """
    try:
        data = await _service().analyze_multi_repo_commits(commit_range, config_path, repositories)
    except DividerError as e:
        return MultiRepoAnalysisResponse(commit_range=commit_range, error=_tool_error("analyzeMultiRepoCommits", e))
    return MultiRepoAnalysisResponse(
        commit_range=commit_range,
        repositories=data["repositories"],
        dependencies=data["dependencies"],
        cycle=data["cycle"],
        errors=data["errors"],
    )


@server.tool(name="proposeMultiRepoSplit")
async def propose_multi_repo_split(commit_range: CommitRange,
                                   config_path: ConfigPath = None,
                                   repositories: Repositories = None) -> ProposalResponse:
    """
    Propose dependency-ordered commit groups spanning several repositories.
    """
    try:
        data = await _service().propose_multi_repo_split(commit_range, config_path, repositories)
    except DividerError as e:
        return ProposalResponse(error=_tool_error("proposeMultiRepoSplit", e))
    return ProposalResponse(proposal=data["proposal"])


@server.tool(name="executeMultiRepoSplit")
async def execute_multi_repo_split(proposal: Annotated[dict, Field(description="Proposal returned by proposeMultiRepoSplit")],
                                   config_path: ConfigPath = None,
                                   repositories: Repositories = None) -> ExecutionResponse:
    """
    Create the commits of a cross-repository proposal, group by group.
    """
    try:
        data = await _service().execute_multi_repo_split(proposal, config_path, repositories)
    except DividerError as e:
        return ExecutionResponse(success=False, commit_ids=getattr(e, "created", {}),
                                 error=_tool_error("executeMultiRepoSplit", e))
    return ExecutionResponse(success=data["success"], commit_ids=data["commitIds"], groups=data["groups"])


@server.tool(name="automateMultiRepoSplit")
async def automate_multi_repo_split(commit_range: CommitRange,
                                    config_path: ConfigPath = None,
                                    repositories: Repositories = None,
                                    dry_run: DryRun = False,
                                    validate: Validate = True,
                                    auto_fix: AutoFix = False) -> AutomationResponse:
    """
    Propose, validate and execute a cross-repository split in one step.
    """
    try:
        data = await _service().automate_multi_repo_split(commit_range, config_path, repositories,
                                                          dry_run, validate, auto_fix)
    except DividerError as e:
        return AutomationResponse(success=False, dry_run=dry_run, error=_tool_error("automateMultiRepoSplit", e))
    return _automation_response(data)
