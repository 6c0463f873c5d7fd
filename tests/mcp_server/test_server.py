import json
import logging

import pytest

import commit_divider.mcp_server.server as server_module
from commit_divider.core.config import DividerConfig
from commit_divider.core.errors import CYCLIC_DEPENDENCY, EXECUTION_ERROR, INTERNAL_ERROR, INVALID_PARAMS, BackendError
from commit_divider.mcp_server.server import (
    AnalysisResponse,
    ExecutionResponse,
    ProposalResponse,
    analyze_commit_range,
    analyze_multi_repo_commits,
    automate_commit_division,
    automate_multi_repo_split,
    create_server,
    execute_commit_division,
    execute_multi_repo_split,
    on_shutdown,
    propose_commit_division,
    propose_multi_repo_split,
)

TOOL_NAMES = {
    "analyzeCommitRange",
    "proposeCommitDivision",
    "executeCommitDivision",
    "automateCommitDivision",
    "analyzeMultiRepoCommits",
    "proposeMultiRepoSplit",
    "executeMultiRepoSplit",
    "automateMultiRepoSplit",
}


@pytest.fixture
def backend(make_backend, scenario_diff, cross_repo_diffs):
    return make_backend({"repo": scenario_diff, **cross_repo_diffs})


@pytest.fixture
def configured(backend, tmp_path):
    (tmp_path / "repos.json").write_text(json.dumps({"repositories": [
        {"name": "core-lib"},
        {"name": "api-service", "dependencies": ["core-lib"]},
        {"name": "frontend-app", "dependencies": ["api-service"]},
    ]}))
    return create_server(DividerConfig(repo_path="repo", repos_dir=str(tmp_path)), backend)


def test_server_initialization():
    assert server_module.server.name == "CommitDividerMCP"
    assert callable(server_module.server.run_stdio_async)


@pytest.mark.asyncio
async def test_all_tools_registered():
    tools = await server_module.server.list_tools()

    assert {tool.name for tool in tools} == TOOL_NAMES


def test_create_server_attaches_service(configured, backend):
    assert configured is server_module.server
    assert configured.service.backend is backend
    assert configured.config.repo_path == "repo"


@pytest.mark.asyncio
async def test_shutdown(caplog):
    caplog.set_level(logging.INFO)

    await on_shutdown()

    assert "Server shutdown" in caplog.text


@pytest.mark.asyncio
async def test_analyze_tool(configured):
    response = await analyze_commit_range(commit_range="@-..@")

    assert isinstance(response, AnalysisResponse)
    assert response.error is None
    assert response.repo_path == "repo"
    assert response.analysis["files"] == 3


@pytest.mark.asyncio
async def test_analyze_tool_degrades(configured, backend):
    backend.failures["repo"] = BackendError("Not a Jujutsu repository: repo")

    response = await analyze_commit_range(commit_range="@-..@")

    assert response.error is None
    assert response.degraded.code == INTERNAL_ERROR
    assert response.analysis["semanticGroups"][0]["pattern"] == "workspace_error"


@pytest.mark.asyncio
async def test_propose_tool_invalid_strategy(configured):
    response = await propose_commit_division(commit_range="@-..@", strategy="random")

    assert response.proposal is None
    assert response.error.code == INVALID_PARAMS


@pytest.mark.asyncio
async def test_propose_and_execute_tools(configured):
    proposed = await propose_commit_division(commit_range="@-..@", commit_size="few")

    executed = await execute_commit_division(proposal=proposed.proposal)

    assert isinstance(executed, ExecutionResponse)
    assert executed.success
    assert len(executed.commit_ids) == len(proposed.proposal["proposedCommits"])


@pytest.mark.asyncio
async def test_execute_tool_rejects_malformed_proposal(configured, backend):
    response = await execute_commit_division(proposal={"proposedCommits": [{"message": "fix: x"}]})

    assert not response.success
    assert response.error.code == INVALID_PARAMS
    assert backend.calls == []


@pytest.mark.asyncio
async def test_execute_tool_reports_partial_failure(configured, backend):
    proposed = await propose_commit_division(commit_range="@-..@")
    backend.fail_after = 1

    response = await execute_commit_division(proposal=proposed.proposal)

    assert not response.success
    assert response.error.code == EXECUTION_ERROR
    assert response.error.message.startswith("Error executing division:")
    assert response.commit_ids == ["commit-1"]


@pytest.mark.asyncio
async def test_automate_tool_dry_run(configured, backend):
    response = await automate_commit_division(commit_range="@-..@", dry_run=True)

    assert response.success
    assert response.dry_run
    assert not response.executed
    assert backend.commits == []


@pytest.mark.asyncio
async def test_multi_repo_tools(configured):
    analysis = await analyze_multi_repo_commits(commit_range="@-..@")
    proposed = await propose_multi_repo_split(commit_range="@-..@")
    executed = await execute_multi_repo_split(proposal=proposed.proposal)

    assert [repo["name"] for repo in analysis.repositories] == ["core-lib", "api-service", "frontend-app"]
    assert analysis.cycle is None
    assert isinstance(proposed, ProposalResponse)
    assert proposed.proposal["commitGroups"]
    assert executed.success
    assert set(executed.commit_ids) == {"core-lib", "api-service", "frontend-app"}


@pytest.mark.asyncio
async def test_multi_repo_cycle_is_an_error(configured):
    repositories = [
        {"name": "core-lib", "dependencies": ["api-service"]},
        {"name": "api-service", "dependencies": ["core-lib"]},
    ]

    response = await propose_multi_repo_split(commit_range="@-..@", repositories=repositories)

    assert response.proposal is None
    assert response.error.code == CYCLIC_DEPENDENCY
    assert response.error.hint


@pytest.mark.asyncio
async def test_multi_repo_execute_rejects_malformed(configured):
    response = await execute_multi_repo_split(proposal={"commitRange": "@-..@"})

    assert response.error.code == INVALID_PARAMS
    assert "commitGroups" in response.error.message


@pytest.mark.asyncio
async def test_automate_multi_repo_tool(configured, backend):
    response = await automate_multi_repo_split(commit_range="@-..@", dry_run=True)

    assert response.success
    assert response.validation
    assert backend.commits == []


@pytest.mark.asyncio
async def test_unconfigured_server_reports_error(monkeypatch):
    monkeypatch.setattr(server_module.server, "service", None, raising=False)

    response = await analyze_commit_range(commit_range="@")

    assert response.error.code == INTERNAL_ERROR
    assert "not configured" in response.error.message


def test_response_schemas():
    schema = AnalysisResponse.model_json_schema()
    assert "commit_range" in schema["properties"]
    assert "commit_ids" in ExecutionResponse.model_json_schema()["properties"]
