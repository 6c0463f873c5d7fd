import pytest

from commit_divider.core.config import DividerConfig
from commit_divider.core.cross_repo import (
    CrossRepoPlanner,
    collect_cross_repo_diff,
    cross_repo_proposal_from_dict,
    generate_cross_repo_proposal,
    summarize_cross_repo_diff,
)
from commit_divider.core.dependency_graph import build_dependency_graph
from commit_divider.core.errors import BackendError, ConfigurationError, CyclicDependencyError, InvalidProposalFormat
from commit_divider.core.repository import RepositoryRegistry

CHAIN = ["core-lib", "api-service", "frontend-app"]


def _first_group_index(proposal, repository):
    return next(index for index, group in enumerate(proposal.commit_groups) if repository in group.repositories())


def _commit_sequence(proposal):
    return [commit.repository for group in proposal.commit_groups for commit in group.commits]


@pytest.mark.asyncio
async def test_collect_reads_every_repository(make_backend, cross_repo_diffs, chain_registry):
    backend = make_backend(cross_repo_diffs)

    diff = await collect_cross_repo_diff(backend, chain_registry, "@-..@")

    assert diff.repositories == ["frontend-app", "api-service", "core-lib"]
    assert {name: [f.path for f in files] for name, files in diff.changes.items()} == {
        "frontend-app": ["src/view.py"],
        "api-service": ["src/routes.py"],
        "core-lib": ["src/helper.py"],
    }
    assert diff.errors == {}


@pytest.mark.asyncio
async def test_collect_records_partial_failure(make_backend, cross_repo_diffs, chain_registry):
    backend = make_backend(cross_repo_diffs, failures={"api-service": BackendError("Not a Jujutsu repository")})

    diff = await collect_cross_repo_diff(backend, chain_registry, "@-..@")

    assert diff.errors == {"api-service": "Not a Jujutsu repository"}
    assert diff.changes["api-service"] == []
    assert len(diff.changes["core-lib"]) == 1


@pytest.mark.asyncio
async def test_collect_rejects_unknown_names(make_backend, chain_registry):
    with pytest.raises(ConfigurationError):
        await collect_cross_repo_diff(make_backend(), chain_registry, "@", names=["ghost"])


@pytest.mark.asyncio
async def test_chain_is_ordered_by_dependencies(make_backend, cross_repo_diffs, chain_registry):
    diff = await collect_cross_repo_diff(make_backend(cross_repo_diffs), chain_registry, "@-..@")

    proposal = await generate_cross_repo_proposal(diff, chain_registry)

    assert set(proposal.repositories) == set(CHAIN)
    indexes = [_first_group_index(proposal, name) for name in CHAIN]
    assert indexes == sorted(indexes)
    sequence = _commit_sequence(proposal)
    assert [sequence.index(name) for name in CHAIN] == sorted(sequence.index(name) for name in CHAIN)
    assert 0.0 <= proposal.confidence_score <= 1.0

    data = proposal.to_dict()
    assert {(d["source"], d["target"]) for d in data["dependencies"]} >= {
        ("api-service", "core-lib"),
        ("frontend-app", "api-service"),
    }


@pytest.mark.asyncio
async def test_theme_split_respects_dependencies(make_backend, make_diff, chain_registry):
    """frontend-app's docs change cannot share a group with core-lib's before api-service lands."""
    diffs = {
        "core-lib": make_diff("docs/usage.md", ["Usage instructions for the library."]),
        "api-service": make_diff("src/routes.py", ["def add_route():"]),
        "frontend-app": make_diff("docs/guide.md", ["Usage instructions for the views."]),
    }
    diff = await collect_cross_repo_diff(make_backend(diffs), chain_registry, "@-..@")

    proposal = await CrossRepoPlanner().propose(diff, chain_registry)

    assert [group.repositories() for group in proposal.commit_groups] == [
        ["core-lib"], ["api-service"], ["frontend-app"],
    ]
    assert proposal.commit_groups[2].name.endswith("#2")


@pytest.mark.asyncio
async def test_cycle_aborts_proposal(make_backend, cross_repo_diffs, tmp_path):
    registry = RepositoryRegistry.from_entries(
        [
            {"name": "core-lib", "dependencies": ["frontend-app"]},
            {"name": "api-service", "dependencies": ["core-lib"]},
            {"name": "frontend-app", "dependencies": ["api-service"]},
        ],
        root_dir=tmp_path,
    )
    diff = await collect_cross_repo_diff(make_backend(cross_repo_diffs), registry, "@-..@")

    with pytest.raises(CyclicDependencyError) as exc_info:
        await generate_cross_repo_proposal(diff, registry)

    assert set(exc_info.value.cycle) == set(CHAIN)


@pytest.mark.asyncio
async def test_failed_repository_is_annotated(make_backend, cross_repo_diffs, chain_registry):
    backend = make_backend(cross_repo_diffs, failures={"frontend-app": BackendError("jj diff failed: no such revision")})
    diff = await collect_cross_repo_diff(backend, chain_registry, "@-..@")

    proposal = await generate_cross_repo_proposal(diff, chain_registry)

    failed = [c for g in proposal.commit_groups for c in g.commits if c.repository == "frontend-app"]
    assert len(failed) == 1
    assert failed[0].error == "jj diff failed: no such revision"
    assert failed[0].changes == []
    assert proposal.repository_errors == {"frontend-app": "jj diff failed: no such revision"}
    assert proposal.to_dict()["commitGroups"]


@pytest.mark.asyncio
async def test_max_group_size_splits_groups(make_backend, cross_repo_diffs, chain_registry):
    diff = await collect_cross_repo_diff(make_backend(cross_repo_diffs), chain_registry, "@-..@")

    proposal = await generate_cross_repo_proposal(diff, chain_registry, DividerConfig(max_group_size=1))

    assert all(len(group.commits) == 1 for group in proposal.commit_groups)
    assert [group.name for group in proposal.commit_groups] == [
        "feature changes (part 1)", "feature changes (part 2)", "feature changes (part 3)",
    ]
    assert _commit_sequence(proposal) == CHAIN


@pytest.mark.asyncio
async def test_filetype_grouping(make_backend, cross_repo_diffs, chain_registry):
    diff = await collect_cross_repo_diff(make_backend(cross_repo_diffs), chain_registry, "@-..@")

    proposal = await generate_cross_repo_proposal(diff, chain_registry, DividerConfig(cross_repo_grouping="filetype"))

    assert [group.name for group in proposal.commit_groups] == ["Changes to py files"]
    assert proposal.commit_groups[0].group_type == "filetype"


@pytest.mark.asyncio
async def test_summary_reports_changes_and_cycle(make_backend, cross_repo_diffs, chain_registry):
    diff = await collect_cross_repo_diff(make_backend(cross_repo_diffs), chain_registry, "@-..@")
    graph = build_dependency_graph(chain_registry.repositories(), diff.changes, check=False)

    summary = summarize_cross_repo_diff(diff, graph)

    assert summary["commitRange"] == "@-..@"
    assert summary["cycle"] is None
    core = next(repo for repo in summary["repositories"] if repo["name"] == "core-lib")
    assert core["changes"] == {"files": 1, "additions": 2, "deletions": 0}


@pytest.mark.parametrize("data, fragment", [
    ({}, "missing commitGroups"),
    ({"commitGroups": [{"name": "x"}]}, "missing commits"),
    ({"commitGroups": [{"commits": [{"message": "fix: a", "changes": []}]}]}, "missing repository"),
    ({"commitGroups": [{"commits": [{"repository": "a", "changes": []}]}]}, "missing message"),
])
def test_cross_repo_proposal_from_dict_rejects_malformed(data, fragment):
    with pytest.raises(InvalidProposalFormat, match=fragment):
        cross_repo_proposal_from_dict(data)


@pytest.mark.asyncio
async def test_cross_repo_proposal_from_dict_roundtrip(make_backend, cross_repo_diffs, chain_registry):
    diff = await collect_cross_repo_diff(make_backend(cross_repo_diffs), chain_registry, "@-..@")
    proposal = await generate_cross_repo_proposal(diff, chain_registry)

    rebuilt = cross_repo_proposal_from_dict(proposal.to_dict())

    assert _commit_sequence(rebuilt) == _commit_sequence(proposal)
    assert rebuilt.commit_range == "@-..@"
