import pytest

from commit_divider.core.dependency_graph import (
    IMPORT_CONFIDENCE,
    REFERENCE_CONFIDENCE,
    DependencyGraph,
    build_dependency_graph,
    find_cycle,
    infer_dependencies,
    name_variants,
    topological_order,
)
from commit_divider.core.diff_parser import split_file_diffs
from commit_divider.core.errors import CYCLIC_DEPENDENCY, CyclicDependencyError
from commit_divider.core.models import CrossRepoDependency, Repository


def test_find_cycle_returns_closed_path():
    graph = {"a": ["b"], "b": ["c"], "c": ["a"]}

    assert find_cycle(["a", "b", "c"], graph) == ["a", "b", "c", "a"]


def test_find_cycle_on_dag_is_none():
    graph = {"frontend": ["api"], "api": ["core"], "core": []}

    assert find_cycle(["frontend", "api", "core"], graph) is None


def test_find_cycle_ignores_unknown_targets():
    assert find_cycle(["a"], {"a": ["elsewhere"]}) is None


def test_topological_order_puts_dependencies_first():
    graph = {"frontend": ["api"], "api": ["core"]}

    assert topological_order(["frontend", "api", "core"], graph) == ["core", "api", "frontend"]


def test_topological_order_is_stable_for_independent_nodes():
    assert topological_order(["b", "a", "c"], {}) == ["b", "a", "c"]


def test_topological_order_raises_on_cycle():
    with pytest.raises(CyclicDependencyError) as exc_info:
        topological_order(["a", "b"], {"a": ["b"], "b": ["a"]})

    assert exc_info.value.code == CYCLIC_DEPENDENCY
    assert exc_info.value.cycle[0] == exc_info.value.cycle[-1]


def test_add_edge_rejects_self_unknown_and_duplicate():
    graph = DependencyGraph(nodes=["a", "b"])

    assert graph.add_edge(CrossRepoDependency("a", "b"))
    assert not graph.add_edge(CrossRepoDependency("a", "b", kind="import"))
    assert not graph.add_edge(CrossRepoDependency("a", "a"))
    assert not graph.add_edge(CrossRepoDependency("a", "zzz"))
    assert graph.dependencies_of("a") == ["b"]


def test_name_variants():
    assert name_variants("Core-Lib") == {"core-lib", "core_lib"}


def test_infer_import_and_reference(make_diff):
    changes = {
        "api-service": split_file_diffs(
            make_diff("src/client.py", ["url = 'http://core-lib:8080/v1'"])
            + make_diff("src/app.py", ["from core_lib import helper"])
        ),
        "core-lib": [],
    }

    edges = infer_dependencies(changes, ["core-lib", "api-service"])

    assert len(edges) == 1
    edge = edges[0]
    assert (edge.source, edge.target) == ("api-service", "core-lib")
    assert edge.kind == "import"
    assert edge.confidence == IMPORT_CONFIDENCE
    assert edge.source_file == "src/app.py"


def test_infer_reference_respects_min_confidence(make_diff):
    changes = {"api-service": split_file_diffs(make_diff("src/client.py", ["url = 'http://core-lib:8080/v1'"]))}

    loose = infer_dependencies(changes, ["core-lib", "api-service"])
    strict = infer_dependencies(changes, ["core-lib", "api-service"], min_confidence=0.8)

    assert [edge.kind for edge in loose] == ["reference"]
    assert loose[0].confidence == REFERENCE_CONFIDENCE
    assert strict == []


def test_infer_needs_whole_names(make_diff):
    changes = {"api-service": split_file_diffs(make_diff("src/a.py", ["x = my_core_library"]))}

    assert infer_dependencies(changes, ["core", "api-service"]) == []


def test_build_graph_merges_declared_and_inferred(cross_repo_diffs):
    repos = [Repository("core-lib", "/r/core-lib"), Repository("api-service", "/r/api-service"),
             Repository("frontend-app", "/r/frontend-app")]
    changes = {name: split_file_diffs(raw) for name, raw in cross_repo_diffs.items()}

    graph = build_dependency_graph(repos, changes)

    assert graph.topological_order() == ["core-lib", "api-service", "frontend-app"]
    assert {edge.kind for edge in graph.edges} == {"import"}
    assert repos[1].dependencies == {"core-lib"}
    assert repos[2].dependencies == {"api-service"}


def test_build_graph_cycle_leaves_repositories_untouched(cross_repo_diffs):
    core = Repository("core-lib", "/r/core-lib", {"api-service"})
    api = Repository("api-service", "/r/api-service")
    changes = {"api-service": split_file_diffs(cross_repo_diffs["api-service"])}

    with pytest.raises(CyclicDependencyError):
        build_dependency_graph([core, api], changes)
    assert api.dependencies == set()

    unchecked = build_dependency_graph([core, api], changes, check=False)
    assert unchecked.find_cycle() is not None


def test_build_graph_without_detection(cross_repo_diffs):
    repos = [Repository("core-lib", "/r/core-lib"), Repository("api-service", "/r/api-service")]
    changes = {"api-service": split_file_diffs(cross_repo_diffs["api-service"])}

    graph = build_dependency_graph(repos, changes, detect=False)

    assert graph.edges == []
