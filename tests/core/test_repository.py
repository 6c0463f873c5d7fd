import json
import logging

import pytest
import yaml

from commit_divider.core.errors import ConfigurationError, CyclicDependencyError
from commit_divider.core.models import Repository
from commit_divider.core.repository import RepositoryRegistry, load_registry

ENTRIES = [
    {"name": "core-lib", "path": "core-lib"},
    {"name": "api-service", "path": "api-service", "dependencies": ["core-lib"]},
]

TOML_REGISTRY = """
[[repositories]]
name = "core-lib"
path = "core-lib"

[[repositories]]
name = "api-service"
path = "api-service"
dependencies = ["core-lib"]
"""


def _check_loaded(registry, root):
    assert registry.names() == ["core-lib", "api-service"]
    assert registry.get("core-lib").path == str((root / "core-lib").resolve())
    assert registry.get("api-service").dependencies == {"core-lib"}


def test_load_json(tmp_path):
    path = tmp_path / "repos.json"
    path.write_text(json.dumps({"repositories": ENTRIES}))

    _check_loaded(load_registry(path), tmp_path)


def test_load_toml(tmp_path):
    path = tmp_path / "repos.toml"
    path.write_text(TOML_REGISTRY)

    _check_loaded(load_registry(path), tmp_path)


def test_load_yaml(tmp_path):
    path = tmp_path / "repos.yaml"
    path.write_text(yaml.safe_dump({"repositories": ENTRIES}))

    _check_loaded(load_registry(path), tmp_path)


def test_path_defaults_to_name(tmp_path):
    registry = RepositoryRegistry.from_entries([{"name": "solo"}], root_dir=tmp_path)

    assert registry.get("solo").path == str((tmp_path / "solo").resolve())


def test_duplicate_names_are_rejected(tmp_path):
    path = tmp_path / "repos.json"
    path.write_text(json.dumps({"repositories": [ENTRIES[0], ENTRIES[0]]}))

    with pytest.raises(ConfigurationError, match="Duplicate repository name: core-lib"):
        load_registry(path)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError) as exc_info:
        load_registry(tmp_path / "nope.json")

    assert exc_info.value.message.startswith("Failed to load repository configuration")


def test_unsupported_format(tmp_path):
    path = tmp_path / "repos.ini"
    path.write_text("[repositories]")

    with pytest.raises(ConfigurationError, match="unsupported format"):
        load_registry(path)


def test_malformed_json(tmp_path):
    path = tmp_path / "repos.json"
    path.write_text("{not json")

    with pytest.raises(ConfigurationError, match="Failed to load repository configuration"):
        load_registry(path)


def test_entry_without_name(tmp_path):
    path = tmp_path / "repos.json"
    path.write_text(json.dumps({"repositories": [{"path": "x"}]}))

    with pytest.raises(ConfigurationError, match="has no name"):
        load_registry(path)


def test_unknown_dependencies_are_reported(tmp_path, caplog):
    path = tmp_path / "repos.json"
    path.write_text(json.dumps({"repositories": [{"name": "a", "dependencies": ["ghost"]}]}))
    caplog.set_level(logging.WARNING)

    registry = load_registry(path)

    assert registry.validate_dependencies() == {"a": ["ghost"]}
    assert "unknown dependencies" in caplog.text


def test_save_and_reload_json(tmp_path):
    registry = RepositoryRegistry.from_entries(ENTRIES, root_dir=tmp_path)
    target = tmp_path / "saved.json"

    registry.save(target)

    data = json.loads(target.read_text())
    assert data["repositories"][0] == {"name": "core-lib", "path": "core-lib", "dependencies": []}
    _check_loaded(load_registry(target), tmp_path)


def test_save_yaml(tmp_path):
    registry = RepositoryRegistry.from_entries(ENTRIES, root_dir=tmp_path)

    registry.save(tmp_path / "saved.yaml")

    _check_loaded(load_registry(tmp_path / "saved.yaml"), tmp_path)


def test_save_rejects_toml(tmp_path):
    registry = RepositoryRegistry.from_entries(ENTRIES, root_dir=tmp_path)

    with pytest.raises(ConfigurationError):
        registry.save(tmp_path / "saved.toml")


def test_subset(tmp_path):
    registry = RepositoryRegistry.from_entries(ENTRIES, root_dir=tmp_path)

    assert registry.subset(["api-service", "core-lib"]).names() == ["api-service", "core-lib"]
    with pytest.raises(ConfigurationError, match="Unknown repositories: ghost"):
        registry.subset(["ghost"])


def test_dependency_order_and_cycles():
    registry = RepositoryRegistry([
        Repository("api-service", "/r/api", {"core-lib"}),
        Repository("core-lib", "/r/core"),
    ])

    assert not registry.has_cycles()
    assert registry.dependency_order() == ["core-lib", "api-service"]

    registry.get("core-lib").dependencies.add("api-service")
    assert registry.has_cycles()
    with pytest.raises(CyclicDependencyError):
        registry.dependency_order()


def test_validate_repository(tmp_path):
    (tmp_path / "core-lib" / ".jj").mkdir(parents=True)
    (tmp_path / "api-service").mkdir()
    registry = RepositoryRegistry.from_entries(ENTRIES, root_dir=tmp_path)

    assert registry.validate_all() == {"core-lib": True, "api-service": False}
    assert not registry.validate_repository("ghost")
    assert "core-lib" in registry
    assert len(registry) == 2
