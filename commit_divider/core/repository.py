"""
Repository registry for multi-repository operations.

A registry file lists ``repositories: [{name, path, dependencies}]`` in JSON,
TOML or YAML. Relative paths resolve against the directory holding the file.
"""

import json
import logging
import tomllib
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import yaml

from commit_divider.core.dependency_graph import find_cycle, topological_order
from commit_divider.core.errors import ConfigurationError
from commit_divider.core.models import Repository

SUPPORTED_SUFFIXES = (".json", ".toml", ".yaml", ".yml")


class RepositoryRegistry:
    """Named repositories with their declared dependencies, in file order."""

    def __init__(self, repositories: Iterable[Repository] = (), root_dir: Optional[Union[str, Path]] = None,
                 config_path: Optional[Union[str, Path]] = None):
        self.root_dir = Path(root_dir or ".").resolve()
        self.config_path = Path(config_path) if config_path else None
        self._repositories: Dict[str, Repository] = {}
        for repo in repositories:
            self.add(repo)

    def add(self, repo: Repository) -> None:
        if repo.name in self._repositories:
            raise ConfigurationError(f"Duplicate repository name: {repo.name}",
                                     "Repository names must be unique in the registry")
        self._repositories[repo.name] = repo

    def get(self, name: str) -> Optional[Repository]:
        return self._repositories.get(name)

    def names(self) -> List[str]:
        return list(self._repositories)

    def repositories(self) -> List[Repository]:
        return list(self._repositories.values())

    def __contains__(self, name: str) -> bool:
        return name in self._repositories

    def __len__(self) -> int:
        return len(self._repositories)

    def subset(self, names: Sequence[str]) -> "RepositoryRegistry":
        """Registry restricted to ``names``, in the order given."""
        missing = [name for name in names if name not in self._repositories]
        if missing:
            raise ConfigurationError(f"Unknown repositories: {', '.join(missing)}",
                                     f"Known repositories: {', '.join(self.names()) or 'none'}")
        return RepositoryRegistry(
            [self._repositories[name] for name in dict.fromkeys(names)],
            root_dir=self.root_dir,
            config_path=self.config_path,
        )

    def dependency_graph(self) -> Dict[str, List[str]]:
        return {name: sorted(repo.dependencies) for name, repo in self._repositories.items()}

    def validate_dependencies(self) -> Dict[str, List[str]]:
        """Declared dependency names that are not in the registry, per repository."""
        unknown: Dict[str, List[str]] = {}
        for repo in self._repositories.values():
            missing = sorted(dep for dep in repo.dependencies if dep not in self._repositories)
            if missing:
                unknown[repo.name] = missing
        return unknown

    def has_cycles(self) -> bool:
        return find_cycle(self.names(), self.dependency_graph()) is not None

    def dependency_order(self) -> List[str]:
        """Names with dependencies first. Raises CyclicDependencyError on a declared cycle."""
        return topological_order(self.names(), self.dependency_graph())

    def validate_repository(self, name: str) -> bool:
        """True when ``name`` is registered and its path is a Jujutsu repository."""
        repo = self.get(name)
        if repo is None:
            return False
        path = Path(repo.path)
        return path.is_dir() and (path / ".jj").is_dir()

    def validate_all(self) -> Dict[str, bool]:
        return {name: self.validate_repository(name) for name in self._repositories}

    def to_dict(self) -> Dict[str, Any]:
        return {"repositories": [repo.to_dict() for repo in self._repositories.values()]}

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        """
        Write the registry as JSON or YAML, chosen by file suffix.

        Paths inside the registry root are written relative to the file's directory.
        """
        target = Path(path) if path else self.config_path
        if target is None:
            raise ConfigurationError("No registry path to save to", "Pass a path or load the registry from a file")
        suffix = target.suffix.lower()
        if suffix not in (".json", ".yaml", ".yml"):
            raise ConfigurationError(f"Unsupported registry format for saving: {suffix or target.name}",
                                     "Save the registry as .json or .yaml")

        base = target.resolve().parent
        entries = []
        for repo in self._repositories.values():
            entry = repo.to_dict()
            repo_path = Path(repo.path)
            if repo_path.is_absolute() and repo_path.is_relative_to(base):
                entry["path"] = str(repo_path.relative_to(base)) or "."
            entries.append(entry)
        data = {"repositories": entries}

        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            if suffix == ".json":
                json.dump(data, f, indent=2)
                f.write("\n")
            else:
                yaml.safe_dump(data, f, sort_keys=False)
        logging.info(f"Saved repository registry to {target}")
        return target

    @classmethod
    def from_entries(cls, entries: Sequence[Any], root_dir: Optional[Union[str, Path]] = None) -> "RepositoryRegistry":
        """Registry from ``{name, path, dependencies}`` mappings."""
        root = Path(root_dir or ".").resolve()
        return cls([_repository_from_entry(entry, root, index) for index, entry in enumerate(entries)], root_dir=root)


def _repository_from_entry(entry: Any, root: Path, index: int) -> Repository:
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Repository entry {index} is not a mapping")
    name = entry.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError(f"Repository entry {index} has no name")
    raw_path = entry.get("path") or name
    path = Path(str(raw_path)).expanduser()
    if not path.is_absolute():
        path = root / path
    dependencies = entry.get("dependencies") or []
    if isinstance(dependencies, str):
        dependencies = [dependencies]
    if not isinstance(dependencies, list):
        raise ConfigurationError(f"Repository '{name}' has an invalid dependencies list")
    return Repository(name=name.strip(), path=str(path.resolve()), dependencies={str(dep) for dep in dependencies})


def _read_registry_file(path: Path) -> Any:
    suffix = path.suffix.lower()
    if suffix == ".toml":
        with open(path, "rb") as f:
            return tomllib.load(f)
    with open(path, "r", encoding="utf-8") as f:
        if suffix == ".json":
            return json.load(f)
        return yaml.safe_load(f)


def load_registry(config_path: Union[str, Path]) -> RepositoryRegistry:
    """
    Load a repository registry file.

    Raises:
        ConfigurationError: when the file is missing, unreadable, of an
            unknown format, or lists a repository name twice.
    """
    path = Path(config_path)
    if path.suffix.lower() not in SUPPORTED_SUFFIXES:
        raise ConfigurationError(
            f"Failed to load repository configuration: unsupported format {path.suffix or path.name}",
            "Use a .json, .toml or .yaml registry file",
        )
    if not path.is_file():
        raise ConfigurationError(
            f"Failed to load repository configuration: {path} not found",
            "Create the registry file or pass repositories inline",
        )
    try:
        data = _read_registry_file(path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load repository configuration: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("repositories", []), list):
        raise ConfigurationError("Failed to load repository configuration: 'repositories' must be a list")

    root = path.resolve().parent
    registry = RepositoryRegistry(
        [_repository_from_entry(entry, root, index) for index, entry in enumerate(data.get("repositories") or [])],
        root_dir=root,
        config_path=path,
    )
    logging.info(f"Loaded {len(registry)} repositories from {path}")
    unknown = registry.validate_dependencies()
    if unknown:
        logging.warning(f"Registry {path} declares unknown dependencies: {unknown}")
    return registry
