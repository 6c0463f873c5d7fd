import yaml
import logging
from enum import Enum
from typing import List, Optional, Dict, Any
from pathlib import Path
from pydantic import BaseModel, Field, field_validator

from commit_divider.core.models import ChangeType

# Default configuration values
DEFAULT_CONFIG_PATH = "commitdivider.config.yaml"
DEFAULT_JJ_PATH = "jj"
DEFAULT_REPO_PATH = "."
DEFAULT_REPOS_DIR = "."
DEFAULT_REPOS_CONFIG_NAME = "repos.json"
DEFAULT_MIN_CONFIDENCE = 0.7
DEFAULT_MAX_COMMITS = 10
DEFAULT_CLASSIFIER_PRECEDENCE = [
    ChangeType.BUGFIX,
    ChangeType.FEATURE,
    ChangeType.DOCS,
    ChangeType.TESTS,
    ChangeType.REFACTOR,
    ChangeType.STYLE,
    ChangeType.PERFORMANCE,
]
DEFAULT_KEYWORD_OVERLAP_THRESHOLD = 0.1
DEFAULT_STRONG_OVERLAP_THRESHOLD = 0.5
DEFAULT_MAX_GROUP_SIZE = 20
DEFAULT_MIN_DEPENDENCY_CONFIDENCE = 0.6

# Backend
DEFAULT_BACKEND_RETRY_ATTEMPTS = 3
DEFAULT_BACKEND_RETRY_BACKOFF_SECONDS = 0.5
DEFAULT_BACKEND_TIMEOUT_SECONDS = 120.0

DEFAULT_LOG_LEVEL = "INFO"


class DivisionStrategy(str, Enum):
    BALANCED = "balanced"
    SEMANTIC = "semantic"
    FILETYPE = "filetype"
    DIRECTORY = "directory"


class CommitSize(str, Enum):
    BALANCED = "balanced"
    MANY = "many"
    FEW = "few"


class CrossRepoGrouping(str, Enum):
    SEMANTIC = "semantic"
    FILETYPE = "filetype"
    DIRECTORY = "directory"


class DividerConfig(BaseModel):
    """
    Central configuration model for commit division.

    Built once at startup and handed to every component that needs it.
    """
    jj_path: str = DEFAULT_JJ_PATH
    repo_path: str = DEFAULT_REPO_PATH
    repos_dir: str = DEFAULT_REPOS_DIR
    repos_config: Optional[str] = None

    division_strategy: DivisionStrategy = DivisionStrategy.BALANCED
    commit_size: CommitSize = CommitSize.BALANCED
    min_confidence: float = Field(default=DEFAULT_MIN_CONFIDENCE, ge=0.0, le=1.0)
    max_commits: int = Field(default=DEFAULT_MAX_COMMITS, ge=1)

    # Analysis
    classifier_precedence: List[ChangeType] = Field(default_factory=lambda: list(DEFAULT_CLASSIFIER_PRECEDENCE))
    keyword_overlap_threshold: float = Field(default=DEFAULT_KEYWORD_OVERLAP_THRESHOLD, ge=0.0, le=1.0)
    strong_overlap_threshold: float = Field(default=DEFAULT_STRONG_OVERLAP_THRESHOLD, ge=0.0, le=1.0)
    max_group_size: int = Field(default=DEFAULT_MAX_GROUP_SIZE, ge=1)
    area_groups: bool = True

    # Cross-repository analysis
    cross_repo_grouping: CrossRepoGrouping = CrossRepoGrouping.SEMANTIC
    refine_by_keywords: bool = False
    dependency_detection: bool = True
    min_dependency_confidence: float = Field(default=DEFAULT_MIN_DEPENDENCY_CONFIDENCE, ge=0.0, le=1.0)

    # Version control backend
    backend_retry_attempts: int = Field(default=DEFAULT_BACKEND_RETRY_ATTEMPTS, ge=1)
    backend_retry_backoff_seconds: float = Field(default=DEFAULT_BACKEND_RETRY_BACKOFF_SECONDS, ge=0.0)
    backend_timeout_seconds: float = Field(default=DEFAULT_BACKEND_TIMEOUT_SECONDS, gt=0.0)

    log_level: str = DEFAULT_LOG_LEVEL

    # Allow extra fields for flexibility
    class Config:
        extra = "allow"

    @field_validator("classifier_precedence")
    @classmethod
    def _check_precedence(cls, value: List[ChangeType]) -> List[ChangeType]:
        if len(set(value)) != len(value):
            raise ValueError("classifier_precedence must not repeat a change type")
        if ChangeType.CHORE in value:
            raise ValueError("chore is the fallback and cannot be ranked in classifier_precedence")
        return value

    def repos_config_path(self, repos_dir: Optional[str] = None) -> Path:
        """Registry file: explicit ``repos_config`` or ``<repos_dir>/repos.json``."""
        if self.repos_config and repos_dir is None:
            return Path(self.repos_config).resolve()
        return (Path(repos_dir or self.repos_dir) / DEFAULT_REPOS_CONFIG_NAME).resolve()


def load_config(
    config_path: Optional[str] = None,
    cli_args: Optional[Dict[str, Any]] = None
) -> DividerConfig:
    """
    Load configuration from file and overrides.

    Priority:
    1. CLI Arguments (if provided and not None)
    2. Config File (if provided or found at default path)
    3. Default Values

    Args:
        config_path: Path to the YAML config file. If None, tries 'commitdivider.config.yaml'.
        cli_args: Dictionary of CLI arguments to override config values.

    Returns:
        DividerConfig: The resolved configuration object.
    """
    config_data: Dict[str, Any] = {}

    target_path = config_path if config_path else DEFAULT_CONFIG_PATH
    path_obj = Path(target_path)

    if path_obj.exists() and path_obj.is_file():
        try:
            with open(path_obj, 'r', encoding='utf-8') as f:
                file_data = yaml.safe_load(f)
                if file_data:
                    config_data.update(file_data)
            logging.info(f"Loaded configuration from {target_path}")
        except (OSError, yaml.YAMLError) as e:
            logging.warning(f"Failed to load config file {target_path}: {e}")
    elif config_path:
        logging.warning(f"Config file not found at explicit path: {config_path}")
    else:
        logging.info(f"No config file found at {DEFAULT_CONFIG_PATH}, using defaults.")

    if cli_args:
        for key, value in cli_args.items():
            if value is not None:
                config_data[key] = value

    return DividerConfig(**config_data)
