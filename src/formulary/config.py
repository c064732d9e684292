"""
Loading and validating the Formulary YAML configuration.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from formulary.constants import (
    CONFIG_PATH_ENV_VAR,
    DEFAULT_CONFIG_PATH,
    DEFAULT_MANIFEST_EXTENSION,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_RELEASE_LIMIT,
    DEFAULT_REQUEST_TIMEOUT,
    GH_EXECUTABLE,
    SOURCE_GH,
    SUPPORTED_SOURCES,
)
from formulary.exceptions import ConfigFileError, ConfigValidationError
from formulary.release.interfaces import RepositoryTarget


@dataclass(frozen=True)
class RunConfig:
    """Validated settings for one generation run."""

    repositories: Tuple[RepositoryTarget, ...]
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    extension: str = DEFAULT_MANIFEST_EXTENSION
    source: str = SOURCE_GH
    release_limit: int = DEFAULT_RELEASE_LIMIT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    gh_executable: str = GH_EXECUTABLE
    github_token: Optional[str] = field(default=None, repr=False)

    def with_overrides(self, **overrides: Any) -> "RunConfig":
        """Return a copy with the non-None keyword arguments applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        if "source" in changes:
            _validate_source(changes["source"])
        return replace(self, **changes) if changes else self


def resolve_config_path(path: Optional[str] = None) -> Path:
    """Pick the config file: explicit path, then FORMULARY_CONFIG, then the default."""
    return Path(path or os.environ.get(CONFIG_PATH_ENV_VAR) or DEFAULT_CONFIG_PATH)


def _validate_source(source: Any) -> str:
    if source not in SUPPORTED_SOURCES:
        raise ConfigValidationError(
            f"Unsupported release source {source!r}",
            field="source",
            details=f"expected one of {', '.join(SUPPORTED_SOURCES)}",
        )
    return source


def _positive_number(raw: Dict[str, Any], key: str, default: float, kind: type) -> Any:
    value = raw.get(key, default)
    try:
        parsed = kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(
            f"{key} must be a number, got {value!r}", field=key
        ) from exc
    if parsed <= 0:
        raise ConfigValidationError(f"{key} must be > 0, got {value!r}", field=key)
    return parsed


def _resolve_path(value: str, base_dir: Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base_dir / path


def _parse_repositories(raw: Any, base_dir: Path) -> List[RepositoryTarget]:
    if not isinstance(raw, list) or not raw:
        raise ConfigValidationError(
            "repositories must be a non-empty list", field="repositories"
        )

    targets: List[RepositoryTarget] = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ConfigValidationError(
                f"repositories[{index}] must be a mapping", field="repositories"
            )
        repository = entry.get("repository")
        if not isinstance(repository, str) or "/" not in repository.strip("/"):
            raise ConfigValidationError(
                f"repositories[{index}].repository must look like 'owner/name'",
                field="repository",
                details=repr(repository),
            )
        template = entry.get("templateFileName")
        if not isinstance(template, str) or not template.strip():
            raise ConfigValidationError(
                f"repositories[{index}].templateFileName is required",
                field="templateFileName",
            )
        targets.append(
            RepositoryTarget(
                repository=repository.strip("/"),
                template_path=_resolve_path(template, base_dir),
            )
        )
    return targets


def parse_config(raw: Any, base_dir: Path) -> RunConfig:
    """
    Validate a decoded YAML document and build a RunConfig.

    Relative paths (output directory, templates) resolve against `base_dir`.

    Raises:
        ConfigValidationError: If a key is missing or has an invalid value.
    """
    if not isinstance(raw, dict):
        raise ConfigValidationError("Configuration must be a YAML mapping")

    extension = raw.get("extension", DEFAULT_MANIFEST_EXTENSION)
    if not isinstance(extension, str) or not extension:
        raise ConfigValidationError("extension must be a non-empty string", field="extension")
    if not extension.startswith("."):
        extension = f".{extension}"

    token = raw.get("githubToken")
    return RunConfig(
        repositories=tuple(_parse_repositories(raw.get("repositories"), base_dir)),
        output_dir=_resolve_path(str(raw.get("outputDir", DEFAULT_OUTPUT_DIR)), base_dir),
        extension=extension,
        source=_validate_source(raw.get("source", SOURCE_GH)),
        release_limit=_positive_number(raw, "releaseLimit", DEFAULT_RELEASE_LIMIT, int),
        request_timeout=_positive_number(
            raw, "requestTimeout", DEFAULT_REQUEST_TIMEOUT, float
        ),
        gh_executable=str(raw.get("ghExecutable", GH_EXECUTABLE)),
        github_token=token if isinstance(token, str) and token else None,
    )


def load_config(path: Optional[Path] = None, base_dir: Optional[Path] = None) -> RunConfig:
    """
    Load the YAML configuration file and return the validated RunConfig.

    Parameters:
        path: Config file location; see resolve_config_path for the default.
        base_dir: Directory relative paths resolve against. Defaults to the
            current working directory, matching how the tool is run from the
            root of a tap repository.

    Raises:
        ConfigFileError: If the file cannot be read or is not valid YAML.
        ConfigValidationError: If the content is invalid.
    """
    config_path = Path(path) if path else resolve_config_path()
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ConfigFileError(
            "Configuration file not found", path=str(config_path)
        ) from exc
    except OSError as exc:
        raise ConfigFileError(
            "Error reading configuration file", path=str(config_path), details=str(exc)
        ) from exc
    except yaml.YAMLError as exc:
        raise ConfigFileError(
            "Error parsing configuration file", path=str(config_path), details=str(exc)
        ) from exc

    return parse_config(raw, base_dir if base_dir is not None else Path.cwd())
