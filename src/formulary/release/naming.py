"""
Output file naming for rendered manifests.
"""

import re
from pathlib import Path
from typing import Dict, Iterable, List

from formulary.constants import VERSIONED_NAME_SEPARATOR

# One leading "-" or any run of non-digits
_VERSION_TOKEN_STRIP = re.compile(r"^-|[^0-9]+")


def sanitize_version_token(tag_name: str) -> str:
    """
    Derive the version token embedded in versioned manifest filenames.

    A single leading "-" is stripped, then every character that is not an ASCII
    digit is removed: "v1.2.3" -> "123", "-beta2" -> "2".
    """
    return _VERSION_TOKEN_STRIP.sub("", tag_name)


def repository_short_name(repository: str) -> str:
    """Return the last path segment of a repository identifier."""
    return repository.rstrip("/").split("/")[-1]


def versioned_output_path(
    output_dir: Path, short_name: str, version_token: str, extension: str
) -> Path:
    """Path of the manifest for one specific release: `<short>@<token><ext>`."""
    return output_dir / f"{short_name}{VERSIONED_NAME_SEPARATOR}{version_token}{extension}"


def alias_output_path(output_dir: Path, short_name: str, extension: str) -> Path:
    """Path of the latest-release alias manifest: `<short><ext>`."""
    return output_dir / f"{short_name}{extension}"


def find_token_collisions(tag_names: Iterable[str]) -> Dict[str, List[str]]:
    """
    Group tags that sanitize to the same version token.

    Returns:
        Dict[str, List[str]]: token -> tags, only for tokens shared by two or more tags.
    """
    by_token: Dict[str, List[str]] = {}
    for tag in tag_names:
        by_token.setdefault(sanitize_version_token(tag), []).append(tag)
    return {token: tags for token, tags in by_token.items() if len(tags) > 1}
