"""
Persisting rendered manifests.
"""

import aiofiles  # type: ignore[import-untyped]

from formulary.exceptions import WriteError

from .interfaces import ManifestOutput


async def write_manifest(output: ManifestOutput) -> None:
    """
    Create or truncate `output.path` and write the rendered bytes to it.

    Parent directories are created as needed. Already-written files are never
    rolled back if a later write in the run fails.

    Raises:
        WriteError: If the directory or file cannot be written.
    """
    try:
        output.path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(output.path, "wb") as f:
            await f.write(output.content)
    except OSError as exc:
        raise WriteError(
            "Could not write manifest", path=str(output.path), details=str(exc)
        ) from exc
