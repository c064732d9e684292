import pytest

from formulary.exceptions import WriteError
from formulary.release.interfaces import ManifestOutput
from formulary.release.writer import write_manifest

pytestmark = pytest.mark.asyncio


async def test_write_manifest_creates_parents(tmp_path):
    output = ManifestOutput(path=tmp_path / "Formula" / "tool@200.rb", content=b"class Tool\n")

    await write_manifest(output)

    assert output.path.read_bytes() == b"class Tool\n"


async def test_write_manifest_truncates_existing(tmp_path):
    path = tmp_path / "tool.rb"
    path.write_bytes(b"a much longer previous manifest body\n")

    await write_manifest(ManifestOutput(path=path, content=b"new\n"))

    assert path.read_bytes() == b"new\n"


async def test_aliased_output_writes_identical_bytes(tmp_path):
    versioned = ManifestOutput(path=tmp_path / "tool@200.rb", content=b"class Tool\n")
    alias = versioned.aliased(tmp_path / "tool.rb")

    await write_manifest(versioned)
    await write_manifest(alias)

    assert alias.content is versioned.content
    assert alias.path.read_bytes() == versioned.path.read_bytes()


async def test_write_manifest_error(tmp_path):
    blocker = tmp_path / "Formula"
    blocker.write_text("not a directory", encoding="utf-8")
    output = ManifestOutput(path=blocker / "tool.rb", content=b"x")

    with pytest.raises(WriteError) as exc_info:
        await write_manifest(output)

    assert exc_info.value.path == str(blocker / "tool.rb")
    assert exc_info.value.stage == "write"
