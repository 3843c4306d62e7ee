import pytest

from wtmigrate.infrastructure.filesystem.local_fs import LocalFileSystem, parse_module_list


def test_parse_module_list_skips_noise():
    content = "# modules\nlodash,4.17.4\n\n request , 2.81.0 \nbroken line\nlodash,4.17.4\n,1.0.0\n"
    assert parse_module_list(content) == [
        {"name": "lodash", "version": "4.17.4"},
        {"name": "request", "version": "2.81.0"},
    ]


@pytest.mark.asyncio
async def test_module_list_round_trip(tmp_path):
    fs = LocalFileSystem()
    path = tmp_path / "nested" / "modules.txt"
    modules = [{"name": "lodash", "version": "4.17.4"}, {"name": "@scope/pkg", "version": "1.0.0"}]

    await fs.write_module_list(str(path), modules)

    assert path.read_text() == "lodash,4.17.4\n@scope/pkg,1.0.0\n"
    assert await fs.read_module_list(str(path)) == modules


@pytest.mark.asyncio
async def test_read_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError, match="File not found"):
        await LocalFileSystem().read_file(str(tmp_path / "nope.js"))
