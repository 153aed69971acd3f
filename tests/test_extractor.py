import io
import os
import zipfile

import pytest

from addman.exceptions import ExtractionError, FilesystemError
from addman.sync.extractor import ZipExtractor, should_skip, top_level_dir
from addman.sync.interfaces import Addon, UpdateInfo
from addman.sync.task_pool import spawn_task_pool

pytestmark = [pytest.mark.unit]


def open_zip(data):
    return zipfile.ZipFile(io.BytesIO(data))


@pytest.fixture(params=["inline", "pooled"])
def extractor(request):
    """Run every extraction test with inline writes and with a disk pool."""
    if request.param == "inline":
        yield ZipExtractor()
        return
    pool = spawn_task_pool(4, 16, name="disk")
    yield ZipExtractor(pool)
    pool.close(wait=True)


def files_under(root):
    found = []
    for dirpath, _dirs, files in os.walk(root):
        for name in files:
            found.append(os.path.relpath(os.path.join(dirpath, name), root))
    return sorted(p.replace(os.sep, "/") for p in found)


class TestShouldSkip:
    def test_exclusion_wins_over_inclusion(self):
        assert should_skip("dir1/sub/a.lua", ["dir1/"], ["dir1/sub/"])

    def test_empty_include_set_takes_everything_not_excluded(self):
        assert not should_skip("anything/a.lua", [], [])
        assert should_skip("dir2/b.lua", [], ["dir2/"])

    def test_non_empty_include_set_takes_only_matches(self):
        assert not should_skip("dir1/a.lua", ["dir1/"], [])
        assert should_skip("dir4/d.lua", ["dir1/"], [])

    def test_prefix_needs_separator(self):
        assert should_skip("dir10/a.lua", ["dir1/"], [])


@pytest.mark.parametrize(
    "name, top", [("dir1/a.lua", "dir1"), ("dir1/", "dir1"), ("root.txt", None)]
)
def test_top_level_dir(name, top):
    assert top_level_dir(name) == top


def test_selective_extraction(extractor, build_zip, tmp_path):
    addon = Addon.from_config("proj/addon1", ["dir1", "-dir2", "dir3/"])
    archive = open_zip(
        build_zip(["dir1/a.lua", "dir2/b.lua", "dir3/c.lua", "dir4/d.lua"])
    )

    owned = extractor.extract(archive, addon, str(tmp_path))

    assert files_under(tmp_path) == ["dir1/a.lua", "dir3/c.lua"]
    assert owned == ["dir1", "dir3"]
    assert addon.update_info.extracted_dirs == ["dir1", "dir3"]
    assert (tmp_path / "dir1" / "a.lua").read_text() == "dir1/a.lua"


def test_extraction_is_idempotent(extractor, build_zip, tmp_path):
    addon = Addon.from_config("proj/addon1", [])
    data = build_zip(["dir1/", "dir1/a.lua", "dir1/sub/b.lua", "dir3/c.lua"])

    first = extractor.extract(open_zip(data), addon, str(tmp_path))
    files_after_first = files_under(tmp_path)
    second = extractor.extract(open_zip(data), addon, str(tmp_path))

    assert first == second == ["dir1", "dir3"]
    assert files_under(tmp_path) == files_after_first


def test_stale_dirs_are_removed_first(extractor, build_zip, tmp_path):
    (tmp_path / "OldDir").mkdir()
    (tmp_path / "OldDir" / "stale.lua").write_text("old")
    (tmp_path / "Unrelated").mkdir()
    addon = Addon.from_config(
        "proj/addon1", [], update_info=UpdateInfo(extracted_dirs=["OldDir", "Gone"])
    )

    extractor.extract(open_zip(build_zip(["NewDir/a.lua"])), addon, str(tmp_path))

    assert not (tmp_path / "OldDir").exists()
    assert (tmp_path / "Unrelated").exists()
    assert addon.update_info.extracted_dirs == ["NewDir"]


def test_file_listed_before_its_directory(extractor, tmp_path):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("dir1/deep/a.lua", "x")
        zf.writestr(zipfile.ZipInfo("dir1/"), "")
        zf.writestr(zipfile.ZipInfo("dir1/deep/"), "")
    addon = Addon.from_config("proj/addon1", [])

    owned = extractor.extract(open_zip(buffer.getvalue()), addon, str(tmp_path))

    assert owned == ["dir1"]
    assert (tmp_path / "dir1" / "deep" / "a.lua").read_text() == "x"


def test_root_level_files_are_extracted_but_not_owned(extractor, build_zip, tmp_path):
    addon = Addon.from_config("proj/addon1", [])
    owned = extractor.extract(
        open_zip(build_zip(["README.md", "dir1/a.lua"])), addon, str(tmp_path)
    )
    assert owned == ["dir1"]
    assert (tmp_path / "README.md").exists()


def test_info_override_leaves_addon_untouched(extractor, build_zip, tmp_path):
    addon = Addon.from_config("proj/addon1", [])
    working = UpdateInfo()

    extractor.extract(open_zip(build_zip(["dir1/a.lua"])), addon, str(tmp_path), working)

    assert working.extracted_dirs == ["dir1"]
    assert addon.update_info.extracted_dirs == []


def test_traversal_member_is_rejected(extractor, tmp_path):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("../evil.lua", "x")
    addon = Addon.from_config("proj/addon1", [])
    dest = tmp_path / "addons"

    with pytest.raises(FilesystemError):
        extractor.extract(open_zip(buffer.getvalue()), addon, str(dest))
    assert not (tmp_path / "evil.lua").exists()


def test_write_failure_is_extraction_error(extractor, build_zip, tmp_path, mocker):
    addon = Addon.from_config("proj/addon1", [])
    mocker.patch.object(
        ZipExtractor, "_write_file", side_effect=OSError("disk full")
    )
    working = UpdateInfo()

    with pytest.raises(ExtractionError):
        extractor.extract(
            open_zip(build_zip(["dir1/a.lua", "dir1/b.lua"])),
            addon,
            str(tmp_path),
            working,
        )
    assert working.extracted_dirs == ["dir1"]


def test_queued_writes_are_skipped_after_a_failure(build_zip, tmp_path, mocker):
    names = [f"dir1/f{i:02d}.lua" for i in range(20)]
    write_file = ZipExtractor._write_file

    def fail_first(self, archive, member, destination):
        if member.filename == names[0]:
            raise OSError("disk full")
        write_file(self, archive, member, destination)

    writes = mocker.patch.object(
        ZipExtractor, "_write_file", autospec=True, side_effect=fail_first
    )
    pool = spawn_task_pool(1, 32, name="disk")
    try:
        with pytest.raises(ExtractionError):
            ZipExtractor(pool).extract(
                open_zip(build_zip(names)),
                Addon.from_config("proj/addon1", []),
                str(tmp_path),
                UpdateInfo(),
            )
    finally:
        pool.close(wait=True)

    assert writes.call_count < len(names)
    assert files_under(tmp_path) == []
