"""
Tests for staging archive entries into a site's staging slot.
"""

import os
from io import BytesIO

import pytest

from core.release.errors import DeployError, DeployErrorKind
from core.release.limits import DeployLimits
from core.release.readers import (
    ArchiveEntry,
    EntryType,
    LimitedReader,
    TarGzArchiveReader,
    ZipArchiveReader,
)
from core.release.source import ArchiveSource
from core.release.stage import ReleaseStager, purge_directory
from core.tests.utils import make_tar_gz_bytes, make_zip_bytes, read_tree

LIMITS = DeployLimits(
    max_archive_size=1024 * 1024,
    max_total_size=1024 * 1024,
    max_file_size=1024,
    max_files=100,
    max_path_length=500,
)


def _file(path: str, content: bytes, *, size: int | None = None) -> ArchiveEntry:
    return ArchiveEntry(
        path=path,
        entry_type=EntryType.FILE,
        size=len(content) if size is None else size,
        opener=lambda: LimitedReader(BytesIO(content), LIMITS.max_file_size, name=path),
    )


def test_stage_zip_archive(tmp_path):
    """A zip with a common root is staged relative to that root."""
    data = make_zip_bytes({"site/index.html": b"<h1>hi</h1>", "site/js/app.js": b"1"})
    reader = ZipArchiveReader(ArchiveSource.seekable(BytesIO(data)), limits=LIMITS)
    staging = tmp_path / "staging"

    ReleaseStager(limits=LIMITS).stage(reader.entries(), staging)

    assert read_tree(staging) == {"index.html": b"<h1>hi</h1>", "js/app.js": b"1"}


def test_stage_tar_gz_archive(tmp_path):
    """Tar directory entries are created and files written beneath them."""
    data = make_tar_gz_bytes(
        {"site/index.html": b"hi", "site/img/a.png": b"png"},
        dirs=("site/", "site/img/", "site/empty/"),
    )
    reader = TarGzArchiveReader(ArchiveSource.seekable(BytesIO(data)), limits=LIMITS)
    staging = tmp_path / "staging"

    ReleaseStager(limits=LIMITS).stage(reader.entries(), staging)

    assert read_tree(staging) == {"index.html": b"hi", "img/a.png": b"png"}
    assert (staging / "empty").is_dir()


def test_stage_traversal_removes_staging(tmp_path):
    """A traversal entry fails the stage and leaves no staging behind."""
    staging = tmp_path / "staging"
    entries = [_file("ok.txt", b"ok"), _file("a/../../evil.txt", b"evil")]

    with pytest.raises(DeployError) as excinfo:
        ReleaseStager(limits=LIMITS).stage(entries, staging)

    assert excinfo.value.kind == DeployErrorKind.PATH_TRAVERSAL
    assert not staging.exists()
    assert not (tmp_path / "evil.txt").exists()


def test_stage_symlink_entry_rejected(tmp_path):
    """Link entries are rejected even if a driver produced one."""
    staging = tmp_path / "staging"
    entries = [ArchiveEntry(path="link", entry_type=EntryType.SYMLINK, size=0)]

    with pytest.raises(DeployError) as excinfo:
        ReleaseStager(limits=LIMITS).stage(entries, staging)

    assert excinfo.value.kind == DeployErrorKind.SYMLINK_REJECTED
    assert not staging.exists()


def test_stage_purges_leftover_staging(tmp_path):
    """Files left by a crashed attempt never leak into a new release."""
    staging = tmp_path / "staging"
    staging.mkdir()
    (staging / "stale.html").write_bytes(b"stale")

    ReleaseStager(limits=LIMITS).stage([_file("index.html", b"new")], staging)

    assert read_tree(staging) == {"index.html": b"new"}


def test_stage_lying_size_header(tmp_path):
    """Content beyond the per-file cap fails even if the header lies."""
    staging = tmp_path / "staging"
    entries = [_file("lie.bin", b"x" * 2048, size=10)]

    with pytest.raises(DeployError) as excinfo:
        ReleaseStager(limits=LIMITS).stage(entries, staging)

    assert excinfo.value.kind == DeployErrorKind.FILE_TOO_LARGE
    assert not staging.exists()


def test_stage_path_too_long(tmp_path):
    """Paths over the configured length are invalid."""
    limits = DeployLimits(
        max_archive_size=1024,
        max_total_size=1024,
        max_file_size=1024,
        max_files=10,
        max_path_length=8,
    )
    with pytest.raises(DeployError) as excinfo:
        ReleaseStager(limits=limits).stage([_file("abcdefghi.txt", b"x")], tmp_path / "s")

    assert excinfo.value.kind == DeployErrorKind.INVALID_PATH


def test_stage_skips_special_entries(tmp_path):
    """Device and fifo entries are skipped, not written."""
    staging = tmp_path / "staging"
    entries = [
        ArchiveEntry(path="dev/null", entry_type=EntryType.OTHER, size=0),
        _file("index.html", b"hi"),
    ]

    ReleaseStager(limits=LIMITS).stage(entries, staging)

    assert read_tree(staging) == {"index.html": b"hi"}
    assert not (staging / "dev").exists()


def test_purge_directory(tmp_path):
    """Directories, files and missing paths are all handled."""
    directory = tmp_path / "d"
    (directory / "sub").mkdir(parents=True)
    (directory / "sub" / "f").write_bytes(b"x")
    single = tmp_path / "f"
    single.write_bytes(b"x")

    purge_directory(directory)
    purge_directory(single)
    purge_directory(tmp_path / "missing")

    assert not directory.exists()
    assert not single.exists()


def _total_limits(max_total_size: int) -> DeployLimits:
    return DeployLimits(
        max_archive_size=1024 * 1024,
        max_total_size=max_total_size,
        max_file_size=1024,
        max_files=100,
        max_path_length=500,
    )


def test_stage_total_size_cap(tmp_path):
    """Declared sizes adding up past the total cap fail the stage."""
    staging = tmp_path / "staging"
    entries = [_file(f"f{i}.bin", b"x" * 1000) for i in range(4)]

    with pytest.raises(DeployError) as excinfo:
        ReleaseStager(limits=_total_limits(3000)).stage(entries, staging)

    assert excinfo.value.kind == DeployErrorKind.ARCHIVE_TOO_LARGE
    assert not staging.exists()


def test_stage_total_size_counts_written_bytes(tmp_path):
    """Understated sizes cannot bypass the total cap."""
    staging = tmp_path / "staging"
    entries = [_file(f"f{i}.bin", b"x" * 1000, size=1) for i in range(4)]

    with pytest.raises(DeployError) as excinfo:
        ReleaseStager(limits=_total_limits(3000)).stage(entries, staging)

    assert excinfo.value.kind == DeployErrorKind.ARCHIVE_TOO_LARGE
    assert not staging.exists()


def test_stage_total_size_exact_fit(tmp_path):
    """Content adding up to exactly the total cap is accepted."""
    staging = tmp_path / "staging"
    entries = [_file(f"f{i}.bin", b"x" * 1000) for i in range(3)]

    ReleaseStager(limits=_total_limits(3000)).stage(entries, staging)

    assert len(read_tree(staging)) == 3


def test_stage_symlink_planted_in_staging(tmp_path):
    """A symlinked directory inside staging is a traversal, not an I/O error."""
    staging = tmp_path / "staging"
    outside = tmp_path / "outside"
    outside.mkdir()

    def plant_symlink():
        os.symlink(str(outside), str(staging / "out"))
        return LimitedReader(BytesIO(b"ok"), LIMITS.max_file_size, name="first.txt")

    entries = [
        ArchiveEntry(path="first.txt", entry_type=EntryType.FILE, size=2, opener=plant_symlink),
        _file("out/evil.txt", b"evil"),
    ]

    with pytest.raises(DeployError) as excinfo:
        ReleaseStager(limits=LIMITS).stage(entries, staging)

    assert excinfo.value.kind == DeployErrorKind.PATH_TRAVERSAL
    assert not (outside / "evil.txt").exists()
    assert not staging.exists()
