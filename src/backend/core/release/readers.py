"""Archive format drivers (ZIP and TAR+GZIP).

A driver turns an `ArchiveSource` into a lazy, single-use sequence of
`ArchiveEntry` objects. Before the first entry is produced, the driver
checks whether every entry lives under one shared top-level directory
(archives made with "compress folder" tooling) and strips that prefix.

While enumerating, drivers enforce the entry-count and per-file size limits
and reject symbolic and hard links. File content is exposed through a
`LimitedReader`, so a lying size header can never write more than the
per-file cap. Path validation is left to the stager, which applies it to
every entry of every format.
"""

from __future__ import annotations

import enum
import stat
import tarfile
import zipfile
import zlib
from dataclasses import dataclass
from logging import getLogger
from typing import IO, Callable, Iterable, Iterator

from core.release.errors import DeployError, DeployErrorKind
from core.release.limits import DeployLimits, get_deploy_limits
from core.release.source import ArchiveSource

logger = getLogger(__name__)

# Errors raised by decompressors and archive modules on corrupt input.
_READ_ERRORS = (OSError, EOFError, zlib.error, zipfile.BadZipFile, tarfile.TarError)
# Opening or reading a member also fails on encrypted entries (RuntimeError)
# and on compression methods zipfile does not implement (NotImplementedError).
_MEMBER_ERRORS = _READ_ERRORS + (RuntimeError, NotImplementedError)


class EntryType(str, enum.Enum):
    """Kind of an archive entry."""

    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    OTHER = "other"


class LimitedReader:
    """
    Read at most `limit` bytes from `fileobj`.

    One extra byte is probed past the limit; if it exists the entry is
    oversized and `DeployError(kind)` is raised (`FILE_TOO_LARGE` unless the
    caller caps something else). Decompression errors surface as
    `DeployError(EXTRACTION_IO)`.
    """

    def __init__(
        self,
        fileobj: IO[bytes],
        limit: int,
        *,
        name: str = "",
        kind: DeployErrorKind = DeployErrorKind.FILE_TOO_LARGE,
    ):
        self._fileobj = fileobj
        self.limit = limit
        self.name = name
        self.kind = kind
        self.consumed = 0

    def read(self, size: int = -1) -> bytes:
        allowed = self.limit - self.consumed + 1
        if size is None or size < 0 or size > allowed:
            size = allowed
        try:
            chunk = self._fileobj.read(size)
        except _MEMBER_ERRORS as exc:
            raise DeployError(
                DeployErrorKind.EXTRACTION_IO, f"Could not read {self.name!r}: {exc}"
            ) from exc
        self.consumed += len(chunk)
        if self.consumed > self.limit:
            raise DeployError(
                self.kind,
                f"{self.name}: content exceeds {self.limit} bytes",
            )
        return chunk

    def close(self) -> None:
        self._fileobj.close()

    def __enter__(self) -> LimitedReader:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@dataclass(frozen=True)
class ArchiveEntry:
    """
    One entry of an archive, after common-root stripping.

    `size` is the size declared by the archive header. The content of a file
    entry must be read before the next entry is requested.
    """

    path: str
    entry_type: EntryType
    size: int
    opener: Callable[[], LimitedReader] | None = None

    def open(self) -> LimitedReader:
        """Open the entry content, capped at the per-file limit."""
        if self.opener is None:
            raise ValueError(f"Entry {self.path!r} has no content.")
        return self.opener()


def strip_dot_prefix(name: str) -> str:
    """Drop leading `./` components (`tar -czf x.tgz ./site`); `.` itself becomes ""."""
    while name.startswith("./"):
        name = name[2:]
    return "" if name == "." else name


def detect_common_root(entries: Iterable[tuple[str, bool]]) -> str:
    """
    Return the single top-level directory shared by all entries, or "".

    `entries` yields `(name, is_dir)` pairs. Leading `./` is ignored and the
    archive root entry itself (`./`) is skipped. The result ends with "/". Any
    root-level file, any root-level directory other than the shared one, or
    two different top-level components disable stripping. A top-level
    component containing `..` is never stripped, so the entry keeps the name
    the path check rejects.
    """
    common_root = ""
    for name, is_dir in entries:
        name = strip_dot_prefix(name)
        if not name:
            continue
        head, sep, _ = name.partition("/")
        if not head or ".." in head:
            return ""
        if not sep and not is_dir:
            return ""
        root = f"{head}/"
        if not common_root:
            common_root = root
        elif common_root != root:
            return ""
    return common_root


def strip_common_root(name: str, common_root: str) -> str:
    """
    Remove leading `./` and `common_root` from `name`.

    The root directory itself becomes "", and so does the archive root entry.
    """
    name = strip_dot_prefix(name)
    if not common_root:
        return name
    if name == common_root.rstrip("/"):
        return ""
    if name.startswith(common_root):
        return name[len(common_root) :]
    return name


def _too_many(limits: DeployLimits) -> DeployError:
    return DeployError(
        DeployErrorKind.TOO_MANY_ENTRIES,
        f"Archive contains more than {limits.max_files} entries.",
    )


def _check_file_size(name: str, size: int, limits: DeployLimits) -> None:
    if size > limits.max_file_size:
        raise DeployError(
            DeployErrorKind.FILE_TOO_LARGE,
            f"{name} ({size} bytes) exceeds {limits.max_file_size} bytes",
        )


def _symlink(name: str) -> DeployError:
    return DeployError(DeployErrorKind.SYMLINK_REJECTED, f"Link entry: {name!r}")


def zipinfo_is_symlink(info: zipfile.ZipInfo) -> bool:
    """
    Detect symlink entries in zip files.

    Zip has no first-class type flag; on Unix, external attributes carry the mode.
    """

    mode = (int(getattr(info, "external_attr", 0)) >> 16) & 0o170000
    return mode == stat.S_IFLNK


def _zipinfo_entry_type(info: zipfile.ZipInfo) -> EntryType:
    mode = (int(getattr(info, "external_attr", 0)) >> 16) & 0o170000
    if zipinfo_is_symlink(info):
        return EntryType.SYMLINK
    if info.is_dir() or mode == stat.S_IFDIR:
        return EntryType.DIRECTORY
    if mode in {0, stat.S_IFREG}:
        return EntryType.FILE
    return EntryType.OTHER


def _tarinfo_entry_type(member: tarfile.TarInfo) -> EntryType:
    if member.issym() or member.islnk():
        return EntryType.SYMLINK
    if member.isdir():
        return EntryType.DIRECTORY
    if member.isfile():
        return EntryType.FILE
    return EntryType.OTHER


class ArchiveReader:
    """Base class for format drivers."""

    suffixes: tuple[str, ...] = ()

    def __init__(self, source: ArchiveSource, *, limits: DeployLimits | None = None):
        self.source = source
        self.limits = limits or get_deploy_limits()

    @classmethod
    def accepts(cls, filename: str) -> bool:
        """Return True if `filename` has one of this driver's extensions."""
        return filename.lower().endswith(cls.suffixes)

    def entries(self) -> Iterator[ArchiveEntry]:
        raise NotImplementedError


class ZipArchiveReader(ArchiveReader):
    """ZIP driver: entry metadata comes from the central directory."""

    suffixes = (".zip",)

    def entries(self) -> Iterator[ArchiveEntry]:
        with self.source.open() as fp:
            try:
                zf = zipfile.ZipFile(fp)
            except _READ_ERRORS as exc:
                raise DeployError(
                    DeployErrorKind.EXTRACTION_IO, f"Could not open zip archive: {exc}"
                ) from exc
            with zf:
                infos = zf.infolist()
                if len(infos) > self.limits.max_files:
                    raise _too_many(self.limits)
                common_root = detect_common_root(
                    (info.filename, info.is_dir()) for info in infos
                )
                if common_root:
                    logger.debug("zip_reader: stripping common root %r", common_root)
                for info in infos:
                    entry = self._entry(zf, info, common_root)
                    if entry is not None:
                        yield entry

    def _entry(
        self, zf: zipfile.ZipFile, info: zipfile.ZipInfo, common_root: str
    ) -> ArchiveEntry | None:
        entry_type = _zipinfo_entry_type(info)
        if entry_type == EntryType.SYMLINK:
            raise _symlink(info.filename)
        name = strip_common_root(info.filename, common_root)
        if not name:
            return None
        size = int(info.file_size or 0)
        if entry_type != EntryType.FILE:
            return ArchiveEntry(path=name, entry_type=entry_type, size=size)

        _check_file_size(name, size, self.limits)

        def opener() -> LimitedReader:
            try:
                member_fp = zf.open(info)
            except _MEMBER_ERRORS as exc:
                raise DeployError(
                    DeployErrorKind.EXTRACTION_IO, f"Could not open {name!r}: {exc}"
                ) from exc
            return LimitedReader(member_fp, self.limits.max_file_size, name=name)

        return ArchiveEntry(path=name, entry_type=entry_type, size=size, opener=opener)


class TarGzArchiveReader(ArchiveReader):
    """
    TAR+GZIP driver.

    Tar has no central index, so the stream is read twice: a header-only pass
    to find the common root, then the extraction pass. Both passes enforce the
    entry-count ceiling.
    """

    suffixes = (".tar.gz", ".tgz")

    def _open_tar(self, fp: IO[bytes]) -> tarfile.TarFile:
        try:
            return tarfile.open(fileobj=fp, mode="r|gz")
        except _READ_ERRORS as exc:
            raise DeployError(
                DeployErrorKind.EXTRACTION_IO, f"Could not open tar.gz archive: {exc}"
            ) from exc

    def _members(self, tf: tarfile.TarFile) -> Iterator[tarfile.TarInfo]:
        count = 0
        while True:
            try:
                member = tf.next()
            except _READ_ERRORS as exc:
                raise DeployError(
                    DeployErrorKind.EXTRACTION_IO, f"Could not read tar header: {exc}"
                ) from exc
            if member is None:
                return
            count += 1
            if count > self.limits.max_files:
                raise _too_many(self.limits)
            yield member

    def _scan_common_root(self) -> str:
        with self.source.open() as fp, self._open_tar(fp) as tf:
            names = [(member.name, member.isdir()) for member in self._members(tf)]
        return detect_common_root(names)

    def entries(self) -> Iterator[ArchiveEntry]:
        common_root = self._scan_common_root()
        if common_root:
            logger.debug("tar_reader: stripping common root %r", common_root)

        with self.source.open() as fp, self._open_tar(fp) as tf:
            for member in self._members(tf):
                entry = self._entry(tf, member, common_root)
                if entry is not None:
                    yield entry

    def _entry(
        self, tf: tarfile.TarFile, member: tarfile.TarInfo, common_root: str
    ) -> ArchiveEntry | None:
        entry_type = _tarinfo_entry_type(member)
        if entry_type == EntryType.SYMLINK:
            raise _symlink(member.name)
        name = strip_common_root(member.name, common_root)
        if not name:
            return None
        size = int(member.size or 0)
        if entry_type != EntryType.FILE:
            return ArchiveEntry(path=name, entry_type=entry_type, size=size)

        _check_file_size(name, size, self.limits)

        def opener() -> LimitedReader:
            try:
                member_fp = tf.extractfile(member)
            except _MEMBER_ERRORS as exc:
                raise DeployError(
                    DeployErrorKind.EXTRACTION_IO, f"Could not open {name!r}: {exc}"
                ) from exc
            if member_fp is None:
                raise DeployError(
                    DeployErrorKind.EXTRACTION_IO, f"Could not read archive entry {name!r}."
                )
            return LimitedReader(member_fp, self.limits.max_file_size, name=name)

        return ArchiveEntry(path=name, entry_type=entry_type, size=size, opener=opener)


ARCHIVE_READERS: tuple[type[ArchiveReader], ...] = (ZipArchiveReader, TarGzArchiveReader)


def get_archive_reader_class(filename: str) -> type[ArchiveReader]:
    """Pick the driver from the filename extension, before any byte is read."""
    for reader_class in ARCHIVE_READERS:
        if reader_class.accepts(filename or ""):
            return reader_class
    raise DeployError(
        DeployErrorKind.UNSUPPORTED_FORMAT,
        f"Unsupported archive extension: {filename!r}",
    )
