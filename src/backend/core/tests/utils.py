"""Archive builders shared by the release pipeline tests."""

from __future__ import annotations

import stat
import struct
import tarfile
import zipfile
from io import BytesIO
from pathlib import Path


def make_zip_bytes(entries: dict[str, bytes]) -> bytes:
    """Build a zip file (as bytes) from a mapping of path -> content."""
    buf = BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return buf.getvalue()


def make_zip_with_symlink_entry() -> bytes:
    """Build a zip file containing a symlink entry (Info-ZIP style external_attr)."""
    buf = BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("ok.txt", b"ok")
        info = zipfile.ZipInfo("link")
        info.create_system = 3  # Unix
        info.external_attr = (stat.S_IFLNK | 0o777) << 16
        zf.writestr(info, "/etc/passwd")
    return buf.getvalue()


def make_zip_with_large_file(name: str, size: int) -> bytes:
    """Build a zip holding one file of `size` zero bytes, streamed in chunks."""
    buf = BytesIO()
    chunk = b"\0" * (1024 * 1024)
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        with zf.open(name, mode="w") as member_fp:
            remaining = size
            while remaining > 0:
                part = chunk[: min(len(chunk), remaining)]
                member_fp.write(part)
                remaining -= len(part)
    return buf.getvalue()


def make_zip_with_patched_member(
    *, compress_type: int | None = None, flag_bits: int = 0
) -> bytes:
    """
    Build a stored single-member zip, then rewrite its header fields.

    Both the local header and the central directory record are patched, so
    `zipfile` sees e.g. an unsupported compression method or the encrypted flag.
    """
    data = bytearray(make_zip_bytes_stored({"index.html": b"<h1>hi</h1>"}))
    central = data.find(b"PK\x01\x02")
    for flags_offset, method_offset in ((6, 8), (central + 8, central + 10)):
        (flags,) = struct.unpack_from("<H", data, flags_offset)
        struct.pack_into("<H", data, flags_offset, flags | flag_bits)
        if compress_type is not None:
            struct.pack_into("<H", data, method_offset, compress_type)
    return bytes(data)


def make_zip_bytes_stored(entries: dict[str, bytes]) -> bytes:
    """Build an uncompressed zip file (as bytes)."""
    buf = BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_STORED) as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return buf.getvalue()


def make_tar_gz_bytes(
    files: dict[str, bytes],
    *,
    dirs: tuple[str, ...] = (),
    symlinks: dict[str, str] | None = None,
    hardlinks: dict[str, str] | None = None,
) -> bytes:
    """Build a tar.gz (as bytes): directories first, then files, then links."""
    buf = BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name in dirs:
            info = tarfile.TarInfo(name)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            tf.addfile(info)
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = 0o644
            tf.addfile(info, BytesIO(content))
        for link_type, links in ((tarfile.SYMTYPE, symlinks), (tarfile.LNKTYPE, hardlinks)):
            for name, target in (links or {}).items():
                info = tarfile.TarInfo(name)
                info.type = link_type
                info.linkname = target
                tf.addfile(info)
    return buf.getvalue()


def read_tree(root: Path) -> dict[str, bytes]:
    """Return {relative posix path: content} for every file below `root`."""
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }
