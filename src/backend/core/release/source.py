"""Rewindable byte sources for archive drivers.

Tar+gzip extraction reads the compressed stream twice, so drivers never get
the raw upload stream directly. The caller picks, when building the source,
how rewinding is provided:

- `ArchiveSource.seekable()` wraps a stream that already supports `seek()`;
- `ArchiveSource.buffered()` first copies a forward-only stream (e.g. a
  request body) to a file on disk, bounded by the archive size cap.
"""

from __future__ import annotations

import contextlib
import os
from logging import getLogger
from pathlib import Path
from typing import IO, Iterator

from core.release.errors import DeployError, DeployErrorKind

logger = getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class ArchiveSource:
    """A byte source that can be reopened from its first byte."""

    def __init__(self, *, path: Path | None = None, fileobj: IO[bytes] | None = None):
        if (path is None) == (fileobj is None):
            raise ValueError("Exactly one of `path` or `fileobj` is required.")
        self.path = path
        self._fileobj = fileobj

    @classmethod
    def seekable(cls, fileobj: IO[bytes]) -> ArchiveSource:
        """Use an already seekable stream as-is."""
        if not fileobj.seekable():
            raise ValueError("Stream is not seekable; use ArchiveSource.buffered().")
        return cls(fileobj=fileobj)

    @classmethod
    def buffered(
        cls,
        stream: IO[bytes],
        *,
        path: Path,
        max_size: int,
        chunk_size: int = CHUNK_SIZE,
    ) -> ArchiveSource:
        """
        Copy a forward-only stream to `path` and read the archive from there.

        At most `max_size + 1` bytes are consumed; a longer stream removes the
        partial file and fails with an archive-too-large error. `path` must
        not exist yet.
        """
        written = 0
        try:
            with open(path, "xb") as out_fp:
                while written <= max_size:
                    chunk = stream.read(min(chunk_size, max_size + 1 - written))
                    if not chunk:
                        break
                    out_fp.write(chunk)
                    written += len(chunk)
        except FileExistsError as exc:
            raise DeployError(
                DeployErrorKind.EXTRACTION_IO, f"Archive file already exists: {path}"
            ) from exc
        except OSError as exc:
            _remove_quietly(path)
            raise DeployError(
                DeployErrorKind.EXTRACTION_IO, f"Could not store archive {path}: {exc}"
            ) from exc
        except Exception:
            _remove_quietly(path)
            raise

        if written > max_size:
            _remove_quietly(path)
            raise DeployError(
                DeployErrorKind.ARCHIVE_TOO_LARGE,
                f"Archive exceeds {max_size} bytes.",
            )
        logger.debug("archive_source: buffered (path=%s bytes=%s)", path, written)
        return cls(path=path)

    @contextlib.contextmanager
    def open(self) -> Iterator[IO[bytes]]:
        """Yield the stream positioned at its first byte."""
        if self.path is not None:
            with open(self.path, "rb") as fp:
                yield fp
            return
        self._fileobj.seek(0)
        yield self._fileobj


def _remove_quietly(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("archive_source: could not remove partial archive (path=%s)", path)
