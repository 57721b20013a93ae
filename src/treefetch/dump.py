"""
Canonical tree dump.

Serializes a tree exposed by an InputAccessor into a deterministic byte
stream (NAR layout) and restores such streams onto disk. Identical trees
always produce identical bytes, so the stream doubles as the input of the
content hash used by the store.

Framing: every token is a length-prefixed string, an unsigned 64-bit
little-endian length followed by the raw bytes and zero padding up to the
next 8-byte boundary.
"""
from __future__ import annotations

import base64
import hashlib
import io
import logging
import os
import struct
import tempfile
from pathlib import Path
from typing import IO, Dict, Optional

import zstandard as zstd

from .accessor.base import FileType, InputAccessor, PathFilter, canon_path, join_path
from .accessor.filesystem import FSInputAccessor
from .errors import BadArchiveError, NameCollisionError, UnsupportedFileType

__all__ = [
    "NAR_VERSION_MAGIC",
    "CASE_HACK_SUFFIX",
    "HashingSink",
    "dump_path",
    "dump_to_bytes",
    "hash_path",
    "restore_path",
    "write_dump",
    "read_dump",
]

logger = logging.getLogger(__name__)

NAR_VERSION_MAGIC = b"nix-archive-1"

# Appended (with a counter) to names that only differ by case, so such trees
# survive a round trip through case-insensitive filesystems.
CASE_HACK_SUFFIX = "~case~hack~"

_CHUNK_SIZE = 64 * 1024
_PADDING = b"\0" * 8


def _write_int(sink: IO[bytes], value: int) -> None:
    sink.write(struct.pack("<Q", value))


def _write_padding(sink: IO[bytes], length: int) -> None:
    if length % 8:
        sink.write(_PADDING[:8 - length % 8])


def _write_str(sink: IO[bytes], data: bytes) -> None:
    _write_int(sink, len(data))
    sink.write(data)
    _write_padding(sink, len(data))


def _write_tokens(sink: IO[bytes], *tokens: bytes) -> None:
    for token in tokens:
        _write_str(sink, token)


class HashingSink:
    """
    Write-only sink that hashes everything written to it.

    Optionally tees the bytes into another sink, so a dump can be hashed and
    spooled in a single pass.
    """

    def __init__(self, algo: str = "sha256", tee: Optional[IO[bytes]] = None) -> None:
        self.algo = algo
        self.size = 0
        self._hash = hashlib.new(algo)
        self._tee = tee

    def write(self, data: bytes) -> int:
        self._hash.update(data)
        self.size += len(data)
        if self._tee is not None:
            self._tee.write(data)
        return len(data)

    def digest(self) -> bytes:
        return self._hash.digest()

    def hexdigest(self) -> str:
        return self._hash.hexdigest()

    def sri(self) -> str:
        """Digest in Subresource Integrity form, e.g. ``sha256-<base64>``."""
        return f"{self.algo}-{base64.b64encode(self.digest()).decode('ascii')}"


def dump_path(
    accessor: InputAccessor,
    path: str,
    sink: IO[bytes],
    filter: Optional[PathFilter] = None,
    *,
    use_case_hack: bool = False,
) -> None:
    """
    Write the canonical dump of ``path`` to ``sink``.

    Directory entries are emitted in byte order of their names regardless of
    the order the backend lists them in. Entries rejected by ``filter`` (which
    receives the accessor path of the entry) are omitted entirely.

    Args:
        accessor: Tree to read from
        path: Accessor path of the node to dump
        sink: Binary sink; only ``write`` is used
        filter: Optional predicate on accessor paths
        use_case_hack: Strip case-hack suffixes from names and fail on collisions

    Raises:
        UnsupportedFileType: If the tree contains a device, fifo, or socket
        NameCollisionError: If two entries map to the same name
    """
    _write_str(sink, NAR_VERSION_MAGIC)
    _dump_node(accessor, canon_path(path), sink, filter, use_case_hack)


def _dump_node(
    accessor: InputAccessor,
    path: str,
    sink: IO[bytes],
    filter: Optional[PathFilter],
    use_case_hack: bool,
) -> None:
    st = accessor.stat(path)
    _write_str(sink, b"(")

    if st.type == FileType.REGULAR:
        _write_tokens(sink, b"type", b"regular")
        if st.is_executable:
            _write_tokens(sink, b"executable", b"")
        _write_tokens(sink, b"contents")
        _write_str(sink, accessor.read_file(path))

    elif st.type == FileType.DIRECTORY:
        _write_tokens(sink, b"type", b"directory")

        # Stripped name -> real name
        unhacked: Dict[str, str] = {}
        for name in accessor.read_directory(path):
            stripped = name
            if use_case_hack:
                pos = name.find(CASE_HACK_SUFFIX)
                if pos != -1:
                    logger.debug(f"removing case hack suffix from '{join_path(path, name)}'")
                    stripped = name[:pos]
                if stripped in unhacked:
                    raise NameCollisionError(join_path(path, unhacked[stripped]), join_path(path, name))
            unhacked[stripped] = name

        for stripped in sorted(unhacked, key=os.fsencode):
            child = join_path(path, unhacked[stripped])
            if filter is not None and not filter(child):
                continue
            _write_tokens(sink, b"entry", b"(", b"name", os.fsencode(stripped), b"node")
            _dump_node(accessor, child, sink, filter, use_case_hack)
            _write_str(sink, b")")

    elif st.type == FileType.SYMLINK:
        _write_tokens(sink, b"type", b"symlink", b"target", os.fsencode(accessor.read_link(path)))

    else:
        raise UnsupportedFileType(f"{accessor!r}:{path}", st.type.value)

    _write_str(sink, b")")


def dump_to_bytes(
    accessor: InputAccessor,
    path: str = "/",
    filter: Optional[PathFilter] = None,
    *,
    use_case_hack: bool = False,
) -> bytes:
    """Return the dump of ``path`` as a bytes object."""
    buf = io.BytesIO()
    dump_path(accessor, path, buf, filter, use_case_hack=use_case_hack)
    return buf.getvalue()


def hash_path(
    accessor: InputAccessor,
    path: str = "/",
    filter: Optional[PathFilter] = None,
    *,
    algo: str = "sha256",
    use_case_hack: bool = False,
) -> str:
    """Return the SRI hash of the dump of ``path``."""
    sink = HashingSink(algo)
    dump_path(accessor, path, sink, filter, use_case_hack=use_case_hack)
    return sink.sri()


class _Reader:
    """Framing-aware reader over a binary stream."""

    def __init__(self, source: IO[bytes]) -> None:
        self._source = source

    def read_exact(self, n: int) -> bytes:
        chunks = []
        remaining = n
        while remaining:
            chunk = self._source.read(remaining)
            if not chunk:
                raise BadArchiveError("unexpected end of archive")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def read_int(self) -> int:
        return struct.unpack("<Q", self.read_exact(8))[0]

    def skip_padding(self, length: int) -> None:
        if length % 8:
            if self.read_exact(8 - length % 8).strip(b"\0"):
                raise BadArchiveError("non-zero padding")

    def read_bytes(self, max_len: int = 4096) -> bytes:
        length = self.read_int()
        if length > max_len:
            raise BadArchiveError(f"string of length {length} exceeds limit of {max_len}")
        data = self.read_exact(length)
        self.skip_padding(length)
        return data

    def expect(self, token: bytes) -> None:
        got = self.read_bytes()
        if got != token:
            raise BadArchiveError(f"expected '{token.decode()}', got '{got.decode(errors='replace')}'")


def restore_path(source: IO[bytes], dest: str | Path, *, use_case_hack: bool = False) -> None:
    """
    Materialize a dump stream at ``dest``, which must not exist yet.

    Args:
        source: Binary stream positioned at the magic marker
        dest: Path to create
        use_case_hack: Rename entries that only differ by case instead of clobbering

    Raises:
        BadArchiveError: On malformed framing, unsorted entries, or unsafe names
    """
    reader = _Reader(source)
    try:
        magic = reader.read_bytes()
    except BadArchiveError as e:
        raise BadArchiveError(f"input is not a tree dump: {e}") from e
    if magic != NAR_VERSION_MAGIC:
        raise BadArchiveError("input is not a tree dump")
    _restore_node(reader, Path(dest), use_case_hack)


def _check_name(name: bytes) -> None:
    if name in (b"", b".", b"..") or b"/" in name or b"\0" in name:
        raise BadArchiveError(f"archive contains invalid file name '{name.decode(errors='replace')}'")


def _restore_node(reader: _Reader, path: Path, use_case_hack: bool) -> None:
    reader.expect(b"(")
    reader.expect(b"type")
    kind = reader.read_bytes()

    if kind == b"regular":
        token = reader.read_bytes()
        executable = False
        if token == b"executable":
            reader.expect(b"")
            executable = True
            token = reader.read_bytes()
        if token != b"contents":
            raise BadArchiveError(f"expected 'contents', got '{token.decode(errors='replace')}'")
        size = reader.read_int()
        with open(path, "xb") as f:
            remaining = size
            while remaining:
                chunk = reader.read_exact(min(remaining, _CHUNK_SIZE))
                f.write(chunk)
                remaining -= len(chunk)
        reader.skip_padding(size)
        if executable:
            os.chmod(path, os.stat(path).st_mode | 0o111)
        reader.expect(b")")

    elif kind == b"directory":
        os.mkdir(path)
        prev: Optional[bytes] = None
        # Lowercased name -> number of case-hacked siblings
        seen: Dict[str, int] = {}
        while True:
            token = reader.read_bytes()
            if token == b")":
                break
            if token != b"entry":
                raise BadArchiveError(f"expected 'entry', got '{token.decode(errors='replace')}'")
            reader.expect(b"(")
            reader.expect(b"name")
            raw = reader.read_bytes()
            _check_name(raw)
            if prev is not None and raw <= prev:
                raise BadArchiveError("archive entries are not sorted or contain duplicates")
            prev = raw

            name = os.fsdecode(raw)
            if use_case_hack:
                key = name.lower()
                if key in seen:
                    seen[key] += 1
                    logger.debug(f"case collision on '{path / name}'")
                    name = f"{name}{CASE_HACK_SUFFIX}{seen[key]}"
                else:
                    seen[key] = 0

            reader.expect(b"node")
            _restore_node(reader, path / name, use_case_hack)
            reader.expect(b")")

    elif kind == b"symlink":
        reader.expect(b"target")
        target = reader.read_bytes()
        os.symlink(os.fsdecode(target), path)
        reader.expect(b")")

    else:
        raise BadArchiveError(f"unknown file type '{kind.decode(errors='replace')}'")


def write_dump(
    src_dir: str | Path,
    out_path: str | Path,
    *,
    filter: Optional[PathFilter] = None,
    use_case_hack: bool = False,
    zstd_level: int = 19,
) -> str:
    """
    Dump a directory to a file atomically.

    An output name ending in ``.zst`` selects zstandard compression.

    Args:
        src_dir: Directory to dump
        out_path: Destination file (.nar or .nar.zst)
        filter: Optional predicate on accessor paths
        use_case_hack: See :func:`dump_path`
        zstd_level: Zstandard compression level

    Returns:
        SRI hash of the uncompressed dump

    Raises:
        ValueError: If src_dir doesn't exist
    """
    src = Path(src_dir)
    if not src.exists() and not src.is_symlink():
        raise ValueError(f"Source path does not exist: {src_dir}")
    out = Path(out_path).resolve()
    accessor = FSInputAccessor(src)

    # Use atomic writes via temp file in the destination directory
    temp_fd, temp_path = tempfile.mkstemp(suffix=".tmp", dir=out.parent, prefix=out.name + ".")
    try:
        with os.fdopen(temp_fd, "wb") as f:
            if out.suffix == ".zst":
                compressor = zstd.ZstdCompressor(level=zstd_level, write_content_size=True, write_checksum=True)
                with compressor.stream_writer(f, closefd=False) as writer:
                    sink = HashingSink(tee=writer)
                    dump_path(accessor, "/", sink, filter, use_case_hack=use_case_hack)
            else:
                sink = HashingSink(tee=f)
                dump_path(accessor, "/", sink, filter, use_case_hack=use_case_hack)
        os.replace(temp_path, out)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise

    logger.info(f"Wrote dump of {src} to {out} ({sink.size} bytes, {sink.sri()})")
    return sink.sri()


def read_dump(dump_file: str | Path, dest: str | Path, *, use_case_hack: bool = False) -> None:
    """Restore a dump file (optionally ``.zst`` compressed) at ``dest``."""
    dump_file = Path(dump_file)
    with open(dump_file, "rb") as f:
        if dump_file.suffix == ".zst":
            with zstd.ZstdDecompressor().stream_reader(f) as reader:
                restore_path(reader, dest, use_case_hack=use_case_hack)
        else:
            restore_path(f, dest, use_case_hack=use_case_hack)
    logger.info(f"Restored {dump_file} to {dest}")
