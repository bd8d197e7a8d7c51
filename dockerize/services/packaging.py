"""Compression helpers for captured container output."""

from __future__ import annotations

import io
import zipfile
import zlib

ARCHIVE_ENTRY = "data"

# Negative window bits select a raw deflate stream without the zlib header.
_RAW_DEFLATE_WBITS = -zlib.MAX_WBITS


class ArchiveFormatError(ValueError):
    """Archive payload is unreadable or lacks the expected entry."""


def compress(text: str) -> bytes:
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, _RAW_DEFLATE_WBITS)
    return compressor.compress(text.encode("utf-8")) + compressor.flush()


def decompress(data: bytes) -> str:
    try:
        raw = zlib.decompress(data, _RAW_DEFLATE_WBITS)
    except zlib.error as exc:
        raise ArchiveFormatError(f"Payload is not a raw deflate stream: {exc}") from exc
    return raw.decode("utf-8", errors="replace")


def zip_pack(text: str) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(ARCHIVE_ENTRY, text.encode("utf-8"))
    return buffer.getvalue()


def zip_unpack(data: bytes) -> str:
    """Return the text stored under the ``data`` entry, one ``\\n`` per line."""
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise ArchiveFormatError(f"Payload is not a zip archive: {exc}") from exc
    with archive:
        try:
            raw = archive.read(ARCHIVE_ENTRY)
        except KeyError as exc:
            raise ArchiveFormatError(
                f"The zip archive does not contain an entry named '{ARCHIVE_ENTRY}'"
            ) from exc
        except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
            raise ArchiveFormatError(f"Entry '{ARCHIVE_ENTRY}' is corrupt: {exc}") from exc
    text = io.StringIO(raw.decode("utf-8", errors="replace"), newline=None)
    # Universal newlines: only \n, \r and \r\n end a line; each line gets one \n.
    return "".join(line if line.endswith("\n") else line + "\n" for line in text)
