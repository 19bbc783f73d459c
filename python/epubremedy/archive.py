# SPDX-License-Identifier: AGPL-3.0-only
"""In-memory access to the members of a zip-packaged publication.

The archive is loaded once, mutated member by member by a single remediation
pass, and serialized once. Untouched members are written back byte for byte.
"""
from __future__ import annotations

import codecs
import io
import logging
import re
import zipfile
from pathlib import Path, PurePosixPath

from .errors import ArchiveError, BinaryMemberError

logger = logging.getLogger(__name__)

CONTENT_EXTENSIONS = frozenset({".xhtml", ".html", ".htm"})
TEXT_EXTENSIONS = CONTENT_EXTENSIONS | frozenset(
    {".opf", ".xml", ".ncx", ".css", ".txt", ".svg", ".js", ".smil", ".pls"}
)
CONTAINER_PATH = "META-INF/container.xml"
MIMETYPE_PATH = "mimetype"

_FIXED_DATE = (1980, 1, 1, 0, 0, 0)
_ROOTFILE_RE = re.compile(r"<rootfile\b[^>]*\bfull-path\s*=\s*[\"']([^\"']+)[\"']", re.I)
_XML_ENCODING_RE = re.compile(rb"^\s*<\?xml\b[^>]*\bencoding\s*=\s*[\"']([A-Za-z0-9._-]+)[\"']")

# Longest marks first: the UTF-32-LE mark starts with the UTF-16-LE one.
_BOMS = (
    (codecs.BOM_UTF32_LE, "utf-32-le"),
    (codecs.BOM_UTF32_BE, "utf-32-be"),
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)


def _ext(path: str) -> str:
    return PurePosixPath(path).suffix.lower()


def detect_encoding(data: bytes) -> tuple[str, bytes]:
    """Return ``(codec, bom)`` for a text member.

    A byte order mark wins, then an unmarked UTF-16 ``<?`` prefix, then the
    XML declaration. Anything else is UTF-8.
    """
    for bom, codec in _BOMS:
        if data.startswith(bom):
            return codec, bom
    if data.startswith(b"<\x00?\x00"):
        return "utf-16-le", b""
    if data.startswith(b"\x00<\x00?"):
        return "utf-16-be", b""
    m = _XML_ENCODING_RE.match(data[:200])
    if m:
        try:
            name = codecs.lookup(m.group(1).decode("ascii")).name
        except LookupError:
            logger.warning("unknown XML encoding %r, reading as utf-8", m.group(1))
            return "utf-8", b""
        # The declaration decoded as single bytes, so a wide label is wrong.
        if not name.startswith(("utf-16", "utf-32")):
            return name, b""
    return "utf-8", b""


class Archive:
    def __init__(self, members: dict[str, bytes] | None = None) -> None:
        self._data: dict[str, bytes] = {}
        self._infos: dict[str, zipfile.ZipInfo] = {}
        for name, data in (members or {}).items():
            self._data[name] = bytes(data)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Archive":
        try:
            zf = zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as exc:
            raise ArchiveError(f"not a zip package: {exc}") from exc
        archive = cls()
        with zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                archive._data[info.filename] = zf.read(info)
                archive._infos[info.filename] = info
        logger.debug("loaded archive with %d members", len(archive._data))
        return archive

    @classmethod
    def from_path(cls, path: str | Path) -> "Archive":
        return cls.from_bytes(Path(path).read_bytes())

    def to_bytes(self) -> bytes:
        """Serialize with ``mimetype`` first and stored, other members in load order."""
        buf = io.BytesIO()
        order = [n for n in self._data if n == MIMETYPE_PATH]
        order += [n for n in self._data if n != MIMETYPE_PATH]
        with zipfile.ZipFile(buf, "w") as zf:
            for name in order:
                prev = self._infos.get(name)
                info = zipfile.ZipInfo(name, date_time=prev.date_time if prev else _FIXED_DATE)
                if name == MIMETYPE_PATH:
                    info.compress_type = zipfile.ZIP_STORED
                else:
                    info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = prev.external_attr if prev else 0o644 << 16
                zf.writestr(info, self._data[name])
        return buf.getvalue()

    def __contains__(self, path: object) -> bool:
        return path in self._data

    def __len__(self) -> int:
        return len(self._data)

    def members(self) -> list[str]:
        return list(self._data)

    def is_text(self, path: str) -> bool:
        return path == MIMETYPE_PATH or _ext(path) in TEXT_EXTENSIONS

    def read_bytes(self, path: str) -> bytes:
        try:
            return self._data[path]
        except KeyError:
            raise ArchiveError(f"no such member: {path}") from None

    def read_text(self, path: str) -> str:
        if not self.is_text(path):
            raise BinaryMemberError(path, "read_text")
        data = self.read_bytes(path)
        codec, bom = detect_encoding(data)
        try:
            return data[len(bom):].decode(codec)
        except UnicodeDecodeError as exc:
            raise ArchiveError(f"cannot decode {path} as {codec}: {exc.reason}") from exc

    def encoding(self, path: str) -> str:
        """Codec used by :meth:`read_text` and :meth:`write_text` for ``path``."""
        return detect_encoding(self._data.get(path, b""))[0]

    def write_text(self, path: str, text: str) -> None:
        """Store ``text`` in the member's existing encoding and byte order mark."""
        if not self.is_text(path):
            raise BinaryMemberError(path, "write_text")
        codec, bom = detect_encoding(self._data.get(path, b""))
        errors = "strict" if codec.startswith("utf") else "xmlcharrefreplace"
        self._data[path] = bom + text.encode(codec, errors)

    def write_bytes(self, path: str, data: bytes) -> None:
        self._data[path] = bytes(data)

    def content_documents(self) -> list[str]:
        return [n for n in self._data if _ext(n) in CONTENT_EXTENSIONS]

    def stylesheets(self) -> list[str]:
        return [n for n in self._data if _ext(n) == ".css"]

    def opf_path(self) -> str:
        if CONTAINER_PATH not in self._data:
            raise ArchiveError(f"missing {CONTAINER_PATH}")
        m = _ROOTFILE_RE.search(self.read_text(CONTAINER_PATH))
        if not m:
            raise ArchiveError(f"{CONTAINER_PATH} declares no rootfile")
        path = m.group(1)
        if path not in self._data:
            raise ArchiveError(f"package document {path} not found")
        return path

    def snapshot(self) -> dict[str, bytes]:
        return dict(self._data)
