"""Upload ingestion: key resolution, filename cleanup, type checks and the
per-file outcome report returned to the uploader.

Files in a batch are handled one after another so that at most one external
converter runs per request.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

import filetype
from unidecode import unidecode

from ..errors import AppBaseException, NotFoundError, ValidationError
from ..models.session import FileRecord, Session
from ..utils.storage import StagedFile, delete_file, delete_files
from .conversion import TYPE_EPUB, TYPE_MOBI, ConversionOptions, dispatch
from .devices import DeviceClass
from .keys import normalize_key
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

TYPE_OCTET_STREAM = "application/octet-stream"
TYPE_EPUB_LEGACY = "application/epub"

ALLOWED_TYPES = frozenset({
    TYPE_EPUB,
    TYPE_MOBI,
    "application/pdf",
    "application/vnd.comicbook+zip",
    "application/vnd.comicbook-rar",
    "text/html",
    "text/plain",
    "application/zip",
    "application/x-rar-compressed",
})
ALLOWED_EXTENSIONS = frozenset({"epub", "mobi", "pdf", "cbz", "cbr", "html", "txt"})

MAX_FILENAME_BYTES = 255

_ILLEGAL_RE = re.compile(r'[/?<>\\:*|"]')
_CONTROL_RE = re.compile(r"[\x00-\x1f\x80-\x9f]")
_RESERVED_RE = re.compile(r"^\.+$")
_WINDOWS_RESERVED_RE = re.compile(r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE)
_WINDOWS_TRAILING_RE = re.compile(r"[. ]+$")
_KINDLE_UNSAFE_RE = re.compile(r"[^.\w\-\"'()]", re.ASCII)


class Mobi(filetype.Type):
    """MOBI/AZW: the PalmDB type and creator fields read ``BOOKMOBI``."""

    MIME = TYPE_MOBI
    EXTENSION = "mobi"

    def __init__(self):
        super(Mobi, self).__init__(mime=Mobi.MIME, extension=Mobi.EXTENSION)

    def match(self, buf):
        return len(buf) >= 68 and buf[60:68] == b"BOOKMOBI"


filetype.add_type(Mobi())


def sanitize_filename(name: str) -> str:
    """Strip characters that are unsafe in a file name on any common OS."""
    name = _ILLEGAL_RE.sub("", name or "")
    name = _CONTROL_RE.sub("", name)
    name = _RESERVED_RE.sub("", name)
    name = _WINDOWS_RESERVED_RE.sub("", name)
    name = _WINDOWS_TRAILING_RE.sub("", name)
    encoded = name.encode("utf-8")
    if len(encoded) > MAX_FILENAME_BYTES:
        name = encoded[:MAX_FILENAME_BYTES].decode("utf-8", errors="ignore")
    return name


def transliterate_filename(name: str) -> str:
    """ASCII-fy everything before the last dot; the extension is kept as is."""
    stem, dot, ext = name.rpartition(".")
    if not dot:
        return unidecode(name)
    return unidecode(stem) + dot + ext


def kindle_safe_filename(name: str) -> str:
    return _KINDLE_UNSAFE_RE.sub("_", name)


def sniff_mimetype(path: Path) -> Optional[str]:
    """MIME type from the file's byte signature, or None if unrecognised."""
    kind = filetype.guess(str(path))
    return kind.mime if kind is not None else None


def effective_mimetype(declared: Optional[str], sniffed: Optional[str]) -> str:
    mimetype = declared or TYPE_OCTET_STREAM
    if mimetype == TYPE_OCTET_STREAM and sniffed:
        mimetype = sniffed
    if mimetype == TYPE_EPUB_LEGACY:
        mimetype = TYPE_EPUB
    return mimetype


def extension_of(name: str) -> str:
    return Path(name).suffix.lower().lstrip(".")


def check_allowed(original_name: str, declared: str, sniffed: Optional[str]) -> str:
    """Validate an item and return its effective MIME type."""
    if extension_of(original_name) not in ALLOWED_EXTENSIONS:
        raise ValidationError(f"Invalid filetype: {original_name} ({declared})")

    mimetype = effective_mimetype(declared, sniffed)
    if sniffed not in ALLOWED_TYPES and mimetype not in ALLOWED_TYPES:
        raise ValidationError(
            f"Uploaded file is of an invalid type: {original_name} ({sniffed or 'unknown mimetype'})"
        )
    return mimetype


def resolve_upload_key(
    header_key: Optional[str],
    query_key: Optional[str],
    body_key: Optional[str],
) -> Optional[str]:
    """Header first, then query string, then form field."""
    for candidate in (header_key, query_key, body_key):
        key = normalize_key(candidate)
        if key:
            return key
    return None


@dataclass
class UploadOptions(ConversionOptions):
    transliteration: bool = False


@dataclass
class FileOutcome:
    name: str
    success: bool
    conversion: Optional[str] = None
    error: Optional[str] = None

    @property
    def line(self) -> str:
        if self.success:
            suffix = f" (converted with {self.conversion})" if self.conversion else ""
            return f"✓ {self.name}{suffix}"
        return f"✗ Error processing {self.name}: {self.error}"


@dataclass
class UploadResult:
    key: str
    outcomes: List[FileOutcome] = field(default_factory=list)
    url: Optional[str] = None

    @property
    def accepted(self) -> List[FileOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def lines(self) -> List[str]:
        lines = [o.line for o in self.outcomes]
        if self.url:
            lines.append(f"✓ Added url: {self.url}")
        return lines

    @property
    def message(self) -> str:
        header = f"Upload successful! {len(self.accepted)} file(s) received:<br/>" if self.accepted else ""
        return header + "<br/>".join(self.lines)


def display_filename(original_name: str, options: UploadOptions, device_class: DeviceClass) -> str:
    filename = original_name
    if options.transliteration:
        filename = sanitize_filename(transliterate_filename(filename))
    if device_class is DeviceClass.KINDLE:
        filename = kindle_safe_filename(filename)
    return filename


async def process_file(staged: StagedFile, session: Session, options: UploadOptions) -> FileRecord:
    """Validate one staged item and hand it to the conversion dispatcher."""
    original_name = sanitize_filename(staged.original_name)
    sniffed = sniff_mimetype(staged.path)
    mimetype = check_allowed(original_name, staged.content_type, sniffed)
    filename = display_filename(original_name, options, session.device_class)
    return await dispatch(staged.path, filename, mimetype, session.device_class, options)


def require_session(registry: SessionRegistry, key: Optional[str], staged: Sequence[StagedFile]) -> Session:
    """Reject the whole batch, deleting everything staged, if ``key`` is not live."""
    if not key:
        delete_files(s.path for s in staged)
        raise ValidationError("Missing key (send x-upload-key header).")

    session = registry.get(key)
    if session is None:
        delete_files(s.path for s in staged)
        raise ValidationError(f"Unknown key {key}")
    return session


async def ingest_upload(
    registry: SessionRegistry,
    key: Optional[str],
    staged: Sequence[StagedFile],
    options: UploadOptions,
    url: Optional[str] = None,
) -> UploadResult:
    """Run a staged batch through validation and conversion.

    Raises :class:`ValidationError` when the key is missing or unknown, and
    when neither a file nor a URL was accepted; in the latter case the error
    carries the per-file failure lines, if any.
    """
    session = require_session(registry, key, staged)
    registry.touch(session.key)

    result = UploadResult(key=session.key)

    url = (url or "").strip()
    if url:
        registry.append_url(session.key, url)
        result.url = url

    for item in staged:
        name = sanitize_filename(item.original_name)
        if item.size == 0:
            delete_file(item.path)
            continue

        try:
            record = await process_file(item, session, options)
        except (AppBaseException, OSError) as exc:
            logger.error("Error processing file %s: %s", name, exc)
            delete_file(item.path)
            detail = exc.detail if isinstance(exc, AppBaseException) else str(exc)
            result.outcomes.append(FileOutcome(name=name, success=False, error=detail))
            continue

        try:
            registry.append_file(session.key, record, serial=session.serial)
        except NotFoundError as exc:
            logger.warning("%s; discarding %s", exc.detail, record.path)
            delete_file(record.path)
            result.outcomes.append(FileOutcome(name=name, success=False, error=exc.detail))
            continue

        result.outcomes.append(FileOutcome(name=record.name, success=True, conversion=record.conversion))

    if not result.accepted and not result.url:
        if result.outcomes:
            raise ValidationError("<br/>".join(result.lines))
        raise ValidationError("No file or url selected")

    return result
