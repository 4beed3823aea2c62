"""
Upload validation helpers.

Media type is detected from magic bytes, never from the client-supplied
Content-Type. Plain text has no signature, so it is accepted only for a
.txt name whose bytes decode as UTF-8 without NULs.
"""

from __future__ import annotations

import os
import re
import secrets
import time

from compliance.core.exceptions import ValidationError

PDF_TYPE  = "application/pdf"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_TYPE  = "application/msword"
TEXT_TYPE = "text/plain"
PNG_TYPE  = "image/png"
JPEG_TYPE = "image/jpeg"

ALLOWED_MEDIA_TYPES: frozenset[str] = frozenset(
    {PDF_TYPE, DOCX_TYPE, DOC_TYPE, TEXT_TYPE, PNG_TYPE, JPEG_TYPE}
)

DANGEROUS_EXTENSIONS: frozenset[str] = frozenset(
    {".exe", ".bat", ".cmd", ".sh", ".js", ".vbs", ".php"}
)

# Checked against the first bytes of the file content
_MAGIC_BYTES: dict[bytes, str] = {
    b"%PDF":                             PDF_TYPE,
    b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1": DOC_TYPE,    # legacy .doc (OLE2)
    b"\x89PNG\r\n\x1a\n":                PNG_TYPE,
    b"\xff\xd8\xff":                     JPEG_TYPE,
}
_ZIP_MAGIC = b"PK\x03\x04"

_EXECUTABLE_HEADERS = (
    b"MZ",            # Windows PE
    b"\x7fELF",       # Linux ELF
)


def get_extension(filename: str) -> str:
    """Return lowercased file extension including the dot."""
    parts = filename.rsplit(".", 1)
    return f".{parts[-1].lower()}" if len(parts) == 2 else ""


def sanitize_filename(filename: str) -> str:
    """
    Strip path components and replace unsafe characters.
    Returns only the basename with OS-safe characters.
    """
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    safe = re.sub(r"[^a-zA-Z0-9._\-]", "_", basename)
    return safe[:200]


def secure_filename(original: str) -> str:
    """``<unix-ms>-<32 hex chars><ext>``; the client's name never reaches the filesystem."""
    ext = get_extension(sanitize_filename(original))
    return f"{int(time.time() * 1000)}-{secrets.token_hex(16)}{ext}"


def _looks_like_text(content: bytes) -> bool:
    if b"\x00" in content[:8192]:
        return False
    try:
        content[:8192].decode("utf-8")
    except UnicodeDecodeError as exc:
        # a multi-byte sequence cut at the sample boundary is still text
        return exc.start >= 8192 - 4
    return True


def detect_media_type(filename: str, content: bytes) -> str | None:
    head = content[:16]
    for magic, media_type in _MAGIC_BYTES.items():
        if head.startswith(magic):
            return media_type

    ext = get_extension(filename)
    if head.startswith(_ZIP_MAGIC):
        return DOCX_TYPE if ext == ".docx" else None
    if ext == ".txt" and _looks_like_text(content):
        return TEXT_TYPE
    return None


def is_potentially_malicious(filename: str, content: bytes) -> bool:
    if get_extension(filename) in DANGEROUS_EXTENSIONS:
        return True
    return any(content.startswith(h) for h in _EXECUTABLE_HEADERS)


def validate_upload(filename: str, content: bytes, max_bytes: int) -> str:
    """
    Validate an upload and return its detected media type.

    Raises:
        ValidationError: empty, oversized, potentially malicious, or of an
            unsupported / undetectable type.
    """
    if not filename or not os.path.basename(filename.replace("\\", "/")):
        raise ValidationError("A filename is required", details={"field": "file"})
    if not content:
        raise ValidationError("Uploaded file is empty", details={"field": "file"})
    if len(content) > max_bytes:
        raise ValidationError(
            f"File exceeds the maximum size of {max_bytes // (1024 * 1024)} MB",
            details={"field": "file", "size_bytes": len(content), "max_bytes": max_bytes},
        )
    if is_potentially_malicious(filename, content):
        raise ValidationError(
            "File rejected as potentially malicious",
            details={"field": "file", "filename": sanitize_filename(filename)},
        )

    media_type = detect_media_type(filename, content)
    if media_type is None or media_type not in ALLOWED_MEDIA_TYPES:
        raise ValidationError(
            "Unsupported file type. Allowed: PDF, DOCX, DOC, TXT, PNG, JPEG",
            details={"field": "file", "filename": sanitize_filename(filename)},
        )
    return media_type
