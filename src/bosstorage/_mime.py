"""
Content type lookup by file extension
"""

import mimetypes
import posixpath

MIME_TYPE_OCTET_STREAM = "application/octet-stream"

# Types missing from some platform mime tables
_EXTRA_TYPES = {
    "gram": "application/srgs",
    "grxml": "application/srgs+xml",
    "webp": "image/webp",
}


def get_mimetype(extension: str) -> str:
    """Return the content type for a bare extension such as ``"png"``."""
    extension = (extension or "").strip().lstrip(".").lower()
    if not extension:
        return MIME_TYPE_OCTET_STREAM
    if extension in _EXTRA_TYPES:
        return _EXTRA_TYPES[extension]
    guessed, _ = mimetypes.guess_type(f"file.{extension}", strict=False)
    return guessed or MIME_TYPE_OCTET_STREAM


def mimetype_for_key(key: str) -> str:
    _, ext = posixpath.splitext(key)
    return get_mimetype(ext)
