"""
Minimal multipart/form-data reader for upload requests.

The upload endpoint receives the raw request body (optionally base64 encoded by
an upstream gateway) and needs exactly one thing from it: the first file part
named ``image`` or ``file``. Plain form fields ride along for optional
geolocation values.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

CRLF = b"\r\n"
HEADER_SEPARATOR = b"\r\n\r\n"
CLOSING_MARKER = b"--"
DEFAULT_CONTENT_TYPE = "application/octet-stream"
FILE_FIELD_NAMES = ("image", "file")

_BOUNDARY_RE = re.compile(r'boundary=(?:"([^"]+)"|([^;]+))', re.IGNORECASE)
_DISPOSITION_RE = re.compile(r"^Content-Disposition:(.*)$", re.IGNORECASE | re.MULTILINE)
_NAME_RE = re.compile(r'(?:^|[;\s])name="([^"]*)"', re.IGNORECASE)
_FILENAME_RE = re.compile(r'filename="([^"]*)"', re.IGNORECASE)
_PART_CONTENT_TYPE_RE = re.compile(r"^Content-Type:\s*([^\r\n]+)", re.IGNORECASE | re.MULTILINE)


@dataclass
class MultipartFile:
    filename: str
    content_type: str
    content: bytes


def parse_boundary(content_type: Optional[str]) -> Optional[str]:
    """Return the boundary token of a multipart Content-Type header, or None."""
    if not content_type:
        return None
    match = _BOUNDARY_RE.search(content_type)
    if not match:
        return None
    boundary = (match.group(1) or match.group(2) or "").strip()
    return boundary or None


def decode_body(body: Union[bytes, str, None], is_base64: bool = False) -> Optional[bytes]:
    """Undo the transport encoding of a request body."""
    if body is None or len(body) == 0:
        return None
    if is_base64:
        try:
            return base64.b64decode(body)
        except (binascii.Error, ValueError):
            logger.warning("Request body flagged as base64 but could not be decoded")
            return None
    if isinstance(body, str):
        return body.encode("utf-8")
    return bytes(body)


def split_parts(body: bytes, delimiter: bytes) -> List[bytes]:
    """
    Split a multipart body on its delimiter line.

    A part is the byte range between two consecutive delimiters, without the
    CRLF that follows the first delimiter and without the CRLF that precedes
    the second one. Scanning stops at the closing delimiter (``--boundary--``).
    """
    parts: List[bytes] = []
    start = 0

    while True:
        index = body.find(delimiter, start)
        if index == -1:
            break

        if start > 0:
            part_start = start
            if body[part_start:part_start + 2] == CRLF:
                part_start += 2
            part_end = index
            if part_end >= 2 and body[part_end - 2:part_end] == CRLF:
                part_end -= 2
            if part_end > part_start:
                parts.append(body[part_start:part_end])

        start = index + len(delimiter)
        if body[start:start + 2] == CLOSING_MARKER:
            break

    return parts


def _split_headers(part: bytes) -> Optional[Tuple[str, bytes]]:
    header_end = part.find(HEADER_SEPARATOR)
    if header_end == -1:
        return None
    headers = part[:header_end].decode("utf-8", errors="replace")
    return headers, part[header_end + len(HEADER_SEPARATOR):]


def _disposition(headers: str) -> Tuple[Optional[str], Optional[str]]:
    line = _DISPOSITION_RE.search(headers)
    if not line:
        return None, None
    disposition = line.group(1)
    name_match = _NAME_RE.search(disposition)
    filename_match = _FILENAME_RE.search(disposition)
    name = name_match.group(1) if name_match else None
    filename = filename_match.group(1) if filename_match else None
    return name, filename


def _clean_content(content: bytes, delimiter: bytes) -> bytes:
    trailing = content.rfind(delimiter)
    if trailing > 0:
        content = content[:trailing]
    if content.endswith(CRLF):
        content = content[:-2]
    return content


def _iter_parts(body: bytes, content_type: Optional[str]) -> Iterator[Tuple[str, Optional[str], Optional[str], bytes, bytes]]:
    boundary = parse_boundary(content_type)
    if not boundary:
        logger.debug("No boundary found in Content-Type header")
        return
    delimiter = b"--" + boundary.encode("latin-1", errors="replace")
    parts = split_parts(body, delimiter)
    logger.debug(f"Split multipart body into {len(parts)} part(s) ({len(body)} bytes)")

    for part in parts:
        split = _split_headers(part)
        if split is None:
            logger.debug(f"Skipping part without header separator ({len(part)} bytes)")
            continue
        headers, content = split
        name, filename = _disposition(headers)
        if name is None:
            logger.debug("Skipping part without a field name")
            continue
        yield headers, name, filename, content, delimiter


def extract_file(body: Optional[bytes], content_type: Optional[str]) -> Optional[MultipartFile]:
    """
    Return the first file part named ``image`` or ``file``.

    Returns None when the body is empty, the header carries no boundary, or no
    part qualifies. Malformed parts are skipped.
    """
    if not body:
        return None

    for headers, name, filename, content, delimiter in _iter_parts(body, content_type):
        if not filename or name not in FILE_FIELD_NAMES:
            continue
        type_match = _PART_CONTENT_TYPE_RE.search(headers)
        file_type = type_match.group(1).strip() if type_match else DEFAULT_CONTENT_TYPE
        return MultipartFile(
            filename=filename,
            content_type=file_type,
            content=_clean_content(content, delimiter),
        )

    return None


def extract_fields(body: Optional[bytes], content_type: Optional[str]) -> Dict[str, str]:
    """Collect plain (non-file) form fields; the first value of a name wins."""
    fields: Dict[str, str] = {}
    if not body:
        return fields

    for _headers, name, filename, content, delimiter in _iter_parts(body, content_type):
        if filename is not None or not name or name in fields:
            continue
        value = _clean_content(content, delimiter)
        fields[name] = value.decode("utf-8", errors="replace").strip()

    return fields
