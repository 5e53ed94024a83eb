from __future__ import annotations
import base64
import binascii
import hashlib
import logging
import re
from typing import Dict, List, Optional

from .errors import DocumentFormatError, BOUNDARY_NOT_FOUND, NO_HTML_PART, HTML_TOO_SHORT
from .types import EmbeddedImage, MHTMLPart, ParsedDocument
from .utils import sanitize_filename

log = logging.getLogger(__name__)

MIN_HTML_LENGTH = 100

# Text that was decoded from bytes with errors="surrogateescape" maps back
# to the original bytes exactly.
_TEXT_CODEC = ("utf-8", "surrogateescape")

_BOUNDARY_PATTERNS = (
    re.compile(r'boundary="([^"]+)"', re.IGNORECASE),
    # bare value; a leading quote belongs to the single-quoted form
    re.compile(r"boundary=([^\s;\"'][^\s;]*)", re.IGNORECASE),
    re.compile(r"boundary='([^']+)'", re.IGNORECASE),
)

_SOFT_BREAK_RE = re.compile(rb"=\r?\n")
_QP_ESCAPE_RE = re.compile(rb"=([A-Fa-f0-9]{2})")
_WS_RE = re.compile(r"\s+")

EXTENSION_BY_CONTENT_TYPE = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
    "image/bmp": ".bmp",
    "image/tiff": ".tiff",
}

SYNTHETIC_IMAGE_PREFIX = "image_"


def is_mhtml(content: str) -> bool:
    return (
        "MIME-Version:" in content
        and "Content-Type: multipart/related" in content
        and "boundary=" in content
    )


def find_boundary(content: str) -> str:
    for pattern in _BOUNDARY_PATTERNS:
        m = pattern.search(content)
        if m:
            return m.group(1)
    raise DocumentFormatError(BOUNDARY_NOT_FOUND, "Could not find MHTML boundary marker")


def split_parts(content: str, boundary: str) -> List[str]:
    fragments: List[str] = []
    for raw in content.split(f"--{boundary}"):
        frag = raw.strip()
        if not frag or frag == "--":
            continue
        fragments.append(frag)
    return fragments


def _store_header(line: str, headers: Dict[str, str]) -> None:
    key, sep, value = line.partition(":")
    key = key.strip().lower()
    if sep and key:
        headers[key] = value.strip()


def parse_part(fragment: str) -> MHTMLPart:
    """
    RFC822-style header block, then raw content after the first blank line.
    Folded lines (leading space/tab) continue the previous header.
    """
    lines = re.split(r"\r?\n", fragment)
    headers: Dict[str, str] = {}
    current = ""
    content_start = len(lines)

    for i, line in enumerate(lines):
        if line.strip() == "":
            content_start = i + 1
            break
        if line.startswith((" ", "\t")):
            current += " " + line.strip()
            continue
        if current:
            _store_header(current, headers)
        current = line
    if current:
        _store_header(current, headers)

    content = "\n".join(lines[content_start:])
    return MHTMLPart(
        headers=headers,
        content=content,
        content_type=headers.get("content-type") or "text/plain",
        encoding=headers.get("content-transfer-encoding"),
    )


def decode_quoted_printable(content: str) -> bytes:
    raw = content.encode(*_TEXT_CODEC)
    raw = _SOFT_BREAK_RE.sub(b"", raw)
    return _QP_ESCAPE_RE.sub(lambda m: bytes([int(m.group(1), 16)]), raw)


def decode_content(content: str, encoding: Optional[str] = None) -> bytes:
    enc = (encoding or "").strip().lower()
    if enc in ("", "binary", "8bit"):
        return content.encode(*_TEXT_CODEC)
    if enc == "base64":
        return base64.b64decode(_WS_RE.sub("", content))
    if enc == "quoted-printable":
        return decode_quoted_printable(content)
    # unknown transfer encoding: take the text as UTF-8
    return content.encode(*_TEXT_CODEC)


def extension_for(content_type: str) -> str:
    main_type = (content_type or "").split(";")[0].strip().lower()
    return EXTENSION_BY_CONTENT_TYPE.get(main_type, ".jpg")


def generate_image_filename(url: str, content_type: str) -> str:
    """
    Deterministic in (url, content_type).
    """
    ext = extension_for(content_type)
    filename = url.rsplit("/", 1)[-1]
    filename = filename.split("?", 1)[0]
    if "." not in filename:
        filename += ext
    filename = sanitize_filename(filename)

    if len(filename) < 5 or filename.startswith(SYNTHETIC_IMAGE_PREFIX):
        digest = hashlib.md5(url.encode("utf-8")).hexdigest()[:8]
        filename = f"img_{digest}{ext}"
    return filename


def _location(headers: Dict[str, str]) -> Optional[str]:
    return headers.get("content-location") or headers.get("location") or None


def _decode_html(part: MHTMLPart) -> str:
    enc = (part.encoding or "").lower()
    if "quoted-printable" in enc:
        log.debug("HTML part declared quoted-printable")
        return decode_quoted_printable(part.content).decode("utf-8", errors="replace")
    if not enc and ("=3D" in part.content or "=\n" in part.content):
        log.info("HTML part looks quoted-printable despite no declared encoding, decoding anyway")
        return decode_quoted_printable(part.content).decode("utf-8", errors="replace")
    return part.content.encode(*_TEXT_CODEC).decode("utf-8", errors="replace")


def parse_mhtml(content: str) -> ParsedDocument:
    log.info("Parsing MHTML content (%s KB)", round(len(content) / 1024))
    boundary = find_boundary(content)
    log.debug("Found MHTML boundary: %s", boundary)

    fragments = split_parts(content, boundary)
    log.info("Found %s MHTML parts", len(fragments))

    html_content: Optional[str] = None
    images: List[EmbeddedImage] = []

    for i, fragment in enumerate(fragments):
        part = parse_part(fragment)
        ctype = part.content_type.lower()

        # Top-level multipart headers also mention type="text/html"
        if html_content is None and "html" in ctype and not ctype.startswith("multipart/"):
            html_content = _decode_html(part)
            log.info("Found HTML content (%s KB), encoding: %s", round(len(html_content) / 1024), part.encoding)
            continue

        if ctype.startswith("image/"):
            url = _location(part.headers) or f"{SYNTHETIC_IMAGE_PREFIX}{i}"
            try:
                data = decode_content(part.content, part.encoding)
            except (binascii.Error, ValueError) as e:
                log.warning("Failed to decode image part %s (%s): %s", i, url, e)
                continue
            filename = generate_image_filename(url, part.content_type)
            images.append(EmbeddedImage(url=url, data=data, content_type=part.content_type, filename=filename))
            log.debug("Found embedded image: %s (%s KB)", filename, round(len(data) / 1024))

    if html_content is None:
        raise DocumentFormatError(NO_HTML_PART, "No HTML content found in MHTML file")
    if len(html_content) < MIN_HTML_LENGTH:
        raise DocumentFormatError(HTML_TOO_SHORT, "HTML content too short - may be corrupted")

    log.info("MHTML parsing complete: HTML content + %s images", len(images))
    return ParsedDocument(html_content=html_content, images=images)
