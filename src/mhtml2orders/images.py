from __future__ import annotations
import hashlib
import logging
import os
import posixpath
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Protocol
from urllib.parse import urlparse

import requests

from .errors import ImageError
from .types import EmbeddedImage
from .utils import sanitize_filename

log = logging.getLogger(__name__)

MIN_IMAGE_BYTES = 1024
HTML_SIGNATURES = ("<!DOCTYPE html", "<html")

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Sec-Fetch-Site": "cross-site",
    "Sec-Fetch-Mode": "no-cors",
    "Sec-Fetch-Dest": "image",
}


class FileStore(Protocol):
    def ensure_dir(self, path: str) -> None: ...
    def write_file(self, path: str, data: bytes) -> None: ...
    def exists(self, path: str) -> bool: ...


class LocalFileStore:
    def ensure_dir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)

    def write_file(self, path: str, data: bytes) -> None:
        with open(path, "wb") as f:
            f.write(data)

    def exists(self, path: str) -> bool:
        return os.path.exists(path)


@dataclass
class StorageLayout:
    uploads_root: str = "./uploads"
    image_dir: str = "./uploads/imported-images"
    public_prefix: str = "/uploads"

    def relative(self, file_path: str) -> str:
        rel = os.path.relpath(file_path, self.uploads_root)
        return rel.replace(os.sep, "/")

    def public_url(self, file_path: str) -> str:
        return posixpath.join(self.public_prefix, self.relative(file_path))

    def strip_public_prefix(self, url: str) -> Optional[str]:
        prefix = self.public_prefix.rstrip("/") + "/"
        if url.startswith(prefix):
            return url[len(prefix):]
        return None


def save_embedded_images(images: List[EmbeddedImage], store: FileStore, layout: StorageLayout) -> Dict[str, str]:
    """
    Write decoded images below layout.image_dir and map each original
    URL to its public URL. An existing file is reused as-is.
    """
    store.ensure_dir(layout.image_dir)
    url_mapping: Dict[str, str] = {}

    for image in images:
        file_path = os.path.join(layout.image_dir, image.filename)
        try:
            if store.exists(file_path):
                log.debug("Reusing existing image file: %s", file_path)
            else:
                store.write_file(file_path, image.data)
                log.debug("Saved embedded image: %s", image.filename)
        except OSError as e:
            log.error("Failed to save image %s: %s", image.filename, e)
            continue
        url_mapping[image.url] = layout.public_url(file_path)

    log.info("Saved %s embedded images", len(url_mapping))
    return url_mapping


def _url_patterns(original_url: str, new_url: str):
    escaped = re.escape(original_url)
    no_scheme = re.escape(re.sub(r"^https?:", "", original_url))
    return (
        (re.compile(rf"src=[\"']{escaped}[\"']"), f'src="{new_url}"'),
        (re.compile(rf"data-src=[\"']{escaped}[\"']"), f'data-src="{new_url}"'),
        (re.compile(rf"background-image:\s*url\([\"']?{escaped}[\"']?\)"), f'background-image: url("{new_url}")'),
        (re.compile(rf"src=[\"']{no_scheme}[\"']"), f'src="{new_url}"'),
        (re.compile(rf"data-src=[\"']{no_scheme}[\"']"), f'data-src="{new_url}"'),
    )


def replace_image_urls(html: str, url_mapping: Mapping[str, str]) -> str:
    for original_url, new_url in url_mapping.items():
        for regex, replacement in _url_patterns(original_url, new_url):
            html = regex.sub(lambda _m, r=replacement: r, html)
    return html


@dataclass
class FetchedImage:
    data: bytes
    content_type: str


class ImageFetcher(Protocol):
    def fetch(self, url: str) -> FetchedImage: ...


class RequestsImageFetcher:
    def __init__(self, referer: str = "https://www.aliexpress.com/", timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.headers = dict(DEFAULT_HEADERS)
        self.headers["Referer"] = referer
        self.headers["Origin"] = referer.rstrip("/")

    def fetch(self, url: str) -> FetchedImage:
        try:
            response = self.session.get(url, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ImageError(f"Failed to download image {url}: {e}") from e
        return FetchedImage(data=response.content, content_type=response.headers.get("content-type", ""))


def validate_image_payload(fetched: FetchedImage, url: str = "") -> None:
    if not (fetched.content_type or "").startswith("image/"):
        raise ImageError(f"Response is not an image ({fetched.content_type}): {url}")
    head = fetched.data[:100].decode("utf-8", errors="ignore")
    if any(sig in head for sig in HTML_SIGNATURES):
        raise ImageError(f"Response contains HTML instead of image: {url}")
    if len(fetched.data) < MIN_IMAGE_BYTES:
        raise ImageError(f"Image too small ({len(fetched.data)} bytes), likely invalid: {url}")


def download_filename(image_url: str, product_title: str) -> str:
    digest = hashlib.md5(image_url.encode("utf-8")).hexdigest()[:8]
    title = sanitize_filename(product_title, keep="_-")[:50]
    ext = posixpath.splitext(urlparse(image_url).path)[1] or ".jpg"
    return f"{title}_{digest}{ext}"


class ImageResolver:
    """
    Turns an extracted image URL into a stored reference relative to the
    uploads root: already-local URLs, then the MHTML URL map, then a download.
    """

    def __init__(self, layout: StorageLayout, store: FileStore,
                 fetcher: Optional[ImageFetcher] = None,
                 url_mapping: Optional[Mapping[str, str]] = None):
        self.layout = layout
        self.store = store
        self.fetcher = fetcher
        self.url_mapping = MappingProxyType(dict(url_mapping or {}))

    def local_reference(self, image_url: str) -> Optional[str]:
        local = self.layout.strip_public_prefix(image_url)
        if local is not None:
            return local
        mapped = self.url_mapping.get(image_url)
        if mapped:
            return self.layout.strip_public_prefix(mapped) or mapped
        return None

    def download(self, image_url: str, product_title: str) -> Optional[str]:
        if self.fetcher is None:
            return None
        try:
            self.store.ensure_dir(self.layout.image_dir)
            file_path = os.path.join(self.layout.image_dir, download_filename(image_url, product_title))
            if self.store.exists(file_path):
                return self.layout.relative(file_path)
            fetched = self.fetcher.fetch(image_url)
            validate_image_payload(fetched, image_url)
            self.store.write_file(file_path, fetched.data)
        except (ImageError, OSError) as e:
            log.warning("%s", e)
            return None
        log.info("Downloaded image: %s (%s bytes)", file_path, len(fetched.data))
        return self.layout.relative(file_path)
