import os

import pytest
import requests

from mhtml2orders.errors import ImageError
from mhtml2orders.images import (
    FetchedImage,
    ImageResolver,
    LocalFileStore,
    RequestsImageFetcher,
    StorageLayout,
    download_filename,
    replace_image_urls,
    save_embedded_images,
    validate_image_payload,
)
from mhtml2orders.types import EmbeddedImage

from conftest import JPEG_BYTES, StubFetcher


@pytest.fixture
def layout(tmp_path):
    root = tmp_path / "uploads"
    return StorageLayout(str(root), str(root / "imported-images"), "/uploads")


def test_save_embedded_images_maps_to_public_urls(layout):
    images = [EmbeddedImage("https://ae01.alicdn.com/kf/a.jpg", JPEG_BYTES, "image/jpeg", "a.jpg")]
    mapping = save_embedded_images(images, LocalFileStore(), layout)
    assert mapping == {"https://ae01.alicdn.com/kf/a.jpg": "/uploads/imported-images/a.jpg"}
    with open(os.path.join(layout.image_dir, "a.jpg"), "rb") as f:
        assert f.read() == JPEG_BYTES


def test_existing_file_is_reused(layout):
    os.makedirs(layout.image_dir)
    path = os.path.join(layout.image_dir, "a.jpg")
    with open(path, "wb") as f:
        f.write(b"old")
    images = [EmbeddedImage("https://x.com/a.jpg", JPEG_BYTES, "image/jpeg", "a.jpg")]
    mapping = save_embedded_images(images, LocalFileStore(), layout)
    assert mapping["https://x.com/a.jpg"] == "/uploads/imported-images/a.jpg"
    with open(path, "rb") as f:
        assert f.read() == b"old"


class FailingStore(LocalFileStore):
    def write_file(self, path, data):
        raise OSError("disk full")


def test_write_failure_skips_image(layout):
    images = [EmbeddedImage("https://x.com/a.jpg", JPEG_BYTES, "image/jpeg", "a.jpg")]
    assert save_embedded_images(images, FailingStore(), layout) == {}


def test_replace_image_urls_all_reference_forms():
    url = "https://ae01.alicdn.com/kf/S1.jpg?a=1"
    html = (
        f'<img src="{url}">'
        f"<img data-src='{url}'>"
        f'<div style="background-image: url({url})"></div>'
        '<img src="//ae01.alicdn.com/kf/S1.jpg?a=1">'
        '<img data-src="//ae01.alicdn.com/kf/S1.jpg?a=1">'
        '<img src="https://ae01.alicdn.com/kf/S1Xjpg?a=1">'
    )
    out = replace_image_urls(html, {url: "/uploads/imported-images/S1.jpg"})
    assert out.count('src="/uploads/imported-images/S1.jpg"') == 4
    assert 'background-image: url("/uploads/imported-images/S1.jpg")' in out
    # metacharacters in the URL are matched literally
    assert "S1Xjpg" in out


@pytest.mark.parametrize("fetched,msg", [
    (FetchedImage(JPEG_BYTES, "text/html"), "not an image"),
    (FetchedImage(b"<!DOCTYPE html><html>" + b" " * 2000, "image/jpeg"), "HTML"),
    (FetchedImage(b"\xff\xd8" * 10, "image/jpeg"), "too small"),
])
def test_validate_image_payload_rejects(fetched, msg):
    with pytest.raises(ImageError, match=msg):
        validate_image_payload(fetched, "https://x.com/a.jpg")


def test_validate_image_payload_accepts_jpeg():
    validate_image_payload(FetchedImage(JPEG_BYTES, "image/jpeg"))


def test_download_filename():
    name = download_filename("https://ae01.alicdn.com/kf/abc.png?x=1", "ESP32 Dev Board / 38 pins")
    assert name.startswith("ESP32_Dev_Board___38_pins_")
    assert name.endswith(".png")
    assert download_filename("https://x.com/img", "t").endswith(".jpg")
    assert len(download_filename("https://x.com/a.jpg", "x" * 200)) == 50 + 1 + 8 + 4


def test_resolver_local_reference(layout):
    mapping = {"https://x.com/a.jpg": "/uploads/imported-images/a.jpg"}
    resolver = ImageResolver(layout, LocalFileStore(), None, mapping)
    assert resolver.local_reference("/uploads/imported-images/b.jpg") == "imported-images/b.jpg"
    assert resolver.local_reference("https://x.com/a.jpg") == "imported-images/a.jpg"
    assert resolver.local_reference("https://x.com/other.jpg") is None
    with pytest.raises(TypeError):
        resolver.url_mapping["https://x.com/c.jpg"] = "nope"


def test_resolver_download_and_reuse(layout):
    fetcher = StubFetcher()
    resolver = ImageResolver(layout, LocalFileStore(), fetcher)
    rel = resolver.download("https://ae01.alicdn.com/kf/p.jpg", "Part")
    assert rel.startswith("imported-images/Part_") and rel.endswith(".jpg")
    assert os.path.exists(os.path.join(layout.uploads_root, rel))
    assert resolver.download("https://ae01.alicdn.com/kf/p.jpg", "Part") == rel
    assert len(fetcher.calls) == 1


def test_resolver_download_failure_returns_none(layout):
    resolver = ImageResolver(layout, LocalFileStore(), StubFetcher(data=b"tiny"))
    assert resolver.download("https://x.com/p.jpg", "Part") is None
    assert ImageResolver(layout, LocalFileStore()).download("https://x.com/p.jpg", "Part") is None


class FakeResponse:
    def __init__(self, status=200, content=JPEG_BYTES, content_type="image/jpeg"):
        self.status_code = status
        self.content = content
        self.headers = {"content-type": content_type}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.requests = []

    def get(self, url, headers=None, timeout=None):
        self.requests.append((url, headers, timeout))
        return self.response


def test_requests_fetcher_sends_site_headers():
    session = FakeSession(FakeResponse())
    fetcher = RequestsImageFetcher(referer="https://www.aliexpress.com/", timeout=5, session=session)
    fetched = fetcher.fetch("https://ae01.alicdn.com/kf/a.jpg")
    assert fetched.data == JPEG_BYTES and fetched.content_type == "image/jpeg"
    _, headers, timeout = session.requests[0]
    assert headers["Referer"] == "https://www.aliexpress.com/"
    assert headers["Origin"] == "https://www.aliexpress.com"
    assert "Mozilla" in headers["User-Agent"]
    assert timeout == 5


def test_requests_fetcher_wraps_http_errors():
    fetcher = RequestsImageFetcher(session=FakeSession(FakeResponse(status=404)))
    with pytest.raises(ImageError):
        fetcher.fetch("https://ae01.alicdn.com/kf/missing.jpg")
