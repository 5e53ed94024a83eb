import base64
import quopri

import pytest
from bs4 import BeautifulSoup

from mhtml2orders.config import ImportOptions
from mhtml2orders.images import FetchedImage, ImageResolver, LocalFileStore, StorageLayout
from mhtml2orders.parsers import bootstrap
from mhtml2orders.parsers.base import ParseContext
from mhtml2orders.progress import ProgressReporter

BOUNDARY = "----MultipartBoundary--kQ3tAZ9xy"
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + bytes(range(256)) * 8
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(range(64))
CDN_IMAGE_URL = "https://ae01.alicdn.com/kf/S1234abcd.jpg"

ORDER_LIST_HTML = """<!DOCTYPE html>
<html><head><title>My Orders - AliExpress</title></head><body>
<div class="order-list">
<div class="order-item">
  <div class="order-item-header">
    <div class="order-item-header-status-text">Completed</div>
    <div class="order-item-header-right-info">Order date: Mar 5, 2024 Order ID: 8100000000000001</div>
  </div>
  <div class="order-item-store-name"><span>Best Parts Store</span></div>
  <div class="order-item-content-body">
    <div class="order-item-content-img" style='background-image: url("/uploads/imported-images/photo1.jpg")'></div>
    <div class="order-item-content-info-name">
      <a href="//www.aliexpress.com/item/1001.html"><span title="10K 0805 Resistor ±5% 100pcs">10K 0805 Resistor ±5% 100pcs</span></a>
    </div>
    <div class="order-item-content-info-number">
      <div class="es--wrap--a1b2c">US $10.00</div>
      <span class="order-item-content-info-number-quantity">x3</span>
    </div>
  </div>
  <div class="order-item-content-opt-price-total"><div class="es--wrap--d3e4f">Total: US $25.00</div></div>
</div>
<div class="order-item">
  <div class="order-item-header">
    <div class="order-item-header-status-text">Awaiting delivery</div>
    <div class="order-item-header-right-info">Order date: 2024-04-10 Order ID: 8100000000000002</div>
  </div>
  <div class="order-item-store-name"><span>Chip World</span></div>
  <div class="order-item-content-body">
    <div class="order-item-content-img" style="background-image: url(&quot;https://ae01.alicdn.com/kf/esp_220x220.jpg&quot;)"></div>
    <div class="order-item-content-info-name">
      <a href="https://www.aliexpress.com/item/1002.html"><span title="ESP32 WiFi Bluetooth Module 3.3V">ESP32 WiFi Bluetooth Module 3.3V</span></a>
    </div>
    <div class="order-item-content-info-number">
      <div class="es--wrap--g5h6i">US $4.50</div>
      <span class="order-item-content-info-number-quantity">x2</span>
    </div>
  </div>
  <div class="order-item-content-opt-price-total"><div class="es--wrap--j7k8l">Total: US $9.00</div></div>
</div>
<div class="order-item">
  <div class="order-item-header-status-text">Cancelled</div>
</div>
</div>
</body></html>
"""

SINGLE_ORDER_HTML = """<!DOCTYPE html>
<html><head><title>Details - AliExpress</title></head><body>
<h1>Purchase details</h1>
<p>Order #8123456789012</p>
<span class="date-created">Jan 15, 2024</span>
<span class="status">Shipped</span>
<div class="store-name">Sensor Shop</div>
<div class="product-item">
  <img src="https://ae01.alicdn.com/kf/sensor_220x220.jpg" alt="sensor">
  <h3 class="product-title">DHT22 Temperature Humidity Sensor</h3>
  <span class="unit-price">US $3.00</span>
  <span class="quantity">2</span>
  <span class="total-price">US $6.00</span>
</div>
<div class="product-item">
  <h3 class="product-title">100uF 25V Electrolytic Capacitor</h3>
  <span class="unit-price">US $1.50</span>
  <span class="quantity">4</span>
</div>
<div class="grand-total">US $12.00</div>
</body></html>
"""

TEXT_ONLY_HTML = """<!DOCTYPE html>
<html><head><title>AliExpress</title></head><body>
<h1>USB Logic Analyzer 24MHz 8CH</h1>
<p>Your order 8123456789099 was placed. Paid: US $7.25</p>
</body></html>
"""

EMPTY_PAGE_HTML = """<!DOCTYPE html>
<html><head><title>Nothing</title></head><body><p>Nothing to see here, move along please.</p></body></html>
"""

MHTML_ORDER_HTML = """<!DOCTYPE html>
<html><head><title>My Orders - AliExpress</title></head><body>
<div class="order-item">
  <div class="order-item-header-status-text">Finished</div>
  <div class="order-item-header-right-info">Order date: Feb 1, 2024 Order ID: 8200000000000001</div>
  <div class="order-item-store-name"><span>Café Electronics</span></div>
  <div class="order-item-content-info-name">
    <a href="https://www.aliexpress.com/item/2001.html"><span title="NE555 Timer IC DIP-8">NE555 Timer IC DIP-8</span></a>
  </div>
  <img src="https://ae01.alicdn.com/kf/S1234abcd.jpg">
  <div class="order-item-content-info-number">
    <div class="es--wrap--m9n0p">US $0.80</div>
    <span class="order-item-content-info-number-quantity">x5</span>
  </div>
  <div class="order-item-content-opt-price-total"><div class="es--wrap--q1r2s">Total: US $4.00</div></div>
</div>
</body></html>
"""


def qp(text: str) -> str:
    return quopri.encodestring(text.encode("utf-8")).decode("ascii")


def b64(data: bytes) -> str:
    return base64.encodebytes(data).decode("ascii")


def build_mhtml(html: str, boundary_header: str = None, images=None) -> str:
    """
    Chrome-style archive: QP HTML part followed by base64 image parts.
    images: list of (content_type, location or None, bytes).
    """
    boundary_header = boundary_header or f'boundary="{BOUNDARY}"'
    lines = [
        "From: <Saved by Blink>",
        "Snapshot-Content-Location: https://www.aliexpress.com/p/order/index.html",
        "Subject: My Orders",
        "MIME-Version: 1.0",
        "Content-Type: multipart/related;",
        '\ttype="text/html";',
        f"\t{boundary_header}",
        "",
        "",
        f"--{BOUNDARY}",
        "Content-Type: text/html",
        "Content-ID: <frame-0@mhtml.blink>",
        "Content-Transfer-Encoding: quoted-printable",
        "Content-Location: https://www.aliexpress.com/p/order/index.html",
        "",
        qp(html),
    ]
    if images is None:
        images = [("image/jpeg", CDN_IMAGE_URL, JPEG_BYTES), ("image/png", None, PNG_BYTES)]
    for ctype, location, data in images:
        lines += [f"--{BOUNDARY}", f"Content-Type: {ctype}", "Content-Transfer-Encoding: base64"]
        if location:
            lines.append(f"Content-Location: {location}")
        lines += ["", b64(data)]
    lines.append(f"--{BOUNDARY}--")
    return "\n".join(lines) + "\n"


class StubFetcher:
    def __init__(self, data=JPEG_BYTES, content_type="image/jpeg"):
        self.data = data
        self.content_type = content_type
        self.calls = []

    def fetch(self, url):
        self.calls.append(url)
        return FetchedImage(data=self.data, content_type=self.content_type)


@pytest.fixture(scope="session", autouse=True)
def registered_parsers():
    bootstrap()


@pytest.fixture
def import_options(tmp_path):
    uploads = tmp_path / "uploads"
    return ImportOptions(
        uploads_root=str(uploads),
        image_dir=str(uploads / "imported-images"),
        download_images=False,
    )


@pytest.fixture
def events():
    return []


@pytest.fixture
def make_context(import_options, events):
    def _make(fetcher=None, url_mapping=None, **overrides):
        options = import_options
        if overrides:
            options = ImportOptions(**dict(vars(import_options), **overrides))
        layout = StorageLayout(options.uploads_root, options.image_dir, options.public_prefix)
        images = ImageResolver(layout, LocalFileStore(), fetcher, url_mapping)
        return ParseContext(options=options, images=images, progress=ProgressReporter(events.append))
    return _make


def soup_of(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")
