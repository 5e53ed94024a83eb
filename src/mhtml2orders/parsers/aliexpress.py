from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from .base import ParseContext, SiteParser
from .rules import Rule, dynamic_price, first_match, search, select, text_of
from .status import DEFAULT_STATUS, canonicalize_status
from ..classifier import classify_component
from ..errors import DocumentFormatError, NO_ORDERS_FOUND
from ..progress import item_snapshot
from ..types import ParsedOrder, ParsedOrderItem
from ..utils import generate_order_id, normalize_ws, now_iso, parse_date, parse_price, parse_quantity

log = logging.getLogger(__name__)

SITE_URL = "https://www.aliexpress.com"
CDN_DOMAIN = "alicdn.com"
UNKNOWN_PRODUCT = "Unknown Product"
PLACEHOLDER_TITLE = "Imported AliExpress Item"

# Most specific first; the first selector with any match is used alone.
ORDER_CONTAINER_SELECTORS = (
    "div.order-item",
    '[data-spm*="order"]',
    ".order-list-item",
    ".order-item-wrap",
    ".order-item-container",
    ".order-card-wrap",
    ".list-item",
    ".item-wrap",
    ".order-wrap",
    ".buyerOrderList-item",
    ".order-item",
    ".order-card",
    ".order-container",
    "[data-order-number]",
    ".order-detail-item",
    ".comet-table-row",
    ".order-info",
    '[class*="order"]',
    '[class*="Order"]',
    ".item[data-spm]",
    ".list > .item",
    ".content > .item",
)

# Item containers when the whole page is treated as one order
DOCUMENT_ITEM_SELECTOR = ".order-item-content-body, .item-container, .product-item"

ORDER_ID_RE = re.compile(r"Order ID:\s*(\d+)")
ORDER_DATE_RE = re.compile(r"Order date:\s*([A-Z][a-z]{2,8}\.?\s+\d{1,2},\s+\d{4})")
ORDER_DATE_NUMERIC_RE = re.compile(r"Order date:\s*(\d{1,2}/\d{1,2}/\d{2,4}|\d{4}-\d{1,2}-\d{1,2})")
PAGE_ORDER_NUMBER_RE = re.compile(r"(?:Order|订单)[\s#:]*(\d{10,})", re.IGNORECASE)
TEXT_ORDER_NUMBER_RE = re.compile(r"order.*?(\d{10,})", re.IGNORECASE)
LONG_NUMBER_RE = re.compile(r"\d{10,}")
DOLLAR_PRICE_RE = re.compile(r"\$\s*[\d.,]+")
TOTAL_TEXT_RE = re.compile(r"Total:\s*(?:[A-Z]{2,3}\s*)?\$?\s*[\d.,]+")
UNIT_PRICE_TEXT_RE = re.compile(r"(?:[A-Z]{2,3}\s*)?\$\s*[\d.,]+")
QUANTITY_X_RE = re.compile(r"[x×]\s*(\d+)", re.IGNORECASE)
QUANTITY_TEXT_RE = re.compile(r"(?:Qty|Quantity)\s*[:.]?\s*(\d+)|×\s*(\d+)|\bx\s+(\d+)", re.IGNORECASE)
BG_ENTITY_RE = re.compile(r"url\(&quot;([^&]+)&quot;\)")
BG_URL_RE = re.compile(r"background-image:\s*url\([\"']?([^\"')]+)[\"']?\)")
CDN_SIZE_RES = (
    (re.compile(r"_\d+x\d+\."), "_{size}x{size}."),
    (re.compile(r"\.jpg_\d+x\d+"), ".jpg_{size}x{size}"),
    (re.compile(r"\.png_\d+x\d+"), ".png_{size}x{size}"),
)

IMAGE_ATTRS = ("src", "data-src", "data-lazy-src", "data-original", "data-img", "data-url")
REJECTED_IMAGE_MARKERS = ("placeholder", "loading", "data:image")


def _all_text(scope: Tag, selector: str) -> str:
    return normalize_ws(" ".join(el.get_text(" ") for el in scope.select(selector)))


def _attr(selector: str, attr: str) -> Rule[str]:
    return Rule(f"{selector}@{attr}", select(selector), lambda el: (el.get(attr) or "").strip() or None)


def _title_attr_or_text(el: Tag) -> Optional[str]:
    return (el.get("title") or "").strip() or text_of(el)


TITLE_RULES: List[Rule[str]] = [
    Rule("title-attribute", select(".order-item-content-info-name span[title]"), _title_attr_or_text),
    Rule("item-link", select('a[href*="item"]'), text_of),
    Rule("title-class", select(".item-title, .product-title, .product-name"), text_of),
    _attr("img[alt]", "alt"),
]

SELLER_RULES: List[Rule[str]] = [
    Rule("store-name", select(".order-item-store-name span"), text_of),
    Rule("seller-class", select(".seller-name, .store-name, .shop-name"), text_of),
    Rule("store-link", select('a[href*="store"]'), text_of),
]

PRODUCT_URL_RULES: List[Rule[str]] = [
    _attr('a[href*="item"]', "href"),
    _attr(".order-item-content-info-name a", "href"),
    _attr("a[href]", "href"),
]


def _quantity_from_x(el: Tag) -> Optional[int]:
    m = QUANTITY_X_RE.search(el.get_text(" "))
    return max(int(m.group(1)), 1) if m else None


def _quantity_from_field(el: Tag) -> Optional[int]:
    raw = el.get("data-quantity") or el.get_text(" ")
    return parse_quantity(raw) if re.search(r"\d", raw or "") else None


def _quantity_from_text(m: re.Match) -> int:
    digits = next(g for g in m.groups() if g)
    return max(int(digits), 1)


QUANTITY_RULES: List[Rule[int]] = [
    Rule("quantity-x", select(".order-item-content-info-number-quantity"), _quantity_from_x),
    Rule("quantity-class", select(".quantity, .qty, [data-quantity]"), _quantity_from_field),
    Rule("quantity-text", search(QUANTITY_TEXT_RE), _quantity_from_text),
]


def reconcile_total(unit_price: float, quantity: int, extracted_total: float, title: str = "") -> float:
    """
    An extracted total always wins over unit x quantity; a mismatch is
    logged as a probable discount. Only a missing total is computed.
    """
    if unit_price > 0 and quantity > 0:
        calculated = round(unit_price * quantity, 2)
        if extracted_total > 0:
            if abs(calculated - extracted_total) > 0.01:
                log.info(
                    "Price discrepancy for '%s': unit %.2f x %s = %.2f, but total %.2f (possible discount)",
                    title[:50], unit_price, quantity, calculated, extracted_total,
                )
            return extracted_total
        return calculated
    return extracted_total


def absolute_url(url: str, public_prefix: str = "/uploads") -> str:
    if url.startswith("//"):
        return "https:" + url
    if url.startswith(public_prefix.rstrip("/") + "/"):
        return url
    if url.startswith("/"):
        return SITE_URL + url
    return url


def upsize_cdn_image(url: str, size: int = 800) -> str:
    if CDN_DOMAIN not in url:
        return url
    for pattern, repl in CDN_SIZE_RES:
        url = pattern.sub(repl.format(size=size), url, count=1)
    return url


def background_image_url(style: str) -> Optional[str]:
    if not style:
        return None
    m = BG_ENTITY_RE.search(style) or BG_URL_RE.search(style)
    return m.group(1).strip() if m else None


def _usable_image(url: Optional[str]) -> bool:
    if not url or len(url) < 10:
        return False
    return not any(marker in url for marker in REJECTED_IMAGE_MARKERS)


def extract_image_url(scope: Tag, public_prefix: str = "/uploads", cdn_size: int = 800) -> Optional[str]:
    container = scope.select_one(".order-item-content-img")
    if container is not None:
        bg = background_image_url(container.get("style", ""))
        if _usable_image(bg):
            return absolute_url(bg, public_prefix)

    img = scope.select_one(f'img[src*="{CDN_DOMAIN}"]') or scope.select_one("img")
    if img is None:
        return None
    url = next((img.get(a).strip() for a in IMAGE_ATTRS if (img.get(a) or "").strip()), None)
    if not _usable_image(url):
        return None
    return upsize_cdn_image(absolute_url(url, public_prefix), cdn_size)


def extract_specifications(scope: Tag) -> Dict[str, str]:
    specs: Dict[str, str] = {}
    for el in scope.select(".spec-item, .property-item, .attribute"):
        label = text_of(el.select_one(".spec-label, .property-name"))
        value = text_of(el.select_one(".spec-value, .property-value"))
        if label and value:
            specs[label] = value
    variation = _all_text(scope, ".sku-property, .variation")
    if variation:
        specs["Variation"] = variation
    return specs


class AliExpressParser(SiteParser):
    """
    AliExpress order-history pages (list view and single-order view),
    saved as HTML or as an MHTML archive.

    Each order-list container holds one product; quantities live in an
    "x<N>" badge and prices sit under hashed class names
    (es--wrap--<hash>), so prices go through dynamic_price tiers.
    """

    site_key = "aliexpress"
    display_name = "AliExpress (order history)"
    source_name = "AliExpress"
    site_url = SITE_URL
    order_id_prefix = "AE"

    def __init__(self, container_selectors: Sequence[str] = ORDER_CONTAINER_SELECTORS):
        self.container_selectors = tuple(container_selectors)

    def can_parse(self, soup: BeautifulSoup) -> bool:
        title = soup.title.get_text() if soup.title else ""
        body = soup.body.get_text(" ") if soup.body else soup.get_text(" ")
        return "aliexpress" in title.lower() or "aliexpress" in body.lower()

    # -- orders ---------------------------------------------------------

    def parse(self, soup: BeautifulSoup, ctx: ParseContext) -> List[ParsedOrder]:
        progress = ctx.progress
        self._report_candidate_classes(soup, ctx)

        containers = self.find_order_containers(soup, ctx)
        orders: List[ParsedOrder] = []

        if containers:
            total = len(containers)
            progress.report("orders", f"Processing {total} order containers...", orders_found=total)
            for idx, container in enumerate(containers, start=1):
                progress.report("orders", f"Processing order {idx} of {total}",
                                orders_found=total, current_order=idx)
                order = self.parse_order_container(container, ctx)
                if order is None:
                    progress.report("orders", f"Skipped order {idx} (no usable item)",
                                    orders_found=len(orders), current_order=idx)
                    continue
                orders.append(order)
                progress.report("orders", f"Parsed order: {order.order_number}",
                                orders_found=len(orders), current_order=idx)
        else:
            progress.report("orders", "No order containers found, trying single order parsing...")
            order = self.parse_single_order_page(soup, ctx)
            if order is None:
                progress.report("parsing", "Failed single order parsing, trying text extraction...")
                order = self.basic_order_from_text(soup, ctx)
            if order is not None:
                orders.append(order)
                progress.report("orders", f"Found single order: {order.order_number}",
                                orders_found=1, current_order=1)

        progress.report("complete", f"Parsing complete! Found {len(orders)} orders", orders_found=len(orders))
        if not orders:
            raise DocumentFormatError(
                NO_ORDERS_FOUND,
                "No valid AliExpress orders found in the HTML file. "
                "Please ensure you saved the correct AliExpress order page.",
            )
        return orders

    def _report_candidate_classes(self, soup: BeautifulSoup, ctx: ParseContext) -> None:
        seen: List[str] = []
        for el in soup.select("[class]"):
            for cls in el.get("class", []):
                lo = cls.lower()
                if cls not in seen and ("order" in lo or "item" in lo or "list" in lo):
                    seen.append(cls)
        more = "..." if len(seen) > 10 else ""
        ctx.progress.report("parsing", f"Found potential order-related classes: {', '.join(seen[:10])}{more}")

    def find_order_containers(self, soup: BeautifulSoup, ctx: ParseContext) -> List[Tag]:
        selectors = list(ctx.options.extra_container_selectors) + list(self.container_selectors)
        ctx.progress.report("parsing", "Searching for order containers...")
        for selector in selectors:
            found = soup.select(selector)
            ctx.progress.report("parsing", f'Checking "{selector}": found {len(found)} elements')
            if found:
                return found
        return []

    def parse_order_container(self, container: Tag, ctx: ParseContext) -> Optional[ParsedOrder]:
        text = container.get_text(" ")

        order_number = self._container_order_number(container, text)
        order_date = self._container_order_date(container, text)

        status_el = container.select_one(".order-item-header-status-text")
        status = canonicalize_status(status_el.get_text(" ")) if status_el is not None else DEFAULT_STATUS

        seller_name = first_match(SELLER_RULES, container)

        item = self.parse_item_container(container, ctx)
        if item is None:
            return None
        items = [item]

        total_amount = dynamic_price(container.select_one(".order-item-content-opt-price-total"), TOTAL_TEXT_RE) or 0.0
        if total_amount == 0:
            total_amount = round(sum(it.total_price for it in items), 2)
        if total_amount == 0:
            generic = _all_text(container, ".total-amount, .order-total, .price, .total-price")
            m = TOTAL_TEXT_RE.search(text)
            total_amount = parse_price(generic) or (parse_price(m.group(0)) if m else 0.0)

        log.info("Parsed AliExpress order %s from %s", order_number, seller_name or self.source_name)
        return ParsedOrder(
            order_number=order_number,
            order_date=order_date,
            total_amount=total_amount,
            supplier=seller_name or self.source_name,
            seller_name=seller_name,
            status=status,
            items=items,
        )

    def _container_order_number(self, container: Tag, text: str) -> str:
        m = ORDER_ID_RE.search(text)
        if m:
            return m.group(1)
        for attr in ("data-order-id", "data-order-number"):
            if container.get(attr):
                return container[attr].strip()
            el = container.select_one(f"[{attr}]")
            if el is not None and el.get(attr, "").strip():
                return el[attr].strip()
        log.debug("No order number in container, synthesizing one")
        return generate_order_id(self.order_id_prefix)

    def _container_order_date(self, container: Tag, text: str) -> str:
        for pattern in (ORDER_DATE_RE, ORDER_DATE_NUMERIC_RE):
            m = pattern.search(text)
            if m:
                parsed = parse_date(m.group(1).replace(".", ""))
                if parsed:
                    return parsed
        parsed = parse_date(_all_text(container, ".order-date, .date, .order-time"))
        if parsed:
            return parsed
        log.debug("No order date in container, using now()")
        return now_iso()

    # -- items ----------------------------------------------------------

    def parse_item_container(self, container: Tag, ctx: ParseContext) -> Optional[ParsedOrderItem]:
        title = first_match(TITLE_RULES, container) or UNKNOWN_PRODUCT
        if title == UNKNOWN_PRODUCT:
            ctx.progress.report("items", "Failed to extract product from order container (no title)")
            return None

        quantity = first_match(QUANTITY_RULES, container) or 1

        text = container.get_text(" ")
        unit_price = self._unit_price(container, text)

        total_scope = container.select_one(".order-item-content-opt-price-total")
        extracted_total = dynamic_price(total_scope, TOTAL_TEXT_RE) if total_scope is not None else None
        total_price = reconcile_total(unit_price, quantity, extracted_total or 0.0, title)

        item = ParsedOrderItem(
            product_title=title,
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
            image_url=extract_image_url(container, ctx.options.public_prefix, ctx.options.cdn_image_size),
            product_url=self._product_url(container, ctx),
            seller_name=first_match(SELLER_RULES, container),
            specifications=extract_specifications(container),
        )
        self._finish_item(item, ctx, processed=1, total=1)
        return item

    def _unit_price(self, container: Tag, text: str) -> float:
        """
        Price block tiers first, then the generic price classes, and only
        then the first "$" amount anywhere in the container.
        """
        unit_scope = container.select_one(".order-item-content-info-number")
        if unit_scope is not None:
            price = dynamic_price(unit_scope, UNIT_PRICE_TEXT_RE, text=unit_scope.get_text(" "))
            if price is not None:
                return price
        labelled = text_of(container.select_one(".unit-price, .item-price, .price"))
        if labelled:
            return parse_price(labelled)
        m = UNIT_PRICE_TEXT_RE.search(text)
        return parse_price(m.group(0)) if m else 0.0

    def _product_url(self, scope: Tag, ctx: ParseContext) -> Optional[str]:
        url = first_match(PRODUCT_URL_RULES, scope)
        return absolute_url(url, ctx.options.public_prefix) if url else None

    def _finish_item(self, item: ParsedOrderItem, ctx: ParseContext, processed: int, total: int) -> None:
        """Resolve the image to a stored file, classify, report."""
        progress = ctx.progress
        short = item.product_title[:40]
        if item.image_url:
            local = ctx.images.local_reference(item.image_url)
            if local:
                progress.report("images", f"Using embedded image: {local}", processed_items=processed, total_items=total)
            elif ctx.options.download_images:
                progress.report("images", f"Downloading external image for: {short}...",
                                processed_items=processed, total_items=total)
                local = ctx.images.download(item.image_url, item.product_title)
                if local:
                    progress.report("images", f"Downloaded image: {local}")
                else:
                    progress.report("images", f"Failed to download image from: {item.image_url}")
            if local:
                item.local_image_path = local
                item.image_url = None
        else:
            progress.report("images", f"No image URL found for: {short}")

        item.parsed_component = classify_component(item.product_title, item.specifications, self.source_name)
        progress.report("items", f"Processed: {item.product_title[:50]}",
                        processed_items=processed, total_items=total, current_item=item_snapshot(item))

    # -- whole-page fallbacks -------------------------------------------

    def parse_document_items(self, soup: BeautifulSoup, ctx: ParseContext) -> List[ParsedOrderItem]:
        elements = soup.select(DOCUMENT_ITEM_SELECTOR)
        total = len(elements)
        ctx.progress.report("items", f"Found {total} products using document item selectors")

        items: List[ParsedOrderItem] = []
        for idx, el in enumerate(elements, start=1):
            title = text_of(el.select_one(".product-title, .item-title, .product-name, h3, h4"))
            if not title:
                ctx.progress.report("items", f"Skipping item {idx} (no title)", processed_items=idx, total_items=total)
                continue
            quantity = parse_quantity(_all_text(el, ".quantity, .qty, [data-quantity]"))
            unit_price = parse_price(text_of(el.select_one(".unit-price, .price, .item-price")) or "")
            extracted_total = parse_price(_all_text(el, ".total-price, .item-total"))
            container = el.find_parent(class_="order-item")
            seller = first_match(SELLER_RULES, el) or (first_match(SELLER_RULES, container) if container else None)
            item = ParsedOrderItem(
                product_title=title,
                quantity=quantity,
                unit_price=unit_price,
                total_price=reconcile_total(unit_price, quantity, extracted_total, title),
                image_url=extract_image_url(el, ctx.options.public_prefix, ctx.options.cdn_image_size),
                product_url=self._product_url(el, ctx),
                seller_name=seller,
                specifications=extract_specifications(el),
            )
            self._finish_item(item, ctx, processed=idx, total=total)
            items.append(item)
        return items

    def _page_order_number(self, soup: BeautifulSoup) -> Optional[str]:
        for selector in ("[data-order-number]", ".order-number", ".order-id", "#order-number"):
            el = soup.select_one(selector)
            if el is None:
                continue
            m = LONG_NUMBER_RE.search(el.get("data-order-number") or el.get_text(" "))
            if m:
                return m.group(0)
        m = PAGE_ORDER_NUMBER_RE.search(normalize_ws(soup.get_text(" ")))
        return m.group(1) if m else None

    def _page_order_date(self, soup: BeautifulSoup) -> Optional[str]:
        for selector in (".order-date", ".date-created", ".order-time", "[data-order-date]"):
            el = soup.select_one(selector)
            if el is None:
                continue
            parsed = parse_date(el.get("data-order-date") or el.get_text(" "))
            if parsed:
                return parsed
        return None

    def _page_total(self, soup: BeautifulSoup) -> float:
        for selector in (".order-total", ".total-amount", ".grand-total", ".final-price"):
            amount = parse_price(_all_text(soup, selector))
            if amount > 0:
                return amount
        return 0.0

    def _page_supplier(self, soup: BeautifulSoup) -> Optional[str]:
        for selector in (".store-name", ".seller-name", ".shop-name", ".supplier-name"):
            name = text_of(soup.select_one(selector))
            if name:
                return name
        return None

    def _page_status(self, soup: BeautifulSoup) -> str:
        for selector in (".order-item-header-status-text", ".order-status", ".status", ".delivery-status"):
            text = text_of(soup.select_one(selector))
            if text:
                return canonicalize_status(text)
        return DEFAULT_STATUS

    def parse_single_order_page(self, soup: BeautifulSoup, ctx: ParseContext) -> Optional[ParsedOrder]:
        items = self.parse_document_items(soup, ctx)
        if not items:
            return None
        total_amount = self._page_total(soup) or round(sum(it.total_price for it in items), 2)
        supplier = self._page_supplier(soup)
        return ParsedOrder(
            order_number=self._page_order_number(soup) or generate_order_id(self.order_id_prefix),
            order_date=self._page_order_date(soup) or now_iso(),
            total_amount=total_amount,
            supplier=supplier or self.source_name,
            seller_name=supplier,
            status=self._page_status(soup),
            items=items,
        )

    def basic_order_from_text(self, soup: BeautifulSoup, ctx: ParseContext) -> Optional[ParsedOrder]:
        page_text = normalize_ws((soup.body or soup).get_text(" "))
        number_match = TEXT_ORDER_NUMBER_RE.search(page_text)
        price_match = DOLLAR_PRICE_RE.search(page_text)
        if not (number_match or price_match):
            return None

        ctx.progress.report("parsing", "Found potential order data in page text")
        total_amount = self._page_total(soup) or (parse_price(price_match.group(0)) if price_match else 0.0)
        order_number = (
            self._page_order_number(soup)
            or (number_match.group(1) if number_match else None)
            or generate_order_id(self.order_id_prefix)
        )
        title = text_of(soup.select_one("h1")) or PLACEHOLDER_TITLE
        item = ParsedOrderItem(
            product_title=title,
            quantity=1,
            unit_price=total_amount,
            total_price=total_amount,
            parsed_component=classify_component(title, None, self.source_name),
        )
        return ParsedOrder(
            order_number=order_number,
            order_date=self._page_order_date(soup) or now_iso(),
            total_amount=total_amount,
            supplier=self.source_name,
            status=DEFAULT_STATUS,
            items=[item],
        )


def create() -> AliExpressParser:
    return AliExpressParser()
