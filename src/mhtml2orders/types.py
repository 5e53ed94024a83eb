from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Optional, Dict, List

ORDER_STATUSES = ("pending", "ordered", "shipped", "delivered", "cancelled")

PROGRESS_STAGES = ("parsing", "orders", "items", "images", "complete")


def _drop_empty(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None and v != {}}


@dataclass
class ImportRequest:
    input_path: str
    site_key: str = "aliexpress"
    json_output_path: Optional[str] = None
    xlsx_output_path: Optional[str] = None
    template_xlsx_path: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MHTMLPart:
    headers: Dict[str, str]
    content: str
    content_type: str
    encoding: Optional[str] = None


@dataclass
class EmbeddedImage:
    url: str
    data: bytes
    content_type: str
    filename: str


@dataclass
class ParsedDocument:
    html_content: str
    images: List[EmbeddedImage] = field(default_factory=list)


@dataclass(frozen=True)
class VoltageRating:
    unit: str = "V"
    min: Optional[float] = None
    max: Optional[float] = None
    nominal: Optional[float] = None


@dataclass(frozen=True)
class CurrentRating:
    value: float
    unit: str


@dataclass(frozen=True)
class ResistanceValue:
    value: float
    unit: str = "Ω"
    tolerance: Optional[str] = None


@dataclass(frozen=True)
class CapacitanceValue:
    value: float
    unit: str = "pF"
    voltage: Optional[int] = None


@dataclass(frozen=True)
class FrequencyValue:
    value: float
    unit: str


@dataclass(frozen=True)
class ParsedComponent:
    name: str
    category: str
    tags: List[str] = field(default_factory=list)
    protocols: List[str] = field(default_factory=list)
    subcategory: Optional[str] = None
    part_number: Optional[str] = None
    manufacturer: Optional[str] = None
    description: Optional[str] = None
    package_type: Optional[str] = None
    voltage: Optional[VoltageRating] = None
    current: Optional[CurrentRating] = None
    resistance: Optional[ResistanceValue] = None
    capacitance: Optional[CapacitanceValue] = None
    frequency: Optional[FrequencyValue] = None
    pin_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        def rating(r):
            return _drop_empty(vars(r)) if r is not None else None

        return _drop_empty({
            "name": self.name,
            "category": self.category,
            "subcategory": self.subcategory,
            "partNumber": self.part_number,
            "manufacturer": self.manufacturer,
            "description": self.description,
            "tags": list(self.tags),
            "packageType": self.package_type,
            "voltage": rating(self.voltage),
            "current": rating(self.current),
            "resistance": rating(self.resistance),
            "capacitance": rating(self.capacitance),
            "frequency": rating(self.frequency),
            "pinCount": self.pin_count,
            "protocols": list(self.protocols),
        })


@dataclass
class ParsedOrderItem:
    product_title: str
    quantity: int = 1
    unit_price: float = 0.0
    total_price: float = 0.0
    image_url: Optional[str] = None
    local_image_path: Optional[str] = None
    product_url: Optional[str] = None
    seller_name: Optional[str] = None
    specifications: Dict[str, str] = field(default_factory=dict)
    parsed_component: Optional[ParsedComponent] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_empty({
            "productTitle": self.product_title,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "totalPrice": self.total_price,
            "imageUrl": self.image_url,
            "localImagePath": self.local_image_path,
            "productUrl": self.product_url,
            "sellerName": self.seller_name,
            "specifications": dict(self.specifications),
            "parsedComponent": self.parsed_component.to_dict() if self.parsed_component else None,
        })


@dataclass
class ParsedOrder:
    order_number: str
    order_date: str
    total_amount: float
    supplier: str
    status: str = "ordered"
    seller_name: Optional[str] = None
    items: List[ParsedOrderItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_empty({
            "orderNumber": self.order_number,
            "orderDate": self.order_date,
            "totalAmount": self.total_amount,
            "supplier": self.supplier,
            "sellerName": self.seller_name,
            "status": self.status,
            "items": [it.to_dict() for it in self.items],
        })


@dataclass
class ProgressEvent:
    stage: str
    message: str
    orders_found: Optional[int] = None
    current_order: Optional[int] = None
    total_items: Optional[int] = None
    processed_items: Optional[int] = None
    current_item: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_empty({
            "stage": self.stage,
            "message": self.message,
            "ordersFound": self.orders_found,
            "currentOrder": self.current_order,
            "totalItems": self.total_items,
            "processedItems": self.processed_items,
            "currentItem": self.current_item,
        })


@dataclass
class ImportStatistics:
    total_orders: int
    total_items: int
    total_value: float
    suppliers: List[str]
    earliest: Optional[str] = None
    latest: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalOrders": self.total_orders,
            "totalItems": self.total_items,
            "totalValue": self.total_value,
            "suppliers": list(self.suppliers),
            "dateRange": {"earliest": self.earliest, "latest": self.latest},
        }


@dataclass
class ImportResult:
    orders: List[ParsedOrder]
    statistics: ImportStatistics
    warnings: List[str] = field(default_factory=list)
