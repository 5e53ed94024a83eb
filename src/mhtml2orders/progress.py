from __future__ import annotations
import logging
from typing import Any, Callable, Dict, Optional

from .types import PROGRESS_STAGES, ParsedOrderItem, ProgressEvent

log = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


def item_snapshot(item: ParsedOrderItem) -> Dict[str, Any]:
    snap: Dict[str, Any] = {
        "productTitle": item.product_title,
        "unitPrice": item.unit_price,
        "quantity": item.quantity,
    }
    if item.image_url:
        snap["imageUrl"] = item.image_url
    if item.local_image_path:
        snap["localImagePath"] = item.local_image_path
    if item.parsed_component is not None:
        snap["parsedComponent"] = item.parsed_component.to_dict()
    return snap


class ProgressReporter:
    """
    Ordered, synchronous side channel. Every event is logged; the callback,
    when given, receives it right away. Callback failures are logged and
    never change parsing results.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback

    def report(self, stage: str, message: str, **extra: Any) -> None:
        if stage not in PROGRESS_STAGES:
            raise ValueError(f"Unknown progress stage: {stage}")
        log.info("[%s] %s", stage.upper(), message)
        if self.callback is None:
            return
        event = ProgressEvent(stage=stage, message=message, **extra)
        try:
            self.callback(event)
        except Exception:
            log.exception("Progress callback failed for stage %s", stage)
