from __future__ import annotations

BOUNDARY_NOT_FOUND = "BoundaryNotFound"
NO_HTML_PART = "NoHtmlPart"
HTML_TOO_SHORT = "HtmlTooShort"
NO_ORDERS_FOUND = "NoOrdersFound"
INVALID_INPUT = "InvalidInput"


class DocumentFormatError(Exception):
    """
    Fatal: the document cannot yield any importable order.
    No partial result accompanies this error.
    """

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason


class ImageError(Exception):
    """Decode, fetch or validation failure for a single image."""
