"""Typed failures raised by the attribution pipeline.

Each carries the HTTP status the API layer should surface, a machine-readable
reason string for houses, and whether redelivery could ever succeed.
"""
from __future__ import annotations


class AttributionError(Exception):
    status_code: int = 400
    retriable: bool = False

    def __init__(self, reason: str, message: str | None = None):
        self.reason = reason
        self.message = message or reason.replace("_", " ")
        super().__init__(self.message)

    def to_detail(self) -> dict[str, object]:
        return {"reason": self.reason, "message": self.message, "retriable": self.retriable}


class OfferNotFound(AttributionError):
    """Unknown or inactive postback token. Both look identical to the caller."""
    status_code = 404

    def __init__(self) -> None:
        super().__init__("offer_not_found", "Unknown postback endpoint")


class InvalidPostback(AttributionError):
    status_code = 400


class UnattributableEvent(AttributionError):
    status_code = 404


class TransientStorageError(AttributionError):
    status_code = 503
    retriable = True

    def __init__(self, message: str = "Storage temporarily unavailable") -> None:
        super().__init__("storage_unavailable", message)


__all__ = [
    "AttributionError",
    "OfferNotFound",
    "InvalidPostback",
    "UnattributableEvent",
    "TransientStorageError",
]
