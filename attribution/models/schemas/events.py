"""
Canonical event shapes.

Every ingestion path (token postbacks, the legacy generic postback, first-party
tracking calls) produces exactly one of these; the attribution resolver and the
commission engine only ever see this union.
"""
from __future__ import annotations

import hashlib
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

from attribution.utils.time import ensure_aware

from ..db.enums import EventKind, EventSource


def build_idempotency_key(offer_id: int, kind: EventKind, external_reference: str) -> str:
    """Deterministic natural key: sha256 over offer, event kind and upstream reference."""
    material = f"{offer_id}:{kind.value}:{external_reference}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class _EventBase(BaseModel):
    offer_id: int = Field(gt=0)
    # No upper bound: an over-long code is simply an unknown link (404).
    subid: str = Field(min_length=1, description="Affiliate link code")
    occurred_at: datetime
    source: EventSource = EventSource.POSTBACK
    click_id: Optional[int] = Field(None, gt=0)

    model_config = ConfigDict(frozen=True)

    @property
    def external_reference(self) -> Optional[str]:  # pragma: no cover - overridden
        raise NotImplementedError

    @computed_field  # type: ignore[misc]
    @property
    def idempotency_key(self) -> Optional[str]:
        reference = self.external_reference
        if reference is None:
            return None
        return build_idempotency_key(self.offer_id, EventKind(self.kind), reference)  # type: ignore[attr-defined]


class ClickEvent(_EventBase):
    kind: Literal[EventKind.CLICK] = EventKind.CLICK
    external_customer_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    external_click_id: Optional[str] = Field(None, max_length=255)

    @property
    def external_reference(self) -> Optional[str]:
        return self.external_click_id


class RegistrationEvent(_EventBase):
    kind: Literal[EventKind.REGISTRATION] = EventKind.REGISTRATION
    external_customer_id: str = Field(min_length=1, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    amount: Optional[Decimal] = None
    currency: Optional[str] = None

    @property
    def external_reference(self) -> str:
        return self.external_customer_id


class DepositEvent(_EventBase):
    kind: Literal[EventKind.DEPOSIT] = EventKind.DEPOSIT
    external_customer_id: str = Field(min_length=1, max_length=255)
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    external_event_id: Optional[str] = Field(None, max_length=255)

    @property
    def external_reference(self) -> str:
        if self.external_event_id:
            return f"event:{self.external_event_id}"
        # Parsed instant, so seconds, millis and ISO forms of one time agree.
        epoch_ms = int(ensure_aware(self.occurred_at).timestamp() * 1000)
        return f"{self.external_customer_id}:{self.amount:.2f}:{epoch_ms}"


CanonicalEvent = Annotated[
    Union[ClickEvent, RegistrationEvent, DepositEvent],
    Field(discriminator="kind"),
]

__all__ = [
    "build_idempotency_key",
    "ClickEvent",
    "RegistrationEvent",
    "DepositEvent",
    "CanonicalEvent",
]
