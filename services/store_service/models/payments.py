"""Processed payment webhook events."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.store_service.models.enums import PaymentEventOutcome, enum_values
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class PaymentEvent(Base):
    """One row per webhook event id; replays are short-circuited on it."""

    __tablename__ = "store_payment_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, index=True, nullable=True
    )
    payment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    outcome: Mapped[PaymentEventOutcome] = mapped_column(
        SAEnum(
            PaymentEventOutcome,
            values_callable=enum_values,
            name="store_payment_event_outcome_enum",
        ),
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<PaymentEvent {self.event_type} {self.outcome}>"
