"""
Booking message model.

Append-only log of messages exchanged between a patient and a provider about
one booking, read back in creation order.
"""

from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Text, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class BookingMessage(Base):
    """A single message in a booking's conversation."""

    __tablename__ = "booking_messages"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the message."""

    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    """Booking the message belongs to."""

    sender_id: Mapped[str] = mapped_column(String(255), nullable=False)
    """Identity of the patient or provider user who sent it."""

    body: Mapped[str] = mapped_column(Text, nullable=False)
    """Message text."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the message was sent."""

    # Relationships
    booking = relationship("Booking", back_populates="messages")

    __table_args__ = (
        Index("idx_booking_messages_booking_created", "booking_id", "created_at"),
    )
