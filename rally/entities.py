# rally/entities.py
#
# Inbound update queue used in webhook mode. Rallies themselves are never
# stored: the chat message is their only record.

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, BigInteger, Column, DateTime, Index, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueMessage(Base):
    __tablename__ = "queue_messages"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    sender_id = Column(String, nullable=False)      # "tg::<chat_id>"
    receiver_id = Column(String, nullable=False)    # worker QUEUE_RECEIVER_ID
    type = Column(String, nullable=False)
    update_id = Column(BigInteger, nullable=False)  # Telegram update order
    payload = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_queue_messages_receiver_update", "receiver_id", "update_id"),
    )
