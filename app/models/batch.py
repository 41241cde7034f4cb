# app/models/batch.py
from datetime import datetime

from sqlalchemy import Column, DateTime, String, JSON

from app.models.base import Base


class BatchRecord(Base):
    """
    One row per batch.

    `document` holds the full batch (leads included) as the same camelCase
    JSON the API returns; the other columns are copies kept for listing
    and ordering.
    """

    __tablename__ = "batches"

    id = Column(String(64), primary_key=True, index=True)
    name = Column(String(255), nullable=False, default="")
    status = Column(String(32), nullable=False, index=True)

    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    document = Column(JSON, nullable=False, default=dict)
