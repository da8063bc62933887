from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.kithul.models import Base
from app.kithul.utils import utcnow


class ProcessingBatchMixin:
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    batch_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    batch_number: Mapped[str] = mapped_column(String(16), nullable=False)  # "01", "02", ... per table
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    product_type: Mapped[str] = mapped_column(String(16), nullable=False)  # treacle / jaggery
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="in-progress")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_sap_output: Mapped[float | None] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    gas_used_kg: Mapped[float | None] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)
    created_by: Mapped[str] = mapped_column(String(40), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)


class TreacleProcessingBatch(ProcessingBatchMixin, Base):
    __tablename__ = "treacle_processing_batches"


class JaggeryProcessingBatch(ProcessingBatchMixin, Base):
    __tablename__ = "jaggery_processing_batches"


# A can belongs to at most one processing batch (unique can_id).
class TreacleProcessingBatchCan(Base):
    __tablename__ = "treacle_processing_batch_cans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    processing_batch_id: Mapped[int] = mapped_column(
        ForeignKey("treacle_processing_batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    can_id: Mapped[int] = mapped_column(ForeignKey("sap_cans.id", ondelete="CASCADE"), nullable=False, unique=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


class JaggeryProcessingBatchCan(Base):
    __tablename__ = "jaggery_processing_batch_cans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    processing_batch_id: Mapped[int] = mapped_column(
        ForeignKey("jaggery_processing_batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    can_id: Mapped[int] = mapped_column(ForeignKey("treacle_cans.id", ondelete="CASCADE"), nullable=False, unique=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
