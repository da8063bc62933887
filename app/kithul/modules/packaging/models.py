from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.kithul.models import Base
from app.kithul.utils import utcnow


def _qty():
    return mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)


class PackagingBatchMixin:
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    packaging_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    finished_quantity: Mapped[float | None] = _qty()

    # Treacle is bottled; jaggery is wrapped.
    bottle_quantity: Mapped[float | None] = _qty()
    lid_quantity: Mapped[float | None] = _qty()
    alufoil_quantity: Mapped[float | None] = _qty()
    vacuum_bag_quantity: Mapped[float | None] = _qty()
    parchment_paper_quantity: Mapped[float | None] = _qty()

    bottle_cost: Mapped[float | None] = _qty()
    lid_cost: Mapped[float | None] = _qty()
    alufoil_cost: Mapped[float | None] = _qty()
    vacuum_bag_cost: Mapped[float | None] = _qty()
    parchment_paper_cost: Mapped[float | None] = _qty()

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)


class TreaclePackagingBatch(PackagingBatchMixin, Base):
    __tablename__ = "treacle_packaging_batches"

    processing_batch_id: Mapped[int] = mapped_column(
        ForeignKey("treacle_processing_batches.id", ondelete="CASCADE"), nullable=False, unique=True
    )


class JaggeryPackagingBatch(PackagingBatchMixin, Base):
    __tablename__ = "jaggery_packaging_batches"

    processing_batch_id: Mapped[int] = mapped_column(
        ForeignKey("jaggery_processing_batches.id", ondelete="CASCADE"), nullable=False, unique=True
    )


MATERIAL_FIELDS = (
    "bottle",
    "lid",
    "alufoil",
    "vacuum_bag",
    "parchment_paper",
)
