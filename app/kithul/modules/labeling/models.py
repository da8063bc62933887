from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.kithul.models import Base
from app.kithul.utils import utcnow


def _qty():
    return mapped_column(Numeric(12, 2, asdecimal=False), nullable=True)


class LabelingBatchMixin:
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    labeling_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    sticker_quantity: Mapped[float | None] = _qty()
    shrink_sleeve_quantity: Mapped[float | None] = _qty()  # treacle only
    neck_tag_quantity: Mapped[float | None] = _qty()  # treacle only
    corrugated_carton_quantity: Mapped[float | None] = _qty()

    sticker_cost: Mapped[float | None] = _qty()
    shrink_sleeve_cost: Mapped[float | None] = _qty()
    neck_tag_cost: Mapped[float | None] = _qty()
    corrugated_carton_cost: Mapped[float | None] = _qty()

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)


class TreacleLabelingBatch(LabelingBatchMixin, Base):
    __tablename__ = "treacle_labeling_batches"

    packaging_batch_id: Mapped[int] = mapped_column(
        ForeignKey("treacle_packaging_batches.id", ondelete="CASCADE"), nullable=False, unique=True
    )


class JaggeryLabelingBatch(LabelingBatchMixin, Base):
    __tablename__ = "jaggery_labeling_batches"

    packaging_batch_id: Mapped[int] = mapped_column(
        ForeignKey("jaggery_packaging_batches.id", ondelete="CASCADE"), nullable=False, unique=True
    )


ACCESSORY_FIELDS = (
    "sticker",
    "shrink_sleeve",
    "neck_tag",
    "corrugated_carton",
)
