from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.kithul.models import Base
from app.kithul.utils import utcnow


class FieldCollectionDraft(Base):
    """One collector's field collection for one day. Cans of both products hang off it."""

    __tablename__ = "field_collection_drafts"
    __table_args__ = (
        UniqueConstraint("created_by", "date", name="uq_field_collection_drafts_creator_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    draft_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    collection_date: Mapped[date] = mapped_column("date", Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")  # draft/submitted/completed
    created_by: Mapped[str] = mapped_column(String(40), nullable=False, index=True)  # users.user_id

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)


class CanMixin:
    """Columns shared by the per-product can tables."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    can_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # SAP-######## / TCL-########
    draft_id: Mapped[int] = mapped_column(ForeignKey("field_collection_drafts.id", ondelete="CASCADE"), nullable=False, index=True)
    collection_center_id: Mapped[int] = mapped_column(ForeignKey("collection_centers.id"), nullable=False, index=True)
    product_type: Mapped[str] = mapped_column(String(16), nullable=False)  # sap / treacle
    brix_value: Mapped[float | None] = mapped_column(Numeric(5, 2, asdecimal=False), nullable=True)
    ph_value: Mapped[float | None] = mapped_column(Numeric(4, 2, asdecimal=False), nullable=True)
    quantity: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow, onupdate=utcnow)


class SapCan(CanMixin, Base):
    """Sap cans feed treacle production."""

    __tablename__ = "sap_cans"


class TreacleCan(CanMixin, Base):
    """Treacle cans feed jaggery production."""

    __tablename__ = "treacle_cans"


class CenterCompletion(Base):
    __tablename__ = "field_collection_center_completions"
    __table_args__ = (
        UniqueConstraint("draft_id", "center_id", name="uq_center_completions_draft_center"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    draft_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)  # drafts.draft_id
    center_id: Mapped[str] = mapped_column(String(20), nullable=False)  # collection_centers.center_id
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
