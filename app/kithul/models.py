from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.kithul.utils import utcnow


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)  # login handle
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False)  # one of roles.ROLE_LIST
    profile_image: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Kept generic; production stages refer to their rows through entity_type/entity_id.
    """

    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_login: Mapped[str | None] = mapped_column(String(40), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "auth.login"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "ProcessingBatch"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)  # business id or pk

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.kithul.modules.admin.models import CollectionCenter  # noqa: E402,F401
from app.kithul.modules.field_collection.models import (  # noqa: E402,F401
    CenterCompletion,
    FieldCollectionDraft,
    SapCan,
    TreacleCan,
)
from app.kithul.modules.processing.models import (  # noqa: E402,F401
    JaggeryProcessingBatch,
    JaggeryProcessingBatchCan,
    TreacleProcessingBatch,
    TreacleProcessingBatchCan,
)
from app.kithul.modules.packaging.models import JaggeryPackagingBatch, TreaclePackagingBatch  # noqa: E402,F401
from app.kithul.modules.labeling.models import JaggeryLabelingBatch, TreacleLabelingBatch  # noqa: E402,F401
