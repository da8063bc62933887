"""
Profile service layer.
Self-service name/password changes and avatar storage.
"""
from __future__ import annotations

import logging
import os

from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash
from werkzeug.utils import secure_filename

from app.kithul.audit import record_event
from app.kithul.errors import ValidationError
from app.kithul.models import User
from app.kithul.storage import Storage, StorageError
from app.kithul.utils import epoch_millis

logger = logging.getLogger(__name__)

MAX_AVATAR_BYTES = 5 * 1024 * 1024
AVATAR_PREFIX = "profiles/"
UPLOADS_URL_PREFIX = "/uploads/"


def build_avatar_storage_key(user: User, filename: str | None) -> str:
    ext = os.path.splitext(secure_filename(filename or ""))[1].lower() or ".png"
    return f"{AVATAR_PREFIX}user_{user.user_id}-{epoch_millis()}{ext}"


def validate_avatar(data: bytes, mimetype: str | None) -> None:
    if not (mimetype or "").startswith("image/"):
        raise ValidationError("Only image uploads are allowed")
    if len(data) > MAX_AVATAR_BYTES:
        raise ValidationError("Image must be smaller than 5MB")


def _storage_key_for_url(url: str | None) -> str | None:
    if url and url.startswith(UPLOADS_URL_PREFIX + AVATAR_PREFIX):
        return url[len(UPLOADS_URL_PREFIX):]
    return None


def update_profile(
    s: Session,
    user: User,
    *,
    storage: Storage,
    name: str | None = None,
    clear_name: bool = False,
    current_password: str | None = None,
    new_password: str | None = None,
    avatar: tuple[bytes, str | None, str | None] | None = None,
) -> User:
    """
    avatar is (data, filename, mimetype). Validation happens before anything is written.
    """
    if new_password is not None:
        if len(new_password) < 8:
            raise ValidationError("New password must be at least 8 characters long")
        if not current_password:
            raise ValidationError("Current password is required to set a new password")
        if not check_password_hash(user.password_hash, current_password):
            raise ValidationError("Current password is incorrect")
    if avatar is not None:
        validate_avatar(avatar[0], avatar[2])

    changes: list[str] = []
    if clear_name and user.name is not None:
        user.name = None
        changes.append("name")
    elif name is not None and name != user.name:
        user.name = name
        changes.append("name")
    if new_password is not None:
        user.password_hash = generate_password_hash(new_password)
        changes.append("password")
    if avatar is not None:
        data, filename, mimetype = avatar
        key = build_avatar_storage_key(user, filename)
        storage.put_bytes(key, data, content_type=mimetype)
        old_key = _storage_key_for_url(user.profile_image)
        user.profile_image = UPLOADS_URL_PREFIX + key
        changes.append("profile_image")
        if old_key and old_key != key:
            try:
                storage.delete(old_key)
            except (OSError, StorageError) as e:
                logger.warning("Could not delete previous avatar %s: %s", old_key, e)

    if changes:
        record_event(
            s,
            actor=user,
            action="profile.update",
            entity_type="User",
            entity_id=str(user.id),
            metadata={"fields": changes},
        )
    return user
