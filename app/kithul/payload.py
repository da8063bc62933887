"""
Request payload parsing.

``Fields`` wraps a JSON body (or form) and collects per-field problems so a
single 400 can report all of them.
"""
from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date
from typing import Any

from app.kithul.errors import ValidationError
from app.kithul.utils import parse_date

_MISSING = object()


class Fields:
    def __init__(self, data: Mapping[str, Any] | None):
        self.errors: dict[str, str] = {}
        if data is not None and not isinstance(data, Mapping):
            # A JSON array or scalar body.
            self.errors["_body"] = "must be a JSON object"
            data = None
        self.data = data or {}

    def has(self, key: str) -> bool:
        return key in self.data and self.data[key] is not None

    def _raw(self, key: str, required: bool):
        if not self.has(key):
            if required:
                self.errors[key] = "is required"
            return _MISSING
        return self.data[key]

    def string(
        self,
        key: str,
        *,
        required: bool = False,
        min_len: int = 0,
        max_len: int | None = None,
        pattern: re.Pattern[str] | None = None,
        blank_as_none: bool = False,
    ) -> str | None:
        raw = self._raw(key, required)
        if raw is _MISSING:
            return None
        if not isinstance(raw, str):
            self.errors[key] = "must be a string"
            return None
        value = raw.strip()
        if blank_as_none and not value and not required:
            return None
        if len(value) < min_len or (max_len is not None and len(value) > max_len):
            if max_len is None:
                self.errors[key] = f"must be at least {min_len} characters"
            elif min_len:
                self.errors[key] = f"must be {min_len}-{max_len} characters"
            else:
                self.errors[key] = f"must be at most {max_len} characters"
            return None
        if pattern is not None and not pattern.fullmatch(value):
            self.errors[key] = "has an invalid format"
            return None
        return value

    def number(
        self,
        key: str,
        *,
        required: bool = False,
        minimum: float | None = None,
        maximum: float | None = None,
        positive: bool = False,
    ) -> float | None:
        raw = self._raw(key, required)
        if raw is _MISSING:
            return None
        if isinstance(raw, bool):
            self.errors[key] = "must be a number"
            return None
        try:
            value = float(raw)
        except (TypeError, ValueError):
            self.errors[key] = "must be a number"
            return None
        if value != value or value in (float("inf"), float("-inf")):
            self.errors[key] = "must be a number"
            return None
        if positive and value <= 0:
            self.errors[key] = "must be greater than 0"
            return None
        if minimum is not None and value < minimum:
            self.errors[key] = f"must be >= {minimum:g}"
            return None
        if maximum is not None and value > maximum:
            self.errors[key] = f"must be <= {maximum:g}"
            return None
        return value

    def boolean(self, key: str, *, required: bool = False) -> bool | None:
        raw = self._raw(key, required)
        if raw is _MISSING:
            return None
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str) and raw.strip().lower() in ("true", "false", "1", "0"):
            return raw.strip().lower() in ("true", "1")
        self.errors[key] = "must be a boolean"
        return None

    def date(self, key: str, *, required: bool = False) -> date | None:
        raw = self._raw(key, required)
        if raw is _MISSING:
            return None
        value = parse_date(raw) if isinstance(raw, str) else None
        if value is None:
            self.errors[key] = "must be a date (YYYY-MM-DD)"
        return value

    def choice(self, key: str, choices, *, required: bool = False) -> str | None:
        raw = self._raw(key, required)
        if raw is _MISSING:
            return None
        if not isinstance(raw, str) or raw.strip() not in choices:
            self.errors[key] = f"must be one of: {', '.join(sorted(choices))}"
            return None
        return raw.strip()

    def check(self, message: str = "Invalid payload") -> None:
        if self.errors:
            raise ValidationError(message, details=dict(self.errors))
