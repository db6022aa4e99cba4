"""Shared Pydantic serializers used across DTOs/entities."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import field_serializer


class DatetimeSerializerMixin:
    """Serialize the lifecycle timestamps of a payment consistently.

    Uses `check_fields=False` so models that only declare some of the
    timestamps can still use the mixin.
    """

    @field_serializer("created_at", check_fields=False)
    def serialize_created_at(self, value: datetime) -> str:
        return value.isoformat()

    @field_serializer("updated_at", "completed_at", "failed_at", check_fields=False)
    def serialize_optional_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None


class CommonSerializersMixin(DatetimeSerializerMixin):
    """Adds a plain-string rendering of decimal `amount` fields."""

    @field_serializer("amount", check_fields=False)
    def serialize_amount(self, value: Decimal) -> str:
        return str(value)
