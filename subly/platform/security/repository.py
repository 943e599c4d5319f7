from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import false
from sqlalchemy.sql import Select

from subly.platform.security.context import AuthContext
from subly.platform.security.errors import AuthorizationError


def _owner_uuid(ctx: AuthContext) -> uuid.UUID | None:
    try:
        return uuid.UUID(ctx.user_id)
    except ValueError:
        return None


class BaseRepository:
    """Owner scoping for models exposing ``owner_column``; staff roles bypass it."""

    resource = ""
    owner_column = "user_id"

    def apply_scope_query(self, query: Select[Any], ctx: AuthContext) -> Select[Any]:
        if ctx.is_staff:
            return query

        owner_id = _owner_uuid(ctx)
        for description in query.column_descriptions:
            model = description.get("entity")
            if model is None or not hasattr(model, self.owner_column):
                continue
            if owner_id is None:
                return query.where(false())
            query = query.where(getattr(model, self.owner_column) == owner_id)
        return query

    def validate_owner(self, owner_id: uuid.UUID, ctx: AuthContext) -> None:
        if ctx.is_staff:
            return
        if _owner_uuid(ctx) != owner_id:
            raise AuthorizationError(self.resource, ctx.user_id)
