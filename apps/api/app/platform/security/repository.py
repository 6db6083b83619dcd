from __future__ import annotations

from typing import Any

from sqlalchemy import ColumnElement, false
from sqlalchemy.sql import Select

from app.platform.security.context import Actor
from app.platform.security.rls import apply_rls_filter, exclude_soft_deleted


class BaseRepository:
    resource = ""
    model: Any = None

    def scope_clause(self, actor: Actor) -> ColumnElement[bool]:
        return false()

    def apply_scope_query(self, query: Select[Any], actor: Actor) -> Select[Any]:
        return apply_rls_filter(query, self.scope_clause(actor))

    def apply_active_query(self, query: Select[Any]) -> Select[Any]:
        return exclude_soft_deleted(query, self.model)

    def scoped(self, query: Select[Any], actor: Actor) -> Select[Any]:
        """Soft-delete exclusion plus the actor's visibility scope."""

        return self.apply_scope_query(self.apply_active_query(query), actor)
