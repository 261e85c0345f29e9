"""SQLAlchemy-backed storage for the gateway.

The backend is the only code that talks to the database. It maps each
collection name onto a Flask-SQLAlchemy model and a Marshmallow schema,
so rows leave this module as plain dicts and patches are validated by
the same schemas the HTTP layer uses.

Exceptions raised here are the raw SQLAlchemy/Marshmallow ones; the
gateway is responsible for classifying them. Every write commits on
success and rolls the session back on failure so a rejected write never
leaves the session half-applied.

Methods are coroutines so the gateway can await any backend the same
way. This one performs its work synchronously inside the coroutine and
needs an active application context.
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

from ..db import db
from ..schemas import (
    AgencySchema,
    AgencyServiceSchema,
    AgencyPhotoSchema,
    ReviewSchema,
    ReviewResponseSchema,
)


class UnknownCollectionError(LookupError):
    """Raised when a collection name has no model behind it."""


class SqlAlchemyBackend:
    """Collection-oriented CRUD over the Flask-SQLAlchemy models."""

    schemas = {
        schema.Meta.model.__tablename__: schema
        for schema in (
            AgencySchema,
            AgencyServiceSchema,
            AgencyPhotoSchema,
            ReviewSchema,
            ReviewResponseSchema,
        )
    }

    def _schema(self, collection: str, **kwargs):
        try:
            return self.schemas[collection](**kwargs)
        except KeyError:
            raise UnknownCollectionError(f"Unknown collection: {collection}") from None

    def _query(self, collection: str, filters: Optional[Mapping[str, Any]]):
        model = self._schema(collection).Meta.model
        query = model.query
        for column_name, value in (filters or {}).items():
            column = getattr(model, column_name)
            if isinstance(value, (list, tuple, set, frozenset)):
                query = query.filter(column.in_(list(value)))
            else:
                query = query.filter(column == value)
        return model, query

    async def select(
        self,
        collection: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict]:
        model, query = self._query(collection, filters)
        if order_by:
            column = getattr(model, order_by)
            query = query.order_by(column.desc() if descending else column.asc())
        query = query.order_by(model.id.asc())
        return self._schema(collection, many=True).dump(query.all())

    async def insert(self, collection: str, values: Mapping[str, Any]) -> dict:
        schema = self._schema(collection)
        try:
            instance = schema.load(dict(values), session=db.session)
            db.session.add(instance)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return schema.dump(instance)

    async def update(
        self, collection: str, filters: Mapping[str, Any], patch: Mapping[str, Any]
    ) -> int:
        """Apply ``patch`` to every row matching ``filters``; return the row count."""
        schema = self._schema(collection)
        _, query = self._query(collection, filters)
        try:
            rows = query.all()
            for row in rows:
                schema.load(dict(patch), instance=row, partial=True, session=db.session)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return len(rows)

    async def delete(self, collection: str, filters: Mapping[str, Any]) -> int:
        _, query = self._query(collection, filters)
        try:
            rows: Iterable = query.all()
            count = 0
            for row in rows:
                db.session.delete(row)
                count += 1
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return count
