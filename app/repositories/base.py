from __future__ import annotations

from typing import Any, Generic, Iterable, Sequence, Set, TypeVar

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import InstrumentedAttribute

T = TypeVar("T")  # SQLAlchemy model class (Declarative)


class BaseRepository(Generic[T]):
    """
    Shared repository for SQLAlchemy 2.x async sessions.
    - Accepts model instances only (no dicts or pydantic objects).
    - Repositories flush; commit/rollback belongs to the calling service.
    """

    def __init__(self, model: type[T]) -> None:
        self.model = model

    # ------------------------ Read ------------------------

    async def get(self, session: AsyncSession, pk: Any) -> T | None:
        return await session.get(self.model, pk)

    async def list(
        self,
        session: AsyncSession,
        *,
        where: dict[str, Any] | None = None,
        order_by: Sequence[InstrumentedAttribute] | None = None,
        limit: int | None = 100,
        offset: int | None = 0,
    ) -> list[T]:
        stmt = select(self.model)
        if where:
            stmt = stmt.filter_by(**where)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        res = await session.execute(stmt)
        return list(res.scalars().all())

    async def count(self, session: AsyncSession, **filters: Any) -> int:
        stmt = select(func.count()).select_from(self.model)
        if filters:
            stmt = stmt.filter_by(**filters)
        res = await session.execute(stmt)
        return int(res.scalar_one())

    async def get_many_by_ids(
        self,
        session: AsyncSession,
        ids: Sequence[Any],
        *,
        chunk_size: int = 1000,
    ) -> list[T]:
        """
        Fetch rows for a list of primary keys.
        - duplicates are dropped, first occurrence wins
        - the IN list is split into chunks of `chunk_size`
        """
        if not ids:
            return []

        pk_cols = sa_inspect(self.model).primary_key
        if len(pk_cols) != 1:
            raise ValueError("get_many_by_ids(): composite primary key is not supported")
        pk_col = pk_cols[0]

        seen = set()
        ids = [x for x in ids if not (x in seen or seen.add(x))]

        rows: list[T] = []
        for i in range(0, len(ids), chunk_size):
            chunk = ids[i : i + chunk_size]
            res = await session.execute(select(self.model).where(pk_col.in_(chunk)))
            rows.extend(res.scalars().all())

        return rows

    # ------------------------ Write ------------------------

    async def create(self, session: AsyncSession, obj: T) -> T:
        """Insert a new (transient) instance and flush so defaults are populated."""
        state = sa_inspect(obj)
        if not state.transient:
            raise ValueError("create(): expected a transient (new) SQLAlchemy model instance")
        session.add(obj)
        await session.flush()
        return obj

    async def update_entity(
        self,
        session: AsyncSession,
        pk: Any,
        values: dict[str, Any],
        *,
        fields: Set[str] | None = None,
    ) -> T | None:
        """
        Apply `values` to the row with primary key `pk`.
        Only keys in `fields` are written when given; primary key columns never are.
        Returns None when the row does not exist.
        """
        current = await session.get(self.model, pk)
        if current is None:
            return None

        mapper = sa_inspect(self.model)
        pk_names = {c.key for c in mapper.primary_key}
        target_fields = set(values) if fields is None else set(values) & set(fields)
        target_fields.difference_update(pk_names)

        for name in target_fields:
            setattr(current, name, values[name])

        await session.flush()
        return current

    async def bulk_create(self, session: AsyncSession, models: Iterable[T]) -> int:
        items = list(models)
        if not items:
            return 0
        for m in items:
            if not sa_inspect(m).transient:
                raise ValueError("bulk_create(): all models must be transient (new)")
        session.add_all(items)
        await session.flush()
        return len(items)

    async def delete(self, session: AsyncSession, pk: Any) -> bool:
        """Delete by primary key; True when a row was removed."""
        pk_cols = sa_inspect(self.model).primary_key
        if len(pk_cols) != 1:
            raise ValueError("delete(): composite primary key is not supported")
        pk_col = pk_cols[0]
        res = await session.execute(sa_delete(self.model).where(pk_col == pk))
        return (res.rowcount or 0) > 0

    async def delete_many(self, session: AsyncSession, ids: Sequence[Any]) -> int:
        if not ids:
            return 0
        pk_col = sa_inspect(self.model).primary_key[0]
        res = await session.execute(sa_delete(self.model).where(pk_col.in_(list(ids))))
        return int(res.rowcount or 0)
