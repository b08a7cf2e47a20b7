"""Repository-style helpers shared by the stores.

Association writes are single conditional statements: attach relies on the
link table's composite primary key, detach on the affected row count of one
DELETE, and sync replaces the whole set inside one transaction. List queries
take an optional ``"field:order"`` sort and a case-insensitive substring filter.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Sequence
from typing import Any, TypeVar

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, col, select
from sqlmodel.sql.expression import SelectOfScalar

from rbac_console.services.errors import (
    BulkDeleteResult,
    ConflictError,
    InvalidQueryError,
    NotFoundError,
    PartialNotFoundError,
)

ModelT = TypeVar("ModelT", bound=SQLModel)

SORT_DIRECTIONS = {"asc", "desc"}


def unique_ids(ids: Iterable[int]) -> list[int]:
    return list(dict.fromkeys(ids))


def resolve_id_set(
    session: Session,
    model: type[ModelT],
    ids: Iterable[int],
    *,
    plural: str,
) -> list[ModelT]:
    requested = unique_ids(ids)
    rows: list[ModelT] = []
    if requested:
        statement = select(model).where(col(model.id).in_(requested)).order_by(col(model.id))  # type: ignore[attr-defined]
        rows = list(session.exec(statement).all())
    if not rows:
        raise NotFoundError(f"{plural} not found")
    if len(rows) < len(requested):
        raise PartialNotFoundError(f"some {plural} not found")
    return rows


def delete_by_ids(session: Session, model: type[SQLModel], ids: Iterable[int]) -> BulkDeleteResult:
    requested = unique_ids(ids)
    affected = 0
    if requested:
        result = session.execute(sa.delete(model).where(col(model.id).in_(requested)))  # type: ignore[attr-defined]
        affected = int(getattr(result, "rowcount", 0) or 0)
        session.commit()
    return BulkDeleteResult(requested_count=len(requested), affected_count=affected)


def attach_links(session: Session, links: Sequence[SQLModel], *, conflict_message: str) -> None:
    session.add_all(links)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError(conflict_message) from exc


def detach_links(
    session: Session,
    link_model: type[SQLModel],
    *,
    owner_column: Any,
    owner_id: int,
    target_column: Any,
    target_ids: Sequence[int],
    missing_message: str,
) -> int:
    statement = (
        sa.delete(link_model)
        .where(owner_column == owner_id)
        .where(target_column.in_(list(target_ids)))
    )
    result = session.execute(statement)
    removed = int(getattr(result, "rowcount", 0) or 0)
    # Held targets are removed; only a request that matches none is rejected.
    if removed == 0:
        session.rollback()
        raise NotFoundError(missing_message)
    session.commit()
    return removed


def replace_links(
    session: Session,
    link_model: type[SQLModel],
    *,
    owner_column: Any,
    owner_id: int,
    links: Sequence[SQLModel],
) -> None:
    session.execute(sa.delete(link_model).where(owner_column == owner_id))
    session.add_all(links)
    session.commit()


def apply_list_options(
    statement: SelectOfScalar[ModelT],
    model: type[ModelT],
    *,
    sort: str | None,
    filter_text: str | None,
    filter_fields: Sequence[str],
    sortable: Collection[str],
    default_order: Sequence[str],
) -> SelectOfScalar[ModelT]:
    if filter_text:
        pattern = f"%{filter_text}%"
        statement = statement.where(sa.or_(*[col(getattr(model, name)).ilike(pattern) for name in filter_fields]))
    if sort:
        field_name, _, direction = sort.partition(":")
        direction = (direction or "asc").lower()
        if field_name not in sortable or direction not in SORT_DIRECTIONS:
            raise InvalidQueryError(f"cannot sort by {sort}")
        column = col(getattr(model, field_name))
        statement = statement.order_by(column.desc() if direction == "desc" else column.asc())
    return statement.order_by(*[col(getattr(model, name)) for name in default_order])
