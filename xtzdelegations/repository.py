"""Storage of delegations in a SQL database."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    exists,
    extract,
    func,
    insert,
    select,
    text,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import URL, Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .errors import DatabaseError, ValidationError
from .model import Delegation

logger = logging.getLogger(__name__)

MIN_YEAR = 2018

METADATA = MetaData()

DELEGATIONS = Table(
    "delegations",
    METADATA,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tzkt_id", BigInteger, nullable=False, unique=True),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("amount", BigInteger, nullable=False),
    Column("delegator", String, nullable=False),
    Column("level", BigInteger, nullable=False),
)


class NoDelegationsError(LookupError):
    """Raised when no delegation matches the requested page and filter."""

    def __init__(self, message: str = "no delegations found") -> None:
        super().__init__(message)


def _to_url(url: str) -> URL:
    """Accept a SQLAlchemy URL or a libpq ``key=value`` connection string."""
    if "://" in url:
        return make_url(url)
    fields: dict[str, str] = {}
    for token in url.split():
        key, sep, value = token.partition("=")
        if not sep:
            raise ValueError(f"invalid connection string element: {token!r}")
        fields[key] = value
    port = fields.get("port")
    query = {"sslmode": fields["sslmode"]} if fields.get("sslmode") else {}
    return URL.create(
        "postgresql",
        username=fields.get("user") or None,
        password=fields.get("password") or None,
        host=fields.get("host") or None,
        port=int(port) if port else None,
        database=fields.get("dbname") or None,
        query=query,
    )


def connect(url: str) -> Engine:
    """Open a pooled engine for ``url`` and check that the database answers.

    Raises DatabaseError when the engine cannot be created or the ping fails.
    """
    try:
        sa_url = _to_url(url)
        if sa_url.get_backend_name() == "sqlite":
            if sa_url.database in (None, "", ":memory:"):
                engine = create_engine(
                    sa_url,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            else:
                engine = create_engine(sa_url)
        else:
            engine = create_engine(
                sa_url,
                pool_size=10,
                max_overflow=15,
                pool_recycle=300,
                pool_pre_ping=True,
            )
    except (SQLAlchemyError, ImportError, ValueError) as exc:
        raise DatabaseError("open", "failed to open db", exc) from exc

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        engine.dispose()
        raise DatabaseError("ping", "failed to ping db", exc) from exc
    return engine


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DelegationRepository:
    """Reads and writes delegations through a SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def _insert_statement(self, conn: Connection) -> Any:
        dialect = conn.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(DELEGATIONS).on_conflict_do_nothing(
                index_elements=["tzkt_id"]
            )
        if dialect == "sqlite":
            return sqlite.insert(DELEGATIONS).on_conflict_do_nothing(
                index_elements=["tzkt_id"]
            )
        return None

    def _insert_one(self, conn: Connection, stmt: Any, params: dict[str, Any]) -> None:
        if stmt is not None:
            conn.execute(stmt, params)
            return
        already = conn.execute(
            select(exists().where(DELEGATIONS.c.tzkt_id == params["tzkt_id"]))
        ).scalar()
        if not already:
            conn.execute(insert(DELEGATIONS), params)

    def insert_delegations(self, delegations: Sequence[Delegation | None]) -> None:
        """Insert delegations in one transaction, skipping known TzKT ids.

        Nothing is stored when any insertion fails.
        """
        if not delegations:
            return

        try:
            conn = self._engine.connect()
        except SQLAlchemyError as exc:
            raise DatabaseError(
                "begin transaction", "failed to begin transaction", exc
            ) from exc

        with conn:
            try:
                trans = conn.begin()
            except SQLAlchemyError as exc:
                raise DatabaseError(
                    "begin transaction", "failed to begin transaction", exc
                ) from exc

            try:
                stmt = self._insert_statement(conn)
                for index, delegation in enumerate(delegations):
                    if delegation is None:
                        raise ValidationError(
                            "delegation", f"delegation at index {index} is None"
                        )
                    params = {
                        "tzkt_id": delegation.tzkt_id,
                        "timestamp": _as_utc(delegation.timestamp),
                        "amount": delegation.amount,
                        "delegator": delegation.delegator,
                        "level": delegation.level,
                    }
                    try:
                        self._insert_one(conn, stmt, params)
                    except SQLAlchemyError as exc:
                        raise DatabaseError(
                            "insert delegation",
                            f"failed to insert delegation at index {index} "
                            f"(TzktID: {delegation.tzkt_id})",
                            exc,
                        ) from exc
            except BaseException as err:
                try:
                    trans.rollback()
                except SQLAlchemyError as rb_exc:
                    raise DatabaseError(
                        "rollback", f"rollback failed after error: {err}", rb_exc
                    ) from err
                raise

            try:
                trans.commit()
            except SQLAlchemyError as exc:
                raise DatabaseError(
                    "commit transaction", "failed to commit transaction", exc
                ) from exc

    def get_latest_tzkt_id(self) -> int:
        """Return the highest stored TzKT id, or 0 when the table is empty."""
        query = select(func.coalesce(func.max(DELEGATIONS.c.tzkt_id), 0))
        try:
            with self._engine.connect() as conn:
                value = conn.execute(query).scalar()
        except SQLAlchemyError as exc:
            raise DatabaseError(
                "query latest TzktID", "failed to get latest TzktID", exc
            ) from exc
        return int(value or 0)

    def list_delegations(
        self, limit: int, offset: int, year: int | None
    ) -> list[Delegation]:
        """Return delegations newest first, optionally limited to one year.

        Raises NoDelegationsError when the page is empty.
        """
        if limit <= 0:
            raise ValidationError("limit", f"must be positive, got {limit}")
        if offset < 0:
            raise ValidationError("offset", f"must be non-negative, got {offset}")

        table = DELEGATIONS.c
        query = select(
            table.id,
            table.timestamp,
            table.amount,
            table.delegator,
            table.level,
            table.tzkt_id,
        )
        if year is not None:
            if year < MIN_YEAR:
                raise ValidationError(
                    "year",
                    f"must be a valid year from {MIN_YEAR} onwards, got {year}",
                )
            query = query.where(extract("year", table.timestamp) == year)
        query = (
            query.order_by(table.timestamp.desc(), table.tzkt_id.desc())
            .limit(limit)
            .offset(offset)
        )

        try:
            with self._engine.connect() as conn:
                rows = conn.execute(query).all()
        except SQLAlchemyError as exc:
            raise DatabaseError(
                "query delegations", "failed to query delegations", exc
            ) from exc

        try:
            result = [
                Delegation(
                    id=row.id,
                    timestamp=_as_utc(row.timestamp),
                    amount=row.amount,
                    delegator=row.delegator,
                    level=row.level,
                    tzkt_id=row.tzkt_id,
                )
                for row in rows
            ]
        except (TypeError, ValueError, AttributeError) as exc:
            raise DatabaseError(
                "scan delegation row", "failed to scan delegation row", exc
            ) from exc

        if not result:
            raise NoDelegationsError()
        return result