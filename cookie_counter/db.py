"""
Database abstraction for the cookie tallies.

Three implementations share the ``DbClient`` protocol: an in-memory store for
development and tests, a SQLAlchemy store (Postgres in production, SQLite in
tests) and a MongoDB store matching the original document layout.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Protocol

from pymongo import MongoClient
from pymongo.errors import PyMongoError
from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    String,
    create_engine,
    select,
    update,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from cookie_counter.errors import StoreError
from cookie_counter.types import LogPolicy

TOTAL_ROW_ID = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TypeCountRecord:
    type: str
    count: int = 0

    def as_dict(self) -> dict:
        return {"type": self.type, "count": self.count}


@dataclass
class ContributionRecord:
    city: str
    state: str
    country: str
    cookie_type: str
    cookies: int
    timestamp: datetime = field(default_factory=_utcnow)
    photo: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def location_key(self) -> tuple[str, str, str, str]:
        return (self.city, self.state, self.country, self.cookie_type)

    def as_dict(self) -> dict:
        return {
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "cookieType": self.cookie_type,
            "cookies": self.cookies,
            "timestamp": self.timestamp,
            "photo": self.photo,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


class DbClient(Protocol):
    """Interface for database access."""

    def ensure_total(self) -> None:
        ...

    def get_total(self) -> int:
        ...

    def list_type_counts(self) -> list[TypeCountRecord]:
        ...

    def list_contributions(self) -> list[ContributionRecord]:
        ...

    def record_contribution(
        self, contribution: ContributionRecord, policy: LogPolicy
    ) -> None:
        """Add to the total, upsert the type count and record the log row."""
        ...


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.total: Optional[int] = None
        self.types: Dict[str, TypeCountRecord] = {}
        self.logs: List[ContributionRecord] = []
        self.aggregated: Dict[str, ContributionRecord] = {}
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.total = None
            self.types.clear()
            self.logs.clear()
            self.aggregated.clear()

    def ensure_total(self) -> None:
        with self._lock:
            if self.total is None:
                self.total = 0

    def get_total(self) -> int:
        with self._lock:
            return self.total or 0

    def list_type_counts(self) -> list[TypeCountRecord]:
        with self._lock:
            return [replace(record) for record in self.types.values()]

    def list_contributions(self) -> list[ContributionRecord]:
        with self._lock:
            return [replace(record) for record in self.logs]

    def record_contribution(
        self, contribution: ContributionRecord, policy: LogPolicy
    ) -> None:
        amount = contribution.cookies
        with self._lock:
            self.total = (self.total or 0) + amount

            record = self.types.get(contribution.cookie_type)
            if record is None:
                self.types[contribution.cookie_type] = TypeCountRecord(
                    type=contribution.cookie_type, count=amount
                )
            else:
                record.count += amount

            if policy == LogPolicy.AGGREGATE:
                key = aggregate_key(contribution)
                existing = self.aggregated.get(key)
                if existing is not None:
                    _merge_into(existing, contribution)
                    return
                row = replace(contribution)
                self.aggregated[key] = row
                self.logs.append(row)
            else:
                self.logs.append(replace(contribution))


def aggregate_key(contribution: ContributionRecord) -> str:
    return "\x1f".join(contribution.location_key)


def _merge_into(existing: ContributionRecord, incoming: ContributionRecord) -> None:
    existing.cookies += incoming.cookies
    existing.timestamp = incoming.timestamp
    if incoming.photo is not None:
        existing.photo = incoming.photo
    if incoming.latitude is not None:
        existing.latitude = incoming.latitude
        existing.longitude = incoming.longitude


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    The three writes of a contribution share one transaction, and both counters
    are incremented in place so concurrent writers cannot lose updates.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # A single shared connection keeps the in-memory database alive
            # across the threads FastAPI dispatches requests on.
            engine_kwargs.update(
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        try:
            with self.Session.begin() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def ensure_total(self) -> None:
        try:
            with self._transaction() as session:
                if session.get(TotalRow, TOTAL_ROW_ID) is None:
                    session.add(TotalRow(id=TOTAL_ROW_ID, total=0))
        except StoreError as exc:
            # Another process created the row first.
            if not isinstance(exc.__cause__, IntegrityError):
                raise

    def get_total(self) -> int:
        with self._transaction() as session:
            row = session.get(TotalRow, TOTAL_ROW_ID)
            return row.total if row else 0

    def list_type_counts(self) -> list[TypeCountRecord]:
        with self._transaction() as session:
            rows = session.execute(select(TypeCountRow)).scalars().all()
            return [TypeCountRecord(type=row.type, count=row.count) for row in rows]

    def list_contributions(self) -> list[ContributionRecord]:
        with self._transaction() as session:
            rows = session.execute(select(ContributionRow)).scalars().all()
            return [self._to_contribution(row) for row in rows]

    def record_contribution(
        self, contribution: ContributionRecord, policy: LogPolicy
    ) -> None:
        amount = contribution.cookies
        with self._transaction() as session:
            result = session.execute(
                update(TotalRow)
                .where(TotalRow.id == TOTAL_ROW_ID)
                .values(total=TotalRow.total + amount)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                session.add(TotalRow(id=TOTAL_ROW_ID, total=amount))

            self._upsert_type(session, contribution.cookie_type, amount)

            if policy == LogPolicy.AGGREGATE:
                self._upsert_log(session, contribution)
            else:
                session.add(self._to_row(contribution))

    def _upsert_type(self, session: Session, cookie_type: str, amount: int) -> None:
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            result = session.execute(
                update(TypeCountRow)
                .where(TypeCountRow.type == cookie_type)
                .values(count=TypeCountRow.count + amount)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                session.add(TypeCountRow(type=cookie_type, count=amount))
            return

        stmt = insert(TypeCountRow).values(type=cookie_type, count=amount)
        stmt = stmt.on_conflict_do_update(
            index_elements=[TypeCountRow.type],
            set_={"count": TypeCountRow.count + stmt.excluded["count"]},
        )
        session.execute(stmt)

    def _upsert_log(self, session: Session, contribution: ContributionRecord) -> None:
        # Only aggregated rows carry a key, so append-policy rows for the same
        # location are never folded into them.
        key = aggregate_key(contribution)
        values = {
            "cookies": ContributionRow.cookies + contribution.cookies,
            "timestamp": contribution.timestamp,
        }
        if contribution.photo is not None:
            values["photo"] = contribution.photo
        if contribution.latitude is not None:
            values["latitude"] = contribution.latitude
            values["longitude"] = contribution.longitude

        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            result = session.execute(
                update(ContributionRow)
                .where(ContributionRow.aggregate_key == key)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                session.add(self._to_row(contribution, aggregate_key=key))
            return

        row = self._to_row(contribution, aggregate_key=key)
        columns = ContributionRow.__table__.columns
        stmt = insert(ContributionRow).values(
            {column.key: getattr(row, column.key) for column in columns}
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ContributionRow.aggregate_key], set_=values
        )
        session.execute(stmt)

    def _to_row(
        self, contribution: ContributionRecord, aggregate_key: Optional[str] = None
    ) -> "ContributionRow":
        return ContributionRow(
            id=uuid.uuid4().hex,
            aggregate_key=aggregate_key,
            city=contribution.city,
            state=contribution.state,
            country=contribution.country,
            cookie_type=contribution.cookie_type,
            cookies=contribution.cookies,
            timestamp=contribution.timestamp,
            photo=contribution.photo,
            latitude=contribution.latitude,
            longitude=contribution.longitude,
        )

    def _to_contribution(self, row: "ContributionRow") -> ContributionRecord:
        timestamp = row.timestamp
        # SQLite drops tzinfo on the way back out.
        if timestamp is not None and timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return ContributionRecord(
            city=row.city,
            state=row.state,
            country=row.country,
            cookie_type=row.cookie_type,
            cookies=row.cookies,
            timestamp=timestamp,
            photo=row.photo,
            latitude=row.latitude,
            longitude=row.longitude,
        )


class MongoDbClient:
    """
    MongoDB implementation using the collection names of the original service.

    Counters are updated with ``$inc`` upserts. MongoDB offers no
    cross-collection transaction on a standalone server, so a failure midway
    through ``record_contribution`` can leave the three collections out of step.
    """

    def __init__(self, uri: str, db_name: str = "cookiecounter", client=None):
        self.client = client or MongoClient(uri)
        self.db = self.client[db_name]
        self.totals = self.db["cookies"]
        self.types = self.db["cookietypes"]
        self.logs = self.db["cookielogs"]

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except PyMongoError as exc:
            raise StoreError(str(exc)) from exc

    def ensure_total(self) -> None:
        with self._guard():
            self.types.create_index("type", unique=True)
            self.logs.create_index(
                "aggregateKey",
                unique=True,
                partialFilterExpression={"aggregateKey": {"$exists": True}},
            )
            self.totals.update_one({}, {"$setOnInsert": {"total": 0}}, upsert=True)

    def get_total(self) -> int:
        with self._guard():
            doc = self.totals.find_one()
        return int(doc.get("total", 0)) if doc else 0

    def list_type_counts(self) -> list[TypeCountRecord]:
        with self._guard():
            docs = list(self.types.find({}))
        return [
            TypeCountRecord(type=doc["type"], count=int(doc.get("count", 0)))
            for doc in docs
        ]

    def list_contributions(self) -> list[ContributionRecord]:
        with self._guard():
            docs = list(self.logs.find({}))
        return [self._to_contribution(doc) for doc in docs]

    def record_contribution(
        self, contribution: ContributionRecord, policy: LogPolicy
    ) -> None:
        amount = contribution.cookies
        with self._guard():
            self.totals.update_one({}, {"$inc": {"total": amount}}, upsert=True)
            self.types.update_one(
                {"type": contribution.cookie_type},
                {"$inc": {"count": amount}},
                upsert=True,
            )
            if policy == LogPolicy.AGGREGATE:
                to_set = {"timestamp": contribution.timestamp}
                if contribution.photo is not None:
                    to_set["photo"] = contribution.photo
                if contribution.latitude is not None:
                    to_set["latitude"] = contribution.latitude
                    to_set["longitude"] = contribution.longitude
                on_insert = contribution.as_dict()
                for name in ("cookies", *to_set):
                    on_insert.pop(name, None)
                self.logs.update_one(
                    {"aggregateKey": aggregate_key(contribution)},
                    {
                        "$inc": {"cookies": amount},
                        "$set": to_set,
                        "$setOnInsert": on_insert,
                    },
                    upsert=True,
                )
            else:
                self.logs.insert_one(contribution.as_dict())

    def _to_contribution(self, doc: dict) -> ContributionRecord:
        timestamp = doc.get("timestamp")
        if isinstance(timestamp, datetime) and timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return ContributionRecord(
            city=doc.get("city", ""),
            state=doc.get("state", ""),
            country=doc.get("country", ""),
            cookie_type=doc.get("cookieType", ""),
            cookies=int(doc.get("cookies", 0)),
            timestamp=timestamp or _utcnow(),
            photo=doc.get("photo"),
            latitude=doc.get("latitude"),
            longitude=doc.get("longitude"),
        )


Base = declarative_base()


class TotalRow(Base):
    __tablename__ = "cookie_totals"

    id = Column(Integer, primary_key=True)
    total = Column(Integer, nullable=False, default=0)


class TypeCountRow(Base):
    __tablename__ = "cookie_types"

    type = Column(String, primary_key=True)
    count = Column(Integer, nullable=False, default=0)


class ContributionRow(Base):
    __tablename__ = "cookie_logs"

    id = Column(String, primary_key=True)
    # Set only on rows written under the aggregate policy.
    aggregate_key = Column(String, nullable=True, unique=True)
    city = Column(String, nullable=False)
    state = Column(String, nullable=False)
    country = Column(String, nullable=False)
    cookie_type = Column(String, nullable=False, index=True)
    cookies = Column(Integer, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    photo = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
