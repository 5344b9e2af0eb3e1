from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    not_,
    select,
)
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from backend.app.models import (
    ApplicationRecord,
    PaymentRecord,
    PaymentStatus,
    ShareKind,
    ShareRecord,
    utc_now,
)


def _normalize_database_url(database_url: str) -> str:
    value = database_url.strip()
    if value.startswith("sqlite:///"):
        sqlite_path = value[len("sqlite:///") :].split("?", 1)[0]
        if sqlite_path and sqlite_path != ":memory:":
            path = Path(sqlite_path)
            if path.parent:
                path.parent.mkdir(parents=True, exist_ok=True)
        return value
    if "://" in value:
        return value
    path = Path(value)
    if path.parent:
        path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{str(path).replace(chr(92), '/')}"


class SqlPersistence:
    """
    Record store for shares, payments and applications.

    Every mutating method runs in one transaction. State transitions are written as
    conditional SQL (insert-if-absent followed by a guarded UPDATE), so concurrent
    callers in other processes sharing the database converge as well.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = _normalize_database_url(database_url)
        self._lock = Lock()
        self.engine: Engine = create_engine(
            self.database_url,
            future=True,
            pool_pre_ping=True,
        )
        self.metadata = MetaData()
        self.shares = Table(
            "shares",
            self.metadata,
            Column("phone", String(32), primary_key=True),
            Column("friend_shares", Integer, nullable=False),
            Column("group_shares", Integer, nullable=False),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self.payments = Table(
            "payments",
            self.metadata,
            Column("reference", String(64), primary_key=True),
            Column("phone", String(32), nullable=False, index=True),
            Column("email", String(255), nullable=True),
            Column("amount", Float, nullable=False),
            Column("upgrade", Boolean, nullable=False),
            Column("status", String(20), nullable=False),
            Column("verified_at_utc", DateTime, nullable=True),
            Column("created_at_utc", DateTime, nullable=False),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self.applications = Table(
            "applications",
            self.metadata,
            Column("phone", String(32), primary_key=True),
            Column("fields_json", Text, nullable=False),
            Column("upgraded", Boolean, nullable=False),
            Column("created_at_utc", DateTime, nullable=False),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.metadata.create_all(self.engine)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    def get_shares(self, phone: str) -> Optional[ShareRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(select(self.shares).where(self.shares.c.phone == phone)).first()
        if not row:
            return None
        return self._share_from_row(row)

    def increment_share(self, phone: str, kind: ShareKind, cap: int) -> ShareRecord:
        column = (
            self.shares.c.friend_shares if kind == ShareKind.friend else self.shares.c.group_shares
        )
        with self._lock:
            now = utc_now()
            with self.engine.begin() as conn:
                self._insert_if_absent(
                    conn,
                    self.shares,
                    key_column=self.shares.c.phone,
                    values={
                        "phone": phone,
                        "friend_shares": 0,
                        "group_shares": 0,
                        "updated_at_utc": now,
                    },
                )
                conn.execute(
                    self.shares.update()
                    .where(self.shares.c.phone == phone)
                    .values(
                        {
                            column.name: case((column + 1 > cap, cap), else_=column + 1),
                            "updated_at_utc": now,
                        }
                    )
                )
                row = conn.execute(
                    select(self.shares).where(self.shares.c.phone == phone)
                ).one()
        return self._share_from_row(row)

    def upsert_payment(self, record: PaymentRecord) -> None:
        with self._lock:
            payload = {
                "phone": record.phone,
                "email": record.email,
                "amount": record.amount,
                "upgrade": record.upgrade,
                "status": record.status.value,
                "verified_at_utc": record.verified_at_utc,
                "created_at_utc": record.created_at_utc,
                "updated_at_utc": record.updated_at_utc,
            }
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(self.payments.c.reference).where(
                        self.payments.c.reference == record.reference
                    )
                ).first()
                if existing:
                    conn.execute(
                        self.payments.update()
                        .where(self.payments.c.reference == record.reference)
                        .values(**payload)
                    )
                else:
                    conn.execute(
                        self.payments.insert().values(reference=record.reference, **payload)
                    )

    def get_payment(self, reference: str) -> Optional[PaymentRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(self.payments).where(self.payments.c.reference == reference)
            ).first()
        if not row:
            return None
        return self._payment_from_row(row)

    def has_successful_payment(self, phone: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(self.payments.c.reference)
                .where(self.payments.c.phone == phone)
                .where(self.payments.c.status == PaymentStatus.success.value)
                .limit(1)
            ).first()
        return row is not None

    def mark_payment_success(
        self,
        *,
        reference: str,
        phone: str,
        amount: float,
        upgrade: bool,
        verified_at_utc: datetime,
    ) -> tuple[PaymentRecord, bool]:
        """
        Move a payment to success unless it already reached a terminal state.

        A missing reference is created from the given values; an existing one keeps its
        phone, amount and upgrade flag. Returns the stored record and whether this call
        performed the pending -> success transition.
        """
        with self._lock:
            now = utc_now()
            with self.engine.begin() as conn:
                self._insert_if_absent(
                    conn,
                    self.payments,
                    key_column=self.payments.c.reference,
                    values={
                        "reference": reference,
                        "phone": phone,
                        "email": None,
                        "amount": amount,
                        "upgrade": upgrade,
                        "status": PaymentStatus.pending.value,
                        "verified_at_utc": None,
                        "created_at_utc": now,
                        "updated_at_utc": now,
                    },
                )
                result = conn.execute(
                    self.payments.update()
                    .where(self.payments.c.reference == reference)
                    .where(self.payments.c.status == PaymentStatus.pending.value)
                    .values(
                        status=PaymentStatus.success.value,
                        verified_at_utc=verified_at_utc,
                        updated_at_utc=now,
                    )
                )
                transitioned = result.rowcount == 1
                row = conn.execute(
                    select(self.payments).where(self.payments.c.reference == reference)
                ).one()
        return self._payment_from_row(row), transitioned

    def get_application(self, phone: str) -> Optional[ApplicationRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(self.applications).where(self.applications.c.phone == phone)
            ).first()
        if not row:
            return None
        return self._application_from_row(row)

    def upsert_application(self, phone: str, fields: dict[str, Any]) -> ApplicationRecord:
        serialized = json.dumps(fields)
        with self._lock:
            now = utc_now()
            with self.engine.begin() as conn:
                self._insert_if_absent(
                    conn,
                    self.applications,
                    key_column=self.applications.c.phone,
                    values={
                        "phone": phone,
                        "fields_json": serialized,
                        "upgraded": False,
                        "created_at_utc": now,
                        "updated_at_utc": now,
                    },
                )
                # upgraded is left untouched on resubmission
                conn.execute(
                    self.applications.update()
                    .where(self.applications.c.phone == phone)
                    .values(fields_json=serialized, updated_at_utc=now)
                )
                row = conn.execute(
                    select(self.applications).where(self.applications.c.phone == phone)
                ).one()
        return self._application_from_row(row)

    def mark_application_upgraded(self, phone: str) -> bool:
        with self._lock:
            with self.engine.begin() as conn:
                result = conn.execute(
                    self.applications.update()
                    .where(self.applications.c.phone == phone)
                    .where(not_(self.applications.c.upgraded))
                    .values(upgraded=True, updated_at_utc=utc_now())
                )
        return result.rowcount == 1

    def _insert_if_absent(
        self,
        conn: Connection,
        table: Table,
        *,
        key_column: Column,
        values: dict[str, Any],
    ) -> None:
        dialect = self.engine.dialect.name
        if dialect == "sqlite":
            conn.execute(sqlite_insert(table).values(**values).on_conflict_do_nothing())
            return
        if dialect == "postgresql":
            conn.execute(postgresql_insert(table).values(**values).on_conflict_do_nothing())
            return
        existing = conn.execute(
            select(key_column).where(key_column == values[key_column.name])
        ).first()
        if not existing:
            conn.execute(table.insert().values(**values))

    @staticmethod
    def _share_from_row(row: Any) -> ShareRecord:
        return ShareRecord(
            phone=row.phone,
            friends=row.friend_shares,
            groups=row.group_shares,
            updated_at_utc=row.updated_at_utc,
        )

    @staticmethod
    def _payment_from_row(row: Any) -> PaymentRecord:
        return PaymentRecord(
            reference=row.reference,
            phone=row.phone,
            email=row.email,
            amount=float(row.amount),
            upgrade=bool(row.upgrade),
            status=PaymentStatus(row.status),
            verified_at_utc=row.verified_at_utc,
            created_at_utc=row.created_at_utc or utc_now(),
            updated_at_utc=row.updated_at_utc or utc_now(),
        )

    @staticmethod
    def _application_from_row(row: Any) -> ApplicationRecord:
        return ApplicationRecord(
            phone=row.phone,
            fields=json.loads(row.fields_json),
            upgraded=bool(row.upgraded),
            created_at_utc=row.created_at_utc or utc_now(),
            updated_at_utc=row.updated_at_utc or utc_now(),
        )
