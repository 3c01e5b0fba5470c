"""Store gateway: collection-oriented access to the SQLAlchemy models.

Callers address records by collection name and narrow them with typed
predicates built through :func:`field`::

    store.find('appointments', field('provider_id').eq(pid), field('status').in_(ACTIVE_STATUSES))

Write methods only flush; :meth:`StoreGateway.transaction` commits or rolls back.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator

from fastapi import Depends
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clinicbook.core.errors import DatabaseError, DuplicateKey
from clinicbook.core.ids import normalize_document_id
from clinicbook.database import get_db
from clinicbook.models.appointment import Appointment, SlotReservation
from clinicbook.models.availability import ProviderAvailability
from clinicbook.models.logs import AuditLog, NotificationLog, ReminderLog
from clinicbook.models.provider import Provider
from clinicbook.models.service import Service
from clinicbook.models.settings import ClinicSettings
from clinicbook.models.user import User
from clinicbook.models.webhook import Webhook

logger = logging.getLogger(__name__)

COLLECTIONS = {
    'appointments': Appointment,
    'availability': ProviderAvailability,
    'audit_logs': AuditLog,
    'notification_logs': NotificationLog,
    'providers': Provider,
    'reminder_logs': ReminderLog,
    'services': Service,
    'settings': ClinicSettings,
    'slot_reservations': SlotReservation,
    'users': User,
    'webhooks': Webhook,
}


class Operator(str, Enum):
    EQ = 'eq'
    NE = 'ne'
    LT = 'lt'
    LTE = 'lte'
    GT = 'gt'
    GTE = 'gte'
    IN = 'in'
    NOT_IN = 'not_in'


@dataclass(frozen=True)
class Predicate:
    field: str
    op: Operator
    value: Any

    def to_clause(self, model):
        try:
            column = getattr(model, self.field)
        except AttributeError as exc:
            raise ValueError(f'{model.__tablename__} has no field {self.field!r}') from exc

        if self.op is Operator.EQ:
            return column.is_(None) if self.value is None else column == self.value
        if self.op is Operator.NE:
            return column.is_not(None) if self.value is None else column != self.value
        if self.op is Operator.LT:
            return column < self.value
        if self.op is Operator.LTE:
            return column <= self.value
        if self.op is Operator.GT:
            return column > self.value
        if self.op is Operator.GTE:
            return column >= self.value
        if self.op is Operator.IN:
            return column.in_(list(self.value))
        if self.op is Operator.NOT_IN:
            return column.not_in(list(self.value))
        raise ValueError(f'Unsupported operator: {self.op}')


class FieldRef:
    def __init__(self, name: str) -> None:
        self.name = name

    def eq(self, value: Any) -> Predicate:
        return Predicate(self.name, Operator.EQ, value)

    def ne(self, value: Any) -> Predicate:
        return Predicate(self.name, Operator.NE, value)

    def lt(self, value: Any) -> Predicate:
        return Predicate(self.name, Operator.LT, value)

    def lte(self, value: Any) -> Predicate:
        return Predicate(self.name, Operator.LTE, value)

    def gt(self, value: Any) -> Predicate:
        return Predicate(self.name, Operator.GT, value)

    def gte(self, value: Any) -> Predicate:
        return Predicate(self.name, Operator.GTE, value)

    def in_(self, values) -> Predicate:
        return Predicate(self.name, Operator.IN, tuple(values))

    def not_in(self, values) -> Predicate:
        return Predicate(self.name, Operator.NOT_IN, tuple(values))


def field(name: str) -> FieldRef:
    return FieldRef(name)


class StoreGateway:
    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def model_for(collection: str):
        try:
            return COLLECTIONS[collection]
        except KeyError as exc:
            raise ValueError(f'Unknown collection: {collection}') from exc

    def _select(self, collection: str, predicates, order_by=None, descending=False):
        model = self.model_for(collection)
        statement = select(model).where(*(predicate.to_clause(model) for predicate in predicates))
        if order_by:
            column = getattr(model, order_by)
            statement = statement.order_by(column.desc() if descending else column.asc())
        return statement

    def find(
        self,
        collection: str,
        *predicates: Predicate,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list:
        statement = self._select(collection, predicates, order_by, descending)
        if offset:
            statement = statement.offset(offset)
        if limit is not None:
            statement = statement.limit(limit)
        try:
            return list(self.session.scalars(statement).all())
        except SQLAlchemyError as exc:
            logger.exception('Query on %s failed', collection)
            raise DatabaseError() from exc

    def find_one(self, collection: str, *predicates: Predicate, order_by: str | None = None):
        rows = self.find(collection, *predicates, order_by=order_by, limit=1)
        return rows[0] if rows else None

    def count(self, collection: str, *predicates: Predicate) -> int:
        model = self.model_for(collection)
        statement = select(func.count()).select_from(model).where(
            *(predicate.to_clause(model) for predicate in predicates)
        )
        try:
            return int(self.session.scalar(statement) or 0)
        except SQLAlchemyError as exc:
            logger.exception('Count on %s failed', collection)
            raise DatabaseError() from exc

    def distinct(self, collection: str, column_name: str, *predicates: Predicate) -> list:
        model = self.model_for(collection)
        statement = select(getattr(model, column_name)).where(
            *(predicate.to_clause(model) for predicate in predicates)
        ).distinct()
        try:
            return list(self.session.scalars(statement).all())
        except SQLAlchemyError as exc:
            logger.exception('Distinct query on %s failed', collection)
            raise DatabaseError() from exc

    def get(self, collection: str, document_id: str):
        """Fetch by id, falling back to the raw value when the normalised form misses."""
        if not document_id or not document_id.strip():
            return None
        model = self.model_for(collection)
        normalized = normalize_document_id(document_id)
        try:
            document = self.session.get(model, normalized)
            if document is None and normalized != document_id:
                document = self.session.get(model, document_id)
            return document
        except SQLAlchemyError as exc:
            logger.exception('Lookup of %s/%s failed', collection, document_id)
            raise DatabaseError() from exc

    def insert(self, collection: str, **values):
        model = self.model_for(collection)
        document = model(**values)
        self.session.add(document)
        self._flush(collection)
        return document

    def insert_many(self, collection: str, rows: list[dict]) -> None:
        model = self.model_for(collection)
        self.session.add_all([model(**row) for row in rows])
        self._flush(collection)

    def update(self, document, **values):
        for name, value in values.items():
            setattr(document, name, value)
        self._flush(document.__tablename__)
        return document

    def update_where(self, collection: str, predicates: list[Predicate], values: dict) -> int:
        """Conditional bulk update; returns the number of matched rows."""
        model = self.model_for(collection)
        statement = (
            update(model)
            .where(*(predicate.to_clause(model) for predicate in predicates))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(statement)
        except SQLAlchemyError as exc:
            logger.exception('Conditional update on %s failed', collection)
            raise DatabaseError() from exc
        return result.rowcount or 0

    def delete(self, document) -> None:
        self.session.delete(document)
        self._flush(document.__tablename__)

    def delete_where(self, collection: str, *predicates: Predicate) -> int:
        model = self.model_for(collection)
        statement = delete(model).where(*(predicate.to_clause(model) for predicate in predicates))
        try:
            result = self.session.execute(statement.execution_options(synchronize_session=False))
        except SQLAlchemyError as exc:
            logger.exception('Delete on %s failed', collection)
            raise DatabaseError() from exc
        return result.rowcount or 0

    def _flush(self, collection: str) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateKey(f'Duplicate key in {collection}.') from exc
        except SQLAlchemyError as exc:
            logger.exception('Write to %s failed', collection)
            raise DatabaseError() from exc

    @contextmanager
    def transaction(self) -> Iterator['StoreGateway']:
        try:
            yield self
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateKey('Duplicate key on commit.') from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception('Transaction failed')
            raise DatabaseError() from exc
        except Exception:
            self.session.rollback()
            raise


def get_store(db: Session = Depends(get_db)) -> StoreGateway:
    return StoreGateway(db)
