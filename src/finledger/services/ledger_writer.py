"""Create, update and delete ledger transactions together with their projections.

A revenue or expense entered through the ledger is stored twice: once as a
generic :class:`Transaction` and once as a :class:`Revenue`/:class:`Expense`
row whose ``transaction_id`` points back. Both rows are written in a single
database transaction, so a failed projection insert rolls the transaction
insert back with it and no orphan is left behind. The monthly usage counter
for the transaction's month is reserved inside the same unit of work.
"""

from __future__ import annotations

import math
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from ..errors import Forbidden, NotFound, StorageError, ValidationError
from ..infra.database import SessionFactory
from ..infra.repositories import (
    SQLModelProjectionRepository,
    SQLModelTransactionRepository,
    SQLModelUsageRepository,
    projection_model,
)
from ..logging_config import get_logger
from ..models.projection import Expense, LedgerProjection, Revenue
from ..models.transaction import TRANSACTION_STATUSES, TRANSACTION_TYPES, Transaction
from ..models.user import User
from .dates import as_utc, period_bounds, period_key
from .entitlements import MONTHLY_LIMIT_REACHED, EntitlementPolicy, monthly_limit_for
from .installments import (
    InstallmentAdvance,
    InstallmentInfo,
    advance_installment,
    installment_info_from_payload,
    summarize_installments,
)

logger = get_logger(__name__)

DEFAULT_CATEGORY = "General"
# Fields mirrored between a projection and its transaction.
SHARED_FIELDS = ("date", "description", "amount", "category", "notes")


@dataclass(slots=True)
class EntryDraft:
    """Validated input for a revenue or expense."""

    description: str
    amount: float
    date: datetime
    category: str = DEFAULT_CATEGORY
    notes: Optional[str] = None
    payment_method: Optional[str] = None
    counterparty: Optional[str] = None  # revenue source or expense supplier
    subcategory: Optional[str] = None
    tags: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TransactionDraft:
    """Validated input for a generic transaction."""

    type: str
    entry: EntryDraft
    status: str = "completed"
    is_installment: bool = False
    installment_payload: Optional[Mapping[str, Any]] = None


@dataclass(slots=True)
class LedgerResult:
    transaction: Optional[Transaction]
    projection: Optional[LedgerProjection] = None


@dataclass(slots=True)
class DeleteResult:
    deleted: int
    cascade: bool


def _check_amount(amount: Optional[float]) -> None:
    if amount is None or not math.isfinite(amount) or amount <= 0:
        raise ValidationError("amount must be greater than zero", field="amount")


def validate_entry(draft: EntryDraft) -> EntryDraft:
    """Normalize an entry draft, raising :class:`ValidationError` on bad input."""

    draft.description = (draft.description or "").strip()
    if not draft.description:
        raise ValidationError("description is required", field="description")
    if draft.amount is None:
        raise ValidationError("amount is required", field="amount")
    _check_amount(draft.amount)
    if draft.date is None:
        raise ValidationError("date is required", field="date")
    draft.date = as_utc(draft.date)
    draft.category = (draft.category or "").strip() or DEFAULT_CATEGORY
    return draft


def validate_entry_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Validate the keys present in a partial entry update."""

    cleaned = dict(changes)
    if "description" in cleaned:
        cleaned["description"] = (cleaned["description"] or "").strip()
        if not cleaned["description"]:
            raise ValidationError("description is required", field="description")
    if "amount" in cleaned:
        _check_amount(cleaned["amount"])
    if "date" in cleaned:
        if cleaned["date"] is None:
            raise ValidationError("date is required", field="date")
        cleaned["date"] = as_utc(cleaned["date"])
    if "category" in cleaned:
        cleaned["category"] = (cleaned["category"] or "").strip() or DEFAULT_CATEGORY
    return cleaned


def _entry_from(transaction: Transaction) -> EntryDraft:
    return EntryDraft(
        description=transaction.description,
        amount=transaction.amount,
        date=as_utc(transaction.date),
        category=transaction.category or DEFAULT_CATEGORY,
        notes=transaction.notes,
        payment_method=transaction.payment_method,
        subcategory=transaction.subcategory,
        tags=list(transaction.tags or []),
    )


def _check_kind(kind: str) -> str:
    if kind not in TRANSACTION_TYPES:
        raise ValidationError(f"type must be one of {', '.join(TRANSACTION_TYPES)}", field="type")
    return kind


class LedgerWriter:
    """Keeps transactions and their revenue/expense projections consistent."""

    def __init__(
        self,
        session_factory: SessionFactory,
        policy: Optional[EntitlementPolicy] = None,
    ):
        self.session_factory = session_factory
        self.policy = policy or EntitlementPolicy()

    # ------------------------------------------------------------------
    # Unit of work helpers
    # ------------------------------------------------------------------
    @contextmanager
    def _unit_of_work(self, action: str, **context: Any) -> Iterator[Session]:
        try:
            with self.session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error(
                "ledger.storage_error",
                extra={"action": action, "error": str(exc), **context},
            )
            raise StorageError(f"Storage failure during {action}") from exc

    def _reserve_slot(self, session: Session, user: User, moment: datetime) -> None:
        period = period_key(moment)
        start, end = period_bounds(period)
        transactions = SQLModelTransactionRepository(session)
        reserved = SQLModelUsageRepository(session).reserve(
            user_id=user.id,
            period=period,
            limit=monthly_limit_for(user, self.policy),
            seed=lambda: transactions.count_in_range(start, end, user_id=user.id),
        )
        if not reserved:
            logger.info(
                "ledger.quota_exhausted",
                extra={"user_id": user.id, "period": period},
            )
            raise Forbidden(
                f"Monthly transaction limit of the basic plan ({self.policy.monthly_transaction_limit}) reached",
                reason=MONTHLY_LIMIT_REACHED,
            )

    def _release_slot(self, session: Session, user_id: int, moment: datetime) -> None:
        SQLModelUsageRepository(session).release(user_id=user_id, period=period_key(moment))

    def _move_slot(self, session: Session, user: User, old: datetime, new: datetime) -> None:
        if period_key(old) == period_key(new):
            return
        self._release_slot(session, user.id, old)
        self._reserve_slot(session, user, new)

    # ------------------------------------------------------------------
    # Revenue / expense entries
    # ------------------------------------------------------------------
    def create_entry(
        self, user: User, kind: str, draft: EntryDraft, *, status: str = "completed"
    ) -> LedgerResult:
        """Insert a transaction and its projection as one unit."""

        _check_kind(kind)
        if status not in TRANSACTION_STATUSES:
            raise ValidationError("invalid status", field="status")
        draft = validate_entry(draft)
        model = projection_model(kind)

        with self._unit_of_work("create_entry", user_id=user.id, kind=kind) as session:
            self._reserve_slot(session, user, draft.date)

            transaction = SQLModelTransactionRepository(session).add(
                Transaction(
                    date=draft.date,
                    description=draft.description,
                    amount=draft.amount,
                    type=kind,
                    category=draft.category,
                    subcategory=draft.subcategory,
                    payment_method=draft.payment_method,
                    status=status,
                    notes=draft.notes,
                    tags=list(draft.tags),
                    is_installment=False,
                    installment_info=None,
                    projected=True,
                ),
                user_id=user.id,
            )

            projection = self._build_projection(model, draft, transaction_id=transaction.id)
            try:
                projection = SQLModelProjectionRepository(session, model).add(
                    projection, user_id=user.id
                )
            except SQLAlchemyError:
                # Raising out of the unit of work rolls back the transaction
                # insert above; that rollback is the compensating delete.
                logger.warning(
                    "ledger.create.compensated",
                    extra={"user_id": user.id, "kind": kind, "transaction_id": transaction.id},
                )
                raise

        logger.info(
            "ledger.created",
            extra={
                "user_id": user.id,
                "kind": kind,
                "transaction_id": transaction.id,
                "projection_id": projection.id,
            },
        )
        return LedgerResult(transaction=transaction, projection=projection)

    @staticmethod
    def _build_projection(
        model: type[Revenue] | type[Expense], draft: EntryDraft, *, transaction_id: Optional[int]
    ) -> LedgerProjection:
        common = {
            "transaction_id": transaction_id,
            "description": draft.description,
            "amount": draft.amount,
            "category": draft.category,
            "notes": draft.notes,
            "date": draft.date,
        }
        if model is Revenue:
            return Revenue(source=draft.counterparty, **common)
        return Expense(supplier=draft.counterparty, payment_method=draft.payment_method, **common)

    def update_entry(
        self, user: User, kind: str, projection_id: int, changes: Mapping[str, Any]
    ) -> LedgerResult:
        """Apply a partial update to a projection and mirror shared fields.

        Only keys present in ``changes`` are touched. ``counterparty`` maps to
        the revenue source or the expense supplier; ``payment_method`` only
        exists on expenses.
        """

        _check_kind(kind)
        changes = validate_entry_changes(changes)
        model = projection_model(kind)

        with self._unit_of_work("update_entry", user_id=user.id, kind=kind) as session:
            projections = SQLModelProjectionRepository(session, model)
            projection = projections.get_by_id(projection_id, user_id=user.id)
            if projection is None:
                raise NotFound(f"{kind} not found")

            for name in SHARED_FIELDS:
                if name in changes:
                    setattr(projection, name, changes[name])
            if "counterparty" in changes:
                if isinstance(projection, Revenue):
                    projection.source = changes["counterparty"]
                else:
                    projection.supplier = changes["counterparty"]
            if "payment_method" in changes and isinstance(projection, Expense):
                projection.payment_method = changes["payment_method"]
            projection = projections.add(projection, user_id=user.id)

            transaction = None
            if projection.transaction_id is not None:
                transactions = SQLModelTransactionRepository(session)
                transaction = transactions.get_by_id(projection.transaction_id, user_id=user.id)
                if transaction is None:
                    logger.error(
                        "ledger.update.missing_transaction",
                        extra={"user_id": user.id, "kind": kind, "projection_id": projection.id},
                    )
                    raise StorageError(f"Linked transaction for {kind} {projection.id} is missing")
                if "date" in changes:
                    self._move_slot(session, user, transaction.date, changes["date"])
                for name in SHARED_FIELDS:
                    if name in changes:
                        setattr(transaction, name, changes[name])
                transaction = transactions.add(transaction, user_id=user.id)

        logger.info(
            "ledger.updated",
            extra={
                "user_id": user.id,
                "kind": kind,
                "projection_id": projection_id,
                "fields": sorted(changes),
            },
        )
        return LedgerResult(transaction=transaction, projection=projection)

    def delete_entry(self, user: User, kind: str, projection_id: int) -> DeleteResult:
        """Delete a projection; linked rows go through their transaction."""

        _check_kind(kind)
        model = projection_model(kind)

        with self._unit_of_work("delete_entry", user_id=user.id, kind=kind) as session:
            projection = SQLModelProjectionRepository(session, model).get_by_id(
                projection_id, user_id=user.id
            )
            if projection is None:
                raise NotFound(f"{kind} not found")

            transactions = SQLModelTransactionRepository(session)
            transaction = None
            if projection.transaction_id is not None:
                transaction = transactions.get_by_id(projection.transaction_id, user_id=user.id)

            if transaction is not None:
                self._release_slot(session, user.id, transaction.date)
                transactions.delete(transaction)
                cascade = True
            else:
                if projection.transaction_id is not None:
                    logger.warning(
                        "ledger.delete.dangling_link",
                        extra={"user_id": user.id, "kind": kind, "projection_id": projection_id},
                    )
                SQLModelProjectionRepository(session, model).delete(projection)
                cascade = False

        logger.info(
            "ledger.deleted",
            extra={"user_id": user.id, "kind": kind, "projection_id": projection_id, "cascade": cascade},
        )
        return DeleteResult(deleted=projection_id, cascade=cascade)

    def list_entries(self, user: User, kind: str) -> list[LedgerProjection | Transaction]:
        """Projections plus installment transactions of ``kind``, newest first."""

        _check_kind(kind)
        model = projection_model(kind)
        with self._unit_of_work("list_entries", user_id=user.id, kind=kind) as session:
            rows: list[LedgerProjection | Transaction] = list(
                SQLModelProjectionRepository(session, model).list_all(user_id=user.id)
            )
            rows.extend(
                SQLModelTransactionRepository(session).list_all(
                    user_id=user.id, txn_type=kind, installments_only=True
                )
            )
        rows.sort(key=lambda row: (row.date, row.id or 0), reverse=True)
        return rows

    # ------------------------------------------------------------------
    # Generic transactions
    # ------------------------------------------------------------------
    def create_transaction(self, user: User, draft: TransactionDraft) -> LedgerResult:
        """Create a transaction; plain ones get a projection, installments do not."""

        _check_kind(draft.type)
        if draft.status not in TRANSACTION_STATUSES:
            raise ValidationError("invalid status", field="status")
        if not draft.is_installment:
            return self.create_entry(user, draft.type, draft.entry, status=draft.status)

        entry = validate_entry(draft.entry)
        info = installment_info_from_payload(
            draft.installment_payload, date=entry.date, fallback_total=entry.amount
        )
        with self._unit_of_work("create_transaction", user_id=user.id) as session:
            self._reserve_slot(session, user, entry.date)
            transaction = SQLModelTransactionRepository(session).add(
                Transaction(
                    date=entry.date,
                    description=entry.description,
                    amount=entry.amount,
                    type=draft.type,
                    category=entry.category,
                    subcategory=entry.subcategory,
                    payment_method=entry.payment_method,
                    status=draft.status,
                    notes=entry.notes,
                    tags=list(entry.tags),
                    is_installment=True,
                    installment_info=info.to_dict(),
                    projected=False,
                ),
                user_id=user.id,
            )
        logger.info(
            "ledger.installment_created",
            extra={
                "user_id": user.id,
                "transaction_id": transaction.id,
                "installments": info.total_installments,
            },
        )
        return LedgerResult(transaction=transaction)

    def get_transaction(self, user: User, transaction_id: int) -> Transaction:
        with self._unit_of_work("get_transaction", user_id=user.id) as session:
            transaction = SQLModelTransactionRepository(session).get_by_id(
                transaction_id, user_id=user.id
            )
        if transaction is None:
            raise NotFound("transaction not found")
        return transaction

    def list_transactions(
        self, user: User, *, txn_type: Optional[str] = None, installments_only: bool = False
    ) -> list[Transaction]:
        with self._unit_of_work("list_transactions", user_id=user.id) as session:
            return SQLModelTransactionRepository(session).list_all(
                user_id=user.id, txn_type=txn_type, installments_only=installments_only
            )

    def update_transaction(
        self, user: User, transaction_id: int, changes: Mapping[str, Any]
    ) -> LedgerResult:
        """Apply a partial update; projected rows mirror the shared fields."""

        with self._unit_of_work("update_transaction", user_id=user.id) as session:
            transactions = SQLModelTransactionRepository(session)
            transaction = transactions.get_by_id(transaction_id, user_id=user.id)
            if transaction is None:
                raise NotFound("transaction not found")
            old_date = transaction.date

            self._apply_transaction_changes(transaction, changes)
            self._move_slot(session, user, old_date, transaction.date)
            # An installment turned plain gets the projection every plain row has.
            needs_projection = not transaction.is_installment and not transaction.projected
            if needs_projection:
                transaction.projected = True
            transaction = transactions.add(transaction, user_id=user.id)

            projection = None
            if needs_projection:
                model = projection_model(transaction.type)
                projection = SQLModelProjectionRepository(session, model).add(
                    self._build_projection(model, _entry_from(transaction), transaction_id=transaction.id),
                    user_id=user.id,
                )
            elif transaction.projected:
                model = projection_model(transaction.type)
                projections = SQLModelProjectionRepository(session, model)
                projection = projections.get_by_transaction(transaction.id, user_id=user.id)
                if projection is not None:
                    for name in SHARED_FIELDS:
                        setattr(projection, name, getattr(transaction, name))
                    if isinstance(projection, Expense) and "payment_method" in changes:
                        projection.payment_method = transaction.payment_method
                    projection = projections.add(projection, user_id=user.id)

        logger.info("ledger.transaction_updated", extra={"user_id": user.id, "transaction_id": transaction_id})
        return LedgerResult(transaction=transaction, projection=projection)

    @staticmethod
    def _apply_transaction_changes(transaction: Transaction, changes: Mapping[str, Any]) -> None:
        if "type" in changes and changes["type"] != transaction.type:
            if transaction.projected:
                raise ValidationError(
                    "type cannot change on a transaction linked to a revenue or expense", field="type"
                )
            transaction.type = _check_kind(changes["type"])
        if "status" in changes:
            if changes["status"] not in TRANSACTION_STATUSES:
                raise ValidationError("invalid status", field="status")
            transaction.status = changes["status"]
        if "description" in changes:
            description = (changes["description"] or "").strip()
            if not description:
                raise ValidationError("description is required", field="description")
            transaction.description = description
        if "amount" in changes:
            _check_amount(changes["amount"])
            transaction.amount = changes["amount"]
        if "date" in changes:
            if changes["date"] is None:
                raise ValidationError("date is required", field="date")
            transaction.date = as_utc(changes["date"])
        for name in ("category", "subcategory", "payment_method", "notes"):
            if name in changes:
                setattr(transaction, name, changes[name])
        if "tags" in changes:
            transaction.tags = list(changes["tags"] or [])

        if "is_installment" in changes:
            flag = bool(changes["is_installment"])
            if flag and transaction.projected:
                raise ValidationError(
                    "a transaction linked to a revenue or expense cannot become an installment",
                    field="is_installment",
                )
            transaction.is_installment = flag
        if not transaction.is_installment:
            transaction.installment_info = None
        elif "installment_info" in changes or "amount" in changes or "date" in changes:
            payload = changes.get("installment_info", transaction.installment_info)
            info = installment_info_from_payload(
                payload, date=transaction.date, fallback_total=transaction.amount
            )
            transaction.installment_info = info.to_dict()

    def delete_transaction(self, user: User, transaction_id: int) -> DeleteResult:
        """Delete a transaction; its projection, if any, goes with it."""

        with self._unit_of_work("delete_transaction", user_id=user.id) as session:
            transactions = SQLModelTransactionRepository(session)
            transaction = transactions.get_by_id(transaction_id, user_id=user.id)
            if transaction is None:
                raise NotFound("transaction not found")
            cascade = transaction.projected
            self._release_slot(session, user.id, transaction.date)
            transactions.delete(transaction)
        logger.info(
            "ledger.transaction_deleted",
            extra={"user_id": user.id, "transaction_id": transaction_id, "cascade": cascade},
        )
        return DeleteResult(deleted=transaction_id, cascade=cascade)

    # ------------------------------------------------------------------
    # Installments
    # ------------------------------------------------------------------
    def confirm_installment(self, user: User, transaction_id: int) -> tuple[Transaction, InstallmentAdvance]:
        """Mark the next parcel of an installment transaction as paid."""

        with self._unit_of_work("confirm_installment", user_id=user.id) as session:
            transactions = SQLModelTransactionRepository(session)
            transaction = transactions.get_by_id(transaction_id, user_id=user.id)
            if transaction is None:
                raise NotFound("transaction not found")
            if not transaction.is_installment or not transaction.installment_info:
                raise ValidationError("transaction is not an installment purchase", field="id")

            advance = advance_installment(
                InstallmentInfo.from_dict(transaction.installment_info), date=transaction.date
            )
            transaction.installment_info = advance.info.to_dict()
            transaction.status = advance.status
            transaction = transactions.add(transaction, user_id=user.id)

        logger.info(
            "ledger.installment_confirmed",
            extra={
                "user_id": user.id,
                "transaction_id": transaction_id,
                "current": advance.info.current_installment,
                "completed": advance.completed,
            },
        )
        return transaction, advance

    def installment_summary(self, user: User) -> dict[str, float]:
        return summarize_installments(self.list_transactions(user, installments_only=True))


__all__ = [
    "DeleteResult",
    "EntryDraft",
    "LedgerResult",
    "LedgerWriter",
    "TransactionDraft",
    "validate_entry",
    "validate_entry_changes",
]
