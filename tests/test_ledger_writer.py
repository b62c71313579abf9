"""Tests for the transaction/projection writer."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from finledger.errors import Forbidden, NotFound, StorageError, ValidationError
from finledger.infra.repositories import SQLModelProjectionRepository, SQLModelUsageRepository
from finledger.models import Expense, MonthlyUsage, Revenue, Transaction
from finledger.services.entitlements import MONTHLY_LIMIT_REACHED, EntitlementPolicy
from finledger.services.dates import as_utc, month_bounds
from finledger.services.ledger_writer import EntryDraft, LedgerWriter, TransactionDraft
from finledger.services.reconciliation import reconcile


def _draft(**overrides) -> EntryDraft:
    values = {
        "description": "Groceries",
        "amount": 50.0,
        "date": datetime(2024, 5, 10, 9, 0),
        "category": "Food",
    }
    values.update(overrides)
    return EntryDraft(**values)


def _rows(db_engine, model):
    with Session(db_engine) as session:
        return list(session.exec(select(model)).all())


def _usage(db_engine, user_id, period):
    with Session(db_engine) as session:
        row = session.exec(
            select(MonthlyUsage).where(MonthlyUsage.user_id == user_id, MonthlyUsage.period == period)
        ).first()
        return row.used if row else None


def test_create_expense_links_projection_to_transaction(writer, user, db_engine):
    result = writer.create_entry(user, "expense", _draft(amount=50.0))

    assert result.projection.transaction_id == result.transaction.id
    txn = _rows(db_engine, Transaction)[0]
    assert txn.type == "expense"
    assert txn.amount == 50.0
    assert txn.is_installment is False
    assert txn.projected is True
    expense = _rows(db_engine, Expense)[0]
    assert expense.transaction_id == txn.id
    assert expense.amount == 50.0


def test_create_revenue_stores_source(writer, user, db_engine):
    writer.create_entry(user, "revenue", _draft(description="Salary", counterparty="Acme"))

    revenue = _rows(db_engine, Revenue)[0]
    assert revenue.source == "Acme"
    assert _rows(db_engine, Expense) == []


def test_create_reserves_usage_slot(writer, user, db_engine):
    writer.create_entry(user, "expense", _draft())
    writer.create_entry(user, "expense", _draft(date=datetime(2024, 5, 30)))

    assert _usage(db_engine, user.id, "2024-05") == 2


def test_failed_projection_insert_rolls_back_transaction(writer, user, db_engine, monkeypatch, caplog):
    def boom(self, projection, *, user_id):
        raise IntegrityError("INSERT INTO expense", {}, Exception("constraint failed"))

    monkeypatch.setattr(SQLModelProjectionRepository, "add", boom)

    with caplog.at_level("WARNING", logger="finledger"):
        with pytest.raises(StorageError):
            writer.create_entry(user, "expense", _draft())

    assert _rows(db_engine, Transaction) == []
    assert _rows(db_engine, Expense) == []
    assert _usage(db_engine, user.id, "2024-05") is None
    assert any(r.getMessage() == "ledger.create.compensated" for r in caplog.records)


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"description": "  "}, "description"),
        ({"amount": 0}, "amount"),
        ({"amount": -5}, "amount"),
        ({"date": None}, "date"),
    ],
)
def test_create_validates_input(writer, user, overrides, field):
    with pytest.raises(ValidationError) as excinfo:
        writer.create_entry(user, "expense", _draft(**overrides))

    assert excinfo.value.field == field


def test_blank_category_gets_default(writer, user):
    result = writer.create_entry(user, "expense", _draft(category=""))

    assert result.transaction.category == "General"


def test_update_propagates_shared_fields(writer, user, db_engine):
    created = writer.create_entry(user, "expense", _draft(amount=50.0, counterparty="Market"))

    writer.update_entry(
        user,
        "expense",
        created.projection.id,
        {"amount": 75.0, "description": "Groceries (big)", "notes": "weekly", "counterparty": "Mall"},
    )

    txn = _rows(db_engine, Transaction)[0]
    expense = _rows(db_engine, Expense)[0]
    assert txn.amount == expense.amount == 75.0
    assert txn.description == expense.description == "Groceries (big)"
    assert txn.notes == "weekly"
    assert expense.supplier == "Mall"
    # untouched fields survive a partial update
    assert txn.category == expense.category == "Food"


def test_update_moving_month_moves_usage_slot(writer, user, db_engine):
    created = writer.create_entry(user, "expense", _draft())

    writer.update_entry(user, "expense", created.projection.id, {"date": datetime(2024, 6, 2)})

    assert _usage(db_engine, user.id, "2024-05") == 0
    assert _usage(db_engine, user.id, "2024-06") == 1
    assert as_utc(_rows(db_engine, Transaction)[0].date) == datetime(2024, 6, 2, tzinfo=timezone.utc)


def test_update_of_someone_elses_entry_is_not_found(writer, user, user_factory, db_engine):
    created = writer.create_entry(user, "expense", _draft())
    intruder = user_factory("pro")

    with pytest.raises(NotFound):
        writer.update_entry(intruder, "expense", created.projection.id, {"amount": 1.0})

    assert _rows(db_engine, Expense)[0].amount == 50.0


def test_delete_with_link_cascades(writer, user, db_engine):
    created = writer.create_entry(user, "expense", _draft())

    result = writer.delete_entry(user, "expense", created.projection.id)

    assert result.cascade is True
    assert result.deleted == created.projection.id
    assert _rows(db_engine, Transaction) == []
    assert _rows(db_engine, Expense) == []
    assert _usage(db_engine, user.id, "2024-05") == 0


def test_delete_without_link_only_removes_projection(writer, user, db_engine, transaction_factory):
    standalone = transaction_factory()
    with Session(db_engine, expire_on_commit=False) as session:
        expense = Expense(user_id=user.id, description="Legacy", amount=10.0, date=datetime(2024, 1, 1, tzinfo=timezone.utc))
        session.add(expense)
        session.commit()
        session.refresh(expense)

    result = writer.delete_entry(user, "expense", expense.id)

    assert result.cascade is False
    assert _rows(db_engine, Expense) == []
    assert [txn.id for txn in _rows(db_engine, Transaction)] == [standalone.id]


def test_delete_missing_entry_is_not_found(writer, user):
    with pytest.raises(NotFound):
        writer.delete_entry(user, "revenue", 404)


def test_list_entries_merges_installments_newest_first(writer, user):
    writer.create_entry(user, "expense", _draft(date=datetime(2024, 5, 1)))
    writer.create_transaction(
        user,
        TransactionDraft(
            type="expense",
            entry=_draft(description="Phone", amount=100.0, date=datetime(2024, 5, 20)),
            is_installment=True,
            installment_payload={"totalAmount": 1200, "totalInstallments": 12},
        ),
    )
    writer.create_entry(user, "revenue", _draft(date=datetime(2024, 5, 25)))

    rows = writer.list_entries(user, "expense")

    assert [row.description for row in rows] == ["Phone", "Groceries"]
    assert isinstance(rows[0], Transaction)
    assert isinstance(rows[1], Expense)


def test_basic_user_hits_atomic_quota(session_factory, user_factory, db_engine):
    basic = user_factory("basic")
    writer = LedgerWriter(session_factory, EntitlementPolicy(monthly_transaction_limit=2))

    writer.create_entry(basic, "expense", _draft())
    writer.create_entry(basic, "revenue", _draft())
    with pytest.raises(Forbidden) as excinfo:
        writer.create_entry(basic, "expense", _draft())

    assert excinfo.value.kind == MONTHLY_LIMIT_REACHED
    assert len(_rows(db_engine, Transaction)) == 2
    # another month still has room
    writer.create_entry(basic, "expense", _draft(date=datetime(2024, 6, 1)))


def test_usage_counter_is_seeded_from_existing_rows(session_factory, user_factory, transaction_factory, db_engine):
    basic = user_factory("basic")
    transaction_factory(owner=basic, date=datetime(2024, 5, 1))
    transaction_factory(owner=basic, date=datetime(2024, 5, 31, 23, 59))
    transaction_factory(owner=basic, date=datetime(2024, 6, 1))
    writer = LedgerWriter(session_factory, EntitlementPolicy(monthly_transaction_limit=3))

    writer.create_entry(basic, "expense", _draft())

    assert _usage(db_engine, basic.id, "2024-05") == 3
    with pytest.raises(Forbidden):
        writer.create_entry(basic, "expense", _draft())


def test_pro_usage_is_counted_but_not_capped(session_factory, user, db_engine):
    writer = LedgerWriter(session_factory, EntitlementPolicy(monthly_transaction_limit=1))

    writer.create_entry(user, "expense", _draft())
    writer.create_entry(user, "expense", _draft())

    assert _usage(db_engine, user.id, "2024-05") == 2


def test_release_never_goes_negative(session_factory, user):
    with session_factory() as session:
        usage = SQLModelUsageRepository(session)
        usage.ensure(user_id=user.id, period="2024-05", seed=lambda: 0)
        usage.release(user_id=user.id, period="2024-05")
        assert usage.get(user_id=user.id, period="2024-05").used == 0


# ---------------------------------------------------------------------------
# Generic transactions
# ---------------------------------------------------------------------------


def test_plain_transaction_create_also_writes_projection(writer, user, db_engine):
    result = writer.create_transaction(user, TransactionDraft(type="revenue", entry=_draft()))

    assert result.projection is not None
    assert _rows(db_engine, Revenue)[0].transaction_id == result.transaction.id


def test_installment_transaction_has_no_projection(writer, user, db_engine):
    result = writer.create_transaction(
        user,
        TransactionDraft(
            type="expense",
            entry=_draft(amount=50.0),
            status="pending",
            is_installment=True,
            installment_payload={"totalAmount": 600, "totalInstallments": 12, "currentInstallment": 3},
        ),
    )

    txn = result.transaction
    assert result.projection is None
    assert txn.is_installment is True
    assert txn.projected is False
    assert txn.installment_info["installmentAmount"] == 50.0
    assert txn.installment_info["remainingAmount"] == 450.0
    assert _rows(db_engine, Expense) == []


def test_installment_without_info_is_rejected(writer, user):
    with pytest.raises(ValidationError):
        writer.create_transaction(
            user, TransactionDraft(type="expense", entry=_draft(), is_installment=True)
        )


def test_invalid_type_is_rejected(writer, user):
    with pytest.raises(ValidationError) as excinfo:
        writer.create_transaction(user, TransactionDraft(type="transfer", entry=_draft()))

    assert excinfo.value.field == "type"


def test_update_transaction_mirrors_onto_projection(writer, user, db_engine):
    created = writer.create_entry(user, "expense", _draft())

    writer.update_transaction(user, created.transaction.id, {"amount": 12.5, "category": "Bills"})

    expense = _rows(db_engine, Expense)[0]
    assert expense.amount == 12.5
    assert expense.category == "Bills"


def test_update_transaction_cannot_change_type_of_linked_row(writer, user):
    created = writer.create_entry(user, "expense", _draft())

    with pytest.raises(ValidationError):
        writer.update_transaction(user, created.transaction.id, {"type": "revenue"})


def test_update_installment_rederives_schedule(writer, user):
    created = writer.create_transaction(
        user,
        TransactionDraft(
            type="expense",
            entry=_draft(amount=50.0),
            is_installment=True,
            installment_payload={"totalAmount": 600, "totalInstallments": 12},
        ),
    )

    result = writer.update_transaction(
        user,
        created.transaction.id,
        {"installment_info": {"totalAmount": 600, "totalInstallments": 6, "currentInstallment": 2}},
    )

    assert result.transaction.installment_info["installmentAmount"] == 100.0
    assert result.transaction.installment_info["remainingAmount"] == 400.0


def test_delete_transaction_cascades_to_projection(writer, user, db_engine):
    created = writer.create_entry(user, "revenue", _draft())

    result = writer.delete_transaction(user, created.transaction.id)

    assert result.cascade is True
    assert _rows(db_engine, Revenue) == []


def test_get_transaction_of_other_user_is_not_found(writer, user, user_factory, transaction_factory):
    txn = transaction_factory()

    with pytest.raises(NotFound):
        writer.get_transaction(user_factory("pro"), txn.id)


def test_confirm_installment_advances_and_completes(writer, user):
    created = writer.create_transaction(
        user,
        TransactionDraft(
            type="expense",
            entry=_draft(amount=100.0),
            status="pending",
            is_installment=True,
            installment_payload={"totalAmount": 200, "totalInstallments": 2},
        ),
    )

    txn, advance = writer.confirm_installment(user, created.transaction.id)

    assert advance.completed
    assert txn.status == "completed"
    assert txn.installment_info["currentInstallment"] == 2
    assert txn.installment_info["remainingAmount"] == 0
    with pytest.raises(ValidationError):
        writer.confirm_installment(user, created.transaction.id)


def test_confirm_rejects_plain_transaction(writer, user):
    created = writer.create_entry(user, "expense", _draft())

    with pytest.raises(ValidationError):
        writer.confirm_installment(user, created.transaction.id)


def test_installment_summary(writer, user):
    writer.create_transaction(
        user,
        TransactionDraft(
            type="expense",
            entry=_draft(amount=50.0),
            is_installment=True,
            installment_payload={"totalAmount": 600, "totalInstallments": 12, "currentInstallment": 1},
        ),
    )

    summary = writer.installment_summary(user)

    assert summary == {"totalInstallment": 600.0, "remainingToPay": 550.0, "alreadyPaid": 50.0, "count": 1}


def test_plain_transaction_keeps_requested_status(writer, user, db_engine):
    result = writer.create_transaction(
        user, TransactionDraft(type="expense", entry=_draft(), status="pending")
    )

    assert result.transaction.status == "pending"
    assert _rows(db_engine, Transaction)[0].status == "pending"
    assert result.projection is not None


def test_plain_transaction_rejects_unknown_status(writer, user, db_engine):
    with pytest.raises(ValidationError) as excinfo:
        writer.create_transaction(user, TransactionDraft(type="expense", entry=_draft(), status="void"))

    assert excinfo.value.field == "status"
    assert _rows(db_engine, Transaction) == []


def test_installment_turned_plain_gets_projection(writer, user, db_engine, session_factory):
    created = writer.create_transaction(
        user,
        TransactionDraft(
            type="expense",
            entry=_draft(description="Sofa", amount=50.0, payment_method="credit_card"),
            is_installment=True,
            installment_payload={"totalAmount": 600, "totalInstallments": 12},
        ),
    )

    result = writer.update_transaction(user, created.transaction.id, {"is_installment": False})

    txn = _rows(db_engine, Transaction)[0]
    expenses = _rows(db_engine, Expense)
    assert txn.is_installment is False
    assert txn.installment_info is None
    assert txn.projected is True
    assert [(e.transaction_id, e.description, e.amount) for e in expenses] == [(txn.id, "Sofa", 50.0)]
    assert result.projection.id == expenses[0].id
    assert expenses[0].payment_method == "credit_card"

    assert reconcile(session_factory).orphan_transactions == []


def test_installment_turned_plain_then_deleted_cascades(writer, user, db_engine):
    created = writer.create_transaction(
        user,
        TransactionDraft(
            type="revenue",
            entry=_draft(),
            is_installment=True,
            installment_payload={"totalAmount": 100, "totalInstallments": 2},
        ),
    )
    writer.update_transaction(user, created.transaction.id, {"is_installment": False})

    result = writer.delete_transaction(user, created.transaction.id)

    assert result.cascade is True
    assert _rows(db_engine, Revenue) == []


def test_non_finite_amounts_are_rejected(writer, user, db_engine):
    created = writer.create_entry(user, "expense", _draft())

    with pytest.raises(ValidationError):
        writer.create_entry(user, "expense", _draft(amount=float("nan")))
    with pytest.raises(ValidationError):
        writer.update_transaction(user, created.transaction.id, {"amount": float("inf")})

    assert [txn.amount for txn in _rows(db_engine, Transaction)] == [50.0]


def test_stored_dates_are_utc(writer, user, db_engine):
    writer.create_entry(user, "expense", _draft(date=datetime(2024, 5, 10, 9, 0)))

    stored = as_utc(_rows(db_engine, Transaction)[0].date)
    start, end = month_bounds(stored)

    assert stored == datetime(2024, 5, 10, 9, 0, tzinfo=timezone.utc)
    assert start.tzinfo is not None and end.tzinfo is not None
    assert start <= stored <= end
