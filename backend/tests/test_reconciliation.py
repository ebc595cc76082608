"""
Reconciliation engine tests.

Covers the end-of-run flow: outcome per order, difference against the
dispatched snapshot, payment reversal for returned orders, load closure and
the skip rules for stale or foreign updates.
"""

import pytest

from depot.errors import InvalidTransition, NotFound, ValidationError
from depot.models import Customer
from depot.services import (
    account_service,
    cheque_service,
    load_service,
    order_service,
    payment_service,
    reconciliation_service,
)
from depot.services.history_service import ENTITY_LOAD, ENTITY_ORDER, get_history


def _load(business, order_ids, day="2026-03-03"):
    return load_service.create_load(
        business_id=business.id,
        order_ids=order_ids,
        vehicle_ref="LB-4021",
        responsible_person_id=3,
        load_date=day,
    )


@pytest.fixture
def run(business, make_order):
    """
    Three orders on one load:
    A dispatched at 10,000 then edited to 9,000,
    B dispatched at 5,000 and paid in cash,
    C dispatched at 2,000 and left alone.
    """
    a = make_order(unit_price_cents=1000, quantity=10)
    b = make_order(unit_price_cents=500, quantity=10)
    c = make_order(unit_price_cents=200, quantity=10)
    load = _load(business, [a.id, b.id, c.id])

    order_service.edit_invoice_amount(a.id, new_total_cents=9_000, reason="two cases short")
    payment = payment_service.record_payment(order_id=b.id, method="CASH", amount_cents=5_000)

    return {"load": load, "a": a.id, "b": b.id, "c": c.id, "payment": payment.id}


def _by_order(result):
    return {entry["order_id"]: entry for entry in result["applied"]}


def test_end_of_run_flow(db_session, run, customer):
    result = reconciliation_service.finalize_reconciliation(
        run["load"].id,
        updates=[
            {"order_id": run["a"], "status": "DELIVERED", "final_amount_cents": 9_000},
            {"order_id": run["b"], "status": "RETURNED", "notes": "shop closed"},
        ],
        close_load=True,
        actor_user_id=11,
    )

    applied = _by_order(result)
    assert applied[run["a"]]["dispatched_cents"] == 10_000
    assert applied[run["a"]]["final_cents"] == 9_000
    assert applied[run["a"]]["diff_cents"] == -1_000
    assert applied[run["a"]]["status"] == "DELIVERED"
    assert applied[run["b"]]["previous_status"] == "IN_TRANSIT"
    assert applied[run["b"]]["status"] == "RETURNED"
    assert result["skipped"] == []
    assert result["closed"] is True
    assert result["closed_now"] is True

    returned = order_service.get_order(run["b"])
    assert returned.paid_cents == 0
    assert returned.payment_status == "UNPAID"
    assert payment_service.get_payment(run["payment"]).status == "REVERSED"

    # Orders not named in the batch stay as they were
    assert order_service.get_order(run["c"]).status == "IN_TRANSIT"

    load = load_service.get_load(run["load"].id)
    assert load.is_open is False
    assert load.closed_by_user_id == 11
    assert [line.resolved_status for line in load.lines] == ["DELIVERED", "RETURNED", None]
    assert [h.new_state for h in get_history(ENTITY_LOAD, load.id)] == ["OPEN", "CLOSED"]

    # Unbilled orders never touched the receivable, so the cash payment and its reversal cancel out
    assert db_session.get(Customer, customer.id).outstanding_cents == 0


def test_final_amount_writes_reconcile_entry(run):
    reconciliation_service.finalize_reconciliation(
        run["load"].id,
        updates=[{"order_id": run["c"], "status": "PARTIAL", "final_amount_cents": 1_200}],
    )

    order = order_service.get_order(run["c"])
    assert order.status == "PARTIAL"
    assert order.total_cents == 1_200
    assert order.dispatched_cents == 2_000
    assert order.amount_entries[-1].kind == "RECONCILE"
    assert order.amount_entries[-1].load_id == run["load"].id


def test_resubmitting_same_batch_is_noop(run):
    updates = [
        {"order_id": run["a"], "status": "DELIVERED", "final_amount_cents": 9_000},
        {"order_id": run["b"], "status": "RETURNED"},
    ]
    reconciliation_service.finalize_reconciliation(run["load"].id, updates=updates, close_load=True)
    history_before = len(get_history(ENTITY_ORDER, run["a"]))

    again = reconciliation_service.finalize_reconciliation(run["load"].id, updates=updates, close_load=True)

    assert again["closed"] is True
    assert again["closed_now"] is False
    assert all(entry["changed"] is False for entry in again["applied"])
    assert len(get_history(ENTITY_ORDER, run["a"])) == history_before


def test_closed_load_rejects_changes(run):
    reconciliation_service.finalize_reconciliation(
        run["load"].id,
        updates=[{"order_id": run["a"], "status": "DELIVERED"}],
        close_load=True,
    )

    with pytest.raises(InvalidTransition):
        reconciliation_service.finalize_reconciliation(
            run["load"].id,
            updates=[{"order_id": run["a"], "status": "PARTIAL"}],
        )
    assert order_service.get_order(run["a"]).status == "DELIVERED"


def test_open_load_allows_outcome_correction(run):
    reconciliation_service.finalize_reconciliation(
        run["load"].id, updates=[{"order_id": run["a"], "status": "DELIVERED"}]
    )
    result = reconciliation_service.finalize_reconciliation(
        run["load"].id, updates=[{"order_id": run["a"], "status": "PARTIAL", "final_amount_cents": 8_000}]
    )

    entry = _by_order(result)[run["a"]]
    assert entry["previous_status"] == "DELIVERED"
    assert entry["status"] == "PARTIAL"
    assert entry["diff_cents"] == -2_000


def test_skip_reasons(business, make_order, run):
    elsewhere = make_order()
    other_load = _load(business, [elsewhere.id], day="2026-03-04")

    result = reconciliation_service.finalize_reconciliation(
        run["load"].id,
        updates=[
            {"order_id": 999_999, "status": "DELIVERED"},
            {"order_id": elsewhere.id, "status": "DELIVERED"},
            {"order_id": run["a"], "status": "DELIVERED"},
        ],
    )

    reasons = {entry["order_id"]: entry["reason"] for entry in result["skipped"]}
    assert reasons == {999_999: "unknown_order", elsewhere.id: "not_on_load"}
    assert [entry["order_id"] for entry in result["applied"]] == [run["a"]]
    assert order_service.get_order(elsewhere.id).load_id == other_load.id


def test_order_moved_to_another_load_is_skipped(business, run):
    reconciliation_service.finalize_reconciliation(
        run["load"].id, updates=[{"order_id": run["c"], "status": "LOADING"}]
    )
    _load(business, [run["c"]], day="2026-03-04")

    result = reconciliation_service.finalize_reconciliation(
        run["load"].id, updates=[{"order_id": run["c"], "status": "DELIVERED"}]
    )

    assert result["skipped"] == [{"order_id": run["c"], "reason": "moved_to_another_load"}]
    assert order_service.get_order(run["c"]).status == "IN_TRANSIT"


def test_reschedule_returns_order_to_loading(run):
    result = reconciliation_service.finalize_reconciliation(
        run["load"].id, updates=[{"order_id": run["c"], "status": "LOADING"}]
    )

    order = order_service.get_order(run["c"])
    assert order.status == "LOADING"
    assert order.load_id is None
    assert _by_order(result)[run["c"]]["status"] == "LOADING"


def test_paid_assertion_collects_cash(run):
    result = reconciliation_service.finalize_reconciliation(
        run["load"].id,
        updates=[{"order_id": run["a"], "status": "DELIVERED", "payment_status": "PAID"}],
    )

    order = order_service.get_order(run["a"])
    assert order.paid_cents == 9_000
    assert order.payment_status == "PAID"
    assert _by_order(result)[run["a"]]["payment_status"] == "PAID"
    assert [p.method for p in order.payments] == ["CASH"]


def test_returned_order_hands_back_pending_cheque(run):
    payment = payment_service.record_payment(
        order_id=run["c"], method="CHEQUE", amount_cents=2_000, cheque_number="000451", cheque_date="2026-03-03"
    )
    cheque_id = payment.cheque.id

    reconciliation_service.finalize_reconciliation(
        run["load"].id, updates=[{"order_id": run["c"], "status": "RETURNED"}]
    )

    assert cheque_service.get_cheque(cheque_id).status == "PENDING"
    assert payment_service.get_payment(payment.id).status == "REVERSED"
    assert order_service.get_order(run["c"]).paid_cents == 0


def test_returned_order_returns_deposited_cheque(business, bank_account, run):
    payment = payment_service.record_payment(
        order_id=run["c"], method="CHEQUE", amount_cents=2_000, cheque_number="000452"
    )
    cheque_service.deposit_cheque(payment.cheque.id, account_id=bank_account.id)

    reconciliation_service.finalize_reconciliation(
        run["load"].id, updates=[{"order_id": run["c"], "status": "RETURNED"}]
    )

    assert cheque_service.get_cheque(payment.cheque.id).status == "RETURNED"
    assert account_service.get_account(bank_account.id).balance_cents == 100_000


def test_returned_order_keeps_cleared_cheque_with_warning(business, bank_account, run):
    payment = payment_service.record_payment(
        order_id=run["c"], method="CHEQUE", amount_cents=2_000, cheque_number="000453"
    )
    cheque_service.deposit_cheque(payment.cheque.id, account_id=bank_account.id)
    cheque_service.clear_cheque(payment.cheque.id)

    result = reconciliation_service.finalize_reconciliation(
        run["load"].id, updates=[{"order_id": run["c"], "status": "RETURNED"}]
    )

    warnings = _by_order(result)[run["c"]]["warnings"]
    assert warnings == [{"order_id": run["c"], "cheque_id": payment.cheque.id, "cheque_status": "PASSED"}]
    assert payment_service.get_payment(payment.id).status == "COMPLETED"
    assert account_service.get_account(bank_account.id).balance_cents == 102_000


def test_invalid_status_rejected(run):
    with pytest.raises(ValidationError) as exc:
        reconciliation_service.finalize_reconciliation(
            run["load"].id, updates=[{"order_id": run["a"], "status": "CANCELLED"}]
        )
    assert exc.value.line == 0


def test_unknown_load(db_session):
    with pytest.raises(NotFound):
        reconciliation_service.finalize_reconciliation(4040, updates=[])


def test_close_without_updates(run):
    result = reconciliation_service.finalize_reconciliation(run["load"].id, updates=None, close_load=True)

    assert result["applied"] == []
    assert result["closed_now"] is True
    assert load_service.list_open_loads() == []
