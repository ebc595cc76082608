"""
Cheque lifecycle tests.

Only clearing moves money into the deposit account; a return withdraws
exactly what the cheque credited and reverses the customer payment.
"""

import pytest

from depot.errors import InvalidTransition, ValidationError
from depot.models import AccountTransaction
from depot.services import account_service, cheque_service, payment_service
from depot.services.history_service import ENTITY_CHEQUE, get_history
from depot.statuses import CHEQUE_STATUSES, can_transition_cheque


LEGAL_EDGES = {
    ("PENDING", "DEPOSITED"),
    ("DEPOSITED", "PASSED"),
    ("DEPOSITED", "RETURNED"),
}


@pytest.fixture
def cheque_payment(make_order):
    order = make_order(unit_price_cents=2_000, quantity=10)
    return payment_service.record_payment(
        order_id=order.id,
        method="cheque",
        amount_cents=20_000,
        cheque_number="204518",
        cheque_date="2026-03-05",
        bank_ref="BOC Kandy",
    )


def _txn_count(db_session):
    return db_session.query(AccountTransaction).count()


def test_transition_table():
    for source in CHEQUE_STATUSES:
        for target in CHEQUE_STATUSES:
            assert can_transition_cheque(source, target) == ((source, target) in LEGAL_EDGES)


def test_unknown_status_rejected():
    with pytest.raises(ValidationError):
        can_transition_cheque("BOUNCED", "PENDING")


def test_cheque_payment_creates_pending_cheque(cheque_payment):
    cheque = cheque_payment.cheque

    assert cheque.status == "PENDING"
    assert cheque.amount_cents == 20_000
    assert cheque.cheque_number == "204518"
    assert cheque.cheque_date.isoformat() == "2026-03-05"
    assert cheque_service.cheques_for_order(cheque_payment.order_id) == [cheque]


def test_cheque_requires_number(make_order):
    order = make_order()
    with pytest.raises(ValidationError):
        payment_service.record_payment(order_id=order.id, method="CHEQUE", amount_cents=100)


def test_deposit_moves_no_money(db_session, bank_account, cheque_payment):
    before = _txn_count(db_session)

    cheque = cheque_service.deposit_cheque(cheque_payment.cheque.id, account_id=bank_account.id)

    assert cheque.status == "DEPOSITED"
    assert cheque.deposit_account_id == bank_account.id
    assert account_service.get_account(bank_account.id).balance_cents == 100_000
    assert _txn_count(db_session) == before


def test_clear_credits_account(bank_account, cheque_payment):
    cheque_id = cheque_payment.cheque.id
    cheque_service.deposit_cheque(cheque_id, account_id=bank_account.id)
    cheque = cheque_service.clear_cheque(cheque_id, cleared_at="2026-03-08T10:00:00Z")

    assert cheque.status == "PASSED"
    assert account_service.get_account(bank_account.id).balance_cents == 120_000
    assert account_service.reconstruct_balance(bank_account.id) == 120_000

    history = get_history(ENTITY_CHEQUE, cheque_id)
    assert [h.new_state for h in history] == ["DEPOSITED", "PASSED"]
    assert history[-1].idempotency_key == cheque_service.idempotency_key(cheque_id, "PASSED")


def test_return_after_pass_rejected(db_session, bank_account, cheque_payment):
    cheque_id = cheque_payment.cheque.id
    cheque_service.deposit_cheque(cheque_id, account_id=bank_account.id)
    cheque_service.clear_cheque(cheque_id)
    entries = _txn_count(db_session)

    with pytest.raises(InvalidTransition):
        cheque_service.return_cheque(cheque_id, reason="late bounce")

    assert cheque_service.get_cheque(cheque_id).status == "PASSED"
    assert account_service.get_account(bank_account.id).balance_cents == 120_000
    assert _txn_count(db_session) == entries
    assert payment_service.get_payment(cheque_payment.id).status == "COMPLETED"


def test_return_deposited_reverses_payment(db_session, bank_account, cheque_payment):
    cheque_id = cheque_payment.cheque.id
    cheque_service.deposit_cheque(cheque_id, account_id=bank_account.id)
    entries = _txn_count(db_session)

    cheque = cheque_service.return_cheque(cheque_id, reason="refer to drawer")

    assert cheque.status == "RETURNED"
    assert cheque.return_reason == "refer to drawer"
    assert account_service.get_account(bank_account.id).balance_cents == 100_000
    assert _txn_count(db_session) == entries

    payment = payment_service.get_payment(cheque_payment.id)
    assert payment.status == "REVERSED"
    assert payment.order.paid_cents == 0
    assert payment.order.payment_status == "UNPAID"


def test_returned_is_terminal(bank_account, cheque_payment):
    cheque_id = cheque_payment.cheque.id
    cheque_service.deposit_cheque(cheque_id, account_id=bank_account.id)
    cheque_service.return_cheque(cheque_id)

    with pytest.raises(InvalidTransition):
        cheque_service.return_cheque(cheque_id)
    with pytest.raises(InvalidTransition):
        cheque_service.clear_cheque(cheque_id)


def test_pending_return_is_hand_back(db_session, cheque_payment):
    cheque_id = cheque_payment.cheque.id
    entries = _txn_count(db_session)

    cheque = cheque_service.return_cheque(cheque_id, reason="customer asked for it back")

    assert cheque.status == "PENDING"
    assert payment_service.get_payment(cheque_payment.id).status == "REVERSED"
    assert _txn_count(db_session) == entries

    last = get_history(ENTITY_CHEQUE, cheque_id)[-1]
    assert (last.previous_state, last.new_state) == ("PENDING", "PENDING")
    assert last.idempotency_key == cheque_service.idempotency_key(cheque_id, "HANDED_BACK")


def test_hand_back_only_once(cheque_payment):
    cheque_id = cheque_payment.cheque.id
    cheque_service.return_cheque(cheque_id)

    with pytest.raises(InvalidTransition):
        cheque_service.return_cheque(cheque_id)


def test_handed_back_cheque_cannot_be_deposited(bank_account, cheque_payment):
    cheque_id = cheque_payment.cheque.id
    cheque_service.return_cheque(cheque_id)

    with pytest.raises(InvalidTransition):
        cheque_service.deposit_cheque(cheque_id, account_id=bank_account.id)


def test_deposit_twice_rejected(bank_account, cheque_payment):
    cheque_id = cheque_payment.cheque.id
    cheque_service.deposit_cheque(cheque_id, account_id=bank_account.id)

    with pytest.raises(InvalidTransition):
        cheque_service.deposit_cheque(cheque_id, account_id=bank_account.id)


def test_clear_pending_rejected(bank_account, cheque_payment):
    with pytest.raises(InvalidTransition):
        cheque_service.clear_cheque(cheque_payment.cheque.id)
    assert account_service.get_account(bank_account.id).balance_cents == 100_000


def test_deposit_into_other_business_account(other_business, cheque_payment):
    foreign = account_service.create_account(
        business_id=other_business.id, name="South Bank", account_type="SAVINGS"
    )
    with pytest.raises(ValidationError):
        cheque_service.deposit_cheque(cheque_payment.cheque.id, account_id=foreign.id)


def test_cheque_payment_cannot_be_reversed_directly(cheque_payment):
    with pytest.raises(InvalidTransition):
        payment_service.reverse_payment(payment_id=cheque_payment.id)


def test_list_cheques_by_status(business, bank_account, cheque_payment, make_order):
    other = payment_service.record_payment(
        order_id=make_order().id, method="CHEQUE", amount_cents=500, cheque_number="204519"
    )
    cheque_service.deposit_cheque(cheque_payment.cheque.id, account_id=bank_account.id)

    pending = cheque_service.list_cheques(business_id=business.id, status="pending")
    deposited = cheque_service.list_cheques(business_id=business.id, status="DEPOSITED")

    assert [c.id for c in pending] == [other.cheque.id]
    assert [c.id for c in deposited] == [cheque_payment.cheque.id]
