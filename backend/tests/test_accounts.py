"""
Account ledger tests.

Every balance change is paired with one ledger entry, so a stored balance
can always be rebuilt from the entries.
"""

import pytest

from depot.errors import InsufficientFunds, NotFound, SameAccount, ValidationError
from depot.services import account_service


def test_opening_balance_is_an_entry(bank_account):
    entries = account_service.list_transactions(bank_account.id)

    assert [(t.transaction_type, t.amount_cents) for t in entries] == [("OPENING", 100_000)]
    assert entries[0].transaction_no == "TXN-1001"


def test_zero_opening_writes_nothing(cash_account):
    assert account_service.list_transactions(cash_account.id) == []
    assert cash_account.balance_cents == 0


def test_transfer_conserves_money(bank_account, cash_account):
    txn = account_service.transfer_funds(
        from_account_id=bank_account.id,
        to_account_id=cash_account.id,
        amount_cents=30_000,
        note="float for the run",
    )

    assert txn.transaction_type == "TRANSFER"
    bank = account_service.get_account(bank_account.id)
    cash = account_service.get_account(cash_account.id)
    assert bank.balance_cents == 70_000
    assert cash.balance_cents == 30_000
    assert bank.balance_cents + cash.balance_cents == 100_000
    assert account_service.verify_balances() == []


def test_insufficient_funds_leaves_balances(bank_account, cash_account):
    with pytest.raises(InsufficientFunds) as exc:
        account_service.transfer_funds(
            from_account_id=cash_account.id,
            to_account_id=bank_account.id,
            amount_cents=1,
        )

    assert exc.value.details == {"balance_cents": 0, "amount_cents": 1}
    assert account_service.get_account(cash_account.id).balance_cents == 0
    assert account_service.get_account(bank_account.id).balance_cents == 100_000
    assert len(account_service.list_transactions(bank_account.id)) == 1


def test_same_account_rejected(bank_account):
    with pytest.raises(SameAccount):
        account_service.transfer_funds(
            from_account_id=bank_account.id,
            to_account_id=bank_account.id,
            amount_cents=10,
        )


@pytest.mark.parametrize("amount", [0, -5, True, "100"])
def test_non_positive_amount_rejected(bank_account, cash_account, amount):
    with pytest.raises(ValidationError):
        account_service.transfer_funds(
            from_account_id=bank_account.id,
            to_account_id=cash_account.id,
            amount_cents=amount,
        )


def test_unknown_account(bank_account):
    with pytest.raises(NotFound):
        account_service.transfer_funds(
            from_account_id=bank_account.id,
            to_account_id=777_777,
            amount_cents=10,
        )


def test_cross_business_transfer_rejected(bank_account, other_business):
    foreign = account_service.create_account(
        business_id=other_business.id, name="South Cash", account_type="CASH"
    )
    with pytest.raises(ValidationError):
        account_service.transfer_funds(
            from_account_id=bank_account.id,
            to_account_id=foreign.id,
            amount_cents=10,
        )


def test_current_account_may_overdraw(business, cash_account):
    current = account_service.create_account(business_id=business.id, name="Current A/C", account_type="current")
    assert current.allow_overdraft is True

    account_service.transfer_funds(from_account_id=current.id, to_account_id=cash_account.id, amount_cents=5_000)

    assert account_service.get_account(current.id).balance_cents == -5_000
    assert account_service.reconstruct_balance(current.id) == -5_000


def test_withdraw_and_deposit(bank_account):
    account_service.withdraw_funds(account_id=bank_account.id, amount_cents=40_000, note="rent")
    account_service.deposit_funds(account_id=bank_account.id, amount_cents=2_500)

    assert account_service.get_account(bank_account.id).balance_cents == 62_500
    kinds = [t.transaction_type for t in account_service.list_transactions(bank_account.id)]
    assert kinds == ["OPENING", "WITHDRAWAL", "DEPOSIT"]


def test_withdraw_beyond_balance(bank_account):
    with pytest.raises(InsufficientFunds):
        account_service.withdraw_funds(account_id=bank_account.id, amount_cents=100_001)


def test_cheque_effect_debit_respects_overdraft(bank_account):
    with pytest.raises(InsufficientFunds):
        account_service.apply_cheque_effect(account_id=bank_account.id, delta_cents=-100_001, cheque_id=None)


def test_zero_cheque_effect_rejected(bank_account):
    with pytest.raises(ValidationError):
        account_service.apply_cheque_effect(account_id=bank_account.id, delta_cents=0, cheque_id=None)


def test_duplicate_account_name(business, bank_account):
    with pytest.raises(ValidationError):
        account_service.create_account(business_id=business.id, name="Bank Savings", account_type="SAVINGS")


def test_invalid_account_type(business):
    with pytest.raises(ValidationError):
        account_service.create_account(business_id=business.id, name="Petty", account_type="WALLET")


def test_verify_balances_reports_drift(db_session, bank_account):
    # Simulate an out-of-band edit that bypassed the ledger
    account = account_service.get_account(bank_account.id)
    account.balance_cents = 1
    db_session.commit()

    mismatches = account_service.verify_balances(business_id=bank_account.business_id)

    assert mismatches == [{
        "account_id": bank_account.id,
        "name": "Bank Savings",
        "balance_cents": 1,
        "ledger_cents": 100_000,
    }]
