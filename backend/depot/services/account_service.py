# Overview: Account ledger; every balance change is paired with exactly one AccountTransaction.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import InsufficientFunds, NotFound, SameAccount, ValidationError
from ..models import Account, AccountTransaction, Business
from ..statuses import ACCOUNT_CURRENT, validate_account_type
from ..time_utils import normalize_datetime
from .concurrency import lock_for_update, lock_many, run_atomic
from .document_service import next_document_number
"""
Account Ledger Invariants (authoritative)

- balance_cents == sum of signed entries (to_account +, from_account -).
- balance_cents < 0 only if allow_overdraft.
- No free-floating balance edits: the only writers are the helpers below.
- Multi-account operations lock accounts in id order.
"""

TXN_OPENING = "OPENING"
TXN_TRANSFER = "TRANSFER"
TXN_DEPOSIT = "DEPOSIT"
TXN_WITHDRAWAL = "WITHDRAWAL"
TXN_CHEQUE_CLEAR = "CHEQUE_CLEAR"
TXN_CHEQUE_RETURN = "CHEQUE_RETURN"


def _require_amount(amount_cents) -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")
    return amount_cents


def _get_account_locked(account_id: int) -> Account:
    account = lock_for_update(db.session.query(Account).filter_by(id=account_id)).first()
    if not account:
        raise NotFound(f"Account {account_id} not found", entity_id=account_id)
    return account


def _check_debit(account: Account, amount_cents: int) -> None:
    if account.balance_cents - amount_cents < 0 and not account.allow_overdraft:
        raise InsufficientFunds(
            f"Account {account.name} has {account.balance_cents} cents; cannot debit {amount_cents}",
            entity_id=account.id,
            details={"balance_cents": account.balance_cents, "amount_cents": amount_cents},
        )


def _post_entry(
    *,
    business_id: int,
    transaction_type: str,
    amount_cents: int,
    from_account: Account | None = None,
    to_account: Account | None = None,
    cheque_id: int | None = None,
    occurred_at=None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> AccountTransaction:
    """Apply the balance change and append its ledger entry. Overdraft already checked."""
    if from_account is not None:
        from_account.balance_cents -= amount_cents
    if to_account is not None:
        to_account.balance_cents += amount_cents

    txn = AccountTransaction(
        business_id=business_id,
        transaction_no=next_document_number(
            business_id=business_id,
            document_type="TRANSACTION",
            base=current_app.config.get("DOCUMENT_NUMBER_BASE", 1000),
        ),
        transaction_type=transaction_type,
        from_account_id=from_account.id if from_account is not None else None,
        to_account_id=to_account.id if to_account is not None else None,
        amount_cents=amount_cents,
        cheque_id=cheque_id,
        occurred_at=normalize_datetime(occurred_at),
        note=note,
        actor_user_id=actor_user_id,
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def create_account(
    *,
    business_id: int,
    name: str,
    account_type: str,
    opening_balance_cents: int = 0,
    allow_overdraft: bool | None = None,
    bank_ref: str | None = None,
    actor_user_id: int | None = None,
) -> Account:
    """
    Create an account; a non-zero opening balance is written as an OPENING entry.

    allow_overdraft defaults to True for CURRENT accounts only.
    """
    def _op():
        if not db.session.query(Business).filter_by(id=business_id).first():
            raise NotFound(f"Business {business_id} not found", entity_id=business_id)
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name is required")
        kind = validate_account_type((account_type or "").strip().upper())
        if isinstance(opening_balance_cents, bool) or not isinstance(opening_balance_cents, int):
            raise ValidationError("opening_balance_cents must be an integer")

        if db.session.query(Account).filter_by(business_id=business_id, name=name.strip()).first():
            raise ValidationError(f"Account {name.strip()} already exists")

        account = Account(
            business_id=business_id,
            name=name.strip(),
            account_type=kind,
            bank_ref=bank_ref,
            balance_cents=0,
            allow_overdraft=(kind == ACCOUNT_CURRENT) if allow_overdraft is None else bool(allow_overdraft),
        )
        db.session.add(account)
        db.session.flush()

        if opening_balance_cents > 0:
            _post_entry(
                business_id=business_id,
                transaction_type=TXN_OPENING,
                amount_cents=opening_balance_cents,
                to_account=account,
                note="opening balance",
                actor_user_id=actor_user_id,
            )
        elif opening_balance_cents < 0:
            _check_debit(account, -opening_balance_cents)
            _post_entry(
                business_id=business_id,
                transaction_type=TXN_OPENING,
                amount_cents=-opening_balance_cents,
                from_account=account,
                note="opening balance",
                actor_user_id=actor_user_id,
            )
        return account

    return run_atomic(_op)


def transfer_funds(
    *,
    from_account_id: int,
    to_account_id: int,
    amount_cents: int,
    occurred_at=None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> AccountTransaction:
    """
    Debit one account and credit another as one TRANSFER entry.

    Raises:
        SameAccount: from == to
        ValidationError: amount <= 0, accounts of different businesses
        NotFound: unknown account
        InsufficientFunds: debit would overdraw an account without overdraft
    """
    def _op():
        if from_account_id == to_account_id:
            raise SameAccount("Cannot transfer to the same account", entity_id=from_account_id)
        amount = _require_amount(amount_cents)

        accounts = {acc.id: acc for acc in lock_many(Account, [from_account_id, to_account_id])}
        for account_id in (from_account_id, to_account_id):
            if account_id not in accounts:
                raise NotFound(f"Account {account_id} not found", entity_id=account_id)
        source = accounts[from_account_id]
        dest = accounts[to_account_id]
        if source.business_id != dest.business_id:
            raise ValidationError("Accounts belong to different businesses")

        _check_debit(source, amount)
        return _post_entry(
            business_id=source.business_id,
            transaction_type=TXN_TRANSFER,
            amount_cents=amount,
            from_account=source,
            to_account=dest,
            occurred_at=occurred_at,
            note=note,
            actor_user_id=actor_user_id,
        )

    return run_atomic(_op)


def deposit_funds(
    *,
    account_id: int,
    amount_cents: int,
    occurred_at=None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> AccountTransaction:
    def _op():
        amount = _require_amount(amount_cents)
        account = _get_account_locked(account_id)
        return _post_entry(
            business_id=account.business_id,
            transaction_type=TXN_DEPOSIT,
            amount_cents=amount,
            to_account=account,
            occurred_at=occurred_at,
            note=note,
            actor_user_id=actor_user_id,
        )

    return run_atomic(_op)


def withdraw_funds(
    *,
    account_id: int,
    amount_cents: int,
    occurred_at=None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> AccountTransaction:
    def _op():
        amount = _require_amount(amount_cents)
        account = _get_account_locked(account_id)
        _check_debit(account, amount)
        return _post_entry(
            business_id=account.business_id,
            transaction_type=TXN_WITHDRAWAL,
            amount_cents=amount,
            from_account=account,
            occurred_at=occurred_at,
            note=note,
            actor_user_id=actor_user_id,
        )

    return run_atomic(_op)


def _apply_cheque_effect_locked(
    account: Account,
    delta_cents: int,
    *,
    cheque_id: int,
    occurred_at=None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> AccountTransaction:
    """
    Credit (delta > 0) or debit (delta < 0) an account for a cheque.

    Used by the cheque registry inside its own transaction; same overdraft
    rule as transfers. Does not commit.
    """
    if isinstance(delta_cents, bool) or not isinstance(delta_cents, int) or delta_cents == 0:
        raise ValidationError("delta_cents must be a non-zero integer")

    if delta_cents > 0:
        return _post_entry(
            business_id=account.business_id,
            transaction_type=TXN_CHEQUE_CLEAR,
            amount_cents=delta_cents,
            to_account=account,
            cheque_id=cheque_id,
            occurred_at=occurred_at,
            note=note,
            actor_user_id=actor_user_id,
        )

    _check_debit(account, -delta_cents)
    return _post_entry(
        business_id=account.business_id,
        transaction_type=TXN_CHEQUE_RETURN,
        amount_cents=-delta_cents,
        from_account=account,
        cheque_id=cheque_id,
        occurred_at=occurred_at,
        note=note,
        actor_user_id=actor_user_id,
    )


def apply_cheque_effect(
    *,
    account_id: int,
    delta_cents: int,
    cheque_id: int,
    occurred_at=None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> AccountTransaction:
    def _op():
        account = _get_account_locked(account_id)
        return _apply_cheque_effect_locked(
            account,
            delta_cents,
            cheque_id=cheque_id,
            occurred_at=occurred_at,
            note=note,
            actor_user_id=actor_user_id,
        )

    return run_atomic(_op)


def get_account(account_id: int) -> Account:
    account = db.session.query(Account).filter_by(id=account_id).first()
    if not account:
        raise NotFound(f"Account {account_id} not found", entity_id=account_id)
    return account


def list_transactions(account_id: int) -> list[AccountTransaction]:
    get_account(account_id)
    return (
        db.session.query(AccountTransaction)
        .filter(
            (AccountTransaction.from_account_id == account_id)
            | (AccountTransaction.to_account_id == account_id)
        )
        .order_by(AccountTransaction.id.asc())
        .all()
    )


def reconstruct_balance(account_id: int) -> int:
    """Balance as the signed sum of the account's ledger entries."""
    return sum(txn.signed_amount_for(account_id) for txn in list_transactions(account_id))


def verify_balances(business_id: int | None = None) -> list[dict]:
    """Accounts whose stored balance disagrees with their ledger (empty when healthy)."""
    query = db.session.query(Account)
    if business_id is not None:
        query = query.filter(Account.business_id == business_id)

    mismatches = []
    for account in query.order_by(Account.id.asc()).all():
        ledger = reconstruct_balance(account.id)
        if ledger != account.balance_cents:
            mismatches.append({
                "account_id": account.id,
                "name": account.name,
                "balance_cents": account.balance_cents,
                "ledger_cents": ledger,
            })
    return mismatches
