from __future__ import annotations

from ..extensions import db
from depot.time_utils import to_utc_z, to_iso_date


class Account(db.Model):
    """
    Cash / bank account of a business.

    INVARIANTS:
    - balance_cents == signed sum of the account's AccountTransaction rows
    - balance_cents < 0 only when allow_overdraft (CURRENT accounts by default)
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("business_id", "name", name="uq_accounts_business_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    account_type = db.Column(db.String(16), nullable=False)
    bank_ref = db.Column(db.String(64), nullable=True)

    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    allow_overdraft = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Account id={self.id} name={self.name!r} balance_cents={self.balance_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "account_type": self.account_type,
            "bank_ref": self.bank_ref,
            "balance_cents": self.balance_cents,
            "allow_overdraft": self.allow_overdraft,
            "is_active": self.is_active,
            "version_id": self.version_id,
        }


class AccountTransaction(db.Model):
    """
    Append-only account ledger entry.

    transaction_type:
    - OPENING: opening balance (to_account only)
    - TRANSFER: from_account -> to_account
    - DEPOSIT / WITHDRAWAL: external money in / out
    - CHEQUE_CLEAR: cleared customer cheque credited to its deposit account

    amount_cents is always positive; direction comes from from/to.
    """
    __tablename__ = "account_transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_account_transactions_amount_positive"),
        db.UniqueConstraint("business_id", "transaction_no", name="uq_account_transactions_business_no"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    # TXN-1001
    transaction_no = db.Column(db.String(64), nullable=False)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)

    from_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)
    to_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    cheque_id = db.Column(db.Integer, db.ForeignKey("cheques.id"), nullable=True, index=True)

    note = db.Column(db.String(255), nullable=True)
    actor_user_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def signed_amount_for(self, account_id: int) -> int:
        if self.to_account_id == account_id:
            return self.amount_cents
        if self.from_account_id == account_id:
            return -self.amount_cents
        return 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "transaction_no": self.transaction_no,
            "transaction_type": self.transaction_type,
            "from_account_id": self.from_account_id,
            "to_account_id": self.to_account_id,
            "amount_cents": self.amount_cents,
            "cheque_id": self.cheque_id,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class Payment(db.Model):
    """
    Customer payment against an order.

    status COMPLETED counts toward the order's paid amount; REVERSED does not.
    A CHEQUE payment owns exactly one Cheque row.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    method = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)

    note = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reversed_by_user_id = db.Column(db.Integer, nullable=True)
    reversal_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    cheque = db.relationship("Cheque", back_populates="payment", uselist=False)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "note": self.note,
            "cheque_id": self.cheque.id if self.cheque else None,
            "created_at": to_utc_z(self.created_at),
            "reversed_at": to_utc_z(self.reversed_at) if self.reversed_at else None,
            "reversal_reason": self.reversal_reason,
        }


class Cheque(db.Model):
    """
    Customer cheque.

    LIFECYCLE: see depot.statuses (CHEQUE STATE MACHINE).

    The amount is fixed at creation. Depositing is provisional and moves no
    money; only clearing credits the deposit account.
    """
    __tablename__ = "cheques"
    __table_args__ = (
        db.UniqueConstraint("payment_id", "cheque_number", name="uq_cheques_payment_number"),
        db.Index("ix_cheques_business_status", "business_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)

    cheque_number = db.Column(db.String(64), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    cheque_date = db.Column(db.Date, nullable=False)
    bank_ref = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    deposit_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)
    deposited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cleared_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    return_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    payment = db.relationship("Payment", back_populates="cheque")
    deposit_account = db.relationship("Account")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Cheque id={self.id} number={self.cheque_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "payment_id": self.payment_id,
            "cheque_number": self.cheque_number,
            "amount_cents": self.amount_cents,
            "cheque_date": to_iso_date(self.cheque_date),
            "bank_ref": self.bank_ref,
            "status": self.status,
            "deposit_account_id": self.deposit_account_id,
            "deposited_at": to_utc_z(self.deposited_at) if self.deposited_at else None,
            "cleared_at": to_utc_z(self.cleared_at) if self.cleared_at else None,
            "returned_at": to_utc_z(self.returned_at) if self.returned_at else None,
            "return_reason": self.return_reason,
            "version_id": self.version_id,
        }


class SupplierPayment(db.Model):
    """
    Money paid out of a company account against a supplier purchase.

    Each row is paired with exactly one WITHDRAWAL AccountTransaction; the
    purchase's paid_cents is the sum of its supplier payments.
    """
    __tablename__ = "supplier_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_supplier_payments_amount_positive"),
        db.UniqueConstraint("business_id", "payment_number", name="uq_supplier_payments_business_no"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    account_transaction_id = db.Column(db.Integer, db.ForeignKey("account_transactions.id"), nullable=False)

    # SP-1001
    payment_number = db.Column(db.String(64), nullable=False)
    method = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    purchase = db.relationship(
        "Purchase",
        backref=db.backref("supplier_payments", lazy=True, order_by="SupplierPayment.id"),
    )
    account = db.relationship("Account")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "purchase_id": self.purchase_id,
            "supplier_id": self.supplier_id,
            "account_id": self.account_id,
            "account_transaction_id": self.account_transaction_id,
            "payment_number": self.payment_number,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "paid_at": to_utc_z(self.paid_at),
        }
