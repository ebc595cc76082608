"""
Order state machine tests.

The dispatched amount is captured once, when the order first leaves on a
load, and no later edit or reschedule may overwrite it.
"""

import pytest

from depot.errors import InvalidTransition, NotFound, ValidationError
from depot.models import Customer
from depot.services import load_service, order_service, reconciliation_service
from depot.services.history_service import ENTITY_ORDER, get_history
from depot.statuses import ORDER_STATUSES, ORDER_TRANSITIONS, can_transition_order


def _load(business, *order_ids, day="2026-03-03"):
    return load_service.create_load(
        business_id=business.id,
        order_ids=list(order_ids),
        vehicle_ref="LB-4021",
        responsible_person_id=3,
        load_date=day,
    )


class TestOrderCreation:
    def test_total_is_sum_of_charged_lines(self, business, customer, product, product_b):
        order = order_service.create_order(
            business_id=business.id,
            customer_id=customer.id,
            lines=[
                {"product_id": product.id, "quantity": 10, "unit_price_cents": 1000, "free_quantity": 2},
                {"product_id": product_b.id, "quantity": 3, "unit_price_cents": 250},
            ],
        )

        assert order.status == "PENDING"
        assert order.total_cents == 10_750
        assert order.payment_status == "UNPAID"
        assert order.order_number == "ORD-1001"
        assert [e.kind for e in order.amount_entries] == ["OPENING"]
        assert order.dispatched_cents is None

        history = get_history(ENTITY_ORDER, order.id)
        assert [(h.previous_state, h.new_state) for h in history] == [(None, "PENDING")]

    def test_unknown_product_reports_line(self, business, customer, product):
        with pytest.raises(NotFound) as exc:
            order_service.create_order(
                business_id=business.id,
                customer_id=customer.id,
                lines=[
                    {"product_id": product.id, "quantity": 1, "unit_price_cents": 100},
                    {"product_id": 999_999, "quantity": 1, "unit_price_cents": 100},
                ],
            )
        assert exc.value.line == 1

    def test_empty_lines_rejected(self, business, customer):
        with pytest.raises(ValidationError):
            order_service.create_order(business_id=business.id, customer_id=customer.id, lines=[])

    def test_customer_of_other_business_not_found(self, other_business, customer, product):
        with pytest.raises(NotFound):
            order_service.create_order(
                business_id=other_business.id,
                customer_id=customer.id,
                lines=[{"product_id": product.id, "quantity": 1, "unit_price_cents": 100}],
            )


class TestTransitions:
    def test_transition_table_is_closed(self):
        for source in ORDER_STATUSES:
            for target in ORDER_STATUSES:
                assert can_transition_order(source, target) == (target in ORDER_TRANSITIONS[source])

    def test_cancelled_is_terminal(self):
        assert not any(can_transition_order("CANCELLED", target) for target in ORDER_STATUSES)

    def test_happy_path_writes_history(self, make_order):
        order = make_order(status="LOADING")

        history = get_history(ENTITY_ORDER, order.id)
        assert [h.new_state for h in history] == ["PENDING", "PROCESSING", "CHECKING", "LOADING"]
        assert history[-1].reason == "qc passed"

    def test_forced_qc_is_recorded(self, make_order):
        order = make_order(status="CHECKING")
        order_service.pass_qc(order.id, force=True, actor_user_id=5)

        last = get_history(ENTITY_ORDER, order.id)[-1]
        assert last.new_state == "LOADING"
        assert last.reason == "qc passed (forced)"
        assert last.actor_user_id == 5

    def test_approve_twice_rejected(self, make_order):
        order = make_order(status="PROCESSING")
        with pytest.raises(InvalidTransition):
            order_service.approve_order(order.id)

    def test_skip_checking_rejected(self, make_order):
        order = make_order(status="PENDING")
        with pytest.raises(InvalidTransition):
            order_service.pass_qc(order.id)
        assert order_service.get_order(order.id).status == "PENDING"

    def test_reject_before_dispatch(self, make_order):
        order = make_order(status="LOADING")
        order = order_service.reject_order(order.id, reason="customer closed")

        assert order.status == "CANCELLED"
        assert get_history(ENTITY_ORDER, order.id)[-1].reason == "customer closed"

    def test_in_transit_cannot_be_cancelled(self, business, make_order):
        order = make_order()
        _load(business, order.id)

        with pytest.raises(InvalidTransition):
            order_service.reject_order(order.id)
        assert order_service.get_order(order.id).status == "IN_TRANSIT"

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFound):
            order_service.approve_order(424242)


class TestDispatchedAmount:
    def test_snapshot_taken_on_load(self, business, make_order):
        order = make_order(unit_price_cents=1000, quantity=10)
        _load(business, order.id)

        order = order_service.get_order(order.id)
        assert order.status == "IN_TRANSIT"
        assert order.dispatched_cents == 10_000

    def test_edit_does_not_touch_snapshot(self, business, make_order):
        order = make_order(unit_price_cents=1000, quantity=10)
        _load(business, order.id)

        order = order_service.edit_invoice_amount(order.id, new_total_cents=9_000, reason="short shipped")

        assert order.total_cents == 9_000
        assert order.dispatched_cents == 10_000
        assert [e.kind for e in order.amount_entries] == ["OPENING", "DISPATCH", "EDIT"]
        assert order.amount_entries[-1].previous_cents == 10_000

    def test_reload_after_reschedule_keeps_first_snapshot(self, business, make_order):
        order = make_order(unit_price_cents=1000, quantity=10)
        first = _load(business, order.id)
        order_service.edit_invoice_amount(order.id, new_total_cents=8_000)
        reconciliation_service.finalize_reconciliation(
            first.id,
            updates=[{"order_id": order.id, "status": "LOADING"}],
            close_load=True,
        )

        _load(business, order.id, day="2026-03-04")
        order = order_service.get_order(order.id)

        assert order.status == "IN_TRANSIT"
        assert order.dispatched_cents == 10_000
        assert [e.kind for e in order.amount_entries].count("DISPATCH") == 1

    def test_final_order_cannot_be_edited(self, business, make_order):
        order = make_order()
        load = _load(business, order.id)
        reconciliation_service.finalize_reconciliation(
            load.id, updates=[{"order_id": order.id, "status": "DELIVERED"}]
        )

        with pytest.raises(InvalidTransition):
            order_service.edit_invoice_amount(order.id, new_total_cents=1)


class TestInvoicing:
    def test_invoice_adds_receivable(self, make_order, customer):
        order = make_order(unit_price_cents=500, quantity=4)
        order = order_service.issue_invoice(order.id)

        assert order.invoice_no == "INV-1001"
        assert order.billed_at is not None
        assert order_service.get_order(order.id).customer.outstanding_cents == 2_000

    def test_invoice_only_once(self, make_order):
        order = make_order()
        order_service.issue_invoice(order.id)
        with pytest.raises(InvalidTransition):
            order_service.issue_invoice(order.id)

    def test_pending_order_cannot_be_invoiced(self, make_order):
        order = make_order(status="PENDING")
        with pytest.raises(InvalidTransition):
            order_service.issue_invoice(order.id)

    def test_edit_after_invoice_moves_receivable(self, db_session, make_order, customer):
        order = make_order(unit_price_cents=1000, quantity=10)
        order_service.issue_invoice(order.id)
        order_service.edit_invoice_amount(order.id, new_total_cents=7_500)

        assert db_session.get(Customer, customer.id).outstanding_cents == 7_500

    def test_negative_total_rejected(self, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.edit_invoice_amount(order.id, new_total_cents=-1)
