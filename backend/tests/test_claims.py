"""
Free-issue claim conversion tests.

A claim converts exactly once: the second attempt fails and stock is
credited a single time.
"""

import pytest

from depot.errors import AlreadyClaimed, NotFound, ValidationError
from depot.services import claim_service, order_service, purchase_service, stock_service


@pytest.fixture
def claim_lines(make_order):
    first = make_order(quantity=10, free_quantity=2, status="PENDING")
    second = make_order(quantity=5, free_quantity=1, status="PENDING")
    return [first.lines[0].id, second.lines[0].id]


def test_convert_creates_free_bill(business, supplier, product, warehouse, claim_lines):
    purchase = claim_service.convert_claims(
        item_ids=claim_lines,
        supplier_id=supplier.id,
        note="March free issue",
        occurred_at="2026-03-31T09:00:00Z",
    )

    assert purchase.document_number == "FB-2026-1001"
    assert purchase.is_free_issue is True
    assert purchase.status == "RECEIVED"
    assert purchase.payment_status == "PAID"
    assert purchase.total_cents == 0
    assert [(line.product_id, line.quantity) for line in purchase.lines] == [(product.id, 3)]
    assert stock_service.get_position(warehouse.id, product.id)["good_quantity"] == 3

    movements = stock_service.list_movements(document_number="FB-2026-1001")
    assert [m.movement_type for m in movements] == ["CLAIM_RECEIVE"]
    assert claim_service.list_claimable(business.id) == []


def test_second_conversion_rejected(supplier, product, warehouse, claim_lines):
    claim_service.convert_claims(item_ids=claim_lines, supplier_id=supplier.id)

    with pytest.raises(AlreadyClaimed) as exc:
        claim_service.convert_claims(item_ids=claim_lines, supplier_id=supplier.id)

    assert exc.value.details == {"item_ids": sorted(claim_lines)}
    assert stock_service.get_position(warehouse.id, product.id)["good_quantity"] == 3


def test_partial_overlap_rejected_entirely(supplier, product, warehouse, make_order, claim_lines):
    claim_service.convert_claims(item_ids=claim_lines[:1], supplier_id=supplier.id)
    fresh = make_order(quantity=1, free_quantity=4, status="PENDING").lines[0].id

    with pytest.raises(AlreadyClaimed) as exc:
        claim_service.convert_claims(item_ids=[fresh, claim_lines[0]], supplier_id=supplier.id)

    assert exc.value.details == {"item_ids": [claim_lines[0]]}
    assert stock_service.get_position(warehouse.id, product.id)["good_quantity"] == 2


def test_line_without_free_quantity(supplier, make_order):
    line_id = make_order(free_quantity=0, status="PENDING").lines[0].id

    with pytest.raises(ValidationError) as exc:
        claim_service.convert_claims(item_ids=[line_id], supplier_id=supplier.id)
    assert exc.value.line == 0


def test_unknown_line(supplier, claim_lines):
    with pytest.raises(NotFound) as exc:
        claim_service.convert_claims(item_ids=[claim_lines[0], 424_242], supplier_id=supplier.id)
    assert exc.value.line == 1


def test_other_business_cannot_convert(other_business, supplier, claim_lines):
    with pytest.raises(NotFound):
        claim_service.convert_claims(item_ids=claim_lines, supplier_id=supplier.id, business_id=other_business.id)


def test_empty_selection(supplier):
    with pytest.raises(ValidationError):
        claim_service.convert_claims(item_ids=[], supplier_id=supplier.id)


def test_cancelled_orders_are_not_claimable(business, make_order, claim_lines):
    cancelled = make_order(free_quantity=3, status="PENDING")
    order_service.reject_order(cancelled.id)

    assert [line.id for line in claim_service.list_claimable(business.id)] == claim_lines


def test_free_bill_readable_as_purchase(supplier, claim_lines):
    purchase = claim_service.convert_claims(item_ids=claim_lines, supplier_id=supplier.id)
    assert purchase_service.get_purchase(purchase.id).to_dict()["is_free_issue"] is True


def test_other_business_sees_converted_lines_as_unknown(other_business, supplier, claim_lines):
    claim_service.convert_claims(item_ids=claim_lines, supplier_id=supplier.id)

    with pytest.raises(NotFound) as exc:
        claim_service.convert_claims(item_ids=claim_lines, supplier_id=supplier.id, business_id=other_business.id)

    assert exc.value.line == 0
    assert exc.value.details == {}
