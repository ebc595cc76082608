"""
Load sheet creation tests.

Creating a load is all-or-nothing: if any order fails validation, no order
changes status and no load number is consumed.
"""

import pytest

from depot.errors import AlreadyLoaded, InvalidTransition, NotFound, ValidationError
from depot.models import LoadSheet
from depot.services import business_service, load_service, order_service
from depot.services.history_service import ENTITY_LOAD, get_history


def _create(business_id, order_ids, day="2026-03-03"):
    return load_service.create_load(
        business_id=business_id,
        order_ids=order_ids,
        vehicle_ref="LB-4021",
        responsible_person_id=3,
        load_date=day,
        helper_ref="Kamal",
    )


def test_create_load_moves_orders_in_transit(business, make_order):
    first = make_order(unit_price_cents=1000, quantity=10)
    second = make_order(unit_price_cents=500, quantity=2)

    load = _create(business.id, [second.id, first.id])

    assert load.load_number == "LOAD-2026-1001"
    assert load.is_open is True
    assert load.order_ids == [second.id, first.id]
    assert [line.position for line in load.lines] == [0, 1]

    for order_id, dispatched in ((first.id, 10_000), (second.id, 1_000)):
        order = order_service.get_order(order_id)
        assert order.status == "IN_TRANSIT"
        assert order.load_id == load.id
        assert order.dispatched_cents == dispatched

    history = get_history(ENTITY_LOAD, load.id)
    assert [(h.previous_state, h.new_state) for h in history] == [(None, "OPEN")]


def test_load_numbers_follow_load_year(business, make_order):
    first = _create(business.id, [make_order().id], day="2026-03-03")
    second = _create(business.id, [make_order().id], day="2027-01-05")
    third = _create(business.id, [make_order().id], day="2026-11-20")

    assert first.load_number == "LOAD-2026-1001"
    assert second.load_number == "LOAD-2027-1001"
    assert third.load_number == "LOAD-2026-1002"


def test_order_not_loading_rejects_whole_batch(db_session, business, make_order):
    ready = make_order(status="LOADING")
    pending = make_order(status="PENDING")

    with pytest.raises(InvalidTransition) as exc:
        _create(business.id, [ready.id, pending.id])

    assert exc.value.line == 1
    assert exc.value.entity_id == pending.id
    assert order_service.get_order(ready.id).status == "LOADING"
    assert order_service.get_order(ready.id).dispatched_cents is None
    assert db_session.query(LoadSheet).count() == 0

    # The rejected attempt did not consume a number
    assert _create(business.id, [ready.id]).load_number == "LOAD-2026-1001"


def test_order_on_open_load_is_already_loaded(business, make_order):
    order = make_order()
    _create(business.id, [order.id])

    with pytest.raises(AlreadyLoaded) as exc:
        _create(business.id, [order.id])
    assert exc.value.line == 0


def test_unknown_order_reports_line(business, make_order):
    order = make_order()
    with pytest.raises(NotFound) as exc:
        _create(business.id, [order.id, 987_654])
    assert exc.value.line == 1


def test_other_business_order_not_found(other_business, make_order):
    order = make_order()
    with pytest.raises(NotFound):
        _create(other_business.id, [order.id])
    assert order_service.get_order(order.id).status == "LOADING"


@pytest.mark.parametrize("order_ids", [[], "1,2", [1, 1]])
def test_bad_order_ids(business, order_ids):
    with pytest.raises(ValidationError):
        _create(business.id, order_ids)


def test_bad_load_date(business, make_order):
    with pytest.raises(ValidationError):
        _create(business.id, [make_order().id], day="03/03/2026")


def test_missing_vehicle(business, make_order):
    order = make_order()
    with pytest.raises(ValidationError):
        load_service.create_load(
            business_id=business.id,
            order_ids=[order.id],
            vehicle_ref="  ",
            responsible_person_id=3,
            load_date="2026-03-03",
        )


def test_assign_to_existing_load_appends(business, make_order):
    first = make_order()
    load = _create(business.id, [first.id])
    late = make_order(unit_price_cents=200, quantity=5)

    order = order_service.assign_to_load(late.id, load.id)

    assert order.status == "IN_TRANSIT"
    assert order.dispatched_cents == 1_000
    load = load_service.get_load(load.id)
    assert load.order_ids == [first.id, late.id]
    assert load.lines[-1].position == 1


def test_assign_twice_to_same_load(business, make_order):
    order = make_order()
    load = _create(business.id, [order.id])
    with pytest.raises(AlreadyLoaded):
        order_service.assign_to_load(order.id, load.id)


def test_list_open_loads(business, other_business, make_order):
    load = _create(business.id, [make_order().id])

    assert [ld.id for ld in load_service.list_open_loads(business.id)] == [load.id]
    assert load_service.list_open_loads(other_business.id) == []


def test_get_unknown_load(db_session):
    with pytest.raises(NotFound):
        load_service.get_load(31337)


def test_default_warehouse_created_with_business(business):
    warehouse = business_service.get_default_warehouse(business.id)
    assert warehouse.business_id == business.id
