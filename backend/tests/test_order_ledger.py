"""
Tests for the order ledger and the status state machine.
"""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from core.errors import ValidationError
from db.models import OrderStatusChange
from orders import ledger
from orders.status import StatusSource, initial_status_for_payment, is_valid_status, source_may_set


def _order_data(**overrides):
    data = {
        "customer_name": "Ana Pérez",
        "customer_email": "ana@example.com",
        "customer_phone": "+54 11 5555 0000",
        "address": "Av. Corrientes 1234",
        "city": "Buenos Aires",
        "zip_code": "C1043",
        "quantity": 4,
        "total": 100,
    }
    data.update(overrides)
    return data


class TestStatusHelpers:
    def test_valid_statuses(self):
        for status in ("pending", "confirmed", "shipped", "delivered", "cancelled"):
            assert is_valid_status(status)
        assert not is_valid_status("refunded")
        assert not is_valid_status(None)

    def test_initial_status_for_payment(self):
        assert initial_status_for_payment("approved") == "confirmed"
        assert initial_status_for_payment("rejected") == "cancelled"
        assert initial_status_for_payment("in_process") == "pending"
        assert initial_status_for_payment(None) == "pending"

    def test_only_admin_sets_fulfilment_statuses(self):
        for status in ("shipped", "delivered"):
            assert source_may_set(status, StatusSource.ADMIN)
            assert not source_may_set(status, StatusSource.PAYMENT_EVENT)
            assert not source_may_set(status, "checkout")
        assert source_may_set("confirmed", StatusSource.PAYMENT_EVENT)


class TestValidation:
    def test_missing_fields_are_reported(self):
        with pytest.raises(ValidationError) as excinfo:
            ledger.validate_order(_order_data(customer_email="", city=None))
        assert excinfo.value.fields == ["customer_email", "city"]

    def test_quantity_must_be_positive_integer(self):
        with pytest.raises(ValidationError):
            ledger.validate_order(_order_data(quantity=0))
        with pytest.raises(ValidationError):
            ledger.validate_order(_order_data(quantity=1.5))

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            ledger.validate_order(_order_data(status="lost"))

    def test_item_subtotal_must_match(self):
        with pytest.raises(ValidationError) as excinfo:
            ledger.build_items([{"label": "Negro", "quantity": 2, "unit_price": 10, "subtotal": 25}])
        assert excinfo.value.fields == ["items[0].subtotal"]

    def test_item_subtotal_computed_when_absent(self):
        (item,) = ledger.build_items([{"label": "Negro", "quantity": 3, "unit_price": 12.5}])
        assert item.subtotal == 37.5


@pytest.mark.asyncio
class TestCreateOrder:
    async def test_defaults_to_pending_with_reference(self, test_db):
        order = await ledger.create_order(test_db, _order_data())
        assert order.status == "pending"
        assert order.total == 100
        assert order.quantity == 4
        assert order.external_reference == str(order.order_id)
        assert order.is_preorder is False

    async def test_pre_generated_id_is_used(self, test_db):
        order_id = ledger.new_order_id()
        order = await ledger.create_order(test_db, _order_data(), order_id=order_id)
        assert order.order_id == order_id
        found = await ledger.get_order_by_external_reference(test_db, str(order_id))
        assert found.order_id == order_id

    async def test_items_are_persisted(self, test_db):
        order = await ledger.create_order(
            test_db,
            _order_data(quantity=2, total=40),
            items=[
                {"label": "Negro", "quantity": 1, "unit_price": 20, "subtotal": 20},
                {"label": "Blanco", "quantity": 1, "unit_price": 20},
            ],
        )
        items = await ledger.list_items(test_db, order.order_id)
        assert sorted(item.label for item in items) == ["Blanco", "Negro"]
        assert all(item.subtotal == 20 for item in items)

    async def test_creation_is_audited(self, test_db):
        order = await ledger.create_order(test_db, _order_data(status="confirmed"))
        result = await test_db.execute(
            select(OrderStatusChange).where(OrderStatusChange.order_id == order.order_id)
        )
        (change,) = result.scalars().all()
        assert change.from_status is None
        assert change.to_status == "confirmed"
        assert change.source == "checkout"

    async def test_invalid_order_writes_nothing(self, test_db):
        with pytest.raises(ValidationError):
            await ledger.create_order(test_db, _order_data(total=0))
        assert await ledger.list_orders(test_db) == []

    async def test_list_newest_first_and_filter(self, test_db):
        older = await ledger.create_order(test_db, _order_data())
        newer = await ledger.create_order(test_db, _order_data(status="confirmed"))
        older.created_at = datetime.utcnow() - timedelta(hours=1)
        await test_db.commit()

        orders = await ledger.list_orders(test_db)
        assert [o.order_id for o in orders] == [newer.order_id, older.order_id]

        confirmed = await ledger.list_orders(test_db, status="confirmed")
        assert [o.order_id for o in confirmed] == [newer.order_id]

    async def test_get_missing_order(self, test_db):
        assert await ledger.get_order(test_db, uuid.uuid4()) is None


@pytest.mark.asyncio
class TestSetStatus:
    async def test_admin_moves_order_to_shipped(self, test_db):
        order = await ledger.create_order(test_db, _order_data(status="confirmed"))
        updated = await ledger.set_status(test_db, order.order_id, "shipped")
        assert updated.status == "shipped"

        result = await test_db.execute(
            select(OrderStatusChange)
            .where(OrderStatusChange.order_id == order.order_id, OrderStatusChange.to_status == "shipped")
        )
        change = result.scalar_one()
        assert change.from_status == "confirmed"
        assert change.source == StatusSource.ADMIN.value

    async def test_set_status_is_unconditional(self, test_db):
        order = await ledger.create_order(test_db, _order_data(status="cancelled"))
        updated = await ledger.set_status(test_db, order.order_id, "confirmed", source=StatusSource.PAYMENT_EVENT)
        assert updated.status == "confirmed"

    async def test_missing_order_returns_none(self, test_db):
        assert await ledger.set_status(test_db, uuid.uuid4(), "shipped") is None

    async def test_payment_event_cannot_ship(self, test_db):
        order = await ledger.create_order(test_db, _order_data(status="confirmed"))
        with pytest.raises(ValidationError) as excinfo:
            await ledger.set_status(test_db, order.order_id, "shipped", source=StatusSource.PAYMENT_EVENT)
        assert excinfo.value.fields == ["status"]

        await test_db.refresh(order)
        assert order.status == "confirmed"

    async def test_checkout_cannot_create_delivered_order(self, test_db):
        with pytest.raises(ValidationError):
            await ledger.create_order(test_db, _order_data(status="delivered"))
