import asyncio
import re
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

from app.services.conversation_store import CartLine
from app.services.order_service import (
    compute_order_totals,
    fallback_order_number,
    get_order,
    list_orders,
    update_order_status,
)
from app.services.state_machine import BotState

PHONE = "573001112233"
INTERMEDIARY_PHONE = "573238020198"
OWNER_PHONE = "573009998877"


def _cart():
    return [
        CartLine(product_id="p1", name="Camiseta Negra Urbana", price=Decimal("50000"), quantity=2),
    ]


def _confirmed(make_conversation):
    return make_conversation(
        BotState.ORDER_CONFIRMED,
        customer_name="Andrea",
        style="urbano",
        cart=_cart(),
    )


class TestComputeOrderTotals:
    def test_ten_percent_commission(self):
        totals = compute_order_totals(_cart(), Decimal("10"))
        assert totals.subtotal == Decimal("100000")
        assert totals.commission == Decimal("10000")
        assert totals.net == Decimal("90000")

    def test_commission_plus_net_is_subtotal(self):
        cart = [
            CartLine(product_id="p1", name="A", price=Decimal("33333.33"), quantity=3),
            CartLine(product_id="p2", name="B", price=Decimal("1999.99"), quantity=1),
        ]
        for percentage in ("0", "7.5", "12.25", "100"):
            totals = compute_order_totals(cart, Decimal(percentage))
            assert totals.commission == totals.subtotal * Decimal(percentage) / 100
            assert totals.commission + totals.net == totals.subtotal

    def test_empty_cart(self):
        totals = compute_order_totals([], Decimal("10"))
        assert totals.subtotal == Decimal("0")
        assert totals.net == Decimal("0")


class TestFinalize:
    def test_finalize_runs_all_steps(self, finalizer, gateway, db_session, store, make_conversation):
        conversation = _confirmed(make_conversation)

        result = asyncio.run(finalizer.finalize(conversation))

        assert result.ok
        receipt = result.value
        assert receipt.order_number == "WA-0001"
        assert receipt.persisted is True
        assert receipt.notified_intermediary is True
        assert receipt.notified_owner is True
        assert receipt.notified_customer is True

        recipients = [call[0][0] for call in gateway.send_text.call_args_list]
        assert recipients == [INTERMEDIARY_PHONE, OWNER_PHONE, PHONE]

        order = db_session.add.call_args[0][0]
        assert order.status == "pending"
        assert order.subtotal == Decimal("100000")
        assert order.commission_amount == Decimal("10000")
        assert order.final_total == Decimal("90000")
        assert order.items[0]["quantity"] == 2
        assert order.notified_to_intermediary is True
        assert order.notified_to_owner is True

        assert conversation.state == BotState.CLOSED
        assert conversation.closed_at is not None
        assert conversation.order_number == "WA-0001"
        assert store.get(PHONE) is conversation

    def test_intermediary_summary_highlights_commission(self, finalizer, gateway, make_conversation):
        asyncio.run(finalizer.finalize(_confirmed(make_conversation)))

        summary = gateway.send_text.call_args_list[0][0][1]
        assert "NUEVO PEDIDO #WA-0001" in summary
        assert "TU GANANCIA:* $10.000" in summary
        assert "PARA LA TIENDA:* $90.000" in summary
        assert "+57 (300) 111-2233" in summary

    def test_owner_skipped_when_not_configured(self, finalizer, gateway, make_conversation):
        finalizer.owner_phone = None

        result = asyncio.run(finalizer.finalize(_confirmed(make_conversation)))

        assert result.ok
        assert result.value.notified_owner is False
        assert gateway.send_text.await_count == 2

    def test_failed_notification_does_not_stop_other_steps(self, finalizer, gateway, db_session, make_conversation):
        gateway.send_text = AsyncMock(side_effect=[False, True, True])

        result = asyncio.run(finalizer.finalize(_confirmed(make_conversation)))

        receipt = result.value
        assert receipt.notified_intermediary is False
        assert receipt.notified_owner is True
        assert receipt.notified_customer is True
        order = db_session.add.call_args[0][0]
        assert order.notified_to_intermediary is False
        assert order.notified_to_owner is True

    def test_persistence_failure_still_notifies(self, finalizer, gateway, db_session, make_conversation):
        db_session.add.side_effect = Exception("insert failed")
        conversation = _confirmed(make_conversation)

        result = asyncio.run(finalizer.finalize(conversation))

        assert result.ok
        assert result.value.persisted is False
        assert gateway.send_text.await_count == 3
        assert conversation.state == BotState.CLOSED

    def test_order_number_fallback(self, finalizer, db_session, make_conversation):
        db_session.execute.return_value.scalar.side_effect = Exception("function missing")

        result = asyncio.run(finalizer.finalize(_confirmed(make_conversation)))

        assert re.fullmatch(r"WA-\d{14}-[0-9A-F]{6}", result.value.order_number)

    def test_requires_confirmed_state(self, finalizer, gateway, make_conversation):
        conversation = make_conversation(BotState.CONFIRM_ORDER, cart=_cart())

        result = asyncio.run(finalizer.finalize(conversation))

        assert result.error_code == "invalid_state"
        gateway.send_text.assert_not_awaited()

    def test_requires_non_empty_cart(self, finalizer, make_conversation):
        conversation = make_conversation(BotState.ORDER_CONFIRMED)

        result = asyncio.run(finalizer.finalize(conversation))

        assert result.error_code == "empty_cart"
        assert conversation.state == BotState.ORDER_CONFIRMED


class TestOrderAdministration:
    def test_get_order_not_found(self, db_session):
        db_session.query.return_value.filter.return_value.first.return_value = None
        result = get_order(db_session, "WA-404")
        assert result.error_code == "not_found"

    def test_update_order_status(self, db_session):
        order = SimpleNamespace(order_number="WA-0001", status="pending", updated_at=None)
        db_session.query.return_value.filter.return_value.first.return_value = order

        result = update_order_status(db_session, "WA-0001", "contacted")

        assert result.ok
        assert order.status == "contacted"
        assert order.updated_at is not None
        db_session.commit.assert_called_once()

    def test_update_order_status_rejects_unknown_status(self, db_session):
        result = update_order_status(db_session, "WA-0001", "shipped")
        assert result.error_code == "invalid_status"
        db_session.commit.assert_not_called()

    def test_list_orders_filters_by_status(self):
        db = Mock()
        query = db.query.return_value
        query.filter.return_value.order_by.return_value.limit.return_value.all.return_value = ["order"]

        assert list_orders(db, status="pending", limit=5) == ["order"]
        query.filter.return_value.order_by.return_value.limit.assert_called_once_with(5)

    def test_fallback_order_number_format(self):
        assert fallback_order_number().startswith("WA-")
