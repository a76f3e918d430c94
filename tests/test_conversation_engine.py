import asyncio
from decimal import Decimal
from types import SimpleNamespace

from app.schemas.webhook import InboundMessage
from app.services import bot_messages
from app.services.conversation_store import ROLE_CUSTOMER, CartLine
from app.services.state_machine import BotState

PHONE = "573001112233"


def _send(engine, text, selection_id=None, phone=PHONE):
    return asyncio.run(engine.process_message(InboundMessage(phone=phone, text=text, selection_id=selection_id)))


def _last_body(mock):
    return mock.call_args[0][1]


class TestHappyPath:
    def test_full_order_flow(self, engine, gateway, store):
        conversation = _send(engine, "Hola")
        assert conversation.state == BotState.ASK_NAME
        assert "Bienvenido a Melo Sportt" in _last_body(gateway.send_text)
        assert conversation.customer_name == ""

        conversation = _send(engine, "Andrea")
        assert conversation.state == BotState.ASK_STYLE
        assert conversation.customer_name == "Andrea"
        buttons = gateway.send_buttons.call_args[0][2]
        assert [button.id for button in buttons] == ["style_urbano", "style_clasico"]

        conversation = _send(engine, "1")
        assert conversation.state == BotState.ASK_CATALOG
        assert conversation.style == "urbano"

        conversation = _send(engine, "aquí")
        assert conversation.state == BotState.BROWSE_CATALOG
        sections = gateway.send_list.call_args[0][3]
        assert [row.id for row in sections[0].rows] == ["product_p1", "product_p2"]

        conversation = _send(engine, "quiero la camiseta negra, 2")
        assert conversation.state == BotState.CONFIRM_ORDER
        assert len(conversation.cart) == 1
        assert conversation.cart[0].name == "Camiseta Negra Urbana"
        assert conversation.cart[0].quantity == 2
        assert conversation.cart[0].price == Decimal("50000")

        conversation = _send(engine, "no, continuar")
        assert conversation.state == BotState.ORDER_CONFIRMED
        summary = _last_body(gateway.send_buttons)
        assert "RESUMEN DE TU PEDIDO" in summary
        assert "Subtotal: $100.000" in summary
        assert "Comisión (10%): -$10.000" in summary
        assert "Para la tienda:* $90.000" in summary

        result = asyncio.run(engine.confirm_order(PHONE))
        assert result.ok
        assert result.value.order_number == "WA-0001"
        assert store.get(PHONE).state == BotState.CLOSED

    def test_every_message_is_logged(self, engine):
        _send(engine, "Hola")
        conversation = _send(engine, "Andrea")
        roles = [message.role for message in conversation.messages]
        assert roles == ["customer", "bot", "customer", "bot"]

    def test_snapshot_persisted_on_every_message(self, engine, db_session):
        _send(engine, "Hola")
        _send(engine, "Andrea")
        assert db_session.commit.call_count == 2


class TestAskNameAndStyle:
    def test_empty_name_reprompts(self, engine, gateway, make_conversation):
        make_conversation(BotState.ASK_NAME)
        conversation = _send(engine, "   ")
        assert conversation.state == BotState.ASK_NAME
        assert _last_body(gateway.send_text) == bot_messages.MSG_ASK_NAME_AGAIN

    def test_name_is_trimmed(self, engine, make_conversation):
        make_conversation(BotState.ASK_NAME)
        conversation = _send(engine, "  Andrea Pérez ")
        assert conversation.customer_name == "Andrea Pérez"

    def test_unrecognized_style_reprompts(self, engine, gateway, make_conversation):
        make_conversation(BotState.ASK_STYLE)
        for text in ("3", "no sé"):
            conversation = _send(engine, text)
            assert conversation.state == BotState.ASK_STYLE
            assert conversation.style is None
        assert _last_body(gateway.send_text) == bot_messages.MSG_STYLE_RETRY

    def test_style_button_reply(self, engine, make_conversation):
        make_conversation(BotState.ASK_STYLE)
        conversation = _send(engine, "👔 Clásico", selection_id="style_clasico")
        assert conversation.style == "clasico"
        assert conversation.state == BotState.ASK_CATALOG


class TestAskCatalog:
    def test_online_catalog_link(self, engine, gateway, make_conversation):
        make_conversation(BotState.ASK_CATALOG, style="urbano")
        conversation = _send(engine, "online")
        assert conversation.state == BotState.ASK_PRODUCTS
        args = gateway.send_text.call_args[0]
        assert "https://melo-sportt.vercel.app/products" in args[1]
        assert args[2] is True

    def test_online_button_selection(self, engine, make_conversation):
        make_conversation(BotState.ASK_CATALOG, style="urbano")
        conversation = _send(engine, "🔗 Ver catálogo online", selection_id="catalog_online")
        assert conversation.state == BotState.ASK_PRODUCTS

    def test_no_style_matches_falls_back_to_plain_listing(self, engine, gateway, catalog, make_conversation):
        catalog.replace([item for item in catalog.all() if item.id == "p4"])
        make_conversation(BotState.ASK_CATALOG, style="urbano")

        conversation = _send(engine, "aquí")

        assert conversation.state == BotState.ASK_PRODUCTS
        assert "Pantaloneta Deportiva" in _last_body(gateway.send_text)
        gateway.send_list.assert_not_awaited()

    def test_empty_catalog_sends_no_products_text(self, engine, gateway, catalog, make_conversation):
        catalog.replace([])
        make_conversation(BotState.ASK_CATALOG, style="urbano")

        conversation = _send(engine, "aquí")

        assert conversation.state == BotState.ASK_PRODUCTS
        assert _last_body(gateway.send_text) == bot_messages.MSG_NO_PRODUCTS
        assert catalog.search("camiseta") == []


class TestBrowseCatalog:
    def test_list_selection_records_pending_product(self, engine, gateway, make_conversation):
        make_conversation(BotState.BROWSE_CATALOG, style="urbano")

        conversation = _send(engine, "Buzo Oversize Gris", selection_id="product_p2")

        assert conversation.state == BotState.ASK_QUANTITIES
        assert conversation.pending_selection == "p2"
        assert "Buzo Oversize Gris" in _last_body(gateway.send_text)
        assert conversation.messages[-2].role == ROLE_CUSTOMER

    def test_quantity_after_selection_uses_pending_product(self, engine, make_conversation):
        make_conversation(BotState.ASK_QUANTITIES, pending_selection="p2")

        conversation = _send(engine, "3")

        assert conversation.state == BotState.CONFIRM_ORDER
        assert conversation.pending_selection is None
        assert conversation.cart[0].product_id == "p2"
        assert conversation.cart[0].quantity == 3

    def test_search_hit_stays_in_browse(self, engine, gateway, make_conversation):
        make_conversation(BotState.BROWSE_CATALOG, style="urbano")

        conversation = _send(engine, "buzo")

        assert conversation.state == BotState.BROWSE_CATALOG
        body = _last_body(gateway.send_text)
        assert "Buzo Oversize Gris" in body
        assert "$120.000" in body

    def test_search_miss_shows_first_items(self, engine, gateway, make_conversation):
        make_conversation(BotState.BROWSE_CATALOG, style="urbano")

        conversation = _send(engine, "zapatos")

        assert conversation.state == BotState.BROWSE_CATALOG
        body = _last_body(gateway.send_text)
        assert 'No encontré "zapatos"' in body
        assert "Camiseta Negra Urbana" in body

    def test_unknown_product_selection_is_searched(self, engine, make_conversation):
        make_conversation(BotState.BROWSE_CATALOG, style="urbano")
        conversation = _send(engine, "product_missing", selection_id="product_missing")
        assert conversation.state == BotState.BROWSE_CATALOG
        assert conversation.pending_selection is None


class TestAskProducts:
    def test_hit_moves_to_quantities(self, engine, gateway, make_conversation):
        make_conversation(BotState.ASK_PRODUCTS)
        conversation = _send(engine, "camiseta")
        assert conversation.state == BotState.ASK_QUANTITIES
        assert "Camiseta Negra Urbana" in _last_body(gateway.send_text)

    def test_miss_stays(self, engine, gateway, make_conversation):
        make_conversation(BotState.ASK_PRODUCTS)
        conversation = _send(engine, "zapatos")
        assert conversation.state == BotState.ASK_PRODUCTS
        assert "más populares" in _last_body(gateway.send_text)


class TestAskQuantities:
    def test_unresolved_product_reprompts(self, engine, gateway, make_conversation):
        make_conversation(BotState.ASK_QUANTITIES)
        conversation = _send(engine, "dame 2")
        assert conversation.state == BotState.ASK_QUANTITIES
        assert conversation.cart == []
        assert "No entendí" in _last_body(gateway.send_text)

    def test_default_quantity_is_one(self, engine, make_conversation):
        make_conversation(BotState.ASK_QUANTITIES)
        conversation = _send(engine, "la pantaloneta")
        assert conversation.cart[0].quantity == 1

    def test_readding_product_increments_line(self, engine, make_conversation):
        make_conversation(
            BotState.ASK_QUANTITIES,
            cart=[CartLine(product_id="p1", name="Camiseta Negra Urbana", price=Decimal("50000"), quantity=2)],
        )

        conversation = _send(engine, "camiseta 3")

        assert len(conversation.cart) == 1
        assert conversation.cart[0].quantity == 5

    def test_subtotal_matches_lines(self, engine, gateway, make_conversation):
        make_conversation(
            BotState.ASK_QUANTITIES,
            cart=[CartLine(product_id="p2", name="Buzo Oversize Gris", price=Decimal("120000"), quantity=1)],
        )

        conversation = _send(engine, "camiseta 2")

        assert conversation.subtotal == sum(line.price * line.quantity for line in conversation.cart)
        assert conversation.subtotal == Decimal("220000")
        assert "Subtotal:* $220.000" in _last_body(gateway.send_buttons)
        assert "Comisión (10%): $22.000" in _last_body(gateway.send_buttons)


class TestConfirmOrder:
    def test_add_more_returns_to_products(self, engine, gateway, make_conversation):
        make_conversation(BotState.CONFIRM_ORDER)
        conversation = _send(engine, "✅ Sí, agregar más", selection_id="cart_add_more")
        assert conversation.state == BotState.ASK_PRODUCTS
        assert _last_body(gateway.send_text) == bot_messages.MSG_ADD_MORE

    def test_literal_one_adds_more(self, engine, make_conversation):
        make_conversation(BotState.CONFIRM_ORDER)
        assert _send(engine, "1").state == BotState.ASK_PRODUCTS


class TestPassiveStates:
    def test_order_confirmed_records_without_reply(self, engine, gateway, make_conversation):
        make_conversation(BotState.ORDER_CONFIRMED)

        conversation = _send(engine, "¿ya quedó?")

        assert conversation.state == BotState.ORDER_CONFIRMED
        assert conversation.last_message.text == "¿ya quedó?"
        gateway.send_text.assert_not_awaited()
        gateway.send_buttons.assert_not_awaited()

    def test_blocked_phone_is_not_reopened(self, engine, gateway, store, db_session):
        query = db_session.query.return_value.filter.return_value.order_by.return_value
        query.first.return_value = SimpleNamespace(status="closed")

        assert _send(engine, "Hola") is None
        assert store.get(PHONE) is None
        gateway.send_text.assert_not_awaited()


class TestEscalation:
    def test_escalate(self, engine, gateway, make_conversation):
        make_conversation(BotState.ASK_PRODUCTS)

        result = asyncio.run(engine.escalate(PHONE))

        assert result.ok
        assert result.value.state == BotState.ESCALATE
        assert result.value.escalated_at is not None
        _send(engine, "hola?")
        gateway.send_text.assert_not_awaited()

    def test_escalate_unknown_phone(self, engine):
        result = asyncio.run(engine.escalate("570000000000"))
        assert result.error_code == "not_found"

    def test_escalate_closed_conversation(self, engine, make_conversation):
        make_conversation(BotState.CLOSED)
        result = asyncio.run(engine.escalate(PHONE))
        assert result.error_code == "invalid_state"

    def test_confirm_order_requires_confirmed_state(self, engine, make_conversation):
        make_conversation(BotState.CONFIRM_ORDER)
        result = asyncio.run(engine.confirm_order(PHONE))
        assert result.error_code == "invalid_state"

    def test_confirm_order_unknown_phone(self, engine):
        result = asyncio.run(engine.confirm_order("570000000000"))
        assert result.error_code == "not_found"


class TestSamePhoneSerialization:
    def test_concurrent_messages_are_processed_in_sequence(self, engine, gateway, make_conversation):
        async def slow_send(*args, **kwargs):
            await asyncio.sleep(0.01)
            return True

        gateway.send_buttons.side_effect = slow_send
        make_conversation(BotState.ASK_QUANTITIES)

        async def scenario():
            return await asyncio.gather(
                engine.process_message(InboundMessage(phone=PHONE, text="camiseta 2")),
                engine.process_message(InboundMessage(phone=PHONE, text="camiseta 2")),
            )

        first, second = asyncio.run(scenario())

        assert first is second
        assert len(first.cart) == 1
        assert first.cart[0].quantity == 2
        assert first.state == BotState.ORDER_CONFIRMED
