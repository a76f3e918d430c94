"""Conversation engine: interprets inbound WhatsApp messages per phone number.

Each inbound message is handled under the phone's lock, so messages from the
same customer are processed strictly in arrival order while different
customers proceed concurrently.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from app.logging_config import PhoneLoggerAdapter, get_logger
from app.schemas.webhook import InboundMessage
from app.services import bot_messages
from app.services.catalog_service import CatalogCache, CatalogItem
from app.services.conversation_store import ROLE_BOT, ROLE_CUSTOMER, BotConversation, CartLine, ConversationStore
from app.services.matchers import (
    CART_ADD_MORE,
    CATALOG_ONLINE,
    classify_cart_answer,
    classify_catalog_choice,
    classify_style,
    extract_quantity,
    find_quantity,
    tokenize,
)
from app.services.order_service import OrderFinalizer, OrderReceipt, compute_order_totals
from app.services.result import INVALID_STATE, NOT_FOUND, Result
from app.services.state_machine import PASSIVE_STATES, BotState, InvalidTransitionError, escalate, transition
from app.services.whatsapp_service import ListRow, ListSection, ReplyButton

logger = get_logger("conversation_engine")

FALLBACK_SAMPLE_SIZE = 5
PLAIN_CATALOG_SIZE = 10
# Tokens like "la" or "2" are ignored when resolving a product by name.
MIN_PRODUCT_TOKEN_LENGTH = 3

_TOKEN_PUNCTUATION = ".,;:!?¡¿\"'()"


def _buttons(pairs: Sequence[tuple[str, str]]) -> list[ReplyButton]:
    return [ReplyButton(id=button_id, title=title) for button_id, title in pairs]


class ConversationEngine:
    def __init__(
        self,
        store: ConversationStore,
        catalog: CatalogCache,
        gateway,
        finalizer: OrderFinalizer,
        *,
        commission_percentage: Decimal,
        store_name: str,
        catalog_url: str,
    ):
        self.store = store
        self.catalog = catalog
        self.gateway = gateway
        self.finalizer = finalizer
        self.commission_percentage = Decimal(str(commission_percentage))
        self.store_name = store_name
        self.catalog_url = catalog_url
        self._handlers = {
            BotState.GREETING: self._handle_greeting,
            BotState.ASK_NAME: self._handle_ask_name,
            BotState.ASK_STYLE: self._handle_ask_style,
            BotState.ASK_CATALOG: self._handle_ask_catalog,
            BotState.BROWSE_CATALOG: self._handle_browse_catalog,
            BotState.ASK_PRODUCTS: self._handle_ask_products,
            BotState.ASK_QUANTITIES: self._handle_ask_quantities,
            BotState.CONFIRM_ORDER: self._handle_confirm_order,
        }

    async def process_message(self, inbound: InboundMessage) -> Optional[BotConversation]:
        """Handle one inbound message. Returns the conversation, or None if the phone is blocked."""
        log = PhoneLoggerAdapter(logger, {"phone": inbound.phone})

        async with self.store.lock(inbound.phone):
            conversation = self.store.get(inbound.phone)
            if conversation is None:
                if self.store.is_blocked(inbound.phone):
                    log.info("Message ignored, conversation is handled by a human")
                    return None
                conversation = self.store.create(inbound.phone)
                log.info("Conversation started")

            conversation.add_message(ROLE_CUSTOMER, inbound.text, inbound.timestamp)
            previous_state = conversation.state

            if conversation.state in PASSIVE_STATES:
                log.info("Message recorded without reply", context={"state": conversation.state.value})
            else:
                await self._handlers[conversation.state](conversation, inbound)

            if conversation.state != previous_state:
                log.info(
                    "State changed",
                    context={"from_state": previous_state.value, "to_state": conversation.state.value},
                )
            self.store.upsert(conversation)
            return conversation

    async def confirm_order(self, phone: str) -> Result[OrderReceipt]:
        """External confirmation signal: run the order finalizer for the phone's conversation."""
        async with self.store.lock(phone):
            conversation = self.store.get(phone)
            if conversation is None:
                return Result.failure(f"No conversation for {phone}", NOT_FOUND)
            return await self.finalizer.finalize(conversation)

    async def escalate(self, phone: str) -> Result[BotConversation]:
        """Hand a conversation over to a human. The bot stops replying to it."""
        async with self.store.lock(phone):
            conversation = self.store.get(phone)
            if conversation is None:
                return Result.failure(f"No conversation for {phone}", NOT_FOUND)
            try:
                conversation.state = escalate(conversation.state)
            except InvalidTransitionError as e:
                return Result.failure(str(e), INVALID_STATE)
            conversation.escalated_at = datetime.now(timezone.utc)
            self.store.upsert(conversation)

        logger.info("Conversation escalated", extra={"context": {"phone": phone}})
        return Result.success(conversation)

    # --- replies ---

    def _move(self, conversation: BotConversation, to_state: BotState) -> None:
        conversation.state = transition(conversation.state, to_state)

    async def _reply(
        self,
        conversation: BotConversation,
        body: str,
        *,
        buttons: Optional[Sequence[tuple[str, str]]] = None,
        preview_url: bool = False,
    ) -> bool:
        if buttons:
            sent = await self.gateway.send_buttons(conversation.phone, body, _buttons(buttons))
        else:
            sent = await self.gateway.send_text(conversation.phone, body, preview_url)
        conversation.add_message(ROLE_BOT, body)
        return sent

    async def _reply_list(self, conversation: BotConversation, body: str, items: Sequence[CatalogItem]) -> bool:
        rows = [
            ListRow(
                id=f"{bot_messages.PRODUCT_SELECTION_PREFIX}{item.id}",
                title=item.name,
                description=f"${bot_messages.format_price(item.price)}",
            )
            for item in items
        ]
        sent = await self.gateway.send_list(
            conversation.phone,
            body,
            bot_messages.LIST_BUTTON_LABEL,
            [ListSection(title=bot_messages.LIST_SECTION_TITLE, rows=rows)],
        )
        conversation.add_message(ROLE_BOT, body)
        return sent

    # --- state handlers ---

    async def _handle_greeting(self, conversation: BotConversation, inbound: InboundMessage) -> None:
        # The first message only opens the conversation; it is not read as the name.
        await self._reply(conversation, bot_messages.greeting(self.store_name))
        self._move(conversation, BotState.ASK_NAME)

    async def _handle_ask_name(self, conversation: BotConversation, inbound: InboundMessage) -> None:
        name = inbound.text.strip()
        if not name:
            await self._reply(conversation, bot_messages.MSG_ASK_NAME_AGAIN)
            return

        conversation.customer_name = name
        await self._reply(conversation, bot_messages.ask_style(name), buttons=bot_messages.STYLE_BUTTONS)
        self._move(conversation, BotState.ASK_STYLE)

    async def _handle_ask_style(self, conversation: BotConversation, inbound: InboundMessage) -> None:
        style = classify_style(inbound.text) or classify_style(inbound.selection_id)
        if style is None:
            await self._reply(conversation, bot_messages.MSG_STYLE_RETRY)
            return

        conversation.style = style
        await self._reply(conversation, bot_messages.ask_catalog(style), buttons=bot_messages.CATALOG_BUTTONS)
        self._move(conversation, BotState.ASK_CATALOG)

    async def _handle_ask_catalog(self, conversation: BotConversation, inbound: InboundMessage) -> None:
        choice = classify_catalog_choice(inbound.text)
        if inbound.selection_id:
            choice = classify_catalog_choice(inbound.selection_id)

        if choice == CATALOG_ONLINE:
            await self._reply(conversation, bot_messages.online_catalog(self.catalog_url), preview_url=True)
            self._move(conversation, BotState.ASK_PRODUCTS)
            return

        featured = self.catalog.by_style(conversation.style)
        if featured:
            await self._reply_list(conversation, bot_messages.featured_list_body(len(featured)), featured)
            self._move(conversation, BotState.BROWSE_CATALOG)
            return

        await self._reply(conversation, bot_messages.plain_catalog(self.catalog.head(PLAIN_CATALOG_SIZE)))
        self._move(conversation, BotState.ASK_PRODUCTS)

    async def _handle_browse_catalog(self, conversation: BotConversation, inbound: InboundMessage) -> None:
        selected = self._selected_product(inbound)
        if selected:
            conversation.pending_selection = selected.id
            await self._reply(conversation, bot_messages.product_detail(selected))
            self._move(conversation, BotState.ASK_QUANTITIES)
            return

        # "quiero la camiseta negra, 2" orders directly without picking from the list
        if find_quantity(inbound.text) is not None:
            product = self._product_from_tokens(inbound.text)
            if product:
                self._move(conversation, BotState.ASK_QUANTITIES)
                await self._add_to_cart(conversation, product, extract_quantity(inbound.text))
                return

        query = inbound.text.strip()
        results = self.catalog.search(query)
        if results:
            await self._reply(conversation, bot_messages.browse_results(query, results))
        else:
            fallback = self.catalog.head(FALLBACK_SAMPLE_SIZE)
            await self._reply(conversation, bot_messages.browse_not_found(query, fallback))

    async def _handle_ask_products(self, conversation: BotConversation, inbound: InboundMessage) -> None:
        query = inbound.text.strip()
        results = self.catalog.search(query)
        if not results:
            popular = self.catalog.head(FALLBACK_SAMPLE_SIZE)
            await self._reply(conversation, bot_messages.products_not_found(query, popular))
            return

        await self._reply(conversation, bot_messages.product_results(query, results))
        self._move(conversation, BotState.ASK_QUANTITIES)

    async def _handle_ask_quantities(self, conversation: BotConversation, inbound: InboundMessage) -> None:
        product = None
        if conversation.pending_selection:
            product = self.catalog.get(conversation.pending_selection)
            conversation.pending_selection = None
        if product is None:
            product = self._product_from_tokens(inbound.text)

        if product is None:
            sample = self.catalog.head(FALLBACK_SAMPLE_SIZE)
            await self._reply(conversation, bot_messages.quantity_not_understood(sample))
            return

        await self._add_to_cart(conversation, product, extract_quantity(inbound.text))

    async def _handle_confirm_order(self, conversation: BotConversation, inbound: InboundMessage) -> None:
        if classify_cart_answer(inbound.text) == CART_ADD_MORE:
            await self._reply(conversation, bot_messages.MSG_ADD_MORE)
            self._move(conversation, BotState.ASK_PRODUCTS)
            return

        totals = compute_order_totals(conversation.cart, self.commission_percentage)
        await self._reply(
            conversation,
            bot_messages.order_summary(conversation, totals),
            buttons=bot_messages.ORDER_BUTTONS,
        )
        self._move(conversation, BotState.ORDER_CONFIRMED)

    # --- catalog and cart helpers ---

    def _selected_product(self, inbound: InboundMessage) -> Optional[CatalogItem]:
        selection = inbound.selection_id or inbound.text.strip()
        if not selection.startswith(bot_messages.PRODUCT_SELECTION_PREFIX):
            return None
        return self.catalog.get(selection[len(bot_messages.PRODUCT_SELECTION_PREFIX):])

    def _product_from_tokens(self, text: str) -> Optional[CatalogItem]:
        for token in tokenize(text):
            token = token.strip(_TOKEN_PUNCTUATION)
            if len(token) < MIN_PRODUCT_TOKEN_LENGTH:
                continue
            product = self.catalog.find_by_name(token)
            if product:
                return product
        return None

    async def _add_to_cart(self, conversation: BotConversation, product: CatalogItem, quantity: int) -> None:
        product_name = product.name.lower()
        line = next(
            (
                line
                for line in conversation.cart
                if line.product_id == product.id or product_name in line.name.lower()
            ),
            None,
        )
        if line:
            line.quantity += quantity
        else:
            conversation.cart.append(
                CartLine(product_id=product.id, name=product.name, price=product.price, quantity=quantity)
            )

        totals = compute_order_totals(conversation.cart, self.commission_percentage)
        await self._reply(
            conversation,
            bot_messages.added_to_cart(product.name, quantity, conversation.cart, totals),
            buttons=bot_messages.CART_BUTTONS,
        )
        self._move(conversation, BotState.CONFIRM_ORDER)
