from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from app.services.catalog_service import CatalogCache, CatalogItem
from app.services.conversation_engine import ConversationEngine
from app.services.conversation_store import BotConversation, ConversationStore
from app.services.order_service import OrderFinalizer
from app.services.state_machine import BotState

PHONE = "573001112233"
INTERMEDIARY_PHONE = "573238020198"
OWNER_PHONE = "573009998877"


def build_catalog_items() -> list[CatalogItem]:
    return [
        CatalogItem(
            id="p1",
            name="Camiseta Negra Urbana",
            price=Decimal("50000"),
            category="Camisetas",
            sizes=("S", "M", "L"),
            colors=("Negro",),
            description="Camiseta de algodón estilo urbano",
        ),
        CatalogItem(
            id="p2",
            name="Buzo Oversize Gris",
            price=Decimal("120000"),
            category="Buzos",
            description="Buzo urbano con capucha",
        ),
        CatalogItem(
            id="p3",
            name="Camisa Oxford Blanca",
            price=Decimal("90000"),
            category="Camisas",
            description="Camisa de corte clasico",
        ),
        CatalogItem(
            id="p4",
            name="Pantaloneta Deportiva",
            price=Decimal("45000"),
            category="Pantalonetas",
            description="Pantaloneta liviana para entrenar",
        ),
    ]


@pytest.fixture
def db_session():
    """Mock database session."""
    session = Mock()
    session.execute.return_value.scalar.return_value = "WA-0001"
    session.query.return_value.filter.return_value.order_by.return_value.first.return_value = None
    return session


@pytest.fixture
def session_factory(db_session):
    return Mock(return_value=db_session)


@pytest.fixture
def gateway():
    """WhatsApp gateway double where every send succeeds."""
    fake = Mock()
    fake.send_text = AsyncMock(return_value=True)
    fake.send_buttons = AsyncMock(return_value=True)
    fake.send_list = AsyncMock(return_value=True)
    fake.is_configured.return_value = True
    return fake


@pytest.fixture
def catalog(session_factory):
    cache = CatalogCache(session_factory)
    cache.replace(build_catalog_items())
    return cache


@pytest.fixture
def store(session_factory):
    return ConversationStore(session_factory)


@pytest.fixture
def finalizer(gateway, store, session_factory):
    return OrderFinalizer(
        gateway,
        store,
        session_factory,
        commission_percentage=Decimal("10"),
        intermediary_phone=INTERMEDIARY_PHONE,
        owner_phone=OWNER_PHONE,
        store_name="Melo Sportt",
    )


@pytest.fixture
def engine(store, catalog, gateway, finalizer):
    return ConversationEngine(
        store,
        catalog,
        gateway,
        finalizer,
        commission_percentage=Decimal("10"),
        store_name="Melo Sportt",
        catalog_url="https://melo-sportt.vercel.app/products",
    )


@pytest.fixture
def make_conversation(store):
    def _make(state: BotState = BotState.ASK_NAME, phone: str = PHONE, **fields) -> BotConversation:
        conversation = store.create(phone)
        conversation.state = state
        for name, value in fields.items():
            setattr(conversation, name, value)
        return conversation

    return _make
