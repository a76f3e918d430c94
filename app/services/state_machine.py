from enum import Enum


class BotState(str, Enum):
    GREETING = "greeting"
    ASK_NAME = "ask_name"
    ASK_STYLE = "ask_style"
    ASK_CATALOG = "ask_catalog"
    BROWSE_CATALOG = "browse_catalog"
    ASK_PRODUCTS = "ask_products"
    ASK_QUANTITIES = "ask_quantities"
    CONFIRM_ORDER = "confirm_order"
    ORDER_CONFIRMED = "order_confirmed"
    ESCALATE = "escalated"
    CLOSED = "closed"


# Persisted snapshots in these states are never reloaded or reopened by the bot.
TERMINAL_PERSISTED_STATES = (BotState.ESCALATE.value, BotState.CLOSED.value)


VALID_TRANSITIONS = {
    BotState.GREETING: [BotState.ASK_NAME, BotState.ESCALATE],
    BotState.ASK_NAME: [BotState.ASK_STYLE, BotState.ESCALATE],
    BotState.ASK_STYLE: [BotState.ASK_CATALOG, BotState.ESCALATE],
    BotState.ASK_CATALOG: [BotState.ASK_PRODUCTS, BotState.BROWSE_CATALOG, BotState.ESCALATE],
    BotState.BROWSE_CATALOG: [BotState.ASK_QUANTITIES, BotState.ESCALATE],
    BotState.ASK_PRODUCTS: [BotState.ASK_QUANTITIES, BotState.ESCALATE],
    BotState.ASK_QUANTITIES: [BotState.CONFIRM_ORDER, BotState.ESCALATE],
    # "add more" is the only backward edge in the flow
    BotState.CONFIRM_ORDER: [BotState.ASK_PRODUCTS, BotState.ORDER_CONFIRMED, BotState.ESCALATE],
    BotState.ORDER_CONFIRMED: [BotState.CLOSED, BotState.ESCALATE],
    BotState.ESCALATE: [BotState.CLOSED],
    BotState.CLOSED: [],
}

# States where inbound text is recorded but never interpreted by the bot.
PASSIVE_STATES = (BotState.ORDER_CONFIRMED, BotState.ESCALATE, BotState.CLOSED)


class InvalidTransitionError(Exception):
    def __init__(self, from_state: BotState, to_state: BotState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: BotState, to_state: BotState) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: BotState, to_state: BotState) -> BotState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def escalate(current_state: BotState) -> BotState:
    """Hand the conversation over to a human."""
    return transition(current_state, BotState.ESCALATE)


def close(current_state: BotState) -> BotState:
    """Close the conversation after the order was finalized."""
    return transition(current_state, BotState.CLOSED)


def is_active(state: BotState) -> bool:
    return state != BotState.CLOSED
