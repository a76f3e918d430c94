from app.services.result import Result
from app.services.state_machine import (
    BotState,
    InvalidTransitionError,
    can_transition,
    close,
    escalate,
    is_active,
    transition,
)
