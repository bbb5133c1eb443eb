# server/events.py
"""Event types for the round engine."""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Optional


class GameEventType(Enum):
    """All events the round engine consumes."""

    # Participant connection
    PLAYER_JOIN = auto()
    PLAYER_LEAVE = auto()

    # Requests
    SUBMIT_VOTE = auto()
    TOGGLE_AWAY = auto()

    # Contacts reported by the course
    FINISH_CONTACT = auto()
    HAZARD_CONTACT = auto()
    FORCE_CONTACT = auto()
    CHECKPOINT_CONTACT = auto()


@dataclass
class GameEvent:
    """An event queued for the round driver."""

    type: GameEventType
    data: Dict[str, Any] = field(default_factory=dict)
    player_id: Optional[str] = None
