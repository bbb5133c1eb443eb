"""WebSocket message protocol for the obby round server."""
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Sequence, Tuple
import json


class ServerMessageType(Enum):
    """Message types sent from server to client."""
    # Connection
    WELCOME = "WELCOME"
    ERROR = "ERROR"

    # Round flow
    ROUND_STATUS = "ROUND_STATUS"
    VOTE_UPDATE = "VOTE_UPDATE"
    COURSE_BUILT = "COURSE_BUILT"
    PLAYER_FINISHED = "PLAYER_FINISHED"

    # Avatar control
    TELEPORT = "TELEPORT"
    PLAYER_RESET = "PLAYER_RESET"

    # Progress
    BALANCE_UPDATE = "BALANCE_UPDATE"
    LEADERBOARD_UPDATE = "LEADERBOARD_UPDATE"
    ACHIEVEMENT_UNLOCKED = "ACHIEVEMENT_UNLOCKED"

    # Shop
    INVENTORY = "INVENTORY"
    PURCHASE_RESULT = "PURCHASE_RESULT"


class ClientMessageType(Enum):
    """Message types sent from client to server."""
    JOIN = "JOIN"
    SUBMIT_VOTE = "SUBMIT_VOTE"
    TOGGLE_AWAY = "TOGGLE_AWAY"
    CONTACT = "CONTACT"
    PURCHASE = "PURCHASE"
    EQUIP = "EQUIP"
    QUERY_INVENTORY = "QUERY_INVENTORY"
    QUERY_LEADERBOARD = "QUERY_LEADERBOARD"


class RoundPhase(Enum):
    """Round lifecycle phases, in order."""
    LOBBY = "lobby"
    VOTING = "voting"
    BUILD = "build"
    RUN = "run"
    RESULTS = "results"
    CLEANUP = "cleanup"


@dataclass
class Message:
    """Base message class for WebSocket communication."""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize message to JSON string."""
        return json.dumps({
            "type": self.type,
            "data": self.data
        })

    @classmethod
    def from_json(cls, json_str: str) -> 'Message':
        """Deserialize message from JSON string."""
        obj = json.loads(json_str)
        if not isinstance(obj, dict):
            raise ValueError("message must be a JSON object")
        data = obj.get("data", {})
        return cls(type=obj.get("type", ""), data=data if isinstance(data, dict) else {})


# Server -> Client message builders
def welcome_message(player_id: str, version: str, phase: str) -> Message:
    """Build welcome message for newly connected player."""
    return Message(
        type=ServerMessageType.WELCOME.value,
        data={
            "player_id": player_id,
            "version": version,
            "phase": phase
        }
    )


def error_message(code: str, message: str) -> Message:
    """Build error message."""
    return Message(
        type=ServerMessageType.ERROR.value,
        data={
            "code": code,
            "message": message
        }
    )


def round_status_message(
    phase: str,
    text: str,
    seconds_remaining: int,
    finishers: Sequence[str]
) -> Message:
    """Build round status message (phase text, countdown, finishers so far)."""
    return Message(
        type=ServerMessageType.ROUND_STATUS.value,
        data={
            "phase": phase,
            "text": text,
            "seconds_remaining": seconds_remaining,
            "finishers": list(finishers)
        }
    )


def vote_update_message(
    options: Sequence[str],
    votes: Dict[str, str],
    counts: Dict[str, int],
    seconds_remaining: int
) -> Message:
    """Build vote update message."""
    return Message(
        type=ServerMessageType.VOTE_UPDATE.value,
        data={
            "options": list(options),
            "votes": dict(votes),
            "counts": dict(counts),
            "seconds_remaining": seconds_remaining
        }
    )


def course_built_message(
    course_type: str,
    start: List[float],
    finish: Dict[str, Any],
    element_count: int
) -> Message:
    """Build course built message."""
    return Message(
        type=ServerMessageType.COURSE_BUILT.value,
        data={
            "course_type": course_type,
            "start": start,
            "finish": finish,
            "element_count": element_count
        }
    )


def player_finished_message(player_id: str, rank: int, reward: int) -> Message:
    """Build per-finish announcement."""
    return Message(
        type=ServerMessageType.PLAYER_FINISHED.value,
        data={
            "player_id": player_id,
            "rank": rank,
            "reward": reward
        }
    )


def teleport_message(player_id: str, position: List[float], reason: str) -> Message:
    """Build avatar relocation message."""
    return Message(
        type=ServerMessageType.TELEPORT.value,
        data={
            "player_id": player_id,
            "position": position,
            "reason": reason
        }
    )


def player_reset_message(player_id: str, position: List[float]) -> Message:
    """Build hazard reset message."""
    return Message(
        type=ServerMessageType.PLAYER_RESET.value,
        data={
            "player_id": player_id,
            "position": position
        }
    )


def balance_update_message(player_id: str, balance: int) -> Message:
    """Build balance update message."""
    return Message(
        type=ServerMessageType.BALANCE_UPDATE.value,
        data={
            "player_id": player_id,
            "balance": balance
        }
    )


def leaderboard_update_message(
    kind: str,
    entries: Sequence[Tuple[str, int]],
    titles: Optional[Dict[str, str]] = None
) -> Message:
    """Build leaderboard update message."""
    titles = titles or {}
    return Message(
        type=ServerMessageType.LEADERBOARD_UPDATE.value,
        data={
            "kind": kind,
            "entries": [
                {"player_id": pid, "value": value, "title": titles.get(pid)}
                for pid, value in entries
            ]
        }
    )


def achievement_unlocked_message(player_id: str, achievement_id: str, name: str,
                                 reward: int) -> Message:
    """Build achievement unlocked notice."""
    return Message(
        type=ServerMessageType.ACHIEVEMENT_UNLOCKED.value,
        data={
            "player_id": player_id,
            "achievement_id": achievement_id,
            "name": name,
            "reward": reward
        }
    )


def inventory_message(player_id: str, items: List[str], equipped: Optional[str]) -> Message:
    """Build inventory reply."""
    return Message(
        type=ServerMessageType.INVENTORY.value,
        data={
            "player_id": player_id,
            "items": items,
            "equipped": equipped
        }
    )


def purchase_result_message(
    player_id: str,
    item_id: str,
    success: bool,
    new_balance: Optional[int] = None
) -> Message:
    """Build purchase result message."""
    return Message(
        type=ServerMessageType.PURCHASE_RESULT.value,
        data={
            "player_id": player_id,
            "item_id": item_id,
            "success": success,
            "new_balance": new_balance
        }
    )


# Client -> Server message parsers
def _text(value: Any, default: Optional[str] = "") -> Optional[str]:
    """Client-supplied string field; anything that is not a string becomes ``default``."""
    return value if isinstance(value, str) else default


def parse_join_message(data: Dict[str, Any]) -> Dict[str, Any]:
    """Parse JOIN message data.

    Args:
        data: Raw JOIN payload from the client.

    Returns:
        Dict with ``username`` (str), ``player_id`` and ``version``
        (str or None). Wrongly typed fields are treated as missing.
    """
    return {
        "username": _text(data.get("username")),
        "player_id": _text(data.get("player_id"), None) or None,
        "version": _text(data.get("version"), None)
    }


def parse_vote_message(data: Dict[str, Any]) -> Dict[str, Any]:
    """Parse SUBMIT_VOTE message data."""
    return {
        "choice": _text(data.get("choice"))
    }


def parse_toggle_away_message(data: Dict[str, Any]) -> Dict[str, Any]:
    """Parse TOGGLE_AWAY message data. A missing state means toggle."""
    state = data.get("state")
    return {
        "state": state if isinstance(state, bool) else None
    }


def parse_contact_message(data: Dict[str, Any]) -> Dict[str, Any]:
    """Parse CONTACT message data."""
    return {
        "element_id": _text(data.get("element_id"))
    }


def parse_item_message(data: Dict[str, Any]) -> Dict[str, Any]:
    """Parse PURCHASE / EQUIP message data."""
    return {
        "item_id": _text(data.get("item_id"))
    }


def parse_leaderboard_query(data: Dict[str, Any]) -> Dict[str, Any]:
    """Parse QUERY_LEADERBOARD message data."""
    limit = data.get("limit", 10)
    return {
        "kind": _text(data.get("kind"), "wins"),
        "limit": limit if isinstance(limit, int) and not isinstance(limit, bool) else 10
    }
