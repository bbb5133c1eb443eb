"""Away-state registry."""
import threading
from typing import Dict, Optional


class AwayRegistry:
    """Per-identity away flag; missing means present.

    Written from request handlers and read by the round driver, so access
    goes through a lock.
    """

    def __init__(self):
        self._states: Dict[str, bool] = {}
        self._lock = threading.Lock()

    def is_away(self, identity: str) -> bool:
        with self._lock:
            return self._states.get(identity, False)

    def set_away(self, identity: str, state: Optional[bool] = None) -> bool:
        """Set the flag, or toggle it when ``state`` is None. Returns the new value."""
        with self._lock:
            if state is None:
                state = not self._states.get(identity, False)
            self._states[identity] = bool(state)
            return self._states[identity]

    def forget(self, identity: str) -> None:
        with self._lock:
            self._states.pop(identity, None)
