"""Last checkpoint per participant, for respawning after a hazard."""
from typing import Dict, Optional

from course.geometry import Pose


# Respawn this far above the checkpoint surface
RESPAWN_HEIGHT = 4


class CheckpointTracker:
    """Remembers the last checkpoint each participant touched on the current course."""

    def __init__(self):
        self._last: Dict[str, Pose] = {}

    def record(self, identity: str, checkpoint_pose: Pose) -> None:
        self._last[identity] = checkpoint_pose

    def respawn_pose(self, identity: str) -> Optional[Pose]:
        """Where a participant reappears after touching a hazard.

        Args:
            identity: Participant identity

        Returns:
            The last checkpoint pose raised by RESPAWN_HEIGHT, or None if
            no checkpoint was reached since the last build
        """
        pose = self._last.get(identity)
        if pose is None:
            return None
        return pose.shifted((0, RESPAWN_HEIGHT, 0))

    def reset(self) -> None:
        """Forget everything; called whenever a new course is built."""
        self._last.clear()

    def forget(self, identity: str) -> None:
        self._last.pop(identity, None)
