"""Results podium for the top three finishers."""

from typing import Dict

from course.elements import Container, Element, ElementKind, spawn
from course.geometry import Pose


PODIUM_CONTAINER = "Podium"
GOLD = (255, 220, 120)
SILVER = (200, 200, 200)

# rank -> (offset from base, size, colour)
_PADS = {
    1: ((-7, 0.5, 0), (6, 3, 6), GOLD),
    2: ((0, 0, 0), (6, 2, 6), SILVER),
    3: ((7, -0.25, 0), (6, 1.5, 6), SILVER),
}


def build_podium(arena: Container, center: Pose) -> Dict[int, Element]:
    """Replace any existing podium and return its pads keyed by rank."""
    clear_podium(arena)
    folder = Container(PODIUM_CONTAINER, arena)
    base = center.translate(0, 1, 18)
    pads = {}
    for rank, (offset, size, color) in _PADS.items():
        pads[rank] = spawn(folder, f"P{rank}", ElementKind.PLATFORM,
                           base.translate(*offset), size=size, color=color)
    return pads


def clear_podium(arena: Container) -> None:
    existing = arena.find_child(PODIUM_CONTAINER)
    if existing is not None:
        existing.destroy()
