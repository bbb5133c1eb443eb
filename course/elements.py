"""Course elements, containers and contact wiring."""

import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

import numpy as np

from course.geometry import Pose, vec3


# Default colours (RGB)
WHITE = (245, 245, 245)
HAZARD_RED = (255, 90, 90)
CHECKPOINT_BLUE = (100, 200, 255)
FINISH_GREEN = (120, 255, 120)

_element_ids = itertools.count(1)


class CancelToken:
    """Liveness flag shared by an owner and every loop that references it.

    A child token is revoked as soon as any ancestor is revoked.
    """

    __slots__ = ("_revoked", "_parent")

    def __init__(self, parent: Optional["CancelToken"] = None):
        self._revoked = False
        self._parent = parent

    def revoke(self) -> None:
        self._revoked = True

    @property
    def revoked(self) -> bool:
        token = self
        while token is not None:
            if token._revoked:
                return True
            token = token._parent
        return False

    @property
    def active(self) -> bool:
        return not self.revoked


class ElementKind(Enum):
    """What an element is for."""
    PLATFORM = "platform"
    HAZARD = "hazard"
    MOVER = "mover"
    SPAWNER = "spawner"
    FORCE_FIELD = "force_field"
    PROJECTILE = "projectile"
    CHECKPOINT = "checkpoint"
    FINISH = "finish"
    MARKER = "marker"


class ContactKind(Enum):
    """Contact events that leave the physics layer."""
    HAZARD = "hazard"
    FORCE = "force"
    CHECKPOINT = "checkpoint"
    FINISH = "finish"


ContactHandler = Callable[["Element", str], None]


class Container:
    """A named group of elements and nested containers.

    The arena folder, each course instance and the podium are containers.
    Destroying a container destroys everything below it and revokes its
    token, which stops every loop bound to those elements.
    """

    def __init__(self, name: str, parent: Optional["Container"] = None):
        self.name = name
        self.parent: Optional[Container] = None
        self.children: List[Any] = []
        self.token = CancelToken(parent.token if parent else None)
        if parent is not None:
            parent.add(self)

    @property
    def alive(self) -> bool:
        return self.token.active

    def add(self, child: Any) -> Any:
        child.parent = self
        self.children.append(child)
        return child

    def remove(self, child: Any) -> None:
        if child in self.children:
            self.children.remove(child)
        child.parent = None

    def find_child(self, name: str) -> Optional[Any]:
        for child in self.children:
            if child.name == name:
                return child
        return None

    def descendants(self) -> Iterator["Element"]:
        """All elements below this container, depth first."""
        for child in list(self.children):
            if isinstance(child, Container):
                yield from child.descendants()
            else:
                yield child

    def find(self, element_id: str) -> Optional["Element"]:
        for element in self.descendants():
            if element.element_id == element_id:
                return element
        return None

    def clear(self) -> None:
        """Destroy every child, keep this container."""
        for child in list(self.children):
            child.destroy()

    def destroy(self) -> None:
        self.clear()
        self.token.revoke()
        if self.parent is not None:
            self.parent.remove(self)

    def __repr__(self) -> str:
        return f"Container({self.name!r}, {len(self.children)} children)"


@dataclass(eq=False)
class Element:
    """One obstacle part."""

    name: str
    kind: ElementKind
    pose: Pose
    size: np.ndarray = field(default_factory=lambda: vec3(4, 1, 4))
    color: Tuple[int, int, int] = WHITE
    tags: Set[str] = field(default_factory=set)
    attributes: Dict[str, Any] = field(default_factory=dict)
    element_id: str = field(default_factory=lambda: f"e{next(_element_ids)}")
    parent: Optional[Container] = None
    token: CancelToken = field(default_factory=CancelToken)
    _handlers: List[ContactHandler] = field(default_factory=list, repr=False)

    @property
    def alive(self) -> bool:
        return self.token.active and self.parent is not None

    @property
    def is_hazard(self) -> bool:
        return "hazard" in self.tags

    def on_contact(self, handler: ContactHandler) -> None:
        self._handlers.append(handler)

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def touch(self, participant_id: str) -> bool:
        """Deliver a contact from the host. Ignored once destroyed."""
        if not self.alive:
            return False
        for handler in list(self._handlers):
            handler(self, participant_id)
        return True

    def destroy(self) -> None:
        self.token.revoke()
        self._handlers.clear()
        if self.parent is not None:
            self.parent.remove(self)

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.element_id,
            "name": self.name,
            "kind": self.kind.value,
            "position": self.pose.to_list(),
            "size": [round(float(v), 3) for v in self.size],
            "color": list(self.color),
            "hazard": self.is_hazard,
        }


def spawn(container: Container, name: str, kind: ElementKind, pose: Pose,
          size=(4, 1, 4), color=WHITE, tags=()) -> Element:
    """Create an element inside ``container``."""
    element = Element(
        name=name,
        kind=kind,
        pose=pose,
        size=np.asarray(size, dtype=float),
        color=color,
        tags=set(tags),
        token=CancelToken(container.token),
    )
    container.add(element)
    return element


@dataclass
class ContactReport:
    """A participant touched an element that matters to game rules."""

    kind: ContactKind
    participant_id: str
    element: Element
    impulse: Optional[np.ndarray] = None


ContactSink = Callable[[ContactReport], None]


def attach_kill_touch(element: Element, sink: ContactSink) -> bool:
    """Report hazard contacts to ``sink``. Wiring twice is a no-op."""
    if element.attributes.get("kill_wired"):
        return False
    element.attributes["kill_wired"] = True
    element.tags.add("hazard")
    element.on_contact(
        lambda el, pid: sink(ContactReport(ContactKind.HAZARD, pid, el))
    )
    return True


def attach_force(element: Element, sink: ContactSink, impulse: np.ndarray) -> None:
    """Report an additive velocity impulse on every contact."""
    element.attributes["impulse"] = np.asarray(impulse, dtype=float)
    element.on_contact(
        lambda el, pid: sink(ContactReport(
            ContactKind.FORCE, pid, el, impulse=el.attributes["impulse"].copy()
        ))
    )


def attach_checkpoint(element: Element, sink: ContactSink) -> None:
    if element.attributes.get("checkpoint_wired"):
        return
    element.attributes["checkpoint_wired"] = True
    element.on_contact(
        lambda el, pid: sink(ContactReport(ContactKind.CHECKPOINT, pid, el))
    )


def attach_finish(element: Element, sink: ContactSink) -> None:
    element.on_contact(
        lambda el, pid: sink(ContactReport(ContactKind.FINISH, pid, el))
    )
