"""Course assembler: turns a course-type name into a full course.

Each course type is a fixed composition of section builders. Every build
lives in its own ``Course`` container under the arena, so clearing the
arena stops every loop the previous course started.
"""

import logging
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence

from course.elements import (
    FINISH_GREEN, ContactSink, Container, Element, ElementKind,
    attach_kill_touch, spawn,
)
from course.geometry import Pose
from course.motion import MotionRunner
from course.randomness import RandomSource
from course import sections
from course.sections import Section, SectionContext


logger = logging.getLogger(__name__)

COURSE_CONTAINER = "Course"
DEFAULT_CATALOG = (
    "GapRun", "Sweeper", "Planks", "Mix", "Conveyor", "Hammer",
    "Wind", "Spin", "Chaos", "Cannon", "Push", "Maze",
)


class BuildResult(NamedTuple):
    course_type: str
    start: Pose
    finish: Element
    elements: List[Element]
    container: Container


# A composition receives the section context, the arena center and the start
# pose, appends into ``out`` and returns the tail pose.
Composition = Callable[[SectionContext, Pose, Pose, List[Element]], Pose]


def _take(out: List[Element], section: Section) -> Pose:
    out.extend(section.elements)
    return section.next_pose


def _gap_run(ctx, center, start, out):
    tail = _take(out, sections.build_gap_run(ctx, start, 14, 3))
    return _take(out, sections.build_shrink_plates(ctx, tail.translate(0, 0, -6), 4))


def _sweeper(ctx, center, start, out):
    _take(out, sections.build_sweeper(ctx, center, 18, 2, 3))
    return _take(out, sections.build_gap_run(ctx, center.translate(0, 2, -10), 8, 4))


def _planks(ctx, center, start, out):
    tail = _take(out, sections.build_moving_planks(ctx, start, 8, 12))
    after = tail.translate(0, 0, -6)
    _take(out, sections.build_popup_pillars(ctx, after, 6, 8))
    return after.translate(0, 0, -36)


def _mix(ctx, center, start, out):
    tail = _take(out, sections.build_gap_run(ctx, start, 8, 3))
    mid = tail.translate(0, 0, -8)
    _take(out, sections.build_sweeper(ctx, center.translate(0, 0, -8), 16, 3, 2))
    return _take(out, sections.build_moving_planks(ctx, mid, 5, 10))


def _conveyor(ctx, center, start, out):
    tail = _take(out, sections.build_conveyor_field(ctx, start, 3, 8, 12))
    return _take(out, sections.build_gap_run(ctx, tail.translate(0, 0, -8), 6, 4))


def _hammer(ctx, center, start, out):
    _take(out, sections.build_swing_hammers(ctx, center, 4, 14))
    return _take(out, sections.build_gap_run(ctx, center.translate(0, 2, -14), 10, 3))


def _wind(ctx, center, start, out):
    tail = _take(out, sections.build_wind_tunnel(ctx, start, 3, 8, 16))
    return _take(out, sections.build_gap_run(ctx, tail.translate(0, 0, -6), 6, 3))


def _spin(ctx, center, start, out):
    tail = _take(out, sections.build_spinner_blades(ctx, start, 6))
    return _take(out, sections.build_shrink_plates(ctx, tail.translate(0, 0, -6), 4))


def _chaos(ctx, center, start, out):
    _take(out, sections.build_wind_tunnel(ctx, start, 3, 6, 14))
    _take(out, sections.build_swing_hammers(ctx, center.translate(0, 0, -8), 3, 12))
    tail = _take(out, sections.build_spinner_blades(ctx, start.translate(0, 0, -18), 4))
    return _take(out, sections.build_moving_planks(ctx, tail.translate(0, 0, -6), 4, 12))


def _cannon(ctx, center, start, out):
    tail = _take(out, sections.build_cannon_run(ctx, start, 12))
    return _take(out, sections.build_gap_run(ctx, tail.translate(0, 0, -8), 6, 3))


def _push(ctx, center, start, out):
    tail = _take(out, sections.build_push_walls(ctx, start, 10))
    return _take(out, sections.build_shrink_plates(ctx, tail.translate(0, 0, -6), 3))


def _maze(ctx, center, start, out):
    tail = _take(out, sections.build_maze_run(ctx, start, 8))
    return _take(out, sections.build_gap_run(ctx, tail.translate(0, 0, -8), 4, 3))


def _fallback(ctx, center, start, out):
    tail = _take(out, sections.build_gap_run(ctx, start, 10, 3))
    return _take(out, sections.build_shrink_plates(ctx, tail.translate(0, 0, -6), 3))


COMPOSITIONS: Dict[str, Composition] = {
    "GapRun": _gap_run,
    "Sweeper": _sweeper,
    "Planks": _planks,
    "Mix": _mix,
    "Conveyor": _conveyor,
    "Hammer": _hammer,
    "Wind": _wind,
    "Spin": _spin,
    "Chaos": _chaos,
    "Cannon": _cannon,
    "Push": _push,
    "Maze": _maze,
}


class CourseAssembler:
    """Builds courses from the registered compositions."""

    def __init__(self, rng: RandomSource, runner: MotionRunner, sink: ContactSink,
                 catalog: Optional[Sequence[str]] = None):
        self.rng = rng
        self.runner = runner
        self.sink = sink
        self.catalog = list(DEFAULT_CATALOG if catalog is None else catalog)

    @staticmethod
    def known_types() -> List[str]:
        return list(COMPOSITIONS)

    def build_by_type(self, arena: Container, center: Pose, course_type: str) -> BuildResult:
        """Clear the arena and build ``course_type`` in it.

        Unknown types get the fallback gap-run course. Hazard-tagged
        elements are wired to the contact sink exactly once.

        Args:
            arena: Folder that holds the course container
            center: Arena center the course is laid out from
            course_type: Name from the catalog

        Returns:
            BuildResult with the start pose, finish pad, elements and container
        """
        self.clear_arena(arena)
        composition = COMPOSITIONS.get(course_type)
        if composition is None:
            logger.warning("Unknown course type %r, using the default layout", course_type)
            composition = _fallback

        root = Container(COURSE_CONTAINER, arena)
        ctx = SectionContext(root, self.rng, self.runner, self.sink)
        start = center.translate(0, 2, 22)
        out: List[Element] = []
        tail = composition(ctx, center, start, out)

        finish = spawn(root, "Finish", ElementKind.FINISH, tail.translate(0, 0, -10),
                       size=(8, 1, 8), color=FINISH_GREEN, tags=("finish",))
        out.append(finish)

        for element in out:
            if element.is_hazard:
                attach_kill_touch(element, self.sink)

        logger.info("Built %s course with %d elements", course_type, len(out))
        return BuildResult(course_type, start, finish, out, root)

    def build_random(self, arena: Container, center: Pose) -> BuildResult:
        """Build a type drawn uniformly from the catalog.

        Raises:
            ValueError: If the catalog is empty
        """
        if not self.catalog:
            raise ValueError("course catalog is empty")
        return self.build_by_type(arena, center, self.rng.choice(self.catalog))

    def clear_arena(self, arena: Container) -> None:
        """Destroy every course under ``arena`` and stop its loops."""
        for child in list(arena.children):
            if isinstance(child, Container) and child.name == COURSE_CONTAINER:
                child.destroy()
