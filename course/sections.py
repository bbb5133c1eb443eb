"""Obstacle section builders.

Each builder takes a SectionContext, a start pose and its own parameters,
spawns elements into ``ctx.container`` and returns a Section holding the
new elements and the pose where the next section should begin. Any
randomness comes from ``ctx.rng``. Moving parts get their own loop on
``ctx.runner``, bound to the element's token, so a loop ends on the first
iteration after its course is torn down.

A zero or negative count always yields an empty section at the start pose.
"""

import math
from dataclasses import dataclass
from typing import Callable, List, NamedTuple, Optional, Sequence

import numpy as np

from course.elements import (
    CHECKPOINT_BLUE, HAZARD_RED, WHITE,
    ContactSink, Container, Element, ElementKind,
    attach_checkpoint, attach_force, attach_kill_touch, spawn,
)
from course.geometry import Pose, vec3
from course.motion import HEARTBEAT, MotionRunner, hold, linear, sine_in_out, tween
from course.randomness import RandomSource


PLATE_SIZE = (6, 1, 6)

PLANK_SPACING = 8
PLANK_TWEEN = 1.6
POPUP_RISE = 2
POPUP_HOLD = 0.6
POPUP_JITTER = 0.4
SHRINK_FULL = 7
SHRINK_SCALE = 0.4
SHRINK_TWEEN = 0.9
SHRINK_PAUSE = 0.4
HAMMER_STEP = 0.03
HAMMER_SWING = math.radians(45)
FIELD_SPACING = 7
PUSH_SPACING = 8
PUSH_TWEEN = 0.7
PUSH_PAUSE = 0.3
PUSH_JITTER = 0.4
CANNON_SPACING = 7
CANNON_OFFSET = 12
CANNON_SPEED = 35
CANNON_MIN_INTERVAL = 1.5
CANNON_JITTER = 1.0
BALL_LIFETIME = 6.0
PROJECTILE_STEP = 0.05
MAZE_COLUMNS = (-7.0, 0.0, 7.0)
MAZE_ROW_SPACING = 7


@dataclass
class SectionContext:
    """What every builder needs besides geometry."""

    container: Container
    rng: RandomSource
    runner: MotionRunner
    sink: ContactSink

    @property
    def clock(self):
        return self.runner.clock


class Section(NamedTuple):
    """Result of one builder.

    Attributes:
        elements: Everything the builder created, in creation order
        next_pose: Where the following section (or the finish pad) attaches
    """
    elements: List[Element]
    next_pose: Pose


def _plate(ctx: SectionContext, name: str, pose: Pose, color=WHITE,
           size=PLATE_SIZE, kind=ElementKind.PLATFORM) -> Element:
    return spawn(ctx.container, name, kind, pose, size=size, color=color)


def _hazard(ctx: SectionContext, name: str, pose: Pose, size=PLATE_SIZE,
            color=HAZARD_RED) -> Element:
    element = spawn(ctx.container, name, ElementKind.HAZARD, pose, size=size,
                    color=color, tags=("hazard",))
    attach_kill_touch(element, ctx.sink)
    return element


def _checkpoint(ctx: SectionContext, pose: Pose) -> Element:
    element = spawn(ctx.container, "Checkpoint", ElementKind.CHECKPOINT, pose,
                    size=PLATE_SIZE, color=CHECKPOINT_BLUE, tags=("checkpoint",))
    attach_checkpoint(element, ctx.sink)
    return element


# --- Motion loops ---

async def _move_to(clock, element: Element, target: Pose, duration: float,
                   easing) -> bool:
    origin = element.pose

    def apply(alpha):
        element.pose = origin.lerp(target, alpha)

    return await tween(clock, element.token, apply, duration, easing)


async def _shuttle(clock, element: Element, first: Pose, second: Pose,
                   duration: float, easing, offset: float = 0.0,
                   pause: Optional[Callable[[], float]] = None) -> None:
    """Tween between two poses forever, optionally resting after each cycle."""
    token = element.token
    if offset > 0 and not await hold(clock, token, offset):
        return
    while token.active:
        if not await _move_to(clock, element, first, duration, easing):
            return
        if not await _move_to(clock, element, second, duration, easing):
            return
        if pause is not None and not await hold(clock, token, pause()):
            return


async def _rise_and_sink(clock, rng: RandomSource, element: Element, offset: float) -> None:
    token = element.token
    if offset > 0 and not await hold(clock, token, offset):
        return
    while token.active:
        element.pose = element.pose.translate(0, POPUP_RISE, 0)
        if not await hold(clock, token, POPUP_HOLD):
            return
        element.pose = element.pose.translate(0, -POPUP_RISE, 0)
        if not await hold(clock, token, POPUP_HOLD + rng.random() * POPUP_JITTER):
            return


async def _pulse_size(clock, element: Element, offset: float) -> None:
    token = element.token
    if offset > 0 and not await hold(clock, token, offset):
        return
    scale = 1.0
    while token.active:
        scale = SHRINK_SCALE if scale == 1.0 else 1.0
        origin = element.size.copy()
        target = vec3(SHRINK_FULL * scale, origin[1], SHRINK_FULL * scale)

        def apply(alpha, origin=origin, target=target):
            element.size = origin + (target - origin) * alpha

        if not await tween(clock, token, apply, SHRINK_TWEEN, sine_in_out):
            return
        if not await hold(clock, token, SHRINK_PAUSE):
            return


def _arm_pose(center: Pose, rot: float, radius: float, height: float) -> Pose:
    return (center * Pose.angles(0, rot, 0)
            * Pose.at(0, height, -radius / 2) * Pose.angles(0, 0, math.pi / 2))


async def _sweep(clock, hub: Element, arms: Sequence[Element], center: Pose,
                 radius: float, height: float, speed: float) -> None:
    rot = 0.0
    spread = 2 * math.pi / len(arms)
    while hub.alive:
        rot += speed
        for i, arm in enumerate(arms):
            if arm.alive:
                arm.pose = _arm_pose(center, rot + i * spread, radius, height)
        await clock.sleep(HEARTBEAT)


async def _swing(clock, pivot: Element, arm: Element, head: Element, phase: float) -> None:
    t = phase
    while arm.alive:
        t += HAMMER_STEP
        swing = math.sin(t) * HAMMER_SWING
        arm.pose = pivot.pose * Pose.angles(swing, 0, 0) * Pose.at(0, -4, 0)
        head.pose = arm.pose.translate(0, -4.5, 0)
        await clock.sleep(HAMMER_STEP)


async def _spin(clock, pivot: Element, blade: Element, speed: float) -> None:
    angle = 0.0
    while blade.alive:
        angle += speed
        blade.pose = pivot.pose * Pose.angles(0, angle, 0)
        await clock.sleep(HEARTBEAT)


async def _fly(clock, ball: Element, velocity: np.ndarray, lifetime: float) -> None:
    """Move a projectile for ``lifetime`` seconds, then remove it."""
    steps = max(1, round(lifetime / PROJECTILE_STEP))
    dt = lifetime / steps
    try:
        for _ in range(steps):
            await clock.sleep(dt)
            if not ball.alive:
                return
            ball.pose = ball.pose.shifted(velocity * dt)
    finally:
        ball.destroy()


async def _fire(ctx: SectionContext, launcher: Element, velocity: np.ndarray) -> None:
    token = launcher.token
    while token.active:
        ball = spawn(ctx.container, "CannonBall", ElementKind.PROJECTILE, launcher.pose,
                     size=(2, 2, 2), color=(255, 80, 80), tags=("hazard",))
        ball.attributes["velocity"] = velocity
        ball.attributes["spawned_at"] = ctx.clock.now()
        attach_kill_touch(ball, ctx.sink)
        launcher.attributes["fired"] = launcher.attributes.get("fired", 0) + 1
        ctx.runner.spawn(f"ball:{ball.element_id}", _fly(ctx.clock, ball, velocity, BALL_LIFETIME))
        interval = CANNON_MIN_INTERVAL + ctx.rng.random() * CANNON_JITTER
        if not await hold(ctx.clock, token, interval):
            return


# --- Builders ---

def build_gap_run(ctx: SectionContext, start: Pose, segments: int, gap: float) -> Section:
    """Straight line of plates ``gap`` apart.

    Every 4th plate gets a lava pit under the half gap after it and every
    5th plate gets a checkpoint.

    Args:
        ctx: Container, random source, runner and contact sink
        start: Pose of the first plate
        segments: Number of plates; zero or less builds nothing
        gap: Distance between consecutive plates

    Returns:
        Section whose next_pose is the last plate's pose
    """
    if segments <= 0:
        return Section([], start)
    out: List[Element] = []
    pose = start
    last = None
    for i in range(1, segments + 1):
        plate = _plate(ctx, f"Plate_{i}", pose)
        out.append(plate)
        last = plate
        pose = pose.translate(0, 0, -(6 + gap))
        if i % 4 == 0:
            out.append(_hazard(ctx, "Lava", plate.pose.translate(0, -2.2, -gap / 2)))
        if i % 5 == 0:
            out.append(_checkpoint(ctx, plate.pose))
    return Section(out, last.pose)


def build_moving_planks(ctx: SectionContext, start: Pose, count: int, span: float) -> Section:
    """Plates that slide ±span/2 sideways, each on its own phase."""
    if count <= 0:
        return Section([], start)
    out: List[Element] = []
    for i in range(1, count + 1):
        home = start.translate(0, 0, -i * PLANK_SPACING)
        plank = _plate(ctx, f"Mover_{i}", home, color=(180, 255, 190), kind=ElementKind.MOVER)
        out.append(plank)
        left = home.translate(-span / 2, 0, 0)
        right = home.translate(span / 2, 0, 0)
        offset = ctx.rng.uniform(0, PLANK_TWEEN)
        ctx.runner.spawn(
            f"plank:{plank.element_id}",
            _shuttle(ctx.clock, plank, right, left, PLANK_TWEEN, sine_in_out, offset=offset),
        )
    return Section(out, start.translate(0, 0, -count * PLANK_SPACING))


def build_sweeper(ctx: SectionContext, center: Pose, radius: float, arms: int,
                  height: float) -> Section:
    """Fixed hub with ``arms`` evenly spread arms turning at a random speed."""
    if arms <= 0:
        return Section([], center)
    hub = _plate(ctx, "SweeperBase", center, color=(180, 180, 180), size=(4, 1, 4))
    out = [hub]
    arm_parts = []
    spread = 2 * math.pi / arms
    for i in range(1, arms + 1):
        arm = spawn(ctx.container, f"Arm_{i}", ElementKind.MOVER,
                    _arm_pose(center, (i - 1) * spread, radius, height),
                    size=(1, 0.8, radius), color=(255, 170, 0))
        arm_parts.append(arm)
        out.append(arm)
    speed = ctx.rng.randint(25, 55) / 100
    hub.attributes["angular_speed"] = speed
    ctx.runner.spawn(f"sweeper:{hub.element_id}",
                     _sweep(ctx.clock, hub, arm_parts, center, radius, height, speed))
    return Section(out, center)


def build_popup_pillars(ctx: SectionContext, start: Pose, count: int, spacing: float) -> Section:
    """Pillars that rise, hold, sink and hold again."""
    if count <= 0:
        return Section([], start)
    out: List[Element] = []
    for i in range(1, count + 1):
        pillar = _plate(ctx, f"Pillar_{i}", start.translate(0, 0, -i * spacing),
                        color=(255, 200, 120), size=(6, 2, 6), kind=ElementKind.MOVER)
        out.append(pillar)
        offset = ctx.rng.uniform(0, POPUP_HOLD)
        ctx.runner.spawn(f"pillar:{pillar.element_id}",
                         _rise_and_sink(ctx.clock, ctx.rng, pillar, offset))
    return Section(out, start.translate(0, 0, -count * spacing))


def build_shrink_plates(ctx: SectionContext, start: Pose, segments: int) -> Section:
    """Plates that alternate between full and 40% footprint."""
    if segments <= 0:
        return Section([], start)
    out: List[Element] = []
    pose = start
    for i in range(1, segments + 1):
        plate = _plate(ctx, f"Shrink_{i}", pose, color=(200, 240, 255),
                       size=(SHRINK_FULL, 1, SHRINK_FULL), kind=ElementKind.MOVER)
        out.append(plate)
        offset = ctx.rng.uniform(0, SHRINK_PAUSE)
        ctx.runner.spawn(f"shrink:{plate.element_id}", _pulse_size(ctx.clock, plate, offset))
        pose = pose.translate(0, 0, -8)
    return Section(out, pose)


def build_swing_hammers(ctx: SectionContext, center: Pose, count: int, radius: float) -> Section:
    """Pendulums spread evenly around ``center``, each swinging ±45°."""
    if count <= 0:
        return Section([], center)
    out: List[Element] = []
    for i in range(1, count + 1):
        angle = (i - 1) * (2 * math.pi / count)
        pivot = spawn(ctx.container, "HammerPivot", ElementKind.MARKER,
                      center * Pose.angles(0, angle, 0) * Pose.at(radius, 6, 0),
                      size=(1, 1, 1))
        pivot.attributes["transparent"] = True
        arm = spawn(ctx.container, "HammerArm", ElementKind.MOVER,
                    pivot.pose.translate(0, -4, 0), size=(1, 8, 1), color=(90, 90, 90))
        head = spawn(ctx.container, "HammerHead", ElementKind.MOVER,
                     arm.pose.translate(0, -4.5, 0), size=(3, 3, 3), color=(200, 50, 50))
        out.extend([pivot, arm, head])
        phase = ctx.rng.uniform(0, 2 * math.pi)
        ctx.runner.spawn(f"hammer:{arm.element_id}", _swing(ctx.clock, pivot, arm, head, phase))
    return Section(out, center)


def _force_grid(ctx: SectionContext, start: Pose, width: int, length: int,
                impulse: np.ndarray, name: str, color) -> Section:
    if width <= 0 or length <= 0:
        return Section([], start)
    out: List[Element] = []
    for z in range(1, length + 1):
        for x in range(1, width + 1):
            x_offset = (x - (width / 2 + 0.5)) * FIELD_SPACING
            tile = spawn(ctx.container, name, ElementKind.FORCE_FIELD,
                         start.translate(x_offset, 0, -z * FIELD_SPACING),
                         size=PLATE_SIZE, color=color)
            attach_force(tile, ctx.sink, impulse)
            out.append(tile)
    return Section(out, start.translate(0, 0, -length * FIELD_SPACING))


def build_conveyor_field(ctx: SectionContext, start: Pose, width: int, length: int,
                         force: float) -> Section:
    """Tiles that add a push along the course axis, against the runner."""
    impulse = -start.look_vector * force
    return _force_grid(ctx, start, width, length, impulse, "Conveyor", (160, 200, 255))


def build_wind_tunnel(ctx: SectionContext, start: Pose, width: int, length: int,
                      force: float) -> Section:
    """Tiles that add a sideways push to the right of the course."""
    impulse = start.right_vector * force
    return _force_grid(ctx, start, width, length, impulse, "Wind", (180, 220, 255))


def build_spinner_blades(ctx: SectionContext, start: Pose, count: int) -> Section:
    """Thin blades spinning above floor tiles, each at its own speed."""
    if count <= 0:
        return Section([], start)
    out: List[Element] = []
    for i in range(1, count + 1):
        pivot = spawn(ctx.container, "SpinPivot", ElementKind.MARKER,
                      start.translate(0, 3, -i * 6), size=(1, 1, 1))
        pivot.attributes["transparent"] = True
        blade = spawn(ctx.container, f"SpinBlade_{i}", ElementKind.MOVER, pivot.pose,
                      size=(8, 0.5, 1), color=(230, 100, 80))
        speed = ctx.rng.randint(50, 90) / 100
        blade.attributes["angular_speed"] = speed
        ctx.runner.spawn(f"spinner:{blade.element_id}", _spin(ctx.clock, pivot, blade, speed))
        floor = _plate(ctx, f"SpinFloor_{i}", start.translate(0, 0, -i * 6), color=(240, 240, 240))
        out.extend([pivot, blade, floor])
    return Section(out, start.translate(0, 0, -count * 6))


def build_push_walls(ctx: SectionContext, start: Pose, count: int) -> Section:
    """Floor tiles with a deadly wall sliding across each one."""
    if count <= 0:
        return Section([], start)
    out: List[Element] = []
    for i in range(1, count + 1):
        base = _plate(ctx, f"PushBase_{i}", start.translate(0, 0, -i * PUSH_SPACING),
                      color=(200, 200, 200))
        left = base.pose.translate(-4, 1.5, 0)
        right = base.pose.translate(4, 1.5, 0)
        wall = spawn(ctx.container, f"PushWall_{i}", ElementKind.MOVER, left,
                     size=(1, 3, 6), color=(200, 100, 100), tags=("hazard",))
        attach_kill_touch(wall, ctx.sink)
        out.extend([base, wall])
        ctx.runner.spawn(
            f"pushwall:{wall.element_id}",
            _shuttle(ctx.clock, wall, right, left, PUSH_TWEEN, linear,
                     pause=lambda: PUSH_PAUSE + ctx.rng.random() * PUSH_JITTER),
        )
    return Section(out, start.translate(0, 0, -count * PUSH_SPACING))


def build_cannon_run(ctx: SectionContext, start: Pose, segments: int) -> Section:
    """Straight path with two launchers firing deadly balls across it.

    Launchers sit left and right of the midpoint and fire toward the
    opposite side every 1.5 to 2.5 seconds. Each ball is removed six
    seconds after it is fired.
    """
    if segments <= 0:
        return Section([], start)
    out: List[Element] = []
    pose = start
    for i in range(1, segments + 1):
        out.append(_plate(ctx, f"CannonPlate_{i}", pose, color=(230, 230, 230)))
        pose = pose.translate(0, 0, -CANNON_SPACING)
    mid = segments * CANNON_SPACING / 2
    for side, sign in (("Left", -1), ("Right", 1)):
        launcher = spawn(ctx.container, f"Cannon{side}", ElementKind.SPAWNER,
                         start.translate(sign * CANNON_OFFSET, 3, -mid), size=(2, 2, 2),
                         color=(60, 60, 60))
        out.append(launcher)
        velocity = start.rotate_vector((-sign * CANNON_SPEED, 0, 0))
        ctx.runner.spawn(f"cannon:{launcher.element_id}", _fire(ctx, launcher, velocity))
    return Section(out, pose)


def maze_safe_slots(rows: int, rng: RandomSource, slots: int = len(MAZE_COLUMNS)) -> List[int]:
    """Random walk across the maze columns.

    Args:
        rows: Number of maze rows
        rng: Shared random source
        slots: Columns per row

    Returns:
        One 1-based safe slot per row. Consecutive rows differ by at most
        one slot, so the maze is always crossable.
    """
    if rows <= 0:
        return []
    current = rng.randint(1, slots)
    path = []
    for _ in range(rows):
        options = [current]
        if current > 1:
            options.append(current - 1)
        if current < slots:
            options.append(current + 1)
        current = rng.choice(options)
        path.append(current)
    return path


def build_maze_run(ctx: SectionContext, start: Pose, rows: int) -> Section:
    """Rows of three slots where only one per row is safe."""
    path = maze_safe_slots(rows, ctx.rng)
    if not path:
        return Section([], start)
    out: List[Element] = []
    for r, safe in enumerate(path, 1):
        z = -r * MAZE_ROW_SPACING
        for i, x in enumerate(MAZE_COLUMNS, 1):
            pose = start.translate(x, 0, z)
            if i == safe:
                out.append(_plate(ctx, f"MazeSafe_{r}_{i}", pose, color=(230, 230, 230)))
            else:
                out.append(_hazard(ctx, f"MazeHazard_{r}_{i}", pose, color=(200, 80, 80)))
    final_x = MAZE_COLUMNS[path[-1] - 1]
    return Section(out, start.translate(final_x, 0, -rows * MAZE_ROW_SPACING))
