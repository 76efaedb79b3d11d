"""
8-Ball Pool Physics Engine
Discrete per-tick stepper: friction decay, rail reflection, ball-ball exchange,
pocket capture.

Collision checks use end-of-tick positions (no continuous sweep). A ball fast
enough to cross a whole ball diameter or a pocket's capture circle in a single
tick can tunnel through it; shot power is kept well below that.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────
# Constants (table units, one tick = one frame)
# ──────────────────────────────────────────────
BALL_RADIUS: float = 10.0
CUE_BALL: int = 0
EIGHT_BALL: int = 8

# Table dimensions (playable felt, excluding rails)
TABLE_WIDTH: float = 800.0
TABLE_HEIGHT: float = 400.0
RAIL_WIDTH: float = 40.0
POCKET_RADIUS: float = 20.0
SIDE_POCKET_OFFSET: float = 5.0     # side pockets sit slightly outside the long rails

# Numerical thresholds
OVERLAP_TOLERANCE: float = 1e-6

# ── Runtime-editable behavior constants ───────────────────────────────────────
# These are read by name every call, so server.py can mutate them live via:
#   import physics as _phys;  _phys.FRICTION = 0.98
FRICTION: float = 0.985             # per-tick velocity decay (felt + air)
STOP_VELOCITY: float = 0.05         # speeds below this snap to zero
WALL_RESTITUTION: float = 0.8       # normal velocity kept after a rail bounce


@dataclass(frozen=True)
class Table:
    """Static table geometry. Felt spans [rail, rail+width] x [rail, rail+height]."""
    width: float = TABLE_WIDTH
    height: float = TABLE_HEIGHT
    rail: float = RAIL_WIDTH
    pocket_radius: float = POCKET_RADIUS

    @property
    def left(self) -> float:
        return self.rail

    @property
    def right(self) -> float:
        return self.rail + self.width

    @property
    def top(self) -> float:
        return self.rail

    @property
    def bottom(self) -> float:
        return self.rail + self.height

    @property
    def pockets(self) -> Tuple[Tuple[float, float], ...]:
        mid_x = self.rail + self.width / 2
        return (
            (self.left, self.top),                              # top-left
            (mid_x, self.top - SIDE_POCKET_OFFSET),             # top-middle
            (self.right, self.top),                             # top-right
            (self.left, self.bottom),                           # bottom-left
            (mid_x, self.bottom + SIDE_POCKET_OFFSET),          # bottom-middle
            (self.right, self.bottom),                          # bottom-right
        )

    def contains(self, x: float, y: float, margin: float = BALL_RADIUS) -> bool:
        """True if a ball centred at (x, y) lies fully on the felt."""
        return (self.left + margin <= x <= self.right - margin and
                self.top + margin <= y <= self.bottom - margin)


DEFAULT_TABLE = Table()


@dataclass(eq=False)
class Ball:
    """Pool ball. number 0 is the cue ball, 8 the eight ball."""
    number: int
    position: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0]))
    velocity: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0]))

    def __post_init__(self):
        self.position = np.array(self.position, dtype=float)
        self.velocity = np.array(self.velocity, dtype=float)

    @property
    def speed(self) -> float:
        return float(np.linalg.norm(self.velocity))

    @property
    def is_cue(self) -> bool:
        return self.number == CUE_BALL

    def is_moving(self) -> bool:
        return bool(np.any(self.velocity != 0.0))

    def copy(self) -> "Ball":
        return Ball(self.number, self.position.copy(), self.velocity.copy())


@dataclass
class StepResult:
    """Outcome of a single physics tick."""
    potted: List[int] = field(default_factory=list)
    scratch: bool = False
    first_hit: Optional[int] = None
    still_moving: bool = False


class PhysicsEngine:
    """Tick-based pool physics using numpy."""

    def __init__(self, table: Table = DEFAULT_TABLE):
        self.table = table
        self.events: list = []

    # ──────────────────────────────────────────
    # Rails
    # ──────────────────────────────────────────
    def _resolve_wall_collision(self, ball: Ball) -> None:
        """Clamp the ball inside the felt and reflect the crossing component."""
        R = BALL_RADIUS
        t = self.table
        e = WALL_RESTITUTION

        for axis, lo, hi in ((0, t.left, t.right), (1, t.top, t.bottom)):
            if ball.position[axis] - R < lo:
                ball.position[axis] = lo + R
                if ball.velocity[axis] < 0:
                    self.events.append({"type": "cushion", "ball": ball.number,
                                        "speed": float(abs(ball.velocity[axis]))})
                    ball.velocity[axis] = -ball.velocity[axis] * e
            elif ball.position[axis] + R > hi:
                ball.position[axis] = hi - R
                if ball.velocity[axis] > 0:
                    self.events.append({"type": "cushion", "ball": ball.number,
                                        "speed": float(abs(ball.velocity[axis]))})
                    ball.velocity[axis] = -ball.velocity[axis] * e

    # ──────────────────────────────────────────
    # Pockets
    # ──────────────────────────────────────────
    def _find_pocket(self, ball: Ball) -> Optional[int]:
        """Index of the first pocket whose capture circle holds the ball centre."""
        r_sq = self.table.pocket_radius ** 2
        for idx, (px, py) in enumerate(self.table.pockets):
            dx = ball.position[0] - px
            dy = ball.position[1] - py
            if dx * dx + dy * dy < r_sq:
                return idx
        return None

    # ──────────────────────────────────────────
    # Ball-Ball Collision
    # ──────────────────────────────────────────
    @staticmethod
    def _check_ball_collision(b1: Ball, b2: Ball) -> bool:
        """Check if two balls are overlapping (distance-squared test)."""
        diff = b2.position - b1.position
        return float(np.dot(diff, diff)) < (2 * BALL_RADIUS) ** 2

    def _resolve_ball_collision(self, b1: Ball, b2: Ball) -> None:
        """
        Separate two overlapping balls and exchange their normal velocities.

        Equal masses, frictionless, perfectly elastic: the components along the
        line of centres swap, tangential components are untouched.
        """
        diff = b2.position - b1.position
        dist = float(np.linalg.norm(diff))
        if dist < 1e-9:
            normal = np.array([1.0, 0.0])
        else:
            normal = diff / dist

        # Each ball backs off by half the penetration
        overlap = 2 * BALL_RADIUS - dist
        if overlap > 0:
            b1.position = b1.position - normal * (overlap / 2)
            b2.position = b2.position + normal * (overlap / 2)

        v1n = float(np.dot(b1.velocity, normal))
        v2n = float(np.dot(b2.velocity, normal))

        # Only exchange if balls are approaching
        if v1n - v2n <= 0:
            return

        self.events.append({
            "type": "ball_ball", "ball1": b1.number, "ball2": b2.number,
            "speed": v1n - v2n,
        })

        b1.velocity = b1.velocity + (v2n - v1n) * normal
        b2.velocity = b2.velocity + (v1n - v2n) * normal

    # ──────────────────────────────────────────
    # Main Update Loop
    # ──────────────────────────────────────────
    def update(self, balls: List[Ball]) -> StepResult:
        """Advance the simulation by one tick.

        Captured balls are removed from ``balls`` in place.
        """
        self.events.clear()
        result = StepResult()
        captured: List[Ball] = []

        # Move, decay, rails, pockets
        for ball in balls:
            if ball.is_moving():
                ball.position = ball.position + ball.velocity
                ball.velocity = ball.velocity * FRICTION
                if ball.speed < STOP_VELOCITY:
                    ball.velocity[:] = 0.0

            self._resolve_wall_collision(ball)

            pocket = self._find_pocket(ball)
            if pocket is not None:
                captured.append(ball)
                self.events.append({"type": "pocket", "ball": ball.number, "pocket": pocket})
                logger.debug("ball %d captured by pocket %d", ball.number, pocket)
                if ball.is_cue:
                    result.scratch = True
                else:
                    result.potted.append(ball.number)

        if captured:
            balls[:] = [b for b in balls if not any(b is c for c in captured)]

        # Check ball-ball collisions
        for i in range(len(balls)):
            for j in range(i + 1, len(balls)):
                b1, b2 = balls[i], balls[j]
                if not self._check_ball_collision(b1, b2):
                    continue
                self._resolve_ball_collision(b1, b2)
                if result.first_hit is None and (b1.is_cue or b2.is_cue):
                    result.first_hit = b2.number if b1.is_cue else b1.number

        result.still_moving = any(b.is_moving() for b in balls)
        return result

    def simulate(self, balls: List[Ball], max_ticks: int = 10_000) -> Tuple[int, StepResult]:
        """
        Run until all balls stop or max_ticks is reached.

        Returns:
            (ticks elapsed, merged result). ``first_hit`` is the first cue-ball
            contact across the whole run.
        """
        total = StepResult()
        ticks = 0
        while ticks < max_ticks:
            res = self.update(balls)
            ticks += 1
            total.potted.extend(res.potted)
            total.scratch = total.scratch or res.scratch
            if total.first_hit is None:
                total.first_hit = res.first_hit
            if not res.still_moving:
                break
        total.still_moving = any(b.is_moving() for b in balls)
        return ticks, total
