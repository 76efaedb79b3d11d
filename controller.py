"""
GameController — Layer 2 (Game Logic)

Sole owner of the ball set and the turn state. Lends the ball list to exactly
one component per call (physics stepper, rule engine, planner) and exposes a
frozen snapshot to the renderer once per frame.

Communicates with the collaborator (server.py) via two queues:
  - pending_events  : game events (show_result, potted, game_over, …)
  - physics_events  : collision events for sound playback

Collaborator calls:
  ctrl.step(dt)               — advance scheduled AI tasks + one physics tick
  ctrl.release_drag(x, y)     — player shot from pointer release
  ctrl.place_cue_ball(x, y)   — player ball-in-hand
  ctrl.snapshot()             — immutable view for rendering
"""

import json
import logging
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional, Tuple

import numpy as np

from physics import Ball, DEFAULT_TABLE, PhysicsEngine, Table
from planner import AimLine, aim_line, plan_shot
from rules import (
    Group, Phase, Shooter, ShotEvents, TurnOutcome, TurnState, evaluate_turn_end,
)
from table import (
    CUE_START, PlacementResult, check_placement, find_cue_ball, place_cue_ball, rack,
)

logger = logging.getLogger(__name__)


class BallView(NamedTuple):
    number: int
    x: float
    y: float
    vx: float
    vy: float


@dataclass(frozen=True)
class FrameSnapshot:
    """Read-only copy of the simulation handed to the renderer."""
    balls: Tuple[BallView, ...]
    phase: Phase
    shooter: Shooter
    player_group: Optional[Group]
    message: str
    winner: Optional[Shooter]


class ScheduledTask:
    """Delayed callback bound to the phase it was scheduled in.

    The controller cancels it on any phase change or teardown; a cancelled task
    never runs its callback.
    """

    def __init__(self, delay: float, callback: Callable[[], None], phase: Phase):
        self.remaining = delay
        self.callback = callback
        self.phase = phase
        self.cancelled = False
        self.done = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.done)

    def tick(self, dt: float) -> bool:
        """Count down; run the callback once the delay has elapsed."""
        if not self.active:
            return False
        self.remaining -= dt
        if self.remaining > 0.0:
            return False
        self.done = True
        self.callback()
        return True


class GameController:
    """Layer 2: 8-ball state machine + physics orchestration."""

    # ── Class-level constants ─────────────────────────────────────────────────
    TICKS_PER_FRAME   = 1
    AI_THINK_DELAY    = 1.0
    AI_PLACE_DELAY    = 1.0
    POWER_MULTIPLIER  = 0.15            # pointer drag length → cue speed
    TRAJECTORY_POWER_MULTIPLIER = 4.0   # pointer drag length → aim line length
    MAX_SIM_TICKS     = 10_000

    # AI ball-in-hand spots, tried in order (offsets from the cue start)
    AI_PLACEMENT_OFFSETS = (
        (0.0, 0.0), (50.0, 0.0), (-50.0, 0.0),
        (0.0, -50.0), (0.0, 50.0), (100.0, 0.0),
    )
    AI_PLACEMENT_GRID = 25.0

    # ── Constructor ───────────────────────────────────────────────────────────

    def __init__(self, table: Table = DEFAULT_TABLE):
        self.table = table
        self.engine = PhysicsEngine(table)
        self.balls: list[Ball] = []
        self.turn = TurnState()
        self.shot = ShotEvents()
        self._task: Optional[ScheduledTask] = None
        self._closed = False

        # Event queues
        self.pending_events: list[dict] = []
        self.physics_events: list[dict] = []

    # ──────────────────────────────────────────────────────────────────────────
    # Session lifecycle
    # ──────────────────────────────────────────────────────────────────────────

    def new_game(self) -> None:
        """Rack the balls and hand the break to the player."""
        self._cancel_task()
        self._closed = False
        self.balls = rack()
        self.turn = TurnState()
        self.shot.reset()
        self.pending_events.append({"type": "new_game"})
        logger.info("new game racked, %d balls", len(self.balls))

    def shutdown(self) -> None:
        """Session teardown: drop any pending AI task."""
        self._cancel_task()
        self._closed = True

    @property
    def phase(self) -> Phase:
        return self.turn.phase

    @property
    def status_msg(self) -> str:
        return self.turn.message

    # ──────────────────────────────────────────────────────────────────────────
    # Phase handling + scheduled tasks
    # ──────────────────────────────────────────────────────────────────────────

    def _cancel_task(self) -> None:
        if self._task is not None and self._task.active:
            logger.debug("cancelled pending %s task", self._task.phase.value)
            self._task.cancel()
        self._task = None

    def _schedule(self, delay: float, callback: Callable[[], None]) -> None:
        self._task = ScheduledTask(delay, callback, self.turn.phase)

    def _enter_phase(self, phase: Phase) -> None:
        self._cancel_task()
        self.turn.advance(phase)

        if self.turn.shooter is Shooter.OPPONENT:
            if phase is Phase.AIMING:
                self._schedule(self.AI_THINK_DELAY, self._run_ai_shot)
            elif phase is Phase.PLACING:
                self._schedule(self.AI_PLACE_DELAY, self._run_ai_placement)

    def _tick_task(self, dt: float) -> None:
        task = self._task
        if task is None:
            return
        if task.phase is not self.turn.phase:
            task.cancel()
            self._task = None
            return
        task.tick(dt)
        if self._task is task and not task.active:
            self._task = None

    # ──────────────────────────────────────────────────────────────────────────
    # Main loop
    # ──────────────────────────────────────────────────────────────────────────

    def step(self, dt_frame: float) -> None:
        """Advance scheduled tasks and, while moving, one physics tick. Called every frame."""
        if self._closed:
            return
        self._tick_task(dt_frame)
        if self.turn.phase is not Phase.MOVING:
            return

        self.physics_events.clear()
        for _ in range(self.TICKS_PER_FRAME):
            result = self.engine.update(self.balls)
            self.shot.record(result)
            self.physics_events.extend(self.engine.events)
            for n in result.potted:
                self.pending_events.append({"type": "potted", "ball": n})
            if not result.still_moving:
                self._on_shot_finished()
                return

    def _on_shot_finished(self) -> None:
        self._enter_phase(Phase.TURN_END)
        self.shot.remaining = [b.number for b in self.balls if not b.is_cue]
        outcome = evaluate_turn_end(self.turn, self.shot)
        self._apply_outcome(outcome)

    def _apply_outcome(self, outcome: TurnOutcome) -> None:
        self.turn.shooter = outcome.next_shooter
        self.turn.player_group = outcome.next_group
        self.turn.message = outcome.message
        self.turn.winner = outcome.winner
        logger.info("turn end: %s", outcome.message)

        self.pending_events.append({
            "type": "show_result", "msg": outcome.message, "foul": outcome.is_foul,
        })
        if outcome.winner is not None:
            self.pending_events.append({"type": "game_over", "winner": outcome.winner.value})
        self._enter_phase(outcome.next_phase)

    # ──────────────────────────────────────────────────────────────────────────
    # Shooting
    # ──────────────────────────────────────────────────────────────────────────

    def fire_shot(self, velocity) -> bool:
        """Apply ``velocity`` to the cue ball and start the Moving phase."""
        if self.turn.phase is not Phase.AIMING:
            return False
        ball = find_cue_ball(self.balls)
        if ball is None:
            return False
        ball.velocity = np.array(velocity, dtype=float)
        self.shot.reset()
        self._enter_phase(Phase.MOVING)
        self.pending_events.append({"type": "clear_aim"})
        return True

    def _drag_vector(self, pointer) -> Optional[np.ndarray]:
        """Pull-back vector from the pointer to the cue ball, or None if unavailable."""
        if self.turn.shooter is not Shooter.PLAYER or self.turn.phase is not Phase.AIMING:
            return None
        ball = find_cue_ball(self.balls)
        if ball is None:
            return None
        drag = ball.position - np.array(pointer, dtype=float)
        if float(np.linalg.norm(drag)) < 1e-9:
            return None
        return drag

    def release_drag(self, x: float, y: float) -> bool:
        """Player shot: speed proportional to how far the pointer was pulled back."""
        drag = self._drag_vector((x, y))
        if drag is None:
            return False
        return self.fire_shot(drag * self.POWER_MULTIPLIER)

    def aim_preview(self, x: float, y: float) -> Optional[AimLine]:
        """Aim line for the current pointer position, or None if no aim is possible."""
        drag = self._drag_vector((x, y))
        if drag is None:
            return None
        length = float(np.linalg.norm(drag))
        return aim_line(self.balls, drag, length * self.TRAJECTORY_POWER_MULTIPLIER)

    # ──────────────────────────────────────────────────────────────────────────
    # Ball in hand
    # ──────────────────────────────────────────────────────────────────────────

    def place_cue_ball(self, x: float, y: float) -> Optional[PlacementResult]:
        """Player ball-in-hand. None when no placement is expected right now."""
        if self.turn.phase is not Phase.PLACING or self.turn.shooter is not Shooter.PLAYER:
            return None
        return self._place((x, y))

    def _place(self, position) -> PlacementResult:
        result = place_cue_ball(self.balls, position, self.table)
        if result.accepted:
            self.turn.message = f"{self.turn.shooter.label}'s Turn"
            self._enter_phase(Phase.AIMING)
        return result

    # ──────────────────────────────────────────────────────────────────────────
    # AI
    # ──────────────────────────────────────────────────────────────────────────

    def _run_ai_shot(self) -> None:
        group = self.turn.group_of(Shooter.OPPONENT)
        velocity = plan_shot(self.balls, group, self.table)
        if velocity is None:
            # Nothing to shoot at: the turn passes
            self.turn.shooter = Shooter.PLAYER
            self.turn.message = "Player's Turn"
            self._enter_phase(Phase.AIMING)
            return
        self.turn.message = "AI shooting..."
        self.fire_shot(velocity)

    def _ai_placement_spots(self):
        for dx, dy in self.AI_PLACEMENT_OFFSETS:
            yield (CUE_START[0] + dx, CUE_START[1] + dy)
        step = self.AI_PLACEMENT_GRID
        t = self.table
        for x in np.arange(t.left + step, t.right, step):
            for y in np.arange(t.top + step, t.bottom, step):
                yield (float(x), float(y))

    def _run_ai_placement(self) -> None:
        for spot in self._ai_placement_spots():
            if check_placement(self.balls, spot, self.table).accepted:
                self._place(spot)
                return
        logger.warning("AI found no legal ball-in-hand spot")

    # ──────────────────────────────────────────────────────────────────────────
    # Snapshot / state export
    # ──────────────────────────────────────────────────────────────────────────

    def snapshot(self) -> FrameSnapshot:
        views = tuple(
            BallView(b.number, float(b.position[0]), float(b.position[1]),
                     float(b.velocity[0]), float(b.velocity[1]))
            for b in self.balls
        )
        return FrameSnapshot(
            balls=views,
            phase=self.turn.phase,
            shooter=self.turn.shooter,
            player_group=self.turn.player_group,
            message=self.turn.message,
            winner=self.turn.winner,
        )

    def get_state_json(self) -> str:
        """Return current ball positions as compact single-line JSON."""
        balls = {
            str(b.number): {"pos": [round(float(b.position[0]), 4),
                                    round(float(b.position[1]), 4)]}
            for b in self.balls
        }
        return json.dumps({"cmd": "set", "balls": balls}, separators=(',', ':'))

    def set_balls(self, balls_info: dict, replace: bool = False) -> "GameController":
        """Update ball positions/velocities without firing a shot.

        Keys are ball numbers (int or str, so ``get_state_json`` output can be
        fed back in)::

            ctrl.set_balls({0: {"pos": [240, 240]},
                            5: {"pos": [600, 300], "vel": [0, 0]}}, replace=True)

        ``replace=True`` drops every ball not listed. Returns ``self``.
        """
        existing = {} if replace else {b.number: b for b in self.balls}
        if replace:
            self.balls = []
        for name, bd in balls_info.items():
            pos = bd.get("pos")
            if pos is None:
                continue
            number = int(name)
            b = existing.get(number)
            if b is None:
                b = Ball(number)
                self.balls.append(b)
                existing[number] = b
            b.position = np.array([float(pos[0]), float(pos[1])])
            vel = bd.get("vel", [0.0, 0.0])
            b.velocity = np.array([float(vel[0]), float(vel[1])])
        return self

    # ──────────────────────────────────────────────────────────────────────────
    # Headless simulation
    # ──────────────────────────────────────────────────────────────────────────

    def simulate_shot(self, velocity, max_ticks: Optional[int] = None) -> dict:
        """Run a cue-ball shot on copies of the current balls.

        Non-destructive: ``self.balls`` and the turn state are left untouched.

        Returns:
            ``dict`` with ``potted``, ``scratch``, ``first_hit``, ``ticks``,
            ``balls`` (final positions keyed by number) and ``outcome`` (the
            ``TurnOutcome`` the rule engine would produce for the current
            shooter).
        """
        balls = [b.copy() for b in self.balls]
        cue = find_cue_ball(balls)
        if cue is None:
            raise ValueError("simulate_shot: no cue ball on the table")
        cue.velocity = np.array(velocity, dtype=float)

        engine = PhysicsEngine(self.table)
        ticks, result = engine.simulate(balls, max_ticks or self.MAX_SIM_TICKS)

        events = ShotEvents(
            potted=list(result.potted),
            scratch=result.scratch,
            first_hit=result.first_hit,
            remaining=[b.number for b in balls if not b.is_cue],
        )
        state = TurnState(shooter=self.turn.shooter, phase=Phase.TURN_END,
                          player_group=self.turn.player_group)
        return {
            "potted":    list(result.potted),
            "scratch":   result.scratch,
            "first_hit": result.first_hit,
            "ticks":     ticks,
            "balls":     {b.number: [round(float(b.position[0]), 6),
                                     round(float(b.position[1]), 6)] for b in balls},
            "outcome":   evaluate_turn_end(state, events),
        }
