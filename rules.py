"""
8-Ball Rule Engine

One finite-state machine for the whole turn cycle:

    AIMING -> MOVING -> TURN_END -> AIMING | PLACING | GAME_OVER
    PLACING -> AIMING

``evaluate_turn_end`` is the single place where fouls, group assignment, turn
continuation and win/loss are decided. It is a pure function of the turn state
and the events collected during the shot.
"""

import enum
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from physics import CUE_BALL, EIGHT_BALL, StepResult


class Group(enum.Enum):
    SOLIDS = "solids"
    STRIPES = "stripes"

    @property
    def opponent(self) -> "Group":
        return Group.STRIPES if self is Group.SOLIDS else Group.SOLIDS


class Shooter(enum.Enum):
    PLAYER = "player"
    OPPONENT = "opponent"

    @property
    def other(self) -> "Shooter":
        return Shooter.OPPONENT if self is Shooter.PLAYER else Shooter.PLAYER

    @property
    def label(self) -> str:
        return "Player" if self is Shooter.PLAYER else "AI"


class Phase(enum.Enum):
    AIMING = "aiming"
    MOVING = "moving"
    TURN_END = "turn_end"
    PLACING = "placing"
    GAME_OVER = "game_over"


# AIMING -> AIMING is a re-entry when the shot passes to the other shooter
TRANSITIONS = {
    Phase.AIMING:    frozenset({Phase.MOVING, Phase.AIMING}),
    Phase.MOVING:    frozenset({Phase.TURN_END}),
    Phase.TURN_END:  frozenset({Phase.AIMING, Phase.PLACING, Phase.GAME_OVER}),
    Phase.PLACING:   frozenset({Phase.AIMING}),
    Phase.GAME_OVER: frozenset(),
}


def is_stripe(number: int) -> bool:
    return number > EIGHT_BALL


def ball_group(number: int) -> Optional[Group]:
    """Group of an object ball; None for the cue ball and the 8."""
    if number in (CUE_BALL, EIGHT_BALL):
        return None
    return Group.STRIPES if is_stripe(number) else Group.SOLIDS


def group_remaining(numbers: Iterable[int], group: Group) -> bool:
    return any(ball_group(n) is group for n in numbers)


@dataclass
class TurnState:
    shooter: Shooter = Shooter.PLAYER
    phase: Phase = Phase.AIMING
    player_group: Optional[Group] = None
    message: str = "Player's Turn"
    winner: Optional[Shooter] = None

    def group_of(self, shooter: Shooter) -> Optional[Group]:
        if self.player_group is None:
            return None
        return self.player_group if shooter is Shooter.PLAYER else self.player_group.opponent

    @property
    def game_over(self) -> bool:
        return self.phase is Phase.GAME_OVER

    def advance(self, phase: Phase) -> None:
        if phase not in TRANSITIONS[self.phase]:
            raise ValueError(f"illegal phase transition {self.phase.value} -> {phase.value}")
        self.phase = phase


@dataclass
class ShotEvents:
    """Per-shot accumulator, reset when a shot starts."""
    potted: List[int] = field(default_factory=list)
    scratch: bool = False
    first_hit: Optional[int] = None
    remaining: List[int] = field(default_factory=list)

    def reset(self) -> None:
        self.potted = []
        self.scratch = False
        self.first_hit = None
        self.remaining = []

    def record(self, step: StepResult) -> None:
        self.potted.extend(step.potted)
        self.scratch = self.scratch or step.scratch
        # First contact of the shot sticks
        if self.first_hit is None:
            self.first_hit = step.first_hit


@dataclass(frozen=True)
class TurnOutcome:
    next_shooter: Shooter
    next_phase: Phase
    next_group: Optional[Group]     # the player's group; the opponent holds the complement
    message: str
    is_foul: bool = False
    winner: Optional[Shooter] = None


def _game_over(state: TurnState, winner: Shooter, reason: str) -> TurnOutcome:
    return TurnOutcome(
        next_shooter=state.shooter,
        next_phase=Phase.GAME_OVER,
        next_group=state.player_group,
        message=f"GAME OVER - {winner.label} wins ({reason})",
        winner=winner,
    )


def _foul(state: TurnState, message: str) -> TurnOutcome:
    incoming = state.shooter.other
    return TurnOutcome(
        next_shooter=incoming,
        next_phase=Phase.PLACING,
        next_group=state.player_group,
        message=f"{message} Ball in hand for {incoming.label}.",
        is_foul=True,
    )


def evaluate_turn_end(state: TurnState, events: ShotEvents) -> TurnOutcome:
    """Decide what happens after every ball has stopped."""
    shooter = state.shooter
    group = state.group_of(shooter)
    first_hit = events.first_hit
    wrong_first_hit = (
        group is not None and first_hit is not None
        and first_hit != EIGHT_BALL and ball_group(first_hit) is not group
    )

    if EIGHT_BALL in events.potted:
        if events.scratch:
            return _game_over(state, shooter.other, "scratch on the 8-ball")
        if group is None or group_remaining(events.remaining, group):
            return _game_over(state, shooter.other, "early 8-ball")
        if first_hit is None or wrong_first_hit:
            return _game_over(state, shooter.other, "foul on the 8-ball")
        return _game_over(state, shooter, "8-ball potted")

    if events.scratch:
        return _foul(state, "Scratch!")
    if first_hit is None:
        return _foul(state, "Foul! No ball hit.")
    if wrong_first_hit:
        return _foul(state, "Foul! Wrong group hit first.")

    next_group = state.player_group
    message = ""
    object_potted = [n for n in events.potted if n != EIGHT_BALL]
    if group is None and object_potted:
        group = ball_group(object_potted[0])
        next_group = group if shooter is Shooter.PLAYER else group.opponent
        message = f"{shooter.label} is {group.value.upper()}. "

    own = group is not None and any(ball_group(n) is group for n in object_potted)
    opposing = group is not None and any(ball_group(n) is group.opponent for n in object_potted)
    if own and not opposing:
        return TurnOutcome(
            next_shooter=shooter,
            next_phase=Phase.AIMING,
            next_group=next_group,
            message=f"{message}Nice shot! {shooter.label} shoots again.",
        )

    return TurnOutcome(
        next_shooter=shooter.other,
        next_phase=Phase.AIMING,
        next_group=next_group,
        message=f"{message}Turn over. {shooter.other.label}'s turn.",
    )
