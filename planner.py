"""
Shot Planner — ghost-ball heuristic for the AI opponent.

For every (legal target, pocket) pair the cue ball has to reach the ghost-ball
point, one diameter behind the target on the pocket line. Pairs are dropped when
the cut is too thin or either leg of the path is blocked; the survivors are
scored on path length and straightness.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from physics import Ball, BALL_RADIUS, DEFAULT_TABLE, EIGHT_BALL, Table
from rules import Group, ball_group
from table import find_cue_ball

# Planner tuning
MIN_ALIGNMENT: float = 0.2          # cos(cut angle); ~78 degrees is the thinnest cut tried
ALIGNMENT_WEIGHT: float = 1.0
DISTANCE_WEIGHT: float = 100.0      # score += DISTANCE_WEIGHT / total path length
POWER_PER_DISTANCE: float = 0.04    # shot speed per unit of total path length
MIN_SHOT_POWER: float = 5.0
MAX_SHOT_POWER: float = 20.0
FALLBACK_POWER: float = 8.0


@dataclass(frozen=True)
class ShotCandidate:
    target: int
    pocket: int
    ghost: np.ndarray
    alignment: float
    distance: float
    score: float
    velocity: np.ndarray


@dataclass(frozen=True)
class AimLine:
    contact: np.ndarray                 # cue-ball centre at contact (or end of the line)
    target: Optional[int] = None        # ball the cue ball would touch first
    target_direction: Optional[np.ndarray] = None


def _unit(v: np.ndarray) -> Optional[np.ndarray]:
    n = float(np.linalg.norm(v))
    if n < 1e-9:
        return None
    return v / n


def _segment_distance(p: np.ndarray, a: np.ndarray, b: np.ndarray) -> float:
    """Distance from point p to segment ab."""
    ab = b - a
    denom = float(np.dot(ab, ab))
    if denom < 1e-12:
        return float(np.linalg.norm(p - a))
    t = max(0.0, min(1.0, float(np.dot(p - a, ab)) / denom))
    return float(np.linalg.norm(p - (a + t * ab)))


def _path_blocked(a: np.ndarray, b: np.ndarray, balls: Sequence[Ball], skip) -> bool:
    clearance = 2 * BALL_RADIUS
    for ball in balls:
        if ball.number in skip:
            continue
        if _segment_distance(ball.position, a, b) < clearance:
            return True
    return False


def legal_targets(balls: Sequence[Ball], group: Optional[Group]) -> List[Ball]:
    """Balls the shooter may aim at: own group, the 8 once cleared, or any non-8 on an open table."""
    objects = [b for b in balls if not b.is_cue]
    if group is None:
        return [b for b in objects if b.number != EIGHT_BALL]
    own = [b for b in objects if ball_group(b.number) is group]
    if own:
        return own
    return [b for b in objects if b.number == EIGHT_BALL]


def candidate_shots(balls: Sequence[Ball], group: Optional[Group],
                    table: Table = DEFAULT_TABLE) -> List[ShotCandidate]:
    """Every makeable, unobstructed (target, pocket) pair, best first."""
    cue = find_cue_ball(balls)
    if cue is None:
        return []

    candidates = []
    for target in legal_targets(balls, group):
        skip = {cue.number, target.number}
        for idx, pocket in enumerate(table.pockets):
            pocket = np.array(pocket, dtype=float)
            to_pocket = pocket - target.position
            pocket_dir = _unit(to_pocket)
            if pocket_dir is None:
                continue

            ghost = target.position - pocket_dir * (2 * BALL_RADIUS)
            to_ghost = ghost - cue.position
            aim_dir = _unit(to_ghost)
            if aim_dir is None:
                continue

            alignment = float(np.dot(aim_dir, pocket_dir))
            if alignment < MIN_ALIGNMENT:
                continue

            if _path_blocked(cue.position, ghost, balls, skip):
                continue
            if _path_blocked(target.position, pocket, balls, skip):
                continue

            distance = float(np.linalg.norm(to_ghost) + np.linalg.norm(to_pocket))
            score = ALIGNMENT_WEIGHT * alignment + DISTANCE_WEIGHT / distance
            power = min(MAX_SHOT_POWER, max(MIN_SHOT_POWER, distance * POWER_PER_DISTANCE))
            candidates.append(ShotCandidate(
                target=target.number, pocket=idx, ghost=ghost,
                alignment=alignment, distance=distance, score=score,
                velocity=aim_dir * power,
            ))

    candidates.sort(key=lambda c: c.score, reverse=True)
    return candidates


def plan_shot(balls: Sequence[Ball], group: Optional[Group],
              table: Table = DEFAULT_TABLE) -> Optional[np.ndarray]:
    """Cue-ball velocity for the best shot, or None if there is nothing to shoot at.

    With no makeable pair the planner still hits the nearest legal ball so the
    shot is not an automatic no-hit foul.
    """
    cue = find_cue_ball(balls)
    if cue is None:
        return None
    targets = legal_targets(balls, group)
    if not targets:
        return None

    candidates = candidate_shots(balls, group, table)
    if candidates:
        return candidates[0].velocity.copy()

    for target in sorted(targets, key=lambda b: float(np.linalg.norm(b.position - cue.position))):
        direction = _unit(target.position - cue.position)
        if direction is not None:
            return direction * FALLBACK_POWER
    return None


def aim_line(balls: Sequence[Ball], direction, max_distance: float) -> Optional[AimLine]:
    """Trace the cue ball along ``direction`` and report the first ball it would touch.

    Returns None without a cue ball or with a zero-length direction.
    """
    cue = find_cue_ball(balls)
    if cue is None:
        return None
    d = _unit(np.asarray(direction, dtype=float))
    if d is None:
        return None

    reach = 2 * BALL_RADIUS
    best_t = np.inf
    best: Optional[Ball] = None
    for ball in balls:
        if ball.is_cue:
            continue
        oc = ball.position - cue.position
        proj = float(np.dot(oc, d))
        if proj <= 0:
            continue
        perp_sq = float(np.dot(oc, oc)) - proj * proj
        if perp_sq >= reach * reach:
            continue
        t = proj - float(np.sqrt(reach * reach - perp_sq))
        if 0 < t < best_t:
            best_t, best = t, ball

    if best is None or best_t > max_distance:
        return AimLine(contact=cue.position + d * max_distance)

    contact = cue.position + d * best_t
    return AimLine(
        contact=contact,
        target=best.number,
        target_direction=_unit(best.position - contact),
    )
