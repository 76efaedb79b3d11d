"""
Table setup: the opening rack and ball-in-hand placement.
"""

import enum
import math
from typing import List, Optional, Sequence

import numpy as np

from physics import Ball, BALL_RADIUS, CUE_BALL, DEFAULT_TABLE, RAIL_WIDTH, Table

# Cue start and rack apex (table coordinates)
CUE_START = (RAIL_WIDTH + 200.0, RAIL_WIDTH + 200.0)
RACK_APEX = (RAIL_WIDTH + 600.0, RAIL_WIDTH + 200.0)

# Apex first, then rows of 2, 3, 4, 5
RACK_PATTERN = (
    1,
    9, 2,
    3, 8, 4,
    5, 6, 7, 10,
    11, 12, 13, 14, 15,
)
RACK_ROWS = 5


class PlacementResult(enum.Enum):
    ACCEPTED = "accepted"
    OUT_OF_BOUNDS = "out_of_bounds"
    OVERLAP = "overlap"

    @property
    def accepted(self) -> bool:
        return self is PlacementResult.ACCEPTED


def rack(apex=RACK_APEX, cue_position=CUE_START) -> List[Ball]:
    """Cue ball at its start spot plus the 15 object balls in a triangle.

    Rows open away from the cue ball (+x); each row is sqrt(3)*R deeper than
    the previous one so neighbouring balls just touch.
    """
    balls = [Ball(CUE_BALL, position=cue_position)]
    row_depth = math.sqrt(3) * BALL_RADIUS
    diameter = 2 * BALL_RADIUS

    idx = 0
    for row in range(RACK_ROWS):
        x = apex[0] + row * row_depth
        y0 = apex[1] - row * BALL_RADIUS
        for col in range(row + 1):
            balls.append(Ball(RACK_PATTERN[idx], position=[x, y0 + col * diameter]))
            idx += 1
    return balls


def find_cue_ball(balls: Sequence[Ball]) -> Optional[Ball]:
    return next((b for b in balls if b.is_cue), None)


def check_placement(balls: Sequence[Ball], position, table: Table = DEFAULT_TABLE) -> PlacementResult:
    """Validate a ball-in-hand position without touching the ball set."""
    x, y = float(position[0]), float(position[1])
    if not table.contains(x, y, margin=BALL_RADIUS):
        return PlacementResult.OUT_OF_BOUNDS

    min_dist_sq = (2 * BALL_RADIUS) ** 2
    for b in balls:
        if b.is_cue:
            continue
        dx = b.position[0] - x
        dy = b.position[1] - y
        if dx * dx + dy * dy < min_dist_sq:
            return PlacementResult.OVERLAP
    return PlacementResult.ACCEPTED


def place_cue_ball(balls: List[Ball], position, table: Table = DEFAULT_TABLE) -> PlacementResult:
    """Put the cue ball at ``position`` if legal.

    Re-adds the cue ball after a scratch, or moves the existing one. A rejected
    request leaves ``balls`` untouched.
    """
    result = check_placement(balls, position, table)
    if not result.accepted:
        return result

    cue = find_cue_ball(balls)
    if cue is None:
        balls.append(Ball(CUE_BALL, position=position))
    else:
        cue.position = np.array(position, dtype=float)
        cue.velocity[:] = 0.0
    return result
