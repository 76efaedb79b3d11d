"""
Shot Preset System
Canned 8-ball situations: break, stop shot, pocket capture, scratch and a
planner-driven straight-in shot. Each preset places balls, sets the cue
velocity and (unless ``run=False``) simulates until everything stops.
"""

from physics import Ball, PhysicsEngine, CUE_BALL, EIGHT_BALL
from planner import plan_shot
from table import rack


def _run(engine: PhysicsEngine, balls: list, run: bool) -> dict:
    ticks, result = (0, None)
    if run:
        ticks, result = engine.simulate(balls)
    return {
        "balls": balls,
        "engine": engine,
        "ticks": ticks,
        "potted": list(result.potted) if result else [],
        "scratch": result.scratch if result else False,
        "first_hit": result.first_hit if result else None,
    }


class ShotPreset:
    """Each preset returns the ball list, the engine and the shot result."""

    @staticmethod
    def scenario_1_break(power: float = 18.0, run=True) -> dict:
        """Break: full rack, cue ball driven straight into the apex."""
        engine = PhysicsEngine()
        balls = rack()
        balls[0].velocity[:] = [power, 0.0]
        return _run(engine, balls, run)

    @staticmethod
    def scenario_2_stop(run=True) -> dict:
        """Stop shot: head-on hit, the cue ball stops dead at contact."""
        engine = PhysicsEngine()
        cue = Ball(CUE_BALL, position=[100.0, 100.0], velocity=[5.0, 0.0])
        eight = Ball(EIGHT_BALL, position=[140.0, 100.0])
        out = _run(engine, [cue, eight], run)
        out.update({"cue": cue, "object": eight})
        return out

    @staticmethod
    def scenario_3_pocket(run=True) -> dict:
        """Pocket capture: a ball resting inside the top-left pocket's capture circle."""
        engine = PhysicsEngine()
        cue = Ball(CUE_BALL, position=[240.0, 240.0])
        five = Ball(5, position=[45.0, 42.0])
        out = _run(engine, [cue, five], run)
        out.update({"cue": cue, "object": five})
        return out

    @staticmethod
    def scenario_4_scratch(run=True) -> dict:
        """Scratch: cue ball runs into the top-left pocket while the 3 drops bottom-right."""
        engine = PhysicsEngine()
        cue = Ball(CUE_BALL, position=[100.0, 100.0], velocity=[-5.0, -5.0])
        three = Ball(3, position=[780.0, 380.0], velocity=[5.0, 5.0])
        out = _run(engine, [cue, three], run)
        out.update({"cue": cue, "object": three})
        return out

    @staticmethod
    def scenario_5_straight_in(run=True) -> dict:
        """Planned shot: open table, 1-ball on the diagonal into the top-right pocket."""
        engine = PhysicsEngine()
        cue = Ball(CUE_BALL, position=[640.0, 240.0])
        one = Ball(1, position=[740.0, 140.0])
        balls = [cue, one]
        velocity = plan_shot(balls, None)
        if velocity is not None:
            cue.velocity = velocity
        out = _run(engine, balls, run)
        out.update({"cue": cue, "object": one, "velocity": velocity})
        return out
