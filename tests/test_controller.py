"""
Controller Tests — turn flow, AI scheduling and cancellation, snapshot, headless simulation.
"""

import dataclasses
import json

import numpy as np
import pytest

from controller import FrameSnapshot, GameController, ScheduledTask
from physics import CUE_BALL, EIGHT_BALL
from planner import plan_shot
from rules import Group, Phase, Shooter, TurnState
from table import CUE_START, PlacementResult, find_cue_ball

FRAME = 1.0 / 60.0


def run_until_still(ctrl: GameController, max_frames: int = 5000) -> int:
    frames = 0
    while ctrl.phase is Phase.MOVING and frames < max_frames:
        ctrl.step(FRAME)
        frames += 1
    assert ctrl.phase is not Phase.MOVING, "balls never came to rest"
    return frames


def miss_to_placing(ctrl: GameController) -> None:
    """Player shoots away from the only object ball: no-hit foul, AI gets ball in hand."""
    ctrl.set_balls({CUE_BALL: {"pos": [240, 240]}, 1: {"pos": [600, 300]}}, replace=True)
    assert ctrl.fire_shot([0.0, -3.0])
    run_until_still(ctrl)


@pytest.fixture
def ctrl():
    c = GameController()
    c.new_game()
    yield c
    c.shutdown()


class TestScheduledTask:

    def test_runs_once_after_delay(self):
        calls = []
        task = ScheduledTask(1.0, lambda: calls.append(1), Phase.AIMING)
        assert not task.tick(0.6)
        assert task.tick(0.6)
        assert not task.tick(0.6)
        assert calls == [1]
        assert not task.active

    def test_cancelled_never_runs(self):
        calls = []
        task = ScheduledTask(0.5, lambda: calls.append(1), Phase.PLACING)
        task.cancel()
        assert not task.tick(1.0)
        assert calls == []


class TestNewGame:

    def test_racked_and_player_to_break(self, ctrl):
        assert len(ctrl.balls) == 16
        assert ctrl.phase is Phase.AIMING
        assert ctrl.turn.shooter is Shooter.PLAYER
        assert ctrl.turn.player_group is None
        assert ctrl._task is None
        assert {"type": "new_game"} in ctrl.pending_events

    def test_player_aiming_does_not_simulate(self, ctrl):
        before = [b.position.copy() for b in ctrl.balls]
        for _ in range(10):
            ctrl.step(FRAME)
        for b, pos in zip(ctrl.balls, before):
            np.testing.assert_array_equal(b.position, pos)


class TestPlayerShot:

    def test_release_drag_velocity(self, ctrl):
        # pointer pulled back 100 units behind the cue ball
        assert ctrl.release_drag(CUE_START[0] - 100.0, CUE_START[1])
        cue = find_cue_ball(ctrl.balls)
        np.testing.assert_allclose(cue.velocity, [100.0 * GameController.POWER_MULTIPLIER, 0.0])
        assert ctrl.phase is Phase.MOVING
        assert {"type": "clear_aim"} in ctrl.pending_events

    def test_release_rejected_while_moving(self, ctrl):
        assert ctrl.release_drag(140.0, 240.0)
        assert not ctrl.release_drag(140.0, 240.0)

    def test_release_on_cue_ball_rejected(self, ctrl):
        assert not ctrl.release_drag(*CUE_START)
        assert ctrl.phase is Phase.AIMING

    def test_aim_preview_hits_apex(self, ctrl):
        line = ctrl.aim_preview(140.0, 240.0)
        assert line.target == 1
        np.testing.assert_allclose(line.contact, [620.0, 240.0])

    def test_aim_preview_unavailable_to_ai(self, ctrl):
        ctrl.turn.shooter = Shooter.OPPONENT
        assert ctrl.aim_preview(140.0, 240.0) is None

    def test_break_records_first_hit(self, ctrl):
        ctrl.release_drag(140.0, 240.0)
        run_until_still(ctrl)
        assert ctrl.shot.first_hit == 1
        assert ctrl.phase in (Phase.AIMING, Phase.PLACING, Phase.GAME_OVER)


class TestFoulAndBallInHand:

    def test_miss_gives_ai_ball_in_hand(self, ctrl):
        miss_to_placing(ctrl)
        assert ctrl.phase is Phase.PLACING
        assert ctrl.turn.shooter is Shooter.OPPONENT
        assert "No ball hit" in ctrl.status_msg
        assert any(ev["type"] == "show_result" and ev["foul"] for ev in ctrl.pending_events)

    def test_ai_places_then_shoots(self, ctrl):
        miss_to_placing(ctrl)

        ctrl.step(GameController.AI_PLACE_DELAY / 2)
        assert ctrl.phase is Phase.PLACING

        ctrl.step(GameController.AI_PLACE_DELAY)
        assert ctrl.phase is Phase.AIMING
        np.testing.assert_allclose(find_cue_ball(ctrl.balls).position, CUE_START)

        ctrl.step(GameController.AI_THINK_DELAY + 0.1)
        assert ctrl.phase is Phase.MOVING

    def test_player_cannot_place_during_ai_placement(self, ctrl):
        miss_to_placing(ctrl)
        assert ctrl.place_cue_ball(300.0, 300.0) is None


class TestCancellation:

    def test_new_game_cancels_pending_ai_task(self, ctrl):
        miss_to_placing(ctrl)
        task = ctrl._task
        assert task is not None and task.active

        ctrl.new_game()
        assert task.cancelled
        ctrl.step(5.0)
        assert ctrl.phase is Phase.AIMING
        assert ctrl.turn.shooter is Shooter.PLAYER
        assert not any(b.is_moving() for b in ctrl.balls)

    def test_shutdown_cancels_pending_ai_task(self, ctrl):
        miss_to_placing(ctrl)
        task = ctrl._task
        ctrl.shutdown()
        assert task.cancelled
        ctrl.step(5.0)
        assert ctrl.phase is Phase.PLACING


class TestPlayerPlacement:

    @pytest.fixture
    def placing(self, ctrl):
        ctrl.set_balls({EIGHT_BALL: {"pos": [500, 240]}, 3: {"pos": [600, 300]}}, replace=True)
        ctrl.turn = TurnState(shooter=Shooter.PLAYER, phase=Phase.PLACING)
        return ctrl

    def test_out_of_bounds_keeps_placing(self, placing):
        assert placing.place_cue_ball(45.0, 200.0) is PlacementResult.OUT_OF_BOUNDS
        assert placing.phase is Phase.PLACING

    def test_overlap_keeps_placing(self, placing):
        assert placing.place_cue_ball(510.0, 240.0) is PlacementResult.OVERLAP
        assert placing.phase is Phase.PLACING
        assert find_cue_ball(placing.balls) is None

    def test_accepted_returns_to_aiming(self, placing):
        assert placing.place_cue_ball(200.0, 200.0) is PlacementResult.ACCEPTED
        assert placing.phase is Phase.AIMING
        assert placing._task is None
        np.testing.assert_allclose(find_cue_ball(placing.balls).position, [200.0, 200.0])

    def test_not_placing(self, ctrl):
        assert ctrl.place_cue_ball(200.0, 200.0) is None


class TestAiTurn:

    def test_no_legal_target_passes_turn(self, ctrl):
        ctrl.set_balls({CUE_BALL: {"pos": [240, 240]}, 12: {"pos": [600, 300]}}, replace=True)
        ctrl.turn = TurnState(shooter=Shooter.OPPONENT, phase=Phase.TURN_END,
                              player_group=Group.STRIPES)
        ctrl._enter_phase(Phase.AIMING)

        ctrl.step(GameController.AI_THINK_DELAY + 0.1)
        assert ctrl.phase is Phase.AIMING
        assert ctrl.turn.shooter is Shooter.PLAYER
        assert ctrl._task is None
        assert ctrl.status_msg == "Player's Turn"


class TestGameOver:

    def test_legal_eight_wins(self, ctrl):
        ctrl.set_balls({CUE_BALL: {"pos": [640, 240]}, EIGHT_BALL: {"pos": [740, 140]},
                        11: {"pos": [300, 300]}}, replace=True)
        ctrl.turn.player_group = Group.SOLIDS
        assert ctrl.fire_shot(plan_shot(ctrl.balls, Group.SOLIDS))
        run_until_still(ctrl)

        assert ctrl.phase is Phase.GAME_OVER
        assert ctrl.turn.winner is Shooter.PLAYER
        assert {"type": "game_over", "winner": "player"} in ctrl.pending_events

        ctrl.step(5.0)
        assert ctrl._task is None
        assert not ctrl.release_drag(540.0, 240.0)


class TestSnapshot:

    def test_snapshot_is_frozen(self, ctrl):
        snap = ctrl.snapshot()
        assert isinstance(snap, FrameSnapshot)
        with pytest.raises(dataclasses.FrozenInstanceError):
            snap.message = "x"

    def test_snapshot_is_a_copy(self, ctrl):
        snap = ctrl.snapshot()
        find_cue_ball(ctrl.balls).position[0] = 999.0
        view = next(v for v in snap.balls if v.number == CUE_BALL)
        assert view.x == CUE_START[0]

    def test_snapshot_reflects_turn(self, ctrl):
        snap = ctrl.snapshot()
        assert snap.phase is Phase.AIMING
        assert snap.shooter is Shooter.PLAYER
        assert snap.winner is None
        assert len(snap.balls) == 16


class TestStateExport:

    def test_state_json_round_trip(self, ctrl):
        data = json.loads(ctrl.get_state_json())
        assert data["cmd"] == "set"

        other = GameController()
        other.set_balls(data["balls"], replace=True)
        assert sorted(b.number for b in other.balls) == list(range(16))
        for a, b in zip(sorted(ctrl.balls, key=lambda b: b.number),
                        sorted(other.balls, key=lambda b: b.number)):
            np.testing.assert_allclose(a.position, b.position, atol=1e-4)

    def test_set_balls_updates_in_place(self, ctrl):
        ctrl.set_balls({5: {"pos": [300, 300], "vel": [1, 2]}})
        assert len(ctrl.balls) == 16
        five = next(b for b in ctrl.balls if b.number == 5)
        np.testing.assert_allclose(five.position, [300.0, 300.0])
        np.testing.assert_allclose(five.velocity, [1.0, 2.0])


class TestHeadlessSimulation:

    def test_simulate_is_non_destructive(self, ctrl):
        before = {b.number: b.position.copy() for b in ctrl.balls}
        res = ctrl.simulate_shot([18.0, 0.0])
        assert res["first_hit"] == 1
        assert res["ticks"] > 0
        assert ctrl.phase is Phase.AIMING
        for b in ctrl.balls:
            np.testing.assert_array_equal(b.position, before[b.number])
            assert not b.is_moving()

    def test_simulate_is_deterministic(self):
        c1 = GameController()
        c1.new_game()
        c2 = GameController()
        c2.new_game()
        r1 = c1.simulate_shot([17.0, 1.5])
        r2 = c2.simulate_shot([17.0, 1.5])
        assert r1 == r2

    def test_simulate_reports_rule_outcome(self, ctrl):
        ctrl.set_balls({CUE_BALL: {"pos": [240, 240]}, 1: {"pos": [600, 300]}}, replace=True)
        out = ctrl.simulate_shot([0.0, -3.0])["outcome"]
        assert out.is_foul
        assert out.next_phase is Phase.PLACING

    def test_simulate_without_cue_ball(self, ctrl):
        ctrl.set_balls({1: {"pos": [600, 300]}}, replace=True)
        with pytest.raises(ValueError):
            ctrl.simulate_shot([5.0, 0.0])
