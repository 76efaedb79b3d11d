"""
8-Ball Web Server — collaborator surface (FastAPI + WebSocket)

Runs the frame loop, forwards pointer input to the controller and broadcasts
one read-only snapshot per frame to browser clients over WebSocket.
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from controller import GameController
from physics import BALL_RADIUS, DEFAULT_TABLE
import physics as _phys
from shot_presets import ShotPreset

logger = logging.getLogger(__name__)

# ── Controller ──────────────────────────────────────────────────────────────

ctrl = GameController()


# ── Lifespan (startup/shutdown) ─────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    ctrl.new_game()
    task = asyncio.create_task(game_loop())
    yield
    task.cancel()
    ctrl.shutdown()


app = FastAPI(lifespan=lifespan)

clients: list[WebSocket] = []

# Preview presets (keys 1-5); they run headless and only report results
SCENARIOS = {
    "1": (ShotPreset.scenario_1_break,       "1: Break"),
    "2": (ShotPreset.scenario_2_stop,        "2: Stop shot"),
    "3": (ShotPreset.scenario_3_pocket,      "3: Pocket"),
    "4": (ShotPreset.scenario_4_scratch,     "4: Scratch"),
    "5": (ShotPreset.scenario_5_straight_in, "5: Straight in"),
}

# ── Physics params (live-tunable module constants) ─────────────────────────

PHYSICS_PARAMS = [
    ("FRICTION",         "Friction",       0.90,  0.999, 0.001),
    ("STOP_VELOCITY",    "Stop Velocity",  0.001, 0.5,   0.005),
    ("WALL_RESTITUTION", "Rail Rest.",     0.10,  1.0,   0.01),
]

PARAM_DEFAULTS = {attr: getattr(_phys, attr) for attr, *_ in PHYSICS_PARAMS}

# ── Async game loop ─────────────────────────────────────────────────────────

TARGET_FPS = 60
FRAME_DT = 1.0 / TARGET_FPS


async def game_loop():
    """Main game loop running at ~60 fps."""
    last_time = time.perf_counter()

    while True:
        now = time.perf_counter()
        dt = now - last_time
        last_time = now

        # Clamp dt to avoid spiral-of-death
        if dt > 0.05:
            dt = 0.05

        ctrl.step(dt)

        if clients:
            frame_msg = _build_frame_message()
            dead: list[WebSocket] = []
            for ws in clients:
                try:
                    await ws.send_text(frame_msg)
                except Exception:
                    dead.append(ws)
            for ws in dead:
                if ws in clients:
                    clients.remove(ws)
                    logger.info("dropped dead client (%d left)", len(clients))

        elapsed = time.perf_counter() - now
        sleep_time = FRAME_DT - elapsed
        await asyncio.sleep(sleep_time if sleep_time > 0 else 0)


def _build_frame_message() -> str:
    """Serialize the controller snapshot into a JSON frame message."""
    snap = ctrl.snapshot()
    balls_data = [
        {"n": b.number, "pos": [round(b.x, 3), round(b.y, 3)]}
        for b in snap.balls
    ]

    events = list(ctrl.pending_events)
    ctrl.pending_events.clear()

    sounds = [
        {"type": ev.get("type", ""), "speed": round(float(ev.get("speed", 0.0)), 3)}
        for ev in ctrl.physics_events
    ]
    ctrl.physics_events.clear()

    frame = {
        "type": "frame",
        "balls": balls_data,
        "events": events,
        "sounds": sounds,
        "phase": snap.phase.value,
        "shooter": snap.shooter.value,
        "player_group": snap.player_group.value if snap.player_group else None,
        "status": snap.message,
    }
    if snap.winner is not None:
        frame["winner"] = snap.winner.value
    return json.dumps(frame, separators=(',', ':'))


def _init_message() -> str:
    t = DEFAULT_TABLE
    return json.dumps({
        "type": "init",
        "table_width": t.width,
        "table_height": t.height,
        "rail": t.rail,
        "pocket_radius": t.pocket_radius,
        "pockets": [list(p) for p in t.pockets],
        "ball_radius": BALL_RADIUS,
    })


# ── Physics params helpers ──────────────────────────────────────────────────

def _get_params_data() -> list:
    """Return all physics params with current values."""
    result = []
    for attr, label, mn, mx, step in PHYSICS_PARAMS:
        result.append({
            "attr": attr, "label": label,
            "value": round(getattr(_phys, attr), 6),
            "min": mn, "max": mx, "step": step,
        })
    return result


def _adjust_param(idx: int, direction: int, fine: bool) -> Optional[dict]:
    if not 0 <= idx < len(PHYSICS_PARAMS):
        return None
    attr, label, mn, mx, step = PHYSICS_PARAMS[idx]
    s = step / 10.0 if fine else step
    new_val = max(mn, min(mx, getattr(_phys, attr) + direction * s))
    setattr(_phys, attr, new_val)
    return {"type": "param_update", "index": idx, "value": round(new_val, 6)}


# ── Command dispatch ────────────────────────────────────────────────────────

def _handle_command(msg: dict) -> Optional[dict]:
    """Apply one client command. Returns a direct reply, if any."""
    cmd = msg.get("cmd", "")
    if cmd == "new_game":
        ctrl.new_game()
    elif cmd == "aim":
        line = ctrl.aim_preview(float(msg.get("x", 0.0)), float(msg.get("y", 0.0)))
        if line is None:
            return {"type": "aim", "line": None}
        return {"type": "aim", "line": {
            "contact": [round(float(v), 3) for v in line.contact],
            "target": line.target,
            "target_dir": (None if line.target_direction is None else
                           [round(float(v), 4) for v in line.target_direction]),
        }}
    elif cmd == "shoot":
        ok = ctrl.release_drag(float(msg.get("x", 0.0)), float(msg.get("y", 0.0)))
        return {"type": "shot", "accepted": ok}
    elif cmd == "place":
        result = ctrl.place_cue_ball(float(msg.get("x", 0.0)), float(msg.get("y", 0.0)))
        return {"type": "placement", "result": None if result is None else result.value}
    elif cmd == "scenario":
        entry = SCENARIOS.get(str(msg.get("key", "")))
        if entry is None:
            return None
        fn, label = entry
        res = fn()
        return {"type": "scenario", "label": label, "potted": res["potted"],
                "scratch": res["scratch"], "first_hit": res["first_hit"],
                "ticks": res["ticks"]}
    elif cmd == "get_state":
        return {"type": "state_json", "data": ctrl.get_state_json()}
    elif cmd == "get_params":
        return {"type": "params", "data": _get_params_data()}
    elif cmd == "adjust_param":
        return _adjust_param(int(msg.get("index", 0)), int(msg.get("direction", 0)),
                             bool(msg.get("fine", False)))
    elif cmd == "reset_params":
        for attr, dflt in PARAM_DEFAULTS.items():
            setattr(_phys, attr, dflt)
        return {"type": "params", "data": _get_params_data()}
    else:
        logger.warning("unknown command %r", cmd)
    return None


# ── WebSocket endpoint ──────────────────────────────────────────────────────

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    clients.append(ws)
    logger.info("client connected (%d total)", len(clients))

    await ws.send_text(_init_message())

    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                logger.warning("ignoring malformed message: %.80s", data)
                continue
            if not isinstance(msg, dict):
                logger.warning("ignoring non-object message: %.80s", data)
                continue
            reply = _handle_command(msg)
            if reply is not None:
                await ws.send_text(json.dumps(reply))
    except WebSocketDisconnect:
        pass
    finally:
        if ws in clients:
            clients.remove(ws)
        logger.info("client disconnected (%d left)", len(clients))


# ── Run with uvicorn ────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=False)
