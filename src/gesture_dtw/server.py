"""HTTP / WebSocket front end for a gesture session.

Remote clients stream 2D samples and send the same control commands as the
keyboard (record, label up/down, train, save, load, clear). Prediction
events are pushed to every connected WebSocket client as JSON.

Usage:
    gesture-dtw serve --port 8765
    # or
    uvicorn gesture_dtw.server:app --host 0.0.0.0 --port 8765
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import asdict
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from gesture_dtw import __version__
from gesture_dtw.config import AppConfig
from gesture_dtw.metrics import MetricsCollector
from gesture_dtw.pipeline import PredictionEvent
from gesture_dtw.session import (
    Session,
    run_command,
    set_label,
    status,
    tick,
)

logger = logging.getLogger("gesture_dtw.server")

app = FastAPI(title="gesture-dtw", version=__version__)


class ServerState:
    def __init__(self, config: Optional[AppConfig] = None):
        self.config = config or AppConfig()
        self.session = Session.from_config(self.config)
        self.metrics = MetricsCollector()
        self.clients: set[WebSocket] = set()
        self.last_prediction: Optional[dict] = None


state = ServerState()


def configure(config: AppConfig, session: Optional[Session] = None) -> ServerState:
    """Replace the served session. Used by the CLI before starting uvicorn."""
    global state
    state = ServerState(config)
    if session is not None:
        state.session = session
    state.metrics.set_training_examples(len(state.session.dataset))
    return state


class SampleIn(BaseModel):
    x: Optional[float] = None
    y: Optional[float] = None
    sample: Optional[list[float]] = None

    def values(self) -> list[float]:
        if self.sample is not None:
            return self.sample
        if self.x is None or self.y is None:
            raise ValueError("provide either 'sample' or both 'x' and 'y'")
        return [self.x, self.y]


# --- Core operations shared by REST and WebSocket ---

def process_sample(values: list[float]) -> Optional[PredictionEvent]:
    expected = state.session.num_dimensions
    if len(values) != expected:
        raise ValueError(f"expected {expected} sample values, got {len(values)}")
    t0 = time.perf_counter()
    event = tick(state.session, values)
    state.metrics.record_sample(time.perf_counter() - t0)
    if event is not None:
        state.metrics.record_prediction(event.class_label, event.null_rejected)
        state.last_prediction = event.to_dict()
    return event


def process_command(name: str):
    result = run_command(state.session, name)
    if name == "train":
        state.metrics.record_training(bool(result))
    state.metrics.set_training_examples(len(state.session.dataset))
    return result


# --- API endpoints ---

@app.get("/api/status")
async def api_status():
    return {
        "session": status(state.session),
        "stats": asdict(state.session.pipeline.stats),
        "clients": len(state.clients),
        "last_prediction": state.last_prediction,
    }


@app.get("/api/dataset")
async def api_dataset():
    return state.session.dataset.summary()


@app.get("/api/diagnostics")
async def api_diagnostics():
    diag = state.session.pipeline.diagnostics()
    if diag is None:
        return {"input_buffer": [], "distance_matrices": [], "class_labels": []}
    return {
        "input_buffer": diag.input_buffer.tolist(),
        "distance_matrices": [m.tolist() for m in diag.distance_matrices],
        "class_labels": diag.class_labels,
    }


@app.post("/api/sample")
async def api_sample(body: SampleIn):
    try:
        event = process_sample(body.values())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if event is not None:
        await broadcast({"type": "prediction", **event.to_dict()})
    return {
        "recording": state.session.recording,
        "prediction": event.to_dict() if event else None,
    }


@app.post("/api/command/{name}")
async def api_command(name: str):
    try:
        result = process_command(name)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0]))
    return {"command": name, "result": result, "session": status(state.session)}


@app.post("/api/label/{label}")
async def api_label(label: int):
    try:
        set_label(state.session, label)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"training_class_label": state.session.training_class_label}


@app.get("/metrics")
async def metrics():
    state.metrics.set_connections(len(state.clients))
    return PlainTextResponse(
        state.metrics.render(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


# --- WebSocket ---

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    state.clients.add(ws)
    logger.info("Client connected (%d total)", len(state.clients))

    try:
        await ws.send_json({"type": "connected", "session": status(state.session)})

        while True:
            try:
                msg = await asyncio.wait_for(ws.receive_text(), timeout=30)
            except asyncio.TimeoutError:
                await ws.send_json({"type": "ping"})
                continue

            try:
                data = json.loads(msg)
            except json.JSONDecodeError:
                await ws.send_json({"type": "error", "detail": "invalid JSON"})
                continue
            if not isinstance(data, dict):
                await ws.send_json({"type": "error", "detail": "expected a JSON object"})
                continue

            kind = data.get("type")
            if kind == "ping":
                await ws.send_json({"type": "pong", "server_time": time.time()})
            elif kind == "sample":
                try:
                    values = SampleIn(**{k: v for k, v in data.items() if k != "type"}).values()
                    event = process_sample(values)
                except ValueError as e:
                    await ws.send_json({"type": "error", "detail": str(e)})
                    continue
                if event is not None:
                    await broadcast({"type": "prediction", **event.to_dict()})
            elif kind == "command":
                try:
                    process_command(str(data.get("name")))
                except KeyError as e:
                    await ws.send_json({"type": "error", "detail": str(e.args[0])})
                    continue
                await ws.send_json({"type": "status", "session": status(state.session)})
            else:
                await ws.send_json({"type": "error", "detail": f"unknown message type {kind!r}"})
    except WebSocketDisconnect:
        pass
    finally:
        state.clients.discard(ws)
        logger.info("Client disconnected (%d total)", len(state.clients))


async def broadcast(message: dict):
    """Send message to all connected clients."""
    if not state.clients:
        return
    dead = set()
    payload = json.dumps(message)
    for ws in state.clients:
        try:
            await ws.send_text(payload)
        except (RuntimeError, WebSocketDisconnect):
            dead.add(ws)
    state.clients -= dead
