from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from functools import partial
from typing import List, Optional, Set

from fastapi import FastAPI, HTTPException, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from .config import Settings
from .errors import ImageLoadError
from .floorplan_loader import FloorPlanLoader
from .models import FloorPlan, Measurement, RenderConfig
from .renderer import HeatmapRenderer, encode_png
from .schemas import AccessPointOut, HeatmapRequest, StatsOut, StatsRequest, StatsResponse
from .signal_engine import build_report, compute_stats, derive_access_points, filter_samples, recommendations

logger = logging.getLogger(__name__)

settings = Settings.from_env()

app = FastAPI(title="WiFi Coverage Heatmap")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

loader = FloorPlanLoader(cache_size=settings.cache_size, timeout_s=settings.fetch_timeout_s)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@app.post("/heatmap")
async def heatmap(req: HeatmapRequest) -> Response:
    if req.floor_plan is None:
        return Response(status_code=204)
    renderer = HeatmapRenderer(loader)
    try:
        raster = await renderer.render(req.floor_plan.to_model(), req.samples(), req.config.to_model())
    except ImageLoadError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    png = await asyncio.to_thread(encode_png, raster)
    return Response(content=png, media_type="image/png")


@app.post("/stats", response_model=StatsResponse)
async def stats(req: StatsRequest) -> StatsResponse:
    samples = req.samples()
    result = compute_stats(samples, req.selected_ap)
    aps = derive_access_points(filter_samples(samples, req.selected_ap))
    return StatsResponse(
        stats=StatsOut(**asdict(result)),
        filtered_access_points=[AccessPointOut(**asdict(ap)) for ap in aps],
        recommendations=recommendations(result),
    )


@app.post("/report", response_class=PlainTextResponse)
async def report(req: StatsRequest) -> str:
    if req.title:
        return build_report(req.samples(), req.selected_ap, title=req.title)
    return build_report(req.samples(), req.selected_ap)


def _task_done(tasks: Set[asyncio.Task], task: asyncio.Task) -> None:
    tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("websocket render task failed: %r", exc)


async def _render_and_send(
    ws: WebSocket,
    send_lock: asyncio.Lock,
    renderer: HeatmapRenderer,
    floor_plan: Optional[FloorPlan],
    samples: List[Measurement],
    config: RenderConfig,
) -> None:
    try:
        raster = await renderer.render(floor_plan, samples, config)
    except ImageLoadError as exc:
        packet = {"type": "error", "detail": str(exc)}
    else:
        if floor_plan is None:
            packet = {"type": "empty"}
        elif raster is None:
            return
        else:
            png = await asyncio.to_thread(encode_png, raster)
            packet = {
                "type": "heatmap",
                "generation": renderer.committed_generation,
                "png": base64.b64encode(png).decode("ascii"),
                "stats": asdict(compute_stats(samples, config.selected_ap)),
            }
    async with send_lock:
        await ws.send_text(json.dumps(packet))


@app.websocket("/ws")
async def ws_heatmap(ws: WebSocket) -> None:
    await ws.accept()
    renderer = HeatmapRenderer(loader)
    send_lock = asyncio.Lock()
    tasks: Set[asyncio.Task] = set()
    try:
        while True:
            msg = await ws.receive_text()
            try:
                req = HeatmapRequest.model_validate(json.loads(msg))
                floor_plan = req.floor_plan.to_model() if req.floor_plan else None
                config = req.config.to_model()
            except ValueError as exc:
                async with send_lock:
                    await ws.send_text(json.dumps({"type": "error", "detail": str(exc)}))
                continue

            task = asyncio.create_task(_render_and_send(ws, send_lock, renderer, floor_plan, req.samples(), config))
            tasks.add(task)
            task.add_done_callback(partial(_task_done, tasks))
    except WebSocketDisconnect:
        logger.debug("websocket client disconnected")
    finally:
        for task in tasks:
            task.cancel()
