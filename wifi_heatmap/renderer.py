from __future__ import annotations

import asyncio
import io
import logging
from math import ceil, floor
from typing import Iterable, Optional, Tuple

import numpy as np
from PIL import Image

from .errors import ImageLoadError
from .floorplan_loader import FloorPlanLoader
from .models import FloorPlan, Measurement, RenderConfig, Samples
from .signal_engine import color_for, filter_samples

logger = logging.getLogger(__name__)

# Radial gradient stops as fractions of the radius, and their alpha.
GRADIENT_STOPS = np.array([0.0, 0.5, 1.0], dtype=np.float32)
GRADIENT_ALPHAS = np.array([0.8, 0.4, 0.0], dtype=np.float32)

MARKER_RADIUS = 4.0
MARKER_FILL = np.array([1.0, 1.0, 1.0], dtype=np.float32)
MARKER_STROKE = np.array([0.0, 0.0, 0.0], dtype=np.float32)
MARKER_STROKE_ALPHA = 0.5
MARKER_STROKE_WIDTH = 2.0

Window = Tuple[slice, slice, np.ndarray]


def fit_to_canvas(image: Image.Image, floor_plan: FloorPlan) -> Image.Image:
    """Stretch the decoded floor plan to exactly width x height."""
    size = (floor_plan.width, floor_plan.height)
    if image.mode != "RGBA":
        image = image.convert("RGBA")
    if image.size != size:
        image = image.resize(size, Image.Resampling.BILINEAR)
    return image


def _to_premultiplied(image: Image.Image) -> np.ndarray:
    buf = np.asarray(image, dtype=np.float32) / 255.0
    buf[..., :3] *= buf[..., 3:4]
    return buf


def _from_premultiplied(buf: np.ndarray) -> Image.Image:
    alpha = buf[..., 3:4]
    rgb = np.divide(buf[..., :3], alpha, out=np.zeros_like(buf[..., :3]), where=alpha > 0)
    out = np.concatenate([rgb, alpha], axis=-1)
    return Image.fromarray(np.rint(np.clip(out, 0.0, 1.0) * 255.0).astype(np.uint8))


def _window(buf: np.ndarray, cx: float, cy: float, reach: float) -> Optional[Window]:
    """Pixel box around (cx, cy) clipped to the canvas, with per-pixel centre distances."""
    height, width = buf.shape[:2]
    x0, x1 = max(0, floor(cx - reach)), min(width, ceil(cx + reach) + 1)
    y0, y1 = max(0, floor(cy - reach)), min(height, ceil(cy + reach) + 1)
    if x0 >= x1 or y0 >= y1:
        return None
    xs = np.arange(x0, x1, dtype=np.float32) + 0.5 - cx
    ys = np.arange(y0, y1, dtype=np.float32) + 0.5 - cy
    dist = np.hypot(xs[np.newaxis, :], ys[:, np.newaxis])
    return slice(y0, y1), slice(x0, x1), dist


def _paint(buf: np.ndarray, rows: slice, cols: slice, color: np.ndarray, alpha: np.ndarray) -> None:
    # Source-over on premultiplied RGBA.
    region = buf[rows, cols]
    a = alpha[..., np.newaxis]
    region *= 1.0 - a
    region[..., :3] += color * a
    region[..., 3:] += a


def paint_gradient(buf: np.ndarray, m: Measurement, config: RenderConfig) -> None:
    window = _window(buf, m.x, m.y, config.radius)
    if window is None:
        return
    rows, cols, dist = window
    alpha = np.interp(dist / config.radius, GRADIENT_STOPS, GRADIENT_ALPHAS).astype(np.float32)
    alpha *= config.alpha
    color = np.array(color_for(m.signal_strength), dtype=np.float32) / 255.0
    _paint(buf, rows, cols, color, alpha)


def paint_marker(buf: np.ndarray, m: Measurement) -> None:
    half = MARKER_STROKE_WIDTH / 2
    window = _window(buf, m.x, m.y, MARKER_RADIUS + half + 1)
    if window is None:
        return
    rows, cols, dist = window
    fill = (dist <= MARKER_RADIUS).astype(np.float32)
    _paint(buf, rows, cols, MARKER_FILL, fill)
    stroke = (np.abs(dist - MARKER_RADIUS) <= half).astype(np.float32) * MARKER_STROKE_ALPHA
    _paint(buf, rows, cols, MARKER_STROKE, stroke)


def compose_heatmap(base: Image.Image, samples: Iterable[Measurement], config: RenderConfig) -> Image.Image:
    """Composite gradients and markers over an already sized base layer.

    Pure: the same base, samples and config always give the same pixels.
    With nothing to draw the base layer is returned unchanged.
    """
    filtered = filter_samples(samples, config.selected_ap)
    if not filtered:
        return base.copy()

    buf = _to_premultiplied(base)
    for m in filtered:
        paint_gradient(buf, m, config)
    for m in filtered:
        paint_marker(buf, m)
    return _from_premultiplied(buf)


def encode_png(image: Image.Image) -> bytes:
    out = io.BytesIO()
    image.save(out, format="PNG")
    return out.getvalue()


class HeatmapRenderer:
    """Renders measurements over a floor plan.

    Each call to render() takes a new generation. A call that is overtaken by
    a later one while it waits on the floor-plan decode or the compositing
    returns None and leaves ``output`` alone, so only the most recent
    request's raster is ever committed.
    """

    def __init__(self, loader: FloorPlanLoader | None = None) -> None:
        self.loader = loader or FloorPlanLoader()
        self.output: Image.Image | None = None
        self.generation = 0
        self.committed_generation = 0

    def _superseded(self, generation: int) -> bool:
        if generation != self.generation:
            logger.debug("render %d superseded by %d", generation, self.generation)
            return True
        return False

    async def render(
        self,
        floor_plan: FloorPlan | None,
        samples: Samples,
        config: RenderConfig | None = None,
    ) -> Image.Image | None:
        self.generation += 1
        generation = self.generation
        if floor_plan is None:
            # Still supersedes any render in flight; output is left as is.
            logger.debug("no floor plan, nothing to render")
            return None
        config = config or RenderConfig()
        snapshot = tuple(samples)

        try:
            image = await self.loader.load(floor_plan)
        except ImageLoadError:
            if self._superseded(generation):
                return None
            raise
        if self._superseded(generation):
            return None

        raster = await asyncio.to_thread(self._compose, image, floor_plan, snapshot, config)
        if self._superseded(generation):
            return None

        self.output = raster
        self.committed_generation = generation
        logger.debug(
            "committed render %d: %dx%d, %d samples, radius=%d opacity=%d filter=%s",
            generation,
            floor_plan.width,
            floor_plan.height,
            len(snapshot),
            config.radius,
            config.opacity,
            config.selected_ap,
        )
        return raster

    @staticmethod
    def _compose(image: Image.Image, floor_plan: FloorPlan, samples: Samples, config: RenderConfig) -> Image.Image:
        return compose_heatmap(fit_to_canvas(image, floor_plan), samples, config)
