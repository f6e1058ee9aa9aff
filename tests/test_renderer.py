import asyncio
import math

import numpy as np
import pytest
from PIL import Image

from wifi_heatmap.errors import ImageLoadError
from wifi_heatmap.models import FloorPlan, Measurement, RenderConfig
from wifi_heatmap.renderer import HeatmapRenderer, compose_heatmap, encode_png, paint_gradient


def sample(x, y, dbm, bssid="AA:11:22:33:44:01"):
    return Measurement(x, y, dbm, "Corporate-WiFi", bssid, 2437, 6)


def gray(width, height, level=128):
    return Image.new("RGBA", (width, height), (level, level, level, 255))


def clear(width, height):
    return Image.new("RGBA", (width, height), (0, 0, 0, 0))


def gradient_alpha(dist, radius, opacity):
    t = dist / radius
    if t >= 1:
        return 0.0
    if t <= 0.5:
        a = 0.8 - 0.4 * (t / 0.5)
    else:
        a = 0.4 - 0.4 * ((t - 0.5) / 0.5)
    return a * opacity / 100


def test_single_sample_scenario():
    base = gray(1000, 700)
    config = RenderConfig(radius=80, opacity=70)
    out = np.asarray(compose_heatmap(base, [sample(500, 350, -60)], config)).astype(int)

    assert out.shape == (700, 1000, 4)
    # Marker disc on top of the gradient centre.
    assert tuple(out[350, 500]) == (255, 255, 255, 255)

    # Yellow gradient, fading with distance.
    a = gradient_alpha(math.hypot(20.5, 0.5), 80, 70)
    r, g, b, alpha = out[350, 520]
    assert abs(r - (255 * a + 128 * (1 - a))) <= 1
    assert r == g
    assert abs(b - 128 * (1 - a)) <= 1
    assert alpha == 255

    # Outside the radius the floor plan is untouched.
    assert tuple(out[350, 581]) == (128, 128, 128, 255)
    assert tuple(out[100, 100]) == (128, 128, 128, 255)


def test_peak_alpha_scales_with_opacity():
    config = RenderConfig(radius=80, opacity=70)
    out = np.asarray(compose_heatmap(clear(1000, 700), [sample(500, 350, -60)], config)).astype(int)
    alpha = out[350, 510, 3]
    expected = gradient_alpha(math.hypot(10.5, 0.5), 80, 70) * 255
    assert abs(alpha - expected) <= 1
    assert alpha < 0.56 * 255
    assert tuple(out[350, 510, :3]) == (255, 255, 0)

    # Just outside the marker ring.
    near = out[350, 506, 3]
    assert abs(near - gradient_alpha(math.hypot(6.5, 0.5), 80, 70) * 255) <= 1


def test_gradient_peaks_at_opacity_scaled_centre_alpha():
    buf = np.zeros((700, 1000, 4), dtype=np.float32)
    paint_gradient(buf, sample(500, 350, -60), RenderConfig(radius=80, opacity=70))
    centre = buf[350, 500, 3]
    assert abs(centre - gradient_alpha(math.hypot(0.5, 0.5), 80, 70)) < 1e-4
    assert 0.55 < buf[..., 3].max() <= 0.56 + 1e-6
    assert buf[350, 581, 3] == 0


def test_empty_samples_leave_base_untouched():
    base = Image.effect_noise((120, 80), 40).convert("RGBA")
    out = compose_heatmap(base, [], RenderConfig())
    assert out.tobytes() == base.tobytes()

    filtered_out = compose_heatmap(base, [sample(10, 10, -40, bssid="A")], RenderConfig(selected_ap="B"))
    assert filtered_out.tobytes() == base.tobytes()


def test_overlapping_samples_add_up():
    config = RenderConfig(radius=40, opacity=100)
    one = np.asarray(compose_heatmap(clear(100, 100), [sample(50, 50, -40)], config))
    two = np.asarray(compose_heatmap(clear(100, 100), [sample(50, 50, -40), sample(50, 50, -40)], config))
    assert two[50, 70, 3] > one[50, 70, 3]


def test_markers_are_drawn_over_every_gradient():
    config = RenderConfig(radius=60, opacity=100)
    samples = [sample(40, 40, -40), sample(52, 40, -80)]
    out = np.asarray(compose_heatmap(gray(100, 100), samples, config)).astype(int)
    # The first marker stays visible under the second sample's gradient.
    assert tuple(out[40, 40]) == (255, 255, 255, 255)


def test_marker_fill_and_stroke():
    # Opacity 0 leaves only the markers.
    config = RenderConfig(radius=20, opacity=0)
    out = np.asarray(compose_heatmap(clear(100, 100), [sample(50.5, 50.5, -60)], config)).astype(int)
    assert tuple(out[50, 52]) == (255, 255, 255, 255)
    assert tuple(out[50, 53]) == (128, 128, 128, 255)
    assert tuple(out[50, 55]) == (0, 0, 0, 128)
    assert tuple(out[50, 57]) == (0, 0, 0, 0)


def test_samples_outside_canvas_are_clipped():
    config = RenderConfig(radius=30)
    out = np.asarray(compose_heatmap(gray(50, 50), [sample(-10, 25, -40), sample(500, 500, -40)], config))
    assert out[25, 0, 1] > 128
    assert tuple(out[49, 49]) == (128, 128, 128, 255)


def test_compose_is_deterministic():
    base = Image.effect_noise((200, 150), 30).convert("RGBA")
    samples = [sample(20, 30, -45), sample(100, 70, -72, bssid="B"), sample(180, 140, -88)]
    config = RenderConfig(radius=50, opacity=60)
    assert compose_heatmap(base, samples, config).tobytes() == compose_heatmap(base, samples, config).tobytes()


def test_render_stretches_floor_plan_to_canvas():
    renderer = HeatmapRenderer()
    plan = FloorPlan(200, 100, gray(50, 25))
    raster = asyncio.run(renderer.render(plan, [sample(100, 50, -50)], RenderConfig(radius=20)))
    assert raster.size == (200, 100)
    assert renderer.output is raster
    assert renderer.committed_generation == 1


def test_render_without_floor_plan_is_a_noop():
    renderer = HeatmapRenderer()
    assert asyncio.run(renderer.render(None, [sample(1, 1, -50)])) is None
    assert renderer.output is None
    assert renderer.generation == 1


def test_render_without_floor_plan_supersedes_pending_render():
    renderer = HeatmapRenderer()
    plan = FloorPlan(80, 60, gray(80, 60))

    async def scenario():
        return await asyncio.gather(
            renderer.render(plan, [sample(10, 10, -40)]),
            renderer.render(None, [sample(10, 10, -40)]),
        )

    assert asyncio.run(scenario()) == [None, None]
    assert renderer.output is None
    assert renderer.committed_generation == 0


def test_render_from_encoded_bytes_matches_compose():
    base = gray(64, 48, level=200)
    plan = FloorPlan(64, 48, encode_png(base))
    samples = [sample(30, 20, -55)]
    config = RenderConfig(radius=25, opacity=50)
    raster = asyncio.run(HeatmapRenderer().render(plan, samples, config))
    assert raster.tobytes() == compose_heatmap(base, samples, config).tobytes()


def test_superseded_render_is_not_committed():
    renderer = HeatmapRenderer()
    plan = FloorPlan(80, 60, gray(80, 60))

    async def scenario():
        return await asyncio.gather(
            renderer.render(plan, [sample(10, 10, -40)], RenderConfig(radius=30)),
            renderer.render(plan, [sample(70, 50, -80)], RenderConfig(radius=40)),
        )

    first, second = asyncio.run(scenario())
    assert first is None
    assert second is not None
    assert renderer.output is second
    assert renderer.committed_generation == 2


def test_render_does_not_mutate_inputs():
    image = gray(40, 40)
    before = image.tobytes()
    samples = [sample(20, 20, -50)]
    asyncio.run(HeatmapRenderer().render(FloorPlan(40, 40, image), samples))
    assert image.tobytes() == before
    assert samples == [sample(20, 20, -50)]


def test_render_surfaces_image_load_errors():
    renderer = HeatmapRenderer()
    with pytest.raises(ImageLoadError):
        asyncio.run(renderer.render(FloorPlan(10, 10, b"definitely not an image"), []))
    assert renderer.output is None


def test_render_config_validation():
    with pytest.raises(ValueError):
        RenderConfig(radius=0)
    with pytest.raises(ValueError):
        RenderConfig(opacity=101)
