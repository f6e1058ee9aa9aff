from __future__ import annotations


class HeatmapError(Exception):
    """Base class for errors raised by the heatmap service."""


class ImageLoadError(HeatmapError):
    """The floor-plan image could not be fetched or decoded."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"could not load floor plan {source}: {reason}")
        self.source = source
        self.reason = reason
