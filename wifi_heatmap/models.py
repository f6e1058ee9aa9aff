from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Sequence, Tuple, Union

from PIL import Image

ALL_ACCESS_POINTS = "all"


@dataclass(frozen=True)
class Measurement:
    x: float
    y: float
    signal_strength: int
    ssid: str
    bssid: str
    frequency: float
    channel: int
    id: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class FloorPlan:
    width: int
    height: int
    image: Union[str, Path, bytes, Image.Image]
    file_name: str | None = None

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"floor plan must have a positive size, got {self.width}x{self.height}")


@dataclass(frozen=True)
class AccessPoint:
    bssid: str
    ssid: str
    channel: int
    frequency: float


@dataclass(frozen=True)
class RenderConfig:
    radius: int = 80
    opacity: int = 70
    selected_ap: str = ALL_ACCESS_POINTS

    def __post_init__(self) -> None:
        if self.radius <= 0:
            raise ValueError(f"radius must be positive, got {self.radius}")
        if not 0 <= self.opacity <= 100:
            raise ValueError(f"opacity must be within 0..100, got {self.opacity}")

    @property
    def alpha(self) -> float:
        return self.opacity / 100.0


@dataclass
class CoverageStats:
    total: int = 0
    access_points: int = 0
    average: int = 0
    minimum: int = 0
    maximum: int = 0
    excellent: int = 0
    good: int = 0
    poor: int = 0
    unique_ssids: int = 0
    unique_bssids: int = 0

    def share(self, band: str) -> float:
        if self.total == 0:
            return 0.0
        return getattr(self, band) / self.total


RGB = Tuple[int, int, int]
Samples = Sequence[Measurement]
APMap = Dict[str, AccessPoint]
BandCounts = Dict[str, int]
