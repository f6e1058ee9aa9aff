from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from .models import ALL_ACCESS_POINTS, FloorPlan, Measurement, RenderConfig


class MeasurementIn(BaseModel):
    id: Optional[str] = None
    x: float
    y: float
    signal_strength: int = Field(alias="signalStrength")
    ssid: str
    bssid: str
    frequency: float
    channel: int
    notes: Optional[str] = None

    model_config = {"populate_by_name": True}

    def to_model(self) -> Measurement:
        return Measurement(
            x=self.x,
            y=self.y,
            signal_strength=self.signal_strength,
            ssid=self.ssid,
            bssid=self.bssid,
            frequency=self.frequency,
            channel=self.channel,
            id=self.id,
            notes=self.notes,
        )


class FloorPlanIn(BaseModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    image_url: str = Field(alias="imageUrl")
    file_name: Optional[str] = Field(default=None, alias="fileName")

    model_config = {"populate_by_name": True}

    def to_model(self) -> FloorPlan:
        return FloorPlan(width=self.width, height=self.height, image=self.image_url, file_name=self.file_name)


class RenderConfigIn(BaseModel):
    radius: int = Field(default=80, gt=0)
    opacity: int = Field(default=70, ge=0, le=100)
    selected_ap: str = Field(default=ALL_ACCESS_POINTS, alias="selectedAP")

    model_config = {"populate_by_name": True}

    def to_model(self) -> RenderConfig:
        return RenderConfig(radius=self.radius, opacity=self.opacity, selected_ap=self.selected_ap)


class HeatmapRequest(BaseModel):
    floor_plan: Optional[FloorPlanIn] = Field(default=None, alias="floorPlan")
    measurements: List[MeasurementIn] = Field(default_factory=list)
    config: RenderConfigIn = Field(default_factory=RenderConfigIn)

    model_config = {"populate_by_name": True}

    def samples(self) -> List[Measurement]:
        return [m.to_model() for m in self.measurements]


class StatsRequest(BaseModel):
    measurements: List[MeasurementIn] = Field(default_factory=list)
    selected_ap: str = Field(default=ALL_ACCESS_POINTS, alias="selectedAP")
    title: Optional[str] = None

    model_config = {"populate_by_name": True}

    def samples(self) -> List[Measurement]:
        return [m.to_model() for m in self.measurements]


class AccessPointOut(BaseModel):
    bssid: str
    ssid: str
    channel: int
    frequency: float


class StatsOut(BaseModel):
    total: int
    access_points: int
    average: int
    minimum: int
    maximum: int
    excellent: int
    good: int
    poor: int
    unique_ssids: int
    unique_bssids: int


class StatsResponse(BaseModel):
    stats: StatsOut
    filtered_access_points: List[AccessPointOut]
    recommendations: List[str]
