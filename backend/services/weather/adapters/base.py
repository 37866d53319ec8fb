from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Optional, Sequence


class ForecastUnavailableError(RuntimeError):
    """Forecast provider returned no usable deterministic forecast."""


class HistoricalDataUnavailableError(RuntimeError):
    """Archive has no observation for the requested day (yet)."""


@dataclass
class ForecastRequest:
    """Location and resolution time a forecast is needed for."""

    lat: float
    lon: float
    target_time: datetime  # naive UTC
    time_window_hours: int = 12
    include_ensemble: bool = True


@dataclass
class EnsembleModelForecast:
    """Daily-max members from one ensemble model."""

    model: str
    members: list[float] = field(default_factory=list)

    @property
    def member_count(self) -> int:
        return len(self.members)


@dataclass
class ForecastSnapshot:
    """Forecast bundle shared by every sub-market of an event."""

    source: str
    target_time: str
    forecast_temp: float
    forecast_temp_min: Optional[float] = None
    forecast_temp_max: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timezone: Optional[str] = None
    ensemble_models: list[EnsembleModelForecast] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def pooled_members(self) -> list[float]:
        pooled: list[float] = []
        for model in self.ensemble_models:
            pooled.extend(model.members)
        return pooled

    @property
    def models_label(self) -> str:
        return "+".join(m.model for m in self.ensemble_models)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ForecastAdapter(ABC):
    """Weather data provider used by run computation and backtests."""

    source: str = "unknown"

    @abstractmethod
    async def fetch_forecast(self, request: ForecastRequest) -> ForecastSnapshot:
        """Deterministic forecast plus (optionally) ensemble members for the target day."""
        raise NotImplementedError

    @abstractmethod
    async def fetch_daily_actual(
        self, lat: float, lon: float, day: date, variable: str = "temperature_2m_max"
    ) -> float:
        """Observed daily value; raises HistoricalDataUnavailableError when missing."""
        raise NotImplementedError

    @abstractmethod
    async def fetch_daily_history(
        self,
        lat: float,
        lon: float,
        start: date,
        end: date,
        variables: Sequence[str],
    ) -> dict[str, list]:
        """Daily archive series keyed by ``time`` and each requested variable."""
        raise NotImplementedError
