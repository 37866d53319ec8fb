from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta
from typing import Optional, Sequence

import httpx

from config import settings
from utils.logger import get_logger
from utils.retry import RetryableClient, RetryConfig

from .base import (
    EnsembleModelForecast,
    ForecastAdapter,
    ForecastRequest,
    ForecastSnapshot,
    ForecastUnavailableError,
    HistoricalDataUnavailableError,
)

logger = get_logger("weather.open_meteo")

OPEN_METEO_ENSEMBLE_MODELS = ("ecmwf_ifs025", "gfs025")
MIN_MEMBERS_PER_MODEL = 3
MIN_POOLED_MEMBERS = 5


def _parse_local_time(value: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def _nearest_index(times: list[str], target: datetime) -> int:
    best_idx = 0
    best_diff: Optional[float] = None
    for idx, raw in enumerate(times):
        parsed = _parse_local_time(raw)
        if parsed is None:
            continue
        diff = abs((parsed - target).total_seconds())
        if best_diff is None or diff < best_diff:
            best_idx, best_diff = idx, diff
    return best_idx


def _collect_members(daily: dict, variable: str) -> list[float]:
    members: list[float] = []
    prefix = f"{variable}_member"
    for key, values in daily.items():
        if key.startswith(prefix) and values and values[0] is not None:
            members.append(float(values[0]))
    # Control run is published without a member suffix.
    control = daily.get(variable) or []
    if control and control[0] is not None:
        members.append(float(control[0]))
    return members


class OpenMeteoForecastAdapter(ForecastAdapter):
    """Open-Meteo forecast, multi-model ensemble and archive endpoints."""

    source = "open-meteo"

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        retry: Optional[RetryConfig] = None,
        forecast_url: Optional[str] = None,
        ensemble_url: Optional[str] = None,
        archive_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout_seconds or settings.FORECAST_TIMEOUT_SECONDS
        self._retry = retry or RetryConfig(max_attempts=settings.FORECAST_MAX_ATTEMPTS)
        self._forecast_url = forecast_url or settings.OPEN_METEO_FORECAST_URL
        self._ensemble_url = ensemble_url or settings.OPEN_METEO_ENSEMBLE_URL
        self._archive_url = archive_url or settings.OPEN_METEO_ARCHIVE_URL
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            headers={"User-Agent": "weather-edge/1.0"},
            transport=self._transport,
        )

    async def fetch_forecast(self, request: ForecastRequest) -> ForecastSnapshot:
        window = timedelta(hours=request.time_window_hours)
        start = (request.target_time - window).date()
        end = (request.target_time + window).date()

        async with self._client() as raw_client:
            client = RetryableClient(raw_client, self._retry)
            try:
                response = await client.get(
                    self._forecast_url,
                    params={
                        "latitude": request.lat,
                        "longitude": request.lon,
                        "hourly": "temperature_2m",
                        "start_date": start.isoformat(),
                        "end_date": end.isoformat(),
                        "timezone": "GMT",
                    },
                )
            except httpx.HTTPError as exc:
                raise ForecastUnavailableError(f"Open-Meteo forecast request failed: {exc}") from exc

            data = response.json()
            hourly = data.get("hourly") or {}
            times: list[str] = hourly.get("time") or []
            temps: list[Optional[float]] = hourly.get("temperature_2m") or []
            if not times or not temps:
                raise ForecastUnavailableError("Open-Meteo returned no hourly temperatures")

            idx = _nearest_index(times, request.target_time)
            if temps[idx] is None:
                raise ForecastUnavailableError("Open-Meteo returned no temperature for the target hour")

            window_temps = []
            for raw_time, temp in zip(times, temps):
                parsed = _parse_local_time(raw_time)
                if temp is None or parsed is None:
                    continue
                if abs(parsed - request.target_time) <= window:
                    window_temps.append(float(temp))

            snapshot = ForecastSnapshot(
                source=self.source,
                target_time=times[idx],
                forecast_temp=float(temps[idx]),
                forecast_temp_min=min(window_temps) if window_temps else None,
                forecast_temp_max=max(window_temps) if window_temps else None,
                latitude=data.get("latitude"),
                longitude=data.get("longitude"),
                timezone=data.get("timezone"),
            )

            if request.include_ensemble:
                snapshot.ensemble_models = await self._fetch_multi_model_ensemble(
                    client, request.lat, request.lon, request.target_time.date()
                )
                if not snapshot.ensemble_models:
                    snapshot.metadata["ensemble_fallback"] = True

        return snapshot

    async def _fetch_single_model(
        self, client: RetryableClient, lat: float, lon: float, day: date, model: str
    ) -> Optional[EnsembleModelForecast]:
        response = await client.get(
            self._ensemble_url,
            params={
                "latitude": lat,
                "longitude": lon,
                "daily": "temperature_2m_max",
                "start_date": day.isoformat(),
                "end_date": day.isoformat(),
                "models": model,
            },
        )
        daily = response.json().get("daily") or {}
        members = _collect_members(daily, "temperature_2m_max")
        if len(members) < MIN_MEMBERS_PER_MODEL:
            return None
        return EnsembleModelForecast(model=model, members=members)

    async def _fetch_multi_model_ensemble(
        self, client: RetryableClient, lat: float, lon: float, day: date
    ) -> list[EnsembleModelForecast]:
        results = await asyncio.gather(
            *(self._fetch_single_model(client, lat, lon, day, m) for m in OPEN_METEO_ENSEMBLE_MODELS),
            return_exceptions=True,
        )
        models: list[EnsembleModelForecast] = []
        for model, result in zip(OPEN_METEO_ENSEMBLE_MODELS, results):
            if isinstance(result, Exception):
                logger.warning("Ensemble model fetch failed", model=model, error=str(result))
                continue
            if result is not None:
                models.append(result)

        if sum(m.member_count for m in models) < MIN_POOLED_MEMBERS:
            return []
        return models

    async def fetch_daily_actual(
        self, lat: float, lon: float, day: date, variable: str = "temperature_2m_max"
    ) -> float:
        history = await self.fetch_daily_history(lat, lon, day, day, [variable])
        values = history.get(variable) or []
        if not values or values[0] is None:
            raise HistoricalDataUnavailableError(
                "No historical temperature data available for this date. "
                "Archive data usually lags by 5+ days."
            )
        return float(values[0])

    async def fetch_daily_history(
        self,
        lat: float,
        lon: float,
        start: date,
        end: date,
        variables: Sequence[str],
    ) -> dict[str, list]:
        async with self._client() as raw_client:
            client = RetryableClient(raw_client, self._retry)
            try:
                response = await client.get(
                    self._archive_url,
                    params={
                        "latitude": lat,
                        "longitude": lon,
                        "start_date": start.isoformat(),
                        "end_date": end.isoformat(),
                        "daily": ",".join(variables),
                        "timezone": "auto",
                    },
                )
            except httpx.HTTPError as exc:
                raise HistoricalDataUnavailableError(f"Open-Meteo archive request failed: {exc}") from exc

        daily = response.json().get("daily") or {}
        if not daily.get("time"):
            raise HistoricalDataUnavailableError(
                f"No archive data for {lat},{lon} between {start} and {end}"
            )
        return {key: list(daily.get(key) or []) for key in ("time", *variables)}
