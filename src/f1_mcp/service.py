"""F1 data service: one method per logical F1 query.

Each method builds its upstream URL, picks a cache TTL class, unwraps the
upstream envelope and applies its declared error policy. Methods whose
"nothing found" state is routine (live data outside a session, lookups by a
possibly misspelt id) are decorated with ``@recover`` and turn the listed
upstream statuses into an empty value. Everything else is ``@propagate``
and lets the error reach the caller. ``ERROR_POLICIES`` is the complete
table.
"""
import asyncio
import functools
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, List, Optional
from urllib.parse import quote

from f1_mcp.cache import TTLClass
from f1_mcp.config import Settings
from f1_mcp.envelopes import (
    expect_list,
    expect_object,
    first_or_none,
    unwrap_first,
    unwrap_list,
)
from f1_mcp.errors import (
    F1MCPError,
    UpstreamStatusError,
    missing_parameter_error,
    not_found_error,
)
from f1_mcp.gateway import FetchGateway, build_url

logger = logging.getLogger(__name__)

# OpenF1 answers 404 for unknown keys and 422 for unfilterable / empty queries
OPENF1_NO_DATA = frozenset({404, 422})
# Ergast answers 404 for an unknown driver, constructor or circuit id
ERGAST_UNKNOWN_ID = frozenset({404})

# OpenF1 rejects car_data queries that have no numeric comparison filter
NUMERIC_FILTER = re.compile(r"(?:^|&)\s*\w+\s*(?:>=|<=|>|<)\s*-?\d+(?:\.\d+)?\s*(?=&|$)")
NOOP_NUMERIC_FILTER = "speed>=0"

DRS_OPEN_VALUES = frozenset({10, 12, 14})
FULL_THROTTLE = 98


@dataclass(frozen=True)
class ErrorPolicy:
    """Which upstream statuses a method turns into an empty result."""

    on_status: FrozenSet[int]
    fallback: Callable[[], Any]

    @property
    def propagates_everything(self) -> bool:
        return not self.on_status


PROPAGATE = ErrorPolicy(on_status=frozenset(), fallback=lambda: None)

# method name -> policy, filled in by the decorators below
ERROR_POLICIES: Dict[str, ErrorPolicy] = {}


def recover(on_status: FrozenSet[int] = OPENF1_NO_DATA, fallback: Callable[[], Any] = list):
    """
    Declare that a service method returns ``fallback()`` when the upstream
    answers with one of the ``on_status`` statuses.

    Transport failures and any other status still propagate.
    """
    policy = ErrorPolicy(on_status=frozenset(on_status), fallback=fallback)

    def decorator(func):
        ERROR_POLICIES[func.__name__] = policy

        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except UpstreamStatusError as e:
                if e.status not in policy.on_status:
                    raise
                logger.warning(
                    f"{func.__name__}: upstream returned {e.status}, returning no data"
                )
                return policy.fallback()

        wrapper.error_policy = policy
        return wrapper

    return decorator


def propagate(func):
    """Declare that a service method lets every upstream error through."""
    ERROR_POLICIES[func.__name__] = PROPAGATE
    func.error_policy = PROPAGATE
    return func


def _none() -> None:
    return None


def _segment(value: Any) -> str:
    """Quote a caller-supplied value for use as one URL path segment."""
    return quote(str(value), safe="")


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


async def gather_all(*aws):
    """
    Run awaitables concurrently and return their results in order.

    On the first failure the remaining tasks are cancelled and awaited, and
    the failure is re-raised.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def car_data_filters(filters: Optional[str]) -> str:
    """
    Normalize caller filters for the car_data endpoint.

    Appends ``speed>=0`` when no numeric comparison is present; OpenF1
    requires one and this filter matches every sample.
    """
    cleaned = (filters or "").strip().lstrip("?").strip("&")
    if NUMERIC_FILTER.search(cleaned):
        return cleaned
    return f"{cleaned}&{NOOP_NUMERIC_FILTER}" if cleaned else NOOP_NUMERIC_FILTER


class F1DataService:
    """Facade over the OpenF1 and Ergast-compatible APIs."""

    def __init__(self, gateway: FetchGateway, settings: Settings):
        self._gateway = gateway
        self._settings = settings

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _openf1_url(self, endpoint: str, params=None, raw_filters: Optional[str] = None) -> str:
        return build_url(self._settings.openf1_base_url, endpoint, params, raw_filters)

    def _ergast_url(self, path: str, params=None) -> str:
        return build_url(self._settings.ergast_base_url, path, params)

    async def _fetch(self, url: str, label: str, ttl_class: TTLClass = TTLClass.STATIC) -> Any:
        return await self._gateway.fetch(url, label, ttl=self._settings.ttl_seconds(ttl_class))

    async def _openf1_list(
        self,
        endpoint: str,
        params,
        label: str,
        ttl_class: TTLClass = TTLClass.LIVE,
        raw_filters: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        data = await self._fetch(self._openf1_url(endpoint, params, raw_filters), label, ttl_class)
        return expect_list(data, label)

    # ------------------------------------------------------------------
    # OpenF1: sessions and meetings
    # ------------------------------------------------------------------

    @propagate
    async def get_historical_sessions(
        self,
        year: Optional[int] = None,
        circuit_short_name: Optional[str] = None,
        session_name: Optional[str] = None,
        country_name: Optional[str] = None,
        location: Optional[str] = None,
        session_key: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Look up sessions (and their session keys) by year, circuit, name or country."""
        params = [
            ("year", year),
            ("circuit_short_name", circuit_short_name),
            ("session_name", session_name),
            ("country_name", country_name),
            ("location", location),
            ("session_key", session_key),
        ]
        return await self._openf1_list(
            "sessions", params, "Failed to fetch historical sessions", TTLClass.STATIC
        )

    @propagate
    async def get_meetings(
        self, year: Optional[int] = None, country_name: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Grand Prix weekends (meetings) for a year."""
        return await self._openf1_list(
            "meetings",
            [("year", year), ("country_name", country_name)],
            "Failed to fetch meetings",
            TTLClass.STATIC,
        )

    @recover(OPENF1_NO_DATA, fallback=list)
    async def get_live_timing_data(self) -> List[Dict[str, Any]]:
        """Lap timing of the latest session."""
        return await self._openf1_list(
            "laps", [("session_key", "latest")], "Failed to fetch live timing data"
        )

    @recover(OPENF1_NO_DATA, fallback=_none)
    async def get_current_session_status(self) -> Optional[Dict[str, Any]]:
        """The latest (or current) session record, or None outside a race weekend."""
        label = "Failed to fetch session status"
        data = await self._fetch(
            self._openf1_url("sessions", [("session_key", "latest")]), label, TTLClass.LIVE
        )
        return expect_object(data, label) or None

    # ------------------------------------------------------------------
    # OpenF1: session-scoped data
    # ------------------------------------------------------------------

    @recover(OPENF1_NO_DATA, fallback=list)
    async def get_driver_info(
        self, driver_number: str, session_key: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Driver record(s) for a car number, in one session or the latest one."""
        return await self._openf1_list(
            "drivers",
            [("driver_number", driver_number), ("session_key", session_key or "latest")],
            "Failed to fetch driver info",
            TTLClass.STATIC,
        )

    @recover(OPENF1_NO_DATA, fallback=list)
    async def get_session_drivers(self, session_key: str) -> List[Dict[str, Any]]:
        return await self._openf1_list(
            "drivers", [("session_key", session_key)],
            "Failed to fetch session drivers", TTLClass.STATIC,
        )

    @recover(OPENF1_NO_DATA, fallback=list)
    async def get_weather_data(self, session_key: Optional[str] = None) -> List[Dict[str, Any]]:
        """Weather readings for a session (latest session when no key is given)."""
        return await self._openf1_list(
            "weather", [("session_key", session_key or "latest")], "Failed to fetch weather data"
        )

    @recover(OPENF1_NO_DATA, fallback=list)
    async def get_car_data(
        self, driver_number: str, session_key: Optional[str], filters: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Car telemetry samples (speed, rpm, gear, throttle, brake, DRS).

        Args:
            driver_number: Car number
            session_key: Session to read; required
            filters: Extra OpenF1 filter expressions, e.g. "speed>=300"

        Raises:
            InvalidRequestError: If session_key is missing (before any request)
        """
        if not session_key:
            raise missing_parameter_error(
                "sessionKey",
                "Car telemetry is only available per session. Use getHistoricalSessions to find a session key.",
            )
        return await self._openf1_list(
            "car_data",
            [("driver_number", driver_number), ("session_key", session_key)],
            "Failed to fetch car telemetry data",
            raw_filters=car_data_filters(filters),
        )

    @recover(OPENF1_NO_DATA, fallback=list)
    async def get_pit_stop_data(
        self, session_key: Optional[str] = None, driver_number: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        return await self._openf1_list(
            "pit",
            [("session_key", session_key), ("driver_number", driver_number)],
            "Failed to fetch pit stop data",
            TTLClass.STATIC,
        )

    @recover(OPENF1_NO_DATA, fallback=list)
    async def get_team_radio(
        self, session_key: Optional[str], driver_number: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Team radio recordings; empty without a session key."""
        if not session_key:
            logger.warning("get_team_radio called without a session key, returning no data")
            return []
        return await self._openf1_list(
            "team_radio",
            [("session_key", session_key), ("driver_number", driver_number)],
            "Failed to fetch team radio messages",
            TTLClass.STATIC,
        )

    @recover(OPENF1_NO_DATA, fallback=list)
    async def get_race_control_messages(self, session_key: Optional[str]) -> List[Dict[str, Any]]:
        """Flags, penalties and other race control messages; empty without a session key."""
        if not session_key:
            logger.warning("get_race_control_messages called without a session key, returning no data")
            return []
        return await self._openf1_list(
            "race_control", [("session_key", session_key)], "Failed to fetch race control messages"
        )

    @recover(OPENF1_NO_DATA, fallback=list)
    async def get_laps(
        self,
        session_key: str,
        driver_number: Optional[str] = None,
        lap_number: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self._openf1_list(
            "laps",
            [("session_key", session_key), ("driver_number", driver_number), ("lap_number", lap_number)],
            "Failed to fetch lap data",
        )

    @recover(OPENF1_NO_DATA, fallback=list)
    async def get_stints(
        self, session_key: str, driver_number: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Tyre stints: compound, lap range and tyre age at stint start."""
        return await self._openf1_list(
            "stints",
            [("session_key", session_key), ("driver_number", driver_number)],
            "Failed to fetch tyre stints",
            TTLClass.STATIC,
        )

    @recover(OPENF1_NO_DATA, fallback=list)
    async def get_positions(
        self, session_key: str, driver_number: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        return await self._openf1_list(
            "position",
            [("session_key", session_key), ("driver_number", driver_number)],
            "Failed to fetch track positions",
        )

    @recover(OPENF1_NO_DATA, fallback=list)
    async def get_intervals(
        self, session_key: str, driver_number: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Gaps to the leader and to the car ahead (races only)."""
        return await self._openf1_list(
            "intervals",
            [("session_key", session_key), ("driver_number", driver_number)],
            "Failed to fetch intervals",
        )

    @propagate
    async def get_lap_analysis(
        self, session_key: str, driver_number: str, lap_number: int
    ) -> Dict[str, Any]:
        """
        Combine timing, tyre, weather and telemetry for one lap of one driver.

        Timing, stints and weather are fetched concurrently; the lap's
        telemetry window is fetched once the lap start time is known. Any
        failing fetch fails the whole analysis.

        Raises:
            InvalidRequestError: If session_key is missing
            ResultNotFoundError: If the lap does not exist
        """
        if not session_key:
            raise missing_parameter_error(
                "sessionKey", "Use getHistoricalSessions to find a session key first."
            )
        label = "Failed to build lap analysis"

        laps, stints, weather = await gather_all(
            self._openf1_list(
                "laps",
                [("session_key", session_key), ("driver_number", driver_number), ("lap_number", lap_number)],
                label,
            ),
            self._openf1_list(
                "stints",
                [("session_key", session_key), ("driver_number", driver_number)],
                label,
                TTLClass.STATIC,
            ),
            self._openf1_list("weather", [("session_key", session_key)], label),
        )
        if not laps:
            raise not_found_error(label, f"session {session_key}, driver {driver_number}, lap {lap_number}")
        lap = laps[0]

        lap_start = _parse_time(lap.get("date_start"))
        lap_duration = lap.get("lap_duration")
        samples: List[Dict[str, Any]] = []
        if lap_start is not None and lap_duration:
            lap_end = lap_start + timedelta(seconds=lap_duration)
            window = (
                f"date>={quote(lap_start.isoformat(), safe=':')}"
                f"&date<{quote(lap_end.isoformat(), safe=':')}"
            )
            samples = await self._openf1_list(
                "car_data",
                [("driver_number", driver_number), ("session_key", session_key)],
                label,
                raw_filters=car_data_filters(window),
            )

        return {
            "session_key": session_key,
            "driver_number": driver_number,
            "lap_number": lap_number,
            "date_start": lap.get("date_start"),
            "lap_duration": lap_duration,
            "is_pit_out_lap": lap.get("is_pit_out_lap"),
            "sectors": [
                lap.get("duration_sector_1"),
                lap.get("duration_sector_2"),
                lap.get("duration_sector_3"),
            ],
            "speed_trap": {
                "i1": lap.get("i1_speed"),
                "i2": lap.get("i2_speed"),
                "st": lap.get("st_speed"),
            },
            "tyre": _tyre_on_lap(stints, lap_number),
            "weather": _weather_at(weather, lap_start),
            "telemetry": _summarize_telemetry(samples),
        }

    # ------------------------------------------------------------------
    # Ergast: race results and standings
    # ------------------------------------------------------------------

    @propagate
    async def get_historic_race_results(self, year: int, round: int) -> Dict[str, Any]:
        label = "Failed to fetch historic race results"
        data = await self._fetch(self._ergast_url(f"{year}/{round}/results.json"), label)
        return unwrap_first(data, "races", label, f"{year} round {round}")

    @propagate
    async def get_driver_standings(self, year: int) -> Dict[str, Any]:
        label = "Failed to fetch driver standings"
        data = await self._fetch(self._ergast_url(f"{year}/driverStandings.json"), label)
        return unwrap_first(data, "standings", label, f"{year} driver standings")

    @propagate
    async def get_constructor_standings(self, year: int) -> Dict[str, Any]:
        label = "Failed to fetch constructor standings"
        data = await self._fetch(self._ergast_url(f"{year}/constructorStandings.json"), label)
        return unwrap_first(data, "standings", label, f"{year} constructor standings")

    @propagate
    async def get_lap_times(self, year: int, round: int, driver_id: str) -> Dict[str, Any]:
        label = "Failed to fetch lap times"
        data = await self._fetch(
            self._ergast_url(f"{year}/{round}/drivers/{_segment(driver_id)}/laps.json", {"limit": 2000}),
            label,
        )
        return unwrap_first(data, "races", label, f"{year} round {round} driver {driver_id}")

    @propagate
    async def get_qualifying_results(self, year: int, round: int) -> Dict[str, Any]:
        label = "Failed to fetch qualifying results"
        data = await self._fetch(self._ergast_url(f"{year}/{round}/qualifying.json"), label)
        return unwrap_first(data, "races", label, f"{year} round {round}")

    @propagate
    async def get_race_pit_stops(self, year: int, round: int) -> Dict[str, Any]:
        label = "Failed to fetch race pit stops"
        data = await self._fetch(
            self._ergast_url(f"{year}/{round}/pitstops.json", {"limit": 200}), label
        )
        return unwrap_first(data, "races", label, f"{year} round {round}")

    # ------------------------------------------------------------------
    # Ergast: calendars and reference data
    # ------------------------------------------------------------------

    @propagate
    async def get_race_calendar(self, year: int) -> List[Dict[str, Any]]:
        label = "Failed to fetch race calendar"
        data = await self._fetch(self._ergast_url(f"{year}.json"), label)
        return unwrap_list(data, "races", label)

    @propagate
    async def get_season_list(self, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        label = "Failed to fetch season list"
        data = await self._fetch(
            self._ergast_url("seasons.json", {"limit": limit, "offset": offset or None}), label
        )
        return unwrap_list(data, "seasons", label)

    @propagate
    async def get_season_drivers(self, year: int) -> List[Dict[str, Any]]:
        label = "Failed to fetch season drivers"
        data = await self._fetch(self._ergast_url(f"{year}/drivers.json", {"limit": 100}), label)
        return unwrap_list(data, "drivers", label)

    @propagate
    async def get_season_constructors(self, year: int) -> List[Dict[str, Any]]:
        label = "Failed to fetch season constructors"
        data = await self._fetch(self._ergast_url(f"{year}/constructors.json", {"limit": 100}), label)
        return unwrap_list(data, "constructors", label)

    @propagate
    async def get_circuits(self, limit: int = 100) -> List[Dict[str, Any]]:
        label = "Failed to fetch circuits"
        data = await self._fetch(self._ergast_url("circuits.json", {"limit": limit}), label)
        return unwrap_list(data, "circuits", label)

    @recover(ERGAST_UNKNOWN_ID, fallback=_none)
    async def get_circuit_info(self, circuit_id: str) -> Optional[Dict[str, Any]]:
        label = "Failed to fetch circuit information"
        data = await self._fetch(self._ergast_url(f"circuits/{_segment(circuit_id)}.json"), label)
        return first_or_none(data, "circuits", label)

    @recover(ERGAST_UNKNOWN_ID, fallback=_none)
    async def get_driver_information(self, driver_id: str) -> Optional[Dict[str, Any]]:
        """Driver biography by Ergast driver id (e.g. "hamilton"), or None if unknown."""
        label = "Failed to fetch driver information"
        data = await self._fetch(self._ergast_url(f"drivers/{_segment(driver_id)}.json"), label)
        return first_or_none(data, "drivers", label)

    @recover(ERGAST_UNKNOWN_ID, fallback=_none)
    async def get_constructor_information(self, constructor_id: str) -> Optional[Dict[str, Any]]:
        label = "Failed to fetch constructor information"
        data = await self._fetch(
            self._ergast_url(f"constructors/{_segment(constructor_id)}.json"), label
        )
        return first_or_none(data, "constructors", label)

    # ------------------------------------------------------------------
    # utility
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self._gateway.clear_cache()

    async def health(self) -> Dict[str, Any]:
        """Probe both upstream APIs concurrently, bypassing the cache."""

        async def probe(name: str, url: str) -> Dict[str, Any]:
            start = time.perf_counter()
            try:
                await self._gateway.fetch(url, f"{name} health probe", use_cache=False)
            except F1MCPError as e:
                return {"status": "error", "error": e.message}
            return {"status": "ok", "latency_ms": round((time.perf_counter() - start) * 1000)}

        openf1, ergast = await gather_all(
            probe("OpenF1", self._openf1_url("sessions", [("session_key", "latest")])),
            probe("Ergast", self._ergast_url("seasons.json", {"limit": 1})),
        )
        healthy = openf1["status"] == "ok" and ergast["status"] == "ok"
        return {
            "status": "healthy" if healthy else "degraded",
            "upstreams": {"openf1": openf1, "ergast": ergast},
            "cache_entries": len(self._gateway.cache),
        }


def _tyre_on_lap(stints: List[Dict[str, Any]], lap_number: int) -> Optional[Dict[str, Any]]:
    for stint in stints:
        lap_start = stint.get("lap_start") or 0
        lap_end = stint.get("lap_end")
        if lap_start <= lap_number and (lap_end is None or lap_number <= lap_end):
            age_at_start = stint.get("tyre_age_at_start") or 0
            return {
                "compound": stint.get("compound"),
                "stint_number": stint.get("stint_number"),
                "tyre_age": age_at_start + (lap_number - lap_start),
            }
    return None


def _weather_at(readings: List[Dict[str, Any]], moment: Optional[datetime]) -> Optional[Dict[str, Any]]:
    """Last weather reading taken at or before ``moment`` (the first one otherwise)."""
    if not readings:
        return None
    if moment is None:
        return readings[-1]
    chosen = readings[0]
    for reading in readings:
        taken = _parse_time(reading.get("date"))
        if taken is not None and taken <= moment:
            chosen = reading
    return chosen


def _summarize_telemetry(samples: List[Dict[str, Any]]) -> Dict[str, Any]:
    if not samples:
        return {"samples": 0}
    speeds = [s.get("speed") or 0 for s in samples]
    throttles = [s.get("throttle") or 0 for s in samples]
    return {
        "samples": len(samples),
        "max_speed": max(speeds),
        "avg_speed": round(sum(speeds) / len(speeds), 1),
        "max_rpm": max(s.get("rpm") or 0 for s in samples),
        "full_throttle_pct": round(100 * sum(1 for t in throttles if t >= FULL_THROTTLE) / len(samples), 1),
        "drs_open_samples": sum(1 for s in samples if s.get("drs") in DRS_OPEN_VALUES),
    }
