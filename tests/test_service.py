"""Tests for the F1 data service."""
import asyncio
import inspect
from urllib.parse import unquote

import httpx
import pytest

from conftest import ERGAST, OPENF1, ergast
from f1_mcp.cache import Cache
from f1_mcp.errors import (
    InvalidRequestError,
    ResultNotFoundError,
    UpstreamPayloadError,
    UpstreamStatusError,
    UpstreamTransportError,
    upstream_status_error,
)
from f1_mcp.gateway import FetchGateway
from f1_mcp.metrics import MetricsCollector
from f1_mcp.service import (
    ERGAST_UNKNOWN_ID,
    ERROR_POLICIES,
    OPENF1_NO_DATA,
    PROPAGATE,
    F1DataService,
    car_data_filters,
    gather_all,
)


def query_of(request: httpx.Request) -> str:
    return unquote(request.url.query.decode())


class TestErrorPolicyTable:
    """Every public query declares its error policy."""

    def test_every_public_method_has_a_policy(self):
        public = {
            name
            for name, member in inspect.getmembers(F1DataService, inspect.iscoroutinefunction)
            if name.startswith("get_")
        }
        assert public <= set(ERROR_POLICIES)

    def test_representative_policies(self):
        assert ERROR_POLICIES["get_weather_data"].on_status == OPENF1_NO_DATA
        assert ERROR_POLICIES["get_weather_data"].fallback() == []
        assert ERROR_POLICIES["get_current_session_status"].fallback() is None
        assert ERROR_POLICIES["get_driver_information"].on_status == ERGAST_UNKNOWN_ID
        assert ERROR_POLICIES["get_historic_race_results"] is PROPAGATE
        assert ERROR_POLICIES["get_lap_analysis"].propagates_everything


class TestErrorPolicyPartition:
    """Expected-empty queries resolve to empty values; real errors surface."""

    @pytest.mark.asyncio
    async def test_weather_422_resolves_to_empty_list(self, upstream, service):
        upstream.add(f"{OPENF1}/weather", {"detail": "No results found."}, status=422)
        assert await service.get_weather_data() == []

    @pytest.mark.asyncio
    async def test_session_status_404_resolves_to_none(self, upstream, service):
        upstream.add(f"{OPENF1}/sessions", {"detail": "Not Found"}, status=404)
        assert await service.get_current_session_status() is None

    @pytest.mark.asyncio
    async def test_historic_results_404_propagates(self, upstream, service):
        upstream.add(f"{ERGAST}/1899/99/results.json", {"detail": "Not Found"}, status=404)
        with pytest.raises(UpstreamStatusError) as exc_info:
            await service.get_historic_race_results(1899, 99)
        assert exc_info.value.status == 404
        assert exc_info.value.message == "Failed to fetch historic race results: 404"

    @pytest.mark.asyncio
    async def test_historic_results_empty_raises_not_found(self, upstream, service):
        upstream.add(f"{ERGAST}/2023/99/results.json", ergast("RaceTable", "Races", []))
        with pytest.raises(ResultNotFoundError):
            await service.get_historic_race_results(2023, 99)

    @pytest.mark.asyncio
    async def test_suppressing_method_still_raises_on_rate_limit(self, upstream, service):
        upstream.add(f"{OPENF1}/weather", {"detail": "Too Many Requests"}, status=429)
        with pytest.raises(UpstreamStatusError) as exc_info:
            await service.get_weather_data("9158")
        assert exc_info.value.status == 429

    @pytest.mark.asyncio
    async def test_suppressing_method_still_raises_on_server_error(self, upstream, service):
        upstream.add(f"{OPENF1}/laps", {"detail": "boom"}, status=500)
        with pytest.raises(UpstreamStatusError):
            await service.get_laps("9158")

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self, settings):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        service = F1DataService(FetchGateway(client, Cache(), MetricsCollector(), max_retries=0), settings)
        with pytest.raises(UpstreamTransportError):
            await service.get_weather_data()

    @pytest.mark.asyncio
    async def test_unknown_driver_id_resolves_to_none(self, upstream, service):
        upstream.add(f"{ERGAST}/drivers/nobody.json", {"detail": "Not Found"}, status=404)
        assert await service.get_driver_information("nobody") is None


class TestOpenF1Methods:
    """Tests for OpenF1 query methods."""

    @pytest.mark.asyncio
    async def test_historical_sessions_filters(self, upstream, service):
        upstream.add(f"{OPENF1}/sessions", [{"session_key": 9158}])
        result = await service.get_historical_sessions(year=2023, circuit_short_name="Monza", session_name="Race")
        assert result == [{"session_key": 9158}]
        assert query_of(upstream.requests[0]) == "year=2023&circuit_short_name=Monza&session_name=Race"

    @pytest.mark.asyncio
    async def test_live_timing_uses_latest_session(self, upstream, service):
        upstream.add(f"{OPENF1}/laps", [{"lap_number": 12}])
        assert await service.get_live_timing_data() == [{"lap_number": 12}]
        assert query_of(upstream.requests[0]) == "session_key=latest"

    @pytest.mark.asyncio
    async def test_current_session_status_returns_object(self, upstream, service):
        upstream.add(f"{OPENF1}/sessions", [{"session_key": 9999, "session_name": "Race"}])
        assert await service.get_current_session_status() == {"session_key": 9999, "session_name": "Race"}

    @pytest.mark.asyncio
    async def test_current_session_status_empty_is_none(self, upstream, service):
        upstream.add(f"{OPENF1}/sessions", [])
        assert await service.get_current_session_status() is None

    @pytest.mark.asyncio
    async def test_driver_info_defaults_to_latest(self, upstream, service):
        upstream.add(f"{OPENF1}/drivers", [{"driver_number": 44}])
        await service.get_driver_info("44")
        assert query_of(upstream.requests[0]) == "driver_number=44&session_key=latest"

    @pytest.mark.asyncio
    async def test_car_data_requires_session_key(self, upstream, service):
        """No session key is rejected before any request is made."""
        with pytest.raises(InvalidRequestError):
            await service.get_car_data("1", None)
        with pytest.raises(InvalidRequestError):
            await service.get_car_data("1", "")
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_car_data_appends_numeric_filter(self, upstream, service):
        upstream.add(f"{OPENF1}/car_data", [{"speed": 300}])
        await service.get_car_data("1", "9159")
        assert query_of(upstream.requests[0]) == "driver_number=1&session_key=9159&speed>=0"

    @pytest.mark.asyncio
    async def test_car_data_keeps_caller_numeric_filter(self, upstream, service):
        upstream.add(f"{OPENF1}/car_data", [])
        await service.get_car_data("1", "9159", "speed>=315")
        assert query_of(upstream.requests[0]) == "driver_number=1&session_key=9159&speed>=315"

    @pytest.mark.asyncio
    async def test_team_radio_without_session_key_makes_no_request(self, upstream, service):
        assert await service.get_team_radio(None) == []
        assert await service.get_race_control_messages("") == []
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_team_radio_for_driver(self, upstream, service):
        upstream.add(f"{OPENF1}/team_radio", [{"recording_url": "https://x/1.mp3"}])
        result = await service.get_team_radio("9158", "1")
        assert result == [{"recording_url": "https://x/1.mp3"}]
        assert query_of(upstream.requests[0]) == "session_key=9158&driver_number=1"

    @pytest.mark.asyncio
    async def test_laps_with_lap_number(self, upstream, service):
        upstream.add(f"{OPENF1}/laps", [{"lap_number": 5}])
        await service.get_laps("9158", "1", 5)
        assert query_of(upstream.requests[0]) == "session_key=9158&driver_number=1&lap_number=5"

    @pytest.mark.asyncio
    async def test_same_query_served_from_cache(self, upstream, service):
        upstream.add(f"{OPENF1}/stints", [{"stint_number": 1}])
        await service.get_stints("9158")
        await service.get_stints("9158")
        assert upstream.calls_to(f"{OPENF1}/stints") == 1

    @pytest.mark.asyncio
    async def test_clear_cache_forces_refetch(self, upstream, service):
        upstream.add(f"{OPENF1}/position", [{"position": 1}])
        await service.get_positions("9158")
        service.clear_cache()
        service.clear_cache()
        await service.get_positions("9158")
        assert upstream.calls_to(f"{OPENF1}/position") == 2


class TestCarDataFilters:
    """Tests for car_data_filters."""

    def test_empty(self):
        assert car_data_filters(None) == "speed>=0"
        assert car_data_filters("") == "speed>=0"

    def test_numeric_comparison_kept(self):
        assert car_data_filters("speed>=300&n_gear<=7") == "speed>=300&n_gear<=7"
        assert car_data_filters("rpm>10000") == "rpm>10000"

    def test_non_numeric_filter_gets_noop(self):
        assert car_data_filters("date>=2023-09-03T13:00:00") == "date>=2023-09-03T13:00:00&speed>=0"

    def test_strips_separators(self):
        assert car_data_filters("?&throttle>=99&") == "throttle>=99"


class TestErgastMethods:
    """Tests for Ergast query methods."""

    @pytest.mark.asyncio
    async def test_historic_results_unwraps_first_race(self, upstream, service):
        race = {"season": "2023", "round": "1", "raceName": "Bahrain Grand Prix", "Results": []}
        upstream.add(f"{ERGAST}/2023/1/results.json", ergast("RaceTable", "Races", [race]))
        assert await service.get_historic_race_results(2023, 1) == race

    @pytest.mark.asyncio
    async def test_driver_standings(self, upstream, service):
        standings = {"season": "2023", "round": "22", "DriverStandings": [{"position": "1"}]}
        upstream.add(f"{ERGAST}/2023/driverStandings.json", ergast("StandingsTable", "StandingsLists", [standings]))
        assert await service.get_driver_standings(2023) == standings

    @pytest.mark.asyncio
    async def test_constructor_standings(self, upstream, service):
        standings = {"season": "2023", "ConstructorStandings": [{"position": "1"}]}
        upstream.add(
            f"{ERGAST}/2023/constructorStandings.json", ergast("StandingsTable", "StandingsLists", [standings])
        )
        assert await service.get_constructor_standings(2023) == standings

    @pytest.mark.asyncio
    async def test_lap_times_quotes_driver_id(self, upstream, service):
        race = {"Laps": [{"number": "1"}]}
        upstream.add(f"{ERGAST}/2023/1/drivers/max_verstappen/laps.json", ergast("RaceTable", "Races", [race]))
        assert await service.get_lap_times(2023, 1, "max_verstappen") == race
        assert query_of(upstream.requests[0]) == "limit=2000"

    @pytest.mark.asyncio
    async def test_race_calendar_returns_all_races(self, upstream, service):
        races = [{"round": "1"}, {"round": "2"}]
        upstream.add(f"{ERGAST}/2023.json", ergast("RaceTable", "Races", races))
        assert await service.get_race_calendar(2023) == races

    @pytest.mark.asyncio
    async def test_season_list_paging(self, upstream, service):
        upstream.add(f"{ERGAST}/seasons.json", ergast("SeasonTable", "Seasons", [{"season": "1950"}]))
        assert await service.get_season_list(limit=10, offset=20) == [{"season": "1950"}]
        assert query_of(upstream.requests[0]) == "limit=10&offset=20"

    @pytest.mark.asyncio
    async def test_season_list_default_has_no_offset(self, upstream, service):
        upstream.add(f"{ERGAST}/seasons.json", ergast("SeasonTable", "Seasons", []))
        await service.get_season_list()
        assert query_of(upstream.requests[0]) == "limit=100"

    @pytest.mark.asyncio
    async def test_circuit_info(self, upstream, service):
        circuit = {"circuitId": "monza", "circuitName": "Autodromo Nazionale di Monza"}
        upstream.add(f"{ERGAST}/circuits/monza.json", ergast("CircuitTable", "Circuits", [circuit]))
        assert await service.get_circuit_info("monza") == circuit

    @pytest.mark.asyncio
    async def test_constructor_information_empty_is_none(self, upstream, service):
        upstream.add(f"{ERGAST}/constructors/nobody.json", ergast("ConstructorTable", "Constructors", []))
        assert await service.get_constructor_information("nobody") is None

    @pytest.mark.asyncio
    async def test_malformed_envelope_raises(self, upstream, service):
        upstream.add(f"{ERGAST}/2023.json", {"MRData": {}})
        with pytest.raises(UpstreamPayloadError) as exc_info:
            await service.get_race_calendar(2023)
        assert "unexpected response shape" in exc_info.value.message


LAP = {
    "lap_number": 10,
    "date_start": "2023-09-03T13:20:00+00:00",
    "lap_duration": 84.5,
    "duration_sector_1": 26.9,
    "duration_sector_2": 28.1,
    "duration_sector_3": 29.5,
    "i1_speed": 300,
    "i2_speed": 310,
    "st_speed": 340,
    "is_pit_out_lap": False,
}
STINTS = [
    {"stint_number": 1, "lap_start": 1, "lap_end": 20, "compound": "MEDIUM", "tyre_age_at_start": 2},
    {"stint_number": 2, "lap_start": 21, "lap_end": 51, "compound": "HARD", "tyre_age_at_start": 0},
]
WEATHER = [
    {"date": "2023-09-03T13:00:00+00:00", "air_temperature": 27.0},
    {"date": "2023-09-03T13:19:00+00:00", "air_temperature": 28.0},
    {"date": "2023-09-03T13:25:00+00:00", "air_temperature": 29.0},
]
CAR_DATA = [
    {"speed": 300, "rpm": 11000, "throttle": 100, "drs": 12},
    {"speed": 100, "rpm": 9000, "throttle": 0, "drs": 0},
]


class TestLapAnalysis:
    """Tests for get_lap_analysis."""

    def stub(self, upstream):
        upstream.add(f"{OPENF1}/laps", [LAP])
        upstream.add(f"{OPENF1}/stints", STINTS)
        upstream.add(f"{OPENF1}/weather", WEATHER)
        upstream.add(f"{OPENF1}/car_data", CAR_DATA)

    @pytest.mark.asyncio
    async def test_combined_record(self, upstream, service):
        self.stub(upstream)
        analysis = await service.get_lap_analysis("9161", "1", 10)

        assert analysis["lap_duration"] == 84.5
        assert analysis["sectors"] == [26.9, 28.1, 29.5]
        assert analysis["speed_trap"] == {"i1": 300, "i2": 310, "st": 340}
        assert analysis["tyre"] == {"compound": "MEDIUM", "stint_number": 1, "tyre_age": 11}
        assert analysis["weather"]["air_temperature"] == 28.0
        assert analysis["telemetry"] == {
            "samples": 2,
            "max_speed": 300,
            "avg_speed": 200.0,
            "max_rpm": 11000,
            "full_throttle_pct": 50.0,
            "drs_open_samples": 1,
        }

    @pytest.mark.asyncio
    async def test_telemetry_window_matches_lap(self, upstream, service):
        self.stub(upstream)
        await service.get_lap_analysis("9161", "1", 10)
        car_request = next(r for r in upstream.requests if r.url.path == f"{OPENF1}/car_data")
        query = query_of(car_request)
        assert "date>=2023-09-03T13:20:00+00:00" in query
        assert "date<2023-09-03T13:21:24.500000+00:00" in query
        assert query.endswith("&speed>=0")

    @pytest.mark.asyncio
    async def test_one_failing_fetch_fails_the_whole_analysis(self, upstream, service):
        self.stub(upstream)
        upstream.add(f"{OPENF1}/weather", {"detail": "No results"}, status=422)
        with pytest.raises(UpstreamStatusError) as exc_info:
            await service.get_lap_analysis("9161", "1", 10)
        assert exc_info.value.status == 422

    @pytest.mark.asyncio
    async def test_missing_lap_raises_not_found(self, upstream, service):
        self.stub(upstream)
        upstream.add(f"{OPENF1}/laps", [])
        with pytest.raises(ResultNotFoundError):
            await service.get_lap_analysis("9161", "1", 99)

    @pytest.mark.asyncio
    async def test_lap_without_duration_has_no_telemetry(self, upstream, service):
        self.stub(upstream)
        upstream.add(f"{OPENF1}/laps", [{**LAP, "lap_duration": None}])
        analysis = await service.get_lap_analysis("9161", "1", 10)
        assert analysis["telemetry"] == {"samples": 0}
        assert upstream.calls_to(f"{OPENF1}/car_data") == 0

    @pytest.mark.asyncio
    async def test_requires_session_key(self, upstream, service):
        with pytest.raises(InvalidRequestError):
            await service.get_lap_analysis("", "1", 10)
        assert upstream.requests == []


class TestGatherAll:
    """Tests for gather_all."""

    @pytest.mark.asyncio
    async def test_results_in_order(self):
        async def value(v, delay):
            await asyncio.sleep(delay)
            return v

        assert await gather_all(value("a", 0.01), value("b", 0)) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_failure_cancels_remaining_fetches(self):
        started = asyncio.Event()
        cancelled = []

        async def slow():
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append("slow")
                raise

        async def failing():
            await started.wait()
            raise upstream_status_error("Failed to build lap analysis", 500)

        async def also_failing():
            await started.wait()
            raise upstream_status_error("Failed to build lap analysis", 503)

        with pytest.raises(UpstreamStatusError) as exc_info:
            await gather_all(slow(), failing(), also_failing())
        assert exc_info.value.status == 500
        assert cancelled == ["slow"]


class TestHealth:
    """Tests for health."""

    @pytest.mark.asyncio
    async def test_healthy(self, upstream, service):
        upstream.add(f"{OPENF1}/sessions", [{"session_key": 1}])
        upstream.add(f"{ERGAST}/seasons.json", ergast("SeasonTable", "Seasons", []))
        health = await service.health()
        assert health["status"] == "healthy"
        assert health["upstreams"]["openf1"]["status"] == "ok"
        assert health["upstreams"]["ergast"]["status"] == "ok"

    @pytest.mark.asyncio
    async def test_degraded_and_uncached(self, upstream, service):
        upstream.add(f"{OPENF1}/sessions", [{"session_key": 1}])
        upstream.add(f"{ERGAST}/seasons.json", {"detail": "down"}, status=503)
        health = await service.health()
        await service.health()
        assert health["status"] == "degraded"
        assert health["upstreams"]["ergast"]["error"] == "Ergast health probe: 503"
        assert upstream.calls_to(f"{OPENF1}/sessions") == 2
