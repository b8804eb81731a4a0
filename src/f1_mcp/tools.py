"""Tool dispatch surface.

Every tool is declared once as a ``ToolDefinition``; the advertised tool
list and the dispatch table are both generated from the same registry, so
a tool can never be advertised without a handler or the other way round.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp.types import TextContent, Tool

from f1_mcp.errors import unknown_tool_error
from f1_mcp.metrics import MetricsCollector, TimedOperation
from f1_mcp.service import F1DataService
from f1_mcp.validation import validate_arguments, validate_identifier, validate_year

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]

DEFAULT_EMPTY_MESSAGE = "No data found for this query."
DEFAULT_SUGGESTION = "Check the parameters and try again."


@dataclass(frozen=True)
class ToolDefinition:
    """A tool's declaration together with its handler."""

    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: Handler
    empty_message: str = DEFAULT_EMPTY_MESSAGE
    suggestion: str = DEFAULT_SUGGESTION

    def to_tool(self) -> Tool:
        return Tool(name=self.name, description=self.description, inputSchema=self.input_schema)


def _is_empty(payload: Any) -> bool:
    return payload is None or (isinstance(payload, (list, dict)) and not payload)


def to_content(
    payload: Any,
    empty_message: str = DEFAULT_EMPTY_MESSAGE,
    suggestion: str = DEFAULT_SUGGESTION,
) -> List[TextContent]:
    """
    Serialize a tool result as exactly one text content block.

    Empty results (None, [], {}) are wrapped with an explanatory message so
    that the client never receives a blank response.
    """
    if _is_empty(payload):
        payload = {"message": empty_message, "suggestion": suggestion, "data": payload}
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


class ToolRegistry:
    """Name -> ToolDefinition table with validated, timed dispatch."""

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self._tools: Dict[str, ToolDefinition] = {}
        self._metrics = metrics or MetricsCollector(enabled=False)

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def names(self) -> List[str]:
        return list(self._tools)

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def list_tools(self) -> List[Tool]:
        return [tool.to_tool() for tool in self._tools.values()]

    async def dispatch(self, name: str, arguments: Optional[Dict[str, Any]]) -> List[TextContent]:
        """
        Validate arguments, run the tool's handler and serialize its result.

        Raises:
            UnknownToolError: If no tool is registered under ``name``
            ArgumentValidationError: If the arguments do not fit the schema
            F1MCPError: Any error raised by the data service
        """
        tool = self._tools.get(name)
        if tool is None:
            logger.warning(f"Unknown tool called: {name}")
            raise unknown_tool_error(name)

        logger.info(f"Tool call: {name} with arguments: {arguments}")
        with TimedOperation(self._metrics, name):
            cleaned = validate_arguments(tool.input_schema, arguments)
            result = await tool.handler(cleaned)
        return to_content(result, tool.empty_message, tool.suggestion)


# ----------------------------------------------------------------------
# shared parameter declarations
# ----------------------------------------------------------------------

YEAR = {"type": "integer", "description": "Season year (e.g. 2023)", "minimum": 1950}
ROUND = {"type": "integer", "description": "Round number within the season (1-based)", "minimum": 1}
SESSION_KEY = {
    "type": "string",
    "description": "OpenF1 session key (e.g. '9158'). Use getHistoricalSessions to find one.",
}
DRIVER_NUMBER = {"type": "string", "description": "Car number (e.g. '1', '44')"}
DRIVER_ID = {"type": "string", "description": "Ergast driver id (e.g. 'hamilton', 'max_verstappen')"}

NO_SESSION_SUGGESTION = (
    "Use getHistoricalSessions to find a valid session key, or check whether a session is running."
)
NO_ERGAST_SUGGESTION = "Check the year and round. Use getRaceCalendar to list the rounds of a season."


def _schema(properties: Dict[str, Any], required: Optional[List[str]] = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {
        "type": "object",
        "properties": properties,
        "additionalProperties": False,
    }
    if required:
        schema["required"] = required
    return schema


def _year(arguments: Dict[str, Any]) -> int:
    validate_year(arguments["year"])
    return arguments["year"]


def _identifier(arguments: Dict[str, Any], name: str) -> str:
    validate_identifier(arguments[name], name)
    return arguments[name]


def build_registry(service: F1DataService, metrics: MetricsCollector) -> ToolRegistry:
    """Declare every tool of the server against one data service."""
    registry = ToolRegistry(metrics)

    def tool(name, description, properties, handler, required=None, **messages):
        registry.register(
            ToolDefinition(
                name=name,
                description=description,
                input_schema=_schema(properties, required),
                handler=handler,
                **messages,
            )
        )

    # OpenF1: sessions and meetings

    tool(
        "getHistoricalSessions",
        "Find historical F1 sessions (and their session keys) by year, circuit, session name, country or location",
        {
            "year": YEAR,
            "circuit_short_name": {"type": "string", "description": "Circuit short name (e.g. 'Monza', 'Spa-Francorchamps')"},
            "session_name": {"type": "string", "description": "Session name (e.g. 'Race', 'Qualifying', 'Practice 1')"},
            "country_name": {"type": "string", "description": "Country name (e.g. 'Italy')"},
            "location": {"type": "string", "description": "Location (e.g. 'Monza')"},
            "session_key": {"type": "string", "description": "Exact session key"},
        },
        lambda a: service.get_historical_sessions(
            year=a.get("year"),
            circuit_short_name=a.get("circuit_short_name"),
            session_name=a.get("session_name"),
            country_name=a.get("country_name"),
            location=a.get("location"),
            session_key=a.get("session_key"),
        ),
        empty_message="No sessions match these filters.",
        suggestion="Loosen the filters, e.g. search by year only.",
    )
    tool(
        "getMeetings",
        "List Grand Prix weekends (meetings) with their meeting keys",
        {"year": YEAR, "country_name": {"type": "string", "description": "Country name (e.g. 'Monaco')"}},
        lambda a: service.get_meetings(year=a.get("year"), country_name=a.get("country_name")),
        empty_message="No meetings found.",
    )
    tool(
        "getLiveTimingData",
        "Get lap timing of the latest (or currently running) session",
        {},
        lambda a: service.get_live_timing_data(),
        empty_message="No live timing data available.",
        suggestion="Live data is only available during an active session.",
    )
    tool(
        "getCurrentSessionStatus",
        "Get the latest (or currently running) session",
        {},
        lambda a: service.get_current_session_status(),
        empty_message="No active session.",
        suggestion="Live data is only available during a race weekend.",
    )

    # OpenF1: session-scoped data

    tool(
        "getDriverInfo",
        "Get driver details (name, team, acronym) by car number, in a session or the latest one",
        {"driverId": DRIVER_NUMBER, "sessionKey": SESSION_KEY},
        lambda a: service.get_driver_info(a["driverId"], a.get("sessionKey")),
        required=["driverId"],
        empty_message="No driver found with this car number.",
        suggestion=NO_SESSION_SUGGESTION,
    )
    tool(
        "getSessionDrivers",
        "List all drivers taking part in a session",
        {"sessionKey": SESSION_KEY},
        lambda a: service.get_session_drivers(a["sessionKey"]),
        required=["sessionKey"],
        empty_message="No drivers found for this session.",
        suggestion=NO_SESSION_SUGGESTION,
    )
    tool(
        "getWeatherData",
        "Get weather readings (air/track temperature, humidity, rain, wind) for a session",
        {"sessionKey": SESSION_KEY},
        lambda a: service.get_weather_data(a.get("sessionKey")),
        empty_message="No weather data available for this session.",
        suggestion=NO_SESSION_SUGGESTION,
    )
    tool(
        "getCarData",
        "Get car telemetry (speed, rpm, gear, throttle, brake, DRS) for a driver in a session",
        {
            "driverNumber": DRIVER_NUMBER,
            "sessionKey": SESSION_KEY,
            "filters": {
                "type": "string",
                "description": "Extra OpenF1 filters joined by '&' (e.g. 'speed>=300&n_gear<=7')",
            },
        },
        lambda a: service.get_car_data(a["driverNumber"], a.get("sessionKey"), a.get("filters")),
        required=["driverNumber"],
        empty_message="No car telemetry found for this query.",
        suggestion=NO_SESSION_SUGGESTION,
    )
    tool(
        "getPitStopData",
        "Get pit lane visits with pit duration for a session",
        {"sessionKey": SESSION_KEY, "driverNumber": DRIVER_NUMBER},
        lambda a: service.get_pit_stop_data(a.get("sessionKey"), a.get("driverNumber")),
        empty_message="No pit stops found.",
        suggestion=NO_SESSION_SUGGESTION,
    )
    tool(
        "getTeamRadio",
        "Get team radio recordings for a session",
        {"sessionKey": SESSION_KEY, "driverNumber": DRIVER_NUMBER},
        lambda a: service.get_team_radio(a.get("sessionKey"), a.get("driverNumber")),
        empty_message="No team radio messages found.",
        suggestion="Team radio requires a sessionKey. " + NO_SESSION_SUGGESTION,
    )
    tool(
        "getRaceControlMessages",
        "Get race control messages (flags, safety car, penalties) for a session",
        {"sessionKey": SESSION_KEY},
        lambda a: service.get_race_control_messages(a.get("sessionKey")),
        empty_message="No race control messages found.",
        suggestion="Race control messages require a sessionKey. " + NO_SESSION_SUGGESTION,
    )
    tool(
        "getLaps",
        "Get lap times, sector times and speed traps for a session",
        {
            "sessionKey": SESSION_KEY,
            "driverNumber": DRIVER_NUMBER,
            "lapNumber": {"type": "integer", "description": "Lap number", "minimum": 1},
        },
        lambda a: service.get_laps(a["sessionKey"], a.get("driverNumber"), a.get("lapNumber")),
        required=["sessionKey"],
        empty_message="No laps found.",
        suggestion=NO_SESSION_SUGGESTION,
    )
    tool(
        "getStints",
        "Get tyre stints (compound, lap range, tyre age) for a session",
        {"sessionKey": SESSION_KEY, "driverNumber": DRIVER_NUMBER},
        lambda a: service.get_stints(a["sessionKey"], a.get("driverNumber")),
        required=["sessionKey"],
        empty_message="No tyre stints found.",
        suggestion=NO_SESSION_SUGGESTION,
    )
    tool(
        "getPositions",
        "Get track position changes during a session",
        {"sessionKey": SESSION_KEY, "driverNumber": DRIVER_NUMBER},
        lambda a: service.get_positions(a["sessionKey"], a.get("driverNumber")),
        required=["sessionKey"],
        empty_message="No position data found.",
        suggestion=NO_SESSION_SUGGESTION,
    )
    tool(
        "getIntervals",
        "Get gaps to the leader and to the car ahead during a race",
        {"sessionKey": SESSION_KEY, "driverNumber": DRIVER_NUMBER},
        lambda a: service.get_intervals(a["sessionKey"], a.get("driverNumber")),
        required=["sessionKey"],
        empty_message="No interval data found.",
        suggestion="Intervals are only published for races. " + NO_SESSION_SUGGESTION,
    )
    tool(
        "getLapAnalysis",
        "Analyse one lap of one driver: lap and sector times, speed traps, tyre, weather and telemetry summary",
        {
            "sessionKey": SESSION_KEY,
            "driverNumber": DRIVER_NUMBER,
            "lapNumber": {"type": "integer", "description": "Lap number", "minimum": 1},
        },
        lambda a: service.get_lap_analysis(a["sessionKey"], a["driverNumber"], a["lapNumber"]),
        required=["sessionKey", "driverNumber", "lapNumber"],
    )

    # Ergast: results and standings

    tool(
        "getHistoricRaceResults",
        "Get the classified results of a historical race",
        {"year": YEAR, "round": ROUND},
        lambda a: service.get_historic_race_results(_year(a), a["round"]),
        required=["year", "round"],
        suggestion=NO_ERGAST_SUGGESTION,
    )
    tool(
        "getDriverStandings",
        "Get the drivers' championship standings for a season",
        {"year": YEAR},
        lambda a: service.get_driver_standings(_year(a)),
        required=["year"],
    )
    tool(
        "getConstructorStandings",
        "Get the constructors' championship standings for a season",
        {"year": YEAR},
        lambda a: service.get_constructor_standings(_year(a)),
        required=["year"],
    )
    tool(
        "getLapTimes",
        "Get every lap time of one driver in a historical race",
        {"year": YEAR, "round": ROUND, "driverId": DRIVER_ID},
        lambda a: service.get_lap_times(_year(a), a["round"], _identifier(a, "driverId")),
        required=["year", "round", "driverId"],
        suggestion=NO_ERGAST_SUGGESTION,
    )
    tool(
        "getQualifyingResults",
        "Get qualifying results (Q1, Q2, Q3 times) of a historical race weekend",
        {"year": YEAR, "round": ROUND},
        lambda a: service.get_qualifying_results(_year(a), a["round"]),
        required=["year", "round"],
        suggestion=NO_ERGAST_SUGGESTION,
    )
    tool(
        "getRacePitStops",
        "Get pit stops (lap, stop number, duration) of a historical race",
        {"year": YEAR, "round": ROUND},
        lambda a: service.get_race_pit_stops(_year(a), a["round"]),
        required=["year", "round"],
        suggestion="Pit stop data is available from 2012 onward. " + NO_ERGAST_SUGGESTION,
    )

    # Ergast: calendars and reference data

    tool(
        "getRaceCalendar",
        "Get the race calendar of a season",
        {"year": YEAR},
        lambda a: service.get_race_calendar(_year(a)),
        required=["year"],
        empty_message="No races found for this season.",
    )
    tool(
        "getSeasonList",
        "List championship seasons",
        {
            "limit": {"type": "integer", "description": "Maximum number of seasons", "minimum": 1, "maximum": 1000, "default": 100},
            "offset": {"type": "integer", "description": "Number of seasons to skip", "minimum": 0, "default": 0},
        },
        lambda a: service.get_season_list(a["limit"], a["offset"]),
    )
    tool(
        "getSeasonDrivers",
        "List the drivers who raced in a season",
        {"year": YEAR},
        lambda a: service.get_season_drivers(_year(a)),
        required=["year"],
    )
    tool(
        "getSeasonConstructors",
        "List the constructors that raced in a season",
        {"year": YEAR},
        lambda a: service.get_season_constructors(_year(a)),
        required=["year"],
    )
    tool(
        "getCircuits",
        "List F1 circuits",
        {"limit": {"type": "integer", "description": "Maximum number of circuits", "minimum": 1, "maximum": 1000, "default": 100}},
        lambda a: service.get_circuits(a["limit"]),
    )
    tool(
        "getCircuitInfo",
        "Get circuit details (name, location, coordinates) by circuit id",
        {"circuitId": {"type": "string", "description": "Ergast circuit id (e.g. 'monza', 'silverstone')"}},
        lambda a: service.get_circuit_info(_identifier(a, "circuitId")),
        required=["circuitId"],
        empty_message="No circuit found with this id.",
        suggestion="Use getCircuits to list valid circuit ids.",
    )
    tool(
        "getDriverInformation",
        "Get driver biography (name, nationality, date of birth) by driver id",
        {"driverId": DRIVER_ID},
        lambda a: service.get_driver_information(_identifier(a, "driverId")),
        required=["driverId"],
        empty_message="No driver found with this id.",
        suggestion="Use getSeasonDrivers to list valid driver ids.",
    )
    tool(
        "getConstructorInformation",
        "Get constructor details (name, nationality) by constructor id",
        {"constructorId": {"type": "string", "description": "Ergast constructor id (e.g. 'ferrari', 'red_bull')"}},
        lambda a: service.get_constructor_information(_identifier(a, "constructorId")),
        required=["constructorId"],
        empty_message="No constructor found with this id.",
        suggestion="Use getSeasonConstructors to list valid constructor ids.",
    )

    # Utility

    async def clear_cache(arguments: Dict[str, Any]) -> Dict[str, Any]:
        service.clear_cache()
        logger.info("Cache cleared")
        return {"success": True, "message": "Cache cleared successfully"}

    async def get_metrics(arguments: Dict[str, Any]) -> Dict[str, Any]:
        summary = metrics.get_summary()
        if arguments["reset"]:
            metrics.reset()
            summary["reset"] = True
        return summary

    tool("clearCache", "Clear all cached upstream responses", {}, clear_cache)
    tool(
        "getMetrics",
        "Get server metrics: tool call counts and latencies, cache hit rate, upstream calls",
        {"reset": {"type": "boolean", "description": "Reset metrics after reading", "default": False}},
        get_metrics,
    )
    tool(
        "healthCheck",
        "Check connectivity to the OpenF1 and Ergast APIs",
        {},
        lambda a: service.health(),
    )

    return registry
