"""Static MCP resources and prompts served alongside the tools."""
from typing import Dict, Optional

from mcp.types import (
    GetPromptResult,
    Prompt,
    PromptArgument,
    PromptMessage,
    Resource,
    TextContent,
)

ERROR_CODES_URI = "f1://error-codes"
TOOL_GUIDE_URI = "f1://tool-guide"

ERROR_CODES = """# Error Code Reference

Failed tool calls return an error result whose text starts with
`[Exxxx] message`, followed by a `Suggestion:` line.

## E1xxx - Validation Errors
- E1001: Invalid parameter (wrong type, out of range, bad identifier)
- E1002: Missing required argument
- E1003: Invalid request (e.g. getCarData without a sessionKey)

## E2xxx - Upstream Errors
- E2001: Upstream API unreachable or timed out
- E2002: Rate limited by the upstream API
- E2003: OpenF1 authentication failed
- E2004: Resource not found (unknown year, round or id)
- E2005: Other upstream HTTP error

## E3xxx - Dispatch Errors
- E3001: Unknown tool

## E4xxx - Data Errors
- E4001: No data for a query that must return a record
- E4002: Upstream response could not be parsed"""

TOOL_GUIDE = """# Tool Guide

## Finding a session key
Most OpenF1 tools are scoped to one session. Find its key with
`getHistoricalSessions` (e.g. year=2023, circuit_short_name="Monza",
session_name="Race") and pass it as `sessionKey`.

## Tools that need a sessionKey
- Required: `getCarData`, `getSessionDrivers`, `getLaps`, `getStints`,
  `getPositions`, `getIntervals`, `getLapAnalysis`
- Empty without one: `getTeamRadio`, `getRaceControlMessages`
- Latest session without one: `getDriverInfo`, `getWeatherData`

## Historical results (Ergast)
`getRaceCalendar` lists the rounds of a season; results, qualifying, lap
times and pit stops are addressed by `year` and `round`. Drivers,
constructors and circuits use Ergast ids such as `max_verstappen`,
`red_bull` or `monza`.

## Caching
- Live data (timing, weather, telemetry, positions): cached for seconds
- Historical data: cached for minutes
- `clearCache` drops everything"""


def list_resources() -> list[Resource]:
    """List available resources."""
    return [
        Resource(
            uri=ERROR_CODES_URI,
            name="Error Code Reference",
            description="Complete list of error codes and their meanings",
            mimeType="text/markdown",
        ),
        Resource(
            uri=TOOL_GUIDE_URI,
            name="Tool Guide",
            description="Which tools need a session key, and how long data is cached",
            mimeType="text/markdown",
        ),
    ]


def read_resource(uri: str) -> str:
    """Read a resource by URI, returning its markdown text."""
    contents = {ERROR_CODES_URI: ERROR_CODES, TOOL_GUIDE_URI: TOOL_GUIDE}
    if uri not in contents:
        raise ValueError(f"Unknown resource: {uri}")
    return contents[uri]


def list_prompts() -> list[Prompt]:
    """List available prompts."""
    return [
        Prompt(
            name="session-analysis-workflow",
            description="Step-by-step guide for analysing one F1 session",
            arguments=[
                PromptArgument(name="year", description="Season year", required=False),
                PromptArgument(name="circuit", description="Circuit short name (e.g. Monza)", required=False),
            ],
        ),
        Prompt(
            name="troubleshooting",
            description="Diagnose and resolve common issues with the F1 MCP server",
            arguments=[],
        ),
    ]


def _user_message(text: str) -> GetPromptResult:
    return GetPromptResult(
        messages=[PromptMessage(role="user", content=TextContent(type="text", text=text))]
    )


def get_prompt(name: str, arguments: Optional[Dict[str, str]] = None) -> GetPromptResult:
    """Get a prompt by name."""
    arguments = arguments or {}
    if name == "session-analysis-workflow":
        year = arguments.get("year", "2023")
        circuit = arguments.get("circuit", "Monza")
        return _user_message(f"""# Session Analysis Workflow

## Step 1: Find the session
```
getHistoricalSessions(year={year}, circuit_short_name="{circuit}", session_name="Race")
```
Note the `session_key` of the result.

## Step 2: Who took part
Use `getSessionDrivers` with that sessionKey to map car numbers to drivers.

## Step 3: Race story
- `getLaps` and `getStints` for pace and tyre strategy
- `getPitStopData` for pit lane visits
- `getRaceControlMessages` for flags and penalties
- `getWeatherData` for conditions

## Step 4: Drill into one lap
`getLapAnalysis(sessionKey, driverNumber, lapNumber)` combines lap times,
tyre, weather and a telemetry summary.

## Step 5: Official classification
`getRaceCalendar(year={year})` gives the round number, then
`getHistoricRaceResults(year={year}, round=...)`.""")

    if name == "troubleshooting":
        return _user_message("""# Troubleshooting Guide

## Check Server Health First
Run `healthCheck` to probe both upstream APIs.

## Common Issues
- **Empty results with a message**: the query matched nothing. Live tools
  only return data during a session; check the sessionKey with
  `getHistoricalSessions`.
- **E1003**: a sessionKey is required (e.g. `getCarData`).
- **E2002**: rate limited. Wait 60 seconds and retry.
- **E2004 / E4001**: the year, round or id does not exist. Browse with
  `getSeasonList`, `getRaceCalendar` or `getCircuits`.
- **E2001**: the upstream API is unreachable. Retry later.

## Still Having Issues?
1. Check logs (set F1_MCP_LOG_LEVEL=DEBUG)
2. Clear cache with `clearCache`
3. Inspect `getMetrics` for upstream error counts""")

    raise ValueError(f"Unknown prompt: {name}")
