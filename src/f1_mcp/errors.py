"""Structured error handling module for the F1 MCP server."""
from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(Enum):
    """Error codes for categorizing MCP server errors."""

    # Validation Errors (E1xxx)
    E1001_INVALID_PARAMETER = "E1001"
    E1002_MISSING_PARAMETER = "E1002"
    E1003_INVALID_REQUEST = "E1003"

    # Upstream Errors (E2xxx)
    E2001_UPSTREAM_UNAVAILABLE = "E2001"
    E2002_RATE_LIMITED = "E2002"
    E2003_AUTH_FAILED = "E2003"
    E2004_NOT_FOUND = "E2004"
    E2005_UPSTREAM_STATUS = "E2005"

    # Dispatch Errors (E3xxx)
    E3001_UNKNOWN_TOOL = "E3001"

    # Data Errors (E4xxx)
    E4001_NO_DATA = "E4001"
    E4002_PARSE_ERROR = "E4002"


class F1MCPError(Exception):
    """Base error with code, message, and recovery suggestion."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.details = details
        self.recoverable = recoverable

    def to_response(self) -> str:
        """Render the error as the text of an error tool result."""
        lines = [f"[{self.code.value}] {self.message}", f"Suggestion: {self.suggestion}"]
        if self.details:
            lines.append("Details: " + ", ".join(f"{key}={value}" for key, value in self.details.items()))
        if not self.recoverable:
            lines.append("Retrying will not help until the server configuration is fixed.")
        return "\n".join(lines)


class UpstreamTransportError(F1MCPError):
    """Network-level failure reaching an upstream API. Carries no status."""

    status: Optional[int] = None

    def __init__(self, label: str, reason: Optional[str] = None):
        super().__init__(
            code=ErrorCode.E2001_UPSTREAM_UNAVAILABLE,
            message=f"{label}: Unknown error",
            suggestion="The upstream F1 data API could not be reached. Wait a moment and try again.",
            details={"error": reason} if reason else None,
        )
        self.label = label


class UpstreamStatusError(F1MCPError):
    """Upstream responded with a non-2xx status."""

    def __init__(self, label: str, status: int, code: ErrorCode = ErrorCode.E2005_UPSTREAM_STATUS,
                 suggestion: str = "Check the parameters and try again.", recoverable: bool = True):
        super().__init__(
            code=code,
            message=f"{label}: {status}",
            suggestion=suggestion,
            details={"status": status},
            recoverable=recoverable,
        )
        self.label = label
        self.status = status


class UpstreamPayloadError(F1MCPError):
    """Upstream body could not be decoded or has an unexpected shape."""


class ResultNotFoundError(F1MCPError):
    """A lookup that must produce a record produced none."""


class InvalidRequestError(F1MCPError):
    """A required parameter is missing; raised before any network call."""


class ArgumentValidationError(F1MCPError):
    """Tool arguments do not satisfy the declared parameter schema."""


class UnknownToolError(F1MCPError):
    """Dispatch received a tool name with no registered handler."""


# Pre-built error factories
def upstream_status_error(label: str, status: int) -> UpstreamStatusError:
    """Create the error for a non-2xx upstream response, specialized by status."""
    if status == 429:
        return UpstreamStatusError(
            label, status,
            code=ErrorCode.E2002_RATE_LIMITED,
            suggestion="The upstream API is rate limiting requests. Wait 60 seconds before retrying.",
        )
    if status in (401, 403):
        return UpstreamStatusError(
            label, status,
            code=ErrorCode.E2003_AUTH_FAILED,
            suggestion="Check OPENF1_USERNAME and OPENF1_PASSWORD.",
            recoverable=False,
        )
    if status == 404:
        return UpstreamStatusError(
            label, status,
            code=ErrorCode.E2004_NOT_FOUND,
            suggestion="Verify the year, round, or identifier exists. Use getRaceCalendar or getSeasonList to browse.",
        )
    return UpstreamStatusError(label, status)


def parse_error(label: str, reason: str) -> UpstreamPayloadError:
    """Create an error for an undecodable or malformed upstream payload."""
    return UpstreamPayloadError(
        code=ErrorCode.E4002_PARSE_ERROR,
        message=f"{label}: unexpected response shape",
        suggestion="The upstream API returned data in an unexpected format. Try again later.",
        details={"reason": reason},
    )


def not_found_error(label: str, query: str) -> ResultNotFoundError:
    """Create an error for an empty result where one record is required."""
    return ResultNotFoundError(
        code=ErrorCode.E4001_NO_DATA,
        message=f"{label}: no result for {query}",
        suggestion="Check that the season and round exist. Use getRaceCalendar to list the rounds of a season.",
        details={"query": query},
    )


def missing_parameter_error(param: str, tool_hint: str) -> InvalidRequestError:
    """Create an error for a required parameter that was not supplied."""
    return InvalidRequestError(
        code=ErrorCode.E1003_INVALID_REQUEST,
        message=f"{param} is required",
        suggestion=tool_hint,
        details={"parameter": param},
    )


def validation_error(param: str, message: str, suggestion: str) -> ArgumentValidationError:
    """Create a validation error for an invalid parameter."""
    return ArgumentValidationError(
        code=ErrorCode.E1001_INVALID_PARAMETER,
        message=f"Invalid {param}: {message}",
        suggestion=suggestion,
        details={"parameter": param},
    )


def required_argument_error(param: str) -> ArgumentValidationError:
    """Create a validation error for a missing required tool argument."""
    return ArgumentValidationError(
        code=ErrorCode.E1002_MISSING_PARAMETER,
        message=f"Missing required argument: {param}",
        suggestion=f"Provide '{param}' and try again.",
        details={"parameter": param},
    )


def unknown_tool_error(name: str) -> UnknownToolError:
    """Create an error for a tool name with no registered handler."""
    return UnknownToolError(
        code=ErrorCode.E3001_UNKNOWN_TOOL,
        message=f"Unknown tool: {name}",
        suggestion="List the available tools and call one of the advertised names.",
        details={"tool": name},
    )


def auth_error(reason: str) -> UpstreamStatusError:
    """Create an error for failed OpenF1 authentication."""
    error = upstream_status_error("OpenF1 authentication failed", 401)
    error.details = {"status": 401, "reason": reason}
    return error
