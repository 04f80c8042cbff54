"""Error taxonomy for the planner.

Gateway and initial-search failures abort a run; tool and per-URL failures are
absorbed and folded back into the conversation as text.
"""
from __future__ import annotations


class PlannerError(Exception):
    """Base class for all planner errors."""


class ConfigurationError(PlannerError):
    """Required configuration (the provider credential) is missing."""


class ProviderError(PlannerError):
    """The completion or search provider answered with a failure."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(PlannerError):
    """A provider response body does not have the expected shape."""


class ToolDispatchError(PlannerError):
    """A tool call emitted by the model could not be executed."""


class MalformedToolArguments(ToolDispatchError):
    """Tool-call arguments are not a JSON object."""


class MissingRequiredArgument(ToolDispatchError):
    def __init__(self, argument: str, tool_name: str):
        super().__init__(f"missing {argument} in {tool_name} function")
        self.argument = argument
        self.tool_name = tool_name


class PerUrlFetchFailure(PlannerError):
    """One scrape target was unreachable or unparsable."""

    def __init__(self, url: str, cause: str):
        super().__init__(f"Failed to fetch {url}: {cause}")
        self.url = url
        self.cause = cause
