"""Typed failures raised by stores, the dispatcher and the agent loop."""

from __future__ import annotations


class PageAgentError(Exception):
    """Base class for every failure the agent knows how to classify."""

    kind = "error"


class NotFound(PageAgentError):
    kind = "not_found"


class InvalidPath(PageAgentError):
    """A tool path escapes the tenant root or is malformed."""

    kind = "invalid_path"


class ParseFailure(PageAgentError):
    kind = "parse_failure"


class UnknownTool(PageAgentError):
    kind = "unknown_tool"


class InvalidInput(PageAgentError):
    """Tool input does not satisfy the tool's argument model."""

    kind = "invalid_input"


class UpstreamFailure(PageAgentError):
    """The content store, transcript store or language model failed."""

    kind = "upstream_failure"


class WriteConflict(PageAgentError):
    """A compare-and-swap write lost against a concurrent writer."""

    kind = "write_conflict"
