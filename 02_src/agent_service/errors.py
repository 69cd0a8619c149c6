"""Error taxonomy for the agent service.

Every error carries a machine-readable ``code`` so HTTP handlers and run
events can report it without string matching. Tool-related errors are
recovered inside the run loop; gateway and budget errors end the run.
"""


class AgentServiceError(Exception):
    """Base exception for the agent service."""

    code = "internal_error"

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ValidationError(AgentServiceError):
    """Malformed request, rejected before a run exists."""

    code = "validation_error"


class InvalidTransition(AgentServiceError):
    """A run was asked to move to a state it cannot reach."""

    code = "invalid_transition"


class ToolError(AgentServiceError):
    """Base for tool-related failures (non-fatal to a run)."""

    code = "tool_error"


class ToolInvocationError(ToolError):
    """A tool call failed, timed out, or its provider returned garbage."""

    code = "tool_invocation_error"


class InvalidArguments(ToolInvocationError):
    """Tool arguments were not valid JSON."""

    code = "invalid_arguments"


class ToolRoutingError(ToolError):
    """A function name could not be routed to a provider tool."""

    code = "tool_routing_error"


class ProviderUnavailable(ToolError):
    """A tool provider could not be connected or reconnected."""

    code = "provider_unavailable"


class ModelGatewayError(AgentServiceError):
    """The completion service failed or timed out (fatal to a run)."""

    code = "model_gateway_error"


class StepBudgetExceeded(AgentServiceError):
    """The tool-calling loop ran out of rounds (fatal to a run)."""

    code = "step_budget_exceeded"
