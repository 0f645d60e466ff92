"""Custom exceptions for Loopwright."""


class LoopwrightError(Exception):
    """Base exception for Loopwright."""

    pass


class ConfigurationError(LoopwrightError):
    """Configuration-related errors."""

    pass


class AgentError(LoopwrightError):
    """Agent turn errors."""

    pass


class AgentTerminatedError(AgentError):
    """Turn attempted after the agent reached its terminal state."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or (
                "This agent has completed its tasks. It will not accept any more messages. "
                "Call clear_state() to start over with the same goals."
            )
        )


class BudgetExceededError(AgentError):
    """Assembled prompt leaves no room for a reply."""

    def __init__(self, token_count: int, token_limit: int):
        super().__init__(
            f"Token limit of {token_limit} exceeded: prompt needs {token_count} tokens"
        )
        self.token_count = token_count
        self.token_limit = token_limit


class LLMError(LoopwrightError):
    """LLM-related errors."""

    pass


class TransportError(LLMError):
    """Chat transport errors (rate limit, context length, server error)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_type: str | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.error_code = error_code


class RateLimitError(TransportError):
    """Provider rejected the request with HTTP 429."""

    pass


class ContextLengthExceededError(TransportError):
    """Provider rejected the request because the prompt is too long."""

    pass


class EmbeddingError(LoopwrightError):
    """Embedding transport errors."""

    pass


class ToolError(LoopwrightError):
    """Tool execution errors."""

    pass


class ToolUnavailableError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(
            f'The command "{tool_name}" is not available. Please choose a different command.'
        )
        self.tool_name = tool_name


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f'Command "{tool_name}" failed with error: {message}')
        self.tool_name = tool_name
