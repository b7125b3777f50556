class ShoppingAgentError(Exception):
    """Base class for failures that make an ``ask`` unanswerable."""


class ConfigurationError(ShoppingAgentError):
    pass


class UnrecognizedToolError(ShoppingAgentError):
    def __init__(self, name: str):
        super().__init__(f"Unrecognized tool: {name!r}")
        self.name = name


class MalformedArgumentsError(ShoppingAgentError):
    def __init__(self, tool: str, detail: str):
        super().__init__(f"Malformed arguments for {tool}: {detail}")
        self.tool = tool
        self.detail = detail


class BackendUnavailableError(ShoppingAgentError):
    """The backend round-trip failed after all retries."""


class MaxRoundsExceededError(ShoppingAgentError):
    def __init__(self, max_rounds: int):
        super().__init__(f"Max rounds ({max_rounds}) exceeded without a final answer")
        self.max_rounds = max_rounds
