from __future__ import annotations


class AIError(Exception):
    pass


class ProviderError(AIError):
    """A single provider call failed (transport, HTTP status or empty response)."""

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        retryable: bool = True,
        timeout: bool = False,
        status_code: int | None = None,
    ) -> None:
        self.provider: str = provider
        self.retryable: bool = retryable
        self.timeout: bool = timeout
        self.status_code: int | None = status_code
        super().__init__(f"{provider}: {message}")


class InvalidJSON(AIError):
    def __init__(self, message: str) -> None:
        super().__init__(f"invalid json response: {message}")


class NoProvidersAvailable(AIError):
    def __init__(self, task: str) -> None:
        self.task: str = task
        super().__init__(f"no available providers for task {task}")


class AllProvidersFailed(AIError):
    def __init__(self, last_error: Exception) -> None:
        self.last_error: Exception = last_error
        super().__init__(f"all ai providers failed, last error: {last_error}")


class ConfigNotFound(AIError):
    def __init__(self, task: str) -> None:
        self.task: str = task
        super().__init__(f"no ai config found for task {task} or default")
