from __future__ import annotations


class CoderAgentError(RuntimeError):
    pass


class BrowserConnectionError(CoderAgentError):
    def __init__(self, message: str, *, disconnected: bool = False) -> None:
        super().__init__(message)
        self.disconnected = disconnected


class McpClientError(CoderAgentError):
    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class McpDisconnectedError(McpClientError):
    pass
