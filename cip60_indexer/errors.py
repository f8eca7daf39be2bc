from typing import Any, Optional


class IndexerError(Exception):
    pass


class StartupError(IndexerError):
    pass


class ConnectFailed(IndexerError, ConnectionError):
    pass


class ConnectionNotReady(IndexerError, ConnectionError):
    pass


class ConnectionLost(IndexerError, ConnectionError):
    pass


class RequestTimeout(IndexerError, TimeoutError):
    def __init__(self, method: str, request_id: str, timeout: float):
        super().__init__(f"{method} request {request_id} timed out after {timeout}s")
        self.method = method
        self.request_id = request_id
        self.timeout = timeout


class DuplicateRequestId(IndexerError):
    pass


class RemoteError(IndexerError):
    def __init__(self, method: str, error: Any):
        if isinstance(error, dict):
            code = error.get("code")
            message = error.get("message") or "remote error"
            data = error.get("data")
        else:
            code, message, data = None, str(error), None
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code: Optional[int] = code
        self.message = message
        self.data = data


class IntersectionNotFound(IndexerError):
    pass


class StorageError(IndexerError):
    pass


class MalformedResponse(IndexerError):
    pass
