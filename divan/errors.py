"""Custom error classes for the Divan client."""


class DivanError(Exception):
    """Base exception for Divan operations."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


class RequestError(DivanError):
    """Raised when a request cannot be built (bad URL, header or schema)."""

    def __init__(self, message: str):
        super().__init__(0, message)


class ConnectionError(DivanError):
    """Raised when connection to the database server fails."""

    def __init__(self, message: str):
        super().__init__(0, message)


class HTTPStatusError(DivanError):
    """Raised when the server answers with an unexpected status."""

    def __init__(self, status: int, reason: str, method: str, url: str):
        self.status = status
        self.reason = reason
        self.method = method
        self.url = url
        super().__init__(status, f"{method} {url}: HTTP status = '{status} {reason}'")


class ConflictError(HTTPStatusError):
    """Raised when a write is rejected because its revision is stale."""


class NotFoundError(DivanError):
    """Raised when a document, view or database does not exist."""

    def __init__(self, message: str):
        super().__init__(404, message)


class ResponseBodyError(DivanError):
    """Raised when the response body cannot be read."""

    def __init__(self, message: str):
        super().__init__(0, message)


class EncodeError(DivanError):
    """Raised when a document cannot be serialized to a JSON object."""

    def __init__(self, message: str):
        super().__init__(0, message)


class DecodeError(DivanError):
    """Raised when a response body cannot be decoded."""

    def __init__(self, message: str):
        super().__init__(0, message)
