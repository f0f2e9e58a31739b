"""Exception types shared across the sync service."""

# Graph error codes that signal throttling rather than a bad request
GRAPH_THROTTLE_CODES = {4, 17, 32, 613, 80000, 80003, 80004}
GRAPH_AUTH_CODES = {102, 190}


class ConfigurationError(RuntimeError):
    """Required configuration is missing or invalid. Fatal at startup."""


class GraphAPIError(Exception):
    """Error returned by (or while talking to) the Meta Graph API.

    ``status`` is the HTTP status, or 0 for network failures and timeouts.
    ``code`` is the Graph ``error.code`` when the response carried one.
    """

    def __init__(self, message: str, status: int, code: int | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.details = details or {}

    @property
    def is_auth_error(self) -> bool:
        return self.status in (401, 403) or self.code in GRAPH_AUTH_CODES

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429 or self.code in GRAPH_THROTTLE_CODES

    @property
    def is_retryable(self) -> bool:
        return self.status in (0, 408, 429) or self.status >= 500

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "status": self.status,
            "code": self.code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"GraphAPIError(status={self.status}, code={self.code}, message={self.message!r})"
