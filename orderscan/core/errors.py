"""Error taxonomy for the upload -> classify -> extract flow.

Every error carries the message shown to the client and a short action the
user can take, so handlers never return a bare status code.
"""


class OrderScanError(Exception):
    status_code = 500
    error = "Internal server error"
    action = "Share the server logs with the system administrator."

    def __init__(self, error: str | None = None, action: str | None = None):
        if error is not None:
            self.error = error
        if action is not None:
            self.action = action
        super().__init__(self.error)

    def to_dict(self) -> dict:
        return {"error": self.error, "action": self.action}


class ConfigurationError(OrderScanError):
    status_code = 500
    error = "Server misconfiguration: API_SECRET is missing"
    action = "Ask the system administrator to set the API_SECRET environment variable."


class InvalidUploadError(OrderScanError):
    status_code = 400
    error = "Invalid upload"
    action = "Check the request body and try again."


class FileTooLargeError(OrderScanError):
    status_code = 413
    error = "File too large"
    action = "Compress the file or try a smaller scan."

    def __init__(self, size_bytes: int = 0, limit_bytes: int = 0, **kwargs):
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(**kwargs)


class TokenAuthenticationError(OrderScanError):
    status_code = 401
    error = "fileId signature verification failed or expired"
    action = "Upload the file again to get a new fileId."

    def __init__(self, reason: str = "invalid", **kwargs):
        self.reason = reason
        super().__init__(**kwargs)


class TokenExpiredError(TokenAuthenticationError):
    """Authentic token whose embedded timestamp is past its lifetime."""

    def __init__(self, file_id: str, **kwargs):
        self.file_id = file_id
        super().__init__(reason="expired", **kwargs)


class FileCacheExpiredError(OrderScanError):
    status_code = 410
    error = "File cache expired"
    action = "Re-upload the file; cached uploads are kept for a few minutes only."


class VisionServiceError(OrderScanError):
    status_code = 502
    error = "Document analysis failed"
    action = "Wait a moment and retry. Contact the administrator if it keeps failing."
