class ClipvaultError(Exception):
    status_code = 500

    def __init__(self, message: str = "internal error"):
        super().__init__(message)
        self.message = message


class ValidationError(ClipvaultError):
    """Missing or malformed input. Never retried."""
    status_code = 400


class AccessDenied(ClipvaultError):
    status_code = 403

    def __init__(self, message: str = "denied"):
        super().__init__(message)


class NotFoundError(ClipvaultError):
    status_code = 404


class UpstreamError(ClipvaultError):
    """Blob store or OCR collaborator failure (including timeouts)."""
    status_code = 502
