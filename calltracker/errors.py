from typing import Optional


# ----------------------------
# Error taxonomy
# ----------------------------
class AppError(Exception):
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ClientError(AppError):
    status_code = 400
    default_message = "Bad request"


class PayloadTooLarge(ClientError):
    status_code = 413
    default_message = "Request body too large"


class ConfigError(AppError):
    default_message = "Missing configuration"


class UpstreamError(AppError):
    default_message = "Upstream request failed"


def error_body(message: str) -> dict:
    return {"ok": False, "error": message}
