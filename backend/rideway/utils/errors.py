from rideway.services.auth_client import (
    AuthBackendError,
    AuthNetworkError,
    AuthRejectedError,
    AuthTimeoutError,
)

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please sign in again."

# Error codes returned by the backend API
CODE_MESSAGES = {
    "INVALID_TOKEN": SESSION_EXPIRED_MESSAGE,
    "SESSION_EXPIRED": SESSION_EXPIRED_MESSAGE,
    "EMAIL_NOT_VERIFIED": "Please verify your email before signing in",
    "ACCOUNT_DISABLED": "Your account has been disabled",
    "RATE_LIMITED": "Too many requests. Please wait a moment.",
    "NETWORK_ERROR": "Unable to connect to the server. Please check your connection.",
    "TIMEOUT": "The request timed out. Please try again.",
}

STATUS_MESSAGES = {
    401: "Please sign in to continue",
    403: "You do not have permission to perform this action",
    404: "The requested resource was not found",
    429: "Too many requests. Please slow down.",
    500: "An internal server error occurred. Please try again later.",
    502: "The server is temporarily unavailable. Please try again later.",
    503: "The server is temporarily unavailable. Please try again later.",
    504: "The server is temporarily unavailable. Please try again later.",
}


def message_for(code: str | None, status_code: int | None = None, fallback: str | None = None) -> str:
    if code and code in CODE_MESSAGES:
        return CODE_MESSAGES[code]
    if fallback:
        return fallback
    if status_code in STATUS_MESSAGES:
        return STATUS_MESSAGES[status_code]
    return "An error occurred"


def describe_auth_error(error: AuthBackendError) -> str:
    """
    User-facing text for a failed login.

    Rejections keep the backend's own message so distinct reasons stay
    distinct; transport failures get a retry hint.
    """
    if isinstance(error, AuthTimeoutError):
        return CODE_MESSAGES["TIMEOUT"]
    if isinstance(error, AuthNetworkError):
        return CODE_MESSAGES["NETWORK_ERROR"]
    if isinstance(error, AuthRejectedError):
        return error.message
    return message_for(error.code, error.status_code)
