"""Usage error helpers.

Providers never raise: every failure becomes a ``UsageError`` on the
snapshot. Callers branch on the error's classification only.
"""

from typing import Optional

from ..models.usage import UsageError, UsageErrorCode


EXPECTED_MISSING_DATA_CODES = frozenset({
    UsageErrorCode.NO_CREDENTIALS,
    UsageErrorCode.NO_CLI,
    UsageErrorCode.NOT_LOGGED_IN,
})


def create_error(code: UsageErrorCode, message: str, http_status: Optional[int] = None) -> UsageError:
    return UsageError(code=code, message=message, http_status=http_status)


def no_credentials() -> UsageError:
    return create_error(UsageErrorCode.NO_CREDENTIALS, "No credentials found")


def no_cli(cli_name: str) -> UsageError:
    return create_error(UsageErrorCode.NO_CLI, f"{cli_name} CLI not found")


def not_logged_in() -> UsageError:
    return create_error(UsageErrorCode.NOT_LOGGED_IN, "Not logged in")


def fetch_failed(reason: Optional[str] = None) -> UsageError:
    return create_error(UsageErrorCode.FETCH_FAILED, reason or "Fetch failed")


def http_error(status: int) -> UsageError:
    return create_error(UsageErrorCode.HTTP_ERROR, f"HTTP {status}", status)


def api_error(message: str) -> UsageError:
    return create_error(UsageErrorCode.API_ERROR, message)


def timeout_error() -> UsageError:
    return create_error(UsageErrorCode.TIMEOUT, "Request timed out")


def unknown_error(message: Optional[str] = None) -> UsageError:
    return create_error(UsageErrorCode.UNKNOWN, message or "Unknown error")


def is_expected_missing_data(error: Optional[UsageError]) -> bool:
    """True when the error only means "this provider is not configured".

    Such errors never replace a good cached value and are never shown as a
    failure in multi-provider views.
    """
    if error is None:
        return False
    return error.code in EXPECTED_MISSING_DATA_CODES


def format_error_for_display(error: UsageError) -> str:
    """Short string for a widget that has no windows to show."""
    if error.code == UsageErrorCode.NO_CREDENTIALS:
        return "No creds"
    if error.code == UsageErrorCode.NO_CLI:
        return "No CLI"
    if error.code == UsageErrorCode.NOT_LOGGED_IN:
        return "Not logged in"
    if error.code == UsageErrorCode.HTTP_ERROR:
        if error.http_status == 401:
            return "token no longer valid - please /login again"
        return f"{error.http_status}"
    return "Fetch failed"
