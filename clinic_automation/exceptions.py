"""Automation error taxonomy, each mapped to an HTTP status code"""

from typing import Optional


class AutomationError(Exception):
    """Base error rendered as {success: false, error, message}"""

    status_code = 500
    error = "Automation error"

    def __init__(self, message: str, error: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code


class AutomationNotFoundError(AutomationError):
    """Automation (or execution) missing, or automation not active"""

    status_code = 404
    error = "Not found"


class InvalidFilterError(AutomationError):
    """Filter clause with unknown kind, field or operator"""

    status_code = 400
    error = "Invalid filter"


class InvalidAutomationError(AutomationError):
    """Automation configuration that cannot be executed"""

    status_code = 400
    error = "Invalid automation"


class CronAuthError(AutomationError):
    status_code = 401
    error = "Unauthorized - Invalid cron secret"


class ExecutionStateError(AutomationError):
    """Attempt to move an execution out of a terminal state"""

    status_code = 409
    error = "Invalid execution state"


class TriggerAlreadyClaimedError(AutomationError):
    """Another execution already holds the trigger occurrence key"""

    status_code = 409
    error = "Trigger already executed"
