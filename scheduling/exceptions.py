from django.core.exceptions import ImproperlyConfigured


# API Validation Errors
class SchedulingServiceNotInjectedError(ImproperlyConfigured):
    pass


# Service Layer/Internal Errors
class TaskSchedulingError(Exception):
    """Base exception for task scheduling errors"""

    default_message = ""

    def __init__(self, message: str | None = None):
        if message is None:
            message = self.default_message
        super().__init__(message)


class NotAuthenticatedError(TaskSchedulingError):
    default_message = (
        "This method requires authentication. Please call the `authenticate` method first."
    )


class NotFoundError(TaskSchedulingError):
    """Base class for missing (or not owned) records"""

    default_message = "The requested record does not exist."


class SeriesNotFoundError(NotFoundError):
    def __init__(self, series_id: int):
        super().__init__(f"Task series {series_id} not found")


class IndependentTaskNotFoundError(NotFoundError):
    def __init__(self, task_id: int):
        super().__init__(f"Independent task {task_id} not found")


class OccurrenceNotFoundError(NotFoundError):
    def __init__(self, series_id: int, occurrence_date):
        super().__init__(f"Task series {series_id} has no occurrence on {occurrence_date}")


class SchedulingValidationError(TaskSchedulingError):
    """Base class for invalid input on scheduling operations"""

    pass


class RecurrenceRuleValidationError(SchedulingValidationError):
    default_message = "Invalid recurrence rule."


class EmptyWeekdaysError(RecurrenceRuleValidationError):
    default_message = "A weekly recurrence requires at least one day of the week."


class InvalidSplitDateError(SchedulingValidationError):
    default_message = (
        "The split date must be after the series start date and not after its end date."
    )


class ConflictOnMoveError(TaskSchedulingError):
    def __init__(self, target_date, reason: str = "it already holds a moved occurrence"):
        super().__init__(f"Can't move the occurrence to {target_date}: {reason}")


class StoreUnavailableError(TaskSchedulingError):
    default_message = "The task store is temporarily unavailable. Please try again."
