from typing import TYPE_CHECKING

from goals.models import Goal
from scheduling.exceptions import (
    IndependentTaskNotFoundError,
    NotAuthenticatedError,
    NotFoundError,
    SeriesNotFoundError,
)
from scheduling.models import IndependentTask, TaskSeries


if TYPE_CHECKING:
    from users.models import User


class UserScopedService:
    """
    Base for the scheduling services. A service must be bound to a user with `authenticate`
    before any operation runs, and every lookup is restricted to that user's records, so
    records owned by someone else are reported as missing.
    """

    user: "User | None" = None

    def authenticate(self, user: "User | None") -> None:
        if user is None or not user.is_authenticated:
            raise NotAuthenticatedError()
        self.user = user

    def _get_series(self, series_id: int, include_deleted: bool = False) -> TaskSeries:
        queryset = TaskSeries.objects.filter_by_user(self.user.id)
        if not include_deleted:
            queryset = queryset.active()
        try:
            return queryset.get(id=series_id)
        except TaskSeries.DoesNotExist as e:
            raise SeriesNotFoundError(series_id) from e

    def _get_task(self, task_id: int, include_deleted: bool = False) -> IndependentTask:
        queryset = IndependentTask.objects.filter_by_user(self.user.id)
        if not include_deleted:
            queryset = queryset.active()
        try:
            return queryset.get(id=task_id)
        except IndependentTask.DoesNotExist as e:
            raise IndependentTaskNotFoundError(task_id) from e

    def _get_goal(self, goal_id: int | None) -> Goal | None:
        if goal_id is None:
            return None
        try:
            return Goal.objects.filter_by_user(self.user.id).active().get(id=goal_id)
        except Goal.DoesNotExist as e:
            raise NotFoundError(f"Goal {goal_id} not found") from e
