import datetime
import logging
from typing import TYPE_CHECKING, Any

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from scheduling.exceptions import (
    InvalidSplitDateError,
    OccurrenceNotFoundError,
    SchedulingValidationError,
)
from scheduling.models import CompletionRecord, IndependentTask, OccurrenceOverride, TaskSeries
from scheduling.recurrence_utils import (
    OccurrenceExpander,
    RecurrenceRule,
    recurrence_rule_to_fields,
)
from scheduling.services.base import UserScopedService
from scheduling.services.completion_tracker_service import CompletionTrackerService
from scheduling.services.decorators import requires_authentication, translate_store_errors
from scheduling.services.exception_store_service import ExceptionStoreService
from scheduling.services.occurrence_cache import OccurrenceRangeCache


if TYPE_CHECKING:
    from users.models import User


logger = logging.getLogger(__name__)

SPLIT_OVERRIDE_FIELDS = frozenset(
    {"title", "rule", "default_time_start", "default_time_end", "goal_id"}
)


def _validate_times(time_start: datetime.time | None, time_end: datetime.time | None) -> None:
    if time_start is not None and time_end is not None and time_end < time_start:
        raise SchedulingValidationError("The end time can't be before the start time.")


class SeriesMutatorService(UserScopedService):
    """
    Operations that change a series as a whole: creation, rule changes, conversion to and
    from independent tasks, splitting and the different flavors of deletion.

    Every operation runs in a single transaction and can be retried wholesale: retrying a
    call that already went through returns the same end state instead of applying the
    change twice.
    """

    def __init__(
        self,
        exception_store_service: ExceptionStoreService,
        completion_tracker_service: CompletionTrackerService,
        occurrence_cache: OccurrenceRangeCache,
        recovery_days: int = 30,
    ):
        self.exception_store_service = exception_store_service
        self.completion_tracker_service = completion_tracker_service
        self.occurrence_cache = occurrence_cache
        self.recovery_days = recovery_days
        self.user = None

    def authenticate(self, user: "User | None") -> None:
        super().authenticate(user)
        self.exception_store_service.authenticate(user)
        self.completion_tracker_service.authenticate(user)

    def _check_recovery_window(self, deleted_at: datetime.datetime | None) -> None:
        if deleted_at is None:
            return
        if timezone.now() - deleted_at > datetime.timedelta(days=self.recovery_days):
            raise SchedulingValidationError(
                f"Deleted items can only be restored within {self.recovery_days} days."
            )

    def _soft_delete_series(self, series: TaskSeries) -> None:
        deleted_at = timezone.now()
        series.soft_delete(deleted_at=deleted_at)
        self.exception_store_service.soft_delete_overrides(series, deleted_at=deleted_at)

    @requires_authentication
    @translate_store_errors
    def create_series(
        self,
        title: str,
        rule: RecurrenceRule,
        start_date: datetime.date,
        end_date: datetime.date | None = None,
        default_time_start: datetime.time | None = None,
        default_time_end: datetime.time | None = None,
        goal_id: int | None = None,
    ) -> TaskSeries:
        if end_date is not None and end_date < start_date:
            raise SchedulingValidationError("The end date can't be before the start date.")
        _validate_times(default_time_start, default_time_end)

        series = TaskSeries.objects.create(
            user=self.user,
            title=title,
            start_date=start_date,
            end_date=end_date,
            default_time_start=default_time_start,
            default_time_end=default_time_end,
            goal=self._get_goal(goal_id),
            **recurrence_rule_to_fields(rule),
        )

        logger.info(
            "Created %s series %s for user %s", series.recurrence_type, series.id, self.user.id
        )
        self.occurrence_cache.invalidate(self.user.id)
        return series

    @requires_authentication
    @translate_store_errors
    def create_independent_task(
        self,
        title: str,
        scheduled_date: datetime.date,
        time_start: datetime.time | None = None,
        time_end: datetime.time | None = None,
        goal_id: int | None = None,
    ) -> IndependentTask:
        _validate_times(time_start, time_end)
        task = IndependentTask.objects.create(
            user=self.user,
            title=title,
            scheduled_date=scheduled_date,
            time_start=time_start,
            time_end=time_end,
            goal=self._get_goal(goal_id),
        )

        logger.info("Created independent task %s for user %s", task.id, self.user.id)
        self.occurrence_cache.invalidate(self.user.id)
        return task

    @requires_authentication
    @translate_store_errors
    def update_rule(self, series_id: int, rule: RecurrenceRule) -> TaskSeries:
        """
        Replace the recurrence rule of the whole series. The planned counts of the current
        and upcoming weeks follow the new rule.
        """
        with transaction.atomic():
            series = self._get_series(series_id)
            if series.recurrence_rule == rule:
                return series

            series.recurrence_rule = rule
            series.save(update_fields=[*recurrence_rule_to_fields(rule), "modified"])
            self.completion_tracker_service.recalculate_counters(series, timezone.localdate())

        logger.info("Updated recurrence rule of series %s to %s", series.id, rule)
        self.occurrence_cache.invalidate(self.user.id)
        return series

    @requires_authentication
    @translate_store_errors
    def convert_to_recurring(self, task_id: int, rule: RecurrenceRule) -> TaskSeries:
        """
        Turn an independent task into a series starting on the task date. The task date
        becomes the first, detached, occurrence of the series and keeps its completion.
        """
        with transaction.atomic():
            task = self._get_task(task_id)
            if task.converted_series_id is not None:
                return self._get_series(task.converted_series_id)

            series = TaskSeries.objects.create(
                user=self.user,
                title=task.title,
                start_date=task.scheduled_date,
                default_time_start=task.time_start,
                default_time_end=task.time_end,
                goal_id=task.goal_id,
                **recurrence_rule_to_fields(rule),
            )
            OccurrenceOverride.objects.create(
                user=self.user,
                series=series,
                occurrence_date=task.scheduled_date,
                is_detached=True,
            )
            if task.is_completed:
                self.completion_tracker_service.record_completion(series, task.scheduled_date)

            task.converted_series = series
            task.save(update_fields=["converted_series", "modified"])

        logger.info("Converted independent task %s into series %s", task.id, series.id)
        self.occurrence_cache.invalidate(self.user.id)
        return series

    @requires_authentication
    @translate_store_errors
    def convert_to_independent(
        self, series_id: int, keep_date: datetime.date
    ) -> IndependentTask | None:
        """
        Stop repeating the series, keeping only the occurrence on `keep_date` as an
        independent task.

        When `keep_date` is on or before the series start nothing was ever kept, so the
        whole series is deleted and `None` is returned. Otherwise the series ends the day
        before `keep_date`, the kept occurrence (with its overrides and completion) becomes
        an `IndependentTask` and exceptions from `keep_date` on are deleted.
        """
        with transaction.atomic():
            series = self._get_series(series_id, include_deleted=True)
            kept = (
                IndependentTask.objects.filter_by_user(self.user.id)
                .active()
                .filter(source_series=series, scheduled_date=keep_date)
                .first()
            )
            if kept is not None:
                return kept
            if series.is_deleted:
                return None

            if keep_date <= series.start_date:
                self._soft_delete_series(series)
                logger.info("Deleted series %s while converting it to independent", series.id)
                self.occurrence_cache.invalidate(self.user.id)
                return None

            override = self.exception_store_service.visible_override(series, keep_date)
            if (
                series.end_date is not None
                and keep_date > series.end_date
                and (override is None or not override.is_detached)
            ):
                raise OccurrenceNotFoundError(series.id, keep_date)

            if override is not None:
                title = override.resolved_title(series)
                time_start, time_end = override.resolved_times(series)
            else:
                title = series.title
                time_start, time_end = series.default_time_start, series.default_time_end

            instances = 1
            if override is None or not override.is_detached:
                instances = OccurrenceExpander.instances_per_day(series.recurrence_rule)
            completions = list(
                CompletionRecord.objects.filter(series=series, occurrence_date=keep_date)
            )
            is_completed = len(completions) >= instances

            task = IndependentTask.objects.create(
                user=self.user,
                title=title,
                scheduled_date=keep_date,
                time_start=time_start,
                time_end=time_end,
                is_completed=is_completed,
                completed_at=(
                    max(record.completed_at for record in completions) if is_completed else None
                ),
                goal_id=series.goal_id,
                source_series=series,
            )

            new_end_date = keep_date - datetime.timedelta(days=1)
            if series.end_date is None or new_end_date < series.end_date:
                series.end_date = new_end_date
                series.save(update_fields=["end_date", "modified"])
            self.exception_store_service.soft_delete_overrides(series, from_date=keep_date)
            CompletionRecord.objects.filter(series=series, occurrence_date__gte=keep_date).delete()
            self.completion_tracker_service.recalculate_counters(series, keep_date)

        logger.info(
            "Converted series %s to independent task %s on %s", series.id, task.id, keep_date
        )
        self.occurrence_cache.invalidate(self.user.id)
        return task

    @requires_authentication
    @translate_store_errors
    def split_series(
        self, series_id: int, split_date: datetime.date, **overrides: Any
    ) -> TaskSeries:
        """
        Split the series at `split_date`: the series ends the day before, and a new series
        continues from `split_date` to the old end date with `overrides` (`title`, `rule`,
        `default_time_start`, `default_time_end`, `goal_id`) applied on top of the old
        values. Exceptions and completions from `split_date` on move to the new series.

        The shortened end date is saved before the continuation is inserted, so no date is
        ever projected by both series.

        :raises InvalidSplitDateError: when `split_date` is out of the series bounds, or an
            occurrence was moved from one side of it to the other.
        """
        unsupported = set(overrides).difference(SPLIT_OVERRIDE_FIELDS)
        if unsupported:
            raise SchedulingValidationError(
                f"Unsupported split fields: {', '.join(sorted(unsupported))}"
            )

        with transaction.atomic():
            series = self._get_series(series_id)
            continuation = (
                TaskSeries.objects.filter_by_user(self.user.id)
                .active()
                .filter(split_parent=series, start_date=split_date)
                .first()
            )
            if continuation is not None:
                return continuation

            if split_date <= series.start_date or (
                series.end_date is not None and split_date > series.end_date
            ):
                raise InvalidSplitDateError()

            # both halves of a move have to end up on the same series
            before, after = Q(occurrence_date__lt=split_date), Q(occurrence_date__gte=split_date)
            crossing_moves = (
                OccurrenceOverride.objects.active()
                .filter(series=series)
                .filter(
                    (before & Q(is_skipped=True, moved_to_date__gte=split_date))
                    | (after & Q(is_skipped=True, moved_to_date__lt=split_date))
                    | (before & Q(moved_from_date__gte=split_date))
                    | (after & Q(moved_from_date__lt=split_date))
                )
            )
            if crossing_moves.exists():
                raise InvalidSplitDateError(
                    "An occurrence was moved across the split date. Move it back before "
                    "splitting the series there."
                )

            rule = overrides.get("rule", series.recurrence_rule)
            default_time_start = overrides.get("default_time_start", series.default_time_start)
            default_time_end = overrides.get("default_time_end", series.default_time_end)
            _validate_times(default_time_start, default_time_end)
            goal_id = series.goal_id
            if "goal_id" in overrides:
                goal = self._get_goal(overrides["goal_id"])
                goal_id = goal.id if goal else None

            old_end_date = series.end_date
            series.end_date = split_date - datetime.timedelta(days=1)
            series.save(update_fields=["end_date", "modified"])

            continuation = TaskSeries.objects.create(
                user=self.user,
                title=overrides.get("title") or series.title,
                start_date=split_date,
                end_date=old_end_date,
                default_time_start=default_time_start,
                default_time_end=default_time_end,
                is_active=series.is_active,
                goal_id=goal_id,
                split_parent=series,
                **recurrence_rule_to_fields(rule),
            )

            OccurrenceOverride.objects.filter(
                series=series, occurrence_date__gte=split_date
            ).update(series=continuation, modified=timezone.now())
            CompletionRecord.objects.filter(
                series=series, occurrence_date__gte=split_date
            ).update(series=continuation, modified=timezone.now())
            self.completion_tracker_service.recalculate_counters(series, split_date)
            self.completion_tracker_service.recalculate_counters(continuation, split_date)

        logger.info(
            "Split series %s at %s into continuation %s", series.id, split_date, continuation.id
        )
        self.occurrence_cache.invalidate(self.user.id)
        return continuation

    @requires_authentication
    @translate_store_errors
    def delete_occurrence(
        self, series_id: int, occurrence_date: datetime.date
    ) -> OccurrenceOverride:
        """Delete a single occurrence. Only a skip marker is written; bounds are unchanged."""
        return self.exception_store_service.mark_skip(series_id, occurrence_date)

    @requires_authentication
    @translate_store_errors
    def delete_future_occurrences(self, series_id: int, from_date: datetime.date) -> TaskSeries:
        """
        Delete every occurrence on or after `from_date`. Deleting from the first date of the
        series deletes the series. An earlier end date is never pushed back.
        """
        with transaction.atomic():
            series = self._get_series(series_id, include_deleted=True)
            if series.is_deleted:
                return series

            if from_date <= series.start_date:
                self._soft_delete_series(series)
            else:
                new_end_date = from_date - datetime.timedelta(days=1)
                if series.end_date is None or new_end_date < series.end_date:
                    series.end_date = new_end_date
                    series.save(update_fields=["end_date", "modified"])
                self.exception_store_service.soft_delete_overrides(series, from_date=from_date)
                CompletionRecord.objects.filter(
                    series=series, occurrence_date__gte=from_date
                ).delete()
                self.completion_tracker_service.recalculate_counters(series, from_date)

        logger.info("Deleted occurrences of series %s from %s on", series.id, from_date)
        self.occurrence_cache.invalidate(self.user.id)
        return series

    @requires_authentication
    @translate_store_errors
    def delete_entire_series(self, series_id: int) -> TaskSeries:
        """Soft delete the series together with all of its exceptions."""
        with transaction.atomic():
            series = self._get_series(series_id, include_deleted=True)
            if series.is_deleted:
                return series
            self._soft_delete_series(series)

        logger.info("Deleted series %s", series.id)
        self.occurrence_cache.invalidate(self.user.id)
        return series

    @requires_authentication
    @translate_store_errors
    def restore_series(self, series_id: int) -> TaskSeries:
        """
        Undo `delete_entire_series` within the recovery window. Exceptions deleted by the
        same cascade come back with the series.
        """
        with transaction.atomic():
            series = self._get_series(series_id, include_deleted=True)
            if not series.is_deleted:
                return series
            self._check_recovery_window(series.deleted_at)

            deleted_at = series.deleted_at
            series.restore()
            self.exception_store_service.restore_overrides(series, deleted_at)

        logger.info("Restored series %s", series.id)
        self.occurrence_cache.invalidate(self.user.id)
        return series

    @requires_authentication
    @translate_store_errors
    def delete_independent_task(self, task_id: int) -> IndependentTask:
        task = self._get_task(task_id, include_deleted=True)
        if task.is_deleted:
            return task
        task.soft_delete()

        logger.info("Deleted independent task %s", task.id)
        self.occurrence_cache.invalidate(self.user.id)
        return task

    @requires_authentication
    @translate_store_errors
    def restore_independent_task(self, task_id: int) -> IndependentTask:
        task = self._get_task(task_id, include_deleted=True)
        if not task.is_deleted:
            return task
        self._check_recovery_window(task.deleted_at)
        task.restore()

        logger.info("Restored independent task %s", task.id)
        self.occurrence_cache.invalidate(self.user.id)
        return task
