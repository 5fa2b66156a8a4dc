import datetime
import logging
from typing import TYPE_CHECKING

from django.db import DatabaseError, transaction

from goals.models import Goal
from scheduling.constants import OccurrenceKind
from scheduling.exceptions import SchedulingValidationError, StoreUnavailableError
from scheduling.models import (
    CompletionRecord,
    IndependentTask,
    OccurrenceOverride,
    PeriodCounter,
    TaskSeries,
)
from scheduling.recurrence_utils import OccurrenceExpander, periods_in_range
from scheduling.services.base import UserScopedService
from scheduling.services.completion_tracker_service import CompletionTrackerService
from scheduling.services.dataclasses import (
    OccurrenceData,
    OccurrenceRangeResult,
    PeriodCounterData,
)
from scheduling.services.decorators import requires_authentication
from scheduling.services.occurrence_cache import OccurrenceRangeCache


if TYPE_CHECKING:
    from users.models import User


logger = logging.getLogger(__name__)

MAX_RANGE_DAYS = 366


def _lineage(goal: Goal | None) -> dict:
    if goal is None or goal.is_deleted:
        return {"goal_id": None, "goal_title": None, "is_focused": False}
    return {"goal_id": goal.id, "goal_title": goal.title, "is_focused": goal.is_focused}


class OccurrenceAggregatorService(UserScopedService):
    """
    Builds the list of occurrences a calendar or list view shows for a date range.

    Everything the range needs is loaded up front with a fixed number of queries, no
    matter how many series or dates are involved; the rest happens in memory. Results are
    cached per user and range until the next write of that user.
    """

    def __init__(
        self,
        completion_tracker_service: CompletionTrackerService,
        occurrence_cache: OccurrenceRangeCache,
    ):
        self.completion_tracker_service = completion_tracker_service
        self.occurrence_cache = occurrence_cache
        self.user = None

    def authenticate(self, user: "User | None") -> None:
        super().authenticate(user)
        self.completion_tracker_service.authenticate(user)

    @requires_authentication
    def occurrences_for_range(
        self,
        range_start: datetime.date,
        range_end: datetime.date,
        focused_only: bool = False,
    ) -> OccurrenceRangeResult:
        """
        Return the occurrences between `range_start` and `range_end` (inclusive), ordered
        by date and time of day with unscheduled items last and ties broken by title, plus
        the weekly counters of the series involved.

        Failures never produce a partial list: the result is empty and `error` says why.

        :param focused_only: keep only items whose goal belongs to a focused vision.
        """
        if range_end < range_start:
            raise SchedulingValidationError("range_end can't be before range_start.")
        if (range_end - range_start).days >= MAX_RANGE_DAYS:
            raise SchedulingValidationError(f"Ranges are limited to {MAX_RANGE_DAYS} days.")

        result = self.occurrence_cache.get(self.user.id, range_start, range_end)
        if result is None:
            try:
                result = self._build_range(range_start, range_end)
            except (DatabaseError, StoreUnavailableError):
                logger.exception(
                    "Failed to load occurrences of user %s from %s to %s",
                    self.user.id,
                    range_start,
                    range_end,
                )
                return OccurrenceRangeResult(
                    range_start=range_start,
                    range_end=range_end,
                    error=StoreUnavailableError.default_message,
                )
            self.occurrence_cache.set(self.user.id, range_start, range_end, result)

        if focused_only:
            return OccurrenceRangeResult(
                range_start=result.range_start,
                range_end=result.range_end,
                occurrences=[
                    occurrence for occurrence in result.occurrences if occurrence.is_focused
                ],
                counters=result.counters,
            )
        return result

    def _build_range(
        self, range_start: datetime.date, range_end: datetime.date
    ) -> OccurrenceRangeResult:
        user_id = self.user.id
        periods = periods_in_range(range_start, range_end)
        span_start, span_end = periods[0][0], periods[-1][1]

        series_by_id = {
            series.id: series
            for series in TaskSeries.objects.filter_by_user(user_id)
            .active()
            .filter(is_active=True)
            .with_lineage()
        }
        overrides = list(
            OccurrenceOverride.objects.filter_by_user(user_id)
            .active()
            .of_visible_series()
            .in_range(range_start, range_end)
        )
        completion_keys = list(
            CompletionRecord.objects.filter_by_user(user_id)
            .in_range(span_start, span_end)
            .values_list("series_id", "occurrence_date", "instance_number")
        )
        tasks = list(
            IndependentTask.objects.filter_by_user(user_id)
            .active()
            .not_converted()
            .in_range(range_start, range_end)
            .with_lineage()
        )

        completed = set(completion_keys)
        overrides_by_date = {
            (override.series_id, override.occurrence_date): override for override in overrides
        }
        occurrences: list[OccurrenceData] = []

        for series in series_by_id.values():
            lineage = _lineage(series.goal)
            for occurrence_date, instance_number in OccurrenceExpander.instances(
                series.recurrence_rule,
                series.start_date,
                series.end_date,
                range_start,
                range_end,
            ):
                override = overrides_by_date.get((series.id, occurrence_date))
                if override is not None and (override.is_skipped or override.is_detached):
                    continue

                if override is not None:
                    title = override.resolved_title(series)
                    time_start, time_end = override.resolved_times(series)
                else:
                    title = series.title
                    time_start, time_end = series.default_time_start, series.default_time_end
                occurrences.append(
                    OccurrenceData(
                        kind=OccurrenceKind.SERIES,
                        title=title,
                        occurrence_date=occurrence_date,
                        time_start=time_start,
                        time_end=time_end,
                        is_completed=(series.id, occurrence_date, instance_number) in completed,
                        series_id=series.id,
                        instance_number=instance_number,
                        override_id=override.id if override else None,
                        **lineage,
                    )
                )

        for override in overrides:
            series = series_by_id.get(override.series_id)
            if series is None or override.is_skipped or not override.is_detached:
                continue
            time_start, time_end = override.resolved_times(series)
            occurrences.append(
                OccurrenceData(
                    kind=OccurrenceKind.DETACHED,
                    title=override.resolved_title(series),
                    occurrence_date=override.occurrence_date,
                    time_start=time_start,
                    time_end=time_end,
                    is_completed=(series.id, override.occurrence_date, 1) in completed,
                    series_id=series.id,
                    override_id=override.id,
                    moved_from_date=override.moved_from_date,
                    **_lineage(series.goal),
                )
            )

        for task in tasks:
            occurrences.append(
                OccurrenceData(
                    kind=OccurrenceKind.INDEPENDENT,
                    title=task.title,
                    occurrence_date=task.scheduled_date,
                    time_start=task.time_start,
                    time_end=task.time_end,
                    is_completed=task.is_completed,
                    task_id=task.id,
                    **_lineage(task.goal),
                )
            )

        occurrences.sort(key=OccurrenceData.sort_key)

        with transaction.atomic():
            counters = self.completion_tracker_service.counters_for_range(
                range_start,
                range_end,
                series_list=series_by_id.values(),
                completion_keys=[
                    (series_id, occurrence_date)
                    for series_id, occurrence_date, _ in completion_keys
                ],
            )

        return OccurrenceRangeResult(
            range_start=range_start,
            range_end=range_end,
            occurrences=occurrences,
            counters=[self._counter_data(counter) for counter in counters],
        )

    @staticmethod
    def _counter_data(counter: PeriodCounter) -> PeriodCounterData:
        return PeriodCounterData(
            series_id=counter.series_id,
            period_start=counter.period_start,
            period_end=counter.period_end,
            planned_count=counter.planned_count,
            actual_count=counter.actual_count,
        )
