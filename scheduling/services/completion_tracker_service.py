import dataclasses
import datetime
import logging
from collections import Counter
from collections.abc import Iterable

from django.core.cache import cache
from django.db import transaction
from django.db.models import F, Value
from django.db.models.functions import Greatest
from django.utils import timezone

from scheduling.exceptions import OccurrenceNotFoundError
from scheduling.models import CompletionRecord, OccurrenceOverride, PeriodCounter, TaskSeries
from scheduling.recurrence_utils import OccurrenceExpander, period_bounds, periods_in_range
from scheduling.services.base import UserScopedService
from scheduling.services.dataclasses import (
    CompletionRef,
    CompletionResult,
    IndependentTaskRef,
    OccurrenceRef,
)
from scheduling.services.decorators import requires_authentication, translate_store_errors
from scheduling.services.occurrence_cache import OccurrenceRangeCache


logger = logging.getLogger(__name__)


class CompletionTrackerService(UserScopedService):
    """
    Completion state of occurrences and the weekly `PeriodCounter`s of each series.

    Series occurrences are completed when a `CompletionRecord` exists for them, and every
    change to a record moves the matching counter in the same transaction. Independent
    tasks carry their own `is_completed` flag and never touch a counter.
    """

    def __init__(self, occurrence_cache: OccurrenceRangeCache, lock_timeout: int = 10):
        self.occurrence_cache = occurrence_cache
        self.lock_timeout = lock_timeout
        self.user = None

    def _lock_key(self, ref: CompletionRef) -> str:
        return f"completion-toggle:{self.user.id}:{ref.lock_key}"

    @requires_authentication
    @translate_store_errors
    def toggle(self, ref: CompletionRef) -> CompletionResult:
        """Flip the completion state of the occurrence or independent task `ref` points to."""
        return self._apply(ref, completed=None)

    @requires_authentication
    @translate_store_errors
    def set_completion(self, ref: CompletionRef, completed: bool) -> CompletionResult:
        """
        Set the completion state explicitly. Nothing is written when the state already
        matches, so retrying a request can't count a completion twice.
        """
        return self._apply(ref, completed=completed)

    def _apply(self, ref: CompletionRef, completed: bool | None) -> CompletionResult:
        lock_key = self._lock_key(ref)
        if not cache.add(lock_key, "1", timeout=self.lock_timeout):
            logger.warning("Coalesced a duplicate completion request for %s", ref)
            return dataclasses.replace(self._current_state(ref), coalesced=True)

        try:
            current = self._current_state(ref)
            desired = not current.is_completed if completed is None else completed
            if desired == current.is_completed:
                return current

            snapshot = self.occurrence_cache.patch_completion(self.user.id, ref, desired)
            try:
                with transaction.atomic():
                    result = self._write(ref, desired)
            except Exception:
                self.occurrence_cache.rollback(snapshot)
                raise
        finally:
            cache.delete(lock_key)

        logger.info("Set completion of %s to %s", ref, desired)
        self.occurrence_cache.invalidate(self.user.id)
        return result

    def _validate_occurrence(self, series: TaskSeries, ref: OccurrenceRef) -> None:
        override = (
            OccurrenceOverride.objects.active()
            .filter(series=series, occurrence_date=ref.occurrence_date)
            .first()
        )
        if override is not None:
            if override.is_skipped:
                raise OccurrenceNotFoundError(series.id, ref.occurrence_date)
            if override.is_detached:
                if ref.instance_number != 1:
                    raise OccurrenceNotFoundError(series.id, ref.occurrence_date)
                return

        rule = series.recurrence_rule
        if not (
            OccurrenceExpander.occurs_on(
                rule, series.start_date, series.end_date, ref.occurrence_date
            )
            and 1 <= ref.instance_number <= OccurrenceExpander.instances_per_day(rule)
        ):
            raise OccurrenceNotFoundError(series.id, ref.occurrence_date)

    def _current_state(self, ref: CompletionRef) -> CompletionResult:
        if isinstance(ref, IndependentTaskRef):
            task = self._get_task(ref.task_id)
            return CompletionResult(ref=ref, is_completed=task.is_completed)

        series = self._get_series(ref.series_id)
        self._validate_occurrence(series, ref)
        period_start, _ = period_bounds(ref.occurrence_date)
        counter = PeriodCounter.objects.filter(series=series, period_start=period_start).first()
        return CompletionResult(
            ref=ref,
            is_completed=CompletionRecord.objects.filter(
                series=series,
                occurrence_date=ref.occurrence_date,
                instance_number=ref.instance_number,
            ).exists(),
            period_start=period_start,
            actual_count=counter.actual_count if counter else 0,
            planned_count=counter.planned_count if counter else None,
        )

    def _write(self, ref: CompletionRef, completed: bool) -> CompletionResult:
        if isinstance(ref, IndependentTaskRef):
            task = self._get_task(ref.task_id)
            task.is_completed = completed
            task.completed_at = timezone.now() if completed else None
            task.save(update_fields=["is_completed", "completed_at", "modified"])
            return CompletionResult(ref=ref, is_completed=task.is_completed)

        series = self._get_series(ref.series_id)
        if completed:
            counter = self.record_completion(series, ref.occurrence_date, ref.instance_number)
        else:
            counter = self.remove_completion(series, ref.occurrence_date, ref.instance_number)
        return CompletionResult(
            ref=ref,
            is_completed=completed,
            period_start=counter.period_start,
            actual_count=counter.actual_count,
            planned_count=counter.planned_count,
        )

    def record_completion(
        self, series: TaskSeries, occurrence_date: datetime.date, instance_number: int = 1
    ) -> PeriodCounter:
        """Create the completion record and count it. Must run inside a transaction."""
        counter = self.ensure_counter(series, occurrence_date)
        CompletionRecord.objects.create(
            user_id=series.user_id,
            series=series,
            occurrence_date=occurrence_date,
            instance_number=instance_number,
        )
        PeriodCounter.objects.filter(pk=counter.pk).update(
            actual_count=F("actual_count") + 1, modified=timezone.now()
        )
        counter.refresh_from_db(fields=["actual_count"])
        return counter

    def remove_completion(
        self, series: TaskSeries, occurrence_date: datetime.date, instance_number: int = 1
    ) -> PeriodCounter:
        """Delete the completion record and uncount it, never below zero."""
        counter = self.ensure_counter(series, occurrence_date)
        deleted, _ = CompletionRecord.objects.filter(
            series=series,
            occurrence_date=occurrence_date,
            instance_number=instance_number,
        ).delete()
        if deleted:
            PeriodCounter.objects.filter(pk=counter.pk).update(
                actual_count=Greatest(F("actual_count") - 1, Value(0)),
                modified=timezone.now(),
            )
            counter.refresh_from_db(fields=["actual_count"])
        return counter

    def ensure_counter(self, series: TaskSeries, day: datetime.date) -> PeriodCounter:
        """
        Return the counter of the week containing `day`, creating it with the planned count
        derived from the series rule and the completions already recorded that week.
        """
        period_start, period_end = period_bounds(day)
        counter, created = PeriodCounter.objects.get_or_create(
            series=series,
            period_start=period_start,
            defaults={
                "user_id": series.user_id,
                "period_end": period_end,
                "planned_count": self._planned_count(series, period_start, period_end),
                "actual_count": CompletionRecord.objects.filter(
                    series=series,
                    occurrence_date__gte=period_start,
                    occurrence_date__lte=period_end,
                ).count(),
            },
        )
        if created:
            logger.debug("Created period counter for series %s on %s", series.id, period_start)
        return counter

    @staticmethod
    def _planned_count(
        series: TaskSeries, period_start: datetime.date, period_end: datetime.date
    ) -> int:
        return OccurrenceExpander.planned_count(
            series.recurrence_rule, series.start_date, series.end_date, period_start, period_end
        )

    @requires_authentication
    @translate_store_errors
    def counters_for_range(
        self,
        range_start: datetime.date,
        range_end: datetime.date,
        series_list: Iterable[TaskSeries] | None = None,
        completion_keys: Iterable[tuple[int, datetime.date]] | None = None,
    ) -> list[PeriodCounter]:
        """
        Return the counters of every week touching the range for the given series (all of
        the user's series overlapping the range by default). Missing counters are created
        with a single bulk insert.

        :param completion_keys: `(series_id, occurrence_date)` of the completion records
            within the weeks, when the caller already loaded them.
        """
        periods = periods_in_range(range_start, range_end)
        span_start, span_end = periods[0][0], periods[-1][1]
        if series_list is None:
            series_list = (
                TaskSeries.objects.filter_by_user(self.user.id)
                .active()
                .overlapping(span_start, span_end)
            )
        series_list = [
            series
            for series in series_list
            if series.start_date <= span_end
            and (series.end_date is None or series.end_date >= span_start)
        ]
        if not series_list:
            return []

        existing = {
            (counter.series_id, counter.period_start): counter
            for counter in PeriodCounter.objects.filter(
                series__in=series_list,
                period_start__gte=span_start,
                period_start__lte=span_end,
            )
        }

        missing = []
        completions_per_period: Counter | None = None
        for series in series_list:
            for period_start, period_end in periods:
                if (series.id, period_start) in existing:
                    continue
                if period_end < series.start_date or (
                    series.end_date is not None and period_start > series.end_date
                ):
                    continue
                if completions_per_period is None:
                    completions_per_period = self._completions_per_period(
                        series_list, span_start, span_end, completion_keys
                    )
                missing.append(
                    PeriodCounter(
                        user_id=series.user_id,
                        series=series,
                        period_start=period_start,
                        period_end=period_end,
                        planned_count=self._planned_count(series, period_start, period_end),
                        actual_count=completions_per_period[(series.id, period_start)],
                    )
                )

        if missing:
            PeriodCounter.objects.bulk_create(missing, ignore_conflicts=True)
            logger.debug("Created %s period counters", len(missing))

        counters = [*existing.values(), *missing]
        return sorted(counters, key=lambda counter: (counter.period_start, counter.series_id))

    @staticmethod
    def _completions_per_period(
        series_list: list[TaskSeries],
        span_start: datetime.date,
        span_end: datetime.date,
        completion_keys: Iterable[tuple[int, datetime.date]] | None,
    ) -> Counter:
        if completion_keys is None:
            completion_keys = CompletionRecord.objects.filter(
                series__in=series_list,
                occurrence_date__gte=span_start,
                occurrence_date__lte=span_end,
            ).values_list("series_id", "occurrence_date")
        return Counter(
            (series_id, period_bounds(occurrence_date)[0])
            for series_id, occurrence_date in completion_keys
        )

    def recalculate_counters(self, series: TaskSeries, from_date: datetime.date) -> int:
        """
        Recompute the planned and actual counts of the series' existing counters for the
        weeks on or after the one containing `from_date`. Used after the series bounds,
        rule or completion records changed.
        """
        period_start, _ = period_bounds(from_date)
        counters = list(PeriodCounter.objects.filter(series=series, period_start__gte=period_start))
        if not counters:
            return 0

        completions = Counter(
            period_bounds(occurrence_date)[0]
            for occurrence_date in CompletionRecord.objects.filter(
                series=series, occurrence_date__gte=period_start
            ).values_list("occurrence_date", flat=True)
        )
        now = timezone.now()
        for counter in counters:
            counter.planned_count = self._planned_count(
                series, counter.period_start, counter.period_end
            )
            counter.actual_count = completions[counter.period_start]
            counter.modified = now
        PeriodCounter.objects.bulk_update(
            counters, ["planned_count", "actual_count", "modified"]
        )
        return len(counters)
