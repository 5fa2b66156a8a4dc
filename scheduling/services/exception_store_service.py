import datetime
import logging
from typing import Any

from django.db import transaction
from django.utils import timezone

from scheduling.exceptions import (
    ConflictOnMoveError,
    OccurrenceNotFoundError,
    SchedulingValidationError,
)
from scheduling.models import OccurrenceOverride, TaskSeries
from scheduling.recurrence_utils import OccurrenceExpander
from scheduling.services.base import UserScopedService
from scheduling.services.decorators import requires_authentication, translate_store_errors
from scheduling.services.occurrence_cache import OccurrenceRangeCache


logger = logging.getLogger(__name__)

OVERRIDE_FIELDS = frozenset({"title", "time_start", "time_end"})


class ExceptionStoreService(UserScopedService):
    """
    Per (series, date) exceptions to what a series projects: retitled or retimed
    occurrences, skip markers, detached occurrences and moves.

    There is at most one non-deleted `OccurrenceOverride` per (series, date). Exceptions are
    not bound to the series' `[start_date, end_date]`; those bounds only gate the default
    projection.
    """

    def __init__(self, occurrence_cache: OccurrenceRangeCache):
        self.occurrence_cache = occurrence_cache
        self.user = None

    @staticmethod
    def _get_override(
        series: TaskSeries, occurrence_date: datetime.date
    ) -> OccurrenceOverride | None:
        return (
            OccurrenceOverride.objects.active()
            .filter(series=series, occurrence_date=occurrence_date)
            .first()
        )

    @staticmethod
    def _is_projected(series: TaskSeries, occurrence_date: datetime.date) -> bool:
        return OccurrenceExpander.occurs_on(
            series.recurrence_rule, series.start_date, series.end_date, occurrence_date
        )

    def _ensure_occurrence(
        self,
        series: TaskSeries,
        occurrence_date: datetime.date,
        override: OccurrenceOverride | None,
    ) -> None:
        """Raise unless the series has a visible occurrence on `occurrence_date`."""
        if override is not None:
            if override.is_skipped:
                raise OccurrenceNotFoundError(series.id, occurrence_date)
            return
        if not self._is_projected(series, occurrence_date):
            raise OccurrenceNotFoundError(series.id, occurrence_date)

    @staticmethod
    def _validate_fields(fields: dict[str, Any]) -> None:
        unsupported = set(fields).difference(OVERRIDE_FIELDS)
        if unsupported:
            raise SchedulingValidationError(
                f"Unsupported occurrence fields: {', '.join(sorted(unsupported))}"
            )

    @staticmethod
    def _merge_fields(
        series: TaskSeries, override: OccurrenceOverride, fields: dict[str, Any]
    ) -> None:
        if "title" in fields:
            override.title = fields["title"] or None

        if "time_start" in fields or "time_end" in fields:
            if not override.has_time_override:
                override.time_start = series.default_time_start
                override.time_end = series.default_time_end
                override.has_time_override = True
            if "time_start" in fields:
                override.time_start = fields["time_start"]
            if "time_end" in fields:
                override.time_end = fields["time_end"]

        if (
            override.has_time_override
            and override.time_start is not None
            and override.time_end is not None
            and override.time_end < override.time_start
        ):
            raise SchedulingValidationError("time_end can't be before time_start.")

    def _save_override(
        self,
        series: TaskSeries,
        occurrence_date: datetime.date,
        override: OccurrenceOverride | None,
        fields: dict[str, Any],
        **flags: Any,
    ) -> OccurrenceOverride:
        if override is None:
            override = OccurrenceOverride(
                user_id=series.user_id,
                series=series,
                occurrence_date=occurrence_date,
            )
        self._merge_fields(series, override, fields)
        if not override.is_skipped:
            # any other write ends the trace left by `_release_moved_in`
            override.moved_to_date = None
        for flag, value in flags.items():
            setattr(override, flag, value)
        override.save()
        return override

    def _release_moved_in(
        self, series: TaskSeries, override: OccurrenceOverride, to_date: datetime.date
    ) -> None:
        """
        The occurrence moved into `override` left its date again, for `to_date`. The date
        falls back to whatever the series projects there, and keeps `to_date` in
        `moved_to_date` so a retried call can tell the occurrence already went on.
        """
        override.moved_to_date = to_date
        if not self._is_projected(series, override.occurrence_date):
            override.soft_delete(save=False)
            override.save()
            return

        override.title = None
        override.has_time_override = False
        override.time_start = None
        override.time_end = None
        override.is_detached = False
        override.moved_from_date = None
        override.save()

    @staticmethod
    def _passed_through(
        series: TaskSeries,
        occurrence_date: datetime.date,
        source: OccurrenceOverride | None,
        to_date: datetime.date,
    ) -> bool:
        """Whether a moved occurrence already left `occurrence_date` for `to_date`."""
        if source is not None:
            return not source.is_skipped and source.moved_to_date == to_date
        return (
            OccurrenceOverride.objects.deleted()
            .filter(
                series=series,
                occurrence_date=occurrence_date,
                is_skipped=False,
                moved_to_date=to_date,
            )
            .exists()
        )

    def _is_finished_hop(
        self,
        series: TaskSeries,
        from_date: datetime.date,
        source: OccurrenceOverride | None,
        to_date: datetime.date,
        target: OccurrenceOverride | None,
    ) -> bool:
        """
        Whether moving `from_date` to `to_date` already went through as a later hop of a
        chained move, or as the move back to the origin.
        """
        if target is None or target.is_skipped:
            return False
        if not self._passed_through(series, from_date, source, to_date):
            return False
        if target.moved_from_date is None:
            return True
        origin_marker = self._get_override(series, target.moved_from_date)
        return (
            origin_marker is not None
            and origin_marker.is_skipped
            and origin_marker.moved_to_date == to_date
        )

    @staticmethod
    def _check_move_target(
        target: OccurrenceOverride | None, origin: datetime.date, to_date: datetime.date
    ) -> None:
        if target is None:
            return
        if target.is_skipped:
            if target.moved_to_date is not None:
                raise ConflictOnMoveError(
                    to_date, f"its occurrence was moved to {target.moved_to_date}"
                )
            return
        if target.moved_from_date is not None and target.moved_from_date != origin:
            raise ConflictOnMoveError(
                to_date, f"it already holds an occurrence moved from {target.moved_from_date}"
            )

    @requires_authentication
    @translate_store_errors
    def get(self, series_id: int, occurrence_date: datetime.date) -> OccurrenceOverride | None:
        """
        Return the materialized occurrence of the series on `occurrence_date`, or `None` if
        that date has no exception.
        """
        series = self._get_series(series_id)
        return self._get_override(series, occurrence_date)

    @requires_authentication
    @translate_store_errors
    def upsert_override(
        self, series_id: int, occurrence_date: datetime.date, **fields: Any
    ) -> OccurrenceOverride:
        """
        Merge `fields` (`title`, `time_start`, `time_end`) into the occurrence on
        `occurrence_date`. Fields that aren't passed keep the previous override value, or
        the series default when there is no previous override.
        """
        self._validate_fields(fields)
        with transaction.atomic():
            series = self._get_series(series_id)
            override = self._get_override(series, occurrence_date)
            self._ensure_occurrence(series, occurrence_date, override)
            override = self._save_override(series, occurrence_date, override, fields)

        logger.info(
            "Updated occurrence of series %s on %s (%s)",
            series_id,
            occurrence_date,
            ", ".join(sorted(fields)) or "no fields",
        )
        self.occurrence_cache.invalidate(self.user.id)
        return override

    @requires_authentication
    @translate_store_errors
    def mark_skip(self, series_id: int, occurrence_date: datetime.date) -> OccurrenceOverride:
        """
        Suppress the occurrence on `occurrence_date`. Other override fields are kept so the
        skip can be undone with `unskip`.
        """
        with transaction.atomic():
            series = self._get_series(series_id)
            override = self._get_override(series, occurrence_date)
            if override is not None and override.is_skipped:
                return override

            self._ensure_occurrence(series, occurrence_date, override)
            override = self._save_override(
                series, occurrence_date, override, {}, is_skipped=True
            )

        logger.info("Skipped occurrence of series %s on %s", series_id, occurrence_date)
        self.occurrence_cache.invalidate(self.user.id)
        return override

    @requires_authentication
    @translate_store_errors
    def unskip(
        self, series_id: int, occurrence_date: datetime.date
    ) -> OccurrenceOverride | None:
        with transaction.atomic():
            series = self._get_series(series_id)
            override = self._get_override(series, occurrence_date)
            if override is None:
                self._ensure_occurrence(series, occurrence_date, override)
                return None
            if not override.is_skipped:
                return override

            override.is_skipped = False
            override.moved_to_date = None
            override.save(update_fields=["is_skipped", "moved_to_date", "modified"])

        logger.info("Restored skipped occurrence of series %s on %s", series_id, occurrence_date)
        self.occurrence_cache.invalidate(self.user.id)
        return override

    @requires_authentication
    @translate_store_errors
    def detach(self, series_id: int, occurrence_date: datetime.date) -> OccurrenceOverride:
        """
        Take the occurrence on `occurrence_date` out of the series' automatic generation.
        It keeps being listed on its own, every other date is left untouched.
        """
        with transaction.atomic():
            series = self._get_series(series_id)
            override = self._get_override(series, occurrence_date)
            self._ensure_occurrence(series, occurrence_date, override)
            if override is not None and override.is_detached:
                return override
            override = self._save_override(
                series, occurrence_date, override, {}, is_detached=True
            )

        logger.info("Detached occurrence of series %s on %s", series_id, occurrence_date)
        self.occurrence_cache.invalidate(self.user.id)
        return override

    @requires_authentication
    @translate_store_errors
    def move(
        self,
        series_id: int,
        from_date: datetime.date,
        to_date: datetime.date,
        **fields: Any,
    ) -> OccurrenceOverride:
        """
        Move the occurrence on `from_date` to `to_date`.

        `from_date` gets a skip marker pointing at `to_date`, and `to_date` gets a detached
        occurrence pointing back at `from_date`, with `fields` merged over the series
        defaults (or over the override already on `to_date`). Moving an occurrence back to
        where it came from clears the skip marker instead, and moving an already moved
        occurrence again keeps pointing at its original date.

        Retrying a move that already went through converges to the same state, including a
        later hop of a chained move and the move back to the origin.

        :raises ConflictOnMoveError: when `to_date` holds an occurrence moved from another
            date, or its own occurrence was moved elsewhere.
        """
        self._validate_fields(fields)
        if from_date == to_date:
            raise SchedulingValidationError("An occurrence can't be moved onto its own date.")

        with transaction.atomic():
            series = self._get_series(series_id)
            source = self._get_override(series, from_date)
            target = self._get_override(series, to_date)

            is_resumed = (
                source is not None and source.is_skipped and source.moved_to_date == to_date
            )
            if (
                is_resumed
                and target is not None
                and not target.is_skipped
                and target.moved_from_date == from_date
            ):
                result = self._save_override(series, to_date, target, fields)
                self.occurrence_cache.invalidate(self.user.id)
                return result
            if not is_resumed and self._is_finished_hop(series, from_date, source, to_date, target):
                result = self._save_override(series, to_date, target, fields)
                self.occurrence_cache.invalidate(self.user.id)
                return result

            # a marker pointing at `to_date` without its target is finished, not re-validated
            if not is_resumed:
                self._ensure_occurrence(series, from_date, source)
            is_moved_in = source is not None and source.moved_from_date is not None
            origin = source.moved_from_date if is_moved_in else from_date

            if to_date == origin:
                result = self._return_to_origin(series, source, target, fields)
            else:
                self._check_move_target(target, origin, to_date)
                if is_moved_in:
                    self._release_moved_in(series, source, to_date)
                    origin_marker = self._get_override(series, origin)
                    if origin_marker is not None and origin_marker.is_skipped:
                        origin_marker.moved_to_date = to_date
                        origin_marker.save(update_fields=["moved_to_date", "modified"])
                else:
                    self._save_override(
                        series, from_date, source, {}, is_skipped=True, moved_to_date=to_date
                    )
                result = self._save_override(
                    series,
                    to_date,
                    target,
                    fields,
                    is_detached=True,
                    is_skipped=False,
                    moved_from_date=origin,
                    moved_to_date=None,
                )

        logger.info("Moved occurrence of series %s from %s to %s", series_id, from_date, to_date)
        self.occurrence_cache.invalidate(self.user.id)
        return result

    def _return_to_origin(
        self,
        series: TaskSeries,
        source: OccurrenceOverride,
        target: OccurrenceOverride | None,
        fields: dict[str, Any],
    ) -> OccurrenceOverride:
        origin = source.moved_from_date
        if target is not None and not target.is_skipped and target.moved_from_date is not None:
            raise ConflictOnMoveError(
                origin, f"it already holds an occurrence moved from {target.moved_from_date}"
            )

        is_detached = not self._is_projected(series, origin) or (
            target is not None and target.is_detached
        )
        restored = self._save_override(
            series,
            origin,
            target,
            fields,
            is_skipped=False,
            is_detached=is_detached,
            moved_to_date=None,
        )
        self._release_moved_in(series, source, origin)
        return restored

    @requires_authentication
    def visible_override(
        self, series: TaskSeries, occurrence_date: datetime.date
    ) -> OccurrenceOverride | None:
        """
        Return the override of the occurrence on `occurrence_date` (`None` when it is a plain
        projected occurrence).

        :raises OccurrenceNotFoundError: if the series shows nothing on that date.
        """
        override = self._get_override(series, occurrence_date)
        self._ensure_occurrence(series, occurrence_date, override)
        return override

    @requires_authentication
    def soft_delete_overrides(
        self,
        series: TaskSeries,
        deleted_at: datetime.datetime | None = None,
        from_date: datetime.date | None = None,
    ) -> int:
        """
        Soft delete the series' exceptions, optionally only the ones on or after
        `from_date`. Every row gets the same `deleted_at`, which is what `restore_overrides`
        matches on.
        """
        deleted_at = deleted_at or timezone.now()
        queryset = OccurrenceOverride.objects.active().filter(series=series)
        if from_date is not None:
            queryset = queryset.filter(occurrence_date__gte=from_date)
        return queryset.update(is_deleted=True, deleted_at=deleted_at, modified=deleted_at)

    @requires_authentication
    def restore_overrides(self, series: TaskSeries, deleted_at: datetime.datetime) -> int:
        """Restore the exceptions soft deleted together with the series at `deleted_at`."""
        restorable = OccurrenceOverride.objects.deleted().filter(
            series=series, deleted_at=deleted_at
        )
        # dates that got a new exception in the meantime keep the new one
        taken_dates = OccurrenceOverride.objects.active().filter(series=series)
        return restorable.exclude(
            occurrence_date__in=taken_dates.values("occurrence_date")
        ).update(is_deleted=False, deleted_at=None, modified=timezone.now())
