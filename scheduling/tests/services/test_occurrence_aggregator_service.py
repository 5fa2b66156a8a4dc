import datetime
from unittest.mock import patch

from django.db import DatabaseError

import pytest
from model_bakery import baker

from goals.models import Goal, LifeVision
from scheduling.constants import OccurrenceKind, RecurrenceType
from scheduling.exceptions import SchedulingValidationError, StoreUnavailableError
from scheduling.models import IndependentTask, OccurrenceOverride
from scheduling.services.dataclasses import IndependentTaskRef, OccurrenceRef
from scheduling.services.occurrence_aggregator_service import OccurrenceAggregatorService


# Helpers
def _d(day, month=1, year=2025):
    return datetime.date(year, month, day)


def _t(hour, minute=0):
    return datetime.time(hour, minute)


def _dates(result, **filters):
    return [
        occurrence.occurrence_date
        for occurrence in result.occurrences
        if all(getattr(occurrence, key) == value for key, value in filters.items())
    ]


def _days_between(start, end):
    return [start + datetime.timedelta(days=n) for n in range((end - start).days + 1)]


@pytest.mark.django_db
class TestProjection:
    @pytest.mark.parametrize("offset", [0, 1, 3, 6])
    def test_weekly_series_lists_only_its_weekdays(
        self, occurrence_aggregator_service, make_series, offset
    ):
        make_series(
            recurrence_type=RecurrenceType.WEEKLY, days_of_week="MO,WE,FR", start_date=_d(1)
        )
        range_start = _d(6) + datetime.timedelta(days=offset)
        range_end = range_start + datetime.timedelta(days=13)

        result = occurrence_aggregator_service.occurrences_for_range(range_start, range_end)

        expected = [
            day for day in _days_between(range_start, range_end) if day.weekday() in (0, 2, 4)
        ]
        assert _dates(result) == expected
        assert len(expected) == 6

    def test_bounded_daily_series_is_clipped(self, occurrence_aggregator_service, make_series):
        make_series(start_date=_d(1, year=2024), end_date=_d(10, year=2024))

        result = occurrence_aggregator_service.occurrences_for_range(
            _d(5, year=2024), _d(20, year=2024)
        )

        assert _dates(result) == _days_between(_d(5, year=2024), _d(10, year=2024))

    def test_delete_future_occurrences_empties_later_ranges(
        self, occurrence_aggregator_service, series_mutator_service, make_series
    ):
        series = make_series(start_date=_d(1, year=2024))

        series_mutator_service.delete_future_occurrences(series.id, _d(1, month=2, year=2024))

        series.refresh_from_db()
        assert series.end_date == _d(31, year=2024)
        result = occurrence_aggregator_service.occurrences_for_range(
            _d(1, month=2, year=2024), _d(7, month=2, year=2024)
        )
        assert result.occurrences == []
        assert result.error is None

    def test_daily_instances_are_listed_separately(
        self, occurrence_aggregator_service, make_series
    ):
        series = make_series(times_per_day=2)

        result = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(6))

        assert [(o.series_id, o.instance_number) for o in result.occurrences] == [
            (series.id, 1),
            (series.id, 2),
        ]

    def test_hidden_series_are_left_out(
        self, occurrence_aggregator_service, make_series, other_user
    ):
        make_series(is_deleted=True)
        make_series(is_active=False)
        make_series(user=other_user)

        result = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(12))

        assert result.occurrences == []


@pytest.mark.django_db
class TestExceptions:
    def test_skips_overrides_and_moves(
        self, occurrence_aggregator_service, exception_store_service, make_series
    ):
        series = make_series(title="Run", default_time_start=_t(7), default_time_end=_t(8))
        exception_store_service.mark_skip(series.id, _d(7))
        exception_store_service.upsert_override(series.id, _d(8), title="Long run")
        exception_store_service.move(series.id, _d(9), _d(10), time_start=_t(18), time_end=_t(19))

        result = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(10))

        assert [(o.occurrence_date, o.kind, o.title, o.time_start) for o in result.occurrences] == [
            (_d(6), OccurrenceKind.SERIES, "Run", _t(7)),
            (_d(8), OccurrenceKind.SERIES, "Long run", _t(7)),
            (_d(10), OccurrenceKind.DETACHED, "Run", _t(18)),
        ]
        assert result.occurrences[2].moved_from_date == _d(9)

    def test_moved_occurrence_outside_bounds_is_listed(
        self, occurrence_aggregator_service, exception_store_service, make_series
    ):
        series = make_series(end_date=_d(8))

        exception_store_service.move(series.id, _d(8), _d(11))

        result = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(12))
        assert _dates(result) == [_d(6), _d(7), _d(11)]

    def test_round_trip_move_restores_the_listing(
        self, occurrence_aggregator_service, exception_store_service, make_series
    ):
        series = make_series()
        before = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(12))

        exception_store_service.move(series.id, _d(7), _d(9), title="Moved")
        exception_store_service.move(series.id, _d(9), _d(7), title=None)

        after = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(12))
        assert [(o.occurrence_date, o.kind, o.title) for o in after.occurrences] == [
            (o.occurrence_date, o.kind, o.title) for o in before.occurrences
        ]

    def test_exceptions_of_deleted_series_are_left_out(
        self, occurrence_aggregator_service, exception_store_service, make_series, user
    ):
        series = make_series()
        exception_store_service.detach(series.id, _d(8))
        series.soft_delete()

        result = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(12))

        assert result.occurrences == []

    def test_split_attributes_each_date_to_one_series(
        self, occurrence_aggregator_service, series_mutator_service, make_series
    ):
        series = make_series()

        continuation = series_mutator_service.split_series(series.id, _d(10))

        result = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(15))
        by_date = {}
        for occurrence in result.occurrences:
            by_date.setdefault(occurrence.occurrence_date, set()).add(occurrence.series_id)
        assert all(
            ids == ({continuation.id} if day >= _d(10) else {series.id})
            for day, ids in by_date.items()
        )
        assert sorted(by_date) == _days_between(_d(6), _d(15))


@pytest.mark.django_db
class TestOrderingAndLineage:
    def test_sorted_by_date_then_time_with_unscheduled_last(
        self, occurrence_aggregator_service, make_series, user
    ):
        make_series(title="Zumba", default_time_start=_t(9), end_date=_d(6))
        make_series(title="breakfast", default_time_start=_t(9), end_date=_d(6))
        make_series(title="Anytime", end_date=_d(6))
        baker.make(
            IndependentTask, user=user, title="Dentist", scheduled_date=_d(6), time_start=_t(8)
        )

        result = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(6))

        assert [o.title for o in result.occurrences] == [
            "Dentist",
            "breakfast",
            "Zumba",
            "Anytime",
        ]
        assert result.occurrences[-1].is_scheduled is False

    def test_lineage_and_focus_filter(self, occurrence_aggregator_service, make_series, user):
        vision = baker.make(LifeVision, user=user, is_focus=True)
        focused_goal = baker.make(Goal, user=user, title="Marathon", vision=vision)
        other_goal = baker.make(Goal, user=user, title="Read more", vision=None)
        make_series(title="Run", goal=focused_goal, end_date=_d(6))
        make_series(title="Read", goal=other_goal, end_date=_d(6))
        baker.make(
            IndependentTask, user=user, title="Buy shoes", scheduled_date=_d(6), goal=focused_goal
        )

        everything = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(6))
        focused = occurrence_aggregator_service.occurrences_for_range(
            _d(6), _d(6), focused_only=True
        )

        assert {(o.title, o.goal_title, o.is_focused) for o in everything.occurrences} == {
            ("Run", "Marathon", True),
            ("Read", "Read more", False),
            ("Buy shoes", "Marathon", True),
        }
        assert sorted(o.title for o in focused.occurrences) == ["Buy shoes", "Run"]


@pytest.mark.django_db
class TestCompletionAndCounters:
    def test_completion_state_and_counters(
        self, occurrence_aggregator_service, completion_tracker_service, make_series
    ):
        series = make_series(recurrence_type=RecurrenceType.WEEKLY, days_of_week="MO,TH")
        completion_tracker_service.toggle(OccurrenceRef(series.id, _d(9)))

        result = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(19))

        assert [(o.occurrence_date, o.is_completed) for o in result.occurrences] == [
            (_d(6), False),
            (_d(9), True),
            (_d(13), False),
            (_d(16), False),
        ]
        assert [(c.period_start, c.planned_count, c.actual_count) for c in result.counters] == [
            (_d(6), 2, 1),
            (_d(13), 2, 0),
        ]

    def test_independent_task_toggle_never_touches_counters(
        self, occurrence_aggregator_service, completion_tracker_service, user
    ):
        task = baker.make(IndependentTask, user=user, scheduled_date=_d(10, month=3, year=2024))
        ref = IndependentTaskRef(task.id)
        day = _d(10, month=3, year=2024)

        assert completion_tracker_service.toggle(ref).is_completed is True
        result = occurrence_aggregator_service.occurrences_for_range(day, day)
        assert [o.is_completed for o in result.occurrences] == [True]
        assert result.counters == []

        assert completion_tracker_service.toggle(ref).is_completed is False
        result = occurrence_aggregator_service.occurrences_for_range(day, day)
        assert [o.is_completed for o in result.occurrences] == [False]

    def test_counter_stays_non_negative_over_toggles(
        self, occurrence_aggregator_service, completion_tracker_service, make_series
    ):
        series = make_series(times_per_day=2)
        refs = [
            OccurrenceRef(series.id, _d(7), 1),
            OccurrenceRef(series.id, _d(7), 2),
            OccurrenceRef(series.id, _d(8), 1),
        ]

        for ref in [*refs, refs[0], refs[0], refs[1], refs[2], refs[1], refs[2]]:
            result = completion_tracker_service.toggle(ref)
            assert result.actual_count >= 0

        counters = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(12)).counters
        assert [c.actual_count for c in counters] == [3]


@pytest.mark.django_db
class TestBatchLoading:
    def _populate(self, make_series, exception_store_service, user, count):
        vision = baker.make(LifeVision, user=user, is_focus=True)
        goal = baker.make(Goal, user=user, vision=vision)
        for n in range(count):
            series = make_series(title=f"Series {n}", goal=goal)
            exception_store_service.mark_skip(series.id, _d(7))
            exception_store_service.move(series.id, _d(8), _d(9))
        baker.make(IndependentTask, user=user, scheduled_date=_d(8), goal=goal, _quantity=count)

    @pytest.mark.parametrize("count", [1, 12])
    def test_query_count_does_not_grow_with_the_data(
        self,
        occurrence_aggregator_service,
        exception_store_service,
        make_series,
        user,
        count,
        django_assert_max_num_queries,
    ):
        self._populate(make_series, exception_store_service, user, count)

        with django_assert_max_num_queries(10):
            result = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(19))

        # per series: 14 days, minus the skipped day and the move that collapses onto a
        # projected day, plus one independent task
        assert len(result.occurrences) == count * (14 - 2) + count

    def test_cached_range_is_served_without_queries(
        self, occurrence_aggregator_service, make_series, django_assert_num_queries
    ):
        make_series()
        first = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(12))

        with django_assert_num_queries(0):
            second = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(12))

        assert second == first

    def test_writes_invalidate_the_cached_range(
        self, occurrence_aggregator_service, series_mutator_service, make_series
    ):
        series = make_series()
        occurrence_aggregator_service.occurrences_for_range(_d(6), _d(12))

        series_mutator_service.delete_occurrence(series.id, _d(8))

        result = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(12))
        assert _d(8) not in _dates(result)


@pytest.mark.django_db
class TestFailures:
    def test_store_failure_degrades_to_an_empty_result(
        self, occurrence_aggregator_service, make_series
    ):
        make_series()

        with patch.object(
            OccurrenceAggregatorService, "_build_range", side_effect=DatabaseError("down")
        ):
            result = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(12))

        assert result.occurrences == []
        assert result.counters == []
        assert result.error == StoreUnavailableError.default_message
        assert result.is_degraded is True

        recovered = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(12))
        assert recovered.error is None
        assert len(recovered.occurrences) == 7

    def test_failure_while_loading_overrides_returns_nothing(
        self, occurrence_aggregator_service, make_series
    ):
        make_series()

        with patch.object(
            OccurrenceOverride.objects, "filter_by_user", side_effect=DatabaseError("down")
        ):
            result = occurrence_aggregator_service.occurrences_for_range(_d(6), _d(12))

        assert result.occurrences == []
        assert result.error is not None

    def test_invalid_ranges_are_rejected(self, occurrence_aggregator_service):
        with pytest.raises(SchedulingValidationError):
            occurrence_aggregator_service.occurrences_for_range(_d(12), _d(6))

        with pytest.raises(SchedulingValidationError):
            occurrence_aggregator_service.occurrences_for_range(_d(1), _d(2, year=2026))
