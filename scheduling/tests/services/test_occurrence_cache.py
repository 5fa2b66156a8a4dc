import datetime

import pytest

from scheduling.constants import OccurrenceKind
from scheduling.services.dataclasses import (
    IndependentTaskRef,
    OccurrenceData,
    OccurrenceRangeResult,
    OccurrenceRef,
)
from scheduling.services.occurrence_cache import OccurrenceRangeCache


RANGE_START = datetime.date(2025, 1, 6)
RANGE_END = datetime.date(2025, 1, 12)


@pytest.fixture
def cache():
    return OccurrenceRangeCache(timeout=60)


@pytest.fixture
def result():
    return OccurrenceRangeResult(
        range_start=RANGE_START,
        range_end=RANGE_END,
        occurrences=[
            OccurrenceData(
                kind=OccurrenceKind.SERIES,
                title="Stretch",
                occurrence_date=RANGE_START,
                time_start=None,
                time_end=None,
                is_completed=False,
                series_id=1,
            ),
            OccurrenceData(
                kind=OccurrenceKind.INDEPENDENT,
                title="Dentist",
                occurrence_date=RANGE_START,
                time_start=datetime.time(9),
                time_end=datetime.time(10),
                is_completed=False,
                task_id=7,
            ),
        ],
    )


def test_get_returns_what_was_set(cache, result):
    assert cache.get(1, RANGE_START, RANGE_END) is None

    cache.set(1, RANGE_START, RANGE_END, result)

    assert cache.get(1, RANGE_START, RANGE_END) == result
    assert cache.get(1, RANGE_START, RANGE_START) is None
    assert cache.get(2, RANGE_START, RANGE_END) is None


@pytest.mark.django_db
def test_invalidate_drops_every_range_of_the_user_only(cache, result):
    other_range_end = RANGE_END + datetime.timedelta(days=7)
    cache.set(1, RANGE_START, RANGE_END, result)
    cache.set(1, RANGE_START, other_range_end, result)
    cache.set(2, RANGE_START, RANGE_END, result)

    cache.invalidate(1)

    assert cache.get(1, RANGE_START, RANGE_END) is None
    assert cache.get(1, RANGE_START, other_range_end) is None
    assert cache.get(2, RANGE_START, RANGE_END) == result


@pytest.mark.django_db(transaction=True)
def test_invalidate_runs_again_after_commit(cache, result):
    from django.db import transaction

    with transaction.atomic():
        cache.invalidate(1)
        # a concurrent read repopulates the cache before the write commits
        cache.set(1, RANGE_START, RANGE_END, result)

    assert cache.get(1, RANGE_START, RANGE_END) is None


def test_patch_completion_updates_matching_occurrences(cache, result):
    cache.set(1, RANGE_START, RANGE_END, result)

    snapshot = cache.patch_completion(
        1, OccurrenceRef(series_id=1, occurrence_date=RANGE_START), is_completed=True
    )

    patched = cache.get(1, RANGE_START, RANGE_END)
    assert patched.occurrences[0].is_completed is True
    assert patched.occurrences[1].is_completed is False
    assert len(snapshot) == 1


def test_patch_completion_ignores_ranges_without_the_occurrence(cache, result):
    cache.set(1, RANGE_START, RANGE_END, result)

    snapshot = cache.patch_completion(1, IndependentTaskRef(task_id=99), is_completed=True)

    assert snapshot == {}
    assert cache.get(1, RANGE_START, RANGE_END) == result


def test_rollback_restores_exact_prior_value(cache, result):
    cache.set(1, RANGE_START, RANGE_END, result)
    snapshot = cache.patch_completion(1, IndependentTaskRef(task_id=7), is_completed=True)
    assert cache.get(1, RANGE_START, RANGE_END).occurrences[1].is_completed is True

    cache.rollback(snapshot)

    assert cache.get(1, RANGE_START, RANGE_END) == result
