import datetime

from django.core.cache import cache

import pytest
from model_bakery import baker
from rest_framework.test import APIClient


@pytest.fixture(autouse=True)
def clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def user_password():
    from users.factories import DEFAULT_TEST_USER_PASSWORD

    return DEFAULT_TEST_USER_PASSWORD


@pytest.fixture
def user(db, user_password):
    from users.factories import UserFactory

    return UserFactory().create_user()


@pytest.fixture
def other_user(db):
    from users.factories import UserFactory

    return UserFactory().create_user()


@pytest.fixture
def auth_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def anonymous_client():
    client = APIClient()
    return client


@pytest.fixture
def di_container():
    """Fixture to create a DI container."""
    from di_core.containers import container

    return container


@pytest.fixture
def occurrence_cache():
    from scheduling.services.occurrence_cache import OccurrenceRangeCache

    return OccurrenceRangeCache(timeout=300)


@pytest.fixture
def exception_store_service(user, occurrence_cache):
    from scheduling.services.exception_store_service import ExceptionStoreService

    service = ExceptionStoreService(occurrence_cache=occurrence_cache)
    service.authenticate(user)
    return service


@pytest.fixture
def completion_tracker_service(user, occurrence_cache):
    from scheduling.services.completion_tracker_service import CompletionTrackerService

    service = CompletionTrackerService(occurrence_cache=occurrence_cache)
    service.authenticate(user)
    return service


@pytest.fixture
def series_mutator_service(user, occurrence_cache):
    from scheduling.services.completion_tracker_service import CompletionTrackerService
    from scheduling.services.exception_store_service import ExceptionStoreService
    from scheduling.services.series_mutator_service import SeriesMutatorService

    service = SeriesMutatorService(
        exception_store_service=ExceptionStoreService(occurrence_cache=occurrence_cache),
        completion_tracker_service=CompletionTrackerService(occurrence_cache=occurrence_cache),
        occurrence_cache=occurrence_cache,
    )
    service.authenticate(user)
    return service


@pytest.fixture
def occurrence_aggregator_service(user, occurrence_cache):
    from scheduling.services.completion_tracker_service import CompletionTrackerService
    from scheduling.services.occurrence_aggregator_service import OccurrenceAggregatorService

    service = OccurrenceAggregatorService(
        completion_tracker_service=CompletionTrackerService(occurrence_cache=occurrence_cache),
        occurrence_cache=occurrence_cache,
    )
    service.authenticate(user)
    return service


@pytest.fixture
def make_series(user):
    """Create a series for `user`; daily from Monday 2025-01-06 unless told otherwise."""
    from scheduling.constants import RecurrenceType
    from scheduling.models import TaskSeries

    def _make_series(**kwargs):
        kwargs.setdefault("user", user)
        kwargs.setdefault("title", "Stretch")
        kwargs.setdefault("recurrence_type", RecurrenceType.DAILY)
        kwargs.setdefault("times_per_day", 1)
        kwargs.setdefault("days_of_week", "")
        kwargs.setdefault("start_date", datetime.date(2025, 1, 6))
        kwargs.setdefault("end_date", None)
        kwargs.setdefault("default_time_start", None)
        kwargs.setdefault("default_time_end", None)
        kwargs.setdefault("goal", None)
        kwargs.setdefault("split_parent", None)
        return baker.make(TaskSeries, **kwargs)

    return _make_series
