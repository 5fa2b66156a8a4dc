import datetime
import json
from unittest.mock import Mock, patch

from django.db import DatabaseError
from django.urls import reverse

import pytest
from model_bakery import baker
from rest_framework import status

from scheduling.exceptions import StoreUnavailableError
from scheduling.models import IndependentTask, OccurrenceOverride, TaskSeries
from scheduling.services.occurrence_aggregator_service import OccurrenceAggregatorService
from scheduling.services.series_mutator_service import SeriesMutatorService


def assert_response_status_code(response, expected_status_code):
    assert response.status_code == expected_status_code, (
        f"The status error {response.status_code} != {expected_status_code}\n"
        f"Response Payload: {json.dumps(response.json())}"
    )


@pytest.fixture
def series(make_series):
    return make_series(
        title="Stretch",
        default_time_start=datetime.time(7),
        default_time_end=datetime.time(8),
    )


@pytest.mark.django_db
class TestTaskSeriesViewSet:
    def test_list_only_returns_own_active_series(
        self, auth_client, series, make_series, other_user
    ):
        make_series(user=other_user)
        make_series(is_deleted=True)

        response = auth_client.get(reverse("api:TaskSeries-list"))

        assert_response_status_code(response, status.HTTP_200_OK)
        assert [item["id"] for item in response.data["results"]] == [series.id]

    def test_anonymous_requests_are_rejected(self, anonymous_client):
        response = anonymous_client.get(reverse("api:TaskSeries-list"))

        assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)

    def test_create_weekly_series(self, auth_client, user):
        response = auth_client.post(
            reverse("api:TaskSeries-list"),
            {
                "title": "Gym",
                "recurrence": {"recurrence_type": "weekly", "days_of_week": ["FR", "MO"]},
                "start_date": "2025-01-06",
                "default_time_start": "18:00",
                "default_time_end": "19:00",
            },
            format="json",
        )

        assert_response_status_code(response, status.HTTP_201_CREATED)
        assert response.data["days_of_week"] == ["MO", "FR"]
        assert TaskSeries.objects.get(id=response.data["id"]).user == user

    def test_create_weekly_series_without_days_fails(self, auth_client):
        response = auth_client.post(
            reverse("api:TaskSeries-list"),
            {
                "title": "Gym",
                "recurrence": {"recurrence_type": "weekly", "days_of_week": []},
                "start_date": "2025-01-06",
            },
            format="json",
        )

        assert_response_status_code(response, status.HTTP_400_BAD_REQUEST)
        assert "days_of_week" in response.data["recurrence"]
        assert not TaskSeries.objects.exists()

    def test_create_with_times_in_the_wrong_order_fails(self, auth_client):
        response = auth_client.post(
            reverse("api:TaskSeries-list"),
            {
                "title": "Gym",
                "recurrence": {"recurrence_type": "daily"},
                "start_date": "2025-01-06",
                "default_time_start": "19:00",
                "default_time_end": "18:00",
            },
            format="json",
        )

        assert_response_status_code(response, status.HTTP_400_BAD_REQUEST)
        assert "default_time_end" in response.data

    def test_retrieve_series_of_other_user_is_not_found(
        self, auth_client, make_series, other_user
    ):
        foreign_series = make_series(user=other_user)

        response = auth_client.get(
            reverse("api:TaskSeries-detail", kwargs={"pk": foreign_series.id})
        )

        assert_response_status_code(response, status.HTTP_404_NOT_FOUND)

    def test_destroy_and_restore(self, auth_client, series):
        url = reverse("api:TaskSeries-detail", kwargs={"pk": series.id})

        response = auth_client.delete(url)

        assert response.status_code == status.HTTP_204_NO_CONTENT
        series.refresh_from_db()
        assert series.is_deleted is True

        response = auth_client.post(reverse("api:TaskSeries-restore", kwargs={"pk": series.id}))

        assert_response_status_code(response, status.HTTP_200_OK)
        assert response.data["is_deleted"] is False

    def test_update_rule(self, auth_client, series):
        response = auth_client.post(
            reverse("api:TaskSeries-update-rule", kwargs={"pk": series.id}),
            {"recurrence": {"recurrence_type": "daily", "times_per_day": 3}},
            format="json",
        )

        assert_response_status_code(response, status.HTTP_200_OK)
        assert response.data["times_per_day"] == 3

    def test_split(self, auth_client, series):
        response = auth_client.post(
            reverse("api:TaskSeries-split", kwargs={"pk": series.id}),
            {"split_date": "2025-01-10", "title": "Long stretch"},
            format="json",
        )

        assert_response_status_code(response, status.HTTP_201_CREATED)
        assert response.data["split_parent"] == series.id
        assert response.data["title"] == "Long stretch"
        series.refresh_from_db()
        assert series.end_date == datetime.date(2025, 1, 9)

    def test_split_on_the_first_date_is_rejected(self, auth_client, series):
        response = auth_client.post(
            reverse("api:TaskSeries-split", kwargs={"pk": series.id}),
            {"split_date": "2025-01-06"},
            format="json",
        )

        assert_response_status_code(response, status.HTTP_400_BAD_REQUEST)
        assert "non_field_errors" in response.data

    def test_convert_to_independent(self, auth_client, series):
        response = auth_client.post(
            reverse("api:TaskSeries-convert-to-independent", kwargs={"pk": series.id}),
            {"keep_date": "2025-01-08"},
            format="json",
        )

        assert_response_status_code(response, status.HTTP_201_CREATED)
        assert response.data["source_series"] == series.id
        assert response.data["scheduled_date"] == "2025-01-08"

    def test_convert_to_independent_on_the_first_date_deletes_the_series(
        self, auth_client, series
    ):
        response = auth_client.post(
            reverse("api:TaskSeries-convert-to-independent", kwargs={"pk": series.id}),
            {"keep_date": "2025-01-06"},
            format="json",
        )

        assert response.status_code == status.HTTP_204_NO_CONTENT
        series.refresh_from_db()
        assert series.is_deleted is True

    def test_delete_future(self, auth_client, series):
        response = auth_client.post(
            reverse("api:TaskSeries-delete-future", kwargs={"pk": series.id}),
            {"from_date": "2025-02-01"},
            format="json",
        )

        assert_response_status_code(response, status.HTTP_200_OK)
        assert response.data["end_date"] == "2025-01-31"

    def test_override_skip_and_unskip(self, auth_client, series):
        override_response = auth_client.post(
            reverse("api:TaskSeries-override", kwargs={"pk": series.id}),
            {"occurrence_date": "2025-01-08", "title": "Yoga", "time_start": "06:30"},
            format="json",
        )
        skip_response = auth_client.post(
            reverse("api:TaskSeries-skip", kwargs={"pk": series.id}),
            {"occurrence_date": "2025-01-08"},
            format="json",
        )
        unskip_response = auth_client.post(
            reverse("api:TaskSeries-unskip", kwargs={"pk": series.id}),
            {"occurrence_date": "2025-01-08"},
            format="json",
        )

        assert_response_status_code(override_response, status.HTTP_200_OK)
        assert override_response.data["time_start"] == "06:30:00"
        assert override_response.data["time_end"] == "08:00:00"
        assert_response_status_code(skip_response, status.HTTP_200_OK)
        assert skip_response.data["is_skipped"] is True
        assert_response_status_code(unskip_response, status.HTTP_200_OK)
        assert unskip_response.data["is_skipped"] is False
        assert unskip_response.data["title"] == "Yoga"

    def test_override_on_a_date_without_occurrence_is_not_found(self, auth_client, series):
        response = auth_client.post(
            reverse("api:TaskSeries-override", kwargs={"pk": series.id}),
            {"occurrence_date": "2025-01-01", "title": "Yoga"},
            format="json",
        )

        assert_response_status_code(response, status.HTTP_404_NOT_FOUND)

    def test_detach(self, auth_client, series):
        response = auth_client.post(
            reverse("api:TaskSeries-detach", kwargs={"pk": series.id}),
            {"occurrence_date": "2025-01-08"},
            format="json",
        )

        assert_response_status_code(response, status.HTTP_200_OK)
        assert response.data["is_detached"] is True

    def test_move_and_conflicting_move(self, auth_client, series):
        url = reverse("api:TaskSeries-move", kwargs={"pk": series.id})

        response = auth_client.post(
            url,
            {"from_date": "2025-01-07", "to_date": "2025-01-09", "title": "Moved"},
            format="json",
        )

        assert_response_status_code(response, status.HTTP_200_OK)
        assert response.data["moved_from_date"] == "2025-01-07"

        response = auth_client.post(
            url, {"from_date": "2025-01-08", "to_date": "2025-01-09"}, format="json"
        )

        assert_response_status_code(response, status.HTTP_409_CONFLICT)
        assert OccurrenceOverride.objects.active().count() == 2

    def test_move_onto_the_same_date_is_rejected(self, auth_client, series):
        response = auth_client.post(
            reverse("api:TaskSeries-move", kwargs={"pk": series.id}),
            {"from_date": "2025-01-07", "to_date": "2025-01-07"},
            format="json",
        )

        assert_response_status_code(response, status.HTTP_400_BAD_REQUEST)
        assert "to_date" in response.data

    def test_complete_toggles_and_sets(self, auth_client, series):
        url = reverse("api:TaskSeries-complete", kwargs={"pk": series.id})

        toggled = auth_client.post(url, {"occurrence_date": "2025-01-08"}, format="json")
        explicit = auth_client.post(
            url, {"occurrence_date": "2025-01-08", "completed": True}, format="json"
        )

        assert_response_status_code(toggled, status.HTTP_200_OK)
        assert toggled.data["is_completed"] is True
        assert toggled.data["actual_count"] == 1
        assert explicit.data["is_completed"] is True
        assert explicit.data["actual_count"] == 1

    def test_store_failure_is_reported_as_unavailable(self, auth_client, di_container, series):
        mock_service = Mock(spec=SeriesMutatorService)
        mock_service.delete_entire_series.side_effect = StoreUnavailableError()

        with di_container.series_mutator_service.override(mock_service):
            response = auth_client.delete(
                reverse("api:TaskSeries-detail", kwargs={"pk": series.id})
            )

        assert_response_status_code(response, status.HTTP_503_SERVICE_UNAVAILABLE)
        mock_service.authenticate.assert_called_once()


@pytest.mark.django_db
class TestIndependentTaskViewSet:
    def test_create_and_list(self, auth_client, user):
        response = auth_client.post(
            reverse("api:IndependentTasks-list"),
            {"title": "Dentist", "scheduled_date": "2024-03-10", "time_start": "09:00"},
            format="json",
        )

        assert_response_status_code(response, status.HTTP_201_CREATED)
        task_id = response.data["id"]

        response = auth_client.get(reverse("api:IndependentTasks-list"))

        assert [item["id"] for item in response.data["results"]] == [task_id]

    def test_complete_toggles_the_task(self, auth_client, user):
        task = baker.make(IndependentTask, user=user, scheduled_date=datetime.date(2024, 3, 10))
        url = reverse("api:IndependentTasks-complete", kwargs={"pk": task.id})

        first = auth_client.post(url, {}, format="json")
        second = auth_client.post(url, {}, format="json")

        assert first.data["is_completed"] is True
        assert second.data["is_completed"] is False
        assert first.data["actual_count"] is None

    def test_convert_to_recurring(self, auth_client, user):
        task = baker.make(IndependentTask, user=user, scheduled_date=datetime.date(2025, 1, 8))

        response = auth_client.post(
            reverse("api:IndependentTasks-convert-to-recurring", kwargs={"pk": task.id}),
            {"recurrence": {"recurrence_type": "weekly", "days_of_week": ["WE"]}},
            format="json",
        )

        assert_response_status_code(response, status.HTTP_201_CREATED)
        assert response.data["start_date"] == "2025-01-08"
        assert not auth_client.get(reverse("api:IndependentTasks-list")).data["results"]

    def test_destroy_and_restore(self, auth_client, user):
        task = baker.make(IndependentTask, user=user, scheduled_date=datetime.date(2025, 1, 8))

        response = auth_client.delete(
            reverse("api:IndependentTasks-detail", kwargs={"pk": task.id})
        )
        assert response.status_code == status.HTTP_204_NO_CONTENT

        response = auth_client.post(
            reverse("api:IndependentTasks-restore", kwargs={"pk": task.id})
        )
        assert_response_status_code(response, status.HTTP_200_OK)
        assert response.data["is_deleted"] is False

    def test_task_of_other_user_is_not_found(self, auth_client, other_user):
        task = baker.make(
            IndependentTask, user=other_user, scheduled_date=datetime.date(2025, 1, 8)
        )

        response = auth_client.post(
            reverse("api:IndependentTasks-complete", kwargs={"pk": task.id}), {}, format="json"
        )

        assert_response_status_code(response, status.HTTP_404_NOT_FOUND)


@pytest.mark.django_db
class TestOccurrenceViewSet:
    def test_list_range(self, auth_client, series, user):
        baker.make(
            IndependentTask,
            user=user,
            title="Dentist",
            scheduled_date=datetime.date(2025, 1, 7),
        )

        response = auth_client.get(
            reverse("api:Occurrences-list"),
            {"start_date": "2025-01-06", "end_date": "2025-01-07"},
        )

        assert_response_status_code(response, status.HTTP_200_OK)
        assert [
            (item["occurrence_date"], item["kind"], item["title"])
            for item in response.data["occurrences"]
        ] == [
            ("2025-01-06", "series", "Stretch"),
            ("2025-01-07", "series", "Stretch"),
            ("2025-01-07", "independent", "Dentist"),
        ]
        assert response.data["error"] is None
        assert response.data["counters"][0]["planned_count"] == 7

    def test_missing_range_is_rejected(self, auth_client):
        response = auth_client.get(reverse("api:Occurrences-list"))

        assert_response_status_code(response, status.HTTP_400_BAD_REQUEST)
        assert "start_date" in response.data

    def test_too_long_range_is_rejected(self, auth_client):
        response = auth_client.get(
            reverse("api:Occurrences-list"),
            {"start_date": "2025-01-01", "end_date": "2026-06-01"},
        )

        assert_response_status_code(response, status.HTTP_400_BAD_REQUEST)

    def test_store_failure_returns_an_empty_list_and_the_error(self, auth_client, series):
        with patch.object(
            OccurrenceAggregatorService, "_build_range", side_effect=DatabaseError("down")
        ):
            response = auth_client.get(
                reverse("api:Occurrences-list"),
                {"start_date": "2025-01-06", "end_date": "2025-01-12"},
            )

        assert_response_status_code(response, status.HTTP_503_SERVICE_UNAVAILABLE)
        assert response.data["occurrences"] == []
        assert response.data["error"] == StoreUnavailableError.default_message
