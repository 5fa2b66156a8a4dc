from typing import Annotated

from dependency_injector.wiring import Provide, inject
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.exceptions import APIException, NotAuthenticated, NotFound, ValidationError
from rest_framework.response import Response
from rest_framework.viewsets import ViewSet

from common.utils.view_utils import ServiceWriteModelViewSet
from scheduling.exceptions import (
    ConflictOnMoveError,
    NotAuthenticatedError,
    NotFoundError,
    StoreUnavailableError,
    TaskSchedulingError,
)
from scheduling.models import IndependentTask, TaskSeries
from scheduling.serializers import (
    CompletionResultSerializer,
    ConvertToRecurringSerializer,
    FromDateSerializer,
    IndependentTaskCreateSerializer,
    IndependentTaskSerializer,
    KeepDateSerializer,
    MoveOccurrenceSerializer,
    OccurrenceCompletionSerializer,
    OccurrenceDateSerializer,
    OccurrenceOverrideSerializer,
    OccurrenceRangeQuerySerializer,
    OccurrenceRangeSerializer,
    OverrideSerializer,
    SplitSeriesSerializer,
    TaskCompletionSerializer,
    TaskSeriesCreateSerializer,
    TaskSeriesSerializer,
    UpdateRuleSerializer,
)
from scheduling.services.completion_tracker_service import CompletionTrackerService
from scheduling.services.dataclasses import IndependentTaskRef, OccurrenceRef
from scheduling.services.exception_store_service import ExceptionStoreService
from scheduling.services.occurrence_aggregator_service import OccurrenceAggregatorService
from scheduling.services.series_mutator_service import SeriesMutatorService


class OccurrenceConflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The occurrence can't be moved to the requested date."
    default_code = "occurrence_conflict"


class StoreUnavailable(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = StoreUnavailableError.default_message
    default_code = "store_unavailable"


def _to_api_exception(exc: TaskSchedulingError) -> APIException:
    if isinstance(exc, NotAuthenticatedError):
        return NotAuthenticated(str(exc))
    if isinstance(exc, NotFoundError):
        return NotFound(str(exc))
    if isinstance(exc, ConflictOnMoveError):
        return OccurrenceConflict(str(exc))
    if isinstance(exc, StoreUnavailableError):
        return StoreUnavailable(str(exc))
    return ValidationError({"non_field_errors": [str(exc)]})


class SchedulingErrorsMixin:
    """Turns the scheduling service errors into the matching API error responses."""

    def handle_exception(self, exc):
        if isinstance(exc, TaskSchedulingError):
            exc = _to_api_exception(exc)
        return super().handle_exception(exc)


def _validated(serializer_class, data, **kwargs):
    serializer = serializer_class(data=data, **kwargs)
    serializer.is_valid(raise_exception=True)
    return serializer


class TaskSeriesViewSet(SchedulingErrorsMixin, ServiceWriteModelViewSet):
    """
    ViewSet for recurring task series and the exceptions of their occurrences.
    """

    serializer_class = TaskSeriesSerializer
    queryset = TaskSeries.objects.all()

    def get_queryset(self):
        user = self.request.user
        if not user.is_authenticated:
            return TaskSeries.objects.none()
        return (
            TaskSeries.objects.filter_by_user(user.id)
            .active()
            .select_related("goal")
            .order_by("start_date", "id")
        )

    @extend_schema(request=TaskSeriesCreateSerializer, responses={201: TaskSeriesSerializer})
    @inject
    def create(
        self,
        request,
        *args,
        series_mutator_service: Annotated[
            SeriesMutatorService, Provide["series_mutator_service"]
        ],
        **kwargs,
    ):
        data = _validated(TaskSeriesCreateSerializer, request.data).validated_data
        series_mutator_service.authenticate(request.user)
        series = series_mutator_service.create_series(
            title=data["title"],
            rule=data["recurrence"]["rule"],
            start_date=data["start_date"],
            end_date=data["end_date"],
            default_time_start=data["default_time_start"],
            default_time_end=data["default_time_end"],
            goal_id=data["goal"],
        )
        return Response(
            self.get_read_serializer(series).data,
            status=status.HTTP_201_CREATED,
        )

    @extend_schema(summary="Delete the whole series, keeping it restorable for a while")
    @inject
    def destroy(
        self,
        request,
        *args,
        series_mutator_service: Annotated[
            SeriesMutatorService, Provide["series_mutator_service"]
        ],
        **kwargs,
    ):
        series_mutator_service.authenticate(request.user)
        series_mutator_service.delete_entire_series(int(kwargs["pk"]))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(request=UpdateRuleSerializer, responses={200: TaskSeriesSerializer})
    @action(methods=["POST"], detail=True, url_path="update-rule", url_name="update-rule")
    @inject
    def update_rule(
        self,
        request,
        pk,
        series_mutator_service: Annotated[
            SeriesMutatorService, Provide["series_mutator_service"]
        ],
    ):
        data = _validated(UpdateRuleSerializer, request.data).validated_data
        series_mutator_service.authenticate(request.user)
        series = series_mutator_service.update_rule(int(pk), data["recurrence"]["rule"])
        return Response(self.get_read_serializer(series).data)

    @extend_schema(
        summary="Split the series in two",
        description=(
            "The series ends the day before `split_date` and a new series starting on "
            "`split_date` takes over, with the given fields changed."
        ),
        request=SplitSeriesSerializer,
        responses={201: TaskSeriesSerializer},
    )
    @action(methods=["POST"], detail=True, url_path="split", url_name="split")
    @inject
    def split(
        self,
        request,
        pk,
        series_mutator_service: Annotated[
            SeriesMutatorService, Provide["series_mutator_service"]
        ],
    ):
        serializer = _validated(SplitSeriesSerializer, request.data)
        series_mutator_service.authenticate(request.user)
        continuation = series_mutator_service.split_series(
            int(pk), serializer.validated_data["split_date"], **serializer.get_overrides()
        )
        return Response(
            self.get_read_serializer(continuation).data,
            status=status.HTTP_201_CREATED,
        )

    @extend_schema(
        summary="Keep a single occurrence as an independent task",
        description=(
            "Ends the series before `keep_date` and keeps that occurrence as an independent "
            "task. Returns no content when the whole series was removed instead."
        ),
        request=KeepDateSerializer,
        responses={201: IndependentTaskSerializer, 204: None},
    )
    @action(
        methods=["POST"],
        detail=True,
        url_path="convert-to-independent",
        url_name="convert-to-independent",
    )
    @inject
    def convert_to_independent(
        self,
        request,
        pk,
        series_mutator_service: Annotated[
            SeriesMutatorService, Provide["series_mutator_service"]
        ],
    ):
        data = _validated(KeepDateSerializer, request.data).validated_data
        series_mutator_service.authenticate(request.user)
        task = series_mutator_service.convert_to_independent(int(pk), data["keep_date"])
        if task is None:
            return Response(status=status.HTTP_204_NO_CONTENT)
        return Response(IndependentTaskSerializer(task).data, status=status.HTTP_201_CREATED)

    @extend_schema(request=FromDateSerializer, responses={200: TaskSeriesSerializer})
    @action(methods=["POST"], detail=True, url_path="delete-future", url_name="delete-future")
    @inject
    def delete_future(
        self,
        request,
        pk,
        series_mutator_service: Annotated[
            SeriesMutatorService, Provide["series_mutator_service"]
        ],
    ):
        data = _validated(FromDateSerializer, request.data).validated_data
        series_mutator_service.authenticate(request.user)
        series = series_mutator_service.delete_future_occurrences(int(pk), data["from_date"])
        return Response(self.get_read_serializer(series).data)

    @extend_schema(request=None, responses={200: TaskSeriesSerializer})
    @action(methods=["POST"], detail=True, url_path="restore", url_name="restore")
    @inject
    def restore(
        self,
        request,
        pk,
        series_mutator_service: Annotated[
            SeriesMutatorService, Provide["series_mutator_service"]
        ],
    ):
        series_mutator_service.authenticate(request.user)
        series = series_mutator_service.restore_series(int(pk))
        return Response(self.get_read_serializer(series).data)

    @extend_schema(
        summary="Override the fields of one occurrence",
        request=OverrideSerializer,
        responses={200: OccurrenceOverrideSerializer},
    )
    @action(methods=["POST"], detail=True, url_path="override", url_name="override")
    @inject
    def override(
        self,
        request,
        pk,
        exception_store_service: Annotated[
            ExceptionStoreService, Provide["exception_store_service"]
        ],
    ):
        serializer = _validated(OverrideSerializer, request.data)
        exception_store_service.authenticate(request.user)
        override = exception_store_service.upsert_override(
            int(pk),
            serializer.validated_data["occurrence_date"],
            **serializer.get_fields_to_merge(),
        )
        return Response(OccurrenceOverrideSerializer(override).data)

    @extend_schema(
        summary="Delete one occurrence",
        request=OccurrenceDateSerializer,
        responses={200: OccurrenceOverrideSerializer},
    )
    @action(methods=["POST"], detail=True, url_path="skip", url_name="skip")
    @inject
    def skip(
        self,
        request,
        pk,
        series_mutator_service: Annotated[
            SeriesMutatorService, Provide["series_mutator_service"]
        ],
    ):
        data = _validated(OccurrenceDateSerializer, request.data).validated_data
        series_mutator_service.authenticate(request.user)
        override = series_mutator_service.delete_occurrence(int(pk), data["occurrence_date"])
        return Response(OccurrenceOverrideSerializer(override).data)

    @extend_schema(
        summary="Bring back a deleted occurrence",
        request=OccurrenceDateSerializer,
        responses={200: OccurrenceOverrideSerializer, 204: None},
    )
    @action(methods=["POST"], detail=True, url_path="unskip", url_name="unskip")
    @inject
    def unskip(
        self,
        request,
        pk,
        exception_store_service: Annotated[
            ExceptionStoreService, Provide["exception_store_service"]
        ],
    ):
        data = _validated(OccurrenceDateSerializer, request.data).validated_data
        exception_store_service.authenticate(request.user)
        override = exception_store_service.unskip(int(pk), data["occurrence_date"])
        if override is None:
            return Response(status=status.HTTP_204_NO_CONTENT)
        return Response(OccurrenceOverrideSerializer(override).data)

    @extend_schema(
        summary="Detach one occurrence from the series rule",
        request=OccurrenceDateSerializer,
        responses={200: OccurrenceOverrideSerializer},
    )
    @action(methods=["POST"], detail=True, url_path="detach", url_name="detach")
    @inject
    def detach(
        self,
        request,
        pk,
        exception_store_service: Annotated[
            ExceptionStoreService, Provide["exception_store_service"]
        ],
    ):
        data = _validated(OccurrenceDateSerializer, request.data).validated_data
        exception_store_service.authenticate(request.user)
        override = exception_store_service.detach(int(pk), data["occurrence_date"])
        return Response(OccurrenceOverrideSerializer(override).data)

    @extend_schema(
        summary="Move one occurrence to another date",
        request=MoveOccurrenceSerializer,
        responses={200: OccurrenceOverrideSerializer},
    )
    @action(methods=["POST"], detail=True, url_path="move", url_name="move")
    @inject
    def move(
        self,
        request,
        pk,
        exception_store_service: Annotated[
            ExceptionStoreService, Provide["exception_store_service"]
        ],
    ):
        serializer = _validated(MoveOccurrenceSerializer, request.data)
        exception_store_service.authenticate(request.user)
        override = exception_store_service.move(
            int(pk),
            serializer.validated_data["from_date"],
            serializer.validated_data["to_date"],
            **serializer.get_fields_to_merge(),
        )
        return Response(OccurrenceOverrideSerializer(override).data)

    @extend_schema(
        summary="Toggle or set the completion of one occurrence",
        request=OccurrenceCompletionSerializer,
        responses={200: CompletionResultSerializer},
    )
    @action(methods=["POST"], detail=True, url_path="complete", url_name="complete")
    @inject
    def complete(
        self,
        request,
        pk,
        completion_tracker_service: Annotated[
            CompletionTrackerService, Provide["completion_tracker_service"]
        ],
    ):
        data = _validated(OccurrenceCompletionSerializer, request.data).validated_data
        completion_tracker_service.authenticate(request.user)
        ref = OccurrenceRef(
            series_id=int(pk),
            occurrence_date=data["occurrence_date"],
            instance_number=data["instance_number"],
        )
        if data["completed"] is None:
            result = completion_tracker_service.toggle(ref)
        else:
            result = completion_tracker_service.set_completion(ref, data["completed"])
        return Response(CompletionResultSerializer(result).data)


class IndependentTaskViewSet(SchedulingErrorsMixin, ServiceWriteModelViewSet):
    """
    ViewSet for one-off tasks.
    """

    serializer_class = IndependentTaskSerializer
    queryset = IndependentTask.objects.all()

    def get_queryset(self):
        user = self.request.user
        if not user.is_authenticated:
            return IndependentTask.objects.none()
        return (
            IndependentTask.objects.filter_by_user(user.id)
            .active()
            .not_converted()
            .order_by("scheduled_date", "id")
        )

    @extend_schema(
        request=IndependentTaskCreateSerializer, responses={201: IndependentTaskSerializer}
    )
    @inject
    def create(
        self,
        request,
        *args,
        series_mutator_service: Annotated[
            SeriesMutatorService, Provide["series_mutator_service"]
        ],
        **kwargs,
    ):
        data = _validated(IndependentTaskCreateSerializer, request.data).validated_data
        series_mutator_service.authenticate(request.user)
        task = series_mutator_service.create_independent_task(
            title=data["title"],
            scheduled_date=data["scheduled_date"],
            time_start=data["time_start"],
            time_end=data["time_end"],
            goal_id=data["goal"],
        )
        return Response(self.get_read_serializer(task).data, status=status.HTTP_201_CREATED)

    @inject
    def destroy(
        self,
        request,
        *args,
        series_mutator_service: Annotated[
            SeriesMutatorService, Provide["series_mutator_service"]
        ],
        **kwargs,
    ):
        series_mutator_service.authenticate(request.user)
        series_mutator_service.delete_independent_task(int(kwargs["pk"]))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(request=None, responses={200: IndependentTaskSerializer})
    @action(methods=["POST"], detail=True, url_path="restore", url_name="restore")
    @inject
    def restore(
        self,
        request,
        pk,
        series_mutator_service: Annotated[
            SeriesMutatorService, Provide["series_mutator_service"]
        ],
    ):
        series_mutator_service.authenticate(request.user)
        task = series_mutator_service.restore_independent_task(int(pk))
        return Response(self.get_read_serializer(task).data)

    @extend_schema(
        summary="Toggle or set the completion of the task",
        request=TaskCompletionSerializer,
        responses={200: CompletionResultSerializer},
    )
    @action(methods=["POST"], detail=True, url_path="complete", url_name="complete")
    @inject
    def complete(
        self,
        request,
        pk,
        completion_tracker_service: Annotated[
            CompletionTrackerService, Provide["completion_tracker_service"]
        ],
    ):
        data = _validated(TaskCompletionSerializer, request.data).validated_data
        completion_tracker_service.authenticate(request.user)
        ref = IndependentTaskRef(task_id=int(pk))
        if data["completed"] is None:
            result = completion_tracker_service.toggle(ref)
        else:
            result = completion_tracker_service.set_completion(ref, data["completed"])
        return Response(CompletionResultSerializer(result).data)

    @extend_schema(
        summary="Turn the task into a recurring series",
        request=ConvertToRecurringSerializer,
        responses={201: TaskSeriesSerializer},
    )
    @action(
        methods=["POST"],
        detail=True,
        url_path="convert-to-recurring",
        url_name="convert-to-recurring",
    )
    @inject
    def convert_to_recurring(
        self,
        request,
        pk,
        series_mutator_service: Annotated[
            SeriesMutatorService, Provide["series_mutator_service"]
        ],
    ):
        data = _validated(ConvertToRecurringSerializer, request.data).validated_data
        series_mutator_service.authenticate(request.user)
        series = series_mutator_service.convert_to_recurring(
            int(pk), data["recurrence"]["rule"]
        )
        return Response(TaskSeriesSerializer(series).data, status=status.HTTP_201_CREATED)


class OccurrenceViewSet(SchedulingErrorsMixin, ViewSet):
    """
    Read-only view of everything scheduled in a date range: series occurrences, detached
    occurrences and independent tasks.
    """

    @extend_schema(
        summary="List occurrences in a date range",
        parameters=[
            OpenApiParameter(
                name="start_date",
                type=str,
                location=OpenApiParameter.QUERY,
                description="First date of the range (YYYY-MM-DD)",
                required=True,
            ),
            OpenApiParameter(
                name="end_date",
                type=str,
                location=OpenApiParameter.QUERY,
                description="Last date of the range, inclusive (YYYY-MM-DD)",
                required=True,
            ),
            OpenApiParameter(
                name="focused_only",
                type=bool,
                location=OpenApiParameter.QUERY,
                description="Only items linked to a focused life vision",
                required=False,
            ),
        ],
        responses={200: OccurrenceRangeSerializer, 503: OccurrenceRangeSerializer},
    )
    @inject
    def list(
        self,
        request,
        occurrence_aggregator_service: Annotated[
            OccurrenceAggregatorService, Provide["occurrence_aggregator_service"]
        ],
    ):
        query = _validated(OccurrenceRangeQuerySerializer, request.query_params).validated_data
        occurrence_aggregator_service.authenticate(request.user)
        result = occurrence_aggregator_service.occurrences_for_range(
            query["start_date"],
            query["end_date"],
            focused_only=query["focused_only"],
        )
        return Response(
            OccurrenceRangeSerializer(result).data,
            status=(
                status.HTTP_503_SERVICE_UNAVAILABLE if result.error else status.HTTP_200_OK
            ),
        )
