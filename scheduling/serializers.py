from rest_framework import serializers

from scheduling.constants import OccurrenceKind, RecurrenceType, Weekday
from scheduling.exceptions import RecurrenceRuleValidationError
from scheduling.models import IndependentTask, OccurrenceOverride, TaskSeries
from scheduling.recurrence_utils import build_recurrence_rule


class RecurrenceRuleSerializer(serializers.Serializer):
    """Validates a recurrence rule and turns it into `NoRecurrence | Daily... | Weekly...`."""

    recurrence_type = serializers.ChoiceField(choices=RecurrenceType.choices)
    times_per_day = serializers.IntegerField(
        required=False,
        default=1,
        min_value=1,
        help_text="Instances per day, daily rules only",
    )
    days_of_week = serializers.ListField(
        child=serializers.ChoiceField(choices=Weekday.choices),
        required=False,
        default=list,
        help_text="Days the rule repeats on, weekly rules only",
    )

    def validate(self, attrs):
        try:
            attrs["rule"] = build_recurrence_rule(
                attrs["recurrence_type"],
                times_per_day=attrs.get("times_per_day"),
                days_of_week=attrs.get("days_of_week"),
            )
        except RecurrenceRuleValidationError as e:
            raise serializers.ValidationError({"days_of_week": [str(e)]}) from e
        return attrs


class TimeRangeValidationMixin:
    time_start_field = "time_start"
    time_end_field = "time_end"

    def validate(self, attrs):
        attrs = super().validate(attrs)
        time_start = attrs.get(self.time_start_field)
        time_end = attrs.get(self.time_end_field)
        if time_start is not None and time_end is not None and time_end < time_start:
            raise serializers.ValidationError(
                {self.time_end_field: [f"Must not be before {self.time_start_field}."]}
            )
        return attrs


class TaskSeriesSerializer(serializers.ModelSerializer):
    days_of_week = serializers.SerializerMethodField()

    class Meta:
        model = TaskSeries
        fields = (
            "id",
            "title",
            "recurrence_type",
            "times_per_day",
            "days_of_week",
            "default_time_start",
            "default_time_end",
            "start_date",
            "end_date",
            "is_active",
            "goal",
            "split_parent",
            "is_deleted",
            "deleted_at",
            "created",
            "modified",
        )
        read_only_fields = fields

    def get_days_of_week(self, obj: TaskSeries) -> list[str]:
        return [day for day in obj.days_of_week.split(",") if day]


class TaskSeriesCreateSerializer(TimeRangeValidationMixin, serializers.Serializer):
    time_start_field = "default_time_start"
    time_end_field = "default_time_end"

    title = serializers.CharField(max_length=255)
    recurrence = RecurrenceRuleSerializer()
    start_date = serializers.DateField()
    end_date = serializers.DateField(required=False, allow_null=True, default=None)
    default_time_start = serializers.TimeField(required=False, allow_null=True, default=None)
    default_time_end = serializers.TimeField(required=False, allow_null=True, default=None)
    goal = serializers.IntegerField(required=False, allow_null=True, default=None)

    def validate(self, attrs):
        attrs = super().validate(attrs)
        if attrs["end_date"] is not None and attrs["end_date"] < attrs["start_date"]:
            raise serializers.ValidationError({"end_date": ["Must not be before start_date."]})
        return attrs


class UpdateRuleSerializer(serializers.Serializer):
    recurrence = RecurrenceRuleSerializer()


class SplitSeriesSerializer(TimeRangeValidationMixin, serializers.Serializer):
    time_start_field = "default_time_start"
    time_end_field = "default_time_end"

    split_date = serializers.DateField(help_text="First date of the new series")
    title = serializers.CharField(max_length=255, required=False)
    recurrence = RecurrenceRuleSerializer(required=False)
    default_time_start = serializers.TimeField(required=False, allow_null=True)
    default_time_end = serializers.TimeField(required=False, allow_null=True)
    goal = serializers.IntegerField(required=False, allow_null=True)

    def get_overrides(self) -> dict:
        """The fields to apply on top of the old series, as expected by `split_series`."""
        data = self.validated_data
        overrides = {
            field_name: data[field_name]
            for field_name in ("title", "default_time_start", "default_time_end")
            if field_name in data
        }
        if "recurrence" in data:
            overrides["rule"] = data["recurrence"]["rule"]
        if "goal" in data:
            overrides["goal_id"] = data["goal"]
        return overrides


class KeepDateSerializer(serializers.Serializer):
    keep_date = serializers.DateField(help_text="The occurrence to keep as an independent task")


class FromDateSerializer(serializers.Serializer):
    from_date = serializers.DateField(help_text="First date to delete")


class OccurrenceDateSerializer(serializers.Serializer):
    occurrence_date = serializers.DateField()


class OccurrenceFieldsSerializer(TimeRangeValidationMixin, serializers.Serializer):
    """
    Optional occurrence fields. Fields that are left out keep their current value, `null`
    resets the title to the series title and makes the times flexible.
    """

    title = serializers.CharField(max_length=255, required=False, allow_null=True)
    time_start = serializers.TimeField(required=False, allow_null=True)
    time_end = serializers.TimeField(required=False, allow_null=True)

    def get_fields_to_merge(self) -> dict:
        return {
            field_name: self.validated_data[field_name]
            for field_name in ("title", "time_start", "time_end")
            if field_name in self.validated_data
        }


class OverrideSerializer(OccurrenceFieldsSerializer):
    occurrence_date = serializers.DateField()


class MoveOccurrenceSerializer(OccurrenceFieldsSerializer):
    from_date = serializers.DateField()
    to_date = serializers.DateField()

    def validate(self, attrs):
        attrs = super().validate(attrs)
        if attrs["from_date"] == attrs["to_date"]:
            raise serializers.ValidationError({"to_date": ["Must differ from from_date."]})
        return attrs


class OccurrenceCompletionSerializer(serializers.Serializer):
    occurrence_date = serializers.DateField()
    instance_number = serializers.IntegerField(required=False, default=1, min_value=1)
    completed = serializers.BooleanField(
        required=False,
        allow_null=True,
        default=None,
        help_text="Desired state; leave it out to toggle",
    )


class TaskCompletionSerializer(serializers.Serializer):
    completed = serializers.BooleanField(
        required=False,
        allow_null=True,
        default=None,
        help_text="Desired state; leave it out to toggle",
    )


class OccurrenceOverrideSerializer(serializers.ModelSerializer):
    class Meta:
        model = OccurrenceOverride
        fields = (
            "id",
            "series",
            "occurrence_date",
            "title",
            "has_time_override",
            "time_start",
            "time_end",
            "is_detached",
            "is_skipped",
            "moved_from_date",
            "moved_to_date",
            "modified",
        )
        read_only_fields = fields


class IndependentTaskSerializer(serializers.ModelSerializer):
    class Meta:
        model = IndependentTask
        fields = (
            "id",
            "title",
            "scheduled_date",
            "time_start",
            "time_end",
            "is_completed",
            "completed_at",
            "goal",
            "converted_series",
            "source_series",
            "is_deleted",
            "deleted_at",
            "created",
            "modified",
        )
        read_only_fields = fields


class IndependentTaskCreateSerializer(TimeRangeValidationMixin, serializers.Serializer):
    title = serializers.CharField(max_length=255)
    scheduled_date = serializers.DateField()
    time_start = serializers.TimeField(required=False, allow_null=True, default=None)
    time_end = serializers.TimeField(required=False, allow_null=True, default=None)
    goal = serializers.IntegerField(required=False, allow_null=True, default=None)


class ConvertToRecurringSerializer(serializers.Serializer):
    recurrence = RecurrenceRuleSerializer()


class CompletionResultSerializer(serializers.Serializer):
    is_completed = serializers.BooleanField()
    period_start = serializers.DateField(allow_null=True)
    actual_count = serializers.IntegerField(allow_null=True)
    planned_count = serializers.IntegerField(allow_null=True)
    coalesced = serializers.BooleanField()


class OccurrenceSerializer(serializers.Serializer):
    kind = serializers.ChoiceField(choices=OccurrenceKind.choices)
    title = serializers.CharField()
    occurrence_date = serializers.DateField()
    time_start = serializers.TimeField(allow_null=True)
    time_end = serializers.TimeField(allow_null=True)
    is_scheduled = serializers.BooleanField()
    is_completed = serializers.BooleanField()
    series_id = serializers.IntegerField(allow_null=True)
    instance_number = serializers.IntegerField()
    task_id = serializers.IntegerField(allow_null=True)
    override_id = serializers.IntegerField(allow_null=True)
    moved_from_date = serializers.DateField(allow_null=True)
    goal_id = serializers.IntegerField(allow_null=True)
    goal_title = serializers.CharField(allow_null=True)
    is_focused = serializers.BooleanField()


class PeriodCounterSerializer(serializers.Serializer):
    series_id = serializers.IntegerField()
    period_start = serializers.DateField()
    period_end = serializers.DateField()
    planned_count = serializers.IntegerField()
    actual_count = serializers.IntegerField()


class OccurrenceRangeSerializer(serializers.Serializer):
    range_start = serializers.DateField()
    range_end = serializers.DateField()
    occurrences = OccurrenceSerializer(many=True)
    counters = PeriodCounterSerializer(many=True)
    error = serializers.CharField(allow_null=True)


class OccurrenceRangeQuerySerializer(serializers.Serializer):
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    focused_only = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        if attrs["end_date"] < attrs["start_date"]:
            raise serializers.ValidationError({"end_date": ["Must not be before start_date."]})
        return attrs
