import datetime

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from common.models import SoftDeleteModel
from goals.models import Goal
from scheduling.constants import RecurrenceType
from scheduling.exceptions import RecurrenceRuleValidationError
from scheduling.managers import (
    CompletionRecordManager,
    IndependentTaskManager,
    OccurrenceOverrideManager,
    PeriodCounterManager,
    TaskSeriesManager,
)
from scheduling.recurrence_utils import (
    RecurrenceRule,
    build_recurrence_rule,
    recurrence_rule_to_fields,
)
from users.models import UserOwnedModel


class TaskSeries(SoftDeleteModel, UserOwnedModel):
    """
    A recurrence rule plus the defaults used for every occurrence it projects.

    The rule is stored as plain columns but is only ever read and written through
    `recurrence_rule`, which exposes it as `NoRecurrence | DailyRecurrence | WeeklyRecurrence`.
    """

    title = models.CharField(max_length=255)
    recurrence_type = models.CharField(
        max_length=10,
        choices=RecurrenceType,
        default=RecurrenceType.NONE,
    )
    times_per_day = models.PositiveSmallIntegerField(
        default=1, help_text="Number of instances each daily occurrence has"
    )
    days_of_week = models.CharField(
        max_length=20, blank=True, help_text="Comma-separated list of weekdays (e.g., 'MO,WE,FR')"
    )
    default_time_start = models.TimeField(
        null=True, blank=True, help_text="Empty means the occurrences are flexible (unscheduled)"
    )
    default_time_end = models.TimeField(null=True, blank=True)
    start_date = models.DateField()
    end_date = models.DateField(
        null=True, blank=True, help_text="Last date the series projects; empty means open-ended"
    )
    is_active = models.BooleanField(default=True)
    goal = models.ForeignKey(
        Goal,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="task_series",
    )
    split_parent = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="split_continuations",
        help_text="The series this one continues after a split",
    )

    objects: TaskSeriesManager = TaskSeriesManager()

    class Meta:
        verbose_name_plural = "task series"
        constraints = (
            models.CheckConstraint(
                condition=~Q(recurrence_type=RecurrenceType.WEEKLY, days_of_week=""),
                name="task_series_weekly_requires_days",
            ),
            models.CheckConstraint(
                condition=Q(times_per_day__gte=1),
                name="task_series_times_per_day_positive",
            ),
            models.CheckConstraint(
                condition=Q(end_date__isnull=True) | Q(end_date__gte=F("start_date")),
                name="task_series_end_after_start",
            ),
        )
        indexes = (
            models.Index(
                fields=("user", "start_date", "end_date"), name="sched_series_user_dates_idx"
            ),
        )

    def __str__(self):
        return f"{self.title} ({self.recurrence_type})"

    @property
    def recurrence_rule(self) -> RecurrenceRule:
        return build_recurrence_rule(self.recurrence_type, self.times_per_day, self.days_of_week)

    @recurrence_rule.setter
    def recurrence_rule(self, rule: RecurrenceRule):
        for field_name, value in recurrence_rule_to_fields(rule).items():
            setattr(self, field_name, value)

    @property
    def is_flexible(self) -> bool:
        return self.default_time_start is None

    def clean(self):
        super().clean()
        try:
            self.recurrence_rule  # noqa: B018
        except RecurrenceRuleValidationError as e:
            raise ValidationError({"recurrence_type": str(e)}) from e
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValidationError({"end_date": "The end date can't be before the start date."})


class OccurrenceOverride(SoftDeleteModel, UserOwnedModel):
    """
    The materialized occurrence of a series on one date. It only exists once the
    occurrence diverges from what the series projects: retitled, retimed, skipped,
    detached or moved.
    """

    series = models.ForeignKey(
        TaskSeries,
        on_delete=models.CASCADE,
        related_name="overrides",
    )
    occurrence_date = models.DateField()
    title = models.CharField(
        max_length=255, null=True, blank=True, help_text="Empty means the series title is used"
    )
    has_time_override = models.BooleanField(
        default=False, help_text="True if `time_start`/`time_end` replace the series defaults"
    )
    time_start = models.TimeField(null=True, blank=True)
    time_end = models.TimeField(null=True, blank=True)
    is_detached = models.BooleanField(
        default=False,
        help_text="Detached occurrences are listed on their own instead of being projected",
    )
    is_skipped = models.BooleanField(
        default=False, help_text="Skipped occurrences are never listed"
    )
    moved_from_date = models.DateField(
        null=True, blank=True, help_text="For moved-in occurrences, the date they came from"
    )
    moved_to_date = models.DateField(
        null=True, blank=True, help_text="The date a moved occurrence left this date for"
    )

    objects: OccurrenceOverrideManager = OccurrenceOverrideManager()

    class Meta:
        constraints = (
            models.UniqueConstraint(
                fields=("series", "occurrence_date"),
                condition=Q(is_deleted=False),
                name="unique_active_override_per_series_date",
            ),
        )
        indexes = (
            models.Index(fields=("user", "occurrence_date"), name="sched_override_user_date_idx"),
        )

    def __str__(self):
        if self.is_skipped:
            status = "skipped"
        elif self.is_detached:
            status = "detached"
        else:
            status = "modified"
        return f"Override for {self.series_id} on {self.occurrence_date} ({status})"

    def resolved_title(self, series: TaskSeries) -> str:
        return self.title or series.title

    def resolved_times(
        self, series: TaskSeries
    ) -> tuple[datetime.time | None, datetime.time | None]:
        if self.has_time_override:
            return self.time_start, self.time_end
        return series.default_time_start, series.default_time_end


class IndependentTask(SoftDeleteModel, UserOwnedModel):
    title = models.CharField(max_length=255)
    scheduled_date = models.DateField()
    time_start = models.TimeField(null=True, blank=True)
    time_end = models.TimeField(null=True, blank=True)
    is_completed = models.BooleanField(default=False)
    completed_at = models.DateTimeField(null=True, blank=True)
    goal = models.ForeignKey(
        Goal,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="independent_tasks",
    )
    converted_series = models.ForeignKey(
        TaskSeries,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="converted_from_tasks",
        help_text="The series this task was turned into, which represents it from then on",
    )
    source_series = models.ForeignKey(
        TaskSeries,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="kept_occurrences",
        help_text="The series this task was kept from when the series stopped repeating",
    )

    objects: IndependentTaskManager = IndependentTaskManager()

    class Meta:
        indexes = (
            models.Index(fields=("user", "scheduled_date"), name="sched_task_user_date_idx"),
        )

    def __str__(self):
        return f"{self.title} on {self.scheduled_date}"


class CompletionRecord(UserOwnedModel):
    """Existence of a record means the series occurrence instance is completed."""

    series = models.ForeignKey(
        TaskSeries,
        on_delete=models.CASCADE,
        related_name="completion_records",
    )
    occurrence_date = models.DateField()
    instance_number = models.PositiveSmallIntegerField(default=1)
    completed_at = models.DateTimeField(default=timezone.now)

    objects: CompletionRecordManager = CompletionRecordManager()

    class Meta:
        constraints = (
            models.UniqueConstraint(
                fields=("series", "occurrence_date", "instance_number"),
                name="unique_completion_per_occurrence_instance",
            ),
        )
        indexes = (
            models.Index(fields=("user", "occurrence_date"), name="sched_completion_user_date_idx"),
        )

    def __str__(self):
        return f"{self.series_id} completed on {self.occurrence_date} #{self.instance_number}"


class PeriodCounter(UserOwnedModel):
    """Planned and actual completions of a series within one Monday-start week."""

    series = models.ForeignKey(
        TaskSeries,
        on_delete=models.CASCADE,
        related_name="period_counters",
    )
    period_start = models.DateField()
    period_end = models.DateField()
    planned_count = models.PositiveIntegerField(default=0)
    actual_count = models.IntegerField(default=0)
    notes = models.TextField(blank=True)

    objects: PeriodCounterManager = PeriodCounterManager()

    class Meta:
        constraints = (
            models.UniqueConstraint(
                fields=("series", "period_start"),
                name="unique_counter_per_series_period",
            ),
            models.CheckConstraint(
                condition=Q(actual_count__gte=0),
                name="period_counter_actual_count_non_negative",
            ),
        )

    def __str__(self):
        return f"{self.series_id} {self.period_start}: {self.actual_count}/{self.planned_count}"
