import django.db.models.deletion
import django.utils.timezone
import model_utils.fields
from django.conf import settings
from django.db import migrations, models


def _timestamp_fields():
    return [
        (
            "created",
            model_utils.fields.AutoCreatedField(
                db_index=True,
                default=django.utils.timezone.now,
                editable=False,
                verbose_name="created",
            ),
        ),
        (
            "modified",
            model_utils.fields.AutoLastModifiedField(
                db_index=True,
                default=django.utils.timezone.now,
                editable=False,
                verbose_name="modified",
            ),
        ),
        ("meta", models.JSONField(blank=True, default=dict, verbose_name="meta")),
    ]


def _soft_delete_fields():
    return [
        (
            "is_deleted",
            models.BooleanField(db_index=True, default=False, verbose_name="is deleted"),
        ),
        (
            "deleted_at",
            models.DateTimeField(blank=True, null=True, verbose_name="deleted at"),
        ),
    ]


def _owner_field():
    return (
        "user",
        models.ForeignKey(
            help_text="The user who owns this record.",
            on_delete=django.db.models.deletion.CASCADE,
            related_name="+",
            to=settings.AUTH_USER_MODEL,
        ),
    )


def _id_field():
    return (
        "id",
        models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID"),
    )


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("goals", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="TaskSeries",
            fields=[
                _id_field(),
                *_soft_delete_fields(),
                *_timestamp_fields(),
                ("title", models.CharField(max_length=255)),
                (
                    "recurrence_type",
                    models.CharField(
                        choices=[
                            ("none", "Does not repeat"),
                            ("daily", "Daily"),
                            ("weekly", "Weekly"),
                        ],
                        default="none",
                        max_length=10,
                    ),
                ),
                (
                    "times_per_day",
                    models.PositiveSmallIntegerField(
                        default=1, help_text="Number of instances each daily occurrence has"
                    ),
                ),
                (
                    "days_of_week",
                    models.CharField(
                        blank=True,
                        help_text="Comma-separated list of weekdays (e.g., 'MO,WE,FR')",
                        max_length=20,
                    ),
                ),
                (
                    "default_time_start",
                    models.TimeField(
                        blank=True,
                        help_text="Empty means the occurrences are flexible (unscheduled)",
                        null=True,
                    ),
                ),
                ("default_time_end", models.TimeField(blank=True, null=True)),
                ("start_date", models.DateField()),
                (
                    "end_date",
                    models.DateField(
                        blank=True,
                        help_text="Last date the series projects; empty means open-ended",
                        null=True,
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                (
                    "goal",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="task_series",
                        to="goals.goal",
                    ),
                ),
                (
                    "split_parent",
                    models.ForeignKey(
                        blank=True,
                        help_text="The series this one continues after a split",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="split_continuations",
                        to="scheduling.taskseries",
                    ),
                ),
                _owner_field(),
            ],
            options={
                "verbose_name_plural": "task series",
                "indexes": [
                    models.Index(
                        fields=["user", "start_date", "end_date"],
                        name="sched_series_user_dates_idx",
                    )
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            ("days_of_week", ""), ("recurrence_type", "weekly"), _negated=True
                        ),
                        name="task_series_weekly_requires_days",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("times_per_day__gte", 1)),
                        name="task_series_times_per_day_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("end_date__isnull", True),
                            ("end_date__gte", models.F("start_date")),
                            _connector="OR",
                        ),
                        name="task_series_end_after_start",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="OccurrenceOverride",
            fields=[
                _id_field(),
                *_soft_delete_fields(),
                *_timestamp_fields(),
                ("occurrence_date", models.DateField()),
                (
                    "title",
                    models.CharField(
                        blank=True,
                        help_text="Empty means the series title is used",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "has_time_override",
                    models.BooleanField(
                        default=False,
                        help_text="True if `time_start`/`time_end` replace the series defaults",
                    ),
                ),
                ("time_start", models.TimeField(blank=True, null=True)),
                ("time_end", models.TimeField(blank=True, null=True)),
                (
                    "is_detached",
                    models.BooleanField(
                        default=False,
                        help_text="Detached occurrences are listed on their own instead of being projected",
                    ),
                ),
                (
                    "is_skipped",
                    models.BooleanField(
                        default=False, help_text="Skipped occurrences are never listed"
                    ),
                ),
                (
                    "moved_from_date",
                    models.DateField(
                        blank=True,
                        help_text="For moved-in occurrences, the date they came from",
                        null=True,
                    ),
                ),
                (
                    "moved_to_date",
                    models.DateField(
                        blank=True,
                        help_text="The date a moved occurrence left this date for",
                        null=True,
                    ),
                ),
                (
                    "series",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="overrides",
                        to="scheduling.taskseries",
                    ),
                ),
                _owner_field(),
            ],
            options={
                "indexes": [
                    models.Index(
                        fields=["user", "occurrence_date"], name="sched_override_user_date_idx"
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_deleted", False)),
                        fields=("series", "occurrence_date"),
                        name="unique_active_override_per_series_date",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="IndependentTask",
            fields=[
                _id_field(),
                *_soft_delete_fields(),
                *_timestamp_fields(),
                ("title", models.CharField(max_length=255)),
                ("scheduled_date", models.DateField()),
                ("time_start", models.TimeField(blank=True, null=True)),
                ("time_end", models.TimeField(blank=True, null=True)),
                ("is_completed", models.BooleanField(default=False)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "goal",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="independent_tasks",
                        to="goals.goal",
                    ),
                ),
                (
                    "converted_series",
                    models.ForeignKey(
                        blank=True,
                        help_text="The series this task was turned into, which represents it from then on",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="converted_from_tasks",
                        to="scheduling.taskseries",
                    ),
                ),
                (
                    "source_series",
                    models.ForeignKey(
                        blank=True,
                        help_text="The series this task was kept from when the series stopped repeating",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="kept_occurrences",
                        to="scheduling.taskseries",
                    ),
                ),
                _owner_field(),
            ],
            options={
                "indexes": [
                    models.Index(
                        fields=["user", "scheduled_date"], name="sched_task_user_date_idx"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="CompletionRecord",
            fields=[
                _id_field(),
                *_timestamp_fields(),
                ("occurrence_date", models.DateField()),
                ("instance_number", models.PositiveSmallIntegerField(default=1)),
                ("completed_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "series",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="completion_records",
                        to="scheduling.taskseries",
                    ),
                ),
                _owner_field(),
            ],
            options={
                "indexes": [
                    models.Index(
                        fields=["user", "occurrence_date"], name="sched_completion_user_date_idx"
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("series", "occurrence_date", "instance_number"),
                        name="unique_completion_per_occurrence_instance",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="PeriodCounter",
            fields=[
                _id_field(),
                *_timestamp_fields(),
                ("period_start", models.DateField()),
                ("period_end", models.DateField()),
                ("planned_count", models.PositiveIntegerField(default=0)),
                ("actual_count", models.IntegerField(default=0)),
                ("notes", models.TextField(blank=True)),
                (
                    "series",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="period_counters",
                        to="scheduling.taskseries",
                    ),
                ),
                _owner_field(),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("series", "period_start"),
                        name="unique_counter_per_series_period",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("actual_count__gte", 0)),
                        name="period_counter_actual_count_non_negative",
                    ),
                ],
            },
        ),
    ]
