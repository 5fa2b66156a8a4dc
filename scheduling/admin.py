"""Django admin interface for task series, their exceptions and completion bookkeeping."""

from django.contrib import admin

from scheduling.models import (
    CompletionRecord,
    IndependentTask,
    OccurrenceOverride,
    PeriodCounter,
    TaskSeries,
)


class OccurrenceOverrideInline(admin.TabularInline):
    """Inline admin for the exceptions of a series."""

    model = OccurrenceOverride
    fields = (
        "occurrence_date",
        "title",
        "time_start",
        "time_end",
        "is_detached",
        "is_skipped",
        "moved_from_date",
        "moved_to_date",
        "is_deleted",
    )
    readonly_fields = fields
    extra = 0
    max_num = 20
    can_delete = False


@admin.register(TaskSeries)
class TaskSeriesAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "title",
        "user",
        "recurrence_type",
        "start_date",
        "end_date",
        "is_active",
        "is_deleted",
    )
    list_filter = ("recurrence_type", "is_active", "is_deleted")
    search_fields = ("title", "user__email")
    raw_id_fields = ("user", "goal", "split_parent")
    date_hierarchy = "start_date"
    inlines = (OccurrenceOverrideInline,)


@admin.register(IndependentTask)
class IndependentTaskAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "user", "scheduled_date", "is_completed", "is_deleted")
    list_filter = ("is_completed", "is_deleted")
    search_fields = ("title", "user__email")
    raw_id_fields = ("user", "goal", "converted_series", "source_series")


@admin.register(CompletionRecord)
class CompletionRecordAdmin(admin.ModelAdmin):
    list_display = ("id", "series", "occurrence_date", "instance_number", "completed_at")
    search_fields = ("series__title", "user__email")
    raw_id_fields = ("user", "series")


@admin.register(PeriodCounter)
class PeriodCounterAdmin(admin.ModelAdmin):
    list_display = ("id", "series", "period_start", "planned_count", "actual_count")
    search_fields = ("series__title", "user__email")
    raw_id_fields = ("user", "series")
    readonly_fields = ("planned_count", "actual_count")
