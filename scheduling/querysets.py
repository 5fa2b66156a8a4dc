import datetime

from django.db.models import Q

from users.querysets import BaseUserOwnedModelQuerySet


class SoftDeleteQuerySetMixin:
    def active(self):
        return self.filter(is_deleted=False)

    def deleted(self):
        return self.filter(is_deleted=True)


class TaskSeriesQuerySet(SoftDeleteQuerySetMixin, BaseUserOwnedModelQuerySet):
    def overlapping(self, range_start: datetime.date, range_end: datetime.date):
        """
        Series whose `[start_date, end_date]` bounds intersect the given range.
        An empty `end_date` means the series is open-ended.
        """
        return self.filter(start_date__lte=range_end).filter(
            Q(end_date__isnull=True) | Q(end_date__gte=range_start)
        )

    def with_lineage(self):
        return self.select_related("goal", "goal__vision")


class OccurrenceOverrideQuerySet(SoftDeleteQuerySetMixin, BaseUserOwnedModelQuerySet):
    def in_range(self, range_start: datetime.date, range_end: datetime.date):
        return self.filter(occurrence_date__gte=range_start, occurrence_date__lte=range_end)

    def of_visible_series(self):
        return self.filter(series__is_deleted=False, series__is_active=True)


class IndependentTaskQuerySet(SoftDeleteQuerySetMixin, BaseUserOwnedModelQuerySet):
    def in_range(self, range_start: datetime.date, range_end: datetime.date):
        return self.filter(scheduled_date__gte=range_start, scheduled_date__lte=range_end)

    def not_converted(self):
        return self.filter(converted_series__isnull=True)

    def with_lineage(self):
        return self.select_related("goal", "goal__vision")


class CompletionRecordQuerySet(BaseUserOwnedModelQuerySet):
    def in_range(self, range_start: datetime.date, range_end: datetime.date):
        return self.filter(occurrence_date__gte=range_start, occurrence_date__lte=range_end)


class PeriodCounterQuerySet(BaseUserOwnedModelQuerySet):
    def in_range(self, range_start: datetime.date, range_end: datetime.date):
        return self.filter(period_start__lte=range_end, period_end__gte=range_start)
