from scheduling.querysets import (
    CompletionRecordQuerySet,
    IndependentTaskQuerySet,
    OccurrenceOverrideQuerySet,
    PeriodCounterQuerySet,
    TaskSeriesQuerySet,
)
from users.managers import BaseUserOwnedModelManager


class TaskSeriesManager(BaseUserOwnedModelManager):
    def get_queryset(self):
        return TaskSeriesQuerySet(self.model, using=self._db)

    def active(self):
        return self.get_queryset().active()

    def deleted(self):
        return self.get_queryset().deleted()


class OccurrenceOverrideManager(BaseUserOwnedModelManager):
    def get_queryset(self):
        return OccurrenceOverrideQuerySet(self.model, using=self._db)

    def active(self):
        return self.get_queryset().active()

    def deleted(self):
        return self.get_queryset().deleted()


class IndependentTaskManager(BaseUserOwnedModelManager):
    def get_queryset(self):
        return IndependentTaskQuerySet(self.model, using=self._db)

    def active(self):
        return self.get_queryset().active()

    def deleted(self):
        return self.get_queryset().deleted()


class CompletionRecordManager(BaseUserOwnedModelManager):
    def get_queryset(self):
        return CompletionRecordQuerySet(self.model, using=self._db)


class PeriodCounterManager(BaseUserOwnedModelManager):
    def get_queryset(self):
        return PeriodCounterQuerySet(self.model, using=self._db)
