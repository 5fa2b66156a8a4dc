import dataclasses
import datetime

from scheduling.constants import OccurrenceKind


@dataclasses.dataclass(frozen=True)
class OccurrenceRef:
    series_id: int
    occurrence_date: datetime.date
    instance_number: int = 1

    @property
    def lock_key(self) -> str:
        return f"series:{self.series_id}:{self.occurrence_date.isoformat()}:{self.instance_number}"


@dataclasses.dataclass(frozen=True)
class IndependentTaskRef:
    task_id: int

    @property
    def lock_key(self) -> str:
        return f"task:{self.task_id}"


CompletionRef = OccurrenceRef | IndependentTaskRef


@dataclasses.dataclass(frozen=True)
class CompletionResult:
    ref: CompletionRef
    is_completed: bool
    period_start: datetime.date | None = None
    actual_count: int | None = None
    planned_count: int | None = None
    coalesced: bool = False


@dataclasses.dataclass
class OccurrenceData:
    kind: OccurrenceKind
    title: str
    occurrence_date: datetime.date
    time_start: datetime.time | None
    time_end: datetime.time | None
    is_completed: bool
    series_id: int | None = None
    instance_number: int = 1
    task_id: int | None = None
    override_id: int | None = None
    moved_from_date: datetime.date | None = None
    goal_id: int | None = None
    goal_title: str | None = None
    is_focused: bool = False

    @property
    def is_scheduled(self) -> bool:
        return self.time_start is not None

    @property
    def ref(self) -> CompletionRef:
        if self.kind == OccurrenceKind.INDEPENDENT:
            return IndependentTaskRef(task_id=self.task_id)
        return OccurrenceRef(
            series_id=self.series_id,
            occurrence_date=self.occurrence_date,
            instance_number=self.instance_number,
        )

    def sort_key(self):
        """Date, then time of day with unscheduled items last, then title."""
        return (
            self.occurrence_date,
            self.time_start is None,
            self.time_start or datetime.time.min,
            self.title.casefold(),
            self.series_id or 0,
            self.task_id or 0,
            self.instance_number,
        )


@dataclasses.dataclass
class PeriodCounterData:
    series_id: int
    period_start: datetime.date
    period_end: datetime.date
    planned_count: int
    actual_count: int


@dataclasses.dataclass
class OccurrenceRangeResult:
    range_start: datetime.date
    range_end: datetime.date
    occurrences: list[OccurrenceData] = dataclasses.field(default_factory=list)
    counters: list[PeriodCounterData] = dataclasses.field(default_factory=list)
    error: str | None = None

    @property
    def is_degraded(self) -> bool:
        return self.error is not None
