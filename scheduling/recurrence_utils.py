"""Recurrence utilities: the canonical rule shapes and their expansion.

A task series stores its recurrence as plain columns (`recurrence_type`,
`times_per_day`, `days_of_week`). Everything outside the model layer works with
the tagged union defined here instead:

- ``NoRecurrence``: the series never projects occurrences on its own.
- ``DailyRecurrence(times_per_day)``: every date, ``times_per_day`` instances each.
- ``WeeklyRecurrence(days_of_week)``: the selected weekdays, one instance each.

A weekly rule without weekdays is rejected on construction, so no caller can
observe one.
"""

import dataclasses
import datetime
from collections.abc import Iterable
from typing import ClassVar

from dateutil.rrule import DAILY, FR, MO, SA, SU, TH, TU, WE, WEEKLY, rrule

from scheduling.constants import WEEKDAY_CODES, RecurrenceType
from scheduling.exceptions import EmptyWeekdaysError, RecurrenceRuleValidationError


RRULE_WEEKDAYS = {
    "MO": MO,
    "TU": TU,
    "WE": WE,
    "TH": TH,
    "FR": FR,
    "SA": SA,
    "SU": SU,
}


@dataclasses.dataclass(frozen=True)
class NoRecurrence:
    recurrence_type: ClassVar[str] = RecurrenceType.NONE


@dataclasses.dataclass(frozen=True)
class DailyRecurrence:
    recurrence_type: ClassVar[str] = RecurrenceType.DAILY

    times_per_day: int = 1

    def __post_init__(self):
        if self.times_per_day < 1:
            raise RecurrenceRuleValidationError("times_per_day must be at least 1.")


@dataclasses.dataclass(frozen=True)
class WeeklyRecurrence:
    recurrence_type: ClassVar[str] = RecurrenceType.WEEKLY

    days_of_week: frozenset[str]

    def __post_init__(self):
        days = frozenset(day.strip().upper() for day in self.days_of_week if day.strip())
        if not days:
            raise EmptyWeekdaysError()
        unknown = days.difference(WEEKDAY_CODES)
        if unknown:
            raise RecurrenceRuleValidationError(
                f"Unknown days of the week: {', '.join(sorted(unknown))}"
            )
        object.__setattr__(self, "days_of_week", days)

    @property
    def ordered_days(self) -> list[str]:
        return [code for code in WEEKDAY_CODES if code in self.days_of_week]


RecurrenceRule = NoRecurrence | DailyRecurrence | WeeklyRecurrence


def parse_days_of_week(days_of_week: str | Iterable[str] | None) -> frozenset[str]:
    if not days_of_week:
        return frozenset()
    if isinstance(days_of_week, str):
        days_of_week = days_of_week.split(",")
    return frozenset(day.strip().upper() for day in days_of_week if day.strip())


def build_recurrence_rule(
    recurrence_type: str,
    times_per_day: int | None = 1,
    days_of_week: str | Iterable[str] | None = None,
) -> RecurrenceRule:
    """
    Build the canonical rule from its stored column values.

    :raises RecurrenceRuleValidationError: for unknown types, invalid instance counts or
        a weekly rule without weekdays.
    """
    if recurrence_type == RecurrenceType.NONE:
        return NoRecurrence()
    if recurrence_type == RecurrenceType.DAILY:
        return DailyRecurrence(times_per_day=times_per_day or 1)
    if recurrence_type == RecurrenceType.WEEKLY:
        return WeeklyRecurrence(days_of_week=parse_days_of_week(days_of_week))
    raise RecurrenceRuleValidationError(f"Unknown recurrence type: {recurrence_type}")


def recurrence_rule_to_fields(rule: RecurrenceRule) -> dict[str, str | int]:
    """Return the model column values that store ``rule``."""
    fields: dict[str, str | int] = {
        "recurrence_type": rule.recurrence_type,
        "times_per_day": 1,
        "days_of_week": "",
    }
    if isinstance(rule, DailyRecurrence):
        fields["times_per_day"] = rule.times_per_day
    elif isinstance(rule, WeeklyRecurrence):
        fields["days_of_week"] = ",".join(rule.ordered_days)
    return fields


def period_bounds(day: datetime.date) -> tuple[datetime.date, datetime.date]:
    """Return the Monday to Sunday reporting week that contains ``day``."""
    period_start = day - datetime.timedelta(days=day.weekday())
    return period_start, period_start + datetime.timedelta(days=6)


def periods_in_range(
    range_start: datetime.date, range_end: datetime.date
) -> list[tuple[datetime.date, datetime.date]]:
    periods = []
    period_start, period_end = period_bounds(range_start)
    while period_start <= range_end:
        periods.append((period_start, period_end))
        period_start += datetime.timedelta(days=7)
        period_end += datetime.timedelta(days=7)
    return periods


class OccurrenceExpander:
    """Projects a recurrence rule and its series bounds onto a date range."""

    @staticmethod
    def _build_rrule(
        rule: DailyRecurrence | WeeklyRecurrence,
        lower: datetime.date,
        upper: datetime.date,
    ) -> rrule:
        # Both rule shapes have an interval of one, so anchoring at the lower bound of the
        # window yields the same dates as anchoring at the series start.
        dtstart = datetime.datetime.combine(lower, datetime.time.min)
        until = datetime.datetime.combine(upper, datetime.time.min)
        if isinstance(rule, DailyRecurrence):
            return rrule(DAILY, dtstart=dtstart, until=until)
        return rrule(
            WEEKLY,
            dtstart=dtstart,
            until=until,
            byweekday=[RRULE_WEEKDAYS[code] for code in rule.ordered_days],
        )

    @staticmethod
    def project(
        rule: RecurrenceRule,
        start_date: datetime.date,
        end_date: datetime.date | None,
        range_start: datetime.date,
        range_end: datetime.date,
    ) -> list[datetime.date]:
        """
        Return the ordered dates ``rule`` projects inside
        ``[start_date, end_date or open] ∩ [range_start, range_end]``.
        """
        if isinstance(rule, NoRecurrence):
            return []

        lower = max(start_date, range_start)
        upper = range_end if end_date is None else min(end_date, range_end)
        if lower > upper:
            return []

        return [
            occurrence.date()
            for occurrence in OccurrenceExpander._build_rrule(rule, lower, upper)
        ]

    @staticmethod
    def instances_per_day(rule: RecurrenceRule) -> int:
        if isinstance(rule, DailyRecurrence):
            return rule.times_per_day
        return 1

    @staticmethod
    def instances(
        rule: RecurrenceRule,
        start_date: datetime.date,
        end_date: datetime.date | None,
        range_start: datetime.date,
        range_end: datetime.date,
    ) -> list[tuple[datetime.date, int]]:
        """Like ``project`` but yields ``(date, instance_number)`` pairs, numbered from 1."""
        per_day = OccurrenceExpander.instances_per_day(rule)
        return [
            (day, instance_number)
            for day in OccurrenceExpander.project(
                rule, start_date, end_date, range_start, range_end
            )
            for instance_number in range(1, per_day + 1)
        ]

    @staticmethod
    def occurs_on(
        rule: RecurrenceRule,
        start_date: datetime.date,
        end_date: datetime.date | None,
        day: datetime.date,
    ) -> bool:
        return bool(OccurrenceExpander.project(rule, start_date, end_date, day, day))

    @staticmethod
    def planned_count(
        rule: RecurrenceRule,
        start_date: datetime.date,
        end_date: datetime.date | None,
        period_start: datetime.date,
        period_end: datetime.date,
    ) -> int:
        """Number of instances the rule plans inside one reporting period."""
        return len(
            OccurrenceExpander.instances(rule, start_date, end_date, period_start, period_end)
        )
