from django.db.models import TextChoices


class RecurrenceType(TextChoices):
    NONE = "none", "Does not repeat"
    DAILY = "daily", "Daily"
    WEEKLY = "weekly", "Weekly"


class Weekday(TextChoices):
    MONDAY = "MO", "Monday"
    TUESDAY = "TU", "Tuesday"
    WEDNESDAY = "WE", "Wednesday"
    THURSDAY = "TH", "Thursday"
    FRIDAY = "FR", "Friday"
    SATURDAY = "SA", "Saturday"
    SUNDAY = "SU", "Sunday"


class OccurrenceKind(TextChoices):
    SERIES = "series", "Series Occurrence"
    DETACHED = "detached", "Detached Occurrence"
    INDEPENDENT = "independent", "Independent Task"


# Ordered the same way as `datetime.date.weekday()`
WEEKDAY_CODES: tuple[str, ...] = tuple(Weekday.values)
