from common.types import RouteDict

from .views import IndependentTaskViewSet, OccurrenceViewSet, TaskSeriesViewSet


routes: list[RouteDict] = [
    {
        "regex": r"task-series",
        "viewset": TaskSeriesViewSet,
        "basename": "TaskSeries",
    },
    {
        "regex": r"independent-tasks",
        "viewset": IndependentTaskViewSet,
        "basename": "IndependentTasks",
    },
    {
        "regex": r"occurrences",
        "viewset": OccurrenceViewSet,
        "basename": "Occurrences",
    },
]
