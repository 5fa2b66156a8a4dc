from dependency_injector import containers, providers

from scheduling.services.completion_tracker_service import CompletionTrackerService
from scheduling.services.exception_store_service import ExceptionStoreService
from scheduling.services.occurrence_aggregator_service import OccurrenceAggregatorService
from scheduling.services.occurrence_cache import OccurrenceRangeCache
from scheduling.services.series_mutator_service import SeriesMutatorService


class AppContainer(containers.DeclarativeContainer):
    config = providers.Configuration()

    occurrence_cache = providers.Singleton(
        OccurrenceRangeCache,
        timeout=config.OCCURRENCE_CACHE_TIMEOUT,
    )

    exception_store_service = providers.Factory(
        ExceptionStoreService,
        occurrence_cache=occurrence_cache,
    )

    completion_tracker_service = providers.Factory(
        CompletionTrackerService,
        occurrence_cache=occurrence_cache,
        lock_timeout=config.COMPLETION_TOGGLE_LOCK_TIMEOUT,
    )

    series_mutator_service = providers.Factory(
        SeriesMutatorService,
        exception_store_service=exception_store_service,
        completion_tracker_service=completion_tracker_service,
        occurrence_cache=occurrence_cache,
        recovery_days=config.SOFT_DELETE_RECOVERY_DAYS,
    )

    occurrence_aggregator_service = providers.Factory(
        OccurrenceAggregatorService,
        completion_tracker_service=completion_tracker_service,
        occurrence_cache=occurrence_cache,
    )


container: AppContainer | None = None  # set during app startup
