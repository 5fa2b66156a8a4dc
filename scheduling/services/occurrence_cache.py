import copy
import datetime
import logging
import uuid

from django.core.cache import caches
from django.db import transaction

from scheduling.services.dataclasses import CompletionRef, OccurrenceRangeResult


logger = logging.getLogger(__name__)


class OccurrenceRangeCache:
    """
    Caches `OccurrenceRangeResult`s per `(user_id, range_start, range_end)`.

    Entries are namespaced by a per-user version token. Invalidating a user replaces the
    token, which orphans every cached range of that user at once; orphaned entries simply
    expire.
    """

    def __init__(self, timeout: int = 300, cache_alias: str = "default"):
        self.timeout = timeout
        self.cache_alias = cache_alias

    @property
    def _cache(self):
        return caches[self.cache_alias]

    @staticmethod
    def _version_key(user_id: int) -> str:
        return f"occurrences:{user_id}:version"

    def _get_version(self, user_id: int) -> str:
        version_key = self._version_key(user_id)
        version = self._cache.get(version_key)
        if version is None:
            self._cache.add(version_key, uuid.uuid4().hex, timeout=None)
            version = self._cache.get(version_key)
        return version

    def _index_key(self, user_id: int, version: str) -> str:
        return f"occurrences:{user_id}:{version}:ranges"

    def _range_key(
        self,
        user_id: int,
        version: str,
        range_start: datetime.date,
        range_end: datetime.date,
    ) -> str:
        return (
            f"occurrences:{user_id}:{version}:{range_start.isoformat()}:{range_end.isoformat()}"
        )

    def get(
        self, user_id: int, range_start: datetime.date, range_end: datetime.date
    ) -> OccurrenceRangeResult | None:
        version = self._get_version(user_id)
        return self._cache.get(self._range_key(user_id, version, range_start, range_end))

    def set(
        self,
        user_id: int,
        range_start: datetime.date,
        range_end: datetime.date,
        result: OccurrenceRangeResult,
    ) -> None:
        version = self._get_version(user_id)
        range_key = self._range_key(user_id, version, range_start, range_end)
        self._cache.set(range_key, result, timeout=self.timeout)

        index_key = self._index_key(user_id, version)
        range_keys = set(self._cache.get(index_key) or ())
        range_keys.add(range_key)
        self._cache.set(index_key, range_keys, timeout=self.timeout)

    def _bump_version(self, user_id: int) -> None:
        self._cache.set(self._version_key(user_id), uuid.uuid4().hex, timeout=None)

    def invalidate(self, user_id: int) -> None:
        """
        Drop every cached range of the user. When called inside a transaction the
        invalidation is repeated after commit, so ranges read while the transaction was
        still open are dropped as well.
        """
        self._bump_version(user_id)
        transaction.on_commit(lambda: self._bump_version(user_id))
        logger.debug("Invalidated cached occurrence ranges for user %s", user_id)

    def patch_completion(
        self, user_id: int, ref: CompletionRef, is_completed: bool
    ) -> dict[str, OccurrenceRangeResult]:
        """
        Optimistically apply a completion change to every cached range that lists the
        occurrence.

        :return: the exact prior value of every patched entry, to be handed to `rollback`.
        """
        version = self._get_version(user_id)
        snapshot: dict[str, OccurrenceRangeResult] = {}
        for range_key in self._cache.get(self._index_key(user_id, version)) or ():
            cached = self._cache.get(range_key)
            if cached is None:
                continue

            patched = copy.deepcopy(cached)
            matches = [occurrence for occurrence in patched.occurrences if occurrence.ref == ref]
            if not matches:
                continue
            for occurrence in matches:
                occurrence.is_completed = is_completed

            snapshot[range_key] = cached
            self._cache.set(range_key, patched, timeout=self.timeout)
        return snapshot

    def rollback(self, snapshot: dict[str, OccurrenceRangeResult]) -> None:
        """Restore the entries saved by `patch_completion`."""
        for range_key, cached in snapshot.items():
            self._cache.set(range_key, cached, timeout=self.timeout)
        if snapshot:
            logger.warning("Rolled back %s optimistic completion patches", len(snapshot))
