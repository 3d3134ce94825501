from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError

from cache import AnalyticsCache
from clock import Clock, SystemClock
from errors import SourceUnavailable
from schemas import DEFAULT_PROFILE, ExternalProfileIn, ExternalTransactionIn
from source_client import TransactionSource
from store import ProfileStore, TransactionStore, WriteAction


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncOutcome:
    created: int
    updated: int
    skipped: int
    errors: int
    profile_synced: bool = True

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + self.errors

    def to_dict(self) -> dict[str, object]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "total": self.total,
            "profile_synced": self.profile_synced,
        }


class SyncReconciler:
    """Merge the source's transactions into the local copies of one subject.

    Each incoming record is created when unseen, updated when the source copy
    was modified after the local one, and skipped otherwise. Records are
    committed one at a time so a failing record only rolls back itself. The
    subject's cache entries are invalidated once, after the whole batch.
    """

    def __init__(
        self,
        store: TransactionStore,
        profiles: ProfileStore,
        source: TransactionSource,
        cache: AnalyticsCache,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.profiles = profiles
        self.source = source
        self.cache = cache
        self.clock = clock or SystemClock()

    def sync(self, subject_id: str, auth_token: str) -> SyncOutcome:
        logger.info(f"sync_start: subject={subject_id}")
        profile_synced = self.sync_profile(subject_id, auth_token)

        # A source outage here is terminal for this invocation.
        payloads = self.source.fetch_transactions(subject_id, auth_token)

        counts = {"created": 0, "updated": 0, "skipped": 0, "errors": 0}
        for payload in payloads:
            try:
                action = self._reconcile_one(subject_id, payload)
                self.store.commit()
            except Exception:
                self.store.rollback()
                counts["errors"] += 1
                logger.warning(
                    f"sync_record_failed: subject={subject_id} "
                    f"record={_payload_id(payload)}",
                    exc_info=True,
                )
                continue
            counts[action] += 1

        self.cache.invalidate(subject_id)
        outcome = SyncOutcome(profile_synced=profile_synced, **counts)
        logger.info(
            f"sync_done: subject={subject_id} created={outcome.created} "
            f"updated={outcome.updated} skipped={outcome.skipped} "
            f"errors={outcome.errors}"
        )
        return outcome

    def _reconcile_one(self, subject_id: str, payload: dict[str, Any]) -> str:
        record = ExternalTransactionIn.model_validate(payload)
        local = self.store.get(subject_id, record.original_id)
        if local is not None and record.last_modified_at <= local.last_modified_at:
            return "skipped"
        action = self.store.upsert(
            subject_id, record, self.clock.utcnow(), existing=local
        )
        return "created" if action is WriteAction.created else "updated"

    def sync_profile(self, subject_id: str, auth_token: str) -> bool:
        """Refresh the stored profile; fall back to a default when unreachable."""
        now = self.clock.utcnow()
        try:
            profile = ExternalProfileIn.model_validate(
                self.source.fetch_profile(subject_id, auth_token)
            )
        except (SourceUnavailable, ValidationError):
            logger.warning(
                f"profile_sync_fallback: subject={subject_id}", exc_info=True
            )
            self.profiles.upsert(subject_id, DEFAULT_PROFILE, now, is_default=True)
            self.store.commit()
            return False

        self.profiles.upsert(subject_id, profile, now)
        self.store.commit()
        return True


def _payload_id(payload: object) -> str:
    if isinstance(payload, dict):
        return str(payload.get("_id") or payload.get("id") or "?")
    return "?"
