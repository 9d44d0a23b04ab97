from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from quizportal.domain.auth import ClaimsSource, Identity, require_portal_access
from quizportal.domain.errors import AuthorizationError, InvalidTransitionError, NotFoundError
from quizportal.domain.lifecycle import EDITABLE_STATUSES
from quizportal.domain.models import StagingBatchRecord, StagingItemRecord
from quizportal.domain.validation import validate_staging_item
from quizportal.infra.db.staging_store import BatchFilter, StagingStore
from quizportal.infra.events import Subscription


class StagingService:
    """Role-aware reads and author edits of staging batches.

    Reviewers see every batch; everyone else sees only the batches they
    created.
    """

    def __init__(self, *, store: StagingStore, identities: ClaimsSource):
        self.store = store
        self.identities = identities

    def _fresh(self, identity: Identity, operation: str) -> Identity:
        fresh = identity.refresh_claims(self.identities)
        require_portal_access(fresh, operation)
        return fresh

    def _visible_batch(self, identity: Identity, batch_id: str, operation: str) -> StagingBatchRecord:
        batch = self.store.get_batch(batch_id)
        if batch is None:
            raise NotFoundError("batch not found", operation=operation, identifier=batch_id)
        if not identity.is_admin and batch.created_by_uid != identity.uid:
            raise AuthorizationError("batch belongs to another user", operation=operation, identifier=batch_id)
        return batch

    def _filter_for(self, identity: Identity, mine: bool) -> BatchFilter:
        if identity.is_admin and not mine:
            return BatchFilter()
        return BatchFilter(created_by_uid=identity.uid)

    def list_batches(self, identity: Identity, *, mine: bool = False) -> list[StagingBatchRecord]:
        caller = self._fresh(identity, "list_batches")
        return self.store.list_batches(self._filter_for(caller, mine))

    def get_batch(self, identity: Identity, batch_id: str) -> StagingBatchRecord:
        caller = self._fresh(identity, "get_batch")
        return self._visible_batch(caller, batch_id, "get_batch")

    def list_items(self, identity: Identity, batch_id: str) -> list[StagingItemRecord]:
        caller = self._fresh(identity, "list_items")
        self._visible_batch(caller, batch_id, "list_items")
        return self.store.list_items(batch_id)

    def update_item(
        self,
        identity: Identity,
        batch_id: str,
        item_id: str,
        payload: Mapping[str, Any],
    ) -> StagingItemRecord:
        caller = self._fresh(identity, "update_item")
        batch = self._visible_batch(caller, batch_id, "update_item")
        if batch.status not in EDITABLE_STATUSES:
            raise InvalidTransitionError(
                f"items of an {batch.status} batch cannot be edited",
                operation="update_item",
                identifier=batch_id,
            )
        change = validate_staging_item(payload)
        return self.store.update_item(batch_id, item_id, change)

    def subscribe(
        self,
        identity: Identity,
        callback: Callable[[list[StagingBatchRecord]], None] | None = None,
        *,
        mine: bool = False,
    ) -> Subscription:
        caller = self._fresh(identity, "subscribe_batches")
        return self.store.subscribe(self._filter_for(caller, mine), callback)
