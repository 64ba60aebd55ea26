import asyncio
import logging
from functools import lru_cache

from rallybot.firebase import EVENTS_COLLECTION, get_firestore

logger = logging.getLogger(__name__)


class StorageFailure(Exception):
    pass


class EventStore:
    """Append-only writer for the events collection."""

    def __init__(self, collection=None):
        self._collection = collection

    @property
    def collection(self):
        if self._collection is None:
            self._collection = get_firestore().collection(EVENTS_COLLECTION)
        return self._collection

    def _add(self, document: dict) -> str:
        _, doc_ref = self.collection.add(document)
        return doc_ref.id

    async def create(self, draft) -> str:
        """
        Write the draft as a new document and return its generated id.
        No validation happens here; the draft must already be complete.
        """
        try:
            return await asyncio.to_thread(self._add, draft.to_document())
        except Exception as e:
            logger.exception("Failed to write event for host %s", draft.host_id)
            raise StorageFailure(str(e)) from e


@lru_cache(maxsize=1)
def get_event_store() -> EventStore:
    return EventStore()
