"""
Connector store.

Keyed persistence for `ConnectorRecord` objects. The store holds no business
rules; it only guarantees that:

    - ids are unique (`create` on an existing id raises `ConnectorExists`);
    - `get`, `update` and `delete` on a missing id raise `NotFound`;
    - `update` is a whole-record replace guarded by compare-and-swap on the
      record's `revision` (a stale write raises `StaleRecord`);
    - records handed out are independent copies, always fully written.

Two media are provided: MongoDB through Motor, and an in-process dictionary
used by the test-suite and by `STORE_BACKEND=memory`.
"""

from abc import ABC, abstractmethod
from typing import Dict, List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from connector_studio.core.errors import ConnectorExists, NotFound, StaleRecord
from connector_studio.models.connector import ConnectorRecord


class ConnectorStore(ABC):

    @abstractmethod
    async def create(self, record: ConnectorRecord) -> ConnectorRecord:
        """Persist a new record; its revision is set to 1."""

    @abstractmethod
    async def get(self, connector_id: str) -> ConnectorRecord:
        ...

    @abstractmethod
    async def list(self) -> List[ConnectorRecord]:
        """All records, oldest first."""

    @abstractmethod
    async def update(self, record: ConnectorRecord, expected_revision: int) -> ConnectorRecord:
        """
        Replace the stored record if its revision still equals `expected_revision`.

        Returns:
            ConnectorRecord: The stored record, with its revision incremented.
        """

    @abstractmethod
    async def delete(self, connector_id: str) -> None:
        ...


class InMemoryConnectorStore(ConnectorStore):
    """
    Dictionary-backed store.

    Every method runs without suspending, so each call is atomic with respect
    to other coroutines on the same event loop.
    """

    def __init__(self):
        self._records: Dict[str, ConnectorRecord] = {}

    async def create(self, record: ConnectorRecord) -> ConnectorRecord:
        if record.id in self._records:
            raise ConnectorExists(record.id)
        stored = record.model_copy(update={"revision": 1}, deep=True)
        self._records[record.id] = stored
        return stored.model_copy(deep=True)

    async def get(self, connector_id: str) -> ConnectorRecord:
        record = self._records.get(connector_id)
        if record is None:
            raise NotFound(connector_id)
        return record.model_copy(deep=True)

    async def list(self) -> List[ConnectorRecord]:
        records = sorted(self._records.values(), key=lambda r: r.created_at)
        return [r.model_copy(deep=True) for r in records]

    async def update(self, record: ConnectorRecord, expected_revision: int) -> ConnectorRecord:
        current = self._records.get(record.id)
        if current is None:
            raise NotFound(record.id)
        if current.revision != expected_revision:
            raise StaleRecord(record.id, expected_revision)
        stored = record.model_copy(update={"revision": expected_revision + 1}, deep=True)
        self._records[record.id] = stored
        return stored.model_copy(deep=True)

    async def delete(self, connector_id: str) -> None:
        if self._records.pop(connector_id, None) is None:
            raise NotFound(connector_id)


class MongoConnectorStore(ConnectorStore):
    """
    MongoDB-backed store.

    The connector id is the document `_id`. Compare-and-swap is a single
    `replace_one` filtered on both `_id` and `revision`, so concurrent writers
    (including other backend processes) cannot overwrite each other.
    """

    def __init__(self, db: AsyncIOMotorDatabase, collection: str = "connectors"):
        self._collection = db[collection]

    async def create(self, record: ConnectorRecord) -> ConnectorRecord:
        stored = record.model_copy(update={"revision": 1})
        try:
            await self._collection.insert_one(stored.to_document())
        except DuplicateKeyError:
            raise ConnectorExists(record.id)
        return stored

    async def get(self, connector_id: str) -> ConnectorRecord:
        document = await self._collection.find_one({"_id": connector_id})
        if not document:
            raise NotFound(connector_id)
        return ConnectorRecord.from_document(document)

    async def list(self) -> List[ConnectorRecord]:
        documents = await self._collection.find().sort("createdAt", 1).to_list(length=None)
        return [ConnectorRecord.from_document(d) for d in documents]

    async def update(self, record: ConnectorRecord, expected_revision: int) -> ConnectorRecord:
        stored = record.model_copy(update={"revision": expected_revision + 1})
        result = await self._collection.replace_one(
            {"_id": record.id, "revision": expected_revision},
            stored.to_document(),
        )
        if result.matched_count == 0:
            if await self._collection.count_documents({"_id": record.id}, limit=1) == 0:
                raise NotFound(record.id)
            raise StaleRecord(record.id, expected_revision)
        return stored

    async def delete(self, connector_id: str) -> None:
        result = await self._collection.delete_one({"_id": connector_id})
        if result.deleted_count == 0:
            raise NotFound(connector_id)
