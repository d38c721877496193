from datetime import datetime, timezone
from typing import Optional, TypeVar, Generic, ClassVar
from pydantic import BaseModel
from couchbase.exceptions import DocumentNotFoundException
from couchbase.options import ReplaceOptions
from .keyspace import Keyspace, get_keyspace

DataT = TypeVar("DataT", bound=BaseModel)
T = TypeVar("T", bound="BaseModelCouchbase")

class BaseModelCouchbase(BaseModel, Generic[DataT]):
    """A document stored under ``id`` in ``_collection_name``.

    ``cas`` is the Couchbase compare-and-swap token of the last read or write;
    ``update`` refuses to overwrite a newer revision and raises
    ``CASMismatchException`` instead.
    """
    id: str
    data: DataT
    cas: Optional[int] = None

    _collection_name: ClassVar[str] = ""

    @staticmethod
    def _stamp(data: BaseModel, created: bool) -> None:
        fields = type(data).model_fields
        now = datetime.now(timezone.utc)
        if created and "created_at" in fields and getattr(data, "created_at") is None:
            data.created_at = now
        if "updated_at" in fields:
            data.updated_at = now

    @classmethod
    def get_keyspace(cls) -> Keyspace:
        if not cls._collection_name:
            raise ValueError(f"_collection_name not set for {cls.__name__}")
        return get_keyspace(cls._collection_name)

    @classmethod
    async def get(cls: type[T], id: str) -> Optional[T]:
        try:
            collection = await cls.get_keyspace().get_collection()
            result = await collection.get(id)
            data = result.content_as[dict]
            return cls(id=id, data=data, cas=result.cas)
        except DocumentNotFoundException:
            return None

    @classmethod
    async def create(cls: type[T], key: str, data: DataT) -> T:
        cls._stamp(data, created=True)
        doc = data.model_dump(mode="json")
        result = await cls.get_keyspace().insert(key, doc)
        return cls(id=key, data=data, cas=result.cas)

    @classmethod
    async def create_or_update(cls: type[T], key: str, data: DataT) -> T:
        """Idempotently create or update a document with a specific key.

        Used for records whose key is derived from their content (bid and
        event sequence numbers) so that replaying the same write is harmless.
        """
        cls._stamp(data, created=True)
        doc = data.model_dump(mode="json")
        result = await cls.get_keyspace().upsert(key, doc)
        return cls(id=key, data=data, cas=result.cas)

    @classmethod
    async def update(cls: type[T], item: T) -> T:
        collection = await cls.get_keyspace().get_collection()

        cls._stamp(item.data, created=False)

        doc = item.data.model_dump(mode="json")
        if item.cas:
            result = await collection.replace(item.id, doc, ReplaceOptions(cas=item.cas))
        else:
            result = await collection.replace(item.id, doc)
        item.cas = result.cas
        return item
