from dataclasses import dataclass
from typing import Optional
from couchbase.exceptions import CollectionAlreadyExistsException
from couchbase.result import MutationResult
from couchbase.n1ql import QueryScanConsistency
from couchbase.options import QueryOptions
from .config import get_cluster, DEFAULT_BUCKET_NAME

@dataclass
class Keyspace:
    bucket_name: str
    scope_name: str
    collection_name: str

    def __str__(self) -> str:
        return f"`{self.bucket_name}`.`{self.scope_name}`.`{self.collection_name}`"

    async def query(
        self,
        query: str,
        scan_consistency: Optional[QueryScanConsistency] = None,
        **kwargs,
    ) -> list:
        """Run N1QL; keyword arguments bind to $name placeholders.

        The default consistency (not_bounded) may miss recent writes; pass
        ``QueryScanConsistency.REQUEST_PLUS`` to read them.
        """
        cluster = await get_cluster()
        opts = {}
        if kwargs:
            opts["named_parameters"] = kwargs
        if scan_consistency is not None:
            opts["scan_consistency"] = scan_consistency
        options = QueryOptions(**opts)
        result = cluster.query(query, options)
        return [row async for row in result]

    async def get_scope(self):
        cluster = await get_cluster()
        bucket = cluster.bucket(self.bucket_name)
        return bucket.scope(self.scope_name)

    async def get_collection(self):
        scope = await self.get_scope()
        return scope.collection(self.collection_name)

    async def ensure_collection(self) -> bool:
        """Create the collection if it does not exist yet.

        Returns True when the collection was created by this call.
        """
        cluster = await get_cluster()
        manager = cluster.bucket(self.bucket_name).collections()
        try:
            await manager.create_collection(self.scope_name, self.collection_name)
            return True
        except CollectionAlreadyExistsException:
            return False

    async def insert(self, key: str, value: dict, **kwargs) -> MutationResult:
        collection = await self.get_collection()
        return await collection.insert(key, value, **kwargs)

    async def upsert(self, key: str, value: dict, **kwargs) -> MutationResult:
        """Write under a deterministic key; repeating the call is harmless."""
        collection = await self.get_collection()
        return await collection.upsert(key, value, **kwargs)

def get_keyspace(collection_name: str, scope_name: Optional[str] = "_default", bucket_name: Optional[str] = None) -> Keyspace:
    """Keyspace in the configured bucket (COUCHBASE_BUCKET) unless one is given."""
    return Keyspace(bucket_name or DEFAULT_BUCKET_NAME, scope_name, collection_name)
