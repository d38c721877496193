from couchbase.exceptions import (
    AmbiguousTimeoutException,
    CASMismatchException,
    DocumentExistsException,
    DocumentNotFoundException,
    UnAmbiguousTimeoutException,
)
from couchbase.n1ql import QueryScanConsistency

from .config import (
    DEFAULT_BUCKET_NAME,
    validate_config,
    get_cluster,
    get_default_bucket,
    check_connection
)
from .keyspace import (
    Keyspace,
    get_keyspace
)
from .base_model import (
    BaseModelCouchbase,
    DataT,
    T
)
