from pydantic import BaseModel

from models.operations.auctions import EngineSettings
from utils import env, log
from utils.env import EnvVarSpec

logger = log.get_logger(__name__)

#### Types ####

class HttpServerConf(BaseModel):
    host: str
    port: int
    autoreload: bool

class SchedulerConf(BaseModel):
    enabled: bool
    interval_seconds: float

#### Env Vars ####

## Logging ##

LOG_LEVEL = EnvVarSpec(id="LOG_LEVEL", default="INFO")

ENVIRONMENT = EnvVarSpec(id="ENVIRONMENT", default="development")

## HTTP ##

HTTP_HOST = EnvVarSpec(id="HTTP_HOST", default="0.0.0.0")

HTTP_PORT = EnvVarSpec(id="HTTP_PORT", default="8000", parse=int, type=(int, ...))

HTTP_AUTORELOAD = EnvVarSpec(
    id="HTTP_AUTORELOAD",
    parse=lambda x: x.lower() == "true",
    default="false",
    type=(bool, ...),
)

HTTP_EXPOSE_ERRORS = EnvVarSpec(
    id="HTTP_EXPOSE_ERRORS",
    default="false",
    parse=lambda x: x.lower() == "true",
    type=(bool, ...),
)

## Admin ##

ADMIN_API_KEY = EnvVarSpec(id="ADMIN_API_KEY", is_optional=True, is_secret=True)

## Auction engine ##

AUCTION_STORE = EnvVarSpec(
    id="AUCTION_STORE",
    default="memory",
    parse=lambda x: x.lower(),
    type=(str, ...),
)

AUCTION_STORE_TIMEOUT_SECONDS = EnvVarSpec(
    id="AUCTION_STORE_TIMEOUT_SECONDS",
    default="5",
    parse=float,
    type=(float, ...),
)

AUCTION_LOCK_TIMEOUT_SECONDS = EnvVarSpec(
    id="AUCTION_LOCK_TIMEOUT_SECONDS",
    default="5",
    parse=float,
    type=(float, ...),
)

AUCTION_MAX_RETRIES = EnvVarSpec(
    id="AUCTION_MAX_RETRIES",
    default="5",
    parse=int,
    type=(int, ...),
)

AUCTION_SOLD_WHEN_RESERVE_MET = EnvVarSpec(
    id="AUCTION_SOLD_WHEN_RESERVE_MET",
    default="true",
    parse=lambda x: x.lower() == "true",
    type=(bool, ...),
)

## Scheduler ##

AUCTION_TICK_ENABLED = EnvVarSpec(
    id="AUCTION_TICK_ENABLED",
    default="true",
    parse=lambda x: x.lower() == "true",
    type=(bool, ...),
)

AUCTION_TICK_INTERVAL_SECONDS = EnvVarSpec(
    id="AUCTION_TICK_INTERVAL_SECONDS",
    default="1",
    parse=float,
    type=(float, ...),
)

## Couchbase ##
## NOTE: COUCHBASE_* variables are read by clients.couchbase and only checked
## when AUCTION_STORE=couchbase opens its first connection.

STORE_BACKENDS = ("memory", "couchbase")

#### Validation ####
VALIDATED_ENV_VARS = [
    LOG_LEVEL,
    ENVIRONMENT,
    HTTP_PORT,
    HTTP_AUTORELOAD,
    HTTP_EXPOSE_ERRORS,
    AUCTION_STORE,
    AUCTION_STORE_TIMEOUT_SECONDS,
    AUCTION_LOCK_TIMEOUT_SECONDS,
    AUCTION_MAX_RETRIES,
    AUCTION_SOLD_WHEN_RESERVE_MET,
    AUCTION_TICK_ENABLED,
    AUCTION_TICK_INTERVAL_SECONDS,
]

def validate() -> bool:
    if not env.validate(VALIDATED_ENV_VARS):
        return False
    if get_store_backend() not in STORE_BACKENDS:
        logger.error(f"AUCTION_STORE must be one of {STORE_BACKENDS}")
        return False
    if get_scheduler_conf().interval_seconds <= 0:
        logger.error("AUCTION_TICK_INTERVAL_SECONDS must be positive")
        return False
    settings = get_engine_settings()
    if settings.store_timeout_seconds <= 0:
        logger.error("AUCTION_STORE_TIMEOUT_SECONDS must be positive")
        return False
    if settings.lock_timeout_seconds <= 0:
        logger.error("AUCTION_LOCK_TIMEOUT_SECONDS must be positive")
        return False
    return True

#### Getters ####

def get_log_level() -> str:
    return env.parse(LOG_LEVEL)

def get_environment() -> str:
    return env.parse(ENVIRONMENT)

def get_http_expose_errors() -> bool:
    return env.parse(HTTP_EXPOSE_ERRORS)

def get_http_conf() -> HttpServerConf:
    return HttpServerConf(
        host=env.parse(HTTP_HOST),
        port=env.parse(HTTP_PORT),
        autoreload=env.parse(HTTP_AUTORELOAD),
    )

def get_admin_api_key() -> str:
    return env.parse(ADMIN_API_KEY)

def get_store_backend() -> str:
    return env.parse(AUCTION_STORE)

def get_engine_settings() -> EngineSettings:
    return EngineSettings(
        store_timeout_seconds=env.parse(AUCTION_STORE_TIMEOUT_SECONDS),
        lock_timeout_seconds=env.parse(AUCTION_LOCK_TIMEOUT_SECONDS),
        max_retries=max(0, env.parse(AUCTION_MAX_RETRIES)),
        sold_when_reserve_met=env.parse(AUCTION_SOLD_WHEN_RESERVE_MET),
    )

def get_scheduler_conf() -> SchedulerConf:
    return SchedulerConf(
        enabled=env.parse(AUCTION_TICK_ENABLED),
        interval_seconds=env.parse(AUCTION_TICK_INTERVAL_SECONDS),
    )
