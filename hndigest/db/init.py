import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from hndigest.core.config import get_settings
from hndigest.storage.mongo import Record

DOCUMENT_MODELS = [Record]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def connect(uri: str, db_name: str, **client_kwargs) -> AsyncIOMotorClient:
    """Open a client and bind the document models to db_name."""
    # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
    kwargs = {}
    if _use_tls(uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    kwargs.update(client_kwargs)
    client = AsyncIOMotorClient(uri, **kwargs)
    await init_beanie(database=client[db_name], document_models=DOCUMENT_MODELS)
    return client


async def init_db() -> None:
    """Connect beanie when the mongo backend is configured; no-op for the memory backend."""
    settings = get_settings()
    if settings.storage_backend != "mongo":
        return
    await connect(settings.mongodb_uri, settings.mongodb_db_name)
