"""Process startup and shutdown for a service embedding the depot."""

import logging

from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from sqlalchemy.ext.asyncio import AsyncEngine

from depot.depot import Depot
from depot.errors import CryptoError
from shared.config import Settings, settings
from shared.database import build_session_factory
from shared.database import engine as default_engine
from shared.logging import setup_logging
from shared.metrics import setup_metrics
from shared.tracing import setup_tracing

logger = logging.getLogger(__name__)

# Global depot instance
_depot: Depot | None = None


def get_depot() -> Depot:
    """Get the started depot."""
    if _depot is None:
        raise RuntimeError("Depot not started")
    return _depot


async def start_depot(
    config: Settings = settings,
    engine: AsyncEngine | None = None,
    instrument: bool = True,
) -> Depot:
    """Configure telemetry, open the store and bootstrap the authority.

    Raises:
        CryptoError: If CA_PASSPHRASE is not configured, or the stored key cannot be decrypted.
        RecordIntegrityError: If stored authority data is corrupt.
        StorageUnavailableError: If the database cannot be reached.
    """
    global _depot

    engine = engine or default_engine

    if instrument:
        setup_logging(config.LOG_LEVEL)
        setup_tracing(config.APP_NAME)
        setup_metrics(config.APP_NAME)

        LoggingInstrumentor().instrument(set_logging_format=True)
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)

    if not config.CA_PASSPHRASE:
        raise CryptoError("CA_PASSPHRASE is not set")

    depot = Depot.from_settings(build_session_factory(engine), config)
    await depot.create_or_load_authority(
        passphrase=config.CA_PASSPHRASE,
        validity_years=config.CA_VALIDITY_YEARS,
        common_name=config.CA_COMMON_NAME,
        organization=config.CA_ORGANIZATION,
        country=config.CA_COUNTRY,
        organizational_unit=config.CA_ORGANIZATIONAL_UNIT,
    )

    _depot = depot
    logger.info("depot_started", extra={"app_env": config.APP_ENV})
    return depot


async def stop_depot(engine: AsyncEngine | None = None) -> None:
    """Release pooled connections."""
    global _depot
    _depot = None
    await (engine or default_engine).dispose()
