"""Build the configured offset store.

The backend is chosen once, from the type of the parsed store config.
A config type without a backend here is a ConfigurationError at startup.
"""

import logging

from config.config import (
    BlobStoreConfig,
    ConsulStoreConfig,
    FileStoreConfig,
    KafkaStoreConfig,
    MemoryStoreConfig,
    OffsetStoreConfig,
)
from core.errors.exceptions import ConfigurationError
from logtail.offsets.base import DEFAULT_REQUEST_TIMEOUT_SECONDS, BaseOffsetStore

logger = logging.getLogger(__name__)


def create_offset_store(
    config: OffsetStoreConfig,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> BaseOffsetStore:
    """Create (but do not start) the offset store for a backend config.

    Backend modules are imported here so that, for example, a consul
    deployment never imports the Azure SDK.

    Raises:
        ConfigurationError: No backend exists for this config type
    """
    common = {"request_timeout": request_timeout}

    if isinstance(config, ConsulStoreConfig):
        from logtail.offsets.consul import ConsulOffsetStore

        store = ConsulOffsetStore(
            address=config.address,
            token=config.token,
            datacenter=config.datacenter,
            **common,
        )
    elif isinstance(config, FileStoreConfig):
        from logtail.offsets.file import FileOffsetStore

        store = FileOffsetStore(base_dir=config.base_dir, **common)
    elif isinstance(config, BlobStoreConfig):
        from logtail.offsets.blob import BlobOffsetStore

        store = BlobOffsetStore(
            container=config.container,
            connection_string=config.connection_string,
            account_url=config.account_url,
            credential=config.credential,
            prefix=config.prefix,
            **common,
        )
    elif isinstance(config, KafkaStoreConfig):
        from logtail.offsets.kafka import KafkaOffsetStore

        store = KafkaOffsetStore(config, **common)
    elif isinstance(config, MemoryStoreConfig):
        from logtail.offsets.memory import MemoryOffsetStore

        logger.warning("Using in-memory offset store: cursors will not survive a restart")
        store = MemoryOffsetStore(**common)
    else:
        raise ConfigurationError(
            f"No offset store backend for {type(config).__name__}",
            context={"backend": getattr(getattr(config, "kind", None), "value", None)},
        )

    logger.info(
        "Offset store created",
        extra={"backend": store.backend, "operation": "create_offset_store"},
    )
    return store
