"""Configuration loading for the log tailer.

A single YAML document (``config.yaml`` in the working directory, or the
path in ``$LOGTAIL_CONFIG``, or ``--config``) describes the AWS session, the
offset store backend, tailer tuning and the services to tail:

    aws:
      region: us-east-1
      profile: ${AWS_PROFILE:-}
    offset_store:
      kind: consul
      consul:
        address: ${CONSUL_HTTP_ADDR:-127.0.0.1:8500}
        token: ${CONSUL_HTTP_TOKEN:-}
    fallback_duration_seconds: 3600
    services:
      - name: billing
        consul_kv_path: logtail/billing
        log_configs:
          - log_group_name: /ecs/billing
            log_stream_prefix: api/
        destination:
          type: stdout

Usage:
    >>> from config import load_config
    >>> config = load_config()
    >>> config.offset_store.kind
    <OffsetStoreKind.CONSUL: 'consul'>
"""

from config.config import (
    AppConfig,
    AWSConfig,
    BlobStoreConfig,
    ConsulStoreConfig,
    DestinationConfig,
    DestinationType,
    ElasticsearchDestination,
    FileDestination,
    FileStoreConfig,
    KafkaDestination,
    KafkaStoreConfig,
    LogConfig,
    MemoryStoreConfig,
    OffsetStoreConfig,
    OffsetStoreKind,
    ServiceConfig,
    SinkFailurePolicy,
    StdoutDestination,
    TailerSettings,
    load_config,
    parse_destination,
    parse_offset_store,
    resolve_config_path,
)

__all__ = [
    "load_config",
    "resolve_config_path",
    "parse_offset_store",
    "parse_destination",
    "AppConfig",
    "AWSConfig",
    "TailerSettings",
    "SinkFailurePolicy",
    "ServiceConfig",
    "LogConfig",
    # Offset store variants
    "OffsetStoreKind",
    "OffsetStoreConfig",
    "ConsulStoreConfig",
    "FileStoreConfig",
    "BlobStoreConfig",
    "KafkaStoreConfig",
    "MemoryStoreConfig",
    # Destination variants
    "DestinationType",
    "DestinationConfig",
    "StdoutDestination",
    "FileDestination",
    "KafkaDestination",
    "ElasticsearchDestination",
]
