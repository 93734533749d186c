"""Tailer configuration from a YAML file.

Loads one document with every setting in one place:
- AWS session settings for CloudWatch Logs
- Offset store backend (consul, file, blob, kafka, memory)
- Tailer polling, backoff and rate limit settings
- Services: log groups to tail and where their events go

Environment variables ARE supported using ${VAR_NAME} and
${VAR_NAME:-default} syntax in YAML values.

Location priority (highest to lowest):
1. Explicit path (the --config CLI flag)
2. LOGTAIL_CONFIG environment variable
3. config.yaml in the working directory
"""

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional, Union

import yaml

from core.errors.exceptions import ConfigurationError
from core.resilience.rate_limiter import RateLimiterConfig
from core.resilience.retry import POLL_BACKOFF, RetryConfig

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LOGTAIL_CONFIG"
DEFAULT_CONFIG_FILE = Path("config.yaml")

# GetLogEvents accepts at most 10,000 events per call
MAX_PAGE_SIZE = 10000


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# =============================================================================
# AWS
# =============================================================================


@dataclass
class AWSConfig:
    """AWS session settings.

    Exactly one credential source is used, checked in this order: a named
    profile, an IAM role to assume, then a static access key pair.
    """

    region: str = ""
    profile: str = ""
    role_arn: str = ""
    access_key: str = ""
    secret_key: str = ""
    session_token: str = ""
    # For LocalStack and VPC endpoints
    endpoint_url: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any], legacy: Optional[Dict[str, Any]] = None) -> "AWSConfig":
        """Build from the ``aws:`` section, falling back to top-level ``aws_*`` keys."""
        legacy = legacy or {}

        def pick(name: str) -> str:
            value = data.get(name)
            if value in (None, ""):
                value = legacy.get(f"aws_{name}")
            return "" if value is None else str(value)

        return cls(
            region=pick("region"),
            profile=pick("profile"),
            role_arn=pick("role_arn"),
            access_key=pick("access_key"),
            secret_key=pick("secret_key"),
            session_token=pick("session_token"),
            endpoint_url=pick("endpoint_url"),
        )

    @property
    def credential_source(self) -> str:
        if self.profile:
            return "profile"
        if self.role_arn:
            return "role"
        if self.access_key and self.secret_key:
            return "static"
        return ""

    def validate(self) -> None:
        if not self.region:
            raise ConfigurationError("aws.region is required")
        if not self.credential_source:
            raise ConfigurationError(
                "No AWS credentials configured: set aws.profile, aws.role_arn, "
                "or aws.access_key and aws.secret_key"
            )


# =============================================================================
# OFFSET STORE
# =============================================================================


class OffsetStoreKind(str, Enum):
    """Closed set of checkpoint backends."""

    CONSUL = "consul"
    FILE = "file"
    BLOB = "blob"
    KAFKA = "kafka"
    MEMORY = "memory"


@dataclass
class ConsulStoreConfig:
    """Consul KV over its HTTP API."""

    kind: ClassVar[OffsetStoreKind] = OffsetStoreKind.CONSUL

    address: str = "http://127.0.0.1:8500"
    token: str = ""
    datacenter: str = ""

    def __post_init__(self):
        self.address = str(self.address or "").strip().rstrip("/")
        if not self.address:
            raise ConfigurationError("consul.address is required")
        # Consul clients accept a bare host:port and default to http
        if "://" not in self.address:
            self.address = f"http://{self.address}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConsulStoreConfig":
        return cls(
            address=data.get("address") or "http://127.0.0.1:8500",
            token=str(data.get("token") or ""),
            datacenter=str(data.get("datacenter") or data.get("dc") or ""),
        )


@dataclass
class FileStoreConfig:
    """One file per checkpoint key below base_dir."""

    kind: ClassVar[OffsetStoreKind] = OffsetStoreKind.FILE

    base_dir: str = "checkpoints"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileStoreConfig":
        return cls(base_dir=str(data.get("base_dir") or "checkpoints"))


@dataclass
class BlobStoreConfig:
    """Azure Blob Storage container; blob name is the checkpoint key."""

    kind: ClassVar[OffsetStoreKind] = OffsetStoreKind.BLOB

    container: str = ""
    connection_string: str = ""
    account_url: str = ""
    # Account key or SAS token used with account_url
    credential: str = ""
    prefix: str = ""

    def __post_init__(self):
        if not self.container:
            raise ConfigurationError("offset_store.blob.container is required")
        if not self.connection_string and not self.account_url:
            raise ConfigurationError(
                "offset_store.blob requires connection_string or account_url"
            )
        self.prefix = self.prefix.strip("/")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlobStoreConfig":
        return cls(
            container=str(data.get("container") or ""),
            connection_string=str(data.get("connection_string") or ""),
            account_url=str(data.get("account_url") or ""),
            credential=str(data.get("credential") or ""),
            prefix=str(data.get("prefix") or ""),
        )


@dataclass
class KafkaStoreConfig:
    """Compacted Kafka topic keyed by checkpoint key."""

    kind: ClassVar[OffsetStoreKind] = OffsetStoreKind.KAFKA

    bootstrap_servers: str = ""
    topic: str = "logtail-offsets"
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = ""
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""

    def __post_init__(self):
        if not self.bootstrap_servers:
            raise ConfigurationError("offset_store.kafka.bootstrap_servers is required")
        if not self.topic:
            raise ConfigurationError("offset_store.kafka.topic is required")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KafkaStoreConfig":
        return cls(
            bootstrap_servers=str(data.get("bootstrap_servers") or ""),
            topic=str(data.get("topic") or "logtail-offsets"),
            security_protocol=str(data.get("security_protocol") or "PLAINTEXT"),
            sasl_mechanism=str(data.get("sasl_mechanism") or ""),
            sasl_plain_username=str(data.get("sasl_plain_username") or ""),
            sasl_plain_password=str(data.get("sasl_plain_password") or ""),
        )


@dataclass
class MemoryStoreConfig:
    """Process-local store for dry runs and tests. Nothing survives a restart."""

    kind: ClassVar[OffsetStoreKind] = OffsetStoreKind.MEMORY

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryStoreConfig":
        return cls()


OffsetStoreConfig = Union[
    ConsulStoreConfig,
    FileStoreConfig,
    BlobStoreConfig,
    KafkaStoreConfig,
    MemoryStoreConfig,
]

_STORE_CONFIG_TYPES = {
    OffsetStoreKind.CONSUL: ConsulStoreConfig,
    OffsetStoreKind.FILE: FileStoreConfig,
    OffsetStoreKind.BLOB: BlobStoreConfig,
    OffsetStoreKind.KAFKA: KafkaStoreConfig,
    OffsetStoreKind.MEMORY: MemoryStoreConfig,
}


def parse_offset_store(
    data: Dict[str, Any],
    legacy_consul: Optional[Dict[str, Any]] = None,
) -> OffsetStoreConfig:
    """Resolve the ``offset_store:`` section into one typed backend config.

    A document with no ``offset_store:`` but a top-level ``consul:`` section
    selects the consul backend with those settings.
    """
    if not data:
        if legacy_consul is not None:
            return ConsulStoreConfig.from_dict(legacy_consul)
        raise ConfigurationError(
            "No offset store configured: add an 'offset_store:' section "
            "(or a top-level 'consul:' section)"
        )

    raw_kind = str(data.get("kind") or "").strip().lower()
    try:
        kind = OffsetStoreKind(raw_kind)
    except ValueError:
        valid = ", ".join(k.value for k in OffsetStoreKind)
        raise ConfigurationError(
            f"Unknown offset_store.kind '{raw_kind}' (expected one of: {valid})"
        ) from None

    settings = _section(data, kind.value)
    if kind is OffsetStoreKind.CONSUL and not settings and legacy_consul:
        settings = legacy_consul

    return _STORE_CONFIG_TYPES[kind].from_dict(settings)


# =============================================================================
# TAILER
# =============================================================================


class SinkFailurePolicy(str, Enum):
    """What a tailer does when the sink rejects a batch.

    ADVANCE: log the failure and checkpoint anyway (the batch is lost for
        that sink, the stream keeps moving).
    RETRY: re-emit the same batch with backoff until it is accepted; the
        checkpoint waits, so a slow sink slows polling of its stream.
    """

    ADVANCE = "advance"
    RETRY = "retry"


@dataclass
class TailerSettings:
    """Polling behaviour shared by every tailer."""

    page_size: int = 100
    idle_delay_seconds: float = 5.0
    request_timeout_seconds: float = 30.0
    sink_failure_policy: SinkFailurePolicy = SinkFailurePolicy.ADVANCE
    retry: RetryConfig = field(default_factory=lambda: POLL_BACKOFF)
    rate_limit: RateLimiterConfig = field(
        default_factory=lambda: RateLimiterConfig(name="cloudwatch")
    )

    def __post_init__(self):
        self.page_size = int(self.page_size)
        self.idle_delay_seconds = float(self.idle_delay_seconds)
        self.request_timeout_seconds = float(self.request_timeout_seconds)

        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ConfigurationError(
                f"tailer.page_size must be between 1 and {MAX_PAGE_SIZE}, got {self.page_size}"
            )
        if self.idle_delay_seconds < 0:
            raise ConfigurationError("tailer.idle_delay_seconds must be >= 0")
        if self.request_timeout_seconds <= 0:
            raise ConfigurationError("tailer.request_timeout_seconds must be > 0")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TailerSettings":
        raw_policy = str(data.get("sink_failure_policy") or SinkFailurePolicy.ADVANCE.value)
        try:
            policy = SinkFailurePolicy(raw_policy.strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown tailer.sink_failure_policy '{raw_policy}' (expected advance or retry)"
            ) from None

        try:
            retry = RetryConfig.from_dict(
                _section(data, "retry"),
                max_attempts=POLL_BACKOFF.max_attempts,
                base_delay=POLL_BACKOFF.base_delay,
                max_delay=POLL_BACKOFF.max_delay,
                exponential_base=POLL_BACKOFF.exponential_base,
                jitter=POLL_BACKOFF.jitter,
            )
            rate_limit = RateLimiterConfig.from_dict(_section(data, "rate_limit"), name="cloudwatch")
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid tailer settings: {e}") from e

        return cls(
            page_size=data.get("page_size", 100),
            idle_delay_seconds=data.get("idle_delay_seconds", 5.0),
            request_timeout_seconds=data.get("request_timeout_seconds", 30.0),
            sink_failure_policy=policy,
            retry=retry,
            rate_limit=rate_limit,
        )


# =============================================================================
# DESTINATIONS
# =============================================================================


class DestinationType(str, Enum):
    STDOUT = "stdout"
    FILE = "file"
    KAFKA = "kafka"
    ELASTICSEARCH = "elasticsearch"


@dataclass
class StdoutDestination:
    type: ClassVar[DestinationType] = DestinationType.STDOUT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StdoutDestination":
        return cls()


@dataclass
class FileDestination:
    """JSON lines appended to file_path/file_name."""

    type: ClassVar[DestinationType] = DestinationType.FILE

    file_path: str = ""
    file_name: str = ""

    def __post_init__(self):
        if not self.file_path or not self.file_name:
            raise ConfigurationError("file destination requires file_path and file_name")

    @property
    def path(self) -> Path:
        return Path(self.file_path) / self.file_name

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileDestination":
        return cls(
            file_path=str(data.get("file_path") or ""),
            file_name=str(data.get("file_name") or ""),
        )


@dataclass
class KafkaDestination:
    type: ClassVar[DestinationType] = DestinationType.KAFKA

    bootstrap_servers: str = ""
    topic: str = ""
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = ""
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    acks: Union[int, str] = "all"
    compression_type: Optional[str] = None

    def __post_init__(self):
        if not self.bootstrap_servers or not self.topic:
            raise ConfigurationError("kafka destination requires bootstrap_servers and topic")
        if self.acks not in ("all", 0, 1, "0", "1"):
            raise ConfigurationError(f"kafka destination: acks must be 0, 1 or 'all', got {self.acks!r}")
        if self.acks in ("0", "1"):
            self.acks = int(self.acks)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KafkaDestination":
        return cls(
            bootstrap_servers=str(data.get("bootstrap_servers") or ""),
            topic=str(data.get("topic") or ""),
            security_protocol=str(data.get("security_protocol") or "PLAINTEXT"),
            sasl_mechanism=str(data.get("sasl_mechanism") or ""),
            sasl_plain_username=str(data.get("sasl_plain_username") or ""),
            sasl_plain_password=str(data.get("sasl_plain_password") or ""),
            acks=data.get("acks", "all"),
            compression_type=data.get("compression_type"),
        )


@dataclass
class ElasticsearchDestination:
    type: ClassVar[DestinationType] = DestinationType.ELASTICSEARCH

    url: str = ""
    index: str = ""
    username: str = ""
    password: str = ""
    api_key: str = ""
    timeout_seconds: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self):
        if not self.url or not self.index:
            raise ConfigurationError("elasticsearch destination requires url and index")
        self.url = self.url.rstrip("/")
        self.timeout_seconds = float(self.timeout_seconds)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ElasticsearchDestination":
        return cls(
            url=str(data.get("url") or ""),
            index=str(data.get("index") or ""),
            username=str(data.get("username") or ""),
            password=str(data.get("password") or ""),
            api_key=str(data.get("api_key") or ""),
            timeout_seconds=data.get("timeout_seconds", 30.0),
            verify_ssl=_as_bool(data.get("verify_ssl", True)),
        )


DestinationConfig = Union[
    StdoutDestination,
    FileDestination,
    KafkaDestination,
    ElasticsearchDestination,
]

_DESTINATION_TYPES = {
    DestinationType.STDOUT: StdoutDestination,
    DestinationType.FILE: FileDestination,
    DestinationType.KAFKA: KafkaDestination,
    DestinationType.ELASTICSEARCH: ElasticsearchDestination,
}


def parse_destination(data: Dict[str, Any], context: str = "destination") -> DestinationConfig:
    """Resolve a ``destination:`` mapping; a missing section means stdout."""
    raw_type = str(data.get("type") or DestinationType.STDOUT.value).strip().lower()
    try:
        dest_type = DestinationType(raw_type)
    except ValueError:
        valid = ", ".join(t.value for t in DestinationType)
        raise ConfigurationError(
            f"{context}: unknown destination type '{raw_type}' (expected one of: {valid})"
        ) from None
    return _DESTINATION_TYPES[dest_type].from_dict(data)


# =============================================================================
# SERVICES
# =============================================================================


@dataclass
class LogConfig:
    log_group_name: str
    log_stream_prefix: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogConfig":
        return cls(
            log_group_name=str(data.get("log_group_name") or ""),
            log_stream_prefix=str(data.get("log_stream_prefix") or ""),
        )


@dataclass
class ServiceConfig:
    """One logical service: log groups to tail, a checkpoint namespace and a destination."""

    name: str
    consul_kv_path: str
    log_configs: List[LogConfig] = field(default_factory=list)
    destination: DestinationConfig = field(default_factory=StdoutDestination)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceConfig":
        name = str(data.get("name") or "")
        raw_logs = data.get("log_configs") or []
        if not isinstance(raw_logs, list):
            raise ConfigurationError(f"service '{name}': log_configs must be a list")

        return cls(
            name=name,
            consul_kv_path=str(data.get("consul_kv_path") or "").strip().rstrip("/"),
            log_configs=[LogConfig.from_dict(item or {}) for item in raw_logs],
            destination=parse_destination(
                _section(data, "destination"), context=f"service '{name}'"
            ),
        )

    def validate(self) -> None:
        if not self.name:
            raise ConfigurationError("Every service needs a name")
        if not self.consul_kv_path:
            raise ConfigurationError(f"service '{self.name}': consul_kv_path is required")
        if not self.log_configs:
            raise ConfigurationError(f"service '{self.name}': at least one log_configs entry is required")
        for log_config in self.log_configs:
            if not log_config.log_group_name:
                raise ConfigurationError(f"service '{self.name}': log_group_name is required")


# =============================================================================
# APPLICATION
# =============================================================================


@dataclass
class AppConfig:
    """Complete tailer configuration."""

    aws: AWSConfig = field(default_factory=AWSConfig)
    offset_store: OffsetStoreConfig = field(default_factory=MemoryStoreConfig)
    fallback_duration_seconds: float = 3600.0
    tailer: TailerSettings = field(default_factory=TailerSettings)
    shutdown_grace_seconds: float = 10.0
    services: List[ServiceConfig] = field(default_factory=list)

    @property
    def fallback_duration(self) -> timedelta:
        return timedelta(seconds=self.fallback_duration_seconds)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        raw_services = data.get("services") or []
        if not isinstance(raw_services, list):
            raise ConfigurationError("'services' must be a list")

        legacy_consul = data.get("consul")
        if legacy_consul is not None and not isinstance(legacy_consul, dict):
            raise ConfigurationError("'consul' must be a mapping")

        try:
            fallback = float(data.get("fallback_duration_seconds", 3600))
            grace = float(data.get("shutdown_grace_seconds", 10))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid duration: {e}") from e

        return cls(
            aws=AWSConfig.from_dict(_section(data, "aws"), legacy=data),
            offset_store=parse_offset_store(_section(data, "offset_store"), legacy_consul),
            fallback_duration_seconds=fallback,
            tailer=TailerSettings.from_dict(_section(data, "tailer")),
            shutdown_grace_seconds=grace,
            services=[ServiceConfig.from_dict(item or {}) for item in raw_services],
        )

    def validate(self) -> None:
        """Cross-field checks. Raises ConfigurationError on the first problem found."""
        self.aws.validate()

        if self.fallback_duration_seconds < 0:
            raise ConfigurationError("fallback_duration_seconds must be >= 0")
        if self.shutdown_grace_seconds < 0:
            raise ConfigurationError("shutdown_grace_seconds must be >= 0")
        if not self.services:
            raise ConfigurationError("At least one service must be configured")

        names = set()
        for service in self.services:
            service.validate()
            if service.name in names:
                raise ConfigurationError(f"Duplicate service name '{service.name}'")
            names.add(service.name)

        self._validate_checkpoint_namespaces()

    def _validate_checkpoint_namespaces(self) -> None:
        """Reject configs where two entries would tail one stream under one key.

        Within a namespace and log group, two prefixes where one starts with
        the other select overlapping streams, so both tailers would write the
        same checkpoint key.
        """
        seen: Dict[tuple, List[tuple]] = {}
        groups_by_namespace: Dict[str, set] = {}

        for service in self.services:
            for log_config in service.log_configs:
                slot = (service.consul_kv_path, log_config.log_group_name)
                prefix = log_config.log_stream_prefix
                for other_service, other_prefix in seen.get(slot, []):
                    if prefix.startswith(other_prefix) or other_prefix.startswith(prefix):
                        raise ConfigurationError(
                            f"Checkpoint namespace '{service.consul_kv_path}' is used twice for "
                            f"log group '{log_config.log_group_name}' with overlapping stream "
                            f"prefixes ('{other_prefix}' in service '{other_service}', "
                            f"'{prefix}' in service '{service.name}')"
                        )
                seen.setdefault(slot, []).append((service.name, prefix))
                groups_by_namespace.setdefault(service.consul_kv_path, set()).add(
                    log_config.log_group_name
                )

        for namespace, groups in groups_by_namespace.items():
            if len(groups) > 1:
                logger.warning(
                    "Checkpoint namespace spans several log groups; a stream name found in "
                    "more than one of them is tailed only in the first and skipped in the others",
                    extra={"checkpoint_key": namespace, "log_group": ", ".join(sorted(groups))},
                )


def resolve_config_path(config_path: Optional[Path] = None) -> Path:
    """Pick the config file: explicit path, then $LOGTAIL_CONFIG, then ./config.yaml."""
    if config_path is not None:
        return Path(config_path)
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load, expand and validate the configuration document.

    Raises:
        ConfigurationError: File missing, unparsable, or invalid
    """
    path = resolve_config_path(config_path)

    if not path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {path}",
            context={"path": str(path)},
        )

    logger.info(f"Loading configuration from file: {path}", extra={"path": str(path)})
    try:
        yaml_data = load_yaml(path)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read configuration file {path}", cause=e) from e

    if not isinstance(yaml_data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping at the top level")

    yaml_data = _expand_env_vars(yaml_data)

    config = AppConfig.from_dict(yaml_data)
    config.validate()

    logger.debug(
        "Configuration loaded",
        extra={
            "backend": config.offset_store.kind.value,
            "tailer_count": sum(len(s.log_configs) for s in config.services),
        },
    )
    return config
