import logging
from pathlib import Path

import pytest
import yaml

from config.config import (
    AppConfig,
    AWSConfig,
    BlobStoreConfig,
    ConsulStoreConfig,
    ElasticsearchDestination,
    FileDestination,
    FileStoreConfig,
    KafkaDestination,
    KafkaStoreConfig,
    MemoryStoreConfig,
    OffsetStoreKind,
    ServiceConfig,
    SinkFailurePolicy,
    StdoutDestination,
    TailerSettings,
    _expand_env_vars,
    load_config,
    load_yaml,
    parse_destination,
    parse_offset_store,
    resolve_config_path,
)
from core.errors.exceptions import ConfigurationError


def _service(name="billing", kv="logtail/billing", group="/ecs/billing", prefix="", **extra):
    data = {
        "name": name,
        "consul_kv_path": kv,
        "log_configs": [{"log_group_name": group, "log_stream_prefix": prefix}],
    }
    data.update(extra)
    return data


def _document(**overrides):
    data = {
        "aws": {"region": "us-east-1", "profile": "default"},
        "offset_store": {"kind": "memory"},
        "services": [_service()],
    }
    data.update(overrides)
    return data


# =========================================================================
# load_yaml / env expansion
# =========================================================================


class TestLoadYaml:
    def test_returns_empty_dict_for_nonexistent_file(self):
        assert load_yaml(Path("/nonexistent/path/config.yaml")) == {}

    def test_loads_yaml_file(self, tmp_path):
        config_file = tmp_path / "test.yaml"
        config_file.write_text("key: value\nnested:\n  a: 1\n")
        assert load_yaml(config_file) == {"key": "value", "nested": {"a": 1}}

    def test_empty_file_returns_empty_dict(self, tmp_path):
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        assert load_yaml(config_file) == {}


class TestExpandEnvVars:
    def test_expands_variable(self, monkeypatch):
        monkeypatch.setenv("CONSUL_HTTP_TOKEN", "secret")
        assert _expand_env_vars({"token": "${CONSUL_HTTP_TOKEN}"}) == {"token": "secret"}

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("CONSUL_HTTP_ADDR", raising=False)
        assert _expand_env_vars("${CONSUL_HTTP_ADDR:-127.0.0.1:8500}") == "127.0.0.1:8500"

    def test_empty_default(self, monkeypatch):
        monkeypatch.delenv("AWS_PROFILE", raising=False)
        assert _expand_env_vars("${AWS_PROFILE:-}") == ""

    def test_unset_without_default_left_as_is(self, monkeypatch):
        monkeypatch.delenv("NOPE_NOT_SET", raising=False)
        assert _expand_env_vars("${NOPE_NOT_SET}") == "${NOPE_NOT_SET}"

    def test_recurses_into_lists_and_keeps_other_types(self, monkeypatch):
        monkeypatch.setenv("GROUP", "/ecs/api")
        result = _expand_env_vars({"groups": ["${GROUP}", 5, None]})
        assert result == {"groups": ["/ecs/api", 5, None]}


# =========================================================================
# AWS
# =========================================================================


class TestAWSConfig:
    def test_from_section(self):
        aws = AWSConfig.from_dict({"region": "eu-west-1", "role_arn": "arn:aws:iam::1:role/r"})
        assert aws.region == "eu-west-1"
        assert aws.credential_source == "role"

    def test_legacy_top_level_keys(self):
        aws = AWSConfig.from_dict(
            {},
            legacy={"aws_region": "us-west-2", "aws_access_key": "AKIA", "aws_secret_key": "s"},
        )
        assert aws.region == "us-west-2"
        assert aws.credential_source == "static"

    def test_section_wins_over_legacy(self):
        aws = AWSConfig.from_dict({"region": "eu-west-1"}, legacy={"aws_region": "us-west-2"})
        assert aws.region == "eu-west-1"

    def test_profile_takes_precedence(self):
        aws = AWSConfig(region="r", profile="p", role_arn="arn", access_key="a", secret_key="s")
        assert aws.credential_source == "profile"

    def test_access_key_without_secret_is_not_a_source(self):
        assert AWSConfig(region="r", access_key="a").credential_source == ""

    def test_validate_requires_region(self):
        with pytest.raises(ConfigurationError, match="region"):
            AWSConfig(profile="p").validate()

    def test_validate_requires_credentials(self):
        with pytest.raises(ConfigurationError, match="credentials"):
            AWSConfig(region="us-east-1").validate()


# =========================================================================
# Offset store
# =========================================================================


class TestParseOffsetStore:
    def test_consul(self):
        store = parse_offset_store(
            {"kind": "consul", "consul": {"address": "consul:8500", "token": "t", "dc": "dc1"}}
        )
        assert isinstance(store, ConsulStoreConfig)
        assert store.kind is OffsetStoreKind.CONSUL
        assert store.address == "http://consul:8500"
        assert store.token == "t"
        assert store.datacenter == "dc1"

    def test_consul_defaults(self):
        store = parse_offset_store({"kind": "consul"})
        assert store.address == "http://127.0.0.1:8500"

    def test_legacy_consul_section(self):
        store = parse_offset_store({}, legacy_consul={"address": "https://consul.example:8501/"})
        assert isinstance(store, ConsulStoreConfig)
        assert store.address == "https://consul.example:8501"

    def test_legacy_consul_used_for_kind_consul_without_settings(self):
        store = parse_offset_store({"kind": "consul"}, legacy_consul={"token": "abc"})
        assert store.token == "abc"

    def test_file(self):
        store = parse_offset_store({"kind": "FILE", "file": {"base_dir": "/var/lib/logtail"}})
        assert isinstance(store, FileStoreConfig)
        assert store.base_dir == "/var/lib/logtail"

    def test_blob(self):
        store = parse_offset_store(
            {"kind": "blob", "blob": {"container": "offsets", "connection_string": "cs", "prefix": "/p/"}}
        )
        assert isinstance(store, BlobStoreConfig)
        assert store.prefix == "p"

    def test_blob_requires_connection(self):
        with pytest.raises(ConfigurationError, match="connection_string or account_url"):
            parse_offset_store({"kind": "blob", "blob": {"container": "offsets"}})

    def test_kafka(self):
        store = parse_offset_store({"kind": "kafka", "kafka": {"bootstrap_servers": "k:9092"}})
        assert isinstance(store, KafkaStoreConfig)
        assert store.topic == "logtail-offsets"

    def test_kafka_requires_servers(self):
        with pytest.raises(ConfigurationError, match="bootstrap_servers"):
            parse_offset_store({"kind": "kafka"})

    def test_memory(self):
        assert isinstance(parse_offset_store({"kind": "memory"}), MemoryStoreConfig)

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError, match="Unknown offset_store.kind 'redis'"):
            parse_offset_store({"kind": "redis"})

    def test_missing_section(self):
        with pytest.raises(ConfigurationError, match="No offset store configured"):
            parse_offset_store({})

    def test_backend_settings_must_be_mapping(self):
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            parse_offset_store({"kind": "file", "file": "checkpoints"})


# =========================================================================
# Tailer settings
# =========================================================================


class TestTailerSettings:
    def test_defaults(self):
        settings = TailerSettings.from_dict({})
        assert settings.page_size == 100
        assert settings.idle_delay_seconds == 5.0
        assert settings.request_timeout_seconds == 30.0
        assert settings.sink_failure_policy is SinkFailurePolicy.ADVANCE
        assert settings.retry.get_delay(0) == 15.0
        assert settings.retry.get_delay(4) == 15.0
        assert settings.rate_limit.enabled is False
        assert settings.rate_limit.name == "cloudwatch"

    def test_custom_values(self):
        settings = TailerSettings.from_dict(
            {
                "page_size": "500",
                "idle_delay_seconds": 1,
                "sink_failure_policy": "RETRY",
                "retry": {"base_delay": 1, "multiplier": 2, "max_delay": 8},
                "rate_limit": {"enabled": "true", "calls_per_second": 5},
            }
        )
        assert settings.page_size == 500
        assert settings.idle_delay_seconds == 1.0
        assert settings.sink_failure_policy is SinkFailurePolicy.RETRY
        assert [settings.retry.get_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 8.0]
        assert settings.rate_limit.enabled is True
        assert settings.rate_limit.calls_per_second == 5.0

    @pytest.mark.parametrize("page_size", [0, 10001])
    def test_page_size_bounds(self, page_size):
        with pytest.raises(ConfigurationError, match="page_size"):
            TailerSettings.from_dict({"page_size": page_size})

    def test_unknown_policy(self):
        with pytest.raises(ConfigurationError, match="sink_failure_policy"):
            TailerSettings.from_dict({"sink_failure_policy": "drop"})

    def test_unknown_retry_key(self):
        with pytest.raises(ConfigurationError, match="Invalid tailer settings"):
            TailerSettings.from_dict({"retry": {"factor": 2}})

    def test_negative_idle_delay(self):
        with pytest.raises(ConfigurationError):
            TailerSettings(idle_delay_seconds=-1)


# =========================================================================
# Destinations
# =========================================================================


class TestParseDestination:
    def test_missing_type_means_stdout(self):
        assert isinstance(parse_destination({}), StdoutDestination)

    def test_file(self):
        dest = parse_destination({"type": "file", "file_path": "/var/log/out", "file_name": "events.jsonl"})
        assert isinstance(dest, FileDestination)
        assert dest.path == Path("/var/log/out/events.jsonl")

    def test_file_requires_path_and_name(self):
        with pytest.raises(ConfigurationError):
            parse_destination({"type": "file", "file_path": "/tmp"})

    def test_kafka(self):
        dest = parse_destination({"type": "kafka", "bootstrap_servers": "k:9092", "topic": "logs", "acks": "1"})
        assert isinstance(dest, KafkaDestination)
        assert dest.acks == 1

    def test_kafka_invalid_acks(self):
        with pytest.raises(ConfigurationError, match="acks"):
            parse_destination({"type": "kafka", "bootstrap_servers": "k", "topic": "t", "acks": 2})

    def test_elasticsearch(self):
        dest = parse_destination(
            {"type": "elasticsearch", "url": "https://es:9200/", "index": "logs", "verify_ssl": "false"}
        )
        assert isinstance(dest, ElasticsearchDestination)
        assert dest.url == "https://es:9200"
        assert dest.verify_ssl is False

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError, match="unknown destination type 'syslog'"):
            parse_destination({"type": "syslog"}, context="service 'billing'")


# =========================================================================
# Services / AppConfig
# =========================================================================


class TestServiceConfig:
    def test_from_dict(self):
        service = ServiceConfig.from_dict(_service(kv="logtail/billing/", prefix="api/"))
        assert service.consul_kv_path == "logtail/billing"
        assert service.log_configs[0].log_stream_prefix == "api/"
        assert isinstance(service.destination, StdoutDestination)

    def test_requires_kv_path(self):
        with pytest.raises(ConfigurationError, match="consul_kv_path"):
            ServiceConfig.from_dict(_service(kv="")).validate()

    def test_requires_log_configs(self):
        with pytest.raises(ConfigurationError, match="log_configs"):
            ServiceConfig.from_dict({"name": "x", "consul_kv_path": "a"}).validate()

    def test_requires_group_name(self):
        with pytest.raises(ConfigurationError, match="log_group_name"):
            ServiceConfig.from_dict(_service(group="")).validate()


class TestAppConfig:
    def test_from_dict(self):
        config = AppConfig.from_dict(_document(fallback_duration_seconds=600))
        config.validate()
        assert config.fallback_duration.total_seconds() == 600
        assert config.shutdown_grace_seconds == 10.0
        assert config.services[0].name == "billing"

    def test_legacy_document(self):
        config = AppConfig.from_dict(
            {
                "aws_region": "us-east-1",
                "aws_profile": "prod",
                "consul": {"address": "consul:8500"},
                "services": [_service()],
            }
        )
        config.validate()
        assert config.aws.profile == "prod"
        assert config.offset_store.kind is OffsetStoreKind.CONSUL

    def test_requires_services(self):
        with pytest.raises(ConfigurationError, match="At least one service"):
            AppConfig.from_dict(_document(services=[])).validate()

    def test_services_must_be_list(self):
        with pytest.raises(ConfigurationError, match="'services' must be a list"):
            AppConfig.from_dict(_document(services={"name": "x"}))

    def test_duplicate_service_names(self):
        doc = _document(services=[_service(), _service(kv="other")])
        with pytest.raises(ConfigurationError, match="Duplicate service name"):
            AppConfig.from_dict(doc).validate()

    def test_negative_durations_rejected(self):
        with pytest.raises(ConfigurationError, match="fallback_duration_seconds"):
            AppConfig.from_dict(_document(fallback_duration_seconds=-1)).validate()
        with pytest.raises(ConfigurationError, match="shutdown_grace_seconds"):
            AppConfig.from_dict(_document(shutdown_grace_seconds=-1)).validate()

    def test_invalid_duration(self):
        with pytest.raises(ConfigurationError, match="Invalid duration"):
            AppConfig.from_dict(_document(fallback_duration_seconds="an hour"))

    def test_overlapping_prefixes_in_one_namespace_rejected(self):
        doc = _document(
            services=[
                _service(name="a", kv="shared", prefix="api/"),
                _service(name="b", kv="shared", prefix="api/v2"),
            ]
        )
        with pytest.raises(ConfigurationError, match="overlapping stream prefixes"):
            AppConfig.from_dict(doc).validate()

    def test_disjoint_prefixes_in_one_namespace_allowed(self):
        doc = _document(
            services=[
                _service(name="a", kv="shared", prefix="api/"),
                _service(name="b", kv="shared", prefix="worker/"),
            ]
        )
        AppConfig.from_dict(doc).validate()

    def test_namespace_spanning_log_groups_warns(self, caplog):
        doc = _document(
            services=[
                _service(name="a", kv="shared", group="/ecs/a"),
                _service(name="b", kv="shared", group="/ecs/b"),
            ]
        )
        with caplog.at_level(logging.WARNING, logger="config.config"):
            AppConfig.from_dict(doc).validate()

        messages = [r.getMessage() for r in caplog.records]
        assert any("spans several log groups" in m and "skipped" in m for m in messages)


class TestLoadConfig:
    def test_resolve_explicit_path(self, monkeypatch):
        monkeypatch.setenv("LOGTAIL_CONFIG", "/etc/env.yaml")
        assert resolve_config_path(Path("/etc/cli.yaml")) == Path("/etc/cli.yaml")

    def test_resolve_env_var(self, monkeypatch):
        monkeypatch.setenv("LOGTAIL_CONFIG", "/etc/env.yaml")
        assert resolve_config_path() == Path("/etc/env.yaml")

    def test_resolve_default(self, monkeypatch):
        monkeypatch.delenv("LOGTAIL_CONFIG", raising=False)
        assert resolve_config_path() == Path("config.yaml")

    def test_load_with_env_expansion(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LOGTAIL_REGION", "ap-southeast-2")
        monkeypatch.delenv("AWS_PROFILE", raising=False)
        doc = _document(aws={"region": "${LOGTAIL_REGION}", "profile": "${AWS_PROFILE:-default}"})
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(doc))

        config = load_config(path)

        assert config.aws.region == "ap-southeast-2"
        assert config.aws.profile == "default"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("services: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Failed to read"):
            load_config(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="mapping at the top level"):
            load_config(path)

    def test_invalid_document_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(_document(aws={"region": "us-east-1"})))
        with pytest.raises(ConfigurationError, match="credentials"):
            load_config(path)
