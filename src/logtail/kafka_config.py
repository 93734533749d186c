"""Shared Kafka security configuration builder."""

import ssl
from typing import Any, Protocol

from core.errors.exceptions import ConfigurationError

SASL_MECHANISMS = ("PLAIN", "SCRAM-SHA-256", "SCRAM-SHA-512")


class KafkaConnectionSettings(Protocol):
    bootstrap_servers: str
    security_protocol: str
    sasl_mechanism: str
    sasl_plain_username: str
    sasl_plain_password: str


def build_kafka_security_config(settings: KafkaConnectionSettings) -> dict[str, Any]:
    """Build aiokafka security kwargs for a producer or consumer.

    Handles PLAIN and SCRAM SASL mechanisms and SSL context creation.
    Returns an empty dict for PLAINTEXT connections.
    """
    protocol = (settings.security_protocol or "PLAINTEXT").upper()
    if protocol == "PLAINTEXT":
        return {}

    security_config: dict[str, Any] = {"security_protocol": protocol}

    if "SSL" in protocol:
        security_config["ssl_context"] = ssl.create_default_context()

    if protocol.startswith("SASL"):
        mechanism = (settings.sasl_mechanism or "PLAIN").upper()
        if mechanism not in SASL_MECHANISMS:
            raise ConfigurationError(
                f"Unsupported sasl_mechanism '{mechanism}' (expected one of: {', '.join(SASL_MECHANISMS)})"
            )
        security_config["sasl_mechanism"] = mechanism
        security_config["sasl_plain_username"] = settings.sasl_plain_username
        security_config["sasl_plain_password"] = settings.sasl_plain_password

    return security_config
