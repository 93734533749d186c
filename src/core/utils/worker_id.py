"""Readable instance IDs from coolname."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "", words: int = 3) -> str:
    """
    ``logtail-brave-golden-tiger`` style ID.

    Stamped on every log record and used in the log file name, so two
    replicas tailing the same log groups stay distinguishable.
    """
    slug = generate_slug(words)
    return f"{prefix}-{slug}" if prefix else slug
