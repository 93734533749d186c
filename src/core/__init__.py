"""
Core library: infrastructure shared by the tailer.

Modules:
    errors      - Exception hierarchy and error classification
    logging     - Structured JSON/console logging with context variables
    resilience  - Backoff policy and token-bucket rate limiting
    utils       - JSON serialization helpers and worker IDs
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
