"""Observability helpers – trace ids, log setup and redaction."""

from zhort.obs.redaction import redact_headers, redact_mapping, redact_value
from zhort.obs.setup import configure_logging, init_observability

__all__ = [
    "configure_logging",
    "init_observability",
    "redact_headers",
    "redact_mapping",
    "redact_value",
]
