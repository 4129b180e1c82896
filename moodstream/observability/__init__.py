# noqa: D104 - package initialization
from .logging import configure_structured_logging  # noqa: F401
from .metrics import (  # noqa: F401
    metrics_blueprint,
    record_cleanup,
    record_integrity_issues,
    record_remote_fallback,
    record_stream_failure,
    record_stream_response,
    update_index_gauges,
)
from .tracing import init_tracing  # noqa: F401
