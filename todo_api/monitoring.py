"""Prometheus metrics instrumentation for application monitoring."""

from fastapi import FastAPI
from prometheus_client import CollectorRegistry
from prometheus_fastapi_instrumentator import Instrumentator


def setup_monitoring(app: FastAPI) -> Instrumentator:
    """Configure and expose Prometheus metrics endpoint.

    Each application gets its own registry so several apps can live in one
    process (tests build one per case). The in-progress gauge is left off:
    the instrumentator always registers it globally.
    """
    instrumentator = Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=True,
        excluded_handlers=["/metrics", "/health"],
        registry=CollectorRegistry(),
    )

    # Instrument the app and expose /metrics endpoint
    instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)
    app.state.instrumentator = instrumentator
    return instrumentator
