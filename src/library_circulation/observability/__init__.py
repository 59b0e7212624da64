"""
Observability for the library backend.

Spans and metrics go through Logfire. Nothing leaves the process unless a
Logfire token is configured; without one, spans are still created so local
OpenTelemetry tooling and tests can inspect them.
"""

import logging

import logfire

from ..config import LibraryConfig

logger = logging.getLogger(__name__)


def configure_observability(config: LibraryConfig) -> None:
    """Configure Logfire for this process."""
    logfire.configure(
        token=config.logfire_token,
        service_name=config.server_name,
        service_version=config.server_version,
        environment=config.environment,
        send_to_logfire="if-token-present",
        console=False,
    )

    if config.environment == "production":
        logfire.instrument_system_metrics()

    logger.debug(
        "Observability configured (export %s)", "enabled" if config.logfire_token else "disabled"
    )


__all__ = ["configure_observability", "logfire"]
