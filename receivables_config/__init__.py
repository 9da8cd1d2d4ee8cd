"""
receivables_config -- single public entrypoint for workflow configuration.

Responsibility:
    ``get_active_settings()`` is the only way services and scripts obtain
    configuration.  It loads the YAML configuration set, validates it and
    returns a frozen ``ReceivablesConfiguration``.

Architecture position:
    Configuration -- sits above receivables_kernel / receivables_engines and
    below receivables_services.  The kernel never imports from here.

Failure modes:
    - ``FileNotFoundError`` when the requested file does not exist.
    - ``ValueError`` on schema or range validation failures.
"""

from __future__ import annotations

from pathlib import Path

from receivables_config.loader import load_configuration
from receivables_config.schema import (
    PaymentValidationRules,
    ReceivablesConfiguration,
    TenantCalendars,
    WorkflowSettings,
)
from receivables_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "uae_default.yaml"


def get_active_settings(config_path: Path | str | None = None) -> ReceivablesConfiguration:
    """
    Load and validate the active configuration set.

    Args:
        config_path: Override path to a YAML configuration set.  Defaults to
            the packaged ``sets/uae_default.yaml``.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = load_configuration(path)

    _logger.info(
        "RECEIVABLES_CONFIG_TRACE",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "max_batch_size": config.settings.max_batch_size,
            "tenant_calendar_count": len(config.calendars.overrides),
        },
    )
    return config


__all__ = [
    "PaymentValidationRules",
    "ReceivablesConfiguration",
    "TenantCalendars",
    "WorkflowSettings",
    "get_active_settings",
]
