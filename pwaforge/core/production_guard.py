"""Startup guard — hard constraints when running with environment=production.

Runs once before any job or server starts and raises
``ProductionConfigError`` listing every violated constraint.  Other code
does not check ``is_production`` itself.
"""

from __future__ import annotations

import ipaddress
import logging

from pwaforge.config import AppConfig

logger = logging.getLogger(__name__)

# AppConfig fields that must be non-empty in production.
PRODUCTION_REQUIRED_SECRETS: list[str] = [
    "demo_psk",
    "demo_app_secret",
]


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated.

    The process should exit rather than continue with this configuration.
    """


def is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def enforce_production_constraints(config: AppConfig) -> None:
    """Validate production-critical configuration.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. The demo PSK and app secret must be configured.
    3. Bundle servers must bind a loopback address.
    4. The demo service must be reached over HTTPS.

    Parameters
    ----------
    config:
        The active ``AppConfig`` instance.

    Raises
    ------
    ProductionConfigError
        If any production constraint is violated.
    """
    if not config.is_production:
        return

    violations: list[str] = []

    if config.debug:
        violations.append("debug=True is not allowed in production. Set PWAFORGE_DEBUG=false.")

    for field_name in PRODUCTION_REQUIRED_SECRETS:
        if not getattr(config, field_name, ""):
            violations.append(
                f"'{field_name}' is required in production but not configured. "
                f"Set PWAFORGE_{field_name.upper()}."
            )

    if not is_loopback_host(config.server_host):
        violations.append(
            f"server_host={config.server_host!r} is not a loopback address. "
            "Bundle servers must only listen on 127.0.0.1, ::1 or localhost."
        )

    if not config.demo_api_url.lower().startswith("https://"):
        violations.append("demo_api_url must use https:// in production.")

    if violations:
        msg = "Production configuration guard failed.\n" + "\n".join(f"  - {v}" for v in violations)
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")
