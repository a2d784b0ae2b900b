import logging
import os
import sys
from pathlib import Path

from src.rules.models import Rules

logger = logging.getLogger(__name__)

# Set to 1 on a developer machine to let the stub verifier stand in for the API key
DEV_MODE_ENV = "PAYWALL_DEV_MODE"


def stub_verifier_allowed(rules: Rules) -> bool:
    """Whether a missing payment API key may be replaced by the stub verifier."""
    return rules.payments.use_stub_verifier_without_key or os.environ.get(DEV_MODE_ENV) == "1"


def missing_env(rules: Rules) -> list[str]:
    """Required environment variables that are not set."""
    required = list(rules.ops.required_env)
    if not stub_verifier_allowed(rules):
        required.append(rules.payments.api_key_env)
    return [name for name in required if not os.environ.get(name)]


def validate_ops_rules(rules: Rules, data_dir: Path) -> None:
    """
    Validate operational requirements before startup.

    Exits the process when the environment cannot run the service.
    """
    ops = rules.ops

    if ops.data_dir_required:
        data_dir.mkdir(parents=True, exist_ok=True)
        if not os.access(data_dir, os.W_OK):
            logger.critical("Data directory is not writable: %s", data_dir)
            sys.exit(1)

    missing = missing_env(rules)
    if missing:
        logger.critical("Missing required environment variables: %s", ", ".join(missing))
        sys.exit(1)

    if not os.environ.get(rules.payments.api_key_env):
        logger.warning(
            "%s not set: payments are verified by the stub verifier",
            rules.payments.api_key_env,
        )

    logger.info("Configuration validated.")
