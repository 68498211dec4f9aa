"""
Environment Configuration Utility

Provides environment detection and mock payment policy enforcement.

ENVIRONMENT values:
- production: Mock payment confirmation refused; only gateway proof finalizes a purchase
- development: Mock confirmation available when ALLOW_MOCK_PAYMENTS=true
- test: Mock confirmation available when ALLOW_MOCK_PAYMENTS=true

An unset ENVIRONMENT is treated as production.
"""
import os
import logging

# Valid environment values
VALID_ENVIRONMENTS = {"production", "development", "test"}

TRUTHY = {"1", "true", "yes", "on"}


def current_environment() -> str:
    """Deployment environment, production when unset or unrecognized."""
    environment = os.environ.get("ENVIRONMENT", "production").strip().lower()
    if environment not in VALID_ENVIRONMENTS:
        logging.warning(f"Invalid ENVIRONMENT '{environment}', defaulting to 'production'")
        return "production"
    return environment


ENVIRONMENT = current_environment()


def allow_mock_data() -> bool:
    """
    Check if mock payment confirmation is allowed.

    Opt-in: requires ALLOW_MOCK_PAYMENTS=true AND a development or test
    environment. Production must never mark a purchase paid without gateway proof.
    """
    if os.environ.get("ALLOW_MOCK_PAYMENTS", "").strip().lower() not in TRUTHY:
        return False
    return current_environment() in {"development", "test"}


# Log environment on module load
logging.info(f"Environment: {ENVIRONMENT} | Mock confirmation allowed: {allow_mock_data()}")
