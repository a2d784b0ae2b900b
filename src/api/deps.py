import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from src.adapters.clock import SystemClock
from src.adapters.payment_stub import StubVerificationAdapter
from src.adapters.pi_platform import PiPlatformAdapter
from src.adapters.sqlite_db import (
    SQLiteEntitlementRepo,
    SQLitePaymentRecordRepo,
    SQLitePostRepo,
)
from src.api.auth_utils import decode_access_token
from src.app_shell.config import stub_verifier_allowed
from src.components.reconciliation import ReconciliationConfig, ReconciliationCoordinator
from src.core.ports.payment import PaymentVerificationPort
from src.rules.loader import load_rules
from src.rules.models import Rules

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = PROJECT_ROOT
        self.data_dir = Path(os.environ.get("PAYWALL_DATA_DIR", "./data"))
        self.rules_path = Path(os.environ.get("PAYWALL_RULES_PATH", PROJECT_ROOT / "rules.yaml"))
        self.migrations_dir = PROJECT_ROOT / "migrations"

    def db_path(self, rules: Rules) -> str:
        return str(self.data_dir / rules.ops.db_filename)


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
@lru_cache
def get_rules() -> Rules:
    return load_rules(get_settings().rules_path)


def get_db_path(
    settings: Settings = Depends(get_settings), rules: Rules = Depends(get_rules)
) -> str:
    return settings.db_path(rules)


# --- Repos ---
def get_payment_repo(db_path: str = Depends(get_db_path)) -> SQLitePaymentRecordRepo:
    return SQLitePaymentRecordRepo(db_path)


def get_entitlement_repo(db_path: str = Depends(get_db_path)) -> SQLiteEntitlementRepo:
    return SQLiteEntitlementRepo(db_path)


def get_post_repo(db_path: str = Depends(get_db_path)) -> SQLitePostRepo:
    return SQLitePostRepo(db_path)


# --- Adapters ---
def build_verifier(rules: Rules) -> PaymentVerificationPort:
    """Platform adapter when an API key is configured, else the stub in dev mode."""
    payments = rules.payments
    api_key = os.environ.get(payments.api_key_env)
    if api_key:
        return PiPlatformAdapter(
            api_key=api_key,
            base_url=payments.network_base_url,
            timeout=payments.verification_timeout_seconds,
        )
    if stub_verifier_allowed(rules):
        logger.warning("No %s set, using stub payment verifier", payments.api_key_env)
        return StubVerificationAdapter()
    raise RuntimeError(f"{payments.api_key_env} is not set")


# Verifier and coordinator are process singletons: the coordinator owns the
# per-payment lock table, so every request must share one instance.
_verifier_instance: PaymentVerificationPort | None = None
_coordinator_instance: ReconciliationCoordinator | None = None


def get_verifier(rules: Rules = Depends(get_rules)) -> PaymentVerificationPort:
    """Get payment verifier singleton."""
    global _verifier_instance
    if _verifier_instance is None:
        _verifier_instance = build_verifier(rules)
    return _verifier_instance


def get_coordinator(
    db_path: str = Depends(get_db_path),
    rules: Rules = Depends(get_rules),
    verifier: PaymentVerificationPort = Depends(get_verifier),
) -> ReconciliationCoordinator:
    """Get reconciliation coordinator singleton."""
    global _coordinator_instance
    if _coordinator_instance is None:
        _coordinator_instance = ReconciliationCoordinator(
            payments=SQLitePaymentRecordRepo(db_path),
            entitlements=SQLiteEntitlementRepo(db_path),
            verifier=verifier,
            clock=SystemClock(),
            config=ReconciliationConfig(
                user_cancel_reasons=tuple(rules.payments.user_cancel_reasons),
                lock_timeout_seconds=rules.payments.lock_timeout_seconds,
            ),
        )
    return _coordinator_instance


# --- Auth ---
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def _resolve_token(request: Request, token: str | None) -> str | None:
    # Cookie first (HttpOnly), then the Authorization header
    cookie_token = request.cookies.get("access_token")
    if cookie_token and cookie_token.startswith("Bearer "):
        return cookie_token.split(" ", 1)[1]
    return token


def get_optional_user_id(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
) -> str | None:
    """Authenticated user id, or None for anonymous visitors."""
    token = _resolve_token(request, token)
    if not token:
        return None

    payload = decode_access_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    if not user_id or not isinstance(user_id, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    return user_id


def get_current_user_id(
    user_id: str | None = Depends(get_optional_user_id),
) -> str:
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
