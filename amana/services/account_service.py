"""Lookup of the business account that owns a WhatsApp number."""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from amana.logging_config import get_logger
from amana.models import WhatsAppUser
from amana.services.result import Result

logger = get_logger("account_service")

NOT_REGISTERED = "not_registered"
STORE_UNAVAILABLE = "store_unavailable"


@dataclass
class Account:
    identity: str
    tenant_id: str
    user_id: str
    display_name: Optional[str] = None
    language: str = "en"


class AccountService(ABC):
    @abstractmethod
    def lookup(self, identity: str) -> Result[Account]:
        pass


class SqlAccountService(AccountService):
    """Verified whatsapp_users rows, cached in-process for ttl_seconds."""

    def __init__(self, session_factory: Callable[[], Session], ttl_seconds: int = 600):
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        self._cache: dict[str, tuple[float, Account]] = {}
        self._lock = threading.Lock()

    def _cached(self, identity: str, now_ts: float) -> Optional[Account]:
        with self._lock:
            item = self._cache.get(identity)
            if item is None:
                return None
            expires_at, account = item
            if expires_at <= now_ts:
                del self._cache[identity]
                return None
            return account

    def lookup(self, identity: str) -> Result[Account]:
        now_ts = time.monotonic()
        account = self._cached(identity, now_ts)
        if account:
            return Result.success(account)

        db = self.session_factory()
        try:
            user = (
                db.query(WhatsAppUser)
                .filter(WhatsAppUser.identity == identity, WhatsAppUser.verified.is_(True))
                .first()
            )
            if user is None:
                return Result.failure("WhatsApp number not linked to an account", NOT_REGISTERED)
            user.last_active_at = datetime.now(timezone.utc)
            db.commit()
            account = Account(
                identity=user.identity,
                tenant_id=user.tenant_id,
                user_id=user.user_id,
                display_name=user.display_name,
                language=user.language or "en",
            )
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Account lookup failed", extra={"context": {"identity": identity, "error": str(exc)}})
            return Result.failure(str(exc), STORE_UNAVAILABLE, retryable=True)
        finally:
            db.close()

        with self._lock:
            self._cache[identity] = (now_ts + self.ttl_seconds, account)
        return Result.success(account)


class StaticAccountService(AccountService):
    """Fixed accounts for local runs; optionally accepts every number under one tenant."""

    def __init__(self, accounts: Optional[dict[str, Account]] = None, default_tenant_id: Optional[str] = None):
        self.accounts = dict(accounts or {})
        self.default_tenant_id = default_tenant_id

    def lookup(self, identity: str) -> Result[Account]:
        account = self.accounts.get(identity)
        if account is None and self.default_tenant_id:
            account = Account(identity=identity, tenant_id=self.default_tenant_id, user_id=identity)
        if account is None:
            return Result.failure("WhatsApp number not linked to an account", NOT_REGISTERED)
        return Result.success(account)
