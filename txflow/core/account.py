import asyncio
from typing import Optional

from txflow.settings import settings
from txflow.store.redis_conn import get_redis
from txflow.observability.logging import log

ACCOUNT_TYPES = ("USER", "STORE")


class AccountContext:
    """
    Which account (personal USER or merchant STORE) remote calls act on.
    Loaded once from Redis, then memoized for the lifetime of the context.
    Passed explicitly into workflows; there is no process-wide instance.
    """

    def __init__(self, account_type: Optional[str] = None, *, persist: Optional[bool] = None):
        self._account_type = account_type.upper() if account_type else None
        self._persist = settings.SESSION_STORE_ENABLED if persist is None else persist
        self._lock = asyncio.Lock()

    async def _load(self) -> str:
        if not self._persist:
            return settings.DEFAULT_ACCOUNT_TYPE
        try:
            r = get_redis()
            raw = await r.get(settings.ACCOUNT_TYPE_KEY)
        except Exception as e:
            log(event="account_type_load_failed", errorType=type(e).__name__, error=str(e)[:200])
            return settings.DEFAULT_ACCOUNT_TYPE
        value = (raw or "").strip().upper()
        return value if value in ACCOUNT_TYPES else settings.DEFAULT_ACCOUNT_TYPE

    async def get_account_type(self) -> str:
        if self._account_type is not None:
            return self._account_type
        async with self._lock:
            if self._account_type is None:
                self._account_type = await self._load()
                log(event="account_type_loaded", accountType=self._account_type)
        return self._account_type

    async def set_account_type(self, value: str) -> None:
        value = (value or "").strip().upper()
        if value not in ACCOUNT_TYPES:
            raise ValueError(f"Unknown account type: {value!r}")
        self._account_type = value
        if self._persist:
            r = get_redis()
            await r.set(settings.ACCOUNT_TYPE_KEY, value)
