from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from .errors import TransientStoreError
from .logging import get_logger
from .model import OperatingMode, Resolved, TenantConfig
from .ports import SettingsStore

logger = get_logger(__name__)

V = TypeVar("V")

DEFAULT_TTL_S = 10 * 60.0


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[V]):
    value: V
    fetched_at: float


def _identity(value: Any) -> Any:
    return value


class ConfigCache(Generic[V]):
    """Time-boxed cache of one tenant setting in front of the settings store.

    Reads are hits while ``now - fetched_at < ttl_s``; expired entries are
    left in place and replaced on the next miss. Concurrent misses for the
    same tenant are not coalesced.
    """

    def __init__(
        self,
        *,
        key: str,
        store: SettingsStore,
        default: V,
        parse: Callable[[Any], V | None] = _identity,
        encode: Callable[[V], Any] = _identity,
        ttl_s: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.key = key
        self._store = store
        self._default = default
        self._parse = parse
        self._encode = encode
        self._ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}
        # bumped by set/invalidate so an in-flight miss cannot overwrite them
        self._generations: dict[str, int] = {}

    @property
    def default(self) -> V:
        return self._default

    def coerce(self, raw: Any) -> V | None:
        return self._parse(raw)

    def peek(self, tenant_id: str) -> CacheEntry[V] | None:
        return self._entries.get(tenant_id)

    def _fresh(self, entry: CacheEntry[V] | None) -> bool:
        return entry is not None and self._clock() - entry.fetched_at < self._ttl_s

    async def get(self, tenant_id: str) -> Resolved[V]:
        entry = self._entries.get(tenant_id)
        if entry is not None and self._fresh(entry):
            return Resolved(entry.value, "cache")

        generation = self._generations.get(tenant_id, 0)
        try:
            raw = await self._store.get_tenant_setting(tenant_id, self.key)
        except Exception as exc:
            if not isinstance(exc, TransientStoreError):
                exc = TransientStoreError("get_tenant_setting", str(exc))
            logger.warning(
                "cache.fetch.failed",
                key=self.key,
                tenant_id=tenant_id,
                error=str(exc),
                stale=entry is not None,
            )
            if entry is not None:
                resolved = Resolved(entry.value, "cache", exc)
            else:
                resolved = Resolved(self._default, "default", exc)
        else:
            value = self._parse(raw) if raw is not None else None
            if value is None:
                if raw is not None:
                    logger.warning(
                        "cache.value.invalid",
                        key=self.key,
                        tenant_id=tenant_id,
                        value=repr(raw),
                    )
                resolved = Resolved(self._default, "default")
            else:
                resolved = Resolved(value, "store")

        if self._generations.get(tenant_id, 0) != generation:
            current = self._entries.get(tenant_id)
            if current is not None:
                return Resolved(current.value, "cache")
            return resolved
        self._entries[tenant_id] = CacheEntry(resolved.value, self._clock())
        return resolved

    def _bump(self, tenant_id: str) -> None:
        self._generations[tenant_id] = self._generations.get(tenant_id, 0) + 1

    def invalidate(self, tenant_id: str) -> None:
        self._bump(tenant_id)
        self._entries.pop(tenant_id, None)

    async def set(self, tenant_id: str, value: V) -> None:
        """Persist ``value`` then refresh the entry so the next read sees it."""
        await self._store.upsert_tenant_setting(tenant_id, self.key, self._encode(value))
        self._bump(tenant_id)
        self._entries[tenant_id] = CacheEntry(value, self._clock())


def _parse_prefix(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _parse_flag(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "on", "yes"}:
            return True
        if lowered in {"0", "false", "off", "no"}:
            return False
    return None


def _parse_presence(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip().lower()
    return "" if value in {"", "off", "none"} else value


def _encode_mode(mode: OperatingMode) -> str:
    return mode.value


class TenantSettings:
    """One ConfigCache per tenant setting, all backed by the same store."""

    def __init__(
        self,
        store: SettingsStore,
        *,
        default_prefix: str = ".",
        ttl_s: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self.prefix: ConfigCache[str] = ConfigCache(
            key="prefix",
            store=store,
            default=default_prefix,
            parse=_parse_prefix,
            ttl_s=ttl_s,
            clock=clock,
        )
        self.mode: ConfigCache[OperatingMode] = ConfigCache(
            key="mode",
            store=store,
            default=OperatingMode.SELF_ONLY,
            parse=OperatingMode.parse,
            encode=_encode_mode,
            ttl_s=ttl_s,
            clock=clock,
        )
        self.status_seen: ConfigCache[bool] = ConfigCache(
            key="status_seen",
            store=store,
            default=False,
            parse=_parse_flag,
            ttl_s=ttl_s,
            clock=clock,
        )
        self.read_receipts: ConfigCache[bool] = ConfigCache(
            key="read_receipts",
            store=store,
            default=False,
            parse=_parse_flag,
            ttl_s=ttl_s,
            clock=clock,
        )
        self.presence: ConfigCache[str] = ConfigCache(
            key="presence",
            store=store,
            default="",
            parse=_parse_presence,
            ttl_s=ttl_s,
            clock=clock,
        )

    def caches(self) -> tuple[ConfigCache[Any], ...]:
        return (
            self.prefix,
            self.mode,
            self.status_seen,
            self.read_receipts,
            self.presence,
        )

    def cache_for(self, key: str) -> ConfigCache[Any] | None:
        for cache in self.caches():
            if cache.key == key:
                return cache
        return None

    async def config(self, tenant_id: str) -> TenantConfig:
        prefix = await self.prefix.get(tenant_id)
        mode = await self.mode.get(tenant_id)
        return TenantConfig(prefix=prefix.value, mode=mode.value)

    async def ensure_mode(self, tenant_id: str) -> OperatingMode:
        """Persist the default mode when the store has none for the tenant.

        Store failures are logged and the default is returned without seeding.
        """
        try:
            existing = await self._store.get_tenant_setting(tenant_id, self.mode.key)
            parsed = OperatingMode.parse(existing) if existing is not None else None
            if parsed is not None:
                return parsed
            await self.mode.set(tenant_id, self.mode.default)
        except Exception as exc:
            logger.warning("cache.mode.seed_failed", tenant_id=tenant_id, error=repr(exc))
        return self.mode.default

    def invalidate(self, tenant_id: str) -> None:
        for cache in self.caches():
            cache.invalidate(tenant_id)
