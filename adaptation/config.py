from __future__ import annotations

import os
from dataclasses import dataclass

from adaptation.resolution.fingerprint import DEFAULT_STRATEGY, STRATEGIES

DEFAULT_CACHE_CAPACITY = 1000
DEFAULT_CACHE_TTL_SEC = 300.0
DEFAULT_SUPERUSER_ROLES = frozenset({"super_admin"})


@dataclass(frozen=True)
class EngineSettings:
    cache_capacity: int = DEFAULT_CACHE_CAPACITY
    cache_ttl_sec: float = DEFAULT_CACHE_TTL_SEC
    fingerprint: str = DEFAULT_STRATEGY
    strict: bool = False
    superuser_roles: frozenset[str] = DEFAULT_SUPERUSER_ROLES
    manifest_path: str | None = None


def _normalize_capacity(v: str) -> int:
    try:
        n = int((v or "").strip())
    except ValueError:
        return DEFAULT_CACHE_CAPACITY
    return n if n >= 0 else DEFAULT_CACHE_CAPACITY


def _normalize_ttl(v: str) -> float:
    try:
        n = float((v or "").strip())
    except ValueError:
        return DEFAULT_CACHE_TTL_SEC
    return n if n >= 0 else DEFAULT_CACHE_TTL_SEC


def _normalize_fingerprint(v: str) -> str:
    vv = (v or DEFAULT_STRATEGY).strip().lower()
    return vv if vv in STRATEGIES else DEFAULT_STRATEGY


def _normalize_bool(v: str) -> bool:
    return str(v or "").strip().lower() in {"1", "true", "yes", "on"}


def _normalize_roles(v: str) -> frozenset[str]:
    roles = frozenset(r.strip() for r in (v or "").split(",") if r.strip())
    return roles or DEFAULT_SUPERUSER_ROLES


def get_engine_settings() -> EngineSettings:
    return EngineSettings(
        cache_capacity=_normalize_capacity(os.environ.get("RESOLVER_CACHE_CAPACITY", str(DEFAULT_CACHE_CAPACITY))),
        cache_ttl_sec=_normalize_ttl(os.environ.get("RESOLVER_CACHE_TTL_SEC", str(DEFAULT_CACHE_TTL_SEC))),
        fingerprint=_normalize_fingerprint(os.environ.get("RESOLVER_FINGERPRINT", DEFAULT_STRATEGY)),
        strict=_normalize_bool(os.environ.get("RESOLVER_STRICT", "false")),
        superuser_roles=_normalize_roles(os.environ.get("RESOLVER_SUPERUSER_ROLES", "super_admin")),
        manifest_path=os.environ.get("RESOLVER_MANIFEST", "").strip() or None,
    )
