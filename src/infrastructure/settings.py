from __future__ import annotations

import os
from dataclasses import dataclass
from zoneinfo import ZoneInfo

VARIANTS = ("ledger", "budget", "both")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    app_id: str = "default-app-id"
    variant: str = "ledger"
    timezone: str = "UTC"
    initial_auth_token: str | None = None
    identity_backend: str = "memory"
    store_backend: str = "memory"
    store_path: str = ".data/store.json"
    atomic_summary: bool = True
    forecast_months: int = 3

    @classmethod
    def from_env(cls) -> "Settings":
        variant = os.getenv("APP_VARIANT", "ledger").strip().lower()
        if variant not in VARIANTS:
            raise ValueError(f"APP_VARIANT must be one of {', '.join(VARIANTS)}; got {variant!r}")
        return cls(
            app_id=os.getenv("APP_ID", "default-app-id"),
            variant=variant,
            timezone=os.getenv("APP_TIMEZONE", "UTC"),
            initial_auth_token=os.getenv("INITIAL_AUTH_TOKEN") or None,
            identity_backend=os.getenv("IDENTITY_BACKEND", "memory").strip().lower(),
            store_backend=os.getenv("STORE_BACKEND", "memory").strip().lower(),
            store_path=os.getenv("STORE_PATH", ".data/store.json"),
            atomic_summary=_env_bool("ATOMIC_SUMMARY", True),
            forecast_months=int(os.getenv("FORECAST_MONTHS", "3")),
        )

    @property
    def namespace(self) -> str:
        return f"artifacts/{self.app_id}"

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)
