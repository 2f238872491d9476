"""
Configuration — explicit, immutable settings objects.

Every tunable has a documented default and a validated range. Build them
directly in code/tests, or read the whole tree from the environment:

    settings = Settings.from_env(os.environ)

Invalid values raise ConfigError at construction; nothing is validated lazily.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from urllib.parse import urlencode

from jobledger.errors import ConfigError


# ═══════════════════════════════════════════════════════════════════════════════
# Pricing
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PricingPolicy:
    """
    Money rules for payment stages and membership points.

    deposit_percent: share of the session amount charged as deposit (0, 100].
    deposit_round_step: deposit is rounded UP to a multiple of this (> 0).
    points_rate: currency units per loyalty point (> 0).
    """

    deposit_percent: Decimal = Decimal(30)
    deposit_round_step: Decimal = Decimal(500)
    points_rate: Decimal = Decimal(100)

    def __post_init__(self) -> None:
        if not (0 < self.deposit_percent <= 100):
            raise ConfigError("deposit_percent", "must be in (0, 100]", self.deposit_percent)
        if self.deposit_round_step <= 0:
            raise ConfigError("deposit_round_step", "must be positive", self.deposit_round_step)
        if self.points_rate <= 0:
            raise ConfigError("points_rate", "must be positive", self.points_rate)


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotency cache lifetimes
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CachePolicy:
    """
    TTLs of the idempotent operation cache.

    intent_ttl: how long a (session, stage) keeps its transaction ref (30 days).
    event_ttl: how long an event-application result is replayable (24 hours).
    """

    intent_ttl: timedelta = timedelta(days=30)
    event_ttl: timedelta = timedelta(hours=24)

    def __post_init__(self) -> None:
        if self.intent_ttl <= timedelta(0):
            raise ConfigError("intent_ttl", "must be positive", self.intent_ttl)
        if self.event_ttl <= timedelta(0):
            raise ConfigError("event_ttl", "must be positive", self.event_ttl)


# ═══════════════════════════════════════════════════════════════════════════════
# Boundary guards
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class GuardSettings:
    """
    confirm_key: shared secret expected in X-Confirm-Key (empty → every guarded call is 401).
    allowed_origins: browser origins allowed on public routes (empty → any).
    turnstile_secret: bot verification secret (empty → check disabled).
    """

    confirm_key: str = ""
    allowed_origins: tuple[str, ...] = ()
    turnstile_secret: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# Pay tokens
# ═══════════════════════════════════════════════════════════════════════════════

CONFIRM_PAGE_PATH = "/confirm/payment-confirmation"


@dataclass(frozen=True, slots=True)
class PayTokenSettings:
    """
    Signed invoice links.

    secret: HMAC-SHA256 key (empty → no tokens are issued and only cached ones verify).
    web_base_url: site serving the confirmation page the token is appended to.
    """

    secret: str = ""
    web_base_url: str = ""

    def confirm_url(self, token: str) -> str:
        return f"{self.web_base_url}{CONFIRM_PAGE_PATH}?{urlencode({'token': token})}"


# ═══════════════════════════════════════════════════════════════════════════════
# Collaborators
# ═══════════════════════════════════════════════════════════════════════════════

DEFAULT_TABLES: Mapping[str, str] = {
    "jobs": "jobs",
    "sessions": "sessions",
    "payments": "payments",
    "packages": "packages",
    "member_packages": "member_packages",
    "points_ledger": "points_ledger",
}


@dataclass(frozen=True, slots=True)
class AirtableSettings:
    """
    Record store connection.

    tables: logical table name → Airtable table name or id.
    field_map: logical table → {logical field → Airtable field id}.
    Unmapped fields are sent under their logical name.
    """

    api_key: str = ""
    base_id: str = ""
    api_url: str = "https://api.airtable.com/v0"
    tables: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_TABLES))
    field_map: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    timeout: float = 10.0

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.base_id)


@dataclass(frozen=True, slots=True)
class TelegramSettings:
    """Chat bot channel. threads: flow name → forum thread id."""

    bot_token: str = ""
    chat_id: str = ""
    api_url: str = "https://api.telegram.org"
    threads: Mapping[str, int] = field(default_factory=dict)
    timeout: float = 10.0

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)


@dataclass(frozen=True, slots=True)
class RealtimeSettings:
    """Realtime chat-room worker."""

    base_url: str = ""
    internal_token: str = ""
    timeout: float = 10.0

    @property
    def configured(self) -> bool:
        return bool(self.base_url)


# ═══════════════════════════════════════════════════════════════════════════════
# Settings: root
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Settings:
    pricing: PricingPolicy = field(default_factory=PricingPolicy)
    cache: CachePolicy = field(default_factory=CachePolicy)
    guards: GuardSettings = field(default_factory=GuardSettings)
    pay_tokens: PayTokenSettings = field(default_factory=PayTokenSettings)
    airtable: AirtableSettings = field(default_factory=AirtableSettings)
    telegram: TelegramSettings = field(default_factory=TelegramSettings)
    realtime: RealtimeSettings = field(default_factory=RealtimeSettings)
    # Empty → in-process memory store
    idempotency_db_url: str = ""

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> Settings:
        """
        Read settings from environment variables.

        Money:    DEPOSIT_PERCENT, DEPOSIT_ROUND_STEP, POINTS_RATE
        TTLs:     PAY_TOKEN_TTL_SECONDS, EVENT_IDEMPOTENCY_TTL_SECONDS
        Guards:   CONFIRM_KEY, ALLOWED_ORIGINS, TURNSTILE_SECRET
        Tokens:   CONFIRM_KEY (signing key), WEB_BASE_URL
        Airtable: AIRTABLE_API_KEY, AIRTABLE_BASE_ID, AIRTABLE_TABLE_<NAME>,
                  AT_<TABLE>__<FIELD> (field id overrides)
        Telegram: TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID, TG_THREAD_<FLOW>
        Realtime: REALTIME_BASE_URL, INTERNAL_TOKEN
        Cache:    IDEMPOTENCY_DB_URL
        """
        pricing_defaults = PricingPolicy()
        cache_defaults = CachePolicy()

        pricing = PricingPolicy(
            deposit_percent=_decimal(env, "DEPOSIT_PERCENT", pricing_defaults.deposit_percent),
            deposit_round_step=_decimal(
                env, "DEPOSIT_ROUND_STEP", pricing_defaults.deposit_round_step
            ),
            points_rate=_decimal(env, "POINTS_RATE", pricing_defaults.points_rate),
        )
        cache = CachePolicy(
            intent_ttl=_seconds(env, "PAY_TOKEN_TTL_SECONDS", cache_defaults.intent_ttl),
            event_ttl=_seconds(env, "EVENT_IDEMPOTENCY_TTL_SECONDS", cache_defaults.event_ttl),
        )
        guards = GuardSettings(
            confirm_key=_str(env, "CONFIRM_KEY"),
            allowed_origins=parse_origins(env.get("ALLOWED_ORIGINS", "")),
            turnstile_secret=_str(env, "TURNSTILE_SECRET"),
        )

        tables = dict(DEFAULT_TABLES)
        for logical in DEFAULT_TABLES:
            if value := _str(env, f"AIRTABLE_TABLE_{logical.upper()}"):
                tables[logical] = value

        airtable = AirtableSettings(
            api_key=_str(env, "AIRTABLE_API_KEY"),
            base_id=_str(env, "AIRTABLE_BASE_ID"),
            tables=tables,
            field_map=parse_field_map(env),
        )
        telegram = TelegramSettings(
            bot_token=_str(env, "TELEGRAM_BOT_TOKEN"),
            chat_id=_str(env, "TELEGRAM_CHAT_ID"),
            threads=_threads(env),
        )
        realtime = RealtimeSettings(
            base_url=_str(env, "REALTIME_BASE_URL").rstrip("/"),
            internal_token=_str(env, "INTERNAL_TOKEN"),
        )
        return cls(
            pricing=pricing,
            cache=cache,
            guards=guards,
            pay_tokens=PayTokenSettings(
                secret=guards.confirm_key,
                web_base_url=_str(env, "WEB_BASE_URL").rstrip("/"),
            ),
            airtable=airtable,
            telegram=telegram,
            realtime=realtime,
            idempotency_db_url=_str(env, "IDEMPOTENCY_DB_URL"),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Parsing helpers
# ═══════════════════════════════════════════════════════════════════════════════


def parse_origins(raw: str) -> tuple[str, ...]:
    """
    Comma-separated origin list.

    Note: Deploy tooling often stores the value quoted ("\\"https://a,https://b\\"").
    """
    unquoted = raw.strip().strip('"').strip("'")
    return tuple(o.strip() for o in unquoted.split(",") if o.strip())


def parse_field_map(env: Mapping[str, str]) -> dict[str, dict[str, str]]:
    """AT_PAYMENTS__PAYMENT_REF=fldXXX → {"payments": {"payment_ref": "fldXXX"}}."""
    out: dict[str, dict[str, str]] = {}
    for name, value in env.items():
        if not name.startswith("AT_") or "__" not in name or not value.strip():
            continue
        table, _, fld = name[3:].partition("__")
        if table and fld:
            out.setdefault(table.lower(), {})[fld.lower()] = value.strip()
    return out


def _str(env: Mapping[str, str], name: str) -> str:
    return env.get(name, "").strip()


def _decimal(env: Mapping[str, str], name: str, default: Decimal) -> Decimal:
    raw = _str(env, name)
    if not raw:
        return default
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise ConfigError(name, "not a number", raw) from None


def _seconds(env: Mapping[str, str], name: str, default: timedelta) -> timedelta:
    raw = _str(env, name)
    if not raw:
        return default
    try:
        return timedelta(seconds=int(raw))
    except ValueError:
        raise ConfigError(name, "not an integer number of seconds", raw) from None


def _threads(env: Mapping[str, str]) -> dict[str, int]:
    threads: dict[str, int] = {}
    for name, value in env.items():
        if not name.startswith("TG_THREAD_") or not value.strip():
            continue
        try:
            threads[name.removeprefix("TG_THREAD_").lower()] = int(value)
        except ValueError:
            raise ConfigError(name, "thread id must be an integer", value) from None
    return threads


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "PricingPolicy",
    "CachePolicy",
    "GuardSettings",
    "PayTokenSettings",
    "CONFIRM_PAGE_PATH",
    "AirtableSettings",
    "TelegramSettings",
    "RealtimeSettings",
    "Settings",
    "DEFAULT_TABLES",
    "parse_origins",
    "parse_field_map",
)
