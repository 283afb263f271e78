"""Fixed window rate limiter, keyed by (category, caller identifier).

Each category has its own ceiling and window length. A caller's counter
never moves past the ceiling: rejected requests do not count.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from luxbroker.config import settings
from luxbroker.core.kv_store import KeyValueStore, get_kv_store
from luxbroker.core.log_redaction import redact_text

logger = logging.getLogger(__name__)

_KEY_PREFIX = "ratelimit:"


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: int
    limit: int
    remaining: int

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


def default_rules() -> dict[str, RateLimitRule]:
    return {
        "default": RateLimitRule(settings.rate_limit_default_max, settings.rate_limit_default_window_seconds),
        "write": RateLimitRule(settings.rate_limit_write_max, settings.rate_limit_write_window_seconds),
        "auth": RateLimitRule(settings.rate_limit_auth_max, settings.rate_limit_auth_window_seconds),
        "sensitive": RateLimitRule(
            settings.rate_limit_sensitive_max, settings.rate_limit_sensitive_window_seconds,
        ),
        "register": RateLimitRule(
            settings.rate_limit_register_max, settings.rate_limit_register_window_seconds,
        ),
    }


class FixedWindowRateLimiter:
    def __init__(self, store: KeyValueStore, rules: dict[str, RateLimitRule] | None = None):
        self._store = store
        self._rules = dict(rules) if rules is not None else default_rules()

    @property
    def rules(self) -> dict[str, RateLimitRule]:
        return dict(self._rules)

    async def check(self, identifier: str, category: str = "default") -> RateLimitDecision:
        rule = self._rules.get(category)
        if rule is None:
            raise ValueError(f"Unknown rate limit category: {category}")

        hit = await self._store.hit_window(
            f"{_KEY_PREFIX}{category}:{identifier}",
            ceiling=rule.max_requests,
            window_seconds=rule.window_seconds,
        )
        if hit.accepted:
            return RateLimitDecision(
                allowed=True,
                retry_after_seconds=0,
                limit=rule.max_requests,
                remaining=max(0, rule.max_requests - hit.count),
            )

        retry_after = max(1, math.ceil(hit.reset_in))
        logger.warning(
            "Rate limit exceeded: category=%s caller=%s retry_after=%ds",
            category, redact_text(identifier), retry_after,
        )
        return RateLimitDecision(
            allowed=False,
            retry_after_seconds=retry_after,
            limit=rule.max_requests,
            remaining=0,
        )

    async def sweep(self) -> int:
        removed = await self._store.sweep(_KEY_PREFIX)
        if removed:
            logger.debug("Swept %d expired rate limit windows", removed)
        return removed


_instance: FixedWindowRateLimiter | None = None


def get_rate_limiter() -> FixedWindowRateLimiter:
    global _instance
    if _instance is None:
        _instance = FixedWindowRateLimiter(get_kv_store())
    return _instance


def reset_rate_limiter() -> None:
    global _instance
    _instance = None
