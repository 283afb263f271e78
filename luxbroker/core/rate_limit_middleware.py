"""Rate limiting middleware for REST API endpoints."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from luxbroker.config import settings
from luxbroker.core.exceptions import RateLimitExceeded
from luxbroker.core.rate_limiter import get_rate_limiter

API_PREFIX = "/api/v1"
WALLET_HEADER = "x-wallet-address"
NONCE_HEADER = "x-wallet-nonce"
_WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
_REGISTER_PATHS = {f"{API_PREFIX}/brokers/register", f"{API_PREFIX}/sellers/register"}


def classify_request(method: str, path: str) -> str:
    """Pick the rate limit category for a request."""
    method = method.upper()
    if path.startswith(f"{API_PREFIX}/auth"):
        return "auth"
    if path in _REGISTER_PATHS:
        return "register"
    if method in _WRITE_METHODS:
        if path.startswith(f"{API_PREFIX}/commissions"):
            return "sensitive"
        if path.startswith(f"{API_PREFIX}/brokers/") and path.endswith("/status"):
            return "sensitive"
        return "write"
    return "default"


def _trusted_proxies() -> set[str]:
    return {p.strip() for p in settings.trusted_proxies.split(",") if p.strip()}


def client_ip(request: Request) -> str:
    client = request.client
    ip = client.host if client else "unknown"
    # Only trust X-Forwarded-For from a known reverse proxy
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and ip in _trusted_proxies():
        ip = forwarded.split(",")[0].strip()
    return ip


def client_identifier(request: Request) -> str:
    """Wallet header when it comes with a challenge nonce, otherwise the client IP.

    The wallet is not verified here, so a caller presenting fresh wallet and
    nonce headers on every request still gets a fresh window each time. The
    nonce requirement only stops a bare rotated ``X-Wallet-Address`` from
    escaping the per-IP budget.
    """
    wallet = request.headers.get(WALLET_HEADER, "").strip()
    if wallet and request.headers.get(NONCE_HEADER, "").strip():
        return wallet.lower()
    return client_ip(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    SKIP_PATHS = {f"{API_PREFIX}/health", "/docs", "/openapi.json", "/redoc"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        category = classify_request(request.method, request.url.path)
        decision = await get_rate_limiter().check(client_identifier(request), category)
        headers = decision.headers()

        if not decision.allowed:
            # Middleware runs outside FastAPI's exception handlers, so render it here
            exc = RateLimitExceeded(decision.retry_after_seconds, detail="Rate limit exceeded")
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.detail, "retry_after": exc.retry_after_seconds},
                headers={**headers, **exc.headers},
            )

        response: Response = await call_next(request)
        for k, v in headers.items():
            response.headers[k] = v
        return response
