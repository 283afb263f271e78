"""API router registry used by the app factory.

This keeps route module imports and inclusion order in one place so
`luxbroker.main` stays focused on startup wiring.
"""

from __future__ import annotations

from fastapi import APIRouter

from . import auth, brokers, commissions, health, referrals, sellers

API_PREFIX = "/api/v1"

API_ROUTERS: tuple[APIRouter, ...] = (
    health.router,
    auth.router,
    brokers.router,
    sellers.router,
    referrals.router,
    commissions.router,
)

__all__ = ["API_PREFIX", "API_ROUTERS"]
