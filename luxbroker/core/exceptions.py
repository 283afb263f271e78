from fastapi import HTTPException, status


class InvalidAddress(HTTPException):
    def __init__(self, detail: str = "Invalid ledger wallet address"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ReferralCodeNotFound(HTTPException):
    """Raised only by lookups that need a code; attribution logs and ignores it."""

    def __init__(self, referral_code: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Referral code '{referral_code}' not found",
        )


class BrokerNotFoundError(HTTPException):
    def __init__(self, broker_id: str):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"Broker {broker_id} not found")


class SellerNotFoundError(HTTPException):
    def __init__(self, seller_id: str):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"Seller {seller_id} not found")


class CommissionNotFoundError(HTTPException):
    def __init__(self, commission_id: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Commission {commission_id} not found",
        )


class InvalidStateTransition(HTTPException):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Commission is '{current}', cannot transition to '{requested}'",
        )


class Unauthenticated(HTTPException):
    def __init__(self, detail: str = "Authentication required"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class InsufficientPermissions(HTTPException):
    def __init__(self, detail: str = "Insufficient permissions"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class RateLimitExceeded(HTTPException):
    def __init__(self, retry_after_seconds: int, detail: str = "Too many requests"):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            headers={"Retry-After": str(retry_after_seconds)},
        )


class NonceInvalidOrExpired(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Wallet challenge is invalid or expired",
        )
