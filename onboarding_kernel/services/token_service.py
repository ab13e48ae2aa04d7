"""
ConfirmationTokenService -- single-use, time-limited confirmation tokens.

Responsibility:
    Issues opaque random tokens and redeems them at most once.

Architecture position:
    Kernel > Services. Flushes only; the caller commits.

Invariants enforced:
    - At most one live (unredeemed, unsuperseded) token per client and
      purpose: ``issue`` supersedes any earlier live token.
    - A token is redeemed at most once. ``redeemed_at`` is only set after
      ``now <= expires_at`` was checked.
    - Only the SHA-256 digest of a token is persisted or logged.

Failure modes:
    - TokenNotFoundError for an unknown token.
    - TokenAlreadyUsedError for a redeemed token, including the loser of
      two concurrent redemptions.
    - TokenSupersededError when a newer token replaced this one.
    - TokenExpiredError when ``now > expires_at``.
"""

import secrets
from datetime import timedelta
from uuid import UUID

from sqlalchemy import select

from onboarding_kernel.domain.clock import Clock
from onboarding_kernel.domain.tokens import IssuedToken, RedeemedToken, TokenPurpose
from onboarding_kernel.exceptions import (
    ConcurrencyConflictError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenSupersededError,
)
from onboarding_kernel.logging_config import get_logger
from onboarding_kernel.models.confirmation_token import ConfirmationTokenModel
from onboarding_kernel.services.base import BaseService
from onboarding_kernel.utils.hashing import hash_token

logger = get_logger("services.tokens")

DEFAULT_TOKEN_TTL = timedelta(hours=24)
TOKEN_BYTES = 32


class ConfirmationTokenService(BaseService):
    """Issue and redeem confirmation tokens."""

    ENTITY_TYPE = "ConfirmationToken"

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        ttl: timedelta = DEFAULT_TOKEN_TTL,
    ):
        super().__init__(session, clock)
        self._ttl = ttl

    def issue(
        self,
        client_id: UUID,
        purpose: TokenPurpose = TokenPurpose.EMAIL_CONFIRMATION,
    ) -> IssuedToken:
        """
        Issue a new token, superseding any live token for the same purpose.

        Postconditions:
            - Exactly one live token exists for (client_id, purpose).
            - The returned ``IssuedToken.token`` is the only copy of the secret.
        """
        now = self.clock.now()

        live = self.session.execute(
            select(ConfirmationTokenModel).where(
                ConfirmationTokenModel.client_id == client_id,
                ConfirmationTokenModel.purpose == purpose.value,
                ConfirmationTokenModel.redeemed_at.is_(None),
                ConfirmationTokenModel.superseded_at.is_(None),
            )
        ).scalars().all()
        for previous in live:
            previous.superseded_at = now

        token = secrets.token_hex(TOKEN_BYTES)
        model = ConfirmationTokenModel(
            token_hash=hash_token(token),
            client_id=client_id,
            purpose=purpose.value,
            issued_at=now,
            expires_at=now + self._ttl,
        )
        self.session.add(model)
        self._flush_versioned(self.ENTITY_TYPE, client_id)

        logger.info(
            "confirmation_token_issued",
            extra={
                "client_id": str(client_id),
                "purpose": purpose.value,
                "expires_at": model.expires_at.isoformat(),
                "superseded_count": len(live),
            },
        )
        return IssuedToken(
            token=token,
            client_id=client_id,
            purpose=purpose,
            issued_at=now,
            expires_at=model.expires_at,
        )

    def redeem(
        self,
        token: str,
        source_address: str | None = None,
        purpose: TokenPurpose | None = None,
    ) -> RedeemedToken:
        """
        Redeem a token exactly once.

        Raises:
            TokenNotFoundError, TokenAlreadyUsedError, TokenSupersededError,
            TokenExpiredError.
        """
        if not isinstance(token, str) or not token.strip():
            raise TokenNotFoundError()

        stmt = select(ConfirmationTokenModel).where(
            ConfirmationTokenModel.token_hash == hash_token(token.strip())
        )
        if purpose is not None:
            stmt = stmt.where(ConfirmationTokenModel.purpose == purpose.value)
        model = self.session.execute(stmt).scalar_one_or_none()

        if model is None:
            logger.info("confirmation_token_not_found")
            raise TokenNotFoundError()

        client_id = str(model.client_id)
        if model.redeemed_at is not None:
            logger.info("confirmation_token_reused", extra={"client_id": client_id})
            raise TokenAlreadyUsedError(client_id, model.redeemed_at.isoformat())
        if model.superseded_at is not None:
            raise TokenSupersededError(client_id, model.expires_at.isoformat())

        now = self.clock.now()
        if now > model.expires_at:
            logger.info(
                "confirmation_token_expired",
                extra={"client_id": client_id, "expires_at": model.expires_at.isoformat()},
            )
            raise TokenExpiredError(client_id, model.expires_at.isoformat())

        model.redeemed_at = now
        model.source_address = source_address
        try:
            self._flush_versioned(self.ENTITY_TYPE, model.id)
        except ConcurrencyConflictError as exc:
            raise TokenAlreadyUsedError(client_id) from exc

        logger.info(
            "confirmation_token_redeemed",
            extra={"client_id": client_id, "purpose": model.purpose},
        )
        return RedeemedToken(
            client_id=model.client_id,
            purpose=TokenPurpose(model.purpose),
            redeemed_at=now,
            source_address=source_address,
        )
