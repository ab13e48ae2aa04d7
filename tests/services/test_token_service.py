"""ConfirmationTokenService: issue, single redemption, expiry, supersession."""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from onboarding_kernel.exceptions import (
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenSupersededError,
)
from onboarding_kernel.models.confirmation_token import ConfirmationTokenModel
from onboarding_kernel.utils.hashing import hash_token


class TestIssue:
    def test_expires_after_twenty_four_hours(self, token_service, deterministic_clock):
        issued = token_service.issue(uuid4())
        assert issued.expires_at - issued.issued_at == timedelta(hours=24)
        assert issued.issued_at == deterministic_clock.now()

    def test_only_the_digest_is_stored(self, token_service, session):
        issued = token_service.issue(uuid4())

        stored = session.execute(select(ConfirmationTokenModel)).scalar_one()
        assert stored.token_hash == hash_token(issued.token)
        assert issued.token not in repr(issued)

    def test_tokens_are_unique(self, token_service):
        client_id = uuid4()
        tokens = {token_service.issue(client_id).token for _ in range(5)}
        assert len(tokens) == 5

    def test_new_token_supersedes_previous(self, token_service, session):
        client_id = uuid4()
        first = token_service.issue(client_id)
        second = token_service.issue(client_id)

        live = [
            m for m in session.execute(select(ConfirmationTokenModel)).scalars()
            if m.is_live
        ]
        assert [m.token_hash for m in live] == [hash_token(second.token)]

        with pytest.raises(TokenSupersededError):
            token_service.redeem(first.token)
        assert token_service.redeem(second.token).client_id == client_id


class TestRedeem:
    def test_redeem_once(self, token_service):
        client_id = uuid4()
        issued = token_service.issue(client_id)

        redeemed = token_service.redeem(issued.token, "192.0.2.1")

        assert redeemed.client_id == client_id
        assert redeemed.source_address == "192.0.2.1"

    def test_second_redemption_is_already_used(self, token_service):
        issued = token_service.issue(uuid4())
        token_service.redeem(issued.token)

        with pytest.raises(TokenAlreadyUsedError) as exc_info:
            token_service.redeem(issued.token)
        assert exc_info.value.code == "TOKEN_ALREADY_USED"

    def test_valid_up_to_the_expiry_instant(self, token_service, deterministic_clock):
        issued = token_service.issue(uuid4())
        deterministic_clock.advance(24 * 3600)
        token_service.redeem(issued.token)

    def test_expired_after_twenty_four_hours(self, token_service, deterministic_clock):
        issued = token_service.issue(uuid4())
        deterministic_clock.advance(24 * 3600 + 1)

        with pytest.raises(TokenExpiredError) as exc_info:
            token_service.redeem(issued.token)
        assert not isinstance(exc_info.value, TokenSupersededError)

    def test_expired_token_stays_unredeemed(self, token_service, deterministic_clock, session):
        issued = token_service.issue(uuid4())
        deterministic_clock.advance(25 * 3600)
        with pytest.raises(TokenExpiredError):
            token_service.redeem(issued.token)

        stored = session.execute(select(ConfirmationTokenModel)).scalar_one()
        assert stored.redeemed_at is None

    @pytest.mark.parametrize("token", ["", "   ", "deadbeef", None])
    def test_unknown_token(self, token_service, token):
        with pytest.raises(TokenNotFoundError):
            token_service.redeem(token)
