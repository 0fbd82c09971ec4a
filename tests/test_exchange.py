"""
Tests for the callback state machine and the link-then-callback flow.
"""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from broker.errors import (
    ConfigurationError,
    InvalidOrExpiredStateError,
    MalformedCallbackError,
    ProviderDeniedError,
    TokenExchangeError,
    UnknownProviderError,
)
from broker.exchange import CallbackParams, LoginAttempt, LoginState
from broker.models import AccountStatus, as_datetime
from broker.pkce import challenge_for
from broker.service import build_broker
from connectors.providers import Provider


class TestLoginAttempt:
    def test_legal_path(self):
        attempt = LoginAttempt(provider=Provider.TWITTER)
        attempt.advance(LoginState.EXCHANGING)
        attempt.advance(LoginState.LINKED)
        assert attempt.succeeded
        assert attempt.history == [LoginState.STARTED, LoginState.EXCHANGING, LoginState.LINKED]

    def test_terminal_states_are_final(self):
        attempt = LoginAttempt(provider=Provider.TWITTER).fail(MalformedCallbackError("x"))
        with pytest.raises(RuntimeError):
            attempt.advance(LoginState.EXCHANGING)

    def test_cannot_skip_exchanging(self):
        with pytest.raises(RuntimeError):
            LoginAttempt(provider=None).advance(LoginState.LINKED)


class TestStartLogin:
    def test_link_and_session_agree(self, broker):
        link = broker.start_login("twitter", "u1")
        q = parse_qs(urlparse(link.url).query)
        assert q["state"] == [link.state]
        assert q["code_challenge"] == [challenge_for(link.code_verifier)]
        assert link.state in broker.sessions
        assert link.code_verifier not in link.url

    def test_unconfigured_provider_leaves_no_session(self, settings_factory, fake_provider, clock):
        broker = build_broker(settings_factory(reddit_client_secret=""), transport=fake_provider.transport, clock=clock)
        with pytest.raises(ConfigurationError):
            broker.start_login(Provider.REDDIT, "u1")
        assert len(broker.sessions) == 0

    def test_unknown_provider(self, broker):
        with pytest.raises(UnknownProviderError):
            broker.start_login("myspace", "u1")


class TestCallback:
    @pytest.mark.asyncio
    async def test_successful_link(self, broker, clock, fake_provider):
        link = broker.start_login(Provider.TWITTER, "u1")
        attempt = await broker.handle_callback(
            "twitter", CallbackParams(code="c0de", state=link.state)
        )

        assert attempt.succeeded
        assert attempt.history == [LoginState.STARTED, LoginState.EXCHANGING, LoginState.LINKED]
        account = attempt.account
        assert account.owner_id == "u1"
        assert account.provider is Provider.TWITTER
        assert account.provider_user_id == "tw-42"
        assert account.username == "alice"
        assert account.access_token == "access-1"
        assert account.refresh_token == "refresh-1"
        assert account.status is AccountStatus.ACTIVE
        assert account.expires_at == as_datetime(clock()) + timedelta(seconds=3600)
        assert fake_provider.token_forms[0]["code_verifier"] == link.code_verifier
        assert fake_provider.token_forms[0]["redirect_uri"] == (
            "https://app.example.com/api/v1/connectors/twitter/callback"
        )
        assert link.state not in broker.sessions

    @pytest.mark.asyncio
    async def test_replayed_state_rejected(self, broker, fake_provider):
        link = broker.start_login(Provider.TWITTER, "u1")
        first = await broker.handle_callback("twitter", CallbackParams(code="c", state=link.state))
        assert first.succeeded

        replay = await broker.handle_callback("twitter", CallbackParams(code="c", state=link.state))
        assert replay.state is LoginState.FAILED
        assert isinstance(replay.error, InvalidOrExpiredStateError)
        assert len(fake_provider.token_forms) == 1

    @pytest.mark.asyncio
    async def test_expired_state_rejected(self, broker, clock, fake_provider):
        link = broker.start_login(Provider.DISCORD, "u1")
        clock.advance(601)
        attempt = await broker.handle_callback("discord", CallbackParams(code="c", state=link.state))
        assert isinstance(attempt.error, InvalidOrExpiredStateError)
        assert fake_provider.token_forms == []

    @pytest.mark.asyncio
    async def test_provider_denied(self, broker):
        link = broker.start_login(Provider.TWITTER, "u1")
        attempt = await broker.handle_callback(
            "twitter",
            CallbackParams(state=link.state, error="access_denied", error_description="User said no"),
        )
        assert isinstance(attempt.error, ProviderDeniedError)
        assert "User said no" in attempt.error.message
        assert attempt.history == [LoginState.STARTED, LoginState.FAILED]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [CallbackParams(state="s"), CallbackParams(code="c")])
    async def test_malformed_callback(self, broker, params):
        attempt = await broker.handle_callback("twitter", params)
        assert isinstance(attempt.error, MalformedCallbackError)

    @pytest.mark.asyncio
    async def test_provider_mismatch_consumes_state(self, broker, fake_provider):
        link = broker.start_login(Provider.TWITTER, "u1")
        attempt = await broker.handle_callback("reddit", CallbackParams(code="c", state=link.state))
        assert isinstance(attempt.error, InvalidOrExpiredStateError)
        assert link.state not in broker.sessions
        assert fake_provider.token_forms == []

    @pytest.mark.asyncio
    async def test_unknown_provider_in_callback(self, broker):
        attempt = await broker.handle_callback("myspace", CallbackParams(code="c", state="s"))
        assert isinstance(attempt.error, UnknownProviderError)
        assert attempt.provider is None

    @pytest.mark.asyncio
    async def test_exchange_failure(self, broker, fake_provider):
        fake_provider.exchange_error = "invalid_grant"
        link = broker.start_login(Provider.TWITTER, "u1")
        attempt = await broker.handle_callback("twitter", CallbackParams(code="c", state=link.state))
        assert isinstance(attempt.error, TokenExchangeError)
        assert attempt.history == [LoginState.STARTED, LoginState.EXCHANGING, LoginState.FAILED]
        assert link.code_verifier not in attempt.error.message
        assert await broker.list_accounts("u1") == []

    @pytest.mark.asyncio
    async def test_profile_failure_still_links(self, broker, fake_provider):
        fake_provider.profile_status = 500
        link = broker.start_login(Provider.DISCORD, "u1")
        attempt = await broker.handle_callback("discord", CallbackParams(code="c", state=link.state))
        assert attempt.succeeded
        assert attempt.identity_missing
        assert attempt.account.provider_user_id is None
        assert attempt.account.access_token == "access-1"

    @pytest.mark.asyncio
    async def test_relink_updates_existing_account(self, broker):
        first = broker.start_login(Provider.REDDIT, "u1")
        a = await broker.complete_login("reddit", "c1", first.state)
        second = broker.start_login(Provider.REDDIT, "u1")
        b = await broker.complete_login("reddit", "c2", second.state)
        assert a.id == b.id
        assert b.access_token == "access-2"
        assert len(await broker.list_accounts("u1")) == 1

    @pytest.mark.asyncio
    async def test_complete_login_raises(self, broker):
        with pytest.raises(InvalidOrExpiredStateError):
            await broker.complete_login("twitter", "c", "bogus")
