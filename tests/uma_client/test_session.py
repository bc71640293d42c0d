"""
Tests for the OIDC identity session.
"""

import time

import httpx
import pytest

import uma_client as m

ISSUER = "https://idp.example"
OIDC_CONFIG = "https://idp.example/.well-known/openid-configuration"
IDP_TOKEN = "https://idp.example/token"


def settings(**overrides):
    values = {"issuer": ISSUER, "client_id": "my-app", **overrides}
    return m.SessionSettings(**values)


class TestTokenState:
    @pytest.mark.anyio
    async def test_claim_token_requires_id_token(self, server):
        async with m.OIDCSession(transport=server.transport()) as session:
            with pytest.raises(m.MissingIdentityToken):
                await session.create_claim_token()

    @pytest.mark.anyio
    async def test_claim_token_is_the_id_token(self, server, make_id_token):
        id_token = make_id_token(webid="https://alice.example/profile#me")
        async with m.OIDCSession(transport=server.transport()) as session:
            session.set_tokens({"access_token": "at", "id_token": id_token})
            assert await session.create_claim_token() == id_token
            assert session.web_id == "https://alice.example/profile#me"

    def test_web_id_falls_back_to_subject(self, make_id_token):
        assert m.extract_web_id(make_id_token(sub="bob")) == "bob"
        assert m.extract_web_id("not-a-jwt") is None

    def test_set_tokens_keeps_missing_members(self):
        session = m.OIDCSession()
        session.set_tokens({"access_token": "at-1", "id_token": "id-1", "refresh_token": "rt"})
        session.set_tokens({"access_token": "at-2"})

        assert (session.access_token, session.id_token, session.refresh_token) == ("at-2", "id-1", "rt")

    def test_expires_in_becomes_expires_at(self):
        session = m.OIDCSession()
        before = int(time.time())
        session.set_tokens({"access_token": "at", "expires_in": 3600})
        assert before + 3600 <= session.expires_at <= int(time.time()) + 3600

    @pytest.mark.anyio
    async def test_is_logged_in(self, server):
        async with m.OIDCSession(transport=server.transport()) as session:
            assert await session.is_logged_in() is False
            session.set_tokens({"access_token": "at"})
            assert await session.is_logged_in() is True
            session.clear_oidc_tokens()
            assert await session.is_logged_in() is False


class TestRefresh:
    @staticmethod
    def idp_routes(server, token_response):
        server.add("GET", OIDC_CONFIG, httpx.Response(200, json={"token_endpoint": IDP_TOKEN}))
        server.add("POST", IDP_TOKEN, token_response)

    @pytest.mark.anyio
    async def test_expired_token_is_refreshed_before_claim(self, server):
        self.idp_routes(
            server,
            httpx.Response(
                200,
                json={
                    "access_token": "at-new",
                    "id_token": "id-new",
                    "refresh_token": "rt-new",
                    "token_type": "Bearer",
                    "expires_in": 3600,
                },
            ),
        )
        async with m.OIDCSession(settings(), transport=server.transport()) as session:
            session.set_tokens(
                {
                    "access_token": "at-old",
                    "id_token": "id-old",
                    "refresh_token": "rt-old",
                    "expires_at": int(time.time()) - 10,
                }
            )

            assert await session.create_claim_token() == "id-new"

        assert session.access_token == "at-new"
        assert session.refresh_token == "rt-new"
        refresh = server.calls_to(IDP_TOKEN)[0]
        form = dict(httpx.QueryParams(refresh.content.decode()))
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "rt-old"
        assert form["client_id"] == "my-app"

    @pytest.mark.anyio
    async def test_token_within_leeway_is_refreshed(self, server):
        self.idp_routes(server, httpx.Response(200, json={"access_token": "at-new", "token_type": "Bearer"}))
        async with m.OIDCSession(settings(refresh_leeway_seconds=120), transport=server.transport()) as session:
            session.set_tokens({"access_token": "at-old", "refresh_token": "rt", "expires_at": int(time.time()) + 60})
            await session.ensure_valid_token()
            assert session.access_token == "at-new"

    @pytest.mark.anyio
    async def test_fresh_token_is_not_refreshed(self, server):
        async with m.OIDCSession(settings(), transport=server.transport()) as session:
            session.set_tokens({"access_token": "at", "refresh_token": "rt", "expires_in": 3600})
            await session.ensure_valid_token()
        assert server.calls == []

    @pytest.mark.anyio
    async def test_refresh_needs_issuer_and_client(self, server):
        async with m.OIDCSession(transport=server.transport()) as session:
            session.set_tokens({"access_token": "at", "refresh_token": "rt", "expires_at": 1})
            await session.ensure_valid_token()
            assert session.access_token == "at"
        assert server.calls == []

    @pytest.mark.anyio
    async def test_rejected_refresh_raises(self, server):
        self.idp_routes(server, httpx.Response(400, json={"error": "invalid_grant"}))
        async with m.OIDCSession(settings(), transport=server.transport()) as session:
            session.set_tokens({"access_token": "at", "refresh_token": "rt", "expires_at": 1})
            with pytest.raises(m.TokenRefreshError):
                await session.ensure_valid_token()
            assert await session.is_logged_in() is False

    @pytest.mark.anyio
    async def test_missing_oidc_config_raises(self, server):
        server.add("GET", OIDC_CONFIG, httpx.Response(404))
        async with m.OIDCSession(settings(), transport=server.transport()) as session:
            session.set_tokens({"access_token": "at", "refresh_token": "rt", "expires_at": 1})
            with pytest.raises(m.TokenRefreshError, match="404"):
                await session.ensure_valid_token()


class TestResolversAndCache:
    def test_default_resolvers_come_first(self):
        extra = m.ClaimResolverDefinition(id="extra", resolve=lambda required, s: None)
        session = m.OIDCSession(claim_resolvers=[extra])
        assert [d.id for d in session.get_claim_resolvers()] == ["id-token", "access-token", "extra"]

    def test_add_claim_resolver_shorthand(self):
        session = m.OIDCSession()
        definition = session.add_claim_resolver("urn:example:vc", lambda required, s: None)

        assert definition.id == "custom:urn:example:vc"
        assert definition.match == {"claim_token_format": "urn:example:vc"}
        assert session.get_claim_resolvers()[-1] is definition

    def test_add_claim_resolver_shorthand_requires_function(self):
        with pytest.raises(ValueError, match="required"):
            m.OIDCSession().add_claim_resolver("urn:example:vc")

    def test_add_claim_resolver_definition(self):
        session = m.OIDCSession()
        definition = m.ClaimResolverDefinition(id="full", match={"claim_type": "x"}, resolve=lambda r, s: None)
        assert session.add_claim_resolver(definition) is definition
        assert m.resolve_claim_resolver(m.RequiredClaim(claim_type="x"), session.get_claim_resolvers()) is definition

    @pytest.mark.anyio
    async def test_default_ttl_flows_to_token_store(self):
        session = m.OIDCSession(settings(uma_token_default_ttl_seconds=30))
        entry = await session.store_uma_token("https://pod.example/a", "GET", m.TokenResponse("rpt", "Bearer"))
        assert entry.expires_at is not None

    @pytest.mark.anyio
    async def test_clear_cache_drops_uma_and_oidc_tokens(self):
        session = m.OIDCSession()
        session.set_tokens({"access_token": "at", "id_token": "id"})
        await session.store_uma_token("https://pod.example/a", "GET", m.TokenResponse("rpt", "Bearer"))

        await session.clear_cache()

        assert await session.get_stored_uma_token("https://pod.example/a") is None
        assert session.access_token is None
        assert session.web_id is None

    @pytest.mark.anyio
    async def test_custom_token_store_is_used(self, fake_redis):
        store = m.RedisUmaTokenCache(fake_redis)
        session = m.OIDCSession(token_store=store)
        await session.store_uma_token("https://pod.example/a", "GET", m.TokenResponse("rpt", "Bearer"))
        assert (await store.get("https://pod.example/a")).access_token == "rpt"
