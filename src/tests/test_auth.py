"""Unit tests for the GitHub OAuth gate and admin tokens."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from itsdangerous import URLSafeTimedSerializer

from nextgenblog.core.auth import AuthGate, GitHubOAuth, TokenIssuer
from nextgenblog.core.errors import Forbidden, Unauthorized, UpstreamFailure, ValidationError
from nextgenblog.core.models import GitHubIdentity


@pytest.fixture
def oauth(http_client):
    return GitHubOAuth(
        http_client, "client-id", "client-secret", "http://test/api/auth/github/callback"
    )


@pytest.fixture
def gate(oauth):
    return AuthGate(oauth, TokenIssuer("secret"), admin_username="BlogOwner")


class TestGitHubOAuth:
    @pytest.mark.asyncio
    async def test_authorize_url(self, oauth):
        url = urlparse(oauth.authorize_url())
        assert url.netloc == "github.com"
        assert url.path == "/login/oauth/authorize"
        query = parse_qs(url.query)
        assert query["client_id"] == ["client-id"]
        assert query["redirect_uri"] == ["http://test/api/auth/github/callback"]

    @pytest.mark.asyncio
    async def test_configured(self, oauth, http_client):
        assert oauth.configured is True
        assert GitHubOAuth(http_client, "", "", "cb").configured is False

    @pytest.mark.asyncio
    async def test_exchange_and_identity(self, oauth, github):
        github.accounts["abc"] = (7, "BlogOwner")
        token = await oauth.exchange_code("abc")
        identity = await oauth.fetch_identity(token)
        assert identity == GitHubIdentity(id=7, login="BlogOwner")

    @pytest.mark.asyncio
    async def test_rejected_code(self, oauth):
        with pytest.raises(Unauthorized):
            await oauth.exchange_code("bad")

    @pytest.mark.asyncio
    async def test_provider_down(self):
        def down(request):
            raise httpx.ConnectError("unreachable", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(down)) as client:
            oauth = GitHubOAuth(client, "id", "secret", "cb")
            with pytest.raises(UpstreamFailure):
                await oauth.exchange_code("abc")


class TestTokenIssuer:
    def test_round_trip(self):
        issuer = TokenIssuer("secret")
        token = issuer.issue(GitHubIdentity(id=1, login="owner"))
        identity = issuer.verify(token)
        assert identity.user_id == 1
        assert identity.username == "owner"

    def test_wrong_secret(self):
        token = TokenIssuer("secret").issue(GitHubIdentity(id=1, login="owner"))
        with pytest.raises(Unauthorized):
            TokenIssuer("other").verify(token)

    def test_tampered(self):
        token = TokenIssuer("secret").issue(GitHubIdentity(id=1, login="owner"))
        with pytest.raises(Unauthorized):
            TokenIssuer("secret").verify(token[:-2] + "xx")

    def test_expired(self):
        issuer = TokenIssuer("secret", max_age=-1)
        token = issuer.issue(GitHubIdentity(id=1, login="owner"))
        with pytest.raises(Unauthorized, match="expired"):
            issuer.verify(token)

    def test_empty_secret_is_refused(self):
        with pytest.raises(ValueError):
            TokenIssuer("")

    def test_signed_payload_without_identity(self):
        token = URLSafeTimedSerializer("secret", salt=TokenIssuer.SALT).dumps({"nope": 1})
        with pytest.raises(Unauthorized):
            TokenIssuer("secret").verify(token)


class TestAuthGate:
    @pytest.mark.asyncio
    async def test_owner_gets_token(self, gate, github):
        github.accounts["good"] = (1, "blogowner")
        token = await gate.login("good")
        assert gate.authenticate(token).username == "blogowner"

    @pytest.mark.asyncio
    async def test_stranger_is_forbidden(self, gate, github):
        github.accounts["evil"] = (2, "stranger")
        with pytest.raises(Forbidden):
            await gate.login("evil")

    @pytest.mark.asyncio
    async def test_missing_code(self, gate):
        with pytest.raises(ValidationError):
            await gate.login("")

    @pytest.mark.asyncio
    async def test_authenticate_without_token(self, gate):
        with pytest.raises(Unauthorized):
            gate.authenticate(None)

    @pytest.mark.asyncio
    async def test_token_for_other_user_is_rejected(self, gate):
        token = gate.issuer.issue(GitHubIdentity(id=2, login="stranger"))
        with pytest.raises(Unauthorized):
            gate.authenticate(token)

    @pytest.mark.asyncio
    async def test_empty_allow_list_admits_nobody(self, oauth):
        gate = AuthGate(oauth, TokenIssuer("secret"), admin_username="")
        assert gate.is_allowed("") is False
        assert gate.is_allowed("anyone") is False
