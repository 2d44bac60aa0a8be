"""GitHub OAuth login and signed admin credentials.

Login flow: redirect to GitHub, exchange the returned code for an access
token, fetch the account behind it, compare its login with the single
allow-listed admin, and mint a signed token that expires after a day.
There is no refresh; an expired token means logging in again.
"""

import logging
from urllib.parse import urlencode

import httpx
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from pydantic import ValidationError as PydanticValidationError

from nextgenblog.config import Settings
from nextgenblog.core.errors import Forbidden, Unauthorized, UpstreamFailure, ValidationError
from nextgenblog.core.models import AdminIdentity, GitHubIdentity

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"
USER_URL = "https://api.github.com/user"


class GitHubOAuth:
    """Server side of the GitHub OAuth web flow."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        callback_url: str,
    ):
        self.client = client
        self.client_id = client_id
        self.client_secret = client_secret
        self.callback_url = callback_url

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorize_url(self) -> str:
        """URL the browser is sent to for authorization."""
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": self.callback_url,
                "scope": "read:user",
            }
        )
        return f"{AUTHORIZE_URL}?{query}"

    async def exchange_code(self, code: str) -> str:
        """Trade an authorization code for an access token."""
        try:
            response = await self.client.post(
                ACCESS_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "redirect_uri": self.callback_url,
                },
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.exception("GitHub token exchange failed")
            raise UpstreamFailure("Authentication failed") from e

        access_token = response.json().get("access_token")
        if not access_token:
            # GitHub answers 200 with an error body for bad or reused codes
            logger.warning("GitHub rejected the authorization code: %s", response.json().get("error"))
            raise Unauthorized("Authorization code was rejected")
        return access_token

    async def fetch_identity(self, access_token: str) -> GitHubIdentity:
        """Fetch the account the access token belongs to."""
        try:
            response = await self.client.get(
                USER_URL,
                headers={
                    "Authorization": f"token {access_token}",
                    "Accept": "application/vnd.github.v3+json",
                },
            )
            response.raise_for_status()
            return GitHubIdentity.model_validate(response.json())
        except (httpx.HTTPError, PydanticValidationError) as e:
            logger.exception("Fetching GitHub user failed")
            raise UpstreamFailure("Authentication failed") from e


class TokenIssuer:
    """Signs and verifies time-boxed admin bearer tokens."""

    SALT = "nextgenblog-admin"

    def __init__(self, secret_key: str, max_age: int = 24 * 60 * 60):
        if not secret_key:
            raise ValueError("A secret key is required to sign admin tokens")
        self.serializer = URLSafeTimedSerializer(secret_key, salt=self.SALT)
        self.max_age = max_age

    def issue(self, identity: GitHubIdentity) -> str:
        return self.serializer.dumps({"uid": identity.id, "username": identity.login})

    def verify(self, token: str) -> AdminIdentity:
        """Return the identity in a token.

        Raises:
            Unauthorized: If the token is expired, tampered with or malformed.
        """
        try:
            payload = self.serializer.loads(token, max_age=self.max_age)
        except SignatureExpired as e:
            raise Unauthorized("Session expired, please log in again") from e
        except BadSignature as e:
            raise Unauthorized("Invalid credential") from e
        try:
            return AdminIdentity(user_id=payload["uid"], username=payload["username"])
        except (KeyError, TypeError, PydanticValidationError) as e:
            raise Unauthorized("Invalid credential") from e


class AuthGate:
    """Restricts admin access to one allow-listed GitHub account."""

    def __init__(self, oauth: GitHubOAuth, issuer: TokenIssuer, admin_username: str):
        self.oauth = oauth
        self.issuer = issuer
        self.admin_username = admin_username

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient) -> "AuthGate":
        oauth = GitHubOAuth(
            client,
            settings.github_client_id,
            settings.github_client_secret,
            settings.oauth_callback_url,
        )
        issuer = TokenIssuer(settings.secret_key, settings.token_max_age)
        return cls(oauth, issuer, settings.admin_username)

    def is_allowed(self, username: str) -> bool:
        # GitHub logins are case-insensitive
        return bool(self.admin_username) and username.lower() == self.admin_username.lower()

    async def login(self, code: str) -> str:
        """Complete a login and return a signed admin token.

        Raises:
            ValidationError: If no code was supplied.
            Forbidden: If the GitHub account is not the blog owner.
            UpstreamFailure: If GitHub cannot be reached.
        """
        if not code:
            raise ValidationError("Missing authorization code")
        access_token = await self.oauth.exchange_code(code)
        identity = await self.oauth.fetch_identity(access_token)
        if not self.is_allowed(identity.login):
            logger.warning("Rejected admin login from GitHub user %s", identity.login)
            raise Forbidden("Unauthorized - not the blog owner")
        logger.info("Admin login by %s", identity.login)
        return self.issuer.issue(identity)

    def authenticate(self, token: str | None) -> AdminIdentity:
        """Validate a presented bearer token."""
        if not token:
            raise Unauthorized("Unauthorized")
        identity = self.issuer.verify(token)
        if not self.is_allowed(identity.username):
            raise Unauthorized("Unauthorized")
        return identity
