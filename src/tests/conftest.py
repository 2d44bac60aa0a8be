"""Shared fixtures: a throwaway database and a fake GitHub."""

import base64
import itertools
import json
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio

from nextgenblog.core.database import init_database

REPO = "owner/blog"


class FakeGitHub:
    """In-memory stand-in for the GitHub contents and OAuth endpoints.

    Files are ``path -> (text, sha)``; writes must carry the current SHA
    just like the real API.
    """

    def __init__(self, repo: str = REPO):
        self.prefix = f"/repos/{repo}/contents/"
        self.files: dict[str, tuple[str, str]] = {}
        self.fail_writes: set[str] = set()
        self.requests: list[tuple[str, str]] = []
        # OAuth: authorization code -> (user id, login)
        self.accounts: dict[str, tuple[int, str]] = {}
        self._shas = itertools.count(1)

    def _next_sha(self) -> str:
        return f"sha{next(self._shas)}"

    def seed(self, path: str, text: str) -> None:
        self.files[path] = (text, self._next_sha())

    def text(self, path: str) -> str:
        return self.files[path][0]

    def index(self) -> list[dict]:
        return json.loads(self.text("posts.json"))

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "github.com":
            return self._access_token(request)
        if request.url.path == "/user":
            return self._user(request)

        path = request.url.path.removeprefix(self.prefix)
        self.requests.append((request.method, path))
        if request.method == "GET":
            return self._get(path)
        payload = json.loads(request.content)
        if request.method == "PUT":
            return self._put(path, payload)
        if request.method == "DELETE":
            return self._delete(path, payload)
        return httpx.Response(405)

    def _get(self, path: str) -> httpx.Response:
        if path in self.files:
            text, sha = self.files[path]
            return httpx.Response(
                200,
                json={
                    "type": "file",
                    "name": path.rsplit("/", 1)[-1],
                    "path": path,
                    "sha": sha,
                    "encoding": "base64",
                    "content": base64.encodebytes(text.encode()).decode(),
                },
            )
        children = [p for p in self.files if p.startswith(path + "/")]
        if children:
            return httpx.Response(
                200,
                json=[
                    {"type": "file", "name": p.rsplit("/", 1)[-1], "path": p, "sha": self.files[p][1]}
                    for p in sorted(children)
                ],
            )
        return httpx.Response(404, json={"message": "Not Found"})

    def _put(self, path: str, payload: dict) -> httpx.Response:
        if path in self.fail_writes:
            return httpx.Response(502, json={"message": "Bad Gateway"})
        current = self.files.get(path)
        sha = payload.get("sha")
        if current is not None and sha is None:
            return httpx.Response(422, json={"message": "sha wasn't supplied"})
        if current is not None and sha != current[1]:
            return httpx.Response(409, json={"message": "does not match"})
        text = base64.b64decode(payload["content"]).decode()
        self.files[path] = (text, self._next_sha())
        status = 200 if current is not None else 201
        return httpx.Response(status, json={"content": {"path": path, "sha": self.files[path][1]}})

    def _delete(self, path: str, payload: dict) -> httpx.Response:
        current = self.files.get(path)
        if current is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if payload.get("sha") != current[1]:
            return httpx.Response(409, json={"message": "does not match"})
        del self.files[path]
        return httpx.Response(200, json={"commit": {}})

    def _access_token(self, request: httpx.Request) -> httpx.Response:
        code = parse_qs(request.content.decode()).get("code", [""])[0]
        if code not in self.accounts:
            return httpx.Response(200, json={"error": "bad_verification_code"})
        return httpx.Response(200, json={"access_token": f"gho_{code}", "token_type": "bearer"})

    def _user(self, request: httpx.Request) -> httpx.Response:
        token = request.headers.get("Authorization", "").removeprefix("token gho_")
        if token not in self.accounts:
            return httpx.Response(401, json={"message": "Bad credentials"})
        user_id, login = self.accounts[token]
        return httpx.Response(200, json={"id": user_id, "login": login, "type": "User"})


@pytest.fixture
def github():
    return FakeGitHub()


@pytest_asyncio.fixture
async def http_client(github):
    """HTTP client whose requests are answered by the fake GitHub."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(github.handler)) as client:
        yield client


@pytest.fixture
def session_factory(tmp_path):
    engine, factory = init_database(f"sqlite:///{tmp_path / 'blog.db'}")
    yield factory
    engine.dispose()
