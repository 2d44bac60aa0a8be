"""Post storage backed by markdown files in a GitHub repository.

Each post is committed as ``{posts_dir}/{filename}`` through the GitHub
contents API, and ``posts.json`` holds a newest-first array of
``{title, date, description, filename}`` for listing. Every mutation writes
the post file first and the index second. The two writes are not atomic:
if the second one fails the index is stale until ``rebuild_index`` runs.
"""

import base64
import json
import logging
from typing import Any, Callable

import httpx
from pydantic import ValidationError as PydanticValidationError

from nextgenblog.core.errors import Conflict, NotFound, UpstreamFailure
from nextgenblog.core.frontmatter import DecodeFailure, decode, encode
from nextgenblog.core.identity import derive_identity, slug_from_filename
from nextgenblog.core.models import IndexReport, Post, PostFields, PostSummary
from nextgenblog.core.storage import PostStore

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"

# Status codes GitHub uses for a missing or stale blob SHA on write
SHA_MISMATCH = (409, 422)

IndexEntries = list[dict[str, Any]]


def _index_entry(post: PostSummary) -> dict[str, Any]:
    return {
        "title": post.title,
        "date": post.date.isoformat(),
        "description": post.description,
        "filename": post.filename,
    }


def _is_post_filename(identifier: str) -> bool:
    return identifier.endswith(".md") and "/" not in identifier and not identifier.startswith(".")


class GitHubPostStore(PostStore):
    """Versioned-file storage implementation on the GitHub contents API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        repo: str,
        token: str,
        branch: str = "main",
        posts_dir: str = "posts",
        index_path: str = "posts.json",
        retries: int = 3,
        api_url: str = GITHUB_API_URL,
    ):
        self.client = client
        self.repo = repo
        self.token = token
        self.branch = branch
        self.posts_dir = posts_dir.strip("/")
        self.index_path = index_path
        self.retries = max(1, retries)
        self.api_url = api_url.rstrip("/")

    # ========== HTTP helpers ==========

    def _url(self, path: str) -> str:
        return f"{self.api_url}/repos/{self.repo}/contents/{path}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github.v3+json",
        }

    def _post_path(self, filename: str) -> str:
        return f"{self.posts_dir}/{filename}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying transport errors and 5xx responses."""
        last_error: Exception | None = None
        for attempt in range(1, self.retries + 1):
            try:
                response = await self.client.request(
                    method, self._url(path), headers=self._headers(), **kwargs
                )
            except httpx.TransportError as e:
                last_error = e
                logger.warning(
                    "GitHub %s %s failed (attempt %d/%d): %s",
                    method, path, attempt, self.retries, e,
                )
                continue
            if response.status_code < 500:
                return response
            last_error = httpx.HTTPStatusError(
                f"GitHub returned {response.status_code}",
                request=response.request,
                response=response,
            )
            logger.warning(
                "GitHub %s %s returned %d (attempt %d/%d)",
                method, path, response.status_code, attempt, self.retries,
            )
        logger.error("GitHub %s %s gave up after %d attempts", method, path, self.retries)
        raise UpstreamFailure("Storage backend unavailable") from last_error

    def _fail(self, response: httpx.Response, action: str) -> UpstreamFailure:
        logger.error(
            "GitHub refused to %s: %d %s", action, response.status_code, response.text[:200]
        )
        return UpstreamFailure(f"Failed to {action}")

    async def _get_file(self, path: str) -> tuple[str, str] | None:
        """Return ``(text, sha)`` for a file, or None if it does not exist."""
        response = await self._request("GET", path, params={"ref": self.branch})
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise self._fail(response, f"read {path}")
        data = response.json()
        text = base64.b64decode(data.get("content", "")).decode("utf-8")
        return text, data["sha"]

    async def _put_file(
        self, path: str, text: str, message: str, sha: str | None = None
    ) -> httpx.Response:
        payload = {
            "message": message,
            "content": base64.b64encode(text.encode("utf-8")).decode("ascii"),
            "branch": self.branch,
        }
        if sha is not None:
            payload["sha"] = sha
        return await self._request("PUT", path, json=payload)

    async def _save_file(self, path: str, text: str, message: str, sha: str | None) -> None:
        """Write a file, re-reading its SHA if GitHub reports it stale."""
        for attempt in range(1, self.retries + 1):
            response = await self._put_file(path, text, message, sha)
            if response.status_code in (200, 201):
                return
            if response.status_code not in SHA_MISMATCH or attempt == self.retries:
                raise self._fail(response, f"write {path}")
            logger.warning("Stale SHA for %s, re-reading (attempt %d)", path, attempt)
            current = await self._get_file(path)
            sha = current[1] if current else None

    async def _delete_file(self, path: str, sha: str, message: str) -> None:
        payload = {"message": message, "sha": sha, "branch": self.branch}
        response = await self._request("DELETE", path, json=payload)
        if response.status_code == 404:
            return
        if response.status_code != 200:
            raise self._fail(response, f"delete {path}")

    # ========== Index ==========

    async def _read_index(self, lenient: bool = False) -> tuple[IndexEntries | None, str | None]:
        """Return ``(entries, sha)`` for the post index.

        A corrupt index raises, or with ``lenient`` comes back as ``None``
        entries alongside the SHA needed to overwrite it.
        """
        current = await self._get_file(self.index_path)
        if current is None:
            return [], None
        text, sha = current
        try:
            entries = json.loads(text)
        except json.JSONDecodeError:
            entries = None
        if not isinstance(entries, list):
            logger.error("Post index %s is corrupt", self.index_path)
            if lenient:
                return None, sha
            raise UpstreamFailure("Post index is corrupt")
        return entries, sha

    async def _write_index(
        self,
        mutate: Callable[[IndexEntries], IndexEntries],
        message: str,
        overwrite: bool = False,
    ) -> None:
        """Apply ``mutate`` to the latest index and commit it.

        A concurrent commit makes the SHA stale; the index is then re-read
        and the mutation applied again. With ``overwrite`` the current
        contents are not parsed and ``mutate`` receives an empty list.
        """
        for attempt in range(1, self.retries + 1):
            if overwrite:
                current = await self._get_file(self.index_path)
                entries, sha = [], current[1] if current else None
            else:
                entries, sha = await self._read_index()
            text = json.dumps(mutate(entries), indent=2) + "\n"
            response = await self._put_file(self.index_path, text, message, sha)
            if response.status_code in (200, 201):
                return
            if response.status_code not in SHA_MISMATCH or attempt == self.retries:
                raise self._fail(response, "update the post index")
            logger.warning("Post index changed underneath us, retrying (attempt %d)", attempt)

    # ========== Post documents ==========

    def _parse_post(self, filename: str, text: str) -> Post:
        result = decode(text)
        if isinstance(result, DecodeFailure):
            logger.error("Post %s has malformed frontmatter: %s", filename, result.reason)
            raise UpstreamFailure(f"Post '{filename}' is malformed")
        try:
            fields = result.to_fields()
        except PydanticValidationError as e:
            logger.error("Post %s has invalid frontmatter: %s", filename, e)
            raise UpstreamFailure(f"Post '{filename}' is malformed") from e
        return Post(
            title=fields.title,
            date=fields.date,
            description=fields.description,
            body=fields.body,
            slug=slug_from_filename(filename),
            filename=filename,
        )

    async def _scan_posts(self) -> tuple[list[Post], list[str]]:
        """Read every post document under ``posts_dir``.

        Returns the decoded posts and the filenames that failed to decode.
        """
        response = await self._request("GET", self.posts_dir, params={"ref": self.branch})
        if response.status_code == 404:
            return [], []
        if response.status_code != 200:
            raise self._fail(response, f"list {self.posts_dir}")

        posts, malformed = [], []
        for item in response.json():
            name = item.get("name", "")
            if item.get("type") != "file" or not _is_post_filename(name):
                continue
            current = await self._get_file(self._post_path(name))
            if current is None:
                continue
            try:
                posts.append(self._parse_post(name, current[0]))
            except UpstreamFailure:
                logger.warning("Leaving malformed post %s out of the index", name)
                malformed.append(name)
        return posts, malformed

    # ========== PostStore ==========

    async def list_posts(self) -> list[PostSummary]:
        """List posts from the index."""
        entries, _ = await self._read_index()
        summaries = []
        for entry in entries:
            try:
                summaries.append(
                    PostSummary(
                        title=entry.get("title", ""),
                        date=entry.get("date"),
                        description=entry.get("description", ""),
                        slug=slug_from_filename(entry.get("filename", "")),
                        filename=entry.get("filename", ""),
                    )
                )
            except (PydanticValidationError, AttributeError):
                logger.warning("Skipping malformed index entry: %r", entry)
        # Index order is newest created first, and sort() is stable
        summaries.sort(key=lambda s: s.date, reverse=True)
        return summaries

    async def get_post(self, identifier: str) -> Post | None:
        """Get a post by filename."""
        if not _is_post_filename(identifier):
            return None
        current = await self._get_file(self._post_path(identifier))
        if current is None:
            return None
        return self._parse_post(identifier, current[0])

    async def create_post(self, fields: PostFields) -> Post:
        """Commit a new post file, then add it to the index."""
        slug, filename = derive_identity(fields.title, fields.date)
        path = self._post_path(filename)
        if await self._get_file(path) is not None:
            raise Conflict(f"A post with filename '{filename}' already exists")

        response = await self._put_file(path, encode(fields), f"Add blog post: {fields.title}")
        if response.status_code in SHA_MISMATCH:
            raise Conflict(f"A post with filename '{filename}' already exists")
        if response.status_code not in (200, 201):
            raise self._fail(response, f"write {path}")

        post = Post(**fields.model_dump(), slug=slug, filename=filename)
        entry = _index_entry(post)
        await self._write_index(
            lambda entries: [entry] + [e for e in entries if e.get("filename") != filename],
            f"Index blog post: {filename}",
        )
        logger.info("Created post %s", filename)
        return post

    async def update_post(self, identifier: str, fields: PostFields) -> Post:
        """Rewrite a post file, moving it if title or date changed."""
        current = None
        if _is_post_filename(identifier):
            current = await self._get_file(self._post_path(identifier))
        if current is None:
            raise NotFound(f"Post '{identifier}' not found")
        _, old_sha = current

        slug, filename = derive_identity(fields.title, fields.date)
        document = encode(fields)
        message = f"Update blog post: {fields.title}"

        if filename == identifier:
            await self._save_file(self._post_path(filename), document, message, old_sha)
        else:
            if await self._get_file(self._post_path(filename)) is not None:
                raise Conflict(f"A post with filename '{filename}' already exists")
            await self._save_file(self._post_path(filename), document, message, None)
            await self._delete_file(
                self._post_path(identifier), old_sha, f"Rename blog post: {identifier} -> {filename}"
            )

        post = Post(**fields.model_dump(), slug=slug, filename=filename)
        entry = _index_entry(post)

        def replace(entries: IndexEntries) -> IndexEntries:
            replaced = False
            result = []
            for e in entries:
                name = e.get("filename")
                if name == identifier and not replaced:
                    result.append(entry)
                    replaced = True
                elif name not in (identifier, filename):
                    result.append(e)
            return result if replaced else [entry] + result

        await self._write_index(replace, f"Index blog post: {filename}")
        if filename != identifier:
            logger.info("Renamed post %s -> %s", identifier, filename)
        else:
            logger.info("Updated post %s", filename)
        return post

    async def delete_post(self, identifier: str) -> bool:
        """Delete a post file, then drop it from the index."""
        if not _is_post_filename(identifier):
            return False
        current = await self._get_file(self._post_path(identifier))
        if current is None:
            return False
        await self._delete_file(
            self._post_path(identifier), current[1], f"Delete blog post: {identifier}"
        )
        await self._write_index(
            lambda entries: [e for e in entries if e.get("filename") != identifier],
            f"Unindex blog post: {identifier}",
        )
        logger.info("Deleted post %s", identifier)
        return True

    async def _inspect(self) -> tuple[list[Post], IndexEntries, IndexReport]:
        posts, malformed = await self._scan_posts()
        entries, _ = await self._read_index(lenient=True)
        report = self._compare(posts, entries or [])
        report.index_corrupt = entries is None
        report.malformed_posts = malformed
        return posts, entries or [], report

    async def check_index(self) -> IndexReport:
        """Compare post files against ``posts.json``."""
        _, _, report = await self._inspect()
        return report

    def _compare(self, posts: list[Post], entries: IndexEntries) -> IndexReport:
        expected = {p.filename: _index_entry(p) for p in posts}
        indexed = {e.get("filename"): e for e in entries if isinstance(e, dict)}
        report = IndexReport()
        for filename, entry in expected.items():
            if filename not in indexed:
                report.missing_from_index.append(filename)
            elif any(indexed[filename].get(k) != v for k, v in entry.items()):
                report.outdated_entries.append(filename)
        report.stale_entries = [name for name in indexed if name not in expected]
        return report

    async def rebuild_index(self) -> IndexReport:
        """Regenerate ``posts.json`` from the post files.

        Returns the drift that was repaired. A corrupt index is replaced
        outright.
        """
        posts, entries, report = await self._inspect()
        if report.consistent:
            return report

        position = {e.get("filename"): i for i, e in enumerate(entries) if isinstance(e, dict)}
        # Newest date first; same-day posts keep index order, unindexed ones first
        posts.sort(key=lambda p: position.get(p.filename, -1))
        posts.sort(key=lambda p: p.date, reverse=True)
        rebuilt = [_index_entry(p) for p in posts]
        await self._write_index(lambda _: rebuilt, "Rebuild posts index", overwrite=True)
        logger.info(
            "Rebuilt post index: %d missing, %d stale, %d outdated%s",
            len(report.missing_from_index),
            len(report.stale_entries),
            len(report.outdated_entries),
            ", replaced corrupt index" if report.index_corrupt else "",
        )
        return report
