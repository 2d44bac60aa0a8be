"""NextGenBlog FastAPI application."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import sessionmaker

from nextgenblog.config import Settings
from nextgenblog.core.auth import AuthGate
from nextgenblog.core.database import init_database
from nextgenblog.core.errors import BlogError, NotFound, Unauthorized, UpstreamFailure
from nextgenblog.core.github import GitHubPostStore
from nextgenblog.core.inbox import MessageInbox
from nextgenblog.core.models import (
    AdminIdentity,
    IndexReport,
    Message,
    MessageCreate,
    Post,
    PostFields,
    PostSummary,
)
from nextgenblog.core.parser import render_markdown_with_toc
from nextgenblog.core.storage import DatabasePostStore, PostStore

logger = logging.getLogger(__name__)

templates_path = Path(__file__).parent / "templates"

bearer_scheme = HTTPBearer(auto_error=False)


# ========== Dependencies ==========


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_post_store(request: Request) -> PostStore:
    return request.app.state.posts


def get_inbox(request: Request) -> MessageInbox:
    return request.app.state.inbox


def get_auth_gate(request: Request) -> AuthGate:
    return request.app.state.auth


def get_templates(request: Request) -> Jinja2Templates:
    return request.app.state.templates


BearerDep = Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)]
AuthDep = Annotated[AuthGate, Depends(get_auth_gate)]


def require_admin(auth: AuthDep, credentials: BearerDep) -> AdminIdentity:
    """Route guard for admin endpoints."""
    return auth.authenticate(credentials.credentials if credentials else None)


SettingsDep = Annotated[Settings, Depends(get_settings)]
PostStoreDep = Annotated[PostStore, Depends(get_post_store)]
InboxDep = Annotated[MessageInbox, Depends(get_inbox)]
TemplatesDep = Annotated[Jinja2Templates, Depends(get_templates)]
AdminDep = Annotated[AdminIdentity, Depends(require_admin)]


# Template context helper
def get_context(settings: Settings, **kwargs) -> dict:
    """Create base context for templates."""
    return {"app_title": settings.app_title, **kwargs}


# ========== Error handlers ==========


async def blog_error_handler(request: Request, exc: BlogError) -> JSONResponse:
    """Render taxonomy errors as ``{"error": message}``."""
    if isinstance(exc, UpstreamFailure):
        logger.error(
            "Upstream failure during %s %s: %r",
            request.method,
            request.url.path,
            exc.__cause__ or exc,
        )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report the first invalid field as a 400."""
    errors = exc.errors()
    if not errors:
        return JSONResponse(status_code=400, content={"error": "Invalid request"})
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    error = f"{location}: {message}" if location else message
    return JSONResponse(status_code=400, content={"error": error})


# ========== Public site ==========

site = APIRouter()


@site.get("/", response_class=HTMLResponse)
async def index(
    request: Request, store: PostStoreDep, templates: TemplatesDep, settings: SettingsDep
):
    """Home page - list all posts."""
    posts = await store.list_posts()
    return templates.TemplateResponse(
        request, "index.html", get_context(settings, posts=posts)
    )


@site.get("/posts/{filename}", response_class=HTMLResponse)
async def view_post(
    request: Request,
    filename: str,
    store: PostStoreDep,
    templates: TemplatesDep,
    settings: SettingsDep,
):
    """Render a single post."""
    post = await store.get_post(filename)
    if post is None:
        return templates.TemplateResponse(
            request, "404.html", get_context(settings), status_code=404
        )
    if post.filename != filename:
        # Old link to a renamed post
        return RedirectResponse(url=f"/posts/{post.filename}", status_code=301)

    html_content, toc_html = render_markdown_with_toc(post.body)
    return templates.TemplateResponse(
        request,
        "post.html",
        get_context(settings, post=post, html_content=html_content, toc_html=toc_html),
    )


@site.get("/admin", response_class=HTMLResponse)
async def admin_page(request: Request, templates: TemplatesDep, settings: SettingsDep):
    """Admin shell. Picks up the ``?token=`` left by the OAuth callback."""
    return templates.TemplateResponse(request, "admin.html", get_context(settings))


# ========== Posts API ==========

posts_api = APIRouter(prefix="/api/posts")


@posts_api.get("", response_model=list[PostSummary])
async def list_posts(store: PostStoreDep, admin: AdminDep):
    return await store.list_posts()


@posts_api.get("/public", response_model=list[PostSummary])
async def list_public_posts(store: PostStoreDep):
    return await store.list_posts()


@posts_api.get("/index/check", response_model=IndexReport)
async def check_post_index(store: PostStoreDep, admin: AdminDep):
    """Report drift between post documents and the post index."""
    return await store.check_index()


@posts_api.post("/index/rebuild", response_model=IndexReport)
async def rebuild_post_index(store: PostStoreDep, admin: AdminDep):
    """Regenerate the post index; returns the drift that was repaired."""
    return await store.rebuild_index()


@posts_api.get("/{identifier}", response_model=Post)
async def get_post(identifier: str, store: PostStoreDep):
    post = await store.get_post(identifier)
    if post is None:
        raise NotFound("Post not found")
    return post


@posts_api.post("", response_model=Post)
async def create_post(fields: PostFields, store: PostStoreDep, admin: AdminDep):
    return await store.create_post(fields)


@posts_api.put("/{identifier}", response_model=Post)
async def update_post(
    identifier: str, fields: PostFields, store: PostStoreDep, admin: AdminDep
):
    return await store.update_post(identifier, fields)


@posts_api.delete("/{identifier}")
async def delete_post(identifier: str, store: PostStoreDep, admin: AdminDep):
    if not await store.delete_post(identifier):
        raise NotFound("Post not found")
    return {"success": True, "message": "Post deleted successfully"}


# ========== Contact & messages API ==========

messages_api = APIRouter()


@messages_api.post("/api/contact")
async def submit_contact(fields: MessageCreate, inbox: InboxDep):
    """Store a contact form submission."""
    await inbox.create_message(fields)
    return {"success": True, "message": "Message sent successfully!"}


@messages_api.get("/api/messages", response_model=list[Message])
async def list_messages(inbox: InboxDep, admin: AdminDep, include_archived: bool = False):
    return await inbox.list_messages(include_archived=include_archived)


@messages_api.get("/api/messages/count/unread")
async def count_unread(inbox: InboxDep, admin: AdminDep):
    return {"count": await inbox.count_unread()}


@messages_api.get("/api/messages/{message_id}", response_model=Message)
async def get_message(message_id: int, inbox: InboxDep, admin: AdminDep):
    """Fetch a message; viewing it marks it read."""
    return await inbox.mark_read(message_id)


@messages_api.put("/api/messages/{message_id}/read")
async def mark_message_read(message_id: int, inbox: InboxDep, admin: AdminDep):
    await inbox.mark_read(message_id)
    return {"success": True}


@messages_api.put("/api/messages/{message_id}/archive")
async def archive_message(message_id: int, inbox: InboxDep, admin: AdminDep):
    await inbox.archive(message_id)
    return {"success": True}


@messages_api.put("/api/messages/{message_id}/unarchive")
async def unarchive_message(message_id: int, inbox: InboxDep, admin: AdminDep):
    await inbox.unarchive(message_id)
    return {"success": True}


@messages_api.delete("/api/messages/{message_id}")
async def delete_message(message_id: int, inbox: InboxDep, admin: AdminDep):
    if not await inbox.delete_message(message_id):
        raise NotFound("Message not found")
    return {"success": True}


# ========== Auth API ==========

auth_api = APIRouter(prefix="/api/auth")


@auth_api.get("/github")
async def github_login(auth: AuthDep):
    """Start the GitHub OAuth flow."""
    if not auth.oauth.configured:
        raise BlogError("GitHub OAuth is not configured")
    return RedirectResponse(url=auth.oauth.authorize_url(), status_code=302)


@auth_api.get("/github/callback")
async def github_callback(auth: AuthDep, code: str = ""):
    """Finish the OAuth flow and hand the admin page its credential."""
    token = await auth.login(code)
    return RedirectResponse(url=f"/admin?{urlencode({'token': token})}", status_code=302)


@auth_api.get("/status")
async def auth_status(auth: AuthDep, credentials: BearerDep):
    try:
        identity = auth.authenticate(credentials.credentials if credentials else None)
    except Unauthorized:
        return {"authenticated": False, "username": None}
    return {"authenticated": True, "username": identity.username}


# ========== Application factory ==========


def create_post_store(
    settings: Settings, session_factory: sessionmaker, client: httpx.AsyncClient
) -> PostStore:
    """Build the configured post backend."""
    if settings.post_backend == "github":
        logger.info("Storing posts in GitHub repository %s", settings.github_repo)
        return GitHubPostStore(
            client,
            repo=settings.github_repo,
            token=settings.github_token,
            branch=settings.github_branch,
            posts_dir=settings.posts_dir,
            index_path=settings.index_path,
            retries=settings.github_retries,
        )
    logger.info("Storing posts in the database")
    return DatabasePostStore(session_factory)


def create_app(
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Configuration; read from the environment when omitted.
        http_client: Client for GitHub calls. One is created (and closed on
            shutdown) when omitted.
    """
    settings = settings or Settings()
    # No-op when the server already configured logging
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("nextgenblog").setLevel(settings.log_level.upper())

    client = http_client or httpx.AsyncClient(timeout=10.0)
    auth = AuthGate.from_settings(settings, client)
    engine, session_factory = init_database(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if http_client is None:
            await client.aclose()
        engine.dispose()

    app = FastAPI(title=settings.app_title, debug=settings.debug, lifespan=lifespan)

    app.state.settings = settings
    app.state.posts = create_post_store(settings, session_factory, client)
    app.state.inbox = MessageInbox(session_factory)
    app.state.auth = auth
    app.state.templates = Jinja2Templates(directory=str(templates_path))

    app.add_exception_handler(BlogError, blog_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(site)
    app.include_router(posts_api)
    app.include_router(messages_api)
    app.include_router(auth_api)
    return app
