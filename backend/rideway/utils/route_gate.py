"""
Route authorization gate.

classify() maps a navigation path to a route class using static tables, and
decide() turns (route class, session present, session error) into a decision.
Both are pure: no I/O, no clock, no session lookups.
"""

import enum
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

HOME_PATH = "/"
LOGIN_PATH = "/login"
SESSION_EXPIRED_REASON = "session-expired"

PROTECTED_ROUTES = (
    "/settings",
    "/messages",
    "/notifications",
    "/marketplace/create",
    "/marketplace/my-listings",
    "/marketplace/favorites",
    "/forum/create",
    "/admin",
)

AUTH_ONLY_ROUTES = (
    "/login",
    "/register",
    "/verify",
    "/forgot-password",
    "/reset-password",
)

# Never gated: API calls, framework assets, and files
UNGATED_PREFIXES = ("/api", "/_next")
UNGATED_PATHS = ("/favicon.ico",)


class RouteClass(enum.StrEnum):
    public = "public"
    auth_only = "auth_only"
    protected = "protected"


@dataclass(frozen=True)
class Decision:
    redirect_to: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.redirect_to is None


ALLOW = Decision()


def _matches(path: str, route: str) -> bool:
    return path == route or path.startswith(f"{route}/")


def _is_ungated(path: str) -> bool:
    if path in UNGATED_PATHS:
        return True
    if any(_matches(path, prefix) for prefix in UNGATED_PREFIXES):
        return True
    # Static files: last segment has an extension
    return "." in path.rsplit("/", 1)[-1]


def classify(path: str) -> RouteClass:
    path = path.split("?", 1)[0].split("#", 1)[0] or "/"
    if not path.startswith("/"):
        path = f"/{path}"
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    if _is_ungated(path):
        return RouteClass.public
    if any(_matches(path, route) for route in AUTH_ONLY_ROUTES):
        return RouteClass.auth_only
    if any(_matches(path, route) for route in PROTECTED_ROUTES):
        return RouteClass.protected
    return RouteClass.public


def login_redirect(callback_url: Optional[str] = None, session_expired: bool = False) -> str:
    params: dict[str, str] = {}
    if callback_url:
        params["callbackUrl"] = callback_url
    if session_expired:
        params["reason"] = SESSION_EXPIRED_REASON
    if not params:
        return LOGIN_PATH
    return f"{LOGIN_PATH}?{urlencode(params)}"


def decide(
    route_class: RouteClass,
    session_present: bool,
    session_error: bool,
    *,
    callback_url: Optional[str] = None,
) -> Decision:
    """
    Decide whether a navigation proceeds.

    An erroring session counts as no session. A protected redirect caused by
    a failed refresh carries reason=session-expired so the login page can
    explain why the user was signed out.
    """
    authenticated = session_present and not session_error

    if route_class == RouteClass.auth_only:
        return Decision(redirect_to=HOME_PATH) if authenticated else ALLOW

    if route_class == RouteClass.protected:
        if authenticated:
            return ALLOW
        return Decision(
            redirect_to=login_redirect(
                callback_url, session_expired=session_present and session_error
            )
        )

    return ALLOW


def evaluate(path: str, session_present: bool, session_error: bool) -> Decision:
    """classify + decide for one navigation, using the path as the login callback."""
    route_class = classify(path)
    callback_url = path if route_class == RouteClass.protected else None
    return decide(route_class, session_present, session_error, callback_url=callback_url)
