"""
Session-gated navigation.

Routing is a pure state machine: ``reduce(state, event)`` applies an event
and then enforces the access guard. ``Navigator`` adapts that state to and
from the shareable ``page[/subId]`` URL fragment.

Guard rules:
- while a session check is in flight, nothing is redirected
- signed in on landing/login/signup -> default authenticated page
- signed out anywhere else -> landing
- admin pages are not redirected; they resolve to an access-denied view
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple, Union

from ..config import (
    PAGE_ADMIN,
    PAGE_ANALYSIS,
    PAGE_EDUCATION,
    PAGE_LANDING,
    PAGE_LEADERBOARD,
    PAGE_LOGIN,
    PAGE_PROFILE,
    PAGE_SIGNUP,
    PAGE_SIMULATION,
    PAGE_STRATEGY,
    PAGE_TENDERS,
)
from .models import Role

logger = logging.getLogger(__name__)

PUBLIC_ONLY_PAGES = frozenset({PAGE_LANDING, PAGE_LOGIN, PAGE_SIGNUP})
AUTHENTICATED_PAGES = frozenset({
    PAGE_SIMULATION,
    PAGE_ANALYSIS,
    PAGE_STRATEGY,
    PAGE_EDUCATION,
    PAGE_TENDERS,
    PAGE_LEADERBOARD,
    PAGE_ADMIN,
    PAGE_PROFILE,
})
ADMIN_PAGES = frozenset({PAGE_ADMIN})
PAGES_REQUIRING_ID = frozenset({PAGE_PROFILE})

DEFAULT_PUBLIC_PAGE = PAGE_LANDING
DEFAULT_AUTHENTICATED_PAGE = PAGE_SIMULATION


class AuthStatus(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class NavigationState:
    auth: AuthStatus = AuthStatus.AUTHENTICATING
    page_id: str = DEFAULT_PUBLIC_PAGE
    sub_id: Optional[str] = None
    role: Optional[Role] = None


# ============================================================================
# Events
# ============================================================================

@dataclass(frozen=True)
class SessionCheckStarted:
    pass


@dataclass(frozen=True)
class SignedIn:
    role: Role = Role.USER


@dataclass(frozen=True)
class SignedOut:
    pass


@dataclass(frozen=True)
class PageRequested:
    page_id: str
    sub_id: Optional[str] = None


NavigationEvent = Union[SessionCheckStarted, SignedIn, SignedOut, PageRequested]


def enforce_guard(state: NavigationState) -> NavigationState:
    """Return the state the guard allows; unchanged if already consistent."""
    if state.auth == AuthStatus.AUTHENTICATING:
        return state
    if state.auth == AuthStatus.AUTHENTICATED and state.page_id in PUBLIC_ONLY_PAGES:
        logger.debug("Signed-in user on %s, redirecting", state.page_id)
        return replace(state, page_id=DEFAULT_AUTHENTICATED_PAGE, sub_id=None)
    if state.auth == AuthStatus.UNAUTHENTICATED and state.page_id not in PUBLIC_ONLY_PAGES:
        logger.debug("Signed-out user on %s, redirecting", state.page_id)
        return replace(state, page_id=DEFAULT_PUBLIC_PAGE, sub_id=None)
    return state


def reduce(state: NavigationState, event: NavigationEvent) -> NavigationState:
    if isinstance(event, SessionCheckStarted):
        state = replace(state, auth=AuthStatus.AUTHENTICATING)
    elif isinstance(event, SignedIn):
        state = replace(state, auth=AuthStatus.AUTHENTICATED, role=event.role)
    elif isinstance(event, SignedOut):
        state = replace(state, auth=AuthStatus.UNAUTHENTICATED, role=None)
    elif isinstance(event, PageRequested):
        state = replace(state, page_id=event.page_id or DEFAULT_PUBLIC_PAGE, sub_id=event.sub_id or None)
    else:
        raise TypeError(f"Unknown navigation event: {event!r}")
    return enforce_guard(state)


# ============================================================================
# Fragment adapter
# ============================================================================

def parse_fragment(fragment: Optional[str]) -> Tuple[str, Optional[str]]:
    """``"#profile/abc"`` -> ``("profile", "abc")``; empty -> landing."""
    token = (fragment or "").strip().lstrip("#")
    page, _, sub = token.partition("/")
    sub = sub.split("/")[0] if sub else ""
    return (page or DEFAULT_PUBLIC_PAGE, sub or None)


def to_fragment(state: NavigationState) -> str:
    if state.sub_id:
        return f"{state.page_id}/{state.sub_id}"
    return state.page_id


# ============================================================================
# View resolution
# ============================================================================

class ViewKind(str, Enum):
    LOADING = "loading"
    PAGE = "page"
    ACCESS_DENIED = "access_denied"
    MISSING_ID = "missing_id"
    REDIRECTING = "redirecting"


@dataclass(frozen=True)
class View:
    kind: ViewKind
    page_id: str
    sub_id: Optional[str] = None

    def to_dict(self):
        return {"kind": self.kind.value, "page": self.page_id, "sub_id": self.sub_id}


def resolve_view(state: NavigationState) -> View:
    """Decide what the visible view is for a (guarded) navigation state."""
    if state.auth == AuthStatus.AUTHENTICATING:
        return View(ViewKind.LOADING, state.page_id, state.sub_id)

    if state.auth == AuthStatus.UNAUTHENTICATED:
        # Any unknown page falls back to landing for signed-out visitors.
        page = state.page_id if state.page_id in PUBLIC_ONLY_PAGES else DEFAULT_PUBLIC_PAGE
        return View(ViewKind.PAGE, page)

    if state.page_id in ADMIN_PAGES and state.role != Role.ADMIN:
        return View(ViewKind.ACCESS_DENIED, state.page_id)
    if state.page_id in PAGES_REQUIRING_ID and not state.sub_id:
        return View(ViewKind.MISSING_ID, state.page_id)
    if state.page_id not in AUTHENTICATED_PAGES:
        return View(ViewKind.REDIRECTING, state.page_id, state.sub_id)
    return View(ViewKind.PAGE, state.page_id, state.sub_id)


class Navigator:
    """Holds the navigation state of one session and mirrors it to a fragment."""

    def __init__(self, state: Optional[NavigationState] = None):
        self.state = state or NavigationState()

    @property
    def fragment(self) -> str:
        return to_fragment(self.state)

    @property
    def view(self) -> View:
        return resolve_view(self.state)

    def dispatch(self, event: NavigationEvent) -> NavigationState:
        self.state = reduce(self.state, event)
        return self.state

    def navigate(self, fragment: str) -> NavigationState:
        """Apply a page change coming from the URL fragment or the UI."""
        page_id, sub_id = parse_fragment(fragment)
        return self.dispatch(PageRequested(page_id, sub_id))
