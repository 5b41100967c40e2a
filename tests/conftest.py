from __future__ import annotations

import sys
from pathlib import Path

import pytest


# Repo is a collection of scripts, not an installed package.
# Make project root importable for pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ancestors import PARENT_INDEX  # noqa: E402
from confl_client import ConfluenceError, Content, CreateContentParams, Label  # noqa: E402


class FakeConfluence:
    """In-memory stand-in for confl_client.Confluence.

    Pages live in a dict keyed by (space, title). Every call is recorded so
    tests can count remote round-trips.
    """

    endpoint = "https://wiki.example.com"

    def __init__(self) -> None:
        self.pages: dict[tuple[str, str], Content] = {}
        self.searches: list[tuple[str, str, tuple[str, ...]]] = []  # (space, title, expand)
        self.created: list[CreateContentParams] = []
        self.updated: list[Content] = []

        self._fail_search: set[str] = set()
        self._fail_create: set[str] = set()
        self._fail_update: set[str] = set()
        self._next_id = 1000

    # --- controls ---
    def add_page(self, space: str, title: str, *, version: int = 1, ancestors=None, labels=None) -> Content:
        page = Content(
            id=str(self._next_id),
            title=title,
            space_key=space,
            body="<p>old</p>",
            version=version,
            ancestors=list(ancestors or []),
            labels=[Label(n) for n in (labels or [])],
            tinyui=f"/x/{self._next_id}",
        )
        self._next_id += 1
        self.pages[(space, title)] = page
        return page

    def fail_search_for_title(self, title: str) -> None:
        self._fail_search.add(title)

    def fail_create_for_title(self, title: str) -> None:
        self._fail_create.add(title)

    def fail_update_for_title(self, title: str) -> None:
        self._fail_update.add(title)

    @property
    def calls(self) -> int:
        return len(self.searches) + len(self.created) + len(self.updated)

    def _copy(self, page: Content) -> Content:
        return Content(
            id=page.id,
            title=page.title,
            space_key=page.space_key,
            body=page.body,
            version=page.version,
            ancestors=list(page.ancestors),
            labels=list(page.labels),
            tinyui=page.tinyui,
        )

    # --- methods used by the publisher ---
    def get_content(self, title: str, space: str, *, type: str = "page", limit: int = 1, expand=None):
        self.searches.append((space, title, tuple(expand or ())))
        if title in self._fail_search:
            raise ConfluenceError("Search content failed: 500\nboom", 500, "boom")
        page = self.pages.get((space, title))
        if page is None:
            return []
        # space, ancestors and labels are only returned when expanded
        found = Content(
            id=page.id,
            title=page.title,
            space_key="",
            body=page.body if "body.storage" in (expand or ()) else "",
            version=page.version,
            tinyui=page.tinyui,
        )
        return [found][:limit]

    def create_content(self, params: CreateContentParams) -> Content:
        if params.title in self._fail_create:
            raise ConfluenceError("Create page failed: 400\nA page with this title already exists", 400)
        self.created.append(params)
        page = Content(
            id=str(self._next_id),
            title=params.title,
            space_key=params.space_key,
            body=params.storage,
            version=1,
            ancestors=list(params.ancestors),
            tinyui=f"/x/{self._next_id}",
        )
        self._next_id += 1
        self.pages[(params.space_key, params.title)] = page
        return self._copy(page)

    def update_content(self, content: Content) -> Content:
        if content.title in self._fail_update:
            raise ConfluenceError(f"Update page {content.id} failed: 500\nboom", 500)
        self.updated.append(self._copy(content))
        stored = self.pages[(content.space_key, content.title)]
        stored.version = content.version
        stored.body = content.body
        # omitted ancestors leave the page where it is
        if content.ancestors:
            stored.ancestors = list(content.ancestors)
        # omitted labels leave the remote set alone
        if content.labels:
            stored.labels = list(content.labels)
        return self._copy(stored)

    def page_url(self, content: Content) -> str:
        return self.endpoint + content.tinyui


@pytest.fixture
def fake() -> FakeConfluence:
    return FakeConfluence()


@pytest.fixture(autouse=True)
def _reset_parent_index():
    PARENT_INDEX.clear()
    yield
    PARENT_INDEX.clear()
