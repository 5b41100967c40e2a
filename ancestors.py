"""Folder pages: find or create one placeholder page per local folder.

Each folder in a document's path becomes a page titled after the folder whose
body lists its children. Folder ids are memoized for the whole run in an
AncestorCache, keyed by folder name only, so folder names must be unique across
the tree.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional, Sequence

from confl_client import Ancestor, Confluence, ConfluenceError, CreateContentParams
from sync_errors import AncestorResolutionError

DEFAULT_ANCESTOR_PAGE = (
    "<p>"
    "<ac:structured-macro ac:name=\"children\" ac:schema-version=\"2\">"
    "<ac:parameter ac:name=\"all\">true</ac:parameter>"
    "<ac:parameter ac:name=\"sort\">title</ac:parameter>"
    "</ac:structured-macro>"
    "</p>"
)


class AncestorCache:
    """folder name -> page id, never invalidated.

    get_or_create() holds a per-name lock while the factory runs, so two
    threads resolving the same new folder end up with one page.
    """

    def __init__(self) -> None:
        self._ids: dict[str, str] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, name: str) -> Optional[str]:
        return self._ids.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def clear(self) -> None:
        with self._guard:
            self._ids.clear()
            self._locks.clear()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(name, threading.Lock())

    def get_or_create(self, name: str, factory: Callable[[], str]) -> str:
        cached = self._ids.get(name)
        if cached is not None:
            return cached
        with self._lock_for(name):
            cached = self._ids.get(name)
            if cached is not None:
                return cached
            page_id = factory()
            self._ids[name] = page_id
            return page_id


# Shared by every resolver in the process unless a test passes its own.
PARENT_INDEX = AncestorCache()


class AncestorResolver:
    def __init__(
        self,
        client: Confluence,
        space: str,
        *,
        cache: AncestorCache | None = None,
        debug: bool = False,
    ):
        self.client = client
        self.space = space
        self.cache = PARENT_INDEX if cache is None else cache
        self.debug = debug

    def resolve(self, parents: Sequence[str], *, path: str = "") -> str:
        """Return the id of the innermost folder page, creating missing ones.

        Walks parents outermost first; each new page is created under the
        previous one. Returns "" for an empty path without any remote call.
        Pages created before a failure are left in place.
        """
        ancestor_id = ""
        for parent in parents:
            # an empty segment does not reset the chain; the next folder nests under the previous one
            if not parent:
                continue
            ancestor_id = self.cache.get_or_create(
                parent, lambda: self._find_or_create(parent, ancestor_id, path)
            )
        return ancestor_id

    def _find_or_create(self, parent: str, ancestor_id: str, path: str) -> str:
        if self.debug:
            print(f"Searching for parent {parent}")

        try:
            found = self.client.get_content(parent, self.space, type="page", limit=1)
        except ConfluenceError as e:
            raise AncestorResolutionError(parent, path, f"search failed: {e}") from e
        if found:
            return found[0].id

        if self.debug:
            print(f"Creating parent page '{parent}' with ancestor id {ancestor_id}")

        params = CreateContentParams(
            title=parent,
            space_key=self.space,
            storage=DEFAULT_ANCESTOR_PAGE,
            ancestors=[Ancestor(ancestor_id)] if ancestor_id else [],
        )
        try:
            created = self.client.create_content(params)
        except ConfluenceError as e:
            raise AncestorResolutionError(parent, path, f"create failed: {e}") from e
        return created.id
