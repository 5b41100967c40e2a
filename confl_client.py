from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import requests

from sync_errors import SyncError


class ConfluenceError(SyncError):
    def __init__(self, message: str, status: int | None = None, response: str = ""):
        super().__init__(message)
        self.status = status
        self.response = response


class VersionConflictError(ConfluenceError):
    """Update rejected because the page version no longer matches."""


# ----------------------------
# Models
# ----------------------------

@dataclass
class Ancestor:
    id: str


@dataclass
class Label:
    name: str
    prefix: str = "global"


@dataclass
class Content:
    id: str
    title: str
    space_key: str
    body: str = ""
    version: int = 1
    type: str = "page"
    ancestors: list[Ancestor] = field(default_factory=list)
    labels: list[Label] = field(default_factory=list)
    tinyui: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Content":
        body = ((data.get("body") or {}).get("storage") or {}).get("value") or ""
        labels = ((data.get("metadata") or {}).get("labels") or {}).get("results") or []
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            space_key=(data.get("space") or {}).get("key") or "",
            body=body,
            version=int((data.get("version") or {}).get("number") or 1),
            type=data.get("type") or "page",
            ancestors=[Ancestor(str(a["id"])) for a in (data.get("ancestors") or [])],
            labels=[Label(l["name"], l.get("prefix") or "global") for l in labels],
            tinyui=(data.get("_links") or {}).get("tinyui") or "",
        )

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "space": {"key": self.space_key},
            "version": {"number": self.version},
            "body": {"storage": {"value": self.body, "representation": "storage"}},
        }
        # omitted ancestors leave the page where it is
        if self.ancestors:
            payload["ancestors"] = [{"id": a.id} for a in self.ancestors]
        if self.labels:
            payload["metadata"] = {
                "labels": [{"prefix": l.prefix, "name": l.name} for l in self.labels]
            }
        return payload


@dataclass
class CreateContentParams:
    title: str
    space_key: str
    storage: str
    type: str = "page"
    ancestors: list[Ancestor] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "title": self.title,
            "space": {"key": self.space_key},
            "body": {"storage": {"value": self.storage, "representation": "storage"}},
        }
        if self.ancestors:
            payload["ancestors"] = [{"id": a.id} for a in self.ancestors]
        return payload


# ----------------------------
# Client
# ----------------------------

class Confluence:
    def __init__(
        self,
        endpoint: str,
        username: str = "",
        password: str = "",
        *,
        token: Optional[str] = None,
        debug: bool = False,
        timeout: int = 60,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.base = f"{self.endpoint}/rest/api"
        self.debug = debug
        self.timeout = timeout
        self.s = requests.Session()
        self.s.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        if token:
            self.s.headers["Authorization"] = f"Bearer {token}"
        elif username:
            self.s.auth = (username, password)

    def _request(self, method: str, path: str, what: str, **kwargs) -> requests.Response:
        url = f"{self.base}{path}"
        if self.debug:
            print(f"{method} {url} {kwargs.get('params') or ''}".rstrip())
        try:
            r = self.s.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ConfluenceError(f"{what} failed: {e}") from e
        if r.status_code == 409 and method == "PUT":
            raise VersionConflictError(f"{what} failed: version conflict\n{r.text}", r.status_code, r.text)
        if not r.ok:
            raise ConfluenceError(f"{what} failed: {r.status_code}\n{r.text}", r.status_code, r.text)
        return r

    def get_content(
        self,
        title: str,
        space: str,
        *,
        type: str = "page",
        limit: int = 1,
        expand: Iterable[str] | None = None,
    ) -> list[Content]:
        """Exact title search in a space."""
        params: dict[str, Any] = {"title": title, "spaceKey": space, "type": type, "limit": limit}
        if expand:
            params["expand"] = ",".join(expand)
        r = self._request("GET", "/content", "Search content", params=params)
        results = r.json().get("results", []) or []
        return [Content.from_json(it) for it in results]

    def create_content(self, params: CreateContentParams) -> Content:
        r = self._request("POST", "/content", "Create page", json=params.to_json())
        return Content.from_json(r.json())

    def update_content(self, content: Content) -> Content:
        r = self._request(
            "PUT",
            f"/content/{content.id}",
            f"Update page {content.id}",
            json=content.to_json(),
        )
        return Content.from_json(r.json())

    def page_url(self, content: Content) -> str:
        return self.endpoint + content.tinyui
