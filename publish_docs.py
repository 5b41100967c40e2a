import argparse
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ancestors import AncestorCache, AncestorResolver
from confl_client import Ancestor, Confluence, ConfluenceError, Content, CreateContentParams, Label, VersionConflictError
from converter.md_to_confluence_storage import MdToConfluenceStorage, strip_front_matter
from sync_errors import DocumentError, SyncError, UploadConflictError, UploadError

# Every page this tool touches carries this label.
MIGRATION_LABEL = "migrated-from-hugo"

DEFAULT_SOURCE_NAME = "UT Internal Documentation"
DEFAULT_SOURCE_URL = "https://github.com/usertesting/ut_internal_documentation"

# Files that describe their folder rather than a page of their own.
INDEX_FILE_NAMES = ("_index.md", "index.md", "readme.md")


@dataclass
class Cfg:
    endpoint: str
    space: str
    username: str = ""
    password: str = ""
    token: str | None = None
    parents: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    sync_labels_on_update: bool = False
    debug: bool = False
    source_name: str = DEFAULT_SOURCE_NAME
    source_url: str = DEFAULT_SOURCE_URL


@dataclass(frozen=True)
class Document:
    path: str
    title: str
    parents: tuple[str, ...]
    body: str
    front_matter: dict[str, Any] = field(default_factory=dict)


@dataclass
class RunResult:
    urls: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def load_cfg(path: str | None = None, **overrides: Any) -> Cfg:
    """Build the run configuration.

    Precedence: explicit overrides (CLI flags) > environment > YAML file.
    Overrides that are None are ignored.
    """
    raw: dict[str, Any] = {}
    if path:
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}

    env = {
        "endpoint": os.getenv("CONFLUENCE_ENDPOINT"),
        "username": os.getenv("CONFLUENCE_USERNAME"),
        "password": os.getenv("CONFLUENCE_PASSWORD"),
        "token": os.getenv("CONFLUENCE_TOKEN"),
        "space": os.getenv("CONFLUENCE_SPACE"),
    }

    def pick(key: str, default: Any = None) -> Any:
        for source in (overrides, env, raw):
            v = source.get(key)
            if v is not None and v != "" and v != []:
                return v
        return default

    endpoint = str(pick("endpoint", "")).strip()
    if not endpoint:
        raise SystemExit("Confluence endpoint is required (endpoint in config, CONFLUENCE_ENDPOINT or --endpoint)")
    space = str(pick("space", "")).strip()
    if not space:
        raise SystemExit("Confluence space is required (space in config, CONFLUENCE_SPACE or --space)")

    return Cfg(
        endpoint=endpoint,
        space=space,
        username=str(pick("username", "")),
        password=str(pick("password", "")),
        token=pick("token"),
        parents=_as_list(pick("parents")),
        exclude=_as_list(pick("exclude")),
        sync_labels_on_update=_as_bool(pick("sync_labels_on_update", False)),
        debug=_as_bool(pick("debug", False)),
        source_name=str(pick("source_name", DEFAULT_SOURCE_NAME)),
        source_url=str(pick("source_url", DEFAULT_SOURCE_URL)),
    )


def effective_title(doc: Document) -> str:
    if "title" in doc.front_matter:
        return str(doc.front_matter["title"])
    return doc.title


def build_labels(front_matter: dict[str, Any]) -> list[Label]:
    """Migration label first, then one label per front matter tag, in order."""
    labels = [Label(MIGRATION_LABEL)]
    tags = front_matter.get("tags")
    if isinstance(tags, (list, tuple)):
        for tag in tags:
            # labels cannot contain whitespace
            name = re.sub(r"\s+", "-", str(tag).strip())
            if name:
                labels.append(Label(name))
    return labels


def attribution_footer(front_matter: dict[str, Any], *, source_name: str, source_url: str) -> str:
    footer = (
        f"<br /><p style=\"color: #ccc\"><i>Article imported from "
        f"<a href=\"{source_url}\">{source_name}</a>."
    )
    if "date" in front_matter:
        footer += f" Original date of creation: {front_matter['date']}."
    return footer + "</i></p>"


# ----------------------------
# Discovery
# ----------------------------

def discover_documents(root: Path, exclude: list[str] | None = None) -> list[Path]:
    """All Markdown files under root (or root itself), minus excluded ones."""
    patterns = [re.compile(p) for p in (exclude or [])]

    def excluded(p: Path) -> bool:
        s = p.as_posix()
        return any(rx.search(s) for rx in patterns)

    if root.is_file():
        return [] if excluded(root) else [root]

    out: list[Path] = []
    for p in root.rglob("*.md"):
        rel = p.relative_to(root)
        if any(part.startswith(".") for part in rel.parts):
            continue
        if p.is_file() and not excluded(p):
            out.append(p)
    return sorted(out)


def derive_title_and_parents(path: Path, root: Path, parents: list[str] | None = None) -> tuple[str, list[str]]:
    """Title from the file name, parents from the folders between root and file.

    Index files stand for their folder: the title is the folder name and the
    folder itself is not a parent.
    """
    chain = list(parents or [])
    if root.is_file():
        folders: list[str] = []
        root_dir = root.parent
    else:
        folders = list(path.resolve().relative_to(root.resolve()).parent.parts)
        root_dir = root

    if path.name.lower() in INDEX_FILE_NAMES:
        if folders:
            return folders[-1], chain + folders[:-1]
        return root_dir.resolve().name, chain

    return path.stem, chain + folders


def load_document(path: Path, root: Path, cfg: Cfg, conv: MdToConfluenceStorage) -> Document:
    try:
        md_text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DocumentError(str(path), f"could not open file: {e}") from e

    try:
        fm, body = strip_front_matter(md_text)
    except (yaml.YAMLError, ValueError) as e:
        raise DocumentError(str(path), f"could not parse front matter: {e}") from e

    title, parents = derive_title_and_parents(path, root, cfg.parents)
    storage = conv.render(body)
    return Document(
        path=str(path),
        title=title,
        parents=tuple(parents),
        body=storage,
        front_matter=fm,
    )


# ----------------------------
# Publisher
# ----------------------------

class DocsPublisher:
    def __init__(self, cfg: Cfg, *, cache: AncestorCache | None = None):
        self.cfg = cfg
        self.conf = Confluence(
            cfg.endpoint,
            cfg.username,
            cfg.password,
            token=cfg.token,
            debug=cfg.debug,
        )
        self.cache = cache
        self.conv = MdToConfluenceStorage()

    def _resolver(self) -> AncestorResolver:
        return AncestorResolver(self.conf, self.cfg.space, cache=self.cache, debug=self.cfg.debug)

    def upload(self, doc: Document) -> str:
        """Create or update the page for one document and return its tiny URL.

        Existing page (by exact title in the space): bump version, replace the
        body, append the folder page to its ancestors, one update call.
        Labels are only replaced there when sync_labels_on_update is set.

        New page: create it under the folder page, then set labels with a
        second update call.
        """
        title = effective_title(doc)
        storage = doc.body + attribution_footer(
            doc.front_matter,
            source_name=self.cfg.source_name,
            source_url=self.cfg.source_url,
        )
        labels = build_labels(doc.front_matter)

        if self.cfg.debug:
            print("---- RENDERED CONTENT START ---------------------------------")
            print(title)
            print(doc.front_matter)
            print([l.name for l in labels])
            print("---- RENDERED CONTENT END -----------------------------------")

        try:
            found = self.conf.get_content(
                title, self.cfg.space, type="page", limit=1, expand=["version", "body.storage"]
            )
        except ConfluenceError as e:
            raise UploadError(doc.path, title, "checking for existing page", str(e)) from e

        ancestor_id = ""
        if doc.parents:
            ancestor_id = self._resolver().resolve(doc.parents, path=doc.path)

        if found:
            content = found[0]
            # the search does not expand space
            content.space_key = content.space_key or self.cfg.space
            content.version += 1
            content.body = storage
            if ancestor_id:
                content.ancestors.append(Ancestor(ancestor_id))
            if self.cfg.sync_labels_on_update:
                content.labels = labels
            content = self._update(doc, content, "updating content")
            return self.conf.page_url(content)

        params = CreateContentParams(
            title=title,
            space_key=self.cfg.space,
            storage=storage,
            ancestors=[Ancestor(ancestor_id)] if ancestor_id else [],
        )
        try:
            content = self.conf.create_content(params)
        except ConfluenceError as e:
            raise UploadError(doc.path, title, "creating page", str(e)) from e

        content.space_key = content.space_key or self.cfg.space
        content.labels = labels
        content.version += 1
        content = self._update(doc, content, f"adding labels to new page {content.id}")
        return self.conf.page_url(content)

    def _update(self, doc: Document, content: Content, operation: str) -> Content:
        try:
            return self.conf.update_content(content)
        except VersionConflictError as e:
            raise UploadConflictError(doc.path, content.title, operation, str(e)) from e
        except ConfluenceError as e:
            raise UploadError(doc.path, content.title, operation, str(e)) from e

    def publish_file(self, md_path: Path, root: Path | None = None) -> str:
        doc = load_document(md_path, root or md_path, self.cfg, self.conv)
        return self.upload(doc)

    def publish_all(self, roots: list[Path]) -> RunResult:
        """Upload every document under roots, one at a time.

        A failing document is recorded and the run moves on; nothing already
        published is undone.
        """
        result = RunResult()
        for root in roots:
            if not root.exists():
                result.errors[str(root)] = f"Path not found: {root}"
                print(f"error: {root}: path not found")
                continue
            for p in discover_documents(root, self.cfg.exclude):
                try:
                    url = self.publish_file(p, root)
                except SyncError as e:
                    result.errors[str(p)] = str(e)
                    print(f"error: {p}: {e}")
                    continue
                result.urls[str(p)] = url
                print(f"{p}: {url}")

        print(f"published {len(result.urls)} pages, {len(result.errors)} failed")
        return result


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Push a tree of Markdown files to a Confluence space.")
    ap.add_argument("paths", nargs="+", help="Markdown files or directories to publish")
    ap.add_argument("--cfg", default=None, help="Optional YAML config file (e.g. publish.yml)")
    ap.add_argument("-e", "--endpoint", default=None)
    ap.add_argument("-s", "--space", default=None)
    ap.add_argument("-u", "--username", default=None)
    ap.add_argument("-p", "--password", default=None)
    ap.add_argument(
        "--parent",
        dest="parents",
        action="append",
        default=None,
        help="Page title to nest everything under; repeat for deeper nesting",
    )
    ap.add_argument("--exclude", action="append", default=None, help="Regex of paths to skip (repeatable)")
    ap.add_argument(
        "--sync-labels-on-update",
        action="store_true",
        default=None,
        help="Replace labels on existing pages too, not only on new ones",
    )
    ap.add_argument("-d", "--debug", action="store_true", default=None)
    return ap


def cfg_from_args(args: argparse.Namespace) -> Cfg:
    return load_cfg(
        args.cfg,
        endpoint=args.endpoint,
        space=args.space,
        username=args.username,
        password=args.password,
        parents=args.parents,
        exclude=getattr(args, "exclude", None),
        sync_labels_on_update=args.sync_labels_on_update,
        debug=args.debug,
    )


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    cfg = cfg_from_args(args)
    pub = DocsPublisher(cfg)
    result = pub.publish_all([Path(p) for p in args.paths])
    return 1 if result.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
