import argparse
from pathlib import Path

from publish_docs import DocsPublisher, cfg_from_args
from sync_errors import SyncError


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Push a single Markdown file to Confluence.")
    ap.add_argument("md_path")
    ap.add_argument("--root", default=None, help="Docs root the file lives under; folders below it become parent pages")
    ap.add_argument("--cfg", default=None)
    ap.add_argument("-e", "--endpoint", default=None)
    ap.add_argument("-s", "--space", default=None)
    ap.add_argument("-u", "--username", default=None)
    ap.add_argument("-p", "--password", default=None)
    ap.add_argument("--parent", dest="parents", action="append", default=None)
    ap.add_argument("--sync-labels-on-update", action="store_true", default=None)
    ap.add_argument("-d", "--debug", action="store_true", default=None)
    args = ap.parse_args(argv)

    p = Path(args.md_path)
    if not p.is_file():
        raise SystemExit(f"File not found: {args.md_path}")
    root = Path(args.root) if args.root else None
    if root is not None and root.resolve() not in p.resolve().parents:
        raise SystemExit(f"File must be under {root}: {p}")

    pub = DocsPublisher(cfg_from_args(args))
    try:
        url = pub.publish_file(p, root)
    except SyncError as e:
        print(f"error: {e}")
        return 1
    print(url)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
