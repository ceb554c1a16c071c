"""
main.py - Command line entry point for the link auditor
"""

import argparse
import asyncio
import logging
import sys

from config import Config
from content_store import WordPressContentStore
from link_auditor import LinkAuditor
from link_checker import CheckProgress, LinkChecker
from models import LinkStatus

# Set up logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Audit hyperlinks in WordPress posts.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    links = subparsers.add_parser("links", help="List links found in posts")
    links.add_argument("--post", type=int, action="append", dest="posts", help="Only this post id (repeatable)")
    links.add_argument("--status", choices=[status.value for status in LinkStatus])
    links.add_argument("--external", action="store_true", help="Only external links")

    check = subparsers.add_parser("check", help="Check external links for reachability")
    check.add_argument("--post", type=int, action="append", dest="posts", help="Only this post id (repeatable)")

    replace = subparsers.add_parser("replace", help="Find and replace a URL in every post")
    replace.add_argument("find")
    replace.add_argument("replace")

    subparsers.add_parser("reset", help="Clear every stored link status")
    return parser


def _select_posts(posts, post_ids):
    if not post_ids:
        return posts
    wanted = set(post_ids)
    return [post for post in posts if post.id in wanted]


def _print_progress(progress: CheckProgress) -> None:
    print(f"Checked {progress.current}/{progress.total} URLs", flush=True)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    config = Config()
    store = WordPressContentStore(config)
    auditor = LinkAuditor(config, store)
    posts = _select_posts(auditor.load_posts(), getattr(args, "posts", None))

    if args.command == "links":
        for link in auditor.collect_links(posts):
            if args.external and not link.is_external:
                continue
            if args.status and link.status != args.status:
                continue
            kind = "external" if link.is_external else "internal"
            print(f"{link.post_id}\t{link.id}\t{kind}\t{link.status}\t{link.href}\t{link.anchor_text}")
        return 0

    if args.command == "check":
        checker = LinkChecker(config, store, on_progress=_print_progress)
        selected = [link for link in auditor.collect_links(posts) if link.is_external]
        report = asyncio.run(checker.check_selected(selected, posts))
        for message in report.failures.values():
            print(message, file=sys.stderr)
        return 1 if report.failures else 0

    if args.command == "replace":
        result = auditor.find_and_replace(posts, args.find, args.replace)
    else:
        result = auditor.reset_all_statuses(posts)

    print(f"Updated {len(result.updated)} posts")
    for message in result.failures.values():
        print(message, file=sys.stderr)
    return 1 if result.failures else 0


if __name__ == '__main__':
    sys.exit(main())
