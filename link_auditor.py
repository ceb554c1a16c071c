"""
link_auditor.py - Post-level link operations used by the admin screens.

Editing attributes, bulk edits, find-and-replace and status resets all
follow the same shape: rewrite a post's content, save it, and keep going with
the next post if one save fails.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from config import Config
from content_mutator import (
    apply_link_updates,
    clear_all_statuses,
    links_matching_url,
    replace_single_url,
    replace_urls,
    update_link,
)
from content_store import ContentStore, PersistenceError
from link_checker import group_links_by_post
from link_extractor import extract_links_from_posts
from models import Link, Post

logger = logging.getLogger(__name__)


@dataclass
class BulkResult:
    updated: Dict[int, Post] = field(default_factory=dict)
    failures: Dict[int, str] = field(default_factory=dict)


class LinkAuditor:
    def __init__(self, config: Config, store: ContentStore):
        self.config = config
        self.store = store

    def load_posts(self) -> List[Post]:
        return self.store.list_posts()

    def collect_links(self, posts: Iterable[Post]) -> List[Link]:
        return extract_links_from_posts(posts, self.config)

    def update_link(self, post: Post, link: Link, **changes) -> Post:
        """Applies attribute changes (href, is_nofollow, is_new_tab, status...) to one link."""
        updated = link.evolve(**changes)
        content = update_link(post.content, link, updated, self.config)
        return self._save(post, content)

    def bulk_update(self, posts: Iterable[Post], links: Iterable[Link], **changes) -> BulkResult:
        """Applies the same changes to many links, one save per post."""
        posts_by_id = {post.id: post for post in posts}
        result = BulkResult()

        for post_id, post_links in group_links_by_post(links).items():
            post = posts_by_id.get(post_id)
            if post is None:
                continue
            updates = [(link, link.evolve(**changes)) for link in post_links]
            content = apply_link_updates(post.content, updates, self.config)
            self._save_isolated(post, content, result)

        return result

    def find_and_replace(self, posts: Iterable[Post], find: str, replace: str) -> BulkResult:
        """Rewrites matching hrefs in every post; untouched posts are not saved."""
        result = BulkResult()
        for post in posts:
            content = replace_urls(post.content, find, replace)
            if content == post.content:
                continue
            self._save_isolated(post, content, result)

        logger.info("Replaced %s with %s in %d posts", find, replace, len(result.updated))
        return result

    def preview_replacement(self, links: Iterable[Link], find: str, replace: str) -> "OrderedDict[str, str]":
        """Maps link ids to the href they would get from find_and_replace."""
        return OrderedDict(
            (link.id, replace + link.href[len(find):])
            for link in links_matching_url(links, find)
        )

    def replace_single(self, post: Post, link_id: str, find: str, replace: str) -> Post:
        content = replace_single_url(post.content, link_id, find, replace, self.config)
        if content == post.content:
            return post
        return self._save(post, content)

    def reset_all_statuses(self, posts: Iterable[Post]) -> BulkResult:
        """Clears stored statuses so every external link goes back to idle."""
        result = BulkResult()
        for post in posts:
            content = clear_all_statuses(post.content, self.config, post_id=post.id)
            if content == post.content:
                continue
            self._save_isolated(post, content, result)
        return result

    def _save(self, post: Post, content: str) -> Post:
        return self.store.write(post.id, content, post.focus_keyphrase)

    def _save_isolated(self, post: Post, content: str, result: BulkResult) -> None:
        try:
            result.updated[post.id] = self._save(post, content)
        except PersistenceError as exc:
            message = f"Failed to update post: {post.title or post.id}"
            logger.error("%s (%s)", message, exc.message)
            result.failures[post.id] = message
