"""
link_checker.py - Checks selected external links across many posts.

For every post in the selection the checker:

1. marks the selected anchors ``checking`` and saves once,
2. probes each distinct href once, in fixed-size concurrent batches,
3. saves a checkpoint after every batch so finished work survives an
   interrupted run,
4. reconciles whatever the checkpoints did not settle,
5. pauses briefly before moving to the next post.

A failing probe only marks its URL broken. A failing save only abandons the
post it belongs to.
"""

import asyncio
import functools
import logging
from collections import Counter, OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from config import Config
from content_mutator import apply_link_updates, update_link
from content_store import ContentStore, PersistenceError
from link_extractor import extract_links
from link_health import LinkProber
from models import Link, LinkStatus, Post

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckProgress:
    current: int
    total: int


@dataclass
class CheckReport:
    total: int = 0
    probed: int = 0
    statuses: Dict[int, Dict[str, LinkStatus]] = field(default_factory=dict)
    posts: Dict[int, Post] = field(default_factory=dict)
    failures: Dict[int, str] = field(default_factory=dict)
    skipped: List[int] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failures and not self.skipped


def group_links_by_post(links: Iterable[Link]) -> "OrderedDict[Optional[int], List[Link]]":
    groups: "OrderedDict[Optional[int], List[Link]]" = OrderedDict()
    for link in links:
        groups.setdefault(link.post_id, []).append(link)
    return groups


def unique_hrefs(links: Iterable[Link]) -> List[str]:
    return list(dict.fromkeys(link.href for link in links))


class LinkChecker:
    def __init__(
        self,
        config: Config,
        store: ContentStore,
        prober: Optional[LinkProber] = None,
        *,
        on_progress: Optional[Callable[[CheckProgress], None]] = None,
        on_post_updated: Optional[Callable[[Post], None]] = None,
        on_post_error: Optional[Callable[[Post, PersistenceError], None]] = None,
    ):
        self.config = config
        self.store = store
        self.prober = prober or LinkProber(config)
        self.on_progress = on_progress
        self.on_post_updated = on_post_updated
        self.on_post_error = on_post_error
        self._post_locks: Dict[int, asyncio.Lock] = {}
        self._lock_users: Counter = Counter()

    @asynccontextmanager
    async def _locked_post(self, post_id: int):
        """Serializes runs on one post; the lock is dropped once nobody holds or awaits it."""
        lock = self._post_locks.get(post_id)
        if lock is None:
            lock = self._post_locks[post_id] = asyncio.Lock()
        self._lock_users[post_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[post_id] -= 1
            if not self._lock_users[post_id]:
                del self._lock_users[post_id]
                del self._post_locks[post_id]

    async def check_selected(self, selected_links: Iterable[Link], posts: Iterable[Post]) -> CheckReport:
        """
        Checks every selected external link and writes the results back into
        the owning posts. Returns a report of statuses, saved posts and
        per-post failures.
        """
        posts_by_id = {post.id: post for post in posts}
        groups = group_links_by_post(link for link in selected_links if link.is_external)

        report = CheckReport(
            total=sum(
                len(unique_hrefs(links))
                for post_id, links in groups.items()
                if post_id in posts_by_id
            )
        )
        if not groups:
            return report

        semaphore = asyncio.Semaphore(self.config.CHECK_MAX_CONCURRENCY)
        self._notify_progress(report)

        for position, (post_id, links) in enumerate(groups.items()):
            post = posts_by_id.get(post_id)
            if post is None:
                logger.warning("Skipping %d selected links of unknown post %s", len(links), post_id)
                report.skipped.append(post_id)
                continue

            async with self._locked_post(post_id):
                try:
                    await self._check_post(post, links, report, semaphore)
                except PersistenceError as exc:
                    message = f"Failed to check links in post: {post.title or post.id}"
                    logger.error("%s (%s)", message, exc.message)
                    report.failures[post.id] = message
                    if self.on_post_error:
                        self.on_post_error(post, exc)

            if position < len(groups) - 1:
                await asyncio.sleep(self.config.POST_DELAY_SECONDS)

        logger.info(
            "Checked %d/%d distinct URLs across %d posts (%d failed)",
            report.probed,
            report.total,
            len(groups),
            len(report.failures),
        )
        return report

    async def check_link(self, link: Link, post: Post) -> Post:
        """
        Checks one link and saves both the in-flight and the final status.
        Internal links are left alone.
        """
        if not link.is_external:
            return post

        async with self._locked_post(post.id):
            checking = link.evolve(status=LinkStatus.CHECKING)
            post = await self._save(post, update_link(post.content, link, checking, self.config))

            status = await self._probe(link.href, asyncio.Semaphore(1))
            final = link.evolve(status=status)
            return await self._save(post, update_link(post.content, checking, final, self.config))

    async def _check_post(
        self,
        post: Post,
        links: List[Link],
        report: CheckReport,
        semaphore: asyncio.Semaphore,
    ) -> None:
        checking_updates = [(link, link.evolve(status=LinkStatus.CHECKING)) for link in links]
        post = await self._save(post, apply_link_updates(post.content, checking_updates, self.config))

        hrefs = unique_hrefs(links)
        statuses: Dict[str, LinkStatus] = {}
        batch_size = self.config.CHECK_BATCH_SIZE

        for start in range(0, len(hrefs), batch_size):
            batch = hrefs[start:start + batch_size]
            results = await asyncio.gather(*(self._probe(href, semaphore) for href in batch))
            batch_statuses = dict(zip(batch, results))
            statuses.update(batch_statuses)

            report.probed += len(batch)
            self._notify_progress(report)

            post = await self._save(post, self._propagate(post.content, links, batch_statuses))

            if start + batch_size < len(hrefs):
                await asyncio.sleep(self.config.BATCH_DELAY_SECONDS)

        post = await self._reconcile(post, links, statuses)

        report.statuses[post.id] = statuses
        report.posts[post.id] = post

    async def _reconcile(self, post: Post, links: List[Link], statuses: Dict[str, LinkStatus]) -> Post:
        """Saves once more only if some selected anchor lacks its final status."""
        current = {link.id: link.status for link in extract_links(post.content, post.id, self.config)}
        pending = [
            link for link in links
            if link.href in statuses and current.get(link.id) != statuses[link.href]
        ]
        if not pending:
            return post

        logger.debug("Reconciling %d links in post %s", len(pending), post.id)
        return await self._save(post, self._propagate(post.content, pending, statuses))

    def _propagate(self, content: str, links: List[Link], statuses: Dict[str, LinkStatus]) -> str:
        updates = [
            (link.evolve(status=LinkStatus.CHECKING), link.evolve(status=statuses[link.href]))
            for link in links
            if link.href in statuses
        ]
        return apply_link_updates(content, updates, self.config)

    async def _probe(self, href: str, semaphore: asyncio.Semaphore) -> LinkStatus:
        async with semaphore:
            try:
                result = await self.prober.check_link_status(href)
            except Exception:
                logger.exception("Probe of %s raised, marking broken", href)
                return LinkStatus.BROKEN
        return LinkStatus.OK if result == LinkStatus.OK else LinkStatus.BROKEN

    async def _save(self, post: Post, content: str) -> Post:
        """Writes content through the store; unchanged content is not written."""
        if content == post.content:
            return post
        loop = asyncio.get_running_loop()
        saved = await loop.run_in_executor(
            None,
            functools.partial(self.store.write, post.id, content, post.focus_keyphrase),
        )
        if self.on_post_updated:
            self.on_post_updated(saved)
        return saved

    def _notify_progress(self, report: CheckReport) -> None:
        if self.on_progress:
            self.on_progress(CheckProgress(current=report.probed, total=report.total))
