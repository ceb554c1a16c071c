"""
link_extractor.py - Turns post HTML into an ordered list of Link records.

Every anchor gets a stable identity. Anchors that do not carry one yet are
given ``post-{post_id}-link-{index}`` where index is the zero-based position
among all anchors of the fragment. When that id is already stored on another
anchor, a numeric suffix is added (``post-{post_id}-link-{index}-{n}``).
"""

import logging
from typing import Callable, Iterable, List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup
from bs4.dammit import EntitySubstitution
from bs4.formatter import HTMLFormatter

from config import Config
from models import Link, LinkStatus, Post

logger = logging.getLogger(__name__)


def _substitute_entities(text: str) -> str:
    return EntitySubstitution.substitute_xml(text).replace("\xa0", "&nbsp;")


class SourceOrderFormatter(HTMLFormatter):
    """Keeps attributes in document order instead of sorting them."""

    def attributes(self, tag):
        if tag.attrs is None:
            return []
        return list(tag.attrs.items())


FRAGMENT_FORMATTER = SourceOrderFormatter(
    entity_substitution=_substitute_entities,
    void_element_close_prefix=None,
)


def parse_fragment(content: str) -> BeautifulSoup:
    """Parses an HTML fragment without adding html/body wrappers."""
    return BeautifulSoup(content or "", "html.parser")


def serialize_fragment(soup: BeautifulSoup) -> str:
    return soup.decode(formatter=FRAGMENT_FORMATTER)


def find_anchors(soup: BeautifulSoup) -> list:
    return soup.find_all("a")


def synthesize_link_id(post_id: Optional[int], index: int) -> str:
    if post_id is None:
        return f"link-{index}"
    return f"post-{post_id}-link-{index}"


def assign_link_ids(
    anchors: list,
    post_id: Optional[int],
    config: Config,
    make_id: Optional[Callable[[int], str]] = None,
) -> List[str]:
    """
    Returns one identity per anchor, in document order, without touching the
    markup.

    Stored ids are kept. Anchors without one (or repeating an id an earlier
    anchor already holds) get ``make_id(index)``, by default the positional
    id, suffixed until it is unused in the fragment.
    """
    id_attr = config.LINK_ID_ATTRIBUTE
    make_id = make_id or (lambda index: synthesize_link_id(post_id, index))
    stored = [tag.get(id_attr) or None for tag in anchors]

    taken = set(filter(None, stored))
    seen = set()
    ids = []
    for index, link_id in enumerate(stored):
        if link_id and link_id not in seen:
            seen.add(link_id)
            ids.append(link_id)
            continue

        candidate = link_id = make_id(index)
        suffix = 1
        while link_id in taken:
            link_id = f"{candidate}-{suffix}"
            suffix += 1
        taken.add(link_id)
        ids.append(link_id)
    return ids


def rel_tokens(tag) -> List[str]:
    """Returns the rel attribute of a tag as a list of tokens."""
    rel = tag.get("rel")
    if not rel:
        return []
    if isinstance(rel, str):
        return rel.split()
    return [token for value in rel for token in value.split()]


def is_external_href(href: str, config: Config) -> bool:
    """
    Decides whether an href points away from the configured site.

    Hrefs that resolve to a hostname are compared against the site host.
    Hrefs with no resolvable hostname (mailto:, tel:, garbage) count as
    external unless they are clearly site-relative.
    """
    href = href or ""
    try:
        hostname = urlparse(urljoin(f"{config.SITE_URL}/", href)).hostname
    except ValueError:
        hostname = None

    if hostname:
        return hostname != config.SITE_HOST

    return not (
        href.startswith("/")
        or href.startswith("#")
        or href.startswith(config.SITE_URL)
    )


def link_from_tag(tag, link_id: str, config: Config, post_id: Optional[int] = None) -> Link:
    href = tag.get("href") or ""
    external = is_external_href(href, config)

    status = LinkStatus.parse(tag.get(config.LINK_STATUS_ATTRIBUTE))
    if not external:
        # Internal links are never probed.
        status = LinkStatus.OK
    elif status is None:
        status = LinkStatus.IDLE

    return Link(
        id=link_id,
        href=href,
        anchor_text=tag.get_text(),
        is_external=external,
        is_nofollow="nofollow" in rel_tokens(tag),
        is_new_tab=tag.get("target") == "_blank",
        status=status,
        post_id=post_id,
    )


def extract_links(content: str, post_id: Optional[int], config: Config) -> List[Link]:
    """
    Extracts the links of one post's content in document order.

    Malformed markup is tolerated: a fragment the parser rejects yields an
    empty list.
    """
    if not content:
        return []

    try:
        soup = parse_fragment(content)
    except ParserRejectedMarkup as exc:
        logger.warning("Could not parse content of post %s: %s", post_id, exc)
        return []

    anchors = find_anchors(soup)
    return [
        link_from_tag(tag, link_id, config, post_id)
        for tag, link_id in zip(anchors, assign_link_ids(anchors, post_id, config))
    ]


def extract_links_from_posts(posts: Iterable[Post], config: Config) -> List[Link]:
    """Flattens the links of many posts, each tagged with its owning post id."""
    links: List[Link] = []
    for post in posts:
        links.extend(extract_links(post.content, post.id, config))
    return links
