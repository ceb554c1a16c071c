"""
content_mutator.py - Writes link changes back into post HTML.

Each helper parses the fragment, touches only the anchors it was asked to
change and re-serializes the rest as parsed. When nothing matches, the input
string is returned untouched.
"""

import logging
import time
from typing import Iterable, List, Optional, Tuple
from uuid import uuid4

from config import Config
from link_extractor import (
    assign_link_ids,
    find_anchors,
    parse_fragment,
    rel_tokens,
    serialize_fragment,
)
from models import Link

logger = logging.getLogger(__name__)

MANAGED_REL_TOKENS = ("nofollow", "external", "noopener", "noreferrer")
URL_BOUNDARY_CHARS = ("/", "?", "#")


def href_matches(href: str, find: str) -> bool:
    """
    True when href is find itself, or find followed by a path, query or
    fragment boundary. ``https://a.com`` matches ``https://a.com/x`` but not
    ``https://a.com.evil.com``.
    """
    if not find or not href.startswith(find):
        return False
    rest = href[len(find):]
    return not rest or rest[0] in URL_BOUNDARY_CHARS


def _rewrite_href(tag, find: str, replace: str) -> bool:
    href = tag.get("href") or ""
    if not href_matches(href, find):
        return False
    tag["href"] = replace + href[len(find):]
    return True


def _anchors_for_link(anchors: list, planned_ids: List[str], original: Link, config: Config) -> list:
    id_attr = config.LINK_ID_ATTRIBUTE
    for tag, link_id in zip(anchors, planned_ids):
        if link_id == original.id:
            if tag.get(id_attr) != link_id:
                tag[id_attr] = link_id
            return [tag]

    # Content written before identities were tracked: match on href and text,
    # only among anchors that are not claimed by another identity yet.
    for tag in anchors:
        if (
            not tag.get(id_attr)
            and (tag.get("href") or "") == original.href
            and tag.get_text() == original.anchor_text
        ):
            tag[id_attr] = original.id
            return [tag]

    logger.debug("No anchor found for link %s (%s)", original.id, original.href)
    return []


def _apply_changes(tag, original: Link, updated: Link, config: Config) -> None:
    if updated.href and updated.href != original.href:
        tag["href"] = updated.href

    if updated.is_new_tab:
        tag["target"] = "_blank"
    else:
        tag.attrs.pop("target", None)

    tokens = [token for token in rel_tokens(tag) if token not in MANAGED_REL_TOKENS]
    if updated.is_nofollow:
        tokens.append("nofollow")
    if updated.is_external:
        tokens.append("external")
        if updated.is_new_tab:
            tokens.extend(("noopener", "noreferrer"))

    rel = " ".join(dict.fromkeys(tokens))
    if rel:
        tag["rel"] = rel
    else:
        tag.attrs.pop("rel", None)

    tag[config.LINK_STATUS_ATTRIBUTE] = str(updated.status)


def apply_link_updates(
    content: str,
    updates: Iterable[Tuple[Link, Link]],
    config: Config,
) -> str:
    """Applies several (original, updated) pairs against a single parse."""
    updates = list(updates)
    soup = parse_fragment(content)
    anchors = find_anchors(soup)
    # Identities are planned once, against the markup as it was read.
    planned = {
        post_id: assign_link_ids(anchors, post_id, config)
        for post_id in {original.post_id for original, _ in updates}
    }

    changed = False
    for original, updated in updates:
        for tag in _anchors_for_link(anchors, planned[original.post_id], original, config):
            _apply_changes(tag, original, updated, config)
            changed = True

    return serialize_fragment(soup) if changed else content


def update_link(content: str, original: Link, updated: Link, config: Config) -> str:
    """
    Rewrites the anchor identified by ``original.id`` so it reflects
    ``updated``: href, target, managed rel tokens and status.
    """
    return apply_link_updates(content, [(original, updated)], config)


def replace_urls(content: str, find: str, replace: str) -> str:
    """Replaces the ``find`` prefix of every matching anchor href."""
    if not find:
        return content

    soup = parse_fragment(content)
    changed = False
    for tag in find_anchors(soup):
        changed = _rewrite_href(tag, find, replace) or changed

    return serialize_fragment(soup) if changed else content


def replace_single_url(content: str, link_id: str, find: str, replace: str, config: Config) -> str:
    """Same as replace_urls, limited to the anchor carrying ``link_id``."""
    if not find:
        return content

    soup = parse_fragment(content)
    for tag in find_anchors(soup):
        if tag.get(config.LINK_ID_ATTRIBUTE) == link_id:
            if _rewrite_href(tag, find, replace):
                return serialize_fragment(soup)
            break

    return content


def _random_link_id(index: int) -> str:
    return f"{int(time.time() * 1000)}-{uuid4().hex[:9]}-{index}"


def clear_all_statuses(content: str, config: Config, post_id: Optional[int] = None) -> str:
    """
    Drops the status attribute from every anchor. Anchors without an identity
    receive one (see assign_link_ids): the positional id when the post is
    known, otherwise a random unique token.
    """
    soup = parse_fragment(content)
    anchors = find_anchors(soup)
    if not anchors:
        return content

    make_id = _random_link_id if post_id is None else None
    link_ids = assign_link_ids(anchors, post_id, config, make_id=make_id)

    for tag, link_id in zip(anchors, link_ids):
        tag.attrs.pop(config.LINK_STATUS_ATTRIBUTE, None)
        if tag.get(config.LINK_ID_ATTRIBUTE) != link_id:
            tag[config.LINK_ID_ATTRIBUTE] = link_id

    return serialize_fragment(soup)


def links_matching_url(links: Iterable[Link], find: str) -> List[Link]:
    """Links whose href would be rewritten by replace_urls(find, ...)."""
    return [link for link in links if href_matches(link.href, find)]
