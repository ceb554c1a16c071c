"""
content_store.py - Reads and writes post content for the link auditor.

The WordPress store talks to the plugin's REST namespace:

GET  posts          -> [post, ...]
GET  posts/<id>     -> post
POST posts/<id>     { "content": "<html>", "focusKeyphrase": "<optional>" } -> post

where a post looks like
{
    "id": 12,
    "title": "...",
    "content": "<html>",
    "lastModified": "2024-01-10T12:00:00+00:00",
    "url": "https://mysite.com/post",
    "focusKeyphrase": null
}
"""

import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import requests
from requests.auth import HTTPBasicAuth

from config import Config
from models import Post

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when a post's content could not be written back."""

    def __init__(self, post_id: int, message: str):
        super().__init__(message)
        self.post_id = post_id
        self.message = message


class ContentStore(ABC):
    @abstractmethod
    def read(self, post_id: int) -> Post:
        """Returns the current snapshot of a post, or raises LookupError."""

    @abstractmethod
    def write(self, post_id: int, content: str, focus_keyphrase: Optional[str] = None) -> Post:
        """Atomically replaces a post's content and returns the new snapshot."""

    @abstractmethod
    def list_posts(self) -> List[Post]:
        """Returns all posts the auditor may work on."""


class WordPressContentStore(ContentStore):
    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        self.base_url = config.WP_API_URL
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        if config.WP_NONCE:
            self.session.headers["X-WP-Nonce"] = config.WP_NONCE
        if config.WP_USERNAME and config.WP_APP_PASSWORD:
            self.session.auth = HTTPBasicAuth(config.WP_USERNAME, config.WP_APP_PASSWORD)

    def list_posts(self) -> List[Post]:
        response = self.session.get(f"{self.base_url}posts", timeout=self.config.WP_TIMEOUT)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, list):
            logger.warning("Unexpected posts payload: %r", type(payload))
            return []
        return [Post.from_api(item) for item in payload]

    def read(self, post_id: int) -> Post:
        response = self.session.get(
            f"{self.base_url}posts/{post_id}",
            timeout=self.config.WP_TIMEOUT,
        )
        if response.status_code == 404:
            raise LookupError(f"Post {post_id} not found")
        response.raise_for_status()
        return Post.from_api(response.json())

    def write(self, post_id: int, content: str, focus_keyphrase: Optional[str] = None) -> Post:
        body = {"content": content}
        if focus_keyphrase is not None:
            body["focusKeyphrase"] = focus_keyphrase

        try:
            response = self.session.post(
                f"{self.base_url}posts/{post_id}",
                json=body,
                timeout=self.config.WP_TIMEOUT,
            )
        except requests.RequestException as exc:
            logger.warning("Saving post %s failed: %s", post_id, exc)
            raise PersistenceError(post_id, f"Could not reach the content store: {exc}") from exc

        if not response.ok:
            try:
                message = response.json().get("message")
            except ValueError:
                message = None
            message = message or f"HTTP error! status: {response.status_code}"
            logger.warning("Saving post %s failed: %s", post_id, message)
            raise PersistenceError(post_id, message)

        try:
            return Post.from_api(response.json())
        except (ValueError, KeyError) as exc:
            raise PersistenceError(post_id, "Content store returned an invalid post") from exc


class InMemoryContentStore(ContentStore):
    """Dictionary-backed store for dry runs and tests."""

    def __init__(self, posts: Iterable[Post] = ()):
        self._posts: Dict[int, Post] = {post.id: copy.copy(post) for post in posts}
        self.writes: List[int] = []

    def list_posts(self) -> List[Post]:
        return [copy.copy(post) for post in self._posts.values()]

    def read(self, post_id: int) -> Post:
        try:
            return copy.copy(self._posts[post_id])
        except KeyError:
            raise LookupError(f"Post {post_id} not found") from None

    def write(self, post_id: int, content: str, focus_keyphrase: Optional[str] = None) -> Post:
        current = self._posts.get(post_id)
        if current is None:
            raise PersistenceError(post_id, f"Post {post_id} not found")

        updated = copy.copy(current)
        updated.content = content
        if focus_keyphrase is not None:
            updated.focus_keyphrase = focus_keyphrase
        updated.last_modified = datetime.now(timezone.utc).isoformat()

        self._posts[post_id] = updated
        self.writes.append(post_id)
        return copy.copy(updated)
