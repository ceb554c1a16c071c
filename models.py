"""
models.py - Data types shared by the extractor, mutator, prober and checker.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional


class LinkStatus(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    OK = "ok"
    BROKEN = "broken"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["LinkStatus"]:
        """Returns the matching status, or None for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return None

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Link:
    """
    A hyperlink as seen in one post's content.

    Links are recomputed on every parse; only the identity and status
    attributes written back into the HTML persist.
    """

    id: str
    href: str
    anchor_text: str = ""
    is_external: bool = False
    is_nofollow: bool = False
    is_new_tab: bool = False
    status: LinkStatus = LinkStatus.IDLE
    post_id: Optional[int] = None

    def evolve(self, **changes) -> "Link":
        return replace(self, **changes)


@dataclass
class Post:
    id: int
    content: str
    title: str = ""
    last_modified: Optional[str] = None
    focus_keyphrase: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "Post":
        """Builds a Post from the plugin's REST representation."""
        title = payload.get("title") or ""
        if isinstance(title, dict):
            title = title.get("rendered", "")
        content = payload.get("content") or ""
        if isinstance(content, dict):
            content = content.get("raw") or content.get("rendered", "")
        return cls(
            id=int(payload["id"]),
            content=content,
            title=title,
            last_modified=payload.get("lastModified") or payload.get("date"),
            focus_keyphrase=payload.get("focusKeyphrase"),
            url=payload.get("url"),
        )
