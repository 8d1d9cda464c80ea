"""
Cursor-style pagination over Mailbadger collection endpoints.

List endpoints answer ``{"collection": [...], "links": {"next": ..., "previous": ...}}``.
The links are opaque paths; callers follow them as-is.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from .fetch import Fetcher
from .transport import FetchDescriptor

logger = logging.getLogger(__name__)

# Guard against a server that keeps returning the same next link
MAX_PAGES = 100


@dataclass
class Page:
    items: List[Any] = field(default_factory=list)
    next: Optional[str] = None
    previous: Optional[str] = None

    @classmethod
    def from_payload(cls, payload, key: str = 'collection') -> 'Page':
        if not isinstance(payload, dict):
            return cls()
        links = payload.get('links') or {}
        return cls(
            items=list(payload.get(key) or []),
            next=links.get('next'),
            previous=links.get('previous'),
        )

    def to_dict(self, key: str = 'collection') -> dict:
        return {
            key: self.items,
            'links': {'next': self.next, 'previous': self.previous},
        }


def collection_descriptor(target: str, per_page: int) -> FetchDescriptor:
    return FetchDescriptor(target, params={'per_page': per_page})


async def fetch_page(fetcher: Fetcher, descriptor: FetchDescriptor, key: str = 'collection') -> Page:
    """Issue one list request; raises the call's TransportError on failure."""
    state = await fetcher.issue(descriptor)
    if state.is_error:
        raise state.error
    return Page.from_payload(state.data, key)


async def fetch_all(fetcher: Fetcher, descriptor: FetchDescriptor, key: str = 'collection') -> List[Any]:
    """Follow ``links.next`` from the first page until it is null."""
    items = []
    seen = set()
    page = await fetch_page(fetcher, descriptor, key)
    items.extend(page.items)

    while page.next:
        if page.next in seen or len(seen) >= MAX_PAGES:
            logger.warning(f"{fetcher.name}: stopped following pagination at {page.next}")
            break
        seen.add(page.next)
        page = await fetch_page(fetcher, FetchDescriptor(page.next), key)
        items.extend(page.items)

    return items


__all__ = ['Page', 'collection_descriptor', 'fetch_page', 'fetch_all']
