"""Boundary to the browser: page content extraction and the active tab.

The real extractor (readability pass with a manual fallback) runs inside
the browser. The core only sees the interfaces below. The static
implementations serve the command line and tests.
"""
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TabHandle:
    """A browser tab as far as the core cares: its URL and optional id."""
    url: str | None
    tab_id: int | None = None


@dataclass(frozen=True)
class PageContent:
    title: str
    content: str
    url: str


class ContentProvider(abc.ABC):
    """Extracts readable content from a tab."""

    @abc.abstractmethod
    async def extract(self, tab: TabHandle) -> PageContent | None:
        """Return the page's content, or None when extraction fails."""


class ActiveTabResolver(abc.ABC):
    """Reports the URL of the tab the user is looking at."""

    @abc.abstractmethod
    async def current_tab_url(self) -> str | None:
        """URL of the active tab, or None when there is none."""


class StaticContentProvider(ContentProvider):
    """Serves pages registered ahead of time, keyed by URL."""

    def __init__(self, pages: dict[str, PageContent] | None = None) -> None:
        self._pages: dict[str, PageContent] = dict(pages or {})
        self.calls: list[TabHandle] = []

    def add_page(self, url: str, title: str, content: str) -> PageContent:
        page = PageContent(title=title, content=content, url=url)
        self._pages[url] = page
        return page

    async def extract(self, tab: TabHandle) -> PageContent | None:
        self.calls.append(tab)
        if tab.url is None:
            return None
        page = self._pages.get(tab.url)
        if page is None:
            logger.debug("No registered content for %s", tab.url)
        return page


class StaticTabResolver(ActiveTabResolver):
    def __init__(self, url: str | None = None) -> None:
        self.url = url

    async def current_tab_url(self) -> str | None:
        return self.url
