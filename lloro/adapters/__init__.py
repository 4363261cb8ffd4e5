"""Adapters package - boundary between the core and the browser.

Content extraction and active-tab lookup are supplied by the host
(browser extension, CLI, tests) through these interfaces.
"""
from __future__ import annotations

__all__ = [
    "ActiveTabResolver",
    "ContentProvider",
    "PageContent",
    "StaticContentProvider",
    "StaticTabResolver",
    "TabHandle",
]

from lloro.adapters.content import (
    ActiveTabResolver,
    ContentProvider,
    PageContent,
    StaticContentProvider,
    StaticTabResolver,
    TabHandle,
)
