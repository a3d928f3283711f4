"""Browser page walking and crawl-permission checks."""

from .page_walker import BrowserSession, PageWalker, WalkState, classify_browser_error, to_harvest_error
from .permission import PermissionPolicy

__all__ = [
    "BrowserSession",
    "PageWalker",
    "PermissionPolicy",
    "WalkState",
    "classify_browser_error",
    "to_harvest_error",
]
