from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from playwright.sync_api import Page, TimeoutError as PlaywrightTimeoutError

from src.config import PageConfig
from src.errors import NavigationRequestError


@dataclass(frozen=True)
class NavigationOutcome:
    completed: bool
    timed_out: bool
    url: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class PageCheck:
    is_detail: bool
    is_logged_in: bool
    url: str


class Navigator:
    """Issues the navigation request for one item; completion is awaited separately."""

    def __init__(self, page_config: Optional[PageConfig] = None, *, timeout_ms: int = 15000) -> None:
        self.page_config = page_config or PageConfig()
        self.timeout_ms = timeout_ms

    def detail_url(self, item_id: str) -> str:
        return self.page_config.detail_url_template.format(item_id=item_id)

    def request_navigate(self, page: Page, item_id: str) -> str:
        url = self.detail_url(item_id)
        try:
            # "commit": returns once the new document is accepted, before load
            page.goto(url, wait_until="commit", timeout=self.timeout_ms)
        except Exception as e:
            raise NavigationRequestError(f"Navigation failed: {e}") from e
        return url


class NavigationWaiter:
    """Waits for the navigation-completed signal (the page ``load`` event).

    A timeout is reported in the outcome, never raised; the caller decides
    what it means.
    """

    def __init__(self, load_state: str = "load") -> None:
        self.load_state = load_state

    def await_navigation(self, page: Page, timeout_ms: int) -> NavigationOutcome:
        try:
            page.wait_for_load_state(self.load_state, timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return NavigationOutcome(completed=False, timed_out=True, url=_safe_url(page))
        except Exception as e:
            return NavigationOutcome(completed=False, timed_out=False, url=_safe_url(page), error=str(e))
        return NavigationOutcome(completed=True, timed_out=False, url=_safe_url(page))

    def settle(self, page: Page, delay_ms: int) -> None:
        if delay_ms > 0:
            page.wait_for_timeout(delay_ms)


def _safe_url(page: Page) -> str:
    try:
        return page.url or ''
    except Exception:
        return ''


def _has_any(page: Page, selectors: List[str]) -> bool:
    for sel in selectors:
        try:
            if page.query_selector(sel) is not None:
                return True
        except Exception:
            continue
    return False


def check_page(page: Page, page_config: Optional[PageConfig] = None) -> PageCheck:
    """Classify the current view: authenticated? a record detail view?"""
    cfg = page_config or PageConfig()
    url = _safe_url(page)
    low = url.lower()
    is_logged_in = not any(m in low for m in cfg.login_url_markers)
    is_detail = cfg.detail_url_marker in low or _has_any(page, cfg.detail_selectors)
    return PageCheck(is_detail=is_detail, is_logged_in=is_logged_in, url=url)
