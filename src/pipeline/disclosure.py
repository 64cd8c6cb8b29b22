from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from playwright.sync_api import ElementHandle, Page

from src.config import TimingConfig
from src.pipeline.masking import has_mask_marker


ATTEMPTED_ATTR = "data-unmask-attempted"

# Explicit reveal controls seen on seller-center builds, most specific first
MARKER_SELECTORS = [
    '[data-log_click_for="open_phone_plaintext"]',
    'button[class*="reveal"]',
    '[class*="unmask"]',
    '[class*="show-phone"]',
    '[class*="view-detail"]',
]

DETAIL_REGION_SELECTORS = [
    '[class*="shipping-to"]',
    '[class*="recipient"]',
    '[class*="address-info"]',
    '[class*="buyer-info"]',
    '.index-shipping-to',
]

CLICKABLE_SELECTOR = 'button, [role="button"], a'

# Reveal wording (en + ms) on short controls
REVEAL_TEXT_RE = re.compile(r"\b(reveal|show|view|display|unmask|lihat|tunjuk|papar)\b", re.I)
REVEAL_TEXT_MAX_LEN = 30

_CLEAR_MARKERS_JS = (
    "attr => document.querySelectorAll('[' + attr + ']')"
    ".forEach(e => e.removeAttribute(attr))"
)
_OWN_TEXT_JS = (
    "e => Array.from(e.childNodes).filter(n => n.nodeType === 3)"
    ".map(n => n.textContent).join(' ')"
)


@dataclass(frozen=True)
class DisclosureStrategy:
    name: str
    find: Callable[[Page], List[ElementHandle]]


@dataclass
class DisclosureAttempt:
    strategy: str
    success: bool
    error: Optional[str] = None


@dataclass
class DisclosureResult:
    clicked_count: int = 0
    attempts: List[DisclosureAttempt] = field(default_factory=list)
    failed_strategies: List[str] = field(default_factory=list)


def _query_all(page_or_el, selectors: List[str]) -> List[ElementHandle]:
    out: List[ElementHandle] = []
    for sel in selectors:
        try:
            out.extend(page_or_el.query_selector_all(sel) or [])
        except Exception:
            continue
    return out


def find_marker_controls(page: Page) -> List[ElementHandle]:
    return _query_all(page, MARKER_SELECTORS)


def find_reveal_text_controls(page: Page) -> List[ElementHandle]:
    """Short buttons/links saying reveal/show/view inside the detail region (or anywhere)."""
    scope = None
    for sel in DETAIL_REGION_SELECTORS:
        try:
            scope = page.query_selector(sel)
        except Exception:
            scope = None
        if scope is not None:
            break
    candidates = _query_all(scope if scope is not None else page, [CLICKABLE_SELECTOR])
    out: List[ElementHandle] = []
    for el in candidates:
        try:
            txt = (el.text_content() or '').strip()
        except Exception:
            continue
        if txt and len(txt) < REVEAL_TEXT_MAX_LEN and REVEAL_TEXT_RE.search(txt):
            out.append(el)
    return out


def find_mask_adjacent_controls(page: Page) -> List[ElementHandle]:
    """Icons and buttons sitting next to any text that still shows a mask run."""
    out: List[ElementHandle] = []
    for el in _query_all(page, ['span, div, p, td']):
        try:
            own = el.evaluate(_OWN_TEXT_JS) or ''
        except Exception:
            continue
        if not has_mask_marker(own):
            continue
        out.extend(_query_all(el, [
            'xpath=../descendant-or-self::*[self::button or @role="button" or self::a '
            'or self::i or local-name()="svg"]',
        ]))
    return out


DEFAULT_STRATEGIES = [
    DisclosureStrategy('marker-selectors', find_marker_controls),
    DisclosureStrategy('detail-region-text', find_reveal_text_controls),
    DisclosureStrategy('mask-adjacent', find_mask_adjacent_controls),
]


class DisclosureActuator:
    """Clicks whatever reveals masked fields on a detail view.

    Strategies run in order; each element is clicked at most once per call
    (tracked with a DOM attribute, so the same node found by two strategies
    is skipped the second time). Only visible elements are clicked. A zero
    count is a normal outcome: extraction proceeds on what is visible.
    """

    def __init__(
        self,
        *,
        timing: Optional[TimingConfig] = None,
        strategies: Optional[List[DisclosureStrategy]] = None,
        rng: Optional[random.Random] = None,
        click_timeout_ms: int = 3000,
    ) -> None:
        self.timing = timing or TimingConfig()
        self.strategies = list(strategies) if strategies is not None else list(DEFAULT_STRATEGIES)
        self.rng = rng or random.Random()
        self.click_timeout_ms = click_timeout_ms

    def _pause(self, page: Page) -> None:
        lo, hi = self.timing.click_pacing_ms
        page.wait_for_timeout(self.rng.uniform(lo, hi))

    @staticmethod
    def _is_visible(el: ElementHandle) -> bool:
        try:
            box = el.bounding_box()
        except Exception:
            return False
        return bool(box) and box.get('width', 0) > 0 and box.get('height', 0) > 0

    @staticmethod
    def _already_attempted(el: ElementHandle) -> bool:
        try:
            return el.get_attribute(ATTEMPTED_ATTR) is not None
        except Exception:
            return True

    @staticmethod
    def _mark_attempted(el: ElementHandle) -> None:
        try:
            el.evaluate("(e, attr) => e.setAttribute(attr, '1')", ATTEMPTED_ATTR)
        except Exception:
            pass

    def reveal(self, page: Page) -> DisclosureResult:
        result = DisclosureResult()
        try:
            page.evaluate(_CLEAR_MARKERS_JS, ATTEMPTED_ATTR)
        except Exception:
            pass

        for strategy in self.strategies:
            try:
                elements = strategy.find(page)
            except Exception:
                result.failed_strategies.append(strategy.name)
                continue
            for el in elements:
                if self._already_attempted(el) or not self._is_visible(el):
                    continue
                self._mark_attempted(el)
                try:
                    el.click(timeout=self.click_timeout_ms)
                except Exception as e:
                    result.attempts.append(DisclosureAttempt(strategy.name, False, str(e)))
                    continue
                result.clicked_count += 1
                result.attempts.append(DisclosureAttempt(strategy.name, True))
                self._pause(page)

        if result.clicked_count > 0:
            page.wait_for_timeout(self.timing.after_disclosure_ms)
        return result
