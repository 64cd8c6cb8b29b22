from __future__ import annotations

from typing import Optional

from playwright.sync_api import sync_playwright, Browser, BrowserContext, Page, Playwright

from src.config import BrowserConfig, PageConfig, TimingConfig
from src.errors import SessionError


DEFAULT_UA = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"

LAUNCH_ARGS = [
    '--disable-dev-shm-usage',     # Prevent /dev/shm issues in containers
    '--disable-gpu',
    '--disable-extensions',
    '--disable-plugins',
    '--no-first-run',
    '--disable-default-apps',
    '--disable-background-timer-throttling',  # Consistent timing
]  # Note: no --no-sandbox (sandbox stays enabled)


class BrowserSession:
    """The single navigable page a run owns.

    Must be entered on the thread that will drive the page: sync Playwright
    objects are bound to the thread that created them.

    With ``user_data_dir`` a persistent profile is used so an existing
    seller-center login carries over between runs.
    """

    def __init__(
        self,
        *,
        browser: Optional[BrowserConfig] = None,
        page_config: Optional[PageConfig] = None,
        timing: Optional[TimingConfig] = None,
    ) -> None:
        self.browser_config = browser or BrowserConfig()
        self.page_config = page_config or PageConfig()
        self.timing = timing or TimingConfig()
        self._pw_cm = None
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    def __enter__(self) -> Page:
        try:
            self._pw_cm = sync_playwright()
            self._playwright = self._pw_cm.__enter__()
            cfg = self.browser_config
            ua = cfg.user_agent or DEFAULT_UA
            if cfg.user_data_dir:
                self._context = self._playwright.chromium.launch_persistent_context(
                    cfg.user_data_dir,
                    headless=cfg.headless,
                    args=LAUNCH_ARGS,
                    user_agent=ua,
                )
            else:
                self._browser = self._playwright.chromium.launch(headless=cfg.headless, args=LAUNCH_ARGS)
                self._context = self._browser.new_context(user_agent=ua)
            self._context.set_default_timeout(cfg.timeout_ms)
            pages = self._context.pages
            self.page = pages[0] if pages else self._context.new_page()

            response = self.page.goto(self.page_config.landing_url, wait_until="load", timeout=cfg.timeout_ms)
            if response is not None and response.status >= 500:
                raise SessionError(f"Landing page returned HTTP {response.status}")
            self.page.wait_for_timeout(self.timing.landing_wait_ms)
            return self.page
        except SessionError:
            self.close()
            raise
        except Exception as e:
            self.close()
            raise SessionError(f"Could not open browser session: {e}") from e

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        for closer in (self._context, self._browser):
            if closer is None:
                continue
            try:
                closer.close()
            except Exception:
                pass
        self._context = None
        self._browser = None
        self.page = None
        if self._pw_cm is not None:
            try:
                self._pw_cm.__exit__(None, None, None)
            except Exception:
                pass
            self._pw_cm = None
            self._playwright = None
