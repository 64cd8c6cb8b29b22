from unittest.mock import MagicMock

import pytest
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from src.config import PageConfig
from src.errors import NavigationRequestError
from src.pipeline.navigation import NavigationWaiter, Navigator, check_page


def test_detail_url_uses_template():
    nav = Navigator(PageConfig(detail_url_template="https://seller.example/order/detail?id={item_id}"))
    assert nav.detail_url("576123") == "https://seller.example/order/detail?id=576123"


def test_request_navigate_commits_only():
    page = MagicMock()
    nav = Navigator(timeout_ms=5000)
    url = nav.request_navigate(page, "A1")
    page.goto.assert_called_once_with(url, wait_until="commit", timeout=5000)
    assert "A1" in url


def test_request_navigate_wraps_errors():
    page = MagicMock()
    page.goto.side_effect = Exception("net::ERR_NAME_NOT_RESOLVED")
    with pytest.raises(NavigationRequestError) as ei:
        Navigator().request_navigate(page, "A1")
    assert "ERR_NAME_NOT_RESOLVED" in str(ei.value)


def test_await_navigation_completed():
    page = MagicMock()
    page.url = "https://seller-my.tiktok.com/order/detail?order_no=A1"
    outcome = NavigationWaiter().await_navigation(page, 1000)
    page.wait_for_load_state.assert_called_once_with("load", timeout=1000)
    assert outcome.completed is True
    assert outcome.timed_out is False


def test_await_navigation_timeout_is_reported():
    page = MagicMock()
    page.url = "about:blank"
    page.wait_for_load_state.side_effect = PlaywrightTimeoutError("Timeout 1000ms exceeded")
    outcome = NavigationWaiter().await_navigation(page, 1000)
    assert outcome.completed is False
    assert outcome.timed_out is True


def test_await_navigation_other_error():
    page = MagicMock()
    page.url = "about:blank"
    page.wait_for_load_state.side_effect = RuntimeError("Target closed")
    outcome = NavigationWaiter().await_navigation(page, 1000)
    assert outcome.completed is False
    assert outcome.timed_out is False
    assert outcome.error == "Target closed"


def test_settle_skips_zero_delay():
    page = MagicMock()
    NavigationWaiter().settle(page, 0)
    page.wait_for_timeout.assert_not_called()
    NavigationWaiter().settle(page, 2000)
    page.wait_for_timeout.assert_called_once_with(2000)


def test_check_page_detects_login_redirect():
    page = MagicMock()
    page.url = "https://seller-my.tiktok.com/account/login?redirect=order"
    page.query_selector.return_value = None
    result = check_page(page)
    assert result.is_logged_in is False
    assert result.is_detail is False


def test_check_page_detail_by_url():
    page = MagicMock()
    page.url = "https://seller-my.tiktok.com/order/detail?order_no=A1"
    result = check_page(page)
    assert result.is_logged_in is True
    assert result.is_detail is True


def test_check_page_detail_by_selector():
    page = MagicMock()
    page.url = "https://seller-my.tiktok.com/homepage"
    page.query_selector.return_value = object()
    assert check_page(page).is_detail is True
