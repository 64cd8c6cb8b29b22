import pytest
from unittest.mock import patch, MagicMock

from src.config import BrowserConfig, PageConfig, TimingConfig
from src.errors import SessionError
from src.pipeline.session import BrowserSession, LAUNCH_ARGS


def _wire(mock_sync_playwright, status=200, existing_pages=None):
    mock_page = MagicMock()
    mock_response = MagicMock()
    mock_response.status = status
    mock_page.goto.return_value = mock_response

    mock_context = MagicMock()
    mock_context.pages = existing_pages or []
    mock_context.new_page.return_value = mock_page

    mock_browser = MagicMock()
    mock_browser.new_context.return_value = mock_context

    mock_playwright = MagicMock()
    mock_playwright.chromium.launch.return_value = mock_browser
    mock_playwright.chromium.launch_persistent_context.return_value = mock_context

    mock_sync_playwright.return_value.__enter__.return_value = mock_playwright
    return mock_playwright, mock_browser, mock_context, mock_page


@patch('src.pipeline.session.sync_playwright')
def test_session_opens_landing_page(mock_sync_playwright):
    pw, browser, context, page = _wire(mock_sync_playwright)
    session = BrowserSession(
        browser=BrowserConfig(headless=True),
        page_config=PageConfig(landing_url="https://seller.example/order"),
        timing=TimingConfig(landing_wait_ms=3000),
    )

    with session as opened:
        assert opened is page
        page.goto.assert_called_once_with("https://seller.example/order", wait_until="load", timeout=20000)
        page.wait_for_timeout.assert_called_once_with(3000)
        pw.chromium.launch.assert_called_once_with(headless=True, args=LAUNCH_ARGS)
        context.set_default_timeout.assert_called_once_with(20000)

    context.close.assert_called_once()
    browser.close.assert_called_once()
    mock_sync_playwright.return_value.__exit__.assert_called_once()


@patch('src.pipeline.session.sync_playwright')
def test_persistent_profile_reuses_open_tab(mock_sync_playwright):
    existing = MagicMock()
    existing.goto.return_value = None
    pw, _, _, new_page = _wire(mock_sync_playwright, existing_pages=[existing])

    with BrowserSession(browser=BrowserConfig(user_data_dir="/tmp/profile")) as opened:
        assert opened is existing

    args, kwargs = pw.chromium.launch_persistent_context.call_args
    assert args[0] == "/tmp/profile"
    assert kwargs["headless"] is False
    pw.chromium.launch.assert_not_called()
    new_page.goto.assert_not_called()


@patch('src.pipeline.session.sync_playwright')
def test_server_error_on_landing_is_session_error(mock_sync_playwright):
    _, browser, _, _ = _wire(mock_sync_playwright, status=502)
    with pytest.raises(SessionError) as ei:
        with BrowserSession():
            pass
    assert "HTTP 502" in str(ei.value)
    browser.close.assert_called_once()


@patch('src.pipeline.session.sync_playwright')
def test_launch_failure_is_session_error(mock_sync_playwright):
    pw, _, _, _ = _wire(mock_sync_playwright)
    pw.chromium.launch.side_effect = Exception("Executable doesn't exist")
    with pytest.raises(SessionError) as ei:
        BrowserSession().__enter__()
    assert "Executable doesn't exist" in str(ei.value)
