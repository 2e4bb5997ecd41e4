import functools
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from dotenv import load_dotenv
from playwright.async_api import ElementHandle, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import AutomationError, AutomationLaunchError, PageLoadError

load_dotenv()
HEADLESS = os.getenv("BROWSER_HEADLESS", "true").lower() != "false"
USER_AGENT = os.getenv(
    "BROWSER_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
)
AUTOMATION_TIMEOUT_MS = int(os.getenv("AUTOMATION_TIMEOUT_MS", "30000"))

BROWSER_ARGS = [
    "--start-maximized",
    "--disable-notifications",
    "--disable-infobars",
    "--disable-popup-blocking",
    "--no-sandbox",
    "--disable-setuid-sandbox",
]

logger = logging.getLogger("harvester.automation")


def _automation_call(fn):
    """Translate Playwright failures into AutomationError."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except PlaywrightError as e:
            raise AutomationError(f"{fn.__name__} failed: {e}", action=fn.__name__) from e

    return wrapper


class PageAutomation:
    """
    Narrow automation capability over one Playwright page.

    Every call suspends until the browser acknowledges it. Per-call timeouts
    are set once on the page (``AUTOMATION_TIMEOUT_MS``) so call sites never
    pass their own. Any Playwright error surfaces as AutomationError.
    """

    def __init__(self, page: Page, timeout_ms: int = AUTOMATION_TIMEOUT_MS):
        self.page = page
        self.timeout_ms = timeout_ms
        page.set_default_timeout(timeout_ms)
        page.set_default_navigation_timeout(timeout_ms)

    async def load(self, url: str):
        try:
            await self.page.goto(url, wait_until="domcontentloaded")
        except PlaywrightError as e:
            raise PageLoadError(f"Failed to load {url}: {e}", action="load") from e

    @_automation_call
    async def query(self, selector: str) -> Optional[ElementHandle]:
        return await self.page.query_selector(selector)

    @_automation_call
    async def query_all(self, selector: str) -> List[ElementHandle]:
        return await self.page.query_selector_all(selector)

    @_automation_call
    async def click(self, element: ElementHandle):
        await element.click()

    @_automation_call
    async def read_text(self, element: ElementHandle) -> str:
        return (await element.text_content() or "").strip()

    @_automation_call
    async def read_attribute(self, element: ElementHandle, name: str) -> Optional[str]:
        return await element.get_attribute(name)

    @_automation_call
    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        return await self.page.evaluate(expression, arg)

    @_automation_call
    async def content(self) -> str:
        return await self.page.content()

    @_automation_call
    async def scroll_into_view(self, element: ElementHandle):
        await element.evaluate(
            "el => el.scrollIntoView({behavior: 'smooth', block: 'center'})"
        )

    async def wait(self, duration_ms: int):
        if duration_ms > 0:
            await self.page.wait_for_timeout(duration_ms)

    async def wait_for(self, selector: str, timeout_ms: Optional[int] = None) -> bool:
        """Poll for a selector; a timeout is reported as False, not raised."""
        try:
            await self.page.wait_for_selector(
                selector, timeout=timeout_ms or self.timeout_ms
            )
            return True
        except PlaywrightTimeoutError:
            return False
        except PlaywrightError as e:
            raise AutomationError(f"wait_for failed: {e}", action="wait_for") from e

    @_automation_call
    async def is_next_page_disabled(
        self, element: ElementHandle, attribute: str = "aria-disabled"
    ) -> bool:
        if (await element.get_attribute(attribute)) == "true":
            return True
        return (await element.get_attribute("disabled")) is not None


async def _dismiss_dialog(dialog):
    logger.info(f"Dismissing popup: {dialog.message}")
    try:
        await dialog.dismiss()
    except PlaywrightError as e:
        logger.warning(f"Popup dismissal failed: {e}")


@asynccontextmanager
async def open_automation(headless: bool = HEADLESS, user_agent: str = USER_AGENT):
    """
    Launch one browser instance and yield a PageAutomation bound to a new page.

    Browser dialogs are dismissed for the lifetime of the page. The browser is
    closed when the block exits, including on cancellation.

    Raises:
        AutomationLaunchError: if Playwright or Chromium cannot be started
    """
    try:
        pw = await async_playwright().start()
    except PlaywrightError as e:
        raise AutomationLaunchError(f"Playwright start failed: {e}") from e
    try:
        try:
            browser = await pw.chromium.launch(headless=headless, args=BROWSER_ARGS)
        except PlaywrightError as e:
            raise AutomationLaunchError(f"Browser launch failed: {e}") from e
        try:
            try:
                context = await browser.new_context(
                    user_agent=user_agent, no_viewport=True
                )
                page = await context.new_page()
            except PlaywrightError as e:
                raise AutomationLaunchError(f"Page creation failed: {e}") from e
            page.on("dialog", _dismiss_dialog)
            logger.info("Browser session opened")
            yield PageAutomation(page)
        finally:
            await browser.close()
            logger.info("Browser session released")
    finally:
        await pw.stop()
