import sys
import os

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT_DIR)

import pytest
from typing import Dict, List, Optional
from httpx import ASGITransport, AsyncClient
from fastapi import Request, HTTPException

from api.main import app, get_api_key
from harvester.errors import AutomationError
from harvester.models import DeliveryResult, RawReview, Source
from harvester.sites import SiteAdapter


def make_raw(comment, date_text="12 Mar 2025", rating="4,5", username="Budi"):
    return RawReview(username=username, rating=rating, comment=comment, date_text=date_text)


def make_page(page_no, count=10, date_text="12 Mar 2025"):
    return [make_raw(f"page {page_no} review {i}", date_text=date_text) for i in range(count)]


class FakeAutomation:
    """
    In-memory automation capability for engine tests.

    Records every call so tests can assert on ordering; waits return
    immediately. Set ``load_error`` to make the initial page load fail.
    """

    def __init__(self, load_error: Optional[Exception] = None):
        self.load_error = load_error
        self.calls: List[str] = []
        self.waits: List[int] = []

    async def load(self, url):
        self.calls.append(f"load {url}")
        if self.load_error:
            raise self.load_error

    async def wait(self, duration_ms):
        self.waits.append(duration_ms)

    async def wait_for(self, selector, timeout_ms=None):
        self.calls.append(f"wait_for {selector}")
        return True


class ScriptedAdapter(SiteAdapter):
    """
    Site adapter driven by a list of synthetic pages.

    Args:
        pages: raw reviews per page (index 0 is page 1); reading past the
            last page keeps returning the last one
        next_states: page number -> "enabled" | "disabled" | "missing";
            defaults to "enabled" while a further page exists, else "missing"
        failures: page number -> count of extraction attempts that raise
            AutomationError before the page reads normally
        click_failures: number of next-page clicks that fail (return False)
            before clicks succeed
    """

    source = Source.TICKETCOM
    ota = "ticket.com"
    label = "Ticket.com"
    review_card_selector = None

    def __init__(
        self,
        pages,
        next_states: Optional[Dict[int, str]] = None,
        failures=None,
        click_failures=0,
    ):
        self.pages = pages
        self.next_states = next_states or {}
        self.failures = dict(failures or {})
        self.click_failures = click_failures
        self.page = 1
        self.extract_calls = 0
        self.clicks = 0
        self.failed_clicks = 0
        self.prepared: List[str] = []

    async def dismiss_popups(self, automation):
        self.prepared.append("popups")
        return 0

    async def resolve_hotel_name(self, automation):
        self.prepared.append("name")
        return "Hotel Santika"

    async def reveal_all_reviews(self, automation):
        self.prepared.append("reveal")
        return True

    async def sort_by_latest(self, automation):
        self.prepared.append("sort")
        return True

    async def extract_cards(self, automation):
        self.extract_calls += 1
        remaining = self.failures.get(self.page, 0)
        if remaining:
            self.failures[self.page] = remaining - 1
            raise AutomationError("Execution context was destroyed")
        idx = min(self.page, len(self.pages)) - 1
        return list(self.pages[idx])

    def _state(self):
        default = "enabled" if self.page < len(self.pages) else "missing"
        return self.next_states.get(self.page, default)

    async def next_page_control(self, automation):
        state = self._state()
        return None if state == "missing" else state

    async def is_next_page_disabled(self, automation, control):
        return control == "disabled"

    async def go_to_next_page(self, automation, control):
        if self.failed_clicks < self.click_failures:
            self.failed_clicks += 1
            return False
        self.clicks += 1
        self.page += 1
        return True


class FakeDelivery:
    def __init__(self, result=DeliveryResult.SENT):
        self.result = result
        self.calls = []

    async def deliver(self, reviews, hotel_id, ota):
        self.calls.append((list(reviews), hotel_id, ota))
        return self.result if reviews else DeliveryResult.SKIPPED


class FakeElement:
    def __init__(self, text="", attrs=None):
        self.text = text
        self.attrs = attrs or {}
        self.clicked = False


class FakeDom:
    """Automation fake for selector-table adapters: selector -> elements."""

    def __init__(self, elements=None, html=""):
        self.elements = elements or {}
        self.html = html
        self.clicked: List[FakeElement] = []
        self.waits: List[int] = []

    async def query(self, selector):
        found = self.elements.get(selector) or []
        return found[0] if found else None

    async def query_all(self, selector):
        return list(self.elements.get(selector, []))

    async def read_text(self, element):
        return element.text.strip()

    async def read_attribute(self, element, name):
        return element.attrs.get(name)

    async def scroll_into_view(self, element):
        pass

    async def wait(self, duration_ms):
        self.waits.append(duration_ms)

    async def click(self, element):
        element.clicked = True
        self.clicked.append(element)

    async def content(self):
        return self.html

    async def is_next_page_disabled(self, element, attribute="aria-disabled"):
        return element.attrs.get(attribute) == "true"


@pytest.fixture
def automation():
    return FakeAutomation()


@pytest.fixture
def delivery():
    return FakeDelivery()


@pytest.fixture
async def client():
    """
    Async test client for the ingress with the API key check overridden.

    The fake dependency accepts only "testapikey" via X-API-Key.
    """

    async def fake_get_api_key(request: Request):
        key = request.headers.get("x-api-key") or request.headers.get("X-API-Key")
        if key != "testapikey":
            raise HTTPException(status_code=401, detail="Unauthorized")
        return key

    app.dependency_overrides[get_api_key] = fake_get_api_key
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
