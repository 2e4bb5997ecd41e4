"""
Site adapters: per-OTA selector tables and the small procedures that apply them.

An adapter never decides control flow. Every procedure treats a missing
element as a normal outcome and returns a default; only reading the page for
card extraction lets an AutomationError through, so the engine can retry it.
"""

import json
import logging
import os
import re
from functools import lru_cache
from typing import Dict, List, Optional

from bs4 import BeautifulSoup
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .errors import AutomationError, InvalidRequestError
from .models import UNKNOWN_HOTEL, RawReview, Source

load_dotenv()
SITE_ADAPTERS_PATH = os.getenv("SITE_ADAPTERS_PATH")
ACTION_SETTLE_MS = int(os.getenv("HARVEST_ACTION_SETTLE_MS", "1000"))

logger = logging.getLogger("harvester.sites")


class ControlSpec(BaseModel):
    """A clickable control, located by selector and optionally by text/class."""

    selector: str
    text: Optional[str] = None
    class_contains: Optional[str] = None


class SelectorTable(BaseModel):
    source: Source
    ota: str = Field(..., description="OTA name sent with the batch")
    label: str = Field(..., description="OTA label attached to every review")
    hotel_name: str
    review_card: str
    username: str
    rating: str
    comment: str
    date_container: str = "span"
    date_pattern: str = r"\d{1,2} \w{3,} \d{4}"
    next_page: str
    next_disabled_attribute: str = "aria-disabled"
    show_all: Optional[ControlSpec] = None
    sort_steps: List[ControlSpec] = Field(default_factory=list)
    popup_close: List[str] = Field(default_factory=list)
    reveal_settle_ms: int = 2000
    months: Optional[Dict[str, int]] = None


TICKETCOM = SelectorTable(
    source=Source.TICKETCOM,
    ota="ticket.com",
    label="Ticket.com",
    hotel_name='h1[data-testid="name"]',
    review_card='[data-testid="review-card"]',
    username='[class*="ReviewCard_customer_name"]',
    rating=".ReviewCard_user_review__HvsOH",
    comment=".ReadMoreComments_review_card_comment__R_W2B",
    next_page='div[data-testid="chevron-right-pagination"]',
    show_all=ControlSpec(
        selector='span[data-testid="see-all"]',
        text="Lihat semua",
        class_contains="ReviewWidget-module__button_see_all",
    ),
    sort_steps=[
        ControlSpec(selector="button span", text="Sort"),
        ControlSpec(selector="span", text="Latest Review"),
    ],
)

BUILTIN_TABLES = {TICKETCOM.source: TICKETCOM}


def parse_review_cards(html: str, table: SelectorTable) -> List[RawReview]:
    """
    Read raw fields from every review card in a page snapshot.

    Args:
        html (str): page HTML
        table (SelectorTable): selectors of the OTA

    Returns:
        list[RawReview]: one entry per card, in page order; fields of missing
            elements are None
    """
    soup = BeautifulSoup(html, "lxml")
    date_re = re.compile(table.date_pattern)

    def text_of(card, selector):
        el = card.select_one(selector)
        return el.get_text().strip() if el else None

    raws = []
    for card in soup.select(table.review_card):
        date_el = next(
            (
                s
                for s in card.select(table.date_container)
                if date_re.search(s.get_text())
            ),
            None,
        )
        raws.append(
            RawReview(
                username=text_of(card, table.username),
                rating=text_of(card, table.rating),
                comment=text_of(card, table.comment),
                date_text=date_el.get_text().strip() if date_el else None,
            )
        )
    return raws


class SiteAdapter:
    """Contract the engine drives. Subclasses bind it to one OTA."""

    source: Source
    ota: str
    label: str
    review_card_selector: Optional[str] = None
    months: Optional[Dict[str, int]] = None

    async def dismiss_popups(self, automation) -> int:
        return 0

    async def resolve_hotel_name(self, automation) -> str:
        return UNKNOWN_HOTEL

    async def reveal_all_reviews(self, automation) -> bool:
        return False

    async def sort_by_latest(self, automation) -> bool:
        return False

    async def extract_cards(self, automation) -> List[RawReview]:
        raise NotImplementedError

    async def next_page_control(self, automation):
        return None

    async def is_next_page_disabled(self, automation, control) -> bool:
        return False

    async def go_to_next_page(self, automation, control) -> bool:
        return False


class SelectorSiteAdapter(SiteAdapter):
    """
    Site adapter that applies one SelectorTable.

    Args:
        table (SelectorTable): selectors and controls of the OTA
        action_settle_ms (int): pause between scrolling a control into view
            and clicking it. Defaults to HARVEST_ACTION_SETTLE_MS.
    """

    def __init__(self, table: SelectorTable, action_settle_ms: int = ACTION_SETTLE_MS):
        self.table = table
        self.action_settle_ms = action_settle_ms
        self.source = table.source
        self.ota = table.ota
        self.label = table.label
        self.review_card_selector = table.review_card
        self.months = table.months

    async def _click_control(self, automation, ctl: ControlSpec) -> bool:
        for el in await automation.query_all(ctl.selector):
            if ctl.text is not None and await automation.read_text(el) != ctl.text:
                continue
            if ctl.class_contains:
                cls = await automation.read_attribute(el, "class") or ""
                if ctl.class_contains not in cls:
                    continue
            await automation.scroll_into_view(el)
            await automation.wait(self.action_settle_ms)
            await automation.click(el)
            return True
        return False

    async def dismiss_popups(self, automation) -> int:
        """
        Click the close button of every popup listed in the table.

        Returns:
            int: number of popups closed

        Note:
            Native JS dialogs are dismissed by the automation session itself;
            this only covers in-page overlays.
        """
        dismissed = 0
        for selector in self.table.popup_close:
            try:
                el = await automation.query(selector)
                if el is None:
                    continue
                await automation.click(el)
                dismissed += 1
            except AutomationError as e:
                logger.warning(f"Popup {selector} not dismissed: {e}")
        return dismissed

    async def resolve_hotel_name(self, automation) -> str:
        """
        Read the hotel name from the page heading.

        Returns:
            str: stripped hotel name, or "Unknown Hotel" when the heading is
                missing, empty or unreadable
        """
        try:
            el = await automation.query(self.table.hotel_name)
            name = await automation.read_text(el) if el else ""
        except AutomationError as e:
            logger.warning(f"Hotel name lookup failed: {e}")
            return UNKNOWN_HOTEL
        return name.strip() or UNKNOWN_HOTEL

    async def reveal_all_reviews(self, automation) -> bool:
        """
        Open the full review panel via the table's show-all control.

        Returns:
            bool: True if the control was found and clicked
        """
        ctl = self.table.show_all
        if ctl is None:
            return False
        try:
            clicked = await self._click_control(automation, ctl)
        except AutomationError as e:
            logger.warning(f"Show-all control failed: {e}")
            return False
        if not clicked:
            logger.info(f"Show-all control {ctl.text or ctl.selector!r} not found")
            return False
        logger.info("Show-all control clicked")
        await automation.wait(self.table.reveal_settle_ms)
        return True

    async def sort_by_latest(self, automation) -> bool:
        """
        Click through the sort steps (e.g. "Sort" then "Latest Review").

        Every step is attempted even when an earlier one is missing.

        Returns:
            bool: True only if all steps were clicked
        """
        if not self.table.sort_steps:
            return False
        all_clicked = True
        for ctl in self.table.sort_steps:
            try:
                clicked = await self._click_control(automation, ctl)
            except AutomationError as e:
                logger.warning(f"Sort step {ctl.text or ctl.selector!r} failed: {e}")
                clicked = False
            if clicked:
                logger.info(f"Clicked {ctl.text or ctl.selector!r}")
            else:
                logger.info(f"{ctl.text or ctl.selector!r} not found")
                all_clicked = False
        return all_clicked

    async def extract_cards(self, automation) -> List[RawReview]:
        """
        Snapshot the page and read every review card on it.

        Raises:
            AutomationError: page content could not be read; the engine
                retries this
        """
        html = await automation.content()
        return parse_review_cards(html, self.table)

    async def next_page_control(self, automation):
        """Return the next-page element, or None when the page has none."""
        try:
            return await automation.query(self.table.next_page)
        except AutomationError as e:
            logger.warning(f"Next-page lookup failed: {e}")
            return None

    async def is_next_page_disabled(self, automation, control) -> bool:
        """
        Read the disabled state of the next-page control.

        A failed read is retried once. When the second read fails too the
        control is treated as disabled and the failure is logged at ERROR,
        since the harvest will end on it.

        Returns:
            bool: True when there is nothing left to click
        """
        for attempt in (1, 2):
            try:
                return await automation.is_next_page_disabled(
                    control, self.table.next_disabled_attribute
                )
            except AutomationError as e:
                if attempt == 1:
                    logger.warning(f"Next-page state unreadable, reading again: {e}")
                    continue
                logger.error(f"Next-page state unreadable twice, treating as disabled: {e}")
        return True

    async def go_to_next_page(self, automation, control) -> bool:
        """
        Click the next-page control.

        Returns:
            bool: False when the click failed; the engine then stays on the
                current page and clicks again after re-reading it
        """
        try:
            await automation.click(control)
        except AutomationError as e:
            logger.warning(f"Next-page click failed: {e}")
            return False
        return True


def load_adapter_tables(path: str) -> Dict[Source, SelectorTable]:
    """Load extra selector tables from a JSON file (a list or a single object)."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = [data]
    tables = {}
    for entry in data:
        table = SelectorTable.model_validate(entry)
        tables[table.source] = table
    return tables


@lru_cache(maxsize=1)
def adapter_tables() -> Dict[Source, SelectorTable]:
    """
    Selector tables by source: the built-in ones, overridden or extended by
    the file at SITE_ADAPTERS_PATH when it is set.

    Note:
        Cached for the process lifetime. Call adapter_tables.cache_clear()
        after changing SITE_ADAPTERS_PATH.
    """
    tables = dict(BUILTIN_TABLES)
    if SITE_ADAPTERS_PATH:
        tables.update(load_adapter_tables(SITE_ADAPTERS_PATH))
        logger.info(f"Loaded selector tables from {SITE_ADAPTERS_PATH}")
    return tables


def configured_sources() -> List[str]:
    """
    List the sources that can be harvested right now.

    Returns:
        list[str]: source keys with a selector table, in Source order
    """
    return [s.value for s in Source if s in adapter_tables()]


def get_adapter(source) -> SelectorSiteAdapter:
    """
    Resolve the adapter for a source name.

    Raises:
        InvalidRequestError: unknown source, or a known one without a table
    """
    try:
        src = Source(source)
    except ValueError:
        raise InvalidRequestError(f"Unsupported source: {source}")
    table = adapter_tables().get(src)
    if table is None:
        raise InvalidRequestError(f"No site adapter configured for source: {source}")
    return SelectorSiteAdapter(table)
