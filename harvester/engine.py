import argparse
import asyncio
import json
import logging
import os
import sys

from dotenv import load_dotenv

from .automation import open_automation
from .delivery import DeliveryClient
from .errors import AutomationError, HarvestError, InvalidRequestError
from .models import (
    UNKNOWN_HOTEL,
    HarvestOutcome,
    HarvestRequest,
    HarvestSession,
    TerminationReason,
)
from .normalizer import is_valid_review, normalize_review
from .sites import get_adapter
from .utils import extraction_retry, leading_comment

load_dotenv()
RETRY_CAP = int(os.getenv("HARVEST_RETRY_CAP", "3"))
CUTOFF_YEAR = int(os.getenv("HARVEST_CUTOFF_YEAR", "2024"))
SETTLE_MS = int(os.getenv("HARVEST_SETTLE_MS", "3000"))

logger = logging.getLogger("harvester.engine")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)


class HarvestEngine:
    """
    Pagination/termination state machine for one harvest session.

    Preparing -> Extracting -> Evaluating -> Paginating -> ... -> Terminated.
    All mutable state lives on the HarvestSession passed to run(); the engine
    only holds its collaborators and policy constants. Automation calls are
    issued strictly one at a time.
    """

    def __init__(
        self,
        automation,
        adapter,
        delivery,
        retry_cap=RETRY_CAP,
        settle_ms=SETTLE_MS,
        cutoff_year=CUTOFF_YEAR,
    ):
        self.automation = automation
        self.adapter = adapter
        self.delivery = delivery
        self.retry_cap = retry_cap
        self.settle_ms = settle_ms
        self.cutoff_year = cutoff_year

    async def _best_effort(self, step, fn, default):
        try:
            return await fn(self.automation)
        except Exception as e:
            logger.warning(f"{step} failed, continuing without it: {e}")
            return default

    async def prepare(self, session: HarvestSession):
        """
        Load the target page and set it up for harvesting.

        Only the page load is fatal (PageLoadError propagates). Popup
        dismissal, hotel name lookup, revealing the full review panel and
        sorting by latest are best-effort and fall back to defaults.
        """
        logger.info(f"Opening the hotel page: {session.target_url}")
        await self.automation.load(session.target_url)

        dismissed = await self._best_effort("Popup dismissal", self.adapter.dismiss_popups, 0)
        if dismissed:
            logger.info(f"Dismissed {dismissed} popup(s)")

        session.hotel_name = await self._best_effort(
            "Hotel name lookup", self.adapter.resolve_hotel_name, UNKNOWN_HOTEL
        )
        logger.info(f"Hotel Name: {session.hotel_name}")

        await self._best_effort("Show all reviews", self.adapter.reveal_all_reviews, False)
        await self._best_effort("Sort by latest", self.adapter.sort_by_latest, False)

        selector = self.adapter.review_card_selector
        if selector:
            found = await self._best_effort(
                "Waiting for review cards",
                lambda automation: automation.wait_for(selector),
                False,
            )
            if not found:
                logger.info("No review cards rendered yet")

    async def extract_page(self, session: HarvestSession):
        """
        Extract and normalize the reviews currently on the page.

        Transient automation failures are retried up to the retry cap. When the
        cap is reached the session is terminated with
        extractionFailureExhausted and None is returned.

        Returns:
            list[Review] or None: valid reviews in page order
        """

        def log_retry(state):
            logger.warning(
                f"Error during review extraction (attempt {state.attempt_number}). Retrying..."
            )

        async def settle(seconds):
            await self.automation.wait(round(seconds * 1000))

        try:
            async for attempt in extraction_retry(
                self.retry_cap, self.settle_ms, before_sleep=log_retry, sleep=settle
            ):
                with attempt:
                    raws = await self.adapter.extract_cards(self.automation)
        except AutomationError as e:
            logger.error(f"Review extraction failed {self.retry_cap} times: {e}")
            session.terminate(TerminationReason.EXTRACTION_FAILURE_EXHAUSTED)
            return None

        reviews = [
            normalize_review(raw, session.hotel_name, self.adapter.label, self.adapter.months)
            for raw in raws
        ]
        return [r for r in reviews if is_valid_review(r)]

    def evaluate(self, session: HarvestSession, reviews) -> bool:
        """
        Decide whether a freshly extracted page is new content.

        An empty page, or one whose leading comment equals the last accepted
        page's, counts as stale. Reaching the retry cap of consecutive stale
        pages terminates the session with retriesExhausted.

        Returns:
            bool: True when the page is accepted
        """
        fingerprint = leading_comment(reviews)
        if not reviews or fingerprint == session.leading_fingerprint:
            session.stale_retries += 1
            if session.stale_retries >= self.retry_cap:
                logger.warning(
                    f"Page {session.page_index} still stale after {session.stale_retries} tries"
                )
                session.terminate(TerminationReason.RETRIES_EXHAUSTED)
            else:
                logger.warning("Repeated or empty review page. Retrying...")
            return False

        session.stale_retries = 0
        session.leading_fingerprint = fingerprint
        return True

    def apply_cutoff(self, session: HarvestSession, reviews) -> int:
        """
        Append reviews in page order until one is dated before the cutoff year.

        The first record older than the cutoff ends the harvest; it and the
        rest of the page are dropped. Reviews with an unknown date never
        trigger the cutoff.

        Returns:
            int: number of reviews appended
        """
        added = 0
        for review in reviews:
            year = review.year
            if year is not None and year < self.cutoff_year:
                logger.info(f"Reached review from {year}, before cutoff {self.cutoff_year}")
                session.terminate(TerminationReason.CUTOFF_REACHED)
                break
            session.accumulated.append(review)
            added += 1
        return added

    async def paginate(self, session: HarvestSession):
        """
        Move to the next review page, or terminate when there is none.

        A missing control ends the harvest with noNextControl and a disabled
        one with nextControlDisabled. A failed click leaves the session on the
        current page with pending_pagination set, so run() tries the click
        again after the next stale read of that page.

        Args:
            session (HarvestSession): current session state

        Note:
            page_index only advances after a successful click.
        """
        control = await self.adapter.next_page_control(self.automation)
        if control is None:
            logger.info("No next-page control, last page reached")
            session.terminate(TerminationReason.NO_NEXT_CONTROL)
            return
        if await self.adapter.is_next_page_disabled(self.automation, control):
            logger.info("Next-page control disabled, last page reached")
            session.terminate(TerminationReason.NEXT_CONTROL_DISABLED)
            return
        if not await self.adapter.go_to_next_page(self.automation, control):
            logger.warning(f"Could not leave page {session.page_index}, retrying after re-read")
            session.pending_pagination = True
            return
        session.pending_pagination = False
        await self.automation.wait(self.settle_ms)
        session.page_index += 1

    async def run(self, session: HarvestSession) -> HarvestOutcome:
        """
        Drive one session from page load to delivery.

        Graceful termination always ends in exactly one delivery attempt.
        Fatal errors (page load) and cancellation propagate before delivery,
        so nothing partial is sent.

        Args:
            session (HarvestSession): fresh session state

        Returns:
            HarvestOutcome: termination reason, review count and delivery result
        """
        await self.prepare(session)

        while not session.terminated:
            logger.info(f"Scraping page {session.page_index}...")
            await self.automation.wait(self.settle_ms)

            reviews = await self.extract_page(session)
            if reviews is None:
                break
            if not self.evaluate(session, reviews):
                # unchanged page after a failed click: click again
                if session.pending_pagination and not session.terminated:
                    await self.paginate(session)
                continue

            added = self.apply_cutoff(session, reviews)
            logger.info(
                f"Collected {added} of {len(reviews)} reviews from page {session.page_index}"
            )
            if session.terminated:
                break

            await self.paginate(session)

        logger.info(
            f"Harvest terminated ({session.termination_reason.value}). "
            f"Total Reviews Scraped: {len(session.accumulated)}"
        )
        result = await self.delivery.deliver(
            session.accumulated, session.hotel_id, self.adapter.ota
        )
        return HarvestOutcome(
            termination_reason=session.termination_reason,
            review_count=len(session.accumulated),
            hotel_name=session.hotel_name,
            pages=session.page_index,
            delivery=result,
        )


def validate_request(source, hotel_url, hotel_id):
    """
    Validate a harvest request before any browser is launched.

    Returns:
        tuple: (HarvestRequest, SiteAdapter)

    Raises:
        InvalidRequestError: unsupported source, or missing url/hotel_id
    """
    adapter = get_adapter(source)
    if not hotel_url or not hotel_id:
        raise InvalidRequestError("Missing url or hotel_id")
    request = HarvestRequest(source=adapter.source, hotel_url=hotel_url, hotel_id=hotel_id)
    return request, adapter


async def harvest(source, hotel_url, hotel_id, delivery=None, automation_factory=open_automation):
    """
    Run one complete harvest session.

    Validates the request, opens a browser session, runs the engine and
    releases the browser. A delivery client is created (and closed) when none
    is passed in.

    Raises:
        InvalidRequestError: on request validation failure
        AutomationLaunchError, PageLoadError: fatal session failures
    """
    request, adapter = validate_request(source, hotel_url, hotel_id)
    session = HarvestSession(
        target_url=request.hotel_url,
        hotel_id=request.hotel_id,
        source=request.source,
    )
    own_delivery = delivery is None
    if own_delivery:
        delivery = DeliveryClient()
    try:
        async with automation_factory() as automation:
            engine = HarvestEngine(automation, adapter, delivery)
            return await engine.run(session)
    finally:
        if own_delivery:
            await delivery.close()


# convenience script
async def main(argv=None):
    parser = argparse.ArgumentParser(description="Harvest hotel reviews from an OTA page")
    parser.add_argument("source", help="OTA key, e.g. ticketcom")
    parser.add_argument("hotel_url")
    parser.add_argument("hotel_id")
    args = parser.parse_args(argv)

    try:
        outcome = await harvest(args.source, args.hotel_url, args.hotel_id)
    except InvalidRequestError as e:
        logger.error(str(e))
        return 2
    except HarvestError as e:
        logger.exception(f"Harvest failed: {e}")
        return 1

    print(json.dumps(outcome.model_dump(mode="json")))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
