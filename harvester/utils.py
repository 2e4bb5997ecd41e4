from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .errors import AutomationError


def extraction_retry(attempts=3, wait_ms=0, before_sleep=None, sleep=None):
    """
    Create a tenacity retrying controller for page extraction.

    Retries only on AutomationError, waiting a fixed settle interval between
    attempts. After the last attempt the AutomationError itself is re-raised.

    Args:
        attempts (int): total attempts, first one included. Defaults to 3.
        wait_ms (int): settle delay between attempts in milliseconds.
        before_sleep (callable, optional): tenacity hook called with the
            retry state before each wait, used for logging.
        sleep (callable, optional): coroutine function taking seconds that
            performs the wait. Defaults to tenacity's asyncio sleep.

    Example:
        async for attempt in extraction_retry(attempts=3, wait_ms=3000):
            with attempt:
                raws = await adapter.extract_cards(automation)
    """
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(wait_ms / 1000),
        retry=retry_if_exception_type(AutomationError),
        reraise=True,
        before_sleep=before_sleep,
        **kwargs,
    )


def leading_comment(reviews):
    """Fingerprint of a page: the comment of its first review, or None."""
    return reviews[0].comment if reviews else None
