import re
from datetime import date
from typing import Mapping, Optional

from .models import (
    DEFAULT_COMMENT,
    DEFAULT_USERNAME,
    UNKNOWN_DATE,
    RawReview,
    Review,
)

MONTHS = {
    "Jan": 1,
    "Feb": 2,
    "Mar": 3,
    "Apr": 4,
    "May": 5,
    "Jun": 6,
    "Jul": 7,
    "Aug": 8,
    "Sep": 9,
    "Oct": 10,
    "Nov": 11,
    "Dec": 12,
}

RATING_SCALE = 2
DATE_RE = re.compile(r"(\d{1,2}) (\w{3}) (\d{4})")
DECIMAL_RE = re.compile(r"[-+]?(?:\d+(?:\.\d*)?|\.\d+)")


def normalize_rating(raw) -> Optional[float]:
    """
    Convert a 0-5 site rating into the 0-10 scale.

    Accepts a comma as decimal separator ("4,5") and, like a lenient decimal
    parse, ignores trailing text after the leading number ("4.5/5").

    Returns:
        float or None: doubled rating, or None when no number can be read
    """
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return float(raw) * RATING_SCALE
    text = str(raw).strip().replace(",", ".", 1)
    m = DECIMAL_RE.match(text)
    if not m:
        return None
    return float(m.group(0)) * RATING_SCALE


def normalize_date(raw, months: Optional[Mapping[str, int]] = None) -> str:
    """
    Canonicalize "<day> <Mon> <year>" into zero-padded DD-MM-YYYY.

    The month key is the exact three-letter abbreviation (case-sensitive).
    Anything that does not match, names an unknown month or is not a real
    calendar day yields UNKNOWN_DATE instead of raising.
    """
    if not raw:
        return UNKNOWN_DATE
    m = DATE_RE.search(str(raw).strip())
    if not m:
        return UNKNOWN_DATE
    day, month_key, year = m.groups()
    month = (months or MONTHS).get(month_key)
    if month is None:
        return UNKNOWN_DATE
    try:
        d = date(int(year), month, int(day))
    except ValueError:
        return UNKNOWN_DATE
    return f"{d.day:02d}-{d.month:02d}-{d.year:04d}"


def is_valid_review(review: Review) -> bool:
    """True iff the review has a real comment and a positive rating."""
    comment = (review.comment or "").strip()
    if not comment or comment == DEFAULT_COMMENT:
        return False
    return review.rating is not None and review.rating > 0


def normalize_review(
    raw: RawReview,
    hotel_name: str,
    label: str,
    months: Optional[Mapping[str, int]] = None,
) -> Review:
    """
    Turn raw card fields into a Review.

    Args:
        raw (RawReview): fields as read from the page; any may be None
        hotel_name (str): hotel name resolved during preparation
        label (str): OTA label attached to the review
        months (Mapping[str, int], optional): month table for localized dates

    Returns:
        Review: with defaults filled in ("Anonymous", "-", "Unknown Date").
            Validity is not checked here, see is_valid_review.
    """
    username = (raw.username or "").strip()
    comment = (raw.comment or "").strip()
    return Review(
        username=username or DEFAULT_USERNAME,
        rating=normalize_rating(raw.rating),
        comment=comment or DEFAULT_COMMENT,
        timestamp=normalize_date(raw.date_text, months),
        hotel_name=hotel_name,
        source=label,
    )
