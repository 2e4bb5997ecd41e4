import pytest

from harvester.models import UNKNOWN_DATE, RawReview, Review
from harvester.normalizer import (
    is_valid_review,
    normalize_date,
    normalize_rating,
    normalize_review,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("4,5", 9.0),
        ("4.5", 9.0),
        (" 5 ", 10.0),
        ("3", 6.0),
        ("4,2/5", 8.4),
        ("0", 0.0),
        (4.5, 9.0),
    ],
)
def test_normalize_rating_doubles_site_scale(raw, expected):
    assert normalize_rating(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", [None, "", "bagus", "N/A", "-"])
def test_normalize_rating_invalid(raw):
    assert normalize_rating(raw) is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("3 Jan 2025", "03-01-2025"),
        ("12 Mar 2024", "12-03-2024"),
        ("Ditulis 7 Nov 2023", "07-11-2023"),
        ("31 Dec 2025 ", "31-12-2025"),
    ],
)
def test_normalize_date_formats_day_month_year(raw, expected):
    assert normalize_date(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "kemarin",
        "12 January 2025",  # not the three-letter form
        "12 jan 2025",  # month keys are case-sensitive
        "12 Mei 2025",  # no key for this abbreviation
        "31 Feb 2025",  # not a calendar day
        "2025-03-12",
    ],
)
def test_normalize_date_unknown(raw):
    assert normalize_date(raw) == UNKNOWN_DATE


def test_normalize_date_with_localized_month_table():
    months = {"Mei": 5, "Agu": 8}
    assert normalize_date("9 Mei 2025", months) == "09-05-2025"
    assert normalize_date("9 May 2025", months) == UNKNOWN_DATE


def review(comment="Kamar bersih", rating=8.0):
    return Review(comment=comment, rating=rating, source="Ticket.com")


def test_is_valid_review():
    assert is_valid_review(review())
    assert not is_valid_review(review(comment=""))
    assert not is_valid_review(review(comment="-"))
    assert not is_valid_review(review(rating=None))
    assert not is_valid_review(review(rating=0))
    assert not is_valid_review(review(rating=-2))


def test_normalize_review_applies_defaults():
    raw = RawReview(rating="4,0", comment="  Sarapan enak  ", date_text="1 Feb 2025")
    r = normalize_review(raw, "Hotel Santika", "Ticket.com")

    assert r.username == "Anonymous"
    assert r.comment == "Sarapan enak"
    assert r.rating == 8.0
    assert r.timestamp == "01-02-2025"
    assert r.year == 2025
    assert r.hotel_name == "Hotel Santika"
    assert r.model_dump(by_alias=True)["OTA"] == "Ticket.com"


def test_normalize_review_missing_comment_uses_sentinel():
    r = normalize_review(RawReview(rating="5"), "Hotel Santika", "Ticket.com")

    assert r.comment == "-"
    assert r.timestamp == UNKNOWN_DATE
    assert r.year is None
    assert not is_valid_review(r)
