from datetime import datetime, timezone

from crawler.sources.address import (
    clean_text,
    coords_from_url,
    parse_address_components,
    parse_relative_date,
    place_id_from_url,
)

NOW = datetime(2026, 3, 31, 10, 0, tzinfo=timezone.utc)


def test_us_address_with_street():
    parts = parse_address_components("123 Pike St, Seattle, WA 98101, United States")
    assert parts.city == "Seattle"
    assert parts.state == "WA"
    assert parts.postal_code == "98101"
    assert parts.country == "United States"


def test_three_part_address_takes_city_from_state_segment():
    parts = parse_address_components("123 Pike St, Seattle WA 98101, United States")
    assert parts.city == "Seattle"
    assert parts.country == "United States"


def test_international_address():
    parts = parse_address_components("12 Hang Bac, Hoan Kiem, Hanoi, Vietnam")
    assert parts.city == "Hoan Kiem"
    assert parts.state == "Hanoi"
    assert parts.country == "Vietnam"
    assert parts.postal_code is None


def test_single_and_empty_addresses():
    assert parse_address_components("Lisbon").city == "Lisbon"
    empty = parse_address_components(None)
    assert empty.address == "" and empty.city is None


def test_clean_text_strips_icon_glyphs():
    assert clean_text(" 123 Main St ") == "123 Main St"
    assert clean_text(None) == ""


def test_coords_and_place_id_from_maps_url():
    url = "https://www.google.com/maps/place/Cafe/@47.6062,-122.3321,17z/data=!4m6!1s0x54906ab:0x1a2b3c!8m2"
    assert coords_from_url(url) == (47.6062, -122.3321)
    assert place_id_from_url(url) == "0x54906ab:0x1a2b3c"
    assert coords_from_url("https://example.com") == (None, None)
    assert place_id_from_url(None) is None


def test_relative_dates():
    assert parse_relative_date("3 days ago", NOW) == datetime(2026, 3, 28, 10, 0, tzinfo=timezone.utc)
    assert parse_relative_date("a week ago", NOW) is None
    assert parse_relative_date("2 weeks ago", NOW).day == 17
    assert parse_relative_date("1 month ago", NOW) == datetime(2026, 2, 28, 10, 0, tzinfo=timezone.utc)
    assert parse_relative_date("2 years ago", NOW).year == 2024
    assert parse_relative_date("Yesterday", NOW).day == 30
    assert parse_relative_date("Edited recently", NOW) is None
