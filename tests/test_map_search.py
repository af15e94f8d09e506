import pytest
import requests

from crawler.cancellation import CancelToken, CrawlCancelled
from crawler.retry import PERMANENT, TRANSIENT, ProviderStatusError, RetryPolicy
from crawler.sources.map_search import MapSearchSource, SearchResponse, place_to_record
from crawler.types import OUTCOME_PARTIAL, OUTCOME_SUCCESS, OUTCOME_TOTAL, CrawlTarget

MAPS_URL = "https://www.google.com/maps/place/Meeple/@47.6062,-122.3321,17z/data=!1s0x54906ab:0x1a2b3c"


def _place(name, place_id=None, **extra):
    place = {
        "name": name,
        "address": "123 Pike St, Seattle, WA 98101, United States",
        "latitude": 47.6,
        "longitude": -122.3,
    }
    if place_id:
        place["place_id"] = place_id
    place.update(extra)
    return place


class FakeMapClient:
    def __init__(self, responses):
        # query -> list of SearchResponse or Exception, consumed in order
        self.responses = {q: list(r) for q, r in responses.items()}
        self.calls = []

    def search(self, location, query, max_results):
        self.calls.append((location, query))
        item = self.responses[query].pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _target():
    return CrawlTarget(id=1, name="Seattle, WA", country="United States")


def _source(client, queries):
    policy = RetryPolicy(base_delay_seconds=0, max_attempts=2)
    return MapSearchSource(client, queries, policy, query_delay_seconds=0)


def test_place_to_record_normalizes_payload():
    record = place_to_record(
        {
            "name": "Meeple Hall",
            "maps_url": MAPS_URL,
            "address": "123 Pike St, Seattle, WA 98101, United States",
            "phone": " +1 206-555-0100",
            "rating": "4.5",
            "review_count": "1,234",
            "reviews": [
                {"content": "Great games", "author": "Ann", "rating": "5", "date_text": "2 days ago"},
                {"content": "   "},
            ],
            "photo_urls": ["https://img/1.jpg"],
            "photo_local_paths": ["cafes/meeple/1.jpg"],
        }
    )
    assert record.external_id == "maps:0x54906ab:0x1a2b3c"
    assert (record.latitude, record.longitude) == (47.6062, -122.3321)
    assert record.city == "Seattle"
    assert record.postal_code == "98101"
    assert record.phone == "+1 206-555-0100"
    assert record.rating == 4.5
    assert record.review_count == 1234
    assert [r.content for r in record.reviews] == ["Great games"]
    assert record.reviews[0].visit_date is not None
    assert record.photos[0].local_path == "cafes/meeple/1.jpg"


def test_place_without_name_is_rejected():
    with pytest.raises(ValueError):
        place_to_record({"name": "  "})


def test_merges_queries_by_external_id_then_name():
    client = FakeMapClient(
        {
            "board game cafe": [SearchResponse(places=[_place("Meeple Hall", "p1"), _place("Dice Den")])],
            "tabletop": [SearchResponse(places=[_place("Meeple Hall (Downtown)", "p1"), _place("dice den"), _place("Rook & Pawn", "p3")])],
        }
    )
    result = _source(client, ["board game cafe", "tabletop"]).fetch(_target(), 10, CancelToken())

    assert result.outcome.kind == OUTCOME_SUCCESS
    assert [r.name for r in result.records] == ["Meeple Hall", "Dice Den", "Rook & Pawn"]
    assert client.calls[0] == ("Seattle, WA, United States", "board game cafe")


def test_caps_results_at_max_results():
    places = [_place(f"Cafe {i}", f"p{i}") for i in range(6)]
    client = FakeMapClient({"q": [SearchResponse(places=places)]})
    result = _source(client, ["q"]).fetch(_target(), 4, CancelToken())
    assert len(result.records) == 4


def test_direct_hit_keeps_single_place():
    client = FakeMapClient({"q": [SearchResponse(places=[_place("Only One", "p1"), _place("Stray", "p2")], direct_hit=True)]})
    result = _source(client, ["q"]).fetch(_target(), 10, CancelToken())
    assert [r.name for r in result.records] == ["Only One"]


def test_unusable_places_are_counted_as_skipped():
    client = FakeMapClient({"q": [SearchResponse(places=[{"name": ""}, _place("Good One")])]})
    result = _source(client, ["q"]).fetch(_target(), 10, CancelToken())
    assert len(result.records) == 1
    assert result.outcome.skipped == 1


def test_transient_error_is_retried_within_the_call():
    client = FakeMapClient({"q": [requests.Timeout("slow"), SearchResponse(places=[_place("Late Cafe")])]})
    result = _source(client, ["q"]).fetch(_target(), 10, CancelToken())
    assert result.outcome.kind == OUTCOME_SUCCESS
    assert len(client.calls) == 2


def test_one_failed_query_gives_partial_failure():
    client = FakeMapClient(
        {
            "q1": [SearchResponse(places=[_place("Kept Cafe")])],
            "q2": [requests.Timeout("slow")] * 3,
        }
    )
    result = _source(client, ["q1", "q2"]).fetch(_target(), 10, CancelToken())
    assert result.outcome.kind == OUTCOME_PARTIAL
    assert result.outcome.ok
    assert [r.name for r in result.records] == ["Kept Cafe"]


def test_all_queries_failing_permanently_is_total_failure():
    client = FakeMapClient({"q1": [ProviderStatusError(404)], "q2": [ProviderStatusError(404)]})
    result = _source(client, ["q1", "q2"]).fetch(_target(), 10, CancelToken())
    assert result.outcome.kind == OUTCOME_TOTAL
    assert result.outcome.error_class == PERMANENT
    assert len(client.calls) == 2


def test_exhausted_transient_failure_stays_transient():
    client = FakeMapClient({"q": [ProviderStatusError(429)] * 3})
    result = _source(client, ["q"]).fetch(_target(), 10, CancelToken())
    assert result.outcome.kind == OUTCOME_TOTAL
    assert result.outcome.error_class == TRANSIENT
    assert len(client.calls) == 3


def test_empty_location_is_permanent():
    target = CrawlTarget(id=2, name=" ", country=None)
    result = _source(FakeMapClient({}), ["q"]).fetch(target, 10, CancelToken())
    assert result.outcome.error_class == PERMANENT


def test_cancelled_token_aborts_fetch():
    token = CancelToken()
    token.cancel()
    client = FakeMapClient({"q": [SearchResponse(places=[_place("Never")])]})
    with pytest.raises(CrawlCancelled):
        _source(client, ["q"]).fetch(_target(), 10, token)
    assert client.calls == []
