from unittest.mock import MagicMock

from crawler.cancellation import CancelToken
from crawler.retry import PERMANENT, TRANSIENT, RetryPolicy
from crawler.sources.collection_api import (
    BggXmlClient,
    CollectionApiSource,
    item_to_catalog,
    parse_collection,
    parse_search,
)
from crawler.types import OUTCOME_PARTIAL, OUTCOME_SUCCESS, OUTCOME_TOTAL, CrawlTarget

COLLECTION_XML = """<?xml version="1.0" encoding="utf-8"?>
<items totalitems="3">
  <item objecttype="thing" objectid="13" subtype="boardgame">
    <name sortindex="1">Catan</name>
    <yearpublished>1995</yearpublished>
    <image>https://img/catan.jpg</image>
    <thumbnail>https://img/catan_t.jpg</thumbnail>
    <stats minplayers="3" maxplayers="4" playingtime="120">
      <rating value="N/A"><average value="7.1" /></rating>
    </stats>
  </item>
  <item objecttype="thing" objectid="266192" subtype="boardgame">
    <name sortindex="1">Wingspan</name>
  </item>
  <item objecttype="thing" subtype="boardgame">
    <name sortindex="1">Broken Row</name>
  </item>
</items>
"""

SEARCH_XML = """<?xml version="1.0" encoding="utf-8"?>
<items total="2">
  <item type="boardgame" id="13"><name type="primary" value="Catan" /></item>
  <item type="boardgame" id="27710"><name type="primary" value="Catan Dice Game" /></item>
</items>
"""


def _response(status, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    return resp


def _session(*responses):
    session = MagicMock()
    session.headers = {}
    session.get.side_effect = list(responses)
    return session


def _source(session, max_attempts=2):
    client = BggXmlClient(base_url="https://bgg.test/xmlapi2/", token="tok", session=session)
    return CollectionApiSource(client, RetryPolicy(base_delay_seconds=0, max_attempts=max_attempts))


def _target(**kwargs):
    values = {"id": 5, "name": "Meeple Hall games", "query": "meeplehall", "entity_id": 1}
    values.update(kwargs)
    return CrawlTarget(**values)


def test_parse_collection_reads_items_and_counts_broken_rows():
    items, skipped = parse_collection(COLLECTION_XML)
    assert skipped == 1
    catan, wingspan = items
    assert catan["id"] == 13
    assert catan["min_players"] == 3 and catan["max_players"] == 4
    assert catan["playing_time"] == 120
    assert catan["rating"] == 7.1
    assert wingspan["min_players"] is None


def test_item_to_catalog_uses_bgg_ids():
    items, _ = parse_collection(COLLECTION_XML)
    item = item_to_catalog(items[0])
    assert item.external_id == "bgg:13"
    assert item.image_url == "https://img/catan_t.jpg"
    assert item.source_url == "https://boardgamegeek.com/boardgame/13"


def test_parse_search():
    hits = parse_search(SEARCH_XML)
    assert hits == [{"id": 13, "name": "Catan"}, {"id": 27710, "name": "Catan Dice Game"}]


def test_client_sends_auth_header_and_params():
    session = _session(_response(200, COLLECTION_XML))
    client = BggXmlClient(base_url="https://bgg.test/xmlapi2/", token="tok", session=session)
    result = client.collection("meeplehall")

    assert result.ok
    assert session.headers["Authorization"] == "Bearer tok"
    args, kwargs = session.get.call_args
    assert args[0] == "https://bgg.test/xmlapi2/collection"
    assert kwargs["params"]["username"] == "meeplehall"


def test_queued_response_is_retried_until_ready():
    session = _session(_response(202), _response(200, COLLECTION_XML))
    result = _source(session).fetch(_target(), 10, CancelToken())

    assert result.outcome.kind == OUTCOME_SUCCESS
    assert session.get.call_count == 2
    record = result.records[0]
    assert record.entity_id == 1
    assert record.bgg_username == "meeplehall"
    assert [i.name for i in record.catalog_items] == ["Catan", "Wingspan"]
    assert result.outcome.skipped == 1


def test_still_queued_after_ceiling_is_transient_total_failure():
    session = _session(*[_response(202)] * 3)
    result = _source(session, max_attempts=2).fetch(_target(), 10, CancelToken())

    assert result.outcome.kind == OUTCOME_TOTAL
    assert result.outcome.error_class == TRANSIENT
    assert session.get.call_count == 3


def test_not_found_is_permanent_without_retry():
    session = _session(_response(404))
    result = _source(session).fetch(_target(), 10, CancelToken())

    assert result.outcome.error_class == PERMANENT
    assert session.get.call_count == 1


def test_result_cap_applies_to_catalog_items():
    session = _session(_response(200, COLLECTION_XML))
    result = _source(session).fetch(_target(), 1, CancelToken())
    assert len(result.records[0].catalog_items) == 1


def test_unbound_target_is_permanent():
    session = _session()
    result = _source(session).fetch(_target(entity_id=None), 10, CancelToken())
    assert result.outcome.error_class == PERMANENT
    session.get.assert_not_called()


def test_only_unusable_items_is_partial():
    xml = '<items><item objecttype="thing"><name>No id</name></item></items>'
    session = _session(_response(200, xml))
    result = _source(session).fetch(_target(), 10, CancelToken())
    assert result.outcome.kind == OUTCOME_PARTIAL
    assert result.records[0].catalog_items == []


def test_exact_match_ignores_partial_names():
    session = _session(_response(200, SEARCH_XML), _response(200, SEARCH_XML))
    client = BggXmlClient(session=session)
    assert client.exact_match("catan") == {"id": 13, "name": "Catan"}
    assert client.exact_match("Catan Junior") is None
