from crawler.seed_data import INTERNATIONAL_CITIES, US_CITIES, seed_rows, seed_targets
from crawler.store import TargetStore
from crawler.types import SOURCE_MAP_SEARCH


def test_city_lists_have_no_duplicates():
    assert len(US_CITIES) == len(set(US_CITIES))
    international = [(name, country) for name, country, _ in INTERNATIONAL_CITIES]
    assert len(international) == len(set(international))


def test_seed_rows_shape():
    rows = seed_rows()
    assert len(rows) == len(US_CITIES) + len(INTERNATIONAL_CITIES)
    assert rows[0] == {"name": "Seattle, WA", "country": "United States", "region": "US", "max_results": 15}
    assert all(r["region"] == "International" for r in rows[len(US_CITIES):])


def test_seed_targets_is_idempotent(engine):
    added = seed_targets(engine)
    assert added == len(seed_rows())
    assert seed_targets(engine) == 0

    store = TargetStore(engine)
    with store.session() as conn:
        targets = store.list_targets(conn)
    assert len(targets) == added
    assert {t.source_type for t in targets} == {SOURCE_MAP_SEARCH}
    assert targets[0].location == "Seattle, WA, United States"
