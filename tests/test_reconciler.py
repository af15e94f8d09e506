import pytest
from sqlalchemy import func, select

from conftest import make_record
from crawler.reconciler import (
    Reconciler,
    ReconcilerIntegrityError,
    RecordRejected,
    merge_values,
)
from crawler.schema import board_games, cafe_games, cafes, photos, reviews
from crawler.types import SOURCE_COLLECTION_API, CatalogItemData, NormalizedRecord, PhotoData, ReviewData


@pytest.fixture()
def reconciler(clock):
    return Reconciler(clock=clock)


@pytest.fixture()
def upsert(engine, reconciler):
    def _upsert(record):
        with engine.connect() as conn:
            return reconciler.upsert(conn, record, reconciler.slug_allocator(conn))

    return _upsert


def _cafes(engine):
    with engine.connect() as conn:
        return [dict(r._mapping) for r in conn.execute(select(cafes).order_by(cafes.c.id))]


def _count(engine, table):
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar_one()


def test_creates_cafe_with_slug_and_defaults(engine, upsert):
    result = upsert(make_record("Meeple Hall", external_id="maps:p1"))

    assert result.was_created
    (row,) = _cafes(engine)
    assert row["id"] == result.entity_id
    assert row["slug"] == "meeple-hall"
    assert row["country"] == "United States"
    assert row["total_reviews"] == 0
    assert row["last_verified_at"] is not None


def test_same_record_twice_is_idempotent(engine, upsert):
    record = make_record("Meeple Hall", external_id="maps:p1", rating=4.5, phone="555-0100")
    first = upsert(record)
    before = _cafes(engine)[0]
    second = upsert(record)
    after = _cafes(engine)[0]

    assert not second.was_created
    assert second.entity_id == first.entity_id
    assert second.changed_fields == []
    assert _count(engine, cafes) == 1
    for field in ("name", "slug", "external_id", "latitude", "longitude", "city"):
        assert after[field] == before[field]


def test_empty_incoming_never_clears_a_field(engine, upsert):
    upsert(make_record("Meeple Hall", external_id="maps:p1", phone="555-0100", rating=4.2))
    upsert(make_record("Meeple Hall", external_id="maps:p1", phone=None, rating=None, website="  "))

    row = _cafes(engine)[0]
    assert row["phone"] == "555-0100"
    assert row["average_rating"] == 4.2
    assert row["website"] is None


def test_identifying_fields_stay_and_volatile_fields_refresh(engine, upsert):
    upsert(make_record("Board Cafe", external_id="ext-42"))
    result = upsert(
        make_record("Board Cafe Downtown", external_id="ext-42", rating=4.6, review_count=88, lat=1.0, lng=2.0)
    )

    row = _cafes(engine)[0]
    assert row["name"] == "Board Cafe"
    assert row["latitude"] == 47.6
    assert row["average_rating"] == 4.6
    assert row["total_reviews"] == 88
    assert result.changed_fields == ["average_rating", "total_reviews"]


def test_gap_fill_writes_only_empty_fields(engine, upsert):
    upsert(make_record("Meeple Hall", external_id="maps:p1", website="https://old.example"))
    upsert(make_record("Meeple Hall", external_id="maps:p1", website="https://new.example", email="hi@meeple.example"))

    row = _cafes(engine)[0]
    assert row["website"] == "https://old.example"
    assert row["email"] == "hi@meeple.example"


def test_name_and_city_fallback_adopts_external_id(engine, upsert):
    upsert(make_record("Meeple Hall"))
    result = upsert(make_record("MEEPLE HALL", external_id="maps:p9", city="seattle"))

    assert not result.was_created
    assert _count(engine, cafes) == 1
    assert _cafes(engine)[0]["external_id"] == "maps:p9"


def test_same_name_in_other_city_is_a_new_cafe(engine, upsert):
    upsert(make_record("Board Cafe"))
    upsert(make_record("Board Cafe", city="Portland"))

    slugs = [row["slug"] for row in _cafes(engine)]
    assert slugs == ["board-cafe", "board-cafe-1"]


def test_record_without_geolocation_is_rejected(engine, upsert):
    with pytest.raises(RecordRejected):
        upsert(make_record("Nowhere Cafe", lat=None))
    assert _count(engine, cafes) == 0


def test_bound_record_for_missing_cafe_is_rejected(upsert):
    with pytest.raises(RecordRejected):
        upsert(NormalizedRecord(source=SOURCE_COLLECTION_API, entity_id=404))


def test_duplicate_external_id_in_storage_raises_integrity_error(engine, reconciler, upsert, monkeypatch):
    upsert(make_record("Meeple Hall", external_id="maps:p1"))
    existing = _cafes(engine)[0]
    monkeypatch.setattr(reconciler.entities, "by_external_id", lambda conn, ext: [existing, dict(existing, id=99)])

    with pytest.raises(ReconcilerIntegrityError):
        upsert(make_record("Meeple Hall", external_id="maps:p1", rating=5.0, reviews=[ReviewData(content="x")]))

    assert _cafes(engine)[0]["average_rating"] is None
    assert _count(engine, reviews) == 0


def test_reviews_are_deduplicated_by_content(engine, upsert):
    upsert(make_record("Meeple Hall", external_id="maps:p1", reviews=[ReviewData(content="Great games"), ReviewData(content="Nice tea")]))
    result = upsert(
        make_record("Meeple Hall", external_id="maps:p1", reviews=[ReviewData(content="Great games"), ReviewData(content="Loud on Fridays")])
    )

    assert result.reviews_added == 1
    assert _count(engine, reviews) == 3


def test_photos_dedupe_by_local_path_and_keep_order(engine, upsert):
    upsert(make_record("Meeple Hall", external_id="maps:p1", photos=[PhotoData(url="https://img/1", local_path="m/1.jpg")]))
    result = upsert(
        make_record(
            "Meeple Hall",
            external_id="maps:p1",
            photos=[
                PhotoData(url="https://img/1", local_path="m/1.jpg"),
                PhotoData(url="https://img/2", local_path="m/2.jpg"),
                PhotoData(url="https://img/3", local_path=None),
            ],
        )
    )

    assert result.photos_added == 1
    with engine.connect() as conn:
        rows = conn.execute(select(photos.c.local_path, photos.c.display_order).order_by(photos.c.id)).all()
    assert [tuple(r) for r in rows] == [("m/1.jpg", 0), ("m/2.jpg", 1)]


def test_catalog_links_are_refreshed_not_duplicated(engine, upsert, clock):
    cafe_id = upsert(make_record("Meeple Hall", external_id="maps:p1")).entity_id
    items = [CatalogItemData(name="Catan", external_id="bgg:13"), CatalogItemData(name="Azul")]
    upsert(NormalizedRecord(source=SOURCE_COLLECTION_API, entity_id=cafe_id, catalog_items=items))

    clock.advance(3600)
    again = [
        CatalogItemData(name="Catan", external_id="bgg:13", price=12.5),
        CatalogItemData(name="Azul", external_id="bgg:230802"),
        CatalogItemData(name="Catan"),
    ]
    result = upsert(NormalizedRecord(source=SOURCE_COLLECTION_API, entity_id=cafe_id, catalog_items=again))

    assert result.items_linked == 2
    assert _count(engine, board_games) == 2
    assert _count(engine, cafe_games) == 2
    with engine.connect() as conn:
        azul = conn.execute(select(board_games).where(board_games.c.name == "Azul")).one()
        catan_link = conn.execute(
            select(cafe_games).join(board_games, board_games.c.id == cafe_games.c.game_id).where(board_games.c.name == "Catan")
        ).one()
    assert azul.external_id == "bgg:230802"
    assert catan_link.price == 12.5


def test_unlink_purges_only_orphaned_games(engine, reconciler, upsert):
    first = upsert(make_record("Meeple Hall", external_id="maps:p1")).entity_id
    second = upsert(make_record("Dice Den", external_id="maps:p2")).entity_id
    upsert(NormalizedRecord(source=SOURCE_COLLECTION_API, entity_id=first, catalog_items=[CatalogItemData(name="Catan"), CatalogItemData(name="Azul")]))
    upsert(NormalizedRecord(source=SOURCE_COLLECTION_API, entity_id=second, catalog_items=[CatalogItemData(name="Catan"), CatalogItemData(name="Hive")]))

    with engine.connect() as conn:
        ids = {r.name: r.id for r in conn.execute(select(board_games.c.id, board_games.c.name))}

    with engine.connect() as conn:
        result = reconciler.unlink_catalog_items(conn, first, [ids["Catan"], ids["Azul"], ids["Hive"]])

    assert result["unlinked"] == 2
    assert result["orphans_deleted"] == [ids["Azul"]]
    with engine.connect() as conn:
        remaining = sorted(r.name for r in conn.execute(select(board_games.c.name)))
    assert remaining == ["Catan", "Hive"]


def test_merge_values_rules():
    existing = {"name": "Board Cafe", "phone": None, "average_rating": 4.0, "opening_hours": "9-5"}
    incoming = {"name": "Other", "phone": "555", "average_rating": 4.5, "opening_hours": None}
    assert merge_values(existing, incoming) == {"phone": "555", "average_rating": 4.5}


def test_overlong_text_is_clipped_to_column_width(engine, upsert):
    long_name = "Meeple " * 40
    record = make_record(
        long_name,
        description="d" * 2500,
        reviews=[ReviewData(content="r" * 6000, author="a" * 300)],
        photos=[PhotoData(url="https://img/" + "p" * 1200, local_path="m/1.jpg", caption="c" * 600)],
        catalog_items=[CatalogItemData(name="Azul", description="x" * 5000)],
    )
    first = upsert(record)
    second = upsert(record)

    assert first.was_created and not second.was_created
    (row,) = _cafes(engine)
    assert row["name"] == long_name.strip()[:200]
    assert len(row["description"]) == 2000
    assert second.reviews_added == 0
    with engine.connect() as conn:
        review = conn.execute(select(reviews)).one()._mapping
        photo = conn.execute(select(photos)).one()._mapping
        game = conn.execute(select(board_games)).one()._mapping
    assert (len(review["content"]), len(review["author"])) == (5000, 200)
    assert (len(photo["url"]), len(photo["caption"])) == (1000, 500)
    assert len(game["description"]) == 4000
