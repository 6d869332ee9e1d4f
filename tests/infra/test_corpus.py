from __future__ import annotations

from datetime import date


def test_insert_assigns_id_and_created_at(corpus, make_obituary) -> None:
    stored = corpus.insert(make_obituary(age=84, location="Oakville"))

    assert stored is not None
    assert stored.id is not None
    assert stored.created_at is not None
    fetched = corpus.get(stored.id)
    assert fetched.name == "Jane Doe"
    assert fetched.date_of_death == date(2024, 3, 5)
    assert fetched.age == 84
    assert fetched.location == "Oakville"


def test_exact_key_is_unique(corpus, make_obituary) -> None:
    assert corpus.insert(make_obituary(name="Jane Doe")) is not None
    assert corpus.insert(make_obituary(name="  JANE   doe ")) is None
    assert corpus.insert(make_obituary(name="Jane Doe", date_of_death=date(2024, 3, 6))) is not None
    assert corpus.count() == 2


def test_query_by_fingerprint_filters_on_death_date(corpus, make_obituary) -> None:
    corpus.insert(make_obituary(name="Jane Doe"))
    corpus.insert(make_obituary(name="John Roe"))
    corpus.insert(make_obituary(name="Other Day", date_of_death=date(2023, 1, 1)))

    names = [record.name for record in corpus.query_by_fingerprint(date(2024, 3, 5))]

    assert names == ["Jane Doe", "John Roe"]


def test_delete_batch_removes_lowest_ids_first(corpus, make_obituary) -> None:
    ids = [corpus.insert(make_obituary(name=f"Person Number{i}")).id for i in range(5)]

    assert corpus.delete_batch(2) == 2
    assert corpus.get(ids[0]) is None
    assert corpus.get(ids[1]) is None
    assert corpus.get(ids[2]) is not None
    assert corpus.delete_batch(10) == 3
    assert corpus.delete_batch(10) == 0
    assert corpus.count() == 0


def test_iter_all_yields_plain_rows(corpus, make_obituary) -> None:
    corpus.insert(make_obituary(name="Jane Doe"))
    corpus.insert(make_obituary(name="John Roe", date_of_birth=date(1940, 1, 1)))

    rows = list(corpus.iter_all())

    assert [row["name"] for row in rows] == ["Jane Doe", "John Roe"]
    assert "name_key" not in rows[0]
    assert rows[1]["date_of_birth"] == "1940-01-01"
    assert rows[0]["date_of_death"] == "2024-03-05"
