import pytest

import models as M
import roster
import schemas as S
from errors import DuplicateCard, NotFound, ReaderHasBooks
from sqlalchemy import select, func


def reader_in(card, name="Петров Пётр"):
    return S.ReaderIn(library_card_id=card, name=name, address="г. Тула, ул. Мира, 5", phone="8-900-000-00-00")


def test_input_is_normalized():
    r = reader_in("  чб-00012 ")
    assert r.library_card_id == "ЧБ-00012"
    assert r.phone == "89000000000"


def test_duplicate_card_is_rejected(db, make_reader):
    make_reader(card="ЧБ-00001")
    with pytest.raises(DuplicateCard):
        roster.create_reader(db, reader_in(" чб-00001"))
    assert db.scalar(select(func.count(M.Reader.reader_id))) == 1


def test_update_to_taken_card_is_rejected(db, make_reader):
    make_reader(card="ЧБ-00001")
    other = make_reader(card="ЧБ-00002")
    with pytest.raises(DuplicateCard):
        roster.update_reader(db, other.reader_id, reader_in("ЧБ-00001"))
    # keeping its own card is fine
    r = roster.update_reader(db, other.reader_id, reader_in("ЧБ-00002", name="Новое Имя"))
    assert r.name == "Новое Имя"


def test_next_card_id_uses_max_suffix(db, make_reader):
    assert roster.next_card_id(db) == "ЧБ-00001"
    for card in ("ЧБ-00001", "ЧБ-00007", "ЧБ-00003"):
        make_reader(card=card)
    make_reader(card="ЧБ-XYZ")
    assert roster.next_card_id(db) == "ЧБ-00008"


def test_list_readers_search_and_has_books(db, make_book, make_reader, make_issue):
    a = make_reader(card="ЧБ-00001", name="Алексеев")
    make_reader(card="ЧБ-00002", name="Борисов")
    make_issue(make_book(), a)

    page = roster.list_readers(db, S.ReaderFilter(search="00002"))
    assert [r.name for r in page.items] == ["Борисов"]

    page = roster.list_readers(db, S.ReaderFilter(has_books="1"))
    assert [r.name for r in page.items] == ["Алексеев"]

    page = roster.list_readers(db, S.ReaderFilter(has_books="0"))
    assert [r.name for r in page.items] == ["Борисов"]

    page = roster.list_readers(db, S.ReaderFilter(sort_by="name", sort_order="desc"))
    assert [r.name for r in page.items] == ["Борисов", "Алексеев"]


def test_issue_counts_and_stats(db, make_book, make_reader, make_issue):
    import ledger

    r = make_reader()
    first = make_issue(make_book(title="А"), r)
    make_issue(make_book(title="Б"), r)
    ledger.return_issue(db, first.issue_id)

    assert roster.issue_counts(db)[r.reader_id] == (1, 2)
    db.expire_all()
    stats = roster.reader_stats(roster.get_reader(db, r.reader_id))
    assert stats == {"active_issues": 1, "total_issues": 2, "returned_issues": 1}

    page = roster.readers_with_books(db)
    assert [x.reader_id for x in page.items] == [r.reader_id]


def test_delete_reader_with_books_is_refused(db, make_book, make_reader, make_issue):
    r = make_reader()
    make_issue(make_book(), r)
    with pytest.raises(ReaderHasBooks):
        roster.delete_reader(db, r.reader_id)
    assert roster.get_reader(db, r.reader_id).name == "Иванов Иван"


def test_delete_reader(db, make_reader):
    r = make_reader()
    assert roster.delete_reader(db, r.reader_id) == "Иванов Иван"
    with pytest.raises(NotFound):
        roster.get_reader(db, r.reader_id)


def test_search_readers(db, make_reader):
    make_reader(card="ЧБ-00042", name="Сидорова Анна")
    (hit,) = roster.search_readers(db, "00042", "card")
    assert hit["label"] == "Сидорова Анна (ЧБ-00042)"
    assert hit["reader"]["library_card_id"] == "ЧБ-00042"
    assert roster.search_readers(db, "Сидор")[0]["value"] == hit["value"]


def test_display_helpers():
    assert roster.format_phone("79001234567") == "+7 (900) 123-45-67"
    assert roster.format_phone("123") == "123"
    assert roster.short_address("г. Москва, ул. Ленина, д. 1, кв. 5") == "г. Москва, ул. Ленина"
    assert roster.short_address("деревня Ивановка") == "деревня Ивановка"
