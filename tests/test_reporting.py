from datetime import date, datetime, timedelta

import ledger
import reporting


def test_readers_csv(db, make_book, make_reader, make_issue):
    a = make_reader(card="ЧБ-00001", name="Алексеев")
    make_reader(card="ЧБ-00002", name="Борисов")
    first = make_issue(make_book(title="А"), a)
    make_issue(make_book(title="Б"), a)
    ledger.return_issue(db, first.issue_id)

    lines = reporting.readers_csv(db).split("\n")
    assert lines[-1] == ""
    lines = lines[:-1]
    assert len(lines) == 3
    assert lines[0] == ";".join(reporting.CSV_HEADER)

    row = lines[1].split(";")
    assert row[0] == "ЧБ-00001"
    assert row[1] == "Алексеев"
    assert row[3] == "79001234567"
    assert row[5:] == ["1", "2"]
    assert lines[2].split(";")[5:] == ["0", "0"]


def test_export_filename():
    assert reporting.export_filename(date(2024, 5, 17)) == "readers_2024-05-17.csv"


def test_top_books_and_readers(db, make_book, make_reader, make_issue):
    a, b = make_book(title="А"), make_book(title="Б")
    r1, r2 = make_reader(card="ЧБ-00001"), make_reader(card="ЧБ-00002")
    issue = make_issue(b, r1)
    ledger.return_issue(db, issue.issue_id)
    make_issue(b, r1)
    make_issue(a, r2)

    books = reporting.book_issue_counts(db)
    assert [(x.title, n) for x, n in books] == [("Б", 2), ("А", 1)]
    readers = reporting.reader_issue_counts(db, limit=1)
    assert [(x.reader_id, n) for x, n in readers] == [(r1.reader_id, 2)]


def test_staff_issue_stats(db, admin, librarian, make_book, make_reader, make_issue):
    issue = make_issue(make_book(), make_reader())
    ledger.return_issue(db, issue.issue_id)
    make_issue(make_book(title="Б"), make_reader(card="ЧБ-00002"))

    rows = {row["user"].login: row for row in reporting.staff_issue_stats(db)}
    assert rows["admin"]["total_issues"] == 0
    assert rows["librarian"]["total_issues"] == 2
    assert rows["librarian"]["active_issues"] == 1
    assert rows["librarian"]["returned_issues"] == 1


def test_overdue_issues(db, make_book, make_reader, make_issue):
    now = datetime(2024, 6, 1)
    late = make_issue(make_book(title="А"), make_reader(card="ЧБ-00001"), date_issued=now - timedelta(days=45))
    make_issue(make_book(title="Б"), make_reader(card="ЧБ-00002"), date_issued=now - timedelta(days=5))
    assert [i.issue_id for i in reporting.overdue_issues(db, now)] == [late.issue_id]
