import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

import progress_seal
from lorebook_store import JsonLorebookStore
from record_merger import SUMMARY_COMMENT, LoreEntryTemplate, RecordMerger, find_summary_entry
from summary_errors import ProgressRegressionError, StoreNotFoundError, StoreWriteError


TEMPLATE = LoreEntryTemplate(keywords=("plot", "summary"), constant=True, position=2, depth=4)


def _body(floors, text="chapter"):
    return f"{text}\n\n{progress_seal.encode(floors)}"


def _summary_entries(book):
    return [
        entry for entry in book["entries"].values()
        if entry.get("comment") == SUMMARY_COMMENT and not entry.get("disable")
    ]


def test_missing_store_is_created(tmp_path):
    store = JsonLorebookStore(tmp_path)
    merger = RecordMerger(store)

    entry = merger.merge("Book", _body(10), TEMPLATE)

    book = json.loads((tmp_path / "Book.json").read_text(encoding="utf-8"))
    assert book["name"] == "Book"
    assert entry["comment"] == SUMMARY_COMMENT
    assert entry["key"] == ["plot", "summary"]
    assert entry["constant"] is True
    assert entry["disable"] is False
    assert entry["position"] == 2
    assert entry["depth"] == 4
    assert entry["selectiveLogic"] == 0
    assert entry["order"] == 100
    assert book["entries"][entry["uid"]]["content"] == _body(10)
    assert merger.read_progress("Book") == 10


def test_update_touches_only_content(tmp_path):
    store = JsonLorebookStore(tmp_path)
    merger = RecordMerger(store)
    merger.merge("Book", _body(10), TEMPLATE)

    book = store.load("Book")
    uid, entry = find_summary_entry(book)
    entry["key"] = ["custom"]
    entry["order"] = 7
    store.save("Book", book)

    merger.merge("Book", _body(20, "more"), LoreEntryTemplate(keywords=("other",)))

    updated = store.load("Book")["entries"][uid]
    assert updated["key"] == ["custom"]
    assert updated["order"] == 7
    assert updated["content"] == _body(20, "more")


def test_merge_is_idempotent(tmp_path):
    store = JsonLorebookStore(tmp_path)
    merger = RecordMerger(store)
    merger.merge("Book", _body(10), TEMPLATE)
    first = store.load("Book")
    merger.merge("Book", _body(10), TEMPLATE)
    assert store.load("Book") == first


def test_keeps_unrelated_entries_and_single_record(tmp_path):
    store = JsonLorebookStore(tmp_path)
    store.save("Book", {"name": "Book", "entries": {"1": {"uid": "1", "comment": "Map", "content": "x"}}})
    merger = RecordMerger(store)

    merger.merge("Book", _body(5), TEMPLATE)
    merger.merge("Book", _body(9), TEMPLATE)

    book = store.load("Book")
    assert book["entries"]["1"]["content"] == "x"
    assert len(_summary_entries(book)) == 1


def test_duplicates_are_disabled(tmp_path):
    store = JsonLorebookStore(tmp_path)
    store.save(
        "Book",
        {
            "name": "Book",
            "entries": {
                "a": {"uid": "a", "comment": SUMMARY_COMMENT, "content": _body(5)},
                "b": {"uid": "b", "comment": SUMMARY_COMMENT, "content": _body(3)},
            },
        },
    )
    entry = RecordMerger(store).merge("Book", _body(8), TEMPLATE)

    book = store.load("Book")
    assert entry["uid"] == "a"
    assert book["entries"]["a"]["content"] == _body(8)
    assert book["entries"]["b"]["disable"] is True
    assert len(_summary_entries(book)) == 1


def test_regression_is_rejected_and_nothing_written(tmp_path):
    store = JsonLorebookStore(tmp_path)
    merger = RecordMerger(store)
    merger.merge("Book", _body(20), TEMPLATE)
    before = (tmp_path / "Book.json").read_text(encoding="utf-8")

    with pytest.raises(ProgressRegressionError):
        merger.merge("Book", _body(10), TEMPLATE)
    assert (tmp_path / "Book.json").read_text(encoding="utf-8") == before


def test_read_summary_body_when_missing(tmp_path):
    merger = RecordMerger(JsonLorebookStore(tmp_path))
    assert merger.read_summary_body("Nope") is None
    assert merger.read_progress("Nope") == 0


def test_store_rejects_unsafe_names(tmp_path):
    store = JsonLorebookStore(tmp_path)
    for name in ["", "..", "a/b", "a\\b"]:
        with pytest.raises(ValueError):
            store.path_for(name)


def test_store_load_missing(tmp_path):
    with pytest.raises(StoreNotFoundError) as excinfo:
        JsonLorebookStore(tmp_path).load("Ghost")
    assert excinfo.value.name == "Ghost"


def test_failed_save_leaves_file_untouched(tmp_path, monkeypatch):
    store = JsonLorebookStore(tmp_path)
    merger = RecordMerger(store)
    merger.merge("Book", _body(10), TEMPLATE)
    before = (tmp_path / "Book.json").read_text(encoding="utf-8")

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("lorebook_store.os.replace", broken_replace)
    with pytest.raises(StoreWriteError):
        merger.merge("Book", _body(20), TEMPLATE)

    assert (tmp_path / "Book.json").read_text(encoding="utf-8") == before
    assert list(tmp_path.glob("*.tmp")) == []
