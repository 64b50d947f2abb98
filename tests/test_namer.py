"""Tests for collision-free entry naming."""
import os

from reprieve.reaper.namer import EntryNamer
from reprieve.reaper.store import TrashStore


def make_store(tmp_path):
    store = TrashStore(tmp_path / "Trash")
    store.ensure()
    return store


def test_first_candidate_is_the_basename(tmp_path):
    store = make_store(tmp_path)

    assert next(EntryNamer().candidates(store, "report.txt", limit=10)) == "report.txt"


def test_taken_names_are_skipped_for_payloads_and_records(tmp_path):
    store = make_store(tmp_path)
    (store.files_dir / "report.txt").write_text("old")
    (store.info_dir / "report.txt.1.trashinfo").write_text("")

    candidates = list(EntryNamer().candidates(store, "report.txt", limit=4))

    assert candidates == ["report.txt.2", "report.txt.3"]


def test_candidates_stop_at_limit(tmp_path):
    store = make_store(tmp_path)

    assert list(EntryNamer().candidates(store, "a", limit=3)) == ["a", "a.1", "a.2"]


def test_long_names_are_shortened_to_fit():
    namer = EntryNamer()
    long_name = "x" * 300

    fitted = namer.fit(long_name, ".12")

    assert len(os.fsencode(fitted + ".12.trashinfo")) == 255


def test_shortening_never_splits_a_multibyte_character():
    namer = EntryNamer(name_max=20)

    fitted = namer.fit("é" * 20, "")

    assert fitted == "é" * 5
