from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from clutter.data.errors import (
    ConstraintViolationError,
    ErrorKind,
    GuardedOverwriteError,
    NotFoundError,
)
from clutter.data.storage import GUARD_MIN_EXISTING_LENGTH, SEARCH_LIMIT, StorageEngine

BOOT_STATES = ["", '""', "{}"]


def test_save_and_load_round_trip(engine: StorageEngine, make_note, make_folder) -> None:
    engine.save_folder(make_folder("f1"))
    note = make_note(
        "n1",
        title="Groceries",
        description="weekly list",
        description_visible=False,
        emoji="🛒",
        content='{"type":"doc","content":[{"type":"paragraph"}]}',
        tags=["home", "errands"],
        tags_visible=False,
        is_favorite=True,
        folder_id="f1",
        daily_note_date="2024-05-01",
        deleted_at="2024-05-02T08:00:00+00:00",
    )

    assert engine.save_note(note) == "Note saved: n1"

    assert engine.load_note("n1") == note


def test_upsert_keeps_created_at(engine: StorageEngine, make_note) -> None:
    engine.save_note(make_note("n1", created_at="2024-01-01T00:00:00+00:00"))
    engine.save_note(
        make_note(
            "n1",
            title="Renamed",
            created_at="2030-01-01T00:00:00+00:00",
            updated_at="2024-06-01T00:00:00+00:00",
        )
    )

    note = engine.load_note("n1")
    assert note.title == "Renamed"
    assert note.created_at == "2024-01-01T00:00:00+00:00"
    assert note.updated_at == "2024-06-01T00:00:00+00:00"
    assert len(engine.load_all_notes()) == 1


def test_load_missing_note(engine: StorageEngine) -> None:
    with pytest.raises(NotFoundError) as exc_info:
        engine.load_note("nope")
    assert exc_info.value.kind == ErrorKind.NOT_FOUND
    assert exc_info.value.details == {"entity": "note", "id": "nope"}


@pytest.mark.parametrize("content", BOOT_STATES)
def test_boot_state_blocks_overwrite_of_long_content(
    engine: StorageEngine, make_note, content: str
) -> None:
    original = "x" * (GUARD_MIN_EXISTING_LENGTH + 1)
    engine.save_note(make_note("n1", title="Essay", content=original, tags=["a"]))

    with pytest.raises(GuardedOverwriteError) as exc_info:
        engine.save_note(make_note("n1", title="Blank", content=content, tags=["b"]))

    assert exc_info.value.kind == ErrorKind.GUARDED_OVERWRITE
    assert exc_info.value.existing_length == GUARD_MIN_EXISTING_LENGTH + 1
    stored = engine.load_note("n1")
    assert stored.content == original
    assert stored.title == "Essay"
    assert stored.tags == ["a"]
    assert "b" not in {t.name for t in engine.load_all_tags()}


@pytest.mark.parametrize("content", BOOT_STATES)
def test_boot_state_allowed_for_new_note(
    engine: StorageEngine, make_note, content: str
) -> None:
    engine.save_note(make_note("fresh", content=content))
    assert engine.load_note("fresh").content == content


@pytest.mark.parametrize("content", BOOT_STATES)
def test_boot_state_allowed_over_short_content(
    engine: StorageEngine, make_note, content: str
) -> None:
    engine.save_note(make_note("n1", content="y" * GUARD_MIN_EXISTING_LENGTH))
    engine.save_note(make_note("n1", content=content))
    assert engine.load_note("n1").content == content


def test_structured_empty_content_is_a_deliberate_clear(
    engine: StorageEngine, make_note
) -> None:
    engine.save_note(make_note("n1", content="z" * 500))
    cleared = '{"type":"doc","content":[]}'

    engine.save_note(make_note("n1", content=cleared))

    assert engine.load_note("n1").content == cleared


def test_note_tags_are_replaced_not_merged(engine: StorageEngine, make_note) -> None:
    engine.save_note(make_note("n1", tags=["A", "B"]))
    engine.save_note(make_note("n1", tags=["B", "C"]))

    assert sorted(engine.load_note("n1").tags) == ["B", "C"]
    assert {t.name for t in engine.load_all_tags()} == {"A", "B", "C"}


def test_duplicate_tag_names_collapse(engine: StorageEngine, make_note) -> None:
    engine.save_note(make_note("n1", tags=["x", "y", "x"]))
    assert engine.load_note("n1").tags == ["x", "y"]


def test_tag_names_are_case_sensitive(engine: StorageEngine, make_note) -> None:
    engine.save_note(make_note("n1", tags=["Work", "work"]))
    assert sorted(engine.load_note("n1").tags) == ["Work", "work"]


def test_implicit_tags_get_defaults(engine: StorageEngine, make_note) -> None:
    engine.save_note(make_note("n1", tags=["new"], updated_at="2024-07-07T07:07:07+00:00"))

    (tag,) = engine.load_all_tags()
    assert tag.name == "new"
    assert tag.description == ""
    assert tag.description_visible is True
    assert tag.is_favorite is False
    assert tag.color is None
    assert tag.created_at == tag.updated_at == "2024-07-07T07:07:07+00:00"


def test_implicit_tags_keep_existing_metadata(
    engine: StorageEngine, make_note, make_tag
) -> None:
    engine.save_tag(make_tag("work", description="day job", color="#f00", is_favorite=True))

    engine.save_note(make_note("n1", tags=["work"]))

    (tag,) = engine.load_all_tags()
    assert tag.description == "day job"
    assert tag.color == "#f00"
    assert tag.is_favorite is True


def test_concurrent_saves_and_searches(engine: StorageEngine, make_note) -> None:
    def work(i: int) -> None:
        engine.save_note(
            make_note(f"n{i}", content=f"shared body {i}", tags=[f"t{i}", "common"])
        )
        engine.search_notes("shared")

    with ThreadPoolExecutor(max_workers=16) as pool:
        # result() re-raises anything a worker hit
        for future in [pool.submit(work, i) for i in range(200)]:
            future.result()

    notes = engine.load_all_notes()
    assert len(notes) == 200
    assert all(sorted(n.tags) == sorted([f"t{n.id[1:]}", "common"]) for n in notes)
    assert len(engine.search_notes("shared")) == SEARCH_LIMIT


def test_load_all_notes_includes_soft_deleted_newest_first(
    engine: StorageEngine, make_note
) -> None:
    engine.save_note(make_note("old", updated_at="2024-01-01T00:00:00+00:00", tags=["t"]))
    engine.save_note(
        make_note(
            "trashed",
            updated_at="2024-03-01T00:00:00+00:00",
            deleted_at="2024-03-01T00:00:00+00:00",
        )
    )
    engine.save_note(make_note("new", updated_at="2024-02-01T00:00:00+00:00"))

    notes = engine.load_all_notes()

    assert [n.id for n in notes] == ["trashed", "new", "old"]
    assert {n.id: n.tags for n in notes} == {"trashed": [], "new": [], "old": ["t"]}


def test_note_must_reference_existing_folder(engine: StorageEngine, make_note) -> None:
    with pytest.raises(ConstraintViolationError) as exc_info:
        engine.save_note(make_note("n1", folder_id="ghost"))

    assert "FOREIGN KEY constraint failed" in str(exc_info.value)
    assert exc_info.value.field == "folderId"
    with pytest.raises(NotFoundError):
        engine.load_note("n1")


def test_delete_note_permanently(engine: StorageEngine, make_note) -> None:
    engine.save_note(make_note("n1", content="unique marmalade", tags=["jam"]))

    assert engine.delete_note_permanently("n1") == "Note 'n1' permanently deleted"

    assert engine.load_all_notes() == []
    assert engine.search_notes("marmalade") == []
    with pytest.raises(NotFoundError):
        engine.load_note("n1")
    # the tag itself survives, only the association is gone
    assert [t.name for t in engine.load_all_tags()] == ["jam"]


def test_delete_missing_note_is_not_an_error(engine: StorageEngine) -> None:
    assert engine.delete_note_permanently("missing") == "Note 'missing' permanently deleted"
