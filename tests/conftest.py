from __future__ import annotations

from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from clutter.data.models import Folder, Note, Tag
from clutter.data.storage import StorageEngine

TS = "2024-05-01T10:00:00+00:00"


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "clutter.db")


@pytest.fixture
def engine(db_path: str) -> Generator[StorageEngine, None, None]:
    store = StorageEngine()
    store.initialize(db_path)
    yield store
    store.close()


@pytest.fixture
def make_note() -> Callable[..., Note]:
    def _make(note_id: str = "n1", **fields: object) -> Note:
        data: dict[str, object] = {
            "id": note_id,
            "title": "Title",
            "content": "Body",
            "created_at": TS,
            "updated_at": TS,
        }
        data.update(fields)
        return Note(**data)

    return _make


@pytest.fixture
def make_folder() -> Callable[..., Folder]:
    def _make(folder_id: str = "f1", **fields: object) -> Folder:
        data: dict[str, object] = {
            "id": folder_id,
            "name": "Folder",
            "created_at": TS,
            "updated_at": TS,
        }
        data.update(fields)
        return Folder(**data)

    return _make


@pytest.fixture
def make_tag() -> Callable[..., Tag]:
    def _make(name: str = "t1", **fields: object) -> Tag:
        data: dict[str, object] = {"name": name, "created_at": TS, "updated_at": TS}
        data.update(fields)
        return Tag(**data)

    return _make
