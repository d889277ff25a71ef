from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from clutter.data.errors import ErrorKind, StorageError
from clutter.data.models import Folder, IntegrityReport, Note, Tag
from clutter.data.storage import StorageEngine

_STATUS_BY_KIND = {
    ErrorKind.NOT_INITIALIZED: 503,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONSTRAINT_VIOLATION: 409,
    ErrorKind.GUARDED_OVERWRITE: 409,
    ErrorKind.IO_FAILURE: 500,
}


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitRequest(_Body):
    db_path: str


class UiStateValue(_Body):
    value: str


class UiStateEntry(_Body):
    key: str
    value: Optional[str]


class MessageOut(_Body):
    message: str


class RepairOut(_Body):
    moved: int


def create_app(engine: StorageEngine | None = None) -> FastAPI:
    app = FastAPI(title="Clutter Notes Storage API")
    app.state.engine = engine or StorageEngine()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StorageError)
    async def storage_error(_request: Request, exc: StorageError) -> JSONResponse:
        return JSONResponse(
            status_code=_STATUS_BY_KIND.get(exc.kind, 500),
            content={"detail": str(exc), "kind": exc.kind.value},
        )

    def store() -> StorageEngine:
        return app.state.engine

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "initialized": store().is_initialized}

    # -- database --

    @app.post("/database/init", response_model=MessageOut)
    def init_database(payload: InitRequest) -> MessageOut:
        return MessageOut(message=store().initialize(payload.db_path))

    @app.post("/database/cleanup", response_model=MessageOut)
    def cleanup_database() -> MessageOut:
        return MessageOut(message=store().checkpoint())

    @app.get("/database/integrity", response_model=IntegrityReport)
    def verify_integrity() -> IntegrityReport:
        return store().verify_integrity()

    @app.post("/database/repair-orphans", response_model=RepairOut)
    def repair_orphans() -> RepairOut:
        return RepairOut(moved=store().migrate_orphaned_notes())

    # -- notes --

    @app.get("/notes", response_model=List[Note])
    def load_all_notes() -> List[Note]:
        return store().load_all_notes()

    @app.get("/notes/search", response_model=List[Note])
    def search_notes(q: str = Query(default="")) -> List[Note]:
        return store().search_notes(q)

    @app.get("/notes/{note_id}", response_model=Note)
    def load_note(note_id: str) -> Note:
        return store().load_note(note_id)

    @app.put("/notes/{note_id}", response_model=MessageOut)
    def save_note(note_id: str, note: Note) -> MessageOut:
        if note.id != note_id:
            raise HTTPException(status_code=400, detail="Note id does not match path")
        return MessageOut(message=store().save_note(note))

    @app.delete("/notes/{note_id}", response_model=MessageOut)
    def delete_note(note_id: str) -> MessageOut:
        return MessageOut(message=store().delete_note_permanently(note_id))

    # -- folders --

    @app.get("/folders", response_model=List[Folder])
    def load_all_folders() -> List[Folder]:
        return store().load_all_folders()

    @app.put("/folders/{folder_id}", response_model=MessageOut)
    def save_folder(folder_id: str, folder: Folder) -> MessageOut:
        if folder.id != folder_id:
            raise HTTPException(status_code=400, detail="Folder id does not match path")
        return MessageOut(message=store().save_folder(folder))

    @app.delete("/folders/{folder_id}", response_model=MessageOut)
    def delete_folder(folder_id: str) -> MessageOut:
        return MessageOut(message=store().delete_folder_permanently(folder_id))

    # -- tags --

    @app.get("/tags", response_model=List[Tag])
    def load_all_tags() -> List[Tag]:
        return store().load_all_tags()

    @app.put("/tags/{tag_name}", response_model=MessageOut)
    def save_tag(tag_name: str, tag: Tag) -> MessageOut:
        if tag.name != tag_name:
            raise HTTPException(status_code=400, detail="Tag name does not match path")
        return MessageOut(message=store().save_tag(tag))

    @app.delete("/tags/{tag_name}", response_model=MessageOut)
    def delete_tag(tag_name: str) -> MessageOut:
        return MessageOut(message=store().delete_tag(tag_name))

    # -- UI state --

    @app.get("/ui-state", response_model=Dict[str, str])
    def load_all_ui_state() -> Dict[str, str]:
        return store().load_all_ui_state()

    @app.get("/ui-state/{key:path}", response_model=UiStateEntry)
    def load_ui_state(key: str) -> UiStateEntry:
        return UiStateEntry(key=key, value=store().load_ui_state(key))

    @app.put("/ui-state/{key:path}", response_model=MessageOut)
    def save_ui_state(key: str, payload: UiStateValue) -> MessageOut:
        return MessageOut(message=store().save_ui_state(key, payload.value))

    return app


app = create_app()
