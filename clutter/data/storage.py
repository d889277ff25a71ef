import logging
import re
import sqlite3
import threading
from collections import defaultdict
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from clutter.data.errors import (
    ConstraintViolationError,
    GuardedOverwriteError,
    NotFoundError,
    NotInitializedError,
    StorageIOError,
)
from clutter.data.models import Folder, IntegrityReport, Note, Tag, utc_now
from clutter.data.schema import (
    ADDITIVE_COLUMNS,
    FTS_BACKFILL_SQL,
    FTS_SQL,
    INDEX_SQL,
    PRAGMAS,
    SCHEMA_SQL,
)

logger = logging.getLogger(__name__)

# What an editor hands back before it has loaded a document.
BOOT_STATE_CONTENT = frozenset({"", '""', "{}"})
# Stored content longer than this is never replaced by a boot-state value.
GUARD_MIN_EXISTING_LENGTH = 200
SEARCH_LIMIT = 50
UI_STATE_PREFIX = "ui."

_NOTE_SELECT = """
    SELECT n.id, n.title, n.description, n.description_visible, n.emoji,
           n.content, n.tags_visible, n.is_favorite, n.folder_id,
           n.daily_note_date, n.created_at, n.updated_at, n.deleted_at
    FROM notes n
"""

_NOTE_UPSERT_SQL = """
    INSERT INTO notes
        (id, title, description, description_visible, emoji, content,
         tags_visible, is_favorite, folder_id, daily_note_date,
         created_at, updated_at, deleted_at)
    VALUES
        (:id, :title, :description, :description_visible, :emoji, :content,
         :tags_visible, :is_favorite, :folder_id, :daily_note_date,
         :created_at, :updated_at, :deleted_at)
    ON CONFLICT(id) DO UPDATE SET
        title = excluded.title,
        description = excluded.description,
        description_visible = excluded.description_visible,
        emoji = excluded.emoji,
        content = excluded.content,
        tags_visible = excluded.tags_visible,
        is_favorite = excluded.is_favorite,
        folder_id = excluded.folder_id,
        daily_note_date = excluded.daily_note_date,
        updated_at = excluded.updated_at,
        deleted_at = excluded.deleted_at
"""

_FOLDER_SELECT = """
    SELECT id, name, parent_id, description, description_visible, color, emoji,
           tags_visible, is_favorite, is_expanded, created_at, updated_at,
           deleted_at
    FROM folders
"""

_FOLDER_UPSERT_SQL = """
    INSERT INTO folders
        (id, name, parent_id, description, description_visible, color, emoji,
         tags_visible, is_favorite, is_expanded, created_at, updated_at,
         deleted_at)
    VALUES
        (:id, :name, :parent_id, :description, :description_visible, :color,
         :emoji, :tags_visible, :is_favorite, :is_expanded, :created_at,
         :updated_at, :deleted_at)
    ON CONFLICT(id) DO UPDATE SET
        name = excluded.name,
        parent_id = excluded.parent_id,
        description = excluded.description,
        description_visible = excluded.description_visible,
        color = excluded.color,
        emoji = excluded.emoji,
        tags_visible = excluded.tags_visible,
        is_favorite = excluded.is_favorite,
        is_expanded = excluded.is_expanded,
        updated_at = excluded.updated_at,
        deleted_at = excluded.deleted_at
"""

_TAG_UPSERT_SQL = """
    INSERT INTO tags
        (name, description, description_visible, is_favorite, color,
         created_at, updated_at, deleted_at)
    VALUES
        (:name, :description, :description_visible, :is_favorite, :color,
         :created_at, :updated_at, :deleted_at)
    ON CONFLICT(name) DO UPDATE SET
        description = excluded.description,
        description_visible = excluded.description_visible,
        is_favorite = excluded.is_favorite,
        color = excluded.color,
        updated_at = excluded.updated_at,
        deleted_at = excluded.deleted_at
"""

_ENSURE_TAG_SQL = """
    INSERT INTO tags
        (name, description, description_visible, is_favorite, color,
         created_at, updated_at)
    VALUES (?, '', 1, 0, NULL, ?, ?)
    ON CONFLICT(name) DO NOTHING
"""


class StorageEngine:
    """Single-connection SQLite store for notes, folders, tags and UI state.

    Every public operation holds ``self._lock`` for its whole duration, so
    calls are strictly serialized. Multi-statement writes run inside one
    transaction. Until :meth:`initialize` succeeds every operation raises
    :class:`NotInitializedError`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        self._db_path: str | None = None

    @property
    def db_path(self) -> str | None:
        return self._db_path

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    # -- lifecycle -------------------------------------------------------------

    def initialize(self, db_path: str) -> str:
        """Open (or create) the database file and bring its schema up to date.

        Replaces any previously held connection. On failure the previous
        connection, if any, is kept and :class:`StorageIOError` is raised.
        """
        path = db_path if db_path == ":memory:" else str(Path(db_path).expanduser())
        with self._lock:
            try:
                conn = self._open(path)
            except sqlite3.Error as exc:
                logger.error(f"Database initialization failed for {path}: {exc}")
                raise StorageIOError(
                    f"Failed to initialize database at {path}: {exc}", path=path
                ) from exc
            previous, self._conn = self._conn, conn
            self._db_path = path
            if previous is not None:
                previous.close()
        logger.info(f"Database initialized at: {path}")
        return f"Database initialized at: {path}"

    def close(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
            self._db_path = None
            if conn is not None:
                conn.close()

    def _open(self, path: str) -> sqlite3.Connection:
        conn = sqlite3.connect(path, check_same_thread=False)
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            if conn.execute("PRAGMA foreign_keys").fetchone()[0] != 1:
                raise StorageIOError(
                    "SQLite build does not enforce foreign keys", path=path
                )
            self._apply_pragmas(conn)
            conn.executescript(SCHEMA_SQL)
            self._add_missing_columns(conn)
            conn.executescript(INDEX_SQL)
            self._init_fts(conn)
            conn.commit()
        except Exception:
            conn.close()
            raise
        return conn

    @staticmethod
    def _apply_pragmas(conn: sqlite3.Connection) -> None:
        for pragma in PRAGMAS:
            try:
                conn.execute(pragma).fetchall()
            except sqlite3.Error as exc:
                logger.warning(f"Could not apply '{pragma}': {exc}")

    @staticmethod
    def _add_missing_columns(conn: sqlite3.Connection) -> None:
        for table, column, decl in ADDITIVE_COLUMNS:
            try:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {decl}")
                logger.info(f"Added column {table}.{column}")
            except sqlite3.OperationalError:
                pass  # column already exists

    @staticmethod
    def _init_fts(conn: sqlite3.Connection) -> None:
        """Create the FTS5 table and its sync triggers.

        When the table is created on a database that already holds notes, the
        index is filled from the notes table once.
        """
        try:
            conn.execute("SELECT * FROM notes_fts LIMIT 0")
            newly_created = False
        except sqlite3.OperationalError:
            newly_created = True

        conn.executescript(FTS_SQL)
        if newly_created:
            cur = conn.execute(FTS_BACKFILL_SQL)
            if cur.rowcount > 0:
                logger.info(f"FTS5 index populated with {cur.rowcount} existing notes")

    @contextmanager
    def _session(
        self,
        write: bool = False,
        entity: str | None = None,
        entity_id: str | None = None,
    ) -> Iterator[sqlite3.Connection]:
        """Hold the lock and hand out the connection.

        With ``write=True`` the block runs in one transaction that is rolled
        back if anything inside raises. SQLite errors leave as
        :class:`StorageError` subclasses.
        """
        with self._lock:
            if self._conn is None:
                raise NotInitializedError()
            conn = self._conn
            try:
                if write:
                    with conn:
                        yield conn
                else:
                    yield conn
            except sqlite3.IntegrityError as exc:
                raise ConstraintViolationError(
                    str(exc), entity=entity, entity_id=entity_id
                ) from exc
            except sqlite3.Error as exc:
                raise StorageIOError(str(exc), path=self._db_path) from exc

    # -- notes -----------------------------------------------------------------

    def save_note(self, note: Note) -> str:
        """Insert or update a note and replace its tag associations.

        Raises:
            GuardedOverwriteError: ``note.content`` is a boot-state value and
                the stored content is longer than ``GUARD_MIN_EXISTING_LENGTH``.
            ConstraintViolationError: ``note.folder_id`` names no folder.
        """
        logger.debug(
            f"Saving note {note.id[:20]} | title: {note.title[:30]} "
            f"| content length: {len(note.content)}"
        )
        tags = _unique(note.tags)
        with self._session(write=True, entity="note", entity_id=note.id) as conn:
            self._guard_boot_state(conn, note)
            if note.folder_id is not None and not _folder_exists(conn, note.folder_id):
                raise ConstraintViolationError(
                    f"FOREIGN KEY constraint failed: folder '{note.folder_id}' "
                    "does not exist",
                    entity="note",
                    entity_id=note.id,
                    field="folderId",
                )
            conn.execute(_NOTE_UPSERT_SQL, note.model_dump(exclude={"tags"}))
            self._ensure_tags(conn, tags, note.updated_at)
            conn.execute("DELETE FROM note_tags WHERE note_id = ?", (note.id,))
            conn.executemany(
                "INSERT INTO note_tags (note_id, tag_name) VALUES (?, ?)",
                [(note.id, tag) for tag in tags],
            )
        return f"Note saved: {note.id}"

    @staticmethod
    def _guard_boot_state(conn: sqlite3.Connection, note: Note) -> None:
        if note.content not in BOOT_STATE_CONTENT:
            return
        row = conn.execute(
            "SELECT LENGTH(content) AS length FROM notes WHERE id = ?", (note.id,)
        ).fetchone()
        if row is not None and row["length"] > GUARD_MIN_EXISTING_LENGTH:
            logger.warning(
                f"Blocked boot-state overwrite of note {note.id} "
                f"({row['length']} chars stored)"
            )
            raise GuardedOverwriteError(note.id, note.title, row["length"])

    def load_note(self, note_id: str) -> Note:
        with self._session() as conn:
            row = conn.execute(_NOTE_SELECT + " WHERE n.id = ?", (note_id,)).fetchone()
            if row is None:
                raise NotFoundError("note", note_id)
            tags = [
                r["tag_name"]
                for r in conn.execute(
                    "SELECT tag_name FROM note_tags WHERE note_id = ? ORDER BY rowid",
                    (note_id,),
                )
            ]
        return Note(**dict(row), tags=tags)

    def load_all_notes(self) -> list[Note]:
        """Return every note, soft-deleted ones included, newest update first."""
        with self._session() as conn:
            rows = conn.execute(_NOTE_SELECT + " ORDER BY n.updated_at DESC").fetchall()
            tags = _tags_by_owner(conn, "note_tags", "note_id")
        return [Note(**dict(row), tags=tags.get(row["id"], [])) for row in rows]

    def search_notes(self, query: str) -> list[Note]:
        """Full-text search over title and content.

        Soft-deleted notes are skipped. Results come in FTS5 rank order and
        are capped at ``SEARCH_LIMIT``.
        """
        with self._session() as conn:
            safe_query = _sanitize_fts_query(query)
            if not safe_query:
                return []
            rows = conn.execute(
                _NOTE_SELECT
                + """
                JOIN notes_fts ON n.id = notes_fts.note_id
                WHERE notes_fts MATCH ? AND n.deleted_at IS NULL
                ORDER BY rank
                LIMIT ?
                """,
                (safe_query, SEARCH_LIMIT),
            ).fetchall()
            tags = (
                _tags_by_owner(conn, "note_tags", "note_id", [row["id"] for row in rows])
                if rows
                else {}
            )
        logger.debug(f"Search returned {len(rows)} results for query: '{query[:50]}'")
        return [Note(**dict(row), tags=tags.get(row["id"], [])) for row in rows]

    def delete_note_permanently(self, note_id: str) -> str:
        with self._session(write=True, entity="note", entity_id=note_id) as conn:
            cur = conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))
        if cur.rowcount:
            logger.info(f"Permanently deleted note: {note_id}")
        return f"Note '{note_id}' permanently deleted"

    # -- folders ---------------------------------------------------------------

    def save_folder(self, folder: Folder) -> str:
        logger.debug(f"Saving folder {folder.id[:20]} | name: {folder.name}")
        tags = _unique(folder.tags)
        with self._session(write=True, entity="folder", entity_id=folder.id) as conn:
            conn.execute(_FOLDER_UPSERT_SQL, folder.model_dump(exclude={"tags"}))
            self._ensure_tags(conn, tags, folder.updated_at)
            conn.execute("DELETE FROM folder_tags WHERE folder_id = ?", (folder.id,))
            conn.executemany(
                "INSERT INTO folder_tags (folder_id, tag_name) VALUES (?, ?)",
                [(folder.id, tag) for tag in tags],
            )
        return f"Folder saved: {folder.id}"

    def load_all_folders(self) -> list[Folder]:
        """Return every folder, soft-deleted ones included."""
        with self._session() as conn:
            rows = conn.execute(_FOLDER_SELECT + " ORDER BY created_at").fetchall()
            tags = _tags_by_owner(conn, "folder_tags", "folder_id")
        return [Folder(**dict(row), tags=tags.get(row["id"], [])) for row in rows]

    def delete_folder_permanently(self, folder_id: str) -> str:
        """Remove a folder row.

        Child folders and notes inside it move up to the removed folder's own
        parent (or to the root), so the ``parent_id`` foreign key cannot fail.
        """
        with self._session(write=True, entity="folder", entity_id=folder_id) as conn:
            row = conn.execute(
                "SELECT parent_id FROM folders WHERE id = ?", (folder_id,)
            ).fetchone()
            if row is None:
                return f"Folder '{folder_id}' permanently deleted"

            new_parent = row["parent_id"]
            if new_parent == folder_id or (
                new_parent is not None and not _folder_exists(conn, new_parent)
            ):
                new_parent = None

            moved_folders = conn.execute(
                "UPDATE folders SET parent_id = ? WHERE parent_id = ? AND id != ?",
                (new_parent, folder_id, folder_id),
            ).rowcount
            moved_notes = conn.execute(
                "UPDATE notes SET folder_id = ? WHERE folder_id = ?",
                (new_parent, folder_id),
            ).rowcount
            conn.execute("DELETE FROM folders WHERE id = ?", (folder_id,))

        logger.info(
            f"Permanently deleted folder: {folder_id} "
            f"(re-parented {moved_folders} folders, {moved_notes} notes)"
        )
        return f"Folder '{folder_id}' permanently deleted"

    # -- tags ------------------------------------------------------------------

    def save_tag(self, tag: Tag) -> str:
        logger.debug(f"Saving tag metadata: {tag.name}")
        with self._session(write=True, entity="tag", entity_id=tag.name) as conn:
            conn.execute(_TAG_UPSERT_SQL, tag.model_dump())
        return f"Tag saved: {tag.name}"

    def load_all_tags(self) -> list[Tag]:
        """Return every tag, soft-deleted ones included."""
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT name, description, description_visible, is_favorite, color,
                       created_at, updated_at, deleted_at
                FROM tags
                ORDER BY name
                """
            ).fetchall()
        return [Tag(**dict(row)) for row in rows]

    def delete_tag(self, tag_name: str) -> str:
        """Delete a tag. CASCADE removes its note_tags and folder_tags rows."""
        with self._session(write=True, entity="tag", entity_id=tag_name) as conn:
            conn.execute("DELETE FROM tags WHERE name = ?", (tag_name,))
        return f"Tag '{tag_name}' deleted"

    @staticmethod
    def _ensure_tags(
        conn: sqlite3.Connection, names: Iterable[str], timestamp: str
    ) -> None:
        """Create each tag with default metadata if it does not exist yet.

        Existing tags are left untouched.
        """
        conn.executemany(
            _ENSURE_TAG_SQL, [(name, timestamp, timestamp) for name in names]
        )

    # -- UI state --------------------------------------------------------------

    def save_ui_state(self, key: str, value: str) -> str:
        with self._session(write=True, entity="setting", entity_id=key) as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, utc_now()),
            )
        return f"UI state saved: {key}"

    def load_ui_state(self, key: str) -> str | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def load_all_ui_state(self, prefix: str = UI_STATE_PREFIX) -> dict[str, str]:
        # substr() instead of LIKE: LIKE is case-insensitive and treats "_" as
        # a wildcard.
        with self._session() as conn:
            rows = conn.execute(
                "SELECT key, value FROM settings WHERE substr(key, 1, ?) = ?",
                (len(prefix), prefix),
            ).fetchall()
        return {row["key"]: row["value"] for row in rows}

    # -- maintenance -----------------------------------------------------------

    def checkpoint(self) -> str:
        """Passive WAL checkpoint. Failures are logged and ignored."""
        with self._session() as conn:
            try:
                conn.execute("PRAGMA wal_checkpoint(PASSIVE)").fetchall()
            except sqlite3.Error as exc:
                logger.debug(f"WAL checkpoint skipped: {exc}")
        return "Database cleanup complete"

    def verify_integrity(self) -> IntegrityReport:
        """Report notes and folders that point at folders which do not exist."""
        with self._session() as conn:
            orphan_notes = conn.execute(
                """
                SELECT n.id, n.title, n.folder_id
                FROM notes n
                LEFT JOIN folders f ON f.id = n.folder_id
                WHERE n.folder_id IS NOT NULL AND f.id IS NULL
                """
            ).fetchall()
            orphan_folders = conn.execute(
                """
                SELECT c.id, c.name, c.parent_id
                FROM folders c
                LEFT JOIN folders p ON p.id = c.parent_id
                WHERE c.parent_id IS NOT NULL AND p.id IS NULL
                """
            ).fetchall()

        issues = [
            f'Note "{row["title"]}" ({row["id"]}) references non-existent folder: '
            f'{row["folder_id"]}'
            for row in orphan_notes
        ]
        issues.extend(
            f'Folder "{row["name"]}" ({row["id"]}) references non-existent parent: '
            f'{row["parent_id"]}'
            for row in orphan_folders
        )
        if issues:
            logger.warning(f"Found {len(issues)} integrity issues")
        return IntegrityReport(is_valid=not issues, issues=issues)

    def migrate_orphaned_notes(self) -> int:
        """Move live notes whose folder is missing to the root. Returns the count."""
        with self._session(write=True) as conn:
            moved = conn.execute(
                """
                UPDATE notes
                SET folder_id = NULL, updated_at = ?
                WHERE deleted_at IS NULL
                  AND folder_id IS NOT NULL
                  AND folder_id NOT IN (SELECT id FROM folders)
                """,
                (utc_now(),),
            ).rowcount
        if moved:
            logger.info(f"Moved {moved} orphaned notes to the root")
        return moved


def _unique(names: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(names))


def _folder_exists(conn: sqlite3.Connection, folder_id: str) -> bool:
    row = conn.execute("SELECT 1 FROM folders WHERE id = ?", (folder_id,)).fetchone()
    return row is not None


def _tags_by_owner(
    conn: sqlite3.Connection,
    table: str,
    owner_column: str,
    owner_ids: list[str] | None = None,
) -> dict[str, list[str]]:
    """Load association rows in one query and group tag names by owner id."""
    query = f"SELECT {owner_column} AS owner, tag_name FROM {table}"
    params: tuple[str, ...] = ()
    if owner_ids is not None:
        placeholders = ",".join(["?"] * len(owner_ids))
        query += f" WHERE {owner_column} IN ({placeholders})"
        params = tuple(owner_ids)
    query += " ORDER BY rowid"

    grouped: dict[str, list[str]] = defaultdict(list)
    for row in conn.execute(query, params):
        grouped[row["owner"]].append(row["tag_name"])
    return grouped


def _sanitize_fts_query(query: str) -> str:
    """Quote each word so FTS5 operators in user input are matched literally.

    Returns an empty string when no words remain.
    """
    cleaned = re.sub(r'["\^*()\[\]]', " ", query)
    words = [w for w in cleaned.split() if w]
    if not words:
        return ""
    return " ".join(f'"{w}"' for w in words)
