"""SQLite index store: packages, versions, items, source files and readmes.

All writes for one version's re-index go through ``replace_version`` (or the
individual ``replace_*`` calls inside ``transaction()``), so a version's item,
source and readme sets are swapped atomically or not at all.
"""

from __future__ import annotations

import json
import pathlib
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional, Sequence, Union

from .errors import ConstraintViolation
from .logger import logger
from .models import (
    Item,
    ItemKind,
    PackageInfo,
    SourceFile,
    VersionInfo,
    VersionManifest,
)
from .versions import precedence_key

SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS packages (
    id            INTEGER PRIMARY KEY,
    name          TEXT NOT NULL UNIQUE,
    description   TEXT,
    homepage      TEXT,
    repository    TEXT,
    documentation TEXT,
    keywords      TEXT NOT NULL DEFAULT '[]',
    categories    TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS versions (
    id          INTEGER PRIMARY KEY,
    package_id  INTEGER NOT NULL REFERENCES packages(id),
    version     TEXT NOT NULL,
    semver_key  TEXT NOT NULL,
    released_at TEXT,
    msrv        TEXT,
    downloads   INTEGER NOT NULL DEFAULT 0,
    publisher   TEXT,
    license     TEXT,
    yanked      INTEGER NOT NULL DEFAULT 0,
    UNIQUE (package_id, semver_key)
);

CREATE TABLE IF NOT EXISTS items (
    id            INTEGER PRIMARY KEY,
    version_id    INTEGER NOT NULL REFERENCES versions(id) ON DELETE CASCADE,
    path          TEXT NOT NULL,
    name          TEXT NOT NULL,
    kind          TEXT NOT NULL,
    signature     TEXT,
    documentation TEXT,
    doc_path      TEXT NOT NULL,
    src_path      TEXT,
    related       TEXT NOT NULL DEFAULT '[]',
    UNIQUE (version_id, path)
);
CREATE INDEX IF NOT EXISTS items_doc_path ON items (version_id, doc_path);

CREATE TABLE IF NOT EXISTS source_files (
    id         INTEGER PRIMARY KEY,
    version_id INTEGER NOT NULL REFERENCES versions(id) ON DELETE CASCADE,
    path       TEXT NOT NULL,
    content    TEXT NOT NULL,
    UNIQUE (version_id, path)
);

CREATE TABLE IF NOT EXISTS readmes (
    version_id INTEGER PRIMARY KEY REFERENCES versions(id) ON DELETE CASCADE,
    content    TEXT NOT NULL
);
"""

_ITEM_COLUMNS = "path, name, kind, signature, documentation, doc_path, src_path, related"


def _casefold(s: Optional[str]) -> Optional[str]:
    return s.casefold() if isinstance(s, str) else s


def _like_escape(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _item_from_row(row: sqlite3.Row) -> Item:
    try:
        kind = ItemKind(row["kind"])
    except ValueError:
        kind = ItemKind.UNKNOWN
    return Item(
        path=row["path"],
        kind=kind,
        signature=row["signature"],
        documentation=row["documentation"],
        doc_path=row["doc_path"],
        src_path=row["src_path"],
        related=json.loads(row["related"] or "[]"),
    )


def _package_from_row(row: sqlite3.Row) -> PackageInfo:
    return PackageInfo(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        homepage=row["homepage"],
        repository=row["repository"],
        documentation=row["documentation"],
        keywords=json.loads(row["keywords"] or "[]"),
        categories=json.loads(row["categories"] or "[]"),
    )


def _version_from_row(row: sqlite3.Row) -> VersionInfo:
    return VersionInfo(
        id=row["id"],
        package=row["package"],
        version=row["version"],
        released_at=row["released_at"],
        msrv=row["msrv"],
        downloads=row["downloads"],
        publisher=row["publisher"],
        license=row["license"],
        yanked=bool(row["yanked"]),
    )


_VERSION_SELECT = """
SELECT v.id, p.name AS package, v.version, v.released_at, v.msrv, v.downloads,
       v.publisher, v.license, v.yanked
FROM versions v JOIN packages p ON p.id = v.package_id
"""


class IndexStore:
    """SQLite-backed index. One connection per thread, so readers never share a cursor."""

    def __init__(self, path: Union[str, pathlib.Path]):
        self.path = pathlib.Path(path)
        self._local = threading.local()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    # ---- connection management ----

    @property
    def conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            # isolation_level=None: transactions are opened explicitly in transaction()
            conn = sqlite3.connect(str(self.path), isolation_level=None, timeout=30)
            conn.row_factory = sqlite3.Row
            # SQLite's own case folding covers ASCII only
            conn.create_function("casefold", 1, _casefold, deterministic=True)
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
            self._local.conn = conn
        return conn

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def __enter__(self) -> "IndexStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _ensure_schema(self) -> None:
        current = self.conn.execute("PRAGMA user_version").fetchone()[0]
        if current > SCHEMA_VERSION:
            raise RuntimeError(
                f"index {self.path} has schema version {current}, "
                f"this build understands up to {SCHEMA_VERSION}"
            )
        self.conn.executescript(SCHEMA)
        if current < SCHEMA_VERSION:
            self.conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            logger.info(f"Index schema initialized at {self.path} (v{SCHEMA_VERSION})")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction; nested calls join the outer one."""
        conn = self.conn
        if conn.in_transaction:
            yield conn
            return
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()

    def _execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(str(e)) from e

    def _executemany(self, sql: str, rows: Iterable[Sequence]) -> None:
        try:
            self.conn.executemany(sql, rows)
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(str(e)) from e

    # ---- writes ----

    def upsert_package(self, name: str, manifest: Optional[VersionManifest] = None) -> int:
        m = manifest or VersionManifest()
        with self.transaction():
            self._execute(
                """
                INSERT INTO packages (name, description, homepage, repository, documentation,
                                      keywords, categories)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (name) DO UPDATE SET
                    description   = COALESCE(excluded.description, packages.description),
                    homepage      = COALESCE(excluded.homepage, packages.homepage),
                    repository    = COALESCE(excluded.repository, packages.repository),
                    documentation = COALESCE(excluded.documentation, packages.documentation),
                    keywords      = CASE WHEN excluded.keywords = '[]'
                                         THEN packages.keywords ELSE excluded.keywords END,
                    categories    = CASE WHEN excluded.categories = '[]'
                                         THEN packages.categories ELSE excluded.categories END
                """,
                (
                    name,
                    m.description,
                    m.homepage,
                    m.repository,
                    m.documentation,
                    json.dumps(m.keywords),
                    json.dumps(m.categories),
                ),
            )
            row = self._execute("SELECT id FROM packages WHERE name = ?", (name,)).fetchone()
        return row["id"]

    def upsert_version(
        self, package_id: int, version: str, manifest: Optional[VersionManifest] = None
    ) -> int:
        """Insert or refresh a version; precedence-equal strings share one row (last write wins)."""
        m = manifest or VersionManifest()
        key = precedence_key(version)
        with self.transaction():
            self._execute(
                """
                INSERT INTO versions (package_id, version, semver_key, released_at, msrv,
                                      downloads, publisher, license, yanked)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (package_id, semver_key) DO UPDATE SET
                    version     = excluded.version,
                    released_at = excluded.released_at,
                    msrv        = excluded.msrv,
                    downloads   = excluded.downloads,
                    publisher   = excluded.publisher,
                    license     = excluded.license,
                    yanked      = excluded.yanked
                """,
                (
                    package_id,
                    version,
                    key,
                    m.released_at,
                    m.msrv,
                    m.downloads,
                    m.publisher,
                    m.license,
                    int(m.yanked),
                ),
            )
            row = self._execute(
                "SELECT id FROM versions WHERE package_id = ? AND semver_key = ?",
                (package_id, key),
            ).fetchone()
        return row["id"]

    def replace_items(self, version_id: int, items: Iterable[Item]) -> None:
        rows = [
            (
                version_id,
                it.path,
                it.name,
                it.kind.value,
                it.signature,
                it.documentation,
                it.doc_path,
                it.src_path,
                json.dumps(sorted(it.related)),
            )
            for it in items
        ]
        with self.transaction():
            self._execute("DELETE FROM items WHERE version_id = ?", (version_id,))
            self._executemany(
                f"INSERT INTO items (version_id, {_ITEM_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )

    def replace_source(self, version_id: int, files: Iterable[SourceFile]) -> None:
        rows = [(version_id, f.path, f.content) for f in files]
        with self.transaction():
            self._execute("DELETE FROM source_files WHERE version_id = ?", (version_id,))
            self._executemany(
                "INSERT INTO source_files (version_id, path, content) VALUES (?, ?, ?)", rows
            )

    def set_readme(self, version_id: int, text: Optional[str]) -> None:
        """Store the version's readme; ``None`` removes it."""
        with self.transaction():
            self._execute("DELETE FROM readmes WHERE version_id = ?", (version_id,))
            if text is not None:
                self._execute(
                    "INSERT INTO readmes (version_id, content) VALUES (?, ?)", (version_id, text)
                )

    def replace_version(
        self,
        version_id: int,
        items: Iterable[Item],
        files: Iterable[SourceFile],
        readme: Optional[str],
    ) -> None:
        """Swap a version's full item/source/readme set in one transaction."""
        with self.transaction():
            self.replace_items(version_id, items)
            self.replace_source(version_id, files)
            self.set_readme(version_id, readme)

    # ---- reads ----

    def get_package(self, name: str) -> Optional[PackageInfo]:
        row = self.conn.execute("SELECT * FROM packages WHERE name = ?", (name,)).fetchone()
        return _package_from_row(row) if row else None

    def list_packages(self, query: str = "") -> List[PackageInfo]:
        rows = self.conn.execute(
            "SELECT * FROM packages WHERE name LIKE ? ESCAPE '\\' ORDER BY name",
            (f"%{_like_escape(query)}%",),
        ).fetchall()
        return [_package_from_row(r) for r in rows]

    def versions_for(self, package: str) -> List[VersionInfo]:
        rows = self.conn.execute(_VERSION_SELECT + " WHERE p.name = ?", (package,)).fetchall()
        return [_version_from_row(r) for r in rows]

    def get_version(self, version_id: int) -> Optional[VersionInfo]:
        row = self.conn.execute(_VERSION_SELECT + " WHERE v.id = ?", (version_id,)).fetchone()
        return _version_from_row(row) if row else None

    def find_version(self, package: str, version: str) -> Optional[VersionInfo]:
        row = self.conn.execute(
            _VERSION_SELECT + " WHERE p.name = ? AND v.version = ?", (package, version)
        ).fetchone()
        return _version_from_row(row) if row else None

    def items_for(self, version_id: int) -> List[Item]:
        rows = self.conn.execute(
            f"SELECT {_ITEM_COLUMNS} FROM items WHERE version_id = ? ORDER BY path",
            (version_id,),
        ).fetchall()
        return [_item_from_row(r) for r in rows]

    def match_items(
        self, version_id: int, needle: str, kinds: Optional[Sequence[str]] = None
    ) -> List[Item]:
        """Items whose path, signature or documentation contains ``needle``, compared casefolded."""
        needle = needle.casefold()
        sql = f"""
            SELECT {_ITEM_COLUMNS} FROM items
            WHERE version_id = ?
              AND (instr(casefold(path), ?) > 0
                   OR instr(casefold(signature), ?) > 0
                   OR instr(casefold(documentation), ?) > 0)
        """
        params: list = [version_id, needle, needle, needle]
        if kinds:
            sql += f" AND kind IN ({', '.join('?' for _ in kinds)})"
            params.extend(kinds)
        sql += " ORDER BY path"
        rows = self.conn.execute(sql, params).fetchall()
        return [_item_from_row(r) for r in rows]

    def get_item(self, version_id: int, path: str) -> Optional[Item]:
        row = self.conn.execute(
            f"SELECT {_ITEM_COLUMNS} FROM items WHERE version_id = ? AND path = ?",
            (version_id, path),
        ).fetchone()
        return _item_from_row(row) if row else None

    def get_item_by_doc_path(self, version_id: int, doc_path: str) -> Optional[Item]:
        row = self.conn.execute(
            f"SELECT {_ITEM_COLUMNS} FROM items WHERE version_id = ? AND doc_path = ?",
            (version_id, doc_path),
        ).fetchone()
        return _item_from_row(row) if row else None

    def source_paths(self, version_id: int) -> List[str]:
        rows = self.conn.execute(
            "SELECT path FROM source_files WHERE version_id = ? ORDER BY path", (version_id,)
        ).fetchall()
        return [r["path"] for r in rows]

    def get_source(self, version_id: int, path: str) -> Optional[SourceFile]:
        row = self.conn.execute(
            "SELECT path, content FROM source_files WHERE version_id = ? AND path = ?",
            (version_id, path),
        ).fetchone()
        return SourceFile(path=row["path"], content=row["content"]) if row else None

    def get_readme(self, version_id: int) -> Optional[str]:
        row = self.conn.execute(
            "SELECT content FROM readmes WHERE version_id = ?", (version_id,)
        ).fetchone()
        return row["content"] if row else None

    def stats(self) -> dict:
        """Row counts per table, for status reporting."""
        out = {}
        for table in ("packages", "versions", "items", "source_files", "readmes"):
            out[table] = self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return out
