# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""
Generation-versioned SQLite store.

Each build writes a brand-new database file next to the previous ones. Only
after the file is complete is it renamed into place and the ``ACTIVE`` pointer
swapped, so readers observe either the old generation or the new one.
"""

import os
import sqlite3
import threading
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Final, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from coreason_fda_regintel.config import RegIntelConfig
from coreason_fda_regintel.exceptions import BuildCancelledError, BuildError, StoreNotReadyError
from coreason_fda_regintel.gold.models import GenerationMetadata
from coreason_fda_regintel.silver.models import Biologic, Exclusivity, ParsedDataset, Patent, Product
from coreason_fda_regintel.utils.logger import logger

SCHEMA: Final[tuple[str, ...]] = (
    """
    CREATE TABLE products (
        id INTEGER PRIMARY KEY,
        coreason_id TEXT NOT NULL,
        ingredient TEXT NOT NULL,
        dosage_form TEXT,
        route TEXT,
        trade_name TEXT,
        applicant TEXT,
        applicant_full_name TEXT,
        strength TEXT,
        application_type TEXT NOT NULL,
        application_number TEXT NOT NULL,
        product_number TEXT NOT NULL,
        te_code TEXT,
        approval_date TEXT,
        is_rld INTEGER NOT NULL,
        is_rs INTEGER NOT NULL,
        marketing_status TEXT,
        UNIQUE (application_type, application_number, product_number)
    )
    """,
    """
    CREATE TABLE patents (
        id INTEGER PRIMARY KEY,
        application_type TEXT NOT NULL,
        application_number TEXT NOT NULL,
        product_number TEXT NOT NULL,
        patent_number TEXT NOT NULL,
        patent_expiry_date TEXT,
        is_drug_substance INTEGER NOT NULL,
        is_drug_product INTEGER NOT NULL,
        patent_use_code TEXT,
        is_delisted INTEGER NOT NULL,
        submission_date TEXT
    )
    """,
    """
    CREATE TABLE exclusivity (
        id INTEGER PRIMARY KEY,
        application_type TEXT NOT NULL,
        application_number TEXT NOT NULL,
        product_number TEXT NOT NULL,
        exclusivity_code TEXT NOT NULL,
        exclusivity_date TEXT
    )
    """,
    """
    CREATE TABLE biologics (
        id INTEGER PRIMARY KEY,
        license_number TEXT NOT NULL UNIQUE,
        proper_name TEXT,
        proprietary_name TEXT,
        bla_type TEXT,
        licensure_date TEXT,
        licensure_status TEXT,
        marketing_status TEXT,
        applicant TEXT,
        applicant_full_name TEXT,
        strength TEXT,
        dosage_form TEXT,
        route TEXT,
        reference_license_number TEXT,
        reference_proper_name TEXT,
        reference_proprietary_name TEXT,
        is_biosimilar INTEGER NOT NULL,
        is_interchangeable INTEGER NOT NULL,
        interchangeable_date TEXT,
        exclusivity_expiration_date TEXT,
        orphan_exclusivity_date TEXT
    )
    """,
    "CREATE TABLE metadata (key TEXT PRIMARY KEY, value TEXT NOT NULL)",
)

INDEXES: Final[tuple[str, ...]] = (
    "CREATE INDEX idx_products_ingredient ON products(ingredient COLLATE NOCASE)",
    "CREATE INDEX idx_products_trade_name ON products(trade_name COLLATE NOCASE)",
    "CREATE INDEX idx_products_appl_no ON products(application_number, application_type)",
    "CREATE INDEX idx_products_te_code ON products(te_code)",
    "CREATE INDEX idx_products_rld ON products(is_rld)",
    "CREATE INDEX idx_patents_key ON patents(application_number, application_type, product_number)",
    "CREATE INDEX idx_patents_patent_no ON patents(patent_number)",
    "CREATE INDEX idx_patents_expiry ON patents(patent_expiry_date)",
    "CREATE INDEX idx_exclusivity_key ON exclusivity(application_number, application_type, product_number)",
    "CREATE INDEX idx_exclusivity_code ON exclusivity(exclusivity_code)",
    "CREATE INDEX idx_exclusivity_date ON exclusivity(exclusivity_date)",
    "CREATE INDEX idx_biologics_proper_name ON biologics(proper_name COLLATE NOCASE)",
    "CREATE INDEX idx_biologics_proprietary_name ON biologics(proprietary_name COLLATE NOCASE)",
    "CREATE INDEX idx_biologics_reference ON biologics(reference_license_number)",
    "CREATE INDEX idx_biologics_biosimilar ON biologics(is_biosimilar)",
    "CREATE INDEX idx_biologics_interchangeable ON biologics(is_interchangeable)",
)

# External-content FTS5 tables, filled once from the finished base tables.
FULL_TEXT: Final[tuple[str, ...]] = (
    """
    CREATE VIRTUAL TABLE products_fts USING fts5(
        ingredient, trade_name, applicant_full_name,
        content='products', content_rowid='id'
    )
    """,
    "INSERT INTO products_fts(products_fts) VALUES('rebuild')",
    """
    CREATE VIRTUAL TABLE biologics_fts USING fts5(
        proper_name, proprietary_name, applicant_full_name,
        content='biologics', content_rowid='id'
    )
    """,
    "INSERT INTO biologics_fts(biologics_fts) VALUES('rebuild')",
)

TABLE_MODELS: Final[dict[str, type[BaseModel]]] = {
    "products": Product,
    "patents": Patent,
    "exclusivity": Exclusivity,
    "biologics": Biologic,
}


def new_generation_id(now: Optional[datetime] = None) -> str:
    """Sortable, collision-resistant generation id."""
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%S")
    return f"{stamp}-{uuid.uuid4().hex[:8]}"


class Generation:
    """Read handle on one finished, immutable generation file."""

    def __init__(self, path: Path, metadata: GenerationMetadata) -> None:
        self.path = path
        self.metadata = metadata

    @property
    def generation_id(self) -> str:
        return self.metadata.generation_id

    @classmethod
    def open(cls, path: Path) -> "Generation":
        """
        Open an existing generation file and load its metadata.

        Raises:
            BuildError: If the file is missing or its metadata is unreadable.
        """
        if not path.is_file():
            raise BuildError(f"Generation file not found: {path}")
        probe = cls(path, metadata=None)  # type: ignore[arg-type]
        try:
            with probe.connect() as conn:
                row = conn.execute("SELECT value FROM metadata WHERE key = 'generation'").fetchone()
        except sqlite3.Error as e:
            raise BuildError(f"Unreadable generation {path.name}: {e}") from e
        if row is None:
            raise BuildError(f"Generation {path.name} has no metadata")
        try:
            return cls(path, GenerationMetadata.model_validate_json(row["value"]))
        except PydanticValidationError as e:
            raise BuildError(f"Generation {path.name} has invalid metadata") from e

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Read-only connection; rows are ``sqlite3.Row``."""
        conn = sqlite3.connect(f"{self.path.resolve().as_uri()}?mode=ro", uri=True, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def __repr__(self) -> str:
        return f"Generation({self.path.name!r})"


class GenerationBuilder:
    """Writes a complete generation from a ParsedDataset, or nothing at all."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir

    def path_for(self, generation_id: str) -> Path:
        return self.data_dir / f"{RegIntelConfig.GENERATION_PREFIX}{generation_id}.db"

    def build(
        self,
        generation_id: str,
        dataset: ParsedDataset,
        cancel: Optional[threading.Event] = None,
        now: Optional[datetime] = None,
    ) -> Generation:
        """
        Build a new generation.

        Args:
            generation_id: Identifier; becomes part of the file name.
            dataset: Parsed records and source dates.
            cancel: Checked between stages; when set the build is abandoned.
            now: Build timestamp override.

        Returns:
            The finished (not yet activated) Generation.

        Raises:
            BuildError: On any failure. The partial file is removed.
        """
        built_at = now or datetime.now(timezone.utc)
        final_path = self.path_for(generation_id)
        partial_path = final_path.with_name(final_path.name + ".partial")
        metadata = GenerationMetadata(
            generation_id=generation_id,
            version=built_at.strftime("%Y-%m"),
            orange_book_date=dataset.orange_book_date,
            purple_book_date=dataset.purple_book_date,
            built_at=built_at,
            row_counts={table: len(getattr(dataset, table)) for table in TABLE_MODELS},
            source_hashes=dataset.source_hashes,
        )

        logger.info(f"Building generation {generation_id} at {final_path}")
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._discard(partial_path)

        def checkpoint(stage: str) -> None:
            if cancel is not None and cancel.is_set():
                raise BuildCancelledError(f"Build {generation_id} cancelled before {stage}")

        try:
            conn = sqlite3.connect(partial_path)
            try:
                for statement in SCHEMA:
                    conn.execute(statement)
                for table, model in TABLE_MODELS.items():
                    checkpoint(f"loading {table}")
                    self._insert(conn, table, list(model.model_fields), getattr(dataset, table))
                checkpoint("indexing")
                for statement in INDEXES:
                    conn.execute(statement)
                checkpoint("full-text indexing")
                for statement in FULL_TEXT:
                    conn.execute(statement)
                conn.executemany(
                    "INSERT INTO metadata (key, value) VALUES (?, ?)",
                    [
                        ("generation", metadata.model_dump_json()),
                        ("version", metadata.version),
                        ("orange_book_date", metadata.orange_book_date or ""),
                        ("purple_book_date", metadata.purple_book_date or ""),
                        ("built_at", metadata.built_at.isoformat()),
                    ],
                )
                conn.commit()
                conn.execute("PRAGMA optimize")
            finally:
                conn.close()
            checkpoint("activation")
            os.replace(partial_path, final_path)
        except BuildError:
            self._discard(partial_path)
            raise
        except Exception as e:
            self._discard(partial_path)
            logger.error(f"Build of generation {generation_id} failed: {e}")
            raise BuildError(f"Failed to build generation {generation_id}: {e}") from e

        logger.info(f"Generation {generation_id} built: {metadata.row_counts}")
        return Generation(final_path, metadata)

    @staticmethod
    def _insert(conn: sqlite3.Connection, table: str, columns: Sequence[str], records: Sequence[BaseModel]) -> None:
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        conn.executemany(sql, (tuple(getattr(r, c) for c in columns) for r in records))
        logger.debug(f"Inserted {len(records)} rows into {table}")

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")


class GenerationStore:
    """
    Explicit handle on the active generation.

    ``active`` is the only shared mutable state. It is replaced wholesale by
    ``activate``; generations themselves are never modified after activation.
    """

    def __init__(self, data_dir: Path = RegIntelConfig.DEFAULT_DATA_DIR) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.builder = GenerationBuilder(self.data_dir)
        self._lock = threading.Lock()
        self._active: Optional[Generation] = None
        self._load_active()

    @property
    def pointer_path(self) -> Path:
        return self.data_dir / RegIntelConfig.ACTIVE_POINTER

    @property
    def active(self) -> Optional[Generation]:
        return self._active

    def require_active(self) -> Generation:
        generation = self._active
        if generation is None:
            raise StoreNotReadyError("No generation is active yet; call ensure_ready() first")
        return generation

    def _load_active(self) -> None:
        if not self.pointer_path.exists():
            logger.info(f"No active generation in {self.data_dir}")
            return
        name = self.pointer_path.read_text(encoding="utf-8").strip()
        try:
            self._active = Generation.open(self.data_dir / name)
            logger.info(f"Serving existing generation {self._active.generation_id}")
        except BuildError as e:
            logger.warning(f"Ignoring unusable active generation {name}: {e}")

    def activate(self, generation: Generation) -> None:
        """Atomically make ``generation`` the one every new query reads."""
        with self._lock:
            tmp_pointer = self.pointer_path.with_name(self.pointer_path.name + ".tmp")
            tmp_pointer.write_text(generation.path.name, encoding="utf-8")
            os.replace(tmp_pointer, self.pointer_path)
            previous = self._active
            self._active = generation
        logger.info(f"Activated generation {generation.generation_id}")

        keep = {generation.path.name}
        if previous is not None:
            keep.add(previous.path.name)
        self._prune(keep)

    def _prune(self, keep: set[str]) -> None:
        """Delete generations older than the previous one; readers of that one may still be mid-query."""
        for path in self.data_dir.glob(f"{RegIntelConfig.GENERATION_PREFIX}*.db"):
            if path.name not in keep:
                try:
                    path.unlink()
                    logger.debug(f"Pruned old generation {path.name}")
                except OSError as e:
                    logger.warning(f"Failed to prune {path}: {e}")
