"""Append-only, hash-chained audit ledger backed by SQLite.

Design:
- Append-only: only ``append()`` writes run entries; no update, no delete.
- Hash-chained: each entry includes the SHA-256 of the previous entry.
- WAL journal mode for concurrent readers.
- A second table keeps every measurement set observed per
  (image digest, debug mode) so repeated conversions can be compared.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from novahub.core.hasher import seal_entry
from novahub.models.ledger import LedgerEntry

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    run_id                TEXT NOT NULL,
    stage_id              TEXT NOT NULL,
    state_transition      TEXT NOT NULL,
    timestamp_utc         TEXT NOT NULL,
    input_hash            TEXT NOT NULL DEFAULT '',
    output_hash           TEXT NOT NULL DEFAULT '',
    artifact_refs_json    TEXT NOT NULL DEFAULT '[]',
    detail                TEXT NOT NULL DEFAULT '',
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_run_id ON run_ledger(run_id, id);
"""

_CREATE_MEASUREMENTS = """
CREATE TABLE IF NOT EXISTS measurement_history (
    image_digest    TEXT NOT NULL,
    debug_mode      INTEGER NOT NULL,
    registers_json  TEXT NOT NULL,
    run_id          TEXT NOT NULL,
    recorded_at     TEXT NOT NULL,
    PRIMARY KEY (image_digest, debug_mode)
);
"""


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained run ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_RUN)
            conn.execute(_CREATE_MEASUREMENTS)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Append an entry, computing its hash chain link.

        Returns the entry with ``previous_entry_hash`` and ``entry_hash`` set.
        """
        previous_hash = self._get_latest_hash(entry.run_id)

        entry_dict = entry.model_dump(mode="json")
        entry_dict["previous_entry_hash"] = previous_hash
        entry_dict["entry_hash"] = ""

        sealed = entry.model_copy(
            update={
                "previous_entry_hash": previous_hash,
                "entry_hash": seal_entry(entry_dict),
            }
        )
        self._insert(sealed)
        return sealed

    def _insert(self, entry: LedgerEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO run_ledger
                    (entry_id, run_id, stage_id, state_transition, timestamp_utc,
                     input_hash, output_hash, artifact_refs_json, detail,
                     previous_entry_hash, entry_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.entry_id,
                    entry.run_id,
                    entry.stage_id,
                    entry.state_transition,
                    entry.timestamp_utc.isoformat(),
                    entry.input_hash,
                    entry.output_hash,
                    json.dumps(entry.artifact_references),
                    entry.detail,
                    entry.previous_entry_hash,
                    entry.entry_hash,
                ),
            )
            conn.commit()

    def _get_latest_hash(self, run_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a run, ordered chronologically."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM run_ledger WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_all_run_ids(self) -> list[str]:
        """Return all distinct run_ids, most recent first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id FROM run_ledger GROUP BY run_id ORDER BY MAX(id) DESC"
            ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Verify the hash chain integrity for a run.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )

            expected_hash = seal_entry(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, "
                    f"got {entry.entry_hash!r}"
                )

            prev_hash = entry.entry_hash

        return True

    # ------------------------------------------------------------------
    # Measurement history
    # ------------------------------------------------------------------

    def get_measurements(self, image_digest: str, debug_mode: bool) -> dict[str, str] | None:
        """Return the first measurement set recorded for this image and mode."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT registers_json FROM measurement_history "
                "WHERE image_digest = ? AND debug_mode = ?",
                (image_digest, int(debug_mode)),
            ).fetchone()
        return json.loads(row[0]) if row else None

    def record_measurements(
        self,
        image_digest: str,
        debug_mode: bool,
        registers: dict[str, str],
        run_id: str,
    ) -> dict[str, str]:
        """Record ``registers`` unless a set already exists; return the stored set.

        The first observation wins, so comparing the return value with
        ``registers`` tells the caller whether this conversion agreed.
        """
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO measurement_history "
                "(image_digest, debug_mode, registers_json, run_id, recorded_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    image_digest,
                    int(debug_mode),
                    json.dumps(registers, sort_keys=True),
                    run_id,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()
        stored = self.get_measurements(image_digest, debug_mode)
        return stored if stored is not None else dict(registers)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        (
            _id,
            entry_id,
            run_id,
            stage_id,
            state_transition,
            timestamp_utc,
            input_hash,
            output_hash,
            artifact_refs_json,
            detail,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            run_id=run_id,
            stage_id=stage_id,
            state_transition=state_transition,
            timestamp_utc=timestamp_utc,
            input_hash=input_hash,
            output_hash=output_hash,
            artifact_references=json.loads(artifact_refs_json),
            detail=detail,
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
