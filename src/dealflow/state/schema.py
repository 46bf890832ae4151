"""SQLite schema for deal lifecycle persistence.

Invariants that must hold across concurrent writers are enforced here, at the
storage boundary, rather than in application code:

- one Contract per Deal (``UNIQUE`` on ``contract.deal_id``)
- at most one pending EscalationRequest per Deal (partial unique index)
- at most one succeeded payment per milestone (partial unique index)
- communication records are append-only (update/delete triggers)
- contract terms are frozen once the contract leaves ``drafting``
- a ``paid`` milestone never changes status again
"""

from __future__ import annotations

import sqlite3
from pathlib import Path


def connect(db_path: Path | str) -> sqlite3.Connection:
    """Open a connection suitable for the shared, lock-guarded store.

    Autocommit mode (``isolation_level=None``) lets the store issue explicit
    ``BEGIN IMMEDIATE`` statements.  ``check_same_thread=False`` is safe
    because every access goes through the store's connection lock.

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.

    Returns:
        An open sqlite3.Connection with WAL mode and foreign keys enabled.
    """
    conn = sqlite3.connect(str(db_path), isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create all tables, indexes, and triggers if they do not already exist.

    Args:
        conn: An open sqlite3.Connection.
    """
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS deal (
            id TEXT PRIMARY KEY,
            campaign_id TEXT NOT NULL,
            creator_id TEXT NOT NULL,
            stage TEXT NOT NULL,
            budget_json TEXT NOT NULL,
            classification_json TEXT,
            strategy_json TEXT,
            version INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_deal_campaign ON deal (campaign_id);
        CREATE INDEX IF NOT EXISTS idx_deal_stage ON deal (stage);

        CREATE TABLE IF NOT EXISTS communication (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            deal_id TEXT NOT NULL REFERENCES deal (id),
            direction TEXT NOT NULL,
            raw_content TEXT NOT NULL,
            classification_json TEXT,
            metadata_json TEXT NOT NULL DEFAULT '{}',
            delivery_status TEXT,
            delivery_id TEXT,
            failure_reason TEXT,
            timestamp TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_comm_deal ON communication (deal_id, timestamp, seq);

        CREATE TRIGGER IF NOT EXISTS communication_no_update
        BEFORE UPDATE ON communication
        BEGIN
            SELECT RAISE(ABORT, 'communication records are append-only');
        END;

        CREATE TRIGGER IF NOT EXISTS communication_no_delete
        BEFORE DELETE ON communication
        BEGIN
            SELECT RAISE(ABORT, 'communication records are append-only');
        END;

        CREATE TABLE IF NOT EXISTS escalation (
            id TEXT PRIMARY KEY,
            deal_id TEXT NOT NULL REFERENCES deal (id),
            reason TEXT NOT NULL,
            payload_json TEXT NOT NULL,
            status TEXT NOT NULL,
            note TEXT,
            resolved_action TEXT,
            created_at TEXT NOT NULL,
            resolved_at TEXT
        );
        CREATE UNIQUE INDEX IF NOT EXISTS ux_escalation_one_pending
            ON escalation (deal_id) WHERE status = 'pending';
        CREATE INDEX IF NOT EXISTS idx_escalation_status ON escalation (status);

        CREATE TABLE IF NOT EXISTS contract (
            id TEXT PRIMARY KEY,
            deal_id TEXT NOT NULL UNIQUE REFERENCES deal (id),
            terms_json TEXT NOT NULL,
            status TEXT NOT NULL,
            document_url TEXT,
            terms_source TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TRIGGER IF NOT EXISTS contract_terms_frozen
        BEFORE UPDATE OF terms_json ON contract
        WHEN OLD.status != 'drafting' AND NEW.terms_json != OLD.terms_json
        BEGIN
            SELECT RAISE(ABORT, 'contract terms are frozen after drafting');
        END;

        CREATE TABLE IF NOT EXISTS milestone (
            id TEXT PRIMARY KEY,
            contract_id TEXT NOT NULL REFERENCES contract (id),
            sequence INTEGER NOT NULL,
            description TEXT NOT NULL,
            amount TEXT NOT NULL,
            due_date TEXT NOT NULL,
            status TEXT NOT NULL,
            invoice_id TEXT,
            paid_at TEXT,
            last_failure_reason TEXT,
            UNIQUE (contract_id, sequence)
        );
        CREATE INDEX IF NOT EXISTS idx_milestone_invoice ON milestone (invoice_id);

        CREATE TRIGGER IF NOT EXISTS milestone_paid_is_final
        BEFORE UPDATE OF status ON milestone
        WHEN OLD.status = 'paid' AND NEW.status != 'paid'
        BEGIN
            SELECT RAISE(ABORT, 'paid milestones are irreversible');
        END;

        CREATE TABLE IF NOT EXISTS payment (
            id TEXT PRIMARY KEY,
            contract_id TEXT NOT NULL REFERENCES contract (id),
            milestone_id TEXT NOT NULL REFERENCES milestone (id),
            invoice_id TEXT NOT NULL,
            amount TEXT NOT NULL,
            status TEXT NOT NULL,
            transaction_id TEXT,
            failure_reason TEXT,
            created_at TEXT NOT NULL
        );
        CREATE UNIQUE INDEX IF NOT EXISTS ux_payment_one_success
            ON payment (milestone_id) WHERE status = 'succeeded';
        CREATE INDEX IF NOT EXISTS idx_payment_contract ON payment (contract_id);
    """)


def init_db(db_path: Path | str) -> sqlite3.Connection:
    """Open the database at *db_path* and make sure the schema exists.

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.

    Returns:
        An initialized connection.
    """
    conn = connect(db_path)
    init_schema(conn)
    return conn
