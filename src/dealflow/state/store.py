"""SQLite-backed store for deals, escalations, contracts, and payments.

Accepts a sqlite3.Connection, uses parameterized queries exclusively, and
guards the connection with a re-entrant lock so it can be shared by worker
threads.  Multi-statement writes run inside :meth:`DealStore.transaction`,
which commits all-or-nothing and translates constraint violations into
:class:`~dealflow.domain.errors.InvariantViolation`.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from dealflow.domain.errors import (
    ConcurrentModification,
    InvariantViolation,
    NotFound,
    PersistenceError,
)
from dealflow.domain.models import (
    CommunicationRecord,
    Contract,
    Deal,
    EscalationRequest,
    PaymentMilestone,
    PaymentRecord,
    utcnow,
)
from dealflow.domain.types import EscalationStatus, PaymentStatus
from dealflow.state.serializers import (
    communication_from_row,
    contract_from_row,
    deal_from_row,
    dump_model,
    dump_time,
    escalation_from_row,
    milestone_from_row,
    payment_from_row,
)

logger = structlog.get_logger()


class DealStore:
    """Persist and retrieve every entity of the deal lifecycle.

    Reads return fresh pydantic models; callers never share mutable state
    through the store.  Deal updates are optimistic: :meth:`update_deal`
    only succeeds if the stored ``version`` still matches the one the caller
    read.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialize with an open database connection.

        Args:
            conn: A connection from :func:`dealflow.state.schema.init_db`.
        """
        self._conn = conn
        self._lock = threading.RLock()
        self._depth = 0

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed writes as one atomic transaction.

        Nested use joins the outer transaction.  Any exception rolls back
        every write made inside the outermost block.

        Raises:
            InvariantViolation: If a constraint or trigger rejects a write.
            PersistenceError: If SQLite fails for any other reason.
        """
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield
            except sqlite3.IntegrityError as exc:
                self._conn.execute("ROLLBACK")
                logger.warning("store_constraint_rejected", error=str(exc))
                raise InvariantViolation(str(exc)) from exc
            except sqlite3.Error as exc:
                self._conn.execute("ROLLBACK")
                logger.error("store_transaction_failed", error=str(exc))
                raise PersistenceError(str(exc)) from exc
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._depth = 0

    def _fetchone(self, query: str, params: tuple[object, ...]) -> sqlite3.Row | None:
        with self._lock:
            row: sqlite3.Row | None = self._conn.execute(query, params).fetchone()
            return row

    def _fetchall(self, query: str, params: tuple[object, ...] | list[object]) -> list[sqlite3.Row]:
        with self._lock:
            return list(self._conn.execute(query, params).fetchall())

    def _execute(self, query: str, params: tuple[object, ...]) -> sqlite3.Cursor:
        with self.transaction():
            return self._conn.execute(query, params)

    # ------------------------------------------------------------------
    # Deals
    # ------------------------------------------------------------------

    def insert_deal(self, deal: Deal) -> Deal:
        """Insert a new deal row."""
        self._execute(
            """
            INSERT INTO deal (
                id, campaign_id, creator_id, stage, budget_json,
                classification_json, strategy_json, version, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                deal.id,
                deal.campaign_id,
                deal.creator_id,
                deal.stage.value,
                deal.budget.model_dump_json(),
                dump_model(deal.latest_classification),
                dump_model(deal.strategy),
                deal.version,
                dump_time(deal.created_at),
                dump_time(deal.updated_at),
            ),
        )
        return deal

    def get_deal(self, deal_id: str) -> Deal:
        """Load a deal by id.

        Raises:
            NotFound: If no deal has this id.
        """
        row = self._fetchone("SELECT * FROM deal WHERE id = ?", (deal_id,))
        if row is None:
            raise NotFound("deal", deal_id)
        return deal_from_row(row)

    def update_deal(self, deal: Deal) -> Deal:
        """Persist *deal* if nobody changed it since it was read.

        The stored version must equal ``deal.version``; the stored version is
        then incremented.

        Returns:
            A copy of *deal* carrying the new version and ``updated_at``.

        Raises:
            ConcurrentModification: If the stored version moved on.
        """
        now = utcnow()
        cursor = self._execute(
            """
            UPDATE deal
               SET stage = ?, classification_json = ?, strategy_json = ?,
                   version = version + 1, updated_at = ?
             WHERE id = ? AND version = ?
            """,
            (
                deal.stage.value,
                dump_model(deal.latest_classification),
                dump_model(deal.strategy),
                dump_time(now),
                deal.id,
                deal.version,
            ),
        )
        if cursor.rowcount == 0:
            raise ConcurrentModification(
                f"deal '{deal.id}' changed since version {deal.version} was read"
            )
        return deal.model_copy(update={"version": deal.version + 1, "updated_at": now})

    def list_deals(
        self,
        *,
        campaign_id: str | None = None,
        stage: str | None = None,
    ) -> list[Deal]:
        """List deals, optionally filtered by campaign and stage."""
        conditions: list[str] = []
        params: list[object] = []
        if campaign_id is not None:
            conditions.append("campaign_id = ?")
            params.append(campaign_id)
        if stage is not None:
            conditions.append("stage = ?")
            params.append(stage)
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = self._fetchall(f"SELECT * FROM deal {where_clause} ORDER BY created_at", params)
        return [deal_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Communications
    # ------------------------------------------------------------------

    def append_communication(self, record: CommunicationRecord) -> CommunicationRecord:
        """Append a communication record.  Records are never updated."""
        self._execute(
            """
            INSERT INTO communication (
                id, deal_id, direction, raw_content, classification_json,
                metadata_json, delivery_status, delivery_id, failure_reason, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.deal_id,
                record.direction.value,
                record.raw_content,
                dump_model(record.classification),
                json.dumps(record.metadata),
                record.delivery_status.value if record.delivery_status else None,
                record.delivery_id,
                record.failure_reason,
                dump_time(record.timestamp),
            ),
        )
        return record

    def list_communications(self, deal_id: str) -> list[CommunicationRecord]:
        """Return a deal's conversation history in receipt order."""
        rows = self._fetchall(
            "SELECT * FROM communication WHERE deal_id = ? ORDER BY timestamp, seq",
            (deal_id,),
        )
        return [communication_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Escalations
    # ------------------------------------------------------------------

    def insert_escalation(self, request: EscalationRequest) -> EscalationRequest:
        """Insert an escalation.  A second pending one for the deal is rejected."""
        self._execute(
            """
            INSERT INTO escalation (
                id, deal_id, reason, payload_json, status, note,
                resolved_action, created_at, resolved_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                request.id,
                request.deal_id,
                request.reason,
                request.payload.model_dump_json(),
                request.status.value,
                request.note,
                request.resolved_action.value if request.resolved_action else None,
                dump_time(request.created_at),
                dump_time(request.resolved_at),
            ),
        )
        return request

    def update_escalation(self, request: EscalationRequest) -> EscalationRequest:
        """Overwrite the mutable fields of an existing escalation."""
        cursor = self._execute(
            """
            UPDATE escalation
               SET reason = ?, payload_json = ?, status = ?, note = ?,
                   resolved_action = ?, resolved_at = ?
             WHERE id = ?
            """,
            (
                request.reason,
                request.payload.model_dump_json(),
                request.status.value,
                request.note,
                request.resolved_action.value if request.resolved_action else None,
                dump_time(request.resolved_at),
                request.id,
            ),
        )
        if cursor.rowcount == 0:
            raise NotFound("escalation", request.id)
        return request

    def get_escalation(self, request_id: str) -> EscalationRequest:
        """Load an escalation by id.

        Raises:
            NotFound: If no escalation has this id.
        """
        row = self._fetchone("SELECT * FROM escalation WHERE id = ?", (request_id,))
        if row is None:
            raise NotFound("escalation", request_id)
        return escalation_from_row(row)

    def get_pending_escalation(self, deal_id: str) -> EscalationRequest | None:
        """Return the deal's pending escalation, if any."""
        row = self._fetchone(
            "SELECT * FROM escalation WHERE deal_id = ? AND status = ?",
            (deal_id, EscalationStatus.PENDING.value),
        )
        return escalation_from_row(row) if row else None

    def list_escalations(
        self,
        *,
        status: str | None = None,
        deal_id: str | None = None,
    ) -> list[EscalationRequest]:
        """List escalations, oldest first, optionally filtered."""
        conditions: list[str] = []
        params: list[object] = []
        if status is not None:
            conditions.append("status = ?")
            params.append(status)
        if deal_id is not None:
            conditions.append("deal_id = ?")
            params.append(deal_id)
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = self._fetchall(
            f"SELECT * FROM escalation {where_clause} ORDER BY created_at", params
        )
        return [escalation_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Contracts and milestones
    # ------------------------------------------------------------------

    def insert_contract(
        self, contract: Contract, milestones: list[PaymentMilestone]
    ) -> Contract:
        """Insert a contract together with its milestones in one transaction."""
        with self.transaction():
            self._conn.execute(
                """
                INSERT INTO contract (
                    id, deal_id, terms_json, status, document_url,
                    terms_source, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    contract.id,
                    contract.deal_id,
                    contract.terms.model_dump_json(),
                    contract.status.value,
                    contract.document_url,
                    contract.terms_source,
                    dump_time(contract.created_at),
                    dump_time(contract.updated_at),
                ),
            )
            for milestone in milestones:
                self._insert_milestone(milestone)
        return contract

    def _insert_milestone(self, milestone: PaymentMilestone) -> None:
        self._conn.execute(
            """
            INSERT INTO milestone (
                id, contract_id, sequence, description, amount, due_date,
                status, invoice_id, paid_at, last_failure_reason
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                milestone.id,
                milestone.contract_id,
                milestone.sequence,
                milestone.description,
                str(milestone.amount),
                milestone.due_date,
                milestone.status.value,
                milestone.invoice_id,
                dump_time(milestone.paid_at),
                milestone.last_failure_reason,
            ),
        )

    def get_contract(self, contract_id: str) -> Contract:
        """Load a contract by id.

        Raises:
            NotFound: If no contract has this id.
        """
        row = self._fetchone("SELECT * FROM contract WHERE id = ?", (contract_id,))
        if row is None:
            raise NotFound("contract", contract_id)
        return contract_from_row(row)

    def get_contract_for_deal(self, deal_id: str) -> Contract | None:
        """Return the deal's contract, if one was created."""
        row = self._fetchone("SELECT * FROM contract WHERE deal_id = ?", (deal_id,))
        return contract_from_row(row) if row else None

    def update_contract(self, contract: Contract) -> Contract:
        """Persist status, document URL, and terms of an existing contract."""
        now = utcnow()
        cursor = self._execute(
            """
            UPDATE contract
               SET terms_json = ?, status = ?, document_url = ?, updated_at = ?
             WHERE id = ?
            """,
            (
                contract.terms.model_dump_json(),
                contract.status.value,
                contract.document_url,
                dump_time(now),
                contract.id,
            ),
        )
        if cursor.rowcount == 0:
            raise NotFound("contract", contract.id)
        return contract.model_copy(update={"updated_at": now})

    def list_contracts(self, *, deal_id: str | None = None) -> list[Contract]:
        """List contracts, optionally for a single deal."""
        if deal_id is None:
            rows = self._fetchall("SELECT * FROM contract ORDER BY created_at", ())
        else:
            rows = self._fetchall(
                "SELECT * FROM contract WHERE deal_id = ? ORDER BY created_at", (deal_id,)
            )
        return [contract_from_row(row) for row in rows]

    def get_milestone(self, milestone_id: str) -> PaymentMilestone:
        """Load a milestone by id.

        Raises:
            NotFound: If no milestone has this id.
        """
        row = self._fetchone("SELECT * FROM milestone WHERE id = ?", (milestone_id,))
        if row is None:
            raise NotFound("milestone", milestone_id)
        return milestone_from_row(row)

    def find_milestone_by_invoice(self, invoice_id: str) -> PaymentMilestone | None:
        """Return the milestone billed by *invoice_id*, if any."""
        row = self._fetchone("SELECT * FROM milestone WHERE invoice_id = ?", (invoice_id,))
        return milestone_from_row(row) if row else None

    def list_milestones(self, contract_id: str) -> list[PaymentMilestone]:
        """Return a contract's milestones in schedule order."""
        rows = self._fetchall(
            "SELECT * FROM milestone WHERE contract_id = ? ORDER BY sequence", (contract_id,)
        )
        return [milestone_from_row(row) for row in rows]

    def update_milestone(self, milestone: PaymentMilestone) -> PaymentMilestone:
        """Persist the mutable fields of a milestone."""
        cursor = self._execute(
            """
            UPDATE milestone
               SET status = ?, invoice_id = ?, paid_at = ?, last_failure_reason = ?
             WHERE id = ?
            """,
            (
                milestone.status.value,
                milestone.invoice_id,
                dump_time(milestone.paid_at),
                milestone.last_failure_reason,
                milestone.id,
            ),
        )
        if cursor.rowcount == 0:
            raise NotFound("milestone", milestone.id)
        return milestone

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def insert_payment(self, record: PaymentRecord) -> PaymentRecord:
        """Record a charge attempt.  A second success for a milestone is rejected."""
        self._execute(
            """
            INSERT INTO payment (
                id, contract_id, milestone_id, invoice_id, amount, status,
                transaction_id, failure_reason, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.contract_id,
                record.milestone_id,
                record.invoice_id,
                str(record.amount),
                record.status.value,
                record.transaction_id,
                record.failure_reason,
                dump_time(record.created_at),
            ),
        )
        return record

    def get_successful_payment(self, milestone_id: str) -> PaymentRecord | None:
        """Return the succeeded charge for a milestone, if any."""
        row = self._fetchone(
            "SELECT * FROM payment WHERE milestone_id = ? AND status = ?",
            (milestone_id, PaymentStatus.SUCCEEDED.value),
        )
        return payment_from_row(row) if row else None

    def list_payments(
        self,
        *,
        contract_id: str | None = None,
        milestone_id: str | None = None,
    ) -> list[PaymentRecord]:
        """List charge attempts, oldest first."""
        conditions: list[str] = []
        params: list[object] = []
        if contract_id is not None:
            conditions.append("contract_id = ?")
            params.append(contract_id)
        if milestone_id is not None:
            conditions.append("milestone_id = ?")
            params.append(milestone_id)
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = self._fetchall(f"SELECT * FROM payment {where_clause} ORDER BY created_at", params)
        return [payment_from_row(row) for row in rows]

    def ping(self) -> None:
        """Run a trivial query; used by the readiness probe."""
        self._fetchone("SELECT 1", ())

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()
