"""
Audit trail for coupon, cart, order, invoice and shipping method changes.

Rows in audit_log are append-only and attributed to the acting user. An
order's amounts never change after checkout; its CREATE entry records the
full pricing breakdown it was frozen with.

Writes normally go through the pool and commit on their own. Pass `db=tx`
to make the entry part of an open transaction, so it rolls back with it.
"""

import logging
from enum import Enum
from uuid import UUID, uuid4
from typing import Any

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, Transaction
from utils.user_context import get_current_user_id
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

AUDITED_ENTITIES = frozenset({"coupon", "cart", "order", "invoice", "shipping_method"})


class AuditAction(Enum):
    """Type of change recorded. Marketplace documents are never deleted."""

    CREATE = "create"
    UPDATE = "update"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Field-level diff of two model_dump(mode="json") snapshots.

    Args:
        old: Previous state
        new: New state
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        {field: {"old": ..., "new": ...}} for every field that differs.
    """
    exclude = exclude_fields or {"updated_at"}

    return {
        key: {"old": old.get(key), "new": new.get(key)}
        for key in sorted(set(old) | set(new))
        if key not in exclude and old.get(key) != new.get(key)
    }


class AuditLogger:
    """
    Append-only audit trail.

    Usage:
        audit = AuditLogger(postgres)

        audit.log_change(
            entity_type="coupon",
            entity_id=coupon.id,
            action=AuditAction.CREATE,
            changes={"created": data.model_dump(mode="json", exclude_none=True)}
        )

        with postgres.transaction() as tx:
            ...
            audit.log_change("order", order.id, AuditAction.CREATE, changes, db=tx)

        history = audit.get_entity_history("order", order.id)
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        user_id: UUID | None = None,
        db: PostgresClient | Transaction | None = None
    ) -> None:
        """
        Record one change.

        Args:
            entity_type: One of AUDITED_ENTITIES
            entity_id: ID of the entity
            action: CREATE or UPDATE
            changes: {"created": {...}} for CREATE, a compute_changes() diff
                (or an equivalent hand-built dict) for UPDATE
            user_id: Acting user, defaults to the current context
            db: Open transaction to write through, defaults to the pool

        Raises:
            ValueError: Unknown entity type
        """
        if entity_type not in AUDITED_ENTITIES:
            raise ValueError(f"Unknown audit entity type '{entity_type}'")

        if user_id is None:
            user_id = get_current_user_id()

        (db or self.postgres).execute(
            """
            INSERT INTO audit_log (id, user_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                uuid4(),
                user_id,
                entity_type,
                entity_id,
                action.value,
                Json(changes),
                now_utc()
            )
        )
        logger.debug(f"Audited {action.value} of {entity_type} {entity_id}")

    def get_entity_history(
        self,
        entity_type: str,
        entity_id: UUID,
        limit: int = 100
    ) -> list[dict[str, Any]]:
        """Audit entries for one entity, newest first."""
        return self.postgres.execute(
            """
            SELECT id, user_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (entity_type, entity_id, limit)
        )
