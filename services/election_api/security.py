"""Per-election security settings and the hash-chained audit trail."""
import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from services.shared import SecurityFeature, calculate_pagination_meta
from .auth import CurrentUser
from .database import Database, database
from .elections import fetch_election, fetch_owned_election
from .errors import Forbidden
from .models import AuditEventCreate, SecurityConfigRequest

logger = logging.getLogger(__name__)

DEFAULT_SECURITY_CONFIG = {
    "encryption_enabled": True,
    "digital_signatures_enabled": True,
    "tamper_resistance_enabled": True,
    "privacy_protection_enabled": True,
    "audit_trail_enabled": True,
    "identity_verification_enabled": False,
    "encryption_algorithm": "AES-256-GCM",
    "signature_algorithm": "RSA-SHA256",
}

# Score given to elections that never saved a configuration
UNCONFIGURED_SCORE = 50


def compute_event_hash(
    election_id: Optional[int],
    user_id: int,
    action_type: str,
    timestamp: datetime,
    data_before: Optional[Dict[str, Any]],
    data_after: Optional[Dict[str, Any]],
    previous_hash: Optional[str]
) -> str:
    """
    SHA-256 over the canonical JSON form of an audit event.

    Keys are sorted and the timestamp is normalized to UTC so the hash can
    be recomputed from the stored row.
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    payload = {
        "election_id": election_id,
        "user_id": user_id,
        "action_type": action_type,
        "timestamp": timestamp.astimezone(timezone.utc).isoformat(),
        "data_before": data_before,
        "data_after": data_after,
        "previous_hash": previous_hash,
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def calculate_security_score(config: Optional[Dict[str, Any]]) -> int:
    """Percentage of the six security features that are switched on."""
    if config is None:
        return UNCONFIGURED_SCORE
    features = [feature.value for feature in SecurityFeature]
    enabled = sum(1 for feature in features if config.get(feature))
    return round(enabled * 100 / len(features))


class SecurityService:
    """Security settings, audit logging and integrity checks."""

    def __init__(self, db: Database):
        self.db = db

    async def _readable_election(self, conn, election_id: int, user: CurrentUser) -> dict:
        election = await fetch_election(conn, election_id)
        if election["creator_id"] != user.user_id and not user.is_auditor:
            raise Forbidden("You do not have permission to view this audit trail")
        return election

    async def configure_security(self, election_id: int, user: CurrentUser, config: SecurityConfigRequest) -> dict:
        values = config.model_dump()
        columns = list(values)
        placeholders = ", ".join(f"${index}" for index in range(2, len(columns) + 2))
        updates = ", ".join(f"{column} = EXCLUDED.{column}" for column in columns)

        async with self.db.connection() as conn:
            await fetch_owned_election(conn, election_id, user)
            row = await conn.fetchrow(
                f"""
                INSERT INTO election_security_config (election_id, {", ".join(columns)})
                VALUES ($1, {placeholders})
                ON CONFLICT (election_id) DO UPDATE
                SET {updates}, updated_at = NOW()
                RETURNING *
                """,
                election_id, *[values[column] for column in columns]
            )
        logger.info(f"Security configured: election={election_id}")
        return dict(row)

    async def get_security_config(self, election_id: int) -> dict:
        async with self.db.connection() as conn:
            await fetch_election(conn, election_id)
            row = await conn.fetchrow(
                "SELECT * FROM election_security_config WHERE election_id = $1",
                election_id
            )
        if row is None:
            return {"election_id": election_id, **DEFAULT_SECURITY_CONFIG, "is_default": True}
        return dict(row)

    async def toggle_feature(
        self,
        election_id: int,
        user: CurrentUser,
        feature: SecurityFeature,
        enabled: bool
    ) -> dict:
        column = SecurityFeature(feature).value
        async with self.db.connection() as conn:
            await fetch_owned_election(conn, election_id, user)
            row = await conn.fetchrow(
                f"""
                INSERT INTO election_security_config (election_id, {column})
                VALUES ($1, $2)
                ON CONFLICT (election_id) DO UPDATE
                SET {column} = EXCLUDED.{column}, updated_at = NOW()
                RETURNING *
                """,
                election_id, enabled
            )
        logger.info(f"Security feature toggled: election={election_id}, {column}={enabled}")
        return dict(row)

    async def log_audit_event(
        self,
        user: CurrentUser,
        event: AuditEventCreate,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> dict:
        """
        Append an event to the election's audit chain.

        Appends for the same election are serialized with a transaction
        advisory lock so each event links to the one before it.
        """
        timestamp = datetime.now(timezone.utc)
        async with self.db.transaction() as conn:
            await conn.execute("SELECT pg_advisory_xact_lock($1)", event.election_id or 0)
            previous_hash = await conn.fetchval(
                """
                SELECT event_hash FROM audit_events
                WHERE election_id IS NOT DISTINCT FROM $1
                ORDER BY id DESC
                LIMIT 1
                """,
                event.election_id
            )
            event_hash = compute_event_hash(
                event.election_id, user.user_id, event.action_type, timestamp,
                event.data_before, event.data_after, previous_hash
            )
            row = await conn.fetchrow(
                """
                INSERT INTO audit_events
                    (election_id, user_id, action_type, action_description,
                     data_before, data_after, ip_address, user_agent,
                     event_timestamp, previous_hash, event_hash)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                RETURNING *
                """,
                event.election_id, user.user_id, event.action_type,
                event.action_description, event.data_before, event.data_after,
                ip_address, user_agent, timestamp, previous_hash, event_hash
            )
        return dict(row)

    async def get_audit_trail(self, election_id: int, user: CurrentUser, page: int = 1, limit: int = 50) -> dict:
        offset = (page - 1) * limit
        async with self.db.connection() as conn:
            await self._readable_election(conn, election_id, user)
            rows = await conn.fetch(
                """
                SELECT * FROM audit_events
                WHERE election_id = $1
                ORDER BY id DESC
                LIMIT $2 OFFSET $3
                """,
                election_id, limit, offset
            )
            total = await conn.fetchval(
                "SELECT COUNT(*) FROM audit_events WHERE election_id = $1",
                election_id
            )
        return {
            "events": [dict(row) for row in rows],
            "pagination": calculate_pagination_meta(page, limit, int(total or 0)),
        }

    async def verify_integrity(self, election_id: int, user: CurrentUser) -> dict:
        """
        Recompute every event hash and chain link of an election.

        An event counts as tampered if its stored hash does not match its
        content or if it does not point at the preceding event's hash.
        """
        async with self.db.connection() as conn:
            await self._readable_election(conn, election_id, user)
            rows = await conn.fetch(
                "SELECT * FROM audit_events WHERE election_id = $1 ORDER BY id",
                election_id
            )

        verified = 0
        tampered_ids = []
        expected_previous = None
        for row in rows:
            recomputed = compute_event_hash(
                row["election_id"], row["user_id"], row["action_type"],
                row["event_timestamp"], row["data_before"], row["data_after"],
                row["previous_hash"]
            )
            if recomputed == row["event_hash"] and row["previous_hash"] == expected_previous:
                verified += 1
            else:
                tampered_ids.append(row["id"])
            expected_previous = row["event_hash"]

        total = len(rows)
        percentage = round(verified * 100 / total, 2) if total else 100.0
        if tampered_ids:
            logger.warning(f"Audit integrity check failed: election={election_id}, events={tampered_ids}")

        return {
            "election_id": election_id,
            "total_events": total,
            "verified_events": verified,
            "tampered_events": len(tampered_ids),
            "tampered_event_ids": tampered_ids,
            "integrity_percentage": percentage,
            "is_intact": not tampered_ids,
        }

    async def security_summary(self, election_id: int, user: CurrentUser) -> dict:
        async with self.db.connection() as conn:
            await self._readable_election(conn, election_id, user)
            config = await conn.fetchrow(
                "SELECT * FROM election_security_config WHERE election_id = $1",
                election_id
            )
            audit = await conn.fetchrow(
                """
                SELECT COUNT(*) AS total_events, MAX(event_timestamp) AS last_event_at
                FROM audit_events
                WHERE election_id = $1
                """,
                election_id
            )

        config = dict(config) if config else None
        return {
            "election_id": election_id,
            "security_config": config or {**DEFAULT_SECURITY_CONFIG, "is_default": True},
            "audit_events": int(audit["total_events"]) if audit else 0,
            "last_audit_at": audit["last_event_at"] if audit else None,
            "security_score": calculate_security_score(config),
        }


# Global security service instance
security_service = SecurityService(database)
