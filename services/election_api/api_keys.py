"""API key issuing, validation, fixed-window rate limiting and usage logs.

Rate limiting counts requests per key in calendar-minute windows stored in
``api_key_rate_limits``. A fixed window lets a caller send up to twice the
limit across a window boundary (N requests at 12:00:59 and N more at
12:01:00). Callers needing a hard rolling bound should not rely on it.
"""
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from .auth import CurrentUser
from .config import settings
from .database import Database, database
from .errors import Forbidden, NotFound, Unauthorized, ValidationFailed
from .models import ApiKeyCreate, ApiKeyUpdate

logger = logging.getLogger(__name__)

KEY_PREFIX = "vt_"
KEY_RANDOM_BYTES = 24
WINDOW = timedelta(minutes=1)

# Columns an update may change but never clear
REQUIRED_KEY_COLUMNS = ("name", "is_active", "rate_limit_per_minute")

# Columns safe to return to clients
PUBLIC_COLUMNS = (
    "id, key_id, key_prefix, name, description, environment, rate_limit_per_minute, "
    "is_active, created_by, expires_at, last_used_at, created_at, updated_at"
)


@dataclass
class GeneratedKey:
    """A freshly minted key. ``api_key`` is shown to the caller once."""
    api_key: str
    key_id: str
    key_prefix: str
    key_hash: str


@dataclass
class RateLimitResult:
    """Outcome of counting one request against a key's window."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["reset_at"] = self.reset_at.isoformat()
        return data

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at.isoformat(),
        }


def hash_api_key(api_key: str, secret: Optional[str] = None) -> str:
    """HMAC-SHA256 of a plaintext key."""
    secret = secret if secret is not None else settings.API_KEY_HASH_SECRET
    return hmac.new(secret.encode("utf-8"), api_key.encode("utf-8"), hashlib.sha256).hexdigest()


def generate_api_key(environment: str = "live") -> GeneratedKey:
    """
    Mint a new key of the form ``vt_<env>_<48 hex chars>``.

    Args:
        environment: ``live`` or ``test``

    Returns:
        GeneratedKey with the plaintext key, its public id, display prefix and hash
    """
    random_part = secrets.token_hex(KEY_RANDOM_BYTES)
    api_key = f"{KEY_PREFIX}{environment}_{random_part}"
    return GeneratedKey(
        api_key=api_key,
        key_id=f"{KEY_PREFIX}{environment}_{random_part[:8]}",
        key_prefix=f"{api_key[:16]}...",
        key_hash=hash_api_key(api_key),
    )


def compute_rate_window(now: datetime) -> Tuple[datetime, datetime, int]:
    """
    Calendar-minute window containing ``now``.

    Returns:
        tuple: (window_start, window_end, seconds until window_end rounded up)
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    window_start = now.replace(second=0, microsecond=0)
    window_end = window_start + WINDOW
    remaining = window_end - now
    retry_after = remaining.seconds + (1 if remaining.microseconds else 0)
    return window_start, window_end, max(retry_after, 1)


class ApiKeyService:
    """Persistence and checks for API keys."""

    def __init__(self, db: Database):
        self.db = db

    async def create_api_key(self, user: CurrentUser, request: ApiKeyCreate) -> dict:
        """
        Issue a key. Only Admin or Manager users may do so.

        The plaintext key is part of the response and is never stored.
        """
        if not user.is_admin:
            raise Forbidden("Only administrators can create API keys")

        generated = generate_api_key(request.environment)
        rate_limit = request.rate_limit_per_minute or settings.API_KEY_RATE_LIMIT_PER_MINUTE

        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO api_keys
                    (key_id, key_hash, key_prefix, name, description, environment,
                     rate_limit_per_minute, created_by, expires_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                RETURNING {PUBLIC_COLUMNS}
                """,
                generated.key_id, generated.key_hash, generated.key_prefix,
                request.name, request.description, request.environment,
                rate_limit, user.user_id, request.expires_at
            )

        logger.info(f"API key created: key_id={generated.key_id}, by user={user.user_id}")
        data = dict(row)
        data["api_key"] = generated.api_key
        return data

    async def list_api_keys(self, user: CurrentUser) -> List[dict]:
        """Managers see every key; Admins see the keys they created."""
        async with self.db.connection() as conn:
            if "Manager" in user.roles:
                rows = await conn.fetch(
                    f"SELECT {PUBLIC_COLUMNS} FROM api_keys ORDER BY created_at DESC"
                )
            else:
                rows = await conn.fetch(
                    f"SELECT {PUBLIC_COLUMNS} FROM api_keys WHERE created_by = $1 ORDER BY created_at DESC",
                    user.user_id
                )
        return [dict(row) for row in rows]

    async def get_api_key(self, key_id: str) -> dict:
        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {PUBLIC_COLUMNS} FROM api_keys WHERE key_id = $1",
                key_id
            )
        if row is None:
            raise NotFound("API key not found")
        return dict(row)

    async def update_api_key(self, key_id: str, request: ApiKeyUpdate) -> dict:
        """
        Apply the fields present in the request.

        An explicit null clears ``description`` or ``expires_at``.
        """
        changes = request.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationFailed("No fields to update")
        for column in REQUIRED_KEY_COLUMNS:
            if column in changes and changes[column] is None:
                raise ValidationFailed(f"{column} cannot be null")

        columns = list(changes)
        assignments = ", ".join(
            f"{column} = ${index}" for index, column in enumerate(columns, start=2)
        )
        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE api_keys
                SET {assignments}, updated_at = NOW()
                WHERE key_id = $1
                RETURNING {PUBLIC_COLUMNS}
                """,
                key_id, *[changes[column] for column in columns]
            )
        if row is None:
            raise NotFound("API key not found")
        logger.info(f"API key updated: key_id={key_id}, fields={list(changes)}")
        return dict(row)

    async def revoke_api_key(self, key_id: str):
        async with self.db.connection() as conn:
            deleted = await conn.fetchval(
                "DELETE FROM api_keys WHERE key_id = $1 RETURNING key_id",
                key_id
            )
        if deleted is None:
            raise NotFound("API key not found")
        logger.info(f"API key revoked: key_id={key_id}")

    async def validate_api_key(self, api_key: Optional[str]) -> dict:
        """
        Resolve a presented key to its stored record.

        Raises:
            Unauthorized: Missing, malformed or unknown key
            Forbidden: Disabled or expired key
        """
        if not api_key:
            raise Unauthorized("API key is required", code="MISSING_API_KEY")
        if not api_key.startswith(KEY_PREFIX):
            raise Unauthorized("Invalid API key format", code="INVALID_FORMAT")

        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {PUBLIC_COLUMNS} FROM api_keys WHERE key_hash = $1",
                hash_api_key(api_key)
            )
            if row is None:
                raise Unauthorized("Invalid API key", code="KEY_NOT_FOUND")
            if not row["is_active"]:
                raise Forbidden("API key has been disabled", code="KEY_DISABLED")
            expires_at = row["expires_at"]
            if expires_at is not None and expires_at < datetime.now(timezone.utc):
                raise Forbidden("API key has expired", code="KEY_EXPIRED")

            await conn.execute(
                "UPDATE api_keys SET last_used_at = NOW() WHERE key_id = $1",
                row["key_id"]
            )
        return dict(row)

    async def check_rate_limit(
        self,
        key_id: str,
        limit: int,
        now: Optional[datetime] = None
    ) -> RateLimitResult:
        """
        Count a request in the key's current minute window.

        The counter is incremented with an upsert so concurrent requests on
        the same window are counted exactly once each.
        """
        now = now or datetime.now(timezone.utc)
        window_start, window_end, retry_after = compute_rate_window(now)

        async with self.db.connection() as conn:
            count = await conn.fetchval(
                """
                INSERT INTO api_key_rate_limits (key_id, window_start, request_count)
                VALUES ($1, $2, 1)
                ON CONFLICT (key_id, window_start)
                DO UPDATE SET request_count = api_key_rate_limits.request_count + 1
                RETURNING request_count
                """,
                key_id, window_start
            )

        if count > limit:
            return RateLimitResult(
                allowed=False, limit=limit, remaining=0,
                reset_at=window_end, retry_after=retry_after
            )
        return RateLimitResult(
            allowed=True, limit=limit, remaining=limit - count,
            reset_at=window_end, retry_after=0
        )

    async def log_request(
        self,
        key_id: str,
        endpoint: str,
        method: str,
        status_code: int,
        response_time_ms: int,
        ip_address: Optional[str],
        user_agent: Optional[str]
    ):
        """Record one public API call. Failures are logged, never raised."""
        try:
            async with self.db.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO api_key_usage_logs
                        (key_id, endpoint, method, status_code, response_time_ms,
                         ip_address, user_agent)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    key_id, endpoint, method, status_code, response_time_ms,
                    ip_address, user_agent
                )
        except Exception as e:
            logger.error(f"Failed to log API key usage for {key_id}: {e}")

    async def get_usage(self, key_id: str, days: int = 7) -> dict:
        """Daily request aggregates for the last ``days`` days."""
        if days < 1 or days > settings.API_KEY_USAGE_MAX_DAYS:
            raise ValidationFailed(f"days must be between 1 and {settings.API_KEY_USAGE_MAX_DAYS}")

        since = datetime.now(timezone.utc) - timedelta(days=days)
        async with self.db.connection() as conn:
            exists = await conn.fetchval("SELECT 1 FROM api_keys WHERE key_id = $1", key_id)
            if not exists:
                raise NotFound("API key not found")
            rows = await conn.fetch(
                """
                SELECT DATE(created_at) AS date,
                       COUNT(*) AS total_requests,
                       COUNT(*) FILTER (WHERE status_code < 400) AS successful_requests,
                       COUNT(*) FILTER (WHERE status_code >= 400) AS failed_requests,
                       ROUND(AVG(response_time_ms)::numeric, 2) AS avg_response_time_ms
                FROM api_key_usage_logs
                WHERE key_id = $1 AND created_at >= $2
                GROUP BY DATE(created_at)
                ORDER BY date DESC
                """,
                key_id, since
            )

        daily = [dict(row) for row in rows]
        return {
            "key_id": key_id,
            "days": days,
            "total_requests": sum(row["total_requests"] for row in daily),
            "daily": daily,
        }

    async def cleanup_rate_limits(self, retention_minutes: Optional[int] = None) -> int:
        """Delete counter rows for windows older than the retention period."""
        retention_minutes = retention_minutes or settings.RATE_LIMIT_RETENTION_MINUTES
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=retention_minutes)
        async with self.db.connection() as conn:
            status = await conn.execute(
                "DELETE FROM api_key_rate_limits WHERE window_start < $1",
                cutoff
            )
        deleted = int(status.split()[-1]) if status else 0
        if deleted:
            logger.info(f"Removed {deleted} expired rate-limit windows")
        return deleted


# Global API key service instance
api_key_service = ApiKeyService(database)
