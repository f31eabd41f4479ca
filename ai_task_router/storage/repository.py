"""
Quota ledger repository.

Persists model configuration alongside append-only usage and outcome
events, and answers sliding-window capacity and failure-rate queries.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

import structlog

from .db import get_connection
from .models import ModelDescriptor, ModelStats, ModelUsage, OutcomeEvent, UsageEvent

logger = structlog.get_logger(__name__)

MINUTE_WINDOW_SECONDS = 60
DAY_WINDOW_SECONDS = 86400
USAGE_RETENTION_SECONDS = DAY_WINDOW_SECONDS
DEFAULT_OUTCOME_RETENTION_DAYS = 7
DEFAULT_FAILURE_WINDOW_SECONDS = 86400

Clock = Callable[[], datetime]

_STATS_QUERY = """
    SELECT
        m.model, m.origin, m.rank, m.description, m.enabled,
        m.rpm_allowed, m.tpm_total, m.rpd_total, m.tpd_total,
        m.successful_tasks, m.failed_tasks,
        IFNULL((SELECT SUM(requests) FROM usage_event WHERE model = m.model AND timestamp >= :minute), 0),
        IFNULL((SELECT SUM(tokens)   FROM usage_event WHERE model = m.model AND timestamp >= :minute), 0),
        IFNULL((SELECT SUM(requests) FROM usage_event WHERE model = m.model AND timestamp >= :day), 0),
        IFNULL((SELECT SUM(tokens)   FROM usage_event WHERE model = m.model AND timestamp >= :day), 0)
    FROM model m
"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime) -> str:
    # Fixed-width UTC ISO text so lexicographic comparison matches chronological order
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="microseconds")


def initialize_schema(db_path: str = "ai_task_router.db") -> None:
    """Create the ledger tables and indexes if they don't exist.

    usage_event and outcome_event are append-only: rows are inserted and,
    once past their retention horizon, pruned. They are never updated.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS model (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                model TEXT NOT NULL UNIQUE,
                origin TEXT NOT NULL,
                rank INTEGER NOT NULL DEFAULT 0,
                description TEXT NOT NULL DEFAULT '',
                enabled INTEGER NOT NULL DEFAULT 1,
                rpm_allowed INTEGER NOT NULL DEFAULT 0 CHECK (rpm_allowed >= 0),
                tpm_total INTEGER NOT NULL DEFAULT 0 CHECK (tpm_total >= 0),
                rpd_total INTEGER NOT NULL DEFAULT 0 CHECK (rpd_total >= 0),
                tpd_total INTEGER NOT NULL DEFAULT 0 CHECK (tpd_total >= 0),
                successful_tasks INTEGER NOT NULL DEFAULT 0,
                failed_tasks INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS usage_event (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                model TEXT NOT NULL,
                requests INTEGER NOT NULL DEFAULT 1,
                tokens INTEGER NOT NULL DEFAULT 0,
                timestamp TEXT NOT NULL,
                FOREIGN KEY(model) REFERENCES model(model) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_usage_event_timestamp
                ON usage_event(timestamp);
            CREATE INDEX IF NOT EXISTS idx_usage_event_model_timestamp
                ON usage_event(model, timestamp);

            CREATE TABLE IF NOT EXISTS outcome_event (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                model TEXT NOT NULL,
                task_type TEXT NOT NULL,
                success INTEGER NOT NULL,
                error_message TEXT,
                tokens_used INTEGER NOT NULL DEFAULT 0,
                timestamp TEXT NOT NULL,
                FOREIGN KEY(model) REFERENCES model(model) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_outcome_event_model_timestamp
                ON outcome_event(model, timestamp);
            CREATE INDEX IF NOT EXISTS idx_outcome_event_timestamp
                ON outcome_event(timestamp);
        """)
        conn.commit()
    finally:
        conn.close()


class QuotaLedger:
    """Persistent quota ledger for model usage and task outcomes.

    Used values are always recomputed by summing timestamped events inside
    the trailing window; nothing is stored as a resettable counter, so a
    quota can never be spent twice around a window boundary.

    Every mutating operation runs in its own transaction on its own
    connection, which keeps the ledger safe to share between threads.
    """

    def __init__(
        self,
        db_path: str = "ai_task_router.db",
        clock: Optional[Clock] = None,
        outcome_retention_days: int = DEFAULT_OUTCOME_RETENTION_DAYS,
    ):
        """Initialize the ledger and make sure its schema exists.

        Args:
            db_path: Path to SQLite database file
            clock: Callable returning the current time (defaults to aware UTC now)
            outcome_retention_days: Days outcome events are kept before pruning
        """
        if outcome_retention_days <= 0:
            raise ValueError("outcome_retention_days must be > 0")
        self.db_path = db_path
        self.clock = clock or utc_now
        self.outcome_retention_days = outcome_retention_days
        initialize_schema(db_path)

    def upsert_models(self, models: Iterable[ModelDescriptor]) -> int:
        """Insert or update models, merging by unique name.

        Overwrites origin, rank, description, enabled flag and quota
        ceilings. Usage and outcome history, and the aggregate counters,
        are left untouched.

        Args:
            models: Descriptors to merge

        Returns:
            Number of models written
        """
        now = _ts(self.clock())
        rows = list(models)
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            for model in rows:
                conn.execute("""
                    INSERT INTO model
                    (model, origin, rank, description, enabled,
                     rpm_allowed, tpm_total, rpd_total, tpd_total,
                     created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(model) DO UPDATE SET
                        origin = excluded.origin,
                        rank = excluded.rank,
                        description = excluded.description,
                        enabled = excluded.enabled,
                        rpm_allowed = excluded.rpm_allowed,
                        tpm_total = excluded.tpm_total,
                        rpd_total = excluded.rpd_total,
                        tpd_total = excluded.tpd_total,
                        updated_at = excluded.updated_at
                """, (
                    model.name,
                    model.origin,
                    model.rank,
                    model.description,
                    1 if model.enabled else 0,
                    model.rpm_allowed,
                    model.tpm_total,
                    model.rpd_total,
                    model.tpd_total,
                    now,
                    now
                ))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info("models_upserted", count=len(rows))
        return len(rows)

    def set_enabled(self, name: str, enabled: bool) -> bool:
        """Toggle a model's enabled flag.

        Returns:
            True if the model exists
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE model SET enabled = ?, updated_at = ? WHERE model = ?",
                (1 if enabled else 0, _ts(self.clock()), name)
            )
            conn.commit()
            found = cursor.rowcount > 0
        finally:
            conn.close()

        if found:
            logger.info("model_enabled" if enabled else "model_disabled", model=name)
        return found

    def enable_model(self, name: str) -> bool:
        return self.set_enabled(name, True)

    def disable_model(self, name: str) -> bool:
        return self.set_enabled(name, False)

    def record_usage(self, model: str, requests: int = 1, tokens: int = 0) -> UsageEvent:
        """Append one usage event stamped with the current time.

        A single INSERT with no read-before-write, so concurrent callers
        can never lose or partially apply an event.
        """
        if requests < 0 or tokens < 0:
            raise ValueError("usage deltas cannot be negative")
        event = UsageEvent(model=model, requests=requests, tokens=tokens, timestamp=self.clock())
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO usage_event (model, requests, tokens, timestamp) VALUES (?, ?, ?, ?)",
                (event.model, event.requests, event.tokens, _ts(event.timestamp))
            )
            conn.commit()
        finally:
            conn.close()
        return event

    def record_outcome(
        self,
        model: str,
        task_type: str,
        success: bool,
        tokens_used: int = 0,
        error_message: Optional[str] = None
    ) -> None:
        """Append one outcome event and bump the matching aggregate counter.

        Both writes share one transaction: they commit together or not at all.

        Args:
            model: Model that ran the task
            task_type: Caller-defined task category
            success: Whether the attempt succeeded
            tokens_used: Tokens consumed by the attempt
            error_message: Provider error text for failed attempts
        """
        now = _ts(self.clock())
        counter = "successful_tasks" if success else "failed_tasks"
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute("""
                INSERT INTO outcome_event
                (model, task_type, success, error_message, tokens_used, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (model, task_type, 1 if success else 0, error_message, tokens_used, now))
            conn.execute(
                f"UPDATE model SET {counter} = {counter} + 1, updated_at = ? WHERE model = ?",
                (now, model)
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_usage(self, model: str) -> ModelUsage:
        """Sum requests and tokens over the minute and day windows.

        Args:
            model: Model name

        Returns:
            ModelUsage with the four windowed sums
        """
        minute_cutoff, day_cutoff = self._window_cutoffs()
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT
                    IFNULL(SUM(CASE WHEN timestamp >= ? THEN requests END), 0),
                    IFNULL(SUM(CASE WHEN timestamp >= ? THEN tokens END), 0),
                    IFNULL(SUM(requests), 0),
                    IFNULL(SUM(tokens), 0)
                FROM usage_event
                WHERE model = ? AND timestamp >= ?
            """, (minute_cutoff, minute_cutoff, model, day_cutoff)).fetchone()
        finally:
            conn.close()

        return ModelUsage(
            model=model,
            rpm_used=row[0],
            tpm_used=row[1],
            rpd_used=row[2],
            tpd_used=row[3]
        )

    def get_model(self, name: str) -> Optional[ModelDescriptor]:
        """Look up a single model's configuration."""
        stats = self._fetch_stats("WHERE m.model = :name", {"name": name})
        return stats[0].descriptor if stats else None

    def get_model_stats(self) -> List[ModelStats]:
        """Every model, enabled or not, with windowed usage and lifetime counters.

        Returns:
            List of ModelStats sorted by rank ascending
        """
        return self._fetch_stats()

    def list_available(self, min_tokens: int = 0) -> List[ModelDescriptor]:
        """List enabled models with capacity left on all four quotas.

        Request quotas need at least one request remaining; token quotas
        need at least ``min_tokens`` remaining.

        Args:
            min_tokens: Token threshold for both token windows

        Returns:
            Available models sorted by rank ascending
        """
        return [
            stats.descriptor
            for stats in self._fetch_stats("WHERE m.enabled = 1")
            if stats.has_capacity(min_tokens)
        ]

    def get_failure_rate(self, model: str, window_seconds: int = DEFAULT_FAILURE_WINDOW_SECONDS) -> float:
        """Percentage of failed outcomes for a model within the window.

        Returns:
            Failure percentage in [0, 100]; 0 when the window holds no outcomes
        """
        cutoff = _ts(self.clock() - timedelta(seconds=window_seconds))
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT COUNT(*), IFNULL(SUM(CASE WHEN success = 0 THEN 1 ELSE 0 END), 0)
                FROM outcome_event
                WHERE model = ? AND timestamp >= ?
            """, (model, cutoff)).fetchone()
        finally:
            conn.close()

        total, failed = row
        if total == 0:
            return 0.0
        return failed / total * 100

    def get_recent_failures(self, model: str, limit: int = 10) -> List[OutcomeEvent]:
        """Fetch the newest failed outcomes for a model.

        Returns:
            Failed outcome events ordered newest first
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT model, task_type, success, tokens_used, timestamp, error_message
                FROM outcome_event
                WHERE model = ? AND success = 0
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
            """, (model, limit))
            return [
                OutcomeEvent(
                    model=row[0],
                    task_type=row[1],
                    success=bool(row[2]),
                    tokens_used=row[3],
                    timestamp=datetime.fromisoformat(row[4]),
                    error_message=row[5]
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def prune_expired(self) -> Dict[str, int]:
        """Delete usage events past the day window and outcomes past retention.

        Returns:
            Dictionary with the number of usage and outcome events removed
        """
        now = self.clock()
        usage_cutoff = _ts(now - timedelta(seconds=USAGE_RETENTION_SECONDS))
        outcome_cutoff = _ts(now - timedelta(days=self.outcome_retention_days))
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            usage_removed = conn.execute(
                "DELETE FROM usage_event WHERE timestamp < ?", (usage_cutoff,)
            ).rowcount
            outcome_removed = conn.execute(
                "DELETE FROM outcome_event WHERE timestamp < ?", (outcome_cutoff,)
            ).rowcount
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        if usage_removed or outcome_removed:
            logger.info(
                "ledger_pruned",
                usage_events=usage_removed,
                outcome_events=outcome_removed
            )
        return {"usage_events": usage_removed, "outcome_events": outcome_removed}

    def _window_cutoffs(self):
        now = self.clock()
        return (
            _ts(now - timedelta(seconds=MINUTE_WINDOW_SECONDS)),
            _ts(now - timedelta(seconds=DAY_WINDOW_SECONDS)),
        )

    def _fetch_stats(self, where: str = "", params: Optional[Dict[str, object]] = None) -> List[ModelStats]:
        minute_cutoff, day_cutoff = self._window_cutoffs()
        query_params = {"minute": minute_cutoff, "day": day_cutoff}
        query_params.update(params or {})
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"{_STATS_QUERY} {where} ORDER BY m.rank ASC, m.model ASC",
                query_params
            )
            results = []
            for row in cursor.fetchall():
                descriptor = ModelDescriptor(
                    name=row[0],
                    origin=row[1],
                    rank=row[2],
                    description=row[3] or "",
                    enabled=row[4] == 1,
                    rpm_allowed=row[5],
                    tpm_total=row[6],
                    rpd_total=row[7],
                    tpd_total=row[8]
                )
                results.append(ModelStats(
                    descriptor=descriptor,
                    usage=ModelUsage(
                        model=row[0],
                        rpm_used=row[11],
                        tpm_used=row[12],
                        rpd_used=row[13],
                        tpd_used=row[14]
                    ),
                    successful_tasks=row[9],
                    failed_tasks=row[10]
                ))
            return results
        finally:
            conn.close()
