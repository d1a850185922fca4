"""
Database repository for email analyses.

Provides async PostgreSQL operations for storing analyses and their side effects.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from mail_analysis.config import settings
from mail_analysis.core.logging import get_logger
from mail_analysis.core.models import (
    ActionRecord,
    AggregatedAnalysis,
    AnalysisItem,
    Client,
    UserContext,
)

log = get_logger(__name__)


class AnalysisStore(ABC):
    """Persistence operations consumed by the email processor."""

    @abstractmethod
    async def upsert_analysis(self, item_id: str, user_id: str, analysis: AggregatedAnalysis) -> None:
        """Insert or replace the analysis for an item and stamp it as analyzed."""
        pass

    @abstractmethod
    async def insert_action(self, record: ActionRecord) -> None:
        """Create an action record derived from an email."""
        pass

    @abstractmethod
    async def update_item_category(self, item_id: str, category: str) -> None:
        """Set the category field on an email."""
        pass

    @abstractmethod
    async def link_item_to_client(self, item_id: str, client_id: str) -> None:
        """Link an email to a matched client."""
        pass

    @abstractmethod
    async def mark_analysis_error(self, item_id: str, message: str) -> None:
        """Record that analysis of an email failed."""
        pass


class Database(AnalysisStore):
    """PostgreSQL database operations for email analyses."""

    def __init__(
        self,
        connection_string: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
    ):
        """
        Initialize the connection pool. Connections are opened by `open()`.

        Args:
            connection_string: PostgreSQL connection URL. Uses settings if not provided.
            min_size: Connections kept open. Uses settings if not provided.
            max_size: Upper bound on concurrent connections. Uses settings if not provided.
        """
        self.connection_string = connection_string or settings.database_url
        self.pool = AsyncConnectionPool(
            self.connection_string,
            min_size=min_size or settings.database_pool_min_size,
            max_size=max_size or settings.database_pool_max_size,
            kwargs={"row_factory": dict_row},
            open=False,
        )

    async def open(self) -> None:
        """Open the connection pool."""
        await self.pool.open()
        log.info("database_pool_opened", min_size=self.pool.min_size, max_size=self.pool.max_size)

    async def close(self) -> None:
        """Close the connection pool."""
        await self.pool.close()
        log.info("database_pool_closed")

    @asynccontextmanager
    async def get_connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow a pooled connection as an async context manager."""
        if self.pool.closed:
            await self.open()
        async with self.pool.connection() as conn:
            yield conn

    async def init_schema(self) -> None:
        """Initialize database schema (create tables if not exist)."""
        schema_sql = """
        -- emails: synced emails awaiting analysis
        CREATE TABLE IF NOT EXISTS emails (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            subject TEXT,
            sender_email VARCHAR(255),
            sender_name VARCHAR(255),
            date TIMESTAMPTZ,
            snippet TEXT,
            body_text TEXT,
            gmail_labels TEXT[],
            category VARCHAR(50),
            client_id VARCHAR(64),
            analyzed_at TIMESTAMPTZ,
            analysis_error TEXT,
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_emails_user_analyzed ON emails(user_id, analyzed_at);
        CREATE INDEX IF NOT EXISTS idx_emails_analysis_error ON emails(updated_at)
            WHERE analysis_error IS NOT NULL;

        -- email_analyses: one row per analyzed email
        CREATE TABLE IF NOT EXISTS email_analyses (
            email_id VARCHAR(64) PRIMARY KEY REFERENCES emails(id) ON DELETE CASCADE,
            user_id VARCHAR(64) NOT NULL,
            categorization JSONB,
            action_extraction JSONB,
            client_tagging JSONB,
            event_detection JSONB,
            tokens_used INTEGER DEFAULT 0,
            processing_time_ms INTEGER DEFAULT 0,
            analyzer_version VARCHAR(20),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        -- actions: follow-ups derived from emails
        CREATE TABLE IF NOT EXISTS actions (
            id SERIAL PRIMARY KEY,
            email_id VARCHAR(64) REFERENCES emails(id) ON DELETE CASCADE,
            user_id VARCHAR(64) NOT NULL,
            type VARCHAR(30),
            title TEXT,
            description TEXT,
            urgency_score INTEGER,
            due_date VARCHAR(50),
            estimated_minutes INTEGER,
            status VARCHAR(20) DEFAULT 'pending',
            source VARCHAR(20) DEFAULT 'ai',
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_actions_email ON actions(email_id);

        -- clients: known clients per user
        CREATE TABLE IF NOT EXISTS clients (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            name VARCHAR(255) NOT NULL,
            email_domains TEXT[],
            status VARCHAR(20) DEFAULT 'active'
        );

        -- user_context: per-user analysis context
        CREATE TABLE IF NOT EXISTS user_context (
            user_id VARCHAR(64) PRIMARY KEY,
            role VARCHAR(100),
            company VARCHAR(255),
            timezone VARCHAR(64),
            locale VARCHAR(20),
            location_city VARCHAR(100),
            location_metro VARCHAR(100),
            vip_emails TEXT[],
            vip_domains TEXT[],
            projects TEXT[],
            priorities TEXT[],
            interests TEXT[],
            enabled_analyzers JSONB
        );
        """

        async with self.get_connection() as conn:
            await conn.execute(schema_sql)
            await conn.commit()
            log.info("database_schema_initialized")

    async def upsert_analysis(self, item_id: str, user_id: str, analysis: AggregatedAnalysis) -> None:
        record = analysis.to_record()
        sql = """
        INSERT INTO email_analyses (
            email_id, user_id, categorization, action_extraction, client_tagging,
            event_detection, tokens_used, processing_time_ms, analyzer_version, updated_at
        ) VALUES (
            %(email_id)s, %(user_id)s, %(categorization)s, %(action_extraction)s,
            %(client_tagging)s, %(event_detection)s, %(tokens_used)s,
            %(processing_time_ms)s, %(analyzer_version)s, NOW()
        )
        ON CONFLICT (email_id) DO UPDATE SET
            categorization = EXCLUDED.categorization,
            action_extraction = EXCLUDED.action_extraction,
            client_tagging = EXCLUDED.client_tagging,
            event_detection = EXCLUDED.event_detection,
            tokens_used = EXCLUDED.tokens_used,
            processing_time_ms = EXCLUDED.processing_time_ms,
            analyzer_version = EXCLUDED.analyzer_version,
            updated_at = NOW()
        """
        params = {
            "email_id": item_id,
            "user_id": user_id,
            "categorization": self._json(record["categorization"]),
            "action_extraction": self._json(record["action_extraction"]),
            "client_tagging": self._json(record["client_tagging"]),
            "event_detection": self._json(record["event_detection"]),
            "tokens_used": record["tokens_used"],
            "processing_time_ms": record["processing_time_ms"],
            "analyzer_version": record["analyzer_version"],
        }

        async with self.get_connection() as conn:
            await conn.execute(sql, params)
            await conn.execute(
                """
                UPDATE emails
                SET analyzed_at = NOW(), analysis_error = NULL, updated_at = NOW()
                WHERE id = %s
                """,
                (item_id,),
            )
            await conn.commit()

    async def insert_action(self, record: ActionRecord) -> None:
        sql = """
        INSERT INTO actions (
            email_id, user_id, type, title, description, urgency_score,
            due_date, estimated_minutes, status, source
        ) VALUES (
            %(email_id)s, %(user_id)s, %(type)s, %(title)s, %(description)s,
            %(urgency_score)s, %(due_date)s, %(estimated_minutes)s, %(status)s, %(source)s
        )
        """
        params = {
            "email_id": record.item_id,
            "user_id": record.user_id,
            "type": record.action_type,
            "title": record.title,
            "description": record.description,
            "urgency_score": record.urgency_score,
            "due_date": record.due_date,
            "estimated_minutes": record.estimated_minutes,
            "status": record.status,
            "source": record.source,
        }

        async with self.get_connection() as conn:
            await conn.execute(sql, params)
            await conn.commit()

    async def update_item_category(self, item_id: str, category: str) -> None:
        async with self.get_connection() as conn:
            await conn.execute(
                "UPDATE emails SET category = %s, updated_at = NOW() WHERE id = %s",
                (category, item_id),
            )
            await conn.commit()

    async def link_item_to_client(self, item_id: str, client_id: str) -> None:
        async with self.get_connection() as conn:
            await conn.execute(
                "UPDATE emails SET client_id = %s, updated_at = NOW() WHERE id = %s",
                (client_id, item_id),
            )
            await conn.commit()

    async def mark_analysis_error(self, item_id: str, message: str) -> None:
        async with self.get_connection() as conn:
            await conn.execute(
                "UPDATE emails SET analysis_error = %s, updated_at = NOW() WHERE id = %s",
                (message[:1000], item_id),
            )
            await conn.commit()

    async def get_unanalyzed_items(
        self,
        user_id: str,
        limit: int = 50,
        include_analyzed: bool = False,
    ) -> list[AnalysisItem]:
        """
        Get emails for a user that still need analysis, newest first.

        Args:
            user_id: Owner of the emails
            limit: Maximum emails to return
            include_analyzed: Also return emails that already have an analysis
        """
        where = "user_id = %(user_id)s"
        if not include_analyzed:
            where += " AND analyzed_at IS NULL"

        async with self.get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT * FROM emails WHERE {where} ORDER BY date DESC LIMIT %(limit)s",
                {"user_id": user_id, "limit": limit},
            )
            rows = await cursor.fetchall()
        return [AnalysisItem.from_row(row) for row in rows]

    async def get_failed_items(
        self,
        limit: int,
        cooldown: timedelta,
        max_age: timedelta,
    ) -> list[dict[str, Any]]:
        """
        Get emails whose last analysis failed, oldest failure first.

        Only returns failures older than `cooldown` and newer than `max_age`.
        Each row includes the owning user_id.
        """
        now = datetime.now(timezone.utc)
        async with self.get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM emails
                WHERE analysis_error IS NOT NULL
                  AND analyzed_at IS NULL
                  AND updated_at < %(cooldown_cutoff)s
                  AND updated_at > %(max_age_cutoff)s
                ORDER BY updated_at ASC
                LIMIT %(limit)s
                """,
                {
                    "cooldown_cutoff": now - cooldown,
                    "max_age_cutoff": now - max_age,
                    "limit": limit,
                },
            )
            return await cursor.fetchall()

    async def reset_analysis_state(self, item_ids: list[str]) -> None:
        """Clear analyzed_at and analysis_error so the emails can be re-analyzed."""
        async with self.get_connection() as conn:
            await conn.execute(
                """
                UPDATE emails
                SET analyzed_at = NULL, analysis_error = NULL, updated_at = NOW()
                WHERE id = ANY(%s)
                """,
                (item_ids,),
            )
            await conn.commit()

    async def get_user_context(self, user_id: str) -> UserContext:
        """Load the user's analysis context and active clients."""
        async with self.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM user_context WHERE user_id = %s", (user_id,)
            )
            row = await cursor.fetchone() or {}
            cursor = await conn.execute(
                "SELECT id, name, email_domains FROM clients WHERE user_id = %s AND status = 'active'",
                (user_id,),
            )
            client_rows = await cursor.fetchall()

        clients = tuple(
            Client(id=str(c["id"]), name=c["name"], email_domains=tuple(c.get("email_domains") or ()))
            for c in client_rows
        )
        return UserContext(
            user_id=user_id,
            role=row.get("role"),
            company=row.get("company"),
            timezone=row.get("timezone"),
            locale=row.get("locale"),
            location_city=row.get("location_city"),
            location_metro=row.get("location_metro"),
            vip_emails=tuple(row.get("vip_emails") or ()),
            vip_domains=tuple(row.get("vip_domains") or ()),
            clients=clients,
            projects=tuple(row.get("projects") or ()),
            priorities=tuple(row.get("priorities") or ()),
            interests=tuple(row.get("interests") or ()),
            enabled_analyzers=dict(row.get("enabled_analyzers") or {}),
        )

    @staticmethod
    def _json(value: dict[str, Any] | None) -> Jsonb | None:
        return Jsonb(value) if value is not None else None
