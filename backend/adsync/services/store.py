"""Relational store: idempotent upserts of synced entities and insight facts.

Every upsert is a single ``INSERT ... ON CONFLICT DO UPDATE`` in its own
transaction, so one bad row cannot poison the rest of a sync batch and the
same input can be written any number of times.
"""

import hashlib
import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import delete, func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adsync.database import Base, init_db
from adsync.models.ads import AdAccount, Ad, AdSet, Campaign, DailyInsight
from adsync.models.system import ApiLog, RateLimitRecord, SystemToken

logger = logging.getLogger(__name__)

_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


@dataclass
class InsightFilters:
    account_id: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    date_start: date | None = None  # inclusive lower bound on date_start
    date_end: date | None = None  # inclusive upper bound on date_start
    limit: int = 1000
    offset: int = 0


@dataclass
class ApiLogEntry:
    endpoint: str
    method: str
    status_code: int | None = None
    response_time_ms: int | None = None
    request_size_bytes: int | None = None
    response_size_bytes: int | None = None
    error_message: str | None = None
    user_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdStore:
    """All reads and writes of the sync tables go through here."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Callable[[], datetime] = _utcnow):
        self._session_factory = session_factory
        self._clock = clock

    # -- Schema ------------------------------------------------------------

    async def init_schema(self) -> None:
        async with self._session_factory() as session:
            engine = session.bind
        await init_db(engine)
        logger.info("Database tables created/verified")

    async def ping(self) -> bool:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True

    # -- Upserts -------------------------------------------------------------

    async def _upsert(self, model: type[Base], row: dict, conflict_cols: list[str], synced: bool = True) -> None:
        now = self._clock()
        values = dict(row)
        values["updated_at"] = now
        if synced:
            values["last_sync_at"] = now

        async with self._session_factory() as session:
            dialect = session.get_bind().dialect.name
            insert = _INSERTS.get(dialect)
            if insert is None:
                raise NotImplementedError(f"Upsert not supported for dialect {dialect}")

            stmt = insert(model).values(created_at=now, **values)
            # Python-side onupdate does not fire for ON CONFLICT, so updated_at is set explicitly
            stmt = stmt.on_conflict_do_update(
                index_elements=conflict_cols,
                set_={col: stmt.excluded[col] for col in values if col not in conflict_cols},
            )
            try:
                await session.execute(stmt)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def upsert_ad_account(self, row: dict) -> None:
        await self._upsert(AdAccount, row, ["id"])

    async def upsert_campaign(self, row: dict) -> None:
        await self._upsert(Campaign, row, ["id"])

    async def upsert_adset(self, row: dict) -> None:
        await self._upsert(AdSet, row, ["id"])

    async def upsert_ad(self, row: dict) -> None:
        await self._upsert(Ad, row, ["id"])

    async def upsert_daily_insight(self, row: dict) -> None:
        await self._upsert(DailyInsight, row, ["entity_type", "entity_id", "date_start"], synced=False)

    # -- Reads ---------------------------------------------------------------

    async def get_ad_account(self, account_id: str) -> AdAccount | None:
        async with self._session_factory() as session:
            return await session.get(AdAccount, account_id)

    async def list_active_account_ids(self) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AdAccount.id).where(AdAccount.account_status == 1).order_by(AdAccount.id)
            )
            return list(result.scalars().all())

    async def get_campaign(self, campaign_id: str) -> Campaign | None:
        async with self._session_factory() as session:
            return await session.get(Campaign, campaign_id)

    async def list_campaigns(
        self,
        account_id: str,
        status: str | None = None,
        objective: str | None = None,
        limit: int | None = None,
    ) -> list[Campaign]:
        query = select(Campaign).where(Campaign.account_id == account_id)
        if status:
            query = query.where(Campaign.status == status)
        if objective:
            query = query.where(Campaign.objective == objective)
        query = query.order_by(Campaign.updated_at.desc(), Campaign.id)
        if limit:
            query = query.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_daily_insights(self, filters: InsightFilters) -> list[DailyInsight]:
        """Most recent, highest-spend rows first."""
        query = select(DailyInsight)
        if filters.account_id:
            query = query.where(DailyInsight.account_id == filters.account_id)
        if filters.entity_type:
            query = query.where(DailyInsight.entity_type == filters.entity_type)
        if filters.entity_id:
            query = query.where(DailyInsight.entity_id == filters.entity_id)
        if filters.date_start:
            query = query.where(DailyInsight.date_start >= filters.date_start)
        if filters.date_end:
            query = query.where(DailyInsight.date_start <= filters.date_end)
        query = (
            query.order_by(DailyInsight.date_start.desc(), DailyInsight.spend.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def count_rows(self) -> dict[str, int]:
        counts = {}
        async with self._session_factory() as session:
            for model in (AdAccount, Campaign, AdSet, Ad, DailyInsight):
                result = await session.execute(select(func.count()).select_from(model))
                counts[model.__tablename__] = result.scalar_one()
        return counts

    async def delete_ad_account(self, account_id: str) -> bool:
        """Remove an account; campaigns, ad sets and ads go with it via ON DELETE CASCADE."""
        async with self._session_factory() as session:
            result = await session.execute(delete(AdAccount).where(AdAccount.id == account_id))
            await session.commit()
            return result.rowcount > 0

    # -- System tokens -------------------------------------------------------

    async def save_system_token(
        self,
        token_type: str,
        encrypted_token: str,
        expires_at: datetime | None,
        scope: str | None = None,
        system_user_id: str | None = None,
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(SystemToken).where(SystemToken.token_type == token_type))
            session.add(SystemToken(
                token_type=token_type,
                access_token=encrypted_token,
                expires_at=expires_at,
                scope=scope,
                system_user_id=system_user_id,
            ))
            await session.commit()

    async def load_system_token(self, token_type: str) -> SystemToken | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SystemToken)
                .where(SystemToken.token_type == token_type)
                .order_by(SystemToken.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    # -- Rate limits & audit log --------------------------------------------

    async def increment_rate_limit(self, identifier: str, window_minutes: int, now: datetime | None = None) -> int:
        """Bump the fixed-window counter for ``identifier`` and return the new count."""
        now = now or self._clock()
        window_seconds = window_minutes * 60
        bucket = int(now.timestamp() // window_seconds)
        record_id = hashlib.md5(f"{identifier}-{bucket}".encode()).hexdigest()
        window_start = datetime.fromtimestamp(bucket * window_seconds, tz=timezone.utc)

        async with self._session_factory() as session:
            insert = _INSERTS[session.get_bind().dialect.name]
            stmt = insert(RateLimitRecord).values(
                id=record_id,
                endpoint=identifier[:255],
                requests_count=1,
                window_start=window_start,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={"requests_count": RateLimitRecord.requests_count + 1, "updated_at": now},
            )
            await session.execute(stmt)
            result = await session.execute(
                select(RateLimitRecord.requests_count).where(RateLimitRecord.id == record_id)
            )
            count = result.scalar_one()
            await session.commit()
            return count

    async def prune_rate_limits(self, older_than: timedelta = timedelta(days=1)) -> int:
        cutoff = self._clock() - older_than
        async with self._session_factory() as session:
            result = await session.execute(delete(RateLimitRecord).where(RateLimitRecord.window_start < cutoff))
            await session.commit()
            return result.rowcount

    async def log_api_call(self, entry: ApiLogEntry) -> None:
        async with self._session_factory() as session:
            session.add(ApiLog(**asdict(entry)))
            await session.commit()
