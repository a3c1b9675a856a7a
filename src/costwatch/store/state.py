from datetime import datetime

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine

from costwatch.models import AlertRule
from costwatch.store.schema import (
    alert_notifications,
    alert_rules,
    from_db,
    sync_state,
    to_db,
)


class SQLWatermarkStore:
    """
    SQLWatermarkStore persists the sync watermark of every
    service/metric pair so ingestion resumes where it stopped after
    a restart.
    """

    def __init__(self, engine: "AsyncEngine") -> "None":
        self._engine = engine

    async def get(self, service: "str", metric: "str") -> "datetime | None":
        stmt = select(sync_state.c.last_synced).where(
            sync_state.c.service == service,
            sync_state.c.metric == metric,
        )
        async with self._engine.connect() as conn:
            ts = (await conn.execute(stmt)).scalar_one_or_none()

        return None if ts is None else from_db(ts)

    async def set(self, service: "str", metric: "str", ts: "datetime") -> "None":
        stmt = sqlite_insert(sync_state).values(
            service=service,
            metric=metric,
            last_synced=to_db(ts),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[sync_state.c.service, sync_state.c.metric],
            set_={"last_synced": stmt.excluded.last_synced},
        )
        async with self._engine.begin() as conn:
            await conn.execute(stmt)


class SQLAlertsRepository:
    """
    SQLAlertsRepository stores alert rules (one per service/metric,
    last write wins) and the last-notified instant of every pair.
    """

    def __init__(self, engine: "AsyncEngine") -> "None":
        self._engine = engine

    async def list_rules(self) -> "list[AlertRule]":
        stmt = select(
            alert_rules.c.service,
            alert_rules.c.metric,
            alert_rules.c.threshold,
        ).order_by(alert_rules.c.service, alert_rules.c.metric)

        async with self._engine.connect() as conn:
            result = await conn.execute(stmt)
            return [
                AlertRule(service=s, metric=m, threshold=t) for s, m, t in result.all()
            ]

    async def upsert_rule(self, rule: "AlertRule") -> "None":
        stmt = sqlite_insert(alert_rules).values(
            service=rule.service,
            metric=rule.metric,
            threshold=rule.threshold,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[alert_rules.c.service, alert_rules.c.metric],
            set_={"threshold": stmt.excluded.threshold},
        )
        async with self._engine.begin() as conn:
            await conn.execute(stmt)

    async def get_last_notified(
        self,
        service: "str",
        metric: "str",
    ) -> "datetime | None":
        stmt = select(alert_notifications.c.last_sent).where(
            alert_notifications.c.service == service,
            alert_notifications.c.metric == metric,
        )
        async with self._engine.connect() as conn:
            ts = (await conn.execute(stmt)).scalar_one_or_none()

        return None if ts is None else from_db(ts)

    async def set_last_notified(
        self,
        service: "str",
        metric: "str",
        ts: "datetime",
    ) -> "None":
        stmt = sqlite_insert(alert_notifications).values(
            service=service,
            metric=metric,
            last_sent=to_db(ts),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[alert_notifications.c.service, alert_notifications.c.metric],
            set_={"last_sent": stmt.excluded.last_sent},
        )
        async with self._engine.begin() as conn:
            await conn.execute(stmt)
