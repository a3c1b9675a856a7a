from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    UniqueConstraint,
)

metadata = MetaData()

# raw usage, one row per provider datapoint. A re-fetched datapoint
# collides on (service, metric, timestamp) and replaces the stored
# value, so the latest fetch wins.
metrics = Table(
    "metrics",
    metadata,
    Column("service", String, nullable=False),
    Column("metric", String, nullable=False),
    Column("timestamp", DateTime, nullable=False),
    Column("value", Float, nullable=False),
    UniqueConstraint("service", "metric", "timestamp", name="uq_metrics_sample"),
)

sync_state = Table(
    "sync_state",
    metadata,
    Column("service", String, nullable=False),
    Column("metric", String, nullable=False),
    Column("last_synced", DateTime, nullable=False),
    PrimaryKeyConstraint("service", "metric"),
)

alert_rules = Table(
    "alert_rules",
    metadata,
    Column("service", String, nullable=False),
    Column("metric", String, nullable=False),
    Column("threshold", Float, nullable=False),
    PrimaryKeyConstraint("service", "metric"),
)

alert_notifications = Table(
    "alert_notifications",
    metadata,
    Column("service", String, nullable=False),
    Column("metric", String, nullable=False),
    Column("last_sent", DateTime, nullable=False),
    PrimaryKeyConstraint("service", "metric"),
)


def to_db(ts: "datetime") -> "datetime":
    """
    SQLite has no timezone support, instants are stored as naive UTC.
    """
    if ts.tzinfo is None:
        raise ValueError("naive datetime passed to the store")

    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def from_db(ts: "datetime") -> "datetime":
    return ts.replace(tzinfo=timezone.utc)
