"""SQLite analytics warehouse for historical daily metrics.

Database: data/warehouse.db (WAL mode)
Tables: project_data, section_data, platform_data (daily totals per entity),
section, platform (labels and hierarchy)
"""
import logging
import math
import sqlite3
from dataclasses import dataclass
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol

from ..schemas.metrics import (
    BreakdownRow,
    DailyMetricRow,
    PlatformDetailedMetrics,
    TrendPoint,
    TrendSeries,
)
from ..schemas.settings import ReportSettings


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1

DAILY_AGGREGATION = "daily"


class MetricLevel(str, Enum):
    PROJECT = "project"
    SECTION = "section"
    PLATFORM = "platform"

    @property
    def table(self) -> str:
        return f"{self.value}_data"

    @property
    def key_column(self) -> str:
        return f"{self.value}_id"


class AnalyticsQueryEngine(Protocol):
    """Read access to historical metrics for a date range."""

    def fetch_daily_rows(
        self, level: MetricLevel, entity_id: str, start: date, end: date
    ) -> list[DailyMetricRow]: ...

    def fetch_section_breakdown(
        self, project_id: str, start: date, end: date
    ) -> list[BreakdownRow]: ...

    def fetch_platform_breakdown(
        self, project_id: str, start: date, end: date
    ) -> list[BreakdownRow]: ...

    def fetch_section_trends(
        self, project_id: str, start: date, end: date
    ) -> list[TrendSeries]: ...

    def fetch_platform_trends(
        self, project_id: str, start: date, end: date
    ) -> list[TrendSeries]: ...

    def fetch_platform_details(
        self, project_id: str, start: date, end: date
    ) -> list[PlatformDetailedMetrics]: ...


@dataclass
class ActualCvUpdate:
    previous_actual_cv: float
    new_actual_cv: float
    delta: float


def init_database(db_path: str | Path) -> None:
    """Initialize warehouse database with schema.

    Creates tables if they don't exist.
    Enables WAL mode for concurrent reads.

    Args:
        db_path: Path to SQLite database file
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)

    try:
        conn.execute("PRAGMA journal_mode=WAL")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        current_version = cursor.fetchone()[0] or 0

        if current_version < SCHEMA_VERSION:
            _apply_schema(conn)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info("Warehouse schema initialized (version %s)", SCHEMA_VERSION)
        else:
            logger.debug("Warehouse schema up to date (version %s)", current_version)

    finally:
        conn.close()


def _apply_schema(conn: sqlite3.Connection) -> None:
    """Apply warehouse schema.

    m_cv is nullable: NULL means "not measured" and reads fall back to clicks.

    Args:
        conn: SQLite connection (in transaction)
    """
    for level in MetricLevel:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {level.table} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                {level.key_column} TEXT NOT NULL,
                created_at TEXT NOT NULL,
                aggregation_type TEXT NOT NULL DEFAULT 'daily',
                spend REAL NOT NULL DEFAULT 0,
                msp_cv REAL NOT NULL DEFAULT 0,
                actual_cv REAL NOT NULL DEFAULT 0,
                impressions REAL NOT NULL DEFAULT 0,
                clicks REAL NOT NULL DEFAULT 0,
                m_cv REAL,
                platform_cv REAL NOT NULL DEFAULT 0,
                performance_based_fee REAL,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE({level.key_column}, created_at, aggregation_type)
            )
            """
        )
        conn.execute(
            f"""
            CREATE INDEX IF NOT EXISTS idx_{level.table}_date
            ON {level.table}(created_at, aggregation_type)
            """
        )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS section (
            id TEXT PRIMARY KEY,
            label TEXT,
            project_id TEXT NOT NULL
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS platform (
            id TEXT PRIMARY KEY,
            platform_label TEXT,
            section_id TEXT NOT NULL
        )
        """
    )


class SqliteWarehouse:
    """AnalyticsQueryEngine backed by a local SQLite file."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        init_database(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        return conn

    def _query(self, sql: str, params: tuple) -> list[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    # Writes

    def upsert_daily_row(
        self,
        level: MetricLevel,
        entity_id: str,
        row: DailyMetricRow,
        record_m_cv: bool = True,
    ) -> None:
        """Insert or replace one day of totals for an entity.

        Args:
            level: Project, section or platform
            entity_id: Project name, section id or platform id
            row: Daily totals to store
            record_m_cv: Store NULL for m_cv when False, so reads use clicks
        """
        conn = self._connect()
        try:
            conn.execute(
                f"""
                INSERT INTO {level.table} (
                    {level.key_column}, created_at, aggregation_type, spend, msp_cv,
                    actual_cv, impressions, clicks, m_cv, platform_cv, performance_based_fee
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT({level.key_column}, created_at, aggregation_type)
                DO UPDATE SET
                    spend=excluded.spend,
                    msp_cv=excluded.msp_cv,
                    actual_cv=excluded.actual_cv,
                    impressions=excluded.impressions,
                    clicks=excluded.clicks,
                    m_cv=excluded.m_cv,
                    platform_cv=excluded.platform_cv,
                    performance_based_fee=excluded.performance_based_fee,
                    updated_at=CURRENT_TIMESTAMP
                """,
                (
                    entity_id,
                    row.metric_date.isoformat(),
                    DAILY_AGGREGATION,
                    row.spend,
                    row.msp_cv,
                    row.actual_cv,
                    row.impressions,
                    row.clicks,
                    row.m_cv if record_m_cv else None,
                    row.platform_cv,
                    row.performance_based_fee,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def sync_entities(self, settings: ReportSettings) -> None:
        """Register section and platform labels from report settings."""
        conn = self._connect()
        try:
            for section in settings.sections:
                conn.execute(
                    """
                    INSERT INTO section (id, label, project_id) VALUES (?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        label=excluded.label,
                        project_id=excluded.project_id
                    """,
                    (section.section_id, section.label, section.project_name),
                )
            for platform in settings.platforms:
                conn.execute(
                    """
                    INSERT INTO platform (id, platform_label, section_id) VALUES (?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        platform_label=excluded.platform_label,
                        section_id=excluded.section_id
                    """,
                    (platform.platform_id, platform.label, platform.section_id),
                )
            conn.commit()
        finally:
            conn.close()
        logger.info(
            "Synced %s sections and %s platforms",
            len(settings.sections),
            len(settings.platforms),
        )

    def update_platform_actual_cv(
        self,
        platform_id: str,
        target_date: date,
        new_actual_cv: float,
        section_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> ActualCvUpdate:
        """Correct a platform's actual_cv for one day and carry the delta upward.

        The section and project rows for the same day receive the same delta so
        the three levels stay consistent. Non-finite values are stored as 0.

        Raises:
            LookupError: If the platform has no daily row for the date
        """
        if not math.isfinite(new_actual_cv):
            new_actual_cv = 0.0
        day = target_date.isoformat()
        conn = self._connect()
        try:
            snapshot = conn.execute(
                """
                SELECT COUNT(*) AS row_count, SUM(actual_cv) AS actual_cv
                FROM platform_data
                WHERE aggregation_type = ? AND platform_id = ? AND date(created_at) = ?
                """,
                (DAILY_AGGREGATION, platform_id, day),
            ).fetchone()
            if not snapshot["row_count"]:
                raise LookupError(f"No daily data for platform {platform_id} on {day}")

            previous = snapshot["actual_cv"] or 0.0
            delta = new_actual_cv - previous
            if delta == 0:
                return ActualCvUpdate(previous, previous, 0.0)

            conn.execute(
                """
                UPDATE platform_data
                SET actual_cv = ?, updated_at = CURRENT_TIMESTAMP
                WHERE aggregation_type = ? AND platform_id = ? AND date(created_at) = ?
                """,
                (new_actual_cv, DAILY_AGGREGATION, platform_id, day),
            )
            for level, entity_id in (
                (MetricLevel.SECTION, section_id),
                (MetricLevel.PROJECT, project_id),
            ):
                if not entity_id:
                    continue
                conn.execute(
                    f"""
                    UPDATE {level.table}
                    SET actual_cv = COALESCE(actual_cv, 0) + ?, updated_at = CURRENT_TIMESTAMP
                    WHERE aggregation_type = ? AND {level.key_column} = ?
                      AND date(created_at) = ?
                    """,
                    (delta, DAILY_AGGREGATION, entity_id, day),
                )
            conn.commit()
        finally:
            conn.close()

        logger.info(
            "Updated actual_cv for platform %s on %s: %s -> %s",
            platform_id,
            day,
            previous,
            new_actual_cv,
        )
        return ActualCvUpdate(previous, new_actual_cv, delta)

    # Reads

    def fetch_daily_rows(
        self, level: MetricLevel, entity_id: str, start: date, end: date
    ) -> list[DailyMetricRow]:
        """Daily totals for one entity, ordered by date.

        m_cv falls back to clicks where it was not recorded. The performance
        fee is not tracked per platform and is always NULL at that level.
        """
        fee = "NULL" if level == MetricLevel.PLATFORM else "SUM(performance_based_fee)"
        rows = self._query(
            f"""
            SELECT
                date(created_at) AS metric_date,
                SUM(spend) AS spend,
                SUM(msp_cv) AS msp_cv,
                SUM(actual_cv) AS actual_cv,
                SUM(impressions) AS impressions,
                SUM(clicks) AS clicks,
                SUM(COALESCE(m_cv, clicks)) AS m_cv,
                SUM(platform_cv) AS platform_cv,
                {fee} AS performance_based_fee
            FROM {level.table}
            WHERE aggregation_type = ?
              AND {level.key_column} = ?
              AND date(created_at) BETWEEN ? AND ?
            GROUP BY metric_date
            ORDER BY metric_date
            """,
            (DAILY_AGGREGATION, entity_id, start.isoformat(), end.isoformat()),
        )
        return [
            DailyMetricRow(
                metric_date=date.fromisoformat(row["metric_date"]),
                spend=row["spend"] or 0.0,
                msp_cv=row["msp_cv"] or 0.0,
                actual_cv=row["actual_cv"] or 0.0,
                impressions=row["impressions"] or 0.0,
                clicks=row["clicks"] or 0.0,
                m_cv=row["m_cv"] or 0.0,
                platform_cv=row["platform_cv"] or 0.0,
                performance_based_fee=row["performance_based_fee"],
            )
            for row in rows
        ]

    def fetch_section_breakdown(
        self, project_id: str, start: date, end: date
    ) -> list[BreakdownRow]:
        rows = self._query(
            """
            SELECT
                s.id AS id,
                COALESCE(s.label, s.id) AS label,
                SUM(sd.spend) AS spend,
                SUM(sd.msp_cv) AS total_msp_cv,
                SUM(sd.actual_cv) AS total_actual_cv
            FROM section_data sd
            JOIN section s ON s.id = sd.section_id
            WHERE s.project_id = ?
              AND sd.aggregation_type = ?
              AND date(sd.created_at) BETWEEN ? AND ?
            GROUP BY s.id, label
            ORDER BY spend DESC
            """,
            (project_id, DAILY_AGGREGATION, start.isoformat(), end.isoformat()),
        )
        return [_breakdown_row(row) for row in rows]

    def fetch_platform_breakdown(
        self, project_id: str, start: date, end: date
    ) -> list[BreakdownRow]:
        rows = self._query(
            """
            SELECT
                p.id AS id,
                COALESCE(p.platform_label, p.id) AS label,
                SUM(pd.spend) AS spend,
                SUM(pd.msp_cv) AS total_msp_cv,
                SUM(pd.actual_cv) AS total_actual_cv
            FROM platform_data pd
            JOIN platform p ON p.id = pd.platform_id
            JOIN section s ON s.id = p.section_id
            WHERE s.project_id = ?
              AND pd.aggregation_type = ?
              AND date(pd.created_at) BETWEEN ? AND ?
            GROUP BY p.id, label
            ORDER BY spend DESC
            """,
            (project_id, DAILY_AGGREGATION, start.isoformat(), end.isoformat()),
        )
        return [_breakdown_row(row) for row in rows]

    def fetch_section_trends(
        self, project_id: str, start: date, end: date
    ) -> list[TrendSeries]:
        rows = self._query(
            """
            SELECT
                s.id AS id,
                COALESCE(s.label, s.id) AS label,
                date(sd.created_at) AS metric_date,
                SUM(sd.spend) AS spend,
                SUM(sd.msp_cv) AS msp_cv
            FROM section_data sd
            JOIN section s ON s.id = sd.section_id
            WHERE s.project_id = ?
              AND sd.aggregation_type = ?
              AND date(sd.created_at) BETWEEN ? AND ?
            GROUP BY s.id, label, metric_date
            ORDER BY label, metric_date
            """,
            (project_id, DAILY_AGGREGATION, start.isoformat(), end.isoformat()),
        )
        return _trend_series(rows)

    def fetch_platform_trends(
        self, project_id: str, start: date, end: date
    ) -> list[TrendSeries]:
        rows = self._query(
            """
            SELECT
                p.id AS id,
                COALESCE(p.platform_label, p.id) AS label,
                date(pd.created_at) AS metric_date,
                SUM(pd.spend) AS spend,
                SUM(pd.msp_cv) AS msp_cv
            FROM platform_data pd
            JOIN platform p ON p.id = pd.platform_id
            JOIN section s ON s.id = p.section_id
            WHERE s.project_id = ?
              AND pd.aggregation_type = ?
              AND date(pd.created_at) BETWEEN ? AND ?
            GROUP BY p.id, label, metric_date
            ORDER BY label, metric_date
            """,
            (project_id, DAILY_AGGREGATION, start.isoformat(), end.isoformat()),
        )
        return _trend_series(rows)

    def fetch_platform_details(
        self, project_id: str, start: date, end: date
    ) -> list[PlatformDetailedMetrics]:
        rows = self._query(
            """
            SELECT
                p.id AS id,
                COALESCE(p.platform_label, p.id) AS label,
                SUM(pd.spend) AS spend,
                SUM(pd.actual_cv) AS actual_cv,
                SUM(COALESCE(pd.m_cv, pd.clicks)) AS m_cv,
                SUM(pd.clicks) AS clicks,
                SUM(pd.impressions) AS impressions
            FROM platform_data pd
            JOIN platform p ON p.id = pd.platform_id
            JOIN section s ON s.id = p.section_id
            WHERE s.project_id = ?
              AND pd.aggregation_type = ?
              AND date(pd.created_at) BETWEEN ? AND ?
            GROUP BY p.id, label
            ORDER BY spend DESC
            """,
            (project_id, DAILY_AGGREGATION, start.isoformat(), end.isoformat()),
        )
        return [
            PlatformDetailedMetrics(
                platform_id=row["id"],
                platform_label=row["label"],
                spend=row["spend"] or 0.0,
                actual_cv=row["actual_cv"] or 0.0,
                m_cv=row["m_cv"] or 0.0,
                total_clicks=row["clicks"] or 0.0,
                total_impressions=row["impressions"] or 0.0,
            )
            for row in rows
        ]


def _breakdown_row(row: sqlite3.Row) -> BreakdownRow:
    return BreakdownRow(
        id=row["id"],
        label=row["label"],
        spend=row["spend"] or 0.0,
        total_msp_cv=row["total_msp_cv"] or 0.0,
        total_actual_cv=row["total_actual_cv"] or 0.0,
    )


def _trend_series(rows: list[sqlite3.Row]) -> list[TrendSeries]:
    series: dict[str, TrendSeries] = {}
    for row in rows:
        entry = series.get(row["id"])
        if entry is None:
            entry = TrendSeries(id=row["id"], label=row["label"])
            series[row["id"]] = entry
        entry.points.append(
            TrendPoint(
                metric_date=date.fromisoformat(row["metric_date"]),
                spend=row["spend"] or 0.0,
                msp_cv=row["msp_cv"] or 0.0,
            )
        )
    return list(series.values())
