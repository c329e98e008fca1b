"""Merge a live "today" snapshot into historical report series.

Historical rows come from the warehouse, which may already hold a partial
row for today. Realtime totals are added to that row field by field and the
ratios are recomputed from the summed totals. Every merged row is marked with
includes_realtime; merging onto an already marked row raises
RealtimeMergeError instead of counting today twice.
"""
import unicodedata
from datetime import date
from typing import Optional

from ..exceptions import RealtimeMergeError
from ..schemas.metrics import (
    BreakdownRow,
    DailyMetricRow,
    PlatformDetailedMetrics,
    TrendPoint,
    TrendSeries,
)


def label_sort_key(label: str) -> tuple[str, str]:
    """Approximate Japanese collation for series labels.

    Folds width variants and case, and sorts katakana with the matching
    hiragana. Kanji fall back to codepoint order.
    """
    folded = unicodedata.normalize("NFKC", label).casefold()
    kana = "".join(
        chr(ord(char) - 0x60) if "\u30a1" <= char <= "\u30f6" else char for char in folded
    )
    return kana, label


def _merge_fee(existing: Optional[float], realtime: Optional[float]) -> Optional[float]:
    if existing is None and realtime is None:
        return None
    return (existing or 0.0) + (realtime or 0.0)


def merge_daily_metrics(
    base: list[DailyMetricRow],
    today_row: Optional[DailyMetricRow],
    today: date,
) -> list[DailyMetricRow]:
    """Replace today's row with the sum of its historical and realtime totals.

    Args:
        base: Historical daily rows in any order
        today_row: Realtime totals for today, or None when unavailable
        today: Calendar date of the realtime snapshot

    Returns:
        Rows sorted by date ascending

    Raises:
        RealtimeMergeError: If the historical today row was already merged
    """
    if today_row is None:
        return sorted(base, key=lambda row: row.metric_date)

    existing = next((row for row in base if row.metric_date == today), None)
    if existing is not None and existing.includes_realtime:
        raise RealtimeMergeError(
            f"Daily row for {today.isoformat()} already includes realtime data"
        )

    totals = today_row.totals
    fee = today_row.performance_based_fee
    existing_fee = None
    if existing is not None:
        totals = existing.totals + totals
        existing_fee = existing.performance_based_fee

    merged_row = DailyMetricRow.from_totals(
        today,
        totals,
        performance_based_fee=_merge_fee(existing_fee, fee),
        includes_realtime=True,
    )
    rows = [row for row in base if row.metric_date != today]
    rows.append(merged_row)
    return sorted(rows, key=lambda row: row.metric_date)


def merge_breakdowns(
    base: list[BreakdownRow],
    realtime: list[BreakdownRow],
    labels: Optional[dict[str, str]] = None,
) -> list[BreakdownRow]:
    """Add realtime range totals to historical breakdown rows by entity id.

    Entities only present in the realtime snapshot are appended and labelled
    from ``labels`` when given. Output is sorted by spend, highest first.
    """
    merged: dict[str, BreakdownRow] = {row.id: row for row in base}

    for row in realtime:
        existing = merged.get(row.id)
        if existing is None:
            label = (labels or {}).get(row.id) or row.label or row.id
            merged[row.id] = row.model_copy(update={"label": label, "includes_realtime": True})
            continue
        if existing.includes_realtime:
            raise RealtimeMergeError(f"Breakdown '{row.id}' already includes realtime data")
        merged[row.id] = existing.model_copy(
            update={
                "spend": existing.spend + row.spend,
                "total_msp_cv": existing.total_msp_cv + row.total_msp_cv,
                "total_actual_cv": existing.total_actual_cv + row.total_actual_cv,
                "includes_realtime": True,
            }
        )

    return sorted(merged.values(), key=lambda row: row.spend, reverse=True)


def merge_trend_series(
    base: list[TrendSeries],
    realtime: dict[str, DailyMetricRow],
    labels: dict[str, str],
    today: date,
) -> list[TrendSeries]:
    """Replace today's point of each series with historical plus realtime.

    Args:
        base: Historical series keyed by entity id
        realtime: Today's rows keyed by entity id
        labels: Display labels for entities new to the series list
        today: Calendar date of the realtime snapshot

    Returns:
        Series sorted by label, each with points sorted by date
    """
    series_map: dict[str, TrendSeries] = {
        series.id: series.model_copy(update={"points": list(series.points)})
        for series in base
    }

    for entity_id, row in realtime.items():
        series = series_map.get(entity_id)
        if series is None:
            series_map[entity_id] = TrendSeries(
                id=entity_id,
                label=labels.get(entity_id, entity_id),
                points=[
                    TrendPoint(
                        metric_date=today,
                        spend=row.spend,
                        msp_cv=row.msp_cv,
                        includes_realtime=True,
                    )
                ],
            )
            continue

        current = next((p for p in series.points if p.metric_date == today), None)
        if current is not None and current.includes_realtime:
            raise RealtimeMergeError(
                f"Trend '{entity_id}' already includes realtime data for {today.isoformat()}"
            )
        point = TrendPoint(
            metric_date=today,
            spend=(current.spend if current else 0.0) + row.spend,
            msp_cv=(current.msp_cv if current else 0.0) + row.msp_cv,
            includes_realtime=True,
        )
        points = [p for p in series.points if p.metric_date != today]
        points.append(point)
        series.points = sorted(points, key=lambda p: p.metric_date)

    return sorted(series_map.values(), key=lambda series: label_sort_key(series.label))


def merge_platform_detailed_metrics(
    base: list[PlatformDetailedMetrics],
    realtime: list[PlatformDetailedMetrics],
) -> list[PlatformDetailedMetrics]:
    """Add realtime platform details to historical ones by platform id."""
    merged: dict[str, PlatformDetailedMetrics] = {row.platform_id: row for row in base}

    for row in realtime:
        existing = merged.get(row.platform_id)
        if existing is None:
            merged[row.platform_id] = row.model_copy(update={"includes_realtime": True})
            continue
        if existing.includes_realtime:
            raise RealtimeMergeError(
                f"Platform '{row.platform_id}' already includes realtime data"
            )
        merged[row.platform_id] = existing.model_copy(
            update={
                "spend": existing.spend + row.spend,
                "actual_cv": existing.actual_cv + row.actual_cv,
                "m_cv": existing.m_cv + row.m_cv,
                "total_clicks": existing.total_clicks + row.total_clicks,
                "total_impressions": existing.total_impressions + row.total_impressions,
                "includes_realtime": True,
            }
        )

    return sorted(merged.values(), key=lambda row: row.spend, reverse=True)
