"""Settings and historical metrics storage."""
from .settings_store import JsonSettingsProvider, SettingsProvider
from .warehouse import AnalyticsQueryEngine, MetricLevel, SqliteWarehouse, init_database

__all__ = [
    "AnalyticsQueryEngine",
    "JsonSettingsProvider",
    "MetricLevel",
    "SettingsProvider",
    "SqliteWarehouse",
    "init_database",
]
