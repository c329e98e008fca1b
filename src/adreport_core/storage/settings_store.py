"""Report settings providers."""
import json
import logging
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from ..exceptions import SettingsError
from ..schemas.settings import ReportSettings


logger = logging.getLogger(__name__)


class SettingsProvider(Protocol):
    """Source of projects, section rules, platform instances and accounts."""

    def load(self) -> ReportSettings: ...


class JsonSettingsProvider:
    """Settings read from a single JSON document on disk.

    The file is re-read on every load so edits apply to the next report.
    """

    def __init__(self, settings_path: str | Path) -> None:
        self.settings_path = Path(settings_path)

    def load(self) -> ReportSettings:
        """Load and validate the settings document.

        Raises:
            SettingsError: If the file is missing, not JSON, or fails validation
        """
        if not self.settings_path.exists():
            raise SettingsError(
                f"Report settings not found: {self.settings_path}. "
                "Create it before requesting reports."
            )

        try:
            with open(self.settings_path, encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise SettingsError(f"Invalid JSON in {self.settings_path}: {exc}") from exc

        try:
            settings = ReportSettings.model_validate(data)
        except ValidationError as exc:
            raise SettingsError(f"Invalid report settings in {self.settings_path}: {exc}") from exc

        logger.debug(
            "Loaded settings: %s projects, %s sections, %s platforms",
            len(settings.projects),
            len(settings.sections),
            len(settings.platforms),
        )
        return settings
