"""Pain point catalog loaded from YAML and validated once at startup."""

import logging
import re
from pathlib import Path

import yaml

from .models import PainPoint, ResearchAngle, TriggerSignal

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).with_name("catalog.yaml")


class Catalog:
    """Read-only index of research angles and pain points."""

    def __init__(self, pain_points: list[PainPoint], angles: list[ResearchAngle] | None = None):
        self.pain_points = tuple(pain_points)
        self.angles = {angle.id: angle for angle in angles or []}
        self._by_id = {pain_point.id: pain_point for pain_point in self.pain_points}

    @classmethod
    def from_dict(cls, data: dict) -> "Catalog":
        """Build a catalog, skipping (with a warning) any entry that fails validation."""
        pain_points: list[PainPoint] = []
        for raw in data.get("pain_points") or []:
            try:
                pain_points.append(PainPoint.from_dict(raw))
            except re.error as e:
                logger.warning(f"Skipping pain point {raw.get('id', '?')}: invalid trigger pattern ({e})")
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping pain point {raw.get('id', '?') if isinstance(raw, dict) else '?'}: {e}")

        angles: list[ResearchAngle] = []
        for raw in data.get("angles") or []:
            try:
                angles.append(ResearchAngle.from_dict(raw))
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping research angle: {e}")

        return cls(pain_points, angles)

    @property
    def categories(self) -> list[str]:
        """Categories in first-seen order."""
        return list(dict.fromkeys(pain_point.category for pain_point in self.pain_points))

    def get(self, pain_point_id: str) -> PainPoint | None:
        return self._by_id.get(pain_point_id)

    def pain_points_for(self, category: str) -> list[PainPoint]:
        return [pain_point for pain_point in self.pain_points if pain_point.category == category]

    def triggers_for(self, category: str) -> dict[str, tuple[TriggerSignal, ...]]:
        """Trigger signals of each pain point in a category, keyed by pain point id."""
        return {pain_point.id: pain_point.trigger_signals for pain_point in self.pain_points_for(category)}

    def angle(self, angle_id: str) -> ResearchAngle | None:
        return self.angles.get(angle_id)

    def search_themes(self, angle_id: str | None) -> tuple[str, ...]:
        if not angle_id:
            return ()
        angle = self.angles.get(angle_id)
        return angle.search_themes if angle else ()


def load_catalog(path: Path | None = None) -> Catalog:
    """Load a catalog file.

    Raises:
        yaml.YAMLError: If the file is not valid YAML.
        OSError: If the file cannot be read.
    """
    path = path or DEFAULT_CATALOG_PATH
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    catalog = Catalog.from_dict(data)
    logger.debug(f"Loaded {len(catalog.pain_points)} pain points and {len(catalog.angles)} angles from {path}")
    return catalog


_default_catalog: Catalog | None = None


def get_catalog() -> Catalog:
    """Get the bundled catalog, loaded once per process."""
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = load_catalog()
    return _default_catalog
