# SPDX-License-Identifier: AGPL-3.0-only
import copy
import os
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .repairs.contrast import CONTRAST_THRESHOLD, DEFAULT_BACKGROUND, DEFAULT_LOW_CONTRAST_PALETTE
from .repairs.metadata import DEFAULT_FEATURES, DEFAULT_SUMMARY

CONFIG_FILENAME = "epubremedy.toml"
CONTRAST_AUTO_FIX_ENV = "EPUBREMEDY_CONTRAST_AUTO_FIX"

# Default configuration structure
DEFAULT_CONFIG = {
    "project": {
        "name": "epubremedy-project",
    },
    "remediation": {
        "default_language": "en",
        "accessibility_features": list(DEFAULT_FEATURES),
        "accessibility_summary": DEFAULT_SUMMARY,
    },
    "contrast": {
        "auto_fix": False,
        "threshold": CONTRAST_THRESHOLD,
        "background": DEFAULT_BACKGROUND,
        "palette": list(DEFAULT_LOW_CONTRAST_PALETTE),
    },
    "landmarks": {
        "priority_locations": [],
    },
}


@dataclass(frozen=True)
class RemediationSettings:
    contrast_auto_fix: bool = False
    default_language: str = "en"
    accessibility_features: Tuple[str, ...] = DEFAULT_FEATURES
    accessibility_summary: str = DEFAULT_SUMMARY
    contrast_threshold: float = CONTRAST_THRESHOLD
    contrast_background: str = DEFAULT_BACKGROUND
    low_contrast_palette: Tuple[str, ...] = DEFAULT_LOW_CONTRAST_PALETTE
    priority_locations: Tuple[str, ...] = ()

    def with_env(self, environ: Optional[Dict[str, str]] = None) -> "RemediationSettings":
        """Apply environment overrides; the environment wins over the file."""
        env = os.environ if environ is None else environ
        raw = env.get(CONTRAST_AUTO_FIX_ENV)
        if raw is None or not raw.strip():
            return self
        return replace(self, contrast_auto_fix=parse_bool(raw, name=CONTRAST_AUTO_FIX_ENV))


def parse_bool(value: Any, *, name: str = "value") -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name}: expected a boolean, got {value!r}")


class Config:
    def __init__(self, data: Dict[str, Any], path: Optional[Path] = None):
        self.data = data
        self.path = path
        self.root = path.parent if path else Path.cwd()

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        """Load configuration from epubremedy.toml."""
        if path is None:
            path = Path.cwd() / CONFIG_FILENAME
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"No {CONFIG_FILENAME} found at {path}.")

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Failed to parse {path}: {e}") from e

        return cls(data, path)

    @classmethod
    def defaults(cls) -> "Config":
        return cls(copy.deepcopy(DEFAULT_CONFIG))

    def _section(self, name: str) -> Dict[str, Any]:
        """A config section layered over its ``DEFAULT_CONFIG`` entry."""
        merged = copy.deepcopy(DEFAULT_CONFIG.get(name, {}))
        merged.update(self.data.get(name, {}))
        return merged

    @property
    def project(self) -> Dict[str, Any]:
        return self._section("project")

    @property
    def remediation(self) -> Dict[str, Any]:
        return self._section("remediation")

    @property
    def contrast(self) -> Dict[str, Any]:
        return self._section("contrast")

    @property
    def landmarks(self) -> Dict[str, Any]:
        return self._section("landmarks")

    def resolve_path(self, relative_path: str) -> Path:
        return self.root / relative_path

    def settings(self, *, environ: Optional[Dict[str, str]] = None) -> RemediationSettings:
        rem = self.remediation
        con = self.contrast
        features = rem["accessibility_features"]
        if isinstance(features, str):
            features = [features]
        palette = con["palette"]
        if isinstance(palette, str):
            palette = [palette]
        settings = RemediationSettings(
            contrast_auto_fix=parse_bool(con["auto_fix"], name="contrast.auto_fix"),
            default_language=str(rem["default_language"]),
            accessibility_features=tuple(str(f) for f in features),
            accessibility_summary=str(rem["accessibility_summary"]),
            contrast_threshold=float(con["threshold"]),
            contrast_background=str(con["background"]),
            low_contrast_palette=tuple(str(c) for c in palette),
            priority_locations=tuple(str(p) for p in self.landmarks["priority_locations"]),
        )
        return settings.with_env(environ)
