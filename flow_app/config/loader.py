"""Configuration loader with 3-tier parameter precedence."""

from dataclasses import dataclass, fields, is_dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import yaml

from ..errors import ConfigurationError
from .defaults import (
    AggregationParams,
    BackfillParams,
    ConcentrationParams,
    IngestParams,
    PipelineConfig,
    SentimentParams,
    SignificanceParams,
    get_default_config,
)
from .validation import ConfigValidator

_SECTIONS = {
    "ingest": IngestParams,
    "significance": SignificanceParams,
    "aggregation": AggregationParams,
    "concentration": ConcentrationParams,
    "sentiment": SentimentParams,
    "backfill": BackfillParams,
}


@dataclass(frozen=True)
class ConfigLoader:
    """Manages configuration loading with 3-tier precedence."""

    config_dir: Path
    defaults: PipelineConfig

    @classmethod
    def create(cls, config_dir: Optional[Path] = None) -> "ConfigLoader":
        """Create a ConfigLoader instance."""
        if config_dir is None:
            config_dir = Path(__file__).parent.parent.parent / "config"

        return cls(
            config_dir=Path(config_dir),
            defaults=get_default_config(),
        )

    def load_file_config(self) -> dict[str, Any]:
        """Load overrides from ``pipeline.yaml`` if present."""
        pipeline_file = self.config_dir / "pipeline.yaml"

        if not pipeline_file.exists():
            return {}

        with open(pipeline_file) as f:
            file_config = yaml.safe_load(f) or {}

        return file_config.get("pipeline", {}) or {}  # type: ignore[no-any-return]

    def merge_config(self, overrides: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Merge configuration with 3-tier precedence.

        Priority order:
        1. Runtime overrides (highest priority)
        2. pipeline.yaml overrides
        3. Global defaults (lowest priority)
        """
        config = self._dataclass_to_dict(self.defaults)

        config = self._deep_merge(config, self.load_file_config())

        if overrides:
            config = self._deep_merge(config, overrides)

        return config

    def load_pipeline_config(self, overrides: Optional[dict[str, Any]] = None) -> PipelineConfig:
        """Merge, validate and build a typed PipelineConfig."""
        merged = self.merge_config(overrides)

        errors = ConfigValidator.validate(merged)
        if errors:
            error_msgs = [f"{err.field}: {err.message} (got: {err.value})" for err in errors]
            raise ConfigurationError(
                "Invalid pipeline configuration: " + "; ".join(error_msgs),
                errors=errors
            )

        sections = {}
        for name, params_cls in _SECTIONS.items():
            sections[name] = self._build_section(params_cls, merged.get(name, {}))
        return PipelineConfig(**sections)

    def _build_section(self, params_cls: type, values: dict[str, Any]) -> Any:
        """Build a frozen params dataclass, coercing YAML scalars to field types."""
        kwargs = {}
        for f in fields(params_cls):
            if f.name not in values:
                continue
            value = values[f.name]
            default = getattr(self._default_section(params_cls), f.name)
            if isinstance(default, Decimal) and not isinstance(value, Decimal):
                value = Decimal(str(value))
            elif isinstance(default, tuple) and isinstance(value, list):
                value = tuple(str(v).upper() for v in value)
            kwargs[f.name] = value
        return params_cls(**kwargs)

    def _default_section(self, params_cls: type) -> Any:
        for name, cls in _SECTIONS.items():
            if cls is params_cls:
                return getattr(self.defaults, name)
        return params_cls()

    def _dataclass_to_dict(self, obj: Any) -> dict[str, Any]:
        """Convert nested dataclasses to dictionary."""
        if is_dataclass(obj):
            result = {}
            for f in fields(obj):
                value = getattr(obj, f.name)
                if is_dataclass(value):
                    result[f.name] = self._dataclass_to_dict(value)
                else:
                    result[f.name] = value
            return result
        return obj  # type: ignore[no-any-return]

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result
