"""Configuration validation utilities."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any


@dataclass(frozen=True)
class ValidationError:
    """Represents a configuration validation error."""
    field: str
    message: str
    value: Any


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal)):
        return True
    try:
        Decimal(str(value))
    except (InvalidOperation, ValueError):
        return False
    return True


class ConfigValidator:
    """Validates merged pipeline configuration."""

    @staticmethod
    def validate(config: dict[str, Any]) -> list[ValidationError]:
        """Validate every known section of a merged configuration dict."""
        errors = []
        errors.extend(ConfigValidator.validate_significance(config.get("significance", {})))
        errors.extend(ConfigValidator.validate_aggregation(config.get("aggregation", {})))
        errors.extend(ConfigValidator.validate_concentration(config.get("concentration", {})))
        errors.extend(ConfigValidator.validate_backfill(config.get("backfill", {})))
        return errors

    @staticmethod
    def validate_significance(params: dict[str, Any]) -> list[ValidationError]:
        """Validate significance gates."""
        errors = []

        if "min_premium" in params:
            value = params["min_premium"]
            if not _is_number(value) or Decimal(str(value)) < 0:
                errors.append(ValidationError(
                    field="significance.min_premium",
                    message="Must be a non-negative number",
                    value=value
                ))

        if "max_dte" in params:
            value = params["max_dte"]
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                errors.append(ValidationError(
                    field="significance.max_dte",
                    message="Must be a non-negative integer",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_aggregation(params: dict[str, Any]) -> list[ValidationError]:
        """Validate aggregation parameters."""
        errors = []

        for name in ("retention_days", "default_window_hours", "default_bucket_minutes"):
            if name in params:
                value = params[name]
                if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                    errors.append(ValidationError(
                        field=f"aggregation.{name}",
                        message="Must be a positive integer",
                        value=value
                    ))

        return errors

    @staticmethod
    def validate_concentration(params: dict[str, Any]) -> list[ValidationError]:
        """Validate grade thresholds are positive and strictly descending."""
        errors = []

        names = ["grade_a_plus_hits", "grade_a_hits", "grade_b_hits", "grade_c_hits", "grade_d_hits"]
        present = [(name, params[name]) for name in names if name in params]
        for name, value in present:
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                errors.append(ValidationError(
                    field=f"concentration.{name}",
                    message="Must be a positive integer",
                    value=value
                ))

        if len(present) == len(names) and not errors:
            values = [value for _, value in present]
            if any(higher <= lower for higher, lower in zip(values, values[1:])):
                errors.append(ValidationError(
                    field="concentration.grades",
                    message="Grade thresholds must be strictly descending from A+ to D",
                    value=values
                ))

        return errors

    @staticmethod
    def validate_backfill(params: dict[str, Any]) -> list[ValidationError]:
        """Validate backfill parameters."""
        errors = []

        if "max_pages" in params:
            value = params["max_pages"]
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                errors.append(ValidationError(
                    field="backfill.max_pages",
                    message="Must be an integer >= 1",
                    value=value
                ))

        if "read_timeout_seconds" in params:
            value = params["read_timeout_seconds"]
            if not _is_number(value) or float(value) <= 0:
                errors.append(ValidationError(
                    field="backfill.read_timeout_seconds",
                    message="Must be a positive number",
                    value=value
                ))

        for name in ("ticker_delay_seconds", "page_delay_seconds",
                     "contract_delay_seconds", "history_chunk_delay_seconds"):
            if name in params:
                value = params[name]
                if not _is_number(value) or float(value) < 0:
                    errors.append(ValidationError(
                        field=f"backfill.{name}",
                        message="Must be a non-negative number",
                        value=value
                    ))

        for name, floor in (("publication_delay_minutes", 0), ("window_minutes", 1),
                            ("contracts_per_ticker", 1), ("contract_max_dte", 0),
                            ("history_chunk_hours", 1)):
            if name in params:
                value = params[name]
                if not isinstance(value, int) or isinstance(value, bool) or value < floor:
                    errors.append(ValidationError(
                        field=f"backfill.{name}",
                        message=f"Must be an integer >= {floor}",
                        value=value
                    ))

        if "tracked_tickers" in params:
            value = params["tracked_tickers"]
            if not isinstance(value, (list, tuple)) or not value:
                errors.append(ValidationError(
                    field="backfill.tracked_tickers",
                    message="Must be a non-empty list of tickers",
                    value=value
                ))

        return errors
