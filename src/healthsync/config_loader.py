"""Load, validate, and hot-reload the HealthSync metric policy table.

The table lives in ``metrics_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_metrics_config()`` to re-read from
disk after an edit — no restart required.

Usage::

    from src.healthsync.config_loader import get_metrics_config

    config = get_metrics_config()
    policy = config.metric("calories")
    policy.fallback          # 'active_calories_burned'
    config.record_types()    # every record type the aggregator reads
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("healthsync.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "metrics_config.yaml"

#: Reduction policies the aggregator knows how to apply.
POLICIES = ("sum", "latest_sample", "latest_session", "duration_sum")

#: Stage names allowed on the wire.
WIRE_STAGES = ("light", "deep", "rem", "awake")

# Policies that read a scalar field from each record / sample
_FIELD_POLICIES = ("sum", "latest_sample")


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricPolicy:
    """Reduction rule for one metric of the daily summary.

    Attributes:
        name:           Metric name (also the payload field, snake_case).
        record_type:    Store record type read for this metric.
        policy:         One of POLICIES.
        field:          Scalar field summed / sampled (field policies only).
        fallback:       Record type summed instead when the primary sum is 0.
        lookback_hours: Extra hours before the window start for this metric.
        integer:        Emit the reduced value as an int.
        stages:         Derive sleep-stage detail from the selected session.
    """

    name: str
    record_type: str
    policy: str
    field: str | None = None
    fallback: str | None = None
    lookback_hours: float = 0.0
    integer: bool = False
    stages: bool = False

    @property
    def record_types(self) -> tuple[str, ...]:
        if self.fallback:
            return (self.record_type, self.fallback)
        return (self.record_type,)


@dataclass
class MetricsConfig:
    """Complete, validated metric policy table.

    Attributes:
        version:      Config schema version string.
        metrics:      Ordered metric name → MetricPolicy.
        stage_map:    Store stage name → wire stage name.
    """

    version: str
    metrics: dict[str, MetricPolicy]
    stage_map: dict[str, str]

    def metric(self, name: str) -> MetricPolicy:
        """Return the policy for a metric.

        Raises:
            KeyError: If the metric is not configured.
        """
        if name not in self.metrics:
            raise KeyError(
                f"No policy configured for metric '{name}'. "
                f"Available: {list(self.metrics)}"
            )
        return self.metrics[name]

    def record_types(self) -> tuple[str, ...]:
        """Return every record type read by any metric, in table order."""
        seen: dict[str, None] = {}
        for policy in self.metrics.values():
            for record_type in policy.record_types:
                seen.setdefault(record_type, None)
        return tuple(seen)

    def wire_stage(self, store_stage: str) -> str | None:
        """Map a store stage name to its wire name, None if it carries no detail."""
        return self.stage_map.get(store_stage)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when metrics_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    import yaml  # pyyaml

    if not path.exists():
        raise FileNotFoundError(f"Metrics config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> MetricsConfig:
    """Validate the raw YAML dict and construct a MetricsConfig.

    Collects every problem before raising so one edit can fix them all.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []
    version = str(raw.get("version", "1.0"))

    # ── Metrics ──
    metrics_raw = raw.get("metrics") or {}
    if not metrics_raw:
        errors.append("'metrics' section is missing or empty")

    metrics: dict[str, MetricPolicy] = {}
    for name, cfg in metrics_raw.items():
        if not isinstance(cfg, dict):
            errors.append(f"metrics.{name} must be a mapping")
            continue

        record_type = cfg.get("record_type")
        if not record_type:
            errors.append(f"Missing required key 'record_type' in section 'metrics.{name}'")
            continue

        policy = cfg.get("policy")
        if policy not in POLICIES:
            errors.append(
                f"metrics.{name}.policy = {policy!r} is not one of {list(POLICIES)}"
            )
            continue

        field_name = cfg.get("field")
        if policy in _FIELD_POLICIES and not field_name:
            errors.append(f"metrics.{name} uses policy '{policy}' but sets no 'field'")

        fallback = cfg.get("fallback")
        if fallback and policy != "sum":
            errors.append(f"metrics.{name}.fallback is only valid with policy 'sum'")

        try:
            lookback = float(cfg.get("lookback_hours", 0) or 0)
        except (TypeError, ValueError):
            errors.append(
                f"metrics.{name}.lookback_hours must be a number, got {cfg.get('lookback_hours')!r}"
            )
            continue
        if lookback < 0:
            errors.append(f"metrics.{name}.lookback_hours = {lookback} must not be negative")

        stages = bool(cfg.get("stages", False))
        if stages and policy != "latest_session":
            errors.append(f"metrics.{name}.stages requires policy 'latest_session'")

        metrics[name] = MetricPolicy(
            name=name,
            record_type=str(record_type),
            policy=policy,
            field=field_name,
            fallback=fallback,
            lookback_hours=lookback,
            integer=bool(cfg.get("integer", False)),
            stages=stages,
        )

    # ── Sleep stages ──
    stage_map: dict[str, str] = {}
    for store_stage, wire_stage in (raw.get("sleep_stages") or {}).items():
        if wire_stage not in WIRE_STAGES:
            errors.append(
                f"sleep_stages.{store_stage} = {wire_stage!r} is not one of {list(WIRE_STAGES)}"
            )
            continue
        stage_map[str(store_stage)] = wire_stage

    if sum(1 for p in metrics.values() if p.stages) > 1:
        errors.append("Only one metric may derive sleep stages")

    if errors:
        raise ConfigValidationError(
            f"metrics_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return MetricsConfig(version=version, metrics=metrics, stage_map=stage_map)


def load_metrics_config(path: Path | None = None) -> MetricsConfig:
    """Load and validate the metric policy table from disk.

    Args:
        path: Override path to YAML. Uses the bundled metrics_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded metrics config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: MetricsConfig | None = None
_config_lock = threading.Lock()


def get_metrics_config() -> MetricsConfig:
    """Return the global MetricsConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_metrics_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_metrics_config()
    return _config


def reload_metrics_config(path: Path | None = None) -> MetricsConfig:
    """Reload the policy table from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_metrics_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded metrics config: %s → %s", old_version, new_config.version)
    return new_config
