"""
Tornado sensitivity: how far a target metric moves when one input variable is
swung from a low to a high percentile while every other input stays at base.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd

from windcube import config
from windcube.errors import DependencyResolutionError
from windcube.metrics import compute_metrics_data
from windcube.models import MetricRegistry, PercentileInfo, SimResult, SourceRegistry, SourceRegistryItem
from windcube.query import CubeStore
from windcube.scenario import split_path
from windcube.sources import compute_source_data
from windcube.utils import field_of, is_number, percentile_of

logger = logging.getLogger(__name__)

PercentileRange = Tuple[int, int, int]

TORNADO_COLUMNS = [
    "rank", "variable_id", "variable", "category", "metric", "base_value", "low_value", "high_value",
    "low_delta", "high_delta", "impact", "percent_spread",
]


@dataclass
class TornadoResult:
    variable_id: str
    variable: str
    category: Optional[str]
    metric: str
    base_value: float
    low_value: float
    high_value: float
    impact: float
    percent_spread: float
    percentile_range: Dict[str, int] = field(default_factory=dict)
    variable_values: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def default_percentile_range(available: Sequence[int], base: Optional[int] = None) -> PercentileRange:
    """Lowest and highest available percentiles around the centre one (or `base`)."""
    ordered = sorted(available)
    if base is None:
        base = ordered[(len(ordered) - 1) // 2]
    return ordered[0], base, ordered[-1]


def _percent_spread(base_value: float, low_value: float, high_value: float) -> float:
    if base_value == 0:
        return 0.0
    return (abs(low_value - base_value) + abs(high_value - base_value)) / abs(base_value) * 100


def _find_percentile(results: Any, percentile: int) -> Optional[Any]:
    if not isinstance(results, (list, tuple)):
        return None
    return next(
        (sim for sim in results if percentile_of(sim) == percentile),
        None,
    )


def _first_value(sim: Any) -> Any:
    data = field_of(sim, "data") or []
    return field_of(data[0], "value") if data else None


def sensitivity_variables(
    source_registry: SourceRegistry, exclude_sources: Iterable[str] = ()
) -> List[SourceRegistryItem]:
    """
    Sources that carry percentile data at a scenario path and are not
    excluded. Sources reading the same path are one variable, named after the
    first of them in processing order.
    """
    excluded = set(exclude_sources)
    seen_paths = set()
    variables = []
    for item in source_registry.processing_order():
        if not item.has_percentiles or not item.path or item.id in excluded:
            continue
        path_key = tuple(split_path(item.path))
        if path_key in seen_paths:
            continue
        seen_paths.add(path_key)
        variables.append(item)
    return variables


def pin_variable(
    get_value_by_path: Callable[..., Any], variable_path: Sequence[str], series: Any, as_percentile: int
) -> Callable[..., Any]:
    """
    Wraps `get_value_by_path` so that `variable_path` resolves to `series`
    relabelled as `as_percentile`. Every other path reads through.
    """
    pinned_path = split_path(variable_path)
    sim = series if isinstance(series, SimResult) else SimResult.model_validate(series)
    pinned = [
        SimResult(
            name=sim.name,
            percentile=as_percentile,
            data=[point.model_copy() for point in sim.data],
            metadata={**(sim.metadata or {}), "pinned_from": sim.percentile.value},
        )
    ]

    def pinned_get_value_by_path(path, *args, **kwargs):
        if split_path(path) == pinned_path:
            return pinned
        return get_value_by_path(path, *args, **kwargs)

    return pinned_get_value_by_path


def evaluate_metric(
    metric_id: str,
    source_registry: SourceRegistry,
    metric_registry: MetricRegistry,
    get_value_by_path: Callable[..., Any],
    percentile: int,
) -> Optional[float]:
    """Runs sources and metrics at a single percentile and reads `metric_id` there."""
    info = PercentileInfo.from_percentiles([percentile])
    store = CubeStore(compute_source_data(source_registry, info, get_value_by_path))
    store.set_metrics(compute_metrics_data(metric_registry, info, get_value_by_path, store.get_source_data))
    record = store.get_metric_record(metric_id)
    if record is None:
        return None
    value = record.value_for(percentile)
    return float(value) if is_number(value) else None


def calculate_tornado(
    target_metric_id: str,
    source_registry: SourceRegistry,
    metric_registry: MetricRegistry,
    get_value_by_path: Callable[..., Any],
    available_percentiles: Union[PercentileInfo, Sequence[int]],
    percentile_range: Optional[PercentileRange] = None,
    rank_by: str = "impact",
) -> List[TornadoResult]:
    """
    Swings each eligible variable between the lower and upper percentile of
    `percentile_range` and records the target metric at both ends.

    Variables missing any of the three percentiles, or whose low or high run
    does not produce the metric, are left out with a warning. Results are
    ranked by `impact` or, with `rank_by='percent'`, by `percent_spread`.
    """
    metric_item = metric_registry.get(target_metric_id)
    if metric_item is None:
        raise DependencyResolutionError(f"Unknown target metric '{target_metric_id}' for sensitivity analysis.")

    if isinstance(available_percentiles, PercentileInfo):
        available, primary = available_percentiles.available, available_percentiles.primary
    else:
        available, primary = list(available_percentiles), None
    if percentile_range is None:
        percentile_range = default_percentile_range(available, primary)
    lower, base, upper = percentile_range

    logger.info(f"[Sensitivity] Tornado for '{target_metric_id}' over P{lower}/P{base}/P{upper}")

    base_value = evaluate_metric(target_metric_id, source_registry, metric_registry, get_value_by_path, base)
    if base_value is None:
        logger.warning(f"[Sensitivity] Could not extract '{target_metric_id}' from base case results.")
        return []

    exclude = metric_item.metadata.sensitivity.exclude_sources
    results: List[TornadoResult] = []

    for variable in sensitivity_variables(source_registry, exclude):
        try:
            raw_results = get_value_by_path(variable.path)
        except Exception as e:
            logger.warning(f"[Sensitivity] No distribution data for variable '{variable.id}': {e}")
            continue

        low_sim = _find_percentile(raw_results, lower)
        base_sim = _find_percentile(raw_results, base)
        high_sim = _find_percentile(raw_results, upper)
        if low_sim is None or base_sim is None or high_sim is None:
            logger.warning(f"[Sensitivity] Missing percentile data for variable '{variable.id}'.")
            continue

        try:
            low_value = evaluate_metric(
                target_metric_id, source_registry, metric_registry,
                pin_variable(get_value_by_path, variable.path, low_sim, base), base,
            )
            high_value = evaluate_metric(
                target_metric_id, source_registry, metric_registry,
                pin_variable(get_value_by_path, variable.path, high_sim, base), base,
            )
        except Exception as e:
            logger.error(f"[Sensitivity] Error calculating sensitivity for '{variable.id}': {e}")
            continue

        if low_value is None or high_value is None:
            logger.warning(f"[Sensitivity] Could not calculate '{target_metric_id}' for variable '{variable.id}'.")
            continue

        results.append(
            TornadoResult(
                variable_id=variable.id,
                variable=variable.metadata.name or variable.id,
                category=variable.metadata.category,
                metric=target_metric_id,
                base_value=base_value,
                low_value=low_value,
                high_value=high_value,
                impact=abs(high_value - low_value),
                percent_spread=_percent_spread(base_value, low_value, high_value),
                percentile_range={
                    "lower": lower,
                    "base": base,
                    "upper": upper,
                    "confidence_interval": upper - lower,
                },
                variable_values={
                    "low": _first_value(low_sim),
                    "base": _first_value(base_sim),
                    "high": _first_value(high_sim),
                },
            )
        )

    sort_key = (lambda r: r.percent_spread) if rank_by == "percent" else (lambda r: r.impact)
    results.sort(key=sort_key, reverse=True)
    logger.info(f"[Sensitivity] '{target_metric_id}': {len(results)} variable(s) ranked.")
    return results


def calculate_multi_metric_sensitivity(
    metric_ids: Iterable[str],
    source_registry: SourceRegistry,
    metric_registry: MetricRegistry,
    get_value_by_path: Callable[..., Any],
    available_percentiles: Union[PercentileInfo, Sequence[int]],
    percentile_range: Optional[PercentileRange] = None,
    rank_by: str = "impact",
) -> Dict[str, List[TornadoResult]]:
    """Tornado per metric. A metric whose analysis fails gets an empty list."""
    results: Dict[str, List[TornadoResult]] = {}
    for metric_id in metric_ids:
        try:
            results[metric_id] = calculate_tornado(
                metric_id, source_registry, metric_registry, get_value_by_path,
                available_percentiles, percentile_range, rank_by,
            )
        except Exception as e:
            logger.error(f"[Sensitivity] Error calculating sensitivity for metric '{metric_id}': {e}")
            results[metric_id] = []
    return results


def tornado_frame(results: Sequence[TornadoResult]) -> pd.DataFrame:
    """One row per variable in ranked order, with the swing on each side of base."""
    if not results:
        return pd.DataFrame(columns=TORNADO_COLUMNS)

    df = pd.DataFrame([result.to_dict() for result in results])
    df["low_delta"] = df["low_value"] - df["base_value"]
    df["high_delta"] = df["high_value"] - df["base_value"]
    df.insert(0, "rank", range(1, len(df) + 1))
    return df[TORNADO_COLUMNS]


def tornado_statistics(
    results: Union[Sequence[TornadoResult], Dict[str, Sequence[TornadoResult]]],
    threshold: float = config.SENSITIVITY_SIGNIFICANCE_THRESHOLD,
) -> Dict[str, Any]:
    """
    Summary over one or several tornado rankings. An input is significant when
    its swing exceeds `threshold` as a fraction of the base value.
    """
    if isinstance(results, dict):
        rankings = [result for metric_results in results.values() for result in metric_results]
    else:
        rankings = list(results)

    if not rankings:
        return {"total_rankings": 0, "avg_impact": 0, "max_impact": 0, "significant_inputs": 0}

    impacts = [result.impact for result in rankings]
    significant = {
        result.variable_id
        for result in rankings
        if (result.impact / abs(result.base_value) if result.base_value else result.impact) > threshold
    }
    return {
        "total_rankings": len(rankings),
        "avg_impact": round(sum(impacts) / len(impacts), 4),
        "max_impact": round(max(impacts), 4),
        "significant_inputs": len(significant),
    }
