import logging
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from windcube.contracts import AggregationOperation
from windcube.errors import CubeComputationError
from windcube.financial import FinancialCalculations, as_pairs
from windcube.models import AggregationConfig, CubeMetricResult
from windcube.utils import field_of

logger = logging.getLogger(__name__)

Pairs = List[Tuple[int, float]]


def _values(pairs: Pairs) -> np.ndarray:
    return np.array([value for _, value in pairs], dtype=float)


def _mode(pairs: Pairs, parameters: Dict[str, Any]) -> float:
    # Counter.most_common keeps first-seen order among equal counts
    return float(Counter(value for _, value in pairs).most_common(1)[0][0])


def _npv(pairs: Pairs, parameters: Dict[str, Any]) -> float:
    rate = parameters.get("discount_rate")
    if rate is None:
        raise CubeComputationError("The 'npv' aggregation requires a 'discount_rate' parameter.")
    return FinancialCalculations.calculate_npv([{"year": year, "value": value} for year, value in pairs], rate)


def _reduce(pairs: Pairs, parameters: Dict[str, Any]) -> float:
    reducer = parameters.get("reducer")
    if not callable(reducer):
        raise CubeComputationError("The 'reduce' aggregation requires a callable 'reducer' parameter.")
    accumulator = parameters.get("initial_value", 0)
    for year, value in pairs:
        accumulator = reducer(accumulator, value, year)
    return accumulator


AGGREGATORS: Dict[AggregationOperation, Callable[[Pairs, Dict[str, Any]], Any]] = {
    AggregationOperation.MIN: lambda pairs, _: float(np.min(_values(pairs))),
    AggregationOperation.MAX: lambda pairs, _: float(np.max(_values(pairs))),
    AggregationOperation.MEAN: lambda pairs, _: float(np.mean(_values(pairs))),
    AggregationOperation.SUM: lambda pairs, _: float(np.sum(_values(pairs))),
    AggregationOperation.STDEV: lambda pairs, _: float(np.std(_values(pairs), ddof=0)),
    AggregationOperation.MODE: _mode,
    AggregationOperation.NPV: _npv,
    AggregationOperation.REDUCE: _reduce,
}


def aggregate(operation: AggregationOperation, pairs: Pairs, parameters: Optional[Dict[str, Any]] = None) -> Any:
    """Reduces one percentile's (year, value) series. An empty series reduces to 0."""
    if not pairs:
        return 0
    try:
        aggregator = AGGREGATORS[AggregationOperation(operation)]
    except (ValueError, KeyError):
        raise CubeComputationError(f"Unknown aggregation operation: {operation}")
    return aggregator(pairs, parameters or {})


def resolve_parameters(
    config: AggregationConfig, references: Dict[str, Any], metrics: Dict[str, Any]
) -> Dict[str, Any]:
    """Callable parameters are evaluated once as `param(references, metrics)`."""
    return {
        name: value(references, metrics) if callable(value) and name != "reducer" else value
        for name, value in config.parameters.items()
    }


def apply_aggregations(
    configs: Sequence[AggregationConfig],
    sources: Dict[str, Dict[int, Any]],
    percentiles: Sequence[int],
    references: Dict[str, Any],
    metrics: Dict[str, Any],
    add_audit_entry: Callable[..., Any],
) -> List[CubeMetricResult]:
    """
    Computes every aggregation for every percentile into the `stats` of one
    CubeMetricResult per percentile. Missing data yields 0 for that stat.
    """
    if not configs:
        return []

    resolved_parameters = [resolve_parameters(config, references, metrics) for config in configs]
    results: List[CubeMetricResult] = []

    for percentile in percentiles:
        stats: Dict[str, Any] = {}
        for config, parameters in zip(configs, resolved_parameters):
            source_slices = sources.get(config.source_id)
            if not source_slices:
                logger.warning(f"[Aggregations] Source '{config.source_id}' not found for {config.output_key}.")
                stats[config.output_key] = 0
                continue
            percentile_slice = source_slices.get(percentile)
            if percentile_slice is None:
                logger.warning(
                    f"[Aggregations] Percentile {percentile} not found in source '{config.source_id}' "
                    f"for {config.output_key}."
                )
                stats[config.output_key] = 0
                continue

            pairs = as_pairs(field_of(percentile_slice, "data"))
            if not pairs:
                stats[config.output_key] = 0
                continue

            filtered = pairs
            if config.filter is not None:
                try:
                    filtered = [(year, value) for year, value in pairs if config.filter(year, value, references)]
                except Exception as e:
                    logger.warning(
                        f"[Aggregations] Filter failed for '{config.source_id}', using unfiltered data: {e}"
                    )
                    filtered = pairs
                add_audit_entry(
                    "aggregation_filter_applied",
                    f"filtered {len(pairs)} to {len(filtered)} data points for {config.output_key}",
                    [config.source_id],
                )
                if not filtered:
                    logger.warning(
                        f"[Aggregations] No data points passed filter for '{config.source_id}' at P{percentile}."
                    )
                    stats[config.output_key] = 0
                    continue

            stats[config.output_key] = aggregate(config.operation, filtered, parameters)

        results.append(CubeMetricResult(percentile=percentile, value=0, stats=stats))

    add_audit_entry(
        "aggregation_complete",
        f"computed {len(configs)} aggregations for {len(percentiles)} percentiles",
        [config.source_id for config in configs],
        results,
    )
    return results
