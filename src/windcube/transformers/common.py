"""Building blocks shared by the source transformers."""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from windcube.errors import CubeComputationError
from windcube.financial import as_pairs
from windcube.models import ComputedSourceRecord, SimResult
from windcube.utils import field_of, safe_get

logger = logging.getLogger(__name__)

COMBINE_OPERATIONS: Dict[str, Callable[[Optional[float], float], float]] = {
    "sum": lambda current, value: (current or 0.0) + value,
    "subtract": lambda current, value: (current or 0.0) - value,
    "multiply": lambda current, value: value if current is None else current * value,
    "divide": lambda current, value: value if current is None else (current / value if value else 0.0),
}


def filter_sources(
    processed_data: Iterable[ComputedSourceRecord], source_id: Optional[str] = None, **metadata: Any
) -> List[ComputedSourceRecord]:
    """Processed records matching `source_id` and every given metadata field exactly."""
    return [
        record
        for record in processed_data
        if (source_id is None or record.id == source_id)
        and all(field_of(record.metadata, key) == value for key, value in metadata.items())
    ]


def find_source(processed_data: Iterable[ComputedSourceRecord], source_id: str) -> Optional[ComputedSourceRecord]:
    matches = filter_sources(processed_data, source_id=source_id)
    return matches[0] if matches else None


def series_by_year(record: Optional[ComputedSourceRecord], percentile: int) -> Dict[int, float]:
    """`{year: value}` of one record at one percentile. Empty when either is missing."""
    if record is None:
        return {}
    sim = record.for_percentile(percentile)
    return dict(as_pairs(sim.data)) if sim is not None else {}


def to_sim_result(name: str, percentile: int, by_year: Dict[int, float]) -> SimResult:
    return SimResult(
        name=name,
        percentile=percentile,
        data=[{"year": int(year), "value": value} for year, value in sorted(by_year.items())],
    )


def aggregate_sources(
    sources: Sequence[ComputedSourceRecord],
    percentiles: Sequence[int],
    operation: str = "sum",
    name: Optional[str] = None,
    add_audit_entry: Optional[Callable[..., Any]] = None,
) -> List[SimResult]:
    """
    Combines several records year by year, separately for each percentile.
    Years present in only some records are combined from those records.
    """
    if operation not in COMBINE_OPERATIONS:
        raise CubeComputationError(f"Unknown source aggregation operation: {operation}")
    if not sources:
        return []

    combine = COMBINE_OPERATIONS[operation]
    result = []
    for percentile in percentiles:
        totals: Dict[int, Optional[float]] = {}
        for record in sources:
            for year, value in series_by_year(record, percentile).items():
                totals[year] = combine(totals.get(year), value)
        result.append(to_sim_result(name or f"aggregated_{operation}", percentile, totals))

    if add_audit_entry is not None:
        add_audit_entry(
            "apply_aggregation",
            f"aggregating {len(sources)} sources ({operation})",
            [record.id for record in sources],
            result,
            "aggregate",
            operation,
        )
    return result


def adjust_source_values(
    record: ComputedSourceRecord, adjust: Callable[[int, int, float], float]
) -> ComputedSourceRecord:
    """Copy of `record` with every value replaced by `adjust(percentile, year, value)`."""
    adjusted = [
        sim.model_copy(update={
            "data": [
                point.model_copy(update={"value": adjust(sim.percentile.value, point.year, point.value)})
                for point in sim.data
            ]
        })
        for sim in record.percentile_source
    ]
    return record.model_copy(update={"percentile_source": adjusted})


def normalize_into_sim_results(
    data_points: Sequence[Dict[str, float]],
    percentiles: Sequence[int],
    name: str,
    add_audit_entry: Optional[Callable[..., Any]] = None,
) -> List[SimResult]:
    """The same fixed series for every percentile."""
    if not data_points:
        return []
    result = [SimResult(name=name, percentile=percentile, data=list(data_points)) for percentile in percentiles]
    if add_audit_entry is not None:
        add_audit_entry(
            "apply_normalization",
            f"normalized fixed time-series into {len(percentiles)} percentiles",
            None,
            result,
            "normalize",
            "none",
        )
    return result


def yearly_totals_to_points(totals: Dict[Any, float]) -> List[Dict[str, float]]:
    return [{"year": int(year), "value": value} for year, value in sorted(totals.items(), key=lambda kv: int(kv[0]))]


def financing_value(references: Dict[str, Any], key: str, default: Any) -> Any:
    """`references['financing'][key]`, or `default` when it is missing or None."""
    value = safe_get(references, "financing", key)
    return default if value is None else value
