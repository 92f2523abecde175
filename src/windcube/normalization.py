"""
Normalization of raw source data and of metric transformer output into the
canonical per-percentile shapes.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Union

from pydantic import BaseModel

from windcube.errors import CubeComputationError
from windcube.models import CubeMetricResult, DataPoint, SimResult
from windcube.utils import field_of, has_fields, is_number

logger = logging.getLogger(__name__)


# =====================================================================
# SOURCE DATA
# =====================================================================

def is_sim_result(item: Any) -> bool:
    return isinstance(item, SimResult) or (isinstance(item, dict) and has_fields(item, "percentile", "data"))


def is_data_point(item: Any) -> bool:
    return isinstance(item, DataPoint) or (isinstance(item, dict) and has_fields(item, "year", "value"))


def normalize_source_data(data: Any, percentiles: Sequence[int], source_id: str = "") -> List[SimResult]:
    """
    Brings raw or transformed source data into `List[SimResult]`:
      - None                 -> []
      - list of SimResults   -> validated as they are
      - list of DataPoints   -> the same series for every percentile
      - a single SimResult   -> its series for every percentile
    Anything else raises CubeComputationError.
    """
    if data is None:
        return []

    if isinstance(data, (list, tuple)):
        if not data:
            return []
        if all(is_sim_result(item) for item in data):
            return [SimResult.model_validate(item) if not isinstance(item, SimResult) else item for item in data]
        if all(is_data_point(item) for item in data):
            points = [DataPoint.model_validate(item) if not isinstance(item, DataPoint) else item for item in data]
            return [
                SimResult(name=source_id or None, percentile=percentile, data=[point.model_copy() for point in points])
                for percentile in percentiles
            ]
        raise CubeComputationError(
            f"Source '{source_id}' returned a list that is neither SimResult[] nor DataPoint[]."
        )

    if is_sim_result(data):
        sim = data if isinstance(data, SimResult) else SimResult.model_validate(data)
        return [
            SimResult(name=sim.name, percentile=percentile, data=[point.model_copy() for point in sim.data])
            for percentile in percentiles
        ]

    raise CubeComputationError(
        f"Invalid data structure for source '{source_id}': expected SimResult[], DataPoint[] "
        f"or a single SimResult, got {type(data).__name__}."
    )


# =====================================================================
# METRIC TRANSFORMER OUTPUT
# =====================================================================

@dataclass(frozen=True)
class Scalar:
    value: float


@dataclass(frozen=True)
class SingleResult:
    value: Any
    stats: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResultArray:
    items: List[Any]


@dataclass(frozen=True)
class ObjectOutput:
    value: Any


@dataclass(frozen=True)
class PrimitiveOutput:
    value: Any


MetricOutput = Union[Scalar, SingleResult, ResultArray, ObjectOutput, PrimitiveOutput]


def classify_metric_output(raw: Any) -> MetricOutput:
    """Maps whatever a metric transformer returned onto the closed output union."""
    if isinstance(raw, (Scalar, SingleResult, ResultArray, ObjectOutput, PrimitiveOutput)):
        return raw
    if isinstance(raw, (list, tuple)):
        return ResultArray(items=list(raw))
    if isinstance(raw, CubeMetricResult):
        return SingleResult(value=raw.value, stats=dict(raw.stats))
    if isinstance(raw, dict) and "value" in raw:
        return SingleResult(value=raw["value"], stats=dict(raw.get("stats") or {}))
    if isinstance(raw, bool):
        return PrimitiveOutput(value=raw)
    if is_number(raw) or isinstance(raw, float):
        return Scalar(value=float(raw))
    if isinstance(raw, (dict, BaseModel)):
        return ObjectOutput(value=raw)
    return PrimitiveOutput(value=raw)


def coerce_primitive(value: Any) -> float:
    """Strings are parsed as floats, booleans become 0/1, anything else 0."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return 0.0
    return 0.0


def _array_item_to_result(item: Any, fallback_percentile: int) -> CubeMetricResult:
    if isinstance(item, CubeMetricResult):
        return item
    if isinstance(item, dict):
        payload = dict(item)
        if payload.get("percentile") is None:
            payload["percentile"] = fallback_percentile
        return CubeMetricResult.model_validate(payload)
    if is_number(item):
        return CubeMetricResult(percentile=fallback_percentile, value=float(item))
    return CubeMetricResult(percentile=fallback_percentile, value=item)


def normalize_metric_output(output: Any, percentiles: Sequence[int]) -> List[CubeMetricResult]:
    """
    Produces exactly one CubeMetricResult per available percentile, in
    percentile order. Percentiles an array result leaves out get a zero
    placeholder; results for percentiles that are not available are dropped.
    """
    output = classify_metric_output(output)

    if isinstance(output, ResultArray):
        by_percentile: Dict[int, CubeMetricResult] = {}
        for index, item in enumerate(output.items):
            fallback = percentiles[index] if index < len(percentiles) else -1
            result = _array_item_to_result(item, fallback)
            by_percentile.setdefault(result.percentile.value, result)

        extra = sorted(set(by_percentile) - set(percentiles))
        if extra:
            logger.warning(f"[Normalize] Dropping results for unavailable percentile(s): {extra}")
        missing = [p for p in percentiles if p not in by_percentile]
        if missing:
            logger.warning(f"[Normalize] Filling missing percentile(s) {missing} with zero placeholders.")
        return [
            by_percentile.get(p) or CubeMetricResult(percentile=p, value=0.0, stats={})
            for p in percentiles
        ]

    if isinstance(output, SingleResult):
        return [CubeMetricResult(percentile=p, value=output.value, stats=dict(output.stats)) for p in percentiles]
    if isinstance(output, Scalar):
        return [CubeMetricResult(percentile=p, value=output.value, stats={}) for p in percentiles]
    if isinstance(output, ObjectOutput):
        return [CubeMetricResult(percentile=p, value=output.value, stats={}) for p in percentiles]
    return [CubeMetricResult(percentile=p, value=coerce_primitive(output.value), stats={}) for p in percentiles]


def is_complete(results: Sequence[CubeMetricResult], percentiles: Sequence[int]) -> bool:
    """One result per percentile and every value a real, non-NaN number."""
    return len(results) == len(percentiles) and all(is_number(field_of(r, "value")) for r in results)
