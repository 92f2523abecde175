import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from windcube.audit import AuditTrail
from windcube.contracts import MultiplierOperation, SourceType, log_contract_definitions
from windcube.errors import CubeComputationError, DependencyResolutionError, RegistryConfigurationError
from windcube.models import (
    AuditSummary,
    ComputedSourceRecord,
    MultiplierConfig,
    PercentileInfo,
    SimResult,
    SourceMetadata,
    SourceRegistry,
    SourceRegistryItem,
)
from windcube.normalization import is_data_point, is_sim_result, normalize_source_data
from windcube.references import load_references, merge_references
from windcube.utils import field_of, is_number, percentile_of

logger = logging.getLogger(__name__)

ValueLookup = Callable[[int, int], Optional[float]]


@dataclass
class SourceTransformerContext:
    """Everything a source transformer may read besides the raw source data."""
    id: str
    has_percentiles: bool
    available_percentiles: List[int]
    effective_percentiles: List[int]
    percentile_info: PercentileInfo
    all_references: Dict[str, Any]
    processed_data: List[ComputedSourceRecord]
    options: Dict[str, Any]
    metadata: SourceMetadata
    custom_percentile: Dict[str, int]
    add_audit_entry: Callable[..., Any]


@dataclass
class SourceRunStats:
    processed_count: int = 0
    error_count: int = 0
    reference_errors: int = 0
    duration_ms: float = 0.0
    failed_ids: List[str] = field(default_factory=list)


# =====================================================================
# VALIDATION
# =====================================================================

def validate_source_type(item: SourceRegistryItem) -> Optional[str]:
    """Returns why `item` does not fit the shape of its type, or None when it does."""
    source_type = item.metadata.type
    if source_type is SourceType.DIRECT:
        if not item.path:
            return "direct sources require a path"
        if item.multipliers:
            return "direct sources cannot declare multipliers"
    elif source_type is SourceType.INDIRECT:
        if not item.path:
            return "indirect sources require a path"
        if not item.multipliers:
            return "indirect sources require at least one multiplier"
    elif source_type is SourceType.VIRTUAL:
        if item.path:
            return "virtual sources cannot declare a path"
        if item.transformer is None:
            return "virtual sources require a transformer"
    else:
        return f"unknown source type '{source_type}'"
    return None


# =====================================================================
# MULTIPLIERS
# =====================================================================

MULTIPLIER_OPERATIONS: Dict[MultiplierOperation, Callable[[float, float, int, int], float]] = {
    MultiplierOperation.MULTIPLY: lambda value, m, year, base_year: value * m,
    MultiplierOperation.COMPOUND: lambda value, m, year, base_year: value * (1 + m) ** (year - base_year),
    MultiplierOperation.SIMPLE: lambda value, m, year, base_year: value * (1 + m * (year - base_year)),
    MultiplierOperation.SUMMATION: lambda value, m, year, base_year: value + m,
}


def find_multiplier_values(
    multiplier_id: str,
    processed_data: Sequence[ComputedSourceRecord],
    references: Dict[str, Any],
) -> Tuple[Any, str]:
    """
    Looks the multiplier up in the sources processed so far, then in the
    references. Returns the values and where they came from.
    """
    for record in processed_data:
        if record.id == multiplier_id:
            return record.percentile_source, "processed"
    value = references.get(multiplier_id)
    if value is not None:
        return value, "scalar" if is_number(value) else "timeSeries"
    raise DependencyResolutionError(
        f"Multiplier '{multiplier_id}' not found in processed sources or references."
    )


def create_value_lookup(values: Any, custom_percentile: Dict[str, int], multiplier_id: str) -> ValueLookup:
    """
    Builds `(year, percentile) -> value`. Scalars are constant, DataPoint
    series are keyed by year, SimResult series by (year, percentile) with
    percentile 0 read from the multiplier's custom percentile.
    """
    if is_number(values):
        constant = float(values)
        return lambda year, percentile: constant

    if isinstance(values, (list, tuple)) and values and all(is_sim_result(item) for item in values):
        lookup_map: Dict[Tuple[int, int], float] = {}
        for sim in values:
            percentile_value = percentile_of(sim)
            for point in field_of(sim, "data") or []:
                lookup_map[(field_of(point, "year"), percentile_value)] = field_of(point, "value")

        def sim_lookup(year: int, percentile: int) -> Optional[float]:
            if percentile == 0 and multiplier_id in custom_percentile:
                percentile = custom_percentile[multiplier_id]
            return lookup_map.get((year, percentile))

        return sim_lookup

    if isinstance(values, (list, tuple)) and values and all(is_data_point(item) for item in values):
        by_year = {field_of(point, "year"): field_of(point, "value") for point in values}
        return lambda year, percentile: by_year.get(year)

    raise CubeComputationError(
        f"Multiplier '{multiplier_id}' values must be a scalar, a DataPoint series or a SimResult series."
    )


def apply_multiplier(series: List[SimResult], multiplier: MultiplierConfig, lookup: ValueLookup) -> List[SimResult]:
    """Adjusts every point not excluded by the filter. Points without a multiplier value are kept as they are."""
    try:
        operation = MULTIPLIER_OPERATIONS[MultiplierOperation(multiplier.operation)]
    except (ValueError, KeyError):
        raise CubeComputationError(f"Unknown multiplier operation: {multiplier.operation}")

    adjusted = []
    for sim in series:
        percentile = sim.percentile.value
        points = []
        for point in sim.data:
            if multiplier.filter is not None and not multiplier.filter(point.year, point.value, percentile):
                points.append(point)
                continue
            m = lookup(point.year, percentile)
            if m is None:
                points.append(point)
                continue
            points.append(point.model_copy(update={"value": operation(point.value, m, point.year, multiplier.base_year)}))
        adjusted.append(sim.model_copy(update={"data": points}))
    return adjusted


def add_custom_percentile_data(source_data: Any, source_id: str, custom_percentile: Dict[str, int]) -> Any:
    """Appends a percentile 0 entry copying the series of the source's custom percentile."""
    if not isinstance(source_data, list) or not custom_percentile:
        return source_data
    target = custom_percentile.get(source_id)
    if not target:
        return source_data

    match = next(
        (sim for sim in source_data if is_sim_result(sim) and percentile_of(sim) == target),
        None,
    )
    if match is None:
        logger.warning(f"[Sources] Custom percentile {target} not found for source '{source_id}'.")
        return source_data

    sim = match if isinstance(match, SimResult) else SimResult.model_validate(match)
    custom_item = SimResult(
        name=sim.name,
        percentile=0,
        data=[point.model_copy() for point in sim.data],
        metadata={**(sim.metadata or {}), "custom_percentile": target},
    )
    return list(source_data) + [custom_item]


# =====================================================================
# ENGINE
# =====================================================================

class SourceEngine:
    """
    Evaluates a source registry into percentile-indexed time series.

    Items run in (type, priority) order so virtual sources can read direct and
    indirect outputs from `processed_data`. A failing item is logged, counted
    and skipped; it never stops the run.
    """

    def __init__(
        self,
        registry: Union[SourceRegistry, List[SourceRegistryItem]],
        percentile_info: Union[PercentileInfo, List[int]],
        get_value_by_path: Callable[..., Any],
        custom_percentile: Optional[Dict[str, int]] = None,
    ):
        if not isinstance(registry, SourceRegistry):
            registry = SourceRegistry(sources=list(registry))
        if not isinstance(percentile_info, PercentileInfo):
            percentile_info = PercentileInfo.from_percentiles(list(percentile_info), custom_percentile)
        elif custom_percentile:
            percentile_info = percentile_info.model_copy(update={"custom": {**percentile_info.custom, **custom_percentile}})

        self.registry = registry
        self.percentile_info = percentile_info
        self.get_value_by_path = get_value_by_path
        self.processed_data: List[ComputedSourceRecord] = []
        self.global_references: Dict[str, Any] = {}
        self.stats = SourceRunStats()

    def run(self) -> List[ComputedSourceRecord]:
        logger.info("[Sources] Starting source data processing...")
        log_contract_definitions()
        start = time.perf_counter()

        self.global_references, self.stats.reference_errors = load_references(
            self.registry.references, self.get_value_by_path, scope="global"
        )
        logger.info(
            f"[Sources] Global references loaded: {len(self.global_references)}, "
            f"errors: {self.stats.reference_errors}"
        )

        for item in self.registry.processing_order():
            try:
                record = self._process_source(item)
            except Exception as e:
                logger.error(f"[Sources] Failed to process source '{item.id}': {e}")
                self.stats.error_count += 1
                self.stats.failed_ids.append(item.id)
                continue
            self.processed_data.append(record)
            self.stats.processed_count += 1
            logger.info(f"[Sources] Source '{item.id}' processed successfully.")

        self.stats.duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"[Sources] Processing complete: {self.stats.processed_count} sources processed, "
            f"{self.stats.error_count} errors, {self.stats.reference_errors} reference errors "
            f"in {self.stats.duration_ms:.2f}ms."
        )
        return self.processed_data

    def _process_source(self, item: SourceRegistryItem) -> ComputedSourceRecord:
        info = self.percentile_info
        audit = AuditTrail(item.id)

        # 1. Shape of the declared type
        problem = validate_source_type(item)
        if problem:
            raise RegistryConfigurationError(f"Invalid source type configuration for '{item.id}': {problem}")

        # 2. References, local over global
        local_references, _ = load_references(item.references, self.get_value_by_path, scope=f"local:{item.id}")
        all_references = merge_references(self.global_references, local_references)

        # 3. Raw data
        source_data = None
        if item.path:
            source_data = self.get_value_by_path(item.path)
            if info.uses_custom_percentile and item.has_percentiles:
                source_data = add_custom_percentile_data(source_data, item.id, info.custom)
            audit.add_audit_entry(
                "apply_processing_start", f"extracted data from path: {'.'.join(item.path)}", [], source_data
            )

        # 4. Transformer, then shape normalization
        if item.transformer is not None:
            context = SourceTransformerContext(
                id=item.id,
                has_percentiles=item.has_percentiles,
                available_percentiles=list(info.available),
                effective_percentiles=info.effective_percentiles,
                percentile_info=info,
                all_references=all_references,
                processed_data=self.processed_data,
                options=dict(item.options),
                metadata=item.metadata,
                custom_percentile=dict(info.custom),
                add_audit_entry=audit.add_audit_entry,
            )
            transformed = item.transformer(source_data, context)
            series = normalize_source_data(transformed, info.effective_percentiles, item.id)
            audit.add_audit_entry("apply_transformer", f"transformer produced {len(series)} series", [], series)
        else:
            series = normalize_source_data(source_data, info.effective_percentiles, item.id)

        # 5. Multipliers, in declared order
        for multiplier in item.multipliers:
            values, value_type = find_multiplier_values(multiplier.id, self.processed_data, all_references)
            lookup = create_value_lookup(values, info.custom, multiplier.id)
            series = apply_multiplier(series, multiplier, lookup)
            audit.add_audit_entry(
                "apply_multiplier",
                f"{multiplier.id} ({multiplier.operation.value}, {value_type})",
                [multiplier.id],
                values,
                "multiply",
                multiplier.operation.value,
            )

        audit.add_audit_entry("apply_processing_end", "processing complete", [], series)

        # 6. Record
        return ComputedSourceRecord(
            id=item.id,
            percentile_source=series,
            metadata=item.metadata,
            audit=AuditSummary(trail=audit.get_trail(), references=audit.get_references(all_references)),
        )


def compute_source_data(
    registry: Union[SourceRegistry, List[SourceRegistryItem]],
    available_percentiles: Union[PercentileInfo, List[int]],
    get_value_by_path: Callable[..., Any],
    custom_percentile: Optional[Dict[str, int]] = None,
) -> List[ComputedSourceRecord]:
    """Evaluates every source of `registry`. Failed items are absent from the result."""
    return SourceEngine(registry, available_percentiles, get_value_by_path, custom_percentile).run()
