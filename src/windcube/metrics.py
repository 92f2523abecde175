import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from windcube.aggregations import apply_aggregations
from windcube.audit import AuditTrail
from windcube.contracts import DependencyType, log_contract_definitions
from windcube.errors import CubeComputationError, DependencyResolutionError
from windcube.models import (
    AggregationConfig,
    AuditSummary,
    ComputedMetricRecord,
    CubeMetricResult,
    MetricDependency,
    MetricRegistry,
    MetricRegistryItem,
    MetricMetadata,
    OperationConfig,
    PercentileInfo,
)
from windcube.normalization import is_complete, normalize_metric_output
from windcube.references import load_references, merge_references
from windcube.utils import is_number

logger = logging.getLogger(__name__)


@dataclass
class ResolvedDependencies:
    """What a metric's dependencies resolved to. Sources are keyed by id, then percentile."""
    sources: Dict[str, Dict[int, Any]] = field(default_factory=dict)
    metrics: Dict[str, ComputedMetricRecord] = field(default_factory=dict)
    references: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MetricTransformerContext:
    id: str
    available_percentiles: List[int]
    aggregation_results: List[CubeMetricResult]
    custom_percentile: Dict[str, int]
    add_audit_entry: Callable[..., Any]
    all_references: Dict[str, Any]
    processed_metrics: Dict[str, ComputedMetricRecord]
    metadata: MetricMetadata


@dataclass
class MetricRunStats:
    processed_count: int = 0
    error_count: int = 0
    reference_errors: int = 0
    duration_ms: float = 0.0
    failed_ids: List[str] = field(default_factory=list)


def apply_default_values(
    transformer_results: Optional[List[CubeMetricResult]],
    aggregation_results: List[CubeMetricResult],
    aggregation_configs: List[AggregationConfig],
    percentiles: List[int],
) -> List[CubeMetricResult]:
    """
    Keeps complete transformer results. Otherwise takes each percentile's value
    from the last `is_default` aggregation (or the first stat when none is
    marked), or zeros when the metric has no aggregations either.
    """
    if transformer_results and is_complete(transformer_results, percentiles):
        return transformer_results

    if not aggregation_results:
        return [CubeMetricResult(percentile=p, value=0.0, stats={}) for p in percentiles]

    defaults = [config for config in aggregation_configs if config.is_default]
    if defaults:
        output_key = defaults[-1].output_key
    else:
        stat_keys = list(aggregation_results[0].stats)
        output_key = stat_keys[0] if stat_keys else None

    return [
        CubeMetricResult(
            percentile=result.percentile,
            value=result.stats.get(output_key, 0) if output_key is not None else 0,
            stats=dict(result.stats),
        )
        for result in aggregation_results
    ]


class MetricEngine:
    """
    Evaluates a metric registry against already computed sources.

    Direct metrics run before indirect ones, each in priority order. A metric
    whose dependencies, transformer or operations fail is skipped, and so is
    every metric that depends on it.
    """

    def __init__(
        self,
        registry: Union[MetricRegistry, List[MetricRegistryItem]],
        percentile_info: Union[PercentileInfo, List[int]],
        get_value_by_path: Callable[..., Any],
        get_source_data: Callable[[Dict[str, Any]], Dict[Any, Any]],
    ):
        if not isinstance(registry, MetricRegistry):
            registry = MetricRegistry(metrics=list(registry))
        if not isinstance(percentile_info, PercentileInfo):
            percentile_info = PercentileInfo.from_percentiles(list(percentile_info))

        self.registry = registry
        self.percentile_info = percentile_info
        self.get_value_by_path = get_value_by_path
        self.get_source_data = get_source_data
        self.processed_metrics: Dict[str, ComputedMetricRecord] = {}
        self.global_references: Dict[str, Any] = {}
        self.stats = MetricRunStats()

    def run(self) -> List[ComputedMetricRecord]:
        logger.info("[Metrics] Starting metrics data processing...")
        log_contract_definitions()
        start = time.perf_counter()

        self.global_references, self.stats.reference_errors = load_references(
            self.registry.references, self.get_value_by_path, scope="global"
        )
        logger.info(
            f"[Metrics] Global references loaded: {len(self.global_references)}, "
            f"errors: {self.stats.reference_errors}"
        )

        for metric in self.registry.processing_order():
            logger.info(
                f"[Metrics] Processing metric '{metric.id}' ({metric.metadata.type.value}, priority: {metric.priority})"
            )
            try:
                record = self._process_metric(metric)
            except Exception as e:
                logger.error(f"[Metrics] Failed to process metric '{metric.id}': {e}")
                self.stats.error_count += 1
                self.stats.failed_ids.append(metric.id)
                continue
            self.processed_metrics[metric.id] = record
            self.stats.processed_count += 1

        self.stats.duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"[Metrics] Processing complete: {self.stats.processed_count} metrics processed, "
            f"{self.stats.error_count} errors in {self.stats.duration_ms:.2f}ms."
        )
        return list(self.processed_metrics.values())

    # =====================================================================
    # PIPELINE
    # =====================================================================
    def _process_metric(self, metric: MetricRegistryItem) -> ComputedMetricRecord:
        percentiles = list(self.percentile_info.available)
        audit = AuditTrail(metric.id)

        try:
            # 1. Dependencies
            audit.add_audit_entry("resolve_dependencies", f"resolving {len(metric.dependencies)} dependencies")
            dependencies = self._resolve_dependencies(metric.dependencies)

            # 2. Aggregations
            aggregation_results: List[CubeMetricResult] = []
            if metric.aggregations:
                audit.add_audit_entry(
                    "apply_aggregations",
                    f"applying {len(metric.aggregations)} aggregations",
                    [config.source_id for config in metric.aggregations],
                )
                aggregation_results = apply_aggregations(
                    metric.aggregations,
                    dependencies.sources,
                    percentiles,
                    dependencies.references,
                    self.processed_metrics,
                    audit.add_audit_entry,
                )

            # 3. Transformer
            transformer_results = None
            if metric.transformer is not None:
                transformer_results = self._apply_transformer(metric, dependencies, aggregation_results, audit)

            # 4. Defaults
            results = apply_default_values(transformer_results, aggregation_results, metric.aggregations, percentiles)

            # 5. Operations
            if metric.operations:
                audit.add_audit_entry(
                    "apply_operations",
                    f"applying {len(metric.operations)} operations",
                    [operation.id for operation in metric.operations],
                )
                results = self._apply_operations(metric.operations, results, dependencies.references, audit)

            # 6. Record
            return ComputedMetricRecord(
                id=metric.id,
                value_type="scalar",
                percentile_metrics=results,
                metadata=metric.metadata,
                audit=AuditSummary(
                    trail=audit.get_trail(), references=audit.get_references(dependencies.references)
                ),
            )
        except Exception as e:
            audit.add_audit_entry("processing_error", f"Error: {e}")
            raise

    def _resolve_dependencies(self, dependency_configs: List[MetricDependency]) -> ResolvedDependencies:
        resolved = ResolvedDependencies()
        local_references: Dict[str, Any] = {}

        for dependency in dependency_configs:
            try:
                if dependency.type is DependencyType.SOURCE:
                    source_data = self.get_source_data({"source_id": dependency.id})
                    if not source_data:
                        raise DependencyResolutionError(f"Source '{dependency.id}' not found")
                    resolved.sources[dependency.id] = source_data

                elif dependency.type is DependencyType.METRIC:
                    record = self.processed_metrics.get(dependency.id)
                    if record is None:
                        raise DependencyResolutionError(f"Metric '{dependency.id}' not found in processed metrics")
                    resolved.metrics[dependency.id] = record

                elif dependency.type is DependencyType.REFERENCE:
                    if self.global_references.get(dependency.id) is not None:
                        local_references[dependency.id] = self.global_references[dependency.id]
                    elif dependency.path:
                        local_references[dependency.id] = self.get_value_by_path(dependency.path)
                    else:
                        raise DependencyResolutionError(
                            f"Reference '{dependency.id}' not found in global references and has no path"
                        )
                else:
                    raise DependencyResolutionError(f"Unknown dependency type: {dependency.type}")
            except Exception as e:
                raise DependencyResolutionError(f"Failed to resolve dependency '{dependency.id}': {e}") from e

        resolved.references = merge_references(self.global_references, local_references)
        return resolved

    def _apply_transformer(
        self,
        metric: MetricRegistryItem,
        dependencies: ResolvedDependencies,
        aggregation_results: List[CubeMetricResult],
        audit: AuditTrail,
    ) -> Optional[List[CubeMetricResult]]:
        percentiles = list(self.percentile_info.available)
        touched = list(dependencies.sources) + list(dependencies.metrics)
        audit.add_audit_entry("apply_transformer", "applying metric transformer", touched)

        context = MetricTransformerContext(
            id=metric.id,
            available_percentiles=percentiles,
            aggregation_results=aggregation_results,
            custom_percentile=dict(self.percentile_info.custom),
            add_audit_entry=audit.add_audit_entry,
            all_references=dependencies.references,
            processed_metrics=self.processed_metrics,
            metadata=metric.metadata,
        )
        try:
            raw = metric.transformer(dependencies, context)
            results = None if raw is None else normalize_metric_output(raw, percentiles)
        except Exception as e:
            audit.add_audit_entry("transformer_error", f"Transformer failed: {e}")
            raise CubeComputationError(f"Transformer execution failed: {e}") from e

        audit.add_audit_entry(
            "transformer_complete",
            f"transformer returned {len(results) if results is not None else 0} results",
            touched,
            results,
        )
        return results

    def _apply_operations(
        self,
        operations: List[OperationConfig],
        results: List[CubeMetricResult],
        references: Dict[str, Any],
        audit: AuditTrail,
    ) -> List[CubeMetricResult]:
        for operation_config in operations:
            target_id = operation_config.id
            target_metric = None
            if target_id in references:
                target_reference = references[target_id]
            elif target_id in self.processed_metrics:
                target_metric = self.processed_metrics[target_id]
            else:
                raise DependencyResolutionError(
                    f"Operation target '{target_id}' not found in metrics or references"
                )

            updated = []
            for result in results:
                percentile = result.percentile.value
                target_value = (
                    target_metric.value_for(percentile, 0) if target_metric is not None else target_reference
                )
                new_value = operation_config.operation(
                    result.value, percentile, target_value, references, self.processed_metrics
                )
                if not is_number(new_value):
                    raise CubeComputationError(
                        f"Operation '{target_id}' returned invalid value for percentile {percentile}: {new_value}"
                    )
                updated.append(result.model_copy(update={"value": float(new_value)}))
            results = updated

        audit.add_audit_entry(
            "operations_complete",
            f"applied {len(operations)} operations",
            [operation.id for operation in operations],
            results,
        )
        return results


def compute_metrics_data(
    registry: Union[MetricRegistry, List[MetricRegistryItem]],
    percentile_info: Union[PercentileInfo, List[int]],
    get_value_by_path: Callable[..., Any],
    get_source_data: Callable[[Dict[str, Any]], Dict[Any, Any]],
) -> List[ComputedMetricRecord]:
    """Evaluates every metric of `registry`. Failed metrics are absent from the result."""
    return MetricEngine(registry, percentile_info, get_value_by_path, get_source_data).run()
