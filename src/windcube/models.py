import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from windcube.audit import AuditEntry
from windcube.contracts import (
    AggregationOperation,
    DependencyType,
    MetricType,
    MultiplierOperation,
    PercentileStrategy,
    SourceType,
)
from windcube.graph import assert_acyclic, build_metric_graph, build_source_graph, order_violations

logger = logging.getLogger(__name__)


class CubeModel(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


def _coerce_percentile(value: Any) -> Any:
    """Lets callers write `percentile=50` instead of `percentile={'value': 50}`."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return {"value": int(value)}
    return value


# =====================================================================
# TIME SERIES
# =====================================================================

class DataPoint(CubeModel):
    year: int
    value: float


class Percentile(CubeModel):
    value: int


class SimResult(CubeModel):
    """A full time series for a single percentile."""
    name: Optional[str] = None
    percentile: Percentile
    data: List[DataPoint] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("percentile", mode="before")
    @classmethod
    def coerce_percentile(cls, value: Any) -> Any:
        return _coerce_percentile(value)


class CubeMetricResult(CubeModel):
    """A metric's value for a single percentile. `value` is numeric once defaults are applied."""
    percentile: Percentile
    value: Any = 0
    stats: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("percentile", mode="before")
    @classmethod
    def coerce_percentile(cls, value: Any) -> Any:
        return _coerce_percentile(value)


class PercentileInfo(CubeModel):
    available: List[int]
    selected: int
    primary: int
    strategy: PercentileStrategy = PercentileStrategy.UNIFIED
    custom: Dict[str, int] = Field(default_factory=dict)

    @model_validator(mode="after")
    def sort_available(self) -> "PercentileInfo":
        if not self.available:
            raise ValueError("PercentileInfo.available cannot be empty.")
        self.available = sorted(self.available)
        return self

    @classmethod
    def from_percentiles(
        cls, percentiles: List[int], custom: Optional[Dict[str, int]] = None
    ) -> "PercentileInfo":
        """Centre percentile selected; per-source strategy only when a custom mapping is given."""
        available = sorted(percentiles)
        if not available:
            raise ValueError("At least one percentile is required.")
        centre = available[(len(available) - 1) // 2]
        return cls(
            available=available,
            selected=centre,
            primary=centre,
            strategy=PercentileStrategy.PER_SOURCE if custom else PercentileStrategy.UNIFIED,
            custom=dict(custom or {}),
        )

    @property
    def uses_custom_percentile(self) -> bool:
        return self.strategy is not PercentileStrategy.UNIFIED

    @property
    def effective_percentiles(self) -> List[int]:
        """Available percentiles, plus 0 for the custom selection when it is in use."""
        return self.available + [0] if self.uses_custom_percentile else list(self.available)


# =====================================================================
# SOURCE REGISTRY
# =====================================================================

class ReferenceItem(CubeModel):
    id: str = Field(min_length=1)
    path: List[str]


class MultiplierConfig(CubeModel):
    id: str = Field(min_length=1)
    operation: MultiplierOperation
    base_year: int = 1
    filter: Optional[Callable[..., bool]] = None


class SourceMetadata(CubeModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="allow")

    type: SourceType
    name: Optional[str] = None
    cashflow_group: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    visual_group: Optional[str] = None
    cashflow_type: Optional[str] = None
    accounting_class: Optional[str] = None
    project_phase: Optional[str] = None
    formatter: Optional[Callable[..., Any]] = None


class SourceRegistryItem(CubeModel):
    """
    A declarative cash-flow source. The shape rules tied to `metadata.type`
    are checked by the source engine, not here, so that a malformed item only
    costs itself and not the whole registry.
    """
    id: str = Field(min_length=1)
    priority: int = 0
    path: Optional[List[str]] = None
    has_percentiles: bool = False
    references: List[ReferenceItem] = Field(default_factory=list)
    transformer: Optional[Callable[..., Any]] = None
    multipliers: List[MultiplierConfig] = Field(default_factory=list)
    # Processed sources a virtual transformer reads. Only used for graph checks.
    depends_on: List[str] = Field(default_factory=list)
    options: Dict[str, Any] = Field(default_factory=dict)
    metadata: SourceMetadata

    @property
    def sort_key(self):
        return (self.metadata.type.order, self.priority)


class SourceRegistry(CubeModel):
    sources: List[SourceRegistryItem]
    references: List[ReferenceItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_graph(self) -> "SourceRegistry":
        _reject_duplicates("source", [item.id for item in self.sources])
        graph = build_source_graph(self.sources)
        assert_acyclic(graph, "source")
        for dependency, dependent in order_violations(graph, [item.id for item in self.processing_order()]):
            logger.warning(
                f"[Graph] Source '{dependent}' depends on '{dependency}', which is processed after it. "
                f"'{dependent}' will not see its output."
            )
        return self

    def processing_order(self) -> List[SourceRegistryItem]:
        return sorted(self.sources, key=lambda item: item.sort_key)

    def get(self, source_id: str) -> Optional[SourceRegistryItem]:
        return next((item for item in self.sources if item.id == source_id), None)


# =====================================================================
# METRIC REGISTRY
# =====================================================================

class MetricDependency(CubeModel):
    id: str = Field(min_length=1)
    type: DependencyType
    path: Optional[List[str]] = None


class AggregationConfig(CubeModel):
    source_id: str
    operation: AggregationOperation
    output_key: str
    is_default: bool = False
    parameters: Dict[str, Any] = Field(default_factory=dict)
    filter: Optional[Callable[..., bool]] = None


class OperationConfig(CubeModel):
    id: str = Field(min_length=1)
    operation: Callable[..., Any]


class SensitivityConfig(CubeModel):
    enabled: bool = False
    exclude_sources: List[str] = Field(default_factory=list)
    analyses: List[str] = Field(default_factory=list)


class MetricMetadata(CubeModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="allow")

    type: MetricType
    name: Optional[str] = None
    description: Optional[str] = None
    units: Optional[str] = None
    formatter: Optional[Callable[..., Any]] = None
    sensitivity: SensitivityConfig = Field(default_factory=SensitivityConfig)


class MetricRegistryItem(CubeModel):
    id: str = Field(min_length=1)
    priority: int = 0
    dependencies: List[MetricDependency] = Field(default_factory=list)
    aggregations: List[AggregationConfig] = Field(default_factory=list)
    transformer: Optional[Callable[..., Any]] = None
    operations: List[OperationConfig] = Field(default_factory=list)
    metadata: MetricMetadata

    @property
    def sort_key(self):
        return (self.metadata.type.order, self.priority)


class MetricRegistry(CubeModel):
    metrics: List[MetricRegistryItem]
    references: List[ReferenceItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_graph(self) -> "MetricRegistry":
        _reject_duplicates("metric", [item.id for item in self.metrics])
        graph = build_metric_graph(self.metrics, {ref.id for ref in self.references})
        assert_acyclic(graph, "metric")
        for dependency, dependent in order_violations(graph, [item.id for item in self.processing_order()]):
            logger.warning(
                f"[Graph] Metric '{dependent}' depends on '{dependency}', which is processed after it. "
                f"'{dependent}' will fail dependency resolution."
            )
        return self

    def processing_order(self) -> List[MetricRegistryItem]:
        return sorted(self.metrics, key=lambda item: item.sort_key)

    def get(self, metric_id: str) -> Optional[MetricRegistryItem]:
        return next((item for item in self.metrics if item.id == metric_id), None)


def _reject_duplicates(kind: str, ids: List[str]) -> None:
    seen, duplicates = set(), set()
    for item_id in ids:
        if item_id in seen:
            duplicates.add(item_id)
        seen.add(item_id)
    if duplicates:
        raise ValueError(f"Duplicate {kind} id(s) in registry: {sorted(duplicates)}")


# =====================================================================
# COMPUTED RECORDS
# =====================================================================

class AuditSummary(CubeModel):
    trail: List[AuditEntry] = Field(default_factory=list)
    references: Dict[str, Any] = Field(default_factory=dict)


class ComputedSourceRecord(CubeModel):
    id: str = Field(min_length=1)
    percentile_source: List[SimResult]
    metadata: SourceMetadata
    audit: AuditSummary = Field(default_factory=AuditSummary)

    def for_percentile(self, percentile: int) -> Optional[SimResult]:
        return next((sim for sim in self.percentile_source if sim.percentile.value == percentile), None)


class ComputedMetricRecord(CubeModel):
    id: str = Field(min_length=1)
    value_type: str = "scalar"
    percentile_metrics: List[CubeMetricResult]
    metadata: MetricMetadata
    audit: AuditSummary = Field(default_factory=AuditSummary)

    def value_for(self, percentile: int, default: Any = None) -> Any:
        result = next((r for r in self.percentile_metrics if r.percentile.value == percentile), None)
        return result.value if result is not None else default
