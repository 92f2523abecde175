import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from windcube.models import ComputedMetricRecord, ComputedSourceRecord, PercentileInfo, SourceRegistry
from windcube.utils import field_of

logger = logging.getLogger(__name__)


@dataclass
class SourceSlice:
    """The `{year, value}` points of one source (or group of sources) at one percentile."""
    data: List[Dict[str, float]] = field(default_factory=list)
    metadata: Any = None


def _points(sim) -> List[Dict[str, float]]:
    return [{"year": point.year, "value": point.value} for point in sim.data]


def _matches_metadata(metadata: Any, filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    if metadata is None:
        return False
    return all(field_of(metadata, key) == value for key, value in filters.items())


class CubeStore:
    """
    Read side of one refresh: the computed sources and metrics and the
    sensitivity rankings derived from them. Records are replaced wholesale,
    never patched.
    """

    def __init__(
        self,
        sources: Optional[Iterable[ComputedSourceRecord]] = None,
        metrics: Optional[Iterable[ComputedMetricRecord]] = None,
        percentile_info: Optional[PercentileInfo] = None,
        source_registry: Optional[SourceRegistry] = None,
        version: Optional[int] = None,
    ):
        self.sources: List[ComputedSourceRecord] = list(sources or [])
        self.metrics: List[ComputedMetricRecord] = list(metrics or [])
        self.percentile_info = percentile_info
        self.source_registry = source_registry
        self.sensitivity: Dict[str, List[Any]] = {}
        self.version = version
        self.last_refresh: Optional[datetime] = None

    def set_sources(self, sources: Iterable[ComputedSourceRecord]) -> None:
        self.sources = list(sources)

    def set_metrics(self, metrics: Iterable[ComputedMetricRecord]) -> None:
        self.metrics = list(metrics)

    # =====================================================================
    # SOURCES
    # =====================================================================
    def get_data(
        self,
        source_id: Optional[str] = None,
        source_ids: Optional[List[str]] = None,
        percentile: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[Any, SourceSlice]:
        """
        Three query modes:
          - `source_id` only: `{percentile: SourceSlice}` for that source.
          - `source_ids` only: `{percentile: SourceSlice}` with the points of
            every listed source concatenated and `metadata={'sources': [...]}`.
          - `percentile` given: `{source_id: SourceSlice}` for every selected
            source that has data at that percentile.
        `metadata` is an exact-match filter on source metadata fields.
        """
        if not source_id and not source_ids and percentile is None:
            raise ValueError("get_data requires either source_id, source_ids, or percentile parameter")

        candidates = self.sources
        if source_id:
            candidates = [record for record in candidates if record.id == source_id]
        elif source_ids:
            wanted = set(source_ids)
            candidates = [record for record in candidates if record.id in wanted]
        candidates = [record for record in candidates if _matches_metadata(record.metadata, metadata)]
        if not candidates:
            return {}

        result: Dict[Any, SourceSlice] = {}

        if source_id and percentile is None:
            record = candidates[0]
            for sim in record.percentile_source:
                slot = result.setdefault(sim.percentile.value, SourceSlice(data=[], metadata=record.metadata))
                slot.data.extend(_points(sim))

        elif source_ids and percentile is None:
            for record in candidates:
                seen_percentiles = set()
                for sim in record.percentile_source:
                    slot = result.setdefault(sim.percentile.value, SourceSlice(data=[], metadata={"sources": []}))
                    slot.data.extend(_points(sim))
                    if sim.percentile.value not in seen_percentiles:
                        slot.metadata["sources"].append(record.metadata)
                        seen_percentiles.add(sim.percentile.value)

        else:
            for record in candidates:
                points = [
                    point
                    for sim in record.percentile_source
                    if sim.percentile.value == percentile
                    for point in _points(sim)
                ]
                if points:
                    result[record.id] = SourceSlice(data=points, metadata=record.metadata)

        return result

    def get_source_data(self, filters: Dict[str, Any]) -> Dict[Any, SourceSlice]:
        """Dict facade over `get_data`, the shape the metric engine calls."""
        return self.get_data(
            source_id=filters.get("source_id"),
            source_ids=filters.get("source_ids"),
            percentile=filters.get("percentile"),
            metadata=filters.get("metadata"),
        )

    def get_source_metadata(
        self,
        source_id: Optional[str] = None,
        source_ids: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """
        Metadata by source id. Read from the registry when the store has one,
        so it is available before the first refresh completes.
        """
        if not source_id and source_ids is None and not metadata:
            raise ValueError(
                "get_source_metadata requires at least one filter parameter: source_id, source_ids, or metadata"
            )

        items = self.source_registry.sources if self.source_registry is not None else self.sources
        if source_id:
            items = [item for item in items if item.id == source_id]
        elif source_ids is not None:
            wanted = set(source_ids)
            items = [item for item in items if item.id in wanted]
        items = [item for item in items if _matches_metadata(item.metadata, metadata)]

        return {item.id: item.metadata.model_dump(exclude_none=True) for item in items}

    def get_audit_trail(self, source_ids: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Audit of each requested source: the record's audit, an empty trail when
        it has none, or None when the source was not computed.
        """
        if source_ids is not None and not source_ids:
            logger.warning("[Store] get_audit_trail: source_ids must be a non-empty list")
            return {}

        by_id = {record.id: record for record in self.sources}
        wanted = source_ids if source_ids is not None else list(by_id)
        trails: Dict[str, Any] = {}
        for source_id in wanted:
            record = by_id.get(source_id)
            if record is None:
                logger.warning(f"[Store] get_audit_trail: Source '{source_id}' not found in source data")
                trails[source_id] = None
            else:
                trails[source_id] = record.audit
        return trails

    # =====================================================================
    # METRICS
    # =====================================================================
    def get_metric(
        self,
        metric_ids: Optional[List[str]] = None,
        percentile: Optional[int] = None,
        percentiles: Optional[List[int]] = None,
    ) -> Dict[str, Dict[int, Dict[str, Any]]]:
        """`{metric_id: {percentile: {'value', 'stats'}}}`, optionally filtered."""
        if not self.metrics:
            logger.warning("[Store] No metrics data available")
            return {}

        if percentile is not None:
            percentiles = [percentile]

        result: Dict[str, Dict[int, Dict[str, Any]]] = {}
        for record in self.metrics:
            if metric_ids is not None and record.id not in metric_ids:
                continue
            values = {
                pm.percentile.value: {"value": pm.value, "stats": pm.stats}
                for pm in record.percentile_metrics
                if percentiles is None or pm.percentile.value in percentiles
            }
            if percentile is not None and not values:
                continue
            result[record.id] = values
        return result

    def get_metric_record(self, metric_id: str) -> Optional[ComputedMetricRecord]:
        return next((record for record in self.metrics if record.id == metric_id), None)

    def get_cube_status(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "last_refresh": self.last_refresh,
            "source_data_count": len(self.sources),
            "metrics_data_count": len(self.metrics),
            "sensitivity_data_count": len(self.sensitivity),
        }
