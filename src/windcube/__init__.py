from .errors import (
    CubeComputationError,
    CubeError,
    CubeRefreshError,
    DependencyResolutionError,
    ReferenceLoadError,
    RegistryConfigurationError,
    RegistryCycleError,
)
from .metrics import MetricEngine, compute_metrics_data
from .models import MetricRegistry, PercentileInfo, SourceRegistry
from .query import CubeStore, SourceSlice
from .refresh import CubeRefresher
from .registries import build_metric_registry, build_source_registry
from .scenario import ScenarioDocument
from .sensitivity import calculate_multi_metric_sensitivity, calculate_tornado, tornado_frame, tornado_statistics
from .sources import SourceEngine, compute_source_data

__all__ = [
    "CubeComputationError",
    "CubeError",
    "CubeRefreshError",
    "CubeRefresher",
    "CubeStore",
    "DependencyResolutionError",
    "MetricEngine",
    "MetricRegistry",
    "PercentileInfo",
    "ReferenceLoadError",
    "RegistryConfigurationError",
    "RegistryCycleError",
    "ScenarioDocument",
    "SourceEngine",
    "SourceRegistry",
    "SourceSlice",
    "build_metric_registry",
    "build_source_registry",
    "calculate_multi_metric_sensitivity",
    "calculate_tornado",
    "compute_metrics_data",
    "compute_source_data",
    "tornado_frame",
    "tornado_statistics",
]
