from .metrics import build_metric_registry
from .sources import build_source_registry

__all__ = ["build_metric_registry", "build_source_registry"]
