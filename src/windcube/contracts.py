import logging
from enum import Enum

contracts_logger = logging.getLogger('CubeContracts')


class SourceType(Enum):
    """
    The valid kinds of cash-flow source. The value order is the processing
    order: every direct source is evaluated before any indirect source, and
    every indirect source before any virtual one.
    """
    DIRECT = "direct"
    INDIRECT = "indirect"
    VIRTUAL = "virtual"

    @property
    def order(self) -> int:
        return _SOURCE_TYPE_ORDER[self]


class MetricType(Enum):
    """Direct metrics are evaluated before indirect ones, which may read them."""
    DIRECT = "direct"
    INDIRECT = "indirect"

    @property
    def order(self) -> int:
        return _METRIC_TYPE_ORDER[self]


class DependencyType(Enum):
    SOURCE = "source"
    METRIC = "metric"
    REFERENCE = "reference"


class MultiplierOperation(Enum):
    """
    Defines how a multiplier value `m` adjusts a data point `v` in `year`:
      multiply   v * m
      compound   v * (1 + m) ** (year - base_year)
      simple     v * (1 + m * (year - base_year))
      summation  v + m
    """
    MULTIPLY = "multiply"
    COMPOUND = "compound"
    SIMPLE = "simple"
    SUMMATION = "summation"


class AggregationOperation(Enum):
    """Statistical reductions over a single percentile's time series."""
    MIN = "min"
    MAX = "max"
    MEAN = "mean"
    SUM = "sum"
    STDEV = "stdev"
    MODE = "mode"
    NPV = "npv"
    REDUCE = "reduce"


class PercentileStrategy(Enum):
    UNIFIED = "unified"
    PER_SOURCE = "perSource"


class RefreshStage(Enum):
    IDLE = "idle"
    INITIALIZATION = "initialization"
    DEPENDENCIES = "dependencies"
    SOURCES = "sources"
    METRICS = "metrics"
    SENSITIVITY = "sensitivity"
    COMPLETE = "complete"


_SOURCE_TYPE_ORDER = {SourceType.DIRECT: 1, SourceType.INDIRECT: 2, SourceType.VIRTUAL: 3}
_METRIC_TYPE_ORDER = {MetricType.DIRECT: 1, MetricType.INDIRECT: 2}


def log_contract_definitions():
    """
    Called once when an engine starts. Lists every contract the registries are
    validated against so the accepted values are visible in the run log.
    """
    contracts_logger.info("--- [Contracts] Cube contracts defined and ready for registry validation. ---")

    all_contracts = {
        "Source Types": SourceType,
        "Metric Types": MetricType,
        "Dependency Types": DependencyType,
        "Multiplier Operations": MultiplierOperation,
        "Aggregation Operations": AggregationOperation,
        "Percentile Strategies": PercentileStrategy,
        "Refresh Stages": RefreshStage,
    }

    for name, contract_enum in all_contracts.items():
        members = [member.value for member in contract_enum]
        contracts_logger.info(f"  -> Recognized {name}: {members}")

    contracts_logger.info("--- [Contracts] Engines will now enforce these contracts during execution. ---")
