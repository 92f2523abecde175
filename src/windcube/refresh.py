import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from windcube import config
from windcube.contracts import PercentileStrategy, RefreshStage
from windcube.errors import CubeRefreshError, DependencyResolutionError
from windcube.metrics import compute_metrics_data
from windcube.models import MetricRegistry, PercentileInfo, SourceRegistry
from windcube.query import CubeStore
from windcube.scenario import ScenarioDocument
from windcube.sensitivity import calculate_multi_metric_sensitivity
from windcube.sources import compute_source_data
from windcube.utils import field_of

logger = logging.getLogger(__name__)

_NEXT_STAGE = {
    RefreshStage.INITIALIZATION: RefreshStage.DEPENDENCIES,
    RefreshStage.DEPENDENCIES: RefreshStage.SOURCES,
    RefreshStage.SOURCES: RefreshStage.METRICS,
    RefreshStage.METRICS: RefreshStage.SENSITIVITY,
    RefreshStage.SENSITIVITY: RefreshStage.COMPLETE,
    RefreshStage.COMPLETE: RefreshStage.IDLE,
}


def read_available_percentiles(scenario: ScenarioDocument) -> list:
    """Percentiles configured in the scenario, as sorted ints. Items may be ints or `{'value': int}`."""
    configured = scenario.get_value_by_path(config.PERCENTILES_PATH, default=None) or []
    available = []
    for item in configured:
        value = field_of(item, "value") if isinstance(item, dict) else item
        if value is not None:
            available.append(int(value))
    return sorted(available) if available else sorted(config.DEFAULT_PERCENTILES)


class CubeRefresher:
    """
    Headless refresh state machine for one scenario.

    idle -> initialization -> dependencies -> sources -> metrics ->
    sensitivity -> complete -> idle

    Each `step()` runs the current stage and moves on. Output is built in a
    pending store and only published at `complete`. A failing stage clears
    the store, records the error and returns the machine to idle.
    """

    def __init__(
        self,
        scenario: ScenarioDocument,
        source_registry: SourceRegistry,
        metric_registry: MetricRegistry,
        run_sensitivity: bool = config.SENSITIVITY_ON_REFRESH,
    ):
        self.scenario = scenario
        self.source_registry = source_registry
        self.metric_registry = metric_registry
        self.run_sensitivity = run_sensitivity

        self.stage = RefreshStage.IDLE
        self.refresh_requested = False
        self.is_loading = False
        self.error: Optional[str] = None
        self.last_exception: Optional[CubeRefreshError] = None
        self.percentile_info: Optional[PercentileInfo] = None
        self.store: Optional[CubeStore] = None
        self._pending: Optional[CubeStore] = None
        self._force_initialization = False

        self._stage_handlers: Dict[RefreshStage, Callable[[], None]] = {
            RefreshStage.INITIALIZATION: self._run_initialization,
            RefreshStage.DEPENDENCIES: self._run_dependencies,
            RefreshStage.SOURCES: self._run_sources,
            RefreshStage.METRICS: self._run_metrics,
            RefreshStage.SENSITIVITY: self._run_sensitivity,
            RefreshStage.COMPLETE: self._run_complete,
        }

    # =====================================================================
    # CONTROL
    # =====================================================================
    def request_refresh(self, force: bool = False) -> bool:
        """Starts a refresh. Refused while one is in flight, unless forced."""
        if self.refresh_requested and not force:
            logger.info("[Refresh] Refresh already in progress, skipping...")
            return False

        logger.info("[Refresh] Starting cube data refresh...")
        self.refresh_requested = True
        self.is_loading = True
        self.error = None
        self.last_exception = None
        self._pending = None
        self._force_initialization = force
        self.stage = RefreshStage.INITIALIZATION
        return True

    def step(self) -> RefreshStage:
        """Runs the current stage and returns the stage the machine moved to."""
        if not self.refresh_requested or self.stage is RefreshStage.IDLE:
            return self.stage

        stage = self.stage
        try:
            self._stage_handlers[stage]()
        except Exception as e:
            self._fail(stage, e)
            return self.stage

        if self.refresh_requested:
            self.stage = _NEXT_STAGE[stage]
        return self.stage

    def run(self) -> Optional[CubeStore]:
        """Steps until the machine is idle again. Returns the published store, None after a failure."""
        while self.refresh_requested and self.stage is not RefreshStage.IDLE:
            self.step()
        return self.store

    def cancel(self) -> bool:
        """Abandons the in-flight refresh. The last published store is kept."""
        if not self.refresh_requested:
            return False
        logger.warning(f"[Refresh] Refresh cancelled at {self.stage.value} stage.")
        self._pending = None
        self._reset()
        return True

    # =====================================================================
    # STAGES
    # =====================================================================
    def _run_initialization(self) -> None:
        logger.info("[Refresh] Stage 1 - Initializing percentile info...")
        self.percentile_info = self._load_or_create_percentile_info(force=self._force_initialization)
        self._pending = CubeStore(
            percentile_info=self.percentile_info,
            source_registry=self.source_registry,
            version=self.scenario.version,
        )

    def _run_dependencies(self) -> None:
        logger.info("[Refresh] Checking dependencies...")
        missing = [
            item.id
            for item in self.source_registry.sources
            if item.has_percentiles and item.path and not self.scenario.has_path(item.path)
        ]
        if missing:
            raise DependencyResolutionError(
                f"Distributions not complete - missing required distribution data for: {missing}"
            )
        logger.info("[Refresh] Dependencies validated.")

    def _run_sources(self) -> None:
        logger.info("[Refresh] Stage 2 - Computing source data...")
        self._pending.set_sources(
            compute_source_data(self.source_registry, self.percentile_info, self.scenario.get_value_by_path)
        )

    def _run_metrics(self) -> None:
        logger.info("[Refresh] Stage 3 - Computing metrics data...")
        metrics = compute_metrics_data(
            self.metric_registry, self.percentile_info, self.scenario.get_value_by_path, self._pending.get_source_data
        )
        self._pending.set_metrics(metrics)
        logger.info(f"[Refresh] {len(metrics)} metrics computed successfully.")

    def _run_sensitivity(self) -> None:
        if not self.run_sensitivity:
            logger.info("[Refresh] Stage 4 - Sensitivity analysis disabled, skipping.")
            return
        metric_ids = [item.id for item in self.metric_registry.metrics if item.metadata.sensitivity.enabled]
        logger.info(f"[Refresh] Stage 4 - Computing sensitivity for {len(metric_ids)} metric(s)...")
        self._pending.sensitivity = calculate_multi_metric_sensitivity(
            metric_ids,
            self.source_registry,
            self.metric_registry,
            self.scenario.get_value_by_path,
            self.percentile_info,
        )

    def _run_complete(self) -> None:
        self._pending.last_refresh = datetime.now()
        self.store = self._pending
        self._pending = None
        self._reset()
        logger.info("[Refresh] All cube data refreshed successfully.")

    # =====================================================================
    # PERCENTILES
    # =====================================================================
    def _load_or_create_percentile_info(self, force: bool = False) -> PercentileInfo:
        if not force:
            existing = self.scenario.get_value_by_path(config.PERCENTILE_DATA_PATH, default=None)
            if existing:
                logger.info("[Refresh] Loaded existing percentile data from scenario.")
                return PercentileInfo.model_validate(existing)

        available = read_available_percentiles(self.scenario)
        info = PercentileInfo.from_percentiles(available)
        info = info.model_copy(update={
            "custom": {item.id: info.primary for item in self.source_registry.sources if item.has_percentiles},
            "strategy": PercentileStrategy.UNIFIED,
        })
        self.scenario.set_value_by_path(config.PERCENTILE_DATA_PATH, info.model_dump(mode="json"))
        logger.info(f"[Refresh] {'Force created' if force else 'Initialized'} percentile data: P{info.available}")
        return info

    def update_percentile_info(self, **changes: Any) -> PercentileInfo:
        """
        Merges `changes` into the current percentile info (custom mappings are
        merged per source) and persists the result into the scenario.
        """
        current = self.percentile_info or self._load_or_create_percentile_info()
        merged = current.model_dump()
        if "custom" in changes:
            merged["custom"] = {**merged["custom"], **(changes.pop("custom") or {})}
        merged.update(changes)

        updated = PercentileInfo.model_validate(merged)
        self.scenario.set_value_by_path(config.PERCENTILE_DATA_PATH, updated.model_dump(mode="json"))
        self.percentile_info = updated
        logger.info(f"[Refresh] Updated percentile info: {sorted(merged)}")
        return updated

    # =====================================================================
    # STATUS
    # =====================================================================
    def get_cube_status(self) -> Dict[str, Any]:
        status = self.store.get_cube_status() if self.store is not None else CubeStore().get_cube_status()
        status.update({
            "is_loading": self.is_loading,
            "refresh_requested": self.refresh_requested,
            "refresh_stage": self.stage.value if self.refresh_requested else RefreshStage.IDLE.value,
            "error": self.error,
            "is_data_out_of_date": self.store is not None and self.store.version != self.scenario.version,
        })
        return status

    def _fail(self, stage: RefreshStage, cause: Exception) -> None:
        refresh_error = CubeRefreshError(stage.value, cause)
        logger.error(f"[Refresh] {refresh_error}")
        self.error = str(refresh_error)
        self.last_exception = refresh_error
        self.store = None
        self._pending = None
        self._reset()

    def _reset(self) -> None:
        self.is_loading = False
        self.refresh_requested = False
        self.stage = RefreshStage.IDLE
