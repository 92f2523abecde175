import pytest

from windcube import config
from windcube.contracts import PercentileStrategy, RefreshStage
from windcube.errors import CubeRefreshError
from windcube.refresh import CubeRefresher, read_available_percentiles
from windcube.registries import build_metric_registry, build_source_registry
from windcube.scenario import ScenarioDocument


@pytest.fixture
def refresher(wind_scenario):
    return CubeRefresher(wind_scenario, build_source_registry(), build_metric_registry(), run_sensitivity=False)


def test_stages_advance_one_step_at_a_time(refresher):
    assert refresher.step() is RefreshStage.IDLE
    assert refresher.request_refresh()
    assert refresher.stage is RefreshStage.INITIALIZATION
    assert refresher.is_loading

    expected = [
        RefreshStage.DEPENDENCIES,
        RefreshStage.SOURCES,
        RefreshStage.METRICS,
        RefreshStage.SENSITIVITY,
        RefreshStage.COMPLETE,
    ]
    for stage in expected:
        assert refresher.step() is stage
        # nothing is published before the refresh completes
        assert refresher.store is None

    assert refresher.step() is RefreshStage.IDLE
    assert refresher.store is not None
    assert refresher.store.last_refresh is not None
    assert not refresher.is_loading
    assert refresher.error is None


def test_refresh_in_flight_is_not_restarted(refresher):
    assert refresher.request_refresh()
    refresher.step()
    assert not refresher.request_refresh()
    assert refresher.stage is RefreshStage.DEPENDENCIES
    assert refresher.request_refresh(force=True)
    assert refresher.stage is RefreshStage.INITIALIZATION


def test_failing_stage_clears_the_store(wind_scenario):
    refresher = CubeRefresher(wind_scenario, build_source_registry(), build_metric_registry(), run_sensitivity=False)
    refresher.request_refresh()
    assert refresher.run() is not None

    del wind_scenario.data["simulation"]["inputSim"]["distributionAnalysis"]["electricityPrice"]
    refresher.request_refresh()
    assert refresher.run() is None

    assert refresher.error.startswith(
        "Failed to refresh cube data at dependencies stage: Distributions not complete"
    )
    assert "electricityPrice" in refresher.error
    assert isinstance(refresher.last_exception, CubeRefreshError)
    assert refresher.last_exception.stage == "dependencies"
    assert refresher.stage is RefreshStage.IDLE
    assert not refresher.is_loading
    assert not refresher.refresh_requested


def test_cancel_keeps_the_published_store(refresher):
    assert not refresher.cancel()
    refresher.request_refresh()
    published = refresher.run()

    refresher.request_refresh()
    refresher.step()
    refresher.step()
    assert refresher.cancel()
    assert refresher.store is published
    assert refresher.stage is RefreshStage.IDLE


def test_percentile_info_is_persisted_and_reused(refresher, wind_scenario):
    refresher.request_refresh()
    refresher.run()

    saved = wind_scenario.get_value_by_path(config.PERCENTILE_DATA_PATH)
    assert saved["available"] == [10, 50, 90]
    assert saved["primary"] == 50
    assert saved["strategy"] == "unified"
    assert saved["custom"] == {"escalationRate": 50, "electricityPrice": 50, "energyProduction": 50, "energyRevenue": 50}

    wind_scenario.set_value_by_path(config.PERCENTILE_DATA_PATH, {**saved, "selected": 90})
    refresher.request_refresh()
    refresher.run()
    assert refresher.percentile_info.selected == 90

    refresher.request_refresh(force=True)
    refresher.run()
    assert refresher.percentile_info.selected == 50


def test_update_percentile_info_merges_custom(refresher, wind_scenario):
    refresher.request_refresh()
    refresher.run()

    updated = refresher.update_percentile_info(custom={"electricityPrice": 10}, strategy=PercentileStrategy.PER_SOURCE)
    assert updated.custom["electricityPrice"] == 10
    assert updated.custom["energyProduction"] == 50
    assert updated.effective_percentiles == [10, 50, 90, 0]
    assert wind_scenario.get_value_by_path(config.PERCENTILE_DATA_PATH)["strategy"] == "perSource"


def test_custom_percentile_flows_through_a_refresh(refresher):
    refresher.request_refresh()
    refresher.run()
    refresher.update_percentile_info(custom={"electricityPrice": 90}, strategy=PercentileStrategy.PER_SOURCE)
    refresher.request_refresh()
    store = refresher.run()

    revenue = store.get_data(source_id="energyRevenue")
    # energy at P50, price at P90
    assert revenue[0].data[0]["value"] == pytest.approx(10_000 * 60)
    assert revenue[50].data[0]["value"] == pytest.approx(10_000 * 50)


def test_status_reports_stale_data(refresher, wind_scenario):
    status = refresher.get_cube_status()
    assert status["source_data_count"] == 0
    assert status["is_data_out_of_date"] is False

    refresher.request_refresh()
    refresher.run()
    status = refresher.get_cube_status()
    assert status["source_data_count"] == 17
    assert status["metrics_data_count"] == 10
    assert status["refresh_stage"] == "idle"
    assert status["is_data_out_of_date"] is False

    wind_scenario.set_value_by_path(["settings", "general", "projectLife"], 6)
    assert refresher.get_cube_status()["is_data_out_of_date"] is True


def test_sensitivity_stage_fills_the_store(wind_scenario):
    refresher = CubeRefresher(wind_scenario, build_source_registry(), build_metric_registry(), run_sensitivity=True)
    refresher.request_refresh()
    store = refresher.run()

    assert set(store.sensitivity) == {"projectIRR", "equityIRR", "projectNPV", "dscrMetrics", "lcoe"}
    assert store.get_cube_status()["sensitivity_data_count"] == 5
    variables = [result.variable_id for result in store.sensitivity["projectIRR"]]
    assert sorted(variables) == ["electricityPrice", "energyProduction", "escalationRate"]
    assert variables[-1] == "escalationRate"


def test_read_available_percentiles():
    assert read_available_percentiles(ScenarioDocument({"settings": {"simulation": {"percentiles": [90, {"value": 10}]}}})) == [10, 90]
    assert read_available_percentiles(ScenarioDocument({})) == sorted(config.DEFAULT_PERCENTILES)
