import pytest

from windcube.errors import DependencyResolutionError
from windcube.models import MetricRegistry, SourceRegistry
from windcube.scenario import ScenarioDocument
from windcube.sensitivity import (
    TORNADO_COLUMNS,
    calculate_multi_metric_sensitivity,
    calculate_tornado,
    default_percentile_range,
    pin_variable,
    sensitivity_variables,
    tornado_frame,
    tornado_statistics,
)

from conftest import sim_results


@pytest.fixture
def document():
    return ScenarioDocument({
        "inputs": {
            "volume": sim_results({10: 1.0, 50: 2.0, 90: 3.0}),
            "price": sim_results({10: 15.0, 50: 20.0, 90: 25.0}),
            "wind": sim_results({10: 5.0, 50: 6.0}),
        }
    })


@pytest.fixture
def source_registry():
    return SourceRegistry(sources=[
        {"id": "volume", "priority": 1, "path": ["inputs", "volume"], "has_percentiles": True,
         "metadata": {"type": "direct", "name": "Volume", "category": "energy"}},
        {"id": "price", "priority": 2, "path": ["inputs", "price"], "has_percentiles": True,
         "metadata": {"type": "direct", "name": "Price", "category": "pricing"}},
        {"id": "wind", "priority": 3, "path": ["inputs", "wind"], "has_percentiles": True,
         "metadata": {"type": "direct"}},
        {"id": "revenue", "path": ["inputs", "volume"], "has_percentiles": True,
         "multipliers": [{"id": "price", "operation": "multiply"}], "metadata": {"type": "indirect"}},
    ])


@pytest.fixture
def metric_registry():
    return MetricRegistry(metrics=[{
        "id": "totalRevenue",
        "dependencies": [{"id": "revenue", "type": "source"}],
        "aggregations": [{"source_id": "revenue", "operation": "sum", "output_key": "total"}],
        "metadata": {"type": "direct", "sensitivity": {"enabled": True}},
    }])


def test_default_percentile_range():
    assert default_percentile_range([90, 10, 50]) == (10, 50, 90)
    assert default_percentile_range([10, 25, 50, 75], base=50) == (10, 50, 75)
    assert default_percentile_range([10, 25, 75, 90]) == (10, 25, 90)


def test_variables_are_distinct_paths(source_registry):
    assert [item.id for item in sensitivity_variables(source_registry)] == ["volume", "price", "wind"]
    assert [item.id for item in sensitivity_variables(source_registry, ["volume"])] == ["price", "wind", "revenue"]


def test_pin_variable_only_replaces_its_path(document):
    low = document.get_value_by_path(["inputs", "volume"])[0]
    pinned = pin_variable(document.get_value_by_path, ["inputs", "volume"], low, 50)

    series = pinned("inputs.volume")
    assert len(series) == 1
    assert series[0].percentile.value == 50
    assert series[0].data[0].value == 1.0
    assert series[0].metadata == {"pinned_from": 10}
    assert pinned(["inputs", "price"]) == document.get_value_by_path(["inputs", "price"])


def test_tornado_ranks_by_impact(document, source_registry, metric_registry):
    results = calculate_tornado(
        "totalRevenue", source_registry, metric_registry, document.get_value_by_path, [10, 50, 90]
    )

    assert [result.variable_id for result in results] == ["volume", "price"]
    volume, price = results
    assert volume.base_value == 200.0
    assert (volume.low_value, volume.high_value) == (100.0, 300.0)
    assert volume.impact == 200.0
    assert volume.percent_spread == pytest.approx(100.0)
    assert (price.low_value, price.high_value, price.impact) == (150.0, 250.0, 100.0)
    assert price.percent_spread == pytest.approx(50.0)
    assert volume.variable == "Volume" and volume.category == "energy"
    assert volume.percentile_range == {"lower": 10, "base": 50, "upper": 90, "confidence_interval": 80}
    assert volume.variable_values == {"low": 1.0, "base": 2.0, "high": 3.0}


def test_tornado_reads_bare_integer_percentiles(document, source_registry, metric_registry):
    volume = document.get_value_by_path(["inputs", "volume"])
    document.set_value_by_path(
        ["inputs", "volume"], [{**sim, "percentile": sim["percentile"]["value"]} for sim in volume]
    )
    results = calculate_tornado(
        "totalRevenue", source_registry, metric_registry, document.get_value_by_path, [10, 50, 90]
    )

    by_variable = {result.variable_id: result for result in results}
    assert (by_variable["volume"].low_value, by_variable["volume"].high_value) == (100.0, 300.0)
    assert by_variable["volume"].variable_values == {"low": 1.0, "base": 2.0, "high": 3.0}


def test_variables_missing_a_percentile_are_skipped(document, source_registry, metric_registry, caplog):
    results = calculate_tornado(
        "totalRevenue", source_registry, metric_registry, document.get_value_by_path, [10, 50, 90]
    )
    assert "wind" not in [result.variable_id for result in results]
    assert "Missing percentile data for variable 'wind'" in caplog.text


def test_excluded_sources_are_not_swung(document, source_registry):
    metric_registry = MetricRegistry(metrics=[{
        "id": "totalRevenue",
        "dependencies": [{"id": "revenue", "type": "source"}],
        "aggregations": [{"source_id": "revenue", "operation": "sum", "output_key": "total"}],
        "metadata": {"type": "direct", "sensitivity": {"enabled": True, "exclude_sources": ["price"]}},
    }])
    results = calculate_tornado("totalRevenue", source_registry, metric_registry, document.get_value_by_path, [10, 50, 90])
    assert [result.variable_id for result in results] == ["volume"]


def test_unknown_metric(document, source_registry, metric_registry):
    with pytest.raises(DependencyResolutionError):
        calculate_tornado("ghost", source_registry, metric_registry, document.get_value_by_path, [10, 50, 90])

    results = calculate_multi_metric_sensitivity(
        ["totalRevenue", "ghost"], source_registry, metric_registry, document.get_value_by_path, [10, 50, 90]
    )
    assert results["ghost"] == []
    assert len(results["totalRevenue"]) == 2


def test_tornado_frame(document, source_registry, metric_registry):
    results = calculate_tornado(
        "totalRevenue", source_registry, metric_registry, document.get_value_by_path, [10, 50, 90], rank_by="percent"
    )
    df = tornado_frame(results)

    assert list(df.columns) == TORNADO_COLUMNS
    assert df["rank"].tolist() == [1, 2]
    assert df["low_delta"].tolist() == [-100.0, -50.0]
    assert df["high_delta"].tolist() == [100.0, 50.0]
    assert tornado_frame([]).empty


def test_tornado_statistics(document, source_registry, metric_registry):
    results = calculate_multi_metric_sensitivity(
        ["totalRevenue"], source_registry, metric_registry, document.get_value_by_path, [10, 50, 90]
    )
    summary = tornado_statistics(results)
    assert summary == {"total_rankings": 2, "avg_impact": 150.0, "max_impact": 200.0, "significant_inputs": 2}
    assert tornado_statistics(results, threshold=0.6)["significant_inputs"] == 1
    assert tornado_statistics([])["total_rankings"] == 0
