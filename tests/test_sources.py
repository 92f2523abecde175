import pytest

from windcube.errors import CubeComputationError, DependencyResolutionError
from windcube.models import MultiplierConfig, PercentileInfo, SourceRegistry, SourceRegistryItem
from windcube.normalization import normalize_source_data
from windcube.scenario import ScenarioDocument
from windcube.sources import (
    SourceEngine,
    add_custom_percentile_data,
    apply_multiplier,
    compute_source_data,
    create_value_lookup,
    find_multiplier_values,
    validate_source_type,
)

from conftest import sim_results


def _values(record, percentile):
    return [point.value for point in record.for_percentile(percentile).data]


def _by_id(records):
    return {record.id: record for record in records}


@pytest.fixture
def document():
    return ScenarioDocument({
        "settings": {"escalation": 0.02, "factor": 3},
        "inputs": {
            "fees": [{"year": year, "value": 100.0} for year in (1, 2, 3)],
            "price": sim_results({10: 2.0, 50: 4.0}, years=(1, 2, 3)),
            "volume": sim_results({10: 10.0, 50: 20.0}, years=(1, 2, 3)),
        },
    })


def test_types_run_before_priorities():
    seen = []

    def recorder(source_id):
        def transformer(data, context):
            seen.append(source_id)
            return []
        return transformer

    registry = SourceRegistry(sources=[
        {"id": "virtual", "priority": 1, "transformer": recorder("virtual"), "metadata": {"type": "virtual"}},
        {"id": "indirect", "priority": 1, "path": ["x"], "transformer": recorder("indirect"),
         "multipliers": [{"id": "k", "operation": "multiply"}], "metadata": {"type": "indirect"}},
        {"id": "direct_late", "priority": 50, "path": ["x"], "transformer": recorder("direct_late"),
         "metadata": {"type": "direct"}},
        {"id": "direct_early", "priority": 5, "path": ["x"], "transformer": recorder("direct_early"),
         "metadata": {"type": "direct"}},
    ], references=[{"id": "k", "path": ["k"]}])

    compute_source_data(registry, [50], lambda path: 1)
    assert seen == ["direct_early", "direct_late", "indirect", "virtual"]


def test_compound_escalation_from_a_scalar_reference(document):
    registry = SourceRegistry(
        sources=[{
            "id": "fees",
            "path": ["inputs", "fees"],
            "multipliers": [{"id": "escalation", "operation": "compound", "base_year": 1}],
            "metadata": {"type": "indirect"},
        }],
        references=[{"id": "escalation", "path": ["settings", "escalation"]}],
    )
    records = compute_source_data(registry, [10, 50], document.get_value_by_path)

    fees = _by_id(records)["fees"]
    for percentile in (10, 50):
        assert _values(fees, percentile) == pytest.approx([100.0, 102.0, 104.04])


def test_multiply_by_a_percentile_series(document):
    registry = SourceRegistry(sources=[
        {"id": "price", "path": ["inputs", "price"], "has_percentiles": True, "metadata": {"type": "direct"}},
        {"id": "revenue", "path": ["inputs", "volume"], "has_percentiles": True,
         "multipliers": [{"id": "price", "operation": "multiply"}], "metadata": {"type": "indirect"}},
    ])
    revenue = _by_id(compute_source_data(registry, [10, 50], document.get_value_by_path))["revenue"]

    assert _values(revenue, 10) == [20.0, 20.0, 20.0]
    assert _values(revenue, 50) == [80.0, 80.0, 80.0]
    assert [entry.step for entry in revenue.audit.trail if entry.step == "apply_multiplier"] == ["apply_multiplier"]


def test_simple_and_summation_operations():
    series = [{"percentile": 50, "data": [{"year": 1, "value": 10.0}, {"year": 3, "value": 10.0}]}]
    sims = normalize_source_data(series, [50])
    lookup = create_value_lookup(0.1, {}, "rate")

    simple = apply_multiplier(sims, MultiplierConfig(id="rate", operation="simple"), lookup)
    assert [p.value for p in simple[0].data] == pytest.approx([10.0, 12.0])

    summed = apply_multiplier(sims, MultiplierConfig(id="rate", operation="summation"), lookup)
    assert [p.value for p in summed[0].data] == pytest.approx([10.1, 10.1])


def test_missing_multiplier_value_leaves_point_unchanged():
    sims = [{"percentile": 50, "data": [{"year": 1, "value": 5.0}, {"year": 2, "value": 5.0}]}]
    lookup = create_value_lookup([{"year": 1, "value": 0.0}], {}, "m")

    adjusted = apply_multiplier(normalize_source_data(sims, [50]), MultiplierConfig(id="m", operation="multiply"), lookup)
    # zero is a real multiplier value, a missing year is not
    assert [p.value for p in adjusted[0].data] == [0.0, 5.0]


def test_multiplier_filter_skips_points():
    sims = [{"percentile": 50, "data": [{"year": 0, "value": 5.0}, {"year": 1, "value": 5.0}]}]
    config = MultiplierConfig(id="m", operation="multiply", filter=lambda year, value, percentile: year > 0)

    adjusted = apply_multiplier(normalize_source_data(sims, [50]), config, create_value_lookup(2, {}, "m"))
    assert [p.value for p in adjusted[0].data] == [5.0, 10.0]


def test_failing_sources_do_not_stop_the_run(document):
    registry = SourceRegistry(sources=[
        {"id": "missing_path", "path": ["inputs", "nothing"], "metadata": {"type": "direct"}},
        {"id": "missing_multiplier", "path": ["inputs", "fees"],
         "multipliers": [{"id": "ghost", "operation": "multiply"}], "metadata": {"type": "indirect"}},
        {"id": "virtual_with_path", "path": ["inputs", "fees"], "transformer": lambda d, c: d,
         "metadata": {"type": "virtual"}},
        {"id": "fees", "path": ["inputs", "fees"], "metadata": {"type": "direct"}},
    ])
    engine = SourceEngine(registry, [50], document.get_value_by_path)
    records = engine.run()

    assert [record.id for record in records] == ["fees"]
    assert engine.stats.error_count == 3
    assert set(engine.stats.failed_ids) == {"missing_path", "missing_multiplier", "virtual_with_path"}


def test_unknown_multiplier_operation_fails_the_source(document):
    bogus = MultiplierConfig.model_construct(id="escalation", operation="bogus", base_year=1, filter=None)
    item = SourceRegistryItem(
        id="fees", path=["inputs", "fees"], multipliers=[bogus], metadata={"type": "indirect"}
    )
    engine = SourceEngine(
        SourceRegistry(sources=[item], references=[{"id": "escalation", "path": ["settings", "escalation"]}]),
        [50],
        document.get_value_by_path,
    )
    assert engine.run() == []
    assert engine.stats.failed_ids == ["fees"]

    with pytest.raises(CubeComputationError, match="Unknown multiplier operation"):
        apply_multiplier([], bogus, lambda year, percentile: 1.0)


def test_multiplier_lookup_errors():
    with pytest.raises(DependencyResolutionError):
        find_multiplier_values("ghost", [], {})
    with pytest.raises(CubeComputationError):
        create_value_lookup({"not": "a series"}, {}, "m")


def test_custom_percentile_adds_a_zero_series(document):
    info = PercentileInfo(available=[10, 50], selected=50, primary=50, strategy="perSource", custom={"price": 10})
    registry = SourceRegistry(sources=[
        {"id": "price", "path": ["inputs", "price"], "has_percentiles": True, "metadata": {"type": "direct"}},
    ])
    price = compute_source_data(registry, info, document.get_value_by_path)[0]

    assert sorted(sim.percentile.value for sim in price.percentile_source) == [0, 10, 50]
    assert _values(price, 0) == _values(price, 10)
    assert price.for_percentile(0).metadata == {"custom_percentile": 10}


def test_custom_percentile_lookup_for_multipliers():
    values = sim_results({10: 2.0, 50: 4.0}, years=(1,))
    lookup = create_value_lookup(values, {"price": 10}, "price")
    assert lookup(1, 0) == 2.0
    assert lookup(1, 50) == 4.0
    assert lookup(2, 50) is None


def test_bare_integer_percentiles_are_read_everywhere(document):
    document.set_value_by_path(
        ["inputs", "index"], [{"percentile": 50, "data": [{"year": year, "value": 2.0} for year in (1, 2, 3)]}]
    )
    registry = SourceRegistry(
        sources=[{
            "id": "fees",
            "path": ["inputs", "fees"],
            "multipliers": [{"id": "index", "operation": "multiply"}],
            "metadata": {"type": "indirect"},
        }],
        references=[{"id": "index", "path": ["inputs", "index"]}],
    )
    fees = compute_source_data(registry, [50], document.get_value_by_path)[0]
    assert _values(fees, 50) == [200.0, 200.0, 200.0]

    raw = [{"percentile": 10, "data": [{"year": 1, "value": 7.0}]}, {"percentile": 50, "data": []}]
    with_custom = add_custom_percentile_data(raw, "fees", {"fees": 10})
    assert with_custom[-1].percentile.value == 0
    assert [point.value for point in with_custom[-1].data] == [7.0]


def test_local_references_override_global(document):
    seen = {}

    def transformer(data, context):
        seen.update(context.all_references)
        return data

    registry = SourceRegistry(
        sources=[{
            "id": "fees", "path": ["inputs", "fees"], "transformer": transformer,
            "references": [{"id": "factor", "path": ["settings", "escalation"]}],
            "metadata": {"type": "direct"},
        }],
        references=[{"id": "factor", "path": ["settings", "factor"]}, {"id": "broken", "path": ["nope"]}],
    )
    engine = SourceEngine(registry, [50], document.get_value_by_path)
    engine.run()

    assert seen["factor"] == 0.02
    assert seen["broken"] is None
    assert engine.stats.reference_errors == 1


def test_validate_source_type_rules():
    def item(**kwargs):
        return SourceRegistryItem(id="s", **kwargs)

    assert validate_source_type(item(path=["a"], metadata={"type": "direct"})) is None
    assert "require a path" in validate_source_type(item(metadata={"type": "direct"}))
    assert "multiplier" in validate_source_type(item(path=["a"], metadata={"type": "indirect"}))
    assert "transformer" in validate_source_type(item(metadata={"type": "virtual"}))
