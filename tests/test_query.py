import pytest

from windcube.models import AuditSummary, ComputedMetricRecord, SourceRegistry
from windcube.query import CubeStore

from conftest import source_record


@pytest.fixture
def store(make_store):
    revenue = source_record("revenue", {10: 1.0, 50: 2.0}, years=[1, 2], cashflow_group="revenue", name="Revenue")
    fees = source_record("fees", {10: 5.0, 50: 6.0}, years=[1], cashflow_group="cost")
    repairs = source_record("repairs", {50: 7.0}, years=[3], cashflow_group="cost")
    cube = make_store(revenue, fees, repairs)
    cube.set_metrics([
        ComputedMetricRecord(
            id="irr",
            percentile_metrics=[
                {"percentile": 10, "value": 4.0, "stats": {"n": 1}},
                {"percentile": 50, "value": 8.0, "stats": {}},
            ],
            metadata={"type": "direct"},
        )
    ])
    return cube


def test_get_data_requires_a_selector(store):
    with pytest.raises(ValueError, match="requires either source_id, source_ids, or percentile"):
        store.get_data()


def test_get_data_by_source_id(store):
    data = store.get_data(source_id="revenue")
    assert sorted(data) == [10, 50]
    assert data[50].data == [{"year": 1, "value": 2.0}, {"year": 2, "value": 2.0}]
    assert data[50].metadata.name == "Revenue"
    assert store.get_data(source_id="ghost") == {}


def test_get_data_by_source_ids_concatenates(store):
    data = store.get_data(source_ids=["fees", "repairs"])
    assert data[10].data == [{"year": 1, "value": 5.0}]
    assert data[50].data == [{"year": 1, "value": 6.0}, {"year": 3, "value": 7.0}]
    assert [meta.cashflow_group for meta in data[50].metadata["sources"]] == ["cost", "cost"]


def test_get_data_by_percentile_with_metadata_filter(store):
    data = store.get_data(percentile=10, metadata={"cashflow_group": "cost"})
    assert list(data) == ["fees"]
    assert store.get_data(percentile=50, metadata={"cashflow_group": "cost"}).keys() == {"fees", "repairs"}


def test_get_source_data_facade(store):
    assert store.get_source_data({"source_id": "fees"})[50].data == [{"year": 1, "value": 6.0}]


def test_get_source_metadata(store):
    assert store.get_source_metadata(source_id="fees")["fees"]["cashflow_group"] == "cost"
    assert set(store.get_source_metadata(metadata={"cashflow_group": "cost"})) == {"fees", "repairs"}
    with pytest.raises(ValueError):
        store.get_source_metadata()


def test_get_source_metadata_reads_the_registry_before_any_refresh():
    registry = SourceRegistry(sources=[{"id": "price", "path": ["p"], "metadata": {"type": "direct", "name": "Price"}}])
    metadata = CubeStore(source_registry=registry).get_source_metadata(source_ids=["price"])
    assert metadata["price"]["name"] == "Price"


def test_get_audit_trail(store):
    trails = store.get_audit_trail(["fees", "ghost"])
    assert isinstance(trails["fees"], AuditSummary)
    assert trails["ghost"] is None
    assert store.get_audit_trail([]) == {}
    assert set(store.get_audit_trail()) == {"revenue", "fees", "repairs"}


def test_get_metric(store):
    assert store.get_metric() == {"irr": {10: {"value": 4.0, "stats": {"n": 1}}, 50: {"value": 8.0, "stats": {}}}}
    assert store.get_metric(percentile=50) == {"irr": {50: {"value": 8.0, "stats": {}}}}
    assert store.get_metric(metric_ids=["ghost"]) == {}
    assert store.get_metric(percentile=90) == {}
    assert CubeStore().get_metric() == {}


def test_cube_status(store):
    status = store.get_cube_status()
    assert status["source_data_count"] == 3
    assert status["metrics_data_count"] == 1
    assert status["sensitivity_data_count"] == 0
    assert status["last_refresh"] is None
