from windcube.audit import AuditTrail, extract_data_sample

from conftest import sim_results


def test_dependencies_are_normalized_to_lists():
    audit = AuditTrail("capexDrawdown")
    assert audit.add_audit_entry("start").dependencies == []
    assert audit.add_audit_entry("single", dependencies="financing").dependencies == ["financing"]
    assert audit.add_audit_entry("many", dependencies=("a", "b")).dependencies == ["a", "b"]


def test_data_sample_keeps_preferred_percentile():
    data = sim_results({10: 1.0, 50: 2.0, 90: 3.0})
    sample = extract_data_sample(data, 50)
    assert len(sample) == 1
    assert sample[0]["percentile"]["value"] == 50


def test_data_sample_falls_back_to_first_series():
    data = sim_results({10: 1.0, 90: 3.0})
    assert extract_data_sample(data, 50) == [data[0]]


def test_data_sample_of_other_shapes():
    points = [{"year": 1, "value": 5}, {"year": 2, "value": 6}]
    assert extract_data_sample(points, 50) == points
    assert extract_data_sample([{"name": "a"}, {"name": "b"}], 50) == {"name": "a"}
    assert extract_data_sample([], 50) is None
    assert extract_data_sample(42, 50) == 42


def test_sampling_can_be_disabled():
    audit = AuditTrail("energyRevenue", data_sampling_enabled=False)
    entry = audit.add_audit_entry("apply_multiplier", source_data=sim_results({50: 1.0}))
    assert entry.data_sample is None


def test_trail_durations_span_repeated_steps():
    audit = AuditTrail("totalCost")
    first = audit.add_audit_entry("apply_aggregation")
    audit.add_audit_entry("other")
    last = audit.add_audit_entry("apply_aggregation")

    trail = audit.get_trail()
    assert [entry.step for entry in trail] == ["apply_aggregation", "other", "apply_aggregation"]
    assert trail[0].duration == last.timestamp - first.timestamp
    assert trail[1].duration == 0
    # the recorded entries are left untouched
    assert audit.entries[0].duration is None


def test_references_are_limited_to_used_dependencies():
    audit = AuditTrail("contractFees")
    audit.add_audit_entry("apply_contract_fees_transformation", dependencies=["numWTGs"])
    references = {"numWTGs": 10, "projectLife": 25}
    assert audit.get_references(references) == {"numWTGs": 10}


def test_data_sample_reads_bare_integer_percentiles():
    data = [{"percentile": 10, "data": []}, {"percentile": 50, "data": [{"year": 1, "value": 2.0}]}]
    assert extract_data_sample(data, 50) == [data[1]]
