import pytest

from windcube.errors import ReferenceLoadError
from windcube.models import ReferenceItem
from windcube.references import load_reference, load_references, merge_references
from windcube.scenario import ScenarioDocument


@pytest.fixture
def document():
    return ScenarioDocument({"settings": {"general": {"projectLife": 20, "currency": "EUR"}}})


def test_load_reference_wraps_missing_paths(document):
    with pytest.raises(ReferenceLoadError, match="'life'"):
        load_reference(ReferenceItem(id="life", path=["settings", "life"]), document.get_value_by_path)


def test_failed_references_are_counted_and_kept_as_none(document):
    values, errors = load_references(
        [
            ReferenceItem(id="projectLife", path=["settings", "general", "projectLife"]),
            ReferenceItem(id="missing", path=["settings", "nothing"]),
        ],
        document.get_value_by_path,
    )
    assert values == {"projectLife": 20, "missing": None}
    assert errors == 1


def test_local_references_win():
    assert merge_references({"currency": "USD", "life": 20}, {"currency": "EUR"}) == {"currency": "EUR", "life": 20}
