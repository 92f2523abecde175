import copy

import pytest

from windcube.models import ComputedSourceRecord, SimResult, SourceMetadata
from windcube.query import CubeStore
from windcube.scenario import ScenarioDocument

PERCENTILES = [10, 50, 90]
PROJECT_YEARS = [1, 2, 3, 4, 5]


def sim_results(values_by_percentile, years=PROJECT_YEARS):
    """A flat `{year: value}` series per percentile, in the shape the simulation stores."""
    return [
        {"percentile": {"value": percentile}, "data": [{"year": year, "value": value} for year in years]}
        for percentile, value in values_by_percentile.items()
    ]


def source_record(source_id, values_by_percentile, years=PROJECT_YEARS, **metadata):
    metadata.setdefault("type", "direct")
    return ComputedSourceRecord(
        id=source_id,
        percentile_source=[SimResult.model_validate(sim) for sim in sim_results(values_by_percentile, years)],
        metadata=SourceMetadata(**metadata),
    )


WIND_SCENARIO = {
    "settings": {
        "general": {"projectLife": 5},
        "project": {
            "windFarm": {"numWTGs": 2},
            "currency": {"local": "USD"},
        },
        "simulation": {"percentiles": [{"value": 10}, {"value": 50}, {"value": 90}]},
        "modules": {
            "financing": {
                "debtFinancingRatio": 70,
                "costOfOperationalDebt": 5,
                "loanDuration": 3,
                "gracePeriod": 0,
                "costOfEquity": 8,
            },
            "cost": {
                "constructionPhase": {
                    "costSources": [
                        {
                            "name": "Turbines",
                            "totalAmount": 1_000_000,
                            "drawdownSchedule": [{"year": -1, "value": 40}, {"year": 0, "value": 60}],
                        }
                    ]
                },
                "majorRepairEvents": [{"year": 3, "cost": 50_000, "probability": 50}],
            },
            "risk": {"reserveFunds": 50_000},
            "contracts": {
                "oemContracts": [{"name": "Full service", "years": PROJECT_YEARS, "fixedFee": 10_000, "isPerTurbine": True}]
            },
        },
    },
    "simulation": {
        "inputSim": {
            "distributionAnalysis": {
                "energyProduction": {"results": sim_results({10: 8_000, 50: 10_000, 90: 12_000})},
                "electricityPrice": {"results": sim_results({10: 40, 50: 50, 90: 60})},
                "escalationRate": {"results": sim_results({10: 0.01, 50: 0.02, 90: 0.03})},
            }
        }
    },
}


@pytest.fixture
def wind_scenario():
    return ScenarioDocument(copy.deepcopy(WIND_SCENARIO))


@pytest.fixture
def make_store():
    def _make_store(*records):
        return CubeStore(sources=records)

    return _make_store
