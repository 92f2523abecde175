from windcube import config
from windcube.models import (
    AggregationConfig,
    MetricDependency,
    MetricMetadata,
    MetricRegistry,
    MetricRegistryItem,
    OperationConfig,
    ReferenceItem,
    SensitivityConfig,
)
from windcube.transformers import metrics as metric_transformers
from windcube.transformers.common import financing_value
from windcube.transformers.financing import debt_terms

def tornado_sensitivity() -> SensitivityConfig:
    return SensitivityConfig(enabled=True, exclude_sources=["reserveFunds"], analyses=["tornado"])


def equity_discount_rate(references, metrics):
    return financing_value(references, "costOfEquity", config.DEFAULT_COST_OF_EQUITY) / 100


def construction_and_operations(year, value, references):
    return year >= 0


def operating_years(year, value, references):
    return year > 0


def loan_years(year, value, references):
    return 0 < year <= debt_terms(references)["tenor"]


def _source(source_id):
    return MetricDependency(id=source_id, type="source")


def _metric(metric_id):
    return MetricDependency(id=metric_id, type="metric")


def _percent(value):
    return f"{value:.2f}%"


def _ratio(value):
    return f"{value:.2f}x"


def build_metric_registry() -> MetricRegistry:
    """Financial KPIs of a wind farm, computed from the default source registry."""
    return MetricRegistry(
        references=[
            ReferenceItem(id="financing", path=["settings", "modules", "financing"]),
            ReferenceItem(id="projectLife", path=["settings", "general", "projectLife"]),
            ReferenceItem(id="currency", path=["settings", "project", "currency", "local"]),
        ],
        metrics=[
            MetricRegistryItem(
                id="npvCosts",
                priority=80,
                dependencies=[_source("totalCost")],
                aggregations=[
                    AggregationConfig(
                        source_id="totalCost",
                        operation="npv",
                        output_key="npv",
                        is_default=True,
                        parameters={"discount_rate": equity_discount_rate},
                        filter=construction_and_operations,
                    ),
                ],
                metadata=MetricMetadata(
                    type="direct",
                    name="NPV of Costs",
                    description="Total project costs discounted at the cost of equity",
                    units="currency",
                ),
            ),
            MetricRegistryItem(
                id="npvEnergy",
                priority=90,
                dependencies=[_source("energyProduction")],
                aggregations=[
                    AggregationConfig(
                        source_id="energyProduction",
                        operation="npv",
                        output_key="npv",
                        is_default=True,
                        parameters={"discount_rate": equity_discount_rate},
                        filter=operating_years,
                    ),
                ],
                metadata=MetricMetadata(
                    type="direct",
                    name="NPV of Energy",
                    description="Discounted energy production, the denominator of LCOE",
                    units="MWh",
                ),
            ),
            MetricRegistryItem(
                id="projectIRR",
                priority=100,
                dependencies=[_source("projectCashflow")],
                transformer=metric_transformers.project_irr,
                metadata=MetricMetadata(
                    type="direct",
                    name="Project IRR",
                    description="Internal rate of return of the unlevered project cash flow",
                    units="%",
                    formatter=_percent,
                    sensitivity=tornado_sensitivity(),
                ),
            ),
            MetricRegistryItem(
                id="equityIRR",
                priority=110,
                dependencies=[_source("equityCashflow")],
                transformer=metric_transformers.equity_irr,
                metadata=MetricMetadata(
                    type="direct",
                    name="Equity IRR",
                    description="Internal rate of return of the cash flow to equity",
                    units="%",
                    formatter=_percent,
                    sensitivity=tornado_sensitivity(),
                ),
            ),
            MetricRegistryItem(
                id="projectNPV",
                priority=120,
                dependencies=[_source("projectCashflow")],
                aggregations=[
                    AggregationConfig(
                        source_id="projectCashflow",
                        operation="npv",
                        output_key="npv",
                        is_default=True,
                        parameters={"discount_rate": equity_discount_rate},
                    ),
                ],
                metadata=MetricMetadata(
                    type="direct",
                    name="Project NPV",
                    description="Project cash flow discounted at the cost of equity",
                    units="currency",
                    formatter=lambda value: f"${value / 1_000_000:.1f}M",
                    sensitivity=tornado_sensitivity(),
                ),
            ),
            MetricRegistryItem(
                id="paybackPeriod",
                priority=130,
                dependencies=[_source("cumulativeCashflow")],
                transformer=metric_transformers.payback_period,
                metadata=MetricMetadata(
                    type="direct",
                    name="Payback Period",
                    description="Years until the cumulative project cash flow turns positive",
                    units="years",
                    formatter=lambda value: f"{value:.1f} years",
                ),
            ),
            MetricRegistryItem(
                id="dscrMetrics",
                priority=200,
                dependencies=[_source("dscr"), MetricDependency(id="financing", type="reference")],
                aggregations=[
                    AggregationConfig(
                        source_id="dscr", operation="min", output_key="min", is_default=True, filter=loan_years
                    ),
                    AggregationConfig(source_id="dscr", operation="max", output_key="max", filter=loan_years),
                    AggregationConfig(source_id="dscr", operation="mean", output_key="avg", filter=loan_years),
                ],
                metadata=MetricMetadata(
                    type="direct",
                    name="Minimum DSCR",
                    description="Debt service coverage over the loan tenor",
                    units="ratio",
                    formatter=_ratio,
                    sensitivity=tornado_sensitivity(),
                ),
            ),
            MetricRegistryItem(
                id="llcr",
                priority=210,
                dependencies=[_source("projectCashflow"), _source("debtService")],
                transformer=metric_transformers.llcr,
                metadata=MetricMetadata(
                    type="direct",
                    name="LLCR",
                    description="Loan life coverage ratio",
                    units="ratio",
                    formatter=_ratio,
                ),
            ),
            MetricRegistryItem(
                id="icr",
                priority=220,
                dependencies=[_source("projectCashflow"), _source("debtInterest")],
                transformer=metric_transformers.icr,
                metadata=MetricMetadata(
                    type="direct",
                    name="Minimum ICR",
                    description="Interest coverage ratio over the loan tenor",
                    units="ratio",
                    formatter=_ratio,
                ),
            ),
            MetricRegistryItem(
                id="lcoe",
                priority=250,
                dependencies=[_metric("npvCosts"), _metric("npvEnergy")],
                transformer=metric_transformers.npv_costs_results,
                operations=[OperationConfig(id="npvEnergy", operation=metric_transformers.divide_by_energy)],
                metadata=MetricMetadata(
                    type="indirect",
                    name="LCOE",
                    description="Levelized cost of energy: NPV of costs over NPV of energy",
                    units="currency/MWh",
                    formatter=lambda value: f"${value:.2f}/MWh",
                    sensitivity=tornado_sensitivity(),
                ),
            ),
        ],
    )
