from windcube.models import (
    MultiplierConfig,
    ReferenceItem,
    SourceMetadata,
    SourceRegistry,
    SourceRegistryItem,
)
from windcube.transformers import cashflow, cost, financing

DISTRIBUTIONS_PATH = ["simulation", "inputSim", "distributionAnalysis"]
COST_SOURCES_PATH = ["settings", "modules", "cost", "constructionPhase", "costSources"]
FINANCING_REFERENCE = ReferenceItem(id="financing", path=["settings", "modules", "financing"])


def _distribution(name: str):
    return DISTRIBUTIONS_PATH + [name, "results"]


def _millions(value):
    return f"${value / 1_000_000:.1f}M"


def build_source_registry() -> SourceRegistry:
    """
    Cash-flow sources of a wind farm.

    Priorities within a type: 9 market inputs, 20-30 construction and
    reserves, 99 operating costs and revenue, 900+ project totals, debt and
    the cash flows derived from them.
    """
    return SourceRegistry(
        references=[
            ReferenceItem(id="projectLife", path=["settings", "general", "projectLife"]),
            ReferenceItem(id="numWTGs", path=["settings", "project", "windFarm", "numWTGs"]),
            ReferenceItem(id="currency", path=["settings", "project", "currency", "local"]),
        ],
        sources=[
            # --- Simulated market inputs ---
            SourceRegistryItem(
                id="escalationRate",
                priority=9,
                path=_distribution("escalationRate"),
                has_percentiles=True,
                metadata=SourceMetadata(
                    type="direct",
                    name="Escalation Rate",
                    cashflow_group="none",
                    category="escalation",
                    description="Annual cost escalation rate applied to operating costs and revenue",
                    formatter=lambda value: f"{value * 100:.1f}%",
                ),
            ),
            SourceRegistryItem(
                id="electricityPrice",
                priority=9,
                path=_distribution("electricityPrice"),
                has_percentiles=True,
                metadata=SourceMetadata(
                    type="direct",
                    name="Electricity Price",
                    cashflow_group="none",
                    category="pricing",
                    description="Electricity price per MWh used to calculate revenue",
                    formatter=lambda value: f"${value:.0f}/MWh",
                ),
            ),
            SourceRegistryItem(
                id="energyProduction",
                priority=9,
                path=_distribution("energyProduction"),
                has_percentiles=True,
                metadata=SourceMetadata(
                    type="direct",
                    name="Energy Production",
                    cashflow_group="none",
                    category="energy",
                    description="Annual net energy production in MWh",
                    formatter=lambda value: f"{value / 1000:.0f}k MWh",
                ),
            ),
            # --- Construction ---
            SourceRegistryItem(
                id="capexDrawdown",
                priority=20,
                path=COST_SOURCES_PATH,
                transformer=cost.capex_drawdown,
                metadata=SourceMetadata(
                    type="direct",
                    name="CAPEX Drawdown",
                    cashflow_group="cost",
                    category="construction",
                    project_phase="construction",
                    description="Construction phase CAPEX drawdown schedule",
                    formatter=_millions,
                ),
            ),
            SourceRegistryItem(
                id="debtDrawdown",
                priority=20,
                path=COST_SOURCES_PATH,
                references=[FINANCING_REFERENCE],
                transformer=cost.debt_drawdown,
                metadata=SourceMetadata(
                    type="direct",
                    name="Debt Drawdown",
                    cashflow_group="financing",
                    category="financing",
                    project_phase="construction",
                    description="Debt-funded share of the construction drawdown",
                    formatter=_millions,
                ),
            ),
            SourceRegistryItem(
                id="reserveFunds",
                priority=30,
                path=["settings", "modules", "risk", "reserveFunds"],
                transformer=cost.reserve_funds,
                options={"provision_years": 5},
                metadata=SourceMetadata(
                    type="direct",
                    name="Reserve Funds",
                    cashflow_group="cost",
                    category="reserves",
                    description="Reserve fund provisions (allocated but not spent)",
                    formatter=_millions,
                ),
            ),
            # --- Operations ---
            SourceRegistryItem(
                id="contractFees",
                priority=99,
                path=["settings", "modules", "contracts", "oemContracts"],
                transformer=cost.contract_fees,
                multipliers=[MultiplierConfig(id="escalationRate", operation="compound", base_year=1)],
                metadata=SourceMetadata(
                    type="indirect",
                    name="Contract Fees",
                    cashflow_group="cost",
                    category="contracts",
                    project_phase="operations",
                    description="OEM service contract fees",
                    formatter=_millions,
                ),
            ),
            SourceRegistryItem(
                id="majorRepairs",
                priority=99,
                path=["settings", "modules", "cost", "majorRepairEvents"],
                transformer=cost.major_repairs,
                multipliers=[MultiplierConfig(id="escalationRate", operation="compound", base_year=1)],
                metadata=SourceMetadata(
                    type="indirect",
                    name="Major Repairs",
                    cashflow_group="cost",
                    category="maintenance",
                    project_phase="operations",
                    description="Probability-weighted major repair costs",
                    formatter=_millions,
                ),
            ),
            SourceRegistryItem(
                id="energyRevenue",
                priority=99,
                path=_distribution("energyProduction"),
                has_percentiles=True,
                multipliers=[
                    MultiplierConfig(id="electricityPrice", operation="multiply", base_year=1),
                    MultiplierConfig(id="escalationRate", operation="compound", base_year=1),
                ],
                metadata=SourceMetadata(
                    type="indirect",
                    name="Energy Revenue",
                    cashflow_group="revenue",
                    category="energy",
                    project_phase="operations",
                    description="Energy production revenue (MWh x Price x Escalation)",
                    formatter=_millions,
                ),
            ),
            # --- Totals and financing ---
            SourceRegistryItem(
                id="totalCost",
                priority=900,
                transformer=cashflow.total_cost,
                depends_on=["capexDrawdown", "reserveFunds", "contractFees", "majorRepairs"],
                metadata=SourceMetadata(
                    type="virtual",
                    name="Total Cost",
                    cashflow_group="total",
                    category="aggregation",
                    description="Total project costs including CAPEX and OPEX",
                    formatter=_millions,
                ),
            ),
            SourceRegistryItem(
                id="totalRevenue",
                priority=900,
                transformer=cashflow.total_revenue,
                depends_on=["energyRevenue"],
                metadata=SourceMetadata(
                    type="virtual",
                    name="Total Revenue",
                    cashflow_group="total",
                    category="aggregation",
                    description="Total project revenue from all sources",
                    formatter=_millions,
                ),
            ),
            SourceRegistryItem(
                id="debtInterest",
                priority=910,
                references=[FINANCING_REFERENCE],
                transformer=financing.debt_interest,
                depends_on=["debtDrawdown"],
                metadata=SourceMetadata(
                    type="virtual",
                    name="Debt Interest",
                    cashflow_group="liability",
                    category="financing",
                    description="Interest portion of the annual debt service",
                    formatter=_millions,
                ),
            ),
            SourceRegistryItem(
                id="debtService",
                priority=910,
                references=[FINANCING_REFERENCE],
                transformer=financing.debt_service,
                depends_on=["debtDrawdown"],
                metadata=SourceMetadata(
                    type="virtual",
                    name="Debt Service",
                    cashflow_group="liability",
                    category="financing",
                    description="Annual debt service payments (principal + interest)",
                    formatter=_millions,
                ),
            ),
            SourceRegistryItem(
                id="projectCashflow",
                priority=950,
                transformer=cashflow.project_cashflow,
                depends_on=["totalRevenue", "totalCost"],
                metadata=SourceMetadata(
                    type="virtual",
                    name="Project Cashflow",
                    cashflow_group="none",
                    category="aggregation",
                    description="Unlevered project cash flow (revenue - costs)",
                    formatter=_millions,
                ),
            ),
            SourceRegistryItem(
                id="equityCashflow",
                priority=960,
                transformer=cashflow.equity_cashflow,
                depends_on=["projectCashflow", "debtDrawdown", "debtService"],
                metadata=SourceMetadata(
                    type="virtual",
                    name="Equity Cashflow",
                    cashflow_group="none",
                    category="aggregation",
                    description="Cash flow to equity after debt drawdown and debt service",
                    formatter=_millions,
                ),
            ),
            SourceRegistryItem(
                id="cumulativeCashflow",
                priority=970,
                transformer=cashflow.cumulative_cashflow,
                depends_on=["projectCashflow"],
                metadata=SourceMetadata(
                    type="virtual",
                    name="Cumulative Cashflow",
                    cashflow_group="none",
                    category="aggregation",
                    description="Running total of the project cash flow",
                    formatter=_millions,
                ),
            ),
            SourceRegistryItem(
                id="dscr",
                priority=980,
                transformer=financing.dscr,
                depends_on=["projectCashflow", "debtService"],
                metadata=SourceMetadata(
                    type="virtual",
                    name="DSCR",
                    cashflow_group="none",
                    category="financing",
                    description="Debt service coverage ratio by year",
                    formatter=lambda value: f"{value:.2f}x",
                ),
            ),
        ],
    )
