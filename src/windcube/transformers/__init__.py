from .cashflow import cumulative_cashflow, equity_cashflow, project_cashflow, total_cost, total_revenue
from .cost import capex_drawdown, contract_fees, debt_drawdown, major_repairs, reserve_funds
from .financing import debt_interest, debt_service, dscr
from .metrics import divide_by_energy, equity_irr, icr, llcr, npv_costs_results, payback_period, project_irr

__all__ = [
    "capex_drawdown",
    "contract_fees",
    "cumulative_cashflow",
    "debt_drawdown",
    "debt_interest",
    "debt_service",
    "divide_by_energy",
    "dscr",
    "equity_cashflow",
    "equity_irr",
    "icr",
    "llcr",
    "major_repairs",
    "npv_costs_results",
    "payback_period",
    "project_cashflow",
    "project_irr",
    "reserve_funds",
    "total_cost",
    "total_revenue",
]
