"""Metric transformers and operations used by the default wind metric registry."""
import logging
from typing import Any, Dict, List

from windcube import config
from windcube.errors import DependencyResolutionError
from windcube.financial import FinancialCalculations, as_pairs
from windcube.transformers.common import financing_value

logger = logging.getLogger(__name__)


def source_points(dependencies, source_id: str, percentile: int) -> List[Dict[str, float]]:
    """The `{year, value}` points of a resolved source dependency at one percentile."""
    slices = dependencies.sources.get(source_id)
    if slices is None:
        raise DependencyResolutionError(f"Transformer requires the '{source_id}' source dependency")
    percentile_slice = slices.get(percentile)
    return list(percentile_slice.data) if percentile_slice is not None else []


def _flow_stats(points: List[Dict[str, float]]) -> Dict[str, float]:
    pairs = as_pairs(points)
    investment = sum(-value for year, value in pairs if year <= 0 and value < 0)
    inflows = sum(value for year, value in pairs if year > 0 and value > 0)
    outflows = sum(-value for _, value in pairs if value < 0)
    return {
        "initial_investment": investment,
        "total_inflows": inflows,
        "total_outflows": outflows,
        "cashflow_years": len([year for year, _ in pairs if year > 0]),
        "cash_multiple": inflows / investment if investment else 0.0,
    }


def _irr_results(dependencies, context, source_id: str, label: str) -> List[Dict[str, Any]]:
    results = []
    for percentile in context.available_percentiles:
        points = source_points(dependencies, source_id, percentile)
        if not points:
            logger.warning(f"[Transform] No {source_id} data for {label} at P{percentile}")
            results.append({"percentile": percentile, "value": 0, "stats": {"error": "no_cashflow_data"}})
            continue
        irr = FinancialCalculations.calculate_irr(points)
        results.append({"percentile": percentile, "value": irr, "stats": _flow_stats(points)})
        context.add_audit_entry(
            f"{context.id}_calculated", f"calculated {label} {irr:.2f}% for percentile {percentile}", [source_id]
        )
    return results


def project_irr(dependencies, context):
    return _irr_results(dependencies, context, "projectCashflow", "Project IRR")


def equity_irr(dependencies, context):
    return _irr_results(dependencies, context, "equityCashflow", "Equity IRR")


def payback_period(dependencies, context):
    """Years until cumulative cash flow turns positive. Project life when it never does."""
    project_life = dependencies.references.get("projectLife") or config.DEFAULT_PROJECT_LIFE
    context.add_audit_entry(
        "payback_period_start", "calculating payback period from cumulative cashflow data", ["cumulativeCashflow"]
    )
    results = []
    for percentile in context.available_percentiles:
        points = source_points(dependencies, "cumulativeCashflow", percentile)
        payback = FinancialCalculations.calculate_payback_from_cumulative(points, project_life)
        results.append({"percentile": percentile, "value": payback, "stats": {}})
    return results


def llcr(dependencies, context):
    """Loan life coverage, discounting cash flow at the cost of operational debt."""
    rate = financing_value(
        dependencies.references, "costOfOperationalDebt", config.DEFAULT_LLCR_DISCOUNT_RATE * 100
    ) / 100
    results = []
    for percentile in context.available_percentiles:
        cashflow = source_points(dependencies, "projectCashflow", percentile)
        service = source_points(dependencies, "debtService", percentile)
        value = FinancialCalculations.calculate_llcr(cashflow, service, rate)
        results.append({"percentile": percentile, "value": value, "stats": {"discount_rate": rate}})
    return results


def icr(dependencies, context):
    """Minimum interest coverage over the loan, with the average in stats."""
    results = []
    for percentile in context.available_percentiles:
        series = FinancialCalculations.calculate_icr_series(
            source_points(dependencies, "projectCashflow", percentile),
            source_points(dependencies, "debtInterest", percentile),
        )
        results.append({
            "percentile": percentile,
            "value": FinancialCalculations.min_ratio(series),
            "stats": {"min": FinancialCalculations.min_ratio(series), "avg": FinancialCalculations.average_ratio(series)},
        })
    return results


def npv_costs_results(dependencies, context):
    """Starts LCOE from the NPV of costs; the division by energy is an operation."""
    return dependencies.metrics["npvCosts"].percentile_metrics


def divide_by_energy(npv_cost, percentile, npv_energy, references, metrics):
    return npv_cost / npv_energy if npv_energy > 0 else 0
