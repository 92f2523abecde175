"""Virtual sources that combine processed sources into project-level cash flows."""
import logging
from typing import Dict

from windcube.transformers.common import (
    adjust_source_values,
    aggregate_sources,
    filter_sources,
    find_source,
    series_by_year,
    to_sim_result,
)

logger = logging.getLogger(__name__)


def total_cost(source_data, context):
    """Sum of every processed source in the `cost` cash-flow group."""
    cost_sources = filter_sources(context.processed_data, cashflow_group="cost")
    if not cost_sources:
        logger.warning("[Transform] No cost sources found for totalCost calculation")
        return []
    logger.info(f"[Transform] Aggregating {len(cost_sources)} cost sources for totalCost")
    return aggregate_sources(cost_sources, context.effective_percentiles, "sum", "totalCost", context.add_audit_entry)


def total_revenue(source_data, context):
    """Sum of every processed source in the `revenue` cash-flow group."""
    revenue_sources = filter_sources(context.processed_data, cashflow_group="revenue")
    if not revenue_sources:
        logger.warning("[Transform] No revenue sources found for totalRevenue calculation")
        return []
    return aggregate_sources(
        revenue_sources, context.effective_percentiles, "sum", "totalRevenue", context.add_audit_entry
    )


def project_cashflow(source_data, context):
    """totalRevenue - totalCost, before financing."""
    revenue = find_source(context.processed_data, "totalRevenue")
    cost = find_source(context.processed_data, "totalCost")
    if revenue is None or cost is None:
        logger.warning(
            f"[Transform] Missing sources for projectCashflow: totalRevenue({revenue is not None}), "
            f"totalCost({cost is not None})"
        )
        return []

    negative_cost = adjust_source_values(cost, lambda percentile, year, value: -value)
    return aggregate_sources(
        [revenue, negative_cost], context.effective_percentiles, "sum", "projectCashflow", context.add_audit_entry
    )


def equity_cashflow(source_data, context):
    """
    Cash flow to equity: project cash flow plus debt drawn, less debt
    service. In construction years this leaves the equity contribution.
    """
    project = find_source(context.processed_data, "projectCashflow")
    if project is None:
        logger.warning("[Transform] Missing projectCashflow for equityCashflow")
        return []
    drawdown = find_source(context.processed_data, "debtDrawdown")
    service = find_source(context.processed_data, "debtService")

    context.add_audit_entry(
        "apply_equity_cashflow_transformation",
        "calculating equity cashflow: projectCashflow + debtDrawdown - debtService",
        ["projectCashflow", "debtDrawdown", "debtService"],
    )

    result = []
    for percentile in context.effective_percentiles:
        totals: Dict[int, float] = dict(series_by_year(project, percentile))
        for year, value in series_by_year(drawdown, percentile).items():
            totals[year] = totals.get(year, 0.0) + value
        for year, value in series_by_year(service, percentile).items():
            totals[year] = totals.get(year, 0.0) - value
        if totals:
            result.append(to_sim_result("equityCashflow", percentile, totals))
    return result


def cumulative_cashflow(source_data, context):
    """Running total of projectCashflow in year order."""
    project = find_source(context.processed_data, "projectCashflow")
    if project is None:
        logger.warning("[Transform] Missing projectCashflow for cumulativeCashflow")
        return []

    result = []
    for percentile in context.effective_percentiles:
        running = 0.0
        cumulative: Dict[int, float] = {}
        for year, value in sorted(series_by_year(project, percentile).items()):
            running += value
            cumulative[year] = running
        if cumulative:
            result.append(to_sim_result("cumulativeCashflow", percentile, cumulative))

    context.add_audit_entry(
        "apply_cumulative_transformation", "accumulating projectCashflow by year", ["projectCashflow"], result
    )
    return result
