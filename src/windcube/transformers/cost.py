"""Transformers that turn scenario cost settings into annual cost series."""
import logging
from collections import defaultdict
from typing import Any, Dict, List

from windcube import config
from windcube.transformers.common import normalize_into_sim_results, yearly_totals_to_points
from windcube.utils import is_number

logger = logging.getLogger(__name__)


def _drawdown_by_year(cost_sources: List[Dict[str, Any]], share: float = 1.0) -> Dict[int, float]:
    """Spreads each cost source's `totalAmount` over its drawdown schedule (values in percent)."""
    totals: Dict[int, float] = defaultdict(float)
    for cost_source in cost_sources or []:
        total_amount = cost_source.get("totalAmount")
        if not total_amount:
            continue
        for step in cost_source.get("drawdownSchedule") or []:
            totals[int(step["year"])] += step["value"] / 100 * total_amount * share
    return totals


def capex_drawdown(source_data, context):
    """Construction cost sources -> CAPEX per year."""
    cost_sources = source_data or []
    context.add_audit_entry(
        "apply_capex_drawdown_transformation", f"transforming {len(cost_sources)} construction cost sources", []
    )
    totals = _drawdown_by_year(cost_sources)
    logger.info(f"[Transform] capexDrawdown: {len(totals)} years, {sum(totals.values()):,.0f} total")
    return normalize_into_sim_results(
        yearly_totals_to_points(totals), context.effective_percentiles, "capexDrawdown", context.add_audit_entry
    )


def debt_drawdown(source_data, context):
    """Debt-funded share of the construction drawdown, from `financing.debtFinancingRatio` (percent)."""
    financing = context.all_references.get("financing")
    if not financing:
        logger.warning("[Transform] debtDrawdown: No financing data available in references")
        return []

    cost_sources = source_data or []
    debt_ratio = (financing.get("debtFinancingRatio") or 70) / 100
    context.add_audit_entry(
        "apply_debt_drawdown_transformation",
        f"transforming {len(cost_sources)} construction cost sources to debt drawdown",
        ["financing"],
        cost_sources,
        "transform",
        "complex",
    )
    totals = _drawdown_by_year(cost_sources, share=debt_ratio)
    logger.info(
        f"[Transform] debtDrawdown: {len(totals)} years, {sum(totals.values()):,.0f} total "
        f"({debt_ratio * 100:.0f}% debt ratio)"
    )
    return normalize_into_sim_results(
        yearly_totals_to_points(totals), context.effective_percentiles, "debtDrawdown", context.add_audit_entry
    )


def contract_fees(source_data, context):
    """
    OEM contracts -> annual fees. A contract either lists `years` with a
    `fixedFee`, or carries a `fixedFeeTimeSeries`. Per-turbine fees are scaled
    by `numWTGs`.
    """
    contracts = source_data or []
    num_wtgs = context.all_references.get("numWTGs") or 1
    context.add_audit_entry(
        "apply_contract_fees_transformation",
        f"transforming {len(contracts)} OEM contracts to annual fees",
        ["projectLife", "numWTGs"],
    )

    totals: Dict[int, float] = defaultdict(float)
    for contract in contracts:
        scale = num_wtgs if contract.get("isPerTurbine") else 1
        time_series = contract.get("fixedFeeTimeSeries") or []
        if time_series:
            for point in time_series:
                totals[int(point["year"])] += point["value"] * scale
        elif contract.get("years") and contract.get("fixedFee"):
            for year in contract["years"]:
                totals[int(year)] += contract["fixedFee"] * scale

    logger.info(f"[Transform] contractFees: {len(totals)} years, {sum(totals.values()):,.0f} total")
    return normalize_into_sim_results(
        yearly_totals_to_points(totals), context.effective_percentiles, "contractFees", context.add_audit_entry
    )


def major_repairs(source_data, context):
    """Repair events `{year, cost, probability%}` -> expected repair cost per year."""
    events = source_data or []
    for event in events:
        if not (is_number(event.get("year")) and is_number(event.get("cost"))):
            logger.warning(f"[Transform] majorRepairs: Invalid major repair event: {event}")
            return []
        probability = event.get("probability")
        if probability is not None and not 0 <= probability <= 100:
            logger.warning(f"[Transform] majorRepairs: Probability out of range in event: {event}")
            return []

    context.add_audit_entry(
        "apply_major_repairs_transformation", f"transforming {len(events)} major repair events to annual costs", []
    )
    totals: Dict[int, float] = defaultdict(float)
    for event in events:
        probability = event.get("probability")
        cost = event["cost"] * probability / 100 if probability is not None else event["cost"]
        totals[int(event["year"])] += cost

    return normalize_into_sim_results(
        yearly_totals_to_points(totals), context.effective_percentiles, "majorRepairs", context.add_audit_entry
    )


def reserve_funds(source_data, context):
    """A reserve amount provisioned evenly over the first five operating years."""
    if not is_number(source_data) or source_data <= 0:
        return []
    project_life = context.all_references.get("projectLife") or config.DEFAULT_PROJECT_LIFE
    provision_years = int(min(context.options.get("provision_years", 5), project_life))
    context.add_audit_entry(
        "apply_reserve_funds_transformation",
        f"transforming reserve funds {source_data:,.0f} to provision schedule",
        ["projectLife"],
    )
    annual = source_data / provision_years
    points = [{"year": year, "value": annual} for year in range(1, provision_years + 1)]
    return normalize_into_sim_results(points, context.effective_percentiles, "reserveFunds", context.add_audit_entry)
