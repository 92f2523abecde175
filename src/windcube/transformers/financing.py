"""Virtual sources for the senior debt: interest, debt service and DSCR."""
import logging
from typing import Dict, List, Optional

from windcube import config
from windcube.financial import FinancialCalculations, as_pairs
from windcube.transformers.common import financing_value, find_source, series_by_year, to_sim_result

logger = logging.getLogger(__name__)


def debt_terms(references: Dict) -> Dict[str, float]:
    """Loan terms from the financing settings. Rates there are in percent."""
    return {
        "rate": financing_value(references, "costOfOperationalDebt", 5) / 100,
        "tenor": int(financing_value(references, "loanDuration", 15)),
        "grace_period": int(financing_value(references, "gracePeriod", 0)),
    }


def _schedules(context) -> Optional[Dict[int, Dict[str, List[Dict[str, float]]]]]:
    """Annuity schedule per percentile, sized on the total debt drawn at that percentile."""
    if not context.all_references.get("financing"):
        logger.warning(f"[Transform] {context.id}: No financing data available in references")
        return None
    drawdown = find_source(context.processed_data, "debtDrawdown")
    if drawdown is None:
        logger.warning(f"[Transform] {context.id}: No debt drawdown data found in processed sources")
        return None

    terms = debt_terms(context.all_references)
    project_life = context.all_references.get("projectLife") or config.DEFAULT_PROJECT_LIFE
    schedules = {}
    for percentile in context.effective_percentiles:
        principal = sum(series_by_year(drawdown, percentile).values())
        schedule = FinancialCalculations.build_debt_schedule(
            principal, terms["rate"], terms["tenor"], start_year=1 + terms["grace_period"]
        )
        schedules[percentile] = {
            key: [point for point in series if point["year"] <= project_life]
            for key, series in schedule.items()
        }
    return schedules


def debt_interest(source_data, context):
    schedules = _schedules(context)
    if schedules is None:
        return []
    context.add_audit_entry(
        "apply_debt_interest_transformation",
        "calculating operational interest from the debt drawdown",
        ["financing", "projectLife", "debtDrawdown"],
        None,
        "transform",
        "complex",
    )
    return [
        to_sim_result("debtInterest", percentile, dict(as_pairs(schedule["interest"])))
        for percentile, schedule in schedules.items()
        if schedule["interest"]
    ]


def debt_service(source_data, context):
    """Level annual payment (interest + principal) over the loan tenor."""
    schedules = _schedules(context)
    if schedules is None:
        return []
    result = [
        to_sim_result(
            "debtService",
            percentile,
            dict(as_pairs(FinancialCalculations.combine_debt_service(schedule["interest"], schedule["principal"]))),
        )
        for percentile, schedule in schedules.items()
        if schedule["debt_service"]
    ]
    context.add_audit_entry(
        "apply_debt_service_transformation",
        "calculating debt service: interest + principal",
        ["financing", "debtDrawdown"],
        result,
        "transform",
        "complex",
    )
    return result


def dscr(source_data, context):
    """projectCashflow / debtService for the years that carry debt service."""
    cashflow = find_source(context.processed_data, "projectCashflow")
    service = find_source(context.processed_data, "debtService")
    if cashflow is None or service is None:
        logger.warning(
            f"[Transform] Missing sources for DSCR: projectCashflow({cashflow is not None}), "
            f"debtService({service is not None})"
        )
        return []

    context.add_audit_entry(
        "apply_dscr_calculation", "calculating DSCR: projectCashflow / debtService", ["projectCashflow", "debtService"]
    )
    result = []
    for percentile in context.effective_percentiles:
        service_by_year = series_by_year(service, percentile)
        cashflow_points = [
            {"year": year, "value": value}
            for year, value in series_by_year(cashflow, percentile).items()
            if service_by_year.get(year, 0.0) > 0
        ]
        series = FinancialCalculations.calculate_dscr_series(
            cashflow_points, [{"year": y, "value": v} for y, v in service_by_year.items()]
        )
        if series:
            result.append(to_sim_result("dscr", percentile, dict(as_pairs(series))))
    return result
