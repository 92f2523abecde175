"""
Pure financial primitives over `{year, value}` time series.

Every function accepts DataPoint models or plain `{'year', 'value'}` dicts and
returns plain floats or lists of `{'year', 'value'}` dicts.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from windcube import config
from windcube.utils import field_of

logger = logging.getLogger(__name__)

Series = Sequence[Any]


def as_pairs(series: Optional[Iterable[Any]]) -> List[Tuple[int, float]]:
    """(year, value) tuples for every point that carries a numeric value."""
    if not series:
        return []
    pairs = []
    for point in series:
        if point is None:
            continue
        year, value = field_of(point, "year"), field_of(point, "value")
        if year is None or value is None:
            continue
        pairs.append((year, float(value)))
    return pairs


def _by_year(series: Optional[Iterable[Any]]) -> Dict[int, float]:
    return {year: value for year, value in as_pairs(series)}


class FinancialCalculations:
    """
    A stateless library of the project-finance calculations used by the
    metric transformers.
    """

    # Newton-Raphson settings for IRR. Changing these changes published results.
    IRR_INITIAL_GUESS = 0.1
    IRR_TOLERANCE = 0.0001
    IRR_MAX_ITERATIONS = 100
    IRR_LOWER_BOUND = -0.99
    IRR_UPPER_BOUND = 10.0

    # =====================================================================
    # DISCOUNTING
    # =====================================================================
    @staticmethod
    def calculate_npv(cashflows: Series, rate: float) -> float:
        """NPV = sum(value / (1 + rate) ** year)."""
        return sum(value / (1 + rate) ** year for year, value in as_pairs(cashflows))

    @staticmethod
    def calculate_irr(cashflows: Series, initial_guess: Optional[float] = None) -> float:
        """
        Internal rate of return as a percentage.

        Newton-Raphson from a 10% guess. Stops when the derivative vanishes or
        a step moves less than the tolerance; otherwise the rate is clamped to
        [-99%, 1000%] after every step. Returns 0 when the series is empty or
        lacks either a negative or a positive flow.
        """
        pairs = as_pairs(cashflows)
        if not pairs:
            return 0.0
        if not (any(value < 0 for _, value in pairs) and any(value > 0 for _, value in pairs)):
            logger.warning("[IRR] Need both positive and negative cash flows for IRR calculation.")
            return 0.0

        tolerance = FinancialCalculations.IRR_TOLERANCE
        irr = FinancialCalculations.IRR_INITIAL_GUESS if initial_guess is None else initial_guess

        for _ in range(FinancialCalculations.IRR_MAX_ITERATIONS):
            npv = 0.0
            dnpv = 0.0
            for year, value in pairs:
                factor = (1 + irr) ** year
                npv += value / factor
                dnpv -= (year * value) / (factor * (1 + irr))

            if abs(dnpv) < tolerance:
                break

            new_irr = irr - npv / dnpv
            if abs(new_irr - irr) < tolerance:
                irr = new_irr
                break

            irr = min(max(new_irr, FinancialCalculations.IRR_LOWER_BOUND), FinancialCalculations.IRR_UPPER_BOUND)

        return irr * 100

    @staticmethod
    def calculate_equity_irr(cashflows: Series, debt_service: Series, equity_investment: float) -> float:
        """IRR of -equity at year 0 followed by operational cash flow net of debt service."""
        if not equity_investment or equity_investment <= 0:
            return 0.0
        debt_by_year = _by_year(debt_service)
        equity_flows = [{"year": 0, "value": -equity_investment}]
        for year, value in as_pairs(cashflows):
            if year > 0:
                equity_flows.append({"year": year, "value": value - debt_by_year.get(year, 0.0)})
        return FinancialCalculations.calculate_irr(equity_flows)

    # =====================================================================
    # PAYBACK
    # =====================================================================
    @staticmethod
    def calculate_payback_period(cashflows: Series) -> Optional[float]:
        """
        Years until the cumulative net cash flow turns non-negative, linearly
        interpolated inside the crossing year. None when it never happens.
        """
        pairs = sorted(as_pairs(cashflows))
        if not pairs:
            return None

        cumulative = 0.0
        seen_negative = False
        previous_year = None
        for year, value in pairs:
            previous_cumulative = cumulative
            cumulative += value
            if cumulative < 0:
                seen_negative = True
            elif seen_negative:
                start = previous_year if previous_year is not None else year - 1
                return start + abs(previous_cumulative) / value * (year - start)
            previous_year = year
        return None

    @staticmethod
    def calculate_payback_from_cumulative(
        cumulative: Series, project_life: Optional[float] = None
    ) -> float:
        """
        Payback read off an already cumulative series: the first year whose
        cumulative value is positive, interpolated from the year before when
        that one is negative. Falls back to the project life. Rounded to 2 dp.
        """
        payback = float(project_life or config.DEFAULT_PROJECT_LIFE)
        pairs = sorted(as_pairs(cumulative))
        for index, (year, value) in enumerate(pairs):
            if value > 0:
                if index == 0:
                    payback = year
                else:
                    prev_year, prev_value = pairs[index - 1]
                    if prev_value < 0:
                        payback = prev_year + abs(prev_value) / (value - prev_value)
                    else:
                        payback = year
                break
        return round(payback, 2)

    # =====================================================================
    # COST OF ENERGY & CAPITAL
    # =====================================================================
    @staticmethod
    def calculate_lcoe(costs: Series, energy: Series, rate: float) -> Optional[float]:
        """PV(costs) / PV(energy) at one rate. None when undefined."""
        cost_pairs, energy_pairs = as_pairs(costs), as_pairs(energy)
        if not cost_pairs or not energy_pairs:
            return None
        if rate < 0 or rate > 1:
            logger.warning(f"[LCOE] Discount rate should be between 0 and 1. Received: {rate}")
            return None

        pv_costs = sum(value * (1 + rate) ** -year for year, value in cost_pairs)
        pv_energy = sum(value * (1 + rate) ** -year for year, value in energy_pairs)
        if pv_energy == 0:
            logger.warning("[LCOE] Total energy production is zero, cannot calculate LCOE.")
            return None
        return pv_costs / pv_energy

    @staticmethod
    def calculate_wacc(
        debt_ratio: float = 70.0,
        cost_of_equity: float = 8.0,
        cost_of_debt: float = 5.0,
        tax_rate: float = 25.0,
    ) -> float:
        """WACC in percent, from percentage inputs, rounded to 2 dp."""
        debt_weight = debt_ratio / 100
        equity_weight = 1 - debt_weight
        wacc = (equity_weight * cost_of_equity / 100 + debt_weight * cost_of_debt / 100 * (1 - tax_rate / 100)) * 100
        return round(wacc, 2)

    # =====================================================================
    # DEBT
    # =====================================================================
    @staticmethod
    def build_debt_schedule(
        principal: float, annual_rate: float, tenor: int, start_year: int = 1
    ) -> Dict[str, List[Dict[str, float]]]:
        """
        Level annuity repayment of `principal` over `tenor` years. Returns the
        interest, principal and debt service series.
        """
        schedule: Dict[str, List[Dict[str, float]]] = {"interest": [], "principal": [], "debt_service": []}
        if principal <= 0 or tenor <= 0:
            return schedule

        if annual_rate == 0:
            payment = principal / tenor
        else:
            payment = principal * annual_rate / (1 - (1 + annual_rate) ** -tenor)

        balance = principal
        for offset in range(tenor):
            year = start_year + offset
            interest = balance * annual_rate
            repayment = payment - interest
            balance -= repayment
            schedule["interest"].append({"year": year, "value": interest})
            schedule["principal"].append({"year": year, "value": repayment})
            schedule["debt_service"].append({"year": year, "value": payment})
        return schedule

    @staticmethod
    def combine_debt_service(interest: Series, principal: Series) -> List[Dict[str, float]]:
        interest_by_year, principal_by_year = _by_year(interest), _by_year(principal)
        years = sorted(set(interest_by_year) | set(principal_by_year))
        return [
            {"year": year, "value": interest_by_year.get(year, 0.0) + principal_by_year.get(year, 0.0)}
            for year in years
        ]

    # =====================================================================
    # COVERAGE RATIOS
    # =====================================================================
    @staticmethod
    def calculate_dscr_series(cashflows: Series, debt_service: Series) -> List[Dict[str, float]]:
        """cash flow / debt service per year, 0 where there is no debt service, floored at 0."""
        debt_by_year = _by_year(debt_service)
        series = []
        for year, value in as_pairs(cashflows):
            service = debt_by_year.get(year, 0.0)
            dscr = value / service if service > 0 else 0.0
            series.append({"year": year, "value": max(0.0, dscr)})
        return sorted(series, key=lambda point: point["year"])

    @staticmethod
    def calculate_icr_series(cashflows: Series, interest: Series) -> List[Dict[str, float]]:
        """cash flow / interest for the years that carry interest, floored at 0."""
        interest_by_year = _by_year(interest)
        series = [
            {"year": year, "value": max(0.0, value / interest_by_year[year])}
            for year, value in as_pairs(cashflows)
            if interest_by_year.get(year, 0.0) > 0
        ]
        return sorted(series, key=lambda point: point["year"])

    @staticmethod
    def calculate_llcr(
        cashflows: Series, debt_service: Series, rate: float = config.DEFAULT_LLCR_DISCOUNT_RATE
    ) -> float:
        """NPV of operational cash flow over total debt service, floored at 0."""
        total_debt_service = sum(value for _, value in as_pairs(debt_service))
        if total_debt_service <= 0:
            return 0.0
        npv_cashflows = sum(value / (1 + rate) ** year for year, value in as_pairs(cashflows) if year > 0)
        return max(0.0, npv_cashflows / total_debt_service)

    @staticmethod
    def min_ratio(series: Series) -> float:
        """Minimum over operational years (year > 0). 0 when there are none."""
        values = np.array([value for year, value in as_pairs(series) if year > 0], dtype=float)
        if values.size == 0 or np.all(np.isnan(values)):
            return 0.0
        return float(np.nanmin(values))

    @staticmethod
    def average_ratio(series: Series) -> float:
        """Mean over operational years (year > 0). 0 when there are none."""
        values = np.array([value for year, value in as_pairs(series) if year > 0], dtype=float)
        if values.size == 0 or np.all(np.isnan(values)):
            return 0.0
        return float(np.nanmean(values))
