#!/usr/bin/env python3
"""Example usage of the credit basket loss engines.

This script demonstrates:
1. Building a pool from survival curves and principals
2. Pricing a tranche stack with the semi-analytic engine
3. Comparing engines and copulas on the same pool
4. Pricing tranches off a base correlation surface
5. Monte Carlo simulation and its risk measures
6. A CDO-squared on two overlapping child tranches
"""

import datetime
import logging

import numpy as np
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from credit_basket import (
    BaseCorrelation,
    Copula,
    CopulaType,
    DiscountCurve,
    StrikeMethod,
    SurvivalCurve,
    Tranche,
    cdo_pricers,
    cdo_squared_basket,
    create_basket,
    create_distribution_report,
    create_loss_curve_report,
    tranche_pricers,
)


def create_sample_curves(as_of: datetime.date):
    """Twenty names spread across five credit qualities."""
    qualities = [("AA", 0.004, 0.45), ("A", 0.008, 0.40), ("BBB", 0.015, 0.40),
                 ("BB", 0.035, 0.35), ("B", 0.070, 0.30)]
    curves = []
    for rating, hazard, recovery in qualities:
        for i in range(4):
            curves.append(SurvivalCurve.flat(f"{rating}_{i}", as_of, hazard * (1 + 0.1 * i),
                                             recovery=recovery))
    return curves


def main():
    """Run the example."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 70)
    print("CREDIT BASKET LOSS ENGINES - EXAMPLE")
    print("=" * 70)

    as_of = datetime.date(2024, 3, 20)
    maturity = datetime.date(2029, 3, 20)
    curves = create_sample_curves(as_of)
    principals = [10_000_000] * len(curves)
    discount_curve = DiscountCurve(as_of, 0.03)
    basket_args = dict(as_of=as_of, settle=as_of, maturity=maturity,
                       survival_curves=curves, principals=principals)

    tranches = [Tranche(0.00, 0.03, name="Equity"),
                Tranche(0.03, 0.07, name="Junior mezz"),
                Tranche(0.07, 0.10, name="Senior mezz"),
                Tranche(0.10, 0.15, name="Senior"),
                Tranche(0.15, 0.30, name="Super senior")]

    print("\n1. Semi-analytic engine, Gaussian copula, correlation 30%...")
    mappers = cdo_pricers("semi_analytic", tranches, correlation=0.3, **basket_args)
    basket = mappers[0].basket
    print(f"   Names: {basket.count}")
    print(f"   Total principal: ${basket.total_principal:,.0f}")
    print(f"   Pool expected loss: {basket.expected_loss(maturity):.4%}")
    print(f"   Quadrature points: {basket.integration_points_first}")
    print(f"   Amortization tracked: {not basket.no_amortization}")
    for mapper in mappers:
        print(f"   {mapper.tranche.label:>14}: {mapper.expected_loss_fraction(maturity):8.4%}"
              f"  (${mapper.expected_loss(maturity):,.0f})")

    print("\n2. Expected loss curves (yearly)...")
    yearly = [datetime.date(as_of.year + k, 3, 20) for k in range(1, 6)]
    print(create_loss_curve_report(mappers, yearly).to_string(float_format="{:.4f}".format))

    print("\n3. Loss distribution at maturity...")
    report = create_distribution_report(basket, maturity, [0.0, 0.03, 0.07, 0.10, 0.15, 0.30])
    print(report.to_string(index=False, float_format="{:.6f}".format))

    print("\n4. Equity tranche loss by engine and copula...")
    for model_type in ["large_pool", "uniform", "heterogeneous", "semi_analytic"]:
        engine = create_basket(model_type, correlation=0.3, **basket_args)
        print(f"   {model_type:>14}: {engine.expected_loss(maturity, 0.0, 0.03) / 0.03:.4%}")
    for copula in [Copula(CopulaType.STUDENT_T, df_common=7),
                   Copula(CopulaType.DOUBLE_T, df_common=4, df_idiosyncratic=4),
                   Copula(CopulaType.CLAYTON)]:
        engine = create_basket("semi_analytic", correlation=0.3, copula=copula, **basket_args)
        print(f"   {str(copula):>14}: {engine.expected_loss(maturity, 0.0, 0.03) / 0.03:.4%}")

    print("\n5. Base correlation tranches...")
    base = BaseCorrelation([0.5, 1.0, 1.5, 2.0, 4.0], [0.15, 0.25, 0.32, 0.40, 0.55],
                           StrikeMethod.EXPECTED_LOSS_PV, name="Sample skew")
    engine = create_basket("semi_analytic", correlation=base, **basket_args)
    base_mappers = tranche_pricers(engine, tranches, discount_curve=discount_curve)
    for mapper in base_mappers:
        rho_a, rho_d = mapper.basket.tranche_correlations()
        print(f"   {mapper.tranche.label:>14}: rho {rho_a:.3f}/{rho_d:.3f}  "
              f"loss {mapper.expected_loss_fraction(maturity):8.4%}")
    shared = base_mappers[0].correlation is base_mappers[-1].correlation
    print(f"   Tranches share one correlation object: {shared}")

    print("\n6. Monte Carlo simulation...")
    engine = create_basket("monte_carlo", correlation=0.3, sample_size=20000, seed=42,
                           **basket_args)
    engine.expected_loss(maturity)
    result = engine.last_result
    print(f"   Paths: {result.num_paths:,}")
    print(f"   Expected loss: {result.expected_loss:.4%}")
    print(f"   Loss std dev: {result.loss_std:.4%}")
    print(f"   VaR (99%): {result.get_var(0.99):.4%}")
    print(f"   Expected shortfall (99%): {result.get_expected_shortfall(0.99):.4%}")
    print(f"   Average default rate: {result.default_rate:.4f}")

    print("\n7. CDO-squared on two overlapping children...")
    matrix = np.zeros((len(curves), 2))
    matrix[:12, 0] = 10_000_000
    matrix[8:, 1] = 10_000_000
    for cross in (True, False):
        cdo2 = cdo_squared_basket(as_of, as_of, maturity, curves, matrix,
                                  attachments=[0.03, 0.05], detachments=[0.10, 0.12],
                                  correlation=0.3, cross_subordination=cross)
        print(f"   Cross subordination {cross!s:>5}: expected loss "
              f"{cdo2.expected_loss(maturity):.4%} of ${cdo2.total_principal:,.0f}")

    print("\n" + "=" * 70)
    print("EXAMPLE COMPLETE")
    print("=" * 70)


if __name__ == "__main__":
    main()
