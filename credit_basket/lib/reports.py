"""Tabular reports of basket results."""

import datetime
from typing import Optional, Sequence

import pandas as pd

from .basket import LossDistributionEngine
from .tranche import TrancheLossMapper


def create_loss_curve_report(mappers: Sequence[Optional[TrancheLossMapper]],
                             dates: Sequence[datetime.date]) -> pd.DataFrame:
    """Expected loss fraction of each tranche by date.

    Args:
        mappers: Tranche mappers, None entries are skipped
        dates: Report dates

    Returns:
        DataFrame indexed by date with one column per tranche
    """
    columns = [m.loss_curve(dates) for m in mappers if m is not None]
    if not columns:
        return pd.DataFrame(index=pd.Index(list(dates), name="date"))
    return pd.concat(columns, axis=1)


def create_distribution_report(basket: LossDistributionEngine, date: datetime.date,
                               levels: Optional[Sequence[float]] = None) -> pd.DataFrame:
    """Cumulative loss probabilities of a pool at a date.

    Args:
        basket: Pool engine
        date: Report date
        levels: Loss levels, the engine's loss levels if None

    Returns:
        DataFrame with columns 'loss_level', 'cumulative_probability'
        and 'probability' (mass between consecutive levels)
    """
    table = basket.loss_distribution(date, levels)
    df = pd.DataFrame(table, columns=["loss_level", "cumulative_probability"])
    df["probability"] = df["cumulative_probability"].diff().fillna(df["cumulative_probability"])
    return df
