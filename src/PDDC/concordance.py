"""
Concordance between PDD criteria variants.

Every ordered pair of variants (predictor, reference) is cross-tabulated over the
patients diagnosed under both, with PDD = TRUE as the positive class:

                     reference TRUE   reference FALSE
    predictor TRUE        TP               FP
    predictor FALSE       FN               TN

From the counts we derive Cohen's Kappa (Fleiss–Cohen–Everitt 95% CI), Accuracy
(exact Clopper–Pearson 95% CI), the No Information Rate with a one-sided binomial
test of Accuracy > NIR, McNemar's test, and the usual by-class metrics.
Self-pairs are not cross-tabulated: Kappa = Accuracy = 1, everything else missing.
"""

from __future__ import annotations

import logging
import math
import typing
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from scipy import stats

from .criteria import LABEL_COLOURS
from .diagnosis import PDDResult
from .summary import do_summary

SIGNIFICANCE_LEVEL = 0.05
CONFIDENCE_LEVEL = 0.95

BY_CLASS_METRICS = [
    "Sensitivity",
    "Specificity",
    "Pos Pred Value",
    "Neg Pred Value",
    "Precision",
    "Recall",
    "F1",
    "Prevalence",
    "Detection Rate",
    "Detection Prevalence",
    "Balanced Accuracy",
]
COUNT_COLUMNS = ["N", "TP", "FP", "FN", "TN"]
TABLE_COLUMNS = [
    "predictor",
    "reference",
    "Kappa",
    "Accuracy",
    "Kappa_raw",
    "Kappa_lower",
    "Kappa_upper",
    "McnemarPValue",
    "Accuracy_raw",
    "AccuracyLower",
    "AccuracyUpper",
    "NoInformationRate_raw",
    "AccuracyPValue",
    *BY_CLASS_METRICS,
    *COUNT_COLUMNS,
]


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else math.nan


@dataclass(frozen=True)
class ConfusionCounts:
    """2x2 confusion counts with PDD (TRUE) as the positive class."""

    tp: int
    fp: int
    fn: int
    tn: int

    def __post_init__(self):
        for name in ("tp", "fp", "fn", "tn"):
            value = getattr(self, name)
            if not isinstance(value, (int, np.integer)) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")

    @classmethod
    def from_labels(cls, predicted: typing.Iterable[bool], reference: typing.Iterable[bool]) -> "ConfusionCounts":
        pred = np.asarray(list(predicted), dtype=bool)
        ref = np.asarray(list(reference), dtype=bool)
        if pred.shape != ref.shape:
            raise ValueError(f"Label vectors differ in length: {pred.shape[0]} vs {ref.shape[0]}")
        return cls(
            tp=int(np.sum(pred & ref)),
            fp=int(np.sum(pred & ~ref)),
            fn=int(np.sum(~pred & ref)),
            tn=int(np.sum(~pred & ~ref)),
        )

    @property
    def n(self) -> int:
        return self.tp + self.fp + self.fn + self.tn

    @property
    def agreements(self) -> int:
        return self.tp + self.tn


def cohen_kappa(counts: ConfusionCounts, confidence: float = CONFIDENCE_LEVEL) -> tuple[float, float, float]:
    """
    Cohen's Kappa with a normal-approximation CI using the asymptotic variance of
    Fleiss, Cohen & Everitt (1969). Returns (kappa, lower, upper); all NaN when
    chance agreement is perfect or the table is empty.
    """
    n = counts.n
    if n == 0:
        return math.nan, math.nan, math.nan
    # p[i][j]: row = predictor, column = reference; index 0 = PDD
    p = np.array([[counts.tp, counts.fp], [counts.fn, counts.tn]], dtype=float) / n
    rows = p.sum(axis=1)
    cols = p.sum(axis=0)
    observed = np.trace(p)
    expected = float(np.dot(rows, cols))
    if math.isclose(expected, 1.0):
        return math.nan, math.nan, math.nan
    kappa = (observed - expected) / (1 - expected)

    diagonal = sum(p[i, i] * (1 - (rows[i] + cols[i]) * (1 - kappa)) ** 2 for i in range(2))
    off_diagonal = (1 - kappa) ** 2 * sum(
        p[i, j] * (cols[i] + rows[j]) ** 2 for i in range(2) for j in range(2) if i != j
    )
    correction = (kappa - expected * (1 - kappa)) ** 2
    variance = max((diagonal + off_diagonal - correction) / (n * (1 - expected) ** 2), 0.0)

    z = stats.norm.ppf(1 - (1 - confidence) / 2)
    margin = z * math.sqrt(variance)
    return kappa, kappa - margin, kappa + margin


def accuracy_statistics(counts: ConfusionCounts, confidence: float = CONFIDENCE_LEVEL) -> dict[str, float]:
    """
    Accuracy with its exact binomial CI, the No Information Rate (share of the larger
    reference class) and the one-sided p-value of Accuracy > NIR.
    """
    n = counts.n
    if n == 0:
        return dict.fromkeys(["Accuracy", "AccuracyLower", "AccuracyUpper", "AccuracyNull", "AccuracyPValue"], math.nan)
    correct = counts.agreements
    interval = stats.binomtest(correct, n).proportion_ci(confidence_level=confidence, method="exact")
    no_information_rate = max(counts.tp + counts.fn, counts.fp + counts.tn) / n
    p_value = stats.binomtest(correct, n, p=no_information_rate, alternative="greater").pvalue
    return {
        "Accuracy": correct / n,
        "AccuracyLower": float(interval.low),
        "AccuracyUpper": float(interval.high),
        "AccuracyNull": no_information_rate,
        "AccuracyPValue": float(p_value),
    }


def mcnemar_p_value(counts: ConfusionCounts) -> float:
    """
    Continuity-corrected McNemar test on the discordant cells (FP vs FN).
    NaN when there are no discordant pairs.
    """
    discordant = counts.fp + counts.fn
    if discordant == 0:
        return math.nan
    difference = abs(counts.fp - counts.fn)
    # no correction when the discordant cells are already balanced
    statistic = (difference - 1) ** 2 / discordant if difference else 0.0
    return float(stats.chi2.sf(statistic, df=1))


def by_class_metrics(counts: ConfusionCounts) -> dict[str, float]:
    n = counts.n
    sensitivity = _ratio(counts.tp, counts.tp + counts.fn)
    specificity = _ratio(counts.tn, counts.tn + counts.fp)
    ppv = _ratio(counts.tp, counts.tp + counts.fp)
    npv = _ratio(counts.tn, counts.tn + counts.fn)
    return {
        "Sensitivity": sensitivity,
        "Specificity": specificity,
        "Pos Pred Value": ppv,
        "Neg Pred Value": npv,
        "Precision": ppv,
        "Recall": sensitivity,
        "F1": _ratio(2 * ppv * sensitivity, ppv + sensitivity),
        "Prevalence": _ratio(counts.tp + counts.fn, n),
        "Detection Rate": _ratio(counts.tp, n),
        "Detection Prevalence": _ratio(counts.tp + counts.fp, n),
        "Balanced Accuracy": (sensitivity + specificity) / 2,
    }


def compare_labels(predicted: typing.Iterable[bool], reference: typing.Iterable[bool]) -> dict[str, typing.Any]:
    """All pairwise statistics for two aligned label vectors (predictor first)."""
    counts = ConfusionCounts.from_labels(predicted, reference)
    kappa, kappa_lower, kappa_upper = cohen_kappa(counts)
    accuracy = accuracy_statistics(counts)
    return {
        "Kappa": do_summary((kappa, kappa_lower, kappa_upper), 2, "estCI"),
        "Accuracy": do_summary(
            (accuracy["Accuracy"], accuracy["AccuracyLower"], accuracy["AccuracyUpper"]), 2, "estCI"
        ),
        "Kappa_raw": kappa,
        "Kappa_lower": kappa_lower,
        "Kappa_upper": kappa_upper,
        "McnemarPValue": mcnemar_p_value(counts),
        "Accuracy_raw": accuracy["Accuracy"],
        "AccuracyLower": accuracy["AccuracyLower"],
        "AccuracyUpper": accuracy["AccuracyUpper"],
        "NoInformationRate_raw": accuracy["AccuracyNull"],
        "AccuracyPValue": accuracy["AccuracyPValue"],
        **by_class_metrics(counts),
        "N": counts.n,
        "TP": counts.tp,
        "FP": counts.fp,
        "FN": counts.fn,
        "TN": counts.tn,
    }


def _self_pair() -> dict[str, typing.Any]:
    row: dict[str, typing.Any] = dict.fromkeys(TABLE_COLUMNS[2:], math.nan)
    row.update({"Kappa": "1.00", "Accuracy": "1.00", "Kappa_raw": 1.0, "Accuracy_raw": 1.0})
    for column in COUNT_COLUMNS:
        row[column] = pd.NA
    return row


def pairwise_statistics(pdd: pd.DataFrame, types: typing.Sequence[str]) -> pd.DataFrame:
    """
    Statistics for the full ordered cross-product of `types` (predictor-major).

    `pdd` is the long table from diagnose_pdd_sample (columns id, type, PDD).
    Each non-self pair uses only patients with a PDD label under both variants.
    """
    wide = pdd.pivot(index="id", columns="type", values="PDD")
    unknown = sorted(set(types) - set(wide.columns))
    if unknown:
        raise ValueError(f"No diagnoses found for criteria {unknown}")

    records = []
    for predictor in types:
        for reference in types:
            row: dict[str, typing.Any] = {"predictor": predictor, "reference": reference}
            if predictor == reference:
                row.update(_self_pair())
            else:
                paired = wide[[predictor, reference]].dropna()
                logging.debug(f"{predictor!r} vs {reference!r}: {len(paired)} patients with both labels")
                row.update(compare_labels(paired[predictor].astype(bool), paired[reference].astype(bool)))
            records.append(row)

    table = pd.DataFrame.from_records(records, columns=TABLE_COLUMNS)
    for column in COUNT_COLUMNS:
        table[column] = table[column].astype("Int64")
    return table


def order_by_prevalence(table: pd.DataFrame, criteria: pd.DataFrame) -> pd.DataFrame:
    """
    Rank variants by descending PDD prevalence, pooled over the non-self pairs in
    which the variant is the reference. Ties keep the criteria order.

    Returns one row per variant: type, prevalence, iadl_tag, colour, rank (0 = most prevalent).
    """
    non_self = table[table["predictor"] != table["reference"]]
    pooled = non_self.groupby("reference", sort=False)["Prevalence"].mean()

    order = pd.DataFrame({"type": list(criteria["type"])})
    order["prevalence"] = order["type"].map(pooled).astype(float)
    tags = dict(zip(criteria["type"], criteria["iadl_tag"]))
    order["iadl_tag"] = order["type"].map(tags)
    order["colour"] = order["iadl_tag"].map(LABEL_COLOURS)
    order = order.sort_values("prevalence", ascending=False, kind="mergesort", na_position="last")
    order = order.reset_index(drop=True)
    order["rank"] = range(len(order))
    return order


def arrange_for_display(table: pd.DataFrame, order: pd.DataFrame, kappa_triangle: bool = True) -> pd.DataFrame:
    """
    Prepare the statistics table for the heatmaps:
      - predictor/reference become ordered categoricals following `order`
      - Kappa is kept in one triangle only (predictor more prevalent than reference)
        unless `kappa_triangle` is False; the diagonal is 1
      - Accuracy on the diagonal is blanked
      - Accuracy_sig is '*' when Accuracy beats the NIR at the 5% level
    """
    levels = list(order["type"])
    rank = dict(zip(order["type"], order["rank"]))
    display = table.copy()
    is_self = display["predictor"] == display["reference"]
    predictor_rank = display["predictor"].map(rank)
    reference_rank = display["reference"].map(rank)

    kappa = display["Kappa_raw"].where(~is_self, 1.0)
    if kappa_triangle:
        kappa = kappa.where(is_self | (predictor_rank < reference_rank), np.nan)
    display["Kappa_raw"] = kappa
    display["Accuracy_raw"] = display["Accuracy_raw"].where(~is_self, np.nan)
    display["Accuracy_sig"] = np.where(display["AccuracyPValue"] < SIGNIFICANCE_LEVEL, "*", "")

    for column in ("predictor", "reference"):
        display[column] = pd.Categorical(display[column], categories=levels, ordered=True)
    return display.sort_values(["predictor", "reference"]).reset_index(drop=True)


def expected_no_information_rate(table: pd.DataFrame) -> float:
    """Mean of the distinct No Information Rates across all non-self pairs."""
    rates = table["NoInformationRate_raw"].dropna().unique()
    return float(np.mean(rates)) if len(rates) else math.nan


@dataclass
class ConcordanceReport:
    """
    Output of describe_concordance.

    Attributes:
        table: Pairwise statistics, one row per ordered (predictor, reference) pair.
        order: Variants ranked by prevalence, with IADL tag and axis-label colour.
        display: `table` arranged for plotting (see arrange_for_display).
        plots: Heatmaps keyed by 'Kappa', 'Accuracy', 'Sensitivity', 'Specificity'.
    """

    table: pd.DataFrame
    order: pd.DataFrame
    display: pd.DataFrame
    plots: dict = field(default_factory=dict)


def describe_concordance(result: PDDResult, kappa_triangle: bool = True, plot: bool = True) -> ConcordanceReport:
    """
    Compute pairwise concordance between all criteria variants in `result` and,
    unless `plot` is False, draw the four heatmaps.
    """
    types = result.types
    logging.info(f"Computing concordance for {len(types)} criteria ({len(types) ** 2} pairs)")
    table = pairwise_statistics(result.PDD, types)
    order = order_by_prevalence(table, result.criteria)
    display = arrange_for_display(table, order, kappa_triangle=kappa_triangle)
    report = ConcordanceReport(table=table, order=order, display=display)
    if plot:
        from .plots import ConcordancePlotter

        report.plots = ConcordancePlotter().plot_all(display, order, expected_no_information_rate(table))
    return report
