"""
Descriptive statistics for sample variables.

do_summary renders one statistic of one variable as a display string;
compute_descriptives applies it across a table of variables of interest.
"""

import math
import pathlib
import typing
from dataclasses import dataclass

import numpy as np
import pandas as pd

from .loader import load_table

VARIABLE_TYPES = {"continuous", "binary", "nominal"}
# Cognitive-domain groups are reported with two decimals throughout
COGNITIVE_GROUPS = {
    "Attention and Working Memory",
    "Executive Function",
    "Language",
    "Memory",
    "Visuospatial Function",
}
# Groups left out of the test-score display table
DEMOGRAPHIC_GROUPS = {"Demographics", "Clinical"}
# Positional layout of a variables-of-interest table
VOIS_COLUMNS = ["variable", "label", "type", "group", "note", "score"]
STATISTICS = ["Md", "minmax", "M", "SD"]


def _fmt(value: float, digits: int) -> str:
    if value is None or pd.isna(value):
        return "NA"
    return f"{value:.{digits}f}"


def _positive_mask(values: pd.Series) -> pd.Series:
    """Which non-missing values count as the 'yes' level of a binary variable."""
    if isinstance(values.dtype, pd.CategoricalDtype):
        return values == values.cat.categories[-1]
    if values.dtype == bool or str(values.dtype) == "boolean":
        return values.astype("boolean").fillna(False).astype(bool)
    return values == 1


def do_summary(values: typing.Any, digits: int, kind: str) -> str:
    """
    Summarize `values` as a display string.

    kind:
        N       number of non-missing values
        Nperc   count (percentage) of the positive level
        Nslash  level counts joined by '/'
        Md      median
        minmax  'min-max'
        M       mean
        SD      standard deviation (n - 1)
        estCI   `values` is (estimate, lower, upper) → 'est [lower, upper]'
    """
    if kind == "estCI":
        estimate, lower, upper = values
        return f"{_fmt(estimate, digits)} [{_fmt(lower, digits)}, {_fmt(upper, digits)}]"

    if isinstance(values, pd.DataFrame):
        values = values.iloc[:, 0]
    series = values if isinstance(values, pd.Series) else pd.Series(values)
    present = series.dropna()

    if kind == "N":
        return str(len(present))
    if kind == "Nperc":
        positives = int(_positive_mask(present).sum())
        share = 100 * positives / len(present) if len(present) else math.nan
        return f"{positives} ({_fmt(share, digits)}%)"
    if kind == "Nslash":
        if isinstance(present.dtype, pd.CategoricalDtype):
            counts = present.value_counts(sort=False).reindex(present.cat.categories, fill_value=0)
        else:
            counts = present.value_counts().sort_index()
        return "/".join(str(int(c)) for c in counts)

    numbers = pd.to_numeric(present)
    if kind == "Md":
        return _fmt(numbers.median(), digits)
    if kind == "minmax":
        return f"{_fmt(numbers.min(), digits)}-{_fmt(numbers.max(), digits)}"
    if kind == "M":
        return _fmt(numbers.mean(), digits)
    if kind == "SD":
        return _fmt(numbers.std(ddof=1), digits)
    raise ValueError(f"Unknown summary kind: {kind!r}")


@dataclass
class DescriptiveSummary:
    """
    Attributes:
        table: One row per variable of interest (variable, group, N, Md, minmax, M, SD).
        display: Test-score rows only, labels suffixed with their score type.
        note: 'Note. label: description, …' text, or None when no notes are given.
    """

    table: pd.DataFrame
    display: pd.DataFrame
    note: str | None


def _read_vois(vois: typing.Any) -> pd.DataFrame:
    if isinstance(vois, (str, pathlib.Path)):
        vois = load_table(vois, delimiter=";")
    v = pd.DataFrame(vois).copy()
    if v.shape[1] < 3:
        raise ValueError("Variables of interest need at least name, label and type columns")
    v.columns = VOIS_COLUMNS[: v.shape[1]] + list(v.columns[len(VOIS_COLUMNS):])
    for column in VOIS_COLUMNS:
        if column not in v.columns:
            v[column] = np.nan
    unknown = sorted(set(v["type"]) - VARIABLE_TYPES)
    if unknown:
        raise ValueError(f"Unknown variable types: {unknown}")
    return v


def _summarize_variable(data: pd.DataFrame, voi: pd.Series) -> dict[str, str]:
    values = data[voi["variable"]]
    kind = voi["type"]
    row = {"variable": voi["label"], "group": voi["group"]}
    if kind == "binary":
        row["N"] = do_summary(values, 0, "Nperc")
    elif kind == "nominal":
        row["N"] = do_summary(values, 0, "Nslash")
    else:
        row["N"] = do_summary(values, 0, "N")

    for statistic in STATISTICS:
        if kind != "continuous":
            row[statistic] = "-"
        elif voi["group"] in COGNITIVE_GROUPS:
            row[statistic] = do_summary(values, 2, statistic)
        else:
            row[statistic] = do_summary(values, 2 if statistic in ("M", "SD") else 0, statistic)
    return row


def compute_descriptives(data: pd.DataFrame, vois: typing.Any) -> DescriptiveSummary:
    """
    Descriptive statistics for the variables listed in `vois`.

    `vois` is a frame (or a path to a semicolon-delimited file) whose columns are,
    by position: variable name, label, type ('continuous', 'binary', 'nominal'),
    and optionally group, note and score-type description.
    """
    v = _read_vois(vois)
    missing = sorted(set(v["variable"]) - set(data.columns))
    if missing:
        raise KeyError(f"Variables not found in data: {missing}")

    table = pd.DataFrame.from_records(
        [_summarize_variable(data, voi) for _, voi in v.iterrows()],
        columns=["variable", "group", "N", *STATISTICS],
    )

    display = table[~table["group"].isin(DEMOGRAPHIC_GROUPS)].copy()
    scores = {(voi["label"], voi["group"]): voi["score"] for _, voi in v.iterrows()}
    display["variable"] = [
        label if pd.isna(scores.get((label, group))) else f"{label} ({scores[(label, group)]})"
        for label, group in zip(display["variable"], display["group"])
    ]
    display = display.rename(columns={"minmax": "Min-max"}).reset_index(drop=True)

    notes = v.dropna(subset=["note"])
    note = None
    if not notes.empty:
        note = "Note. " + ", ".join(f"{label}: {text}" for label, text in zip(notes["label"], notes["note"]))

    return DescriptiveSummary(table=table, display=display, note=note)
