import math
import os

import numpy as np
import pandas as pd
import pytest

from PDDC.summary import compute_descriptives, do_summary


@pytest.mark.parametrize(
    "values, digits, kind, expected",
    [
        ([1, 2, np.nan], 0, "N", "2"),
        ([1, 0, 1, 1], 0, "Nperc", "3 (75%)"),
        ([1, 2, 3, 10], 1, "Md", "2.5"),
        ([1, 2, 3, 10], 0, "minmax", "1-10"),
        ([1, 2, 3, 10], 2, "M", "4.00"),
        ([1, 2, 3, 10], 2, "SD", "4.08"),
    ],
)
def test_do_summary(values, digits, kind, expected):
    assert do_summary(pd.Series(values), digits, kind) == expected


def test_do_summary_level_counts_follow_categories():
    values = pd.Series(pd.Categorical(["a", "b", "a"], categories=["a", "b", "c"]))
    assert do_summary(values, 0, "Nslash") == "2/1/0"


def test_do_summary_estimate_with_interval():
    assert do_summary((0.5, 0.1, 0.9), 2, "estCI") == "0.50 [0.10, 0.90]"
    assert do_summary((math.nan, math.nan, math.nan), 2, "estCI") == "NA [NA, NA]"


def test_do_summary_unknown_kind():
    with pytest.raises(ValueError):
        do_summary([1, 2], 2, "IQR")


@pytest.fixture
def fpath_vois(fpath_test_dir: str) -> str:
    return os.path.join(fpath_test_dir, "vois.csv")


def test_compute_descriptives(patients, fpath_vois):
    summary = compute_descriptives(patients, fpath_vois)
    table = summary.table.set_index("variable")
    assert list(summary.table.columns) == ["variable", "group", "N", "Md", "minmax", "M", "SD"]
    assert table.loc["Included", "N"] == "7 (100%)"
    assert table.loc["Included", "M"] == "-"
    # clinical scales: whole-number median and range
    assert table.loc["MMSE", "Md"] == "26"
    assert table.loc["MMSE", "minmax"] == "22-30"
    assert table.loc["MMSE", "M"] == "26.14"
    # cognitive tests: two decimals throughout
    assert table.loc["Verbal fluency (S)", "Md"] == "9.00"
    assert table.loc["Verbal fluency (S)", "minmax"] == "6.00-16.00"


def test_display_table_drops_demographics(patients, fpath_vois):
    summary = compute_descriptives(patients, fpath_vois)
    assert list(summary.display["variable"]) == ["Verbal fluency (S) (words)", "FAQ"]
    assert "Min-max" in summary.display.columns


def test_note_lists_described_variables(patients, fpath_vois):
    summary = compute_descriptives(patients, fpath_vois)
    assert summary.note == "Note. MMSE: Mini-Mental State Examination, FAQ: Functional Activities Questionnaire"


def test_unknown_variable_raises(patients):
    vois = pd.DataFrame({"variable": ["moca_total", "ravlt_30"], "label": ["MoCA", "RAVLT"], "type": ["continuous"] * 2})
    with pytest.raises(KeyError):
        compute_descriptives(patients, vois)


def test_unknown_variable_type_raises(patients):
    vois = pd.DataFrame({"variable": ["mmse"], "label": ["MMSE"], "type": ["ordinal"]})
    with pytest.raises(ValueError):
        compute_descriptives(patients, vois)
