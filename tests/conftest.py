import os

import pandas as pd
import pytest

from PDDC.criteria import CriteriaVariant, load_criteria


@pytest.fixture(scope="session")
def fpath_test_dir() -> str:
    """
    Path to `tests/data/` folder.
    """
    return os.path.join(os.path.dirname(__file__), "data")


@pytest.fixture(scope="session")
def fpath_criteria(fpath_test_dir: str) -> str:
    return os.path.join(fpath_test_dir, "criteria.csv")


@pytest.fixture(scope="session")
def fpath_patients(fpath_test_dir: str) -> str:
    return os.path.join(fpath_test_dir, "patients.csv")


@pytest.fixture
def criteria(fpath_criteria: str) -> list[CriteriaVariant]:
    return load_criteria(fpath_criteria)


@pytest.fixture
def patients(fpath_patients: str) -> pd.DataFrame:
    """The included rows of the sample patient table."""
    df = pd.read_csv(fpath_patients, sep=";")
    return df[df["incl"] == 1].reset_index(drop=True)


@pytest.fixture
def toy_patients() -> pd.DataFrame:
    """
    Four patients on made-up tests `a`..`e` (domains), `g` (global) and `f` (IADL).
    Thresholds used with it: domains < 5, global < 10, IADL > 3.
    """
    return pd.DataFrame(
        {
            "id": ["P1", "P2", "P3", "P4"],
            "a": [1, 9, 1, 9],
            "b": [1, 9, 9, 9],
            "c": [9, 9, 9, 9],
            "d": [9, 9, 9, 9],
            "e": [9, 9, 1, 9],
            "g": [5, 5, 5, 20],
            "f": [6, 6, 6, 6],
            "drsii": [130, 130, 130, 130],
        }
    )


def make_variant(name: str = "toy", group: str = "mmse", **overrides) -> CriteriaVariant:
    fields = dict(
        type=name,
        group=group,
        atte="a", atte_t=5,
        exec="b", exec_t=5,
        cons="c", cons_t=5,
        memo="d", memo_t=5,
        lang="e", lang_t=5,
        glob="g", glob_t=10,
        iadl="f", iadl_t=3,
    )
    fields.update(overrides)
    return CriteriaVariant(**fields)
