"""
Tests for diagnose_pdd_case / diagnose_pdd_sample.

The toy patients (see conftest) are built so that:
- P1 is impaired on attention and executive tests → 2 original impairments
- P2 has no impaired domain
- P3 is impaired on attention and language only → 1 original, 2 overall
- P4 has no global deficit
"""

import pandas as pd
import pytest

from PDDC.criteria import CriteriaConfigError
from PDDC.diagnosis import CRITERIA_COLUMNS, IMPAIRMENT_COLUMNS, diagnose_pdd_case, diagnose_pdd_sample
from conftest import make_variant


def test_output_columns(toy_patients):
    out = diagnose_pdd_case(toy_patients, make_variant())
    assert list(out.columns) == ["id", "PDD", *IMPAIRMENT_COLUMNS, *CRITERIA_COLUMNS]
    assert list(out["id"]) == ["P1", "P2", "P3", "P4"]


def test_mmse_group_counts_original_domains_only(toy_patients):
    out = diagnose_pdd_case(toy_patients, make_variant(group="mmse"))
    assert list(out["crit5"]) == [True, False, False, False]
    assert list(out["PDD"]) == [True, False, False, False]


def test_moca_group_counts_language_too(toy_patients):
    out = diagnose_pdd_case(toy_patients, make_variant(group="moca"))
    assert list(out["crit5"]) == [True, False, True, False]
    assert list(out["PDD"]) == [True, False, True, False]


@pytest.mark.parametrize("group", ["smoca", "lvlII"])
def test_direct_global_group_copies_crit3(toy_patients, group):
    out = diagnose_pdd_case(toy_patients, make_variant(group=group))
    assert list(out["crit5"]) == list(out["crit3"])
    assert list(out["PDD"]) == [True, True, True, False]


@pytest.mark.parametrize("group", ["mmse", "moca", "smoca"])
def test_pdd_is_conjunction_of_all_criteria(toy_patients, group):
    out = diagnose_pdd_case(toy_patients, make_variant(group=group))
    expected = out[CRITERIA_COLUMNS].astype(bool).all(axis=1)
    assert list(out["PDD"].astype(bool)) == list(expected)


def test_single_failed_criterion_flips_pdd(toy_patients):
    # P1 meets every criterion; lifting its IADL score under the cut-off breaks crit4 only
    patients = toy_patients.copy()
    patients.loc[0, "f"] = 2
    out = diagnose_pdd_case(patients, make_variant())
    assert not out.loc[0, "crit4"]
    assert out.loc[0, ["crit1", "crit2", "crit3", "crit5", "crit6", "crit7", "crit8"]].astype(bool).all()
    assert not out.loc[0, "PDD"]


def test_fixed_criteria_are_true(toy_patients):
    out = diagnose_pdd_case(toy_patients, make_variant())
    for column in ("crit1", "crit2", "crit6", "crit7", "crit8"):
        assert out[column].all()


def test_threshold_is_strict(toy_patients):
    # g == 5 for P1-P3: not below a cut-off of 5
    out = diagnose_pdd_case(toy_patients, make_variant(glob_t=5))
    assert not out["crit3"].any()


def test_unmapped_optional_domain_never_impaired(toy_patients):
    variant = make_variant(group="moca", lang=None, lang_t=None)
    out = diagnose_pdd_case(toy_patients, variant)
    assert not out["impaired_new_lan"].any()
    # P3 now has a single impaired domain
    assert list(out["crit5"]) == [True, False, False, False]


def test_missing_score_propagates(toy_patients):
    patients = toy_patients.astype({"g": "float"})
    patients.loc[1, "g"] = float("nan")
    out = diagnose_pdd_case(patients, make_variant(group="smoca"))
    assert pd.isna(out.loc[1, "crit3"])
    assert pd.isna(out.loc[1, "PDD"])
    assert out.loc[0, "PDD"]


def test_missing_referenced_column_raises(toy_patients):
    with pytest.raises(CriteriaConfigError):
        diagnose_pdd_case(toy_patients.drop(columns=["d"]), make_variant())


def test_sample_stacks_variants(toy_patients):
    variants = [make_variant("A", "mmse"), make_variant("B", "moca"), make_variant("C", "smoca")]
    result = diagnose_pdd_sample(toy_patients, variants)
    assert result.types == ["A", "B", "C"]
    assert len(result.PDD) == 12
    assert list(result.PDD.columns[:3]) == ["id", "type", "PDD"]
    by_type = result.PDD.groupby("type")["PDD"].sum()
    assert by_type.to_dict() == {"A": 1, "B": 2, "C": 3}


def test_sample_rejects_repeated_ids(toy_patients):
    patients = pd.concat([toy_patients, toy_patients.iloc[[0]]], ignore_index=True)
    with pytest.raises(ValueError):
        diagnose_pdd_sample(patients, [make_variant()])


def test_sample_validates_every_variant_first(toy_patients):
    variants = [make_variant("A"), make_variant("B", glob="no_such_test")]
    with pytest.raises(CriteriaConfigError, match="no_such_test"):
        diagnose_pdd_sample(toy_patients, variants)


def test_sample_on_file_criteria(patients, criteria):
    result = diagnose_pdd_sample(patients, criteria)
    assert len(result.PDD) == len(patients) * len(criteria)
    assert set(result.PDD["type"]) == {v.type for v in criteria}
    assert result.PDD["PDD"].notna().all()


def test_domain_without_threshold_is_rejected(toy_patients):
    with pytest.raises(CriteriaConfigError, match="atte"):
        diagnose_pdd_case(toy_patients, make_variant(atte_t=None))
