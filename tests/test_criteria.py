import pandas as pd
import pytest

from PDDC.criteria import (
    DUMMY_TEST,
    CriteriaConfigError,
    CriteriaVariant,
    ImpairmentRule,
    criteria_to_frame,
    load_criteria,
)
from conftest import make_variant


def test_impairment_rule_from_label():
    """Group tags map onto the three combination rules."""
    assert ImpairmentRule.from_label("mmse") == ImpairmentRule.ORIGINAL
    assert ImpairmentRule.from_label("moca") == ImpairmentRule.MOCA
    assert ImpairmentRule.from_label("smoca") == ImpairmentRule.DIRECT_GLOBAL
    assert ImpairmentRule.from_label("lvlII") == ImpairmentRule.DIRECT_GLOBAL


def test_impairment_rule_unknown_label_raises():
    with pytest.raises(CriteriaConfigError):
        ImpairmentRule.from_label("dsm5")


def test_unknown_group_rejected_at_construction():
    with pytest.raises(CriteriaConfigError):
        make_variant(group="dsm5")


def test_variant_is_immutable():
    variant = make_variant()
    with pytest.raises(AttributeError):
        variant.glob_t = 99


def test_resolve_points_unmapped_domains_at_dummy_test():
    variant = CriteriaVariant(type="bare", group="smoca", glob="g", glob_t=10, iadl="f", iadl_t=3)
    resolved = variant.resolve()
    for domain in ("atte", "exec", "cons", "memo", "lang"):
        assert getattr(resolved, domain) == DUMMY_TEST
        assert getattr(resolved, f"{domain}_t") is None
    # the original stays untouched
    assert variant.atte is None


@pytest.mark.parametrize("missing", ["glob", "glob_t", "iadl", "iadl_t"])
def test_resolve_requires_global_and_iadl(missing):
    variant = make_variant(**{missing: None})
    with pytest.raises(CriteriaConfigError):
        variant.resolve()


@pytest.mark.parametrize("domain", ["atte", "exec", "cons", "memo", "lang"])
def test_resolve_rejects_test_without_threshold(domain):
    variant = make_variant(**{f"{domain}_t": None})
    with pytest.raises(CriteriaConfigError, match=domain):
        variant.resolve()


def test_resolve_rejects_threshold_without_test():
    variant = CriteriaVariant(type="half", group="moca", glob="g", glob_t=10, iadl="f", iadl_t=3, memo_t=3)
    with pytest.raises(CriteriaConfigError, match="memo"):
        variant.resolve()


def test_resolve_keeps_fully_blank_domain_as_fallback():
    resolved = make_variant(atte=None, atte_t=None).resolve()
    assert resolved.atte == DUMMY_TEST
    assert resolved.atte_t is None


def test_validate_against_reports_missing_columns():
    variant = make_variant(memo="ravlt_30")
    with pytest.raises(CriteriaConfigError, match="ravlt_30"):
        variant.validate_against(["a", "b", "c", "d", "e", "f", "g"])


def test_non_numeric_threshold_rejected():
    with pytest.raises(CriteriaConfigError):
        make_variant(glob_t="twenty-six")


def test_load_criteria_from_file(fpath_criteria):
    variants = load_criteria(fpath_criteria)
    assert [v.type for v in variants] == ["mmse_faq", "moca_faq", "smoca_faq", "lvlII_bdi"]
    mmse = variants[0]
    assert mmse.rule is ImpairmentRule.ORIGINAL
    assert mmse.glob == "mmse" and mmse.glob_t == 26.0
    assert mmse.lang is None and mmse.lang_t is None
    assert variants[3].rule is ImpairmentRule.DIRECT_GLOBAL


def test_load_criteria_rejects_duplicate_types(tmp_path):
    path = tmp_path / "dup.csv"
    path.write_text(
        "type;group;glob;glob_t;iadl;iadl_t\n"
        "a;mmse;mmse;26;faq;7\n"
        "a;moca;moca_total;26;faq;7\n",
        encoding="utf-8",
    )
    with pytest.raises(CriteriaConfigError):
        load_criteria(path)


def test_load_criteria_accepts_decimal_commas(tmp_path):
    path = tmp_path / "comma.csv"
    path.write_text("type;group;glob;glob_t;iadl;iadl_t\nx;smoca;smoca_total;12,5;faq;7\n", encoding="utf-8")
    (variant,) = load_criteria(path)
    assert variant.glob_t == 12.5


def test_load_criteria_from_workbook(tmp_path):
    path = tmp_path / "criteria.xlsx"
    pd.DataFrame(
        {"type": ["w"], "group": ["smoca"], "glob": ["smoca_total"], "glob_t": [13], "iadl": ["faq"], "iadl_t": [7]}
    ).to_excel(path, index=False, engine="openpyxl")
    (variant,) = load_criteria(path)
    assert variant.type == "w" and variant.glob_t == 13.0


def test_criteria_to_frame_carries_iadl_tag(criteria):
    frame = criteria_to_frame(criteria)
    assert list(frame["type"]) == [v.type for v in criteria]
    assert list(frame["iadl_tag"]) == ["faq", "faq", "faq", "other"]
