"""
Apply PDD criteria variants to a patient table.

diagnose_pdd_case evaluates one variant for every patient; diagnose_pdd_sample
runs it for every variant and stacks the results into a long table, one row per
(patient, variant), which is what the concordance step consumes.

Optional domains left unmapped point at the DRS-2 total with no threshold and
are never counted as impaired. Under the 'moca' rule an unmapped domain
therefore never adds to crit5; the other rules are unaffected.
"""

import logging
import typing
from dataclasses import dataclass

import pandas as pd

from .criteria import CriteriaVariant, ImpairmentRule, criteria_to_frame

ORIGINAL_IMPAIRMENTS = {
    "impaired_orig_att": "atte",
    "impaired_orig_exe": "exec",
    "impaired_orig_con": "cons",
    "impaired_orig_mem": "memo",
}
NEW_IMPAIRMENTS = {"impaired_new_lan": "lang"}
IMPAIRMENT_COLUMNS = list(ORIGINAL_IMPAIRMENTS) + list(NEW_IMPAIRMENTS)
CRITERIA_COLUMNS = [f"crit{i}" for i in range(1, 9)]


@dataclass
class PDDResult:
    """
    Output of diagnose_pdd_sample.

    Attributes:
        criteria: One row per variant (see criteria_to_frame), in input order.
        PDD: Long table with columns id, type, PDD, impaired_*, crit1..crit8.
    """

    criteria: pd.DataFrame
    PDD: pd.DataFrame

    @property
    def types(self) -> list[str]:
        return list(self.criteria["type"])


def _scores(patients: pd.DataFrame, column: str) -> pd.Series:
    # Raises on non-numeric cells instead of silently comparing strings
    return pd.to_numeric(patients[column])


def _flag(condition: pd.Series, missing: pd.Series) -> pd.Series:
    """Boolean flags where a missing input score yields a missing flag."""
    return condition.astype("boolean").mask(missing)


def _below(patients: pd.DataFrame, column: str, threshold: float | None) -> pd.Series:
    if threshold is None:
        # unmapped optional domain: never counted as impaired
        return pd.Series(False, index=patients.index, dtype="boolean")
    scores = _scores(patients, column)
    return _flag(scores < threshold, scores.isna())


def _above(patients: pd.DataFrame, column: str, threshold: float) -> pd.Series:
    scores = _scores(patients, column)
    return _flag(scores > threshold, scores.isna())


def _more_than_one(flags: pd.DataFrame) -> pd.Series:
    counts = flags.astype("float64").sum(axis=1, skipna=False)
    return _flag(counts > 1, counts.isna())


def _always(index: pd.Index) -> pd.Series:
    return pd.Series(True, index=index, dtype="boolean")


def diagnose_pdd_case(patients: pd.DataFrame, variant: CriteriaVariant) -> pd.DataFrame:
    """
    Diagnose probable PDD in every patient according to one criteria variant.

    The variant is resolved first (unmapped optional domains point at the dummy
    test) and checked against the patient table; a missing column raises
    CriteriaConfigError.

    Returns a frame with columns: id, PDD, the five impairment flags and crit1..crit8.
    """
    resolved = variant.resolve()
    resolved.validate_against(patients.columns)
    index = patients.index

    out = pd.DataFrame(index=index)
    out["id"] = patients["id"]
    for column, domain in {**ORIGINAL_IMPAIRMENTS, **NEW_IMPAIRMENTS}.items():
        out[column] = _below(patients, getattr(resolved, domain), getattr(resolved, f"{domain}_t"))

    # PDD criteria proper:
    out["crit1"] = _always(index)  # 1. Parkinson's disease
    out["crit2"] = _always(index)  # 2. PD developed before dementia
    out["crit3"] = _below(patients, resolved.glob, resolved.glob_t)  # 3. Global deficit
    out["crit4"] = _above(patients, resolved.iadl, resolved.iadl_t)  # 4. Impact on (I)ADLs

    # 5. Impaired cognition
    rule = resolved.rule
    if rule is ImpairmentRule.ORIGINAL:
        out["crit5"] = _more_than_one(out[list(ORIGINAL_IMPAIRMENTS)])
    elif rule is ImpairmentRule.MOCA:
        out["crit5"] = _more_than_one(out[IMPAIRMENT_COLUMNS])
    elif rule is ImpairmentRule.DIRECT_GLOBAL:
        out["crit5"] = out["crit3"].copy()
    else:
        raise AssertionError(f"Unhandled impairment rule {rule!r}")

    out["crit6"] = _always(index)  # 6. Absence of major depression
    out["crit7"] = _always(index)  # 7. Absence of major depression
    out["crit8"] = _always(index)  # 8. Absence of other abnormalities that obscure diagnosis

    met = out[CRITERIA_COLUMNS].astype("float64").sum(axis=1, skipna=False)
    out["PDD"] = _flag(met == len(CRITERIA_COLUMNS), met.isna())

    return out[["id", "PDD", *IMPAIRMENT_COLUMNS, *CRITERIA_COLUMNS]].reset_index(drop=True)


def diagnose_pdd_sample(
    patients: pd.DataFrame, criteria: typing.Sequence[CriteriaVariant]
) -> PDDResult:
    """
    Run diagnose_pdd_case once per variant and collect a long table of
    (id, type, PDD, ...) rows, variants stacked in the given order.
    """
    if "id" not in patients.columns:
        raise ValueError("Patient table is missing the 'id' column")
    duplicated = patients.loc[patients["id"].duplicated(), "id"]
    if not duplicated.empty:
        raise ValueError(f"Patient ids must be unique, found repeats: {sorted(duplicated.astype(str).unique())}")
    if not criteria:
        raise ValueError("At least one criteria variant is required")

    # validate everything up front so nothing is half-computed
    for variant in criteria:
        variant.resolve().validate_against(patients.columns)

    frames = []
    for variant in criteria:
        logging.debug(f"Diagnosing {len(patients)} patients with criteria {variant.type!r}")
        case = diagnose_pdd_case(patients, variant)
        case.insert(1, "type", variant.type)
        frames.append(case)
        logging.info(
            f"Criteria {variant.type!r}: {int(case['PDD'].sum())} of {len(case)} patients meet probable PDD"
        )

    return PDDResult(criteria=criteria_to_frame(criteria), PDD=pd.concat(frames, ignore_index=True))
