"""
Criteria domain model.

Defines the CriteriaVariant class: one operationalization of the probable PDD
diagnostic algorithm, i.e. which test column and which cut-off stands for an
impaired cognitive domain, which IADL measure stands for functional impact, and
which rule combines the domain impairments into the "impaired cognition" criterion.
"""

import pathlib
import typing
from dataclasses import dataclass, replace
from enum import Enum, auto

import pandas as pd

from .loader import load_table, normalize_headers

# DRS-2 total; stands in for any optional domain the variant leaves unmapped.
DUMMY_TEST = "drsii"

# Domains that may be left blank (fall back to DUMMY_TEST, never impaired).
OPTIONAL_DOMAINS = ("atte", "exec", "cons", "memo", "lang")
# Domains every variant has to map.
REQUIRED_DOMAINS = ("glob", "iadl")
DOMAINS = OPTIONAL_DOMAINS + REQUIRED_DOMAINS

FAQ_TAG = "faq"

# Axis-label colours for the concordance heatmaps, keyed by IADL tag.
LABEL_COLOURS = {FAQ_TAG: "#cd0000", "other": "black"}


class CriteriaConfigError(ValueError):
    """Raised when a criteria variant cannot be applied as configured."""


class ImpairmentRule(Enum):
    """
    How the domain impairments are combined into criterion 5 (impaired cognition).
    """
    ORIGINAL = auto()  # >1 of attention, executive, consciousness, memory
    MOCA = auto()  # >1 of the four above plus language
    DIRECT_GLOBAL = auto()  # same as the global-deficit criterion

    @classmethod
    def from_label(cls, label: str) -> "ImpairmentRule":
        """
        Convert the `group` tag of a criteria table into the corresponding enum.
        """
        key = str(label).strip().lower()
        mapping = {
            "mmse": cls.ORIGINAL,
            "moca": cls.MOCA,
            "smoca": cls.DIRECT_GLOBAL,
            "lvlii": cls.DIRECT_GLOBAL,
        }
        try:
            return mapping[key]
        except KeyError:
            raise CriteriaConfigError(f"Unknown criteria group: {label!r}")


@dataclass(frozen=True)
class CriteriaVariant:
    """
    A single, immutable PDD criteria variant.

    Attributes:
        type: Name of the variant (used as the column/axis label downstream).
        group: Raw group tag ('mmse', 'moca', 'smoca' or 'lvlII').
        atte, exec, cons, memo, lang, glob, iadl: Test column per domain, or None.
        atte_t, ..., iadl_t: Cut-off per domain, or None.
    """

    type: str
    group: str
    glob: str | None = None
    glob_t: float | None = None
    iadl: str | None = None
    iadl_t: float | None = None
    atte: str | None = None
    atte_t: float | None = None
    exec: str | None = None
    exec_t: float | None = None
    cons: str | None = None
    cons_t: float | None = None
    memo: str | None = None
    memo_t: float | None = None
    lang: str | None = None
    lang_t: float | None = None

    def __post_init__(self):
        if not isinstance(self.type, str) or not self.type.strip():
            raise CriteriaConfigError(f"Invalid criteria type: {self.type!r}")
        # fails loudly on unknown tags
        ImpairmentRule.from_label(self.group)
        for domain in DOMAINS:
            threshold = getattr(self, f"{domain}_t")
            if threshold is not None and not isinstance(threshold, (int, float)):
                raise CriteriaConfigError(
                    f"Criteria {self.type!r}: threshold for {domain!r} must be numeric, got {threshold!r}"
                )

    @property
    def rule(self) -> ImpairmentRule:
        return ImpairmentRule.from_label(self.group)

    @property
    def iadl_tag(self) -> str:
        """'faq' when functional impact is operationalized by the FAQ, 'other' otherwise."""
        return FAQ_TAG if self.iadl == FAQ_TAG else "other"

    def resolve(self) -> "CriteriaVariant":
        """
        Return a fully-populated copy:
          - optional domains without a test point at DUMMY_TEST
          - required domains (global deficit, IADL) must carry both test and threshold
          - an optional domain with only one of test and threshold is an error
        """
        for domain in REQUIRED_DOMAINS:
            if getattr(self, domain) is None or getattr(self, f"{domain}_t") is None:
                raise CriteriaConfigError(
                    f"Criteria {self.type!r}: domain {domain!r} needs both a test and a threshold"
                )
        for domain in OPTIONAL_DOMAINS:
            if (getattr(self, domain) is None) != (getattr(self, f"{domain}_t") is None):
                raise CriteriaConfigError(
                    f"Criteria {self.type!r}: domain {domain!r} needs both a test and a threshold, or neither"
                )
        fallback = {domain: DUMMY_TEST for domain in OPTIONAL_DOMAINS if getattr(self, domain) is None}
        return replace(self, **fallback)

    def referenced_columns(self) -> list[str]:
        resolved = self.resolve()
        return sorted({getattr(resolved, domain) for domain in DOMAINS})

    def validate_against(self, columns: typing.Iterable[str]) -> None:
        """
        Ensure every referenced test column exists in the patient table.
        """
        missing = sorted(set(self.referenced_columns()) - set(columns))
        if missing:
            raise CriteriaConfigError(
                f"Criteria {self.type!r}: patient table lacks columns {missing}"
            )

    @classmethod
    def from_row(cls, row: pd.Series) -> "CriteriaVariant":
        """
        Build a variant from one criteria-table row; blank cells become None.
        """
        fields: dict[str, typing.Any] = {
            "type": _cell_to_str(row.get("type")),
            "group": _cell_to_str(row.get("group")),
        }
        for domain in DOMAINS:
            fields[domain] = _cell_to_str(row.get(domain))
            fields[f"{domain}_t"] = _cell_to_float(row.get(f"{domain}_t"), domain)
        return cls(**fields)


def _cell_to_str(value: typing.Any) -> str | None:
    if value is None or pd.isna(value):
        return None
    s = str(value).strip()
    return s or None


def _cell_to_float(value: typing.Any, domain: str) -> float | None:
    if value is None or pd.isna(value):
        return None
    if isinstance(value, str):
        # semicolon-delimited tables from European locales use decimal commas
        value = value.strip().replace(",", ".")
        if not value:
            return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise CriteriaConfigError(f"Threshold for {domain!r} is not numeric: {value!r}")


def criteria_from_frame(df: pd.DataFrame) -> list[CriteriaVariant]:
    variants = [CriteriaVariant.from_row(row) for _, row in df.iterrows()]
    names = [v.type for v in variants]
    duplicated = sorted({n for n in names if names.count(n) > 1})
    if duplicated:
        raise CriteriaConfigError(f"Duplicated criteria types: {duplicated}")
    return variants


def load_criteria(path: str | pathlib.Path, delimiter: str = ";") -> list[CriteriaVariant]:
    """
    Read a criteria table (semicolon-delimited text or .xlsx) into variants,
    one per row, in file order.
    """
    df = normalize_headers(load_table(path, delimiter=delimiter))
    if not {"type", "group"}.issubset(df.columns):
        raise CriteriaConfigError(f"Criteria table {str(path)!r} needs 'type' and 'group' columns")
    return criteria_from_frame(df)


def criteria_to_frame(variants: typing.Sequence[CriteriaVariant]) -> pd.DataFrame:
    """Tabular view of the variants, one row each, with the IADL tag attached."""
    records = []
    for variant in variants:
        record = {"type": variant.type, "group": variant.group}
        for domain in DOMAINS:
            record[domain] = getattr(variant, domain)
            record[f"{domain}_t"] = getattr(variant, f"{domain}_t")
        record["iadl_tag"] = variant.iadl_tag
        records.append(record)
    return pd.DataFrame.from_records(records)
