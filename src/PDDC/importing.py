"""
Import and clean the two raw sources of the study.

- import_item_data: the item-level neuropsychological export (semicolon-delimited).
  Out-of-range item scores halt the import.
- import_redcap_data: the REDCap export (comma-delimited) plus a scoring table.
  Disagreeing verbal-fluency scores are handled according to a FluencyPolicy.

Problems are written to a stairval Notepad; a DataValidationError is raised once
all checks have run, so every offending record is listed in one go.
"""

import logging
import pathlib
import re
import typing
import unicodedata
from enum import Enum

import numpy as np
import pandas as pd
from stairval.notepad import Notepad

from .loader import apply_renames, load_table, normalize_headers

# Item-level export columns → study names (applied before lower-casing)
ITEM_RENAME_MAP = {
    "IPN": "id",
    "born_NA_RC": "birth",
    "gender_NA_RC": "sex",
    "hand_NA_RC": "hand",
    "MMSE_tot": "mmse",
    "FAQ_seb": "faq",
    "BDI-II": "bdi",
}

# Admissible score ranges (inclusive); None = unbounded
ITEM_RANGE_CHECKS: dict[str, tuple[float, float | None]] = {
    "mmse": (0, 30),
    "faq": (0, 30),
    "faq_9": (0, 3),
    "mmse_7": (0, 5),
    "clox_num": (0, 1),
    "clox_hands": (0, 1),
    "mmse_pent": (0, 1),
    "mmse_3words": (0, 3),
    "vf_s": (0, None),
}

# Columns shown next to an offending value
REPORT_COLUMNS = ["surname", "firstname", "id", "assdate"]

# Repeated assessments resolved by hand: (id, assessment date) rows to exclude.
# IPN138: keep the first assessment, it is the "screening" in REDCap.
# IPN347: keep the first assessment, the second one was just one year later.
# IPN661: keep the second assessment, it is REDCap's "screening".
DUPLICATE_VISIT_EXCLUSIONS = (
    ("IPN138", "2018-02-07"),
    ("IPN347", "2021-01-25"),
    ("IPN661", "2019-10-23"),
)

# IPN225's item-data name matches IPN335 in REDCap
ID_RECODES = {"IPN225": "IPN335"}

ITEM_DATE_FORMAT = "%d.%m.%Y"

REDCAP_RENAME_MAP = {
    "study_id": "id",
    "rok_vzniku_pn": "pd_dur",
    "levodopa_equivalent": "ledd",
    "dob": "birth",
    "datum_neuropsy_23afdc": "neuropsy_years",
    "drsii_total": "drsii",
    "nart_7fd846": "nart",
    "tol_anderson": "tol",
}

REDCAP_FINAL_RENAMES = {
    "years_edu": "edu_years",
    "moca_recall_sum": "moca_5words",
    "moca_score": "moca_total",
    "s_moca_score": "smoca_total",
}

# FAQ bookkeeping columns dropped once the item scores are resolved
FAQ_HELPER_PREFIXES = tuple(f"faq_{part}" for part in ("fill", "uvod", "vykon", "nikdy", "score"))

# Analysis columns kept from REDCap; entries ending in '*' are prefixes
REDCAP_OUTPUT_COLUMNS = [
    "birth", "id", "age_lvl2", "sex", "edu_years", "type_pd", "hy_stage", "pd_dur", "asym_park", "ledd",
    "updrsiii_off", "updrsiii_on",
    "drsii", "mmse", "nart",
    "moca_cube", "moca_7", "vf_k", "moca_5words", "moca_anim", "moca_abs", "moca_cloc", "moca_clock*",
    "moca_total", "smoca_total",
    "faq*", "bdi", "stai_1", "stai_2", "gds_15",
    "tmt_a", "ds_b",
    "pst_c", "vf_animals",
    "sim", "bnt_60",
    "ravlt_30", "bvmt_30", "wms_family_30",
    "jol", "clox_i",
]

MOCA_SERIAL_SEVEN_RECODE = {0: 0, 1: 1, 2: 2, 3: 2, 4: 3, 5: 3}


class DataValidationError(ValueError):
    """Raised when source data fail validation; details are on the notepad."""


class FluencyPolicy(Enum):
    """
    What to do when the REDCap verbal fluency (vf_k) and the MoCA fluency item
    (moca_fluence_k) disagree.
    """
    WARN = "warn"  # list the records, keep the Level II value vf_k
    ERROR = "error"  # list the records and halt

    @classmethod
    def from_label(cls, label: str) -> "FluencyPolicy":
        try:
            return cls(str(label).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown fluency policy: {label!r}")


def _clean_name(value: typing.Any) -> typing.Any:
    """'Nováková Jana' → 'novakova_jana'; missing values pass through."""
    if value is None or pd.isna(value):
        return value
    ascii_text = unicodedata.normalize("NFKD", str(value)).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^0-9a-z]+", "_", ascii_text.lower()).strip("_")


def _as_categorical(values: pd.Series, labels: dict[typing.Any, str]) -> pd.Series:
    return pd.Series(
        pd.Categorical(values.map(labels), categories=list(labels.values()), ordered=False),
        index=values.index,
    )


def _describe_record(row: pd.Series, columns: list[str]) -> str:
    parts = []
    for column in columns:
        value = row[column]
        if isinstance(value, pd.Timestamp):
            value = value.date().isoformat()
        parts.append(f"{column}={value}")
    return ", ".join(parts)


def check_ranges(
    df: pd.DataFrame,
    checks: dict[str, tuple[float, float | None]],
    notepad: Notepad,
    source: str = "item data",
) -> bool:
    """
    Add one error per out-of-range value to the notepad.
    Returns True when at least one value failed.
    """
    failed = False
    shown = [c for c in REPORT_COLUMNS if c in df.columns]
    for column, (low, high) in checks.items():
        if column not in df.columns:
            notepad.add_warning(f"{source}: column {column!r} not found, range check skipped")
            continue
        values = pd.to_numeric(df[column], errors="coerce")
        # present but unparsable, e.g. the letter O typed for a zero
        unreadable = df[column].notna() & values.isna()
        bad = values < low
        if high is not None:
            bad |= values > high
        bad |= unreadable
        if not bad.any():
            continue
        failed = True
        bounds = f"[{low}, {high}]" if high is not None else f">= {low}"
        for index, row in df.loc[bad].iterrows():
            problem = "is not a number" if unreadable[index] else f"outside {bounds}"
            message = f"{source}: {column}={row[column]} {problem} ({_describe_record(row, shown)})"
            logging.error(message)
            notepad.add_error(message)
    return failed


def import_item_data(
    path: str | pathlib.Path,
    notepad: Notepad,
    exclusions: typing.Iterable[tuple[str, str]] = DUPLICATE_VISIT_EXCLUSIONS,
    id_recodes: dict[str, str] | None = None,
) -> pd.DataFrame:
    """
    Read the item-level export and prepare it:
      - rename export columns, lower-case all headers
      - derive the CLOX total (cloc), code sex/hand, clean name columns, parse dates
      - flag everyone as included (incl = 1), then exclude the listed repeated visits
      - recode ids known to be mismatched

    Raises DataValidationError after listing every out-of-range item score.
    """
    id_recodes = ID_RECODES if id_recodes is None else id_recodes
    df = load_table(path, delimiter=";")
    df = normalize_headers(apply_renames(df, ITEM_RENAME_MAP))
    logging.debug(f"Item data: {len(df)} rows, {len(df.columns)} columns")

    df["cloc"] = df["clox_num"] + df["clox_hands"]
    if "sex" in df.columns:
        df["sex"] = _as_categorical(df["sex"], {"F": "female", "M": "male"})
    if "hand" in df.columns:
        df["hand"] = _as_categorical(df["hand"], {"R": "right", "L": "left"})
    for column in [c for c in df.columns if c.endswith("name")]:
        df[column] = df[column].map(_clean_name)
    for column in ("assdate", "birth"):
        if column in df.columns:
            df[column] = pd.to_datetime(df[column], format=ITEM_DATE_FORMAT)
    df["incl"] = 1  # as a baseline, include everyone

    if check_ranges(df, ITEM_RANGE_CHECKS, notepad):
        raise DataValidationError(
            "There seem to be typos in the item data, check the records listed above to locate and repair them."
        )

    df["id"] = df["id"].astype(str)
    for patient_id, assessment_date in exclusions:
        mask = (df["id"] == patient_id) & (df["assdate"] == pd.Timestamp(assessment_date))
        if mask.any():
            logging.info(f"Excluding repeated assessment of {patient_id} on {assessment_date}")
        df.loc[mask, "incl"] = 0
    df["id"] = df["id"].replace(id_recodes)
    return df


def _read_scoring(scoring: typing.Any) -> pd.DataFrame:
    if isinstance(scoring, (str, pathlib.Path)):
        scoring = load_table(scoring, delimiter=";")
    scoring = normalize_headers(pd.DataFrame(scoring).copy())
    missing = {"scale", "item", "rev", "min", "max"} - set(scoring.columns)
    if missing:
        raise ValueError(f"Scoring table is missing columns: {sorted(missing)}")
    return scoring


def _item_ids(cell: typing.Any) -> list[str]:
    """'1,2,3' → ['1', '2', '3']; single ids read as floats (2.0) come back as '2'."""
    if isinstance(cell, float) and cell.is_integer():
        cell = int(cell)
    return [item.strip() for item in str(cell).split(",") if item.strip()]


def _items(scoring: pd.DataFrame, scale: str, column: str = "item") -> list[str]:
    cells = scoring.loc[scoring["scale"] == scale, column].dropna()
    return [item for cell in cells for item in _item_ids(cell)]


def _row_sum(df: pd.DataFrame, columns: list[str], name: str, notepad: Notepad) -> pd.Series:
    """Row sums that stay missing when any item is missing."""
    if not columns:
        notepad.add_warning(f"REDCap: no item columns found for {name!r}")
        return pd.Series(np.nan, index=df.index)
    return df[columns].apply(pd.to_numeric).sum(axis=1, skipna=False)


def _with_prefix(df: pd.DataFrame, prefix: str) -> list[str]:
    return [c for c in df.columns if c.startswith(prefix)]


def resolve_faq_items(df: pd.DataFrame, items: list[str]) -> pd.DataFrame:
    """
    FAQ items were answered either directly (faq_uvod_i == 1 → faq_vykon_i) or,
    for activities never performed, indirectly (faq_uvod_i == 2 → faq_nikdy_i).
    """
    for item in items:
        intro = df[f"faq_uvod_{item}"]
        df[f"faq_{item}"] = np.select(
            [intro == 1, intro == 2],
            [df[f"faq_vykon_{item}"], df[f"faq_nikdy_{item}"]],
            default=np.nan,
        )
    return df


def reverse_items(df: pd.DataFrame, scoring: pd.DataFrame) -> pd.DataFrame:
    """Reverse-score the items listed in the scoring table's `rev` column (max + min - x)."""
    for _, row in scoring.dropna(subset=["rev"]).iterrows():
        for item in _item_ids(row["rev"]):
            column = f"{row['scale']}_{item}"
            df[column] = (row["max"] + row["min"]) - df[column]
    return df


def check_fluency(df: pd.DataFrame, notepad: Notepad, policy: FluencyPolicy) -> bool:
    """
    Compare the REDCap verbal fluency (vf_k) with the MoCA fluency item.
    Returns True when records disagree.
    """
    both = df["vf_k"].notna() & df["moca_fluence_k"].notna()
    mismatch = df.loc[both & (df["vf_k"] != df["moca_fluence_k"])]
    if mismatch.empty:
        return False

    add = notepad.add_error if policy is FluencyPolicy.ERROR else notepad.add_warning
    shown = [c for c in ("id", "neuropsy_years", "vf_k", "moca_fluence_k") if c in df.columns]
    for _, row in mismatch.iterrows():
        add(f"REDCap: verbal fluency mismatch ({_describe_record(row, shown)})")
    if policy is FluencyPolicy.WARN:
        notepad.add_warning(
            "REDCap: incongruent verbal fluency between MoCA and Level II; "
            "using the Level II data in these cases to keep it consistent with the rest of the data."
        )
    logging.warning(f"{len(mismatch)} REDCap records disagree on verbal fluency")
    return True


def import_redcap_data(
    path: str | pathlib.Path,
    scoring: typing.Any,
    notepad: Notepad,
    fluency_policy: FluencyPolicy = FluencyPolicy.WARN,
    rename_map: dict[str, str] | None = None,
) -> pd.DataFrame:
    """
    Read the REDCap export and derive the analysis variables.

    `scoring` is a frame (or path to a semicolon-delimited file) with columns
    scale, item, rev, min, max; `item` and `rev` hold comma-separated item ids.
    """
    rename_map = REDCAP_RENAME_MAP if rename_map is None else rename_map
    scoring = _read_scoring(scoring)
    df = load_table(path, delimiter=",")
    df = df.drop(columns=[c for c in df.columns if "dbs" in c or "post" in c])
    df = df[df["redcap_event_name"].astype(str).str.contains("screening")].copy()
    df = apply_renames(df, rename_map)
    logging.debug(f"REDCap: {len(df)} screening records")

    # MDS-UPDRS III levodopa-test items: mdsupdrs_3_1_ldopatest → mdsupdrs31
    df = df.rename(
        columns={c: c.replace("_ldopatest", "").replace("_", "") for c in df.columns if "mdsupdrs" in c}
    )

    df = resolve_faq_items(df, _items(scoring, "faq"))
    df = reverse_items(df, scoring)

    if check_fluency(df, notepad, fluency_policy) and fluency_policy is FluencyPolicy.ERROR:
        raise DataValidationError(
            "There are incongruities in verbal fluency data between MoCA and Level II; "
            "check the records listed above to locate and repair them."
        )

    df = df.drop(columns=[c for c in df.columns if c.startswith(FAQ_HELPER_PREFIXES)])
    df["id"] = df["id"].astype(str).str.replace("excluded_", "", n=1, regex=False)

    neuropsy_date = pd.to_datetime(df["neuropsy_years"])
    updrs_items = _items(scoring, "updrs_iii")
    sums = {
        "faq": _with_prefix(df, "faq"),
        "bdi": _with_prefix(df, "bdi"),
        "stai_1": _with_prefix(df, "staix1"),
        "stai_2": _with_prefix(df, "staix2"),
        "updrsiii_off": [f"mdsupdrs3{i}" for i in updrs_items],
        "updrsiii_on": [f"mdsupdrs3{i}on" for i in updrs_items],
        "moca_cloc": _with_prefix(df, "moca_clock"),
        "moca_anim": _with_prefix(df, "moca_naming"),
        "moca_abs": _with_prefix(df, "moca_abstraction"),
        "moca_7raw": _with_prefix(df, "moca_substr"),
    }
    for name, columns in sums.items():
        df[name] = _row_sum(df, columns, name, notepad)

    df["pd_dur"] = neuropsy_date.dt.year - df["pd_dur"]
    df["age_lvl2"] = (neuropsy_date - pd.to_datetime(df["birth"])).dt.days / 365.25
    df["sex"] = _as_categorical(df["sex"], {0: "female", 1: "male"})
    df["type_pd"] = _as_categorical(df["type_pd"], {1: "tremor-dominant", 2: "akinetic-rigid"})
    df["asym_park"] = _as_categorical(df["asym_park"], {1: "right", 2: "left"})
    df["moca_7"] = df["moca_7raw"].map(MOCA_SERIAL_SEVEN_RECODE)

    df = df.rename(columns=REDCAP_FINAL_RENAMES)
    return select_columns(df, REDCAP_OUTPUT_COLUMNS, notepad)


def select_columns(df: pd.DataFrame, wanted: list[str], notepad: Notepad) -> pd.DataFrame:
    """Keep `wanted` columns in order; 'prefix*' entries expand to every matching column."""
    selected: list[str] = []
    for entry in wanted:
        if entry.endswith("*"):
            matches = _with_prefix(df, entry[:-1])
        else:
            matches = [entry] if entry in df.columns else []
        if not matches:
            notepad.add_warning(f"REDCap: expected column {entry!r} not found")
        selected.extend(m for m in matches if m not in selected)
    return df[selected].reset_index(drop=True)
