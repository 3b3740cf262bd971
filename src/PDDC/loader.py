import pathlib

import pandas as pd

EXCEL_SUFFIXES = {".xlsx", ".xlsm"}


def normalize_headers(df: pd.DataFrame, lower: bool = True) -> pd.DataFrame:
    """
    Clean column headers and return the same frame:
      - strip surrounding whitespace
      - drop any "(…)" suffix
      - spaces → underscore
      - drop colons
      - optionally lowercase
    """
    columns = (
        df.columns.astype(str).str.strip()
        .str.replace(r"\s*\(.*?\)", "", regex=True)  # drop any "(…)"
        .str.replace(r"\s+", "_", regex=True)  # spaces → underscore
        .str.replace(":", "", regex=False)  # drop colons
    )
    if lower:
        columns = columns.str.lower()
    df.columns = columns
    return df


def load_table(path: str | pathlib.Path, delimiter: str = ";") -> pd.DataFrame:
    """
    Read a single table from disk:
      - `.xlsx` workbooks → first worksheet, first row = header
      - anything else → delimited text (semicolon by default)
    Headers are returned untouched; callers decide on renames before normalizing.
    """
    path = pathlib.Path(path)
    if path.suffix.lower() in EXCEL_SUFFIXES:
        excel = pd.ExcelFile(path, engine="openpyxl")
        return pd.read_excel(excel, sheet_name=excel.sheet_names[0], header=0, engine="openpyxl")
    return pd.read_csv(path, sep=delimiter)


def apply_renames(df: pd.DataFrame, rename_map: dict[str, str]) -> pd.DataFrame:
    # only rename what is actually there
    return df.rename(
        columns={orig: target for orig, target in rename_map.items() if orig in df.columns}
    )
