"""
Command‑line interface for the PDDC toolkit.
Prepares the raw study exports, applies the PDD criteria variants and
reports their concordance, writing everything into a timestamped folder.
"""

import click
import logging
import matplotlib.pyplot as plt
import pandas as pd
import pathlib
import sys
import typing

from datetime import datetime
from stairval.notepad import Notepad, create_notepad

from .concordance import describe_concordance
from .criteria import CriteriaConfigError, CriteriaVariant, load_criteria
from .diagnosis import diagnose_pdd_sample
from .importing import DataValidationError, FluencyPolicy, import_item_data, import_redcap_data
from .loader import load_table
from .plots import ConcordancePlotter
from .summary import compute_descriptives

OUTPUT_FOLDER = "pddc_output"


@click.group()
@click.option("--verbose-logging", is_flag=True, help="Also emit debug logs to stderr")
@click.option(
    "--log-file-path",
    type=click.Path(dir_okay=False, writable=True),
    help="Append timestamped logs to this file",
)
def main(verbose_logging: bool, log_file_path: typing.Optional[str]):
    """PDDC: Parkinson's disease dementia criteria, diagnosis and concordance."""
    _configure_logging(verbose_logging, log_file_path)


def _configure_logging(verbose_logging: bool, log_file_path: typing.Optional[str]) -> None:
    handlers: list[logging.Handler] = []
    if log_file_path:
        handlers.append(logging.FileHandler(log_file_path, mode="a", encoding="utf-8"))
    if verbose_logging:
        handlers.append(logging.StreamHandler(sys.stderr))
    if handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose_logging else logging.INFO,
            format="%(asctime)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            handlers=handlers,
            force=True,
        )


def _output_root_option(func):
    return click.option(
        "-o",
        "--output-root",
        default=".",
        type=click.Path(file_okay=False),
        help="where the timestamped output folder is created (default: current directory)",
    )(func)


@main.command(name="prepare-item")
@click.option(
    "-i",
    "--item-data",
    "item_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="path to the semicolon-delimited item-level export",
)
@_output_root_option
def prepare_item(item_path: str, output_root: str):
    """
    Clean the item-level export; halts if any item score is out of range.
    """
    notepad = create_notepad("item-data")
    try:
        df = import_item_data(item_path, notepad)
    except DataValidationError as e:
        _report_issues(notepad)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    _report_issues(notepad)

    out_dir = _prepare_output_dir(output_root)
    out = out_dir / "item_data.csv"
    df.to_csv(out, sep=";", index=False)
    click.echo(f"Wrote {len(df)} item-data rows ({int((df['incl'] == 1).sum())} included) to {out}")


@main.command(name="prepare-redcap")
@click.option(
    "-r",
    "--redcap",
    "redcap_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="path to the REDCap CSV export",
)
@click.option(
    "-s",
    "--scoring",
    "scoring_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="path to the semicolon-delimited scoring table",
)
@click.option(
    "--fluency-policy",
    type=click.Choice([p.value for p in FluencyPolicy]),
    default=FluencyPolicy.WARN.value,
    envvar="PDDC_FLUENCY_POLICY",
    show_default=True,
    help="how to treat MoCA vs Level II verbal fluency mismatches",
)
@_output_root_option
def prepare_redcap(redcap_path: str, scoring_path: str, fluency_policy: str, output_root: str):
    """
    Derive the analysis variables from the REDCap export.
    """
    notepad = create_notepad("redcap")
    try:
        df = import_redcap_data(
            redcap_path, scoring_path, notepad, fluency_policy=FluencyPolicy.from_label(fluency_policy)
        )
    except DataValidationError as e:
        _report_issues(notepad)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    _report_issues(notepad)

    out_dir = _prepare_output_dir(output_root)
    out = out_dir / "redcap_data.csv"
    df.to_csv(out, sep=";", index=False)
    click.echo(f"Wrote {len(df)} REDCap rows to {out}")


def _patients_and_criteria_options(func):
    func = click.option(
        "--included-only/--all-rows",
        default=True,
        help="drop rows whose 'incl' flag is 0 (default: on)",
    )(func)
    func = click.option(
        "-c",
        "--criteria",
        "criteria_path",
        required=True,
        type=click.Path(exists=True, dir_okay=False),
        help="criteria table (semicolon-delimited or .xlsx)",
    )(func)
    func = click.option(
        "-p",
        "--patients",
        "patients_path",
        required=True,
        type=click.Path(exists=True, dir_okay=False),
        help="patient table (semicolon-delimited or .xlsx)",
    )(func)
    return func


@main.command(name="diagnose")
@_patients_and_criteria_options
@_output_root_option
def diagnose(patients_path: str, criteria_path: str, included_only: bool, output_root: str):
    """
    Apply every criteria variant to every patient and write the long PDD table.
    """
    patients, criteria = _load_inputs(patients_path, criteria_path, included_only)
    result = _diagnose_or_exit(patients, criteria)

    out_dir = _prepare_output_dir(output_root)
    out = out_dir / "pdd.csv"
    result.PDD.to_csv(out, sep=";", index=False)
    click.echo(f"Wrote {len(result.PDD)} diagnoses ({len(criteria)} criteria x {len(patients)} patients) to {out}")


@main.command(name="concordance")
@_patients_and_criteria_options
@click.option(
    "--full-kappa-matrix",
    is_flag=True,
    help="show Kappa in both triangles instead of once per pair",
)
@click.option("--plots/--no-plots", default=True, help="render the four heatmaps (default: on)")
@_output_root_option
def concordance(
    patients_path: str,
    criteria_path: str,
    included_only: bool,
    full_kappa_matrix: bool,
    plots: bool,
    output_root: str,
):
    """
    Diagnose, then compare all criteria pairwise (Kappa, Accuracy, Sensitivity, …).
    """
    patients, criteria = _load_inputs(patients_path, criteria_path, included_only)
    result = _diagnose_or_exit(patients, criteria)
    report = describe_concordance(result, kappa_triangle=not full_kappa_matrix, plot=plots)

    out_dir = _prepare_output_dir(output_root)
    result.PDD.to_csv(out_dir / "pdd.csv", sep=";", index=False)
    report.table.to_csv(out_dir / "concordance.csv", sep=";", index=False)
    report.order.to_csv(out_dir / "criteria_order.csv", sep=";", index=False)

    plotter = ConcordancePlotter()
    for name, fig in report.plots.items():
        plotter.save_figure(fig, name.lower(), output_dir=str(out_dir))
        plt.close(fig)

    click.echo(f"Compared {len(report.table)} criteria pairs; results in {out_dir}")
    click.echo(f"Saved {len(report.plots)} heatmaps")


@main.command(name="describe")
@click.option(
    "-p",
    "--patients",
    "patients_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="patient table (semicolon-delimited or .xlsx)",
)
@click.option(
    "-v",
    "--variables",
    "vois_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="semicolon-delimited table of variables of interest",
)
@_output_root_option
def describe(patients_path: str, vois_path: str, output_root: str):
    """
    Descriptive statistics for the listed variables.
    """
    patients = load_table(patients_path)
    try:
        summary = compute_descriptives(patients, vois_path)
    except (KeyError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    out_dir = _prepare_output_dir(output_root)
    summary.table.to_csv(out_dir / "descriptives.csv", sep=";", index=False)
    summary.display.to_csv(out_dir / "descriptives_display.csv", sep=";", index=False)
    click.echo(f"Summarized {len(summary.table)} variables into {out_dir}")
    if summary.note:
        click.echo(summary.note)


def _load_inputs(
    patients_path: str, criteria_path: str, included_only: bool
) -> tuple[pd.DataFrame, list[CriteriaVariant]]:
    patients = load_table(patients_path)
    if included_only and "incl" in patients.columns:
        before = len(patients)
        patients = patients[patients["incl"] == 1].reset_index(drop=True)
        logging.info(f"Kept {len(patients)} of {before} rows flagged as included")
    try:
        criteria = load_criteria(criteria_path)
    except CriteriaConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    return patients, criteria


def _diagnose_or_exit(patients: pd.DataFrame, criteria: list[CriteriaVariant]):
    try:
        return diagnose_pdd_sample(patients, criteria)
    except ValueError as e:
        # CriteriaConfigError is a ValueError too
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _report_issues(notepad: Notepad):
    # if there were errors, show them
    if notepad.has_errors(include_subsections=True):
        click.echo(click.style("Errors found in data:", fg="red"))
        for err in notepad.errors():
            click.echo(f"- {err}")
    # show any warnings but keep going
    if notepad.has_warnings(include_subsections=True):
        click.echo(click.style("Warnings found in data:", fg="yellow"))
        for w in notepad.warnings():
            click.echo(f"- {w}")


def _prepare_output_dir(output_root: str = ".") -> pathlib.Path:
    # use YYYY-MM-DD_HH-MM-SS for human-readable timestamps
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    out_dir = pathlib.Path(output_root) / OUTPUT_FOLDER / timestamp
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir


if __name__ == "__main__":
    main()
