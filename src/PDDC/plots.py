"""
Heatmaps of pairwise concordance between PDD criteria variants.

Each matrix has the predictor on the x axis and the reference on the y axis,
both ordered by descending PDD prevalence (most prevalent at the top-left).
Tick labels are coloured by how the variant operationalizes the IADL criterion.
"""

from __future__ import annotations

import os
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib.colors import LinearSegmentedColormap
from matplotlib.figure import Figure
import seaborn as sns

# Diverging palettes: low end, midpoint, high end
PALETTES = {
    "Kappa": ("#b2182b", "#ffffff", "#4682b4"),  # steelblue
    "Accuracy": ("#8b0000", "#ffffff", "#8b8b00"),  # red4 → yellow4
    "Sensitivity": ("#b2182b", "#ffffff", "#008b00"),  # green4
    "Specificity": ("#b2182b", "#ffffff", "#cd8500"),  # orange3
}

# Column of the display table drawn in each heatmap
VALUE_COLUMNS = {
    "Kappa": "Kappa_raw",
    "Accuracy": "Accuracy_raw",
    "Sensitivity": "Sensitivity",
    "Specificity": "Specificity",
}


class ConcordancePlotter:
    """
    Draws the Kappa, Accuracy, Sensitivity and Specificity matrices.

    Example:
        >>> plotter = ConcordancePlotter()
        >>> figures = plotter.plot_all(report.display, report.order, nir)
        >>> plotter.save_figure(figures["Kappa"], "kappa", output_dir="out")
    """

    def __init__(
        self,
        style: str = "white",
        context: str = "paper",
        figsize: Optional[Tuple[int, int]] = None,
        dpi: int = 100,
    ):
        """
        Args:
            style: Seaborn style
            context: Seaborn context
            figsize: Figure size; derived from the number of variants when None
            dpi: Figure resolution
        """
        self.style = style
        self.context = context
        self.figsize = figsize
        self.dpi = dpi

        sns.set_style(style)
        sns.set_context(context)

    @staticmethod
    def to_matrix(display: pd.DataFrame, column: str, order: pd.DataFrame) -> pd.DataFrame:
        """Pivot a display-table column into a reference × predictor matrix in prevalence order."""
        levels = list(order["type"])
        frame = display.assign(
            predictor=display["predictor"].astype(str),
            reference=display["reference"].astype(str),
        )
        matrix = frame.pivot(index="reference", columns="predictor", values=column)
        return matrix.reindex(index=levels, columns=levels)

    def _figsize(self, n: int) -> Tuple[float, float]:
        if self.figsize is not None:
            return self.figsize
        size = max(5, n * 0.6 + 2)
        return (size + 1, size)

    def _heatmap(
        self,
        matrix: pd.DataFrame,
        order: pd.DataFrame,
        title: str,
        center: float,
        vmin: float,
        vmax: float,
        annot: Optional[pd.DataFrame] = None,
    ) -> Figure:
        fig, ax = plt.subplots(figsize=self._figsize(len(matrix)), dpi=self.dpi)
        ax.set_facecolor("white")  # missing cells stay blank
        low, mid, high = PALETTES[title]
        cmap = LinearSegmentedColormap.from_list(title.lower(), [low, mid, high])

        if np.isnan(center):
            center = (vmin + vmax) / 2

        sns.heatmap(
            matrix.astype(float),
            annot=annot.to_numpy() if annot is not None else False,
            fmt="",
            cmap=cmap,
            center=center,
            vmin=vmin,
            vmax=vmax,
            square=True,
            linewidths=0.5,
            cbar_kws={"shrink": 0.8, "label": title},
            ax=ax,
        )

        colours = dict(zip(order["type"], order["colour"]))
        for label in ax.get_xticklabels():
            label.set_color(colours.get(label.get_text(), "black"))
            label.set_rotation(66)
            label.set_horizontalalignment("right")
        for label in ax.get_yticklabels():
            label.set_color(colours.get(label.get_text(), "black"))
            label.set_rotation(0)

        ax.set_xlabel("Predictor")
        ax.set_ylabel("Reference")
        fig.tight_layout()
        return fig

    def plot_kappa(self, display: pd.DataFrame, order: pd.DataFrame) -> Figure:
        matrix = self.to_matrix(display, VALUE_COLUMNS["Kappa"], order)
        return self._heatmap(matrix, order, "Kappa", center=0.0, vmin=-1.0, vmax=1.0)

    def plot_accuracy(self, display: pd.DataFrame, order: pd.DataFrame, expected_nir: float) -> Figure:
        """Accuracy centred at the mean No Information Rate, starred where Accuracy > NIR."""
        matrix = self.to_matrix(display, VALUE_COLUMNS["Accuracy"], order)
        stars = self.to_matrix(display, "Accuracy_sig", order).fillna("")
        return self._heatmap(matrix, order, "Accuracy", center=expected_nir, vmin=0.0, vmax=1.0, annot=stars)

    def plot_sensitivity(self, display: pd.DataFrame, order: pd.DataFrame) -> Figure:
        matrix = self.to_matrix(display, VALUE_COLUMNS["Sensitivity"], order)
        return self._heatmap(matrix, order, "Sensitivity", center=0.5, vmin=0.0, vmax=1.0)

    def plot_specificity(self, display: pd.DataFrame, order: pd.DataFrame) -> Figure:
        matrix = self.to_matrix(display, VALUE_COLUMNS["Specificity"], order)
        return self._heatmap(matrix, order, "Specificity", center=0.5, vmin=0.0, vmax=1.0)

    def plot_all(self, display: pd.DataFrame, order: pd.DataFrame, expected_nir: float) -> Dict[str, Figure]:
        return {
            "Kappa": self.plot_kappa(display, order),
            "Accuracy": self.plot_accuracy(display, order, expected_nir),
            "Sensitivity": self.plot_sensitivity(display, order),
            "Specificity": self.plot_specificity(display, order),
        }

    def save_figure(
        self,
        fig: Figure,
        filename: str,
        formats: Sequence[str] = ("png",),
        output_dir: str = "reports",
    ) -> List[str]:
        """
        Save figure in multiple formats.

        Args:
            fig: Matplotlib Figure object
            filename: Base filename (without extension)
            formats: List of formats to save
            output_dir: Output directory

        Returns:
            List of saved file paths
        """
        os.makedirs(output_dir, exist_ok=True)

        saved_paths = []
        for fmt in formats:
            path = os.path.join(output_dir, f"{filename}.{fmt}")
            fig.savefig(path, format=fmt, bbox_inches="tight", dpi=self.dpi)
            saved_paths.append(path)

        return saved_paths
