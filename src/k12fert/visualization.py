"""
Visualization module for the k12fert package.

Provides the hazard-by-age figure and the leave-one-out coefficient plot.
"""

from typing import Optional

import numpy as np
import pandas as pd

from .exceptions import VisualizationError

# Percentage-point range of the published hazard figure.
DEFAULT_HAZARD_YLIM = (0, 15)


def _import_pyplot():
    try:
        import matplotlib.pyplot as plt
    except Exception as exc:
        raise VisualizationError(
            'Install required dependencies: matplotlib>=3.3.'
        ) from exc
    return plt


def prepare_hazard_plot_data(hazard_table: pd.DataFrame) -> dict:
    """
    Convert an empirical hazard table to percentage-point series.

    Parameters
    ----------
    hazard_table : pd.DataFrame
        Output of :func:`k12fert.hazard.empirical_hazard`; needs
        ``age_at``, ``hazard``, ``ci_low`` and ``ci_high``.

    Returns
    -------
    dict
        'age', 'hazard_pp', 'lower_pp', 'upper_pp'
    """
    required = {'age_at', 'hazard', 'ci_low', 'ci_high'}
    missing = required - set(hazard_table.columns)
    if missing:
        raise VisualizationError(f"Missing required columns: {sorted(missing)}")

    df = hazard_table.sort_values('age_at')
    return {
        'age': df['age_at'].to_numpy(),
        'hazard_pp': 100 * df['hazard'].to_numpy(),
        'lower_pp': 100 * np.maximum(df['ci_low'].to_numpy(), 0),
        'upper_pp': 100 * np.maximum(df['ci_high'].to_numpy(), 0),
    }


def plot_hazard(
    hazard_table: pd.DataFrame,
    graph_options: Optional[dict] = None,
):
    """
    Plot the discrete-time hazard of first birth by age.

    Grayscale points with confidence-interval error bars in percentage
    points, a dashed zero line, major age ticks every two years starting
    at the first age of the window and minor ticks every year.

    Parameters
    ----------
    hazard_table : pd.DataFrame
        Output of :func:`k12fert.hazard.empirical_hazard`.
    graph_options : dict, optional
        'figsize', 'title', 'xlabel', 'ylabel', 'ylim', 'ytick_step',
        'ytick_minor', 'dpi', 'savefig'. When 'ylim' is None the axis
        spans 0-15 pp if every upper bound fits, otherwise it is automatic.

    Returns
    -------
    matplotlib.Figure
        Generated figure
    """
    plt = _import_pyplot()
    from matplotlib.ticker import FixedLocator, MultipleLocator

    data = prepare_hazard_plot_data(hazard_table)

    opts = {
        'figsize': (10, 6),
        'title': 'Discrete-time hazard of first birth by age',
        'xlabel': 'Age',
        'ylabel': 'Annual probability of first birth (percentage points)',
        'ylim': None,
        'ytick_step': 2.5,
        'ytick_minor': 0.5,
        'dpi': 100,
        'savefig': None,
    }
    if graph_options:
        opts.update(graph_options)

    fig, ax = plt.subplots(figsize=opts['figsize'], dpi=opts['dpi'])

    ax.axhline(0, linestyle='--', linewidth=0.7, color='black')
    yerr = np.vstack([
        data['hazard_pp'] - data['lower_pp'],
        data['upper_pp'] - data['hazard_pp'],
    ])
    ax.errorbar(
        data['age'], data['hazard_pp'], yerr=np.clip(yerr, 0, None),
        fmt='o', color='black', ecolor='black', elinewidth=0.6,
        capsize=3, markersize=5,
    )

    # Major ticks on every second age counted from the window start.
    first, last = int(data['age'].min()), int(data['age'].max())
    ax.xaxis.set_major_locator(FixedLocator(np.arange(first, last + 1, 2)))
    ax.xaxis.set_minor_locator(FixedLocator(np.arange(first, last + 1, 1)))
    ax.yaxis.set_major_locator(MultipleLocator(opts['ytick_step']))
    ax.yaxis.set_minor_locator(MultipleLocator(opts['ytick_minor']))
    ax.grid(which='major', color='0.8', linewidth=0.7)
    ax.grid(which='minor', color='0.9', linewidth=0.5)
    for spine in ax.spines.values():
        spine.set_linewidth(1.1)

    ylim = opts['ylim']
    if ylim is None and np.nanmax(data['upper_pp']) <= DEFAULT_HAZARD_YLIM[1]:
        ylim = DEFAULT_HAZARD_YLIM
    if ylim is not None:
        ax.set_ylim(*ylim)
    if opts['title']:
        ax.set_title(opts['title'])
    ax.set_xlabel(opts['xlabel'])
    ax.set_ylabel(opts['ylabel'])
    fig.tight_layout()

    if opts['savefig']:
        fig.savefig(opts['savefig'], dpi=opts['dpi'])

    return fig


def plot_leave_one_out(
    result,
    outcome: str,
    show_ci: bool = True,
    figsize: tuple = (8, 10),
    ax=None,
    savefig: Optional[str] = None,
):
    """
    Plot leave-one-out coefficients of ``outcome``, one row per group.

    Groups are ordered by coefficient; unavailable cells are omitted. The
    baseline estimate is drawn as a dashed reference line.

    Parameters
    ----------
    result : LeaveOneOutResult
        Output of :func:`k12fert.sensitivity.leave_one_group_out`.
    outcome : str
        Outcome to plot.
    show_ci : bool, default True
        Draw 95% intervals (``coef -/+ 1.96 se``).
    figsize : tuple, default (8, 10)
        Figure size when ``ax`` is None.
    ax : matplotlib.axes.Axes, optional
        Axes to draw on.
    savefig : str, optional
        Path to save the figure to.

    Returns
    -------
    matplotlib.Figure
    """
    plt = _import_pyplot()

    df = result.ranked(outcome)
    df = df.loc[df['available']]
    if df.empty:
        raise VisualizationError(f"No available leave-one-out estimates for '{outcome}'")

    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.get_figure()

    y = np.arange(len(df))
    if show_ci:
        ax.errorbar(df['coef'], y, xerr=1.96 * df['se'], fmt='o',
                    color='black', ecolor='0.5', capsize=2, markersize=4)
    else:
        ax.plot(df['coef'], y, 'o', color='black', markersize=4)

    baseline = result.summaries[outcome].baseline_coef
    if np.isfinite(baseline):
        ax.axvline(baseline, color='red', linestyle='--', alpha=0.7,
                   label=f'Baseline = {baseline:.3f}')
        ax.legend(loc='best')
    ax.axvline(0, color='gray', linestyle='-', alpha=0.3)

    ax.set_yticks(y)
    ax.set_yticklabels([f'excl. {name}' for name in df['group_name']], fontsize=7)
    ax.set_xlabel(f'Coefficient on {result.spec.focal}')
    ax.set_title(f'Leave-one-{result.config.group_key}-out: {outcome}')
    fig.tight_layout()

    if savefig:
        fig.savefig(savefig)

    return fig
