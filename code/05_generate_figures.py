#!/usr/bin/env python3
"""
05_generate_figures.py
======================
Generate manuscript figures of the model effects.

Reads from pre-computed CSV tables (written by 03_fit_models.py):
- Figure 3: Marginal age, period and cohort effects of all models
- Figure B1: Parametric covariate effects with 95% confidence intervals
- Figure B2: Nonlinear effects of household income

All effects are on the exp scale (odds ratios for participation and
frequency, multiplicative effects for relative expenses) and drawn on
log2 axes with a reference line at 1.

Author: Travel APC Project
Date: 2026
"""

import pandas as pd
import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from matplotlib.ticker import FixedLocator, FuncFormatter, NullLocator
import os
import sys
import warnings
import travel_data

# Suppress dependency warnings (matplotlib, pandas) that clutter pipeline output.
# Analysis-level warnings are not suppressed.
warnings.filterwarnings('ignore', category=FutureWarning)
warnings.filterwarnings('ignore', category=DeprecationWarning)

# Paths
SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
BASE_DIR = os.path.dirname(SCRIPT_DIR)
TABLES_DIR = os.path.join(BASE_DIR, "tables")
OUTPUT_FIGURES = os.path.join(BASE_DIR, "figures")
os.makedirs(OUTPUT_FIGURES, exist_ok=True)

MODEL_LABELS = ['Participation', 'Frequency', 'Rel. Expenses']
ODDS_RATIO_MODELS = ('Participation', 'Frequency')
APC_LABELS = ['Age', 'Period', 'Cohort']

COLORS = {
    'Participation': '#619CFF',  # Blue
    'Frequency': '#00BA38',  # Green
    'Rel. Expenses': '#F8766D',  # Red
}
VARGROUP_ORDER = ['Gender', 'Education', 'Household size', 'Young children',
                  'City size', 'Trip length']
VARGROUP_COLORS = ['#E16A86', '#B88A00', '#50A315', '#00AD9A', '#009ADE', '#C86DD7']

STRIP_COLOR = '0.8'
REFERENCE_COLOR = '0.3'

# Figure B2 display window
INCOME_XLIM = (0, 6000)
INCOME_YLIM = (0.25, 16)


def load_table(name):
    """Load an effect table written by 03_fit_models.py."""
    path = os.path.join(TABLES_DIR, f"{name}.csv")
    if not os.path.exists(path):
        raise FileNotFoundError(f"Effect table not found: {path}")
    return pd.read_csv(path)


def _log2_axis(ax, ticks=None):
    ax.set_yscale('log', base=2)
    ax.yaxis.set_minor_locator(NullLocator())
    if ticks is not None:
        ax.yaxis.set_major_locator(FixedLocator(ticks))
    ax.yaxis.set_major_formatter(FuncFormatter(lambda v, _: f"{v:g}"))


def _strip(ax, text, side='top'):
    """Facet label in a gray strip above or right of the panel."""
    bbox = dict(boxstyle='square,pad=0.2', facecolor=STRIP_COLOR, edgecolor='none')
    if side == 'top':
        ax.set_title(text, fontsize=7, bbox=bbox)
    else:
        ax.annotate(text, xy=(1.02, 0.5), xycoords='axes fraction', rotation=-90,
                    va='center', ha='left', fontsize=7, bbox=bbox)


def odds_ratio_limits(effects):
    """Shared y-range of the odds ratio rows: the range of all marginal effects."""
    return effects['effect'].min(), effects['effect'].max()


def generate_figure3(effects, output_path):
    """
    Figure 3: Marginal APC effects.

    Rows = models, columns = age / period / cohort. The dashed vertical
    lines in the cohort column mark the generation boundaries.
    """
    models = [m for m in MODEL_LABELS if m in set(effects['model'])]
    if not models:
        raise ValueError("No models in marginal effects table")

    binary_ylim = odds_ratio_limits(effects)

    fig, axes = plt.subplots(len(models), len(APC_LABELS), figsize=(6, 4),
                             sharex='col', squeeze=False)

    for i, model in enumerate(models):
        for j, variable in enumerate(APC_LABELS):
            ax = axes[i, j]
            sub = effects[(effects['model'] == model) &
                          (effects['variable'] == variable)].sort_values('value')

            ax.axhline(y=1, color=REFERENCE_COLOR, linestyle='--', linewidth=0.6)
            if variable == 'Cohort':
                for x in travel_data.GENERATION_BREAKS:
                    ax.axvline(x=x, color=REFERENCE_COLOR, linestyle='--', linewidth=0.6)
            ax.plot(sub['value'], sub['effect'], '-', color=COLORS[model], linewidth=1)

            if model in ODDS_RATIO_MODELS:
                _log2_axis(ax, ticks=[0.25, 0.5, 1, 2])
                ax.set_ylim(*binary_ylim)
            else:
                _log2_axis(ax, ticks=[0.9, 1, 1.1])

            ax.tick_params(labelsize=6)
            if j > 0:
                ax.set_ylabel('')
            if i == 0:
                _strip(ax, variable, side='top')
            if j == len(APC_LABELS) - 1:
                _strip(ax, model, side='right')

        axes[i, 0].set_ylabel('Odds Ratio' if model in ODDS_RATIO_MODELS else 'exp(Effect)',
                              fontsize=7)

    plt.tight_layout()
    plt.savefig(output_path, dpi=300, bbox_inches='tight', facecolor='white')
    plt.close()
    print(f"  Saved: {output_path}")


def prepare_linear_effects(linear):
    """English labels for covariate groups and levels of Figure B1."""
    linear = linear.copy()
    linear['vargroup'] = linear['vargroup'].map(travel_data.english_label)
    linear['param'] = linear['param'].map(travel_data.english_label)
    return linear


def generate_figure_b1(linear, output_path):
    """
    Figure B1: Parametric effects with 95% confidence intervals.

    Rows = models, columns = covariate groups. Groups a model does not
    contain (trip length outside the expenses model) stay empty.
    """
    linear = prepare_linear_effects(linear)
    models = [m for m in MODEL_LABELS if m in set(linear['model'])]
    groups = [g for g in VARGROUP_ORDER if g in set(linear['vargroup'])]

    # Panel widths follow the number of levels per group
    widths = [max(linear[linear['vargroup'] == g]['param'].nunique(), 1) for g in groups]

    fig, axes = plt.subplots(len(models), len(groups), figsize=(8, 7), sharey='row',
                             gridspec_kw={'width_ratios': widths}, squeeze=False)

    for i, model in enumerate(models):
        for j, group in enumerate(groups):
            ax = axes[i, j]
            color = VARGROUP_COLORS[VARGROUP_ORDER.index(group) % len(VARGROUP_COLORS)]
            params = list(dict.fromkeys(linear[linear['vargroup'] == group]['param']))
            sub = linear[(linear['model'] == model) & (linear['vargroup'] == group)]

            ax.axhline(y=1, color=REFERENCE_COLOR, linestyle='--', linewidth=0.6)
            if len(sub) > 0:
                x = [params.index(p) for p in sub['param']]
                ax.vlines(x, sub['CI_lower'], sub['CI_upper'], color=color, linewidth=2)
                ax.plot(x, sub['coef'], 'o', color=color, markersize=4)
            _log2_axis(ax)

            ax.set_xlim(-0.6, len(params) - 0.4)
            ax.set_xticks(range(len(params)))
            if i == len(models) - 1:
                ax.set_xticklabels(params, rotation=45, ha='right', fontsize=6)
            else:
                ax.set_xticklabels([])
            ax.tick_params(axis='y', labelsize=6)
            if i == 0:
                _strip(ax, group, side='top')
            if j == len(groups) - 1:
                _strip(ax, model, side='right')

        axes[i, 0].set_ylabel('exp(Effect)', fontsize=7)

    plt.tight_layout()
    plt.savefig(output_path, dpi=300, bbox_inches='tight', facecolor='white')
    plt.close()
    print(f"  Saved: {output_path}")


def trim_confidence_band(income, ylim=INCOME_YLIM):
    """Clip the confidence band to the plotted y-range."""
    income = income.copy()
    income['CI_lower'] = income['CI_lower'].clip(lower=ylim[0])
    income['CI_upper'] = income['CI_upper'].clip(upper=ylim[1])
    return income


def generate_figure_b2(income, output_path):
    """Figure B2: Nonlinear household income effects with 95% confidence bands."""
    income = trim_confidence_band(income)
    models = [m for m in MODEL_LABELS if m in set(income['model'])]

    fig, axes = plt.subplots(1, len(models), figsize=(6, 2), sharey=True, squeeze=False)

    for j, model in enumerate(models):
        ax = axes[0, j]
        sub = income[income['model'] == model].sort_values('x')

        ax.axhline(y=1, color=REFERENCE_COLOR, linestyle='--', linewidth=0.6)
        ax.fill_between(sub['x'], sub['CI_lower'], sub['CI_upper'], color='0.75',
                        linewidth=0)
        ax.plot(sub['x'], sub['y'], '-', color=COLORS[model], linewidth=1)

        _log2_axis(ax, ticks=2.0 ** np.arange(-2, 5))
        ax.set_ylim(*INCOME_YLIM)
        ax.set_xlim(*INCOME_XLIM)
        ax.set_xlabel('Household income [€]', fontsize=7)
        ax.tick_params(labelsize=6)
        _strip(ax, model, side='top')

    axes[0, 0].set_ylabel('exp(Effect)', fontsize=7)

    plt.tight_layout()
    plt.savefig(output_path, dpi=300, bbox_inches='tight', facecolor='white')
    plt.close()
    print(f"  Saved: {output_path}")


def main():
    """Generate all effect figures."""
    print("=" * 70)
    print("GENERATING EFFECT FIGURES")
    print("=" * 70)

    try:
        effects = load_table('marginal_apc_effects')
        linear = load_table('linear_effects')
        income = load_table('income_effects')
    except FileNotFoundError as e:
        print(f"ERROR: {e}")
        print("Run 03_fit_models.py first to generate the effect tables.")
        return 1

    print("\nFigure 3: Marginal APC effects...")
    generate_figure3(effects, os.path.join(OUTPUT_FIGURES, 'Figure3.jpeg'))

    print("\nFigure B1: Linear covariate effects...")
    generate_figure_b1(linear, os.path.join(OUTPUT_FIGURES, 'FigureB1.jpeg'))

    print("\nFigure B2: Income effects...")
    generate_figure_b2(income, os.path.join(OUTPUT_FIGURES, 'FigureB2.jpeg'))

    print("\n" + "=" * 70)
    print("FIGURE GENERATION COMPLETE")
    print("=" * 70)
    return 0


if __name__ == "__main__":
    sys.exit(main())
