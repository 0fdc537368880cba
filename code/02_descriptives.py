#!/usr/bin/env python3
"""
02_descriptives.py - Descriptive Tables and Figures

Describes the response variables and covariates before modeling:
- Figure 2: Response variables over survey years
  (A) participation, (B) number of trips among travelers,
  (C) median household income, (D) median relative expenses
- Density matrices of participation and trip frequency over age and
  period groups (Figure A)
- Table 1: Covariate frequencies, overall and among travelers
- Table A1: Birth years, observed periods and ages per generation

Tables use the ';' separator and ',' decimal mark of the manuscript
tables.

Author: Travel APC Project
Date: 2026
"""

import pandas as pd
import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import os
import sys
import warnings
from datetime import datetime
import travel_data

# Suppress dependency warnings (matplotlib, pandas) that clutter pipeline output.
# Analysis-level warnings are not suppressed.
warnings.filterwarnings('ignore', category=FutureWarning)
warnings.filterwarnings('ignore', category=DeprecationWarning)

# Paths
SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
BASE_DIR = os.path.dirname(SCRIPT_DIR)
OUTPUT_TABLES = os.path.join(BASE_DIR, "tables")
OUTPUT_FIGURES = os.path.join(BASE_DIR, "figures")

os.makedirs(OUTPUT_TABLES, exist_ok=True)
os.makedirs(OUTPUT_FIGURES, exist_ok=True)

PARTICIPATION_LEVELS = ['0 trips', '>= 1 trips']
PARTICIPATION_COLORS = ['lightblue', '#1874CD']  # dodgerblue3

TRIP_COUNT_LEVELS = ['5+ trips', '4', '3', '2', '1']
TRIP_COUNT_COLORS = [plt.cm.Greens(v) for v in np.linspace(0.95, 0.35, 5)]

# Covariates of Table 1 (display name -> model dataset column)
TABLE1_VARIABLES = {
    'Gender': 'S_Geschlecht',
    'Household_net_income_cat': 'Household_net_income_cat',
    'Education_level': 'S_Bildung',
    'Household_size': 'S_Haushaltsgroesse',
    'Children_under_5_years': 'S_Kinder_0_bis_5_binaer',
    'Size_of_residence': 'S_Wohnortgroesse',
    'Duration_of_main_trip': 'JS_HUR_Reisedauer',
}

# Only reported for travelers (missing for non-travelers by construction)
TRAVELER_ONLY = ('Duration_of_main_trip',)


def add_participation(dat):
    """Participation categories: no trip vs. at least one trip."""
    dat = dat.copy()
    dat['participation'] = pd.Categorical(
        np.where(dat['JS_Anzahl_URs'] == 0, '0 trips', '>= 1 trips'),
        categories=PARTICIPATION_LEVELS,
    )
    return dat


def add_trip_count_categories(dat):
    """Number of trips among travelers, with 5 and more trips pooled."""
    dat = dat[dat['JS_Anzahl_URs'] > 0].copy()
    counts = dat['JS_Anzahl_URs']
    dat['JS_Anzahl_URs_cat'] = pd.Categorical(
        np.where(counts < 5, counts.astype(int).astype(str), '5+ trips'),
        categories=TRIP_COUNT_LEVELS,
    )
    return dat


def plot_variable(ax, dat, y_var, plot_type='bar', colors=None, legend_title=None,
                  ylab=None, ylim=None):
    """
    Plot a variable over survey years.

    plot_type 'bar': stacked relative frequencies of a categorical variable.
    plot_type 'line-points': median of a numeric variable.
    """
    if plot_type == 'bar':
        shares = pd.crosstab(dat['period'], dat[y_var], normalize='index', dropna=False)
        shares = shares.reindex(columns=dat[y_var].cat.categories, fill_value=0)

        bottom = np.zeros(len(shares))
        for i, level in enumerate(shares.columns):
            color = colors[i] if colors is not None else None
            ax.bar(shares.index, shares[level].values, bottom=bottom, width=0.9,
                   color=color, label=str(level))
            bottom += shares[level].values

        ax.set_ylabel(ylab or 'Relative frequency')
        ax.set_ylim(0, 1)
        ax.legend(title=legend_title, loc='center left', bbox_to_anchor=(1.0, 0.5),
                  fontsize=8, title_fontsize=8, frameon=False)

    elif plot_type == 'line-points':
        medians = dat.groupby('period')[y_var].median()
        ax.plot(medians.index, medians.values, '-', color='black', linewidth=1)
        ax.plot(medians.index, medians.values, 'o', color='black', markersize=3)
        ax.set_ylabel(ylab or f'Median of {y_var}')
        if ylim is not None:
            ax.set_ylim(*ylim)

    else:
        raise ValueError(f"Unknown plot_type: {plot_type}")

    ax.set_xlabel('Period')
    return ax


def generate_figure2(dat_P, dat_F, dat_E, output_path):
    """
    Figure 2: Response variables over survey years.
    """
    fig, axes = plt.subplots(2, 2, figsize=(10, 6))

    plot_variable(axes[0, 0], add_participation(dat_P), 'participation',
                  colors=PARTICIPATION_COLORS, legend_title='Participation')

    plot_variable(axes[0, 1], add_trip_count_categories(dat_F), 'JS_Anzahl_URs_cat',
                  colors=TRIP_COUNT_COLORS, legend_title='Number of\ntrips')

    plot_variable(axes[1, 0], dat_E, 'S_Einkommen_HH_equi', plot_type='line-points',
                  ylim=(0, 1900), ylab='Median of household income [€]')

    plot_variable(axes[1, 1], dat_E, 'rel_expenses', plot_type='line-points',
                  ylim=(0, 1), ylab='Median of rel. expenses [€]')

    for ax, tag in zip(axes.flat, 'ABCD'):
        ax.set_title(tag, loc='left', fontsize=11, fontweight='bold')

    plt.tight_layout()
    plt.savefig(output_path, dpi=300, bbox_inches='tight', facecolor='white')
    plt.close()
    print(f"  Saved: {output_path}")


def group_label(bounds):
    return f"{bounds[0]} - {bounds[1]}"


def density_shares(dat, y_var, age_groups, period_groups):
    """
    Relative frequencies of y_var per age group x period group cell.

    Returns:
        DataFrame with age_group, period_group, level, share, n
    """
    levels = list(dat[y_var].cat.categories)
    rows = []
    for age_bounds in age_groups:
        for period_bounds in period_groups:
            cell = dat[dat['age'].between(*age_bounds) & dat['period'].between(*period_bounds)]
            counts = cell[y_var].value_counts().reindex(levels, fill_value=0)
            n = int(counts.sum())
            for level in levels:
                rows.append({
                    'age_group': group_label(age_bounds),
                    'period_group': group_label(period_bounds),
                    'level': level,
                    'share': counts[level] / n if n > 0 else np.nan,
                    'n': n,
                })
    return pd.DataFrame(rows)


def plot_density_matrix(dat, y_var, age_groups, period_groups, colors, output_path,
                        title=None):
    """
    Density matrix: one bar chart of y_var per age group x period group.

    Rows follow the order of age_groups, columns the order of period_groups.
    """
    shares = density_shares(dat, y_var, age_groups, period_groups)
    levels = list(dat[y_var].cat.categories)

    fig, axes = plt.subplots(len(age_groups), len(period_groups),
                             figsize=(2 * len(period_groups), 1.4 * len(age_groups)),
                             sharex=True, sharey=True, squeeze=False)

    for i, age_bounds in enumerate(age_groups):
        for j, period_bounds in enumerate(period_groups):
            ax = axes[i, j]
            cell = shares[(shares['age_group'] == group_label(age_bounds)) &
                          (shares['period_group'] == group_label(period_bounds))]
            ax.bar(range(len(levels)), cell['share'].fillna(0).values, color=colors)
            ax.set_ylim(0, 1)
            ax.set_xticks(range(len(levels)))
            ax.set_xticklabels(levels, rotation=90, fontsize=6)
            ax.tick_params(axis='y', labelsize=6)
            if i == 0:
                ax.set_title(group_label(period_bounds), fontsize=8)
            if j == 0:
                ax.set_ylabel(group_label(age_bounds), fontsize=8)

    fig.supxlabel('Period', fontsize=9)
    fig.supylabel('Age', fontsize=9)
    if title:
        fig.suptitle(title, fontsize=10)

    plt.tight_layout()
    plt.savefig(output_path, dpi=300, bbox_inches='tight', facecolor='white')
    plt.close()
    print(f"  Saved: {output_path}")


def frequency_table(dat):
    """
    Table 1: Absolute and relative covariate frequencies.

    Reported for all respondents and for travelers (>= 1 trip). The trip
    duration is only defined for travelers, so its overall columns are empty.
    """
    dat = dat.copy()
    dat['Household_net_income_cat'] = pd.Categorical(
        travel_data.categorize_income(dat['S_Einkommen_HH']),
        categories=travel_data.INCOME_LABELS,
    )
    travelers = dat[dat['y_atLeastOneUR'] == 1]

    frames = []
    for name, col in TABLE1_VARIABLES.items():
        levels = list(dat[col].cat.categories)
        abs_all = dat[col].value_counts().reindex(levels, fill_value=0)
        abs_travelers = travelers[col].value_counts().reindex(levels, fill_value=0)
        rel_all = abs_all / abs_all.sum()
        rel_travelers = abs_travelers / abs_travelers.sum()

        freq = pd.DataFrame({
            'Variable': name,
            'Value': [travel_data.english_label(level) for level in levels],
            'n_overall': abs_all.values,
            'n_travelers': abs_travelers.values,
            'freq_overall': [f"{100 * v:.1f}%" for v in rel_all.values],
            'freq_travelers': [f"{100 * v:.1f}%" for v in rel_travelers.values],
        })

        if name in TRAVELER_ONLY:
            freq['n_overall'] = np.nan
            freq['freq_overall'] = np.nan

        frames.append(freq)

    return pd.concat(frames, ignore_index=True)


def generation_table(dat):
    """Table A1: Birth years, share, observed periods and ages per generation."""
    n_total = len(dat)
    rows = []
    for generation, grp in dat.groupby('generation', observed=True):
        rows.append({
            'generation': generation,
            'birth_years': f"{grp['cohort'].min()} - {grp['cohort'].max()}",
            'rel_frequency': f"{100 * len(grp) / n_total:.1f}%",
            'obs_periods': f"{grp['period'].min()} - {grp['period'].max()}",
            'obs_ages': f"{grp['age'].min()} - {grp['age'].max()}",
        })
    return pd.DataFrame(rows)


def write_table(df, path):
    df.to_csv(path, sep=';', decimal=',', index=False)
    print(f"  Saved: {path}")


def main():
    """Create the descriptive tables and figures."""
    print("=" * 70)
    print("DESCRIPTIVE ANALYSIS")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    try:
        dat_P = travel_data.load_processed_data('participation')
        dat_F = travel_data.load_processed_data('frequency')
        dat_E = travel_data.load_processed_data('expenses')
    except FileNotFoundError as e:
        print(f"ERROR: {e}")
        print("Run 01_prepare_data.py first to build the model datasets.")
        return 1

    print(f"\n  Participation data: {len(dat_P):,} respondents")
    print(f"  Frequency data: {len(dat_F):,} travelers")
    print(f"  Expenses data: {len(dat_E):,} travelers")

    print("\n" + "-" * 70)
    print("RESPONSE VARIABLES")
    print("-" * 70)
    generate_figure2(dat_P, dat_F, dat_E, os.path.join(OUTPUT_FIGURES, 'Figure2.jpeg'))

    plot_density_matrix(add_participation(dat_P), 'participation',
                        travel_data.AGE_GROUPS, travel_data.PERIOD_GROUPS,
                        PARTICIPATION_COLORS,
                        os.path.join(OUTPUT_FIGURES, 'FigureA_density_participation.jpeg'),
                        title='Participation')

    plot_density_matrix(add_trip_count_categories(dat_F), 'JS_Anzahl_URs_cat',
                        travel_data.AGE_GROUPS, travel_data.PERIOD_GROUPS,
                        TRIP_COUNT_COLORS,
                        os.path.join(OUTPUT_FIGURES, 'FigureA_density_frequency.jpeg'),
                        title='Number of trips')

    print("\n" + "-" * 70)
    print("COVARIATES")
    print("-" * 70)
    freq = frequency_table(dat_P)
    write_table(freq, os.path.join(OUTPUT_TABLES, 'Table1.csv'))

    gen = generation_table(dat_P)
    for _, row in gen.iterrows():
        print(f"  {row['generation']}: born {row['birth_years']}, {row['rel_frequency']} "
              f"of respondents, ages {row['obs_ages']}")
    write_table(gen, os.path.join(OUTPUT_TABLES, 'TableA1.csv'))

    print(f"\nFinished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
