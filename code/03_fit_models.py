#!/usr/bin/env python3
"""
03_fit_models.py - Fit the APC Models and Export Effects

Fits the three generalized additive models on the full datasets:
- Participation: P(at least one vacation trip), binomial / logit
- Frequency: P(at least two trips | traveler), binomial / logit
- Rel. Expenses: main-trip expenses relative to income, gamma / log

Outputs (all effects on the exp scale, 1 = no effect):
- models/Model_{participation,frequency,expenses}.pkl
- tables/marginal_apc_effects.csv (Figure 3)
- tables/apc_summary.csv (min/max marginal effects, cohorts 1939-2018)
- tables/linear_effects.csv (Figure B1)
- tables/income_effects.csv (Figure B2)
- tables/model_overview.csv

Author: Travel APC Project
Date: 2026
"""

import pandas as pd
import os
import sys
import warnings
from datetime import datetime
import apc_gam
import travel_data

# Suppress dependency warnings (pygam, pandas) that clutter pipeline output.
# Analysis-level warnings are not suppressed.
warnings.filterwarnings('ignore', category=FutureWarning)
warnings.filterwarnings('ignore', category=DeprecationWarning)

# Paths
SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
BASE_DIR = os.path.dirname(SCRIPT_DIR)
OUTPUT_TABLES = os.path.join(BASE_DIR, "tables")
OUTPUT_MODELS = os.path.join(BASE_DIR, "models")

os.makedirs(OUTPUT_TABLES, exist_ok=True)
os.makedirs(OUTPUT_MODELS, exist_ok=True)

# =============================================================================
# FIT SPECIFICATION
# =============================================================================
FIT_SPEC = {
    'models': ['P', 'F', 'E'],
    'cohort_range': (1939, 2018),   # APC summary only
    'income_grid_points': 100,
    **apc_gam.FIT_DEFAULTS,
}


def model_path(key):
    return os.path.join(OUTPUT_MODELS, f"Model_{apc_gam.MODEL_SPECS[key]['data']}.pkl")


def fit_all_models(datasets, spec):
    """Fit every model in spec['models'] on its dataset."""
    settings = {k: spec[k] for k in apc_gam.FIT_DEFAULTS}
    fitted = {}
    for key in spec['models']:
        fitted[key] = apc_gam.fit_apc_gam(datasets[key], key, settings=settings)
    return fitted


def collect_effects(fitted, datasets, spec):
    """
    Extract all effect tables from the fitted models.

    Returns:
        dict of DataFrames keyed by table name
    """
    marginal, summary, linear, income, overview = [], [], [], [], []

    for key, model in fitted.items():
        dat = datasets[key]
        marginal.append(apc_gam.marginal_apc_effects(model, dat))
        summary.append(apc_gam.create_apc_summary(model, dat, cohort_range=spec['cohort_range']))
        linear.append(apc_gam.linear_effects(model))
        income.append(apc_gam.smooth_1d_effect(model, n=spec['income_grid_points']))
        overview.append(apc_gam.model_overview(model))

    return {
        'marginal_apc_effects': pd.concat(marginal, ignore_index=True),
        'apc_summary': pd.concat(summary, ignore_index=True),
        'linear_effects': pd.concat(linear, ignore_index=True),
        'income_effects': pd.concat(income, ignore_index=True),
        'model_overview': pd.DataFrame(overview),
    }


def main():
    """Fit the models and export the effect tables."""
    print("=" * 70)
    print("APC MODEL ESTIMATION")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    print("\n" + "=" * 70)
    print("FIT SPECIFICATION")
    print("=" * 70)
    for key, value in FIT_SPEC.items():
        print(f"  {key}: {value}")

    try:
        datasets = {
            key: travel_data.load_processed_data(apc_gam.MODEL_SPECS[key]['data'])
            for key in FIT_SPEC['models']
        }
    except FileNotFoundError as e:
        print(f"ERROR: {e}")
        print("Run 01_prepare_data.py first to build the model datasets.")
        return 1

    print("\n" + "-" * 70)
    print("FITTING")
    print("-" * 70)
    fitted = fit_all_models(datasets, FIT_SPEC)

    for key, model in fitted.items():
        path = model_path(key)
        apc_gam.save_model(model, path)
        print(f"  Saved: {path}")

    print("\n" + "-" * 70)
    print("EFFECTS")
    print("-" * 70)
    tables = collect_effects(fitted, datasets, FIT_SPEC)

    for name, table in tables.items():
        path = os.path.join(OUTPUT_TABLES, f"{name}.csv")
        table.to_csv(path, index=False)
        print(f"  Saved: {path}")

    print("\n" + "=" * 70)
    print("APC SUMMARY (cohorts {}-{})".format(*FIT_SPEC['cohort_range']))
    print("=" * 70)
    for _, row in tables['apc_summary'].iterrows():
        print(f"  {row['model']:<14} {row['variable']:<7} "
              f"min {row['min_effect']:.3f} at {row['value_with_min_effect']}, "
              f"max {row['max_effect']:.3f} at {row['value_with_max_effect']}")

    print("\n" + "=" * 70)
    print("MODEL OVERVIEW")
    print("=" * 70)
    for _, row in tables['model_overview'].iterrows():
        print(f"  {row['model']:<14} n = {row['n_obs']:,}  edof = {row['edof']:.1f}  "
              f"AIC = {row['AIC']:.1f}  dev. expl. = {row['deviance_explained']*100:.1f}%")

    print(f"\nFinished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
