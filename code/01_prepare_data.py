#!/usr/bin/env python3
"""
01_prepare_data.py - Build the Model Datasets

This script builds the three analysis datasets from the raw travel survey.
All later stages read these files instead of the raw data.

The script:
1. Loads the raw survey microdata (Stata, SPSS or CSV)
2. Recodes covariates, derives cohort, generation and equivalized income
3. Restricts to ages 14-79 and survey years 1970-2018
4. Saves three outputs:
   - data/processed/dat_participation.csv (all respondents)
   - data/processed/dat_frequency.csv (travelers)
   - data/processed/dat_expenses.csv (travelers with valid main-trip expenses)

Data Requirements:
- data/raw/travel_survey.dta (or the file named by TRAVEL_APC_RAW_DATA)

Author: Travel APC Project
Date: 2026
"""

import sys
import os
import warnings
from datetime import datetime
import travel_data

# Suppress dependency warnings (pandas, pyreadstat) that clutter pipeline output.
# Analysis-level warnings are not suppressed.
warnings.filterwarnings('ignore', category=FutureWarning)
warnings.filterwarnings('ignore', category=DeprecationWarning)

os.makedirs(travel_data.DATA_PROCESSED, exist_ok=True)


def summarize_dataset(model, dat):
    """Print sample size and coverage of a model dataset."""
    print(f"\n  {model}:")
    print(f"    Observations: {len(dat):,}")
    print(f"    Periods: {dat['period'].min()}-{dat['period'].max()} "
          f"({dat['period'].nunique()} survey years)")
    print(f"    Ages: {dat['age'].min()}-{dat['age'].max()}")
    print(f"    Cohorts: {dat['cohort'].min()}-{dat['cohort'].max()}")

    if model == 'participation':
        print(f"    Share with >= 1 trip: {dat['y_atLeastOneUR'].mean()*100:.1f}%")
    elif model == 'frequency':
        print(f"    Share with >= 2 trips: {dat['y_atLeastTwoURs'].mean()*100:.1f}%")
    else:
        print(f"    Median rel. expenses: {dat['rel_expenses'].median():.3f}")


def main():
    """Build the model datasets from the raw survey file."""
    print("=" * 70)
    print("PREPARE MODEL DATASETS")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    print("\nLoading raw survey data...")
    print(f"  File: {travel_data.RAW_DATA_PATH}")
    try:
        raw = travel_data.read_raw_survey()
    except FileNotFoundError as e:
        print(f"\nERROR: {e}")
        print("\nThe survey microdata are not distributed with this package.")
        print(f"Place the file in {travel_data.DATA_RAW}/ or set TRAVEL_APC_RAW_DATA.")
        return 1
    print(f"  Raw records: {len(raw):,}")

    print("\n" + "-" * 70)
    print("MODEL DATASETS")
    print("-" * 70)

    for model in travel_data.MODELS:
        dat = travel_data.read_and_prepare_data(model, raw=raw)
        summarize_dataset(model, dat)

        output_path = travel_data.processed_path(model)
        dat.to_csv(output_path, index=False)
        print(f"    Saved: {output_path}")

    print(f"\nFinished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
