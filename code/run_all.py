#!/usr/bin/env python3
"""
run_all.py - Master Pipeline for the Travel Behavior APC Analysis

This script reproduces all outputs in the correct order:
1. Build the model datasets (from the raw survey file)
2. Descriptive tables and figures
3. Fit the APC models and export effect tables
4. Out-of-sample model evaluation
5. Manuscript figures of the model effects

Prerequisites:
- Raw survey microdata in data/raw/ (or TRAVEL_APC_RAW_DATA)
- Python packages from pyproject.toml

Environment Variables:
- TRAVEL_APC_TIMEOUT: Per-stage timeout in seconds (default: 3600)

Author: Travel APC Project
Date: 2026
"""

import os
import sys
import subprocess
from datetime import datetime

# Paths - code/ holds the stage scripts, outputs go to the project root
SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
BASE_DIR = os.path.dirname(SCRIPT_DIR)
CODE_DIR = os.path.join(BASE_DIR, 'code')
OUTPUT_TABLES = os.path.join(BASE_DIR, 'tables')
OUTPUT_FIGURES = os.path.join(BASE_DIR, 'figures')
os.makedirs(OUTPUT_TABLES, exist_ok=True)
os.makedirs(OUTPUT_FIGURES, exist_ok=True)

# Default per-stage timeout (seconds). Override with environment variable TRAVEL_APC_TIMEOUT.
# Model fitting with smoothing parameter selection dominates the runtime.
TIMEOUT_SECONDS = int(os.environ.get('TRAVEL_APC_TIMEOUT', '3600'))

STAGES = [
    {
        'script': '01_prepare_data.py',
        'description': 'Prepare Model Datasets (from raw survey data)',
        'outputs': [
            'data/processed/dat_participation.csv',
            'data/processed/dat_frequency.csv',
            'data/processed/dat_expenses.csv',
        ],
    },
    {
        'script': '02_descriptives.py',
        'description': 'Descriptive Tables and Figures',
        'outputs': [
            'figures/Figure2.jpeg',
            'figures/FigureA_density_participation.jpeg',
            'figures/FigureA_density_frequency.jpeg',
            'tables/Table1.csv',
            'tables/TableA1.csv',
        ],
    },
    {
        'script': '03_fit_models.py',
        'description': 'APC Model Estimation',
        'outputs': [
            'models/Model_participation.pkl',
            'models/Model_frequency.pkl',
            'models/Model_expenses.pkl',
            'tables/marginal_apc_effects.csv',
            'tables/apc_summary.csv',
            'tables/linear_effects.csv',
            'tables/income_effects.csv',
            'tables/model_overview.csv',
        ],
    },
    {
        'script': '04_model_evaluation.py',
        'description': 'Out-of-Sample Model Evaluation',
        'outputs': [
            'tables/model_evaluation.csv',
            'figures/FigureB3.jpeg',
        ],
    },
    {
        'script': '05_generate_figures.py',
        'description': 'Effect Figures (from CSV tables)',
        'outputs': [
            'figures/Figure3.jpeg',
            'figures/FigureB1.jpeg',
            'figures/FigureB2.jpeg',
        ],
    },
]


def run_script(script_path, description):
    """Run a Python script and report status."""
    print(f"\n{'='*70}")
    print(f"RUNNING: {description}")
    print(f"Script: {script_path}")
    print(f"{'='*70}")

    if not os.path.exists(script_path):
        print(f"ERROR: Script not found: {script_path}")
        return False

    try:
        result = subprocess.run(
            [sys.executable, script_path],
            cwd=BASE_DIR,
            capture_output=True,
            text=True,
            timeout=TIMEOUT_SECONDS
        )
    except subprocess.TimeoutExpired:
        print(f"ERROR: Script timed out after {TIMEOUT_SECONDS} seconds")
        return False
    except OSError as e:
        print(f"ERROR: {e}")
        return False

    print(result.stdout)
    if result.stderr:
        print("STDERR:", result.stderr)

    if result.returncode != 0:
        print(f"ERROR: Script exited with code {result.returncode}")
        return False

    print(f"SUCCESS: {description}")
    return True


def missing_outputs(stage):
    """Expected outputs of a stage that do not exist."""
    return [
        output for output in stage['outputs']
        if not os.path.exists(os.path.join(BASE_DIR, output))
    ]


def main():
    """Run the full analysis pipeline."""
    print("="*70)
    print("TRAVEL BEHAVIOR APC ANALYSIS PIPELINE")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"Per-stage timeout: {TIMEOUT_SECONDS} seconds")
    print("="*70)

    results = []

    for i, stage in enumerate(STAGES, 1):
        print(f"\n\n{'#'*70}")
        print(f"STAGE {i}/{len(STAGES)}: {stage['description']}")
        print(f"{'#'*70}")

        success = run_script(os.path.join(CODE_DIR, stage['script']), stage['description'])

        if success:
            for output in stage['outputs']:
                print(f"  Output: {output}")
            for output in missing_outputs(stage):
                print(f"  WARNING: Expected output not found: {output}")

        results.append({
            'stage': i,
            'description': stage['description'],
            'success': success,
        })

        # Later stages depend on the outputs of earlier ones
        if not success:
            print("\nStopping pipeline: later stages depend on this stage.")
            break

    # Summary
    print("\n\n" + "="*70)
    print("PIPELINE SUMMARY")
    print("="*70)

    for r in results:
        status = "SUCCESS" if r['success'] else "FAILED"
        print(f"  Stage {r['stage']}: {r['description']} - {status}")
    for i in range(len(results) + 1, len(STAGES) + 1):
        print(f"  Stage {i}: {STAGES[i - 1]['description']} - SKIPPED")

    all_success = len(results) == len(STAGES) and all(r['success'] for r in results)

    print("\n" + "-"*70)
    if all_success:
        print("ALL STAGES COMPLETED SUCCESSFULLY")
    else:
        print("PIPELINE INCOMPLETE - Review output above")

    print(f"\nFinished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    return 0 if all_success else 1


if __name__ == '__main__':
    sys.exit(main())
