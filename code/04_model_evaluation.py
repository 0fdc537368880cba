#!/usr/bin/env python3
"""
04_model_evaluation.py - Out-of-Sample Model Evaluation

Each model is refitted on a random 80% of its data (seed 3456) and
evaluated on the remaining 20%:
- Participation, Frequency: area under the ROC curve
- Rel. Expenses: mean absolute error and median relative absolute error
  of the response-scale predictions

Also produces Figure B3, a normal QQ plot of the deviance residuals of the
expenses model fitted on the full data (written by 03_fit_models.py).

Outputs:
- tables/model_evaluation.csv
- figures/FigureB3.jpeg

Author: Travel APC Project
Date: 2026
"""

import pandas as pd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import statsmodels.api as sm
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
OUTPUT_FIGURES = os.path.join(BASE_DIR, "figures")
MODELS_DIR = os.path.join(BASE_DIR, "models")

os.makedirs(OUTPUT_TABLES, exist_ok=True)
os.makedirs(OUTPUT_FIGURES, exist_ok=True)

EVAL_SPEC = {
    'models': ['P', 'F', 'E'],
    'train_share': 0.8,
    'seed': 3456,
    **apc_gam.FIT_DEFAULTS,
}


def evaluate_model(dat, key, spec):
    """
    Refit a model on the training split and score it on the test split.

    Returns:
        List of dicts with model, metric, value, n_train, n_test
    """
    settings = {k: spec[k] for k in apc_gam.FIT_DEFAULTS}
    train, test = apc_gam.split_train_test(dat, train_share=spec['train_share'],
                                           seed=spec['seed'])

    model = apc_gam.fit_apc_gam(train, key, settings=settings)
    prediction = model.predict_mu(test)
    y_test = test[model.spec['response']].to_numpy()

    if model.spec['family'] == 'binomial':
        metrics = {'auc': apc_gam.binary_auc(y_test, prediction)}
    else:
        metrics = apc_gam.expense_errors(y_test, prediction)

    return [
        {
            'model': model.label,
            'metric': metric,
            'value': value,
            'n_train': len(train),
            'n_test': len(test),
        }
        for metric, value in metrics.items()
    ]


def generate_qq_plot(fitted, dat, output_path):
    """Figure B3: Normal QQ plot of deviance residuals."""
    residuals = apc_gam.deviance_residuals(fitted, dat)

    fig, ax = plt.subplots(figsize=(7 / 2.54, 7 / 2.54))
    sm.qqplot(residuals, line='q', ax=ax, markersize=1.5, alpha=0.5)
    ax.set_title(fitted.label, fontsize=7)
    ax.set_xlabel('Theoretical quantiles', fontsize=6)
    ax.set_ylabel('Deviance residuals', fontsize=6)
    ax.tick_params(labelsize=5)

    plt.tight_layout()
    plt.savefig(output_path, dpi=300, bbox_inches='tight', facecolor='white')
    plt.close()
    print(f"  Saved: {output_path}")


def main():
    """Evaluate out-of-sample accuracy of all models."""
    print("=" * 70)
    print("MODEL EVALUATION")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    print(f"\n  Train share: {EVAL_SPEC['train_share']}")
    print(f"  Seed: {EVAL_SPEC['seed']}")

    try:
        datasets = {
            key: travel_data.load_processed_data(apc_gam.MODEL_SPECS[key]['data'])
            for key in EVAL_SPEC['models']
        }
    except FileNotFoundError as e:
        print(f"ERROR: {e}")
        print("Run 01_prepare_data.py first to build the model datasets.")
        return 1

    rows = []
    for key in EVAL_SPEC['models']:
        print("\n" + "-" * 70)
        print(f"{apc_gam.MODEL_SPECS[key]['label'].upper()}")
        print("-" * 70)
        result = evaluate_model(datasets[key], key, EVAL_SPEC)
        for r in result:
            print(f"  {r['metric']}: {r['value']:.4f} "
                  f"(train n = {r['n_train']:,}, test n = {r['n_test']:,})")
        rows.extend(result)

    results_df = pd.DataFrame(rows)
    output_path = os.path.join(OUTPUT_TABLES, 'model_evaluation.csv')
    results_df.to_csv(output_path, index=False)
    print(f"\n  Saved: {output_path}")

    print("\n" + "-" * 70)
    print("RESIDUAL DIAGNOSTICS")
    print("-" * 70)
    expenses_model_path = os.path.join(MODELS_DIR, "Model_expenses.pkl")
    if not os.path.exists(expenses_model_path):
        print(f"ERROR: Fitted expenses model not found: {expenses_model_path}")
        print("Run 03_fit_models.py first.")
        return 1

    model_E = apc_gam.load_model(expenses_model_path)
    dat_E = datasets['E'] if 'E' in datasets else travel_data.load_processed_data('expenses')
    generate_qq_plot(model_E, dat_E, os.path.join(OUTPUT_FIGURES, 'FigureB3.jpeg'))

    print(f"\nFinished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
