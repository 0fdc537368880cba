import importlib.util
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# The stage scripts and shared modules live in code/, which is not a package
CODE_DIR = Path(__file__).resolve().parent.parent / "code"
sys.path.insert(0, str(CODE_DIR))

import apc_gam  # noqa: E402
import travel_data  # noqa: E402

# Small bases and a two-point grid keep the fits fast on the synthetic survey
SMALL_SETTINGS = {
    'n_splines_apc': 5,
    'n_splines_income': 5,
    'lam_grid': [0.1, 10.0],
}

EDUCATION_LABELS = [
    'Volks-/Hauptschule', 'Mittlere Reife', 'Abitur/Fachabitur', 'Universitaet/Hochschule',
]


def make_raw_survey(n=2000, seed=42):
    """Synthetic survey records following the raw data contract."""
    rng = np.random.default_rng(seed)
    levels = travel_data.LEVELS

    period = rng.choice(np.arange(1971, 2019, 3), size=n)
    age = rng.integers(14, 80, size=n)
    hh_size = rng.choice([1, 2, 3, 4, 5.3], size=n)
    income = np.round(rng.gamma(4.0, 600.0, size=n) + 300.0)

    lin_pred = 0.2 + 0.03 * (period - 1995) - 0.015 * (age - 45) + 0.0002 * (income - 2500)
    travels = rng.random(n) < 1 / (1 + np.exp(-lin_pred))
    trips = np.where(travels, 1 + rng.poisson(0.6, size=n), 0)

    duration = np.where(travels, rng.choice(levels['JS_HUR_Reisedauer'], size=n), None)
    expenses = np.where(
        travels,
        np.round(income / np.sqrt(hh_size) * rng.gamma(5.0, 0.08, size=n), 2),
        np.nan,
    )

    return pd.DataFrame({
        'period': period,
        'age': age,
        'JS_Anzahl_URs': trips,
        'S_Geschlecht': rng.choice(levels['S_Geschlecht'], size=n),
        'S_Einkommen_HH': income,
        'S_Bildung': rng.choice(EDUCATION_LABELS, size=n),
        'S_Haushaltsgroesse': hh_size,
        'S_Kinder_0_bis_5_binaer': rng.choice(levels['S_Kinder_0_bis_5_binaer'], size=n,
                                              p=[0.8, 0.2]),
        'S_Wohnortgroesse': rng.choice(levels['S_Wohnortgroesse'], size=n),
        'JS_HUR_Reisedauer': duration,
        'JS_HUR_Ausgaben_pP': expenses,
    })


def append_invalid_records(raw):
    """Records outside the analysis window or with missing core covariates."""
    template = raw.iloc[[0] * 4].copy()
    template.iloc[0, template.columns.get_loc('age')] = 85
    template.iloc[1, template.columns.get_loc('period')] = 1965
    template.iloc[2, template.columns.get_loc('age')] = 12
    template.iloc[3, template.columns.get_loc('S_Geschlecht')] = None
    return pd.concat([raw, template], ignore_index=True)


@pytest.fixture(scope="session")
def raw_survey():
    return append_invalid_records(make_raw_survey())


@pytest.fixture(scope="session")
def datasets(raw_survey):
    """Model datasets keyed by model key ('P', 'F', 'E')."""
    return {
        key: travel_data.read_and_prepare_data(spec['data'], raw=raw_survey)
        for key, spec in apc_gam.MODEL_SPECS.items()
    }


@pytest.fixture(scope="session")
def fitted_models(datasets):
    return {
        key: apc_gam.fit_apc_gam(dat, key, settings=SMALL_SETTINGS)
        for key, dat in datasets.items()
    }


def _load_script(filename):
    path = CODE_DIR / filename
    module_name = "stage_" + path.stem
    spec = importlib.util.spec_from_file_location(module_name, path)
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


@pytest.fixture(scope="session")
def descriptives():
    return _load_script("02_descriptives.py")


@pytest.fixture(scope="session")
def fit_stage():
    return _load_script("03_fit_models.py")


@pytest.fixture(scope="session")
def evaluation_stage():
    return _load_script("04_model_evaluation.py")


@pytest.fixture(scope="session")
def figures_stage():
    return _load_script("05_generate_figures.py")


@pytest.fixture(scope="session")
def pipeline():
    return _load_script("run_all.py")


@pytest.fixture(scope="session")
def prepare_stage():
    return _load_script("01_prepare_data.py")
