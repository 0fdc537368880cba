"""
travel_data.py - Survey Data Loading and Recoding

Shared by all pipeline stages. Reads the raw travel survey microdata
and builds the three model datasets:

- participation: all respondents (response: at least one vacation trip)
- frequency: travelers only (response: at least two vacation trips)
- expenses: travelers with valid main-trip expenses (response: expenses
  relative to equivalized household income)

Raw Variable Dictionary:
- period: Survey year
- age: Respondent age in years
- JS_Anzahl_URs: Number of vacation trips (>= 5 days) in the survey year
- S_Geschlecht: Gender
- S_Einkommen_HH: Monthly household net income [EUR]
- S_Bildung: Highest education level
- S_Haushaltsgroesse: Household size (5.3 codes "5 or more persons")
- S_Kinder_0_bis_5_binaer: Children under 5 years in the household
- S_Wohnortgroesse: Number of inhabitants of the place of residence
- JS_HUR_Reisedauer: Duration of the main trip (missing for non-travelers)
- JS_HUR_Ausgaben_pP: Expenses of the main trip per person [EUR]

Author: Travel APC Project
Date: 2026
"""

import pandas as pd
import numpy as np
import pyreadstat
import os
import re

# Paths - code/ is 1 level deep from project root
SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
BASE_DIR = os.path.dirname(SCRIPT_DIR)
DATA_RAW = os.path.join(BASE_DIR, "data", "raw")
DATA_PROCESSED = os.path.join(BASE_DIR, "data", "processed")

# Raw survey file. Override with environment variable TRAVEL_APC_RAW_DATA.
RAW_DATA_PATH = os.environ.get(
    'TRAVEL_APC_RAW_DATA', os.path.join(DATA_RAW, "travel_survey.dta")
)

MODELS = ('participation', 'frequency', 'expenses')

# Analysis window
AGE_RANGE = (14, 79)
PERIOD_RANGE = (1970, 2018)

# Age and period groups for the density matrices (top row = oldest)
AGE_GROUPS = [(70, 79), (60, 69), (50, 59), (40, 49), (30, 39), (20, 29), (14, 19)]
PERIOD_GROUPS = [(1970, 1979), (1980, 1989), (1990, 1999), (2000, 2009), (2010, 2018)]

# Generations: birth-year boundaries (also drawn in the cohort effect plots)
GENERATION_BREAKS = [1938.5, 1946.5, 1966.5, 1982.5, 1994.5]
GENERATION_LABELS = [
    'Silent Generation', 'War Generation', 'Baby Boomers',
    'Generation X', 'Generation Y', 'Generation Z',
]

# Category orders. The first level is the reference category in the models.
LEVELS = {
    'S_Geschlecht': ['maennlich', 'weiblich'],
    'S_Bildung': ['Hauptschule', 'Mittlere Reife', 'Abitur', 'Universitaet'],
    'S_Haushaltsgroesse': ['1', '2', '3', '4', '5.3'],
    'S_Kinder_0_bis_5_binaer': ['keine Kinder dieser Altersstufe', 'Kinder dieser Altersstufe'],
    'S_Wohnortgroesse': [
        'unter 5.000', '5.000 bis 49.999', '50.000 bis 99.999',
        '100.000 bis 499.999', '500.000 und mehr',
    ],
    'JS_HUR_Reisedauer': [
        '2 bis 5 Tage', '6 bis 8 Tage', '9 bis 12 Tage', '13 bis 15 Tage',
        '16 bis 19 Tage', '20 bis 22 Tage', '23 bis 26 Tage', '27 bis 29 Tage',
        '30 Tage und mehr',
    ],
}

# Education labels differ between survey waves (e.g. "Abitur/Fachabitur"),
# so they are matched by substring instead of exact value
SUBSTRING_MATCHED = ('S_Bildung',)

CORE_COVARIATES = [
    'S_Geschlecht', 'S_Einkommen_HH', 'S_Bildung', 'S_Haushaltsgroesse',
    'S_Kinder_0_bis_5_binaer', 'S_Wohnortgroesse', 'JS_Anzahl_URs',
]

REQUIRED_COLUMNS = ['period', 'age', 'JS_HUR_Reisedauer', 'JS_HUR_Ausgaben_pP'] + CORE_COVARIATES

INCOME_BREAKS = [1000, 2000, 3000, 4000, 5000, 6000]
INCOME_LABELS = [
    '[0,1000)', '[1000,2000)', '[2000,3000)', '[3000,4000)',
    '[4000,5000)', '[5000,6000)', '>= 6000',
]

# English display labels for covariate groups and levels
VARGROUP_LABELS = {
    'S_Geschlecht': 'Gender',
    'S_Bildung': 'Education',
    'S_Kinder_0_bis_5_binaer': 'Young children',
    'S_Haushaltsgroesse': 'Household size',
    'JS_HUR_Reisedauer': 'Trip length',
    'S_Wohnortgroesse': 'City size',
}

PARAM_LABELS = {
    'maennlich': 'male',
    'weiblich': 'female',
    'Hauptschule': 'lower secondary school',
    'Mittlere Reife': 'secondary school',
    'Abitur': 'high school',
    'Universitaet': 'university or college',
    'keine Kinder dieser Altersstufe': 'no',
    'Kinder dieser Altersstufe': 'yes',
    '5.3': '>=5',
    'unter 5.000': '<5,000',
    '5.000 bis 49.999': '[5,000; 50,000)',
    '50.000 bis 99.999': '[50,000; 100,000)',
    '100.000 bis 499.999': '[100,000; 500,000)',
    '500.000 und mehr': '>=500,000',
    '2 bis 5 Tage': '2-5 days',
    '6 bis 8 Tage': '6-8 days',
    '9 bis 12 Tage': '9-12 days',
    '13 bis 15 Tage': '13-15 days',
    '16 bis 19 Tage': '16-19 days',
    '20 bis 22 Tage': '20-22 days',
    '23 bis 26 Tage': '23-26 days',
    '27 bis 29 Tage': '27-29 days',
    '30 Tage und mehr': '>=30 days',
}


def read_raw_survey(path=None):
    """
    Load the raw survey microdata.

    Stata (.dta) and SPSS (.sav) files are read with pyreadstat with value
    labels applied, so categorical variables arrive as their label strings.
    CSV files are read with pandas.
    """
    path = path or RAW_DATA_PATH

    if not os.path.exists(path):
        raise FileNotFoundError(
            f"Survey data not found at {path}\n"
            "Set TRAVEL_APC_RAW_DATA or place the file in data/raw/"
        )

    ext = os.path.splitext(path)[1].lower()
    if ext == '.dta':
        raw, _ = pyreadstat.read_dta(path, apply_value_formats=True)
    elif ext == '.sav':
        raw, _ = pyreadstat.read_sav(path, apply_value_formats=True)
    elif ext == '.csv':
        raw = pd.read_csv(path)
    else:
        raise ValueError(f"Unsupported survey file format: {ext}")

    missing = [col for col in REQUIRED_COLUMNS if col not in raw.columns]
    if missing:
        raise ValueError(f"Survey data lacks required columns: {missing}")

    return raw


def _household_size_label(value):
    """Map a numeric or labelled household size ("5 Personen und mehr") to its level."""
    if pd.isna(value):
        return np.nan
    match = re.search(r'\d+(\.\d+)?', str(value))
    if match is None:
        return np.nan
    size = float(match.group())
    if size < 1:
        return np.nan
    if size >= 5:
        return '5.3'
    return str(int(round(size)))


def _match_level(value, levels):
    """Return the first level contained in value (substring match)."""
    if pd.isna(value):
        return np.nan
    for level in levels:
        if level in str(value):
            return level
    return np.nan


def _to_category(series, var):
    """Cast a raw column to an ordered categorical with the canonical levels."""
    levels = LEVELS[var]
    if var == 'S_Haushaltsgroesse':
        values = series.map(_household_size_label)
    elif var in SUBSTRING_MATCHED:
        values = series.map(lambda v: _match_level(v, levels))
    else:
        values = series.astype('object').where(series.notna(), np.nan)
        values = values.map(lambda v: v.strip() if isinstance(v, str) else v)
    return pd.Categorical(values, categories=levels, ordered=True)


def assign_generation(cohort):
    """Assign generation labels to birth years."""
    bins = [-np.inf] + GENERATION_BREAKS + [np.inf]
    return pd.cut(pd.Series(cohort), bins=bins, labels=GENERATION_LABELS).values


def categorize_income(income):
    """Classify monthly household net income into 1000 EUR bands."""
    bins = [-np.inf] + INCOME_BREAKS + [np.inf]
    return pd.cut(pd.Series(income), bins=bins, labels=INCOME_LABELS, right=False).values


def english_label(value):
    """English display label for a covariate level or group name."""
    value = str(value)
    if value in VARGROUP_LABELS:
        return VARGROUP_LABELS[value]
    if value in PARAM_LABELS:
        return PARAM_LABELS[value]
    # Education labels may carry suffixes from the questionnaire
    for level in LEVELS['S_Bildung']:
        if level in value:
            return PARAM_LABELS[level]
    return value


def prepare_survey(raw):
    """
    Recode the raw survey for all models.

    Steps:
    1. Coerce numeric variables, derive cohort = period - age
    2. Restrict to the analysis window (ages 14-79, periods 1970-2018)
    3. Drop records with missing core covariates
    4. Canonical categories (first level = reference), unused levels removed
    5. Equivalized household income (square-root scale)
    6. Response indicators and generations
    """
    dat = raw.copy()

    for col in ['period', 'age', 'JS_Anzahl_URs', 'S_Einkommen_HH', 'JS_HUR_Ausgaben_pP']:
        dat[col] = pd.to_numeric(dat[col], errors='coerce')

    for var in LEVELS:
        dat[var] = _to_category(dat[var], var)

    dat = dat[
        dat['age'].between(*AGE_RANGE) &
        dat['period'].between(*PERIOD_RANGE)
    ]
    dat = dat.dropna(subset=CORE_COVARIATES).copy()

    if len(dat) == 0:
        raise ValueError("No survey records left after filtering")

    dat['period'] = dat['period'].astype(int)
    dat['age'] = dat['age'].astype(int)
    dat['JS_Anzahl_URs'] = dat['JS_Anzahl_URs'].astype(int)
    dat['cohort'] = dat['period'] - dat['age']

    # Square-root equivalence scale; 5.3 approximates "5 or more persons"
    hh_size = dat['S_Haushaltsgroesse'].astype(str).astype(float)
    dat['S_Einkommen_HH_equi'] = dat['S_Einkommen_HH'] / np.sqrt(hh_size)

    dat['y_atLeastOneUR'] = (dat['JS_Anzahl_URs'] >= 1).astype(int)
    dat['y_atLeastTwoURs'] = (dat['JS_Anzahl_URs'] >= 2).astype(int)
    dat['generation'] = assign_generation(dat['cohort'])

    return dat.reset_index(drop=True)


def _drop_unused_levels(dat):
    for var in LEVELS:
        dat[var] = dat[var].cat.remove_unused_categories()
    return dat


def read_and_prepare_data(model, raw=None):
    """
    Build the dataset for one of the three models.

    Args:
        model: 'participation', 'frequency' or 'expenses'
        raw: Raw survey DataFrame (read from RAW_DATA_PATH if None)

    Returns:
        DataFrame with recoded covariates, cohort, generation and responses
    """
    if model not in MODELS:
        raise ValueError(f"Unknown model '{model}', expected one of {MODELS}")

    if raw is None:
        raw = read_raw_survey()

    dat = prepare_survey(raw)

    if model in ('frequency', 'expenses'):
        dat = dat[dat['JS_Anzahl_URs'] > 0]

    if model == 'expenses':
        dat = dat[
            (dat['JS_HUR_Ausgaben_pP'] > 0) &
            (dat['S_Einkommen_HH_equi'] > 0) &
            dat['JS_HUR_Reisedauer'].notna()
        ].copy()
        dat['rel_expenses'] = dat['JS_HUR_Ausgaben_pP'] / dat['S_Einkommen_HH_equi']

    if len(dat) == 0:
        raise ValueError(f"No observations available for the {model} model")

    dat = _drop_unused_levels(dat.reset_index(drop=True))

    return dat


def processed_path(model):
    """Location of a prepared model dataset written by 01_prepare_data.py."""
    return os.path.join(DATA_PROCESSED, f"dat_{model}.csv")


def load_processed_data(model):
    """
    Load a prepared model dataset and restore the categorical encoding.

    CSV round trips lose the categorical dtypes, which the design matrices
    rely on for stable reference categories.
    """
    path = processed_path(model)
    if not os.path.exists(path):
        raise FileNotFoundError(f"Prepared data not found: {path}")

    dat = pd.read_csv(path, dtype={'S_Haushaltsgroesse': str})
    for var in LEVELS:
        dat[var] = pd.Categorical(dat[var], categories=LEVELS[var], ordered=True)
    dat['generation'] = pd.Categorical(dat['generation'], categories=GENERATION_LABELS,
                                       ordered=True)

    return _drop_unused_levels(dat)
