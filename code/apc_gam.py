"""
apc_gam.py - Age-Period-Cohort GAM Specification and Effect Extraction

All three models share the same structure:

    g(E[y]) = te(period, age) + s(income_equi) + parametric covariates

- te(period, age): tensor-product P-spline surface, 10 basis functions per
  margin. Since cohort = period - age, the surface carries age, period and
  cohort effects jointly; marginal effects are extracted by averaging the
  surface over the observed data.
- s(income_equi): P-spline smooth of equivalized household income.
- Parametric covariates enter as treatment-coded dummies (reference =
  first category) and are not penalized.

Model fitting, smoothing bases and confidence intervals come from pygam.
Smoothing parameters are chosen over a common grid by UBRE (binomial,
known scale) or GCV (gamma, unknown scale).

Parametric covariates are encoded with patsy; levels that do not occur in
the fitting data get no dummy and are mapped to the reference level when
new data is encoded.

Author: Travel APC Project
Date: 2026
"""

import pandas as pd
import numpy as np
import patsy
import pickle
from pygam import GammaGAM, LogisticGAM, l, s, te
from pygam.utils import flatten
from scipy import stats
from sklearn.metrics import roc_auc_score
from sklearn.model_selection import train_test_split

# Columns entering the smooth terms, in design-matrix order
SMOOTH_COLUMNS = ['period', 'age', 'S_Einkommen_HH_equi']
APC_FEATURES = [0, 1]
INCOME_FEATURE = 2
FIRST_LINEAR_FEATURE = len(SMOOTH_COLUMNS)

PARAMETRIC = [
    'S_Geschlecht', 'S_Kinder_0_bis_5_binaer', 'S_Wohnortgroesse',
    'S_Bildung', 'S_Haushaltsgroesse',
]

MODEL_SPECS = {
    'P': {
        'label': 'Participation',
        'data': 'participation',
        'response': 'y_atLeastOneUR',
        'family': 'binomial',
        'parametric': PARAMETRIC,
    },
    'F': {
        'label': 'Frequency',
        'data': 'frequency',
        'response': 'y_atLeastTwoURs',
        'family': 'binomial',
        'parametric': PARAMETRIC,
    },
    'E': {
        'label': 'Rel. Expenses',
        'data': 'expenses',
        'response': 'rel_expenses',
        'family': 'gamma',
        'parametric': PARAMETRIC + ['JS_HUR_Reisedauer'],
    },
}

FIT_DEFAULTS = {
    'n_splines_apc': 10,       # per margin of te(period, age)
    'n_splines_income': 10,
    'spline_order': 3,         # cubic B-splines
    'lam_grid': np.logspace(-3, 3, 7),
    'max_iter': 100,
}

APC_VARIABLES = [('age', 'Age'), ('period', 'Period'), ('cohort', 'Cohort')]


def get_spec(key):
    """Look up a model specification by key ('P', 'F' or 'E')."""
    if key not in MODEL_SPECS:
        raise ValueError(f"Unknown model key '{key}', expected one of {list(MODEL_SPECS)}")
    return MODEL_SPECS[key]


def parametric_levels(dat, spec):
    """
    Levels of each parametric covariate that occur in dat, reference first.

    Declared categories without observations are left out, so they never
    get a coefficient of their own.
    """
    levels = {}
    for var in spec['parametric']:
        if var not in dat.columns:
            raise ValueError(f"Covariate '{var}' missing from data")
        if not isinstance(dat[var].dtype, pd.CategoricalDtype):
            raise ValueError(f"Covariate '{var}' must be categorical")
        observed = set(dat[var].dropna().unique())
        levels[var] = [level for level in dat[var].cat.categories if level in observed]
    return levels


def parametric_formula(levels):
    """Treatment-coded patsy formula; covariates with a single level drop out."""
    terms = [f"C({var})" for var, var_levels in levels.items() if len(var_levels) > 1]
    return ' + '.join(terms) if terms else '1'


def _align_levels(dat, levels):
    # Unseen levels fall back to the reference level
    frame = pd.DataFrame(index=dat.index)
    for var, var_levels in levels.items():
        values = dat[var].astype(object)
        frame[var] = pd.Categorical(values.where(values.isin(var_levels), var_levels[0]),
                                    categories=var_levels)
    return frame


def _reference_design_info(levels):
    """Rebuild the patsy encoding of a set of levels from a one-row frame."""
    reference = pd.DataFrame({
        var: pd.Categorical([var_levels[0]], categories=var_levels)
        for var, var_levels in levels.items()
    })
    return patsy.dmatrix(parametric_formula(levels), reference).design_info


def _linear_terms(design_info, levels):
    terms = []
    for var, var_levels in levels.items():
        name = f"C({var})"
        if name not in design_info.term_name_slices:
            continue
        columns = design_info.column_names[design_info.term_name_slices[name]]
        for column, level in zip(columns, var_levels[1:]):
            terms.append({'column': column, 'vargroup': var, 'param': level})
    return terms


def build_design(dat, spec, levels=None, design_info=None):
    """
    Numeric design matrix for pygam.

    Columns: period, age, S_Einkommen_HH_equi, then the treatment-coded
    dummies of the parametric covariates. Pass the levels and design_info
    of a fitted model to encode new data exactly as the training data.

    Returns:
        dict with 'X' (ndarray), 'columns', 'linear_terms', 'levels' and
        'design_info'
    """
    missing = [col for col in SMOOTH_COLUMNS if col not in dat.columns]
    if missing:
        raise ValueError(f"Smooth covariates missing from data: {missing}")

    if levels is None:
        levels = parametric_levels(dat, spec)

    frame = _align_levels(dat, levels)
    if design_info is None:
        parametric = patsy.dmatrix(parametric_formula(levels), frame)
        design_info = parametric.design_info
    else:
        parametric = patsy.build_design_matrices([design_info], frame)[0]

    keep = [i for i, name in enumerate(design_info.column_names) if name != 'Intercept']
    dummies = np.asarray(parametric)[:, keep]
    smooth = dat[SMOOTH_COLUMNS].astype(float).to_numpy()

    return {
        'X': np.column_stack([smooth, dummies]),
        'columns': SMOOTH_COLUMNS + [design_info.column_names[i] for i in keep],
        'linear_terms': _linear_terms(design_info, levels),
        'levels': levels,
        'design_info': design_info,
    }


def _make_gam(spec, n_linear, settings):
    terms = (
        te(*APC_FEATURES, n_splines=[settings['n_splines_apc']] * 2,
           spline_order=settings['spline_order']) +
        s(INCOME_FEATURE, n_splines=settings['n_splines_income'],
          spline_order=settings['spline_order'])
    )
    for j in range(n_linear):
        terms += l(FIRST_LINEAR_FEATURE + j, penalties='none')

    if spec['family'] == 'binomial':
        return LogisticGAM(terms, max_iter=settings['max_iter'])
    if spec['family'] == 'gamma':
        return GammaGAM(terms, max_iter=settings['max_iter'])
    raise ValueError(f"Unsupported family: {spec['family']}")


def _term_index(gam, feature):
    """Position of the (non-intercept) term built on the given feature(s)."""
    for i, term in enumerate(gam.terms):
        if not term.isintercept and term.feature == feature:
            return i
    raise ValueError(f"No term for feature {feature}")


class FittedAPCModel:
    """A fitted pygam model together with its data encoding."""

    def __init__(self, key, spec, gam, design, criterion, score):
        self.key = key
        self.spec = spec
        self.label = spec['label']
        self.gam = gam
        self.linear_terms = design['linear_terms']
        self.levels = design['levels']
        self.design_info = design['design_info']
        self.lam = float(flatten(gam.lam)[0])
        self.criterion = criterion
        self.score = score
        self.n_obs = design['X'].shape[0]

        self.apc_term = _term_index(gam, APC_FEATURES)
        self.income_term = _term_index(gam, INCOME_FEATURE)

        # Smooth contributions are centered on the fitting data
        X = design['X']
        self.apc_offset = float(np.mean(gam.partial_dependence(term=self.apc_term, X=X)))
        self.income_offset = float(np.mean(gam.partial_dependence(term=self.income_term, X=X)))

    def __getstate__(self):
        # patsy design infos cannot be pickled
        state = self.__dict__.copy()
        state.pop('design_info', None)
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self.design_info = _reference_design_info(self.levels)

    @property
    def link(self):
        return 'logit' if self.spec['family'] == 'binomial' else 'log'

    def design(self, dat):
        return build_design(dat, self.spec, self.levels, self.design_info)['X']

    def predict_mu(self, dat):
        """Predictions on the response scale (probabilities / expected expenses)."""
        return self.gam.predict_mu(self.design(dat))


def fit_apc_gam(dat, key, settings=None):
    """
    Fit one of the APC models with smoothing parameter selection.

    Every candidate in settings['lam_grid'] is applied to both smooth
    terms and pygam's gridsearch keeps the one with the lowest UBRE
    (binomial) or GCV (gamma) score.

    Args:
        dat: Model dataset from travel_data.read_and_prepare_data
        key: 'P', 'F' or 'E'
        settings: Overrides for FIT_DEFAULTS

    Returns:
        FittedAPCModel
    """
    spec = get_spec(key)
    settings = {**FIT_DEFAULTS, **(settings or {})}

    design = build_design(dat, spec)
    X = design['X']
    y = dat[spec['response']].astype(float).to_numpy()

    if len(y) == 0:
        raise ValueError(f"No observations to fit the {spec['label']} model")
    if spec['family'] == 'gamma' and (y <= 0).any():
        raise ValueError("Gamma response must be strictly positive")

    print(f"  Fitting {spec['label']} model ({spec['family']}, n = {len(y):,}, "
          f"{len(design['linear_terms'])} parametric terms)")

    gam = _make_gam(spec, len(design['linear_terms']), settings)
    n_lam = len(flatten(gam.lam))
    lam_grid = np.array([[float(v)] * n_lam for v in np.atleast_1d(settings['lam_grid'])])

    scores = gam.gridsearch(X, y, lam=lam_grid, objective='auto', return_scores=True,
                            progress=False)

    criterion = 'UBRE' if gam.statistics_['UBRE'] is not None else 'GCV'
    for candidate, score in scores.items():
        print(f"    lam = {flatten(candidate.lam)[0]:g}: {criterion} = {score:.5f}")

    fitted = FittedAPCModel(key, spec, gam, design, criterion,
                            float(gam.statistics_[criterion]))
    print(f"    Selected lam = {fitted.lam:g}")
    return fitted


def save_model(fitted, path):
    with open(path, 'wb') as f:
        pickle.dump(fitted, f)


def load_model(path):
    with open(path, 'rb') as f:
        return pickle.load(f)


# =============================================================================
# EFFECT EXTRACTION
# =============================================================================

def apc_contributions(fitted, dat):
    """Centered te(period, age) contribution for every observation (link scale)."""
    X = fitted.design(dat)
    return fitted.gam.partial_dependence(term=fitted.apc_term, X=X) - fitted.apc_offset


def marginal_apc_effects(fitted, dat):
    """
    Marginal age, period and cohort effects.

    The APC surface is evaluated at each observation and averaged over all
    observations sharing the same age (period, cohort). Effects are
    returned on the exp scale: odds ratios for the logit models,
    multiplicative effects for the log-link expenses model.
    """
    frame = pd.DataFrame({
        'age': dat['age'].to_numpy(),
        'period': dat['period'].to_numpy(),
        'cohort': dat['cohort'].to_numpy(),
        'effect': apc_contributions(fitted, dat),
    })

    parts = []
    for var, label in APC_VARIABLES:
        marginal = frame.groupby(var)['effect'].mean().reset_index()
        marginal.columns = ['value', 'effect']
        marginal['variable'] = label
        parts.append(marginal)

    effects = pd.concat(parts, ignore_index=True)
    effects['effect'] = np.exp(effects['effect'])
    effects['model'] = fitted.label

    return effects[['model', 'variable', 'value', 'effect']]


def create_apc_summary(fitted, dat, cohort_range=(1939, 2018)):
    """
    Minimum and maximum marginal effects per APC dimension.

    Observations outside cohort_range are dropped before the marginal
    effects are computed.
    """
    if cohort_range is not None:
        dat = dat[dat['cohort'].between(*cohort_range)]
    if len(dat) == 0:
        raise ValueError(f"No observations within cohort range {cohort_range}")

    effects = marginal_apc_effects(fitted, dat)

    rows = []
    for _, label in APC_VARIABLES:
        grp = effects[effects['variable'] == label]
        i_min = grp['effect'].idxmin()
        i_max = grp['effect'].idxmax()
        rows.append({
            'model': fitted.label,
            'variable': label,
            'value_with_min_effect': grp.loc[i_min, 'value'],
            'min_effect': grp.loc[i_min, 'effect'],
            'value_with_max_effect': grp.loc[i_max, 'value'],
            'max_effect': grp.loc[i_max, 'effect'],
        })

    return pd.DataFrame(rows)


def linear_effects(fitted, level=0.95):
    """
    Parametric covariate effects with Wald confidence intervals.

    coef, CI_lower and CI_upper are exponentiated; se refers to the link
    scale. Standard errors come from pygam's Bayesian posterior covariance.
    """
    gam = fitted.gam
    cov = gam.statistics_['cov']
    z = stats.norm.ppf(0.5 + level / 2)

    rows = []
    for j, term in enumerate(fitted.linear_terms):
        idx = _term_index(gam, FIRST_LINEAR_FEATURE + j)
        k = gam.terms.get_coef_indices(idx)[0]
        beta = float(gam.coef_[k])
        se = float(np.sqrt(cov[k, k]))
        rows.append({
            'model': fitted.label,
            'vargroup': term['vargroup'],
            'param': term['param'],
            'coef': np.exp(beta),
            'se': se,
            'CI_lower': np.exp(beta - z * se),
            'CI_upper': np.exp(beta + z * se),
            'pvalue': 2 * stats.norm.sf(abs(beta / se)) if se > 0 else np.nan,
        })

    return pd.DataFrame(rows)


def smooth_1d_effect(fitted, n=100, width=0.95):
    """Centered income smooth on an even grid with confidence band (exp scale)."""
    gam = fitted.gam
    XX = gam.generate_X_grid(term=fitted.income_term, n=n)
    pdep, confi = gam.partial_dependence(term=fitted.income_term, X=XX, width=width)

    shift = fitted.income_offset
    return pd.DataFrame({
        'model': fitted.label,
        'x': XX[:, INCOME_FEATURE],
        'y': np.exp(pdep - shift),
        'CI_lower': np.exp(confi[:, 0] - shift),
        'CI_upper': np.exp(confi[:, 1] - shift),
    })


def model_overview(fitted):
    """Key fit statistics of a model as a one-row dict."""
    st = fitted.gam.statistics_
    return {
        'model': fitted.label,
        'family': fitted.spec['family'],
        'link': fitted.link,
        'n_obs': fitted.n_obs,
        'edof': float(st['edof']),
        'AIC': float(st['AIC']),
        'deviance_explained': float(st['pseudo_r2']['explained_deviance']),
        'lam': fitted.lam,
        'criterion': fitted.criterion,
        'score': fitted.score,
    }


def deviance_residuals(fitted, dat):
    y = dat[fitted.spec['response']].astype(float).to_numpy()
    return fitted.gam.deviance_residuals(fitted.design(dat), y)


# =============================================================================
# EVALUATION
# =============================================================================

def split_train_test(dat, train_share=0.8, seed=3456):
    """Random train/test partition; the train set holds floor(train_share * n) rows."""
    n_train = int(np.floor(train_share * len(dat)))
    if n_train < 1 or n_train >= len(dat):
        raise ValueError(f"Cannot split {len(dat)} rows with train share {train_share}")
    train, test = train_test_split(dat, train_size=n_train, random_state=seed)
    return train, test


def binary_auc(y_true, score):
    """Area under the ROC curve of a binary response."""
    return float(roc_auc_score(np.asarray(y_true), np.asarray(score)))


def expense_errors(y_true, y_pred):
    """
    Mean absolute error and median relative absolute error.

    Missing or non-finite values are ignored, as are zero responses in
    the relative error.
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    abs_err = np.abs(y_pred - y_true)

    valid = np.isfinite(abs_err)
    rel_valid = valid & (y_true != 0)

    return {
        'mae': float(np.mean(abs_err[valid])),
        'median_rel_error': float(np.median(abs_err[rel_valid] / y_true[rel_valid])),
    }
