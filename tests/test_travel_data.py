import importlib
import os

import numpy as np
import pandas as pd
import pyreadstat
import pytest

import travel_data


def test_prepare_survey_restricts_analysis_window(raw_survey) -> None:
    """Only ages 14-79 and survey years 1970-2018 remain."""
    dat = travel_data.prepare_survey(raw_survey)

    assert dat['age'].between(14, 79).all()
    assert dat['period'].between(1970, 2018).all()
    # Three out-of-window records and one with missing gender are removed
    assert len(dat) == len(raw_survey) - 4


def test_prepare_survey_derives_cohort_and_indicators(raw_survey) -> None:
    dat = travel_data.prepare_survey(raw_survey)

    assert (dat['cohort'] == dat['period'] - dat['age']).all()
    assert (dat['y_atLeastOneUR'] == (dat['JS_Anzahl_URs'] >= 1)).all()
    assert (dat['y_atLeastTwoURs'] == (dat['JS_Anzahl_URs'] >= 2)).all()


def test_prepare_survey_equivalizes_income(raw_survey) -> None:
    dat = travel_data.prepare_survey(raw_survey)

    hh_size = dat['S_Haushaltsgroesse'].astype(str).astype(float)
    expected = dat['S_Einkommen_HH'] / np.sqrt(hh_size)
    np.testing.assert_allclose(dat['S_Einkommen_HH_equi'], expected)


def test_education_labels_are_matched_by_substring(raw_survey) -> None:
    """Questionnaire labels like 'Abitur/Fachabitur' map onto the canonical levels."""
    dat = travel_data.prepare_survey(raw_survey)

    assert list(dat['S_Bildung'].cat.categories) == travel_data.LEVELS['S_Bildung']
    assert dat['S_Bildung'].notna().all()
    assert set(dat['S_Bildung'].unique()) == set(travel_data.LEVELS['S_Bildung'])


def test_household_size_levels() -> None:
    raw = pd.Series([1, 2.0, '3', 5, 6, 5.3, '5 Personen und mehr', None])
    result = travel_data._to_category(raw, 'S_Haushaltsgroesse')

    assert list(result[:7]) == ['1', '2', '3', '5.3', '5.3', '5.3', '5.3']
    assert pd.isna(result[7])


def test_assign_generation_boundaries() -> None:
    cohorts = [1930, 1938, 1939, 1946, 1947, 1966, 1967, 1982, 1983, 1994, 1995, 2004]
    generations = list(travel_data.assign_generation(cohorts))

    assert generations == [
        'Silent Generation', 'Silent Generation',
        'War Generation', 'War Generation',
        'Baby Boomers', 'Baby Boomers',
        'Generation X', 'Generation X',
        'Generation Y', 'Generation Y',
        'Generation Z', 'Generation Z',
    ]


def test_categorize_income_uses_left_closed_bands() -> None:
    bands = list(travel_data.categorize_income([0, 999, 1000, 5999, 6000, 12000]))

    assert bands == ['[0,1000)', '[0,1000)', '[1000,2000)', '[5000,6000)', '>= 6000', '>= 6000']


@pytest.mark.parametrize("value, expected", [
    ('weiblich', 'female'),
    ('Abitur/Fachabitur', 'high school'),
    ('5.3', '>=5'),
    (5.3, '>=5'),
    ('6 bis 8 Tage', '6-8 days'),
    ('S_Wohnortgroesse', 'City size'),
    ('2', '2'),
])
def test_english_label(value, expected) -> None:
    assert travel_data.english_label(value) == expected


def test_participation_data_keeps_all_respondents(raw_survey) -> None:
    dat = travel_data.read_and_prepare_data('participation', raw=raw_survey)

    assert (dat['JS_Anzahl_URs'] == 0).any()
    assert len(dat) == len(travel_data.prepare_survey(raw_survey))


def test_frequency_data_contains_travelers_only(datasets) -> None:
    dat = datasets['F']

    assert (dat['JS_Anzahl_URs'] > 0).all()
    assert dat['y_atLeastOneUR'].eq(1).all()


def test_expenses_data_relative_expenses(datasets) -> None:
    dat = datasets['E']

    assert (dat['rel_expenses'] > 0).all()
    assert dat['JS_HUR_Reisedauer'].notna().all()
    np.testing.assert_allclose(
        dat['rel_expenses'], dat['JS_HUR_Ausgaben_pP'] / dat['S_Einkommen_HH_equi']
    )


def test_unknown_model_raises(raw_survey) -> None:
    with pytest.raises(ValueError, match="Unknown model"):
        travel_data.read_and_prepare_data('duration', raw=raw_survey)


def test_read_raw_survey_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        travel_data.read_raw_survey(str(tmp_path / "missing.dta"))


def test_read_raw_survey_csv(tmp_path, raw_survey) -> None:
    path = tmp_path / "survey.csv"
    raw_survey.to_csv(path, index=False)

    raw = travel_data.read_raw_survey(str(path))
    assert len(raw) == len(raw_survey)

    raw_survey.drop(columns=['S_Bildung']).to_csv(path, index=False)
    with pytest.raises(ValueError, match="S_Bildung"):
        travel_data.read_raw_survey(str(path))


def test_processed_data_round_trip(tmp_path, monkeypatch, datasets) -> None:
    """Reloaded datasets keep their categories, including the reference level."""
    monkeypatch.setattr(travel_data, 'DATA_PROCESSED', str(tmp_path))
    datasets['E'].to_csv(travel_data.processed_path('expenses'), index=False)

    reloaded = travel_data.load_processed_data('expenses')

    assert len(reloaded) == len(datasets['E'])
    for var in travel_data.LEVELS:
        assert list(reloaded[var].cat.categories) == list(datasets['E'][var].cat.categories)
    assert (reloaded['S_Haushaltsgroesse'].astype(str) ==
            datasets['E']['S_Haushaltsgroesse'].astype(str)).all()


def test_load_processed_data_missing(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(travel_data, 'DATA_PROCESSED', str(tmp_path))
    with pytest.raises(FileNotFoundError):
        travel_data.load_processed_data('participation')


GENDER_CODES = {1.0: 'maennlich', 2.0: 'weiblich'}


def _labelled_survey(raw_survey):
    """Raw survey with gender stored as value-labelled codes, as in the survey files."""
    raw = raw_survey.dropna(subset=['S_Geschlecht']).copy()
    raw['S_Geschlecht'] = raw['S_Geschlecht'].map({v: k for k, v in GENDER_CODES.items()})
    raw['JS_HUR_Reisedauer'] = raw['JS_HUR_Reisedauer'].fillna('')
    return raw


@pytest.mark.parametrize("ext, writer", [
    ('.dta', pyreadstat.write_dta),
    ('.sav', pyreadstat.write_sav),
])
def test_read_raw_survey_labelled_files(tmp_path, raw_survey, ext, writer) -> None:
    """Value labels are applied, so labelled codes arrive as their label strings."""
    raw = _labelled_survey(raw_survey)
    path = tmp_path / f"survey{ext}"
    writer(raw, str(path), variable_value_labels={'S_Geschlecht': GENDER_CODES})

    loaded = travel_data.read_raw_survey(str(path))

    assert len(loaded) == len(raw)
    assert set(loaded['S_Geschlecht'].dropna()) == {'maennlich', 'weiblich'}

    dat = travel_data.prepare_survey(loaded)
    assert list(dat['S_Geschlecht'].cat.categories) == ['maennlich', 'weiblich']
    assert len(dat) == len(travel_data.prepare_survey(raw_survey))


def test_read_raw_survey_rejects_unknown_format(tmp_path) -> None:
    path = tmp_path / "survey.xlsx"
    path.write_text("x")
    with pytest.raises(ValueError, match="Unsupported"):
        travel_data.read_raw_survey(str(path))


def test_raw_data_path_from_environment(monkeypatch, tmp_path, raw_survey) -> None:
    path = tmp_path / "survey_env.csv"
    raw_survey.to_csv(path, index=False)
    monkeypatch.setenv('TRAVEL_APC_RAW_DATA', str(path))

    try:
        importlib.reload(travel_data)
        assert travel_data.RAW_DATA_PATH == str(path)
        assert len(travel_data.read_raw_survey()) == len(raw_survey)
    finally:
        monkeypatch.delenv('TRAVEL_APC_RAW_DATA')
        importlib.reload(travel_data)

    assert travel_data.RAW_DATA_PATH.endswith(os.path.join('data', 'raw', 'travel_survey.dta'))
