import os

import numpy as np
import pandas as pd
import pytest
from conftest import SMALL_SETTINGS

import apc_gam
import travel_data


@pytest.fixture(scope="module")
def effect_tables(fit_stage, fitted_models, datasets):
    spec = {**fit_stage.FIT_SPEC, **SMALL_SETTINGS, 'income_grid_points': 40}
    return fit_stage.collect_effects(fitted_models, datasets, spec)


# --- 01_prepare_data ---------------------------------------------------------

def test_prepare_stage_writes_model_datasets(prepare_stage, monkeypatch, tmp_path,
                                             raw_survey) -> None:
    raw_path = tmp_path / "survey.csv"
    raw_survey.to_csv(raw_path, index=False)
    monkeypatch.setattr(travel_data, 'RAW_DATA_PATH', str(raw_path))
    monkeypatch.setattr(travel_data, 'DATA_PROCESSED', str(tmp_path))

    assert prepare_stage.main() == 0
    for model in travel_data.MODELS:
        assert (tmp_path / f"dat_{model}.csv").exists()


def test_prepare_stage_missing_raw_file(prepare_stage, monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(travel_data, 'RAW_DATA_PATH', str(tmp_path / "missing.dta"))
    assert prepare_stage.main() == 1


# --- 03_fit_models -----------------------------------------------------------

def test_fit_spec_covers_all_models(fit_stage) -> None:
    assert fit_stage.FIT_SPEC['models'] == ['P', 'F', 'E']
    assert fit_stage.FIT_SPEC['cohort_range'] == (1939, 2018)
    assert fit_stage.model_path('E').endswith(os.path.join('models', 'Model_expenses.pkl'))


def test_collect_effects_tables(effect_tables) -> None:
    assert set(effect_tables) == {
        'marginal_apc_effects', 'apc_summary', 'linear_effects', 'income_effects',
        'model_overview',
    }

    labels = {'Participation', 'Frequency', 'Rel. Expenses'}
    assert set(effect_tables['marginal_apc_effects']['model']) == labels
    assert len(effect_tables['apc_summary']) == 9
    assert len(effect_tables['income_effects']) == 3 * 40
    assert list(effect_tables['model_overview']['model']) == [
        'Participation', 'Frequency', 'Rel. Expenses',
    ]


def test_trip_duration_only_in_expenses_effects(effect_tables) -> None:
    linear = effect_tables['linear_effects']
    duration = linear[linear['vargroup'] == 'JS_HUR_Reisedauer']

    assert len(duration) > 0
    assert set(duration['model']) == {'Rel. Expenses'}


# --- 04_model_evaluation -----------------------------------------------------

def _eval_spec(evaluation_stage):
    return {**evaluation_stage.EVAL_SPEC, **SMALL_SETTINGS}


def test_evaluate_binary_model(evaluation_stage, datasets) -> None:
    rows = evaluation_stage.evaluate_model(datasets['P'], 'P', _eval_spec(evaluation_stage))

    assert [r['metric'] for r in rows] == ['auc']
    assert 0.5 < rows[0]['value'] <= 1.0
    assert rows[0]['n_train'] == int(np.floor(0.8 * len(datasets['P'])))
    assert rows[0]['n_train'] + rows[0]['n_test'] == len(datasets['P'])


def test_evaluate_expenses_model(evaluation_stage, datasets) -> None:
    rows = evaluation_stage.evaluate_model(datasets['E'], 'E', _eval_spec(evaluation_stage))
    metrics = {r['metric']: r['value'] for r in rows}

    assert set(metrics) == {'mae', 'median_rel_error'}
    assert metrics['mae'] > 0
    assert rows[0]['model'] == 'Rel. Expenses'


def test_generate_qq_plot(tmp_path, evaluation_stage, fitted_models, datasets) -> None:
    path = tmp_path / "FigureB3.jpeg"
    evaluation_stage.generate_qq_plot(fitted_models['E'], datasets['E'], str(path))

    assert path.exists()


# --- 05_generate_figures -----------------------------------------------------

def test_trim_confidence_band(figures_stage) -> None:
    income = pd.DataFrame({
        'x': [100.0, 200.0, 300.0],
        'y': [0.5, 1.0, 8.0],
        'CI_lower': [0.1, 0.8, 4.0],
        'CI_upper': [1.0, 1.3, 30.0],
    })
    trimmed = figures_stage.trim_confidence_band(income, ylim=(0.25, 16))

    assert list(trimmed['CI_lower']) == [0.25, 0.8, 4.0]
    assert list(trimmed['CI_upper']) == [1.0, 1.3, 16.0]
    assert list(income['CI_lower']) == [0.1, 0.8, 4.0]


def test_odds_ratio_limits_span_all_models(figures_stage) -> None:
    effects = pd.DataFrame({
        'model': ['Participation', 'Frequency', 'Rel. Expenses'],
        'variable': ['Age', 'Age', 'Age'],
        'value': [20, 20, 20],
        'effect': [0.6, 1.8, 0.3],
    })
    assert figures_stage.odds_ratio_limits(effects) == (0.3, 1.8)


def test_prepare_linear_effects_uses_english_labels(figures_stage, effect_tables) -> None:
    linear = figures_stage.prepare_linear_effects(effect_tables['linear_effects'])

    assert set(linear['vargroup']) <= set(figures_stage.VARGROUP_ORDER)
    assert 'female' in set(linear['param'])


def test_effect_figures_from_tables(tmp_path, figures_stage, effect_tables) -> None:
    figures_stage.generate_figure3(effect_tables['marginal_apc_effects'],
                                   str(tmp_path / "Figure3.jpeg"))
    figures_stage.generate_figure_b1(effect_tables['linear_effects'],
                                     str(tmp_path / "FigureB1.jpeg"))
    figures_stage.generate_figure_b2(effect_tables['income_effects'],
                                     str(tmp_path / "FigureB2.jpeg"))

    for name in ("Figure3.jpeg", "FigureB1.jpeg", "FigureB2.jpeg"):
        assert (tmp_path / name).stat().st_size > 0


def test_figure3_requires_known_models(figures_stage, tmp_path) -> None:
    effects = pd.DataFrame({'model': ['Other'], 'variable': ['Age'], 'value': [20],
                            'effect': [1.0]})
    with pytest.raises(ValueError, match="No models"):
        figures_stage.generate_figure3(effects, str(tmp_path / "fig.jpeg"))


def test_load_table_missing(figures_stage, monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(figures_stage, 'TABLES_DIR', str(tmp_path))
    with pytest.raises(FileNotFoundError):
        figures_stage.load_table('marginal_apc_effects')


# --- run_all -----------------------------------------------------------------

def test_pipeline_stages_exist(pipeline) -> None:
    scripts = [stage['script'] for stage in pipeline.STAGES]

    assert scripts == sorted(scripts)
    for script in scripts:
        assert os.path.exists(os.path.join(pipeline.CODE_DIR, script))


def test_missing_outputs(pipeline, monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(pipeline, 'BASE_DIR', str(tmp_path))
    (tmp_path / "tables").mkdir()
    (tmp_path / "tables" / "a.csv").write_text("x")

    stage = {'outputs': ['tables/a.csv', 'tables/b.csv']}
    assert pipeline.missing_outputs(stage) == ['tables/b.csv']


def test_run_script_missing(pipeline, tmp_path) -> None:
    assert pipeline.run_script(str(tmp_path / "missing.py"), "Missing stage") is False


def test_fit_defaults_are_shared(fit_stage, evaluation_stage) -> None:
    for key in apc_gam.FIT_DEFAULTS:
        assert key in fit_stage.FIT_SPEC
        assert key in evaluation_stage.EVAL_SPEC


def _pipeline_stages(tmp_path, scripts):
    stages = []
    for name, body in scripts:
        (tmp_path / name).write_text(body)
        stages.append({'script': name, 'description': f"Stage {name}", 'outputs': []})
    return stages


def test_pipeline_stops_at_first_failure(pipeline, monkeypatch, tmp_path, capsys) -> None:
    stages = _pipeline_stages(tmp_path, [
        ('ok.py', "print('done')\n"),
        ('fail.py', "import sys\nsys.exit(1)\n"),
        ('never.py', "open('never_ran.txt', 'w').close()\n"),
    ])
    monkeypatch.setattr(pipeline, 'STAGES', stages)
    monkeypatch.setattr(pipeline, 'CODE_DIR', str(tmp_path))
    monkeypatch.setattr(pipeline, 'BASE_DIR', str(tmp_path))

    assert pipeline.main() == 1

    out = capsys.readouterr().out
    assert "Stage 1: Stage ok.py - SUCCESS" in out
    assert "Stage 2: Stage fail.py - FAILED" in out
    assert "Stage 3: Stage never.py - SKIPPED" in out
    assert not (tmp_path / "never_ran.txt").exists()


def test_pipeline_succeeds_when_all_stages_pass(pipeline, monkeypatch, tmp_path,
                                               capsys) -> None:
    stages = _pipeline_stages(tmp_path, [
        ('first.py', "print('first')\n"),
        ('second.py', "print('second')\n"),
    ])
    monkeypatch.setattr(pipeline, 'STAGES', stages)
    monkeypatch.setattr(pipeline, 'CODE_DIR', str(tmp_path))
    monkeypatch.setattr(pipeline, 'BASE_DIR', str(tmp_path))

    assert pipeline.main() == 0
    assert "ALL STAGES COMPLETED SUCCESSFULLY" in capsys.readouterr().out
