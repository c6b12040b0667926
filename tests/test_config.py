import json
import logging

import pytest

from config import (
    DEFAULT_ELEMENTS,
    ElementSpecies,
    InvalidConfiguration,
    ModelConfig,
    load_run_config,
    parse_model_config,
    parse_run_config,
)


def test_defaults_are_filled_in():
    cfg = parse_model_config({})
    assert cfg.energy == 1e51
    assert cfg.density == 1e-24
    assert cfg.particle_budget == 2000
    assert cfg.elements == DEFAULT_ELEMENTS
    assert [e.name for e in cfg.elements] == ['Fe', 'Si', 'O', 'C']
    assert [e.mass_frac for e in cfg.elements] == [0.15, 0.25, 0.35, 0.25]


def test_elements_accept_both_mass_fraction_spellings():
    cfg = parse_model_config({
        'energy': 2e51,
        'elements': [
            {'name': 'Fe', 'A': 56, 'massFrac': 0.5, 'D0': 1e18, 'color': '#ff0000'},
            {'name': 'C', 'A': 12.0, 'mass_frac': 0.5, 'D0': 4e18},
        ],
    })
    assert cfg.energy == 2e51
    assert cfg.elements[0] == ElementSpecies(name='Fe', A=56, mass_frac=0.5, D0=1e18, color='#ff0000')
    assert cfg.elements[1].A == 12
    assert isinstance(cfg.elements[1].A, int)


@pytest.mark.parametrize(
    'entry',
    [
        {'name': 'Fe', 'A': 0, 'massFrac': 0.5, 'D0': 1e18},
        {'name': 'Fe', 'A': 56, 'massFrac': 0.0, 'D0': 1e18},
        {'name': 'Fe', 'A': 56, 'massFrac': 1.5, 'D0': 1e18},
        {'name': 'Fe', 'A': 56, 'massFrac': 0.5, 'D0': -1.0},
        {'name': 'Fe', 'A': 56, 'D0': 1e18},
    ],
)
def test_bad_species_are_rejected(entry):
    with pytest.raises(InvalidConfiguration):
        parse_model_config({'elements': [entry]})


@pytest.mark.parametrize('field, value', [('energy', 0.0), ('density', -1e-24), ('particle_budget', 0)])
def test_bad_scalars_are_rejected(field, value):
    with pytest.raises(InvalidConfiguration):
        parse_model_config({field: value})


def test_duplicate_species_are_rejected():
    elem = ElementSpecies(name='O', A=16, mass_frac=0.5, D0=3e18)
    with pytest.raises(InvalidConfiguration):
        ModelConfig(elements=(elem, elem)).validate()


def test_mass_fraction_mismatch_is_reported_not_normalised(caplog):
    elements = (ElementSpecies(name='Fe', A=56, mass_frac=0.3, D0=1e18),)
    with caplog.at_level(logging.WARNING, logger='config'):
        cfg = ModelConfig(elements=elements).validate()
    assert cfg.elements[0].mass_frac == 0.3
    assert 'sum to' in caplog.text


def test_statistics_section_is_parsed():
    cfg = parse_run_config({'supernova': {'statistics': {'max_history': 10}}})
    assert cfg.statistics.max_history == 10
    assert cfg.statistics.radial_bins == 50
    assert cfg.statistics.angular_bins == 36


def test_load_from_file(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'supernova': {'density': 2e-24, 'time_step': 50}}), encoding='utf-8')
    cfg = load_run_config(path)
    assert cfg.model.density == 2e-24
    assert cfg.model.time_step == 50


def test_malformed_file_is_rejected(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text('{not json', encoding='utf-8')
    with pytest.raises(InvalidConfiguration):
        load_run_config(path)


def test_missing_explicit_file_is_rejected(tmp_path):
    with pytest.raises(InvalidConfiguration):
        load_run_config(tmp_path / 'absent.json')


def test_lookup_uses_working_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert load_run_config().model == ModelConfig()

    (tmp_path / 'config.json').write_text(json.dumps({'supernova': {'energy': 5e50}}), encoding='utf-8')
    assert load_run_config().model.energy == 5e50
