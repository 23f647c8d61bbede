import math
from pathlib import Path

import pytest

from steering.config import (
    Config,
    ConfigurationError,
    EvolutionConfig,
    GridConfig,
    NetworkConfig,
    SensorConfig,
    load_config,
)


def test_default_config_is_valid():
    """A configuração padrão deve passar na validação sem erros."""
    config = load_config()
    assert isinstance(config, Config)
    assert config.sensors.feature_length == config.sensors.ray_count + 1


@pytest.mark.parametrize("kwargs", [
    dict(population_size=0),
    dict(population_size=5, tournament_size=6),
    dict(population_size=5, tournament_size=0),
    dict(population_size=5, elitism=6),
    dict(population_size=5, elitism=0),
    dict(mutation_rate=1.5),
    dict(mutation_std=-0.1),
    dict(crossover='single-point'),
])
def test_evolution_config_rejects_invalid_values(kwargs):
    """População vazia, torneio/elitismo maiores que a população etc. são fatais."""
    with pytest.raises(ConfigurationError):
        EvolutionConfig(**kwargs).validate()


def test_grid_config_rejects_inadmissible_heuristic():
    # manhattan superestima custos diagonais
    with pytest.raises(ConfigurationError):
        GridConfig(heuristic='manhattan', connectivity=8).validate()
    GridConfig(heuristic='octile', connectivity=8).validate()


def test_sensor_and_network_validation():
    with pytest.raises(ConfigurationError):
        SensorConfig(ray_count=0).validate()
    with pytest.raises(ConfigurationError):
        SensorConfig(ray_span=3 * math.pi).validate()
    with pytest.raises(ConfigurationError):
        NetworkConfig(activation='relu').validate()
    with pytest.raises(ConfigurationError):
        NetworkConfig(hidden=(4, 0)).validate()


def test_load_config_from_ini(tmp_path):
    """Valores do INI são convertidos para o tipo do campo correspondente."""
    ini = tmp_path / "config.ini"
    ini.write_text(
        "[evolution]\n"
        "population_size = 12\n"
        "elitism = 3\n"
        "seed = 7\n"
        "crossover = blend\n"
        "[network]\n"
        "hidden = 4, 3\n"
        "[sensors]\n"
        "include_speed = no\n"
        "[grid]\n"
        "origin = 0, -100\n"
    )
    config = load_config(str(ini))

    assert config.evolution.population_size == 12
    assert config.evolution.elitism == 3
    assert config.evolution.seed == 7
    assert config.evolution.crossover == 'blend'
    assert config.network.hidden == (4, 3)
    assert config.sensors.include_speed is False
    assert config.grid.origin == (0.0, -100.0)
    # seções ausentes mantêm o padrão
    assert config.fitness.collision_penalty == 25.0


def test_load_config_rejects_unknown_key_and_section(tmp_path):
    bad_key = tmp_path / "bad_key.ini"
    bad_key.write_text("[evolution]\npopulation = 10\n")
    with pytest.raises(ConfigurationError):
        load_config(str(bad_key))

    bad_section = tmp_path / "bad_section.ini"
    bad_section.write_text("[physics]\ngravity = 0\n")
    with pytest.raises(ConfigurationError):
        load_config(str(bad_section))

    bad_value = tmp_path / "bad_value.ini"
    bad_value.write_text("[evolution]\npopulation_size = many\n")
    with pytest.raises(ConfigurationError):
        load_config(str(bad_value))


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / "nope.ini"))


def test_overrides_are_applied_and_validated():
    config = load_config(evolution__population_size=6, evolution__elitism=1)
    assert config.evolution.population_size == 6

    with pytest.raises(ConfigurationError):
        load_config(evolution__population_size=0)
    with pytest.raises(ConfigurationError):
        load_config(evolution__bogus=1)
    with pytest.raises(ConfigurationError):
        load_config(population_size=3)


def test_sample_config_matches_defaults():
    """O config.ini de exemplo na raiz do repositório documenta os padrões."""
    sample = Path(__file__).resolve().parents[2] / "config.ini"
    assert load_config(str(sample)) == Config()
