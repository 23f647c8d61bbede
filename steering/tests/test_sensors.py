import math

import numpy as np
import pytest

from steering.config import SensorConfig
from steering.control import Pose
from steering.sensors import NO_HIT, SensorModel, SensorUnavailableError
from steering.world import ObstacleWorld


class FixedWorld:
    """Mundo falso que responde sempre a mesma distância."""

    def __init__(self, distance):
        self.distance = distance
        self.calls = []

    def cast_ray(self, x, y, angle, max_range):
        self.calls.append(angle)
        return self.distance


def test_readings_are_normalized_by_range():
    model = SensorModel(SensorConfig(ray_count=3, max_range=200.0, include_speed=False))
    features = model.sense(Pose(0.0, 0.0, 0.0), FixedWorld(50.0))
    assert features.shape == (3,)
    assert np.allclose(features, 0.25)


def test_no_hit_returns_sentinel():
    model = SensorModel(SensorConfig(ray_count=4, include_speed=False))
    assert np.all(model.sense(Pose(0.0, 0.0, 0.0), FixedWorld(None)) == NO_HIT)
    # além do alcance também conta como "nada"
    assert np.all(model.sense(Pose(0.0, 0.0, 0.0), FixedWorld(10_000.0)) == NO_HIT)


def test_missing_world_query_degrades_to_sentinel():
    """Sem colaborador de física os raios leem o sentinela, sem erro."""
    model = SensorModel(SensorConfig(ray_count=5, include_speed=True, max_speed=50.0))
    features = model.sense(Pose(0.0, 0.0, 0.0), None, speed=25.0)
    assert np.all(features[:5] == NO_HIT)
    assert features[-1] == pytest.approx(0.5)


def test_unavailable_world_query_degrades_to_sentinel(mocker):
    world = mocker.MagicMock()
    world.cast_ray.side_effect = [10.0, SensorUnavailableError("physics offline")]
    model = SensorModel(SensorConfig(ray_count=3, include_speed=False))

    features = model.sense(Pose(0.0, 0.0, 0.0), world)

    # mesmo a leitura que já tinha chegado é descartada
    assert np.all(features == NO_HIT)


def test_speed_feature_is_clipped():
    model = SensorModel(SensorConfig(ray_count=1, max_speed=100.0))
    assert model.sense(Pose(0.0, 0.0, 0.0), None, speed=250.0)[-1] == 1.0
    assert model.sense(Pose(0.0, 0.0, 0.0), None, speed=-40.0)[-1] == pytest.approx(0.4)


def test_ray_angles_are_symmetric_with_center_forward():
    model = SensorModel(SensorConfig(ray_count=5, ray_span=math.pi))
    angles = model.ray_angles(0.3)
    expected = 0.3 + np.array([-math.pi / 2, -math.pi / 4, 0.0, math.pi / 4, math.pi / 2])
    assert np.allclose(angles, expected)


def test_sense_against_obstacle_world():
    """O raio central encontra a parede direita do mundo a 100 unidades."""
    world = ObstacleWorld([], x_bounds=(-50.0, 100.0), y_bounds=(-1000.0, 1000.0))
    model = SensorModel(SensorConfig(ray_count=1, max_range=200.0, include_speed=False))
    features = model.sense(Pose(0.0, 0.0, 0.0), world)
    assert features[0] == pytest.approx(0.5)


def test_feature_length_matches_config():
    assert SensorModel(SensorConfig(ray_count=6, include_speed=True)).feature_length == 7
    assert SensorModel(SensorConfig(ray_count=6, include_speed=False)).feature_length == 6
