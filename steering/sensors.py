"""sensors.py

Modelo de sensores: projeta consultas de proximidade do mundo em um vetor
de características de tamanho fixo, consumido pela rede neural.

Cada raio devolve a distância até o obstáculo mais próximo normalizada por
`max_range` (0 = encostado, 1 = nada dentro do alcance). Opcionalmente o
último elemento é a velocidade normalizada.
"""
import logging
import math
from typing import Optional, Protocol

import numpy as np

from steering.config import SensorConfig
from steering.control import Pose


logger = logging.getLogger(__name__)

# leitura usada quando o raio não acerta nada ou o colaborador está fora do ar
NO_HIT = 1.0


class SensorUnavailableError(RuntimeError):
	"""Levantado pelo colaborador de física quando não consegue responder."""


class WorldQuery(Protocol):
	def cast_ray(self, x: float, y: float, angle: float, max_range: float) -> Optional[float]:
		"""Distância até o primeiro obstáculo ao longo do raio, ou None."""


class SensorModel:
	def __init__(self, config: SensorConfig = SensorConfig()):
		config.validate()
		self.config = config
		# ângulos relativos ao heading, simétricos; com número ímpar de raios
		# o raio central aponta exatamente para frente
		if config.ray_count == 1:
			self._offsets = np.zeros(1)
		else:
			half = config.ray_span / 2.0
			self._offsets = np.linspace(-half, half, config.ray_count)

	@property
	def feature_length(self) -> int:
		return self.config.feature_length

	def ray_angles(self, heading: float) -> np.ndarray:
		return heading + self._offsets

	def sense(self, pose: Pose, world_query: Optional[WorldQuery], speed: Optional[float] = None) -> np.ndarray:
		cfg = self.config
		features = np.full(cfg.feature_length, NO_HIT, dtype=float)

		if world_query is None:
			logger.debug("No world query available, returning sentinel readings")
		else:
			try:
				for i, angle in enumerate(self.ray_angles(pose.heading)):
					dist = world_query.cast_ray(pose.x, pose.y, float(angle), cfg.max_range)
					if dist is None or not math.isfinite(dist) or dist >= cfg.max_range:
						continue
					features[i] = max(0.0, dist) / cfg.max_range
			except SensorUnavailableError as exc:
				logger.warning("World query unavailable (%s); treating as no obstacle", exc)
				features[:cfg.ray_count] = NO_HIT

		if cfg.include_speed:
			s = 0.0 if speed is None else abs(float(speed)) / cfg.max_speed
			features[-1] = min(1.0, s)
		return features
