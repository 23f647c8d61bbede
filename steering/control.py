"""control.py

Contrato de atuação comum aos dois motores de decisão: o comando de
controle (direção, acelerador) e o estado do agente consultado a cada tick.
"""
from dataclasses import dataclass
import math
from typing import Any, Hashable, Optional

import numpy as np

from steering.config import ConfigurationError


@dataclass(frozen=True)
class ControlLimits:
	steering_min: float = -1.0
	steering_max: float = 1.0
	throttle_min: float = -1.0
	throttle_max: float = 1.0

	def __post_init__(self):
		if self.steering_min >= self.steering_max or self.throttle_min >= self.throttle_max:
			raise ConfigurationError(f"invalid control limits: {self}")


DEFAULT_LIMITS = ControlLimits()


@dataclass(frozen=True)
class ControlCommand:
	steering: float = 0.0  # positivo = virar à esquerda (anti-horário)
	throttle: float = 0.0  # negativo = freio / ré

	def clamped(self, limits: ControlLimits = DEFAULT_LIMITS) -> 'ControlCommand':
		return ControlCommand(
			steering=float(np.clip(self.steering, limits.steering_min, limits.steering_max)),
			throttle=float(np.clip(self.throttle, limits.throttle_min, limits.throttle_max)),
		)


HALT = ControlCommand(0.0, 0.0)


@dataclass(frozen=True)
class Pose:
	x: float
	y: float
	heading: float  # rad, 0 = eixo +x

	def distance_to(self, x: float, y: float) -> float:
		return math.hypot(x - self.x, y - self.y)

	def bearing_to(self, x: float, y: float) -> float:
		"""Erro de direção (rad, em [-pi, pi]) até o ponto (x, y)."""
		return wrap_angle(math.atan2(y - self.y, x - self.x) - self.heading)


def wrap_angle(angle: float) -> float:
	return (angle + math.pi) % (2.0 * math.pi) - math.pi


@dataclass
class AgentState:
	"""O que a simulação entrega à estratégia de navegação em cada tick.

	`world_query` é o colaborador de física que responde consultas de raio
	(ver `sensors.WorldQuery`); pode ser `None` quando indisponível.
	"""
	agent_id: Hashable
	pose: Pose
	speed: float = 0.0
	world_query: Optional[Any] = None
	goal: Optional[tuple] = None  # ponto (x, y) no mundo, usado pelo A*
	dt: float = 0.0  # duração do tick em segundos
