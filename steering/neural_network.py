"""neural_network.py

Rede neural feedforward de topologia fixa. Os pesos não ficam guardados em
matrizes persistentes: o genoma é um vetor achatado e só é remodelado nas
matrizes de cada camada no momento da inferência.

Layout do vetor (por camada, da entrada para a saída): `W` com forma
(saídas, entradas) em ordem C, seguido do bias `b` com `saídas` elementos.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from steering.config import ConfigurationError, NetworkConfig, SensorConfig
from steering.control import ControlCommand, ControlLimits, DEFAULT_LIMITS


# saídas da rede: direção e acelerador
CONTROL_OUTPUTS = 2

_ACTIVATIONS = {
	'tanh': (np.tanh, (-1.0, 1.0)),
	'sigmoid': (lambda z: 1.0 / (1.0 + np.exp(-z)), (0.0, 1.0)),
}


class GenomeMismatchError(ConfigurationError):
	"""Genoma com número de parâmetros diferente do exigido pela topologia."""


@dataclass(frozen=True)
class Topology:
	inputs: int
	hidden: Tuple[int, ...] = ()
	outputs: int = CONTROL_OUTPUTS
	activation: str = 'tanh'

	def __post_init__(self):
		if self.inputs < 1 or any(h < 1 for h in self.hidden):
			raise ConfigurationError(f"layer sizes must be >= 1: {self}")
		if self.outputs < CONTROL_OUTPUTS:
			raise ConfigurationError(f"need at least {CONTROL_OUTPUTS} outputs, got {self.outputs}")
		if self.activation not in _ACTIVATIONS:
			raise ConfigurationError(f"unknown activation {self.activation!r}")
		# garante tupla (hashable) mesmo quando vier uma lista
		object.__setattr__(self, 'hidden', tuple(int(h) for h in self.hidden))

	@classmethod
	def from_config(cls, sensors: SensorConfig, network: NetworkConfig) -> 'Topology':
		return cls(inputs=sensors.feature_length, hidden=tuple(network.hidden),
				   outputs=CONTROL_OUTPUTS, activation=network.activation)

	@property
	def layer_sizes(self) -> Tuple[int, ...]:
		return (self.inputs,) + self.hidden + (self.outputs,)

	def layer_shapes(self) -> List[Tuple[int, int]]:
		sizes = self.layer_sizes
		return [(sizes[i + 1], sizes[i]) for i in range(len(sizes) - 1)]

	@property
	def parameter_count(self) -> int:
		return sum(rows * cols + rows for rows, cols in self.layer_shapes())


class Genome:
	"""Vetor de pesos imutável associado a uma topologia.

	O comprimento é conferido na construção; um genoma existente é sempre
	válido para sua topologia, então a inferência nunca precisa checar isso.
	"""
	__slots__ = ('topology', 'weights')

	def __init__(self, topology: Topology, weights: Sequence[float]):
		arr = np.array(weights, dtype=float).ravel()
		if arr.size != topology.parameter_count:
			raise GenomeMismatchError(
				f"genome has {arr.size} parameters, topology {topology.layer_sizes} "
				f"requires {topology.parameter_count}")
		arr.flags.writeable = False
		self.topology = topology
		self.weights = arr

	@classmethod
	def random(cls, topology: Topology, rng: np.random.Generator, scale: float = 1.0) -> 'Genome':
		return cls(topology, rng.normal(0.0, scale, size=topology.parameter_count))

	@classmethod
	def zeros(cls, topology: Topology) -> 'Genome':
		return cls(topology, np.zeros(topology.parameter_count))

	def __len__(self) -> int:
		return int(self.weights.size)

	def __eq__(self, other) -> bool:
		if not isinstance(other, Genome):
			return NotImplemented
		return self.topology == other.topology and np.array_equal(self.weights, other.weights)

	def __hash__(self) -> int:
		return hash((self.topology, self.weights.tobytes()))

	def __repr__(self) -> str:
		return f"Genome(layers={self.topology.layer_sizes}, n={len(self)})"


def unpack(topology: Topology, genome: Genome) -> List[Tuple[np.ndarray, np.ndarray]]:
	"""Fatia o vetor do genoma em pares (W, b) por camada (views somente leitura)."""
	w = genome.weights
	layers = []
	p = 0
	for rows, cols in topology.layer_shapes():
		W = w[p:p + rows * cols].reshape((rows, cols))
		p += rows * cols
		b = w[p:p + rows]
		p += rows
		layers.append((W, b))
	return layers


def forward(topology: Topology, genome: Genome, features: Sequence[float]) -> np.ndarray:
	"""Saídas brutas da última camada (após a ativação)."""
	x = np.asarray(features, dtype=float)
	if x.shape != (topology.inputs,):
		raise ValueError(f"expected {topology.inputs} features, got shape {x.shape}")
	if genome.topology != topology:
		raise GenomeMismatchError(f"genome built for {genome.topology}, not {topology}")
	act, _ = _ACTIVATIONS[topology.activation]
	for W, b in unpack(topology, genome):
		x = act(W.dot(x) + b)
	return x


def infer(topology: Topology, genome: Genome, features: Sequence[float],
		  limits: Optional[ControlLimits] = None) -> ControlCommand:
	"""Uma passada direta: vetor de sensores -> comando de controle.

	Saída 0 é a direção e saída 1 o acelerador; ambas são reescaladas
	linearmente do intervalo da ativação para os limites do comando.
	"""
	limits = limits or DEFAULT_LIMITS
	out = forward(topology, genome, features)
	_, (lo, hi) = _ACTIVATIONS[topology.activation]
	unit = (out[:CONTROL_OUTPUTS] - lo) / (hi - lo)  # -> [0, 1]
	steering = limits.steering_min + float(unit[0]) * (limits.steering_max - limits.steering_min)
	throttle = limits.throttle_min + float(unit[1]) * (limits.throttle_max - limits.throttle_min)
	return ControlCommand(steering, throttle).clamped(limits)
