"""config.py

Configuração tipada da simulação. Cada grupo de parâmetros é um dataclass
imutável com um `validate()` próprio; `load_config` lê um arquivo INI
(seções [sensors], [network], [fitness], [evolution], [grid], [follower] e
[simulation]) e devolve um `Config` já validado.

Erros de configuração são fatais: são levantados antes da primeira geração
ou da primeira busca, nunca durante a simulação.
"""
from configparser import ConfigParser
from dataclasses import dataclass, field, fields, replace
import logging
import math
from typing import Optional, Tuple


logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
	"""Parâmetro inválido detectado na inicialização."""


@dataclass(frozen=True)
class SensorConfig:
	ray_count: int = 7
	ray_span: float = math.pi * 2.0 / 3.0  # cobertura total (+/- 60 graus)
	max_range: float = 300.0
	include_speed: bool = True
	max_speed: float = 100.0

	@property
	def feature_length(self) -> int:
		return self.ray_count + (1 if self.include_speed else 0)

	def validate(self) -> None:
		if self.ray_count < 1:
			raise ConfigurationError(f"ray_count must be >= 1, got {self.ray_count}")
		if not 0.0 <= self.ray_span <= 2.0 * math.pi:
			raise ConfigurationError(f"ray_span must be in [0, 2*pi], got {self.ray_span}")
		if self.max_range <= 0.0:
			raise ConfigurationError(f"max_range must be positive, got {self.max_range}")
		if self.max_speed <= 0.0:
			raise ConfigurationError(f"max_speed must be positive, got {self.max_speed}")


@dataclass(frozen=True)
class NetworkConfig:
	hidden: Tuple[int, ...] = (8, 6)
	activation: str = 'tanh'
	init_scale: float = 1.0

	def validate(self) -> None:
		if any(h < 1 for h in self.hidden):
			raise ConfigurationError(f"hidden layer sizes must be >= 1, got {self.hidden}")
		if self.activation not in ('tanh', 'sigmoid'):
			raise ConfigurationError(f"unknown activation {self.activation!r}")
		if self.init_scale <= 0.0:
			raise ConfigurationError(f"init_scale must be positive, got {self.init_scale}")


@dataclass(frozen=True)
class FitnessWeights:
	"""Pesos da fórmula de fitness (ver `genetic_algorithm.fitness_of`)."""
	distance: float = 1.0
	checkpoint_bonus: float = 50.0
	survival: float = 0.0
	collision_penalty: float = 25.0
	goal_bonus: float = 100.0

	def validate(self) -> None:
		for f in fields(self):
			value = getattr(self, f.name)
			if not math.isfinite(value):
				raise ConfigurationError(f"fitness weight {f.name} must be finite, got {value}")
		if self.collision_penalty < 0.0:
			raise ConfigurationError("collision_penalty must be >= 0")


@dataclass(frozen=True)
class EvolutionConfig:
	population_size: int = 40
	elitism: int = 2
	tournament_size: int = 3
	mutation_rate: float = 0.1
	mutation_std: float = 0.3
	crossover: str = 'uniform'
	seed: Optional[int] = None

	def validate(self) -> None:
		if self.population_size < 1:
			raise ConfigurationError(f"population_size must be >= 1, got {self.population_size}")
		if not 1 <= self.tournament_size <= self.population_size:
			raise ConfigurationError(
				f"tournament_size must be in [1, {self.population_size}], got {self.tournament_size}")
		if not 1 <= self.elitism <= self.population_size:
			raise ConfigurationError(
				f"elitism must be in [1, {self.population_size}], got {self.elitism}")
		if not 0.0 <= self.mutation_rate <= 1.0:
			raise ConfigurationError(f"mutation_rate must be in [0, 1], got {self.mutation_rate}")
		if self.mutation_std < 0.0:
			raise ConfigurationError(f"mutation_std must be >= 0, got {self.mutation_std}")
		if self.crossover not in ('uniform', 'blend'):
			raise ConfigurationError(f"unknown crossover {self.crossover!r}")


@dataclass(frozen=True)
class GridConfig:
	width: int = 60
	height: int = 40
	cell_size: float = 20.0
	origin: Tuple[float, float] = (0.0, -400.0)
	heuristic: str = 'manhattan'
	connectivity: int = 4
	max_expansions: int = 20000
	replan_tolerance: int = 2
	replan_interval: float = 1.0
	replan_distance: float = 50.0

	def validate(self) -> None:
		if self.width < 1 or self.height < 1:
			raise ConfigurationError(f"grid must be at least 1x1, got {self.width}x{self.height}")
		if self.cell_size <= 0.0:
			raise ConfigurationError(f"cell_size must be positive, got {self.cell_size}")
		if self.heuristic not in ('manhattan', 'euclidean', 'octile'):
			raise ConfigurationError(f"unknown heuristic {self.heuristic!r}")
		if self.connectivity not in (4, 8):
			raise ConfigurationError(f"connectivity must be 4 or 8, got {self.connectivity}")
		if self.heuristic == 'manhattan' and self.connectivity == 8:
			# manhattan superestima com diagonais
			raise ConfigurationError("manhattan heuristic is not admissible with 8-connectivity")
		if self.max_expansions < 1:
			raise ConfigurationError(f"max_expansions must be >= 1, got {self.max_expansions}")
		if self.replan_tolerance < 0:
			raise ConfigurationError(f"replan_tolerance must be >= 0, got {self.replan_tolerance}")


@dataclass(frozen=True)
class FollowerConfig:
	waypoint_radius: float = 25.0
	steering_gain: float = 1.5
	cruise_throttle: float = 1.0
	min_throttle: float = 0.2
	slowdown_distance: float = 80.0
	# controle de velocidade (usado quando a velocidade atual é conhecida)
	cruise_speed: float = 60.0
	min_speed: float = 15.0
	speed_gain: float = 0.1  # acelerador por unidade de erro de velocidade

	def validate(self) -> None:
		if self.waypoint_radius <= 0.0:
			raise ConfigurationError("waypoint_radius must be positive")
		if self.steering_gain <= 0.0:
			raise ConfigurationError("steering_gain must be positive")
		if not 0.0 <= self.min_throttle <= self.cruise_throttle:
			raise ConfigurationError("expected 0 <= min_throttle <= cruise_throttle")
		if self.slowdown_distance < 0.0:
			raise ConfigurationError("slowdown_distance must be >= 0")
		if not 0.0 <= self.min_speed <= self.cruise_speed:
			raise ConfigurationError("expected 0 <= min_speed <= cruise_speed")
		if self.speed_gain <= 0.0:
			raise ConfigurationError("speed_gain must be positive")


@dataclass(frozen=True)
class SimulationConfig:
	dt: float = 0.1
	max_steps: int = 600
	goal_x: float = 1000.0
	checkpoint_spacing: float = 100.0
	car_radius: float = 6.0

	def validate(self) -> None:
		if self.dt <= 0.0:
			raise ConfigurationError(f"dt must be positive, got {self.dt}")
		if self.max_steps < 1:
			raise ConfigurationError(f"max_steps must be >= 1, got {self.max_steps}")
		if self.checkpoint_spacing <= 0.0:
			raise ConfigurationError("checkpoint_spacing must be positive")


@dataclass(frozen=True)
class Config:
	sensors: SensorConfig = field(default_factory=SensorConfig)
	network: NetworkConfig = field(default_factory=NetworkConfig)
	fitness: FitnessWeights = field(default_factory=FitnessWeights)
	evolution: EvolutionConfig = field(default_factory=EvolutionConfig)
	grid: GridConfig = field(default_factory=GridConfig)
	follower: FollowerConfig = field(default_factory=FollowerConfig)
	simulation: SimulationConfig = field(default_factory=SimulationConfig)

	def validate(self) -> 'Config':
		for f in fields(self):
			getattr(self, f.name).validate()
		return self


# nome da seção INI -> atributo de Config
_SECTIONS = {f.name: f for f in fields(Config)}


def _coerce(raw: str, default, name: str):
	"""Converte o texto do INI para o tipo do valor padrão."""
	try:
		if isinstance(default, bool):
			lowered = raw.strip().lower()
			if lowered in ('1', 'yes', 'true', 'on'):
				return True
			if lowered in ('0', 'no', 'false', 'off'):
				return False
			raise ValueError(raw)
		if isinstance(default, tuple):
			parts = [p for p in raw.replace(',', ' ').split() if p]
			if default and isinstance(default[0], float):
				return tuple(float(p) for p in parts)
			return tuple(int(p) for p in parts)
		if isinstance(default, int):
			return int(raw)
		if isinstance(default, float):
			return float(raw)
		if default is None:
			return int(raw) if raw.strip() else None
		return raw.strip()
	except ValueError:
		raise ConfigurationError(f"invalid value for {name}: {raw!r}") from None


def load_config(path: Optional[str] = None, **overrides) -> Config:
	"""Carrega a configuração de `path` (INI) e aplica `overrides`.

	`overrides` usa a forma `secao__chave=valor`, por exemplo
	`evolution__population_size=20`. Sem `path`, parte dos valores padrão.
	"""
	config = Config()
	if path is not None:
		parser = ConfigParser()
		if not parser.read(path):
			raise ConfigurationError(f"config file not found: {path}")
		for section in parser.sections():
			if section not in _SECTIONS:
				raise ConfigurationError(f"unknown config section [{section}]")
			group = getattr(config, section)
			known = {f.name: getattr(group, f.name) for f in fields(group)}
			values = {}
			for key, raw in parser.items(section):
				if key not in known:
					raise ConfigurationError(f"unknown key {key!r} in [{section}]")
				values[key] = _coerce(raw, known[key], f"{section}.{key}")
			config = replace(config, **{section: replace(group, **values)})
		logger.info("Loaded configuration from %s", path)

	for name, value in overrides.items():
		section, _, key = name.partition('__')
		if section not in _SECTIONS or not key:
			raise ConfigurationError(f"invalid override {name!r}")
		group = getattr(config, section)
		if key not in {f.name for f in fields(group)}:
			raise ConfigurationError(f"unknown key {key!r} in [{section}]")
		config = replace(config, **{section: replace(group, **{key: value})})

	return config.validate()
