"""navigation.py

Fachada de estratégia de navegação. A simulação chama `decide(state)` uma
vez por agente vivo a cada tick, sem saber qual motor está ativo. Existem
exatamente duas estratégias, escolhidas uma única vez na inicialização:

- `NeuralNetworkStrategy`: sensores + rede neural (pesos vindos do GA);
- `AStarStrategy`: planejador A* por agente + seguidor de caminho.
"""
from concurrent.futures import ThreadPoolExecutor
import enum
import logging
from typing import Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from steering.config import Config, ConfigurationError
from steering.control import AgentState, ControlCommand, ControlLimits, DEFAULT_LIMITS, HALT
from steering.neural_network import Genome, GenomeMismatchError, Topology, infer
from steering.pathfinding import Cell, Grid, PathFollower, PathPlanner, plan_summary
from steering.sensors import SensorModel


logger = logging.getLogger(__name__)


class StrategyKind(enum.Enum):
	NEURAL = 1
	ASTAR = 2

	@classmethod
	def parse(cls, value: Union[str, int, 'StrategyKind']) -> 'StrategyKind':
		if isinstance(value, cls):
			return value
		text = str(value).strip().lower()
		aliases = {'1': cls.NEURAL, 'nn': cls.NEURAL, 'neural': cls.NEURAL, 'ga': cls.NEURAL,
				   '2': cls.ASTAR, 'astar': cls.ASTAR, 'a*': cls.ASTAR}
		if text not in aliases:
			raise ConfigurationError(f"unknown navigation strategy {value!r}")
		return aliases[text]


class NavigationStrategy:
	"""Contrato comum: estado do agente -> comando de controle."""
	kind: StrategyKind

	def decide(self, state: AgentState) -> ControlCommand:
		raise NotImplementedError

	def reset(self) -> None:
		"""Descarta o estado por agente (início de um novo episódio)."""


class NeuralNetworkStrategy(NavigationStrategy):
	kind = StrategyKind.NEURAL

	def __init__(self, topology: Topology, sensors: SensorModel,
				 genomes: Union[Mapping[Hashable, Genome], Callable[[Hashable], Genome]],
				 limits: ControlLimits = DEFAULT_LIMITS):
		if sensors.feature_length != topology.inputs:
			raise ConfigurationError(
				f"sensor model yields {sensors.feature_length} features, network expects {topology.inputs}")
		self.topology = topology
		self.sensors = sensors
		self.limits = limits
		self._genomes = genomes
		if not callable(genomes):
			for agent_id, genome in genomes.items():
				self._check(agent_id, genome)

	def _check(self, agent_id: Hashable, genome: Genome) -> Genome:
		# mesmo número de parâmetros não basta: a topologia inteira precisa bater
		if genome.topology != self.topology:
			raise GenomeMismatchError(
				f"genome for agent {agent_id!r} was built for {genome.topology}, not {self.topology}")
		return genome

	def genome_for(self, agent_id: Hashable) -> Genome:
		if callable(self._genomes):
			return self._check(agent_id, self._genomes(agent_id))
		return self._genomes[agent_id]

	def decide(self, state: AgentState) -> ControlCommand:
		features = self.sensors.sense(state.pose, state.world_query, speed=state.speed)
		return infer(self.topology, self.genome_for(state.agent_id), features, self.limits)

	def decide_many(self, states: Sequence[AgentState], max_workers: Optional[int] = None) -> List[ControlCommand]:
		"""Avalia vários agentes em paralelo (a inferência é uma função pura)."""
		if max_workers == 1 or len(states) <= 1:
			return [self.decide(s) for s in states]
		with ThreadPoolExecutor(max_workers=max_workers) as pool:
			return list(pool.map(self.decide, states))


class AStarStrategy(NavigationStrategy):
	kind = StrategyKind.ASTAR

	def __init__(self, grid: Grid, config: Config = Config(),
				 goal: Optional[Tuple[float, float]] = None,
				 limits: ControlLimits = DEFAULT_LIMITS):
		self.grid = grid
		self.config = config
		self.goal = goal
		self.limits = limits
		self._planners: Dict[Hashable, PathPlanner] = {}
		self._followers: Dict[Hashable, PathFollower] = {}
		self._last_pos: Dict[Hashable, Tuple[float, float]] = {}

	def _agent(self, agent_id: Hashable) -> Tuple[PathPlanner, PathFollower]:
		planner = self._planners.get(agent_id)
		if planner is None:
			planner = self._planners[agent_id] = PathPlanner(self.grid, self.config.grid)
			self._followers[agent_id] = PathFollower(self.grid, self.config.follower, self.limits)
		return planner, self._followers[agent_id]

	def goal_cell(self, state: AgentState) -> Optional[Cell]:
		goal = state.goal if state.goal is not None else self.goal
		if goal is None:
			return None
		# objetivo fora da grade: usa a célula de borda mais próxima
		return self.grid.clamp(self.grid.world_to_cell(*goal))

	def decide(self, state: AgentState) -> ControlCommand:
		goal = self.goal_cell(state)
		if goal is None:
			return HALT
		planner, follower = self._agent(state.agent_id)
		pose = state.pose
		cell = self.grid.world_to_cell(pose.x, pose.y)

		last = self._last_pos.get(state.agent_id)
		moved = pose.distance_to(*last) if last is not None else 0.0
		self._last_pos[state.agent_id] = (pose.x, pose.y)

		if planner.goal != goal:
			planner.plan(cell, goal)
		else:
			planner.update(cell, dt=state.dt, moved=moved)

		if not planner.reachable:
			return HALT
		return follower.follow(pose, planner.path, speed=state.speed)

	def update_obstacles(self, cells: Iterable[Cell]) -> None:
		"""O mundo informou um novo conjunto de células bloqueadas."""
		changed = self.grid.update_obstacles(cells)
		if not changed:
			return
		for planner in self._planners.values():
			planner.notify_obstacles(changed)

	def snapshot(self, agent_id: Optional[Hashable] = None):
		"""Caminho atual de um agente (ou de todos) para exibição."""
		if agent_id is not None:
			planner = self._planners.get(agent_id)
			return planner.path if planner is not None else ()
		return plan_summary(self._planners)

	def reset(self) -> None:
		self._planners.clear()
		self._followers.clear()
		self._last_pos.clear()


def create_strategy(kind: Union[str, int, StrategyKind], config: Config, *,
					topology: Optional[Topology] = None,
					genomes=None,
					grid: Optional[Grid] = None,
					goal: Optional[Tuple[float, float]] = None) -> NavigationStrategy:
	"""Escolhe a estratégia uma vez, na inicialização."""
	kind = StrategyKind.parse(kind)
	config.validate()
	if kind is StrategyKind.NEURAL:
		if genomes is None:
			raise ConfigurationError("neural strategy needs genomes")
		topology = topology or Topology.from_config(config.sensors, config.network)
		strategy = NeuralNetworkStrategy(topology, SensorModel(config.sensors), genomes)
	else:
		strategy = AStarStrategy(grid or Grid.from_config(config.grid), config, goal=goal)
	logger.info("Navigation strategy: %s", kind.name)
	return strategy
