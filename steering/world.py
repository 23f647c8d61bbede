"""world.py

Mundo 2D de demonstração: o colaborador de física que responde consultas de
raio, detecta colisões e roda episódios para as estratégias de navegação.

A dinâmica é deliberadamente simples (modelo cinemático com arrasto
linear); o objetivo é alimentar os motores de decisão, não reproduzir um
veículo real. O carro parte de (0, 0) olhando para +x e o objetivo é a
linha x = goal_x. Checkpoints ficam a cada `checkpoint_spacing` unidades
ao longo de x.
"""
from dataclasses import dataclass, field
import logging
import math
from typing import Callable, List, Optional, Sequence, Set, Tuple, Union

import numpy as np

from steering.config import Config, SimulationConfig
from steering.control import AgentState, ControlCommand, Pose, wrap_angle
from steering.genetic_algorithm import EpisodeReport, EpisodeState, GeneticAlgorithm, Individual
from steering.navigation import AStarStrategy, NavigationStrategy, NeuralNetworkStrategy
from steering.neural_network import Topology
from steering.pathfinding import Cell, Grid
from steering.sensors import SensorModel


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Circle:
	x: float
	y: float
	radius: float


@dataclass(frozen=True)
class Segment:
	"""Segmento com espessura (cápsula)."""
	ax: float
	ay: float
	bx: float
	by: float
	radius: float


Obstacle = Union[Circle, Segment]


def default_obstacles() -> List[Obstacle]:
	return [
		Circle(300.0, 0.0, 30.0),
		Circle(600.0, 40.0, 40.0),
		Segment(800.0, -150.0, 800.0, 20.0, 5.0),
	]


def _ray_circle_t(ox: float, oy: float, dx: float, dy: float, c: Circle, pad: float) -> Optional[float]:
	"""Menor t >= 0 onde o raio O + t*d (d unitário) toca o círculo inflado por `pad`."""
	fx = ox - c.x
	fy = oy - c.y
	b = 2.0 * (fx * dx + fy * dy)
	cc = fx * fx + fy * fy - (c.radius + pad) ** 2
	disc = b * b - 4.0 * cc
	if disc < 0.0:
		return None
	sd = math.sqrt(disc)
	hits = [t for t in ((-b - sd) / 2.0, (-b + sd) / 2.0) if t >= 0.0]
	return min(hits) if hits else None


def _ray_segment_t(ox: float, oy: float, dx: float, dy: float, s: Segment, pad: float) -> Optional[float]:
	"""Raio vs cápsula: lateral do segmento e os círculos das pontas."""
	ux = s.bx - s.ax
	uy = s.by - s.ay
	uu = ux * ux + uy * uy
	if uu == 0.0:
		return _ray_circle_t(ox, oy, dx, dy, Circle(s.ax, s.ay, s.radius), pad)
	r = s.radius + pad
	wx = ox - s.ax
	wy = oy - s.ay
	ud = ux * dx + uy * dy
	uw = ux * wx + uy * wy
	# componentes perpendiculares ao segmento
	vx = dx - ux * (ud / uu)
	vy = dy - uy * (ud / uu)
	qx = wx - ux * (uw / uu)
	qy = wy - uy * (uw / uu)
	a = vx * vx + vy * vy
	hits = []
	if a > 1e-12:
		b = 2.0 * (qx * vx + qy * vy)
		c = qx * qx + qy * qy - r * r
		disc = b * b - 4.0 * a * c
		if disc >= 0.0:
			sd = math.sqrt(disc)
			for t in ((-b - sd) / (2.0 * a), (-b + sd) / (2.0 * a)):
				if t >= 0.0 and 0.0 <= (uw + t * ud) / uu <= 1.0:
					hits.append(t)
	for end in (Circle(s.ax, s.ay, s.radius), Circle(s.bx, s.by, s.radius)):
		t = _ray_circle_t(ox, oy, dx, dy, end, pad)
		if t is not None:
			hits.append(t)
	return min(hits) if hits else None


def _point_segment_distance(px: float, py: float, s: Segment) -> float:
	ux = s.bx - s.ax
	uy = s.by - s.ay
	uu = ux * ux + uy * uy
	if uu == 0.0:
		return math.hypot(px - s.ax, py - s.ay)
	t = max(0.0, min(1.0, ((px - s.ax) * ux + (py - s.ay) * uy) / uu))
	return math.hypot(px - (s.ax + ux * t), py - (s.ay + uy * t))


class ObstacleWorld:
	"""Retângulo com obstáculos circulares e segmentos; implementa `cast_ray`."""

	def __init__(self, obstacles: Optional[Sequence[Obstacle]] = None,
				 x_bounds: Tuple[float, float] = (-50.0, 1100.0),
				 y_bounds: Tuple[float, float] = (-150.0, 150.0)):
		self.obstacles: List[Obstacle] = list(obstacles) if obstacles is not None else []
		self.x_bounds = x_bounds
		self.y_bounds = y_bounds
		# incrementado quando a lista de obstáculos muda
		self.version = 0

	def add_obstacle(self, obstacle: Obstacle) -> None:
		self.obstacles.append(obstacle)
		self.version += 1

	def remove_obstacle(self, obstacle: Obstacle) -> None:
		self.obstacles.remove(obstacle)
		self.version += 1

	def cast_ray(self, x: float, y: float, angle: float, max_range: float) -> Optional[float]:
		dx = math.cos(angle)
		dy = math.sin(angle)
		best = math.inf
		# paredes do retângulo
		if abs(dy) > 1e-9:
			wall = self.y_bounds[1] if dy > 0 else self.y_bounds[0]
			t = (wall - y) / dy
			if t >= 0.0:
				best = min(best, t)
		if abs(dx) > 1e-9:
			wall = self.x_bounds[1] if dx > 0 else self.x_bounds[0]
			t = (wall - x) / dx
			if t >= 0.0:
				best = min(best, t)
		for o in self.obstacles:
			if isinstance(o, Circle):
				t = _ray_circle_t(x, y, dx, dy, o, 0.0)
			else:
				t = _ray_segment_t(x, y, dx, dy, o, 0.0)
			if t is not None and t < best:
				best = t
		return best if best <= max_range else None

	def collides(self, x: float, y: float, radius: float = 0.0) -> bool:
		if not (self.x_bounds[0] + radius <= x <= self.x_bounds[1] - radius):
			return True
		if not (self.y_bounds[0] + radius <= y <= self.y_bounds[1] - radius):
			return True
		for o in self.obstacles:
			if isinstance(o, Circle):
				if math.hypot(x - o.x, y - o.y) <= o.radius + radius:
					return True
			elif _point_segment_distance(x, y, o) <= o.radius + radius:
				return True
		return False

	def blocked_cells(self, grid: Grid, margin: float = 0.0) -> Set[Cell]:
		"""Rasteriza obstáculos e paredes na grade (células cujo centro fica a
		menos de `margin` de um obstáculo ou fora dos limites)."""
		cs = grid.cell_size
		xs = grid.origin[0] + (np.arange(grid.width) + 0.5) * cs
		ys = grid.origin[1] + (np.arange(grid.height) + 0.5) * cs
		# indexação 'ij': blocked[row, col] -> ys[row], xs[col]
		YY, XX = np.meshgrid(ys, xs, indexing='ij')
		blocked = ((XX < self.x_bounds[0] + margin) | (XX > self.x_bounds[1] - margin)
				   | (YY < self.y_bounds[0] + margin) | (YY > self.y_bounds[1] - margin))
		for o in self.obstacles:
			if isinstance(o, Circle):
				d2 = (XX - o.x) ** 2 + (YY - o.y) ** 2
			else:
				ux = o.bx - o.ax
				uy = o.by - o.ay
				denom = ux * ux + uy * uy
				if denom == 0.0:
					d2 = (XX - o.ax) ** 2 + (YY - o.ay) ** 2
				else:
					t = np.clip(((XX - o.ax) * ux + (YY - o.ay) * uy) / denom, 0.0, 1.0)
					d2 = (XX - (o.ax + t * ux)) ** 2 + (YY - (o.ay + t * uy)) ** 2
			blocked |= d2 <= (o.radius + margin) ** 2
		return {(int(r), int(c)) for r, c in zip(*np.nonzero(blocked))}


def planning_margin(grid: Grid, car_radius: float) -> float:
	"""Margem de rasterização para o A*: raio do carro mais meia diagonal da célula.

	Assim qualquer ponto de uma célula livre, não só o centro, fica a mais
	de `car_radius` dos obstáculos.
	"""
	return car_radius + grid.cell_size * math.sqrt(0.5)


@dataclass
class Vehicle:
	x: float = 0.0
	y: float = 0.0
	heading: float = 0.0
	speed: float = 0.0
	max_speed: float = 100.0
	acceleration: float = 60.0
	braking: float = 120.0
	max_turn_rate: float = 2.5  # rad/s com direção máxima
	drag: float = 0.05

	def pose(self) -> Pose:
		return Pose(self.x, self.y, self.heading)

	def apply(self, command: ControlCommand, dt: float) -> None:
		rate = self.acceleration if command.throttle >= 0.0 else self.braking
		self.speed += command.throttle * rate * dt
		self.speed -= self.drag * self.speed * dt
		self.speed = float(np.clip(self.speed, 0.0, self.max_speed))
		self.heading = wrap_angle(self.heading + command.steering * self.max_turn_rate * dt)
		self.x += self.speed * math.cos(self.heading) * dt
		self.y += self.speed * math.sin(self.heading) * dt


@dataclass
class Episode:
	report: EpisodeReport
	trajectory: List[Tuple[float, float]] = field(default_factory=list)


def run_episode(strategy: NavigationStrategy, world: ObstacleWorld,
				config: SimulationConfig = SimulationConfig(),
				agent_id=0,
				individual: Optional[Individual] = None,
				on_tick: Optional[Callable[[int, Vehicle], None]] = None) -> Episode:
	"""Simula um agente até colidir, chegar ao objetivo ou esgotar os passos.

	Com `individual`, o estado do episódio dele é atualizado a cada passo
	(distância, checkpoints, morte), como faria uma simulação ao vivo.
	"""
	if individual is not None:
		# um novo episódio sempre parte do zero
		individual.state = EpisodeState()
	vehicle = Vehicle()
	traj = [(vehicle.x, vehicle.y)]
	seen_version = None
	goal = (config.goal_x, 0.0)
	distance = 0.0
	checkpoints = 0
	collisions = 0
	reached = False
	steps = 0

	for steps in range(1, config.max_steps + 1):
		if isinstance(strategy, AStarStrategy) and world.version != seen_version:
			# o mundo mudou: recalcula a grade de obstáculos
			margin = planning_margin(strategy.grid, config.car_radius)
			strategy.update_obstacles(world.blocked_cells(strategy.grid, margin=margin))
			seen_version = world.version

		state = AgentState(agent_id=agent_id, pose=vehicle.pose(), speed=vehicle.speed,
						   world_query=world, goal=goal, dt=config.dt)
		vehicle.apply(strategy.decide(state), config.dt)
		traj.append((vehicle.x, vehicle.y))

		distance = max(distance, vehicle.x)
		checkpoints = int(max(0.0, min(distance, config.goal_x)) // config.checkpoint_spacing)
		reached = vehicle.x >= config.goal_x
		if individual is not None:
			individual.record_progress(distance=distance, dt=config.dt, checkpoints=checkpoints,
									   reached_goal=reached)
		if on_tick is not None:
			on_tick(steps, vehicle)

		if world.collides(vehicle.x, vehicle.y, config.car_radius):
			collisions = 1
			if individual is not None:
				individual.kill(collision=True)
			break
		if reached:
			break

	if individual is not None:
		report = individual.to_report()
	else:
		report = EpisodeReport(distance=distance, survival_time=steps * config.dt,
							   collisions=collisions, checkpoints=checkpoints, reached_goal=reached)
	return Episode(report=report, trajectory=traj)


def make_evaluator(world: ObstacleWorld, topology: Topology, config: Config = Config(),
				   episodes: Optional[dict] = None) -> Callable[[Individual], EpisodeReport]:
	"""Avaliador para `GeneticAlgorithm.evaluate_population`: um episódio por indivíduo.

	Se `episodes` for um dicionário, as trajetórias ficam guardadas nele
	(chave = id do indivíduo) para exibição.
	"""
	sensors = SensorModel(config.sensors)

	def evaluate(individual: Individual) -> EpisodeReport:
		strategy = NeuralNetworkStrategy(topology, sensors, lambda _agent: individual.genome)
		episode = run_episode(strategy, world, config.simulation, agent_id=id(individual),
							  individual=individual)
		if episodes is not None:
			episodes[id(individual)] = episode
		return episode.report

	return evaluate


def run_generation(ga: GeneticAlgorithm, world: ObstacleWorld, config: Config = Config(), executor=None):
	"""Avalia a geração atual inteira no mundo e devolve o snapshot."""
	ga.evaluate_population(make_evaluator(world, ga.topology, config), executor=executor)
	return ga.snapshot()
