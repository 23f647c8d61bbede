"""pathfinding.py

Planejamento A* sobre uma grade de custos e o controlador que segue o
caminho resultante.

A grade guarda custos em um array achatado (índice = row * width + col):
1.0 para células livres, valores maiores para células com peso e `inf`
para células bloqueadas. A busca mantém g, predecessor e fechados em arrays
do mesmo tamanho, então o predecessor é apenas um índice.

Desempate do conjunto aberto: menor f, depois menor h (favorece células
mais próximas do objetivo), depois menor índice de célula.
"""
from collections import deque
from dataclasses import dataclass
import heapq
import logging
import math
import threading
from typing import Dict, Iterable, Iterator, Optional, Sequence, Set, Tuple

import numpy as np

from steering.config import FollowerConfig, GridConfig
from steering.control import ControlCommand, ControlLimits, DEFAULT_LIMITS, HALT, Pose, wrap_angle


logger = logging.getLogger(__name__)

Cell = Tuple[int, int]  # (row, col)

FREE = 1.0
BLOCKED = math.inf

SQRT2 = math.sqrt(2.0)

# vizinhança 4: cima, direita, baixo, esquerda (ordem fixa)
_NEIGHBORS_4 = ((-1, 0, 1.0), (0, 1, 1.0), (1, 0, 1.0), (0, -1, 1.0))
_NEIGHBORS_8 = _NEIGHBORS_4 + ((-1, 1, SQRT2), (1, 1, SQRT2), (1, -1, SQRT2), (-1, -1, SQRT2))


class Grid:
	def __init__(self, width: int, height: int, cell_size: float = 1.0,
				 origin: Tuple[float, float] = (0.0, 0.0)):
		if width < 1 or height < 1 or cell_size <= 0.0:
			raise ValueError(f"invalid grid {width}x{height} with cell_size {cell_size}")
		self.width = int(width)
		self.height = int(height)
		self.cell_size = float(cell_size)
		self.origin = (float(origin[0]), float(origin[1]))
		self.costs = np.full(self.width * self.height, FREE, dtype=float)
		# incrementado a cada alteração; os planejadores comparam para saber se o caminho ficou velho
		self.version = 0

	@classmethod
	def from_config(cls, config: GridConfig) -> 'Grid':
		config.validate()
		return cls(config.width, config.height, config.cell_size, config.origin)

	@classmethod
	def from_rows(cls, rows: Sequence[str], cell_size: float = 1.0,
				  origin: Tuple[float, float] = (0.0, 0.0)) -> 'Grid':
		"""Monta uma grade a partir de texto: '#' bloqueado, '.' livre, '2'..'9' peso."""
		grid = cls(len(rows[0]), len(rows), cell_size, origin)
		for r, line in enumerate(rows):
			if len(line) != grid.width:
				raise ValueError(f"row {r} has {len(line)} cells, expected {grid.width}")
			for c, ch in enumerate(line):
				if ch == '#':
					grid.costs[grid.index((r, c))] = BLOCKED
				elif ch.isdigit() and ch not in '01':
					grid.costs[grid.index((r, c))] = float(ch)
				elif ch != '.':
					raise ValueError(f"unknown cell {ch!r} at {(r, c)}")
		return grid

	# --- coordenadas ---------------------------------------------------

	def index(self, cell: Cell) -> int:
		return cell[0] * self.width + cell[1]

	def cell(self, index: int) -> Cell:
		return divmod(int(index), self.width)

	def in_bounds(self, cell: Cell) -> bool:
		return 0 <= cell[0] < self.height and 0 <= cell[1] < self.width

	def clamp(self, cell: Cell) -> Cell:
		return (min(max(cell[0], 0), self.height - 1), min(max(cell[1], 0), self.width - 1))

	def world_to_cell(self, x: float, y: float) -> Cell:
		col = int(math.floor((x - self.origin[0]) / self.cell_size))
		row = int(math.floor((y - self.origin[1]) / self.cell_size))
		return (row, col)

	def cell_to_world(self, cell: Cell) -> Tuple[float, float]:
		"""Centro da célula em coordenadas do mundo."""
		return (self.origin[0] + (cell[1] + 0.5) * self.cell_size,
				self.origin[1] + (cell[0] + 0.5) * self.cell_size)

	# --- custos --------------------------------------------------------

	def cost(self, cell: Cell) -> float:
		return float(self.costs[self.index(cell)])

	def is_walkable(self, cell: Cell) -> bool:
		return self.in_bounds(cell) and math.isfinite(self.costs[self.index(cell)])

	def set_cost(self, cell: Cell, cost: float) -> None:
		if not self.in_bounds(cell):
			raise IndexError(f"cell {cell} outside {self.height}x{self.width} grid")
		if not cost >= FREE:
			# custos abaixo de 1 tornariam a heurística inadmissível
			raise ValueError(f"cell cost must be >= {FREE}, got {cost}")
		i = self.index(cell)
		if self.costs[i] != cost:
			self.costs[i] = cost
			self.version += 1

	def block(self, cell: Cell) -> None:
		self.set_cost(cell, BLOCKED)

	def unblock(self, cell: Cell) -> None:
		self.set_cost(cell, FREE)

	def clear(self) -> None:
		if np.any(self.costs != FREE):
			self.costs[:] = FREE
			self.version += 1

	def blocked_cells(self) -> Set[Cell]:
		return {self.cell(i) for i in np.flatnonzero(np.isinf(self.costs))}

	def update_obstacles(self, cells: Iterable[Cell]) -> Set[Cell]:
		"""Substitui o conjunto de células bloqueadas; devolve as que mudaram.

		Células fora da grade são ignoradas. Células com peso que não estão
		em `cells` mantêm o peso.
		"""
		new = {tuple(c) for c in cells if self.in_bounds(tuple(c))}
		old = self.blocked_cells()
		changed = old ^ new
		if not changed:
			return changed
		for c in old - new:
			self.costs[self.index(c)] = FREE
		for c in new - old:
			self.costs[self.index(c)] = BLOCKED
		self.version += 1
		return changed

	def nearest_walkable(self, cell: Cell) -> Optional[Cell]:
		"""Célula transitável mais próxima de `cell` (busca em largura, vizinhança 4).

		Atravessa células bloqueadas; None se a grade inteira estiver bloqueada.
		"""
		start = self.clamp(cell)
		seen = {start}
		queue = deque([start])
		while queue:
			current = queue.popleft()
			if self.is_walkable(current):
				return current
			r, c = current
			for dr, dc, _ in _NEIGHBORS_4:
				nb = (r + dr, c + dc)
				if self.in_bounds(nb) and nb not in seen:
					seen.add(nb)
					queue.append(nb)
		return None

	def neighbors(self, cell: Cell, connectivity: int = 4) -> Iterator[Tuple[Cell, float]]:
		"""Vizinhos transitáveis e o multiplicador de passo (1 ou sqrt(2)).

		Na vizinhança 8 a diagonal não pode cortar um canto bloqueado.
		"""
		r, c = cell
		for dr, dc, mult in (_NEIGHBORS_8 if connectivity == 8 else _NEIGHBORS_4):
			nb = (r + dr, c + dc)
			if not self.is_walkable(nb):
				continue
			if dr and dc and not (self.is_walkable((r + dr, c)) and self.is_walkable((r, c + dc))):
				continue
			yield nb, mult

	def __repr__(self) -> str:
		return f"Grid({self.width}x{self.height}, cell_size={self.cell_size}, blocked={int(np.isinf(self.costs).sum())})"


# --- heurísticas -------------------------------------------------------

def manhattan(a: Cell, b: Cell) -> float:
	return float(abs(a[0] - b[0]) + abs(a[1] - b[1]))


def euclidean(a: Cell, b: Cell) -> float:
	return math.hypot(a[0] - b[0], a[1] - b[1])


def octile(a: Cell, b: Cell) -> float:
	dr = abs(a[0] - b[0])
	dc = abs(a[1] - b[1])
	return max(dr, dc) + (SQRT2 - 1.0) * min(dr, dc)


HEURISTICS = {'manhattan': manhattan, 'euclidean': euclidean, 'octile': octile}


@dataclass(frozen=True)
class PathResult:
	path: Tuple[Cell, ...] = ()
	cost: float = math.inf
	expanded: int = 0

	@property
	def reachable(self) -> bool:
		return bool(self.path)

	def __len__(self) -> int:
		return len(self.path)


def find_path(grid: Grid, start: Cell, goal: Cell, heuristic: str = 'manhattan',
			  connectivity: int = 4, max_expansions: Optional[int] = None) -> PathResult:
	"""A* de `start` até `goal`. Sem caminho devolve `PathResult()` (vazio).

	O custo de entrar em uma célula é o custo da célula vezes o
	multiplicador do passo; como todo custo é >= 1, as heurísticas (em
	unidades de célula) são admissíveis.
	"""
	h_fn = HEURISTICS[heuristic]
	if not (grid.is_walkable(start) and grid.is_walkable(goal)):
		logger.debug("No path: start %s or goal %s is blocked or outside the grid", start, goal)
		return PathResult()

	n = grid.width * grid.height
	g = np.full(n, math.inf)
	parent = np.full(n, -1, dtype=np.int64)
	closed = np.zeros(n, dtype=bool)

	s = grid.index(start)
	t = grid.index(goal)
	g[s] = 0.0
	h0 = h_fn(start, goal)
	open_set = [(h0, h0, s)]
	expanded = 0

	while open_set:
		_, _, i = heapq.heappop(open_set)
		if closed[i]:
			continue
		if i == t:
			return PathResult(path=_reconstruct(grid, parent, t), cost=float(g[t]), expanded=expanded)
		if max_expansions is not None and expanded >= max_expansions:
			logger.debug("No path: expansion cap %d reached searching %s -> %s", max_expansions, start, goal)
			return PathResult(expanded=expanded)
		closed[i] = True
		expanded += 1

		current = grid.cell(i)
		for nb, mult in grid.neighbors(current, connectivity):
			j = grid.index(nb)
			if closed[j]:
				continue
			tentative = g[i] + grid.costs[j] * mult
			if tentative < g[j]:
				g[j] = tentative
				parent[j] = i
				h = h_fn(nb, goal)
				heapq.heappush(open_set, (tentative + h, h, j))

	logger.debug("No path: open set exhausted searching %s -> %s (%d expanded)", start, goal, expanded)
	return PathResult(expanded=expanded)


def _reconstruct(grid: Grid, parent: np.ndarray, goal_index: int) -> Tuple[Cell, ...]:
	path = [grid.cell(goal_index)]
	i = int(parent[goal_index])
	while i != -1:
		path.append(grid.cell(i))
		i = int(parent[i])
	path.reverse()
	return tuple(path)


def path_cost(grid: Grid, path: Sequence[Cell]) -> float:
	"""Custo de um caminho já construído (mesma regra usada pela busca)."""
	total = 0.0
	for a, b in zip(path, path[1:]):
		mult = SQRT2 if (a[0] != b[0] and a[1] != b[1]) else 1.0
		total += grid.cost(b) * mult
	return total


class PathPlanner:
	"""Mantém o caminho de um agente e decide quando replanejar.

	Replaneja quando uma célula bloqueada cai sobre o caminho, quando a
	grade muda, quando o agente se afasta mais de `replan_tolerance`
	células do caminho, ou periodicamente (`replan_interval` segundos ou
	`replan_distance` unidades percorridas). Buscas do mesmo agente são
	serializadas por um lock e o caminho é trocado em uma única atribuição.
	"""

	def __init__(self, grid: Grid, config: GridConfig = GridConfig()):
		self.grid = grid
		self.config = config
		self.goal: Optional[Cell] = None
		self.current: Optional[Cell] = None
		self.replans = 0
		self._result = PathResult()
		self._grid_version: Optional[int] = None
		self._elapsed = 0.0
		self._moved = 0.0
		self._lock = threading.Lock()

	@property
	def result(self) -> PathResult:
		return self._result

	@property
	def path(self) -> Tuple[Cell, ...]:
		return self._result.path

	@property
	def reachable(self) -> bool:
		return self._result.reachable

	def plan(self, start: Cell, goal: Cell) -> PathResult:
		"""Planeja de `start` até `goal`.

		Se o agente está numa célula bloqueada (dentro da margem de um
		obstáculo, sem colidir), a busca parte da célula transitável mais
		próxima; o caminho começa nela e o seguidor leva o agente até lá.
		"""
		cfg = self.config
		with self._lock:
			version = self.grid.version
			origin = start
			if not self.grid.is_walkable(start):
				origin = self.grid.nearest_walkable(start)
				logger.debug("Start %s is blocked, planning from %s", start, origin)
			if origin is None:
				result = PathResult()
			else:
				result = find_path(self.grid, origin, goal, heuristic=cfg.heuristic,
								   connectivity=cfg.connectivity, max_expansions=cfg.max_expansions)
			self._result = result
			self._grid_version = version
			self.goal = goal
			self.current = start
			self._elapsed = 0.0
			self._moved = 0.0
			self.replans += 1
		if not result.reachable:
			logger.debug("Goal %s unreachable from %s; holding position", goal, start)
		return result

	def replan(self, current: Optional[Cell] = None) -> PathResult:
		if self.goal is None:
			raise RuntimeError("replan() called before plan()")
		start = current if current is not None else self.current
		return self.plan(start, self.goal)

	def deviation(self, cell: Cell) -> float:
		"""Distância (Chebyshev, em células) até a célula mais próxima do caminho."""
		if not self.path:
			return math.inf
		pts = np.asarray(self.path)
		return float(np.max(np.abs(pts - np.asarray(cell)), axis=1).min())

	def needs_replan(self, cell: Cell) -> bool:
		cfg = self.config
		if self.goal is None:
			return False
		if self.grid.version != self._grid_version:
			return True
		if cfg.replan_interval > 0.0 and self._elapsed >= cfg.replan_interval:
			return True
		if cfg.replan_distance > 0.0 and self._moved >= cfg.replan_distance:
			return True
		return bool(self.path) and self.deviation(cell) > cfg.replan_tolerance

	def notify_obstacles(self, cells: Iterable[Cell]) -> bool:
		"""Chamado quando o mundo bloqueia células; replaneja se o caminho foi atingido."""
		hit = set(self.path).intersection(tuple(c) for c in cells)
		if hit and self.goal is not None:
			logger.debug("Path blocked at %s, replanning from %s", sorted(hit), self.current)
			self.replan()
			return True
		return False

	def update(self, cell: Cell, dt: float = 0.0, moved: float = 0.0) -> PathResult:
		"""Avança o relógio de replanejamento e replaneja se preciso."""
		self.current = cell
		self._elapsed += dt
		self._moved += moved
		if self.needs_replan(cell):
			return self.replan(cell)
		return self._result


class PathFollower:
	"""Converte o próximo waypoint do caminho em um comando de controle."""

	def __init__(self, grid: Grid, config: FollowerConfig = FollowerConfig(),
				 limits: ControlLimits = DEFAULT_LIMITS):
		config.validate()
		self.grid = grid
		self.config = config
		self.limits = limits
		self.target = 0
		self._path: Tuple[Cell, ...] = ()

	def waypoint(self, index: int) -> Tuple[float, float]:
		return self.grid.cell_to_world(self._path[index])

	def follow(self, pose: Pose, path: Sequence[Cell], speed: Optional[float] = None) -> ControlCommand:
		"""Comando para seguir `path` a partir de `pose`.

		Sem `speed` o acelerador é aberto: `cruise_throttle` reduzido em curvas
		e perto do fim, nunca abaixo de `min_throttle`. Com `speed` o
		acelerador persegue uma velocidade alvo e fica negativo (freio)
		quando o carro está rápido demais para a próxima curva.
		"""
		cfg = self.config
		path = tuple(path)
		if path != self._path:
			self._path = path
			self.target = 0
		if not path:
			return HALT

		# avança pelos waypoints já alcançados
		while self.target < len(path) and pose.distance_to(*self.waypoint(self.target)) < cfg.waypoint_radius:
			self.target += 1
		if self.target >= len(path):
			return HALT

		wx, wy = self.waypoint(self.target)
		error = pose.bearing_to(wx, wy)
		steering = cfg.steering_gain * error

		# curvas: erro atual ou a dobra do caminho até dois waypoints adiante
		turn = abs(error)
		ahead = min(self.target + 2, len(path) - 1)
		if ahead > self.target:
			nx, ny = self.waypoint(ahead)
			px, py = self.waypoint(self.target - 1) if self.target > 0 else (pose.x, pose.y)
			bend = wrap_angle(math.atan2(ny - wy, nx - wx) - math.atan2(wy - py, wx - px))
			turn = max(turn, abs(bend))
		factor = max(0.0, math.cos(min(turn, math.pi / 2.0)))

		# e perto do último waypoint
		if cfg.slowdown_distance > 0.0:
			remaining = pose.distance_to(*self.waypoint(len(path) - 1))
			factor *= min(1.0, remaining / cfg.slowdown_distance)

		if speed is None:
			throttle = max(cfg.min_throttle, cfg.cruise_throttle * factor)
		else:
			target_speed = max(cfg.min_speed, cfg.cruise_speed * factor)
			throttle = cfg.speed_gain * (target_speed - abs(float(speed)))
		return ControlCommand(steering, throttle).clamped(self.limits)


def plan_summary(planners: Dict[object, PathPlanner]) -> Dict[object, Tuple[Cell, ...]]:
	"""Cópia dos caminhos atuais por agente (para exibição)."""
	return {agent: planner.path for agent, planner in planners.items()}
