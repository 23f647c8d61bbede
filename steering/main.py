"""Runner da simulação: escolhe o algoritmo e roda as gerações.

Executar este arquivo pergunta qual algoritmo testar (rede neural + GA ou
A*), roda a simulação no mundo de demonstração e registra no log o melhor
fitness de cada geração. Com `--render` (e pygame instalado) as trajetórias
são animadas numa janela.
"""
import argparse
from concurrent.futures import ThreadPoolExecutor
import logging
import sys

try:
	import pygame
	PYGAME_AVAILABLE = True
except ImportError:
	PYGAME_AVAILABLE = False

from steering.config import ConfigurationError, load_config
from steering.genetic_algorithm import GeneticAlgorithm
from steering.navigation import StrategyKind, create_strategy
from steering.neural_network import Topology
from steering.world import ObstacleWorld, Segment, default_obstacles, make_evaluator, run_episode


logger = logging.getLogger(__name__)


def select_algorithm(input_fn=input) -> StrategyKind:
	while True:
		print("\n=== AI Car Simulation ===")
		print("Select algorithm to test:")
		print("1. Neural Network + Genetic Algorithm")
		print("2. A* Pathfinding Algorithm")
		choice = input_fn("Enter your choice (1 or 2): ").strip()
		if choice in ('1', '2'):
			return StrategyKind.parse(choice)
		print("Please enter 1 or 2")


class GameView:
	"""Janela pygame que anima trajetórias sobre o mapa de obstáculos."""

	def __init__(self, world: ObstacleWorld, goal_x: float, fps: int = 60, size=(1000, 400)):
		pygame.init()
		self.world = world
		self.goal_x = goal_x
		self.fps = fps
		self.screen_w, self.screen_h = size
		self.screen = pygame.display.set_mode(size)
		pygame.display.set_caption("Steering - Game View")
		self.clock = pygame.time.Clock()
		self.font = pygame.font.SysFont(None, 22)

	# helper mappers (world -> screen)
	def world_to_screen(self, px, py):
		(x_min, x_max), (y_min, y_max) = self.world.x_bounds, self.world.y_bounds
		sx = int((px - x_min) / (x_max - x_min) * self.screen_w)
		sy = int(self.screen_h - (py - y_min) / (y_max - y_min) * self.screen_h)
		return sx, sy

	def _scale(self, length):
		x_min, x_max = self.world.x_bounds
		return max(2, int(length / (x_max - x_min) * self.screen_w))

	def _draw_world(self):
		self.screen.fill((30, 30, 30))
		for o in self.world.obstacles:
			if isinstance(o, Segment):
				a = self.world_to_screen(o.ax, o.ay)
				b = self.world_to_screen(o.bx, o.by)
				pygame.draw.line(self.screen, (200, 80, 80), a, b, self._scale(o.radius) * 2)
				pygame.draw.circle(self.screen, (200, 80, 80), a, self._scale(o.radius))
				pygame.draw.circle(self.screen, (200, 80, 80), b, self._scale(o.radius))
			else:
				pygame.draw.circle(self.screen, (200, 80, 80), self.world_to_screen(o.x, o.y), self._scale(o.radius))
		gx, _ = self.world_to_screen(self.goal_x, 0.0)
		pygame.draw.line(self.screen, (200, 30, 30), (gx, 0), (gx, self.screen_h), 2)

	def _pump_events(self):
		for ev in pygame.event.get():
			if ev.type == pygame.QUIT or (ev.type == pygame.KEYDOWN and ev.key == pygame.K_ESCAPE):
				pygame.quit()
				raise SystemExit()

	def animate(self, trajectories, caption, path_points=None):
		colors = [(50, 200, 50), (50, 150, 240), (240, 200, 50), (200, 100, 240), (240, 120, 120)]
		max_len = max((len(t) for t in trajectories), default=0)
		for step in range(max_len):
			self._pump_events()
			self._draw_world()
			if path_points and len(path_points) > 1:
				pts = [self.world_to_screen(x, y) for x, y in path_points]
				pygame.draw.lines(self.screen, (120, 120, 220), False, pts, 2)
			for i, traj in enumerate(trajectories):
				px, py = traj[min(step, len(traj) - 1)]
				pygame.draw.circle(self.screen, colors[i % len(colors)], self.world_to_screen(px, py), 6)
			txt = self.font.render(f"{caption}  step {step}/{max_len}", True, (220, 220, 220))
			self.screen.blit(txt, (8, 8))
			pygame.display.flip()
			self.clock.tick(self.fps)

	def close(self):
		pygame.quit()


def run_neural(config, world, args, view=None):
	topology = Topology.from_config(config.sensors, config.network)
	ga = GeneticAlgorithm(topology, config.evolution, config.fitness, init_scale=config.network.init_scale)
	logger.info("Network layers %s (%d parameters), population %d",
				topology.layer_sizes, topology.parameter_count, ga.population_size)
	# trajetórias só são guardadas para desenhar, e só as da geração atual
	episodes = {} if view is not None else None
	evaluate = make_evaluator(world, topology, config, episodes)

	def on_generation(snapshot, population):
		if view is None:
			return
		ranked = sorted(population, key=lambda ind: ind.fitness, reverse=True)[:args.top]
		trajs = [episodes[id(ind)].trajectory for ind in ranked if id(ind) in episodes]
		view.animate(trajs, f"Gen {snapshot.generation}  best {snapshot.generation_best:.1f}")
		episodes.clear()

	executor = ThreadPoolExecutor(max_workers=args.workers) if args.workers > 1 else None
	try:
		best = ga.run(evaluate, generations=args.gens, on_generation=on_generation, executor=executor)
	finally:
		if executor is not None:
			executor.shutdown()
	if best is not None:
		logger.info("Best fitness %.3f (generation %d)", best.fitness, best.generation)
	return best


def run_astar(config, world, args, view=None):
	goal = (config.simulation.goal_x, 0.0)
	strategy = create_strategy(StrategyKind.ASTAR, config, goal=goal)
	reports = []
	for car in range(args.cars):
		episode = run_episode(strategy, world, config.simulation, agent_id=car)
		reports.append(episode.report)
		path = strategy.snapshot(car)
		logger.info("A* car %d: distance %.1f, checkpoints %d, collisions %d, goal %s, path %d cells",
					car, episode.report.distance, episode.report.checkpoints,
					episode.report.collisions, episode.report.reached_goal, len(path))
		if view is not None:
			points = [strategy.grid.cell_to_world(c) for c in path]
			view.animate([episode.trajectory], f"A* car {car}", path_points=points)
	return reports


def parse_args(argv=None):
	p = argparse.ArgumentParser(description="Neural network + GA and A* car steering simulation")
	p.add_argument("--config", help="arquivo INI de configuração")
	p.add_argument("--algorithm", help="1/nn = rede neural + GA, 2/astar = A* (pergunta se omitido)")
	p.add_argument("--pop", type=int, help="tamanho da população")
	p.add_argument("--gens", type=int, default=30, help="número de gerações")
	p.add_argument("--mut", type=float, help="taxa de mutação")
	p.add_argument("--elitism", type=int, help="quantos melhores passam intactos")
	p.add_argument("--goal", type=float, help="posição x do objetivo")
	p.add_argument("--obstacles", action="store_true", help="usar obstáculos de exemplo")
	p.add_argument("--seed", type=int, help="seed aleatória")
	p.add_argument("--cars", type=int, default=1, help="carros A* a simular")
	p.add_argument("--workers", type=int, default=1, help="threads para avaliar episódios")
	p.add_argument("--render", action="store_true", help="animar com pygame")
	p.add_argument("--top", type=int, default=3, help="quantos melhores carros desenhar por geração")
	p.add_argument("--fps", type=int, default=200, help="frames por segundo na animação")
	p.add_argument("--log-level", dest="log_level", default="INFO", help="nível do log")
	return p, p.parse_args(argv)


def main(argv=None) -> int:
	parser, args = parse_args(argv)
	logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO),
						format="%(asctime)s %(levelname)s %(name)s: %(message)s")

	overrides = {
		'evolution__population_size': args.pop,
		'evolution__mutation_rate': args.mut,
		'evolution__elitism': args.elitism,
		'evolution__seed': args.seed,
		'simulation__goal_x': args.goal,
	}
	try:
		config = load_config(args.config, **{k: v for k, v in overrides.items() if v is not None})
		kind = StrategyKind.parse(args.algorithm) if args.algorithm else select_algorithm()
	except ConfigurationError as exc:
		parser.error(str(exc))

	goal_x = config.simulation.goal_x
	world = ObstacleWorld(default_obstacles() if args.obstacles else [], x_bounds=(-50.0, goal_x + 100.0))

	view = None
	if args.render:
		if PYGAME_AVAILABLE:
			view = GameView(world, goal_x, fps=args.fps)
		else:
			logger.warning("pygame is not installed (pip install pygame); running headless")
	try:
		if kind is StrategyKind.NEURAL:
			run_neural(config, world, args, view)
		else:
			run_astar(config, world, args, view)
	finally:
		if view is not None:
			view.close()
	return 0


if __name__ == '__main__':
	sys.exit(main())
