"""genetic_algorithm.py

Algoritmo genético geracional que evolui os pesos da rede neural dos
carros. O gerenciador não simula física: a simulação externa entrega, para
cada indivíduo, um relatório do episódio (distância, tempo vivo, colisões,
checkpoints) e o fitness é calculado a partir dele com `fitness_of`.

Ciclo de uma geração:
  1. `report_episode` para cada indivíduo (em qualquer ordem);
  2. `next_generation`: ordena por fitness, copia os K melhores (elitismo),
     completa a população com filhos de pares escolhidos por torneio,
     crossover e mutação gaussiana, e substitui a geração inteira.

O gerenciador não tem critério de parada próprio; quem o dirige decide
quantas gerações pedir.
"""
from dataclasses import dataclass, field
import logging
import math
from typing import Callable, List, Optional, Tuple

import numpy as np

# usar o Generator do numpy para RNG reproduzível
from numpy.random import default_rng

from steering.config import EvolutionConfig, FitnessWeights
from steering.neural_network import Genome, Topology


logger = logging.getLogger(__name__)

# fitness de um indivíduo que ainda não terminou um episódio
UNEVALUATED = float('-inf')


@dataclass(frozen=True)
class EpisodeReport:
	distance: float = 0.0
	survival_time: float = 0.0
	collisions: int = 0
	checkpoints: int = 0
	reached_goal: bool = False


def fitness_of(report: EpisodeReport, weights: FitnessWeights = FitnessWeights()) -> float:
	"""Calcula a aptidão (fitness) que queremos maximizar.

	fitness = distance * w_d + checkpoints * bonus + survival_time * w_s
		  - collisions * penalty (+ goal_bonus se chegou ao objetivo)

	Um carro que morre cedo mantém o que acumulou até a morte; a colisão
	só custa a penalidade configurada.
	"""
	fitness = (weights.distance * float(report.distance)
			   + weights.checkpoint_bonus * int(report.checkpoints)
			   + weights.survival * float(report.survival_time)
			   - weights.collision_penalty * int(report.collisions))
	if report.reached_goal:
		fitness += weights.goal_bonus
	return float(fitness)


@dataclass
class EpisodeState:
	"""Estado efêmero de um episódio; zerado a cada geração."""
	distance: float = 0.0
	survival_time: float = 0.0
	alive: bool = True
	collisions: int = 0
	checkpoints: int = 0
	reached_goal: bool = False


class Individual:
	def __init__(self, genome: Genome):
		self.genome = genome
		self.fitness = UNEVALUATED
		self.state = EpisodeState()
		self.report: Optional[EpisodeReport] = None

	@property
	def evaluated(self) -> bool:
		return self.report is not None

	def record_progress(self, distance: Optional[float] = None, dt: float = 0.0,
						checkpoints: Optional[int] = None, reached_goal: bool = False) -> None:
		"""Atualiza o estado do episódio em andamento (ignorado se já morreu)."""
		if not self.state.alive:
			return
		if distance is not None:
			self.state.distance = max(self.state.distance, float(distance))
		if checkpoints is not None:
			self.state.checkpoints = max(self.state.checkpoints, int(checkpoints))
		self.state.survival_time += dt
		if reached_goal:
			self.state.reached_goal = True
			self.state.alive = False

	def kill(self, collision: bool = True) -> None:
		if not self.state.alive:
			return
		self.state.alive = False
		if collision:
			self.state.collisions += 1

	def to_report(self) -> EpisodeReport:
		s = self.state
		return EpisodeReport(distance=s.distance, survival_time=s.survival_time,
							 collisions=s.collisions, checkpoints=s.checkpoints,
							 reached_goal=s.reached_goal)

	def __repr__(self) -> str:
		return f"Individual(fitness={self.fitness:.3f}, {self.genome!r})"


@dataclass(frozen=True)
class BestRecord:
	genome: Genome
	fitness: float
	generation: int


@dataclass(frozen=True)
class GenerationSnapshot:
	"""Visão somente leitura para exibição (GUI/log)."""
	generation: int
	population_size: int
	evaluated: int
	alive: int
	generation_best: Optional[float]
	mean_fitness: Optional[float]
	best_fitness: Optional[float]
	best_generation: Optional[int] = None
	fitness: Tuple[float, ...] = field(default=(), repr=False)


class GeneticAlgorithm:
	def __init__(self,
				 topology: Topology,
				 config: EvolutionConfig = EvolutionConfig(),
				 fitness_weights: FitnessWeights = FitnessWeights(),
				 init_scale: float = 1.0):
		# configuração inválida é fatal antes da primeira geração
		config.validate()
		fitness_weights.validate()
		self.topology = topology
		self.config = config
		self.fitness_weights = fitness_weights
		self.init_scale = float(init_scale)

		# gerador aleatório (reprodutível usando `seed`)
		self.rng = default_rng(config.seed)

		self.generation = 0
		self.best: Optional[BestRecord] = None
		self.population: List[Individual] = self._init_population()

	@property
	def population_size(self) -> int:
		return self.config.population_size

	def _init_population(self) -> List[Individual]:
		return [Individual(Genome.random(self.topology, self.rng, self.init_scale))
				for _ in range(self.population_size)]

	# --- avaliação -----------------------------------------------------

	def report_episode(self, index: int, report: EpisodeReport) -> float:
		"""Registra o episódio concluído do indivíduo `index` e devolve o fitness."""
		individual = self.population[index]
		individual.report = report
		individual.fitness = fitness_of(report, self.fitness_weights)
		individual.state.alive = False
		return individual.fitness

	def evaluate_population(self, evaluate: Callable[[Individual], EpisodeReport], executor=None) -> np.ndarray:
		"""Roda `evaluate` para cada indivíduo e registra os relatórios.

		Os episódios são independentes entre si; com um `executor`
		(concurrent.futures) eles rodam em paralelo. Os relatórios são
		registrados aqui, sequencialmente.
		"""
		if executor is None:
			reports = [evaluate(ind) for ind in self.population]
		else:
			reports = list(executor.map(evaluate, self.population))
		for i, report in enumerate(reports):
			self.report_episode(i, report)
		return self.fitness_array()

	def fitness_array(self) -> np.ndarray:
		return np.array([ind.fitness for ind in self.population], dtype=float)

	@property
	def is_generation_complete(self) -> bool:
		return all(ind.evaluated for ind in self.population)

	def ranking(self) -> List[int]:
		"""Índices ordenados por fitness decrescente; empates mantêm a ordem."""
		fitness = self.fitness_array()
		return sorted(range(len(fitness)), key=lambda i: -fitness[i])

	# --- operadores ----------------------------------------------------

	def _tournament_select(self, fitness: np.ndarray) -> int:
		# sorteia competidores distintos; vence o de maior fitness (o primeiro em caso de empate)
		contestants = self.rng.choice(len(fitness), size=self.config.tournament_size, replace=False)
		best = int(contestants[0])
		for c in contestants:
			if fitness[int(c)] > fitness[best]:
				best = int(c)
		return best

	def _crossover(self, parent_a: np.ndarray, parent_b: np.ndarray) -> np.ndarray:
		if self.config.crossover == 'blend':
			alpha = self.rng.random(parent_a.shape)
			return alpha * parent_a + (1.0 - alpha) * parent_b
		# uniforme: cara ou coroa por peso
		mask = self.rng.random(parent_a.shape) < 0.5
		return np.where(mask, parent_a, parent_b)

	def _mutate(self, weights: np.ndarray) -> np.ndarray:
		# perturbação gaussiana; uma máscara indica quais pesos serão mutados
		mask = self.rng.random(weights.shape) < self.config.mutation_rate
		if mask.any():
			perturb = self.rng.normal(loc=0.0, scale=self.config.mutation_std, size=weights.shape) * mask
			weights = weights + perturb
		return weights

	def _offspring(self, fitness: np.ndarray) -> Individual:
		a = self.population[self._tournament_select(fitness)].genome.weights
		b = self.population[self._tournament_select(fitness)].genome.weights
		child = self._mutate(self._crossover(a, b))
		return Individual(Genome(self.topology, child))

	# --- ciclo de gerações ---------------------------------------------

	def next_generation(self) -> GenerationSnapshot:
		"""Fecha a geração atual e a substitui pela próxima.

		Devolve o snapshot da geração que acabou de ser avaliada.
		"""
		if not self.is_generation_complete:
			missing = sum(1 for ind in self.population if not ind.evaluated)
			logger.warning("Generation %d closed with %d unevaluated individuals", self.generation, missing)

		fitness = self.fitness_array()
		order = self.ranking()

		# atualiza o melhor indivíduo encontrado (somente melhoria estrita)
		top = self.population[order[0]]
		if top.evaluated and (self.best is None or top.fitness > self.best.fitness):
			self.best = BestRecord(genome=top.genome, fitness=top.fitness, generation=self.generation)
			logger.info("New best fitness %.3f in generation %d", top.fitness, self.generation)

		finished = self.snapshot()

		# elitismo: os K melhores passam sem alteração, nas primeiras posições
		new_population = [Individual(self.population[i].genome) for i in order[:self.config.elitism]]
		while len(new_population) < self.population_size:
			new_population.append(self._offspring(fitness))

		self.population = new_population
		self.generation += 1
		logger.debug("Generation %d started (%d elites)", self.generation, self.config.elitism)
		return finished

	def snapshot(self) -> GenerationSnapshot:
		fitness = self.fitness_array()
		evaluated = [ind.fitness for ind in self.population if ind.evaluated]
		return GenerationSnapshot(
			generation=self.generation,
			population_size=len(self.population),
			evaluated=len(evaluated),
			alive=sum(1 for ind in self.population if ind.state.alive),
			generation_best=max(evaluated) if evaluated else None,
			mean_fitness=float(np.mean(evaluated)) if evaluated else None,
			best_fitness=self.best.fitness if self.best is not None else None,
			best_generation=self.best.generation if self.best is not None else None,
			fitness=tuple(float(f) for f in fitness),
		)

	def restart(self) -> None:
		"""Recomeça a evolução do zero (nova população, contador zerado)."""
		self.generation = 0
		self.best = None
		self.population = self._init_population()
		logger.info("Evolution restarted")

	def run(self, evaluate: Callable[[Individual], EpisodeReport], generations: int = 100,
			on_generation: Optional[Callable[[GenerationSnapshot, List[Individual]], None]] = None,
			executor=None) -> Optional[BestRecord]:
		for _ in range(int(generations)):
			self.evaluate_population(evaluate, executor=executor)
			if on_generation is not None:
				on_generation(self.snapshot(), list(self.population))
			finished = self.next_generation()
			best = finished.best_fitness
			logger.info("Generation %4d: generation best = %.3f, best so far = %s",
						finished.generation, finished.generation_best,
						f"{best:.3f}" if best is not None and math.isfinite(best) else "n/a")
		return self.best
