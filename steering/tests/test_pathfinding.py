from collections import deque
import math

import numpy as np
import pytest

from steering.config import FollowerConfig, GridConfig
from steering.control import ControlCommand, Pose
from steering.pathfinding import (
    BLOCKED,
    Grid,
    PathFollower,
    PathPlanner,
    find_path,
    path_cost,
)


# sem replanejamento periódico, para os testes controlarem quando replanejar
QUIET = GridConfig(width=5, height=5, cell_size=1.0, origin=(0.0, 0.0),
                   replan_interval=0.0, replan_distance=0.0)


def bfs_distance(grid, start, goal):
    """Distância em passos por busca em largura (referência para grades de custo unitário)."""
    seen = {start: 0}
    queue = deque([start])
    while queue:
        cell = queue.popleft()
        if cell == goal:
            return seen[cell]
        for nb, _ in grid.neighbors(cell):
            if nb not in seen:
                seen[nb] = seen[cell] + 1
                queue.append(nb)
    return None


def test_open_grid_path():
    """Grade 3x3 aberta: custo 4, desempate pela ordem dos vizinhos."""
    grid = Grid(3, 3)
    result = find_path(grid, (0, 0), (2, 2))
    assert result.cost == 4
    assert result.path == ((0, 0), (0, 1), (0, 2), (1, 2), (2, 2))
    assert result.expanded == 4
    assert path_cost(grid, result.path) == result.cost


def test_path_through_single_gap():
    grid = Grid.from_rows([
        ".....",
        ".....",
        "###.#",
        ".....",
        ".....",
    ])
    result = find_path(grid, (0, 0), (4, 0))
    assert result.reachable
    assert result.cost == 10
    assert (2, 3) in result.path
    assert [c for c in result.path if c[0] == 2] == [(2, 3)]
    assert result.path[0] == (0, 0) and result.path[-1] == (4, 0)
    # passos sempre entre vizinhos
    for a, b in zip(result.path, result.path[1:]):
        assert abs(a[0] - b[0]) + abs(a[1] - b[1]) == 1


def test_weighted_cells_are_avoided_when_cheaper():
    grid = Grid.from_rows([
        "...",
        ".9.",
        "...",
    ])
    result = find_path(grid, (1, 0), (1, 2))
    assert result.cost == 4
    assert (1, 1) not in result.path


def test_diagonal_moves_do_not_cut_corners():
    grid = Grid.from_rows([
        ".#",
        "..",
    ])
    result = find_path(grid, (0, 0), (1, 1), heuristic='octile', connectivity=8)
    assert result.path == ((0, 0), (1, 0), (1, 1))
    assert result.cost == pytest.approx(2.0)

    open_grid = Grid(2, 2)
    diagonal = find_path(open_grid, (0, 0), (1, 1), heuristic='octile', connectivity=8)
    assert diagonal.path == ((0, 0), (1, 1))
    assert diagonal.cost == pytest.approx(math.sqrt(2.0))


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_cost_matches_breadth_first_search(seed):
    """Em grade de custo unitário o custo do A* é o menor número de passos."""
    rng = np.random.default_rng(seed)
    grid = Grid(15, 12)
    for idx in np.flatnonzero(rng.random(grid.width * grid.height) < 0.25):
        grid.block(grid.cell(idx))
    start, goal = (0, 0), (11, 14)
    grid.unblock(start)
    grid.unblock(goal)

    expected = bfs_distance(grid, start, goal)
    result = find_path(grid, start, goal)
    if expected is None:
        assert not result.reachable
        assert result.path == ()
    else:
        assert result.cost == expected
        assert len(result.path) == expected + 1
        assert all(grid.is_walkable(c) for c in result.path)


def test_unreachable_goal_returns_empty_path():
    grid = Grid.from_rows([
        "..#..",
        "..#..",
        "..#..",
    ])
    result = find_path(grid, (0, 0), (0, 4))
    assert not result.reachable
    assert result.path == ()
    assert result.cost == math.inf
    assert len(result) == 0


def test_blocked_or_outside_endpoints():
    grid = Grid.from_rows(["#...", "...."])
    assert not find_path(grid, (0, 0), (1, 3)).reachable
    assert not find_path(grid, (1, 0), (0, 0)).reachable
    assert not find_path(grid, (1, 0), (5, 5)).reachable
    assert not find_path(grid, (-1, 0), (1, 3)).reachable


def test_start_equals_goal():
    result = find_path(Grid(4, 4), (2, 2), (2, 2))
    assert result.path == ((2, 2),)
    assert result.cost == 0.0
    assert result.expanded == 0


def test_expansion_cap_gives_up():
    result = find_path(Grid(10, 10), (0, 0), (9, 9), max_expansions=3)
    assert not result.reachable
    assert result.expanded == 3


def test_world_cell_conversion():
    grid = Grid(10, 5, cell_size=20.0, origin=(0.0, -50.0))
    assert grid.world_to_cell(25.0, -45.0) == (0, 1)
    assert grid.cell_to_world((0, 1)) == (30.0, -40.0)
    for cell in [(0, 0), (2, 7), (4, 9)]:
        assert grid.world_to_cell(*grid.cell_to_world(cell)) == cell
    assert not grid.in_bounds(grid.world_to_cell(-1.0, 0.0))
    assert grid.clamp((7, -3)) == (4, 0)


def test_update_obstacles_reports_changes():
    grid = Grid(5, 5)
    changed = grid.update_obstacles([(1, 1), (2, 2), (9, 9)])
    assert changed == {(1, 1), (2, 2)}
    assert grid.version == 1
    assert grid.cost((1, 1)) == BLOCKED

    assert grid.update_obstacles([(2, 2), (1, 1)]) == set()
    assert grid.version == 1

    assert grid.update_obstacles([(2, 2)]) == {(1, 1)}
    assert grid.is_walkable((1, 1))
    assert grid.blocked_cells() == {(2, 2)}


def test_set_cost_validation():
    grid = Grid(3, 3)
    with pytest.raises(ValueError):
        grid.set_cost((0, 0), 0.5)
    with pytest.raises(IndexError):
        grid.set_cost((3, 0), 2.0)
    grid.set_cost((0, 0), 1.0)
    assert grid.version == 0
    grid.set_cost((0, 0), 3.0)
    assert grid.version == 1
    with pytest.raises(ValueError):
        Grid.from_rows(["..x"])


def test_planning_is_idempotent():
    grid = Grid(5, 5)
    planner = PathPlanner(grid, QUIET)
    first = planner.plan((0, 0), (4, 4))
    second = planner.plan((0, 0), (4, 4))
    assert first == second
    assert planner.replans == 2


def test_obstacle_on_path_triggers_replan():
    grid = Grid(5, 5)
    planner = PathPlanner(grid, QUIET)
    planner.plan((0, 0), (4, 4))
    cell = planner.path[2]

    grid.block(cell)
    assert planner.notify_obstacles([cell])
    assert planner.reachable
    assert cell not in planner.path
    assert planner.replans == 2


def test_obstacle_off_path_is_ignored():
    grid = Grid(5, 5)
    planner = PathPlanner(grid, QUIET)
    planner.plan((0, 0), (0, 4))
    off_path = (4, 0)
    assert off_path not in planner.path
    assert not planner.notify_obstacles([off_path])
    assert planner.replans == 1


def test_deviation_and_grid_changes_request_replan():
    grid = Grid(5, 5)
    planner = PathPlanner(grid, QUIET)
    planner.plan((0, 0), (0, 4))
    assert planner.path == ((0, 0), (0, 1), (0, 2), (0, 3), (0, 4))

    assert not planner.needs_replan((0, 2))
    assert not planner.needs_replan((2, 2))
    assert planner.deviation((3, 2)) == 3
    assert planner.needs_replan((3, 2))

    grid.block((4, 4))
    assert planner.needs_replan((0, 2))


def test_periodic_replan_by_time_and_distance():
    grid = Grid(5, 5)
    config = GridConfig(width=5, height=5, cell_size=1.0, origin=(0.0, 0.0),
                        replan_interval=1.0, replan_distance=3.0)
    planner = PathPlanner(grid, config)
    planner.plan((0, 0), (0, 4))

    planner.update((0, 0), dt=0.5)
    assert planner.replans == 1
    planner.update((0, 0), dt=0.6)
    assert planner.replans == 2

    planner.update((0, 1), moved=2.0)
    assert planner.replans == 2
    planner.update((0, 1), moved=1.5)
    assert planner.replans == 3
    assert planner.path[0] == (0, 1)


def test_unreachable_goal_recovers_after_unblock():
    grid = Grid.from_rows(["..#.."])
    planner = PathPlanner(grid, QUIET)
    planner.plan((0, 0), (0, 4))
    assert not planner.reachable

    grid.unblock((0, 2))
    planner.update((0, 0))
    assert planner.reachable
    assert planner.path[-1] == (0, 4)


def test_replan_before_plan_raises():
    planner = PathPlanner(Grid(3, 3), QUIET)
    with pytest.raises(RuntimeError):
        planner.replan((0, 0))


# --- seguidor de caminho -----------------------------------------------

@pytest.fixture
def corridor():
    """Corredor 1x10 com células de 10 unidades; centros em (10c + 5, 5)."""
    return Grid(10, 1, cell_size=10.0)


def test_follower_drives_straight_along_path(corridor):
    follower = PathFollower(corridor, FollowerConfig(waypoint_radius=3.0, slowdown_distance=0.0))
    path = tuple((0, c) for c in range(10))
    command = follower.follow(Pose(5.0, 5.0, 0.0), path)
    assert command == ControlCommand(0.0, 1.0)
    # o primeiro waypoint já foi alcançado
    assert follower.target == 1


def test_follower_turns_toward_waypoint_and_slows(corridor):
    follower = PathFollower(corridor, FollowerConfig(waypoint_radius=3.0, slowdown_distance=0.0))
    path = tuple((0, c) for c in range(10))
    command = follower.follow(Pose(5.0, 5.0, math.pi / 2.0), path)
    # waypoint à direita: vira no sentido horário, saturado
    assert command.steering == -1.0
    assert command.throttle == pytest.approx(0.2)


def test_follower_slows_near_last_waypoint(corridor):
    follower = PathFollower(corridor, FollowerConfig(waypoint_radius=3.0, slowdown_distance=80.0))
    command = follower.follow(Pose(75.0, 5.0, 0.0), ((0, 7), (0, 8), (0, 9)))
    assert command.steering == pytest.approx(0.0)
    assert command.throttle == pytest.approx(0.25)


def test_follower_halts_without_path_or_at_end(corridor):
    follower = PathFollower(corridor, FollowerConfig(waypoint_radius=3.0))
    assert follower.follow(Pose(5.0, 5.0, 0.0), ()) == ControlCommand(0.0, 0.0)
    assert follower.follow(Pose(95.0, 5.0, 0.0), ((0, 9),)) == ControlCommand(0.0, 0.0)


def test_follower_restarts_when_path_changes(corridor):
    follower = PathFollower(corridor, FollowerConfig(waypoint_radius=3.0, slowdown_distance=0.0))
    follower.follow(Pose(5.0, 5.0, 0.0), ((0, 0), (0, 1), (0, 2)))
    assert follower.target == 1
    follower.follow(Pose(5.0, 5.0, 0.0), ((0, 3), (0, 4)))
    assert follower.target == 0


def test_nearest_walkable_searches_through_blocked_cells():
    grid = Grid.from_rows([
        "###",
        "#..",
        "...",
    ])
    assert grid.nearest_walkable((0, 0)) == (1, 1)
    assert grid.nearest_walkable((2, 2)) == (2, 2)
    assert Grid.from_rows(["##"]).nearest_walkable((0, 0)) is None


def test_planner_leaves_blocked_start_cell():
    """Agente dentro da margem de um obstáculo: parte da célula livre mais próxima."""
    grid = Grid.from_rows([
        "#..",
        "...",
    ])
    planner = PathPlanner(grid, QUIET)
    result = planner.plan((0, 0), (1, 2))
    assert planner.reachable
    assert result.path[0] == (0, 1)
    assert result.path[-1] == (1, 2)
    assert result.cost == 2

    # periodicamente replaneja a partir da mesma célula bloqueada sem travar
    assert planner.replan((0, 0)).path[0] == (0, 1)


@pytest.fixture
def field():
    """Grade 10x10 com células de 10 unidades."""
    return Grid(10, 10, cell_size=10.0)


def test_follower_brakes_above_cruise_speed(field):
    follower = PathFollower(field, FollowerConfig(waypoint_radius=3.0, slowdown_distance=0.0))
    path = tuple((0, c) for c in range(10))
    assert follower.follow(Pose(5.0, 5.0, 0.0), path, speed=100.0).throttle == -1.0
    assert follower.follow(Pose(5.0, 5.0, 0.0), path, speed=0.0).throttle == 1.0
    assert follower.follow(Pose(5.0, 5.0, 0.0), path, speed=59.0).throttle == pytest.approx(0.1)


def test_follower_slows_down_before_sharp_turn(field):
    config = FollowerConfig(waypoint_radius=3.0, slowdown_distance=0.0, cruise_speed=60.0, min_speed=15.0)
    path = ((0, 0), (0, 1), (0, 2), (1, 2), (2, 2), (3, 2))

    # curva de 45 graus dois waypoints adiante: já freia
    approaching = PathFollower(field, config).follow(Pose(5.0, 5.0, 0.0), path, speed=60.0)
    assert approaching.throttle == -1.0

    # na dobra de 90 graus o alvo é a velocidade mínima
    at_corner = PathFollower(field, config).follow(Pose(15.0, 5.0, 0.0), path[1:], speed=15.0)
    assert at_corner.throttle == pytest.approx(0.0, abs=1e-9)
    assert at_corner.steering == pytest.approx(0.0)
