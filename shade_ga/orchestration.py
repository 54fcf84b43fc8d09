"""
Orchestration module for the shading optimizer.

Implements the single-objective (SSGA) and multi-objective (NSGA-II) run
workflows: wiring the evaluation pipeline to the project, checkpointing,
and writing result files.
"""

import asyncio
import logging
import signal
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any

import numpy as np

from .analysis import suggest_range, collect_result_dataset, summarize_sensitivity, optimization_summary
from .data_models import Goal, Objective, Individual, ParameterSpace
from .engine_interface import EvaluationSettings, FitnessEvaluator
from .errors import CancellationToken, OptimizationCancelled
from .fitness_cache import FitnessCache
from .io_utils import (
    CHECKPOINT_FILE, CACHE_FILE, EVALUATIONS_FILE, FRONT_FILE, METADATA_FILE,
    save_checkpoint, load_checkpoint, save_cache, load_cache,
    save_evaluations_csv, save_front_csv, save_metadata
)
from .nsga2 import NSGA2Optimizer
from .ssga import SSGAOptimizer
from sim_bridge.config_loader import build_parameter_space
from sim_bridge.design_state import ProjectDesignMutator
from sim_bridge.result_metrics import RECIPE_METRICS, ProjectFileReader, get_metric_spec, read_recipe_metrics
from sim_bridge.script_runner import SubprocessScriptRunner

logger = logging.getLogger(__name__)


def _setup_rng(config: Dict) -> np.random.Generator:
    seed = config.get('random_seed')
    if seed is None:
        seed = int(np.random.randint(0, 2**31))
    print(f"Random seed: {seed}")
    config['random_seed'] = seed
    return np.random.default_rng(seed)


def _prepare_output(config: Dict) -> Path:
    """
    Create the output directory.

    An existing directory is only reused when overwriting or resuming.
    """
    output = config['output']
    output_root = Path(output['root'])
    reuse = output.get('overwrite', False) or output.get('resume', False)

    if output_root.exists() and not reuse:
        raise FileExistsError(
            f"Output directory already exists: {output_root}\n"
            f"Set 'output.overwrite: true' or 'output.resume: true' in config"
        )

    output_root.mkdir(parents=True, exist_ok=True)
    print(f"Output directory: {output_root}")
    return output_root


def _read_script_template(evaluation: Dict) -> str:
    if evaluation.get('script_template'):
        return evaluation['script_template']
    with open(evaluation['script_template_file'], 'r') as f:
        return f.read()


def _make_metrics_reader(evaluation: Dict, goal_ids: List[str]):
    """
    Build the run_id -> metrics callable for the evaluator.

    Each goal's result file is read once; the parsed maps are merged.
    """
    reader = ProjectFileReader()
    recipe = evaluation['recipe']
    project_dir = evaluation['project_dir']
    project_name = evaluation.get('project_name', 'scene')

    # sda-ase reads both matrices in one pass
    if recipe == 'sda-ase':
        goal_ids = goal_ids[:1]

    async def read_metrics(run_id: str) -> Dict[str, float]:
        parts = await asyncio.gather(*[
            read_recipe_metrics(reader, project_dir, project_name, run_id, recipe, goal_id)
            for goal_id in goal_ids
        ])
        metrics = {}
        for part in parts:
            metrics.update(part)
        return metrics

    return read_metrics


def _build_evaluator(
    config: Dict,
    settings: EvaluationSettings,
    goal_ids: List[str],
    cache: FitnessCache,
    token: CancellationToken
) -> FitnessEvaluator:
    evaluation = config['evaluation']
    mutator = ProjectDesignMutator.from_file(
        settings.project_dir, evaluation.get('base_design'), settings.wall, settings.shading_type
    )
    runner = SubprocessScriptRunner(
        shell=evaluation.get('shell', 'bash'),
        keep_scripts=evaluation.get('keep_scripts', False)
    )
    return FitnessEvaluator(
        settings, mutator, runner, _make_metrics_reader(evaluation, goal_ids),
        cache=cache, cancel_token=token
    )


def _load_session_cache(output_root: Path, resume: bool) -> FitnessCache:
    if not resume:
        return FitnessCache()
    cache = load_cache(output_root / CACHE_FILE)
    print(f"Loaded {len(cache)} cached evaluations")
    return cache


async def _run_with_signals(optimizer, fitness_fn, progress_callback):
    """Run the optimizer with Ctrl+C mapped to cooperative cancellation."""
    loop = asyncio.get_running_loop()
    installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, optimizer.stop)
        installed = True
    except (NotImplementedError, RuntimeError) as e:
        logger.debug("Signal handlers unavailable: %s", e)

    try:
        return await optimizer.run(fitness_fn, progress_callback)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _settings_from_config(config: Dict, metric: str, goal: Goal, unit: str,
                          target_value: Optional[float] = None,
                          objectives: Optional[List[Objective]] = None) -> EvaluationSettings:
    evaluation = config['evaluation']
    return EvaluationSettings(
        project_dir=evaluation['project_dir'],
        script_template=_read_script_template(evaluation),
        project_name=evaluation.get('project_name', 'scene'),
        recipe=evaluation['recipe'],
        goal_metric=metric,
        goal=goal,
        target_value=target_value,
        unit=unit,
        constraint=evaluation.get('constraint'),
        objectives=objectives or [],
        wall=evaluation.get('wall', 's'),
        shading_type=evaluation['shading_type'],
        quality=evaluation.get('quality', 'draft'),
        settle_delay=float(evaluation.get('settle_delay', 0.3)),
        timeout=evaluation.get('timeout', 600.0),
        max_concurrent=evaluation.get('max_concurrent'),
    )


def _write_results(
    output_root: Path,
    config: Dict,
    cache: FitnessCache,
    space: ParameterSpace,
    extra_metadata: Dict[str, Any]
) -> None:
    save_cache(cache, output_root / CACHE_FILE)
    evaluations_path = save_evaluations_csv(cache, output_root / EVALUATIONS_FILE, space.names)

    metadata = {
        'mode': config['mode'],
        'finished_at': datetime.now().isoformat(timespec='seconds'),
        'random_seed': config.get('random_seed'),
        'parameters': space.to_list(),
        'evaluation': {
            key: value for key, value in config['evaluation'].items()
            if key != 'script_template'
        },
        'ga': dict(config.get('ga') or {}),
        'cache': {'entries': len(cache), 'hits': cache.stats.hits, 'misses': cache.stats.misses},
    }
    metadata.update(extra_metadata)
    save_metadata(metadata, output_root / METADATA_FILE, overwrite=True)

    print(f"Evaluations: {evaluations_path}")


def _print_analysis(cache: FitnessCache, space: ParameterSpace, metric_id: str) -> None:
    print()
    print("=" * 70)
    print("ANALYSIS")
    print("=" * 70)

    for name in space.names:
        suggestion = suggest_range(cache, name)
        if suggestion is None:
            continue
        print(f"  {name}: suggested range [{suggestion.suggested_min:g}, {suggestion.suggested_max:g}]"
              f" (best at {suggestion.best_solution[name]:g})")

    sensitivity = summarize_sensitivity(collect_result_dataset(cache), metric_id)
    for name, trend in sensitivity.items():
        if trend['correlation'] is None:
            print(f"  {metric_id} vs {name}: no variation ({trend['samples']} samples)")
        else:
            print(f"  {metric_id} vs {name}: r={trend['correlation']:+.2f}, slope={trend['slope']:+.3g}"
                  f" ({trend['samples']} samples)")


def run_ssga_mode(config: Dict) -> None:
    """
    Optimize one metric with the steady-state GA.

    Args:
        config: Run configuration dict from YAML (validated)

    Algorithm:
        1. Build the parameter space from the shading catalog
        2. Resolve the goal metric, direction and unit for the recipe
        3. Setup RNG, output directory and (when resuming) cache/checkpoint
        4. Run the optimizer, checkpointing after every report
        5. Save cache, evaluation table and metadata
        6. Print best design, failures and range suggestions

    Raises:
        OptimizationCancelled: If interrupted (state is saved first)
    """
    print("=" * 70)
    print("SSGA MODE")
    print("=" * 70)

    evaluation = config['evaluation']
    ga = config.get('ga') or {}
    resume = config['output'].get('resume', False)

    space = build_parameter_space(evaluation['shading_type'], config['parameters'])
    print(f"Parameters: {', '.join(space.names)}")

    spec = get_metric_spec(evaluation['recipe'], evaluation['goal'])
    goal = Goal(evaluation['goal_type']) if evaluation.get('goal_type') else spec.goal
    objective = Objective(spec.metric, goal, evaluation.get('target_value'))
    print(f"Goal: {goal.value} {spec.metric} ({evaluation['recipe']})")
    if evaluation.get('constraint'):
        print(f"Constraint: {evaluation['constraint']}")

    rng = _setup_rng(config)
    output_root = _prepare_output(config)
    checkpoint_path = output_root / CHECKPOINT_FILE

    token = CancellationToken()
    cache = _load_session_cache(output_root, resume)
    settings = _settings_from_config(config, spec.metric, goal, spec.unit, evaluation.get('target_value'))
    evaluator = _build_evaluator(config, settings, [spec.goal_id], cache, token)

    optimizer = SSGAOptimizer(
        space,
        objective=objective,
        population_size=ga.get('population_size', 10),
        max_evaluations=ga.get('max_evaluations', 100),
        mutation_rate=ga.get('mutation_rate', 0.1),
        constraint=evaluation.get('constraint'),
        rng=rng,
        cancel_token=token,
    )

    if resume:
        state = load_checkpoint(checkpoint_path, 'ssga')
        if state is not None:
            optimizer.load_state(state)
            print(f"Resuming after {optimizer.evaluations_completed} evaluations")

    def on_progress(evaluations_completed: int, best: Optional[Individual]) -> None:
        save_checkpoint(optimizer.get_state(), checkpoint_path, 'ssga')
        best_text = f"{best.metric_value:.3f}{spec.unit}" if best is not None else "none"
        print(f"  Progress: {evaluations_completed}/{optimizer.max_evaluations} evaluations, best: {best_text}")

    print()
    try:
        best = asyncio.run(_run_with_signals(optimizer, evaluator.evaluate, on_progress))
    except OptimizationCancelled:
        save_checkpoint(optimizer.get_state(), checkpoint_path, 'ssga')
        save_cache(cache, output_root / CACHE_FILE)
        print(f"\nCancelled. Checkpoint saved to: {checkpoint_path}")
        raise

    _write_results(output_root, config, cache, space, {
        'best': best.to_dict() if best is not None else None,
        'evaluations_completed': optimizer.evaluations_completed,
        'summary': {'evaluations_count': optimization_summary(cache)['evaluations_count']},
    })

    # Print summary
    print()
    print("=" * 70)
    print("SUMMARY")
    print("=" * 70)
    print(f"Evaluations: {optimizer.evaluations_completed} ({len(cache)} unique designs)")
    print(f"Cache hits: {cache.stats.hits}")
    if evaluator.failure_count:
        print(f"{evaluator.failure_count} designs failed to evaluate")
    if best is None:
        print("No valid design found")
    else:
        print(f"Best {spec.metric}: {best.metric_value:.3f}{spec.unit}")
        for name in space.names:
            print(f"  {name} = {best.params[name]}")

    _print_analysis(cache, space, spec.metric)


def run_nsga2_mode(config: Dict) -> None:
    """
    Optimize several metrics at once and report the Pareto front.

    Args:
        config: Run configuration dict from YAML (validated)

    Algorithm:
        1. Build the parameter space and objectives
        2. Map each objective to the recipe goal that produces it
        3. Setup RNG, output directory and (when resuming) cache/checkpoint
        4. Run NSGA-II, checkpointing after every generation
        5. Save cache, evaluation table, Pareto front and metadata
        6. Print the front and failure count

    Raises:
        OptimizationCancelled: If interrupted (state is saved first)
    """
    print("=" * 70)
    print("NSGA-II MODE")
    print("=" * 70)

    evaluation = config['evaluation']
    ga = config.get('ga') or {}
    resume = config['output'].get('resume', False)

    space = build_parameter_space(evaluation['shading_type'], config['parameters'])
    print(f"Parameters: {', '.join(space.names)}")

    objectives = [Objective.from_dict(item) for item in config['objectives']]
    print(f"Objectives: {', '.join(f'{o.goal.value} {o.id}' for o in objectives)}")

    # Objective ids are validated against the recipe's metric names
    specs = RECIPE_METRICS[evaluation['recipe']]
    goal_ids = []
    for objective in objectives:
        spec = next(spec for spec in specs if spec.metric == objective.id)
        if spec.goal_id not in goal_ids:
            goal_ids.append(spec.goal_id)

    rng = _setup_rng(config)
    output_root = _prepare_output(config)
    checkpoint_path = output_root / CHECKPOINT_FILE

    token = CancellationToken()
    cache = _load_session_cache(output_root, resume)
    first = objectives[0]
    settings = _settings_from_config(config, first.id, first.goal, "", objectives=objectives)
    evaluator = _build_evaluator(config, settings, goal_ids, cache, token)

    optimizer = NSGA2Optimizer(
        space,
        objectives,
        population_size=ga.get('population_size', 20),
        max_generations=ga.get('max_generations', 20),
        mutation_rate=ga.get('mutation_rate', 0.1),
        rng=rng,
        cancel_token=token,
    )

    if resume:
        state = load_checkpoint(checkpoint_path, 'nsga2')
        if state is not None:
            optimizer.load_state(state)
            print(f"Resuming at generation {optimizer.current_generation}")

    def on_generation(generation: int, front: List[Individual]) -> None:
        save_checkpoint(optimizer.get_state(), checkpoint_path, 'nsga2')
        print(f"  Generation {generation}/{optimizer.max_generations}: {len(front)} designs on the front")

    print()
    try:
        front = asyncio.run(_run_with_signals(optimizer, evaluator.evaluate_metrics, on_generation))
    except OptimizationCancelled:
        save_checkpoint(optimizer.get_state(), checkpoint_path, 'nsga2')
        save_cache(cache, output_root / CACHE_FILE)
        print(f"\nCancelled. Checkpoint saved to: {checkpoint_path}")
        raise

    objective_ids = [o.id for o in objectives]
    front_path = save_front_csv(front, output_root / FRONT_FILE, space.names, objective_ids)
    _write_results(output_root, config, cache, space, {
        'objectives': [{'id': o.id, 'goal': o.goal.value} for o in objectives],
        'generations': optimizer.current_generation,
        'pareto_front': [ind.to_dict() for ind in front],
    })

    # Print summary
    print()
    print("=" * 70)
    print("SUMMARY")
    print("=" * 70)
    print(f"Generations: {optimizer.current_generation}")
    print(f"Unique designs evaluated: {len(cache)}")
    if evaluator.failure_count:
        print(f"{evaluator.failure_count} designs failed to evaluate")
    print(f"Pareto front: {len(front)} designs ({front_path})")
    for individual in front:
        values = ", ".join(f"{obj_id}={individual.metrics.get(obj_id)}" for obj_id in objective_ids)
        params = ", ".join(f"{name}={individual.params[name]}" for name in space.names)
        print(f"  {params} -> {values}")
