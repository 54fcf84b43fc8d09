"""
CLI module for the shading optimizer.

Handles run configuration loading, preset expansion, validation, and mode
dispatching.
"""

from typing import Dict, Any
from pathlib import Path
import yaml

from .errors import ConfigurationError
from .constraints import parse_optional_constraint
from .data_models import Goal
from .orchestration import run_ssga_mode, run_nsga2_mode
from sim_bridge.config_loader import (
    SHADING_PARAMETERS, WALLS, MAX_OPTIMIZED_PARAMETERS, get_preset_profile
)
from sim_bridge.result_metrics import RECIPE_METRICS

VALID_MODES = ('ssga', 'nsga2')


class ConfigValidationError(ConfigurationError):
    """Raised when run configuration is invalid."""
    pass


def load_run_config(config_path: str) -> Dict[str, Any]:
    """
    Load run configuration from YAML file.

    Args:
        config_path: Path to run configuration YAML file

    Returns:
        Dictionary containing run configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigValidationError: If config is invalid
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML in configuration file: {e}")

    if config is None:
        raise ConfigValidationError("Configuration file is empty")
    if not isinstance(config, dict):
        raise ConfigValidationError("Configuration file must contain a mapping")

    return config


def apply_preset(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fill evaluation settings and parameters from 'preset', if given.

    Values already present in the config win over the preset.

    Args:
        config: Run configuration dictionary

    Returns:
        New configuration dictionary
    """
    if not config.get('preset'):
        return config

    try:
        profile = get_preset_profile(config['preset'])
    except ConfigurationError as e:
        raise ConfigValidationError(str(e))

    merged = dict(config)
    evaluation = dict(config.get('evaluation') or {})
    for key in ('recipe', 'goal', 'constraint', 'wall', 'shading_type'):
        evaluation.setdefault(key, profile[key])
    merged['evaluation'] = evaluation
    merged.setdefault('parameters', profile['parameters'])
    return merged


def validate_run_config(config: Dict[str, Any]) -> None:
    """
    Validate run configuration structure.

    Args:
        config: Run configuration dictionary (presets already applied)

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    # Check mode field
    if 'mode' not in config:
        raise ConfigValidationError("Missing required field: 'mode'")

    mode = config['mode']
    if mode not in VALID_MODES:
        raise ConfigValidationError(
            f"Invalid mode: '{mode}'. Must be 'ssga' or 'nsga2'"
        )

    # Check common required fields
    for field in ['parameters', 'evaluation', 'output']:
        if field not in config:
            raise ConfigValidationError(f"Missing required field: '{field}'")

    if not isinstance(config['output'], dict):
        raise ConfigValidationError("'output' must be a dictionary")
    if 'root' not in config['output']:
        raise ConfigValidationError("Missing required field: 'output.root'")

    _validate_ga_section(config.get('ga') or {}, mode)
    _validate_evaluation_section(config['evaluation'])

    parameters = config['parameters']
    if not isinstance(parameters, list) or not parameters:
        raise ConfigValidationError("'parameters' must be a non-empty list")
    if len(parameters) > MAX_OPTIMIZED_PARAMETERS:
        raise ConfigValidationError(
            f"At most {MAX_OPTIMIZED_PARAMETERS} parameters can be optimized at once, got {len(parameters)}"
        )

    # Mode-specific validation
    if mode == 'ssga':
        _validate_ssga_config(config)
    elif mode == 'nsga2':
        _validate_nsga2_config(config)


def _validate_ga_section(ga: Dict[str, Any], mode: str) -> None:
    if not isinstance(ga, dict):
        raise ConfigValidationError("'ga' must be a dictionary")

    population_size = ga.get('population_size', 10)
    if not isinstance(population_size, int) or population_size < 2:
        raise ConfigValidationError(
            f"'ga.population_size' must be an integer >= 2, got: {population_size}"
        )

    mutation_rate = ga.get('mutation_rate', 0.1)
    if not isinstance(mutation_rate, (int, float)) or not 0 <= mutation_rate <= 1:
        raise ConfigValidationError(f"'ga.mutation_rate' must be in [0, 1], got: {mutation_rate}")

    budget_field = 'max_evaluations' if mode == 'ssga' else 'max_generations'
    budget = ga.get(budget_field)
    if budget is not None and (not isinstance(budget, int) or budget < 0):
        raise ConfigValidationError(f"'ga.{budget_field}' must be a non-negative integer, got: {budget}")


def _validate_evaluation_section(evaluation: Dict[str, Any]) -> None:
    """
    Validate evaluation settings.

    Args:
        evaluation: 'evaluation' section

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    if not isinstance(evaluation, dict):
        raise ConfigValidationError("'evaluation' must be a dictionary")

    project_dir = evaluation.get('project_dir')
    if not project_dir:
        raise ConfigValidationError("Missing required field: 'evaluation.project_dir'")
    if not Path(project_dir).is_dir():
        raise ConfigValidationError(f"Project directory not found: {project_dir}")

    recipe = evaluation.get('recipe')
    if recipe not in RECIPE_METRICS:
        raise ConfigValidationError(
            f"Invalid recipe: '{recipe}'. Must be one of: {', '.join(RECIPE_METRICS)}"
        )

    shading_type = evaluation.get('shading_type')
    if shading_type not in SHADING_PARAMETERS:
        raise ConfigValidationError(
            f"Invalid shading type: '{shading_type}'. Must be one of: {', '.join(SHADING_PARAMETERS)}"
        )

    wall = evaluation.get('wall', 's')
    if wall not in WALLS:
        raise ConfigValidationError(f"Invalid wall: '{wall}'. Must be one of: {', '.join(WALLS)}")

    has_template = bool(evaluation.get('script_template'))
    has_template_file = bool(evaluation.get('script_template_file'))
    if has_template == has_template_file:
        raise ConfigValidationError(
            "Specify exactly one of 'evaluation.script_template' or 'evaluation.script_template_file'"
        )
    if has_template_file and not Path(evaluation['script_template_file']).is_file():
        raise ConfigValidationError(f"Script template not found: {evaluation['script_template_file']}")

    base_design = evaluation.get('base_design')
    if base_design and not Path(base_design).is_file():
        raise ConfigValidationError(f"Base design file not found: {base_design}")

    # Malformed constraints are fatal before any evaluation
    try:
        parse_optional_constraint(evaluation.get('constraint'))
    except ConfigurationError as e:
        raise ConfigValidationError(str(e))


def _validate_ssga_config(config: Dict[str, Any]) -> None:
    """
    Validate single-objective mode configuration.

    Args:
        config: Run configuration dictionary

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    evaluation = config['evaluation']
    recipe = evaluation['recipe']
    goal_id = evaluation.get('goal')

    valid_goals = [spec.goal_id for spec in RECIPE_METRICS[recipe]]
    if goal_id not in valid_goals:
        raise ConfigValidationError(
            f"Invalid goal for recipe {recipe}: '{goal_id}'. Must be one of: {', '.join(valid_goals)}"
        )

    goal_type = evaluation.get('goal_type')
    if goal_type is not None:
        valid_types = [g.value for g in Goal]
        if goal_type not in valid_types:
            raise ConfigValidationError(
                f"Invalid goal_type: '{goal_type}'. Must be one of: {', '.join(valid_types)}"
            )
        if goal_type == Goal.SET_TARGET.value and evaluation.get('target_value') is None:
            raise ConfigValidationError("goal_type 'set-target' requires 'evaluation.target_value'")

    ga = config.get('ga') or {}
    if ga.get('max_evaluations', 100) < ga.get('population_size', 10):
        raise ConfigValidationError("'ga.max_evaluations' must be >= 'ga.population_size'")


def _validate_nsga2_config(config: Dict[str, Any]) -> None:
    """
    Validate multi-objective mode configuration.

    Args:
        config: Run configuration dictionary

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    objectives = config.get('objectives')
    if not isinstance(objectives, list) or len(objectives) < 2:
        raise ConfigValidationError("NSGA-II mode requires at least 2 'objectives'")

    recipe = config['evaluation']['recipe']
    metric_names = []
    for spec in RECIPE_METRICS[recipe]:
        if spec.metric not in metric_names:
            metric_names.append(spec.metric)

    seen = set()
    for objective in objectives:
        if not isinstance(objective, dict) or 'id' not in objective:
            raise ConfigValidationError(f"Each objective needs an 'id': {objective}")
        if objective['id'] in seen:
            raise ConfigValidationError(f"Duplicate objective: {objective['id']}")
        if objective['id'] not in metric_names:
            raise ConfigValidationError(
                f"Objective '{objective['id']}' is not a metric of recipe {recipe}. "
                f"Must be one of: {', '.join(metric_names)}"
            )
        seen.add(objective['id'])

        goal = objective.get('goal', 'maximize')
        if goal not in (Goal.MAXIMIZE.value, Goal.MINIMIZE.value):
            raise ConfigValidationError(
                f"Objective '{objective['id']}' goal must be 'maximize' or 'minimize', got: {goal}"
            )


def run_from_config(config_path: str) -> None:
    """
    Load run configuration and execute appropriate mode.

    This is the main entry point called by opt_cli.py.

    Args:
        config_path: Path to run configuration YAML file

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigValidationError: If config is invalid
        OptimizationCancelled: If the run is interrupted
    """
    print(f"Loading configuration from: {config_path}")
    config = apply_preset(load_run_config(config_path))

    print("Validating configuration...")
    validate_run_config(config)

    mode = config['mode']
    print(f"Mode: {mode}\n")

    if mode == 'ssga':
        run_ssga_mode(config)
    else:
        run_nsga2_mode(config)

    print("\nRun completed successfully!")
