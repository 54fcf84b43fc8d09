"""
Simulation bridge - project-side collaborators of the shading optimizer.

Writes candidate designs into a project, runs simulation scripts, and
parses the result files each recipe produces.
"""

__version__ = "0.1.0"
__author__ = "Daylighting Optimization Team"

from .config_loader import SHADING_PARAMETERS, PRESET_PROFILES, build_parameter_space, load_config
from .design_state import ProjectDesignMutator, apply_parameters
from .script_runner import SubprocessScriptRunner, ScriptResult
from .result_metrics import RECIPE_METRICS, ProjectFileReader, read_recipe_metrics

__all__ = [
    'SHADING_PARAMETERS',
    'PRESET_PROFILES',
    'build_parameter_space',
    'load_config',
    'ProjectDesignMutator',
    'apply_parameters',
    'SubprocessScriptRunner',
    'ScriptResult',
    'RECIPE_METRICS',
    'ProjectFileReader',
    'read_recipe_metrics'
]
