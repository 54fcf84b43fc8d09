"""
Design state handling.

Applies parameter vectors to a copy of the base design and writes each
candidate's design file into the project, one file per evaluation run.
"""

import copy
import logging
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

from shade_ga.errors import ConfigurationError, EvaluationError
from .config_loader import SHADING_PARAMETERS, WALLS, load_config

logger = logging.getLogger(__name__)

DESIGN_DIR = "11_files/designs"


def apply_parameters(
    base_design: Dict[str, Any],
    params: Dict[str, Any],
    wall: str,
    shading_type: str
) -> Dict[str, Any]:
    """
    Return a new design with shading enabled on one wall and params applied.

    The base design is never modified.

    Args:
        base_design: Design dictionary (may be empty)
        params: Parameter name -> value
        wall: Wall orientation letter (n, e, s, w)
        shading_type: Key of SHADING_PARAMETERS

    Returns:
        Updated deep copy of the design

    Raises:
        EvaluationError: If a parameter does not belong to the shading type
    """
    known = {entry["name"] for entry in SHADING_PARAMETERS.get(shading_type, [])}
    unknown = sorted(set(params) - known)
    if unknown:
        raise EvaluationError(f"Parameters not valid for {shading_type}: {', '.join(unknown)}")

    design = copy.deepcopy(base_design) if base_design else {}
    walls = design.setdefault("walls", {})
    wall_state = walls.setdefault(wall, {})
    shading = wall_state.setdefault("shading", {})

    shading["enabled"] = True
    shading["type"] = shading_type
    settings = shading.setdefault(shading_type, {})
    settings.update(params)

    # Discrete placement decides which control group is active
    if "placement" in params:
        settings["exterior"] = params["placement"] in ("ext", "both")
        settings["interior"] = params["placement"] in ("int", "both")

    return design


class ProjectDesignMutator:
    """
    Writes per-evaluation design files under <project>/11_files/designs/.

    Each call produces an isolated file named after the run id, so concurrent
    evaluations never read each other's design.

    Args:
        project_dir: Project root directory
        base_design: Design every candidate starts from
        wall: Target wall orientation
        shading_type: Shading device being optimized
    """

    def __init__(self, project_dir: str, base_design: Optional[Dict[str, Any]], wall: str, shading_type: str):
        if wall not in WALLS:
            raise ConfigurationError(f"Unknown wall: {wall}. Valid walls: {', '.join(WALLS)}")
        if shading_type not in SHADING_PARAMETERS:
            raise ConfigurationError(f"Unknown shading type: {shading_type}")

        self.project_dir = Path(project_dir)
        self.base_design = copy.deepcopy(base_design) if base_design else {}
        self.wall = wall
        self.shading_type = shading_type

    @classmethod
    def from_file(cls, project_dir: str, design_path: Optional[str], wall: str, shading_type: str) -> "ProjectDesignMutator":
        base = load_config(design_path) if design_path else {}
        return cls(project_dir, base, wall, shading_type)

    def build_design(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return apply_parameters(self.base_design, params, self.wall, self.shading_type)

    async def apply(self, params: Dict[str, Any], run_id: str) -> Path:
        """
        Write the design for one evaluation.

        Args:
            params: Parameter vector
            run_id: Unique evaluation id

        Returns:
            Path of the written design file
        """
        design = self.build_design(params)
        design_dir = self.project_dir / DESIGN_DIR
        design_dir.mkdir(parents=True, exist_ok=True)

        path = design_dir / f"{run_id}.yaml"
        with open(path, 'w') as f:
            yaml.safe_dump(design, f, default_flow_style=False, sort_keys=False)

        logger.debug("Wrote design %s", path)
        return path
