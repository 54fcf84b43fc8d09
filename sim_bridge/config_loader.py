"""
Configuration Loading System

Loads YAML configuration files and holds the catalog of optimizable shading
parameters and the preset optimization profiles.
"""

import yaml
from typing import Dict, List, Any, Optional

from shade_ga.errors import ConfigurationError
from shade_ga.data_models import ParameterSpace, parameter_from_dict

# Walls are addressed by orientation letter
WALLS = ("n", "e", "s", "w")

MAX_OPTIMIZED_PARAMETERS = 3

SHADING_PARAMETERS = {
    "overhang": [
        {"name": "dist-above", "label": "Distance Above Top (m)", "type": "continuous", "min": 0.0, "max": 1.0, "step": 0.05},
        {"name": "tilt", "label": "Tilt Angle (deg)", "type": "continuous", "min": -90.0, "max": 90.0, "step": 5.0},
        {"name": "depth", "label": "Depth (m)", "type": "continuous", "min": 0.1, "max": 2.0, "step": 0.1},
        {"name": "thick", "label": "Thickness (m)", "type": "continuous", "min": 0.01, "max": 0.5, "step": 0.01},
        {"name": "extension", "label": "Extension From Window (m)", "type": "continuous", "min": 0.0, "max": 1.0, "step": 0.05},
    ],
    "lightshelf": [
        {"name": "placement", "label": "Placement", "type": "discrete", "options": ["ext", "int", "both"]},
        {"name": "dist-below", "label": "Distance Below Top (m)", "type": "continuous", "min": 0.0, "max": 3.0, "step": 0.05},
        {"name": "tilt", "label": "Tilt Angle (deg)", "type": "continuous", "min": -90.0, "max": 90.0, "step": 5.0},
        {"name": "depth", "label": "Depth (m)", "type": "continuous", "min": 0.0, "max": 2.0, "step": 0.1},
        {"name": "thick", "label": "Thickness (m)", "type": "continuous", "min": 0.005, "max": 0.5, "step": 0.005},
    ],
    "louver": [
        {"name": "placement", "label": "Placement", "type": "discrete", "options": ["ext", "int"]},
        {"name": "slat-orientation", "label": "Slat Orientation", "type": "discrete", "options": ["horizontal", "vertical"]},
        {"name": "slat-width", "label": "Slat Width (m)", "type": "continuous", "min": 0.01, "max": 1.0, "step": 0.01},
        {"name": "slat-sep", "label": "Slat Separation (m)", "type": "continuous", "min": 0.01, "max": 0.5, "step": 0.01},
        {"name": "slat-thick", "label": "Slat Thickness (m)", "type": "continuous", "min": 0.001, "max": 0.05, "step": 0.001},
        {"name": "slat-angle", "label": "Slat Angle (deg)", "type": "continuous", "min": -90.0, "max": 90.0, "step": 5.0},
        {"name": "dist-to-glass", "label": "Blind to Glass Distance (m)", "type": "continuous", "min": 0.0, "max": 1.0, "step": 0.01},
    ],
    "roller": [
        {"name": "top-opening", "label": "Top Opening (m)", "type": "continuous", "min": -1.0, "max": 1.0, "step": 0.05},
        {"name": "bottom-opening", "label": "Bottom Opening (m)", "type": "continuous", "min": -1.0, "max": 1.0, "step": 0.05},
        {"name": "left-opening", "label": "Left Opening (m)", "type": "continuous", "min": -1.0, "max": 1.0, "step": 0.05},
        {"name": "right-opening", "label": "Right Opening (m)", "type": "continuous", "min": -1.0, "max": 1.0, "step": 0.05},
        {"name": "dist-to-glass", "label": "Distance to Glass (m)", "type": "continuous", "min": 0.0, "max": 1.0, "step": 0.01},
        {"name": "solar-trans", "label": "Solar Transmittance", "type": "continuous", "min": 0.0, "max": 1.0, "step": 0.01},
        {"name": "solar-refl", "label": "Solar Reflectance", "type": "continuous", "min": 0.0, "max": 1.0, "step": 0.01},
        {"name": "vis-trans", "label": "Visible Transmittance", "type": "continuous", "min": 0.0, "max": 1.0, "step": 0.01},
        {"name": "vis-refl", "label": "Visible Reflectance", "type": "continuous", "min": 0.0, "max": 1.0, "step": 0.01},
        {"name": "ir-emis", "label": "IR Emissivity", "type": "continuous", "min": 0.0, "max": 1.0, "step": 0.01},
        {"name": "ir-trans", "label": "IR Transmittance", "type": "continuous", "min": 0.0, "max": 1.0, "step": 0.01},
        {"name": "thickness", "label": "Thickness (m)", "type": "continuous", "min": 0.0, "max": 0.05, "step": 0.001},
        {"name": "conductivity", "label": "Conductivity (W/m-K)", "type": "continuous", "min": 0.0, "max": 10.0, "step": 0.01},
    ],
}

PRESET_PROFILES = {
    "maximize-daylight": {
        "recipe": "sda-ase",
        "goal": "maximize_sDA",
        "constraint": "ASE < 10",
        "wall": "s",
        "shading_type": "overhang",
        "parameters": [
            {"name": "depth", "min": 0.1, "max": 1.5, "step": 0.1},
            {"name": "dist-above", "min": 0.0, "max": 0.5, "step": 0.05},
        ],
    },
    "minimize-glare": {
        "recipe": "dgp",
        "goal": "minimize_dgp",
        "constraint": "DGP < 0.40",
        "wall": "s",
        "shading_type": "louver",
        "parameters": [
            {"name": "slat-angle", "min": -45.0, "max": 45.0, "step": 5.0},
        ],
    },
    "balanced-performance": {
        "recipe": "sda-ase",
        "goal": "maximize_sDA",
        "constraint": "ASE < 15",
        "wall": "s",
        "shading_type": "lightshelf",
        "parameters": [
            {"name": "depth", "min": 0.2, "max": 1.2, "step": 0.1},
            {"name": "tilt", "min": 0.0, "max": 30.0, "step": 5.0},
        ],
    },
}


def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """Load configuration from YAML file"""
    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")
    return config


def get_catalog_parameter(shading_type: str, name: str) -> Dict[str, Any]:
    """
    Look up the default definition of a shading parameter.

    Args:
        shading_type: Key of SHADING_PARAMETERS (e.g. "louver")
        name: Parameter name (e.g. "slat-angle")

    Returns:
        Copy of the catalog entry

    Raises:
        ConfigurationError: If the shading type or parameter is unknown
    """
    if shading_type not in SHADING_PARAMETERS:
        raise ConfigurationError(
            f"Unknown shading type: {shading_type}. Valid types: {', '.join(SHADING_PARAMETERS)}"
        )
    for entry in SHADING_PARAMETERS[shading_type]:
        if entry["name"] == name:
            return dict(entry)
    valid = ", ".join(entry["name"] for entry in SHADING_PARAMETERS[shading_type])
    raise ConfigurationError(f"Unknown {shading_type} parameter: {name}. Valid parameters: {valid}")


def build_parameter_space(shading_type: str, overrides: List[Any]) -> ParameterSpace:
    """
    Build a parameter space from catalog defaults and user overrides.

    Each override is either a parameter name (use catalog bounds) or a dict
    with 'name' plus any of min/max/step/options to narrow the catalog entry.

    Args:
        shading_type: Key of SHADING_PARAMETERS
        overrides: Selected parameters

    Returns:
        ParameterSpace

    Raises:
        ConfigurationError: If nothing is selected, too many parameters are
            selected, or a name/override is invalid
    """
    if not overrides:
        raise ConfigurationError("Select at least one parameter to optimize")
    if len(overrides) > MAX_OPTIMIZED_PARAMETERS:
        raise ConfigurationError(
            f"At most {MAX_OPTIMIZED_PARAMETERS} parameters can be optimized at once, got {len(overrides)}"
        )

    definitions = []
    for override in overrides:
        if isinstance(override, str):
            override = {"name": override}
        if not isinstance(override, dict):
            raise ConfigurationError(f"Invalid parameter selection: {override}")

        name = override.get("name") or override.get("id")
        entry = get_catalog_parameter(shading_type, name)

        if entry["type"] == "continuous":
            for field in ("min", "max", "step"):
                if override.get(field) is not None:
                    entry[field] = float(override[field])
        elif override.get("options") is not None:
            unknown = [opt for opt in override["options"] if opt not in entry["options"]]
            if unknown:
                raise ConfigurationError(f"Invalid options for {name}: {unknown}")
            entry["options"] = list(override["options"])

        definitions.append(entry)

    return ParameterSpace([parameter_from_dict(item) for item in definitions])


def get_preset_profile(profile_id: str) -> Dict[str, Any]:
    """
    Get a deep copy of a preset optimization profile.

    Raises:
        ConfigurationError: If the profile is unknown
    """
    if profile_id not in PRESET_PROFILES:
        raise ConfigurationError(
            f"Unknown preset profile: {profile_id}. Valid profiles: {', '.join(PRESET_PROFILES)}"
        )
    profile = PRESET_PROFILES[profile_id]
    return {
        **profile,
        "parameters": [dict(p) for p in profile["parameters"]],
    }
