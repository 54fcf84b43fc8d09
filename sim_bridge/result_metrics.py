"""
Result file reading and metric parsing.

Maps each simulation recipe to the result files it produces and parses them
into named scalar metrics:
- sda-ase: sDA300/50% and ASE1000/250h from binary annual .ill matrices
- illuminance: average / min / max illuminance and uniformity U0
- dgp: point-in-time daylight glare probability
- imageless-glare: annual DGP and glare autonomy averages, spatial glare autonomy
- spectral-lark: circadian stimulus and melanopic lux
- en17037: daylight provision and glare hours
"""

import asyncio
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Any

import numpy as np

from shade_ga.data_models import Goal
from shade_ga.errors import ConfigurationError, EvaluationError

RESULTS_DIR = "08_results"

HOURS_PER_YEAR = 8760
RGB_CHANNELS = 3
# Radiance RGB -> illuminance (lux)
LUMINOUS_EFFICACY = 179.0
RGB_WEIGHTS = (0.265, 0.670, 0.065)

SDA_ILLUMINANCE = 300.0
SDA_TIME_FRACTION = 0.5
ASE_ILLUMINANCE = 1000.0
ASE_HOURS = 250

OCCUPIED_START_HOUR = 8
OCCUPIED_END_HOUR = 18
WORKDAYS_PER_YEAR = 260

_DGP_PATTERN = re.compile(r"DGP:\s*([\d.]+)")


@dataclass(frozen=True)
class MetricSpec:
    """
    One optimizable goal of a recipe.

    Attributes:
        goal_id: Identifier such as "maximize_sDA"
        metric: Key in the parsed metrics map
        unit: Display unit
        file: Result file name or suffix
    """
    goal_id: str
    metric: str
    unit: str
    file: str

    @property
    def goal(self) -> Goal:
        return Goal.MINIMIZE if self.goal_id.startswith("minimize") else Goal.MAXIMIZE


RECIPE_METRICS = {
    "sda-ase": [
        MetricSpec("maximize_sDA", "sDA", "%", "_sDA_final.ill"),
        MetricSpec("minimize_ASE", "ASE", "%", "_ASE_direct_only.ill"),
    ],
    "illuminance": [
        MetricSpec("maximize_avg", "avg", " lux", "_illuminance.txt"),
        MetricSpec("minimize_avg", "avg", " lux", "_illuminance.txt"),
        MetricSpec("maximize_uniformity", "uniformity", " (U0)", "_illuminance.txt"),
    ],
    "dgp": [
        MetricSpec("minimize_dgp", "DGP", "", "_DGP.txt"),
    ],
    "imageless-glare": [
        MetricSpec("minimize_Annual_DGP_Avg", "DGP_avg", "", ".dgp"),
        MetricSpec("maximize_Glare_Autonomy_Avg", "GA_avg", "%", ".ga"),
        MetricSpec("maximize_sGA", "sGA", "%", "_sGA.txt"),
    ],
    "spectral-lark": [
        MetricSpec("maximize_CS_avg", "CS", "", "circadian_summary.json"),
        MetricSpec("maximize_EML_avg", "EML", " m-EDI lux", "circadian_summary.json"),
    ],
    "en17037": [
        MetricSpec("maximize_EN17037_sDA", "daylight_provision", "%", "EN17037_Daylight_Summary.json"),
        MetricSpec("minimize_EN17037_Glare_Hours", "glare_hours", "% time", "EN17037_Glare_Summary.json"),
    ],
}


def get_metric_spec(recipe: str, goal_id: str) -> MetricSpec:
    """
    Find the goal definition for a recipe.

    Raises:
        ConfigurationError: If the recipe or goal is unknown
    """
    if recipe not in RECIPE_METRICS:
        raise ConfigurationError(f"Unknown recipe: {recipe}. Valid recipes: {', '.join(RECIPE_METRICS)}")
    for spec in RECIPE_METRICS[recipe]:
        if spec.goal_id == goal_id:
            return spec
    valid = ", ".join(spec.goal_id for spec in RECIPE_METRICS[recipe])
    raise ConfigurationError(f"Unknown goal '{goal_id}' for recipe {recipe}. Valid goals: {valid}")


def result_file_path(recipe: str, spec: MetricSpec, project_name: str, run_id: str) -> str:
    """
    Relative path of the result file a run writes for one goal.

    Example:
        >>> result_file_path("sda-ase", get_metric_spec("sda-ase", "maximize_sDA"), "office", "opt_1")
        '08_results/office_opt_1_sDA_final.ill'
    """
    base_name = f"{project_name}_{run_id}"
    if recipe == "spectral-lark":
        return f"{RESULTS_DIR}/spectral_9ch/{base_name}/{spec.file}"
    if recipe == "en17037":
        return f"{RESULTS_DIR}/{base_name}/{spec.file}"
    return f"{RESULTS_DIR}/{base_name}{spec.file}"


class ProjectFileReader:
    """Reads result files relative to a project directory."""

    async def read_file(self, project_path: str, relative_path: str) -> bytes:
        """
        Read a project file.

        Raises:
            EvaluationError: If the file does not exist or cannot be read
        """
        path = Path(project_path) / relative_path
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise EvaluationError(f"Failed to read file: {relative_path}. {e}")


# ----------------------------------------------------------------------
# Parsers
# ----------------------------------------------------------------------

def parse_ill_matrix(content: bytes) -> np.ndarray:
    """
    Parse a binary annual .ill file into illuminance per point and hour.

    The file holds float32 RGB triplets ordered hour-major
    (hour, point, channel) for 8760 hours.

    Args:
        content: Raw file bytes

    Returns:
        Array of shape (num_points, 8760) in lux

    Raises:
        EvaluationError: If the size is not a whole number of annual RGB records
    """
    floats = np.frombuffer(content, dtype=np.float32)
    record = HOURS_PER_YEAR * RGB_CHANNELS
    if floats.size == 0 or floats.size % record != 0:
        raise EvaluationError(
            "Invalid .ill file format. File size is not compatible with 8760 hourly RGB values."
        )

    num_points = floats.size // record
    rgb = floats.reshape(HOURS_PER_YEAR, num_points, RGB_CHANNELS).astype(np.float64)
    illuminance = LUMINOUS_EFFICACY * (rgb @ np.array(RGB_WEIGHTS))
    return illuminance.T


def default_occupancy_mask() -> np.ndarray:
    """
    Weekday 8:00-18:00 occupancy over an 8760-hour year starting on a Sunday.
    """
    hours = np.arange(HOURS_PER_YEAR)
    hour_of_day = hours % 24
    weekday = (hours // 24) % 7
    return (
        (hour_of_day >= OCCUPIED_START_HOUR)
        & (hour_of_day < OCCUPIED_END_HOUR)
        & (weekday != 0)
        & (weekday != 6)
    )


def annual_metrics(
    total: Optional[np.ndarray] = None,
    direct: Optional[np.ndarray] = None,
    occupancy: Optional[np.ndarray] = None
) -> Dict[str, float]:
    """
    Compute sDA and ASE from annual illuminance matrices.

    sDA is the percentage of points reaching 300 lux for at least 50% of
    occupied hours; ASE is the percentage of points whose direct illuminance
    reaches 1000 lux for more than 250 occupied hours.

    Args:
        total: Total illuminance, shape (points, 8760)
        direct: Direct-only illuminance, shape (points, 8760)
        occupancy: Boolean occupied-hour mask (default weekday office hours)

    Returns:
        Dict with 'sDA' and/or 'ASE' in percent
    """
    if occupancy is None:
        occupancy = default_occupancy_mask()
        occupied_hours = (OCCUPIED_END_HOUR - OCCUPIED_START_HOUR) * WORKDAYS_PER_YEAR
    else:
        occupied_hours = int(np.count_nonzero(occupancy))

    metrics = {}
    if total is not None and total.shape[0] > 0:
        hours_meeting = np.count_nonzero((total >= SDA_ILLUMINANCE) & occupancy, axis=1)
        passing = hours_meeting / occupied_hours >= SDA_TIME_FRACTION
        metrics["sDA"] = float(np.mean(passing) * 100.0)
    if direct is not None and direct.shape[0] > 0:
        hours_exceeding = np.count_nonzero((direct >= ASE_ILLUMINANCE) & occupancy, axis=1)
        metrics["ASE"] = float(np.mean(hours_exceeding > ASE_HOURS) * 100.0)
    return metrics


def _numeric_rows(text: str) -> List[List[float]]:
    rows = []
    for line in text.splitlines():
        values = []
        for token in line.replace(",", " ").split():
            try:
                values.append(float(token))
            except ValueError:
                values = []
                break
        if values:
            rows.append(values)
    return rows


def parse_illuminance_stats(text: str) -> Dict[str, float]:
    """
    Summarize a point-in-time illuminance file.

    Lines with three or more numbers are read as Radiance RGB irradiance and
    converted to lux; single-number lines are taken as lux directly. Header
    lines are skipped.

    Returns:
        Dict with avg, min, max and uniformity (min/avg, 0 when undefined)
    """
    values = []
    for row in _numeric_rows(text):
        if len(row) >= RGB_CHANNELS:
            r, g, b = row[-RGB_CHANNELS:]
            values.append(LUMINOUS_EFFICACY * (RGB_WEIGHTS[0] * r + RGB_WEIGHTS[1] * g + RGB_WEIGHTS[2] * b))
        else:
            values.append(row[0])

    if not values:
        raise EvaluationError("Empty illuminance results file")

    data = np.asarray(values)
    avg = float(data.mean())
    low = float(data.min())
    uniformity = low / avg if low > 0 and avg > 0 else 0.0
    return {"avg": avg, "min": low, "max": float(data.max()), "uniformity": uniformity}


def parse_dgp_text(text: str) -> float:
    """Extract the value from a 'DGP: 0.35' style report."""
    match = _DGP_PATTERN.search(text)
    if match is None:
        raise EvaluationError("No DGP value found in results file")
    return float(match.group(1))


def parse_point_average(text: str) -> float:
    """Average of the first number on every numeric line (.dgp / .ga files)."""
    values = [row[0] for row in _numeric_rows(text)]
    if not values:
        raise EvaluationError("Empty results file for imageless glare")
    return float(np.mean(values))


def parse_single_number(text: str) -> float:
    try:
        return float(text.strip())
    except ValueError:
        raise EvaluationError(f"Expected a single number, got: {text.strip()[:50]!r}")


def _load_json(text: str) -> Dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise EvaluationError(f"Invalid JSON results file: {e}")
    if not isinstance(data, dict):
        raise EvaluationError("JSON results file must contain an object")
    return data


def parse_circadian_summary(text: str) -> Dict[str, float]:
    data = _load_json(text)
    try:
        average = data["space_average"]
        return {"CS": float(average["CS"]), "EML": float(average["EML"])}
    except (KeyError, TypeError, ValueError) as e:
        raise EvaluationError(f"Malformed circadian summary: missing {e}")


def parse_en17037_summary(text: str, spec: MetricSpec) -> Dict[str, float]:
    data = _load_json(text)
    field = "percent_area_passed_target" if spec.metric == "daylight_provision" else "percent_time_failed"
    try:
        return {spec.metric: float(data["metrics"][field])}
    except (KeyError, TypeError, ValueError) as e:
        raise EvaluationError(f"Malformed EN 17037 summary: missing {e}")


# ----------------------------------------------------------------------
# Recipe dispatch
# ----------------------------------------------------------------------

def _decode(content: bytes) -> str:
    return content.decode("utf-8", errors="replace")


async def read_recipe_metrics(
    reader,
    project_path: str,
    project_name: str,
    run_id: str,
    recipe: str,
    goal_id: str
) -> Dict[str, float]:
    """
    Read and parse all metrics a run produced for its goal.

    For sda-ase both the sDA and ASE matrices are read so either can be
    constrained; other recipes read only the goal's file.

    Args:
        reader: Object with async read_file(project_path, relative_path) -> bytes
        project_path: Project root
        project_name: Project file-name prefix
        run_id: Unique evaluation id
        recipe: Recipe key of RECIPE_METRICS
        goal_id: Goal identifier

    Returns:
        Metric name -> value

    Raises:
        EvaluationError: If a file is missing or cannot be parsed
        ConfigurationError: If recipe or goal is unknown
    """
    spec = get_metric_spec(recipe, goal_id)

    async def read(metric_spec: MetricSpec) -> bytes:
        return await reader.read_file(
            project_path, result_file_path(recipe, metric_spec, project_name, run_id)
        )

    if recipe == "sda-ase":
        sda_spec, ase_spec = RECIPE_METRICS["sda-ase"]
        total_bytes, direct_bytes = await asyncio.gather(read(sda_spec), read(ase_spec))
        return annual_metrics(total=parse_ill_matrix(total_bytes), direct=parse_ill_matrix(direct_bytes))

    text = _decode(await read(spec))

    if recipe == "illuminance":
        return parse_illuminance_stats(text)
    if recipe == "dgp":
        return {spec.metric: parse_dgp_text(text)}
    if recipe == "imageless-glare":
        if spec.metric == "sGA":
            return {spec.metric: parse_single_number(text)}
        return {spec.metric: parse_point_average(text)}
    if recipe == "spectral-lark":
        return parse_circadian_summary(text)
    if recipe == "en17037":
        return parse_en17037_summary(text, spec)

    raise ConfigurationError(f"Value parsing not implemented for recipe: {recipe}")
