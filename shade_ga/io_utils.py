"""
I/O utilities for the shading optimizer.

Handles checkpoint and cache persistence (YAML), evaluation and Pareto front
tables (CSV), and metadata sidecars.
"""

import csv
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union, Any

import yaml

from .data_models import Individual
from .fitness_cache import FitnessCache

logger = logging.getLogger(__name__)

CHECKPOINT_FILE = "optimization_checkpoint.yaml"
CACHE_FILE = "fitness_cache.yaml"
EVALUATIONS_FILE = "evaluations.csv"
FRONT_FILE = "pareto_front.csv"
METADATA_FILE = "run_metadata.yaml"


def save_checkpoint(state: Dict[str, Any], path: Union[str, Path], mode: str) -> Path:
    """
    Write an optimizer state snapshot.

    Args:
        state: Output of optimizer.get_state()
        path: Checkpoint file path
        mode: "ssga" or "nsga2" (checked on load)

    Returns:
        Path to the checkpoint
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    document = {
        "mode": mode,
        "saved_at": datetime.now().isoformat(timespec="seconds"),
        "state": state,
    }
    # Atomic replace
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, 'w') as f:
        yaml.safe_dump(document, f, default_flow_style=False, sort_keys=False)
    tmp_path.replace(path)

    return path


def load_checkpoint(path: Union[str, Path], mode: str) -> Optional[Dict[str, Any]]:
    """
    Read an optimizer state snapshot.

    A missing, unreadable or mismatched checkpoint is reported and treated as
    absent so the run starts from scratch.

    Args:
        path: Checkpoint file path
        mode: Expected optimizer mode

    Returns:
        State dict, or None
    """
    path = Path(path)
    if not path.exists():
        logger.warning("No checkpoint found at %s", path)
        return None

    try:
        with open(path, 'r') as f:
            document = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Could not load checkpoint %s: %s. Starting from scratch.", path, e)
        return None

    if not isinstance(document, dict) or not isinstance(document.get("state"), dict):
        logger.warning("Checkpoint %s is malformed. Starting from scratch.", path)
        return None
    if document.get("mode") != mode:
        logger.warning(
            "Checkpoint %s was written by a %s run, not %s. Starting from scratch.",
            path, document.get("mode"), mode
        )
        return None

    return document["state"]


def save_cache(cache: FitnessCache, path: Union[str, Path]) -> Path:
    """Write every cache entry as a YAML list."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        yaml.safe_dump(cache.to_records(), f, default_flow_style=False, sort_keys=False)
    return path


def load_cache(path: Union[str, Path]) -> FitnessCache:
    """
    Load a cache dump; a missing file gives an empty cache.

    Corrupt records are skipped with a warning.
    """
    path = Path(path)
    if not path.exists():
        return FitnessCache()

    with open(path, 'r') as f:
        records = yaml.safe_load(f)

    if not isinstance(records, list):
        logger.warning("Cache file %s does not contain a list of records, ignoring it", path)
        return FitnessCache()

    return FitnessCache.from_records(records)


def _format_number(value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    return value


def save_evaluations_csv(
    cache: FitnessCache,
    path: Union[str, Path],
    parameter_names: List[str]
) -> Path:
    """
    Write one row per cached evaluation.

    Columns:
        index, <parameters...>, fitness, metric_value, unit, failed, <metrics...>

    Args:
        cache: Fitness cache
        path: Output CSV path
        parameter_names: Parameter column order

    Returns:
        Path to saved CSV
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    entries = cache.entries()
    metric_names = sorted({name for entry in entries for name in (entry.raw_metrics or {})})

    with open(path, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(["index", *parameter_names, "fitness", "metric_value", "unit", "failed", *metric_names])
        for index, entry in enumerate(entries):
            metrics = entry.raw_metrics or {}
            writer.writerow([
                index,
                *[entry.params.get(name, "") for name in parameter_names],
                _format_number(entry.fitness),
                _format_number(entry.metric_value),
                entry.unit,
                entry.failed,
                *[_format_number(metrics[name]) if name in metrics else "" for name in metric_names],
            ])

    return path


def save_front_csv(
    front: List[Individual],
    path: Union[str, Path],
    parameter_names: List[str],
    objective_ids: List[str]
) -> Path:
    """
    Write a Pareto front (or any population) to CSV.

    Columns:
        rank, crowding_distance, <parameters...>, <objectives...>
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(["rank", "crowding_distance", *parameter_names, *objective_ids])
        for individual in front:
            metrics = individual.metrics or {}
            writer.writerow([
                individual.rank,
                _format_number(individual.crowding_distance),
                *[individual.params.get(name, "") for name in parameter_names],
                *[_format_number(metrics.get(obj_id, "")) for obj_id in objective_ids],
            ])

    return path


def save_metadata(
    metadata: dict,
    output_path: Union[str, Path],
    overwrite: bool = False
) -> Path:
    """
    Save metadata to YAML sidecar file.

    Args:
        metadata: Metadata dictionary
        output_path: Path for output YAML
        overwrite: If True, overwrite existing file

    Returns:
        Path to saved metadata file

    Raises:
        FileExistsError: If file exists and overwrite=False
    """
    output_path = Path(output_path)

    if output_path.exists() and not overwrite:
        raise FileExistsError(f"Metadata file already exists: {output_path}")

    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w') as f:
        yaml.safe_dump(metadata, f, default_flow_style=False, sort_keys=False)

    return output_path
