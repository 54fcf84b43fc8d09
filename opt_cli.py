#!/usr/bin/env python3
"""
Shading Optimizer CLI - Minimal entry point.

This is the command-line interface for the shading optimizer.
All configuration is specified in YAML files.

Usage:
    python3 opt_cli.py run_config.yaml
    python3 opt_cli.py --config run_config.yaml
    python3 opt_cli.py --verbose run_config.yaml
    python3 opt_cli.py --help

Examples:
    # Maximize one metric with the steady-state GA
    python3 opt_cli.py configs/ssga_run.yaml

    # Explore a trade-off between two metrics with NSGA-II
    python3 opt_cli.py configs/nsga2_run.yaml

Press Ctrl+C during a run to stop after the evaluations in progress; the
checkpoint is saved and 'output.resume: true' continues from it.
"""

import logging
import sys
from pathlib import Path

# Add project root to path if needed
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from shade_ga.cli import run_from_config
from shade_ga.errors import ConfigurationError, OptimizationCancelled


def main():
    """Main entry point for the optimizer CLI."""
    args = sys.argv[1:]

    # Handle help
    if not args or args[0] in ['-h', '--help', 'help']:
        print(__doc__)
        sys.exit(0 if args else 1)

    verbose = False
    if args[0] in ['-v', '--verbose']:
        verbose = True
        args = args[1:]

    if not args:
        print("Error: missing run configuration")
        print(__doc__)
        sys.exit(1)

    # Parse config path
    config_path = args[0]

    if config_path.startswith('--config='):
        config_path = config_path.split('=', 1)[1]
    elif config_path == '--config':
        if len(args) < 2:
            print("Error: --config requires an argument")
            print(__doc__)
            sys.exit(1)
        config_path = args[1]

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        run_from_config(config_path)
    except (KeyboardInterrupt, OptimizationCancelled):
        print("\n\nInterrupted by user")
        sys.exit(130)
    except (ConfigurationError, FileNotFoundError, FileExistsError) as e:
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
