#!/usr/bin/env python3
# Copyright 2025 Litianyu141
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command line runner for the POD2G pipeline on a coordinate matrix file.

Usage:
    # 300 analyses, the first 50 used for training
    pod2g-solve data/bcsstk14.mtx

    # Custom split and POD size, surrogate initial guesses
    pod2g-solve data/bcsstk14.mtx --total 100 --training 20 --components 4 --surrogate-guess

    # Perturbed matrix and right hand side, shorter surrogate training
    pod2g-solve data/bcsstk14.mtx --noise 0.05 --rhs-randomness 0.1 --epochs-scale 0.1
"""

import argparse
import logging
import math
import sys
from dataclasses import replace
from typing import List, Optional

from .config import SurrogateConfig
from .driver import AISolver, generate_parameter_values
from .exceptions import Pod2GError
from .solver import ResponseOrchestrator
from .systems.io import FileLinearSystemProvider

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pod2g-solve',
        description="Solve a sequence of parameterized linear systems with the POD2G two-phase solver",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pod2g-solve bcsstk14.mtx                                Default run (300 analyses, 50 training)
  pod2g-solve bcsstk14.mtx --rhs load.txt                 Right hand side from file
  pod2g-solve bcsstk14.mtx --total 60 --training 20 -q    Short quiet run
        """
    )

    parser.add_argument('matrix', help='Symmetric coordinate matrix file (upper or lower triangle)')
    parser.add_argument('--rhs', default=None,
                        help='Right hand side file, one value per line (default: synthetic load)')

    run_group = parser.add_argument_group('Run Options')
    run_group.add_argument('--total', type=int, default=300,
                           help='Total number of analyses (default: 300)')
    run_group.add_argument('--training', type=int, default=50,
                           help='Number of analyses used for training (default: 50)')
    run_group.add_argument('--components', type=int, default=8,
                           help='Number of POD principal components (default: 8)')
    run_group.add_argument('--parameters', type=int, default=1,
                           help='Length of each parameter vector (default: 1)')
    run_group.add_argument('--mean', type=float, default=0.1,
                           help='Mean of the sampled parameters (default: 0.1)')
    run_group.add_argument('--stdev', type=float, default=0.1,
                           help='Standard deviation of the sampled parameters (default: 0.1)')
    run_group.add_argument('--seed', type=int, default=13,
                           help='Seed for parameter sampling and perturbations (default: 13)')

    system_group = parser.add_argument_group('System Options')
    system_group.add_argument('--noise', type=float, default=0.0,
                              help='Relative noise on the matrix scaling (default: 0)')
    system_group.add_argument('--rhs-randomness', type=float, default=0.0,
                              help='Relative noise on the right hand side (default: 0)')

    ai_group = parser.add_argument_group('AI Options')
    ai_group.add_argument('--surrogate-guess', action='store_true',
                          help='Start AI-enhanced solves from the surrogate prediction')
    ai_group.add_argument('--epochs-scale', type=float, default=1.0,
                          help='Scale factor for the surrogate training epochs (default: 1.0)')

    general_group = parser.add_argument_group('General Options')
    verbosity = general_group.add_mutually_exclusive_group()
    verbosity.add_argument('--quiet', '-q', action='store_true',
                           help='Only print the convergence summary')
    verbosity.add_argument('--verbose', '-v', action='store_true',
                           help='Log every solve')
    return parser


def _scaled_surrogate_config(scale: float, seed: Optional[int]) -> SurrogateConfig:
    config = SurrogateConfig(seed=seed)
    return replace(
        config,
        cae_num_epochs=max(1, math.ceil(scale * config.cae_num_epochs)),
        ffnn_num_epochs=max(1, math.ceil(scale * config.ffnn_num_epochs)),
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with argument parsing."""
    args = build_parser().parse_args(argv)

    if args.quiet:
        level = logging.WARNING
    elif args.verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format='%(asctime)s %(name)s %(levelname)s: %(message)s')

    try:
        if args.epochs_scale <= 0:
            raise argparse.ArgumentTypeError(f"--epochs-scale must be positive, got {args.epochs_scale}")
        provider = FileLinearSystemProvider.from_files(
            args.matrix, args.rhs,
            noise=args.noise, rhs_randomness=args.rhs_randomness, seed=args.seed)
        orchestrator = ResponseOrchestrator(
            provider,
            num_principal_components=args.components,
            use_surrogate_initial_guess=args.surrogate_guess,
            surrogate_config=_scaled_surrogate_config(args.epochs_scale, args.seed),
        )
        parameter_sets = generate_parameter_values(
            args.total, mean=args.mean, stdev=args.stdev, seed=args.seed,
            num_parameters=args.parameters)
        solver = AISolver(args.training, parameter_sets, orchestrator)

        logger.info("Running %d analyses (%d training) on a system of order %d",
                    len(solver), args.training, provider.order)
        for _ in solver:
            pass
    except (Pod2GError, OSError, argparse.ArgumentTypeError) as e:
        print(f"pod2g-solve: error: {e}", file=sys.stderr)
        return 1

    print(orchestrator.summary())
    return 0


if __name__ == "__main__":
    sys.exit(main())
