from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List

import yaml
from rich.console import Console

from glvem.config import load_config
from glvem.inference.em import EMFitter
from glvem.io.tables import read_counts, write_counts
from glvem.report.summary import save_result
from glvem.simulate import random_parameters, simulate_equilibria

console = Console()


def _timestamp() -> str:
    return datetime.utcnow().strftime("%Y%m%dT%H%M%SZ")


def setup_logging(run_dir: Path) -> Path:
    log_path = run_dir / "logs.txt"
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.FileHandler(log_path, mode="w"),
            logging.StreamHandler(),
        ],
        force=True,
    )
    return log_path


def cmd_fit(args: argparse.Namespace) -> None:
    config = load_config(
        Path("default_config.yaml"),
        Path(args.config) if args.config else None,
        {
            "counts": args.counts,
            "results_root": args.out,
            "em": {
                "jobs": args.jobs,
                "deviation": args.deviation,
                "max_iter": args.max_iter,
                "warm_iter": args.warm_iter,
                "scaling": args.scaling,
                "refresh_iter": args.refresh_iter,
            },
            "oracle": {"alpha": args.alpha, "lambda_choice": args.lambda_choice, "seed": args.seed},
        },
    )
    if config.counts is None:
        raise SystemExit("No count table given: pass --counts or set counts in the config")
    run_dir = Path(config.results_root) / f"run_{_timestamp()}"
    run_dir.mkdir(parents=True, exist_ok=True)
    setup_logging(run_dir)

    console.log(f"Loading counts from {config.counts}")
    counts = read_counts(Path(config.counts))
    console.log(f"{counts.shape[0]} taxa x {counts.shape[1]} samples")

    result = EMFitter(config).fit(counts)
    payload = save_result(result, run_dir, metadata={"command": " ".join(sys.argv)})
    config_dict = config.model_dump()
    for key, value in config_dict.items():
        if isinstance(value, Path):
            config_dict[key] = str(value)
    (run_dir / "config_used.yaml").write_text(yaml.safe_dump(config_dict))

    if result.converged:
        console.log(f"Converged after {result.n_iter} iterations")
    else:
        console.log(f"[yellow]Stopped at max_iter={config.em.max_iter} without convergence[/yellow]")
    console.log(f"Excluded samples: {len(payload['excluded_samples'])}")
    console.log(f"Results written to {run_dir}")


def cmd_simulate(args: argparse.Namespace) -> None:
    growth, interactions = random_parameters(args.taxa, args.strength, args.density, seed=args.seed)
    community = simulate_equilibria(
        growth,
        interactions,
        args.samples,
        presence=args.presence,
        noise=args.noise,
        depth=args.depth,
        seed=args.seed,
    )
    out_path = Path(args.out)
    write_counts(community.to_frame(), out_path)
    truth = {
        "growth": growth.tolist(),
        "interactions": interactions.tolist(),
        "biomass": community.biomass.tolist(),
    }
    out_path.with_suffix(".truth.yaml").write_text(yaml.safe_dump(truth))
    console.log(f"Wrote {args.taxa} taxa x {args.samples} samples to {out_path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="glvem")
    sub = parser.add_subparsers(dest="command", required=True)

    fit = sub.add_parser("fit", help="Estimate gLV parameters and biomass")
    fit.add_argument("--counts")
    fit.add_argument("--out", default=None)
    fit.add_argument("--config")
    fit.add_argument("--jobs", type=int)
    fit.add_argument("--deviation", type=float)
    fit.add_argument("--max-iter", type=int)
    fit.add_argument("--warm-iter", type=int)
    fit.add_argument("--refresh-iter", type=int)
    fit.add_argument("--scaling", type=float)
    fit.add_argument("--alpha", type=float)
    fit.add_argument("--lambda-choice", type=float)
    fit.add_argument("--seed", type=int, help="Seed for the cross-validation folds")
    fit.set_defaults(func=cmd_fit)

    simulate = sub.add_parser("simulate", help="Simulate equilibrium communities")
    simulate.add_argument("--out", required=True)
    simulate.add_argument("--taxa", type=int, default=5)
    simulate.add_argument("--samples", type=int, default=30)
    simulate.add_argument("--presence", type=float, default=0.7)
    simulate.add_argument("--strength", type=float, default=0.1)
    simulate.add_argument("--density", type=float, default=0.5)
    simulate.add_argument("--noise", type=float, default=0.0)
    simulate.add_argument("--depth", type=int)
    simulate.add_argument("--seed", type=int, default=42)
    simulate.set_defaults(func=cmd_simulate)

    return parser


def main(argv: List[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
