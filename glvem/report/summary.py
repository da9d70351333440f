from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Sequence

import numpy as np
import pandas as pd

from glvem.inference.em import EMResult, result_to_biomass, result_to_params


def format_params(growth: np.ndarray, interactions: np.ndarray, taxa: Sequence[str]) -> pd.DataFrame:
    """Long table of parameters; ``interactions[i, j]`` is the effect of source j on target i."""
    taxa = list(taxa)
    p = len(taxa)
    growth_rows = pd.DataFrame(
        {
            "parameter_type": "growth_rate",
            "source_taxon": [None] * p,
            "target_taxon": taxa,
            "value": growth,
        }
    )
    interaction_rows = pd.DataFrame(
        {
            "parameter_type": "interaction",
            "source_taxon": np.repeat(taxa, p),
            "target_taxon": np.tile(taxa, p),
            "value": interactions.T.ravel(),
        }
    )
    params = pd.concat([growth_rows, interaction_rows], ignore_index=True)
    params["significance"] = np.nan
    return params


def build_exec_summary(run_dir: Path, result: EMResult, payload: Dict[str, object]) -> None:
    growth, interactions = result_to_params(result)
    lines = [
        "# EXEC_SUMMARY",
        "",
        "## Fit",
        f"- State: {result.state.value}",
        f"- Iterations: {result.n_iter}",
        f"- Taxa: {len(result.taxa)}",
        f"- Samples: {len(result.samples)} ({len(result.excluded_samples)} excluded)",
        f"- Non-zero interactions: {int(np.count_nonzero(interactions) - len(result.taxa))}",
    ]
    if not result.converged:
        lines.append("- WARNING: maximum iterations reached, estimates may be unconverged")
    lines.extend(
        [
            "",
            "## Artifacts",
            f"- Parameters: {run_dir / 'params.csv'}",
            f"- Biomass: {run_dir / 'biomass.csv'}",
            f"- Biomass trace: {run_dir / 'trace_biomass.csv'}",
            f"- Growth trace: {run_dir / 'trace_growth.csv'}",
            f"- Penalty trace: {run_dir / 'trace_penalty.csv'}",
            "",
            "## Growth rates (scaled)",
            "",
        ]
    )
    lines.append(pd.Series(growth, index=result.taxa).to_string())
    if payload.get("excluded_samples"):
        lines.extend(["", "## Excluded samples", ""])
        lines.extend(f"- {name}" for name in payload["excluded_samples"])
    (run_dir / "EXEC_SUMMARY.md").write_text("\n".join(lines))


def save_result(result: EMResult, run_dir: Path, metadata: Dict | None = None) -> Dict[str, object]:
    run_dir.mkdir(parents=True, exist_ok=True)
    growth, interactions = result_to_params(result)
    format_params(growth, interactions, result.taxa).to_csv(run_dir / "params.csv", index=False)
    pd.DataFrame({"sample": result.samples, "biomass": result_to_biomass(result)}).to_csv(
        run_dir / "biomass.csv", index=False
    )
    result.trace.biomass_frame(result.samples).to_csv(run_dir / "trace_biomass.csv")
    result.trace.growth_frame(result.taxa).to_csv(run_dir / "trace_growth.csv")
    result.trace.penalty_frame(result.taxa).to_csv(run_dir / "trace_penalty.csv")
    pd.DataFrame(result.uncertainty, index=result.taxa, columns=result.taxa).to_csv(run_dir / "uncertainty.csv")

    payload: Dict[str, object] = {
        "state": result.state.value,
        "converged": result.converged,
        "n_iter": result.n_iter,
        "excluded_samples": [result.samples[i] for i in result.excluded_samples],
    }
    if metadata:
        payload["metadata"] = metadata
    (run_dir / "result.json").write_text(json.dumps(payload, indent=2))
    build_exec_summary(run_dir, result, payload)
    return payload
