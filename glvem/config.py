from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field


class PreprocessConfig(BaseModel):
    detection_limit: float = Field(1e-4, ge=0.0, description="Relative abundances below this are set to zero.")
    deviation: float = Field(0.0, ge=0.0, description="Exclude entries whose abundance/MAD falls below this.")


class OracleConfig(BaseModel):
    alpha: float = Field(1.0, ge=0.0, le=1.0, description="Elastic net mixing parameter (1: lasso, 0: ridge).")
    lambda_choice: float = Field(
        1.0,
        gt=0.0,
        le=2.0,
        description="1: 1-SE rule, 2: CV minimum, value in (0, 1): (1-c)*min + c*1se.",
    )
    nfolds: int = Field(10, ge=3, description="Cross-validation folds.")
    outlier_iqr: float = Field(5.0, gt=0.0, description="Drop responses beyond median +/- k*IQR before fitting.")
    coarse_log10_min: float = Field(-9.0, description="Smallest penalty exponent of the coarse grid.")
    coarse_log10_max: float = Field(-1.0, description="Largest penalty exponent of the coarse grid.")
    coarse_points: int = Field(20, ge=2)
    fine_span: float = Field(20.0, gt=1.0, description="Fine grid spans [min/span, min*span].")
    fine_points: int = Field(100, ge=2)
    warm_span: float = Field(5.0, gt=1.0, description="Warm-started grid spans [init/span, init].")
    warm_points: int = Field(50, ge=2)
    tol: float = Field(1e-7, gt=0.0, description="Coordinate descent tolerance.")
    max_iter: int = Field(100000, ge=1, description="Coordinate descent iterations.")
    seed: int = Field(0, description="Seed for fold assignment.")


class EMConfig(BaseModel):
    jobs: int = Field(4, ge=1, description="Worker threads for per-taxon and per-sample steps.")
    scaling: float = Field(10000.0, gt=0.0, description="Median biomass over retained samples.")
    deviation: float = Field(
        float("inf"),
        ge=0.0,
        description="Robust z-score above which a sample is removed (inf disables filtering).",
    )
    max_iter: int = Field(30, ge=1)
    warm_iter: Optional[int] = Field(None, ge=0, description="Iterations before filtering starts.")
    refresh_iter: int = Field(3, ge=1, description="Reset removed samples every N iterations.")
    min_iter: int = Field(5, ge=0, description="Iterations before convergence can start filtering.")
    min_filter_iter: int = Field(5, ge=0, description="Filtering iterations required before convergence.")
    tolerance: float = Field(1e-3, gt=0.0, description="Median relative biomass change for convergence.")
    warm_start_iter: int = Field(5, ge=1, description="First iteration reusing the previous penalties.")
    center: bool = Field(False, description="Center response and regressors in the E-step.")
    snap_threshold: float = Field(1e-5, ge=0.0, description="Interactions below this magnitude are zeroed.")
    css_quantile: float = Field(0.5, gt=0.0, le=1.0, description="Quantile used for the CSS biomass seed.")


class FitConfig(BaseModel):
    counts: Optional[Path] = None
    results_root: Path = Path("results")
    preprocess: PreprocessConfig = Field(default_factory=PreprocessConfig)
    oracle: OracleConfig = Field(default_factory=OracleConfig)
    em: EMConfig = Field(default_factory=EMConfig)


def _merge(base: Dict[str, object], update: Dict[str, object]) -> Dict[str, object]:
    out = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config(
    default_path: Path | None,
    override_path: Path | None = None,
    cli_overrides: Dict[str, object] | None = None,
) -> FitConfig:
    data: Dict[str, object] = {}
    if default_path and default_path.exists():
        data = yaml.safe_load(default_path.read_text()) or {}
    if override_path:
        data = _merge(data, yaml.safe_load(override_path.read_text()) or {})
    for key, value in (cli_overrides or {}).items():
        if isinstance(value, dict):
            value = {k: v for k, v in value.items() if v is not None}
            if value:
                data = _merge(data, {key: value})
        elif value is not None:
            data[key] = value
    return FitConfig(**data)
