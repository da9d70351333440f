from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd


def read_counts(path: Path) -> pd.DataFrame:
    """Read a taxa x samples table; the first column holds taxon identifiers."""
    sep = "\t" if path.suffix.lower() in {".tsv", ".txt"} else ","
    df = pd.read_csv(path, sep=sep, index_col=0)
    if df.empty:
        raise ValueError(f"No counts found in {path}")
    df.index = df.index.astype(str)
    df.columns = df.columns.astype(str)
    if df.index.duplicated().any():
        dupes = sorted(set(df.index[df.index.duplicated()]))
        raise ValueError(f"Duplicate taxon identifiers {dupes} in {path}")
    try:
        df = df.astype(float)
    except ValueError as exc:
        raise ValueError(f"Non-numeric counts in {path}") from exc
    values = df.to_numpy()
    if not np.all(np.isfinite(values)) or np.any(values < 0):
        raise ValueError(f"Counts in {path} must be finite and non-negative")
    return df


def write_counts(counts: pd.DataFrame, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    sep = "\t" if path.suffix.lower() in {".tsv", ".txt"} else ","
    counts.to_csv(path, sep=sep)
