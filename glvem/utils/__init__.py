from glvem.utils.stats import binary_entropy, iqr, mad, relative_change, robust_bounds

__all__ = ["binary_entropy", "iqr", "mad", "relative_change", "robust_bounds"]
