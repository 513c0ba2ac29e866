"""Sample statistics that refuse empty input.

numpy returns NaN (with a RuntimeWarning) for the mean of an empty array.
These helpers raise ``EmptyInputError`` instead so that callers decide what
an empty sample means for them.
"""

from typing import Sequence, Tuple, Union

import numpy as np

from ttc_fusion.exceptions import EmptyInputError

ArrayLike = Union[Sequence[float], np.ndarray]


def _as_sample(values: ArrayLike, name: str) -> np.ndarray:
    sample = np.asarray(values, dtype=np.float64).ravel()
    if sample.size == 0:
        raise EmptyInputError(f"Cannot compute {name} of an empty sample")
    return sample


def mean(values: ArrayLike) -> float:
    return float(np.mean(_as_sample(values, "mean")))


def mean_std(values: ArrayLike) -> Tuple[float, float]:
    """Mean and population standard deviation (ddof=0)."""
    sample = _as_sample(values, "mean/std")
    return float(np.mean(sample)), float(np.std(sample))


def median(values: ArrayLike) -> float:
    """Median; the average of the two central values for even sizes."""
    return float(np.median(_as_sample(values, "median")))
