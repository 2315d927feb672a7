import statistics
from typing import Iterable, Optional, Sequence

from ..core.perftest import AverageMetrics, RunSample


def median(values: Iterable[Optional[float]]) -> Optional[float]:
    """Median of the observed values; None entries are ignored, None if nothing was observed."""
    observed = sorted(value for value in values if value is not None)
    if not observed:
        return None
    return statistics.median(observed)


def aggregate(samples: Sequence[RunSample]) -> AverageMetrics:
    """Column-wise median of FCP and LCP across runs."""
    return AverageMetrics(
        fcp=median(sample.fcp for sample in samples),
        lcp=median(sample.lcp for sample in samples),
    )
