# Value reported by vCenter for an interval without a sample.
SENTINEL = -1


class RollupKind:
    """
    Aggregation rule of a counter, taken from the last segment of its canonical
    name (e.g. cpu.usage.average).
    """
    AVERAGE = 'average'
    MAXIMUM = 'maximum'
    MINIMUM = 'minimum'
    LATEST = 'latest'
    SUMMATION = 'summation'
    UNKNOWN = 'unknown'

    KNOWN = (AVERAGE, MAXIMUM, MINIMUM, LATEST, SUMMATION)


def parse_rollup(canonical_name):
    suffix = canonical_name.rsplit('.', 1)[-1].lower()
    if suffix in RollupKind.KNOWN:
        return suffix
    return RollupKind.UNKNOWN


def average(values):
    """
    Mean of the non-sentinel samples, rounded half-up.
    Returns SENTINEL when there is nothing to average.
    """
    valid = [v for v in values if v >= 0]
    if not valid:
        return SENTINEL
    return (2 * sum(valid) + len(valid)) // (2 * len(valid))


def maximum(values):
    valid = [v for v in values if v >= 0]
    if not valid:
        return SENTINEL
    return max(valid)


def minimum(values):
    valid = [v for v in values if v >= 0]
    if not valid:
        return SENTINEL
    return min(valid)


def latest(values):
    """
    Last raw sample, even when it is the sentinel.
    """
    if not values:
        return SENTINEL
    return values[-1]


def summation(values):
    """
    Sum of the strictly positive samples. Zero and the sentinel never count.
    """
    return sum(v for v in values if v > 0)


_AGGREGATORS = {
    RollupKind.AVERAGE: average,
    RollupKind.MAXIMUM: maximum,
    RollupKind.MINIMUM: minimum,
    RollupKind.LATEST: latest,
    RollupKind.SUMMATION: summation,
}


def aggregate(kind, values):
    """
    Collapse a sample sequence into one integer according to the rollup kind.
    An unknown kind is not aggregated and yields SENTINEL.
    """
    aggregator = _AGGREGATORS.get(kind)
    if aggregator is None:
        return SENTINEL
    return aggregator(list(values))
