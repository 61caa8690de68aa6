import logging
from collections import namedtuple

from vsphere_influxdb.rollup import RollupKind, parse_rollup


class CounterNotFoundError(Exception):
    pass


# Raw counter metadata as exposed by PerformanceManager.perfCounter
CounterInfo = namedtuple('CounterInfo', ['key', 'group', 'name', 'rollup'])

CounterDefinition = namedtuple('CounterDefinition', ['requested_name', 'instance_filter', 'counter_key', 'rollup'])

MetricGroup = namedtuple('MetricGroup', ['entity_type', 'counters'])


def canonical_name(counter_info):
    return "{}.{}.{}".format(counter_info.group, counter_info.name, counter_info.rollup)


def counter_info_from_perf_counter(counter):
    """
    Convert a vim.PerformanceManager.CounterInfo into a CounterInfo.
    """
    return CounterInfo(
        key=counter.key,
        group=counter.groupInfo.key,
        name=counter.nameInfo.key,
        rollup=str(counter.rollupType),
    )


class CounterCatalog:
    """
    For one collection target the catalog maps: counter key --> counter definition,
    and keeps the requested counters grouped by entity type.

    Counter keys are only valid for the vCenter they were read from, a catalog
    must never be shared between targets.
    """
    def __init__(self):
        self._definitions = {}
        self._groups = []

    @classmethod
    def build(cls, counter_infos, metric_requests, logger=None):
        """
        Match the requested metric definitions against the counters the target
        exposes. Requested metrics the target does not know are dropped.
        """
        logger = logger or logging.getLogger(__name__)
        catalog = cls()
        matched = set()

        for counter in counter_infos:
            identifier = canonical_name(counter)
            for request in metric_requests:
                for definition in request.definitions:
                    if definition.metric != identifier:
                        continue
                    rollup = parse_rollup(definition.metric)
                    if rollup == RollupKind.UNKNOWN and identifier not in matched:
                        logger.warning(
                            "Counter {} has an unknown rollup, its values will be reported as -1".format(identifier)
                        )
                    matched.add(identifier)
                    counter_def = CounterDefinition(
                        requested_name=definition.metric,
                        instance_filter=definition.instances,
                        counter_key=counter.key,
                        rollup=rollup,
                    )
                    for entity_type in request.object_types:
                        catalog._register(entity_type, counter_def)

        for request in metric_requests:
            for definition in request.definitions:
                if definition.metric not in matched:
                    logger.debug("Counter {} is not available on this target, skipping".format(definition.metric))

        return catalog

    def _register(self, entity_type, counter_def):
        self._definitions[counter_def.counter_key] = counter_def
        group = self.group_for(entity_type)
        if group is None:
            group = MetricGroup(entity_type=entity_type, counters=[])
            self._groups.append(group)
        group.counters.append(counter_def)

    @property
    def groups(self):
        return list(self._groups)

    def group_for(self, entity_type):
        for group in self._groups:
            if group.entity_type == entity_type:
                return group
        return None

    def entity_types(self):
        return [group.entity_type for group in self._groups if group.counters]

    def contains(self, counter_key):
        """
        Check whether a counter key is known for this target.
        """
        return counter_key in self._definitions

    def get_definition(self, counter_key):
        try:
            return self._definitions[counter_key]
        except KeyError:
            raise CounterNotFoundError("No counter with key '{}' found in the catalog.".format(counter_key))

    def name_for(self, counter_key):
        return self.get_definition(counter_key).requested_name

    def metric_ids(self, entity_type):
        """
        Return the (counter key, instance filter) pairs to query for an entity type
        """
        group = self.group_for(entity_type)
        if group is None:
            return []
        return [(counter_def.counter_key, counter_def.instance_filter) for counter_def in group.counters]

    def __len__(self):
        return len(self._definitions)
