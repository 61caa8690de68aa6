"""
Reshape raw performance samples into InfluxDB records.

One primary record is produced per entity (measurement = entity type), and one
record per (measurement, entity, instance) for instanced counters such as
per-disk or per-NIC values.
"""
import logging
from collections import OrderedDict, namedtuple

from vsphere_influxdb.counter_catalog import CounterNotFoundError
from vsphere_influxdb.inventory import EntityNotFoundError
from vsphere_influxdb.rollup import aggregate

SERIES_INT = 'int'

SampleSeries = namedtuple('SampleSeries', ['entity', 'counter_key', 'instance', 'values', 'kind'])
SampleSeries.__new__.__defaults__ = (SERIES_INT,)

OutputRecord = namedtuple('OutputRecord', ['measurement', 'tags', 'fields', 'timestamp'])

InstanceKey = namedtuple('InstanceKey', ['measurement', 'entity_name', 'instance'])

# Counters of this group are never split by instance
UNSPLIT_MEASUREMENTS = {'datastore'}


def field_key(metric_name):
    return metric_name.lower().replace(".", "_")


def measurement_name(metric_name):
    return metric_name.lower().split(".")[0]


def instance_name(raw_instance, measurement):
    if measurement in UNSPLIT_MEASUREMENTS:
        return ""
    return (raw_instance or "").replace(".", "_").lower()


class RecordBuilder:
    """
    Builds the output records of one collection target.

    Instantiated with:
      catalog - CounterCatalog of the target
      inventory - InventoryContext of the target
      target_name - display name of the vCenter, reported as the `host` tag
      logger - logger instance
      debug - log every skipped series and every record built
    """

    def __init__(self, catalog, inventory, target_name, logger=None, debug=False):
        self.catalog = catalog
        self.inventory = inventory
        self.target_name = target_name
        self.logger = logger or logging.getLogger(__name__)
        self.debug = debug

    def entity_name(self, entity):
        try:
            return self.inventory.name_for(entity)
        except EntityNotFoundError:
            self.logger.info("No name found for entity {}, using its id".format(entity.id))
            return entity.id.lower()

    def entity_tags(self, entity, name):
        tags = self.inventory.tags_for(entity)
        tags["host"] = self.target_name
        tags["name"] = name
        return tags

    def build_entity(self, entity, series_list, timestamp):
        name = self.entity_name(entity)
        tags = self.entity_tags(entity, name)

        fields = {}
        special_fields = OrderedDict()
        special_tags = {}

        for series in series_list:
            if series.kind != SERIES_INT:
                self.logger.info("Skipping {} series of counter {} for {}, only integer series are supported".format(
                    series.kind, series.counter_key, name))
                continue
            try:
                definition = self.catalog.get_definition(series.counter_key)
            except CounterNotFoundError:
                self.logger.info("Skipping value for counter {} of {}, the counter is not in the catalog".format(
                    series.counter_key, name))
                continue
            if not series.values:
                if self.debug:
                    self.logger.debug("No samples for {} on {}".format(definition.requested_name, name))
                continue

            value = aggregate(definition.rollup, series.values)
            key = field_key(definition.requested_name)
            measurement = measurement_name(definition.requested_name)
            instance = instance_name(series.instance, measurement)

            if instance == "":
                fields[key] = value
                continue

            ikey = InstanceKey(measurement, name, instance)
            if ikey not in special_fields:
                special_fields[ikey] = {}
                instance_tags = dict(tags)
                instance_tags["instance"] = instance
                special_tags[ikey] = instance_tags
            special_fields[ikey][key] = value

        fields.update(self.inventory.extra_fields_for(entity))

        records = []
        if fields:
            records.append(OutputRecord(entity.type.lower(), tags, fields, timestamp))
        elif self.debug:
            self.logger.debug("No fields for {}, primary record not emitted".format(name))

        for ikey, instance_fields in special_fields.items():
            records.append(OutputRecord(ikey.measurement, special_tags[ikey], instance_fields, timestamp))

        if self.debug:
            self.logger.debug("Built {} records for {}".format(len(records), name))
        return records

    def build(self, series_list, timestamp):
        """
        Group the series by entity (first seen order) and build all records of
        the target, followed by one record per resource pool.
        """
        by_entity = OrderedDict()
        for series in series_list:
            by_entity.setdefault(series.entity, []).append(series)

        records = []
        for entity, entity_series in by_entity.items():
            records.extend(self.build_entity(entity, entity_series, timestamp))

        for pool in self.inventory.resource_pools:
            records.append(OutputRecord(
                "resourcepool",
                {"pool_name": pool.name},
                {"cpu_limit": pool.cpu_limit, "memory_limit": pool.memory_limit},
                timestamp,
            ))

        self.logger.info("Built {} records for {} entities".format(len(records), len(by_entity)))
        return records
