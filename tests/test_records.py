from unittest.mock import Mock

import pytest

from vsphere_influxdb.config import MetricDefinition, MetricRequest
from vsphere_influxdb.counter_catalog import CounterCatalog, CounterInfo
from vsphere_influxdb.inventory import EntityRef, InventoryContext
from vsphere_influxdb.records import (
    InstanceKey, OutputRecord, RecordBuilder, SampleSeries, field_key, instance_name, measurement_name
)

NOW = 1500000000

VM = EntityRef("vm-1", "VirtualMachine")
HOST = EntityRef("host-1", "HostSystem")

COUNTERS = [
    CounterInfo(key=2, group="cpu", name="usage", rollup="average"),
    CounterInfo(key=12, group="cpu", name="ready", rollup="summation"),
    CounterInfo(key=130, group="disk", name="numberReadAveraged", rollup="average"),
    CounterInfo(key=170, group="datastore", name="read", rollup="average"),
    CounterInfo(key=300, group="sys", name="uptime", rollup="latest"),
]

REQUESTS = [
    MetricRequest(["VirtualMachine", "HostSystem"], [
        MetricDefinition("cpu.usage.average", ""),
        MetricDefinition("cpu.ready.summation", ""),
        MetricDefinition("disk.numberReadAveraged.average", "*"),
        MetricDefinition("datastore.read.average", "*"),
        MetricDefinition("sys.uptime.latest", ""),
    ]),
]


@pytest.fixture
def catalog():
    return CounterCatalog.build(COUNTERS, REQUESTS)


@pytest.fixture
def inventory():
    context = InventoryContext()
    context.add_entity(VM, "web01", {"cluster": "prod", "respool": "Resources", "esx": "esx01.lab",
                                     "datastore": "ds1"})
    context.add_entity(HOST, "esx01", {"esx": "esx01.lab", "cluster": "prod"}, {"cpu_corecount_total": 32})
    return context


@pytest.fixture
def builder(catalog, inventory):
    return RecordBuilder(catalog, inventory, "vc1", logger=Mock())


def primary(records, measurement="virtualmachine"):
    return [r for r in records if r.measurement == measurement]


class TestNaming:

    def test_field_key(self):
        assert field_key("disk.numberReadAveraged.average") == "disk_numberreadaveraged_average"

    def test_measurement_name(self):
        assert measurement_name("net.received.average") == "net"

    def test_instance_name(self):
        assert instance_name("vmnic0.1", "net") == "vmnic0_1"
        assert instance_name("NAA.600", "disk") == "naa_600"
        assert instance_name("ds1", "datastore") == ""


class TestRecordBuilder:

    def test_primary_record(self, builder):
        series = [
            SampleSeries(VM, 2, "", [100, 200, -1]),
            SampleSeries(VM, 12, "", [5, -1, 3, 0]),
        ]

        records = builder.build_entity(VM, series, NOW)

        assert records == [OutputRecord(
            "virtualmachine",
            {"host": "vc1", "name": "web01", "cluster": "prod", "respool": "Resources",
             "esx": "esx01.lab", "datastore": "ds1"},
            {"cpu_usage_average": 150, "cpu_ready_summation": 8},
            NOW,
        )]

    def test_datastore_counters_never_split(self, builder):
        series = [
            SampleSeries(VM, 170, "ds1", [10]),
            SampleSeries(VM, 170, "ds2", [20]),
        ]

        records = builder.build_entity(VM, series, NOW)

        assert len(records) == 1
        assert records[0].measurement == "virtualmachine"
        assert records[0].fields == {"datastore_read_average": 20}
        assert "instance" not in records[0].tags

    def test_instanced_counters_get_their_own_records(self, builder):
        series = [
            SampleSeries(VM, 2, "", [50]),
            SampleSeries(VM, 130, "0:0", [1, 3]),
            SampleSeries(VM, 130, "0:1", [4]),
        ]

        records = builder.build_entity(VM, series, NOW)

        assert len(records) == 3
        disk = [r for r in records if r.measurement == "disk"]
        assert [r.tags["instance"] for r in disk] == ["0:0", "0:1"]
        assert disk[0].fields == {"disk_numberreadaveraged_average": 2}
        assert disk[1].fields == {"disk_numberreadaveraged_average": 4}
        for record in disk:
            assert record.tags["name"] == "web01"
            assert record.tags["host"] == "vc1"
            assert record.tags["cluster"] == "prod"
            assert record.tags["datastore"] == "ds1"
        assert "disk_numberreadaveraged_average" not in primary(records)[0].fields

    def test_unknown_rollup_is_written_as_sentinel(self, inventory):
        counters = COUNTERS + [CounterInfo(key=90, group="mem", name="usage", rollup="none")]
        requests = REQUESTS + [MetricRequest(["VirtualMachine"], [MetricDefinition("mem.usage.none", "")])]
        builder = RecordBuilder(CounterCatalog.build(counters, requests, Mock()), inventory, "vc1", logger=Mock())
        series = [
            SampleSeries(VM, 2, "", [10, 20]),
            SampleSeries(VM, 90, "", [512, 1024]),
        ]

        records = builder.build_entity(VM, series, NOW)

        assert records[0].fields == {"cpu_usage_average": 15, "mem_usage_none": -1}

    def test_unknown_counter_is_skipped(self, builder):
        series = [
            SampleSeries(VM, 999, "", [1]),
            SampleSeries(VM, 2, "", [7]),
        ]

        records = builder.build_entity(VM, series, NOW)

        assert records[0].fields == {"cpu_usage_average": 7}
        assert builder.logger.info.called

    def test_unknown_counter_does_not_stop_other_entities(self, builder):
        series = [
            SampleSeries(VM, 999, "", [1]),
            SampleSeries(HOST, 2, "", [7]),
        ]

        records = builder.build(series, NOW)

        assert [r.measurement for r in records] == ["hostsystem"]

    def test_non_integer_series_are_rejected(self, builder):
        series = [
            SampleSeries(VM, 2, "", ["1,2"], kind="CSVSeries"),
            SampleSeries(VM, 300, "", [10, 20, -1]),
        ]

        records = builder.build_entity(VM, series, NOW)

        assert records[0].fields == {"sys_uptime_latest": -1}

    def test_entity_without_fields_is_not_emitted(self, builder):
        records = builder.build_entity(VM, [SampleSeries(VM, 999, "", [1])], NOW)
        assert records == []

    def test_extra_fields_are_merged(self, builder):
        records = builder.build_entity(HOST, [SampleSeries(HOST, 2, "", [10])], NOW)

        assert records[0].measurement == "hostsystem"
        assert records[0].fields == {"cpu_usage_average": 10, "cpu_corecount_total": 32}

    def test_extra_fields_alone_emit_a_record(self, builder):
        records = builder.build_entity(HOST, [], NOW)
        assert records[0].fields == {"cpu_corecount_total": 32}

    def test_base_tags_win_over_enrichment(self, catalog):
        context = InventoryContext()
        context.add_entity(VM, "web01", {"name": "other", "host": "other"})
        builder = RecordBuilder(catalog, context, "vc1", logger=Mock())

        records = builder.build_entity(VM, [SampleSeries(VM, 2, "", [1])], NOW)

        assert records[0].tags == {"host": "vc1", "name": "web01"}

    def test_entity_missing_from_inventory_uses_its_id(self, catalog):
        builder = RecordBuilder(catalog, InventoryContext(), "vc1", logger=Mock())

        records = builder.build_entity(VM, [SampleSeries(VM, 2, "", [1])], NOW)

        assert records[0].tags == {"host": "vc1", "name": "vm-1"}

    def test_resource_pool_records_once_per_target(self, builder, inventory):
        inventory.add_resource_pool("gold", 4000, -1)
        series = [
            SampleSeries(VM, 2, "", [1]),
            SampleSeries(HOST, 2, "", [1]),
        ]

        records = builder.build(series, NOW)

        pools = [r for r in records if r.measurement == "resourcepool"]
        assert pools == [OutputRecord("resourcepool", {"pool_name": "gold"},
                                      {"cpu_limit": 4000, "memory_limit": -1}, NOW)]

    def test_build_is_idempotent(self, builder):
        series = [
            SampleSeries(VM, 2, "", [1, 2]),
            SampleSeries(VM, 130, "0:0", [3]),
            SampleSeries(HOST, 12, "", [4, 5]),
            SampleSeries(HOST, 130, "vmhba0", [6]),
        ]

        first = builder.build(series, NOW)
        second = builder.build(series, NOW + 60)

        def strip_time(records):
            return [(r.measurement, r.tags, r.fields) for r in records]

        assert strip_time(first) == strip_time(second)

    def test_instance_key(self):
        key = InstanceKey("disk", "web01", "0:0")
        assert key.measurement == "disk"
        assert {key: 1}[InstanceKey("disk", "web01", "0:0")] == 1
