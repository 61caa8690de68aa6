import logging
import ssl
import time
from datetime import timedelta

from cryptography.fernet import Fernet, InvalidToken
from pyVim import connect
from pyVmomi import vim
from pyVmomi import vmodl

from vsphere_influxdb.counter_catalog import CounterCatalog, counter_info_from_perf_counter
from vsphere_influxdb.inventory import (
    CLUSTER, HOST_SYSTEM, RESOURCE_POOL, VIRTUAL_MACHINE, InventoryBuilder, entity_ref, strip_domain
)
from vsphere_influxdb.records import RecordBuilder, SampleSeries, SERIES_INT
from vsphere_influxdb.sink import InfluxDBSink, SinkError

# vCenter sampling interval
VCENTER_REALTIME_INTERVAL = 20
# Maximum number of objects to collect at once by the propertyCollector.
BATCH_COLLECTOR_SIZE = 500

# Always retrieved, they carry the tags of the queried entities
CONTEXT_RESOURCE_TYPES = [HOST_SYSTEM, CLUSTER, RESOURCE_POOL]

PROPERTIES_BY_TYPE = {
    VIRTUAL_MACHINE: ["name", "runtime.powerState", "runtime.host", "summary.config.vmPathName", "resourcePool"],
    HOST_SYSTEM: ["name", "parent", "summary.config.name", "summary.hardware.numCpuThreads"],
    CLUSTER: ["name"],
    RESOURCE_POOL: ["name", "config.cpuAllocation.limit", "config.memoryAllocation.limit"],
}


class CollectionError(Exception):
    pass


def decrypt_password(password, key):
    if not key:
        raise CollectionError("Key is required if the password is encrypted")
    try:
        cipher_suite = Fernet(key)
        uncipher_text = cipher_suite.decrypt(bytes(password, "utf-8"))
    except (InvalidToken, ValueError) as e:
        raise CollectionError("Unable to decrypt the vCenter password: {}".format(e))
    return bytes(uncipher_text).decode("utf-8")


class VSphereCollector:
    """
    Collects the performance metrics of one vCenter and reshapes them into
    InfluxDB records. One collector handles one collection run of one target,
    nothing is cached between runs.
    """

    def __init__(self, config, vcenter, logger=None, key=None, debug=False):
        self.config = config
        self.vcenter = vcenter
        self.logger = logger or logging.getLogger(__name__)
        self.key = key
        self.debug = debug
        self.batch_collector_size = BATCH_COLLECTOR_SIZE
        self.batch_morlist_size = config.batch_morlist_size
        self.ssl_verify = config.ssl_verify
        self.ssl_capath = config.ssl_capath

        # EntityRef -> managed object, filled by the inventory retrieval
        self._mors = {}

    @property
    def target_name(self):
        return strip_domain(self.vcenter.hostname, self.config.domain)

    def _ssl_context(self):
        ssl_verify = str(self.ssl_verify)
        ssl_capath = self.ssl_capath

        if ssl_verify == 'False' and ssl_capath:
            self.logger.info("Incorrect configuration, proceeding with ssl verification disabled.")

        if ssl_verify == 'False':
            context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            return context
        if ssl_capath:
            context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            context.verify_mode = ssl.CERT_REQUIRED
            context.load_verify_locations(capath=ssl_capath)
            return context
        return None

    def _connect_to_server(self):
        password = self.vcenter.password
        if self.vcenter.pass_encrypted:
            password = decrypt_password(password, self.key)

        self.logger.info("Connecting to vCenter {}".format(self.vcenter.hostname))
        try:
            server_instance = connect.SmartConnect(
                host=self.vcenter.hostname,
                port=self.vcenter.port,
                user=self.vcenter.username,
                pwd=password,
                sslContext=self._ssl_context()
            )
        except Exception as e:
            raise CollectionError("Connection to {} failed: {}".format(self.vcenter.hostname, e))

        # Check permissions
        try:
            server_instance.CurrentTime()
        except Exception as e:
            connect.Disconnect(server_instance)
            raise CollectionError(
                "Connection established: {}, but the user : {} lacks appropriate permissions: {}".format(
                    self.vcenter.hostname, self.vcenter.username, e)
            )

        return server_instance

    def _get_counter_catalog(self, server_instance):
        """
        Find out the performance counters of the vCenter and keep the requested ones.
        """
        perf_manager = server_instance.content.perfManager
        counter_infos = [counter_info_from_perf_counter(counter) for counter in perf_manager.perfCounter]
        catalog = CounterCatalog.build(counter_infos, self.config.metrics, self.logger)
        self.logger.info("{} of {} counters of {} match the requested metrics".format(
            len(catalog), len(counter_infos), self.vcenter.hostname))
        return catalog

    def _retrieve_managed_objects_and_attr(self, server_instance, entity_types):
        resource_names = list(entity_types)
        for resource_name in CONTEXT_RESOURCE_TYPES:
            if resource_name not in resource_names:
                resource_names.append(resource_name)
        resources = [getattr(vim, resource_name) for resource_name in resource_names]

        content = server_instance.content
        view_ref = content.viewManager.CreateContainerView(content.rootFolder, resources, True)

        # See https://code.vmware.com/apis/358/vsphere#/doc/vmodl.query.PropertyCollector.html
        collector = content.propertyCollector

        # Specify root object
        obj_spec = vmodl.query.PropertyCollector.ObjectSpec()
        obj_spec.obj = view_ref
        obj_spec.skip = True

        # Mention the attribute of the root object
        traversal_spec = vmodl.query.PropertyCollector.TraversalSpec()
        traversal_spec.path = "view"
        traversal_spec.skip = False
        traversal_spec.type = view_ref.__class__
        obj_spec.selectSet = [traversal_spec]

        property_specs = []
        # Which attributes we want to retrieve per object
        for resource_name, resource in zip(resource_names, resources):
            property_spec = vmodl.query.PropertyCollector.PropertySpec()
            property_spec.type = resource
            property_spec.pathSet = PROPERTIES_BY_TYPE.get(resource_name, ["name"])
            property_specs.append(property_spec)

        # Create final filter spec
        filter_spec = vmodl.query.PropertyCollector.FilterSpec()
        filter_spec.objectSet = [obj_spec]
        filter_spec.propSet = property_specs

        retr_opts = vmodl.query.PropertyCollector.RetrieveOptions()
        # If batch_collector_size is 0, collect maximum number of objects.
        retr_opts.maxObjects = self.batch_collector_size or None

        try:
            # Retrieve the objects and their properties
            res = collector.RetrievePropertiesEx([filter_spec], retr_opts)
            objects = list(res.objects) if res is not None else []
            # Results can be paginated
            while res is not None and res.token is not None:
                res = collector.ContinueRetrievePropertiesEx(res.token)
                objects.extend(res.objects)
        finally:
            view_ref.Destroy()

        mor_attrs = {}
        error_counter = 0
        for obj in objects:
            if obj.missingSet and error_counter < 10:
                for prop in obj.missingSet:
                    error_counter += 1
                    self.logger.error(
                        "Unable to retrieve property {} for object {}: {}".format(prop.path, obj.obj, prop.fault)
                    )
                    if error_counter == 10:
                        self.logger.info("Too many errors during object collection, stop logging")
                        break
            mor_attrs[obj.obj] = {prop.name: prop.val for prop in obj.propSet} if obj.propSet else {}

        return mor_attrs

    def _get_inventory(self, server_instance, catalog):
        start = time.time()
        all_objects = self._retrieve_managed_objects_and_attr(server_instance, catalog.entity_types())

        self._mors = {}
        for obj, properties in list(all_objects.items()):
            if isinstance(obj, vim.VirtualMachine):
                power_state = properties.get("runtime.powerState")
                if power_state != vim.VirtualMachinePowerState.poweredOn:
                    if self.debug:
                        self.logger.debug("Skipping VM {} in state {}".format(properties.get("name"), power_state))
                    del all_objects[obj]
                    continue
            self._mors[entity_ref(obj)] = obj

        inventory = InventoryBuilder(self.config.domain, self.logger).build(all_objects)
        self.logger.info("All objects with attributes cached in {} seconds.".format(time.time() - start))
        return inventory

    def _query_window(self, server_instance):
        end_time = server_instance.CurrentTime() - timedelta(seconds=1)
        start_time = end_time - timedelta(seconds=self.config.interval)
        return start_time, end_time

    def _build_query_specs(self, inventory, catalog, start_time, end_time):
        query_specs = []
        for entity_type in catalog.entity_types():
            metric_ids = [
                vim.PerformanceManager.MetricId(counterId=counter_key, instance=instance)
                for counter_key, instance in catalog.metric_ids(entity_type)
            ]
            for ref in inventory.entities(entity_type):
                mor = self._mors.get(ref)
                if mor is None:
                    continue
                query_spec = vim.PerformanceManager.QuerySpec()
                query_spec.entity = mor
                query_spec.intervalId = VCENTER_REALTIME_INTERVAL
                query_spec.startTime = start_time
                query_spec.endTime = end_time
                query_spec.metricId = metric_ids
                query_specs.append(query_spec)
        return query_specs

    def _query_samples(self, perf_manager, query_specs):
        """
        Query the performances, `batch_morlist_size` entities at a time.
        If batch_morlist_size is 0, process everything at once.
        """
        batch_size = self.batch_morlist_size or len(query_specs)
        samples = []
        for offset in range(0, len(query_specs), batch_size or 1):
            batch = query_specs[offset:offset + batch_size]
            results = perf_manager.QueryPerf(querySpec=batch)
            for mor_perfs in results or []:
                entity = entity_ref(mor_perfs.entity)
                for result in mor_perfs.value:
                    if isinstance(result, vim.PerformanceManager.IntSeries):
                        kind = SERIES_INT
                        values = list(result.value)
                    else:
                        kind = type(result).__name__
                        values = []
                    samples.append(SampleSeries(
                        entity=entity,
                        counter_key=result.id.counterId,
                        instance=result.id.instance,
                        values=values,
                        kind=kind,
                    ))
        return samples

    def collect(self, run_time):
        """
        Run the whole collection for the vCenter and return the records to write.
        """
        server_instance = self._connect_to_server()
        try:
            catalog = self._get_counter_catalog(server_instance)
            if not catalog.entity_types():
                self.logger.info("None of the requested metrics is available on {}".format(self.vcenter.hostname))

            inventory = self._get_inventory(server_instance, catalog)

            start_time, end_time = self._query_window(server_instance)
            query_specs = self._build_query_specs(inventory, catalog, start_time, end_time)
            self.logger.info("Querying {} entities from {} to {}".format(len(query_specs), start_time, end_time))
            samples = self._query_samples(server_instance.content.perfManager, query_specs)
        except CollectionError:
            raise
        except Exception as e:
            raise CollectionError("Collection from {} failed: {}".format(self.vcenter.hostname, e))
        finally:
            connect.Disconnect(server_instance)

        builder = RecordBuilder(catalog, inventory, self.target_name, self.logger, self.debug)
        return builder.build(samples, run_time)


def run(config, logger=None, key=None, debug=False, sink=None):
    """
    Collect and write the metrics of every vCenter, one after the other.
    A failing vCenter does not prevent the others from being processed.
    Returns the number of vCenters that failed.
    """
    logger = logger or logging.getLogger(__name__)
    owns_sink = sink is None
    if owns_sink:
        sink = InfluxDBSink(config.influxdb, logger)

    failures = 0
    try:
        for vcenter in config.vcenters:
            run_time = int(time.time())
            collector = VSphereCollector(config, vcenter, logger, key=key, debug=debug)
            try:
                records = collector.collect(run_time)
                sink.write(records)
            except (CollectionError, SinkError) as e:
                failures += 1
                logger.error("vCenter {} failed: {}".format(vcenter.hostname, e))
                continue
            logger.info("vCenter {} processed, {} records written".format(vcenter.hostname, len(records)))
    finally:
        if owns_sink:
            sink.close()

    return failures
