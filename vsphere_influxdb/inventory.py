import logging
import re
from collections import namedtuple

# Managed object id (e.g. vm-42) and vSphere type name (e.g. VirtualMachine)
EntityRef = namedtuple('EntityRef', ['id', 'type'])

ResourcePoolLimits = namedtuple('ResourcePoolLimits', ['name', 'cpu_limit', 'memory_limit'])

VIRTUAL_MACHINE = 'VirtualMachine'
HOST_SYSTEM = 'HostSystem'
RESOURCE_POOL = 'ResourcePool'
CLUSTER = 'ClusterComputeResource'

DATASTORE_RE = re.compile(r'\[(.*?)\]')


class EntityNotFoundError(Exception):
    pass


def entity_ref(mor):
    """
    Build an EntityRef from a pyVmomi managed object.
    """
    return EntityRef(mor._moId, mor._wsdlName)


def strip_domain(name, domain):
    if not domain:
        return name
    return name.replace(domain, "")


def parse_datastore(vm_path_name):
    """
    Extract the datastore label from a VM path like '[datastore1] vm/vm.vmx'.
    """
    if not vm_path_name:
        return None
    match = DATASTORE_RE.search(vm_path_name)
    if match is None:
        return None
    return match.group(1)


class InventoryContext:
    """
    Read-only snapshot of one collection target's inventory: display names,
    enrichment tags and non-counter fields keyed by EntityRef.
    """
    def __init__(self):
        self._names = {}
        self._tags = {}
        self._extra_fields = {}
        self._resource_pools = []

    def add_entity(self, ref, name, tags=None, extra_fields=None):
        self._names[ref] = name
        self._tags[ref] = dict(tags or {})
        self._extra_fields[ref] = dict(extra_fields or {})

    def add_resource_pool(self, name, cpu_limit, memory_limit):
        self._resource_pools.append(ResourcePoolLimits(name, cpu_limit, memory_limit))

    def contains(self, ref):
        return ref in self._names

    def name_for(self, ref):
        try:
            return self._names[ref]
        except KeyError:
            raise EntityNotFoundError("Entity '{}' not found in the inventory.".format(ref.id))

    def tags_for(self, ref):
        return dict(self._tags.get(ref, {}))

    def extra_fields_for(self, ref):
        return dict(self._extra_fields.get(ref, {}))

    def entities(self, entity_type=None):
        return [ref for ref in self._names if entity_type is None or ref.type == entity_type]

    @property
    def resource_pools(self):
        return list(self._resource_pools)

    def __len__(self):
        return len(self._names)


class InventoryBuilder:
    """
    Resolve the containment relationships (entity -> host, cluster, resource pool,
    datastore) of a property collector result into an InventoryContext.

    `objects` maps each managed object to the dict of properties retrieved for it,
    as returned by VSphereCollector._retrieve_managed_objects_and_attr.
    """

    def __init__(self, domain="", logger=None):
        self.domain = domain
        self.logger = logger or logging.getLogger(__name__)

    def display_name(self, name):
        return strip_domain(name, self.domain).lower()

    def build(self, objects):
        context = InventoryContext()

        by_ref = {}
        for mor, properties in objects.items():
            by_ref[entity_ref(mor)] = properties

        clusters = {}
        hosts = {}
        pools = {}
        for ref, properties in by_ref.items():
            if ref.type == CLUSTER:
                clusters[ref] = properties.get("name")
            elif ref.type == RESOURCE_POOL:
                pools[ref] = properties.get("name")
                self._add_resource_pool(context, properties)
            elif ref.type == HOST_SYSTEM:
                hosts[ref] = properties

        for ref, properties in by_ref.items():
            name = properties.get("name")
            if name is None:
                self.logger.info("Object {} has no name, skipping".format(ref.id))
                continue

            tags = {}
            extra_fields = {}
            if ref.type == HOST_SYSTEM:
                self._host_tags(properties, clusters, tags, extra_fields)
            elif ref.type == VIRTUAL_MACHINE:
                self._vm_tags(properties, hosts, clusters, pools, tags)

            context.add_entity(ref, self.display_name(name), tags, extra_fields)

        self.logger.info("Inventory built with {} entities and {} resource pools".format(
            len(context), len(context.resource_pools)))
        return context

    def _host_tags(self, properties, clusters, tags, extra_fields):
        esx_name = properties.get("summary.config.name")
        if esx_name:
            tags["esx"] = esx_name
        cluster = self._cluster_of(properties, clusters)
        if cluster:
            tags["cluster"] = cluster
        cores = properties.get("summary.hardware.numCpuThreads")
        if cores is not None:
            extra_fields["cpu_corecount_total"] = int(cores)

    def _vm_tags(self, properties, hosts, clusters, pools, tags):
        datastore = parse_datastore(properties.get("summary.config.vmPathName"))
        if datastore:
            tags["datastore"] = datastore

        host = properties.get("runtime.host")
        if host is not None:
            host_properties = hosts.get(entity_ref(host))
            if host_properties is None:
                self.logger.debug("Host {} of a virtual machine is not in the inventory".format(host._moId))
            else:
                esx_name = host_properties.get("summary.config.name")
                if esx_name:
                    tags["esx"] = esx_name
                cluster = self._cluster_of(host_properties, clusters)
                if cluster:
                    tags["cluster"] = cluster

        pool = properties.get("resourcePool")
        if pool is not None:
            pool_name = pools.get(entity_ref(pool))
            if pool_name:
                tags["respool"] = pool_name

    def _cluster_of(self, host_properties, clusters):
        parent = host_properties.get("parent")
        if parent is None:
            return None
        return clusters.get(entity_ref(parent))

    def _add_resource_pool(self, context, properties):
        name = properties.get("name")
        cpu_limit = properties.get("config.cpuAllocation.limit")
        memory_limit = properties.get("config.memoryAllocation.limit")
        if name is None or cpu_limit is None or memory_limit is None:
            self.logger.debug("Incomplete resource pool properties for {}, no limits reported".format(name))
            return
        context.add_resource_pool(name, int(cpu_limit), int(memory_limit))
