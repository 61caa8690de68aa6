"""
Counters collected when the configuration file has no `Metrics` section.
Keys are canonical counter names (group.name.rollup).
"""
DEFAULT_METRICS = {
    'cpu.usage.average': {
        'instances': '',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    'cpu.usagemhz.average': {
        'instances': '',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    # Ready
    # Compatibility: 3.5.0 / 4.0.0 / 4.1.0 / 5.0.0
    'cpu.ready.summation': {
        'instances': '',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    'cpu.idle.summation': {
        'instances': '',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    'cpu.wait.summation': {
        'instances': '',
        'entity': ['VirtualMachine']
    },
    'cpu.totalCapacity.average': {
        'instances': '',
        'entity': ['HostSystem']
    },
    'mem.usage.average': {
        'instances': '',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    'mem.granted.average': {
        'instances': '',
        'entity': ['VirtualMachine', 'HostSystem', 'ResourcePool']
    },
    'mem.vmmemctl.average': {
        'instances': '',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    'mem.totalCapacity.average': {
        'instances': '',
        'entity': ['HostSystem']
    },
    # Per disk
    'disk.read.average': {
        'instances': '*',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    'disk.write.average': {
        'instances': '*',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    'disk.numberReadAveraged.average': {
        'instances': '*',
        'entity': ['VirtualMachine']
    },
    'disk.numberWriteAveraged.average': {
        'instances': '*',
        'entity': ['VirtualMachine']
    },
    'disk.maxTotalLatency.latest': {
        'instances': '',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    # Per NIC
    'net.received.average': {
        'instances': '*',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    'net.transmitted.average': {
        'instances': '*',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    # Never split by instance, see records.UNSPLIT_MEASUREMENTS
    'datastore.read.average': {
        'instances': '*',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    'datastore.write.average': {
        'instances': '*',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    'datastore.totalReadLatency.average': {
        'instances': '*',
        'entity': ['VirtualMachine', 'HostSystem']
    },
    # Compatibility: 6.0.0
    'sys.uptime.latest': {
        'instances': '',
        'entity': ['VirtualMachine', 'HostSystem']
    },
}
