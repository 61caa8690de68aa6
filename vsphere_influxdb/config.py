import json
from collections import namedtuple

from vsphere_influxdb.default_metrics import DEFAULT_METRICS

DEFAULT_CONFIG_FILE = '/etc/vsphere-influxdb.json'
DEFAULT_INTERVAL = 60
DEFAULT_VCENTER_PORT = 443
# Simultaneous objects processed by the QueryPerf method.
BATCH_MORLIST_SIZE = 50

VCenterConfig = namedtuple('VCenterConfig', ['hostname', 'username', 'password', 'port', 'pass_encrypted'])

InfluxDBConfig = namedtuple('InfluxDBConfig', ['hostname', 'username', 'password', 'database'])

MetricDefinition = namedtuple('MetricDefinition', ['metric', 'instances'])

MetricRequest = namedtuple('MetricRequest', ['object_types', 'definitions'])


class ConfigurationError(Exception):
    pass


class Configuration:
    """
    Settings of a collection run, read from the JSON configuration file.
    """

    def __init__(self, vcenters, influxdb, metrics, interval=DEFAULT_INTERVAL, domain="",
                 ssl_verify='False', ssl_capath=None, batch_morlist_size=BATCH_MORLIST_SIZE):
        self.vcenters = vcenters
        self.influxdb = influxdb
        self.metrics = metrics
        self.interval = interval
        self.domain = domain
        self.ssl_verify = ssl_verify
        self.ssl_capath = ssl_capath
        self.batch_morlist_size = batch_morlist_size


def _require(section, key, where):
    value = section.get(key)
    if value is None or value == "":
        raise ConfigurationError("Missing '{}' in {}".format(key, where))
    return value


def _parse_port(raw, where):
    port = raw.get('Port') or DEFAULT_VCENTER_PORT
    if isinstance(port, bool):
        raise ConfigurationError("'Port' in {} must be a number".format(where))
    try:
        return int(port)
    except (TypeError, ValueError):
        raise ConfigurationError("'Port' in {} must be a number, got {!r}".format(where, port))


def _parse_vcenter(raw, index):
    where = "VCenters[{}]".format(index)
    if not isinstance(raw, dict):
        raise ConfigurationError("{} must be an object".format(where))
    return VCenterConfig(
        hostname=_require(raw, 'Hostname', where),
        username=_require(raw, 'Username', where),
        password=_require(raw, 'Password', where),
        port=_parse_port(raw, where),
        pass_encrypted=bool(raw.get('PassEncrypted', False)),
    )


def _parse_influxdb(raw):
    if not isinstance(raw, dict):
        raise ConfigurationError("InfluxDB must be an object")
    return InfluxDBConfig(
        hostname=_require(raw, 'Hostname', 'InfluxDB'),
        username=raw.get('Username') or "",
        password=raw.get('Password') or "",
        database=_require(raw, 'Database', 'InfluxDB'),
    )


def _parse_metrics(raw):
    if not isinstance(raw, list):
        raise ConfigurationError("'Metrics' must be a list")
    metric_requests = []
    for index, metric in enumerate(raw):
        where = "Metrics[{}]".format(index)
        if not isinstance(metric, dict):
            raise ConfigurationError("{} must be an object".format(where))
        object_types = metric.get('ObjectType')
        if not object_types:
            raise ConfigurationError("Missing 'ObjectType' in {}".format(where))
        if isinstance(object_types, str):
            object_types = [object_types]
        if not isinstance(object_types, list) or not all(isinstance(t, str) for t in object_types):
            raise ConfigurationError("'ObjectType' in {} must be a name or a list of names".format(where))
        definitions = []
        raw_definitions = metric.get('Definition') or []
        if not isinstance(raw_definitions, list):
            raise ConfigurationError("'Definition' in {} must be a list".format(where))
        for def_index, definition in enumerate(raw_definitions):
            def_where = "{}.Definition[{}]".format(where, def_index)
            if not isinstance(definition, dict):
                raise ConfigurationError("{} must be an object".format(def_where))
            definitions.append(MetricDefinition(
                metric=_require(definition, 'Metric', def_where),
                instances=definition.get('Instances') or "",
            ))
        metric_requests.append(MetricRequest(list(object_types), definitions))
    return metric_requests


def default_metric_requests():
    """
    Turn DEFAULT_METRICS into one MetricRequest per metric.
    """
    return [
        MetricRequest(list(spec['entity']), [MetricDefinition(name, spec['instances'])])
        for name, spec in sorted(DEFAULT_METRICS.items())
    ]


def parse_config(raw):
    if not isinstance(raw, dict):
        raise ConfigurationError("The configuration must be a JSON object")

    vcenters = raw.get('VCenters')
    if not vcenters:
        raise ConfigurationError("At least one vCenter must be defined in 'VCenters'")
    if not isinstance(vcenters, list):
        raise ConfigurationError("'VCenters' must be a list")
    if 'InfluxDB' not in raw:
        raise ConfigurationError("Missing 'InfluxDB' section")

    interval = raw.get('Interval', DEFAULT_INTERVAL)
    if not isinstance(interval, int) or isinstance(interval, bool) or interval <= 0:
        raise ConfigurationError("'Interval' must be a positive number of seconds")

    if raw.get('Metrics'):
        metrics = _parse_metrics(raw['Metrics'])
    else:
        metrics = default_metric_requests()

    options = raw.get('CONFIG') or {}
    if not isinstance(options, dict):
        raise ConfigurationError("'CONFIG' must be an object")
    batch_morlist_size = options.get('BATCH_MORLIST_SIZE')
    if batch_morlist_size is None:
        batch_morlist_size = BATCH_MORLIST_SIZE
    # 0 means every entity in one QueryPerf call
    if not isinstance(batch_morlist_size, int) or isinstance(batch_morlist_size, bool) or batch_morlist_size < 0:
        raise ConfigurationError("'BATCH_MORLIST_SIZE' must be a non-negative integer")

    return Configuration(
        vcenters=[_parse_vcenter(vcenter, index) for index, vcenter in enumerate(vcenters)],
        influxdb=_parse_influxdb(raw['InfluxDB']),
        metrics=metrics,
        interval=interval,
        domain=raw.get('Domain') or "",
        ssl_verify=str(options['SSL_VERIFY']) if options.get('SSL_VERIFY') is not None else 'False',
        ssl_capath=options.get('SSL_CAPATH'),
        batch_morlist_size=batch_morlist_size,
    )


def load_config(path):
    try:
        with open(path, 'r') as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError("Unable to read {}: {}".format(path, e))
    return parse_config(raw)
