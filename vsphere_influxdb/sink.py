import logging

import requests
from influxdb import InfluxDBClient
from influxdb.exceptions import InfluxDBClientError, InfluxDBServerError
from urllib.parse import urlparse

TIME_PRECISION = 's'
DEFAULT_INFLUXDB_PORT = 8086


class SinkError(Exception):
    pass


def record_to_point(record):
    return {
        "measurement": record.measurement,
        "tags": dict(record.tags),
        "fields": dict(record.fields),
        "time": record.timestamp,
    }


def client_from_config(influx_config):
    """
    Create an InfluxDBClient from the InfluxDB config section. Hostname is an
    address like http://influx.example.com:8086, a bare host name is accepted too.
    """
    address = influx_config.hostname
    if "://" not in address:
        address = "http://" + address
    url = urlparse(address)
    return InfluxDBClient(
        host=url.hostname,
        port=url.port or DEFAULT_INFLUXDB_PORT,
        username=influx_config.username,
        password=influx_config.password,
        database=influx_config.database,
        ssl=url.scheme == "https",
        path=url.path.strip("/"),
    )


class InfluxDBSink:
    """
    Writes the records of one collection target as a single batch.
    Failures are raised as SinkError, there is no retry and no partial write.
    """

    def __init__(self, influx_config, logger=None, client=None):
        self.database = influx_config.database
        self.logger = logger or logging.getLogger(__name__)
        self.client = client or client_from_config(influx_config)

    def write(self, records):
        points = [record_to_point(record) for record in records]
        if not points:
            self.logger.info("No points to send to InfluxDB")
            return False
        try:
            self.client.write_points(points, time_precision=TIME_PRECISION, database=self.database)
        except (InfluxDBClientError, InfluxDBServerError, requests.exceptions.RequestException) as e:
            raise SinkError("Writing {} points to InfluxDB failed: {}".format(len(points), e))
        self.logger.info("Sent {} points to InfluxDB".format(len(points)))
        return True

    def close(self):
        self.client.close()
