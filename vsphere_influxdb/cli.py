import argparse
import logging
import sys
from datetime import datetime

from vsphere_influxdb.collector import run
from vsphere_influxdb.config import DEFAULT_CONFIG_FILE, ConfigurationError, load_config

LOGGER_NAME = "vsphere_influxdb"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logger(log_file_prefix, debug=False):
    level = logging.DEBUG if debug else logging.INFO
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    if log_file_prefix:
        logfilename = log_file_prefix + "_" + str(datetime.now().timestamp()) + ".log"
        fh = logging.FileHandler(logfilename)
        fh.setLevel(level)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(formatter)
    logger.addHandler(sh)
    return logger


def setup_args(argv=None):
    parser = argparse.ArgumentParser(description='Send vSphere performance metrics to InfluxDB')

    parser.add_argument('-c', '--config',
                        required=False,
                        action='store',
                        help='Configuration file, default ' + DEFAULT_CONFIG_FILE,
                        default=DEFAULT_CONFIG_FILE)

    parser.add_argument('-d', '--debug',
                        required=False,
                        action='store_true',
                        help='Debug mode', default=False)

    parser.add_argument('-l', '--log_file_prefix',
                        required=False,
                        action='store',
                        help='Log File prefix, logs only go to stderr when empty.', default='')

    parser.add_argument('-pK', '--key',
                        required=False,
                        action='store',
                        help='Encryption Key of the vCenter passwords', default=None)

    return parser.parse_args(argv)


def main(argv=None):
    args = setup_args(argv)
    logger = setup_logger(args.log_file_prefix, args.debug)
    logger.info("Starting vsphere-influxdb")

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.critical(str(e))
        sys.exit(str(e))

    failures = run(config, logger, key=args.key, debug=args.debug)
    if failures and failures == len(config.vcenters):
        logger.critical("All {} vCenters failed".format(failures))
        sys.exit(1)
    logger.info("Process complete.")
