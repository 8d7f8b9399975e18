#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import json
import logging
import sys

import yaml


LOG_FORMAT = '[%(asctime).19s] [%(name)s] [%(levelname)s] %(message)s'

DEFAULTS = {
    'nats_url': 'nats://localhost:4222',
    'log_level': 'info',
    'log_file': None,
}


class RobustFileHandler(logging.FileHandler):
    """FileHandler that gracefully handles flush errors on Windows"""

    def flush(self):
        """Flush the stream, catching OSError on Windows file handles"""
        try:
            super().flush()
        except OSError as e:
            # EINVAL from a Windows handle in an inconsistent state
            if e.errno != 22:
                raise


def configure_logger(logger,
                     log_file=None,
                     log_format=None,
                     log_level=logging.INFO):
    """Configure a logger with a file or stream handler

    Args:
        logger: Logger instance or logger name string
        log_file: File path string or file-like object (None for stderr)
        log_format: Format string for log messages
        log_level: Logging level (e.g., logging.INFO, logging.DEBUG)

    Returns:
        Configured logger instance
    """
    if isinstance(log_file, str):
        handler = RobustFileHandler(
            log_file,
            mode='a',
            encoding='utf-8',
            errors='replace'
        )
    else:
        handler = logging.StreamHandler(log_file)  # Default to stderr if None

    if isinstance(logger, str):
        logger = logging.getLogger(logger)

    handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(handler)
    logger.setLevel(log_level)

    return logger


def parse_log_level(name):
    """Map 'debug'/'info'/... to the logging constant

    Raises:
        ValueError: For an unknown level name
    """
    level = logging.getLevelName(str(name).upper())
    if not isinstance(level, int):
        raise ValueError(f'Unknown log level: {name}')
    return level


def load_config_file(config_file):
    """Load a JSON or YAML configuration file

    The format is picked from the extension (.yaml/.yml, anything else is
    read as JSON).

    Returns:
        Configuration dictionary with DEFAULTS filled in

    Raises:
        ValueError: If the file does not hold a mapping
    """
    with open(config_file, 'r', encoding='utf-8') as fp:
        if config_file.endswith(('.yaml', '.yml')):
            conf = yaml.safe_load(fp)
        else:
            conf = json.load(fp)

    if conf is None:
        conf = {}
    if not isinstance(conf, dict):
        raise ValueError(f'{config_file}: top level must be a mapping')

    return {**DEFAULTS, **conf}


def get_config(config_file=None):
    """Load configuration and set up logging

    Args:
        config_file: Path to the config file; taken from the command line
                     when omitted

    Returns:
        Full configuration dictionary

    Exits:
        Exits with status 1 if no config file was given
    """
    if config_file is None:
        if len(sys.argv) != 2:
            print('usage: %s <config file>' % sys.argv[0], file=sys.stderr)
            sys.exit(1)
        config_file = sys.argv[1]

    conf = load_config_file(config_file)
    log_level = parse_log_level(conf['log_level'])

    logging.basicConfig(level=log_level, format=LOG_FORMAT)
    if conf['log_file']:
        configure_logger(logging.getLogger(), conf['log_file'], LOG_FORMAT, log_level)

    return conf
