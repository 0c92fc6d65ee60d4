# MIT License
#
# Copyright (c) 2025 RNS MAVLink Bridge Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Bridge configuration files.

Files use Reticulum's own "key = value" format and are parsed with the
ConfigObj copy bundled in RNS. Every value is validated here so a bad file
stops the process before the mesh or the serial port are touched.

Example fc.conf:

    log_level = info
    serial_port = /dev/ttyACM0
    serial_baud = 115200
    gc_destination = 2f9a1bd44ef7f1c8a6c3a6b2d4e19f07
"""

import RNS
from RNS.vendor.configobj import ConfigObj

from rns_mavlink.errors import ConfigurationError
from rns_mavlink.link_tracker import parse_address_hash
from rns_mavlink.udp_endpoint import parse_socket_address


LOG_LEVELS = {
    "critical": RNS.LOG_CRITICAL,
    "error": RNS.LOG_ERROR,
    "warning": RNS.LOG_WARNING,
    "warn": RNS.LOG_WARNING,
    "notice": RNS.LOG_NOTICE,
    "info": RNS.LOG_INFO,
    "verbose": RNS.LOG_VERBOSE,
    "debug": RNS.LOG_DEBUG,
    "extreme": RNS.LOG_EXTREME,
    "trace": RNS.LOG_EXTREME,
}

# Newer Reticulum releases add a path-table level between debug and extreme
if hasattr(RNS, "LOG_PATHING"):
    LOG_LEVELS["pathing"] = RNS.LOG_PATHING


def parse_log_level(value):
    """Convert a level name or number to an RNS log level."""
    if isinstance(value, int):
        level = value
    else:
        text = str(value).strip().lower()
        if text in LOG_LEVELS:
            return LOG_LEVELS[text]
        try:
            level = int(text)
        except ValueError:
            raise ConfigurationError(f"unknown log level {value!r}") from None

    if not RNS.LOG_CRITICAL <= level <= RNS.LOG_EXTREME:
        raise ConfigurationError(f"log level {level} out of range "
                                 f"{RNS.LOG_CRITICAL}-{RNS.LOG_EXTREME}")
    return level


def _required(c, key):
    value = c.get(key)
    if value is None or str(value).strip() == "":
        raise ConfigurationError(f"missing required setting '{key}'")
    return value


def _int(c, key, default):
    value = c.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"setting '{key}' must be an integer, got {value!r}") from None


def _float(c, key, default):
    value = c.get(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"setting '{key}' must be a number, got {value!r}") from None


class FlightControllerConfig:
    """Settings for the aircraft end (serial port side)."""

    def __init__(self, configuration):
        c = configuration
        self.log_level = parse_log_level(c.get("log_level", "info"))
        self.serial_port = str(_required(c, "serial_port"))
        self.serial_baud = _int(c, "serial_baud", 115200)
        if self.serial_baud <= 0:
            raise ConfigurationError(f"serial_baud must be positive, got {self.serial_baud}")
        self.gc_destination = parse_address_hash(_required(c, "gc_destination"))
        self.identity_path = c.get("identity_path", None)


class GroundControlConfig:
    """Settings for the ground end (UDP side)."""

    def __init__(self, configuration):
        c = configuration
        self.log_level = parse_log_level(c.get("log_level", "info"))

        qgc_udp_address = c.get("qgc_udp_address", None)
        if qgc_udp_address is None or str(qgc_udp_address).strip() == "":
            self.qgc_udp_address = None
        else:
            try:
                self.qgc_udp_address = parse_socket_address(str(qgc_udp_address))
            except ValueError as e:
                raise ConfigurationError(f"invalid qgc_udp_address {qgc_udp_address!r}: {e}") from e

        _required(c, "qgc_reply_port")
        self.qgc_reply_port = _int(c, "qgc_reply_port", None)
        if not 0 < self.qgc_reply_port < 65536:
            raise ConfigurationError(f"qgc_reply_port out of range: {self.qgc_reply_port}")

        self.fc_destination = parse_address_hash(_required(c, "fc_destination"))
        self.announce_interval = _float(c, "announce_interval", 1.0)
        if self.announce_interval <= 0:
            raise ConfigurationError(f"announce_interval must be positive, got {self.announce_interval}")
        self.identity_path = c.get("identity_path", None)


def load_config(path, config_class):
    """
    Read and validate a config file.

    Args:
        path: Path to the config file
        config_class: FlightControllerConfig or GroundControlConfig

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid
    """
    try:
        configuration = ConfigObj(path, file_error=True)
    except (IOError, OSError) as e:
        raise ConfigurationError(f"cannot read config file {path}: {e}") from e
    except Exception as e:
        raise ConfigurationError(f"cannot parse config file {path}: {e}") from e

    return config_class(configuration)
