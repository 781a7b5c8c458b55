# This file is part of ts_pulsardome.
#
# Developed for Vera C. Rubin Observatory Telescope and Site Systems.
# This product includes software developed by the LSST Project
# (https://www.lsst.org).
# See the COPYRIGHT file at the top-level directory of this distribution
# for details of code ownership.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

__all__ = ["CONFIG_SCHEMA", "make_config", "load_config"]

import types

import jsonschema
import yaml

CONFIG_SCHEMA = yaml.safe_load(
    """
$schema: http://json-schema.org/draft-07/schema#
$id: https://github.com/lsst-ts/ts_pulsardome/blob/main/python/lsst/ts/pulsardome/config_schema.py
# title must end with one or more spaces followed by the schema version, which must begin with "v"
title: PulsarDome v1
description: Schema for Pulsar dome controller configuration files
type: object
properties:
  serial_port:
    description: >-
      Serial port name or pyserial URL, e.g. /dev/ttyUSB0 or socket://host:port.
      Ignored in simulation mode.
    type: string
    default: ""
  baud_rate:
    description: Serial baud rate
    type: integer
    exclusiveMinimum: 0
    default: 115200
  read_timeout:
    description: Time limit for a complete reply from the controller (sec)
    type: number
    exclusiveMinimum: 0
    default: 0.75
  quiet_window:
    description: >-
      Time with no new bytes, after a line terminator has been seen,
      that ends a reply (sec)
    type: number
    exclusiveMinimum: 0
    default: 0.05
  serial_settle:
    description: Delay before each check for stale input (sec)
    type: number
    minimum: 0
    default: 0.06
  flush_attempts:
    description: Maximum number of stale-input discards before each write
    type: integer
    minimum: 1
    default: 3
  polling_interval:
    description: >-
      Delay between status polls (sec); clamped to the range [0.05, 10]
    type: number
    exclusiveMinimum: 0
    default: 0.5
  controller_timeout:
    description: >-
      Time limit for the controller to become ready, and for the status
      poller to wait out a command or reboot before it starts (sec)
    type: number
    exclusiveMinimum: 0
    default: 10
  status_max_retries:
    description: Number of attempts for each status query
    type: integer
    minimum: 1
    default: 2
  send_verify_max_retries:
    description: Number of attempts to send a command and verify its reply
    type: integer
    minimum: 1
    default: 3
  retry_delay:
    description: Delay between attempts of a retried operation (sec)
    type: number
    minimum: 0
    default: 0.1
  polling_max_errors:
    description: >-
      Number of consecutive failed status polls that is treated as a
      driver failure
    type: integer
    minimum: 1
    default: 5
  connect_attempts:
    description: Number of ping attempts when connecting
    type: integer
    minimum: 1
    default: 2
  shutter_timeout:
    description: Time limit for opening or closing the shutter (sec)
    type: number
    exclusiveMinimum: 0
    default: 90
  rotation_timeout:
    description: Time limit for a slew, homing or parking (sec)
    type: number
    exclusiveMinimum: 0
    default: 90
  azimuth_tolerance:
    description: Maximum azimuth error for a slew to count as done (deg)
    type: number
    exclusiveMinimum: 0
    default: 1.0
  jog_size:
    description: >-
      Slews no larger than this do not send a "new action" notification (deg)
    type: number
    minimum: 0
    default: 10
  soft_reset_enabled:
    description: Try a soft reset (RESTART command) when an action fails?
    type: boolean
    default: true
  hard_reset_enabled:
    description: Try a hard reset (power cycle) when an action fails?
    type: boolean
    default: false
  reset_executable:
    description: >-
      Program that switches controller power, for a hard reset.
      Blank if there is none.
    type: string
    default: ""
  reset_off_parameters:
    description: Command-line arguments for reset_executable to switch power off
    type: string
    default: ""
  reset_on_parameters:
    description: Command-line arguments for reset_executable to switch power on
    type: string
    default: ""
  cycle_delay:
    description: Time to leave the power off during a hard reset (sec)
    type: number
    minimum: 0
    default: 10
  reset_delay:
    description: Time for the controller to boot after power is restored (sec)
    type: number
    minimum: 0
    default: 30
  shutter_ready_timeout:
    description: >-
      Time limit for the shutter link to come back after a reset (sec)
    type: number
    exclusiveMinimum: 0
    default: 30
  shutter_ready_interval:
    description: Delay between checks of the shutter link after a reset (sec)
    type: number
    exclusiveMinimum: 0
    default: 1
  shutter_settle:
    description: Extra time for the shutter link to settle once it is back (sec)
    type: number
    minimum: 0
    default: 5
  supervisor_stop_timeout:
    description: >-
      Time limit for the background monitors to stop before a reset (sec)
    type: number
    exclusiveMinimum: 0
    default: 5
  system_watchdog_interval:
    description: Delay between system watchdog checks (sec)
    type: number
    exclusiveMinimum: 0
    default: 5
  polling_stall_threshold:
    description: >-
      Time since the last status poll after which the poller is restarted (sec)
    type: number
    exclusiveMinimum: 0
    default: 10
  alarm_check_interval:
    description: Delay between alarm monitor checks (sec)
    type: number
    exclusiveMinimum: 0
    default: 5
  alarm_timeout:
    description: >-
      Time without a system watchdog heartbeat after which the alarm is raised (sec)
    type: number
    exclusiveMinimum: 0
    default: 60
  watchdog_tick:
    description: Delay between checks made by an action watchdog (sec)
    type: number
    exclusiveMinimum: 0
    default: 0.25
  mqtt_topic_prefix:
    description: Prefix for published topics
    type: string
    default: Dome
required:
  - serial_port
  - baud_rate
  - read_timeout
  - quiet_window
  - serial_settle
  - flush_attempts
  - polling_interval
  - controller_timeout
  - status_max_retries
  - send_verify_max_retries
  - retry_delay
  - polling_max_errors
  - connect_attempts
  - shutter_timeout
  - rotation_timeout
  - azimuth_tolerance
  - jog_size
  - soft_reset_enabled
  - hard_reset_enabled
  - reset_executable
  - reset_off_parameters
  - reset_on_parameters
  - cycle_delay
  - reset_delay
  - shutter_ready_timeout
  - shutter_ready_interval
  - shutter_settle
  - supervisor_stop_timeout
  - system_watchdog_interval
  - polling_stall_threshold
  - alarm_check_interval
  - alarm_timeout
  - watchdog_tick
  - mqtt_topic_prefix
additionalProperties: false
"""
)


def make_config(data=None, **kwargs):
    """Make a validated configuration.

    Parameters
    ----------
    data : `dict` or `None`
        Configuration data; missing fields get the schema default.
    **kwargs
        Overrides for individual fields; applied after ``data``.

    Returns
    -------
    config : `types.SimpleNamespace`
        The configuration, one attribute per field.

    Raises
    ------
    jsonschema.exceptions.ValidationError
        If the configuration is not valid.
    """
    config_dict = dict() if data is None else dict(data)
    config_dict.update(kwargs)
    for name, item in CONFIG_SCHEMA["properties"].items():
        if "default" in item:
            config_dict.setdefault(name, item["default"])
    jsonschema.Draft7Validator(CONFIG_SCHEMA).validate(config_dict)
    return types.SimpleNamespace(**config_dict)


def load_config(path, **kwargs):
    """Read a YAML configuration file and return a validated configuration.

    An empty file gives the default configuration.
    """
    with open(path, "r") as f:
        data = yaml.safe_load(f)
    if data is None:
        data = dict()
    if not isinstance(data, dict):
        raise jsonschema.exceptions.ValidationError(
            f"Configuration file {path} does not contain a mapping"
        )
    return make_config(data, **kwargs)
