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

__all__ = ["NUM_STATUS_FIELDS", "Status", "parse_flag_response"]

import math

from lsst.ts import utils

from .exceptions import StatusParseError

# Minimum number of tab-separated fields in a status record.
NUM_STATUS_FIELDS = 13


def parse(fields, index, name, cast, min_value=None, max_value=None):
    """Parse one field of a status record.

    Parameters
    ----------
    fields : `list` [`str`]
        Fields of the record.
    index : `int`
        Index of the field to parse.
    name : `str`
        Name of the field, for error messages.
    cast : `callable`
        Function to convert the string, e.g. `int` or `float`.
    min_value : `float` or `None`
        Minimum allowed value (inclusive), or None for no limit.
    max_value : `float` or `None`
        Maximum allowed value (inclusive), or None for no limit.

    Returns
    -------
    value : `int` or `float`
        The parsed value.

    Raises
    ------
    StatusParseError
        If the field cannot be converted or is not a finite value in range.
    """
    text = fields[index].strip()
    try:
        value = cast(text)
    except ValueError:
        raise StatusParseError(f"Could not parse {name}={text!r} as {cast.__name__}")
    if isinstance(value, float) and not math.isfinite(value):
        raise StatusParseError(f"{name}={text!r} is not finite")
    if min_value is not None and value < min_value:
        raise StatusParseError(f"{name}={value} < {min_value}")
    if max_value is not None and value > max_value:
        raise StatusParseError(f"{name}={value} > {max_value}")
    return value


def parse_flag_response(raw):
    """Parse the reply to "HOME ?" or "PARK ?".

    Parameters
    ----------
    raw : `str`
        Raw reply, which may contain several lines.

    Returns
    -------
    flag : `bool`
        True for a line reading "1", False for "0".

    Raises
    ------
    StatusParseError
        If no line reads "0" or "1".
    """
    for line in (raw or "").splitlines():
        trimmed = line.strip()
        if trimmed == "1":
            return True
        elif trimmed == "0":
            return False
    raise StatusParseError(f"Unexpected flag reply {raw!r}")


class Status:
    """Parsed data of one status record, the reply to "V".

    Parameters
    ----------
    line : `str`
        One line of tab-separated fields.

    Raises
    ------
    StatusParseError
        If the line has too few fields or any field is invalid.
        No attribute is set unless every field is valid.
    """

    def __init__(self, line):
        fields = line.strip().split("\t")
        if len(fields) < NUM_STATUS_FIELDS:
            raise StatusParseError(
                f"Got {len(fields)} fields; need at least {NUM_STATUS_FIELDS}"
            )

        azimuth = parse(fields, 0, "azimuth", float, 0, 360)
        dome_state = parse(fields, 1, "dome_state", int, 0, 9)
        rotation = parse(fields, 2, "rotation", float)
        target_azimuth_raw = parse(fields, 3, "target_azimuth", float, -179, 539)
        motor_direction = parse(fields, 4, "motor_direction", int, 0, 2)
        shutter_status = parse(fields, 5, "shutter_status", int, 0, 6)
        shutter_percentage = parse(fields, 6, "shutter_percentage", int, 0, 1000)
        shutter_voltage = parse(fields, 7, "shutter_voltage", int)
        shutter_current = parse(fields, 8, "shutter_current", int)
        encoder = parse(fields, 9, "encoder", int)
        temperature = parse(fields, 10, "temperature", int)
        # Field 11 is not used.
        relay = parse(fields, 12, "relay", int, 0, 1)

        self.azimuth = azimuth
        self.dome_state = dome_state
        self.rotation = rotation
        self.target_azimuth_raw = target_azimuth_raw
        self.target_azimuth = utils.angle_wrap_nonnegative(target_azimuth_raw).deg
        self.motor_direction = motor_direction
        self.shutter_status = shutter_status
        self.shutter_percentage = shutter_percentage
        self.shutter_voltage = shutter_voltage
        self.shutter_current = shutter_current
        self.encoder = encoder
        self.temperature = temperature
        self.relay = relay == 1

    @classmethod
    def from_response(cls, raw):
        """Parse the first valid status record in a raw reply.

        Parameters
        ----------
        raw : `str`
            Raw reply to "V", which may contain stray lines.

        Raises
        ------
        StatusParseError
            If no line is a valid status record.
        """
        lines = [line for line in (raw or "").splitlines() if line.strip()]
        errors = []
        for line in lines:
            try:
                return cls(line)
            except StatusParseError as e:
                errors.append(str(e))
        raise StatusParseError(
            f"No valid status record in {len(lines)} line(s) of {raw!r}: {errors}"
        )

    def __repr__(self):
        return (
            f"Status(azimuth={self.azimuth}, dome_state={self.dome_state}, "
            f"target_azimuth={self.target_azimuth}, "
            f"shutter_status={self.shutter_status}, relay={self.relay})"
        )
