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

__all__ = ["DeviceState", "CoordinationFlags", "ResetAttempt", "ResetAttempts"]

import dataclasses
import math
import threading

from .enums import DomeState, ResetKind, ShutterStatus


@dataclasses.dataclass
class DeviceState:
    """Last known state of the dome, as reported by the controller.

    Fields are written by the status poller (and by the optimistic update
    that follows an acknowledged command). Readers should use `snapshot`
    or the individual attributes; a parsed record is applied atomically
    under `lock`, so a snapshot never mixes two records.
    """

    azimuth: float = math.nan
    dome_state: int = DomeState.UNKNOWN
    rotation: float = 0.0
    target_azimuth_raw: float = math.nan
    target_azimuth: float = math.nan
    motor_direction: int = 0
    shutter_status: int = ShutterStatus.UNKNOWN
    shutter_percentage: int = 0
    shutter_voltage: int = 0
    shutter_current: int = 0
    encoder: int = 0
    temperature: int = 0
    relay: bool = False
    at_home: bool = False
    at_park: bool = False
    slewing: bool = False
    lock: threading.Lock = dataclasses.field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def apply_status(self, status, **kwargs):
        """Copy every field of a parsed `Status` into this state.

        Parameters
        ----------
        status : `Status`
            Parsed status record.
        **kwargs
            Other fields to set at the same time, e.g. ``at_home``.
        """
        self._check_names(kwargs)
        with self.lock:
            for name, value in kwargs.items():
                setattr(self, name, value)
            self.azimuth = status.azimuth
            self.dome_state = DomeState.from_code(status.dome_state)
            self.rotation = status.rotation
            self.target_azimuth_raw = status.target_azimuth_raw
            self.target_azimuth = status.target_azimuth
            self.motor_direction = status.motor_direction
            self.shutter_status = ShutterStatus(status.shutter_status)
            self.shutter_percentage = status.shutter_percentage
            self.shutter_voltage = status.shutter_voltage
            self.shutter_current = status.shutter_current
            self.encoder = status.encoder
            self.temperature = status.temperature
            self.relay = status.relay

    def update(self, **kwargs):
        """Set one or more fields atomically.

        Raises
        ------
        AttributeError
            If a name is not a field.
        """
        self._check_names(kwargs)
        with self.lock:
            for name, value in kwargs.items():
                setattr(self, name, value)

    def _check_names(self, kwargs):
        names = {field.name for field in dataclasses.fields(self)} - {"lock"}
        unknown = set(kwargs) - names
        if unknown:
            raise AttributeError(f"Unknown DeviceState fields: {sorted(unknown)}")

    def snapshot(self):
        """Return a consistent copy of all fields as a `dict`."""
        with self.lock:
            return {
                field.name: getattr(self, field.name)
                for field in dataclasses.fields(self)
                if field.name != "lock"
            }


@dataclasses.dataclass
class CoordinationFlags:
    """Flags shared by the components of a `DomeController`.

    Attributes
    ----------
    command_in_progress : `bool`
        A serial transaction is on the wire.
    rebooting : `bool`
        The controller is rebooting after a soft reset.
    resetting : `bool`
        A reset is being carried out.
    force_busy : `bool`
        Report the dome as slewing regardless of its status.
    controller_ready : `bool`
        The last status poll succeeded.
    slewing_status : `bool`
        Last computed value of the slewing property.
    polling_active : `bool`
        The status poller is running.
    system_watchdog_running : `bool`
        The system watchdog monitor is running.
    action_watchdog_running : `bool`
        An action watchdog is running.
    """

    command_in_progress: bool = False
    rebooting: bool = False
    resetting: bool = False
    force_busy: bool = False
    controller_ready: bool = False
    slewing_status: bool = False
    polling_active: bool = False
    system_watchdog_running: bool = False
    action_watchdog_running: bool = False


@dataclasses.dataclass
class ResetAttempt:
    kind: ResetKind
    attempted: bool = False
    succeeded: bool = False


@dataclasses.dataclass
class ResetAttempts:
    """Outcome of the resets tried in one recovery."""

    soft: ResetAttempt = dataclasses.field(
        default_factory=lambda: ResetAttempt(ResetKind.SOFT)
    )
    hard: ResetAttempt = dataclasses.field(
        default_factory=lambda: ResetAttempt(ResetKind.HARD)
    )

    @property
    def any_succeeded(self):
        return self.soft.succeeded or self.hard.succeeded
