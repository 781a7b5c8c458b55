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

__all__ = ["check_intent", "is_command_complete", "compute_slewing"]

import math

from lsst.ts import utils

from .enums import CommandIntent, DomeState, ShutterStatus, WatchdogResult


def _check_shutter(shutter_status, done_status, moving_status):
    if shutter_status == done_status:
        return WatchdogResult.SUCCESS
    elif shutter_status == moving_status:
        return WatchdogResult.IN_PROGRESS
    elif shutter_status == ShutterStatus.ERROR:
        return WatchdogResult.ERROR
    return WatchdogResult.FAILURE


def check_intent(intent, state, target_azimuth=None, tolerance=1.0):
    """Judge the progress of an action from the device state.

    Parameters
    ----------
    intent : `CommandIntent`
        The action.
    state : `DeviceState` or `dict`
        Device state, or a snapshot of it.
    target_azimuth : `float` or `None`
        Requested azimuth (deg); only used for `CommandIntent.SLEW_AZIMUTH`.
    tolerance : `float`
        Maximum azimuth error for a slew to be done (deg).

    Returns
    -------
    result : `WatchdogResult`
        Never `WatchdogResult.TIMEOUT`.

    Notes
    -----
    Exactly one intent is evaluated; for example a close-shutter intent
    is never judged by the azimuth of the dome. The result depends only
    on the arguments, so repeated calls with the same state agree.
    """
    if isinstance(state, dict):
        fields = state
    else:
        fields = state.snapshot()
    dome_state = fields["dome_state"]
    shutter_status = fields["shutter_status"]

    if intent == CommandIntent.NONE:
        return WatchdogResult.SUCCESS
    elif intent == CommandIntent.OPEN_SHUTTER:
        return _check_shutter(shutter_status, ShutterStatus.OPEN, ShutterStatus.OPENING)
    elif intent == CommandIntent.CLOSE_SHUTTER:
        return _check_shutter(
            shutter_status, ShutterStatus.CLOSED, ShutterStatus.CLOSING
        )
    elif intent == CommandIntent.GO_HOME:
        if dome_state == DomeState.IDLE and fields["at_home"]:
            return WatchdogResult.SUCCESS
        return WatchdogResult.IN_PROGRESS
    elif intent == CommandIntent.PARK:
        if dome_state == DomeState.IDLE and fields["at_park"]:
            return WatchdogResult.SUCCESS
        return WatchdogResult.IN_PROGRESS
    elif intent == CommandIntent.SLEW_AZIMUTH:
        if target_azimuth is None:
            raise ValueError("target_azimuth is required to check a slew")
        azimuth = fields["azimuth"]
        if math.isnan(azimuth):
            return WatchdogResult.IN_PROGRESS
        in_position = abs(utils.angle_diff(azimuth, target_azimuth).deg) <= tolerance
        if dome_state == DomeState.IDLE and in_position:
            return WatchdogResult.SUCCESS
        elif dome_state == DomeState.MOVING or not in_position:
            return WatchdogResult.IN_PROGRESS
        return WatchdogResult.FAILURE
    raise ValueError(f"Unsupported intent {intent!r}")


def is_command_complete(intent, state, target_azimuth=None, tolerance=1.0):
    """Return True if ``intent`` has been achieved."""
    result = check_intent(
        intent, state, target_azimuth=target_azimuth, tolerance=tolerance
    )
    return result == WatchdogResult.SUCCESS


def compute_slewing(dome_state, shutter_status, force_busy):
    """Compute the slewing property.

    The dome is slewing unless it is idle and the shutter is fully open
    or fully closed; it is always slewing while ``force_busy`` is set.
    """
    if force_busy:
        return True
    stationary = dome_state == DomeState.IDLE and shutter_status in (
        ShutterStatus.OPEN,
        ShutterStatus.CLOSED,
    )
    return not stationary
