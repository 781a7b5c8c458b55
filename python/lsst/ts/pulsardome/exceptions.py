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

__all__ = [
    "ExpectedError",
    "NotConnectedError",
    "NoResponseError",
    "StatusParseError",
    "RetryTimeoutError",
    "ActionNotImplementedError",
]


class ExpectedError(Exception):
    """A request was refused for a known reason.

    Log these without a traceback.
    """


class NotConnectedError(ConnectionError):
    """The serial link is not open, or was closed while in use."""


class NoResponseError(OSError):
    """The controller sent nothing before the read timeout."""


class StatusParseError(ValueError):
    """A status reply is malformed or a field is out of range."""


class RetryTimeoutError(TimeoutError):
    """An operation did not succeed within the allowed attempts."""


class ActionNotImplementedError(NotImplementedError):
    """`DomeController.action` was called with an unsupported name."""
