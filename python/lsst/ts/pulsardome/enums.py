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
    "ErrorCode",
    "DomeState",
    "ShutterStatus",
    "CommandIntent",
    "WatchdogResult",
    "ResetKind",
    "ResponseMode",
    "NotifyType",
]

import enum


class ErrorCode(enum.IntEnum):
    """Codes reported with the latched alarm."""

    SERIAL_CONNECT_ERROR = 1
    SERIAL_READ_ERROR = 2
    CANNOT_START_MOCK_CONTROLLER = 3
    POLLING_FAILED = 4
    RESET_FAILED = 5
    HEARTBEAT_LOST = 6


class DomeState(enum.IntEnum):
    """Rotation state reported in field 1 of the status record."""

    IDLE = 0
    MOVING = 1
    FINDING_HOME = 9
    UNKNOWN = -1

    @classmethod
    def from_code(cls, code):
        """Convert a raw state code (0-9) to a `DomeState`.

        Codes without a specific meaning map to ``UNKNOWN``.
        """
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN


class ShutterStatus(enum.IntEnum):
    OPEN = 0
    CLOSED = 1
    OPENING = 2
    CLOSING = 3
    ERROR = 4
    UNKNOWN = 5
    NOT_FITTED = 6


class CommandIntent(enum.Enum):
    """The user action currently being carried out."""

    NONE = enum.auto()
    CLOSE_SHUTTER = enum.auto()
    OPEN_SHUTTER = enum.auto()
    GO_HOME = enum.auto()
    PARK = enum.auto()
    SLEW_AZIMUTH = enum.auto()


class WatchdogResult(enum.Enum):
    """Outcome of an action, as judged by an `ActionWatchdog`."""

    IN_PROGRESS = enum.auto()
    SUCCESS = enum.auto()
    FAILURE = enum.auto()
    TIMEOUT = enum.auto()
    ERROR = enum.auto()


class ResetKind(enum.Enum):
    """Which reset(s) a recovery may try.

    The values are the action names accepted by
    `DomeController.action`.
    """

    FULL = "Full Reset"
    SOFT = "Soft Reset"
    HARD = "Hard Reset"


class ResponseMode(enum.Enum):
    """How to judge the reply to a command.

    * BLIND: send and do not read a reply.
    * RAW: any reply is acceptable.
    * MATCH_EXACT: the trimmed reply must equal the expected text.
    * MATCH_ANY: the trimmed reply must equal one of the expected texts.

    Comparisons ignore case.
    """

    BLIND = enum.auto()
    RAW = enum.auto()
    MATCH_EXACT = enum.auto()
    MATCH_ANY = enum.auto()


class NotifyType(enum.Enum):
    """Kinds of operator notification.

    The value is the action code used in the formatted message.
    """

    MESSAGE = "message"
    NEW = "new"
    ALARM = "alarm"
    STOP = "stop"
    CEASE = "cease"
