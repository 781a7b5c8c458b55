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
    "format_notification",
    "BaseNotifier",
    "LogNotifier",
    "BasePublisher",
    "LogPublisher",
    "Topics",
    "safe_publish",
]

import abc
import logging

from .enums import NotifyType

# Timeout field used for notification types that do not take a timeout.
_FIXED_TIMEOUTS = {
    NotifyType.ALARM: 0,
    NotifyType.STOP: -1,
    NotifyType.CEASE: -2,
}


def format_notification(notify_type, message="", timeout=None):
    """Format an operator notification.

    Parameters
    ----------
    notify_type : `NotifyType`
        Kind of notification.
    message : `str`
        Message text. "|" is replaced with "¦", and surrounding
        whitespace and trailing periods are removed.
    timeout : `int` or `None`
        Time by which a new action should be done (sec);
        only used for `NotifyType.NEW`.

    Returns
    -------
    formatted : `str`
        "type|message" for `NotifyType.MESSAGE`, else "type|message|timeout".
    """
    safe_message = (message or "").replace("|", "¦").strip().rstrip(".")
    action = notify_type.value
    if notify_type == NotifyType.MESSAGE:
        return f"{action}|{safe_message}"
    elif notify_type == NotifyType.NEW:
        return f"{action}|{safe_message}|{int(timeout or 0)}"
    return f"{action}|{safe_message}|{_FIXED_TIMEOUTS[notify_type]}"


class BaseNotifier(abc.ABC):
    """Sink for operator notifications."""

    @abc.abstractmethod
    def notify(self, notify_type, message="", timeout=None):
        """Send a notification.

        Must not raise for delivery failures.
        """
        raise NotImplementedError()


class LogNotifier(BaseNotifier):
    """Notifier that writes formatted notifications to a log."""

    def __init__(self, log=None):
        parent_log = log if log is not None else logging.getLogger(__name__)
        self.log = parent_log.getChild(type(self).__name__)

    def notify(self, notify_type, message="", timeout=None):
        formatted = format_notification(notify_type, message, timeout)
        if notify_type == NotifyType.ALARM:
            self.log.error(formatted)
        else:
            self.log.info(formatted)


class BasePublisher(abc.ABC):
    """Sink for published status topics."""

    @property
    @abc.abstractmethod
    def connected(self):
        raise NotImplementedError()

    @abc.abstractmethod
    def publish(self, topic, payload):
        raise NotImplementedError()


class LogPublisher(BasePublisher):
    """Publisher that writes each message to a log at debug level."""

    def __init__(self, log=None):
        parent_log = log if log is not None else logging.getLogger(__name__)
        self.log = parent_log.getChild(type(self).__name__)

    @property
    def connected(self):
        return True

    def publish(self, topic, payload):
        self.log.debug(f"{topic}: {payload}")


class Topics:
    """Names of the published topics.

    Parameters
    ----------
    prefix : `str`
        Prefix for all topics, e.g. "Dome".
    """

    def __init__(self, prefix="Dome"):
        self.driver_status = f"{prefix}/DriverStatus"
        self.dome_status = f"{prefix}/Dome/Status"
        self.shutter_status = f"{prefix}/Shutter/Status"
        self.alarm = f"{prefix}/Alarm"
        self.watchdog = f"{prefix}/Watchdog"


def safe_publish(publisher, topic, payload, log):
    """Publish a message if the publisher is connected; never raise.

    Returns
    -------
    published : `bool`
        True if the message was handed to the publisher.
    """
    if publisher is None or not topic:
        return False
    try:
        if not publisher.connected:
            log.debug(f"Publisher not connected; skipped {topic}: {payload}")
            return False
        publisher.publish(topic, payload)
        return True
    except Exception as e:
        log.warning(f"Could not publish {topic}: {payload}: {e!r}")
        return False
