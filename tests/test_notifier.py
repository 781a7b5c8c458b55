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

import logging
import unittest

from lsst.ts import pulsardome
from lsst.ts.pulsardome import NotifyType


class RecordingPublisher(pulsardome.BasePublisher):
    def __init__(self, connected=True, fail=False):
        self.is_connected = connected
        self.fail = fail
        self.messages = []

    @property
    def connected(self):
        return self.is_connected

    def publish(self, topic, payload):
        if self.fail:
            raise RuntimeError("broker gone")
        self.messages.append((topic, payload))


class NotifierTestCase(unittest.TestCase):
    def test_format_notification(self):
        assert (
            pulsardome.format_notification(NotifyType.MESSAGE, " Soft Reset done. ")
            == "message|Soft Reset done"
        )
        assert (
            pulsardome.format_notification(NotifyType.NEW, "Dome parking", timeout=225)
            == "new|Dome parking|225"
        )
        assert (
            pulsardome.format_notification(NotifyType.ALARM, "a|b")
            == "alarm|a¦b|0"
        )
        assert pulsardome.format_notification(NotifyType.STOP, "done") == "stop|done|-1"
        assert (
            pulsardome.format_notification(NotifyType.CEASE, "aborted")
            == "cease|aborted|-2"
        )

    def test_log_notifier(self):
        notifier = pulsardome.LogNotifier(log=logging.getLogger("test"))
        with self.assertLogs("test", level=logging.INFO) as logs:
            notifier.notify(NotifyType.MESSAGE, "hello")
            notifier.notify(NotifyType.ALARM, "broken")
        assert logs.records[0].levelno == logging.INFO
        assert logs.records[0].getMessage() == "message|hello"
        assert logs.records[1].levelno == logging.ERROR

    def test_topics(self):
        topics = pulsardome.Topics("Obs")
        assert topics.driver_status == "Obs/DriverStatus"
        assert topics.dome_status == "Obs/Dome/Status"
        assert topics.shutter_status == "Obs/Shutter/Status"
        assert topics.alarm == "Obs/Alarm"
        assert topics.watchdog == "Obs/Watchdog"

    def test_safe_publish(self):
        log = logging.getLogger("test")
        publisher = RecordingPublisher()
        assert pulsardome.safe_publish(publisher, "Dome/Alarm", "x", log)
        assert publisher.messages == [("Dome/Alarm", "x")]

        assert not pulsardome.safe_publish(None, "Dome/Alarm", "x", log)
        assert not pulsardome.safe_publish(publisher, "", "x", log)
        assert not pulsardome.safe_publish(
            RecordingPublisher(connected=False), "Dome/Alarm", "x", log
        )
        assert not pulsardome.safe_publish(
            RecordingPublisher(fail=True), "Dome/Alarm", "x", log
        )


if __name__ == "__main__":
    unittest.main()
