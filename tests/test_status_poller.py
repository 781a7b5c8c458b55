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

import asyncio
import math
import unittest

import pytest
from lsst.ts import pulsardome

# Standard timeout (sec)
STD_TIMEOUT = 2

STATUS_LINE = "\t".join(
    ["210.5", "0", "0", "210.5", "0", "1", "0", "1320", "0", "0", "15", "0", "0"]
)


class FakeGuard:
    """Serial link guard stand-in with canned replies."""

    def __init__(self):
        self.is_ready = True
        self.replies = {"V": STATUS_LINE + "\r\n", "HOME ?": "0\r\n", "PARK ?": "1\r\n"}
        self.sent = []
        self.fail = False

    async def send(self, command, expect_response=True):
        self.sent.append(command)
        if self.fail:
            raise pulsardome.NoResponseError(f"No response to {command}")
        return self.replies[command]


class StatusPollerTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.state = pulsardome.DeviceState()
        self.flags = pulsardome.CoordinationFlags()
        self.config = pulsardome.make_config(
            polling_interval=0.05,
            retry_delay=0,
            status_max_retries=2,
            polling_max_errors=3,
            controller_timeout=0.5,
        )
        self.num_status = 0
        self.failures = []
        self.poller = pulsardome.StatusPoller(
            state=self.state,
            flags=self.flags,
            config=self.config,
            on_status=self.on_status,
            on_failure=self.on_failure,
        )
        self.guard = FakeGuard()
        self.poller.guard = self.guard

    def on_status(self):
        self.num_status += 1

    def on_failure(self, exception, error_count):
        self.failures.append((exception, error_count))

    async def asyncTearDown(self):
        await self.poller.stop()

    async def test_read_status(self):
        status = await self.poller.read_status()
        assert status.azimuth == pytest.approx(210.5)
        assert self.state.azimuth == pytest.approx(210.5)
        assert self.state.shutter_status == pulsardome.ShutterStatus.CLOSED
        assert not self.state.at_home
        assert self.state.at_park
        assert not self.state.slewing
        assert not self.flags.slewing_status
        assert self.flags.controller_ready
        assert self.num_status == 1
        assert self.guard.sent == ["V", "HOME ?", "PARK ?"]

    async def test_force_busy_makes_slewing(self):
        self.flags.force_busy = True
        await self.poller.read_status()
        assert self.state.slewing
        assert self.flags.slewing_status

    async def test_malformed_status(self):
        self.guard.replies["V"] = STATUS_LINE.replace("210.5", "400", 1) + "\r\n"
        self.flags.controller_ready = True
        with pytest.raises(pulsardome.RetryTimeoutError):
            await self.poller.read_status()
        # The status query was retried, and no field was changed.
        assert self.guard.sent == ["V", "V"]
        assert math.isnan(self.state.azimuth)
        assert not self.flags.controller_ready
        assert self.num_status == 0

    async def test_no_guard(self):
        self.poller.guard = None
        with pytest.raises(pulsardome.NotConnectedError):
            await self.poller.read_status()
        self.poller.guard = self.guard
        self.guard.is_ready = False
        with pytest.raises(pulsardome.NotConnectedError):
            await self.poller.read_status()

    async def test_interval_clamped(self):
        self.poller.interval = 0.001
        assert self.poller.interval == pulsardome.MIN_POLLING_INTERVAL
        self.poller.interval = 100
        assert self.poller.interval == pulsardome.MAX_POLLING_INTERVAL
        self.poller.interval = 1
        assert self.poller.interval == 1

    async def test_poll_loop(self):
        assert self.poller.start()
        assert not self.poller.start()
        assert self.flags.polling_active
        await asyncio.sleep(0.3)
        assert self.num_status >= 3
        last_poll_time = self.poller.last_poll_time
        await asyncio.sleep(0.1)
        assert self.poller.last_poll_time > last_poll_time

        assert await self.poller.stop()
        assert not self.poller.running
        assert not self.flags.polling_active
        num_status = self.num_status
        await asyncio.sleep(0.1)
        assert self.num_status == num_status

    async def test_poll_now(self):
        self.poller.interval = 5
        self.poller.start()
        await asyncio.sleep(0.1)
        assert self.num_status == 1
        self.poller.poll_now()
        await asyncio.sleep(0.1)
        assert self.num_status == 2

    async def test_suspended(self):
        self.flags.resetting = True
        self.poller.start()
        await asyncio.sleep(0.2)
        assert self.guard.sent == []
        assert self.poller.running
        self.flags.resetting = False
        await asyncio.sleep(0.15)
        assert self.num_status >= 1

    async def test_waits_for_command_in_progress(self):
        self.flags.command_in_progress = True
        self.poller.start()
        await asyncio.sleep(0.15)
        assert self.guard.sent == []
        self.flags.command_in_progress = False
        await asyncio.sleep(0.15)
        assert self.num_status >= 1

    async def test_failure_ceiling(self):
        self.guard.fail = True
        self.poller.start()
        await asyncio.wait_for(self.poller.task, timeout=STD_TIMEOUT)
        assert len(self.failures) == 1
        exception, error_count = self.failures[0]
        assert isinstance(exception, pulsardome.RetryTimeoutError)
        assert error_count == self.config.polling_max_errors
        assert not self.flags.polling_active
        assert not self.flags.controller_ready
        assert not self.poller.running

    async def test_recovers_below_ceiling(self):
        self.config.polling_max_errors = 10
        self.guard.fail = True
        self.poller.start()
        await asyncio.sleep(0.08)
        assert 1 <= self.poller.error_count < self.config.polling_max_errors
        self.guard.fail = False
        await asyncio.sleep(0.2)
        assert self.poller.error_count == 0
        assert self.poller.running
        assert self.failures == []


if __name__ == "__main__":
    unittest.main()
