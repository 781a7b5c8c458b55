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
import logging
import sys
import types
import unittest

from lsst.ts import pulsardome
from lsst.ts.pulsardome import CommandIntent, ErrorCode, ResetKind, ShutterStatus

# Standard timeout (sec)
STD_TIMEOUT = 5


class StubPoller:
    """Status poller stand-in that reports a scripted sequence of
    shutter statuses; None means the status read fails.

    The last value repeats once the sequence is used up.
    """

    def __init__(self, shutter_statuses):
        self.shutter_statuses = list(shutter_statuses)
        self.interval = 0.02
        self.running = False
        self.num_starts = 0
        self.num_reads = 0

    def start(self):
        self.running = True
        self.num_starts += 1

    async def stop(self):
        self.running = False

    async def read_status(self):
        self.num_reads += 1
        if len(self.shutter_statuses) > 1:
            shutter_status = self.shutter_statuses.pop(0)
        else:
            shutter_status = self.shutter_statuses[0]
        if shutter_status is None:
            raise pulsardome.NoResponseError("no reply")
        return types.SimpleNamespace(shutter_status=shutter_status)


class StubDome:
    """Stand-in for `DomeController` that records what the
    reset coordinator asks of it.
    """

    def __init__(self, shutter_statuses, supervisors_stop=True, **config_kwargs):
        config_kwargs.setdefault("shutter_ready_interval", 0.01)
        config_kwargs.setdefault("shutter_ready_timeout", 0.5)
        config_kwargs.setdefault("shutter_settle", 0)
        config_kwargs.setdefault("cycle_delay", 0)
        config_kwargs.setdefault("reset_delay", 0)
        self.config = pulsardome.make_config(**config_kwargs)
        self.log = logging.getLogger("StubDome")
        self.flags = pulsardome.CoordinationFlags(
            controller_ready=True, polling_active=True
        )
        self.state = pulsardome.DeviceState()
        self.alarms = []
        self.alarm = pulsardome.AlarmLatch(
            log=self.log, on_raise=lambda *args: self.alarms.append(args)
        )
        self.poller = StubPoller(shutter_statuses)
        self.intent = CommandIntent.OPEN_SHUTTER
        self.target_azimuth = 123
        self.supervisors_stop = supervisors_stop
        self.supervisors_running = True
        self.calls = []
        self.sent = []
        self.notifications = []
        self.replays = []
        self.ping_ok = True
        self.restart_delay = 0

    async def cancel_action_watchdog(self):
        self.calls.append("cancel_action_watchdog")

    async def stop_supervisors(self, timeout=None):
        self.calls.append("stop_supervisors")
        if self.supervisors_stop:
            self.supervisors_running = False
        return self.supervisors_stop

    def start_supervisors(self):
        self.calls.append("start_supervisors")
        self.supervisors_running = True

    async def send_and_verify(self, command, mode, expected=None, retry_policy=None):
        self.sent.append((command, mode))
        await asyncio.sleep(self.restart_delay)
        return pulsardome.ResponseResult(command=command, is_match=True)

    async def open_link(self, url=None):
        self.calls.append("open_link")

    async def close_link(self):
        self.calls.append("close_link")

    async def ping(self):
        self.calls.append("ping")
        return self.ping_ok

    def notify(self, notify_type, message, timeout=None):
        self.notifications.append((notify_type, message))

    def replay_intent(self, intent, target_azimuth):
        self.replays.append((intent, target_azimuth))


class ResetCoordinatorTestCase(unittest.IsolatedAsyncioTestCase):
    def make_coordinator(self, shutter_statuses, **kwargs):
        self.dome = StubDome(shutter_statuses, **kwargs)
        return pulsardome.ResetCoordinator(self.dome)

    def assert_flags_cleared(self):
        assert not self.dome.flags.resetting
        assert not self.dome.flags.rebooting

    async def test_soft_reset_succeeds(self):
        coordinator = self.make_coordinator(
            [ShutterStatus.NOT_FITTED, ShutterStatus.NOT_FITTED, ShutterStatus.CLOSED]
        )
        succeeded = await asyncio.wait_for(coordinator.reset(), timeout=STD_TIMEOUT)
        assert succeeded
        assert coordinator.attempts.soft.attempted
        assert coordinator.attempts.soft.succeeded
        assert not coordinator.attempts.hard.attempted
        assert coordinator.attempts.any_succeeded
        assert self.dome.sent == [
            (pulsardome.RESTART, pulsardome.ResponseMode.BLIND)
        ]
        assert self.dome.calls[:2] == ["cancel_action_watchdog", "stop_supervisors"]
        assert self.dome.calls[-1] == "start_supervisors"
        assert self.dome.poller.running
        assert self.dome.replays == [(CommandIntent.OPEN_SHUTTER, 123)]
        assert not self.dome.alarm.active
        self.assert_flags_cleared()

    async def test_soft_reset_no_status_after_restart(self):
        # A failed status read right after RESTART means the controller
        # is rebooting.
        coordinator = self.make_coordinator([None, None, ShutterStatus.OPEN])
        assert await asyncio.wait_for(coordinator.reset(), timeout=STD_TIMEOUT)
        assert coordinator.attempts.soft.succeeded

    async def test_soft_reset_shutter_never_ready(self):
        coordinator = self.make_coordinator(
            [ShutterStatus.NOT_FITTED], shutter_ready_timeout=0.1
        )
        assert not await asyncio.wait_for(coordinator.reset(), timeout=STD_TIMEOUT)
        assert coordinator.attempts.soft.attempted
        assert not coordinator.attempts.soft.succeeded
        assert self.dome.alarm.active

    async def test_restart_ignored_and_no_hard_reset(self):
        coordinator = self.make_coordinator([ShutterStatus.OPENING])
        succeeded = await asyncio.wait_for(coordinator.reset(), timeout=STD_TIMEOUT)
        assert not succeeded
        assert coordinator.attempts.soft.attempted
        assert not coordinator.attempts.soft.succeeded
        assert not coordinator.attempts.hard.attempted
        assert self.dome.alarm.active
        assert self.dome.alarm.code == ErrorCode.RESET_FAILED
        assert len(self.dome.alarms) == 1
        assert self.dome.replays == []
        assert not self.dome.poller.running
        assert not self.dome.supervisors_running
        self.assert_flags_cleared()

    async def test_soft_and_hard_reset_fail(self):
        coordinator = self.make_coordinator(
            [ShutterStatus.CLOSED],
            hard_reset_enabled=True,
            reset_executable="/nonexistent/power_switch",
        )
        succeeded = await asyncio.wait_for(coordinator.reset(), timeout=STD_TIMEOUT)
        assert not succeeded
        assert coordinator.attempts.soft.attempted
        assert not coordinator.attempts.soft.succeeded
        assert coordinator.attempts.hard.attempted
        assert not coordinator.attempts.hard.succeeded
        assert len(self.dome.alarms) == 1
        assert self.dome.alarm.active
        # The link is not closed if the power switch program is missing.
        assert "close_link" not in self.dome.calls
        assert self.dome.replays == []
        self.assert_flags_cleared()

        # A second failed recovery does not raise the alarm again.
        assert not await asyncio.wait_for(coordinator.reset(), timeout=STD_TIMEOUT)
        assert len(self.dome.alarms) == 1

    async def test_hard_reset_succeeds(self):
        coordinator = self.make_coordinator(
            [ShutterStatus.CLOSED],
            hard_reset_enabled=True,
            reset_executable=sys.executable,
            reset_off_parameters="-c 'import sys; sys.exit(0)'",
            reset_on_parameters="-c 'import sys; sys.exit(0)'",
        )
        succeeded = await asyncio.wait_for(
            coordinator.reset(ResetKind.HARD), timeout=STD_TIMEOUT
        )
        assert succeeded
        assert not coordinator.attempts.soft.attempted
        assert coordinator.attempts.hard.succeeded
        assert self.dome.sent == []
        link_calls = [
            call for call in self.dome.calls if call in ("close_link", "open_link", "ping")
        ]
        assert link_calls == ["close_link", "open_link", "ping"]
        assert self.dome.replays == [(CommandIntent.OPEN_SHUTTER, 123)]
        self.assert_flags_cleared()

    async def test_hard_reset_executable_fails(self):
        coordinator = self.make_coordinator(
            [ShutterStatus.CLOSED],
            reset_executable=sys.executable,
            reset_off_parameters="-c 'import sys; sys.exit(3)'",
        )
        succeeded = await asyncio.wait_for(
            coordinator.reset(ResetKind.HARD), timeout=STD_TIMEOUT
        )
        assert not succeeded
        assert coordinator.attempts.hard.attempted
        assert "open_link" not in self.dome.calls
        assert self.dome.alarm.active

    async def test_hard_reset_no_ping(self):
        coordinator = self.make_coordinator(
            [ShutterStatus.CLOSED],
            reset_executable=sys.executable,
            reset_off_parameters="-c pass",
            reset_on_parameters="-c pass",
        )
        self.dome.ping_ok = False
        assert not await asyncio.wait_for(
            coordinator.reset(ResetKind.HARD), timeout=STD_TIMEOUT
        )
        assert self.dome.poller.num_reads == 0

    async def test_soft_kind_skips_hard(self):
        coordinator = self.make_coordinator(
            [ShutterStatus.CLOSED],
            hard_reset_enabled=True,
            reset_executable=sys.executable,
        )
        assert not await asyncio.wait_for(
            coordinator.reset(ResetKind.SOFT), timeout=STD_TIMEOUT
        )
        assert coordinator.attempts.soft.attempted
        assert not coordinator.attempts.hard.attempted

    async def test_no_reset_enabled(self):
        coordinator = self.make_coordinator(
            [ShutterStatus.CLOSED], soft_reset_enabled=False
        )
        assert not await asyncio.wait_for(coordinator.reset(), timeout=STD_TIMEOUT)
        assert not coordinator.attempts.soft.attempted
        assert not coordinator.attempts.hard.attempted
        assert self.dome.alarm.active
        assert self.dome.sent == []

    async def test_single_flight(self):
        coordinator = self.make_coordinator(
            [ShutterStatus.NOT_FITTED, ShutterStatus.NOT_FITTED, ShutterStatus.CLOSED]
        )
        self.dome.restart_delay = 0.1
        first_task = asyncio.create_task(coordinator.reset())
        await asyncio.sleep(0.01)
        assert self.dome.flags.resetting
        # A second request while the first runs does nothing.
        assert not await coordinator.reset()
        assert self.dome.flags.resetting
        assert await asyncio.wait_for(first_task, timeout=STD_TIMEOUT)
        assert len(self.dome.sent) == 1
        assert len(self.dome.replays) == 1
        self.assert_flags_cleared()

    async def test_supervisors_do_not_stop(self):
        coordinator = self.make_coordinator(
            [ShutterStatus.NOT_FITTED, ShutterStatus.CLOSED], supervisors_stop=False
        )
        assert not await asyncio.wait_for(coordinator.reset(), timeout=STD_TIMEOUT)
        assert self.dome.sent == []
        assert not coordinator.attempts.soft.attempted
        assert self.dome.alarm.active
        assert self.dome.alarm.code == ErrorCode.RESET_FAILED
        self.assert_flags_cleared()


if __name__ == "__main__":
    unittest.main()
