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
    "MIN_POLLING_INTERVAL",
    "MAX_POLLING_INTERVAL",
    "THROTTLE_ERROR_COUNT",
    "StatusPoller",
]

import asyncio
import logging
import time

from lsst.ts import utils

from . import protocol
from .completion import compute_slewing
from .exceptions import NotConnectedError
from .retry import RetryPolicy
from .status import Status, parse_flag_response

# Limits for the polling interval (sec).
MIN_POLLING_INTERVAL = 0.05
MAX_POLLING_INTERVAL = 10

# Number of consecutive failed polls after which
# the poller waits an extra interval between polls.
THROTTLE_ERROR_COUNT = 3

# Delay between checks while waiting to start polling (sec).
STARTUP_CHECK_INTERVAL = 0.05


class StatusPoller:
    """Poll the controller for status and keep `DeviceState` current.

    Parameters
    ----------
    state : `DeviceState`
        Device state to update.
    flags : `CoordinationFlags`
        Shared flags.
    config : `types.SimpleNamespace`
        Configuration; see `CONFIG_SCHEMA`.
    log : `logging.Logger` or `None`
        Parent logger, or None to use the module logger.
    on_status : `callable` or `None`
        Function called with no arguments after each successful poll.
    on_failure : `callable` or `None`
        Function called with ``(exception, error_count)`` when
        ``config.polling_max_errors`` consecutive polls have failed.
        Polling stops before it is called.

    Attributes
    ----------
    guard : `SerialLinkGuard` or `None`
        The serial link; set by the owner whenever the link is (re)opened.
    task : `asyncio.Future`
        The polling loop; done when not polling.
    status_sleep_task : `asyncio.Future`
        Sleep between polls; cancel it (or call `poll_now`) to trigger
        an immediate poll. Do not cancel ``task`` for that,
        because it may be waiting on the serial link.
    last_poll_time : `float`
        Monotonic time of the most recent polling cycle.
    error_count : `int`
        Number of consecutive failed polls.
    """

    def __init__(self, state, flags, config, log=None, on_status=None, on_failure=None):
        self.state = state
        self.flags = flags
        self.config = config
        parent_log = log if log is not None else logging.getLogger(__name__)
        self.log = parent_log.getChild(type(self).__name__)
        self.on_status = on_status
        self.on_failure = on_failure
        self.guard = None
        self.task = utils.make_done_future()
        self.status_sleep_task = utils.make_done_future()
        self.last_poll_time = time.monotonic()
        self.error_count = 0
        self._interval = MIN_POLLING_INTERVAL
        self.interval = config.polling_interval

    @property
    def interval(self):
        """Delay between polls (sec)."""
        return self._interval

    @interval.setter
    def interval(self, interval):
        clamped = min(max(interval, MIN_POLLING_INTERVAL), MAX_POLLING_INTERVAL)
        if clamped != interval:
            self.log.error(
                f"Polling interval {interval} sec out of range "
                f"[{MIN_POLLING_INTERVAL}, {MAX_POLLING_INTERVAL}]; using {clamped}"
            )
        self._interval = clamped

    @property
    def running(self):
        return not self.task.done()

    @property
    def suspended(self):
        """Should polling cycles be skipped?"""
        return (
            self.flags.command_in_progress
            or self.flags.resetting
            or self.flags.rebooting
        )

    def start(self):
        """Start polling, if not already polling.

        Returns
        -------
        started : `bool`
            True if a new polling loop was started.
        """
        if self.running:
            return False
        self.error_count = 0
        self.last_poll_time = time.monotonic()
        self.flags.polling_active = True
        self.task = asyncio.create_task(self.poll_loop())
        return True

    async def stop(self, timeout=None):
        """Stop polling and wait for the loop to end.

        Parameters
        ----------
        timeout : `float` or `None`
            Maximum time to wait (sec); None to wait as long as needed.

        Returns
        -------
        stopped : `bool`
            True if a polling loop was running.
        """
        if not self.running:
            self.flags.polling_active = False
            return False
        self.task.cancel()
        self.status_sleep_task.cancel()
        if self.task is not asyncio.current_task():
            await asyncio.wait([self.task], timeout=timeout)
        self.flags.polling_active = False
        return True

    async def restart(self):
        """Stop polling, if running, and start again."""
        await self.stop()
        self.start()

    def poll_now(self):
        """Trigger an immediate poll, if the loop is sleeping."""
        self.status_sleep_task.cancel()

    def make_retry_policy(self):
        return RetryPolicy(
            max_attempts=self.config.status_max_retries,
            delay=self.config.retry_delay,
            log=self.log,
        )

    async def query(self, command, parse_reply):
        """Send a status query and parse the reply, with retries.

        Parameters
        ----------
        command : `str`
            The query.
        parse_reply : `callable`
            Function to parse the raw reply; raises on invalid data.

        Raises
        ------
        NotConnectedError
            If there is no open link.
        RetryTimeoutError
            If every attempt failed.
        """
        guard = self.guard
        if guard is None or not guard.is_ready:
            raise NotConnectedError("Serial link is not open")

        async def attempt():
            reply = await guard.send(command)
            return parse_reply(reply)

        return await self.make_retry_policy().execute(
            attempt, description=f"query {command!r}"
        )

    async def read_status(self):
        """Read status, home and park, and update the device state.

        Calls ``on_status`` (if specified) after the state is updated.
        The device state is unchanged if any query fails.

        Raises
        ------
        NotConnectedError
            If there is no open link.
        RetryTimeoutError
            If a query failed.
        """
        try:
            status = await self.query(protocol.STATUS, Status.from_response)
            at_home = await self.query(protocol.HOME_QUERY, parse_flag_response)
            at_park = await self.query(protocol.PARK_QUERY, parse_flag_response)
        except Exception:
            self.flags.controller_ready = False
            raise
        slewing = compute_slewing(
            dome_state=status.dome_state,
            shutter_status=status.shutter_status,
            force_busy=self.flags.force_busy,
        )
        self.state.apply_status(status, at_home=at_home, at_park=at_park, slewing=slewing)
        self.flags.slewing_status = slewing
        self.flags.controller_ready = True
        if self.on_status is not None:
            self.on_status()
        return status

    async def poll_loop(self):
        """Poll status until cancelled or too many polls fail."""
        self.flags.polling_active = True
        self.log.debug("Polling begins")
        try:
            await self.wait_until_idle()
            while True:
                if self.suspended:
                    self.log.debug("Polling suspended")
                else:
                    try:
                        await self.read_status()
                        self.error_count = 0
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        self.error_count += 1
                        if self.error_count >= self.config.polling_max_errors:
                            self.log.error(
                                f"Status poll failed {self.error_count} times in a row; "
                                f"polling stops: {e!r}"
                            )
                            self.flags.polling_active = False
                            if self.on_failure is not None:
                                self.on_failure(e, self.error_count)
                            return
                        self.log.warning(
                            f"Status poll failed ({self.error_count} of "
                            f"{self.config.polling_max_errors}); polling continues: {e!r}"
                        )
                        if self.error_count >= THROTTLE_ERROR_COUNT:
                            await asyncio.sleep(self.interval)
                self.last_poll_time = time.monotonic()
                await self.sleep()
        except asyncio.CancelledError:
            self.log.debug("Polling cancelled")
            raise
        except Exception:
            self.log.exception("Polling loop failed")
            raise
        finally:
            self.status_sleep_task.cancel()
            if self.task is asyncio.current_task():
                self.flags.polling_active = False

    async def sleep(self):
        """Sleep one polling interval, unless `poll_now` is called."""
        self.status_sleep_task = asyncio.ensure_future(asyncio.sleep(self.interval))
        # asyncio.wait does not raise when status_sleep_task is cancelled.
        await asyncio.wait([self.status_sleep_task])

    async def wait_until_idle(self):
        """Wait for a command or reboot to finish, but no longer than
        ``config.controller_timeout``.
        """
        deadline = time.monotonic() + self.config.controller_timeout
        while self.flags.command_in_progress or self.flags.rebooting:
            if time.monotonic() >= deadline:
                self.log.warning(
                    "Controller still busy after "
                    f"{self.config.controller_timeout} sec; polling anyway"
                )
                return
            await asyncio.sleep(STARTUP_CHECK_INTERVAL)
