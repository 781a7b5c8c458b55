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

__all__ = ["AlarmLatch", "BackgroundMonitor", "SystemWatchdog", "AlarmMonitor"]

import asyncio
import logging
import threading
import time

from lsst.ts import utils

from .enums import ErrorCode


class AlarmLatch:
    """An alarm that stays raised until explicitly reset.

    Parameters
    ----------
    log : `logging.Logger` or `None`
        Parent logger, or None to use the module logger.
    on_raise : `callable` or `None`
        Function called with ``(message, code)`` each time the alarm
        goes from clear to raised.
    """

    def __init__(self, log=None, on_raise=None):
        parent_log = log if log is not None else logging.getLogger(__name__)
        self.log = parent_log.getChild(type(self).__name__)
        self.on_raise = on_raise
        self.active = False
        self.message = ""
        self.code = None
        self._lock = threading.Lock()

    def raise_alarm(self, message, code=None):
        """Raise the alarm, unless already raised.

        Returns
        -------
        raised : `bool`
            True if the alarm was clear and is now raised.
        """
        with self._lock:
            if self.active:
                self.log.debug(f"Alarm already raised; ignoring {message!r}")
                return False
            self.active = True
            self.message = message
            self.code = code
        self.log.error(f"Alarm: {message}")
        if self.on_raise is not None:
            try:
                self.on_raise(message, code)
            except Exception:
                self.log.exception("Alarm callback failed")
        return True

    def reset(self):
        """Clear the alarm."""
        with self._lock:
            was_active = self.active
            self.active = False
            self.message = ""
            self.code = None
        if was_active:
            self.log.info("Alarm reset")


class BackgroundMonitor:
    """Base class for a periodic check run as a background task.

    Subclasses must override `check`.

    Parameters
    ----------
    interval : `float`
        Delay between checks (sec).
    log : `logging.Logger` or `None`
        Parent logger, or None to use the module logger.
    """

    def __init__(self, interval, log=None):
        self.interval = interval
        parent_log = log if log is not None else logging.getLogger(__name__)
        self.log = parent_log.getChild(type(self).__name__)
        self.task = utils.make_done_future()

    @property
    def running(self):
        return not self.task.done()

    def start(self):
        """Start the monitor, if not running.

        Returns
        -------
        started : `bool`
            True if the monitor was started.
        """
        if self.running:
            return False
        self.task = asyncio.create_task(self.run_loop())
        return True

    async def stop(self, timeout=None):
        """Stop the monitor.

        Parameters
        ----------
        timeout : `float` or `None`
            Maximum time to wait for the monitor to end (sec).

        Returns
        -------
        stopped : `bool`
            True if the monitor is no longer running.
        """
        self.task.cancel()
        if self.task is not asyncio.current_task():
            await asyncio.wait([self.task], timeout=timeout)
        return self.task.done()

    async def run_loop(self):
        self.log.debug("Monitor started")
        try:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    await self.check()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    self.log.exception("Check failed; monitor continues")
        finally:
            self.log.debug("Monitor stopped")

    async def check(self):
        """Make one check."""
        raise NotImplementedError()


class SystemWatchdog(BackgroundMonitor):
    """Publish a heartbeat and restart a stalled status poller.

    Parameters
    ----------
    poller : `StatusPoller`
        The status poller to watch.
    flags : `CoordinationFlags`
        Shared flags.
    interval : `float`
        Delay between checks (sec).
    stall_threshold : `float`
        Restart the poller if its last cycle is older than this (sec).
    heartbeat : `callable` or `None`
        Function called with no arguments on each check,
        to publish a heartbeat.
    log : `logging.Logger` or `None`
        Parent logger.
    """

    def __init__(self, poller, flags, interval, stall_threshold, heartbeat=None, log=None):
        super().__init__(interval=interval, log=log)
        self.poller = poller
        self.flags = flags
        self.stall_threshold = stall_threshold
        self.heartbeat = heartbeat
        self.last_heartbeat_time = time.monotonic()
        self.num_restarts = 0

    def start(self):
        started = super().start()
        if started:
            self.last_heartbeat_time = time.monotonic()
            self.flags.system_watchdog_running = True
        return started

    async def run_loop(self):
        self.flags.system_watchdog_running = True
        try:
            await super().run_loop()
        finally:
            self.flags.system_watchdog_running = False

    async def check(self):
        self.last_heartbeat_time = time.monotonic()
        if self.heartbeat is not None:
            self.heartbeat()
        if self.flags.resetting or not self.flags.polling_active:
            return
        elapsed = time.monotonic() - self.poller.last_poll_time
        if elapsed > self.stall_threshold:
            self.num_restarts += 1
            self.log.warning(
                f"Last status poll was {elapsed:0.1f} sec ago; restarting polling"
            )
            await self.poller.restart()


class AlarmMonitor(BackgroundMonitor):
    """Raise an alarm if the system watchdog stops beating.

    Parameters
    ----------
    system_watchdog : `SystemWatchdog`
        The system watchdog whose heartbeat is checked.
    alarm : `AlarmLatch`
        The alarm to raise.
    interval : `float`
        Delay between checks (sec).
    timeout : `float`
        Maximum age of the last heartbeat (sec).
    log : `logging.Logger` or `None`
        Parent logger.
    """

    def __init__(self, system_watchdog, alarm, interval, timeout, log=None):
        super().__init__(interval=interval, log=log)
        self.system_watchdog = system_watchdog
        self.alarm = alarm
        self.timeout = timeout

    async def check(self):
        age = time.monotonic() - self.system_watchdog.last_heartbeat_time
        if age > self.timeout:
            self.alarm.raise_alarm(
                f"No system watchdog heartbeat for {age:0.1f} sec",
                code=ErrorCode.HEARTBEAT_LOST,
            )
