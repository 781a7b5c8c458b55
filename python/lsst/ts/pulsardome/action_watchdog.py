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

__all__ = ["ActionWatchdog"]

import asyncio
import logging

from lsst.ts import utils

from .enums import WatchdogResult


class ActionWatchdog:
    """Wait for an action to finish, or time out.

    Parameters
    ----------
    intent : `CommandIntent`
        The action being watched.
    timeout : `float`
        Time limit for the action (sec).
    check_status : `callable`
        Function with no arguments that returns a `WatchdogResult`:
        ``IN_PROGRESS`` while the action is under way, or the outcome.
    flags : `CoordinationFlags`
        Shared flags; ``force_busy`` is cleared when the result is known
        and ``action_watchdog_running`` is set while `run` runs.
    log : `logging.Logger` or `None`
        Parent logger, or None to use the module logger.
    on_success : `callable` or `None`
        Function called with the result on success.
    on_failure : `callable` or `None`
        Function called with the result on any other outcome.
    reset_callback : `callable` or `None`
        Function with no arguments called once, after ``on_failure``,
        to start recovery.
    tick : `float`
        Delay between calls to ``check_status`` (sec).

    Notes
    -----
    The result is set once; the first of `run`, `mark_success` and
    `mark_failure` to set it wins. `cancel` stops the watchdog
    without calling any of the callbacks.
    """

    def __init__(
        self,
        intent,
        timeout,
        check_status,
        flags,
        log=None,
        on_success=None,
        on_failure=None,
        reset_callback=None,
        tick=0.25,
    ):
        self.intent = intent
        self.timeout = timeout
        self.check_status = check_status
        self.flags = flags
        parent_log = log if log is not None else logging.getLogger(__name__)
        self.log = parent_log.getChild(type(self).__name__)
        self.on_success = on_success
        self.on_failure = on_failure
        self.reset_callback = reset_callback
        self.tick = tick
        self.result_future = asyncio.Future()
        self.task = utils.make_done_future()

    @property
    def running(self):
        return not self.task.done()

    @property
    def result(self):
        """The result, or `WatchdogResult.IN_PROGRESS` if not yet known."""
        if self.result_future.done() and not self.result_future.cancelled():
            return self.result_future.result()
        return WatchdogResult.IN_PROGRESS

    def start(self):
        """Start `run` as a background task and return the task."""
        if self.running:
            raise RuntimeError("Watchdog already running")
        self.flags.action_watchdog_running = True
        self.task = asyncio.create_task(self.run())
        return self.task

    def mark_success(self):
        """Report that the action succeeded.

        Returns
        -------
        accepted : `bool`
            False if the result was already set.
        """
        self.flags.force_busy = False
        return self._set_result(WatchdogResult.SUCCESS)

    def mark_failure(self):
        """Report that the action failed.

        Returns
        -------
        accepted : `bool`
            False if the result was already set.
        """
        self.flags.force_busy = False
        return self._set_result(WatchdogResult.FAILURE)

    def cancel(self):
        """Stop watching without calling any callback."""
        if not self.result_future.done():
            self.result_future.cancel()
        self.task.cancel()
        self.flags.action_watchdog_running = False

    async def stop(self):
        """Cancel and wait for `run` to finish."""
        self.cancel()
        if self.task is not asyncio.current_task():
            await asyncio.wait([self.task])

    async def run(self):
        """Check status until the result is known, then report it.

        Returns
        -------
        result : `WatchdogResult`
            The result.
        """
        self.flags.action_watchdog_running = True
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        self.log.debug(f"Watching {self.intent.name}; timeout={self.timeout} sec")
        try:
            while not self.result_future.done():
                try:
                    check_result = self.check_status()
                except Exception as e:
                    self.log.exception(f"Status check for {self.intent.name} failed: {e!r}")
                    check_result = WatchdogResult.ERROR
                if check_result != WatchdogResult.IN_PROGRESS:
                    self._set_result(check_result)
                    break
                remaining = deadline - loop.time()
                if remaining <= 0:
                    self._set_result(WatchdogResult.TIMEOUT)
                    break
                await asyncio.wait(
                    [self.result_future], timeout=min(self.tick, remaining)
                )

            result = await self.result_future
            self.flags.force_busy = False
            if result == WatchdogResult.SUCCESS:
                self.log.info(f"{self.intent.name} succeeded")
                self._call(self.on_success, result)
            else:
                self.log.warning(f"{self.intent.name} ended with {result.name}")
                self._call(self.on_failure, result)
                if self.reset_callback is not None:
                    self._call(self.reset_callback)
            return result
        finally:
            self.flags.force_busy = False
            self.flags.action_watchdog_running = False

    def _set_result(self, result):
        if self.result_future.done():
            return False
        self.result_future.set_result(result)
        return True

    def _call(self, func, *args):
        if func is None:
            return
        try:
            func(*args)
        except Exception:
            self.log.exception(f"Callback {func!r} for {self.intent.name} failed")
