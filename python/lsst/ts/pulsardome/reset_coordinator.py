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

__all__ = ["RESET_PROCESS_TIMEOUT", "ResetCoordinator"]

import asyncio
import pathlib
import shlex
import time

from . import protocol
from .device_state import ResetAttempts
from .enums import ErrorCode, NotifyType, ResetKind, ResponseMode, ShutterStatus
from .exceptions import NotConnectedError

# Maximum time for the power switching program to run (sec).
RESET_PROCESS_TIMEOUT = 60

# Shutter status values that show the shutter link is working.
READY_SHUTTER_STATUSES = frozenset(
    (
        ShutterStatus.OPEN,
        ShutterStatus.CLOSED,
        ShutterStatus.OPENING,
        ShutterStatus.CLOSING,
    )
)


class ResetCoordinator:
    """Recover from a failed action by resetting the controller.

    Try a soft reset (the RESTART command) then a hard reset
    (power cycle via an external program), each at most once per
    recovery. If neither succeeds, latch the alarm.

    Parameters
    ----------
    dome : `DomeController`
        The dome controller. Uses its ``config``, ``flags``, ``state``,
        ``log``, ``alarm``, ``poller``, ``intent`` and ``target_azimuth``
        attributes, and its ``cancel_action_watchdog``, ``stop_supervisors``,
        ``start_supervisors``, ``send_and_verify``, ``open_link``,
        ``close_link``, ``ping``, ``notify`` and ``replay_intent`` methods.

    Attributes
    ----------
    attempts : `ResetAttempts`
        Resets tried by the most recent (or current) recovery.
    """

    def __init__(self, dome):
        self.dome = dome
        self.log = dome.log.getChild(type(self).__name__)
        self.attempts = ResetAttempts()

    @property
    def config(self):
        return self.dome.config

    def should_try(self, reset_kind, requested_kind):
        """Should a given kind of reset be tried?

        Parameters
        ----------
        reset_kind : `ResetKind`
            `ResetKind.SOFT` or `ResetKind.HARD`.
        requested_kind : `ResetKind`
            The recovery requested; `ResetKind.FULL` tries whichever
            kinds are enabled in the configuration.
        """
        if requested_kind != ResetKind.FULL:
            return reset_kind == requested_kind
        if reset_kind == ResetKind.SOFT:
            return self.config.soft_reset_enabled
        return self.config.hard_reset_enabled

    async def reset(self, kind=ResetKind.FULL):
        """Reset the controller and, if that works, replay the interrupted
        action.

        Parameters
        ----------
        kind : `ResetKind`
            Which reset(s) to try.

        Returns
        -------
        succeeded : `bool`
            True if a reset succeeded. False if no reset succeeded,
            in which case the alarm is latched, or if a reset was
            already in progress, in which case nothing is done.
        """
        flags = self.dome.flags
        if flags.resetting:
            self.log.warning("Reset already in progress; ignoring duplicate request")
            return False
        flags.resetting = True
        self.attempts = ResetAttempts()
        intent = self.dome.intent
        target_azimuth = self.dome.target_azimuth
        succeeded = False
        try:
            succeeded = await self._run_reset(kind, intent)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.log.exception("Reset failed unexpectedly")
            self._fail(f"Reset encountered an unexpected error: {e!r}")
        finally:
            flags.rebooting = False
            flags.resetting = False

        if succeeded:
            self.dome.poller.start()
            self.dome.start_supervisors()
            self.dome.replay_intent(intent, target_azimuth)
        return succeeded

    async def _run_reset(self, kind, intent):
        flags = self.dome.flags
        await self.dome.cancel_action_watchdog()
        if not await self.dome.stop_supervisors(
            timeout=self.config.supervisor_stop_timeout
        ):
            self._fail("Reset aborted: background monitors did not stop")
            return False
        await self.dome.poller.stop()
        flags.controller_ready = False
        flags.slewing_status = True
        self.dome.state.update(slewing=True)

        message = f"Starting {kind.value} after a failed {intent.name} command"
        self.log.info(message)
        self.dome.notify(NotifyType.MESSAGE, message)

        if self.should_try(ResetKind.SOFT, kind):
            if await self._attempt(self.attempts.soft, self.perform_soft_reset):
                return True
        if self.should_try(ResetKind.HARD, kind):
            if await self._attempt(self.attempts.hard, self.perform_hard_reset):
                return True

        if not (self.attempts.soft.attempted or self.attempts.hard.attempted):
            self._fail(f"No reset enabled to recover from a failed {intent.name}")
        else:
            self._fail(f"Unrecoverable failure after reset for {intent.name}")
        return False

    async def _attempt(self, record, perform):
        """Make one reset attempt, recording it in ``record``."""
        label = record.kind.value
        record.attempted = True
        record.succeeded = False
        self.log.warning(f"{label} initiated")
        self.dome.notify(NotifyType.STOP, f"{label} initiated")
        self.dome.flags.rebooting = True
        try:
            record.succeeded = await perform()
        except asyncio.CancelledError:
            raise
        except Exception:
            self.log.exception(f"{label} failed")
        finally:
            self.dome.flags.rebooting = False
        if record.succeeded:
            message = f"{label} completed successfully"
            self.log.info(message)
            self.dome.notify(NotifyType.MESSAGE, message)
        else:
            self.log.warning(f"{label} failed")
        return record.succeeded

    def _fail(self, message):
        self.dome.alarm.raise_alarm(message, code=ErrorCode.RESET_FAILED)

    async def read_shutter_status(self):
        """Read status and return the shutter status, or None on failure."""
        try:
            status = await self.dome.poller.read_status()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.log.debug(f"Status read failed during reset: {e!r}")
            return None
        return status.shutter_status

    async def wait_for_shutter_ready(self):
        """Wait for the shutter link to come back after a reset.

        Returns
        -------
        ready : `bool`
            True if the shutter reported open, closed, opening or closing
            within ``config.shutter_ready_timeout``.
        """
        deadline = time.monotonic() + self.config.shutter_ready_timeout
        while time.monotonic() < deadline:
            shutter_status = await self.read_shutter_status()
            if shutter_status in READY_SHUTTER_STATUSES:
                self.log.info(
                    f"Shutter ready (status={shutter_status}); "
                    f"waiting {self.config.shutter_settle} sec for it to settle"
                )
                await asyncio.sleep(self.config.shutter_settle)
                return True
            await asyncio.sleep(self.config.shutter_ready_interval)
        self.log.warning(
            "Shutter did not become ready within "
            f"{self.config.shutter_ready_timeout} sec"
        )
        return False

    async def perform_soft_reset(self):
        """Send RESTART and check that the controller reboots.

        Returns
        -------
        succeeded : `bool`
            True if the controller rebooted and the shutter came back.
        """
        await self.dome.send_and_verify(protocol.RESTART, ResponseMode.BLIND)
        self.log.info("RESTART sent; checking shutter status for a reboot")
        await asyncio.sleep(self.dome.poller.interval * 2)
        shutter_status = await self.read_shutter_status()
        if shutter_status is None:
            self.log.info("No status after RESTART; assuming the controller is rebooting")
            return await self.wait_for_shutter_ready()
        elif shutter_status in READY_SHUTTER_STATUSES:
            self.log.warning(
                f"RESTART apparently ignored; shutter status is {shutter_status}"
            )
            return False
        elif shutter_status == ShutterStatus.NOT_FITTED:
            self.log.info("Shutter link down; reboot in progress. Waiting for recovery")
            return await self.wait_for_shutter_ready()
        self.log.error(f"Shutter reported status {shutter_status} after RESTART")
        return False

    async def perform_hard_reset(self):
        """Power cycle the controller with the reset program and reconnect.

        Returns
        -------
        succeeded : `bool`
            True if the controller came back and the shutter is ready.
        """
        if not self.reset_executable_exists():
            self.log.error(
                f"Reset executable not found: {self.config.reset_executable!r}"
            )
            return False
        await self.dome.close_link()
        if not await self.run_reset_executable(self.config.reset_off_parameters, "OFF"):
            return False
        self.log.info(f"Waiting {self.config.cycle_delay} sec with power off")
        await asyncio.sleep(self.config.cycle_delay)
        if not await self.run_reset_executable(self.config.reset_on_parameters, "ON"):
            return False
        self.log.info(f"Waiting {self.config.reset_delay} sec for the controller to boot")
        await asyncio.sleep(self.config.reset_delay)
        try:
            await self.dome.open_link()
        except NotConnectedError as e:
            self.log.error(f"Could not reopen the serial link: {e!r}")
            return False
        if not await self.dome.ping():
            self.log.error("Controller did not answer ping after power cycle")
            return False
        return await self.wait_for_shutter_ready()

    def reset_executable_exists(self):
        path = self.config.reset_executable
        return bool(path) and pathlib.Path(path).is_file()

    async def run_reset_executable(self, parameters, label):
        """Run the power switching program.

        Parameters
        ----------
        parameters : `str`
            Command-line arguments, split with shell syntax.
        label : `str`
            "ON" or "OFF", for log messages.

        Returns
        -------
        succeeded : `bool`
            True if the program ran and exited with code 0.
        """
        path = self.config.reset_executable
        if not self.reset_executable_exists():
            self.log.error(f"Reset executable not found: {path!r}")
            return False
        args = shlex.split(parameters)
        self.log.warning(f"Switching controller power {label}: {path} {parameters}")
        try:
            process = await asyncio.create_subprocess_exec(
                path,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self.log.error(f"Could not run reset executable {path!r}: {e!r}")
            return False
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=RESET_PROCESS_TIMEOUT
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            self.log.error(
                f"Reset executable [{label}] did not finish in {RESET_PROCESS_TIMEOUT} sec"
            )
            return False
        if process.returncode != 0:
            self.log.error(
                f"Reset executable [{label}] exited with code {process.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
            return False
        self.log.info(f"Reset executable [{label}] succeeded")
        return True
