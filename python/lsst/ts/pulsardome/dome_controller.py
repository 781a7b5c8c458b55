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

__all__ = ["DomeController", "run_pulsardome"]

import argparse
import asyncio
import datetime
import logging
import math
import time

from lsst.ts import utils

from . import __version__, protocol
from .action_watchdog import ActionWatchdog
from .completion import check_intent, is_command_complete
from .config_schema import load_config, make_config
from .device_state import CoordinationFlags, DeviceState
from .enums import (
    CommandIntent,
    DomeState,
    ErrorCode,
    NotifyType,
    ResetKind,
    ResponseMode,
    ShutterStatus,
)
from .exceptions import (
    ActionNotImplementedError,
    ExpectedError,
    NoResponseError,
    NotConnectedError,
    RetryTimeoutError,
)
from .mock_controller import MockPulsarController
from .notifier import LogNotifier, LogPublisher, Topics, safe_publish
from .reset_coordinator import ResetCoordinator
from .retry import RetryPolicy
from .serial_guard import SerialLinkGuard, open_serial_port
from .status_poller import StatusPoller
from .supervisor import AlarmLatch, AlarmMonitor, SystemWatchdog

# Max time (sec) to wait for the mock controller to start.
MOCK_CTRL_START_TIMEOUT = 2

# Delay between ping attempts when connecting (sec).
PING_RETRY_DELAY = 0.1

# "New action" notification deadline, as a multiple of the action timeout.
NEW_ACTION_TIMEOUT_FACTOR = 2.5

# Errors from the serial link that mean a command was not acknowledged.
LINK_ERRORS = (RetryTimeoutError, NotConnectedError, NoResponseError)

DOME_ACTIVITY_NAMES = {
    DomeState.IDLE: "Idle",
    DomeState.MOVING: "Slewing",
    DomeState.FINDING_HOME: "Finding home",
}

SHUTTER_ACTIVITY_NAMES = {
    ShutterStatus.OPEN: "Open",
    ShutterStatus.CLOSED: "Closed",
    ShutterStatus.OPENING: "Opening",
    ShutterStatus.CLOSING: "Closing",
    ShutterStatus.ERROR: "Error",
    ShutterStatus.UNKNOWN: "Unknown",
    ShutterStatus.NOT_FITTED: "Not fitted",
}


class DomeController:
    """Command and supervise a Pulsar dome and shutter.

    Parameters
    ----------
    config : `types.SimpleNamespace` or `None`
        Configuration; see `CONFIG_SCHEMA` and `make_config`.
        If None then use the default configuration.
    simulation_mode : `int` (optional)
        Simulation mode.
    log : `logging.Logger` or `None`
        Logger, or None to make one.
    notifier : `BaseNotifier` or `None`
        Operator notification sink; if None, notifications are logged.
    publisher : `BasePublisher` or `None`
        Status topic sink; if None, topics are logged at debug level.
    mock_ctrl_kwargs : `dict` or `None`
        Keyword arguments for `MockPulsarController`,
        if ``simulation_mode`` is 1.

    Raises
    ------
    ValueError
        If ``simulation_mode`` is invalid.

    Notes
    -----
    **Simulation Modes**

    Supported simulation modes:

    * 0: regular operation
    * 1: simulation mode: start a mock TCP/IP Pulsar controller
      and talk to it through a pyserial ``socket://`` URL

    **Error Codes**

    Codes reported with the latched alarm; see `ErrorCode`.

    **Tasks**

    Every background task is owned by an attribute of this object:
    ``poller.task``, ``action_watchdog.task``, ``reset_task``,
    ``replay_task``, ``disconnect_task``, ``system_watchdog.task``
    and ``alarm_monitor.task``. `close` cancels them all.
    """

    valid_simulation_modes = (0, 1)
    version = __version__
    supported_actions = tuple(kind.value for kind in ResetKind)

    def __init__(
        self,
        config=None,
        simulation_mode=0,
        log=None,
        notifier=None,
        publisher=None,
        mock_ctrl_kwargs=None,
    ):
        if simulation_mode not in self.valid_simulation_modes:
            raise ValueError(
                f"simulation_mode={simulation_mode} not in {self.valid_simulation_modes}"
            )
        self.config = config if config is not None else make_config()
        self.simulation_mode = simulation_mode
        self.log = log if log is not None else logging.getLogger(type(self).__name__)
        self.notifier = notifier if notifier is not None else LogNotifier(log=self.log)
        self.publisher = publisher if publisher is not None else LogPublisher(self.log)
        self.mock_ctrl_kwargs = dict() if mock_ctrl_kwargs is None else mock_ctrl_kwargs
        self.topics = Topics(self.config.mqtt_topic_prefix)

        self.state = DeviceState()
        self.flags = CoordinationFlags()
        self.alarm = AlarmLatch(log=self.log, on_raise=self._handle_alarm_raised)

        self.guard = None  # serial link guard, or None if not open
        self.link_url = None  # URL of the most recently opened link
        self.mock_ctrl = None  # mock controller, or None if not constructed
        self.connected = False
        self.cmd_lock = asyncio.Lock()
        self.intent = CommandIntent.NONE
        self.target_azimuth = None
        self.slew_change = 0.0
        self.action_watchdog = None
        self.reset_task = utils.make_done_future()
        self.replay_task = utils.make_done_future()
        self.disconnect_task = utils.make_done_future()
        self.done_task = asyncio.Future()
        self.dome_activity = None
        self.shutter_activity = None

        self.poller = StatusPoller(
            state=self.state,
            flags=self.flags,
            config=self.config,
            log=self.log,
            on_status=self.handle_status,
            on_failure=self.handle_driver_failure,
        )
        self.system_watchdog = SystemWatchdog(
            poller=self.poller,
            flags=self.flags,
            interval=self.config.system_watchdog_interval,
            stall_threshold=self.config.polling_stall_threshold,
            heartbeat=self.publish_heartbeat,
            log=self.log,
        )
        self.alarm_monitor = AlarmMonitor(
            system_watchdog=self.system_watchdog,
            alarm=self.alarm,
            interval=self.config.alarm_check_interval,
            timeout=self.config.alarm_timeout,
            log=self.log,
        )
        self.reset_coordinator = ResetCoordinator(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, type, value, traceback):
        await self.close()

    # Properties read by the host.

    @property
    def azimuth(self):
        """Dome azimuth (deg), or nan if not known."""
        return self.state.azimuth

    @property
    def shutter_status(self):
        return self.state.shutter_status

    @property
    def at_home(self):
        return self.state.at_home

    @property
    def at_park(self):
        return self.state.at_park

    @property
    def slewing(self):
        """Is the dome or shutter moving, or an action under way?"""
        return self.flags.force_busy or self.state.slewing

    @property
    def alarm_active(self):
        return self.alarm.active

    # Connection.

    async def connect(self):
        """Open the serial link, check the controller answers, then start
        polling and the background monitors.

        Start the mock controller, if simulating.

        Raises
        ------
        ExpectedError
            If already connected.
        NotConnectedError
            If the link cannot be opened or the controller does not
            answer the ping.
        """
        self.log.debug("connect")
        if self.connected:
            raise ExpectedError("Already connected")
        if self.simulation_mode != 0:
            await self.start_mock_ctrl()
            url = f"socket://{self.mock_ctrl.host}:{self.mock_ctrl.port}"
        else:
            url = self.config.serial_port
            if not url:
                raise NotConnectedError("No serial_port configured")
        try:
            await self.open_link(url)
            if not await self.ping():
                raise NotConnectedError(f"Controller at {url} did not answer ping")
        except Exception as e:
            err_msg = f"Could not connect to the dome controller at {url}: {e!r}"
            self.log.error(err_msg)
            await self.close_link()
            await self.stop_mock_ctrl()
            self.publish(self.topics.driver_status, "Connection failed")
            if isinstance(e, NotConnectedError):
                raise
            raise NotConnectedError(err_msg) from e

        self.connected = True
        self.log.info(f"Connected to the dome controller at {url}")
        self.publish(self.topics.driver_status, "Connected")
        self.poller.start()
        self.start_supervisors()
        self.log_connection_snapshot()

    async def disconnect(self):
        """Stop all activity and close the link, if open, and stop
        the mock controller, if running.
        """
        self.log.debug("disconnect")
        self.connected = False
        await self.cancel_action_watchdog()
        await self.stop_supervisors()
        await self.poller.stop()
        await self.close_link()
        await self.stop_mock_ctrl()
        self.flags.controller_ready = False
        self.flags.force_busy = False
        self.publish(self.topics.driver_status, "Disconnected")
        self.log_connection_snapshot()

    async def close(self):
        """Cancel every task, disconnect and mark this object done."""
        for task in (self.reset_task, self.replay_task, self.disconnect_task):
            task.cancel()
        await asyncio.wait(
            [self.reset_task, self.replay_task, self.disconnect_task]
        )
        await self.disconnect()
        if not self.done_task.done():
            self.done_task.set_result(None)

    async def open_link(self, url=None):
        """Open the serial link and install a new `SerialLinkGuard`.

        Parameters
        ----------
        url : `str` or `None`
            Serial port name or pyserial URL. If None, reopen
            the most recently opened link.

        Raises
        ------
        NotConnectedError
            If the port cannot be opened.
        """
        if url is None:
            url = self.link_url
        if not url:
            raise NotConnectedError("No serial link has been opened")
        await self.close_link()
        self.link_url = url
        port = await asyncio.to_thread(
            open_serial_port, url, self.config.baud_rate, self.config.read_timeout
        )
        self.guard = SerialLinkGuard(
            port=port,
            flags=self.flags,
            log=self.log,
            read_timeout=self.config.read_timeout,
            quiet_window=self.config.quiet_window,
            settle=self.config.serial_settle,
            flush_attempts=self.config.flush_attempts,
        )
        self.poller.guard = self.guard
        self.log.debug(f"Serial link open: {url}")

    async def close_link(self):
        """Close the serial link, if open."""
        guard = self.guard
        self.guard = None
        self.poller.guard = None
        if guard is not None:
            await asyncio.to_thread(guard.close)
            self.log.debug("Serial link closed")

    async def ping(self):
        """Return True if the controller answers the ping command."""
        retry_policy = RetryPolicy(
            max_attempts=self.config.connect_attempts,
            delay=PING_RETRY_DELAY,
            log=self.log,
        )
        try:
            await self.send_and_verify(
                protocol.PING,
                ResponseMode.MATCH_EXACT,
                [protocol.PING_RESPONSE],
                retry_policy=retry_policy,
            )
        except LINK_ERRORS as e:
            self.log.warning(f"Ping failed: {e!r}")
            return False
        return True

    async def send_and_verify(self, command, mode, expected=None, retry_policy=None):
        """Send a command and check the reply, with retries.

        Parameters
        ----------
        command : `str`
            The command.
        mode : `ResponseMode`
            How to judge the reply.
        expected : `list` [`str`] or `None`
            Acceptable replies.
        retry_policy : `RetryPolicy` or `None`
            How to retry; if None, use ``config.send_verify_max_retries``
            attempts.

        Returns
        -------
        result : `ResponseResult`
            The accepted result.

        Raises
        ------
        NotConnectedError
            If the link is not open.
        RetryTimeoutError
            If no attempt gave an acceptable reply.
        """
        guard = self.guard
        if guard is None or not guard.is_ready:
            raise NotConnectedError("Serial link is not open")
        if retry_policy is None:
            retry_policy = RetryPolicy(
                max_attempts=self.config.send_verify_max_retries,
                delay=self.config.retry_delay,
                log=self.log,
            )
        return await protocol.send_and_verify(
            guard, command, mode, expected=expected, retry_policy=retry_policy
        )

    async def start_mock_ctrl(self):
        """Start the mock controller.

        The simulation mode must be 1.
        """
        try:
            if self.simulation_mode != 1:
                raise RuntimeError(f"simulation_mode={self.simulation_mode} not 1")
            self.mock_ctrl = MockPulsarController(
                port=0, log=self.log, **self.mock_ctrl_kwargs
            )
            await asyncio.wait_for(
                self.mock_ctrl.start_task, timeout=MOCK_CTRL_START_TIMEOUT
            )
        except Exception as e:
            err_msg = f"Could not start mock controller: {e!r}"
            self.log.exception(err_msg)
            self.alarm.raise_alarm(err_msg, code=ErrorCode.CANNOT_START_MOCK_CONTROLLER)
            raise

    async def stop_mock_ctrl(self):
        """Stop the mock controller, if running."""
        mock_ctrl = self.mock_ctrl
        self.mock_ctrl = None
        if mock_ctrl:
            await mock_ctrl.close()

    # Background monitors.

    def start_supervisors(self):
        self.system_watchdog.start()
        self.alarm_monitor.start()

    async def stop_supervisors(self, timeout=None):
        """Stop the system watchdog and alarm monitor.

        Returns
        -------
        stopped : `bool`
            True if both monitors stopped within ``timeout``.
        """
        stopped = True
        for monitor in (self.system_watchdog, self.alarm_monitor):
            if not await monitor.stop(timeout=timeout):
                self.log.error(f"{type(monitor).__name__} did not stop in {timeout} sec")
                stopped = False
        return stopped

    # Public actions.

    async def open_shutter(self):
        """Open the shutter.

        Returns
        -------
        started : `bool`
            True if the command was acknowledged and a watchdog started;
            False if the shutter was already open or the command failed
            (in which case recovery has been started).
        """
        return await self._execute_dome_command(
            intent=CommandIntent.OPEN_SHUTTER,
            command=protocol.OPEN,
            timeout=self.config.shutter_timeout,
            already_at_target=lambda: self.state.shutter_status == ShutterStatus.OPEN,
            optimistic_state=dict(shutter_status=ShutterStatus.OPENING),
            topic=self.topics.shutter_status,
            start_message="Shutter opening",
            success_message="Shutter is open",
            failure_message="Shutter failed to open",
        )

    async def close_shutter(self):
        """Close the shutter.

        Returns
        -------
        started : `bool`
            See `open_shutter`.
        """
        return await self._execute_dome_command(
            intent=CommandIntent.CLOSE_SHUTTER,
            command=protocol.CLOSE,
            timeout=self.config.shutter_timeout,
            already_at_target=lambda: self.state.shutter_status
            == ShutterStatus.CLOSED,
            optimistic_state=dict(shutter_status=ShutterStatus.CLOSING),
            topic=self.topics.shutter_status,
            start_message="Shutter closing",
            success_message="Shutter is closed",
            failure_message="Shutter failed to close",
        )

    async def slew_to_azimuth(self, azimuth):
        """Rotate the dome to the specified azimuth.

        Parameters
        ----------
        azimuth : `float`
            Desired azimuth (deg). Must be in the range [0, 360).

        Returns
        -------
        started : `bool`
            See `open_shutter`.

        Raises
        ------
        ValueError
            If ``azimuth`` is out of range.
        """
        if not 0 <= azimuth < 360:
            raise ValueError(f"azimuth={azimuth} not in range [0, 360)")
        current_azimuth = self.state.azimuth
        if math.isnan(current_azimuth):
            self.slew_change = 180
        else:
            self.slew_change = abs(utils.angle_diff(azimuth, current_azimuth).deg)
        tolerance = self.config.azimuth_tolerance
        new_message = None
        if self.slew_change > self.config.jog_size:
            new_message = f"Dome slewing to {azimuth:0.1f} deg"

        def already_at_target():
            if math.isnan(self.state.azimuth):
                return False
            return abs(utils.angle_diff(self.state.azimuth, azimuth).deg) <= tolerance

        return await self._execute_dome_command(
            intent=CommandIntent.SLEW_AZIMUTH,
            command=protocol.slew_command(azimuth),
            timeout=self.config.rotation_timeout,
            already_at_target=already_at_target,
            optimistic_state=dict(dome_state=DomeState.MOVING),
            topic=self.topics.dome_status,
            start_message=f"Slewing to {azimuth:0.1f} deg",
            success_message=f"Slew to {azimuth:0.1f} deg done",
            failure_message=f"Slew to {azimuth:0.1f} deg failed",
            target_azimuth=azimuth,
            new_message=new_message,
        )

    async def find_home(self):
        """Rotate the dome to the home switch.

        Returns
        -------
        started : `bool`
            See `open_shutter`.
        """
        return await self._execute_dome_command(
            intent=CommandIntent.GO_HOME,
            command=protocol.GO_HOME,
            timeout=self.config.rotation_timeout,
            already_at_target=lambda: self.state.at_home
            and self.state.dome_state == DomeState.IDLE,
            optimistic_state=dict(dome_state=DomeState.FINDING_HOME, at_home=False),
            topic=self.topics.dome_status,
            start_message="Finding home",
            success_message="Dome is home",
            failure_message="Dome failed to find home",
            new_message="Dome finding home",
        )

    async def park(self):
        """Rotate the dome to the park position.

        Returns
        -------
        started : `bool`
            See `open_shutter`.
        """
        return await self._execute_dome_command(
            intent=CommandIntent.PARK,
            command=protocol.GO_PARK,
            timeout=self.config.rotation_timeout,
            already_at_target=lambda: self.state.at_park
            and self.state.dome_state == DomeState.IDLE,
            optimistic_state=dict(dome_state=DomeState.MOVING, at_park=False),
            topic=self.topics.dome_status,
            start_message="Parking",
            success_message="Dome is parked",
            failure_message="Dome failed to park",
            new_message="Dome parking",
        )

    async def abort_slew(self):
        """Stop all dome and shutter motion.

        Ignored while a reset is in progress.

        Returns
        -------
        stopped : `bool`
            True if the controller acknowledged the stop command.
        """
        if self.flags.resetting or self.flags.rebooting:
            self.log.warning("Abort ignored: reset in progress")
            return False
        self.assert_connected()
        async with self.cmd_lock:
            await self.poller.stop()
            try:
                try:
                    await self.send_and_verify(
                        protocol.STOP, ResponseMode.MATCH_EXACT, [protocol.ACK]
                    )
                except LINK_ERRORS as e:
                    self.raise_alarm_and_reset(f"Abort failed: {e!r}")
                    return False
                await self.cancel_action_watchdog()
                self.intent = CommandIntent.NONE
                self.flags.force_busy = False
                self.flags.slewing_status = False
                self.state.update(slewing=False)
                self.notify(NotifyType.CEASE, "Dome motion aborted")
                self.publish(self.topics.dome_status, "Abort succeeded")
                self.log.info("Abort succeeded")
                return True
            finally:
                self.poller.start()

    async def action(self, name, parameters=""):
        """Run a named action.

        Parameters
        ----------
        name : `str`
            One of `supported_actions`, e.g. "Soft Reset".
        parameters : `str`
            Unused.

        Returns
        -------
        succeeded : `bool`
            True if the reset succeeded.

        Raises
        ------
        ActionNotImplementedError
            If ``name`` is not a supported action.
        NotConnectedError
            If not connected.
        """
        try:
            kind = ResetKind(name)
        except ValueError:
            raise ActionNotImplementedError(
                f"Action {name!r} is not supported; must be one of {self.supported_actions}"
            ) from None
        self.assert_connected()
        self.log.info(f"Action {name!r} requested")
        task = self.request_reset(kind)
        return await asyncio.shield(task)

    def assert_connected(self):
        if not self.connected:
            raise NotConnectedError("Not connected to the dome controller")

    def assert_ready(self):
        """Raise if a new action cannot start."""
        self.assert_connected()
        if self.flags.resetting:
            raise ExpectedError("Cannot start an action while a reset is in progress")

    async def _execute_dome_command(
        self,
        intent,
        command,
        timeout,
        already_at_target,
        optimistic_state,
        topic,
        start_message,
        success_message,
        failure_message,
        target_azimuth=None,
        new_message=None,
    ):
        """Send an action command and start a watchdog for it.

        Parameters
        ----------
        intent : `CommandIntent`
            The action.
        command : `str`
            The command to send; the reply must be `protocol.ACK`.
        timeout : `float`
            Time limit for the action (sec).
        already_at_target : `callable`
            Function with no arguments that returns True if there is
            nothing to do.
        optimistic_state : `dict`
            `DeviceState` fields to set once the command is acknowledged.
        topic : `str`
            Topic for progress messages.
        start_message, success_message, failure_message : `str`
            Progress messages.
        target_azimuth : `float` or `None`
            Requested azimuth, for a slew.
        new_message : `str` or `None`
            Text of a "new action" notification, or None for none.

        Returns
        -------
        started : `bool`
            True if a watchdog was started.
        """
        self.assert_ready()
        async with self.cmd_lock:
            await self.cancel_action_watchdog()
            self.flags.force_busy = True
            self.intent = intent
            if target_azimuth is not None:
                self.target_azimuth = target_azimuth
            if new_message is not None:
                self.notify(
                    NotifyType.NEW,
                    new_message,
                    timeout=round(timeout * NEW_ACTION_TIMEOUT_FACTOR),
                )
            await self.poller.stop()
            try:
                if already_at_target():
                    self.log.info(f"{intent.name}: already at target; nothing to do")
                    self.intent = CommandIntent.NONE
                    self.flags.force_busy = False
                    self.publish(topic, success_message)
                    return False

                try:
                    await self.send_and_verify(
                        command, ResponseMode.MATCH_EXACT, [protocol.ACK]
                    )
                except LINK_ERRORS as e:
                    self.raise_alarm_and_reset(
                        f"{intent.name}: command {command!r} not acknowledged: {e!r}"
                    )
                    return False

                self.state.update(slewing=True, **optimistic_state)
                self.flags.slewing_status = True
                self.publish(topic, start_message)
                self.poller.start()
                if not await self.wait_for_controller_ready():
                    self.raise_alarm_and_reset(
                        f"{intent.name}: controller not ready after {command!r}"
                    )
                    return False

                self.start_action_watchdog(
                    intent=intent,
                    timeout=timeout,
                    topic=topic,
                    success_message=success_message,
                    failure_message=failure_message,
                )
                return True
            finally:
                self.poller.start()

    async def wait_for_controller_ready(self):
        """Wait for a successful status poll, but no longer than
        ``config.controller_timeout``.

        Returns
        -------
        ready : `bool`
            True if the controller is ready.
        """
        deadline = time.monotonic() + self.config.controller_timeout
        while not self.flags.controller_ready:
            if time.monotonic() >= deadline:
                self.log.warning(
                    f"Controller not ready after {self.config.controller_timeout} sec"
                )
                return False
            await asyncio.sleep(self.poller.interval)
        return True

    # Action watchdog.

    def check_action_status(self, intent):
        """Judge the progress of ``intent`` from the current state."""
        return check_intent(
            intent,
            self.state,
            target_azimuth=self.target_azimuth,
            tolerance=self.config.azimuth_tolerance,
        )

    def start_action_watchdog(
        self, intent, timeout, topic, success_message, failure_message
    ):
        """Start a watchdog for ``intent``.

        The caller must first call `cancel_action_watchdog`.
        """
        if self.action_watchdog is not None and self.action_watchdog.running:
            raise RuntimeError("An action watchdog is already running")

        def on_success(result):
            self.publish(topic, success_message)

        def on_failure(result):
            message = f"{failure_message} ({result.name}); resetting controller"
            self.notify(NotifyType.ALARM, message)
            self.publish(self.topics.alarm, message)

        self.action_watchdog = ActionWatchdog(
            intent=intent,
            timeout=timeout,
            check_status=lambda: self.check_action_status(intent),
            flags=self.flags,
            log=self.log,
            on_success=on_success,
            on_failure=on_failure,
            reset_callback=self.request_reset,
            tick=self.config.watchdog_tick,
        )
        self.action_watchdog.start()
        return self.action_watchdog

    async def cancel_action_watchdog(self):
        """Cancel the current action watchdog, if any, and wait for it."""
        watchdog = self.action_watchdog
        self.action_watchdog = None
        if watchdog is not None:
            await watchdog.stop()
        self.flags.action_watchdog_running = False

    # Recovery.

    def raise_alarm_and_reset(self, message):
        """Report a failed action and start recovery."""
        self.log.error(message)
        self.notify(NotifyType.ALARM, message)
        self.publish(self.topics.alarm, message)
        self.flags.force_busy = True
        self.request_reset()

    def request_reset(self, kind=ResetKind.FULL):
        """Start a reset, unless one is already running.

        Returns
        -------
        reset_task : `asyncio.Task`
            The task running the reset (the existing one, if a reset
            was already running).
        """
        if not self.reset_task.done() or self.flags.resetting:
            self.log.warning(f"{kind.value} requested while a reset is running; ignored")
            return self.reset_task
        self.reset_task = asyncio.create_task(self.reset_coordinator.reset(kind))
        return self.reset_task

    def replay_intent(self, intent, target_azimuth):
        """Reissue an action that was interrupted by a reset.

        The action runs in ``replay_task``; failures are logged.
        """
        if intent == CommandIntent.NONE:
            self.flags.force_busy = False
            return
        self.intent = CommandIntent.NONE
        self.replay_task = asyncio.create_task(
            self._replay_intent(intent, target_azimuth)
        )

    async def _replay_intent(self, intent, target_azimuth):
        self.log.info(f"Replaying {intent.name} after reset")
        try:
            if intent == CommandIntent.OPEN_SHUTTER:
                await self.open_shutter()
            elif intent == CommandIntent.CLOSE_SHUTTER:
                await self.close_shutter()
            elif intent == CommandIntent.GO_HOME:
                await self.find_home()
            elif intent == CommandIntent.PARK:
                await self.park()
            elif intent == CommandIntent.SLEW_AZIMUTH:
                await self.slew_to_azimuth(target_azimuth)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.log.error(f"Replay of {intent.name} failed: {e!r}")

    def handle_driver_failure(self, exception, error_count):
        """Handle repeated status poll failures: latch the alarm
        and disconnect.
        """
        message = f"Status polling failed {error_count} times in a row: {exception!r}"
        self.alarm.raise_alarm(message, code=ErrorCode.POLLING_FAILED)
        if self.action_watchdog is not None:
            self.action_watchdog.cancel()
        self.connected = False
        self.disconnect_task = asyncio.create_task(self.disconnect())

    # Status handling.

    def handle_status(self):
        """Handle new status from the poller.

        Log and publish activity changes and, unless a reset is
        in progress, check whether the current action is complete.
        """
        snapshot = self.state.snapshot()
        self.report_activity(snapshot)
        if self.flags.resetting or self.intent == CommandIntent.NONE:
            return
        intent = self.intent
        if not is_command_complete(
            intent,
            snapshot,
            target_azimuth=self.target_azimuth,
            tolerance=self.config.azimuth_tolerance,
        ):
            return
        self.intent = CommandIntent.NONE
        if self.flags.force_busy:
            self.log.debug(f"{intent.name} complete; clearing force_busy")
            self.flags.force_busy = False
        if self.action_watchdog is not None:
            self.action_watchdog.mark_success()
        if intent == CommandIntent.SLEW_AZIMUTH:
            if self.slew_change > self.config.jog_size:
                self.notify(NotifyType.STOP, "Dome slew complete")
        elif intent in (CommandIntent.GO_HOME, CommandIntent.PARK):
            self.notify(NotifyType.STOP, f"Dome {intent.name.lower()} complete")

    def report_activity(self, snapshot):
        """Log and publish dome and shutter activity, if changed."""
        if snapshot["at_park"]:
            dome_activity = "Parked"
        elif snapshot["at_home"]:
            dome_activity = "Home"
        else:
            dome_activity = DOME_ACTIVITY_NAMES.get(snapshot["dome_state"], "Unknown")
        if dome_activity != self.dome_activity:
            self.dome_activity = dome_activity
            self.log.info(f"Dome is: {dome_activity}")
            self.publish(self.topics.dome_status, dome_activity)
        shutter_activity = SHUTTER_ACTIVITY_NAMES.get(
            snapshot["shutter_status"], "Unknown"
        )
        if shutter_activity != self.shutter_activity:
            self.shutter_activity = shutter_activity
            self.log.info(f"Shutter is: {shutter_activity}")
            self.publish(self.topics.shutter_status, shutter_activity)

    def format_heartbeat(self):
        """Format the system watchdog heartbeat payload."""
        snapshot = self.state.snapshot()
        utc = datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
        fields = (
            int(snapshot["dome_state"]),
            int(snapshot["at_home"]),
            int(snapshot["at_park"]),
            f"{snapshot['azimuth']:0.1f}",
            f"{snapshot['target_azimuth']:0.1f}",
            int(self.slewing),
            int(snapshot["shutter_status"]),
        )
        return f"{utc} :" + ",".join(str(field) for field in fields)

    def publish_heartbeat(self):
        self.publish(self.topics.watchdog, self.format_heartbeat())

    def publish(self, topic, payload):
        """Publish a message, unless the controller is rebooting.

        Never raises.
        """
        if self.flags.rebooting:
            self.log.debug(f"Rebooting; not publishing {topic}: {payload}")
            return False
        return safe_publish(self.publisher, topic, payload, self.log)

    def notify(self, notify_type, message, timeout=None):
        """Send an operator notification. Never raises."""
        try:
            self.notifier.notify(notify_type, message, timeout=timeout)
        except Exception as e:
            self.log.warning(f"Notification {notify_type.value}|{message} failed: {e!r}")

    def _handle_alarm_raised(self, message, code):
        self.notify(NotifyType.ALARM, message)
        self.publish(self.topics.alarm, message)

    def log_connection_snapshot(self):
        """Log the coordination flags and device state at debug level."""
        self.log.debug(f"connected={self.connected}; link={self.link_url}; {self.flags}")
        self.log.debug(f"state={self.state}")


async def amain(args):
    """Connect to the dome and run until cancelled."""
    if args.config:
        config = load_config(args.config)
    else:
        config = make_config()
    if args.port:
        config.serial_port = args.port
    dome = DomeController(config=config, simulation_mode=1 if args.simulate else 0)
    async with dome:
        await dome.connect()
        await dome.done_task


def run_pulsardome():
    """Run the Pulsar dome controller from the command line."""
    parser = argparse.ArgumentParser(description="Control a Pulsar dome")
    parser.add_argument("--port", help="Serial port or pyserial URL")
    parser.add_argument("--config", help="Path of a YAML configuration file")
    parser.add_argument(
        "-s", "--simulate", action="store_true", help="Run in simulation mode?"
    )
    parser.add_argument(
        "--log-level", default="INFO", help="Log level, e.g. DEBUG or INFO"
    )
    args = parser.parse_args()
    logging.basicConfig(level=args.log_level.upper())
    asyncio.run(amain(args))
