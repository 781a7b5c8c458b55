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

__all__ = ["INITIAL_AZIMUTH", "MockPulsarController"]

import asyncio
import functools

from lsst.ts import simactuators, tcpip, utils

from . import protocol
from .enums import DomeState, ShutterStatus

# Initial azimuth (deg)
INITIAL_AZIMUTH = 45

# Reply to a command that failed.
ERROR_REPLY = "E"


class MockPulsarController(tcpip.OneClientReadLoopServer):
    """Mock Pulsar dome controller that talks over TCP/IP.

    Use a pyserial ``socket://host:port`` URL to connect to it
    as if it were a serial port.

    Parameters
    ----------
    port : int
        TCP/IP port. If 0 then pick an available port.
    log : `logging.Logger`
        Logger.
    door_time : `float`
        Time to fully open or close the shutter (sec)
    az_vel : `float`
        Azimuth velocity (deg/sec)
    home_az : `float`
        Azimuth of the home switch (deg)
    park_az : `float`
        Park azimuth (deg)
    home_az_overshoot : `float`
        Distance to move past the home switch at full speed while homing,
        before coming back slowly (deg)
    home_az_vel : `float`
        Final velocity for azimuth homing (deg/sec)
    reboot_time : `float`
        Time after a RESTART command during which the shutter
        link is down (sec)
    **kwargs
        Additional keyword arguments for `tcpip.OneClientReadLoopServer`.

    Notes
    -----
    To start the server:

        ctrl = MockPulsarController(...)
        await ctrl.start_task

    To stop the server:

        await ctrl.close()

    Known Limitations:

    * Shutter voltage, current, encoder counts and temperature
      are fixed or bogus.
    * A reboot only drops the shutter link; the controller
      keeps answering commands.
    """

    def __init__(
        self,
        port,
        log,
        door_time=1,
        az_vel=6,
        home_az=0,
        park_az=180,
        home_az_overshoot=1,
        home_az_vel=1,
        reboot_time=1,
        **kwargs,
    ):
        self.door_time = door_time
        self.az_vel = az_vel
        self.home_az = home_az
        self.park_az = park_az
        self.home_az_overshoot = home_az_overshoot
        self.home_az_vel = home_az_vel
        self.reboot_time = reboot_time
        # Maximum |az - home_az| or |az - park_az| (deg) for which
        # to report being at home or park.
        self.position_tolerance = 0.2
        self.encoder_counts_per_deg = 1000
        self.shutter_voltage = 1320
        self.shutter_current = 0
        self.temperature = 15
        self.relay = False
        self.az_actuator = simactuators.CircularPointToPointActuator(
            speed=az_vel, start_position=INITIAL_AZIMUTH
        )
        self.shutter_actuator = simactuators.PointToPointActuator(
            min_position=0,
            max_position=100,
            start_position=0,
            speed=100 / door_time,
        )
        self._homing_task = utils.make_done_future()
        # TAI at which the shutter link comes back after a reboot.
        self.shutter_link_down_until = 0
        # Report shutter status ERROR?
        self.shutter_error = False
        # Ignore the RESTART command?
        self.ignore_restart = False
        # Read commands but never reply? Simulates a hung controller.
        self.mute = False
        # Name of a command to report as failed once, the next time it is seen,
        # or None if no failures. Used to test handling of failed commands.
        self.fail_command = None
        # Number of times each command has been received.
        self.command_counts = dict()

        # Dict of command: (has_argument, function).
        # The function is called with:
        # * No arguments, if `has_argument` False.
        # * The argument as a string, if `has_argument` is True.
        # The function returns a list of reply lines.
        self.dispatch_dict = {
            protocol.PING: (False, self.do_ping),
            protocol.STATUS: (False, self.do_status),
            protocol.HOME_QUERY: (False, self.do_home_query),
            protocol.PARK_QUERY: (False, self.do_park_query),
            protocol.OPEN: (False, functools.partial(self.do_move_shutter, 100)),
            protocol.CLOSE: (False, functools.partial(self.do_move_shutter, 0)),
            "ABS": (True, self.do_set_cmd_az),
            protocol.GO_HOME: (False, self.do_home),
            protocol.GO_PARK: (False, self.do_park),
            protocol.STOP: (False, self.do_stop),
            protocol.RESTART: (False, self.do_restart),
        }
        super().__init__(port=port, log=log, terminator=b"\r\n", **kwargs)

    @property
    def homing(self):
        """Is azimuth being homed?"""
        return not self._homing_task.done()

    @property
    def shutter_link_down(self):
        """Is the shutter link down because of a reboot?"""
        return utils.current_tai() < self.shutter_link_down_until

    async def read_and_dispatch(self):
        """Read, parse and execute one command and output replies."""
        data = await self.read_str()
        data = data.strip()
        self.log.debug(f"read command: {data!r}")
        if not data:
            return
        try:
            if data in self.dispatch_dict:
                cmd, args = data, []
            else:
                items = data.split()
                cmd, args = items[0], items[1:]
            if cmd not in self.dispatch_dict:
                raise KeyError(f"Unsupported command {cmd}")
            self.command_counts[cmd] = self.command_counts.get(cmd, 0) + 1
            if cmd == self.fail_command:
                self.fail_command = None
                outputs = [ERROR_REPLY]
            else:
                has_data, func = self.dispatch_dict[cmd]
                desired_len = 1 if has_data else 0
                if len(args) != desired_len:
                    raise RuntimeError(
                        f"{data} has {len(args)} arguments; expected {desired_len}"
                    )
                if has_data:
                    outputs = func(args[0])
                else:
                    outputs = func()
        except Exception as e:
            self.log.exception(f"command {data} failed: {e!r}")
            outputs = [ERROR_REPLY]
        if self.mute:
            self.log.debug(f"muted; not replying to {data!r}")
            return
        for msg in outputs:
            await self.write_str(msg)

    def do_ping(self):
        return [protocol.PING_RESPONSE]

    def do_status(self):
        """Create status as a list of one tab-separated line."""
        curr_tai = utils.current_tai()
        curr_az = self.az_actuator.position(curr_tai)
        az_velocity = self.az_actuator.velocity(curr_tai)
        az_moving = self.az_actuator.moving(curr_tai)
        if self.homing:
            dome_state = DomeState.FINDING_HOME
        elif az_moving:
            dome_state = DomeState.MOVING
        else:
            dome_state = DomeState.IDLE
        if not az_moving:
            motor_direction = 0
        elif self.az_actuator.direction == 1:
            motor_direction = 1
        else:
            motor_direction = 2
        shutter_position = self.shutter_actuator.position(curr_tai)
        fields = [
            f"{curr_az:0.1f}",
            f"{dome_state.value:d}",
            f"{az_velocity:0.2f}",
            f"{self.az_actuator.end_position:0.1f}",
            f"{motor_direction:d}",
            f"{self.get_shutter_status(curr_tai).value:d}",
            f"{shutter_position * 10:0.0f}",
            f"{self.shutter_voltage:d}",
            f"{self.shutter_current:d}",
            f"{curr_az * self.encoder_counts_per_deg:0.0f}",
            f"{self.temperature:d}",
            "0",
            f"{1 if self.relay else 0}",
        ]
        return ["\t".join(fields)]

    def get_shutter_status(self, tai):
        """Get the shutter status at the specified TAI time."""
        if self.shutter_link_down:
            return ShutterStatus.NOT_FITTED
        if self.shutter_error:
            return ShutterStatus.ERROR
        velocity = self.shutter_actuator.velocity(tai)
        if velocity > 0:
            return ShutterStatus.OPENING
        elif velocity < 0:
            return ShutterStatus.CLOSING
        position = self.shutter_actuator.position(tai)
        if position >= 100:
            return ShutterStatus.OPEN
        elif position <= 0:
            return ShutterStatus.CLOSED
        return ShutterStatus.UNKNOWN

    def is_at(self, azimuth):
        """Is the dome stopped within ``position_tolerance`` of azimuth?"""
        curr_tai = utils.current_tai()
        if self.homing or self.az_actuator.moving(curr_tai):
            return False
        curr_az = self.az_actuator.position(curr_tai)
        return abs(utils.angle_diff(curr_az, azimuth).deg) < self.position_tolerance

    def do_home_query(self):
        return ["1" if self.is_at(self.home_az) else "0"]

    def do_park_query(self):
        return ["1" if self.is_at(self.park_az) else "0"]

    def do_move_shutter(self, position):
        """Open (position=100) or close (position=0) the shutter."""
        if self.shutter_link_down:
            raise RuntimeError("Shutter link is down")
        self.shutter_actuator.set_position(position)
        return [protocol.ACK]

    def do_set_cmd_az(self, data):
        """Set commanded azimuth position.

        Parameters
        ----------
        data : `str`
            Desired azimuth as a float encoded as a string (deg)
        """
        if self.homing:
            raise RuntimeError("Cannot set azimuth while homing")
        cmd_az = float(data)
        self.set_cmd_az(cmd_az)
        return [protocol.ACK]

    def do_home(self):
        """Rotate azimuth to the home position."""
        self._homing_task.cancel()
        self._homing_task = asyncio.ensure_future(self.implement_home())
        return [protocol.ACK]

    def do_park(self):
        """Rotate azimuth to the park position."""
        self._homing_task.cancel()
        self.set_cmd_az(self.park_az)
        return [protocol.ACK]

    def do_stop(self):
        """Stop all motion."""
        self._homing_task.cancel()
        self.az_actuator.stop()
        self.shutter_actuator.stop()
        return [protocol.ACK]

    def do_restart(self):
        """Reboot: stop all motion and drop the shutter link for a while.

        There is no reply.
        """
        if self.ignore_restart:
            self.log.info("Ignoring RESTART")
            return []
        self._homing_task.cancel()
        self.az_actuator.stop()
        self.shutter_actuator.stop()
        self.shutter_link_down_until = utils.current_tai() + self.reboot_time
        return []

    def set_cmd_az(self, cmd_az):
        """Start moving to the specified azimuth.

        Parameters
        ----------
        cmd_az : `float`
            Desired azimuth (degree). Must be in the range [0, 360).

        Returns
        -------
        duration : `float`
            Move duration (second)
        """
        if not 0 <= cmd_az < 360:
            raise ValueError(f"cmd_az={cmd_az} not in range [0, 360)")
        return self.az_actuator.set_position(
            position=cmd_az, direction=simactuators.Direction.NEAREST
        )

    async def implement_home(self):
        """Home the azimuth axis."""
        try:
            overshoot_az = utils.angle_wrap_nonnegative(
                self.home_az - self.home_az_overshoot
            ).deg
            duration = self.set_cmd_az(overshoot_az)
            await asyncio.sleep(duration)
            self.az_actuator.speed = self.home_az_vel
            duration = self.set_cmd_az(self.home_az)
            await asyncio.sleep(duration)
        finally:
            self.az_actuator.speed = self.az_vel
