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

__all__ = ["TERMINATOR", "SerialLinkGuard", "open_serial_port"]

import asyncio
import contextlib
import logging
import threading
import time

import serial

from .exceptions import NoResponseError, NotConnectedError

# Terminator appended to each command.
TERMINATOR = "\r\n"

# Delay between checks for new input while reading a reply (sec).
READ_POLL_INTERVAL = 0.01


def open_serial_port(url, baud_rate, timeout):
    """Open a serial port.

    Parameters
    ----------
    url : `str`
        Port name, e.g. "/dev/ttyUSB0", or any URL supported by
        `serial.serial_for_url`, e.g. "socket://localhost:5000".
    baud_rate : `int`
        Baud rate. Ignored for socket URLs.
    timeout : `float`
        Read and write timeout (sec).

    Returns
    -------
    port : `serial.SerialBase`
        The open port.

    Raises
    ------
    NotConnectedError
        If the port cannot be opened.
    """
    try:
        return serial.serial_for_url(
            url,
            baudrate=baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout,
            write_timeout=timeout,
        )
    except (serial.SerialException, OSError, ValueError) as e:
        raise NotConnectedError(f"Could not open serial port {url!r}: {e!r}") from e


class SerialLinkGuard:
    """Exclusive access to the serial link to a Pulsar dome controller.

    The link is half duplex: each command is written and its reply read
    before the next command may be written. `send` and `transact`
    guarantee that, whether they are called from tasks or threads.

    Parameters
    ----------
    port : `serial.SerialBase`
        An open serial port (or a duck-typed equivalent).
    flags : `CoordinationFlags`
        Shared flags; ``command_in_progress`` is set during each transaction.
    log : `logging.Logger` or `None`
        Parent logger, or None to use the module logger.
    read_timeout : `float`
        Time limit for a complete reply (sec).
    quiet_window : `float`
        Once a line terminator has been read, the reply ends when no more
        bytes arrive within this time (sec).
    settle : `float`
        Delay before each check for stale input (sec).
    flush_attempts : `int`
        Maximum number of times to discard stale input before writing.

    Notes
    -----
    Serial I/O is blocking, so `send` runs `transact` in a worker thread.
    An `asyncio.Lock` keeps tasks from piling up worker threads and a
    `threading.Lock` serializes the transactions themselves.
    """

    def __init__(
        self,
        port,
        flags,
        log=None,
        read_timeout=0.75,
        quiet_window=0.05,
        settle=0.06,
        flush_attempts=3,
    ):
        self.port = port
        self.flags = flags
        parent_log = log if log is not None else logging.getLogger(__name__)
        self.log = parent_log.getChild(type(self).__name__)
        self.read_timeout = read_timeout
        self.quiet_window = quiet_window
        self.settle = settle
        self.flush_attempts = flush_attempts
        self._async_lock = asyncio.Lock()
        self._thread_lock = threading.Lock()
        self._closing = False

    @property
    def is_ready(self):
        """Is the link open and usable?"""
        return not self._closing and self.port is not None and self.port.is_open

    @contextlib.contextmanager
    def busy(self):
        """Set ``flags.command_in_progress`` for the duration of a block."""
        self.flags.command_in_progress = True
        try:
            yield
        finally:
            self.flags.command_in_progress = False

    async def send(self, command, expect_response=True):
        """Send a command and return the reply.

        Parameters
        ----------
        command : `str`
            The command, without terminator, e.g. "V" or "ABS 120.0".
        expect_response : `bool`
            If False, do not read a reply and return None.

        Returns
        -------
        reply : `str` or `None`
            The raw reply (possibly partial, if no terminator arrived
            before the read timeout), or None if ``expect_response`` false.

        Raises
        ------
        ValueError
            If ``command`` is blank.
        NotConnectedError
            If the link is not open, or is closed during the transaction.
        NoResponseError
            If nothing was received before the read timeout.
        """
        self._check_command(command)
        async with self._async_lock:
            return await asyncio.to_thread(self.transact, command, expect_response)

    def transact(self, command, expect_response=True):
        """Blocking version of `send`."""
        self._check_command(command)
        with self._thread_lock, self.busy():
            if not self.is_ready:
                raise NotConnectedError("Serial port is not open")
            try:
                self._flush_input(command)
                self.port.reset_output_buffer()
                self.port.write(f"{command}{TERMINATOR}".encode("ascii"))
                self.log.debug(f"Sent {command!r}")
                if not expect_response:
                    return None
                raw, terminator_seen = self._read_reply()
            except (serial.SerialException, OSError) as e:
                raise NotConnectedError(
                    f"Serial I/O failed while sending {command!r}: {e!r}"
                ) from e

        self.log.debug(f"Sent {command!r}; received {raw!r}")
        if not raw.strip():
            raise NoResponseError(f"No response received for command {command!r}")
        if not terminator_seen:
            self.log.warning(
                f"Partial response to {command!r} after {self.read_timeout} sec: {raw!r}"
            )
        return raw

    def close(self):
        """Close the port, even if a transaction is in progress.

        A transaction in progress fails with `NotConnectedError`.
        """
        self._closing = True
        if self.port is not None:
            try:
                self.port.close()
            except (serial.SerialException, OSError) as e:
                self.log.warning(f"Error closing serial port: {e!r}")

    def _check_command(self, command):
        if not command or not command.strip():
            raise ValueError("command must not be blank")

    def _flush_input(self, command):
        """Discard stale input, logging whatever was discarded."""
        for _ in range(self.flush_attempts):
            time.sleep(self.settle)
            pending = self.port.in_waiting
            if not pending:
                return
            stale = self.port.read(pending)
            self.log.warning(f"Discarded stale input before {command!r}: {stale!r}")
        self.port.reset_input_buffer()

    def _read_reply(self):
        """Read a reply.

        Returns
        -------
        raw : `str`
            Data read, decoded as ASCII.
        terminator_seen : `bool`
            True if a line terminator was read.
        """
        buffer = bytearray()
        terminator_seen = False
        last_data_time = time.monotonic()
        deadline = last_data_time + self.read_timeout
        while True:
            if self._closing:
                raise NotConnectedError("Serial port closed during read")
            now = time.monotonic()
            pending = self.port.in_waiting
            if now >= deadline:
                break
            # Some ports (e.g. socket://) only report whether data is
            # waiting, not how much, so read until nothing is left.
            if pending:
                chunk = self.port.read(pending)
                buffer += chunk
                last_data_time = now
                if b"\r" in chunk or b"\n" in chunk:
                    terminator_seen = True
                continue
            elif terminator_seen and now - last_data_time >= self.quiet_window:
                break
            time.sleep(READ_POLL_INTERVAL)
        return buffer.decode("ascii", errors="replace"), terminator_seen
