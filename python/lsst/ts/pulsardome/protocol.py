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
    "PING",
    "PING_RESPONSE",
    "ACK",
    "STATUS",
    "HOME_QUERY",
    "PARK_QUERY",
    "OPEN",
    "CLOSE",
    "GO_HOME",
    "GO_PARK",
    "STOP",
    "RESTART",
    "FLAG_RESPONSES",
    "slew_command",
    "ResponseResult",
    "check_response",
    "send_and_verify",
]

import dataclasses

from .enums import ResponseMode

# Commands and replies of the Pulsar dome controller.
PING = "PULSAR"
PING_RESPONSE = "Y159"
ACK = "A"
STATUS = "V"
HOME_QUERY = "HOME ?"
PARK_QUERY = "PARK ?"
OPEN = "OPEN"
CLOSE = "CLOSE"
GO_HOME = "GO H"
GO_PARK = "GO P"
STOP = "STOP"
# No reply; the controller reboots.
RESTART = "RESTART"

FLAG_RESPONSES = ("0", "1")


def slew_command(azimuth):
    """Get the command to slew to a given azimuth (deg)."""
    return f"ABS {azimuth}"


@dataclasses.dataclass
class ResponseResult:
    """The outcome of `send_and_verify`.

    Attributes
    ----------
    command : `str`
        The command sent.
    response : `str` or `None`
        The raw reply, or None for `ResponseMode.BLIND`.
    is_match : `bool`
        Was the reply acceptable?
    retries_used : `int`
        Number of attempts after the first.
    """

    command: str
    response: str | None = None
    is_match: bool = False
    retries_used: int = 0


def check_response(response, mode, expected=None):
    """Is a reply acceptable?

    Parameters
    ----------
    response : `str` or `None`
        The raw reply.
    mode : `ResponseMode`
        How to judge the reply.
    expected : `list` [`str`] or `None`
        Acceptable replies, for `ResponseMode.MATCH_EXACT` (which uses
        only the first) and `ResponseMode.MATCH_ANY`.
        Comparisons ignore case and surrounding whitespace.

    Raises
    ------
    ValueError
        If ``expected`` is empty for a matching mode.
    """
    if mode in (ResponseMode.BLIND, ResponseMode.RAW):
        return True
    if not expected:
        raise ValueError(f"mode={mode!r} requires expected responses")
    reply = (response or "").strip().lower()
    if mode == ResponseMode.MATCH_EXACT:
        return reply == expected[0].strip().lower()
    return any(reply == item.strip().lower() for item in expected)


async def send_and_verify(guard, command, mode, expected=None, retry_policy=None):
    """Send a command, retrying until the reply is acceptable.

    Parameters
    ----------
    guard : `SerialLinkGuard`
        The serial link.
    command : `str`
        The command.
    mode : `ResponseMode`
        How to judge the reply.
    expected : `list` [`str`] or `None`
        Acceptable replies; see `check_response`.
    retry_policy : `RetryPolicy` or `None`
        How to retry; if None, try once.

    Returns
    -------
    result : `ResponseResult`
        The accepted result. If ``retry_policy`` is None this is the
        result of the only attempt, and ``is_match`` may be False.

    Raises
    ------
    RetryTimeoutError
        If no attempt gave an acceptable reply.
    NotConnectedError
        If ``retry_policy`` is None and the link is not open.
    NoResponseError
        If ``retry_policy`` is None and there was no reply.
    """
    if mode != ResponseMode.BLIND and mode != ResponseMode.RAW and not expected:
        raise ValueError(f"mode={mode!r} requires expected responses")
    expect_response = mode != ResponseMode.BLIND
    attempts = 0

    async def attempt():
        nonlocal attempts
        attempts += 1
        response = await guard.send(command, expect_response=expect_response)
        return ResponseResult(
            command=command,
            response=response,
            is_match=check_response(response, mode, expected),
            retries_used=attempts - 1,
        )

    if retry_policy is None:
        return await attempt()

    return await retry_policy.execute(
        attempt,
        lambda result: result.is_match,
        description=f"send {command!r}",
    )
