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

__all__ = ["RetryPolicy"]

import asyncio
import logging

from .exceptions import RetryTimeoutError


class RetryPolicy:
    """Retry an asynchronous operation until it succeeds.

    Parameters
    ----------
    max_attempts : `int`
        Maximum number of attempts; must be positive.
    delay : `float`
        Delay between attempts (sec).
    exponential_backoff : `bool`
        If True the delay after attempt ``i`` (starting from 0)
        is ``delay * 2**i``, else it is always ``delay``.
    log : `logging.Logger` or `None`
        Parent logger, or None to use the module logger.
    """

    def __init__(self, max_attempts=3, delay=0.1, exponential_backoff=False, log=None):
        if max_attempts < 1:
            raise ValueError(f"max_attempts={max_attempts} must be positive")
        if delay < 0:
            raise ValueError(f"delay={delay} must be non-negative")
        self.max_attempts = max_attempts
        self.delay = delay
        self.exponential_backoff = exponential_backoff
        parent_log = log if log is not None else logging.getLogger(__name__)
        self.log = parent_log.getChild(type(self).__name__)

    def get_delay(self, attempt):
        """Get the delay after a failed attempt (sec).

        Parameters
        ----------
        attempt : `int`
            Index of the failed attempt, starting from 0.
        """
        if self.exponential_backoff:
            return self.delay * 2**attempt
        return self.delay

    async def execute(self, action, is_success=None, description=None):
        """Call ``action`` until ``is_success`` accepts its result.

        Parameters
        ----------
        action : `callable`
            Coroutine function with no arguments.
        is_success : `callable` or `None`
            Function that takes the result of ``action`` and returns
            True if it is acceptable. If None, any result is acceptable.
        description : `str` or `None`
            What the action does, for log messages.

        Returns
        -------
        result
            The first acceptable result.

        Raises
        ------
        RetryTimeoutError
            If no attempt succeeded. An exception raised by ``action`` counts
            as a failed attempt; the last one is chained to this error.
        """
        description = description or getattr(action, "__name__", repr(action))
        last_exception = None
        for attempt in range(self.max_attempts):
            try:
                result = await action()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_exception = e
                self.log.warning(
                    f"{description} attempt {attempt + 1} of {self.max_attempts} "
                    f"failed: {e!r}"
                )
            else:
                if is_success is None or is_success(result):
                    return result
                self.log.debug(
                    f"{description} attempt {attempt + 1} of {self.max_attempts} "
                    f"rejected: {result!r}"
                )
            if attempt < self.max_attempts - 1:
                await asyncio.sleep(self.get_delay(attempt))
        raise RetryTimeoutError(
            f"{description} failed after {self.max_attempts} attempts"
        ) from last_exception
