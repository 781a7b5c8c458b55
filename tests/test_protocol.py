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

import unittest

import pytest
from lsst.ts import pulsardome
from lsst.ts.pulsardome import ResponseMode


class ScriptedGuard:
    """Serial link guard stand-in that returns scripted replies in order."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.sent = []

    async def send(self, command, expect_response=True):
        self.sent.append((command, expect_response))
        if not expect_response:
            return None
        return self.replies.pop(0)


class ProtocolTestCase(unittest.IsolatedAsyncioTestCase):
    def test_slew_command(self):
        assert pulsardome.slew_command(120.5) == "ABS 120.5"

    def test_check_response_match_exact(self):
        check = pulsardome.check_response
        assert check(" a\r\n", ResponseMode.MATCH_EXACT, ["A"])
        assert not check("AB\r\n", ResponseMode.MATCH_EXACT, ["A"])
        # Only the first expected reply counts.
        assert not check("B\r\n", ResponseMode.MATCH_EXACT, ["A", "B"])
        assert not check(None, ResponseMode.MATCH_EXACT, ["A"])

    def test_check_response_match_any(self):
        check = pulsardome.check_response
        assert check("1\r\n", ResponseMode.MATCH_ANY, pulsardome.FLAG_RESPONSES)
        assert check(" Y159 ", ResponseMode.MATCH_ANY, ["A", "y159"])
        # The reply must equal an expected text, not merely contain one.
        assert not check("10\r\n", ResponseMode.MATCH_ANY, pulsardome.FLAG_RESPONSES)
        assert not check("Y1590", ResponseMode.MATCH_ANY, ["Y159"])

    def test_check_response_unmatched_modes(self):
        check = pulsardome.check_response
        assert check(None, ResponseMode.BLIND)
        assert check("anything", ResponseMode.RAW)
        for mode in (ResponseMode.MATCH_EXACT, ResponseMode.MATCH_ANY):
            with pytest.raises(ValueError):
                check("A", mode, [])

    async def test_send_and_verify_retries(self):
        guard = ScriptedGuard(["E\r\n", "A\r\n"])
        policy = pulsardome.RetryPolicy(max_attempts=3, delay=0)
        result = await pulsardome.send_and_verify(
            guard, "OPEN", ResponseMode.MATCH_EXACT, [pulsardome.ACK], policy
        )
        assert result.is_match
        assert result.response == "A\r\n"
        assert result.retries_used == 1
        assert guard.sent == [("OPEN", True), ("OPEN", True)]

    async def test_send_and_verify_exhausted(self):
        guard = ScriptedGuard(["E\r\n", "E\r\n"])
        policy = pulsardome.RetryPolicy(max_attempts=2, delay=0)
        with pytest.raises(pulsardome.RetryTimeoutError):
            await pulsardome.send_and_verify(
                guard, "OPEN", ResponseMode.MATCH_EXACT, [pulsardome.ACK], policy
            )

    async def test_send_and_verify_single_attempt(self):
        guard = ScriptedGuard(["E\r\n"])
        result = await pulsardome.send_and_verify(
            guard, "OPEN", ResponseMode.MATCH_EXACT, [pulsardome.ACK]
        )
        assert not result.is_match
        assert result.retries_used == 0

    async def test_send_and_verify_blind(self):
        guard = ScriptedGuard([])
        result = await pulsardome.send_and_verify(
            guard, pulsardome.RESTART, ResponseMode.BLIND
        )
        assert result.is_match
        assert result.response is None
        assert guard.sent == [(pulsardome.RESTART, False)]

        with pytest.raises(ValueError):
            await pulsardome.send_and_verify(guard, "OPEN", ResponseMode.MATCH_ANY)


if __name__ == "__main__":
    unittest.main()
