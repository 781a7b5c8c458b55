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

import math
import unittest

import pytest
from lsst.ts import pulsardome

GOOD_FIELDS = [
    "123.4",  # azimuth
    "1",  # dome state
    "2.5",  # rotation
    "-10",  # target azimuth
    "1",  # motor direction
    "2",  # shutter status
    "550",  # shutter percentage
    "1320",  # shutter voltage
    "12",  # shutter current
    "123400",  # encoder
    "18",  # temperature
    "junk",  # ignored
    "1",  # relay
]


def make_line(**replacements):
    """Make a status line, replacing fields by index: f<index>=value."""
    fields = list(GOOD_FIELDS)
    for key, value in replacements.items():
        fields[int(key[1:])] = value
    return "\t".join(fields)


class StatusTestCase(unittest.TestCase):
    def test_parse_good(self):
        status = pulsardome.Status(make_line())
        assert status.azimuth == pytest.approx(123.4)
        assert status.dome_state == 1
        assert status.rotation == pytest.approx(2.5)
        assert status.target_azimuth_raw == pytest.approx(-10)
        assert status.target_azimuth == pytest.approx(350)
        assert status.motor_direction == 1
        assert status.shutter_status == pulsardome.ShutterStatus.OPENING
        assert status.shutter_percentage == 550
        assert status.shutter_voltage == 1320
        assert status.shutter_current == 12
        assert status.encoder == 123400
        assert status.temperature == 18
        assert status.relay

    def test_extra_fields(self):
        status = pulsardome.Status(make_line() + "\textra\tfields")
        assert status.azimuth == pytest.approx(123.4)

    def test_too_few_fields(self):
        line = "\t".join(GOOD_FIELDS[:-1])
        with pytest.raises(pulsardome.StatusParseError):
            pulsardome.Status(line)

    def test_out_of_range(self):
        for index, value in (
            (0, "360.1"),
            (0, "-0.1"),
            (1, "10"),
            (3, "-180"),
            (3, "540"),
            (4, "3"),
            (5, "7"),
            (6, "1001"),
            (12, "2"),
            (0, "nan"),
            (3, "nan"),
            (3, "-inf"),
        ):
            with self.subTest(index=index, value=value):
                with pytest.raises(pulsardome.StatusParseError):
                    pulsardome.Status(make_line(**{f"f{index}": value}))

    def test_not_numeric(self):
        for index in (0, 1, 2, 7, 8, 9, 10, 12):
            with self.subTest(index=index):
                with pytest.raises(pulsardome.StatusParseError):
                    pulsardome.Status(make_line(**{f"f{index}": "x"}))

    def test_not_finite_rejected(self):
        # Fields without a range must still be finite.
        for value in ("nan", "inf"):
            with self.subTest(value=value):
                with pytest.raises(pulsardome.StatusParseError):
                    pulsardome.Status(make_line(f2=value))

    def test_relay_zero(self):
        status = pulsardome.Status(make_line(f12="0"))
        assert not status.relay

    def test_bad_record_leaves_state_unchanged(self):
        state = pulsardome.DeviceState()
        state.apply_status(pulsardome.Status(make_line()))
        before = state.snapshot()
        with pytest.raises(pulsardome.StatusParseError):
            state.apply_status(pulsardome.Status(make_line(f12="2")))
        assert state.snapshot() == before

    def test_from_response(self):
        raw = "garbage\r\n" + make_line(f0="10") + "\r\n"
        status = pulsardome.Status.from_response(raw)
        assert status.azimuth == pytest.approx(10)
        for bad_raw in ("", None, "A\r\n", make_line(f5="9")):
            with self.subTest(bad_raw=bad_raw):
                with pytest.raises(pulsardome.StatusParseError):
                    pulsardome.Status.from_response(bad_raw)

    def test_parse_flag_response(self):
        assert pulsardome.parse_flag_response("1\r\n")
        assert not pulsardome.parse_flag_response(" 0 ")
        for bad_raw in ("", "2", "yes", None):
            with self.subTest(bad_raw=bad_raw):
                with pytest.raises(pulsardome.StatusParseError):
                    pulsardome.parse_flag_response(bad_raw)


class DeviceStateTestCase(unittest.TestCase):
    def test_initial(self):
        state = pulsardome.DeviceState()
        assert math.isnan(state.azimuth)
        assert state.dome_state == pulsardome.DomeState.UNKNOWN
        assert state.shutter_status == pulsardome.ShutterStatus.UNKNOWN
        assert "lock" not in state.snapshot()

    def test_apply_status(self):
        state = pulsardome.DeviceState()
        status = pulsardome.Status(make_line(f1="5"))
        state.apply_status(status, at_home=True, slewing=True)
        assert state.azimuth == pytest.approx(123.4)
        # Codes without a specific meaning are unknown.
        assert state.dome_state == pulsardome.DomeState.UNKNOWN
        assert state.target_azimuth == pytest.approx(350)
        assert state.shutter_status == pulsardome.ShutterStatus.OPENING
        assert state.at_home
        assert not state.at_park
        assert state.slewing

    def test_update(self):
        state = pulsardome.DeviceState()
        state.update(azimuth=12.0, at_park=True)
        assert state.azimuth == 12.0
        assert state.at_park
        with pytest.raises(AttributeError):
            state.update(no_such_field=1)
        with pytest.raises(AttributeError):
            state.update(lock=None)


if __name__ == "__main__":
    unittest.main()
