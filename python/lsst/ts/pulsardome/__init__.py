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

try:
    from .version import *
except ImportError:
    __version__ = "?"

from .enums import *
from .exceptions import *
from .config_schema import *
from .status import *
from .device_state import *
from .protocol import *
from .serial_guard import *
from .retry import *
from .completion import *
from .status_poller import *
from .action_watchdog import *
from .notifier import *
from .supervisor import *
from .reset_coordinator import *
from .mock_controller import *
from .dome_controller import *
