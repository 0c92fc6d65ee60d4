# MIT License
#
# Copyright (c) 2025 RNS MAVLink Bridge Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Serial port endpoint for the flight controller side.

pyserial is blocking, so reads and writes run in the loop's default
executor. The port is opened with a short read timeout; a read waits at most
that long for the first byte and then takes everything already buffered.
"""

import asyncio
import errno

import RNS
import serial

from rns_mavlink.errors import EndpointClosedError, EndpointIoError, EndpointOpenError
from rns_mavlink.local_endpoint import LocalEndpoint


# Raised by pyserial on POSIX when the device node goes away under a read
DISCONNECT_MESSAGE = "device reports readiness to read but returned no data"


class SerialEndpoint(LocalEndpoint):

    DEFAULT_BAUDRATE = 115200
    READ_TIMEOUT = 0.1  # seconds

    def __init__(self, port, baudrate=DEFAULT_BAUDRATE, read_timeout=READ_TIMEOUT):
        self.port = port
        self.baudrate = baudrate
        self.read_timeout = read_timeout
        self.serial = None

    async def open(self):
        try:
            self.serial = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.read_timeout,
            )
        except (serial.SerialException, ValueError) as e:
            raise EndpointOpenError(f"cannot open serial port {self.port}: {e}") from e

        RNS.log(f"{self} opened at {self.baudrate} baud", RNS.LOG_INFO)

    def _check_open(self):
        if self.serial is None or not self.serial.is_open:
            raise EndpointClosedError(f"serial port {self.port} is not open")

    def _read_blocking(self, size):
        data = self.serial.read(1)
        if data and size > 1:
            waiting = self.serial.in_waiting
            if waiting:
                data += self.serial.read(min(waiting, size - 1))
        return data

    async def read(self, size):
        self._check_open()
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._read_blocking, size)
        except (serial.SerialException, OSError) as e:
            self._check_open()
            if self._device_gone(e):
                raise EndpointClosedError(f"serial device {self.port} disconnected: {e}") from e
            raise EndpointIoError(f"error reading serial port {self.port}: {e}") from e

    @staticmethod
    def _device_gone(error):
        # pyserial keeps is_open set after a USB adapter is unplugged
        if getattr(error, "errno", None) in (errno.EIO, errno.ENXIO, errno.ENODEV):
            return True
        return DISCONNECT_MESSAGE in str(error)

    def _write_blocking(self, data):
        written = self.serial.write(data)
        self.serial.flush()
        return written

    async def write(self, data):
        self._check_open()
        loop = asyncio.get_running_loop()
        try:
            written = await loop.run_in_executor(None, self._write_blocking, data)
        except (serial.SerialException, OSError) as e:
            raise EndpointIoError(f"error writing serial port {self.port}: {e}") from e

        if written is not None and written != len(data):
            raise EndpointIoError(f"short write on serial port {self.port}: {written}/{len(data)} bytes")

    def close(self):
        if self.serial is not None and self.serial.is_open:
            self.serial.close()
            RNS.log(f"{self} closed", RNS.LOG_DEBUG)

    def __str__(self):
        return f"SerialEndpoint[{self.port}]"
