"""Fake serial port that simulates a Sensirion SPS30 on its SHDLC UART interface.

This simulator answers MOSI frames with MISO frames exactly as the sensor
does, including byte stuffing, checksums, state-byte error codes, the device
error flag, sleep mode (interface silent until 0xFF + wake-up) and the idle /
measurement mode rules for each command.
"""

import logging
import struct
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from sps30_agent import protocol
from sps30_agent.models import Sample

logger = logging.getLogger(__name__)

ERR_WRONG_LENGTH = 0x01
ERR_UNKNOWN_COMMAND = 0x02
ERR_ILLEGAL_PARAMETER = 0x04
ERR_NOT_ALLOWED = 0x43

DEFAULT_SAMPLE = Sample(
    mc_1p0=3.1,
    mc_2p5=4.2,
    mc_4p0=4.9,
    mc_10p0=5.3,
    nc_0p5=20.5,
    nc_1p0=24.0,
    nc_2p5=24.4,
    nc_4p0=24.5,
    nc_10p0=24.5,
    typical_particle_size=0.55,
)


def build_miso_frame(command: int, state: int = 0, data: bytes = b"") -> bytes:
    """Build a response frame the way the sensor does."""
    body = bytes([protocol.SLAVE_ADDRESS, command, state, len(data)]) + data
    body += bytes([protocol.checksum(body)])
    delimiter = bytes([protocol.FRAME_DELIMITER])
    return delimiter + protocol.stuff(body) + delimiter


class FakeSps30Serial:
    """Deterministic simulator of SPS30 firmware behavior.

    Implements:
    - Idle / Measurement / Sleep modes with the datasheet's command rules
    - Float output format measurements (40-byte payload)
    - Version, serial number and auto-clean interval registers
    - Device error flag in the state byte (set `device_error_flag`)
    - Error injection per command (`inject_error`)
    """

    def __init__(
        self,
        serial_number: str = "F5A2C1D0E9B87766",
        firmware: Tuple[int, int] = (2, 2),
        hardware_revision: int = 7,
        shdlc: Tuple[int, int] = (2, 0),
        samples: Optional[Iterable[Optional[Sample]]] = None,
    ) -> None:
        """Initialize fake sensor.

        Args:
            serial_number: Device serial number
            firmware: Firmware (major, minor); sleep/wake exist from 2.0
            hardware_revision: Hardware revision
            shdlc: SHDLC protocol (major, minor)
            samples: Samples returned by successive reads, repeated cyclically.
                     A None entry answers with an empty payload (no new data).
        """
        # Device identity
        self.serial_number = serial_number
        self.firmware = firmware
        self.hardware_revision = hardware_revision
        self.shdlc = shdlc

        # Registers
        self.auto_clean_seconds = 4 * protocol.SECONDS_PER_DAY
        self.device_error_flag = False
        self.responsive = True  # False simulates unplugged hardware

        # Runtime state
        self.mode = "idle"  # "idle", "measuring", "sleep"
        self._wake_armed = False
        self._samples: List[Optional[Sample]] = list(samples) if samples is not None else [DEFAULT_SAMPLE]
        self._sample_index = 0
        self._injected: Dict[int, Deque[int]] = {}

        # Record of (command, payload) for assertions
        self.commands_received: List[Tuple[int, bytes]] = []

        # Bytes from host not yet forming a full frame, bytes waiting for host
        self._input_buffer = bytearray()
        self._output_buffer = bytearray()

        # Port state
        self.is_open = True
        self.timeout = protocol.RESPONSE_TIMEOUT

    # ========================================================================
    # Test hooks
    # ========================================================================

    def inject_error(self, command: int, code: int = ERR_NOT_ALLOWED, times: int = 1) -> None:
        """Answer the next `times` frames for command with error code."""
        self._injected.setdefault(command, deque()).extend([code] * times)

    def queue_late_reply(self, frame: bytes) -> None:
        """Leave a frame pending as if it arrived after the host gave up waiting."""
        self._output_buffer.extend(frame)

    def command_codes(self) -> List[int]:
        """Command bytes received so far, in order."""
        return [cmd for cmd, _ in self.commands_received]

    # ========================================================================
    # SerialLike interface
    # ========================================================================

    def close(self) -> None:
        """Close the fake serial port."""
        self.is_open = False
        logger.debug("FakeSps30Serial closed")

    def write(self, data: bytes) -> int:
        """Accept bytes from the host and answer any complete frames."""
        if not self.is_open:
            raise RuntimeError("Port is closed")

        if self.mode == "sleep":
            if protocol.WAKE_PULSE in data:
                self._wake_armed = True
                logger.debug("FakeSps30Serial wake pulse received")
            data = data.replace(protocol.WAKE_PULSE, b"")

        self._input_buffer.extend(data)
        self._process_input()
        return len(data)

    def read(self, size: int = 1) -> bytes:
        """Read up to size bytes of pending output."""
        if not self.is_open:
            raise RuntimeError("Port is closed")

        chunk = bytes(self._output_buffer[:size])
        del self._output_buffer[:size]
        return chunk

    def read_until(self, expected: bytes = b"\n", size: Optional[int] = None) -> bytes:
        """Read through the next occurrence of expected, or everything pending (timeout)."""
        if not self.is_open:
            raise RuntimeError("Port is closed")

        idx = self._output_buffer.find(expected)
        end = len(self._output_buffer) if idx < 0 else idx + len(expected)
        if size is not None:
            end = min(end, size)
        return self.read(end)

    def flush(self) -> None:
        """Flush output buffer (no-op, writes are immediate)."""
        pass

    def reset_input_buffer(self) -> None:
        """Discard data the host has not read yet."""
        self._output_buffer.clear()

    # ========================================================================
    # Internal: Frame handling
    # ========================================================================

    def _process_input(self) -> None:
        """Extract complete MOSI frames and dispatch them."""
        delimiter = protocol.FRAME_DELIMITER
        while True:
            try:
                start = self._input_buffer.index(delimiter)
            except ValueError:
                # No frame start, drop noise (e.g. stray 0xFF pulses)
                self._input_buffer.clear()
                return
            del self._input_buffer[:start]

            try:
                end = self._input_buffer.index(delimiter, 1)
            except ValueError:
                return  # incomplete frame, wait for more

            if end == 1:
                # Two delimiters in a row: the second opens the frame
                del self._input_buffer[:1]
                continue

            raw = bytes(self._input_buffer[: end + 1])
            del self._input_buffer[: end + 1]
            self._handle_frame(raw)

    def _handle_frame(self, raw: bytes) -> None:
        body = protocol.unstuff(raw[1:-1])
        command, length, data = body[1], body[2], body[3:-1]
        if len(data) != length or protocol.checksum(body[:-1]) != body[-1]:
            logger.debug(f"FakeSps30Serial dropping corrupt frame {protocol.format_bytes(raw)}")
            return

        self.commands_received.append((command, bytes(data)))

        if not self.responsive:
            return

        if self.mode == "sleep":
            if command == protocol.CMD_WAKE_UP and self._wake_armed:
                self.mode = "idle"
                self._wake_armed = False
                self._reply(command)
            # Interface is off otherwise: no answer at all
            return

        injected = self._injected.get(command)
        if injected:
            self._reply(command, injected.popleft())
            return

        handler = {
            protocol.CMD_START_MEASUREMENT: self._cmd_start,
            protocol.CMD_STOP_MEASUREMENT: self._cmd_stop,
            protocol.CMD_READ_MEASUREMENT: self._cmd_read_measurement,
            protocol.CMD_SLEEP: self._cmd_sleep,
            protocol.CMD_WAKE_UP: self._cmd_wake_when_awake,
            protocol.CMD_AUTO_CLEAN_INTERVAL: self._cmd_auto_clean,
            protocol.CMD_DEVICE_INFO: self._cmd_device_info,
            protocol.CMD_READ_VERSION: self._cmd_version,
        }.get(command)

        if handler is None:
            self._reply(command, ERR_UNKNOWN_COMMAND)
            return
        handler(command, bytes(data))

    def _reply(self, command: int, error: int = 0, data: bytes = b"") -> None:
        state = error | (protocol.STATE_DEVICE_ERROR_FLAG if self.device_error_flag else 0)
        self._output_buffer.extend(build_miso_frame(command, state, data if not error else b""))

    # ========================================================================
    # Internal: Command handlers
    # ========================================================================

    def _cmd_start(self, command: int, data: bytes) -> None:
        if len(data) != 2:
            self._reply(command, ERR_WRONG_LENGTH)
        elif data[0] != protocol.START_MEASUREMENT_SUBCMD or data[1] not in (0x03, 0x05):
            self._reply(command, ERR_ILLEGAL_PARAMETER)
        elif self.mode != "idle":
            self._reply(command, ERR_NOT_ALLOWED)
        else:
            self.mode = "measuring"
            self._reply(command)

    def _cmd_stop(self, command: int, data: bytes) -> None:
        if self.mode != "measuring":
            self._reply(command, ERR_NOT_ALLOWED)
        else:
            self.mode = "idle"
            self._reply(command)

    def _cmd_read_measurement(self, command: int, data: bytes) -> None:
        if self.mode != "measuring":
            self._reply(command, ERR_NOT_ALLOWED)
            return

        sample = self._samples[self._sample_index % len(self._samples)]
        self._sample_index += 1
        payload = b"" if sample is None else protocol.encode_measurement(sample)
        self._reply(command, data=payload)

    def _cmd_sleep(self, command: int, data: bytes) -> None:
        if self.firmware[0] < 2:
            self._reply(command, ERR_UNKNOWN_COMMAND)
        elif self.mode != "idle":
            self._reply(command, ERR_NOT_ALLOWED)
        else:
            self._reply(command)
            self.mode = "sleep"

    def _cmd_wake_when_awake(self, command: int, data: bytes) -> None:
        if self.firmware[0] < 2:
            self._reply(command, ERR_UNKNOWN_COMMAND)
        else:
            self._reply(command, ERR_NOT_ALLOWED)

    def _cmd_auto_clean(self, command: int, data: bytes) -> None:
        if len(data) == 5 and data[0] == protocol.AUTO_CLEAN_SUBCMD:
            self.auto_clean_seconds = struct.unpack(">I", data[1:])[0]
            self._reply(command)
        elif len(data) == 1 and data[0] == protocol.AUTO_CLEAN_SUBCMD:
            self._reply(command, data=struct.pack(">I", self.auto_clean_seconds))
        else:
            self._reply(command, ERR_WRONG_LENGTH)

    def _cmd_device_info(self, command: int, data: bytes) -> None:
        if data == bytes([protocol.DEVICE_INFO_SERIAL]):
            self._reply(command, data=self.serial_number.encode("ascii") + b"\x00")
        elif data == bytes([protocol.DEVICE_INFO_PRODUCT_TYPE]):
            self._reply(command, data=b"00080000\x00")
        else:
            self._reply(command, ERR_ILLEGAL_PARAMETER)

    def _cmd_version(self, command: int, data: bytes) -> None:
        payload = bytes(
            [
                self.firmware[0],
                self.firmware[1],
                0x00,
                self.hardware_revision,
                0x00,
                self.shdlc[0],
                self.shdlc[1],
            ]
        )
        self._reply(command, data=payload)
