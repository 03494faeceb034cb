"""Wire protocol constants and frame codec for the SPS30 SHDLC interface.

This module defines the exact byte sequences used on the SPS30 UART link
(115200 8N1), following the Sensirion SPS30 datasheet. All multi-byte values
are big-endian.

MOSI frame (host -> sensor): 0x7E ADR CMD L DATA... CHK 0x7E
MISO frame (sensor -> host): 0x7E ADR CMD STATE L DATA... CHK 0x7E
"""

import struct
from dataclasses import dataclass
from typing import Final

from sps30_agent.errors import DeviceCommandError, FrameError, ResponseTimeout
from sps30_agent.models import Sample, VersionInfo

# ============================================================================
# Framing
# ============================================================================

FRAME_DELIMITER: Final[int] = 0x7E
SLAVE_ADDRESS: Final[int] = 0x00

# Byte stuffing: escape byte followed by the original byte XOR 0x20
STUFF_ESCAPE: Final[int] = 0x7D
STUFF_XOR: Final[int] = 0x20
STUFFED_BYTES: Final[frozenset[int]] = frozenset({0x7E, 0x7D, 0x11, 0x13})

MAX_DATA_LEN: Final[int] = 255

# Shortest legal MISO frame: delimiter, adr, cmd, state, len, chk, delimiter
MIN_MISO_LEN: Final[int] = 7

# Single byte that generates the low pulse waking the UART from sleep
WAKE_PULSE: Final[bytes] = b"\xff"

# ============================================================================
# Commands
# ============================================================================

CMD_START_MEASUREMENT: Final[int] = 0x00
CMD_STOP_MEASUREMENT: Final[int] = 0x01
CMD_READ_MEASUREMENT: Final[int] = 0x03
CMD_SLEEP: Final[int] = 0x10
CMD_WAKE_UP: Final[int] = 0x11
CMD_AUTO_CLEAN_INTERVAL: Final[int] = 0x80
CMD_DEVICE_INFO: Final[int] = 0xD0
CMD_READ_VERSION: Final[int] = 0xD1

# Start measurement sub-command and output format (0x03 = big-endian IEEE754 floats)
START_MEASUREMENT_SUBCMD: Final[int] = 0x01
OUTPUT_FORMAT_FLOAT: Final[int] = 0x03

# Auto-clean interval sub-command
AUTO_CLEAN_SUBCMD: Final[int] = 0x00

# Device information sub-commands
DEVICE_INFO_PRODUCT_TYPE: Final[int] = 0x00
DEVICE_INFO_SERIAL: Final[int] = 0x03

# Serial number is NUL-terminated ASCII, at most 32 bytes including the NUL
MAX_SERIAL_LEN: Final[int] = 32

# ============================================================================
# State byte
# ============================================================================

# Bit 7 of the MISO state byte: at least one error flag set in the status register
STATE_DEVICE_ERROR_FLAG: Final[int] = 0x80
STATE_ERROR_CODE_MASK: Final[int] = 0x7F

ERROR_DESCRIPTIONS: Final[dict[int, str]] = {
    0x01: "Wrong data length for this command",
    0x02: "Unknown command",
    0x03: "No access right for command",
    0x04: "Illegal command parameter or parameter out of allowed range",
    0x28: "Internal function argument out of range",
    0x43: "Command not allowed in current state",
}

# ============================================================================
# Payload sizes
# ============================================================================

MEASUREMENT_FLOAT_COUNT: Final[int] = 10
MEASUREMENT_PAYLOAD_LEN: Final[int] = 4 * MEASUREMENT_FLOAT_COUNT
VERSION_PAYLOAD_LEN: Final[int] = 7

SECONDS_PER_DAY: Final[int] = 24 * 60 * 60
MAX_AUTO_CLEAN_SECONDS: Final[int] = 0xFFFFFFFF

# ============================================================================
# Timing Constants (seconds)
# ============================================================================

# Response time budget per command class (datasheet: <20 ms, sleep/wake <5 ms)
RESPONSE_TIMEOUT: Final[float] = 0.5

# Sensor needs time after wake-up before it accepts commands again
DELAY_POST_WAKE: Final[float] = 0.05


def checksum(data: bytes) -> int:
    """Compute SHDLC checksum: inverted LSB of the byte sum.

    Args:
        data: Unstuffed bytes between the delimiters, checksum excluded

    Returns:
        Checksum byte
    """
    return 0xFF - (sum(data) & 0xFF)


def stuff(data: bytes) -> bytes:
    """Escape reserved bytes for transmission."""
    out = bytearray()
    for b in data:
        if b in STUFFED_BYTES:
            out.append(STUFF_ESCAPE)
            out.append(b ^ STUFF_XOR)
        else:
            out.append(b)
    return bytes(out)


def unstuff(data: bytes) -> bytes:
    """Reverse byte stuffing.

    Raises:
        FrameError: If an escape byte is dangling or escapes a byte that is never stuffed
    """
    out = bytearray()
    escaped = False
    for b in data:
        if escaped:
            original = b ^ STUFF_XOR
            if original not in STUFFED_BYTES:
                raise FrameError(f"Invalid stuffed byte 0x{b:02X}", data)
            out.append(original)
            escaped = False
        elif b == STUFF_ESCAPE:
            escaped = True
        else:
            out.append(b)
    if escaped:
        raise FrameError("Frame ends with a dangling escape byte", data)
    return bytes(out)


def build_frame(command: int, data: bytes = b"") -> bytes:
    """Build a complete MOSI frame ready to write to the port.

    Args:
        command: Command byte (e.g. CMD_START_MEASUREMENT)
        data: Command payload, up to 255 bytes

    Returns:
        Delimited, stuffed frame bytes

    Raises:
        ValueError: If payload is too long
    """
    if len(data) > MAX_DATA_LEN:
        raise ValueError(f"Payload for command 0x{command:02X} exceeds {MAX_DATA_LEN} bytes")

    body = bytes([SLAVE_ADDRESS, command, len(data)]) + data
    body += bytes([checksum(body)])
    return bytes([FRAME_DELIMITER]) + stuff(body) + bytes([FRAME_DELIMITER])


@dataclass(frozen=True)
class MisoFrame:
    """Decoded response frame.

    Attributes:
        command: Command byte echoed by the sensor.
        state: Raw state byte (bit 7 = device error flag, low bits = error code).
        data: Unstuffed payload.
    """

    command: int
    state: int
    data: bytes

    @property
    def device_error_flag(self) -> bool:
        return bool(self.state & STATE_DEVICE_ERROR_FLAG)

    @property
    def error_code(self) -> int:
        return self.state & STATE_ERROR_CODE_MASK


def parse_frame(raw: bytes, expected_command: int) -> MisoFrame:
    """Validate and decode a MISO frame.

    The device error flag (state bit 7) is NOT treated as failure here; it is
    returned to the caller, which decides what it means for the command at
    hand. A non-zero error code is a failure.

    Args:
        raw: Raw bytes as read from the port, delimiters included
        expected_command: Command byte the response should echo

    Returns:
        MisoFrame

    Raises:
        ResponseTimeout: If raw is empty
        FrameError: If the frame structure or checksum is wrong
        DeviceCommandError: If the sensor reported a command error
    """
    if not raw:
        raise ResponseTimeout(
            f"No response to command 0x{expected_command:02X}. "
            "Sensor asleep, unpowered, or TX/RX not cross-connected?"
        )
    if len(raw) < MIN_MISO_LEN:
        raise FrameError(f"Frame too short ({len(raw)} bytes)", raw)
    if raw[0] != FRAME_DELIMITER or raw[-1] != FRAME_DELIMITER:
        raise FrameError("Frame is not delimited by 0x7E", raw)

    body = unstuff(raw[1:-1])
    if len(body) < MIN_MISO_LEN - 2:
        raise FrameError(f"Unstuffed frame too short ({len(body)} bytes)", raw)

    address, command, state, length = body[0], body[1], body[2], body[3]
    data = body[4:-1]
    received_chk = body[-1]

    if address != SLAVE_ADDRESS:
        raise FrameError(f"Unexpected slave address 0x{address:02X}", raw)
    if len(data) != length:
        raise FrameError(f"Length byte says {length}, frame carries {len(data)}", raw)
    expected_chk = checksum(body[:-1])
    if received_chk != expected_chk:
        raise FrameError(
            f"Wrong checksum: expected 0x{expected_chk:02X}, received 0x{received_chk:02X}", raw
        )
    if command != expected_command:
        raise FrameError(
            f"Response echoes command 0x{command:02X}, expected 0x{expected_command:02X}", raw
        )

    frame = MisoFrame(command=command, state=state, data=bytes(data))
    if frame.error_code:
        description = ERROR_DESCRIPTIONS.get(frame.error_code, "Unknown error")
        raise DeviceCommandError(
            frame.error_code,
            command,
            f"Command 0x{command:02X} failed: 0x{frame.error_code:02X} ({description})",
        )
    return frame


def decode_measurement(data: bytes) -> Sample:
    """Decode a float-format measurement payload into a Sample.

    Raises:
        FrameError: If payload length is wrong (an empty payload means no new data)
    """
    if len(data) != MEASUREMENT_PAYLOAD_LEN:
        raise FrameError(
            f"Measurement payload must be {MEASUREMENT_PAYLOAD_LEN} bytes, got {len(data)}", data
        )
    return Sample(*struct.unpack(">10f", data))


def encode_measurement(sample: Sample) -> bytes:
    """Encode a Sample as a float-format measurement payload."""
    return struct.pack(">10f", *sample.values())


def decode_version(data: bytes) -> VersionInfo:
    """Decode the 7-byte version payload (fw major, fw minor, -, hw, -, shdlc major, minor)."""
    if len(data) != VERSION_PAYLOAD_LEN:
        raise FrameError(f"Version payload must be {VERSION_PAYLOAD_LEN} bytes, got {len(data)}", data)
    return VersionInfo(
        firmware_major=data[0],
        firmware_minor=data[1],
        hardware_revision=data[3],
        protocol_major=data[5],
        protocol_minor=data[6],
    )


def decode_string(data: bytes) -> str:
    """Decode a NUL-terminated ASCII device info string."""
    if len(data) > MAX_SERIAL_LEN:
        raise FrameError(f"Device info string longer than {MAX_SERIAL_LEN} bytes", data)
    return data.split(b"\x00", 1)[0].decode("ascii", errors="replace")


def encode_auto_clean_days(days: int) -> bytes:
    """Build the write-auto-clean-interval payload for an interval in days."""
    seconds = days * SECONDS_PER_DAY
    if not (0 <= seconds <= MAX_AUTO_CLEAN_SECONDS):
        raise ValueError(f"Auto-clean interval of {days} days does not fit in uint32 seconds")
    return bytes([AUTO_CLEAN_SUBCMD]) + struct.pack(">I", seconds)


def format_bytes(data: bytes) -> str:
    """Render bytes as 7E|00|03 for logs."""
    return "|".join(f"{b:02X}" for b in data)
