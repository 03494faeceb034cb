"""Identify an SPS30 on a serial port and show what it reports about itself."""

import argparse
import logging
import sys

from sps30_agent.connection import ConnectionManager
from sps30_agent.driver import Sps30Driver
from sps30_agent.errors import Sps30Error
from sps30_agent.retry import RetryPolicy
from sps30_agent.session import SensorSession


def identify_sensor(port: str = "/dev/ttyUSB0", baud: int = 115200, attempts: int = 3) -> int:
    """Open the port, probe the sensor and print its identity."""
    policy = RetryPolicy(delay_s=1.0, max_attempts=attempts)

    print(f"\n=== Opening {port} at {baud} baud ===")
    connection = ConnectionManager(port, baud, policy=policy)
    try:
        transport = connection.open()
        print(f"Port opened: {transport.is_open}")

        print("\n=== Probing sensor ===")
        # Also writes the default auto-clean interval
        context = SensorSession(Sps30Driver(transport), policy=policy).start()
    except Sps30Error as e:
        print(f"\n*** SENSOR NOT IDENTIFIED: {e} ***")
        print("\nPossible reasons:")
        print("1. Wrong port or sensor not powered")
        print("2. SEL pin pulled low (sensor in I2C mode)")
        print("3. Port held by another process")
        return 1
    finally:
        connection.close()

    print(f"Serial:  {context.serial or 'unknown'}")
    print(f"Version: {context.version or 'unknown'}")
    print(f"Sleep/wake supported: {context.supports_sleep}")
    print("\nPort closed")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Identify an SPS30 sensor")
    parser.add_argument("port", nargs="?", default="/dev/ttyUSB0")
    parser.add_argument("--baud", type=int, default=115200)
    parser.add_argument("--attempts", type=int, default=3)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    sys.exit(identify_sensor(args.port, args.baud, args.attempts))
