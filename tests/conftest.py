"""
pytest configuration for bridge tests.

This file is automatically loaded by pytest before test collection begins.
It sets up the Python path to allow imports from src/ and tests/.
"""

import sys
import os

# Calculate paths relative to this file's location
tests_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(tests_dir)
src_dir = os.path.join(project_root, 'src')

# src/ for the rns_mavlink package, project root for tests.mock_* helpers
for path in (src_dir, project_root):
    if path not in sys.path:
        sys.path.insert(0, path)

import pytest

from tests.mock_local_endpoint import MockLocalEndpoint
from tests.mock_mesh_transport import MockMeshTransport


# ============================================================================
# Common Test Data
# ============================================================================

GC_HASH = bytes.fromhex("2f9a1bd44ef7f1c8a6c3a6b2d4e19f07")
FC_HASH = bytes.fromhex("8c0e55d2b1a34f6e9d7a0b3c4e5f6a71")
OTHER_HASH = bytes.fromhex("00112233445566778899aabbccddeeff")


@pytest.fixture
def gc_hash():
    return GC_HASH


@pytest.fixture
def fc_hash():
    return FC_HASH


@pytest.fixture
def other_hash():
    return OTHER_HASH


@pytest.fixture
def sample_telemetry():
    """Byte streams of various sizes relative to a 100-byte MDU."""
    return {
        'empty': b'',
        'single_byte': b'\xfd',
        'small': bytes(range(40)),
        'exact_mdu': bytes(range(100)),
        'mdu_plus_one': bytes(range(101)),
        'large': bytes(i % 251 for i in range(1234)),
    }


# ============================================================================
# Mock Components
# ============================================================================

@pytest.fixture
def mock_transport():
    """In-memory mesh transport with a small MDU so fragmentation is visible."""
    return MockMeshTransport(mdu=100)


@pytest.fixture
def mock_endpoint():
    return MockLocalEndpoint()


@pytest.fixture
def fc_config_text():
    return (
        "log_level = debug\n"
        "serial_port = /dev/ttyACM0\n"
        "serial_baud = 57600\n"
        f"gc_destination = {GC_HASH.hex()}\n"
    )


@pytest.fixture
def gc_config_text():
    return (
        "log_level = warn\n"
        "qgc_udp_address = 127.0.0.1:14550\n"
        "qgc_reply_port = 14551\n"
        f"fc_destination = {FC_HASH.hex()}\n"
        "announce_interval = 2.5\n"
    )
