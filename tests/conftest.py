"""
Pytest configuration and fixtures for cggtts-monitor tests.
"""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))


HEADER = [
    "CGGTTS     GENERIC DATA FORMAT VERSION = 2E",
    "REV DATE = 2025-07-01",
    "RCVR = SEPTENTRIO POLARX5TR 4101234 1 5.5.0",
    "CH = 36",
    "IMS = 99999",
    "LAB = NPLI",
    "X = +1239370.32 m",
    "Y = +5576563.47 m",
    "Z = +2901578.16 m",
    "FRAME = ITRF",
    "COMMENTS = NO COMMENTS",
    "SYS = GPS",
    "INT DLY = 28.9 ns (GPS C1), 0.0 ns (GPS P2)     CAL_ID = NA",
    "CAB DLY = 155.0 ns",
    "REF DLY = 16.3 ns",
    "REF = UTC(NPLI)",
    "CKSUM = 7A",
    "",
    "SAT CL  MJD  STTIME TRKL ELV AZTH   REFSV      SRSV     REFSYS    SRSYS  DSG IOE MDTR SMDT MDIO SMDI MSIO SMSI ISG FR HC FRC CK",
    "             hhmmss  s  .1dg .1dg    .1ns     .1ps/s     .1ns    .1ps/s .1ns     .1ns.1ps/s.1ns.1ps/s.1ns.1ps/s.1ns",
]


def make_line(sat="G01", mjd=60878, sttime="000000", refsv=123, srsv=-456,
              refsys=789, srsys=-12, extra=None):
    """Build one 24-token CGGTTS data line."""
    tokens = [
        sat, "FF", str(mjd), sttime, "780", "250", "1200",
        str(refsv), str(srsv), str(refsys), str(srsys),
        "10", "55", "120", "0", "80", "0", "70", "0", "5",
        "0", "0", "L3P", "A1",
    ]
    if extra:
        tokens.extend(extra)
    return " ".join(tokens)


def write_cggtts(path, data_lines, trailing=None, encoding='utf-8'):
    """Write a CGGTTS file: 20 header lines, the data lines, optional unterminated tail."""
    path.parent.mkdir(parents=True, exist_ok=True)
    text = "\n".join(HEADER + list(data_lines)) + "\n"
    if trailing is not None:
        text += trailing
    path.write_bytes(text.encode(encoding))
    return path


@pytest.fixture
def line_builder():
    """CGGTTS data line builder."""
    return make_line


@pytest.fixture
def cggtts_writer():
    """CGGTTS file writer."""
    return write_cggtts


@pytest.fixture
def sqlite_store(tmp_path):
    """Schema-initialized SQLite store in a temporary directory."""
    from cggtts_monitor.storage import SQLiteStore

    store = SQLiteStore(tmp_path / 'db' / 'cggtts.db')
    store.initialize_schema()
    yield store
    store.close()


@pytest.fixture
def station_root(tmp_path):
    """Empty station root directory."""
    root = tmp_path / 'incoming'
    root.mkdir()
    return root


@pytest.fixture
def no_sleep_policy():
    """Backoff policy with zero delays."""
    from cggtts_monitor.storage import BackoffPolicy
    return BackoffPolicy(attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)
