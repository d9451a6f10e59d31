"""
CGGTTS data line parser.

Turns one whitespace-tokenized data line into a Measurement. The parser
is pure: it never touches storage and raises RecordParseError for any
line it cannot convert.

Token layout (0-based):
    0 SAT   1 CL    2 MJD   3 STTIME 4 TRKL  5 ELV   6 AZTH
    7 REFSV 8 SRSV  9 REFSYS 10 SRSYS 11 DSG 12 IOE
    13 MDTR 14 SMDT 15 MDIO 16 SMDI 17 MSIO 18 SMSI 19 ISG
    20 FR   21 HC   22 FRC  23 CK    [24 ion type label]
"""

import re
from typing import List, Optional

from ..interfaces.records import Measurement

MIN_TOKENS = 24

_SAT_TOKEN = re.compile(r'^(?:[A-Za-z](\d{2,})|(\d+))$')


class RecordParseError(ValueError):
    """A data line could not be converted into a Measurement."""


def parse_satellite(token: str) -> int:
    """
    Resolve a satellite token to its numeric id.

    Accepts a system letter followed by digits ("G01", "E12") or a bare
    number ("12").
    """
    match = _SAT_TOKEN.match(token)
    if not match:
        raise RecordParseError(f"Invalid satellite token: {token!r}")
    return int(match.group(1) or match.group(2))


def parse_unsigned(token: str, name: str) -> int:
    """Parse a required integer field. A leading '+' is tolerated."""
    try:
        return int(token)
    except ValueError:
        raise RecordParseError(f"Invalid {name}: {token!r}") from None


def parse_signed(token: str, name: str) -> int:
    """Parse a signed difference field. Blank and 'nan' read as zero."""
    stripped = token.strip()
    if not stripped or stripped.lower() == 'nan':
        return 0
    return parse_unsigned(stripped, name)


def parse_tokens(tokens: List[str], source: str, min_tokens: int = MIN_TOKENS) -> Measurement:
    """
    Map a token list positionally into a Measurement.

    Args:
        tokens: Whitespace-split data line
        source: Station code the line belongs to
        min_tokens: Minimum token count for a data line

    Returns:
        Parsed Measurement

    Raises:
        RecordParseError: Too few tokens or a field fails to convert
    """
    if len(tokens) < min_tokens:
        raise RecordParseError(f"Expected at least {min_tokens} tokens, got {len(tokens)}")

    ion_type: Optional[str] = tokens[24] if len(tokens) > 24 else None

    return Measurement(
        sat=parse_satellite(tokens[0]),
        sat_token=tokens[0],
        cl=tokens[1],
        mjd=parse_unsigned(tokens[2], 'MJD'),
        sttime=tokens[3],
        trkl=parse_unsigned(tokens[4], 'TRKL'),
        elv=parse_unsigned(tokens[5], 'ELV'),
        azth=parse_unsigned(tokens[6], 'AZTH'),
        refsv=parse_signed(tokens[7], 'REFSV'),
        srsv=parse_signed(tokens[8], 'SRSV'),
        refsys=parse_signed(tokens[9], 'REFSYS'),
        srsys=parse_signed(tokens[10], 'SRSYS'),
        dsg=parse_unsigned(tokens[11], 'DSG'),
        ioe=parse_unsigned(tokens[12], 'IOE'),
        mdtr=parse_unsigned(tokens[13], 'MDTR'),
        smdt=parse_unsigned(tokens[14], 'SMDT'),
        mdio=parse_unsigned(tokens[15], 'MDIO'),
        smdi=parse_unsigned(tokens[16], 'SMDI'),
        msio=parse_unsigned(tokens[17], 'MSIO'),
        smsi=parse_unsigned(tokens[18], 'SMSI'),
        isg=parse_unsigned(tokens[19], 'ISG'),
        fr=parse_unsigned(tokens[20], 'FR'),
        hc=parse_unsigned(tokens[21], 'HC'),
        frc=tokens[22],
        ck=tokens[23],
        source=source,
        ion_type=ion_type,
    )


def parse_line(line: str, source: str, min_tokens: int = MIN_TOKENS) -> Measurement:
    """Tokenize a raw data line and parse it."""
    return parse_tokens(line.split(), source, min_tokens)
