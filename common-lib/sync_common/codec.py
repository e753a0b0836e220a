"""Reversible compression of reading positions.

Positions (EPUB CFI strings) are long and repetitive, so they are stored and sent
deflated and base64 encoded. Rows written before compression was introduced hold
plain text, which `decompress` returns untouched.
"""
import base64
import binascii
import logging
import zlib

LOG = logging.getLogger(__name__)


def compress(position: str) -> str:
    if not position:
        return ""
    data = zlib.compress(position.encode("utf-8"), level=zlib.Z_BEST_COMPRESSION)
    return base64.b64encode(data).decode("ascii")


def decompress(payload: str) -> str:
    if not payload:
        return ""
    try:
        data = base64.b64decode(payload, validate=True)
        return zlib.decompress(data).decode("utf-8")
    except (binascii.Error, zlib.error, UnicodeDecodeError, ValueError):
        LOG.debug("Position is not compressed, using it as is.")
        return payload
