from __future__ import annotations

import math

import numpy as np

SILENCE_DBFS = -96.0


def ulaw_decode(ulaw_bytes: bytes) -> np.ndarray:
    """Decode G.711 mu-law bytes to 16-bit PCM int16 numpy array."""

    data = np.frombuffer(ulaw_bytes, dtype=np.uint8)

    # Vectorized mu-law decode.
    mu = np.bitwise_not(data)
    sign = np.bitwise_and(mu, 0x80)
    exponent = np.right_shift(np.bitwise_and(mu, 0x70), 4)
    mantissa = np.bitwise_and(mu, 0x0F)

    # G.711: bias=0x84 (132).
    magnitude = ((mantissa.astype(np.int32) << 3) + 0x84) << exponent.astype(np.int32)
    pcm = magnitude - 0x84
    pcm = np.where(sign != 0, -pcm, pcm)

    return pcm.astype(np.int16)


def ulaw_level_dbfs(ulaw_bytes: bytes) -> float:
    """RMS level of a mu-law frame relative to PCM16 full scale."""

    pcm = ulaw_decode(ulaw_bytes)
    if not pcm.size:
        return SILENCE_DBFS

    rms = float(np.sqrt(np.mean(pcm.astype(np.float32) ** 2)))
    if rms <= 0.0:
        return SILENCE_DBFS
    return max(SILENCE_DBFS, 20.0 * math.log10(rms / 32768.0))
