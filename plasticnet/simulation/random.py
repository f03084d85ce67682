"""Seeded random streams.

Every stream is derived from the master seed and an integer key path
through numpy's SeedSequence, so any rank that asks for the same key gets
the same sequence of draws. Partition-invariant consumers (Poisson inputs,
sparse connectivity) rely on this: they draw the same numbers whatever the
number of cooperating ranks and keep only the slice they own.
"""

import zlib

import numpy as np


def stream_key(name):
    """Stable integer key for a stream name (independent of PYTHONHASHSEED)."""
    return zlib.crc32(name.encode("utf-8"))


class RandomStream:
    """A PCG64 generator seeded from (master seed, *key).

    Parameters
    ----------
    seed : int
        Master seed.
    *key : int or str
        Key path identifying the stream. Strings are mapped through
        stream_key().
    """

    def __init__(self, seed, *key):
        self.seed = int(seed)
        self.key = tuple(stream_key(k) if isinstance(k, str) else int(k)
                         for k in key)
        self.generator = np.random.Generator(
            np.random.PCG64(np.random.SeedSequence([self.seed, *self.key])))

    def random(self, n):
        """n uniform draws on [0, 1)."""
        return self.generator.random(n)

    def bernoulli(self, n, p):
        """n independent Boolean trials with success probability p."""
        return self.generator.random(n) < p

    def __repr__(self):
        return f"RandomStream(seed={self.seed}, key={self.key})"
