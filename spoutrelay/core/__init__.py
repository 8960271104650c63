"""
Spout relayer core: addresses, keys, derivations, models, errors.

Nothing in this package performs I/O.
"""
