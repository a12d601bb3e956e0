"""hoparb - multi-hop arbitrage engine for decentralized swap venues."""

__version__ = "0.1.0"
