"""SolKeeper: custodial Solana wallet keys for chat users."""

__version__ = "0.1.0"
