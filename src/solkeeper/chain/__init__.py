"""Chain adapters."""

from solkeeper.chain.solana import SolanaChainClient, get_chain_client

__all__ = ["SolanaChainClient", "get_chain_client"]
