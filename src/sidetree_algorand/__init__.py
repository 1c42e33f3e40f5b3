"""
Sidetree-Algorand - Anchoring service for the Algorand ledger

Writes Sidetree anchor strings into Algorand transaction notes and keeps a
fork-resilient, ordered log of every anchor observed on chain.

Main Components:
- Core: transaction numbers, the SQLite transaction store, ledger clients
  and the blockchain observer that reconciles the store with the chain
- API: Flask routes exposing the observer to a Sidetree node
- CLI: service bootstrap and key helpers
"""

__version__ = "0.1.0"
__author__ = "Sidetree-Algorand Development Team"

__all__ = []
