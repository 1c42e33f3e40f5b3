"""
Sidetree-Algorand Core Module

Core functionality for the anchoring service including:
- Transaction numbering and the persisted transaction log
- Ledger and round/hash lookup clients
- The blockchain observer (sync, fork detection, reversion)
- Configuration and logging
"""

__all__ = []
