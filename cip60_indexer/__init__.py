"""CIP-60 music token indexer for Cardano, fed by an Ogmios chain-sync websocket."""

__version__ = "0.1.0"
