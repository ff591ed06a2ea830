"""
Stock ledger storage.

Models:
- PartStock (on-hand / reserved balance per part per storage location)
- PartTransaction (append-only journal; every balance change writes one row)
"""
