"""JunkTrunk barcode lookup backend."""

__version__ = "0.1.0"
