"""Barcode resolution: external sources, merge rules and the pipeline."""
