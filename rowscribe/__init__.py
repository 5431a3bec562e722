"""
rowscribe - row-based handwriting OCR ingestion and LaTeX reconstruction.

Drawn elements are partitioned into fixed-height rows, each row is cut into
overlapping 384x384 tiles for a fixed-input recognizer, and the per-tile
results are merged back into one LaTeX string per row.
"""

__version__ = "0.1.0"
