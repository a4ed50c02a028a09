"""
Receipt Ledger - Source Package

Turns 'new' commands, structured payloads and OCR receipt text into
balanced double-entry ledger entries.

DESIGN PRINCIPLES:
1. Parse → validate → map → balance → render, in that order
2. Fail early, fail visibly (parse, validation and balance errors)
3. Degrade quietly where a guess beats no entry (AI, segmentation)
4. No silent corrections
5. Every step must be auditable
6. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Receipt Ledger Team"
