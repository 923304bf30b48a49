"""
Ledger Reconciler - Source Package

Turns untrusted transaction candidates extracted from a chat message
(text, voice transcript or photo) into ledger entries a user can confirm.

DESIGN PRINCIPLES:
1. AI suggests → Pipeline reconciles → Human confirms
2. Hold the whole batch until every candidate is committable
3. No silent corrections: missing data is reported, never invented
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Reconciler Team"
