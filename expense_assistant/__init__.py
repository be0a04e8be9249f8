"""
Expense Assistant - Source Package

A conversational assistant for tracking household expenses and
appointments, driven by typed, recorded or live voice turns.

DESIGN PRINCIPLES:
1. The model proposes → tools execute → storage is the source of truth
2. Fail early, fail visibly
3. One code path for every state change (the tool bridge)
4. Every step must be auditable
5. Storage and model services are swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Assistant Team"
