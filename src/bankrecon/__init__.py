"""
Bank statement → Invoice matching → Review → Journal posting

Imports bank statements (CAMT.053, MT940, NBS XML, CSV), matches their lines
against open invoices and supplier invoices, and posts reconciled lines as
balanced journal entries exactly once.
"""

__version__ = "0.1.0"
