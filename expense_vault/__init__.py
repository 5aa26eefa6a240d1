"""
Expense Vault - Source Package

A personal expense tracker whose text fields can be stored
end-to-end encrypted.

DESIGN PRINCIPLES:
1. The server only ever stores opaque ciphertext for title/category/note
2. The master key lives in an explicit session, never in global state
3. One corrupted record must never blank the whole expense list
4. Every security-relevant step is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Vault Team"
