# capbook/effects/__init__.py
"""Post-verification side effects: audit trail, in-app notifications, email."""
