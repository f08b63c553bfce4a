# capbook/__init__.py
"""
Company registration (CNPJ) verification for the company setup flow.

A new company is created in DRAFT and a verification job is enqueued; the
worker checks the registration number against the external registry,
activates or fails the company, then fans out audit, notification and email.
"""

__version__ = "0.1.0"
