# capbook/registry/__init__.py
"""
External company registry lookup.

Public API:
  - RegistryClient(...).lookup(cnpj) -> RegistryRecord
  - RegistryLookup: protocol for anything with the same lookup()
  - parse_registry_payload(dict) -> RegistryRecord
"""

from .client import RegistryClient, RegistryLookup, RegistryRecord, parse_registry_payload

__all__ = ["RegistryClient", "RegistryLookup", "RegistryRecord", "parse_registry_payload"]
