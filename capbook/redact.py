# capbook/redact.py
"""
PII masking for logs and audit metadata.

  CNPJ:   **.***.****/****-XX   (keep last 2 digits)
  Email:  n***@domain.com       (keep first char + domain)
  IP:     truncated to the /24 (IPv4) or /48 (IPv6) network
"""

from __future__ import annotations

import ipaddress
import re

_NON_DIGITS = re.compile(r"\D")


def digits_only(value: str | None) -> str:
    return _NON_DIGITS.sub("", value or "")


def mask_cnpj(cnpj: str | None) -> str:
    digits = digits_only(cnpj)
    if len(digits) < 2:
        return "**.***.****/****-**"
    return f"**.***.****/****-{digits[-2:]}"


def cnpj_last_four(cnpj: str | None) -> str:
    return digits_only(cnpj)[-4:]


def mask_email(email: str | None) -> str:
    if not email or "@" not in email:
        return "***"
    local, _, domain = email.partition("@")
    head = local[:1] or "*"
    return f"{head}***@{domain}"


def truncate_ip(ip: str | None) -> str | None:
    if not ip:
        return None
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return None
    prefix = 24 if addr.version == 4 else 48
    net = ipaddress.ip_network(f"{addr}/{prefix}", strict=False)
    return str(net)
