# capbook/effects/templates.py
"""
Email and in-app notification copy for verification outcomes.

Templates are keyed by name and locale; unknown locales fall back to the
default locale. Variables are HTML-escaped before they reach the HTML body.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Any

from capbook.config import APP_NAME, DEFAULT_LOCALE

SUCCESS_TEMPLATE = "cnpj-validation-success"
FAILED_TEMPLATE = "cnpj-validation-failed"


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


class _Vars(dict):
    # leave unknown placeholders visible instead of raising KeyError
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


_EMAILS: dict[str, dict[str, dict[str, str]]] = {
    SUCCESS_TEMPLATE: {
        "pt-BR": {
            "subject": "{companyName} foi ativada",
            "heading": "Empresa ativada",
            "body": (
                "A validação do CNPJ foi concluída com sucesso. "
                "A empresa \"{companyName}\" ({legalName}) está agora ativa na plataforma."
            ),
        },
        "en": {
            "subject": "{companyName} is now active",
            "heading": "Company activated",
            "body": (
                "CNPJ validation completed successfully. "
                "\"{companyName}\" ({legalName}) is now active on the platform."
            ),
        },
    },
    FAILED_TEMPLATE: {
        "pt-BR": {
            "subject": "Validação do CNPJ falhou: {companyName}",
            "heading": "Não foi possível validar o CNPJ",
            "body": (
                "Não foi possível validar o CNPJ {cnpj} da empresa \"{companyName}\" "
                "(situação: {registrationStatus}). A empresa permanece em rascunho. "
                "Corrija os dados ou tente novamente mais tarde."
            ),
        },
        "en": {
            "subject": "CNPJ validation failed: {companyName}",
            "heading": "We could not validate the CNPJ",
            "body": (
                "We could not validate CNPJ {cnpj} for \"{companyName}\" "
                "(status: {registrationStatus}). The company remains in draft. "
                "Fix the details or try again later."
            ),
        },
    },
}

_NOTIFICATIONS: dict[str, dict[str, dict[str, str]]] = {
    "COMPANY_ACTIVATED": {
        "pt-BR": {
            "subject": "{companyName}: empresa ativada!",
            "body": (
                "A validação do CNPJ foi concluída com sucesso. "
                "A empresa \"{companyName}\" está agora ativa na plataforma."
            ),
        },
        "en": {
            "subject": "{companyName}: company activated!",
            "body": "CNPJ validation succeeded. \"{companyName}\" is now active.",
        },
    },
    "COMPANY_CNPJ_FAILED": {
        "pt-BR": {
            "subject": "Validação CNPJ falhou: {companyName}",
            "body": (
                "Não foi possível validar o CNPJ da empresa \"{companyName}\" "
                "({reason}). A empresa permanece em rascunho."
            ),
        },
        "en": {
            "subject": "CNPJ validation failed: {companyName}",
            "body": "We could not validate the CNPJ for \"{companyName}\" ({reason}).",
        },
    },
}


def _pick_locale(table: dict[str, dict[str, str]], locale: str | None) -> dict[str, str]:
    if locale and locale in table:
        return table[locale]
    if DEFAULT_LOCALE in table:
        return table[DEFAULT_LOCALE]
    return table["pt-BR"]


def _layout_html(heading: str, body: str) -> str:
    card_style = (
        "background:#ffffff; border-radius:12px;"
        " box-shadow:0 2px 8px rgba(0,0,0,0.08);"
        " overflow:hidden;"
    )
    header_style = "background:#1a1a2e; padding:32px 40px; text-align:center;"
    return f"""\
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
</head>
<body style="margin:0; padding:0; background-color:#f4f5f7;">
  <table width="100%" cellpadding="0" cellspacing="0" style="padding:40px 0;">
    <tr>
      <td align="center">
        <table width="480" cellpadding="0" cellspacing="0" style="{card_style}">
          <tr>
            <td style="{header_style}">
              <h1 style="margin:0; color:#ffffff; font-size:24px;">{html.escape(APP_NAME)}</h1>
            </td>
          </tr>
          <tr>
            <td style="padding:40px;">
              <h2 style="margin:0 0 8px; color:#1a1a2e; font-size:20px;">{heading}</h2>
              <p style="margin:0; color:#555; font-size:15px; line-height:1.5;">{body}</p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""


def render_email(template_name: str, locale: str | None, variables: dict[str, Any]) -> RenderedEmail:
    try:
        table = _EMAILS[template_name]
    except KeyError as err:
        raise ValueError(f"Email template not found: {template_name}") from err

    copy = _pick_locale(table, locale)
    plain = _Vars({k: "" if v is None else str(v) for k, v in variables.items()})
    escaped = _Vars({k: html.escape(v) for k, v in plain.items()})

    subject = copy["subject"].format_map(plain)
    text_body = copy["body"].format_map(plain)
    html_body = _layout_html(
        html.escape(copy["heading"]),
        copy["body"].format_map(escaped),
    )
    text = f"{APP_NAME} - {copy['heading']}\n{'=' * 40}\n\n{text_body}\n"
    return RenderedEmail(subject=subject, html=html_body, text=text)


def render_notification(
    notification_type: str,
    locale: str | None,
    variables: dict[str, Any],
) -> tuple[str, str]:
    copy = _pick_locale(_NOTIFICATIONS[notification_type], locale)
    plain = _Vars({k: "" if v is None else str(v) for k, v in variables.items()})
    return copy["subject"].format_map(plain), copy["body"].format_map(plain)
