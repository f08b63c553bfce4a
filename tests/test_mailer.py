from __future__ import annotations

import pytest

from capbook.config import SesConfig
from capbook.effects.mailer import ContactDirectory, EmailRequest, SesMailer
from capbook.effects.templates import (
    FAILED_TEMPLATE,
    SUCCESS_TEMPLATE,
    render_email,
    render_notification,
)


class FakeSesClient:
    def __init__(self, fail: Exception | None = None) -> None:
        self.calls: list[dict] = []
        self.fail = fail

    def send_email(self, **kwargs):
        if self.fail is not None:
            raise self.fail
        self.calls.append(kwargs)
        return {"MessageId": "0100-abc"}


CFG = SesConfig(from_email="noreply@example.com", from_name="Capbook", region="sa-east-1")


def test_render_success_email_in_both_locales():
    pt = render_email(SUCCESS_TEMPLATE, "pt-BR", {"companyName": "Acme", "legalName": "ACME LTDA"})
    en = render_email(SUCCESS_TEMPLATE, "en", {"companyName": "Acme", "legalName": "ACME LTDA"})

    assert pt.subject == "Acme foi ativada"
    assert en.subject == "Acme is now active"
    assert "ACME LTDA" in en.text
    assert "<!DOCTYPE html>" in en.html


def test_unknown_locale_falls_back():
    r = render_email(FAILED_TEMPLATE, "fr", {"companyName": "Acme", "cnpj": "x", "registrationStatus": "BAIXADA"})
    assert r.subject.startswith("Validação do CNPJ falhou")


def test_variables_are_escaped_in_html_only():
    r = render_email(SUCCESS_TEMPLATE, "en", {"companyName": "<b>Acme</b>", "legalName": "A & B"})
    assert "&lt;b&gt;Acme&lt;/b&gt;" in r.html
    assert "A &amp; B" in r.html
    assert "<b>Acme</b>" in r.text


def test_unknown_template():
    with pytest.raises(ValueError, match="not found"):
        render_email("nope", "en", {})


def test_render_notification():
    subject, body = render_notification("COMPANY_CNPJ_FAILED", "en", {"companyName": "Acme", "reason": "BAIXADA"})
    assert subject == "CNPJ validation failed: Acme"
    assert "BAIXADA" in body


def test_ses_mailer_sends_rendered_email():
    client = FakeSesClient()
    mailer = SesMailer(CFG, client=client)

    message_id = mailer.send(
        EmailRequest(
            to="maria@example.com",
            template_name=SUCCESS_TEMPLATE,
            locale="pt-BR",
            variables={"companyName": "Acme", "legalName": "ACME LTDA"},
        )
    )

    assert message_id == "0100-abc"
    call = client.calls[0]
    assert call["Source"] == "Capbook <noreply@example.com>"
    assert call["Destination"] == {"ToAddresses": ["maria@example.com"]}
    assert call["Message"]["Subject"]["Data"] == "Acme foi ativada"
    assert "ACME LTDA" in call["Message"]["Body"]["Text"]["Data"]


def test_ses_mailer_propagates_errors():
    mailer = SesMailer(CFG, client=FakeSesClient(fail=RuntimeError("throttled")))
    with pytest.raises(RuntimeError):
        mailer.send(EmailRequest(to="a@b.c", template_name=SUCCESS_TEMPLATE, locale="en"))


def test_contact_directory(conn, add_user):
    add_user("u1", " maria@example.com ", "")
    contacts = ContactDirectory(conn)

    contact = contacts.get_contact("u1")
    assert contact.email == "maria@example.com"
    assert contact.locale is None
    assert contacts.get_contact("nobody") is None
