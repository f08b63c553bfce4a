# capbook/registry/client.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from capbook.config import RegistryConfig
from capbook.exceptions import RegistryNotFoundError, RegistryUnavailableError
from capbook.redact import digits_only, mask_cnpj

log = logging.getLogger(__name__)

# Registration statuses the registry uses for an entity in good standing
ACTIVE_STATUSES = frozenset({"ATIVA", "ACTIVE"})


# --------------------------------------------------------------------------------------------------
# Results
# --------------------------------------------------------------------------------------------------


@dataclass(frozen=True)
class RegistryRecord:
    registration_status: str
    legal_name: str = ""
    trade_name: str | None = None
    incorporation_date: str = ""
    legal_nature: str = ""
    main_activity: dict[str, str] = field(default_factory=dict)
    address: dict[str, Any] = field(default_factory=dict)
    capital: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.registration_status.strip().upper() in ACTIVE_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "registrationStatus": self.registration_status,
            "legalName": self.legal_name,
            "tradeName": self.trade_name,
            "incorporationDate": self.incorporation_date,
            "legalNature": self.legal_nature,
            "mainActivity": dict(self.main_activity),
            "address": dict(self.address),
            "capital": self.capital,
        }


class RegistryLookup(Protocol):
    def lookup(self, registration_number: str) -> RegistryRecord: ...


# --------------------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------------------


def _pick(raw: dict[str, Any], *keys: str, default: Any = None) -> Any:
    # The upstream API mixes camelCase and snake_case between versions
    for k in keys:
        v = raw.get(k)
        if v is not None:
            return v
    return default


def _as_float(v: Any) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return 0.0


def parse_registry_payload(raw: dict[str, Any]) -> RegistryRecord:
    if isinstance(raw.get("data"), dict):
        raw = raw["data"]

    activity = _pick(raw, "atividadePrincipal", "atividade_principal", default={}) or {}
    endereco = _pick(raw, "endereco", "address", default={}) or {}

    return RegistryRecord(
        registration_status=str(
            _pick(raw, "situacaoCadastral", "situacao_cadastral", default="") or ""
        ),
        legal_name=str(_pick(raw, "razaoSocial", "razao_social", default="") or ""),
        trade_name=_pick(raw, "nomeFantasia", "nome_fantasia"),
        incorporation_date=str(_pick(raw, "dataAbertura", "data_abertura", default="") or ""),
        legal_nature=str(_pick(raw, "naturezaJuridica", "natureza_juridica", default="") or ""),
        main_activity={
            "code": str(activity.get("codigo", "") or ""),
            "description": str(activity.get("descricao", "") or ""),
        },
        address={
            "street": endereco.get("logradouro", "") or "",
            "number": endereco.get("numero", "") or "",
            "complement": endereco.get("complemento"),
            "district": endereco.get("bairro", "") or "",
            "city": endereco.get("municipio", "") or "",
            "state": endereco.get("uf", "") or "",
            "postalCode": endereco.get("cep", "") or "",
        },
        capital=_as_float(_pick(raw, "capitalSocial", "capital_social", default=0)),
    )


def _error_message(body: Any) -> str | None:
    if isinstance(body, dict):
        for k in ("message", "error", "detail"):
            v = body.get(k)
            if isinstance(v, str) and v.strip():
                return v.strip()
    return None


# --------------------------------------------------------------------------------------------------
# Client
# --------------------------------------------------------------------------------------------------


class RegistryClient:
    """
    Small wrapper around httpx for the CNPJ registry lookup.

    Outcomes:
      200             -> RegistryRecord (whatever the registration status is)
      404             -> RegistryNotFoundError (definitive)
      401/403         -> RegistryUnavailableError (misconfigured token)
      5xx / other 4xx -> RegistryUnavailableError
      timeout/network -> RegistryUnavailableError
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_token: str,
        timeout_s: float = 30.0,
        connect_timeout_s: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout_s = timeout_s
        self._client = client or httpx.Client(
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(timeout_s, connect=connect_timeout_s),
        )

    @classmethod
    def from_config(cls, cfg: RegistryConfig) -> RegistryClient:
        return cls(
            base_url=cfg.base_url,
            api_token=cfg.api_token,
            timeout_s=cfg.timeout_seconds,
            connect_timeout_s=cfg.connect_timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def lookup(self, registration_number: str) -> RegistryRecord:
        if not self.api_token:
            raise RegistryUnavailableError(
                "Registry API token is not configured",
                details={"reason": "notConfigured"},
            )

        digits = digits_only(registration_number)
        url = f"{self.base_url}/br/cnpj"
        log.debug("registry lookup GET %s cnpj=%s", url, mask_cnpj(digits))

        try:
            resp = self._client.get(
                url,
                params={"cnpj": digits},
                headers={"Authorization": f"Bearer {self.api_token}"},
            )
        except httpx.TimeoutException as exc:
            log.error("registry lookup timed out after %ss", self.timeout_s)
            raise RegistryUnavailableError(
                f"Registry timed out after {self.timeout_s}s",
                details={"reason": "timeout", "timeoutSeconds": self.timeout_s},
            ) from exc
        except httpx.HTTPError as exc:
            log.error("registry lookup network error: %s", exc)
            raise RegistryUnavailableError(
                f"Registry network error: {exc}",
                details={"reason": "networkError"},
            ) from exc

        try:
            body: Any = resp.json() if resp.content else {}
        except ValueError:
            body = {}

        status = resp.status_code
        log.debug("registry lookup -> HTTP %s", status)

        if status == 404:
            raise RegistryNotFoundError(
                "CNPJ not found in the registry",
                details={"status": status},
            )

        if status >= 400:
            message = _error_message(body) or f"HTTP {status}"
            if status in (401, 403):
                reason = "authError"
            elif status >= 500:
                reason = "serverError"
            else:
                reason = "apiError"
            log.error("registry API error status=%s reason=%s message=%r", status, reason, message)
            raise RegistryUnavailableError(
                f"Registry error ({reason}): {message}",
                details={"reason": reason, "status": status},
            )

        if not isinstance(body, dict):
            raise RegistryUnavailableError(
                "Registry returned an unexpected payload",
                details={"reason": "badPayload", "status": status},
            )

        record = parse_registry_payload(body)
        log.debug(
            "registry lookup ok registration_status=%s legal_name=%r",
            record.registration_status,
            record.legal_name,
        )
        return record
