from __future__ import annotations

import math
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _getenv_int(name: str, default: int) -> int:
    v = os.getenv(name, str(default)).strip()
    try:
        return int(v)
    except ValueError as err:
        raise ValueError(f"Environment variable {name} must be an integer; got {v!r}") from err


def _getenv_float(name: str, default: float) -> float:
    v = os.getenv(name, str(default)).strip()
    try:
        return float(v)
    except ValueError as err:
        raise ValueError(f"Environment variable {name} must be a number; got {v!r}") from err


def _getenv_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip()


# Load .env from project root if present
ROOT = Path(__file__).resolve().parents[1]
load_dotenv(ROOT / ".env", override=False)

APP_NAME = _getenv_str("APP_NAME", "Capbook")
DEFAULT_LOCALE = _getenv_str("DEFAULT_LOCALE", "pt-BR")
SUPPORTED_LOCALES = ("pt-BR", "en")

# Job type tag carried in job meta; RQ routes by function, not by name.
VERIFY_JOB_TYPE = "verify-registration"


@dataclass(frozen=True)
class QueueConfig:
    queue_name: str
    dlq_name: str
    rq_redis_url: str


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry/backoff policy for verification jobs.

    max_attempts counts the first execution, so RQ is asked for
    max_attempts - 1 retries.
    """

    max_attempts: int
    backoff_base_ms: int
    job_timeout_seconds: int

    def retry_intervals(self) -> list[int]:
        """
        Exponential schedule in whole seconds: base, 2*base, 4*base, ...

        RQ schedules retries with a positive interval and re-enqueues
        immediately when the interval is 0.
        """
        out: list[int] = []
        for i in range(max(self.max_attempts - 1, 0)):
            delay_ms = self.backoff_base_ms * (2**i)
            out.append(int(math.ceil(delay_ms / 1000.0)))
        return out


@dataclass(frozen=True)
class RegistryConfig:
    base_url: str
    api_token: str
    timeout_seconds: float
    connect_timeout_seconds: float


@dataclass(frozen=True)
class SesConfig:
    """
    Minimal AWS SES config.

    Credentials are not read here; boto3 falls back to its default credential
    chain (env, shared config, instance metadata).
    """

    from_email: str
    from_name: str
    region: str


@dataclass(frozen=True)
class AppConfig:
    queue: QueueConfig
    retry: RetryConfig
    registry: RegistryConfig
    ses: SesConfig
    default_locale: str


def load_settings() -> AppConfig:
    queue = QueueConfig(
        queue_name=_getenv_str("QUEUE_NAME", "company-setup"),
        dlq_name=_getenv_str("DLQ_NAME", "company-setup-dlq"),
        rq_redis_url=_getenv_str("RQ_REDIS_URL", "redis://127.0.0.1:6379/0"),
    )
    retry = RetryConfig(
        max_attempts=_getenv_int("VERIFY_MAX_ATTEMPTS", 3),
        backoff_base_ms=_getenv_int("VERIFY_BACKOFF_BASE_MS", 1000),
        job_timeout_seconds=_getenv_int("VERIFY_JOB_TIMEOUT_SECONDS", 120),
    )
    registry = RegistryConfig(
        base_url=_getenv_str("REGISTRY_BASE_URL", "https://api.verifik.co/v2"),
        api_token=_getenv_str("REGISTRY_API_TOKEN", ""),
        timeout_seconds=_getenv_float("REGISTRY_TIMEOUT_SECONDS", 30.0),
        connect_timeout_seconds=_getenv_float("REGISTRY_CONNECT_TIMEOUT_SECONDS", 5.0),
    )
    ses = SesConfig(
        from_email=_getenv_str("SES_FROM_EMAIL", "noreply@capbook.com.br"),
        from_name=_getenv_str("SES_FROM_NAME", APP_NAME),
        region=_getenv_str("SES_AWS_REGION", "us-east-1"),
    )

    if retry.max_attempts < 1:
        raise ValueError(f"VERIFY_MAX_ATTEMPTS must be >= 1; got {retry.max_attempts}")
    if retry.backoff_base_ms < 0:
        raise ValueError(f"VERIFY_BACKOFF_BASE_MS must be >= 0; got {retry.backoff_base_ms}")
    # The queue timeout is only a backstop for a hung registry call.
    if retry.job_timeout_seconds <= registry.timeout_seconds:
        raise ValueError(
            "VERIFY_JOB_TIMEOUT_SECONDS must be greater than REGISTRY_TIMEOUT_SECONDS "
            f"({retry.job_timeout_seconds} <= {registry.timeout_seconds})"
        )

    default_locale = DEFAULT_LOCALE if DEFAULT_LOCALE in SUPPORTED_LOCALES else "pt-BR"
    return AppConfig(
        queue=queue,
        retry=retry,
        registry=registry,
        ses=ses,
        default_locale=default_locale,
    )


__all__ = [
    "APP_NAME",
    "DEFAULT_LOCALE",
    "SUPPORTED_LOCALES",
    "VERIFY_JOB_TYPE",
    "QueueConfig",
    "RetryConfig",
    "RegistryConfig",
    "SesConfig",
    "AppConfig",
    "load_settings",
]
