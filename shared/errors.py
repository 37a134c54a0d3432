"""Jerarquía de errores de aplicación compartida."""

from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Excepción base para errores específicos de la aplicación."""


class ConfigInvalidError(AppError):
    """Se genera cuando la configuración es inválida, antes de cualquier llamada de red."""

    def __init__(self, message: str, errors: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.errors: list[str] = list(errors or [])


class UpstreamError(AppError):
    """Se genera cuando el proveedor de precios devuelve un error."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamAuthError(UpstreamError):
    """Se genera cuando el proveedor rechaza la API key (HTTP 401)."""


class UpstreamForbiddenError(UpstreamError):
    """Se genera cuando la key no tiene permisos o se agotó la cuota (HTTP 403)."""


class UpstreamRateLimitedError(UpstreamError):
    """Se genera cuando el proveedor indica que se alcanzó el límite de solicitudes (HTTP 429)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class UpstreamUnavailableError(UpstreamError):
    """Se genera cuando el proveedor está caído (HTTP 5xx) o inaccesible."""


class UpstreamNetworkError(UpstreamUnavailableError):
    """Se genera cuando no hay respuesta HTTP: fallas de DNS, conexión o timeout."""


class UpstreamDataInvalidError(UpstreamError):
    """Se genera cuando la respuesta está malformada, vacía o le faltan valores requeridos."""


class CacheWriteFailedError(AppError):
    """Se genera cuando falla la escritura del caché de cotizaciones."""


class AcquisitionError(AppError):
    """Clase base para fallas del ciclo de carga de cotizaciones."""


class AcquisitionInProgressError(AcquisitionError):
    """Se genera cuando ya hay un ciclo de carga en curso."""


class AcquisitionFailedError(AcquisitionError):
    """Se genera cuando fallan ambas fuentes y no se escribe nada en el caché."""

    def __init__(
        self,
        message: str,
        *,
        errors: Optional[list[str]] = None,
        attempt: int = 0,
        max_retries: int = 0,
    ) -> None:
        super().__init__(message)
        self.errors: list[str] = list(errors or [])
        self.attempt = attempt
        self.max_retries = max_retries

    @property
    def should_retry(self) -> bool:
        return self.attempt < self.max_retries


class AcquisitionCancelledError(AcquisitionError):
    """Se genera cuando el ciclo se cancela antes de escribir en el caché."""


class SchedulerNotRunningError(AppError):
    """Se genera cuando se fuerza un refresco con el scheduler detenido."""


__all__ = [
    "AppError",
    "ConfigInvalidError",
    "UpstreamError",
    "UpstreamAuthError",
    "UpstreamForbiddenError",
    "UpstreamRateLimitedError",
    "UpstreamUnavailableError",
    "UpstreamNetworkError",
    "UpstreamDataInvalidError",
    "CacheWriteFailedError",
    "AcquisitionError",
    "AcquisitionInProgressError",
    "AcquisitionFailedError",
    "AcquisitionCancelledError",
    "SchedulerNotRunningError",
]
