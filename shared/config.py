# shared/config.py
from __future__ import annotations
import os, json
import re
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping
from dotenv import load_dotenv
import logging
from logging.handlers import TimedRotatingFileHandler

logger = logging.getLogger(__name__)

# Raíz del proyecto (donde están .env, config.json, etc.)
BASE_DIR = Path(__file__).resolve().parents[1]

# Cargar variables del .env en la raíz (y fallback al cwd por si acaso)
load_dotenv(BASE_DIR / ".env")
load_dotenv()

DEFAULT_LOG_RETENTION_DAYS = 7
DEFAULT_COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"


def _load_cfg() -> Dict[str, Any]:
    """
    Carga (opcional) config.json desde la raíz del proyecto (o cwd). Si no existe, {}.
    """
    candidates = [BASE_DIR / "config.json", Path.cwd() / "config.json"]
    for p in candidates:
        try:
            if p.exists():
                return json.loads(p.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.exception("No se pudo cargar configuración %s: %s", p, e)
    return {}


class Settings:
    def __init__(self) -> None:
        cfg = _load_cfg()

        # --- Identidad / headers ---
        self.USER_AGENT: str = os.getenv("USER_AGENT", cfg.get("USER_AGENT", "RateGlance/1.0 (+cache)"))

        # --- Proveedor de cotizaciones (CoinGecko) ---
        self.COINGECKO_API_KEY: str | None = os.getenv(
            "COINGECKO_API_KEY", cfg.get("COINGECKO_API_KEY")
        ) or None
        self.COINGECKO_BASE_URL: str = os.getenv(
            "COINGECKO_BASE_URL", cfg.get("COINGECKO_BASE_URL", DEFAULT_COINGECKO_BASE_URL)
        )
        self.COINGECKO_TIMEOUT: float = float(
            os.getenv("COINGECKO_TIMEOUT", cfg.get("COINGECKO_TIMEOUT", 15.0))
        )

        # --- Caché de cotizaciones ---
        self.RATE_CACHE_REFRESH_INTERVAL_MS: int = int(
            os.getenv(
                "RATE_CACHE_REFRESH_INTERVAL_MS",
                cfg.get("RATE_CACHE_REFRESH_INTERVAL_MS", 900_000),
            )
        )
        self.RATE_CACHE_RETRY_INTERVAL_MS: int = int(
            os.getenv(
                "RATE_CACHE_RETRY_INTERVAL_MS",
                cfg.get("RATE_CACHE_RETRY_INTERVAL_MS", 300_000),
            )
        )
        self.RATE_CACHE_MAX_RETRIES: int = int(
            os.getenv("RATE_CACHE_MAX_RETRIES", cfg.get("RATE_CACHE_MAX_RETRIES", 3))
        )
        self.RATE_CACHE_STALE_THRESHOLD_MS: int = int(
            os.getenv(
                "RATE_CACHE_STALE_THRESHOLD_MS",
                cfg.get("RATE_CACHE_STALE_THRESHOLD_MS", 3_600_000),
            )
        )
        self.RATE_CACHE_VERY_STALE_THRESHOLD_MS: int = int(
            os.getenv(
                "RATE_CACHE_VERY_STALE_THRESHOLD_MS",
                cfg.get("RATE_CACHE_VERY_STALE_THRESHOLD_MS", 7_200_000),
            )
        )
        self.RATE_CACHE_CRITICAL_STALE_THRESHOLD_MS: int = int(
            os.getenv(
                "RATE_CACHE_CRITICAL_STALE_THRESHOLD_MS",
                cfg.get("RATE_CACHE_CRITICAL_STALE_THRESHOLD_MS", 21_600_000),
            )
        )
        self.RATE_CACHE_HISTORY_SIZE: int = int(
            os.getenv("RATE_CACHE_HISTORY_SIZE", cfg.get("RATE_CACHE_HISTORY_SIZE", 100))
        )

        # --- Monedas soportadas (vacío = usar los defaults del caché) ---
        self.SUPPORTED_CRYPTOS: Dict[str, str] = self._parse_symbol_map(
            os.getenv("SUPPORTED_CRYPTOS", cfg.get("SUPPORTED_CRYPTOS"))
        )
        self.SUPPORTED_FIATS: list[str] = self._parse_code_list(
            os.getenv("SUPPORTED_FIATS", cfg.get("SUPPORTED_FIATS"))
        )
        self.CRYPTO_VS_CURRENCIES: list[str] = self._parse_code_list(
            os.getenv("CRYPTO_VS_CURRENCIES", cfg.get("CRYPTO_VS_CURRENCIES"))
        )

        # --- Logging ---
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", cfg.get("LOG_LEVEL", "INFO"))
        self.LOG_FORMAT: str = os.getenv("LOG_FORMAT", cfg.get("LOG_FORMAT", "plain"))
        self.LOG_DIR: str | None = os.getenv("LOG_DIR", cfg.get("LOG_DIR"))
        retention_candidate = os.getenv(
            "LOG_RETENTION_DAYS", cfg.get("LOG_RETENTION_DAYS", DEFAULT_LOG_RETENTION_DAYS)
        )
        self.LOG_RETENTION_DAYS: int = self._coerce_positive_int(retention_candidate)

    @staticmethod
    def _parse_jsonish(raw: Any) -> Any:
        if raw is None:
            return None
        if isinstance(raw, str):
            try:
                return json.loads(raw)
            except json.JSONDecodeError:
                return raw
        return raw

    def _parse_code_list(self, raw: Any) -> list[str]:
        parsed = self._parse_jsonish(raw)
        if isinstance(parsed, str):
            candidates_iter: Iterable[Any] = [
                item.strip() for item in parsed.split(",") if item.strip()
            ]
        elif isinstance(parsed, Iterable) and not isinstance(parsed, (bytes, bytearray, str, Mapping)):
            candidates_iter = parsed
        else:
            candidates_iter = []

        normalized: list[str] = []
        for item in candidates_iter:
            code = str(item or "").strip().upper()
            if code and code not in normalized:
                normalized.append(code)
        return normalized

    def _parse_symbol_map(self, raw: Any) -> Dict[str, str]:
        parsed = self._parse_jsonish(raw)
        if not isinstance(parsed, Mapping):
            return {}
        mapping: Dict[str, str] = {}
        for key, value in parsed.items():
            symbol = str(key or "").strip().upper()
            coin_id = str(value or "").strip().lower()
            if not symbol or not coin_id:
                continue
            mapping[symbol] = coin_id
        return mapping

    def _coerce_positive_int(self, candidate: Any) -> int:
        try:
            value = int(candidate)
        except (TypeError, ValueError):
            return DEFAULT_LOG_RETENTION_DAYS
        return max(value, 1)

settings = Settings()


class JsonFormatter(logging.Formatter):
    """Formato JSON simple para registros de log."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


LOG_FILENAME_PATTERN = re.compile(r"rates_(\d{4}-\d{2}-\d{2})\.log$")


def prune_old_logs(directory: Path, retention_days: int, current_file: str | None = None) -> None:
    """Remove ``rates_YYYY-MM-DD.log`` files older than the retention window."""

    try:
        retention_value = int(retention_days)
    except (TypeError, ValueError):
        retention_value = DEFAULT_LOG_RETENTION_DAYS

    retention_value = max(retention_value, 1)
    cutoff = datetime.now().date() - timedelta(days=retention_value - 1)

    current_path = Path(current_file) if current_file else None
    current_resolved = current_path.resolve() if current_path else None

    for candidate in directory.glob("rates_*.log"):
        if current_resolved is not None and candidate.resolve() == current_resolved:
            continue

        match = LOG_FILENAME_PATTERN.match(candidate.name)
        if not match:
            continue

        try:
            file_date = datetime.strptime(match.group(1), "%Y-%m-%d").date()
        except ValueError:
            continue

        if file_date < cutoff:
            try:
                candidate.unlink()
            except OSError as exc:
                logger.warning("No se pudo borrar log antiguo %s: %s", candidate, exc)


class DailyTimedRotatingFileHandler(TimedRotatingFileHandler):
    """Time-based file handler that writes daily log files with a date suffix."""

    def __init__(self, directory: Path, retention_days: int, encoding: str = "utf-8") -> None:
        self.log_directory = Path(directory)
        self.log_directory.mkdir(parents=True, exist_ok=True)
        try:
            retention_value = int(retention_days)
        except (TypeError, ValueError):
            retention_value = DEFAULT_LOG_RETENTION_DAYS
        self.retention_days = max(retention_value, 1)

        filename = self._filename_for(datetime.now())

        super().__init__(
            filename=str(filename),
            when="midnight",
            interval=1,
            backupCount=0,
            encoding=encoding,
            delay=False,
        )

        # Next rollover at the upcoming midnight, not at file mtime + 1 day.
        self.rolloverAt = self.computeRollover(time.time())

        prune_old_logs(self.log_directory, self.retention_days, current_file=self.baseFilename)

    def _filename_for(self, moment: datetime) -> Path:
        return self.log_directory / f"rates_{moment.strftime('%Y-%m-%d')}.log"

    def doRollover(self) -> None:  # pragma: no cover - exercised indirectly
        if self.stream:
            self.stream.close()
            self.stream = None

        rollover_time = self.rolloverAt or time.time()
        next_moment = datetime.fromtimestamp(rollover_time)
        self.baseFilename = str(self._filename_for(next_moment))

        if not self.delay:
            self.stream = self._open()

        self.rolloverAt = self.computeRollover(rollover_time)
        prune_old_logs(self.log_directory, self.retention_days, current_file=self.baseFilename)


def _log_directory() -> Path:
    configured = getattr(settings, "LOG_DIR", None)
    if configured:
        return Path(configured)
    return BASE_DIR / "logs"


def configure_logging(level: str | None = None, json_format: bool | None = None) -> None:
    """Configura el logging global.

    Por defecto usa nivel ``INFO`` y formato ``"plain"``. Los valores
    configurados se normalizan y, si son inválidos, se revierte a estos
    predeterminados.
    """

    level_name = (level or getattr(settings, "LOG_LEVEL", "INFO")).upper()
    level_value = getattr(logging, level_name, None)
    if not isinstance(level_value, int):
        level_name = "INFO"
        level_value = logging.INFO

    if json_format is None:
        fmt = str(getattr(settings, "LOG_FORMAT", "plain")).lower()
        if fmt not in {"json", "plain"}:
            fmt = "plain"
        json_format = fmt == "json"

    if json_format:
        formatter: logging.Formatter = JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root = logging.getLogger()
    root.setLevel(level_value)
    root.handlers = []

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)

    log_directory = _log_directory()
    retention_days = getattr(settings, "LOG_RETENTION_DAYS", DEFAULT_LOG_RETENTION_DAYS)

    file_handler = DailyTimedRotatingFileHandler(
        directory=log_directory,
        retention_days=retention_days,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    root.addHandler(stream_handler)
    root.addHandler(file_handler)

    # urllib3 logs every retry and connection at DEBUG/INFO
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)


__all__ = [
    "BASE_DIR",
    "DEFAULT_COINGECKO_BASE_URL",
    "DailyTimedRotatingFileHandler",
    "JsonFormatter",
    "Settings",
    "configure_logging",
    "prune_old_logs",
    "settings",
]
