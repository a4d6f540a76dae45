from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

REQUIRED_KEYS = (
    "TELEGRAM_API_ID",
    "TELEGRAM_API_HASH",
    "TELEGRAM_PHONE_NUMBER",
    "S3_ACCESS_KEY",
    "S3_SECRET_KEY",
    "S3_BUCKET_NAME",
    "S3_ENDPOINT",
    "WEBHOOK_URL",
)
FAILURE_POLICY_CHOICES = ("skip", "hold")
WEEK_SEC = 7 * 24 * 60 * 60


def _as_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_ini(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}

    parser = configparser.ConfigParser()
    parser.optionxform = str
    parser.read(path, encoding="utf-8")

    values: dict[str, str] = {}
    for key, value in parser.defaults().items():
        values[key.upper()] = value
    for section in parser.sections():
        for key, value in parser.items(section):
            values[key.upper()] = value
    return values


def _parse_dotenv(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}

    values: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export "):].strip()
        value = value.strip()
        if (
            len(value) >= 2
            and value[0] == value[-1]
            and value[0] in {"'", '"'}
        ):
            value = value[1:-1]

        if key:
            values[key.upper()] = value
    return values


def _pick(
    values: Mapping[str, str],
    key: str,
    default: Optional[str] = None,
) -> Optional[str]:
    value = values.get(key)
    if value is None or not str(value).strip():
        return default
    return str(value).strip()


@dataclass
class Settings:
    telegram_api_id: Optional[int]
    telegram_api_hash: Optional[str]
    telegram_phone_number: Optional[str]
    telegram_password: Optional[str]
    telegram_session_file: Path
    telegram_channel: str
    channel_label: str

    s3_access_key: Optional[str]
    s3_secret_key: Optional[str]
    s3_region: str
    s3_bucket_name: Optional[str]
    s3_endpoint: Optional[str]
    s3_public_url_base: Optional[str]

    webhook_url: Optional[str]
    webhook_timeout_sec: float
    webhook_max_attempts: int
    webhook_base_delay_sec: float
    webhook_retry_client_errors: bool

    scan_page_size: int
    scan_page_delay_sec: float
    download_path: Path
    cursor_path: Path
    failure_policy: str

    run_interval_sec: int
    log_level: str

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, str]) -> "Settings":
        values = {key.upper(): str(value) for key, value in mapping.items() if value is not None}

        api_id_raw = _pick(values, "TELEGRAM_API_ID")
        try:
            api_id = int(api_id_raw) if api_id_raw else None
        except ValueError as exc:
            raise ValueError(f"TELEGRAM_API_ID must be an integer, got '{api_id_raw}'") from exc

        channel = (_pick(values, "TELEGRAM_CHANNEL", "Funny") or "Funny").lstrip("@")
        download_path = Path(_pick(values, "DOWNLOAD_PATH", "./downloads") or "./downloads").expanduser()
        cursor_raw = _pick(values, "CURSOR_PATH")
        cursor_path = Path(cursor_raw).expanduser() if cursor_raw else download_path / "last_offset.txt"

        failure_policy = (_pick(values, "FAILURE_POLICY", "skip") or "skip").lower()
        if failure_policy not in FAILURE_POLICY_CHOICES:
            options = ", ".join(FAILURE_POLICY_CHOICES)
            raise ValueError(f"Unsupported FAILURE_POLICY '{failure_policy}'. Available: {options}")

        return cls(
            telegram_api_id=api_id,
            telegram_api_hash=_pick(values, "TELEGRAM_API_HASH"),
            telegram_phone_number=_pick(values, "TELEGRAM_PHONE_NUMBER"),
            telegram_password=_pick(values, "TELEGRAM_PASSWORD"),
            telegram_session_file=Path(
                _pick(values, "TELEGRAM_SESSION_FILE", "./telegram_session") or "./telegram_session"
            ).expanduser(),
            telegram_channel=channel,
            channel_label=_pick(values, "CHANNEL_LABEL", f"t.me/{channel}") or f"t.me/{channel}",
            s3_access_key=_pick(values, "S3_ACCESS_KEY"),
            s3_secret_key=_pick(values, "S3_SECRET_KEY"),
            s3_region=_pick(values, "S3_REGION", "fsn1") or "fsn1",
            s3_bucket_name=_pick(values, "S3_BUCKET_NAME"),
            s3_endpoint=_pick(values, "S3_ENDPOINT"),
            s3_public_url_base=_pick(values, "S3_PUBLIC_URL_BASE"),
            webhook_url=_pick(values, "WEBHOOK_URL"),
            webhook_timeout_sec=float(_pick(values, "WEBHOOK_TIMEOUT_SEC", "30") or "30"),
            webhook_max_attempts=int(_pick(values, "WEBHOOK_MAX_ATTEMPTS", "3") or "3"),
            webhook_base_delay_sec=float(_pick(values, "WEBHOOK_BASE_DELAY_SEC", "2") or "2"),
            webhook_retry_client_errors=_as_bool(_pick(values, "WEBHOOK_RETRY_CLIENT_ERRORS"), default=True),
            scan_page_size=int(_pick(values, "SCAN_PAGE_SIZE", "100") or "100"),
            scan_page_delay_sec=float(_pick(values, "SCAN_PAGE_DELAY_SEC", "1.5") or "1.5"),
            download_path=download_path,
            cursor_path=cursor_path,
            failure_policy=failure_policy,
            run_interval_sec=int(_pick(values, "RUN_INTERVAL_SEC", str(WEEK_SEC)) or str(WEEK_SEC)),
            log_level=(_pick(values, "LOG_LEVEL", "INFO") or "INFO").upper(),
        )

    @classmethod
    def from_files(
        cls,
        *,
        config_file: Path | str = "config.ini",
        env_file: Path | str = ".env",
        base_env: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        merged_values: dict[str, str] = {}
        merged_values.update(_parse_ini(Path(config_file)))
        merged_values.update(_parse_dotenv(Path(env_file)))
        if base_env is None:
            base_env = os.environ
        for key, value in base_env.items():
            if value is not None:
                merged_values[key.upper()] = str(value)
        return cls.from_mapping(merged_values)

    def missing_required(self) -> tuple[str, ...]:
        present = {
            "TELEGRAM_API_ID": self.telegram_api_id,
            "TELEGRAM_API_HASH": self.telegram_api_hash,
            "TELEGRAM_PHONE_NUMBER": self.telegram_phone_number,
            "S3_ACCESS_KEY": self.s3_access_key,
            "S3_SECRET_KEY": self.s3_secret_key,
            "S3_BUCKET_NAME": self.s3_bucket_name,
            "S3_ENDPOINT": self.s3_endpoint,
            "WEBHOOK_URL": self.webhook_url,
        }
        return tuple(key for key in REQUIRED_KEYS if present[key] in (None, ""))

    def ensure_dirs(self) -> None:
        self.download_path.mkdir(parents=True, exist_ok=True)
        self.cursor_path.parent.mkdir(parents=True, exist_ok=True)
        self.telegram_session_file.parent.mkdir(parents=True, exist_ok=True)
