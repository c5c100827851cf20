"""Settings dataclass and its JSON persistence.

Resolution order, later wins: the JSON file, overrides passed by the caller
(``--set`` on the command line), then ``WRITERSROOM_*`` environment variables.
The API key never touches the JSON file in the clear; :class:`SecretVault`
encrypts it with a Fernet key stored beside the settings file.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..ai.client import ClientSettings

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
    "default_settings_path",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".writersroom"
_SETTINGS_VERSION = 1
_CIPHERTEXT_KEY = "api_key_ciphertext"


def _env_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on", "debug"}


# (environment variable, settings field, parser)
_ENVIRONMENT: tuple[tuple[str, str, Callable[[str], Any]], ...] = (
    ("WRITERSROOM_API_KEY", "api_key", str),
    ("WRITERSROOM_BASE_URL", "base_url", str),
    ("WRITERSROOM_MODEL", "model", str),
    ("WRITERSROOM_ORGANIZATION", "organization", str),
    ("WRITERSROOM_PERSONAS", "personas_path", str),
    ("WRITERSROOM_OBSERVER_MODE", "observer_mode", _env_bool),
    ("WRITERSROOM_AUTO_SUMMARIZE", "auto_summarize", _env_bool),
    ("WRITERSROOM_DEBUG_LOGGING", "debug_logging", _env_bool),
    ("WRITERSROOM_REQUEST_TIMEOUT", "request_timeout", float),
    ("WRITERSROOM_TEMPERATURE", "temperature", float),
    ("WRITERSROOM_USER_TIMEOUT", "user_timeout_seconds", float),
    ("WRITERSROOM_AGENT_DELAY", "agent_delay_seconds", float),
    ("WRITERSROOM_SUMMARIZE_THRESHOLD", "summarize_threshold", lambda raw: int(raw, 10)),
)


def default_settings_path() -> Path:
    return _SETTINGS_DIR / "settings.json"


@dataclass(slots=True)
class Settings:
    """Everything the writers' room remembers between runs."""

    # model provider
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    # conversation flow
    observer_mode: bool = False
    user_timeout_seconds: float = 30.0
    observer_grace_seconds: float = 2.0
    agent_delay_seconds: float = 0.0
    auto_summarize: bool = True
    summarize_threshold: int = 20
    keep_recent_count: int | None = None
    # documents and sessions
    diff_min_similarity: float = 0.8
    diff_timeout_seconds: float = 30.0
    autosave_debounce_seconds: float = 1.0
    title_trigger_chars: int = 1_000
    active_agent_ids: list[str] = field(default_factory=list)
    personas_path: str | None = None
    debug_logging: bool = False

    @property
    def effective_keep_recent_count(self) -> int:
        if self.keep_recent_count is not None:
            return max(0, int(self.keep_recent_count))
        return max(1, self.summarize_threshold // 2)

    def client_settings(self) -> ClientSettings:
        shared = {item.name for item in fields(ClientSettings)}
        return ClientSettings(**{name: value for name, value in asdict(self).items() if name in shared})


def _field_names(*, exclude: frozenset[str] = frozenset()) -> set[str]:
    return {item.name for item in fields(Settings)} - exclude


def _write_atomically(path: Path, data: bytes, *, private: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_name(path.name + ".tmp")
    staging.write_bytes(data)
    if private and os.name != "nt":  # pragma: no cover - depends on OS
        os.chmod(staging, 0o600)
    staging.replace(path)


class SecretVault:
    """Fernet encryption for the API key.

    Tokens look like ``fernet:<token>``. The key file is created on first
    use and readable by the owner only.
    """

    prefix = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._cipher: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return f"{self.prefix}:{self._fernet().encrypt(secret.encode('utf-8')).decode('ascii')}"

    def decrypt(self, token: str | None) -> str:
        """Plaintext for ``token``; :class:`ValueError` when another key or format produced it."""

        if not token:
            return ""
        scheme, separator, body = token.partition(":")
        if scheme != self.prefix or not separator or not body:
            raise ValueError(f"Unknown secret token format: {scheme or token[:8]!r}")
        try:
            plaintext = self._fernet().decrypt(body.encode("ascii"))
        except InvalidToken as exc:
            raise ValueError("API key was encrypted with a different key") from exc
        return plaintext.decode("utf-8")

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            if self._key_path.exists():
                key = self._key_path.read_bytes().strip()
            else:
                key = Fernet.generate_key()
                _write_atomically(self._key_path, key, private=True)
                LOGGER.info("Created settings key at %s", self._key_path)
            self._cipher = Fernet(key)
        return self._cipher


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or default_settings_path()
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        payload = self._read_payload()
        settings, rewrite = self._from_payload(payload)
        if rewrite:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - read-only home directories
                LOGGER.warning("Could not rewrite %s: %s", self._path, exc)

        settings = _merge(settings, overrides or {}, "command line")
        return _merge(settings, _environment_overrides(), "environment")

    def save(self, settings: Settings) -> Path:
        data = asdict(settings)
        api_key = data.pop("api_key") or ""
        if api_key:
            data[_CIPHERTEXT_KEY] = self._vault.encrypt(api_key)
        data["version"] = _SETTINGS_VERSION
        _write_atomically(self._path, json.dumps(data, indent=2, sort_keys=True).encode("utf-8"))
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Ignoring unreadable settings file %s: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _from_payload(self, payload: Dict[str, Any]) -> tuple[Settings, bool]:
        """Build settings from the raw file; the flag says the file should be rewritten."""

        if not payload:
            return Settings(), False
        ciphertext = payload.get(_CIPHERTEXT_KEY)
        plaintext = payload.get("api_key")
        known = _field_names(exclude=frozenset({"api_key"}))
        try:
            settings = Settings(**{key: value for key, value in payload.items() if key in known})
        except TypeError as exc:
            LOGGER.warning("Settings payload contained unexpected data: %s", exc)
            settings = Settings()

        rewrite = payload.get("version") != _SETTINGS_VERSION
        if ciphertext:
            try:
                settings = replace(settings, api_key=self._vault.decrypt(ciphertext))
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
        elif plaintext:
            LOGGER.info("Found a plaintext API key; it will be stored encrypted")
            settings = replace(settings, api_key=str(plaintext))
            rewrite = True
        return settings, rewrite


def _merge(settings: Settings, overrides: Mapping[str, Any], source: str) -> Settings:
    known = _field_names()
    accepted = {key: value for key, value in overrides.items() if key in known and value is not None}
    if not accepted:
        return settings
    LOGGER.debug("Applying %s overrides: %s", source, ", ".join(sorted(accepted)))
    return replace(settings, **accepted)


def _environment_overrides() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for variable, name, parse in _ENVIRONMENT:
        raw = os.environ.get(variable)
        if raw is None:
            continue
        try:
            values[name] = parse(raw)
        except ValueError:
            LOGGER.warning("Ignoring %s=%r: expected %s", variable, raw, type(getattr(Settings(), name)).__name__)
    return values


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters (everything when short)."""

    secret = (value or "").strip()
    if len(secret) <= 4:
        return "*" * len(secret)
    hidden = len(secret) - 4
    return secret[:2] + "*" * hidden + secret[-2:]
