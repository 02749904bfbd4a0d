"""Persisted local configuration for stockdesk.

Settings live in a ``config.ini`` file that holds the remote backend
credentials, an optional local workbook location, and user preferences
(theme, language). Every entry is optional: a configuration without remote
credentials or workbook puts the application in demo mode, backed by the
static seed dataset.

Example::

    [Remote]
    Url = https://project.supabase.co
    AnonKey = eyJhbGciOi...
    Timeout = 10
    ImageBucket = product-images

    [Local]
    DataFile = stockdesk.xlsx

    [Preferences]
    Theme = dark
    Language = fr
"""

from __future__ import annotations

import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import log
from .constants import DEFAULT_IMAGE_BUCKET, DEFAULT_REQUEST_TIMEOUT, Language, Theme


CONFIG_FILE_NAME = "config.ini"

REMOTE_SECTION = "Remote"
LOCAL_SECTION = "Local"
PREFERENCES_SECTION = "Preferences"


@dataclass(frozen=True)
class Settings:
    """Typed representation of the ``config.ini`` settings we care about."""

    remote_url: Optional[str] = None
    remote_key: Optional[str] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    image_bucket: str = DEFAULT_IMAGE_BUCKET
    data_file: Optional[Path] = None
    theme: Theme = Theme.DARK
    language: Language = Language.FR

    @property
    def remote_configured(self) -> bool:
        """Whether both the backend URL and its key are present."""

        return bool(self.remote_url) and bool(self.remote_key)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the store connects.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the
    current working directory toward the filesystem root looking for a file
    named ``CONFIG_FILE_NAME``; the first match wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of
            performing the upward search.

    Returns:
        Path: The path provided by the caller or the discovered file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _get(parser: configparser.ConfigParser, section: str, option: str) -> Optional[str]:
    value = parser.get(section, option, fallback=None)
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> Settings:
    """Convert a ``ConfigParser`` into strongly typed :class:`Settings`.

    Missing sections and options fall back to the defaults of
    :class:`Settings`. A relative ``DataFile`` is anchored to ``base_path``
    (the configuration directory) or to the current working directory.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Anchor for relative ``DataFile`` entries.

    Returns:
        Settings: Immutable settings container.

    Raises:
        ValueError: If ``Timeout`` is not a positive number or a preference
            names an unsupported theme or language.
    """

    timeout_raw = _get(parser, REMOTE_SECTION, "Timeout")
    try:
        timeout = float(timeout_raw) if timeout_raw is not None else DEFAULT_REQUEST_TIMEOUT
    except ValueError as exc:
        raise ValueError(f"Invalid request timeout: {timeout_raw}") from exc
    if timeout <= 0:
        raise ValueError(f"Invalid request timeout: {timeout_raw}")

    data_file_raw = _get(parser, LOCAL_SECTION, "DataFile")
    data_file: Optional[Path] = None
    if data_file_raw is not None:
        data_file = Path(data_file_raw).expanduser()
        if not data_file.is_absolute():
            if base_path is None:
                base_path = Path.cwd()
            data_file = (base_path / data_file).resolve()

    theme_raw = _get(parser, PREFERENCES_SECTION, "Theme")
    language_raw = _get(parser, PREFERENCES_SECTION, "Language")

    return Settings(
        remote_url=_get(parser, REMOTE_SECTION, "Url"),
        remote_key=_get(parser, REMOTE_SECTION, "AnonKey"),
        request_timeout=timeout,
        image_bucket=_get(parser, REMOTE_SECTION, "ImageBucket") or DEFAULT_IMAGE_BUCKET,
        data_file=data_file,
        theme=Theme(theme_raw) if theme_raw else Theme.DARK,
        language=Language(language_raw) if language_raw else Language.FR,
    )


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Locate, read and parse the configuration, or fall back to defaults.

    A missing configuration file is not an error: the defaults describe an
    unconfigured installation, which runs in demo mode.
    """

    try:
        located = Path(find_config_file(config_path)).expanduser().resolve()
        parser = read_config(located)
    except FileNotFoundError:
        if config_path is not None:
            raise
        log.info("No %s found; using default settings (demo mode)", CONFIG_FILE_NAME)
        return Settings()
    return parse_settings(parser, base_path=located.parent)


def save_settings(
    config_path: Path,
    *,
    remote_url: Optional[str] = None,
    remote_key: Optional[str] = None,
    data_file: Optional[Path] = None,
    theme: Optional[Theme] = None,
    language: Optional[Language] = None,
) -> Path:
    """Write the supplied values into ``config_path``.

    Only the provided values are changed; other entries already present in
    the file are preserved. The file is created when missing.

    Returns:
        Path: Resolved path of the written file.
    """

    config_path = Path(config_path).expanduser().resolve()
    parser = configparser.ConfigParser()
    if config_path.exists():
        parser.read(config_path, encoding="utf-8")

    updates = {
        (REMOTE_SECTION, "Url"): remote_url,
        (REMOTE_SECTION, "AnonKey"): remote_key,
        (LOCAL_SECTION, "DataFile"): str(data_file) if data_file is not None else None,
        (PREFERENCES_SECTION, "Theme"): Theme(theme).value if theme is not None else None,
        (PREFERENCES_SECTION, "Language"): Language(language).value if language is not None else None,
    }
    for (section, option), value in updates.items():
        if value is None:
            continue
        if not parser.has_section(section):
            parser.add_section(section)
        parser.set(section, option, value)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        parser.write(handle)
    log.info("Saved settings to '%s'", config_path)
    return config_path
