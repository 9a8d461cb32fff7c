"""Defines the settings model and loading functions for the linkstore.toml config."""

import logging
from pathlib import Path
from typing import Any

import tomli
from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from linkstore.core.exceptions import ConfigurationError
from linkstore.models.short_link import DEFAULT_MIN_STORED_ID_LENGTH, PREFIX_LENGTH

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "linkstore.toml"
CONFIG_TABLE = "linkstore"


class LinkStoreSettings(BaseSettings):
    """
    Settings for a link store deployment.

    Values come from the `[linkstore]` table of `linkstore.toml` and can be
    overridden with `LINKSTORE_<FIELD>` environment variables.
    """

    model_config = SettingsConfigDict(env_prefix="LINKSTORE_", extra="forbid")

    database_url: str = "sqlite+aiosqlite:///./linkstore.db"
    """Connection URL of the metadata index."""

    storage_path: Path = Path("./linkstore_blobs")
    """Root of the blob store, shared by every deployment that uses it."""

    storage_prefix: str = Field(default="links", min_length=1)
    """Namespace of this deployment's blobs inside the blob store."""

    prefix_length: int = Field(default=PREFIX_LENGTH, ge=1)
    """Partition key length. Existing records become unreachable if this changes."""

    min_stored_id_length: int = Field(default=DEFAULT_MIN_STORED_ID_LENGTH, ge=1)
    """Minimum length of generated short ids. Safe to change at any time."""

    max_store_attempts: int = Field(default=3, ge=1)
    """How many times a store is retried after losing an allocation race."""

    link_base_url: str | None = None
    """Public URL prefix used when printing links, e.g. `https://example.com`."""

    @model_validator(mode="after")
    def check_id_lengths(self) -> "LinkStoreSettings":
        """The partition key must be a prefix of the shortest allowed id."""
        if self.min_stored_id_length < self.prefix_length:
            raise ValueError(
                f"min_stored_id_length ({self.min_stored_id_length}) must be at least "
                f"prefix_length ({self.prefix_length})"
            )
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # File values arrive as init kwargs; the environment wins over them.
        return env_settings, init_settings, dotenv_settings, file_secret_settings


class LinkStoreToml:
    """A helper class to find and parse the `linkstore.toml` file."""

    def __init__(self, start_dir: Path | None = None, filename: str = CONFIG_FILENAME):
        """Initialize the LinkStoreToml helper."""
        self.start_dir = start_dir or Path.cwd()
        self.filename = filename
        self._settings: LinkStoreSettings | None = None
        self._config_path: Path | None = None

    def find(self) -> Path | None:
        """
        Find the configuration file by searching up from the start directory.

        Returns:
            The path to the found configuration file, or None if not found.

        """
        if self._config_path:
            return self._config_path

        search_dir = self.start_dir.resolve()
        while True:
            for fname in [self.filename, f".{self.filename}"]:
                p = search_dir / fname
                if p.is_file():
                    self._config_path = p
                    return p
            if search_dir == search_dir.parent:
                return None
            search_dir = search_dir.parent

    def parse(self, config_path: Path | None = None) -> LinkStoreSettings:
        """
        Load, validate, and cache the settings.

        When no file is given and none can be found, the defaults (plus any
        environment overrides) are used.

        Raises:
            ConfigurationError: If the file is not valid TOML or fails validation.

        """
        if self._settings and not config_path:
            return self._settings

        path_to_load = config_path or self.find()
        data: dict[str, Any] = {}
        if path_to_load:
            if not path_to_load.is_file():
                raise ConfigurationError(f"Configuration file '{path_to_load}' not found.")
            try:
                with path_to_load.open("rb") as f:
                    data = tomli.load(f).get(CONFIG_TABLE, {})
            except tomli.TOMLDecodeError as e:
                raise ConfigurationError(f"Invalid TOML in '{path_to_load}': {e}") from e
            logger.info("Loaded configuration from %s", path_to_load)
        else:
            logger.debug("No %s found, using default settings.", self.filename)

        try:
            self._settings = LinkStoreSettings(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid link store configuration: {e}") from e
        self._config_path = path_to_load
        return self._settings


def load_settings(config_path: Path | None = None, start_dir: Path | None = None) -> LinkStoreSettings:
    """Load the settings from an explicit file, or from the nearest `linkstore.toml`."""
    return LinkStoreToml(start_dir=start_dir).parse(config_path)
