"""Pydantic configuration models for notionpull."""

import os
import re
from pathlib import Path
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from ..exceptions import ConfigError
from .tree import normalize_id

CONFIG_FILENAMES = ("notionpull.yaml", "notionpull.yml")
API_KEY_ENV_VAR = "NOTION_API_KEY"


class ByteSize(int):
    """
    Custom type that parses human-readable byte sizes.

    Accepts:
        - Integers (bytes)
        - Strings like '256kb', '1mb', '2gb'

    Examples:
        >>> ByteSize._parse('256kb')
        262144
        >>> ByteSize._parse('1mb')
        1048576
    """

    @classmethod
    def __get_pydantic_core_schema__(cls, source: Any, handler: Any) -> Any:
        from pydantic_core import core_schema

        return core_schema.no_info_plain_validator_function(cls._parse)

    @classmethod
    def _parse(cls, v: Any) -> int:
        if isinstance(v, int):
            return v
        if isinstance(v, str):
            v = v.lower().strip()
            # Order matters: check longer suffixes first
            units = [("gb", 1024**3), ("mb", 1024**2), ("kb", 1024), ("b", 1)]
            for unit, mult in units:
                if v.endswith(unit):
                    num_str = v[: -len(unit)].strip()
                    try:
                        return int(float(num_str) * mult)
                    except ValueError as err:
                        raise ValueError(f"Invalid number in byte size: {v}") from err
            try:
                return int(v)
            except ValueError:
                pass
        raise ValueError(f"Invalid byte size: {v}. Use format like '256kb', '1mb', or integer bytes.")


def _expand_env_var(value: Optional[str]) -> Optional[str]:
    """Expand $VAR and ${VAR} references; unknown variables are left as-is."""
    if value is None:
        return None

    pattern = r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)"

    def replace(match: re.Match) -> str:
        var_name = match.group(1) or match.group(2)
        return os.environ.get(var_name, match.group(0))

    return re.sub(pattern, replace, value)


def dedupe_pages(pages: list[Any]) -> list[Any]:
    """Drop later entries whose normalized id was already seen (str, dict or PageRef)."""
    seen: set[str] = set()
    unique: list[Any] = []
    for page in pages:
        if isinstance(page, PageRef):
            raw = page.id
        elif isinstance(page, dict):
            raw = str(page.get("id", ""))
        else:
            raw = str(page)
        key = normalize_id(raw)
        if key in seen:
            continue
        seen.add(key)
        unique.append(page)
    return unique


class PageRef(BaseModel):
    """A root page with a human-readable label."""

    id: str = Field(..., description="Page id or Notion URL")
    name: Optional[str] = Field(None, description="Label used in logs")

    model_config = {"extra": "forbid"}


class OutputConfig(BaseModel):
    """Where mirrored pages, attachments and the cache map are written."""

    directory: Path = Field(Path("./build/meta"), description="Output directory")

    model_config = {"extra": "forbid"}


class SyncConfig(BaseModel):
    """Traversal, caching and fan-out behavior."""

    recursive: bool = Field(True, description="Descend into child pages")
    include_resources: bool = Field(True, description="Download attachments owned by each page")
    resource_types: Literal["images", "all"] = Field(
        "images",
        description="Which attachment blocks to download (images only, or files/pdf/video/audio too)",
    )
    concurrency: int = Field(5, ge=0, description="Sibling pages processed together (0 = serial)")
    root_concurrency: int = Field(
        1,
        ge=1,
        description="Root pages synced together, each with its own resource map",
    )
    scheduling: Literal["batch", "pool"] = Field(
        "batch",
        description="Fixed-size batches awaited as a unit, or a continuously refilled worker pool",
    )
    enable_cache: bool = Field(True, description="Skip pages whose last_edited_time is unchanged")
    # On: a remote edit whose local snapshot still matches the stored hash is
    # never refetched.
    verify_local_hash: bool = Field(
        False,
        description="Treat a timestamp change as no-op when the local snapshot still matches its stored hash",
    )
    isolate_branch_failures: bool = Field(
        False,
        description="Keep processing siblings when one child page fails",
    )

    model_config = {"extra": "forbid"}


class NetworkConfig(BaseModel):
    """Configuration for the Notion API client."""

    api_key: Optional[str] = Field(
        None,
        description=f"Integration token (falls back to ${API_KEY_ENV_VAR})",
    )
    api_base: str = Field("https://api.notion.com/v1", description="Notion API base URL")
    notion_version: str = Field("2022-06-28", description="Notion-Version header")
    proxy: Optional[str] = Field(None, description="HTTP/HTTPS proxy URL")
    max_retries: int = Field(3, ge=0, description="Maximum retry attempts for failed requests")
    read_timeout: int = Field(30, ge=5, description="Request timeout in seconds")
    rate_limit: float = Field(0.34, ge=0, description="Minimum seconds between API requests")
    max_concurrent_requests: int = Field(3, ge=1, description="Maximum in-flight API requests")

    model_config = {"extra": "forbid"}

    def model_post_init(self, __context: object) -> None:
        if self.api_key:
            object.__setattr__(self, "api_key", _expand_env_var(self.api_key))

    def resolve_api_key(self) -> Optional[str]:
        """Configured key, else the environment variable."""
        return self.api_key or os.environ.get(API_KEY_ENV_VAR)


class DownloadConfig(BaseModel):
    """Configuration for chunked attachment downloads."""

    chunk_size: ByteSize = Field(ByteSize(1024 * 1024), description="Bytes per ranged request")
    retry_count: int = Field(3, ge=1, description="Attempts before giving up on a file")
    retry_delay: float = Field(1.0, ge=0, description="Base delay; attempt n waits n * retry_delay")
    progress_interval: float = Field(2.0, ge=0, description="Minimum seconds between progress reports")
    progress_threshold: int = Field(5, ge=0, le=100, description="Minimum percent change between reports")

    model_config = {"extra": "forbid"}


class NotionpullConfig(BaseModel):
    """
    Root configuration model for notionpull.

    YAML format:
        pages:
          - 1429989fe8ac4effbc8f57f56486db54
          - id: https://www.notion.so/Team-Wiki-8c0f1e4b2d9a4c7e9f3b5a6d7e8f9a0b
            name: Team wiki
        output:
          directory: ./backup
        sync:
          concurrency: 3
          resource_types: all
    """

    pages: list[Union[PageRef, str]] = Field(default_factory=list, description="Root pages to mirror")

    output: OutputConfig = Field(default_factory=OutputConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO",
        description="Logging level",
    )
    log_file: Optional[Path] = Field(None, description="Log file path")

    model_config = {"extra": "forbid"}

    def root_pages(self) -> list[PageRef]:
        """
        Root pages with plain-string entries promoted to PageRef.

        A page listed more than once (as an id, a dashed id or a URL) is
        kept once, at its first position.
        """
        return [PageRef(id=p) if isinstance(p, str) else p for p in dedupe_pages(self.pages)]

    def to_yaml(self) -> str:
        """Serialize config to YAML string."""
        import yaml

        return yaml.dump(self.model_dump(mode="json", exclude_none=True), default_flow_style=False)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "NotionpullConfig":
        """Load config from YAML string."""
        import yaml

        data = yaml.safe_load(yaml_str) or {}
        return cls.model_validate(data)

    @classmethod
    def from_yaml_file(cls, path: Path) -> "NotionpullConfig":
        """Load config from YAML file."""
        return cls.from_yaml(path.read_text(encoding="utf-8"))


def find_config_file(start: Optional[Path] = None) -> Optional[Path]:
    """Walk up from ``start`` (default: cwd) looking for notionpull.yaml/.yml."""
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        for name in CONFIG_FILENAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
    return None


def load_config(path: Optional[Path] = None) -> NotionpullConfig:
    """
    Load configuration from an explicit file, a discovered file, or defaults.

    Raises:
        ConfigError: If the file is missing, unreadable, or invalid
    """
    if path is None:
        path = find_config_file()
        if path is None:
            return NotionpullConfig()
    elif not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    try:
        return NotionpullConfig.from_yaml_file(path)
    except Exception as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e
