import os
from dataclasses import dataclass, fields
from typing import Dict, Any


@dataclass
class CoreConfig:
    SEED: int = int(os.getenv("ANCHORWEB_SEED", "13"))
    DEBUG: bool = os.getenv("ANCHORWEB_DEBUG", "0") == "1"
    # Owner used when a caller does not name one
    OWNER: str = os.getenv("ANCHORWEB_OWNER", "default")


@dataclass
class ExtractionConfig:
    SPACY_MODEL: str = os.getenv("ANCHORWEB_SPACY_MODEL", "en_core_web_sm")
    MIN_TERM_LENGTH: int = 3


@dataclass
class TaggingConfig:
    MODEL: str = os.getenv("ANCHORWEB_TAGGING_MODEL", "gpt-4o-mini")
    CACHE_SIZE: int = int(os.getenv("ANCHORWEB_TAGGING_CACHE_SIZE", "256"))
    MAX_TOKENS: int = 200


@dataclass
class LayoutConfigDefaults:
    # Tick budget (desktop); the mobile preset uses 180
    MAX_TICKS: int = int(os.getenv("ANCHORWEB_MAX_TICKS", "240"))

    # Forces
    REPULSION: float = 1.2
    REPULSION_CUTOFF: float = 3.0
    REPULSION_STRIDE: int = 1
    MIN_DISTANCE: float = 0.1
    ATTRACTION: float = 0.02
    ENTRY_SHARE: float = 0.3
    THEMATIC_STRENGTH: float = 0.05
    THEMATIC_DEADZONE: float = 2.0

    # Integration
    DAMPING: float = 0.88
    STEP_GAIN: float = 0.15

    # Seeding
    SEED_POLICY: str = os.getenv("ANCHORWEB_SEED_POLICY", "attractor")  # "attractor" | "sphere"
    SPREAD: float = 4.0
    JITTER: float = 3.0
    SCATTER_RADIUS: float = 10.0


@dataclass
class StorageConfig:
    # Directory for per-owner journal databases
    MEMORY_DIR: str = os.getenv("ANCHORWEB_MEMORY_DIR", os.path.expanduser("~/.anchorweb"))
    USE_SQLITE: bool = os.getenv("ANCHORWEB_USE_SQLITE", "1") == "1"
    SQLITE_DB_NAME: str = "journal.db"


@dataclass
class ServerConfig:
    HOST: str = os.getenv("ANCHORWEB_HOST", "127.0.0.1")
    PORT: int = int(os.getenv("ANCHORWEB_PORT", "8000"))
    RELOAD: bool = os.getenv("ANCHORWEB_RELOAD", "0") == "1"


SECTION_NAMES = ["core", "extraction", "tagging", "layout", "storage", "server"]


class Config:
    """Centralized configuration, overridable through ANCHORWEB_* variables."""
    core = CoreConfig()
    extraction = ExtractionConfig()
    tagging = TaggingConfig()
    layout = LayoutConfigDefaults()
    storage = StorageConfig()
    server = ServerConfig()

    @classmethod
    def to_dict(cls) -> Dict[str, Any]:
        """Serialize all config sections to a flat dictionary."""
        result = {}
        for section_name in SECTION_NAMES:
            section = getattr(cls, section_name)
            for f in fields(section):
                result[f"{section_name}.{f.name}"] = getattr(section, f.name)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], apply_env_overrides: bool = True):
        """
        Update config from a flat dictionary.
        If apply_env_overrides is True, environment variables take precedence.
        """
        for key, value in data.items():
            if "." not in key:
                continue
            section_name, field_name = key.split(".", 1)
            if section_name not in SECTION_NAMES:
                continue
            section = getattr(cls, section_name)
            if not hasattr(section, field_name):
                continue

            env_key = f"ANCHORWEB_{field_name}"
            if apply_env_overrides and env_key in os.environ:
                continue

            # Type conversion
            current_value = getattr(section, field_name)
            if isinstance(current_value, bool):
                value = str(value).lower() in ("1", "true", "yes")
            elif isinstance(current_value, int):
                value = int(value)
            elif isinstance(current_value, float):
                value = float(value)

            setattr(section, field_name, value)

    @classmethod
    def db_path(cls, owner: str) -> str:
        """Path of the SQLite database holding one owner's journal, always inside MEMORY_DIR."""
        root = os.path.realpath(cls.storage.MEMORY_DIR)
        owner_dir = os.path.realpath(os.path.join(root, owner))
        if not owner or os.path.dirname(owner_dir) != root:
            raise ValueError(f"Owner name '{owner}' does not map to a directory under {root}")
        return os.path.join(cls.storage.MEMORY_DIR, owner, cls.storage.SQLITE_DB_NAME)
