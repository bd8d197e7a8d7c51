from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from dockerize.settings import get_settings

LOGGER = logging.getLogger("dockerize.schemes")

HOST_PLACEHOLDER = "{host}"


class ConfigurationError(RuntimeError):
    """Scheme configuration is missing, unreadable or malformed."""


class UnknownSchemeError(ConfigurationError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Scheme '{name}' is not defined")
        self.name = name


@dataclass(frozen=True)
class Scheme:
    name: str
    image: str
    arguments: str

    def render(self, target: str) -> List[str]:
        """Substitute ``target`` for every ``{host}`` and split into argv tokens."""
        return self.arguments.replace(HOST_PLACEHOLDER, target).split()


def _parse_schemes(raw: object, source: Path) -> Dict[str, Scheme]:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{source}: expected a mapping of schemes at the top level")
    schemes: Dict[str, Scheme] = {}
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigurationError(f"{source}: scheme '{name}' must be a mapping")
        image = entry.get("image")
        arguments = entry.get("arguments")
        if not isinstance(image, str) or not image.strip():
            raise ConfigurationError(f"{source}: scheme '{name}' is missing an image")
        if not isinstance(arguments, str):
            raise ConfigurationError(f"{source}: scheme '{name}' is missing arguments")
        schemes[str(name)] = Scheme(name=str(name), image=image.strip(), arguments=arguments)
    return schemes


class SchemeStore:
    """Scheme definitions loaded from YAML on first access and kept for the process lifetime.

    The first load is serialised with a lock so concurrent callers trigger a
    single parse. A failed load leaves the store empty; the next access retries.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._schemes: Optional[Dict[str, Scheme]] = None

    @property
    def path(self) -> Path:
        if self._path is not None:
            return self._path
        return get_settings().resolve_service_config()

    def _load(self) -> Dict[str, Scheme]:
        schemes = self._schemes
        if schemes is not None:
            return schemes
        with self._lock:
            if self._schemes is None:
                source = self.path
                try:
                    with source.open("r", encoding="utf-8") as handle:
                        raw = yaml.safe_load(handle)
                except FileNotFoundError as exc:
                    raise ConfigurationError(f"Scheme configuration not found: {source}") from exc
                except OSError as exc:
                    raise ConfigurationError(f"Unable to read scheme configuration {source}: {exc}") from exc
                except yaml.YAMLError as exc:
                    raise ConfigurationError(f"Invalid YAML in {source}: {exc}") from exc
                self._schemes = _parse_schemes(raw, source)
                LOGGER.info("Loaded %s scheme(s) from %s", len(self._schemes), source)
            return self._schemes

    def resolve(self, name: str) -> Scheme:
        scheme = self._load().get(name)
        if scheme is None:
            raise UnknownSchemeError(name)
        return scheme

    def render_command(self, name: str, target: str) -> List[str]:
        return self.resolve(name).render(target)

    def names(self) -> List[str]:
        return sorted(self._load())

    def schemes(self) -> List[Scheme]:
        loaded = self._load()
        return [loaded[name] for name in sorted(loaded)]


_scheme_store: Optional[SchemeStore] = None


def get_scheme_store() -> SchemeStore:
    global _scheme_store
    if _scheme_store is None:
        _scheme_store = SchemeStore()
    return _scheme_store
