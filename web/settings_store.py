"""JSON-backed settings store for runtime configuration.

Sections used by the engine: ``acme``, ``dns``, ``cloudflare``, ``route53``,
``azure_dns``, ``google_dns``, ``digitalocean``, ``scheduler`` and ``api_keys``.
Values set here override the environment defaults in ``config.settings``.
"""

import json
import os
import threading
from pathlib import Path
from typing import Any

SECTIONS = (
    "acme", "dns", "cloudflare", "route53", "azure_dns",
    "google_dns", "digitalocean", "scheduler", "api_keys",
)

# Keys whose values are never returned unmasked by the API
SECRET_KEYS = {
    "api_token", "secret_key", "client_secret", "eab_hmac_key", "access_key",
}

MASK = "********"


class SettingsStore:
    """Persist application settings to a JSON file.

    Supports dot-notation keys (e.g. ``route53.zone_id``) and section-level
    bulk get/set. Writes go through a temp file and ``os.replace`` so a
    concurrent reader never sees a half-written document.
    """

    _lock = threading.Lock()

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> dict:
        if self._path.exists():
            try:
                return json.loads(self._path.read_text())
            except (json.JSONDecodeError, OSError):
                return {}
        return {}

    def _save(self, data: dict) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        os.replace(tmp, self._path)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value using dot-notation key (e.g. ``acme.email``)."""
        data = self._load()
        section, _, name = key.partition(".")
        if name:
            return data.get(section, {}).get(name, default)
        return data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            section, _, name = key.partition(".")
            if name:
                data.setdefault(section, {})[name] = value
            else:
                data[key] = value
            self._save(data)

    def delete(self, key: str) -> bool:
        """Remove a dot-notation key; True when something was removed."""
        with self._lock:
            data = self._load()
            section, _, name = key.partition(".")
            target = data.get(section, {}) if name else data
            if (name or section) not in target:
                return False
            del target[name or section]
            self._save(data)
            return True

    def get_section(self, section: str) -> dict:
        """Get all key-value pairs in a section."""
        return dict(self._load().get(section, {}))

    def set_section(self, section: str, values: dict) -> None:
        """Merge ``values`` into a section. Masked placeholders keep the stored value."""
        with self._lock:
            data = self._load()
            existing = data.get(section, {})
            existing.update({k: v for k, v in values.items() if v != MASK})
            data[section] = existing
            self._save(data)

    def masked_section(self, section: str) -> dict:
        """Section contents with secret values replaced by a mask."""
        values = self.get_section(section)
        if section == "api_keys":
            return {name: MASK for name in values}
        return {k: (MASK if k in SECRET_KEYS and v else v) for k, v in values.items()}

    def get_all(self) -> dict:
        return self._load()
