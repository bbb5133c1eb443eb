"""Configuration loader for round, course and shop settings."""
import json
import os
from typing import Dict, Any, List, Optional


class ConfigLoader:
    """Loads and provides access to server configuration."""

    _instance = None
    _config_dir = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "config")

    def __new__(cls):
        """Singleton pattern to ensure only one config loader."""
        if cls._instance is None:
            cls._instance = super(ConfigLoader, cls).__new__(cls)
            cls._instance._load_all_configs()
        return cls._instance

    def _load_all_configs(self):
        """Load all configuration files."""
        self.game_settings = self._load_json("game_settings.json")
        self.courses_config = self._load_json("courses.json")
        self.shop_config = self._load_json("shop.json")
        self.titles_config = self._load_json("titles.json")

    def _load_json(self, filename: str) -> Dict[str, Any]:
        """Load a JSON configuration file."""
        filepath = os.path.join(self._config_dir, filename)
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            print(f"Warning: Config file {filename} not found. Using defaults.")
            return {}
        except json.JSONDecodeError as e:
            print(f"Warning: Error parsing {filename}: {e}. Using defaults.")
            return {}

    def get(self, *keys, default=None):
        """Get a nested value from game_settings.json."""
        value = self.game_settings
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def get_course_types(self) -> Optional[List[str]]:
        """Ordered course-type catalog.

        Returns:
            The configured list (possibly empty), or None when
            courses.json does not define ``course_types``.
        """
        types = self.courses_config.get('course_types')
        if not isinstance(types, list):
            return None
        return list(types)

    def get_shop_items(self) -> List[Dict[str, Any]]:
        """Shop catalog entries (id, name, cost, color)."""
        return list(self.shop_config.get('items', []))

    def get_titles(self) -> Optional[List[Dict[str, Any]]]:
        """Title thresholds, highest first.

        Returns:
            The configured thresholds sorted by ``min_wins`` descending,
            or None when titles.json does not define ``titles``.
        """
        titles = self.titles_config.get('titles')
        if not isinstance(titles, list):
            return None
        return sorted(titles, key=lambda t: t.get('min_wins', 0), reverse=True)


# Global config instance
config = ConfigLoader()
