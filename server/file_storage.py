"""File-based storage implementation."""

import json
import logging
import os

from core.interfaces import Storage

logger = logging.getLogger(__name__)

STATE_PREFIX = 'gauntlet_profile_'
DEFAULT_CONFIG_FILE = '~/.config/gauntlet/config.json'


def read_config_file(path: str) -> dict:
    """Load the JSON config shared by every storage backend."""
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"Config file not found at {path}\n"
            f'Please create it with: {{"gemini_api_key": "YOUR_API_KEY_HERE"}}'
        )
    with open(path, 'r') as f:
        return json.load(f)


class FileStorage(Storage):
    """One JSON document per user under a state directory."""

    def __init__(self, config_file: str = None, state_dir: str = None):
        self.config_file = config_file or os.path.expanduser(DEFAULT_CONFIG_FILE)
        self.state_dir = state_dir or os.environ.get(
            'GAUNTLET_STATE_DIR',
            os.path.expanduser('~/.local/share/gauntlet')
        )

    def _get_state_file(self, user_id: str) -> str:
        """Get state file path for a user."""
        if user_id == "default":
            return os.path.join(self.state_dir, 'gauntlet_profile.json')
        return os.path.join(self.state_dir, f'{STATE_PREFIX}{user_id}.json')

    def _get_stats_file(self) -> str:
        return os.path.join(self.state_dir, 'gauntlet_api_stats.json')

    def _read_json(self, path: str) -> dict | None:
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt JSON in {path}: {e}")
            return None

    def _write_json(self, path: str, data: dict) -> None:
        os.makedirs(self.state_dir, exist_ok=True)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, 'w') as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, path)

    def load_config(self) -> dict:
        return read_config_file(self.config_file)

    def load_state(self, user_id: str = "default") -> dict | None:
        return self._read_json(self._get_state_file(user_id))

    def save_state(self, state: dict, user_id: str = "default") -> None:
        self._write_json(self._get_state_file(user_id), state)

    def list_users(self) -> list[str]:
        """List all existing user IDs."""
        users = []
        if os.path.exists(self.state_dir):
            for filename in sorted(os.listdir(self.state_dir)):
                if filename == 'gauntlet_profile.json':
                    users.append('default')
                elif filename.startswith(STATE_PREFIX) and filename.endswith('.json'):
                    users.append(filename[len(STATE_PREFIX):-5])
        return users

    def user_exists(self, user_id: str) -> bool:
        return os.path.exists(self._get_state_file(user_id))

    def load_api_stats(self, provider_name: str) -> dict | None:
        stats = self._read_json(self._get_stats_file()) or {}
        return stats.get(provider_name)

    def save_api_stats(self, provider_name: str, stats: dict) -> None:
        all_stats = self._read_json(self._get_stats_file()) or {}
        all_stats[provider_name] = stats
        self._write_json(self._get_stats_file(), all_stats)
