"""Configuration hashing for reproducible runs"""
from typing import Dict, Any, Union
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
import hashlib
import json


@dataclass
class ConfigHash:
    """SHA-256 of the JSON-serialized config, written next to every run's outputs"""
    config_dict: Dict[str, Any]
    hash_value: str = field(default="")
    timestamp: str = field(default="")

    def __post_init__(self):
        if not self.hash_value:
            self.hash_value = self.digest(self.config_dict)
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()

    @classmethod
    def from_config(cls, config) -> "ConfigHash":
        """Hash a pydantic AppConfig (paths and enums dumped as JSON strings)"""
        return cls(config.model_dump(mode="json"))

    @staticmethod
    def digest(config_dict: Dict[str, Any]) -> str:
        config_str = json.dumps(config_dict, sort_keys=True, default=str)
        return hashlib.sha256(config_str.encode()).hexdigest()

    @property
    def short(self) -> str:
        return self.hash_value[:12]

    def save_lockfile(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump({
                'hash': self.hash_value,
                'timestamp': self.timestamp,
                'config': self.config_dict,
            }, f, indent=2, default=str)

    @classmethod
    def load_lockfile(cls, path: Union[str, Path]) -> 'ConfigHash':
        with open(path, 'r') as f:
            data = json.load(f)
        return cls(
            config_dict=data['config'],
            hash_value=data['hash'],
            timestamp=data['timestamp'],
        )

    def verify_match(self, other_config: Dict[str, Any]) -> bool:
        """True if other_config hashes to the recorded value"""
        return self.hash_value == self.digest(other_config)
