"""
config_loader.py
- Loads the optional YAML settings file that overrides environment defaults.
"""

import os

import yaml
from loguru import logger


def load_yaml(path):
    """Safely load a YAML file and return a parsed dict. Returns {} on failure."""
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"[config] Failed to load {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.error(f"[config] Ignoring {path}: expected a mapping, got {type(data).__name__}")
        return {}
    return data
