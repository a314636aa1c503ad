import copy
import json
import logging
import os

logger = logging.getLogger(__name__)

SETTINGS_ENV = "HANDSFREE_SETTINGS"

DEFAULTS = {
    "host": {"url": "http://127.0.0.1:8000"},
    "asr": {"endpoint": "/transcribe"},
    "tts": {"endpoint": "/synthesis"},
    "http": {"timeout": 10.0, "max_retries": 2, "backoff_factor": 0.5},
    "local_tts": {"rate": 0.9, "pitch": 1.0, "volume": 0.8},
    "capture": {
        "silence_duration": 1.0,
        "vad_aggressiveness": 1,
        "restart_delays": [0.3, 1.5],
        "resume_delay": 0.6,
        "healthy_after": 2.0,
    },
    "matcher": {"threshold": 0.6, "max_words": 8},
    "language": "en-US",
}


def _merge(base: dict, override: dict) -> dict:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


class Config:
    _config = None

    @classmethod
    def get_config(cls):
        if cls._config is None:
            cls.reload_config()
        return cls._config

    @classmethod
    def reload_config(cls, path: str = None):
        """
        Load settings.json (or $HANDSFREE_SETTINGS) over the built-in defaults.
        A missing file is not an error; the defaults are used as-is.
        """
        path = path or os.environ.get(SETTINGS_ENV, "settings.json")
        try:
            with open(path, "r") as f:
                loaded = json.load(f)
        except FileNotFoundError:
            logger.info("No settings file at %s; using defaults", path)
            loaded = {}
        cls._config = _merge(DEFAULTS, loaded)
        return cls._config

    @classmethod
    def url(cls, section: str) -> str:
        config = cls.get_config()
        return config["host"]["url"].rstrip("/") + config[section]["endpoint"]
