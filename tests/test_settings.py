"""
Configuration tests: .env loading
"""
import importlib
import os

import config.settings


def test_dotenv_is_exported_before_settings_are_built(tmp_path, monkeypatch):
    """Values from .env reach both os.environ and the settings object"""
    (tmp_path / ".env").write_text("CACHE_TTL_MS=4321\nKEY_NAMESPACE=from-dotenv\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CACHE_TTL_MS", raising=False)
    monkeypatch.delenv("KEY_NAMESPACE", raising=False)

    try:
        module = importlib.reload(config.settings)
        assert os.environ["KEY_NAMESPACE"] == "from-dotenv"
        assert module.settings.cache_ttl_ms == 4321
        assert module.settings.key_namespace == "from-dotenv"
    finally:
        os.environ.pop("CACHE_TTL_MS", None)
        os.environ.pop("KEY_NAMESPACE", None)
        monkeypatch.chdir(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
        importlib.reload(config.settings)
