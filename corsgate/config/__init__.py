from .settings import EnvConfigProvider, Settings, load_settings

__all__ = ["EnvConfigProvider", "Settings", "load_settings"]
