from url_poller.config.loader import YamlConfigLoader
from url_poller.config.models import AppConfig, ConfigLoadRequest, LoggingSettings, PollerSettings

__all__ = ["AppConfig", "ConfigLoadRequest", "LoggingSettings", "PollerSettings", "YamlConfigLoader"]
