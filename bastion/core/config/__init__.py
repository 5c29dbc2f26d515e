from bastion.core.config.manager import ConfigManager, get_config
from bastion.core.config.paths import ConfigFsPaths

__all__ = ["ConfigManager", "ConfigFsPaths", "get_config"]
