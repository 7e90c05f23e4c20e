"""Configuration management for geom topology"""

import os
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import yaml

from .sysctl import CONFXML_OID, GeomSysctl


@dataclass
class SysctlConfig:
    """Where and how the XML snapshot is read"""

    command: str = "sysctl"          # sysctl binary
    name: str = CONFXML_OID          # OID holding the XML snapshot
    timeout: Optional[float] = None  # Seconds, None waits forever

    @classmethod
    def from_dict(cls, data: dict) -> "SysctlConfig":
        """Create SysctlConfig from dictionary"""
        timeout = data.get("timeout")
        return cls(
            command=str(data.get("command", "sysctl")),
            name=str(data.get("name", CONFXML_OID)),
            timeout=float(timeout) if timeout is not None else None
        )


@dataclass
class DisplayConfig:
    """Options for the tree output"""

    hide_classes: List[str] = field(default_factory=list)  # e.g. ["DEV"]

    @classmethod
    def from_dict(cls, data: dict) -> "DisplayConfig":
        """Create DisplayConfig from dictionary"""
        return cls(hide_classes=[str(c) for c in data.get("hide_classes") or []])


class ConfigManager:
    """Manages loading and accessing configuration from YAML file"""

    def __init__(self, config_file: str = "./geom_topology.conf", logger: Optional[logging.Logger] = None):
        """Initialize configuration manager

        Args:
            config_file: Path to configuration file
            logger: Logger instance
        """
        self.config_file = os.path.expanduser(config_file)
        self.logger = logger or logging.getLogger(__name__)

        self.sysctl = SysctlConfig()
        self.display = DisplayConfig()
        self.allow_idle_consumers = True

        self.load()

    def load(self) -> None:
        """Load configuration from YAML file

        Configuration file structure:
        ```yaml
        sysctl:
          command: sysctl             # sysctl binary
          name: kern.geom.confxml     # OID holding the XML snapshot
          timeout: 30                 # Seconds to wait for sysctl

        decoder:
          allow_idle_consumers: true  # r0w0e0 consumers match any provider mode

        display:
          hide_classes: [DEV]         # Classes left out of the tree output
        ```
        """
        if not os.path.exists(self.config_file):
            self.logger.warning(f"Configuration file {self.config_file} not found. Using default settings.")
            return

        try:
            self.logger.info(f"Loading user configuration from {self.config_file}")

            with open(self.config_file, 'r') as f:
                config = yaml.safe_load(f)

            if not config or not isinstance(config, dict):
                self.logger.warning(f"Configuration file {self.config_file} is empty or invalid")
                return

            if 'sysctl' in config:
                self._load_sysctl(config['sysctl'])

            if 'decoder' in config:
                self._load_decoder(config['decoder'])

            if 'display' in config:
                self.display = DisplayConfig.from_dict(config['display'] or {})
                self.logger.debug(f"Loaded display config: {self.display}")

        except yaml.YAMLError as e:
            self.logger.error(f"Error parsing YAML in configuration file: {e}")
        except IOError as e:
            self.logger.error(f"Error reading configuration file: {e}")
        except (TypeError, ValueError, AttributeError) as e:
            self.logger.error(f"Invalid value in configuration file: {e}")

    def _load_sysctl(self, sysctl_data: Dict[str, Any]) -> None:
        """Load sysctl settings from data

        Args:
            sysctl_data: Dictionary of sysctl settings
        """
        self.sysctl = SysctlConfig.from_dict(sysctl_data or {})
        self.logger.debug(f"Loaded sysctl config: {self.sysctl}")

    def _load_decoder(self, decoder_data: Dict[str, Any]) -> None:
        """Load decoder settings from data

        Args:
            decoder_data: Dictionary of decoder settings
        """
        decoder_data = decoder_data or {}
        if 'allow_idle_consumers' in decoder_data:
            value = decoder_data['allow_idle_consumers']
            if not isinstance(value, bool):
                self.logger.warning(f"Ignoring non-boolean allow_idle_consumers: {value!r}")
                return
            self.allow_idle_consumers = value
            self.logger.debug(f"Idle consumers allowed: {value}")

    def create_sysctl(self) -> GeomSysctl:
        """Build a sysctl reader from the loaded settings"""
        return GeomSysctl(
            command=self.sysctl.command,
            name=self.sysctl.name,
            timeout=self.sysctl.timeout,
            logger=self.logger
        )

    def is_hidden(self, class_name: str) -> bool:
        """Check if geoms of a class are left out of the tree output"""
        return class_name in self.display.hide_classes
