"""Loaders for the static proxy and user-agent lists."""

import logging
from pathlib import Path
from typing import List, Optional

from giftwise.config import Settings, settings as default_settings
from giftwise.models import Proxy, UserAgent

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOLS = ("http", "https")


def parse_proxy_line(line: str) -> Optional[Proxy]:
    """
    Parse one ``host:port[:protocol[:user:pass]]`` line.

    Returns:
        Proxy, or None if the line is blank, a comment, or malformed
    """
    line = line.strip()
    if not line or line.startswith("#"):
        return None

    parts = line.split(":")
    if len(parts) < 2:
        logger.warning(f"Skipping malformed proxy line: {line!r}")
        return None

    host, port_str = parts[0], parts[1]
    protocol = (parts[2] if len(parts) > 2 and parts[2] else "http").lower()
    username = parts[3] if len(parts) > 3 and parts[3] else None
    password = parts[4] if len(parts) > 4 and parts[4] else None

    try:
        port = int(port_str)
    except ValueError:
        logger.warning(f"Skipping proxy line with invalid port: {line!r}")
        return None

    if protocol not in SUPPORTED_PROTOCOLS:
        logger.warning(f"Skipping proxy line with unsupported protocol {protocol!r}")
        return None

    return Proxy(
        host=host,
        port=port,
        protocol=protocol,
        username=username,
        password=password,
    )


class FileLoader:
    """Reads proxies.txt / user-agents.txt from the scraper config directory."""

    def __init__(self, settings: Settings = default_settings, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir or settings.scraper_config_dir)
        self.proxies_path = self.config_dir / settings.proxies_file
        self.user_agents_path = self.config_dir / settings.user_agents_file

    def _read_lines(self, path: Path) -> List[str]:
        try:
            return path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            logger.error(f"Config file not found: {path}")
            return []
        except OSError as e:
            logger.error(f"Error reading {path}: {e}")
            return []

    def load_proxies(self) -> List[Proxy]:
        """Load the proxy pool; a missing file yields an empty list."""
        proxies = []
        for line in self._read_lines(self.proxies_path):
            proxy = parse_proxy_line(line)
            if proxy:
                proxies.append(proxy)
        logger.info(f"Loaded {len(proxies)} proxies from {self.proxies_path}")
        return proxies

    def load_user_agents(self) -> List[UserAgent]:
        """Load the user-agent pool; a missing file yields an empty list."""
        agents = [
            UserAgent(string=line.strip())
            for line in self._read_lines(self.user_agents_path)
            if line.strip() and not line.strip().startswith("#")
        ]
        logger.info(f"Loaded {len(agents)} user agents from {self.user_agents_path}")
        return agents
