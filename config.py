"""
Settings read from the environment.

Env prefix: BITLAB_

- BITLAB_NETWORK=mainnet          (mainnet | testnet | regtest | signet)
- BITLAB_TIMEOUT=2.0              handshake budget in seconds
- BITLAB_PORT=8333                port used for seed resolution (default: network port)
- BITLAB_LOG_LEVEL=INFO
- BITLAB_LOG_FILE=~/.bitlab/bitlab.log
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from handshake import DEFAULT_TIMEOUT
from messages import Network

ENV_PREFIX = "BITLAB_"


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(ENV_PREFIX + name)
    if v is None or not v.strip():
        return default
    return v.strip()


def _getenv_float(name: str, default: float) -> float:
    v = _getenv(name)
    if v is None:
        return default
    try:
        value = float(v)
    except ValueError:
        return default
    return value if value > 0 else default


def _getenv_int(name: str, default: Optional[int]) -> Optional[int]:
    v = _getenv(name)
    if v is None:
        return default
    try:
        value = int(v)
    except ValueError:
        return default
    return value if 0 < value < 65536 else default


@dataclass(frozen=True)
class Settings:
    network: Network = Network.MAINNET
    timeout: float = DEFAULT_TIMEOUT
    port: Optional[int] = None
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @property
    def seed_port(self) -> int:
        return self.port if self.port is not None else self.network.default_port


def load_settings() -> Settings:
    """Build Settings from BITLAB_* variables; bad numbers fall back to defaults."""
    network = Network.from_name(_getenv("NETWORK", "mainnet"))
    log_file = _getenv("LOG_FILE")
    return Settings(
        network=network,
        timeout=_getenv_float("TIMEOUT", DEFAULT_TIMEOUT),
        port=_getenv_int("PORT", None),
        log_level=(_getenv("LOG_LEVEL", "INFO")).upper(),
        log_file=Path(log_file).expanduser() if log_file else None,
    )
