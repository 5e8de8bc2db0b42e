"""pyfeasm.config
Runtime switches, read from ``PYFEASM_*`` environment variables.
"""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace

logger = logging.getLogger(__name__)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in {"1", "true", "yes"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return max(1, int(raw))
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}; using {default}")
        return default


@dataclass(frozen=True)
class AssemblyConfig:
    threads: int = 1
    parallel_threshold: int = 64
    disable_cache: bool = False
    kelvin: bool = False
    debug: bool = False

    @classmethod
    def from_env(cls) -> "AssemblyConfig":
        return cls(
            threads=_env_int("PYFEASM_THREADS", os.cpu_count() or 1),
            parallel_threshold=_env_int("PYFEASM_PARALLEL_THRESHOLD", 64),
            disable_cache=_env_flag("PYFEASM_DISABLE_CACHE"),
            kelvin=_env_flag("PYFEASM_KELVIN"),
            debug=_env_flag("PYFEASM_DEBUG"),
        )


_config = AssemblyConfig.from_env()


def _apply_debug(cfg: AssemblyConfig):
    if cfg.debug:
        logging.getLogger("pyfeasm").setLevel(logging.DEBUG)


_apply_debug(_config)


def get_config() -> AssemblyConfig:
    return _config


def set_config(**kwargs) -> AssemblyConfig:
    """Replace selected fields of the active configuration; returns the new one."""
    global _config
    known = {f.name for f in fields(AssemblyConfig)}
    unknown = set(kwargs) - known
    if unknown:
        raise KeyError(f"Unknown config field(s): {sorted(unknown)}")
    _config = replace(_config, **kwargs)
    _apply_debug(_config)
    return _config


@contextmanager
def config_override(**kwargs):
    global _config
    previous = _config
    log = logging.getLogger("pyfeasm")
    level = log.level
    set_config(**kwargs)
    try:
        yield _config
    finally:
        _config = previous
        log.setLevel(level)
