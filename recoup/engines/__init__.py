# Engines Module
# AR engine configuration. The per-organization facade lives in
# recoup.engines.ar_engine (components import this package for their config).

from .config import AREngineConfig, DEFAULT_FEE_TIERS, FeeTier

__all__ = [
    "AREngineConfig",
    "DEFAULT_FEE_TIERS",
    "FeeTier",
]
