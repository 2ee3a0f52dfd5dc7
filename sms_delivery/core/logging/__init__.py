from .logger import (
    bind_delivery_context,
    clear_delivery_context,
    get_delivery_context,
    get_logger,
    log_stage,
    setup_logging,
)

__all__ = [
    "bind_delivery_context",
    "clear_delivery_context",
    "get_delivery_context",
    "get_logger",
    "log_stage",
    "setup_logging",
]
