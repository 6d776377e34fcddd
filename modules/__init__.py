"""Helper modules for the StockOrderWeb application."""

__all__ = [
    "estimator",
    "input_parser",
    "providers",
]
