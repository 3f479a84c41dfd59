"""Kitchen print gateway: routes restaurant orders to category printers."""

__version__ = "1.0.0"
