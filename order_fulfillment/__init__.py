"""Order fulfillment worker and its thin HTTP surface."""

__version__ = "0.1.0"
