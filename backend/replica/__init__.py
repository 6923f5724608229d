"""Website replica service: acquire, embed and analyze remote pages"""

__version__ = "0.1.0"
