"""
btcfetch - Bitcoin block header fetcher for circuit inputs
"""

__version__ = "0.1.0"
__logo__ = "₿"
