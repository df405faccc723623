"""
Entry point for running btcfetch as a module: python -m btcfetch
"""

from btcfetch.cli.commands import app

if __name__ == "__main__":
    app()
