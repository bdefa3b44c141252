"""Command-line interface for testwarden.

The Typer app lives in ``testwarden.cli.app``; the console script calls
``testwarden.cli.__main__:main``.
"""
