"""Entry point for `python -m testwarden.cli` invocation.

This module enables running the CLI via:
    python -m testwarden.cli [command] [options]
"""


def main():
    """Run the CLI with proper program name."""
    from testwarden.cli.app import app

    app(prog_name="testwarden")


if __name__ == "__main__":
    main()
