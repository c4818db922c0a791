"""
Civitas CLI entrypoint.

This module provides the console_script entrypoint for the civitas package.
"""


def main():
    """Civitas CLI entrypoint."""
    from civitas.commands import civitas_app

    civitas_app()


if __name__ == "__main__":
    main()
