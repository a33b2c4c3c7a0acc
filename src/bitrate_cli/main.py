"""
Bitrate Reader CLI - main entry point.
"""
import click

from .analyze import analyze


@click.group()
def cli():
    """Bitrate Reader - compressed video packet timeline analysis."""
    pass


cli.add_command(analyze)

if __name__ == "__main__":
    cli()
