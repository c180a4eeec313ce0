"""
Main CLI entry point for orbcast
"""

import logging

import click

from ..core.config import Config
from ..core.observability import setup_logfire
from .datasets import datasets_group
from .predict import gaps_command, predict_command, readiness_command, similar_command, suggest_command


@click.group()
@click.version_option(version='0.1.0')
@click.option("--verbose", is_flag=True, help="Debug logging")
def cli(verbose: bool):
    """
    orbcast - Retrieval-augmented ad performance prediction

    Score ads from similar historical ads, see which traits drive the
    difference, and find the data that would raise confidence.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format="[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    setup_logfire()


# Register commands
cli.add_command(predict_command)
cli.add_command(similar_command)
cli.add_command(gaps_command)
cli.add_command(suggest_command)
cli.add_command(readiness_command)
cli.add_command(datasets_group)


if __name__ == '__main__':
    cli()
