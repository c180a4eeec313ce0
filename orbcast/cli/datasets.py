"""
Marketplace CLI Commands

Browse the catalog of datasets that can fill data gaps.
"""

import json
from typing import Optional

import click

from ..core.models import AccessTier
from ..services.rag.marketplace_datasets import (
    get_all_datasets,
    get_datasets_by_platform,
    get_datasets_by_tier,
    get_datasets_by_trait,
)


@click.group(name="datasets")
def datasets_group():
    """Browse marketplace datasets."""
    pass


@datasets_group.command(name="list")
@click.option("--platform", help="Only datasets covering this platform (e.g. tiktok)")
@click.option("--trait", help="Only datasets covering a trait containing this text")
@click.option("--tier", type=click.Choice([t.value for t in AccessTier]), help="Access tier")
@click.option("--json", "as_json", is_flag=True, help="Print datasets as JSON")
def list_datasets(platform: Optional[str], trait: Optional[str], tier: Optional[str], as_json: bool):
    """
    List public datasets, optionally filtered.

    Example:
        orbcast datasets list --platform tiktok --trait ugc
    """
    datasets = get_all_datasets()
    if platform:
        ids = {d.id for d in get_datasets_by_platform(platform)}
        datasets = [d for d in datasets if d.id in ids]
    if trait:
        ids = {d.id for d in get_datasets_by_trait(trait)}
        datasets = [d for d in datasets if d.id in ids]
    if tier:
        ids = {d.id for d in get_datasets_by_tier(AccessTier(tier))}
        datasets = [d for d in datasets if d.id in ids]

    if as_json:
        click.echo(json.dumps([d.model_dump(mode="json") for d in datasets], indent=2))
        return

    if not datasets:
        click.echo("❌ No datasets match")
        return

    click.echo(f"📦 {len(datasets)} dataset(s):")
    for d in datasets:
        click.echo(f"   {d.id:<28} {d.name} [{d.access_tier.value}]")
        click.echo(
            f"      {d.sample_count:,} samples, freshness {d.freshness_score:.0f}, "
            f"platforms: {', '.join(d.covers.platforms) or '-'}"
        )
