"""
Prediction CLI Commands

Score an ad against a JSON file of historical ads, inspect its neighbors,
data gaps and suggested variants. The history is loaded into an in-memory
orb store for each run.
"""

import json
import asyncio
import logging
from typing import List, Optional, Tuple

import click
from tqdm import tqdm

from ..core.config import Config, EngineConfig, load_engine_config
from ..core.embeddings import GeminiEmbeddingProvider
from ..core.models import AdEntry
from ..core.store import InMemoryOrbStore
from ..services.rag import EmbeddingService, PredictionPipeline, RetrievalService, SafePredictor, SuggestionService
from ..services.rag.ad_orb import convert_ad_orb_to_orb, convert_to_ad_orb
from ..services.rag.contrastive import SCOPE_QUERY, perform_contrastive_analysis
from ..services.rag.data_needs import analyze_gaps
from ..services.rag.marketplace import explain_data_need, summarize_gaps
from ..services.rag.neighbor_prediction import compute_confidence

logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================

def load_ads(path: str) -> List[AdEntry]:
    """Read ads from a JSON file: either a list or {"ads": [...]}."""
    with open(path, 'r') as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get("ads", [])
    if not isinstance(data, list):
        raise click.ClickException(f"{path} must contain a list of ads")

    return [AdEntry.model_validate(item) for item in data]


def split_target(ads: List[AdEntry], ad_id: str) -> Tuple[AdEntry, List[AdEntry]]:
    target = next((ad for ad in ads if ad.id == ad_id), None)
    if target is None:
        raise click.ClickException(f"Ad not found: {ad_id}")
    return target, [ad for ad in ads if ad.id != ad_id]


def build_engine_config(config_path: Optional[str], **flag_overrides) -> EngineConfig:
    try:
        config = load_engine_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e))

    overrides = {name: value for name, value in flag_overrides.items() if value}
    return config.with_flags(**overrides) if overrides else config


def build_embedding_service(config: EngineConfig, use_gemini: bool) -> EmbeddingService:
    provider = None
    if use_gemini:
        try:
            provider = GeminiEmbeddingProvider(model=Config.EMBED_MODEL, dimensions=Config.EMBED_DIM)
        except ValueError as e:
            raise click.ClickException(str(e))
    return EmbeddingService(provider=provider, safety_config=config.safety)


async def build_store(history: List[AdEntry], embedding_service: EmbeddingService) -> InMemoryOrbStore:
    """Embed every historical ad and load it into a fresh store."""
    store = InMemoryOrbStore()
    for ad in tqdm(history, desc="Embedding history", disable=len(history) < 50):
        store.save(await embedding_service.generate_orb_embedding(convert_to_ad_orb(ad)))
    logger.info(f"Loaded {len(store)} historical ads ({len(store.list_with_results())} with results)")
    return store


def common_options(func):
    """Options shared by every command that reads an ads file."""
    func = click.option("--gemini", is_flag=True, help="Use Gemini embeddings (needs GEMINI_API_KEY)")(func)
    func = click.option("--config", "config_path", type=click.Path(exists=True), help="Engine config YAML")(func)
    func = click.option("--ad-id", required=True, help="Id of the ad to analyze")(func)
    func = click.argument("ads_file", type=click.Path(exists=True))(func)
    return func


# =============================================================================
# Commands
# =============================================================================

@click.command(name="predict")
@common_options
@click.option("--enable-rag", is_flag=True, help="Turn on retrieval-based prediction")
@click.option("--enable-contrastive", is_flag=True, help="Turn on contrastive trait analysis")
@click.option("--pipeline", "use_pipeline", is_flag=True, help="Use the unified pipeline instead of the safe predictor")
@click.option("--no-hybrid", is_flag=True, help="Use neighbors only, without legacy blending")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
def predict_command(
    ads_file: str,
    ad_id: str,
    config_path: Optional[str],
    gemini: bool,
    enable_rag: bool,
    enable_contrastive: bool,
    use_pipeline: bool,
    no_hybrid: bool,
    as_json: bool,
):
    """
    Predict an ad's success score from similar historical ads.

    Example:
        orbcast predict ads.json --ad-id ad-42 --enable-rag --enable-contrastive
    """
    config = build_engine_config(
        config_path, enable_rag=enable_rag, enable_contrastive=enable_contrastive
    )
    target, history = split_target(load_ads(ads_file), ad_id)
    embedding_service = build_embedding_service(config, gemini)

    async def run():
        store = await build_store(history, embedding_service)
        if use_pipeline:
            return await PredictionPipeline(store, embedding_service, config=config).safe_run(target)
        predictor = SafePredictor(store, embedding_service, config=config)
        return await predictor.safe_predict(target, use_hybrid=not no_hybrid)

    result = asyncio.run(run())

    if as_json:
        click.echo(result.model_dump_json(indent=2))
        return

    if use_pipeline:
        click.echo(f"📈 Score: {result.score:.1f} ({result.method.value})")
        click.echo(f"🎯 Confidence: {result.confidence:.0f}% ({result.confidence_level.value})")
        if result.fallback_reason:
            click.echo(f"⚠️  Fallback: {result.fallback_reason.value}")
        click.echo(f"🔍 {result.summary}")
        click.echo(f"⚖️  {result.explanation.contrast.summary}")
        for recommendation in result.recommendations:
            click.echo(f"   • {recommendation}")
        return

    click.echo(f"📈 Score: {result.score:.1f} ({result.method.value})")
    click.echo(f"🎯 Confidence: {result.confidence:.0f}%")
    if result.fallback_reason:
        click.echo(f"⚠️  Fallback: {result.fallback_reason.value}")
    if result.rag_prediction and result.rag_prediction.explanation:
        explanation = result.rag_prediction.explanation
        click.echo(f"🔍 {explanation.summary}")
        for line in explanation.trait_explanations:
            click.echo(f"   • {line}")
        for recommendation in explanation.recommendations:
            click.echo(f"   → {recommendation}")
    click.echo(f"⏱️  {result.compute_time_ms:.0f}ms")


@click.command(name="similar")
@common_options
@click.option("-k", "k", type=int, default=10, show_default=True, help="Number of neighbors")
def similar_command(ads_file: str, ad_id: str, config_path: Optional[str], gemini: bool, k: int):
    """List the historical ads most similar to an ad."""
    config = build_engine_config(config_path)
    target, history = split_target(load_ads(ads_file), ad_id)
    embedding_service = build_embedding_service(config, gemini)

    async def run():
        store = await build_store(history, embedding_service)
        retrieval = RetrievalService(store, embedding_service, config.rag, config.safety)
        return await retrieval.retrieve_similar_ads(convert_to_ad_orb(target), k)

    neighbors = asyncio.run(run())
    if not neighbors:
        click.echo("❌ No similar ads found")
        return

    click.echo(f"🔍 {len(neighbors)} similar ad(s) for {ad_id}:")
    for n in neighbors:
        score = n.orb.results.success_score if n.orb.results else None
        score_text = f"{score:.0f}" if score is not None else "-"
        click.echo(
            f"   {n.orb.id:<20} similarity {n.hybrid_similarity:.2f} "
            f"(vector {n.vector_similarity:.2f}, traits {n.structured_similarity:.2f}) "
            f"score {score_text}"
        )


@click.command(name="gaps")
@common_options
def gaps_command(ads_file: str, ad_id: str, config_path: Optional[str], gemini: bool):
    """Show which additional data would raise confidence for an ad."""
    config = build_engine_config(config_path)
    target, history = split_target(load_ads(ads_file), ad_id)
    embedding_service = build_embedding_service(config, gemini)

    async def run():
        store = await build_store(history, embedding_service)
        retrieval = RetrievalService(store, embedding_service, config.rag, config.safety)
        query = await embedding_service.generate_orb_embedding(convert_to_ad_orb(target))
        neighbors = await retrieval.retrieve_similar_ads_with_results(query, config.rag.default_k)
        analysis = perform_contrastive_analysis(query, neighbors, config.rag, config.safety, scope=SCOPE_QUERY)
        return analyze_gaps(
            neighbors,
            analysis.trait_effects,
            query.metadata.platform,
            compute_confidence(neighbors, config.rag),
            config.rag,
            config.marketplace,
        )

    gap_analysis = asyncio.run(run())

    click.echo(f"📊 {summarize_gaps(gap_analysis)}")
    for need in gap_analysis.needs:
        click.echo(f"   [{need.severity.value}] {explain_data_need(need)}")


@click.command(name="suggest")
@common_options
@click.option("--max", "max_suggestions", type=int, default=3, show_default=True, help="Maximum suggestions")
def suggest_command(ads_file: str, ad_id: str, config_path: Optional[str], gemini: bool, max_suggestions: int):
    """Suggest variants of an ad that each test one experimental lever."""
    config = build_engine_config(config_path)
    target, history = split_target(load_ads(ads_file), ad_id)
    embedding_service = build_embedding_service(config, gemini)

    async def run():
        store = await build_store(history, embedding_service)
        service = SuggestionService(store, embedding_service, config=config)
        parent = convert_ad_orb_to_orb(convert_to_ad_orb(target))
        suggestions = await service.generate_suggested_orbs(parent, max_suggestions)
        scores = [await service.score_suggested_orb(s) for s in suggestions]
        return list(zip(suggestions, scores))

    results = asyncio.run(run())
    if not results:
        click.echo("❌ Not enough similar ads to suggest variants")
        return

    click.echo(f"💡 {len(results)} suggestion(s) for {ad_id}:")
    for suggestion, score in results:
        click.echo(f"   {suggestion.spec.notes}")
        click.echo(f"      {suggestion.learning_intent.reason}")
        click.echo(f"      Predicted {score.predicted_score:.0f} ({score.confidence:.0f}% confidence)")


@click.command(name="readiness")
@click.argument("ads_file", type=click.Path(exists=True))
@click.option("--config", "config_path", type=click.Path(exists=True), help="Engine config YAML")
@click.option("--enable-rag", is_flag=True, help="Turn on retrieval-based prediction")
def readiness_command(ads_file: str, config_path: Optional[str], enable_rag: bool):
    """Check whether the history supports retrieval-based prediction."""
    config = build_engine_config(config_path, enable_rag=enable_rag)
    ads = load_ads(ads_file)
    embedding_service = build_embedding_service(config, use_gemini=False)

    store = asyncio.run(build_store(ads, embedding_service))
    readiness = SafePredictor(store, embedding_service, config=config).get_prediction_readiness()

    icon = "✅" if readiness.ready else "❌"
    click.echo(f"{icon} {readiness.reason}")
    click.echo(
        f"   {readiness.orbs_with_results}/{readiness.total_orbs} ads with results "
        f"(need {readiness.required_orbs})"
    )
