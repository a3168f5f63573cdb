"""CLI runner for the storyforge studio.

Usage:
    python -m storyforge.runner ideas "Fantasy"
    python -m storyforge.runner story "A girl finds a dragon egg" --genre Fantasy --narrate
    python -m storyforge.runner narrate "Line one" "Line two" --voice Kore
    python -m storyforge.runner ugc "Morning skincare routine" --product "Vitamin C serum"
    python -m storyforge.runner lyrics "Bohemian Rhapsody" --translate Indonesian
    python -m storyforge.runner video photo.jpg --prompt "Slow zoom in"
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Any, Coroutine

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from storyforge.context import StudioContext
from storyforge.errors import StudioError
from storyforge.models import SceneImage

console = Console()


def _setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quiet down httpx unless debugging
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a coroutine, turning studio errors into one readable line."""
    try:
        return asyncio.run(coro)
    except FileNotFoundError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)
    except StudioError as exc:
        console.print(f"[red]{type(exc).__name__}: {exc}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)


def _image_data_url(path: str | None) -> str | None:
    """Read an image file into a data URL."""
    if not path:
        return None
    mime, _ = mimetypes.guess_type(path)
    with open(path, "rb") as f:
        payload = base64.b64encode(f.read()).decode()
    return f"data:{mime or 'image/jpeg'};base64,{payload}"


def _save_images(images: list[SceneImage], output_dir: Path, prefix: str) -> int:
    """Write generated images as PNG files; returns how many were saved."""
    output_dir.mkdir(parents=True, exist_ok=True)
    saved = 0
    for image in images:
        if not image.data_url:
            console.print(f"  [red]Scene {image.index + 1}: no image ({image.error or 'unknown error'})[/red]")
            continue
        _, payload = image.data_url.split(",", 1)
        path = output_dir / f"{prefix}_{image.index + 1:02d}.png"
        path.write_bytes(base64.b64decode(payload))
        saved += 1
    return saved


async def _track_images(run, label: str) -> list[SceneImage]:
    """Show a progress bar while a run's image loop fills its board."""
    total = len(run.board.images)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        bar = progress.add_task(label, total=total)

        def on_update(run_id: str, images: list[SceneImage]) -> None:
            if run_id == run.run_id:
                progress.update(bar, completed=sum(1 for img in images if not img.is_loading))

        run.board.subscribe(on_update)
        return await run.images()


@click.group()
@click.option("--config", "-c", help="Path to config.yaml")
@click.option("--api-key", "-k", "api_keys", multiple=True, help="API key to try (repeatable, in order)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config: str | None, api_keys: tuple[str, ...], verbose: bool) -> None:
    """Generative creative studio: stories, narration, UGC, lyrics, video."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    try:
        ctx.obj["studio"] = StudioContext.from_config(config, extra_keys=api_keys)
    except FileNotFoundError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)


@cli.command("ideas")
@click.argument("genre")
@click.pass_context
def cmd_ideas(ctx: click.Context, genre: str) -> None:
    """Suggest story premises for a genre."""
    from storyforge.generation import generate_ideas

    ideas = _run(generate_ideas(ctx.obj["studio"], genre))
    if not ideas:
        console.print("[yellow]No ideas returned.[/yellow]")
        return

    table = Table(title=f"Ideas: {genre}", show_lines=True)
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Idea")
    for i, idea in enumerate(ideas, start=1):
        table.add_row(str(i), idea.text)
    console.print(table)


@cli.command("story")
@click.argument("premise")
@click.option("--genre", "-g", default="Fantasy", help="Story genre")
@click.option("--gender", type=click.Choice(["male", "female", "any"]), default="any")
@click.option("--character", default="", help="Main character description")
@click.option("--scenes", "scene_count", type=int, default=None, help="Number of scenes")
@click.option("--aspect-ratio", type=click.Choice(["16:9", "9:16"]), default=None)
@click.option("--character-image", type=click.Path(exists=True), default=None)
@click.option("--animal-image", type=click.Path(exists=True), default=None)
@click.option("--polish", is_flag=True, help="Polish the premise before expanding it")
@click.option("--narrate", is_flag=True, help="Also build the narration WAV")
@click.option("--voice", default=None, help="Prebuilt voice name for narration")
@click.pass_context
def cmd_story(
    ctx: click.Context,
    premise: str,
    genre: str,
    gender: str,
    character: str,
    scene_count: int | None,
    aspect_ratio: str | None,
    character_image: str | None,
    animal_image: str | None,
    polish: bool,
    narrate: bool,
    voice: str | None,
) -> None:
    """Write a story, illustrate every scene, and optionally narrate it."""
    from storyforge.generation import polish_story
    from storyforge.story import StoryPipeline

    studio: StudioContext = ctx.obj["studio"]
    output_dir = studio.settings.output_dir

    async def _story() -> None:
        text = await polish_story(studio, premise) if polish else premise
        pipeline = StoryPipeline(studio)

        console.rule("[bold blue]Step 1: Story and Scenes[/bold blue]")
        run = await pipeline.run(
            premise=text,
            genre=genre,
            gender=gender,
            character_desc=character,
            scene_count=scene_count,
            aspect_ratio=aspect_ratio,
            character_image=_image_data_url(character_image),
            animal_image=_image_data_url(animal_image),
        )
        console.print(run.narrative)
        story_dir = output_dir / run.run_id
        story_dir.mkdir(parents=True, exist_ok=True)
        (story_dir / "story.md").write_text(run.narrative, encoding="utf-8")
        (story_dir / "scenes.json").write_text(
            json.dumps(
                [{"imagePrompt": s.visual_prompt, "narration": s.narration} for s in run.scenes],
                indent=2,
                ensure_ascii=False,
            ),
            encoding="utf-8",
        )
        if not run.scenes:
            console.print("[yellow]No scenes could be parsed from the story.[/yellow]")
            return

        console.rule("[bold blue]Step 2: Scene Images[/bold blue]")
        images = await _track_images(run, "Generating scene images...")
        saved = _save_images(images, story_dir, "scene")
        console.print(f"[green]{saved}/{len(images)} scene image(s) saved to {story_dir}[/green]")

        if narrate:
            console.rule("[bold blue]Step 3: Narration[/bold blue]")
            audio = await pipeline.narrate(run, voice)
            path = audio.save(story_dir)
            console.print(f"[green]Narration saved -> {path}[/green]")

        console.rule("[bold green]Story Complete[/bold green]")

    _run(_story())


@cli.command("narrate")
@click.argument("lines", nargs=-1, required=True)
@click.option("--voice", default=None, help="Prebuilt voice name")
@click.pass_context
def cmd_narrate(ctx: click.Context, lines: tuple[str, ...], voice: str | None) -> None:
    """Synthesize narration lines into one WAV file."""
    from storyforge.audio import assemble_narration_audio

    studio: StudioContext = ctx.obj["studio"]
    audio = _run(assemble_narration_audio(studio, lines, voice or studio.settings.voice))
    path = audio.save(studio.settings.output_dir)
    console.print(f"[green]Narration saved -> {path}[/green]")


@cli.command("ugc")
@click.argument("scenario")
@click.option("--language", default="Indonesian")
@click.option("--character", default="", help="Character description")
@click.option("--product", default="", help="Product description")
@click.option("--shot-type", default="", help="Shot hint, e.g. hand_focus")
@click.option("--character-image", type=click.Path(exists=True), default=None)
@click.option("--product-image", type=click.Path(exists=True), default=None)
@click.pass_context
def cmd_ugc(
    ctx: click.Context,
    scenario: str,
    language: str,
    character: str,
    product: str,
    shot_type: str,
    character_image: str | None,
    product_image: str | None,
) -> None:
    """Write a 6-beat UGC script and generate a portrait image per beat."""
    from storyforge.story import ugc_storyboard

    studio: StudioContext = ctx.obj["studio"]

    async def _ugc() -> None:
        run = await ugc_storyboard(
            studio,
            scenario,
            language=language,
            character_desc=character,
            product_desc=product,
            use_character=character_image is not None,
            use_product=bool(product or product_image),
            shot_type=shot_type,
            character_image=_image_data_url(character_image),
            product_image=_image_data_url(product_image),
        )
        if not run.scenes:
            console.print("[yellow]No UGC scenes returned.[/yellow]")
            return

        table = Table(title="UGC Script", show_lines=True)
        table.add_column("#", justify="right", style="cyan")
        table.add_column("Visual prompt", max_width=60)
        table.add_column("Spoken script", max_width=40)
        for i, scene in enumerate(run.scenes, start=1):
            table.add_row(str(i), scene.visual_prompt, scene.spoken_script)
        console.print(table)

        ugc_dir = studio.settings.output_dir / f"ugc_{run.run_id}"
        ugc_dir.mkdir(parents=True, exist_ok=True)
        (ugc_dir / "script.json").write_text(
            json.dumps(
                [{"visual_prompt": s.visual_prompt, "spoken_script": s.spoken_script} for s in run.scenes],
                indent=2,
                ensure_ascii=False,
            ),
            encoding="utf-8",
        )
        images = await _track_images(run, "Generating UGC images...")
        saved = _save_images(images, ugc_dir, "ugc")
        console.print(f"[green]{saved}/{len(images)} image(s) saved to {ugc_dir}[/green]")

    _run(_ugc())


@cli.command("lyrics")
@click.argument("query")
@click.option("--translate", "language", default=None, help="Translate into this language")
@click.pass_context
def cmd_lyrics(ctx: click.Context, query: str, language: str | None) -> None:
    """Look up song lyrics (web-grounded) and optionally translate them."""
    from storyforge.generation import find_lyrics, translate_lyrics

    studio: StudioContext = ctx.obj["studio"]
    result = _run(find_lyrics(studio, query))
    console.print(result.lyrics)
    for source in result.sources:
        console.print(f"  [dim]{source.title}: {source.uri}[/dim]")

    if language:
        lines = _run(translate_lyrics(studio, result.lyrics, language))
        table = Table(title=f"Translation ({language})")
        table.add_column("Original", style="cyan")
        table.add_column("Translated")
        for line in lines:
            table.add_row(line.original, line.translated)
        console.print(table)


@cli.command("video")
@click.argument("image", type=click.Path(exists=True))
@click.option("--prompt", "-p", default="", help="Motion description")
@click.option("--optimize", is_flag=True, help="Optimize the prompt first")
@click.option("--max-wait", type=float, default=None, help="Give up after this many seconds")
@click.option("--output", "-o", type=click.Path(), default=None, help="Where to save the video")
@click.pass_context
def cmd_video(
    ctx: click.Context,
    image: str,
    prompt: str,
    optimize: bool,
    max_wait: float | None,
    output: str | None,
) -> None:
    """Animate a still image into a short video."""
    from storyforge.generation import optimize_video_prompt
    from storyforge.video import image_to_video

    studio: StudioContext = ctx.obj["studio"]
    target = Path(output) if output else studio.settings.output_dir / f"{Path(image).stem}.mp4"

    async def _video():
        motion = await optimize_video_prompt(studio, prompt) if optimize and prompt else prompt
        with console.status("[bold]Waiting for video generation...[/bold]"):
            return await image_to_video(
                studio, _image_data_url(image), motion, max_wait=max_wait, output_path=target
            )

    handle = _run(_video())
    console.print(f"[green]Video saved -> {handle.path} ({handle.size / 1024:.1f} KB)[/green]")


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
