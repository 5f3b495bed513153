"""CLI runner for the LyricVision music video pipeline.

Usage:
    lyricvision check
    lyricvision presets
    lyricvision image "neon city at night" --out city.png
    lyricvision video city.png --prompt "slow push in" --duration 12 --out city.mp4
    lyricvision render scenario/midnight_drive.yaml
    lyricvision stitch a.mp4 b.mp4 c.mp4 --out joined.mp4
    lyricvision archive retrieved.yaml --out outputs.zip
    lyricvision status --scenario scenario/midnight_drive.yaml
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

import click
import yaml
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from lyricvision.errors import LyricVisionError, TransportError

console = Console()

# Default paths
_DEFAULT_CONFIG = "config.yaml"


def _setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quiet down HTTP clients unless debugging
    if not verbose:
        for name in ("httpx", "httpcore", "openai"):
            logging.getLogger(name).setLevel(logging.WARNING)


def _load_status(status_path: Path) -> dict:
    """Load run status from JSON file."""
    if status_path.exists():
        with open(status_path, "r", encoding="utf-8") as f:
            return json.load(f)
    return {}


def _save_status(status_path: Path, status: dict) -> None:
    """Save run status to JSON file."""
    status_path.parent.mkdir(parents=True, exist_ok=True)
    with open(status_path, "w", encoding="utf-8") as f:
        json.dump(status, f, indent=2, ensure_ascii=False)


def _run(coro: Awaitable[Any]) -> Any:
    """Run a command coroutine, turning expected failures into exit codes."""
    try:
        return asyncio.run(coro)
    except FileNotFoundError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)
    except LyricVisionError as exc:
        console.print(f"[red]{type(exc).__name__}: {exc}[/red]")
        sys.exit(1)
    except ValueError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Remote jobs may still be running on the backend.[/yellow]")
        sys.exit(130)


@dataclass
class _Runtime:
    config: dict
    poller: Any
    generator: Any
    ffmpeg: Any


@asynccontextmanager
async def _runtime(config_path: str, engine: str | None = None) -> AsyncIterator[_Runtime]:
    """Connect to the job server and wire up the generation stack."""
    from lyricvision.config import get_backend_address, get_poller_options, load_config
    from lyricvision.ffmpeg import FFmpegEngine
    from lyricvision.generation import ClipGenerator, probe_capabilities
    from lyricvision.poller import JobPoller
    from lyricvision.transport import JobTransport

    config = load_config(config_path)
    address = get_backend_address(config)
    backend = config.get("backend", {}) or {}

    async with JobTransport(timeout=backend.get("request_timeout_seconds", 30.0)) as transport:
        if not await transport.check_connection(address, timeout=backend.get("connect_timeout_seconds", 5.0)):
            raise TransportError(f"Job server at {address} is not reachable")
        capabilities = await probe_capabilities(transport, address)
        poller = JobPoller(transport, address, **get_poller_options(config))
        ffmpeg = FFmpegEngine()
        generator = ClipGenerator(
            transport,
            poller,
            capabilities,
            engine=engine or backend.get("engine", "animatediff"),
            checkpoint=backend.get("checkpoint"),
            image_checkpoint=backend.get("image_checkpoint"),
            ffmpeg=ffmpeg,
        )
        yield _Runtime(config=config, poller=poller, generator=generator, ffmpeg=ffmpeg)


async def _with_progress(label: str, sample: Callable[[], Any], coro: Awaitable[Any]) -> Any:
    """Await ``coro`` while showing the progress snapshots returned by ``sample``."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task(label, total=100)
        job = asyncio.ensure_future(coro)
        while not job.done():
            snapshot = sample()
            progress.update(task_id, completed=snapshot.percent, description=f"{label}: {snapshot.message}")
            await asyncio.wait({job}, timeout=0.5)
        return job.result()


def _build_resolver(config: dict):
    from lyricvision.config import get_motion_config
    from lyricvision.motion import OpenAIMotionClassifier, SmartMotionResolver

    motion = get_motion_config(config)
    if motion is None:
        return SmartMotionResolver()
    classifier = OpenAIMotionClassifier(
        api_key=motion["api_key"],
        model=motion.get("model", "gpt-4o-mini"),
        base_url=motion.get("base_url"),
    )
    return SmartMotionResolver(classifier)


@click.group()
@click.option("--config", "-c", default=_DEFAULT_CONFIG, help="Path to config.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config: str, verbose: bool) -> None:
    """LyricVision: remote generation and assembly of music videos."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    _setup_logging(verbose)


@cli.command("check")
@click.pass_context
def cmd_check(ctx: click.Context) -> None:
    """Check the job server connection and what it can run."""
    from lyricvision.config import get_backend_address, load_config
    from lyricvision.generation import probe_capabilities
    from lyricvision.transport import JobTransport
    from lyricvision.workflows import is_xl_checkpoint

    async def _check() -> None:
        config = load_config(ctx.obj["config"])
        address = get_backend_address(config)
        async with JobTransport() as transport:
            if not await transport.check_connection(address):
                console.print(f"[red]Job server at {address} is not reachable[/red]")
                sys.exit(1)
            caps = await probe_capabilities(transport, address)

        console.print(f"[green]Connected to {address}[/green]")
        video_node = "[green]yes[/green]" if caps.has_video_combine else "[yellow]no (frame sequences)[/yellow]"
        console.print(f"Video combine node: {video_node}")

        table = Table(title="Checkpoints", show_lines=False)
        table.add_column("Checkpoint", style="cyan")
        table.add_column("AnimateDiff", justify="center")
        for name in caps.checkpoints:
            table.add_row(name, "[dim]no (XL)[/dim]" if is_xl_checkpoint(name) else "[green]yes[/green]")
        console.print(table)

    _run(_check())


@cli.command("presets")
@click.pass_context
def cmd_presets(ctx: click.Context) -> None:
    """List the generation presets."""
    from lyricvision.settings import PRESETS, resolve_settings

    table = Table(title="Presets", show_lines=True)
    table.add_column("Preset", style="cyan")
    table.add_column("Frames", justify="center")
    table.add_column("FPS", justify="center")
    table.add_column("Clip length", justify="center")
    table.add_column("Steps", justify="center")
    table.add_column("Sampler")
    table.add_column("Loop", justify="center")

    for name in PRESETS:
        settings = resolve_settings(name)
        table.add_row(
            name,
            str(settings.frame_count),
            str(settings.frame_rate),
            f"{settings.duration:.1f}s",
            str(settings.steps),
            f"{settings.sampler}/{settings.scheduler}",
            "yes" if settings.pingpong else "",
        )
    console.print(table)


@cli.command("image")
@click.argument("prompt")
@click.option("--out", "-o", default="image.png", help="Output file")
@click.option("--seed", type=int, default=None, help="Sampler seed")
@click.option("--width", type=int, default=1280)
@click.option("--height", type=int, default=720)
@click.pass_context
def cmd_image(ctx: click.Context, prompt: str, out: str, seed: int | None, width: int, height: int) -> None:
    """Generate a still image from a prompt."""
    from lyricvision.media import parse_data_url

    async def _image() -> None:
        async with _runtime(ctx.obj["config"]) as rt:
            ref = await _with_progress(
                "Image", rt.poller.current_progress,
                rt.generator.generate_image(prompt, seed, width, height),
            )
        data, _ = parse_data_url(ref)
        Path(out).write_bytes(data)
        console.print(f"[green]Saved {out}[/green]")

    _run(_image())


@cli.command("video")
@click.argument("image")
@click.option("--prompt", "-p", default="smooth motion, cinematic", help="Motion prompt")
@click.option("--duration", "-d", type=float, default=None, help="Seconds; longer than one clip splits into several")
@click.option("--preset", default=None, help="Generation preset")
@click.option("--engine", type=click.Choice(["animatediff", "wan"]), default=None)
@click.option("--motion", default=None, help="Motion effect (auto, none, zoom_in, pan_left, ...)")
@click.option("--seed", type=int, default=None)
@click.option("--out", "-o", default="video.mp4", help="Output file")
@click.pass_context
def cmd_video(
    ctx: click.Context,
    image: str,
    prompt: str,
    duration: float | None,
    preset: str | None,
    engine: str | None,
    motion: str | None,
    seed: int | None,
    out: str,
) -> None:
    """Animate an image, chaining clips for long durations."""
    from lyricvision.config import get_generation_settings
    from lyricvision.generation import random_seed
    from lyricvision.media import load_local_image
    from lyricvision.models import MotionEffect
    from lyricvision.splitter import LongClipSplitter
    from lyricvision.stitcher import ClipStitcher

    async def _video() -> None:
        image_ref = image if image.startswith(("http://", "https://")) else load_local_image(image)
        async with _runtime(ctx.obj["config"], engine) as rt:
            settings = get_generation_settings(rt.config, preset, motion_effect=motion)
            if settings.motion_effect is MotionEffect.AUTO:
                decision = await _build_resolver(rt.config).resolve(MotionEffect.AUTO, prompt)
                settings = settings.with_overrides(
                    motion_effect=decision.effect, motion_strength=decision.strength
                )
                note = " (fallback)" if decision.is_fallback else ""
                console.print(f"Motion: [cyan]{decision.effect.name}[/cyan]{note} {decision.reason or ''}")

            splitter = LongClipSplitter(rt.generator, rt.ffmpeg)
            clips = await _with_progress(
                "Video", rt.poller.current_progress,
                splitter.generate(image_ref, prompt, duration or settings.duration, settings,
                                  random_seed() if seed is None else seed),
            )
            blob = await ClipStitcher(rt.ffmpeg).stitch([clip.ref for clip in clips], Path(out).name)
        Path(out).write_bytes(blob.data)
        console.print(f"[green]Saved {out} ({len(clips)} clip(s))[/green]")

    _run(_video())


@cli.command("render")
@click.argument("scenario")
@click.option("--preset", default=None, help="Generation preset (overrides the scenario)")
@click.option("--engine", type=click.Choice(["animatediff", "wan"]), default=None)
@click.option("--no-transitions", is_flag=True, help="Skip morph transitions between scenes")
@click.option("--seed", type=int, default=None)
@click.option("--out", "-o", default=None, help="Output file (default: output/<scenario>/<name>.mp4)")
@click.pass_context
def cmd_render(
    ctx: click.Context,
    scenario: str,
    preset: str | None,
    engine: str | None,
    no_transitions: bool,
    seed: int | None,
    out: str | None,
) -> None:
    """Generate every scene of a scenario and stitch the music video."""
    from lyricvision.config import get_generation_settings, resolve_output_paths
    from lyricvision.pipeline import MusicVideoPipeline
    from lyricvision.scenario_parser import load_scenario
    from lyricvision.stitcher import ClipStitcher
    from lyricvision.transitions import TRANSITION_DURATION, TRANSITION_PROMPT, TransitionSynthesizer

    async def _render() -> None:
        scenes, options = load_scenario(scenario)
        async with _runtime(ctx.obj["config"], engine) as rt:
            paths = resolve_output_paths(rt.config, scenario)
            generation = dict(options.get("generation") or {})
            scenario_preset = generation.pop("preset", None)
            settings = get_generation_settings(rt.config, preset or scenario_preset, **generation)

            trans_cfg = rt.config.get("transitions", {}) or {}
            transitions = None
            if trans_cfg.get("enabled", True) and not no_transitions:
                transitions = TransitionSynthesizer(
                    rt.generator,
                    prompt=trans_cfg.get("prompt", TRANSITION_PROMPT),
                    duration=trans_cfg.get("duration_seconds", TRANSITION_DURATION),
                )
            pipeline = MusicVideoPipeline(
                rt.generator,
                ClipStitcher(rt.ffmpeg),
                rt.ffmpeg,
                resolver=_build_resolver(rt.config),
                transitions=transitions,
            )
            output_name = options.get("output_name", "music_video.mp4")
            try:
                result = await _with_progress(
                    "Render", rt.poller.current_progress,
                    pipeline.run(scenes, settings, output_name, seed=seed,
                                 with_transitions=transitions is not None),
                )
            finally:
                _save_status(paths["status_file"], {
                    "scenario": scenario,
                    "settings": settings.to_dict(),
                    "scenes": {str(i + 1): scene.to_status() for i, scene in enumerate(scenes)},
                })

        dest = Path(out) if out else paths["output_dir"] / output_name
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(result.output.data)
        if result.failed_scenes:
            failed = ", ".join(str(i + 1) for i in result.failed_scenes)
            console.print(f"[yellow]Scenes without a clip: {failed}[/yellow]")
        console.print(f"[green]Saved {dest} ({len(result.clips)} clip(s))[/green]")

    _run(_render())


@cli.command("stitch")
@click.argument("clips", nargs=-1, required=True)
@click.option("--out", "-o", default="stitched.mp4", help="Output file")
@click.pass_context
def cmd_stitch(ctx: click.Context, clips: tuple[str, ...], out: str) -> None:
    """Join video clips in the given order without re-encoding."""
    from lyricvision.stitcher import ClipStitcher

    async def _stitch() -> None:
        stitcher = ClipStitcher()
        blob = await _with_progress("Stitch", stitcher.current_progress, stitcher.stitch(list(clips), Path(out).name))
        Path(out).write_bytes(blob.data)
        console.print(f"[green]Saved {out} ({len(clips)} clip(s))[/green]")

    _run(_stitch())


@cli.command("archive")
@click.argument("manifest")
@click.option("--out", "-o", default=None, help="Output zip (default: lyricvision_outputs_<date>.zip)")
@click.pass_context
def cmd_archive(ctx: click.Context, manifest: str, out: str | None) -> None:
    """Download retrieved outputs listed in a YAML manifest into one zip."""
    from lyricvision.archive import RetrievedArtifact, bundle_artifacts

    async def _archive() -> None:
        path = Path(manifest)
        if not path.exists():
            raise FileNotFoundError(f"Manifest not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or []
        entries = raw.get("items", []) if isinstance(raw, dict) else raw
        items = [
            RetrievedArtifact(
                job_id=str(entry["id"]),
                created_at=str(entry["created_at"]),
                url=entry["url"],
                model=entry.get("model", ""),
            )
            for entry in entries
        ]
        result = await bundle_artifacts(items)
        dest = Path(out or result.filename)
        dest.write_bytes(result.data)
        console.print(f"[green]Saved {dest}: {result.downloaded} item(s)[/green]")
        if result.failed:
            console.print(f"[yellow]Could not download: {', '.join(result.failed)}[/yellow]")

    _run(_archive())


@cli.command("status")
@click.option("--scenario", "-s", default=None, help="Path to scenario YAML file")
@click.pass_context
def cmd_status(ctx: click.Context, scenario: str | None) -> None:
    """Show the scene status of the last render."""
    from lyricvision.config import load_config, resolve_output_paths

    try:
        paths = resolve_output_paths(load_config(ctx.obj["config"]), scenario)
    except FileNotFoundError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    status = _load_status(paths["status_file"])
    scenes = status.get("scenes", {})
    if not scenes:
        console.print("[yellow]No status file found. Nothing has been rendered yet.[/yellow]")
        return

    table = Table(title="Scenes", show_lines=True)
    table.add_column("Scene", style="cyan")
    table.add_column("Timeline", justify="center")
    table.add_column("Clips", justify="center")
    table.add_column("Status", justify="center")
    table.add_column("Prompt / Error", max_width=50)

    for key, data in sorted(scenes.items(), key=lambda item: int(item[0])):
        scene_status = data.get("status", "pending")
        if scene_status == "complete":
            status_str = "[green]DONE[/green]"
        elif scene_status == "error":
            status_str = "[red]FAILED[/red]"
        elif scene_status == "generating":
            status_str = "[yellow]INTERRUPTED[/yellow]"
        else:
            status_str = "[dim]PENDING[/dim]"
        detail = f"Error: {data['error']}" if data.get("error") else data.get("prompt", "")
        timeline = f"{data.get('start', 0):.1f}-{data.get('end', 0):.1f}s"
        table.add_row(key, timeline, str(data.get("clips", 0)), status_str, detail)

    console.print(table)
    done = sum(1 for s in scenes.values() if s.get("status") == "complete")
    console.print(f"[bold]Summary:[/bold] {done}/{len(scenes)} scenes completed")


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
