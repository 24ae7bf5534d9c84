from __future__ import annotations

import argparse
import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Awaitable, Callable

import httpx
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from podforge_contracts.episode import Episode, EpisodeStatus, PersonaGender, PersonaRole, SourceType
from podforge_contracts.errors import ConfigurationError, PodforgeError
from podforge_studio.application.auth import AuthSession
from podforge_studio.application.episode_view import EpisodeView
from podforge_studio.application.playback import AudioPlaybackManager
from podforge_studio.application.poller import StatusPoller
from podforge_studio.application.store import EpisodeStore
from podforge_studio.application.use_cases import GenerateEpisode
from podforge_studio.application.wizard import ARCHETYPES, WizardController
from podforge_studio.domain.models import PersonaDraft, PlaybackState, WizardStep
from podforge_studio.infrastructure.audio.blob_store import TempFileBlobStore
from podforge_studio.infrastructure.audio.pydub_decoder import PydubWaveformDecoder
from podforge_studio.infrastructure.audio.sounddevice_output import SoundDeviceOutput
from podforge_studio.infrastructure.config import StudioSettings, load_env
from podforge_studio.infrastructure.http.client import EpisodeClient
from podforge_studio.infrastructure.logging import get_logger, setup_logging
from podforge_studio.infrastructure.metrics import maybe_start_server
from podforge_studio.infrastructure.text.formatting import (
    format_date,
    format_duration,
    format_relative_time,
    truncate_text,
)

from podforge_cli.env_auth import EnvAuthProvider

log = get_logger("podforge_cli")
console = Console()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2

_STATUS_STYLE = {
    EpisodeStatus.PENDING: "yellow",
    EpisodeStatus.PROCESSING: "cyan",
    EpisodeStatus.COMPLETED: "green",
    EpisodeStatus.FAILED: "red",
    EpisodeStatus.CANCELLED: "dim",
}


class Runtime:
    """Wires the studio components for one CLI invocation."""

    def __init__(
        self,
        settings: StudioSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        environ: dict[str, str] | None = None,
    ) -> None:
        self.settings = settings
        self.client = EpisodeClient(
            base_url=settings.api_url, timeout_s=settings.request_timeout_s, transport=transport
        )
        self.auth = AuthSession(EnvAuthProvider(environ), self.client)
        self.store = EpisodeStore(self.client, per_page=settings.per_page)
        self.poller = StatusPoller(
            self.client, interval_s=settings.poll_interval_s, backoff_cap_s=settings.poll_backoff_cap_s
        )
        self.blobs = TempFileBlobStore(settings.blob_dir)
        self.audio_output = SoundDeviceOutput()
        self.playback = AudioPlaybackManager(
            fetch=self.client.fetch_audio,
            blobs=self.blobs,
            decoder_factory=self._decoder,
            initial_volume=settings.initial_volume,
        )
        self.view = EpisodeView(api=self.client, store=self.store, poller=self.poller, playback=self.playback)

    def _decoder(self) -> PydubWaveformDecoder:
        return PydubWaveformDecoder(output=self.audio_output)

    async def aclose(self) -> None:
        for name, step in (
            ("view", self.view.exit),
            ("poller", self.poller.stop_all),
            ("playback", self.playback.close),
            ("auth", self.auth.stop),
        ):
            try:
                step()
            except Exception:
                log.warning("cli.teardown_failed step=%s", name, exc_info=True)
        await self.client.aclose()


# Rendering


def _status_text(episode: Episode) -> str:
    style = _STATUS_STYLE.get(episode.status, "white")
    text = f"[{style}]{episode.status.value}[/{style}]"
    if episode.status is EpisodeStatus.PROCESSING:
        text += f" {episode.progress}%"
    return text


def _print_episode(episode: Episode) -> None:
    console.print(f"[bold]{escape(episode.title)}[/bold]  ({episode.id})")
    console.print(f"  status:   {_status_text(episode)}")
    if episode.status_message:
        console.print(f"  message:  {escape(episode.status_message)}")
    if episode.error_message:
        console.print(f"  [red]error:[/red]    {escape(episode.error_message)}")
    if episode.description:
        console.print(f"  about:    {escape(truncate_text(episode.description, 120))}")
    if episode.personas:
        names = ", ".join(f"{p.name} ({p.role.value})" for p in episode.personas)
        console.print(f"  voices:   {escape(names)}")
    if episode.duration_seconds:
        console.print(f"  duration: {format_duration(episode.duration_seconds)}")
    if episode.created_at:
        console.print(f"  created:  {format_date(episode.created_at)}")


async def _await_terminal(rt: Runtime, episode_id: str, done: asyncio.Event) -> None:
    last: tuple[EpisodeStatus, int] | None = None
    while not done.is_set():
        episode = rt.store.get(episode_id)
        if episode is not None and (episode.status, episode.progress) != last:
            last = (episode.status, episode.progress)
            message = f" {escape(episode.status_message)}" if episode.status_message else ""
            console.print(f"{_status_text(episode)}{message}")
        try:
            await asyncio.wait_for(done.wait(), timeout=0.5)
        except asyncio.TimeoutError:
            continue


# Commands


async def cmd_health(rt: Runtime, args: argparse.Namespace) -> int:
    health = await rt.client.health_check()
    version = f" (version {health.version})" if health.version else ""
    console.print(f"API {escape(rt.settings.api_url)}: {escape(health.status)}{version}")
    return EXIT_OK


async def cmd_list(rt: Runtime, args: argparse.Namespace) -> int:
    episodes = await rt.store.list(page=args.page, status=args.status)
    if not episodes:
        console.print("No episodes yet.")
        return EXIT_OK
    table = Table(title=f"Episodes (page {rt.store.page}/{rt.store.total_pages}, {rt.store.total} total)")
    table.add_column("ID", no_wrap=True)
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Created")
    for ep in episodes:
        table.add_row(
            ep.id,
            escape(truncate_text(ep.title, 48)),
            _status_text(ep),
            format_duration(ep.duration_seconds) if ep.duration_seconds else "-",
            format_relative_time(ep.created_at) if ep.created_at else "-",
        )
    console.print(table)
    return EXIT_OK


async def cmd_show(rt: Runtime, args: argparse.Namespace) -> int:
    _print_episode(await rt.store.fetch_one(args.episode_id))
    return EXIT_OK


def _parse_persona(value: str) -> PersonaDraft:
    """``name[:role[:gender[:archetype]]]``"""
    parts = [p.strip() for p in value.split(":")]
    draft = PersonaDraft(name=parts[0])
    if len(parts) > 1 and parts[1]:
        draft.role = PersonaRole(parts[1].lower())
    if len(parts) > 2 and parts[2]:
        draft.gender = PersonaGender(parts[2].lower())
    if len(parts) > 3 and parts[3]:
        archetype = ARCHETYPES.get(parts[3].lower())
        if archetype is None:
            raise ValueError(f"unknown archetype {parts[3]!r}")
        draft.personality = archetype[1]
    return draft


def _fill_wizard(wizard: WizardController, args: argparse.Namespace) -> list[str]:
    wizard.update_draft(
        title=args.title,
        description=args.description or "",
        generate_cover=not args.no_cover,
    )
    if args.pdf is not None:
        result = wizard.attach_pdf(args.pdf.read_bytes(), filename=args.pdf.name)
        if not result.ok:
            return result.messages()
    elif args.url:
        source_type = SourceType.YOUTUBE if args.youtube else SourceType.URL
        wizard.update_draft(source_type=source_type, source_url=args.url)
    else:
        text = args.text_file.read_text(encoding="utf-8") if args.text_file else (args.text or "")
        wizard.update_draft(source_type=SourceType.TEXT, source_content=text)

    if args.persona:
        try:
            personas = [_parse_persona(p) for p in args.persona]
        except ValueError as exc:
            return [f"Invalid persona: {exc}"]
        wizard.update_draft(personas=personas)

    while wizard.current_step() < WizardStep.PREVIEW:
        result = wizard.go_next()
        if not result.ok:
            return result.messages()
    return []


async def cmd_create(rt: Runtime, args: argparse.Namespace) -> int:
    wizard = WizardController()
    problems = _fill_wizard(wizard, args)
    if problems:
        for message in problems:
            console.print(f"[red]✗[/red] {escape(message)}")
        return EXIT_INVALID

    done = asyncio.Event()
    outcome = await GenerateEpisode(wizard, rt.store, rt.poller, on_terminal=lambda status: done.set()).run()
    if outcome.errors:
        for err in outcome.errors:
            console.print(f"[red]✗[/red] {escape(err.message)}")
        return EXIT_INVALID
    if outcome.error:
        console.print(f"[red]Error:[/red] {escape(outcome.error)}")
        return EXIT_FAILED

    episode = outcome.episode
    console.print(f"Created episode [bold]{episode.id}[/bold]: {escape(episode.title)}")
    if not args.watch or outcome.handle is None:
        return EXIT_OK

    await _await_terminal(rt, episode.id, done)
    final = await rt.store.fetch_one(episode.id)
    _print_episode(final)
    return EXIT_OK if final.status is EpisodeStatus.COMPLETED else EXIT_FAILED


async def cmd_watch(rt: Runtime, args: argparse.Namespace) -> int:
    episode = await rt.view.enter(args.episode_id)
    if episode is None:
        console.print(f"[red]Error:[/red] {escape(rt.view.fetch_error or 'Episode not found')}")
        return EXIT_FAILED
    await _await_terminal(rt, args.episode_id, rt.view.terminal)
    final = rt.view.episode or episode
    _print_episode(final)
    if args.transcript and rt.view.transcript:
        console.print()
        console.print(escape(rt.view.transcript))
    return EXIT_OK if final.status is EpisodeStatus.COMPLETED else EXIT_FAILED


async def cmd_delete(rt: Runtime, args: argparse.Namespace) -> int:
    await rt.store.remove(args.episode_id)
    console.print(f"Deleted episode {args.episode_id}")
    return EXIT_OK


async def cmd_transcript(rt: Runtime, args: argparse.Namespace) -> int:
    transcript = await rt.client.get_transcript(args.episode_id)
    if not transcript.text:
        console.print("Transcript not available.")
        return EXIT_FAILED
    console.print(f"[bold]{escape(transcript.title)}[/bold]")
    console.print(escape(transcript.text))
    return EXIT_OK


async def cmd_download(rt: Runtime, args: argparse.Namespace) -> int:
    episode = await rt.store.fetch_one(args.episode_id)
    if episode.status is not EpisodeStatus.COMPLETED:
        console.print(f"Audio is not ready (status: {episode.status.value}).")
        return EXIT_FAILED
    path = await rt.store.download(episode, args.dest)
    console.print(f"Saved {path}")
    return EXIT_OK


async def cmd_play(rt: Runtime, args: argparse.Namespace) -> int:
    episode = await rt.view.enter(args.episode_id)
    if episode is None:
        console.print(f"[red]Error:[/red] {escape(rt.view.fetch_error or 'Episode not found')}")
        return EXIT_FAILED
    if args.volume is not None:
        rt.playback.set_volume(args.volume)
    session = await rt.view.play()
    if session is None:
        console.print(f"Audio is not ready (status: {episode.status.value}).")
        return EXIT_FAILED
    if args.start:
        rt.playback.seek_to(args.start)

    total = format_duration(rt.playback.duration)
    with console.status(f"Playing {escape(episode.title)}") as status:
        while rt.playback.state is PlaybackState.PLAYING:
            status.update(f"{escape(episode.title)}  {format_duration(rt.playback.position)} / {total}")
            await asyncio.sleep(0.5)
    console.print(f"Finished {escape(episode.title)} ({total})")
    return EXIT_OK


Command = Callable[[Runtime, argparse.Namespace], Awaitable[int]]

COMMANDS: dict[str, Command] = {
    "health": cmd_health,
    "list": cmd_list,
    "show": cmd_show,
    "create": cmd_create,
    "watch": cmd_watch,
    "delete": cmd_delete,
    "transcript": cmd_transcript,
    "download": cmd_download,
    "play": cmd_play,
}


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="podforge", description="Create, track and play generated podcast episodes.")
    ap.add_argument("--api-url", help="Override PODFORGE_API_URL.")
    ap.add_argument("--log-level", help="Override PODFORGE_LOG_LEVEL.")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("health", help="Check that the API is reachable.")

    p = sub.add_parser("list", help="List your episodes.")
    p.add_argument("--page", type=int, default=1)
    p.add_argument("--status", choices=[s.value for s in EpisodeStatus])

    for name, help_text in (
        ("show", "Show one episode."),
        ("delete", "Delete an episode."),
        ("transcript", "Print an episode transcript."),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("episode_id")

    p = sub.add_parser("create", help="Create an episode.")
    p.add_argument("--title", required=True)
    p.add_argument("--description")
    source = p.add_mutually_exclusive_group()
    source.add_argument("--text", help="Inline source text (at least 100 characters).")
    source.add_argument("--text-file", type=Path, help="Read source text from a file.")
    source.add_argument("--url", help="Article or YouTube URL.")
    source.add_argument("--pdf", type=Path, help="PDF document to upload.")
    p.add_argument("--youtube", action="store_true", help="Treat --url as a YouTube video.")
    p.add_argument(
        "--persona",
        action="append",
        metavar="NAME[:ROLE[:GENDER[:ARCHETYPE]]]",
        help=f"Repeat for each speaker (1-4). Archetypes: {', '.join(ARCHETYPES)}.",
    )
    p.add_argument("--no-cover", action="store_true", help="Skip cover art generation.")
    p.add_argument("--watch", action="store_true", help="Follow the job until it finishes.")

    p = sub.add_parser("watch", help="Follow an episode until it completes or fails.")
    p.add_argument("episode_id")
    p.add_argument("--transcript", action="store_true", help="Print the transcript when completed.")

    p = sub.add_parser("download", help="Download episode audio.")
    p.add_argument("episode_id")
    p.add_argument("--dest", type=Path, default=Path("."))

    p = sub.add_parser("play", help="Play episode audio.")
    p.add_argument("episode_id")
    p.add_argument("--volume", type=float)
    p.add_argument("--start", type=float, default=0.0, help="Start position in seconds.")
    return ap


async def run(
    args: argparse.Namespace,
    settings: StudioSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    environ: dict[str, str] | None = None,
) -> int:
    rt = Runtime(settings, transport=transport, environ=environ)
    try:
        await rt.auth.start()
        return await COMMANDS[args.command](rt, args)
    except PodforgeError as exc:
        log.debug("cli.command_failed command=%s", args.command, exc_info=True)
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        return EXIT_FAILED
    finally:
        await rt.aclose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    load_env()
    try:
        settings = StudioSettings.from_env()
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {escape(str(exc))}")
        return EXIT_INVALID
    if args.api_url:
        settings = replace(settings, api_url=args.api_url.rstrip("/"))

    setup_logging(args.log_level or settings.log_level, fmt=settings.log_format)
    if settings.metrics_enabled and maybe_start_server(settings.metrics_port):
        log.info("cli.metrics_started port=%s", settings.metrics_port)

    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
