from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from podforge_contracts.episode import Episode
from podforge_studio.application.ports import Clipboard, EpisodeApi, ShareTarget
from podforge_studio.infrastructure.logging import get_logger
from podforge_studio.infrastructure.text.formatting import safe_filename

log = get_logger(__name__)


class ShareCancelled(Exception):
    """Raised by a share target when the user dismisses the share sheet."""


@dataclass(frozen=True)
class ShareOutcome:
    method: str  # "share", "clipboard", "cancelled" or "failed"
    url: str
    message: str

    @property
    def ok(self) -> bool:
        return self.method in {"share", "clipboard"}


async def download_audio(client: EpisodeApi, episode: Episode, dest_dir: Path | str) -> Path:
    data = await client.fetch_audio(client.audio_url(episode.id))
    dest = Path(dest_dir)
    dest.mkdir(parents=True, exist_ok=True)
    path = dest / safe_filename(episode.title)
    path.write_bytes(data)
    log.info("export.downloaded episode=%s path=%s bytes=%s", episode.id, path, len(data))
    return path


def episode_link(origin: str, episode_id: str) -> str:
    return f"{origin.rstrip('/')}/dashboard/episodes/{episode_id}"


async def share_episode(
    episode: Episode,
    *,
    origin: str,
    share: ShareTarget | None = None,
    clipboard: Clipboard | None = None,
) -> ShareOutcome:
    """Native share, then clipboard copy, then an explicit failure message."""
    url = episode_link(origin, episode.id)
    payload = {
        "title": episode.title,
        "text": episode.description or f"Check out this podcast: {episode.title}",
        "url": url,
    }

    if share is not None and share.can_share(payload):
        try:
            await share.share(payload)
            return ShareOutcome("share", url, "Episode shared!")
        except ShareCancelled:
            return ShareOutcome("cancelled", url, "Share cancelled.")
        except Exception as exc:
            log.warning("export.share_failed episode=%s error=%s", episode.id, exc)

    if clipboard is not None:
        try:
            await clipboard.write_text(url)
            return ShareOutcome("clipboard", url, "Episode link copied to clipboard.")
        except Exception as exc:
            log.warning("export.clipboard_failed episode=%s error=%s", episode.id, exc)

    return ShareOutcome("failed", url, "Unable to share. Please copy the link manually.")
