"""
ArtifactDownloader
------------------
Streams a remote file (the contract / receipt PDF) to a local path.

- bytes land in `<dest>.part` and are renamed into place only after the
  stream finishes, so a READY path always holds a complete file
- progress is reported at PROGRESS_STEP_PCT granularity (or every
  PROGRESS_STEP_BYTES when the server sends no Content-Length)
- concurrent fetches for the same destination share one download
- every artifact created here is tracked until dispose()/dispose_all()
- no retries: transport failures surface as DownloadError
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

import httpx

from txflow.settings import settings
from txflow.core.errors import DownloadError, IntegrityError
from txflow.core.state_machine import (
    ARTIFACT_DOWNLOADING,
    ARTIFACT_READY,
    ARTIFACT_INVALID,
    ARTIFACT_DELETED,
)
from txflow.store.models import Artifact
from txflow.utils.time import now_ms
from txflow.observability.logging import log

ProgressHook = Callable[[int, Optional[int]], Any]


def default_destination(url: str, directory: Optional[str] = None) -> str:
    """Stable per-URL file name so repeated requests for one artifact coalesce."""
    suffix = Path(urlsplit(url).path).suffix or ".pdf"
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:16]
    return os.path.join(directory or settings.DOWNLOAD_DIR, f"artifact_{digest}{suffix}")


def cache_busted(url: str) -> str:
    return str(httpx.URL(url).copy_add_param("t", str(now_ms())))


class _ProgressReporter:
    def __init__(self, hook: Optional[ProgressHook], total: Optional[int]):
        self.hook = hook
        self.total = total if total and total > 0 else None
        self._next_pct = max(1, int(settings.DOWNLOAD_PROGRESS_STEP_PCT))
        self._step_pct = self._next_pct
        self._step_bytes = max(1, int(settings.DOWNLOAD_PROGRESS_STEP_BYTES))
        self._next_bytes = self._step_bytes

    async def update(self, written: int) -> None:
        if self.hook is None:
            return
        if self.total:
            pct = written * 100 // self.total
            if pct < self._next_pct:
                return
            while self._next_pct <= pct:
                self._next_pct += self._step_pct
        else:
            if written < self._next_bytes:
                return
            while self._next_bytes <= written:
                self._next_bytes += self._step_bytes
        out = self.hook(written, self.total)
        if inspect.isawaitable(out):
            await out


class ArtifactDownloader:
    def __init__(
        self,
        http: Optional[httpx.AsyncClient] = None,
        *,
        directory: Optional[str] = None,
        chunk_size: Optional[int] = None,
        cache_bust: Optional[bool] = None,
    ):
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT_SEC, follow_redirects=True)
        self.directory = directory or settings.DOWNLOAD_DIR
        self.chunk_size = int(chunk_size or settings.DOWNLOAD_CHUNK_BYTES)
        self.cache_bust = settings.DOWNLOAD_CACHE_BUST if cache_bust is None else cache_bust

        self._inflight: Dict[str, asyncio.Future] = {}
        self._artifacts: List[Artifact] = []

    @property
    def artifacts(self) -> List[Artifact]:
        return list(self._artifacts)

    async def fetch(
        self,
        url: str,
        destination: Optional[str] = None,
        *,
        on_progress: Optional[ProgressHook] = None,
    ) -> Artifact:
        dest = os.path.abspath(destination or default_destination(url, self.directory))

        fut = self._inflight.get(dest)
        if fut is not None:
            log(event="artifact_fetch_coalesced", url=url, localPath=dest)
            return await asyncio.shield(fut)

        for existing in self._artifacts:
            if existing.localPath == dest and existing.status == ARTIFACT_READY and os.path.exists(dest):
                return existing

        artifact = Artifact(remoteUrl=url, localPath=dest, status=ARTIFACT_DOWNLOADING)
        self._artifacts.append(artifact)

        fut = asyncio.ensure_future(self._download(artifact, on_progress))
        self._inflight[dest] = fut
        fut.add_done_callback(lambda _f, k=dest: self._inflight.pop(k, None))
        return await asyncio.shield(fut)

    async def _download(self, artifact: Artifact, on_progress: Optional[ProgressHook]) -> Artifact:
        url = artifact.remoteUrl
        dest = Path(artifact.localPath)
        part = dest.with_name(dest.name + ".part")
        request_url = cache_busted(url) if self.cache_bust else url

        log(event="artifact_download_start", url=url, localPath=str(dest))
        written = 0
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            async with self._http.stream("GET", request_url) as resp:
                if resp.status_code != 200:
                    raise DownloadError(url, f"Download failed with HTTP {resp.status_code}", status_code=resp.status_code)

                artifact.contentType = resp.headers.get("Content-Type", "").lower()
                cl = resp.headers.get("Content-Length")
                total = int(cl) if (cl and cl.isdigit()) else None
                progress = _ProgressReporter(on_progress, total)

                # Disk writes run off the event loop
                loop = asyncio.get_running_loop()
                fh = await loop.run_in_executor(None, open, part, "wb")
                try:
                    async for chunk in resp.aiter_bytes(chunk_size=self.chunk_size):
                        if not chunk:
                            continue
                        await loop.run_in_executor(None, fh.write, chunk)
                        written += len(chunk)
                        await progress.update(written)
                finally:
                    await loop.run_in_executor(None, fh.close)
            os.replace(part, dest)
        except DownloadError:
            artifact.status = ARTIFACT_INVALID
            log(event="artifact_download_failed", url=url, bytesWritten=written)
            raise
        except httpx.HTTPError as e:
            artifact.status = ARTIFACT_INVALID
            log(event="artifact_download_failed", url=url, bytesWritten=written, errorType=type(e).__name__, error=str(e)[:200])
            raise DownloadError(url, f"{type(e).__name__}: {e}") from e
        except BaseException:
            artifact.status = ARTIFACT_INVALID
            raise
        finally:
            part.unlink(missing_ok=True)

        size = dest.stat().st_size if dest.exists() else 0
        artifact.sizeBytes = size
        if size <= 0:
            artifact.status = ARTIFACT_INVALID
            log(event="artifact_invalid", url=url, localPath=str(dest), sizeBytes=size)
            raise IntegrityError(artifact)

        artifact.status = ARTIFACT_READY
        log(event="artifact_ready", url=url, localPath=str(dest), sizeBytes=size)
        return artifact

    async def dispose(self, artifact: Artifact) -> None:
        """Delete the local copy. Safe to repeat, safe when nothing was written."""
        if artifact.status == ARTIFACT_DELETED:
            return
        fut = self._inflight.get(artifact.localPath)
        if fut is not None and not fut.done():
            # Let the writer finish or fail; its file is removed right after
            await asyncio.gather(fut, return_exceptions=True)
        if artifact.localPath:
            path = Path(artifact.localPath)
            path.unlink(missing_ok=True)
            path.with_name(path.name + ".part").unlink(missing_ok=True)
        artifact.status = ARTIFACT_DELETED
        log(event="artifact_deleted", localPath=artifact.localPath)

    async def dispose_all(self) -> None:
        for artifact in list(self._artifacts):
            await self.dispose(artifact)
        self._artifacts.clear()

    async def aclose(self) -> None:
        await self.dispose_all()
        if self._owns_http:
            await self._http.aclose()
