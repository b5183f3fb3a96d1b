import json
import time
import inspect
from dataclasses import asdict
from typing import Optional

from txflow.settings import settings
from txflow.store.redis_conn import get_redis
from txflow.store.models import WorkflowSnapshot, Job, OtpChallenge, Artifact
from txflow.observability.logging import log

PREFIX = "workflow:"


def _key(session_id: str) -> str:
    return f"{PREFIX}{session_id}"


def _filter_kwargs(cls, data: dict) -> dict:
    """
    Drop unknown fields so cls(**kwargs) never explodes on snapshots written by
    an older or newer build.
    """
    sig = inspect.signature(cls)
    allowed = set(sig.parameters.keys())
    return {k: v for k, v in data.items() if k in allowed}


def _rehydrate(data: dict) -> WorkflowSnapshot:
    job = data.get("job")
    if isinstance(job, dict):
        data["job"] = Job(**_filter_kwargs(Job, job))
    else:
        data["job"] = None

    challenge = data.get("challenge")
    if isinstance(challenge, dict):
        data["challenge"] = OtpChallenge(**_filter_kwargs(OtpChallenge, challenge))
    else:
        data["challenge"] = None

    data["artifacts"] = [
        Artifact(**_filter_kwargs(Artifact, a))
        for a in (data.get("artifacts") or [])
        if isinstance(a, dict)
    ]
    return WorkflowSnapshot(**_filter_kwargs(WorkflowSnapshot, data))


async def load_snapshot(session_id: str) -> Optional[WorkflowSnapshot]:
    r = get_redis()
    raw = await r.get(_key(session_id))
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        log(event="snapshot_corrupt", sessionId=session_id)
        return None
    if not isinstance(data, dict):
        return None
    return _rehydrate(data)


async def save_snapshot(snapshot: WorkflowSnapshot) -> None:
    r = get_redis()
    snapshot.lastUpdatedAtEpoch = int(time.time())
    data = asdict(snapshot)
    await r.set(_key(snapshot.sessionId), json.dumps(data), ex=int(settings.SESSION_TTL_SEC))


async def delete_snapshot(session_id: str) -> None:
    r = get_redis()
    await r.delete(_key(session_id))
