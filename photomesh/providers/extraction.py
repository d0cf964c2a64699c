"""Translate raw provider task payloads into the canonical status shape.

Provider responses put the same logical value in different places depending on
tier and model version. Each value is read through an ordered list of
ExtractionRule objects; the first rule that finds something wins.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from photomesh.jobs.models import Asset, JobStatus, NormalizedStatus, Provider


@dataclass(frozen=True)
class ExtractionRule:
    """A dotted field path into the provider JSON, e.g. data.result.pbr_model.url."""
    path: Tuple[str, ...]
    unwrap_url: bool = False

    @classmethod
    def parse(cls, dotted: str, unwrap_url: bool = False) -> "ExtractionRule":
        return cls(tuple(dotted.split(".")), unwrap_url)

    def extract(self, payload: Dict[str, Any]) -> Optional[Any]:
        node: Any = payload
        for key in self.path:
            if not isinstance(node, dict) or key not in node:
                return None
            node = node[key]
        # Some model versions wrap URLs in {"type": ..., "url": ...}
        if self.unwrap_url and isinstance(node, dict):
            node = node.get("url")
        if node in (None, ""):
            return None
        return node


def first_match(rules: Sequence[ExtractionRule], payload: Dict[str, Any]) -> Optional[Any]:
    for rule in rules:
        value = rule.extract(payload)
        if value is not None:
            return value
    return None


def _rules(*paths: str, unwrap_url: bool = False) -> List[ExtractionRule]:
    return [ExtractionRule.parse(p, unwrap_url) for p in paths]


TASK_ID_RULES = _rules("data.task_id", "task_id")

UPLOAD_TOKEN_RULES = _rules("data.image_token", "data.file_token", "image_token")

STATUS_RULES = _rules("data.status", "status")

PROGRESS_RULES = _rules("data.progress", "progress")

ERROR_RULES = _rules("data.error", "error", "data.error_msg")

# Primary model URL, per tier, in priority order
MODEL_URL_RULES: Dict[Provider, List[ExtractionRule]] = {
    Provider.PRIMARY: _rules(
        "data.result.pbr_model.url",
        "data.output.pbr_model",
        "data.result.model",
        "data.output.model",
        "data.model",
        "output.model",
        unwrap_url=True,
    ),
    Provider.SECONDARY: _rules(
        "data.result.pbr_model.url",
        "data.output.pbr_model",
        "data.result.model",
        "data.output.model",
        "data.result.base_model",
        "data.output.base_model",
        "data.model",
        "output.model",
        unwrap_url=True,
    ),
}

# Auxiliary export (USDZ) when the provider already produced one
SECONDARY_FORMAT_RULES: Dict[Provider, List[ExtractionRule]] = {
    Provider.PRIMARY: _rules("data.result.usdz_model", "data.output.usdz_model", unwrap_url=True),
    Provider.SECONDARY: _rules(
        "data.result.usdz_model",
        "data.output.usdz_model",
        "data.result.usdz",
        "data.output.usdz",
        unwrap_url=True,
    ),
}

MODEL_SIZE_RULES = _rules("data.result.pbr_model.size", "data.output.model_size")

# Provider vocabulary -> canonical vocabulary
STATUS_TABLE: Dict[str, JobStatus] = {
    "queued": JobStatus.QUEUED,
    "waiting": JobStatus.QUEUED,
    "running": JobStatus.RUNNING,
    "success": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "cancelled": JobStatus.FAILED,
    "banned": JobStatus.FAILED,
    "expired": JobStatus.FAILED,
    "timeout": JobStatus.TIMEOUT,
}

PROGRESS_MODES = ("auto", "percent", "fraction")

_MODEL_FORMATS = ("glb", "fbx", "obj", "usdz", "stl")


def normalize_status(raw: Optional[str]) -> JobStatus:
    """Map a provider status word onto JobStatus. Unknown words count as RUNNING."""
    if not raw:
        return JobStatus.RUNNING
    return STATUS_TABLE.get(str(raw).lower(), JobStatus.RUNNING)


def normalize_progress(raw: Any, mode: str = "auto") -> float:
    """Normalize a provider progress value onto [0, 1].

    auto:     values above 1 are treated as percentages
    percent:  always divided by 100
    fraction: used as-is
    """
    if mode not in PROGRESS_MODES:
        raise ValueError(f"Unknown progress mode '{mode}'. Available: {list(PROGRESS_MODES)}")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0

    if mode == "percent" or (mode == "auto" and value > 1):
        value = value / 100.0
    return min(1.0, max(0.0, value))


def guess_format(url: str, default: str = "glb") -> str:
    ext = urlparse(url).path.rsplit(".", 1)[-1].lower()
    return ext if ext in _MODEL_FORMATS else default


def status_message(status: JobStatus, progress: float) -> str:
    return {
        JobStatus.QUEUED: "Job in queue...",
        JobStatus.RUNNING: f"Generating mesh... {round(progress * 100)}%",
        JobStatus.SUCCEEDED: "Mesh generation complete",
        JobStatus.FAILED: "Generation failed",
        JobStatus.TIMEOUT: "Job timed out",
    }[status]


def extract_asset(provider: Provider, payload: Dict[str, Any]) -> Optional[Asset]:
    url = first_match(MODEL_URL_RULES[provider], payload)
    if not isinstance(url, str):
        return None

    secondary = first_match(SECONDARY_FORMAT_RULES[provider], payload)
    size = first_match(MODEL_SIZE_RULES, payload)
    return Asset(
        url=url,
        format=guess_format(url),
        size_bytes=int(size) if isinstance(size, (int, float)) else 0,
        secondary_format_url=secondary if isinstance(secondary, str) else None,
    )


def normalize_task(
    provider: Provider,
    payload: Dict[str, Any],
    fallback_task_id: str,
    progress_mode: str = "auto",
) -> NormalizedStatus:
    """Build a NormalizedStatus from a raw provider task payload."""
    status = normalize_status(first_match(STATUS_RULES, payload))

    raw_progress = first_match(PROGRESS_RULES, payload)
    if raw_progress is None:
        raw_progress = 100 if status == JobStatus.SUCCEEDED else 0
    progress = normalize_progress(raw_progress, progress_mode)

    asset = extract_asset(provider, payload) if status == JobStatus.SUCCEEDED else None

    error = first_match(ERROR_RULES, payload)
    if isinstance(error, dict):
        error = error.get("message") or error.get("msg") or str(error)
    elif error is not None and not isinstance(error, str):
        error = str(error)
    if status in (JobStatus.FAILED, JobStatus.TIMEOUT) and not error:
        error = status_message(status, progress)

    task_id = first_match(TASK_ID_RULES, payload) or fallback_task_id
    return NormalizedStatus(
        task_id=str(task_id),
        status=status,
        progress=progress,
        message=status_message(status, progress),
        asset=asset,
        error=error,
    )
