"""Shared helpers for invoking agent roles and emitting structured role logs."""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..models.agent_client import AgentClient, AgentClientError, AgentRequest
from ..parsing import AgentFailureError, ParseResult, parse_response
from . import ROLE_TITLES, RoleName

LOGGER = logging.getLogger(__name__)


def invoke_role(
    role: RoleName,
    prompt: str,
    request: Any,
    *,
    client: AgentClient,
    role_logs: Optional[Path] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> ParseResult:
    """Call the agent for ``role`` and classify its answer.

    Transient failures are retried by the client. A role log is written for
    every call, including failed ones, when ``role_logs`` is set.
    """
    title = ROLE_TITLES.get(role, role.value)
    agent_request = AgentRequest(
        role=title,
        prompt=prompt,
        metadata={"role": role.value, "request": _json_safe(request), **(metadata or {})},
    )
    attempts: list[dict[str, Any]] = []

    def _attempt_logger(
        sent: AgentRequest,
        raw: str | None,
        error: Exception | None,
        attempt: int,
    ) -> None:
        attempts.append(
            {
                "attempt": attempt,
                "raw": raw,
                "error": str(error) if error else None,
            }
        )

    LOGGER.info("Calling %s (%s)", title, role.value)
    try:
        raw = client.invoke(agent_request, logger=_attempt_logger)
    except AgentClientError as error:
        LOGGER.error("%s failed: %s", title, error)
        _write_role_log(role_logs, role, agent_request, attempts, error=error)
        raise

    try:
        result = parse_response(raw, role=title)
    except AgentFailureError as error:
        _write_role_log(role_logs, role, agent_request, attempts, error=error)
        raise

    LOGGER.info("%s completed (%s)", title, type(result).__name__.lower())
    _write_role_log(role_logs, role, agent_request, attempts, result=result)
    return result


def _write_role_log(
    logs_root: Optional[Path],
    role: RoleName,
    agent_request: AgentRequest,
    attempts: list[dict[str, Any]],
    *,
    result: ParseResult | None = None,
    error: Exception | None = None,
) -> None:
    """Persist a JSON record of one role invocation for later debugging."""
    if logs_root is None:
        return
    try:
        logs_root.mkdir(parents=True, exist_ok=True)
    except OSError:
        return

    entry: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "role": role.value,
        "request": agent_request.metadata.get("request"),
        "prompt": agent_request.prompt,
        "attempts": attempts,
    }
    if result is not None:
        entry["result"] = {"kind": type(result).__name__, **_json_safe(result)}
    if error is not None:
        entry["error"] = str(error)

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    label = agent_request.metadata.get("label")
    parts = ["role", role.value]
    if label:
        parts.append(_slug(str(label)))
    parts.append(timestamp)
    log_path = logs_root / ("__".join(parts) + ".json")
    try:
        with log_path.open("w", encoding="utf-8") as handle:
            json.dump(entry, handle, indent=2, sort_keys=True, ensure_ascii=False)
    except OSError:
        return


def _json_safe(value: Any) -> Any:
    """Coerce complex objects into JSON-serialisable representations."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return _json_safe(asdict(value))
    if hasattr(value, "model_dump"):
        return _json_safe(value.model_dump(mode="json"))
    if isinstance(value, dict):
        return {str(key): _json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    return str(value)


def _slug(value: str, *, fallback: str = "item", max_length: int = 60) -> str:
    """Normalise identifiers for use in log filenames."""
    cleaned = re.sub(r"[^A-Za-z0-9]+", "-", value).strip("-")
    slug = cleaned or fallback
    if len(slug) <= max_length:
        return slug
    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix = slug[: max_length - len(digest) - 1].rstrip("-")
    return f"{prefix}-{digest}"


__all__ = ["invoke_role"]
