"""
HTTP Request node - single calls or one call per batch item.

Supports:
- Templated URLs and bodies (``{{url}}``, ``{{item}}``, ``{{item_<key>}}``, ``{{index}}``)
- Auth from a plaintext token or the secret store (``keychain_ref``)
- Retries with exponential backoff on 429/5xx and transport errors
- Throttling between batch items and dry runs that send nothing

Every URL is checked against the project's network grants before it is sent.
"""

import asyncio
import copy
import json
import logging
import re
from typing import Any

import httpx

from studio.errors import NodeExecutionError
from studio.graph.config_schema import ConfigField, ConfigFieldType, ConfigSchema
from studio.graph.node import ExecutionContext, NodeDefinition, NodeResult
from studio.graph.signal import CancellationSignal
from studio.graph.types import CachePolicy, CapabilityClass, PortDefinition, PortType
from studio.nodes.shared import get_text, read_int, render_template, resolve_template_variables

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 500
DEFAULT_THROTTLE_MS = 0
DEFAULT_MAX_RETRIES = 3
DEFAULT_AUTH_HEADER_NAME = "Authorization"
DEFAULT_TIMEOUT_SECONDS = 60.0
BACKOFF_BASE_MS = 400

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD")


def _is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


def normalize_batch_items(value: Any) -> list[Any]:
    """Flatten a batch input into a list of items."""
    if value is None:
        return []
    if isinstance(value, list):
        return list(value)
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return []
        if trimmed.startswith(("[", "{")):
            try:
                return normalize_batch_items(json.loads(trimmed))
            except json.JSONDecodeError:
                return [trimmed]
        return [trimmed]
    if not isinstance(value, dict):
        return [value]
    for key in ("items", "rows", "data", "emails"):
        normalized = normalize_batch_items(value.get(key))
        if normalized:
            return normalized
    return [value]


def _template_variables(context: ExecutionContext, item: Any, index: int) -> dict[str, str]:
    variables = {**resolve_template_variables(context), "index": str(index)}
    if item is None:
        return variables
    variables["item"] = get_text(item)
    if isinstance(item, dict):
        for key, value in item.items():
            normalized = re.sub(r"[^A-Za-z0-9_]+", "_", str(key or "").strip())
            if normalized:
                variables[f"item_{normalized}"] = get_text(value)
    return variables


def _build_body(
    context: ExecutionContext,
    *,
    batch: bool,
    method: str,
    item: Any,
    index: int,
) -> Any:
    if method in ("GET", "HEAD"):
        return None

    template = get_text(context.config.get("bodyTemplate")).strip()
    if template:
        rendered = render_template(template, _template_variables(context, item, index)).strip()
        if not rendered:
            return None
        try:
            return json.loads(rendered)
        except json.JSONDecodeError:
            return rendered

    body_input = context.inputs.get("body")
    base = copy.deepcopy(body_input if body_input is not None else context.config.get("body"))
    if not batch or item is None:
        return base

    item_field = get_text(context.config.get("itemBodyField")).strip()
    if item_field:
        value = item.get(item_field, item) if isinstance(item, dict) else item
        merged = dict(base) if isinstance(base, dict) else {}
        merged[item_field] = copy.deepcopy(value)
        return merged

    merge_items = context.config.get("mergeItemObject") is not False
    if isinstance(base, dict) and merge_items and isinstance(item, dict):
        return {**base, **item}
    if base is not None:
        return base
    return copy.deepcopy(item)


def _summarize_http_error(status: int, body: str) -> str:
    snippet = (body or "").strip()[:240]
    if not snippet:
        return f"HTTP request failed ({status})."
    return f"HTTP request failed ({status}): {snippet}"


async def _sleep(seconds: float, signal: CancellationSignal) -> None:
    """Sleep unless the signal fires first."""
    if seconds <= 0:
        return
    try:
        await asyncio.wait_for(signal.wait(), timeout=seconds)
    except TimeoutError:
        return
    signal.raise_if_aborted()


async def _request_with_retry(
    client: httpx.AsyncClient,
    *,
    url: str,
    method: str,
    headers: dict[str, str],
    body: Any,
    max_retries: int,
    signal: CancellationSignal,
) -> dict[str, Any]:
    request_headers = dict(headers)
    content: str | None = None
    if isinstance(body, str):
        content = body
    elif body is not None:
        content = json.dumps(body)
        if not any(key.strip().lower() == "content-type" for key in request_headers):
            request_headers["Content-Type"] = "application/json"

    attempt = 0
    while True:
        signal.raise_if_aborted()
        try:
            response = await client.request(method, url, headers=request_headers, content=content)
        except httpx.HTTPError as e:
            if attempt >= max_retries:
                raise
            logger.debug(f"Retrying {method} {url} after {type(e).__name__}")
            await _sleep(BACKOFF_BASE_MS * 2**attempt / 1000, signal)
            attempt += 1
            continue

        if _is_retryable_status(response.status_code) and attempt < max_retries:
            logger.debug(
                f"Retrying {method} {url} after HTTP {response.status_code}",
                extra={"event": "http_retry", "url": url, "status": response.status_code},
            )
            await _sleep(BACKOFF_BASE_MS * 2**attempt / 1000, signal)
            attempt += 1
            continue

        text = response.text
        try:
            parsed = json.loads(text) if text else None
        except json.JSONDecodeError:
            parsed = None
        return {
            "status": response.status_code,
            "body": text,
            "json": parsed,
            "ok": 200 <= response.status_code < 300,
        }


async def _resolve_auth_header(context: ExecutionContext) -> tuple[str, str] | None:
    node_id = context.node.id
    source = get_text(context.config.get("authSource")).strip().lower()
    if not source or source == "none":
        return None

    if source == "plaintext":
        token = get_text(context.config.get("authToken")).strip()
        if not token:
            raise NodeExecutionError(node_id, "requires an auth token.")
    elif source == "keychain_ref":
        reference = get_text(context.config.get("authTokenRef")).strip()
        if not reference:
            raise NodeExecutionError(node_id, "requires a keychain auth token reference.")
        store = context.services.secret_store
        if not store.is_available():
            raise NodeExecutionError(node_id, "cannot resolve keychain secrets in this runtime.")
        token = (await store.get_secret(reference) or "").strip()
        if not token:
            raise NodeExecutionError(node_id, "resolved an empty auth token.")
    else:
        raise NodeExecutionError(node_id, f'has an unsupported auth source "{source}".')

    header = get_text(context.config.get("authHeaderName")).strip() or DEFAULT_AUTH_HEADER_NAME
    scheme = get_text(context.config.get("authScheme")).strip().lower()
    if not scheme or scheme == "none":
        return header, token
    return header, f"{'Bearer' if scheme == 'bearer' else scheme} {token}"


def _outputs(
    *,
    mode: str,
    dry_run: bool,
    responses: list[dict[str, Any]],
    items: list[Any],
    succeeded: int,
    failed: int,
    skipped: int,
    total: int,
) -> dict[str, Any]:
    last = responses[-1] if responses else None
    return {
        "status": last["status"] if last else 0,
        "body": last["body"] if last else "",
        "json": last["json"] if last else None,
        "items": items,
        "succeeded": succeeded,
        "failed": failed,
        "skipped": skipped,
        "total": total,
        "responses": responses,
        "summary": {
            "mode": mode,
            "dryRun": dry_run,
            "total": total,
            "succeeded": succeeded,
            "failed": failed,
            "skipped": skipped,
        },
    }


async def _execute_http_request(context: ExecutionContext) -> NodeResult:
    node_id = context.node.id
    url_template = (
        get_text(context.inputs.get("url")).strip() or get_text(context.config.get("url")).strip()
    )
    if not url_template:
        raise NodeExecutionError(node_id, "requires a URL.")

    mode = get_text(context.config.get("mode")).strip().lower()
    if mode != "batch_items":
        mode = "single"
    method = get_text(context.config.get("method")).strip().upper() or "GET"
    raw_headers = context.config.get("headers")
    headers = {
        str(key).strip(): get_text(value)
        for key, value in (raw_headers.items() if isinstance(raw_headers, dict) else [])
        if str(key).strip()
    }
    auth = await _resolve_auth_header(context)
    if auth:
        headers[auth[0]] = auth[1]

    max_retries = read_int(
        context.config.get("maxRetries"), DEFAULT_MAX_RETRIES, minimum=0, maximum=8
    )
    dry_run = context.config.get("dryRun") is True
    continue_on_error = context.config.get("continueOnHttpError") is not False

    if mode == "single":
        items: list[Any] = [None]
        skipped = 0
    else:
        raw_items = context.inputs.get("items")
        if raw_items is None and isinstance(context.inputs.get("body"), list):
            raw_items = context.inputs.get("body")
        normalized = normalize_batch_items(raw_items)
        max_requests = read_int(
            context.config.get("maxRequests"), DEFAULT_MAX_REQUESTS, minimum=1, maximum=5000
        )
        items = normalized[:max_requests]
        skipped = max(0, len(normalized) - len(items))
        if not items:
            return NodeResult(
                outputs=_outputs(
                    mode=mode,
                    dry_run=dry_run,
                    responses=[],
                    items=[],
                    succeeded=0,
                    failed=0,
                    skipped=skipped,
                    total=0,
                )
            )

    throttle_ms = read_int(
        context.config.get("throttleMs"), DEFAULT_THROTTLE_MS, minimum=0, maximum=60_000
    )
    responses: list[dict[str, Any]] = []
    succeeded = failed = 0

    async with httpx.AsyncClient(
        transport=context.services.http_transport, timeout=DEFAULT_TIMEOUT_SECONDS
    ) as client:
        for index, item in enumerate(items):
            context.signal.raise_if_aborted()
            url = render_template(url_template, _template_variables(context, item, index)).strip()
            if not url:
                suffix = f" for batch item {index}" if mode == "batch_items" else ""
                raise NodeExecutionError(node_id, f"resolved an empty URL{suffix}.")
            context.services.assert_network_url(url)
            body = _build_body(
                context, batch=(mode == "batch_items"), method=method, item=item, index=index
            )

            if dry_run:
                responses.append(
                    {
                        "index": index,
                        "status": 0,
                        "ok": True,
                        "body": "",
                        "json": None,
                        "item": item,
                        "url": url,
                    }
                )
            else:
                response = await _request_with_retry(
                    client,
                    url=url,
                    method=method,
                    headers=headers,
                    body=body,
                    max_retries=max_retries,
                    signal=context.signal,
                )
                responses.append({"index": index, **response, "item": item, "url": url})
                if response["ok"]:
                    succeeded += 1
                else:
                    failed += 1
                    if not continue_on_error:
                        raise NodeExecutionError(
                            node_id, _summarize_http_error(response["status"], response["body"])
                        )

            if mode == "batch_items" and index < len(items) - 1 and throttle_ms > 0:
                await _sleep(throttle_ms / 1000, context.signal)

    logger.info(
        f"HTTP node {node_id}: {succeeded} succeeded, {failed} failed",
        extra={"event": "http_request", "node_id": node_id},
    )
    return NodeResult(
        outputs=_outputs(
            mode=mode,
            dry_run=dry_run,
            responses=responses,
            items=items if mode == "batch_items" else [],
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            total=len(items),
        )
    )


_AUTH_VISIBLE = ("authSource", ("keychain_ref", "plaintext"))
_BATCH_VISIBLE = ("mode", ("batch_items",))

HTTP_REQUEST_NODE = NodeDefinition(
    kind="studio.http_request",
    version="1.0.0",
    capability_class=CapabilityClass.API,
    cache_policy=CachePolicy.NEVER,
    execute=_execute_http_request,
    input_ports=(
        PortDefinition("url", PortType.TEXT),
        PortDefinition("body", PortType.JSON),
        PortDefinition("items", PortType.JSON),
    ),
    output_ports=(
        PortDefinition("status", PortType.NUMBER),
        PortDefinition("body", PortType.TEXT),
        PortDefinition("json", PortType.JSON),
        PortDefinition("items", PortType.JSON),
        PortDefinition("succeeded", PortType.NUMBER),
        PortDefinition("failed", PortType.NUMBER),
        PortDefinition("skipped", PortType.NUMBER),
        PortDefinition("total", PortType.NUMBER),
        PortDefinition("responses", PortType.JSON),
        PortDefinition("summary", PortType.JSON),
    ),
    config_defaults={
        "mode": "single",
        "method": "GET",
        "url": "",
        "headers": {},
        "authSource": "none",
        "authTokenRef": "",
        "authToken": "",
        "authHeaderName": DEFAULT_AUTH_HEADER_NAME,
        "authScheme": "bearer",
        "body": {},
        "bodyTemplate": "",
        "itemBodyField": "",
        "mergeItemObject": True,
        "maxRequests": DEFAULT_MAX_REQUESTS,
        "throttleMs": DEFAULT_THROTTLE_MS,
        "maxRetries": DEFAULT_MAX_RETRIES,
        "dryRun": False,
        "continueOnHttpError": True,
    },
    config_schema=ConfigSchema(
        fields=(
            ConfigField(
                "mode",
                "Mode",
                ConfigFieldType.SELECT,
                required=True,
                options=("single", "batch_items"),
            ),
            ConfigField(
                "method", "Method", ConfigFieldType.SELECT, required=True, options=HTTP_METHODS
            ),
            ConfigField(
                "authSource",
                "Auth Source",
                ConfigFieldType.SELECT,
                required=True,
                options=("none", "keychain_ref", "plaintext"),
            ),
            ConfigField(
                "authTokenRef",
                "Keychain Auth Token Ref",
                ConfigFieldType.TEXT,
                required=True,
                description="Secret id for the auth token.",
                placeholder="resend.marketing",
                visible_when=("authSource", ("keychain_ref",)),
            ),
            ConfigField(
                "authToken",
                "Auth Token",
                ConfigFieldType.TEXT,
                required=True,
                description="Fallback plaintext token. Prefer keychain references for production.",
                visible_when=("authSource", ("plaintext",)),
            ),
            ConfigField(
                "authHeaderName",
                "Auth Header Name",
                ConfigFieldType.TEXT,
                required=True,
                visible_when=_AUTH_VISIBLE,
            ),
            ConfigField(
                "authScheme",
                "Auth Scheme",
                ConfigFieldType.SELECT,
                required=True,
                options=("bearer", "none"),
                visible_when=_AUTH_VISIBLE,
            ),
            ConfigField(
                "url",
                "URL",
                ConfigFieldType.TEXT,
                placeholder="Can be provided by input port instead.",
            ),
            ConfigField("headers", "Headers", ConfigFieldType.JSON_OBJECT),
            ConfigField(
                "body",
                "Default Body",
                ConfigFieldType.JSON_OBJECT,
                description="Used when no body input is provided.",
            ),
            ConfigField(
                "bodyTemplate",
                "Body Template",
                ConfigFieldType.TEXTAREA,
                description=(
                    "Raw body template. Supports {{inputPort}} variables "
                    "and {{item}} in batch mode."
                ),
            ),
            ConfigField(
                "itemBodyField",
                "Item Body Field",
                ConfigFieldType.TEXT,
                description="When set in batch mode, each item is assigned to this body field.",
                visible_when=_BATCH_VISIBLE,
            ),
            ConfigField(
                "mergeItemObject",
                "Merge Item Object Into Body",
                ConfigFieldType.BOOLEAN,
                required=True,
                visible_when=_BATCH_VISIBLE,
            ),
            ConfigField(
                "maxRequests",
                "Max Requests",
                ConfigFieldType.NUMBER,
                required=True,
                min=1,
                max=5000,
                integer=True,
                visible_when=_BATCH_VISIBLE,
            ),
            ConfigField(
                "throttleMs",
                "Throttle (ms)",
                ConfigFieldType.NUMBER,
                required=True,
                min=0,
                max=60_000,
                integer=True,
                visible_when=_BATCH_VISIBLE,
            ),
            ConfigField(
                "maxRetries",
                "Max Retries",
                ConfigFieldType.NUMBER,
                required=True,
                min=0,
                max=8,
                integer=True,
            ),
            ConfigField(
                "dryRun",
                "Dry Run",
                ConfigFieldType.BOOLEAN,
                required=True,
                description="Build request payloads without sending network calls.",
            ),
            ConfigField(
                "continueOnHttpError",
                "Continue On HTTP Error",
                ConfigFieldType.BOOLEAN,
                required=True,
                description="When disabled, any non-2xx response fails the node immediately.",
            ),
        ),
        allow_unknown_keys=True,
    ),
    label="HTTP Request",
)
