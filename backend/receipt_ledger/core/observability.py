"""Sentry wiring for the receipt API.

Sentry stays dormant until ``SENTRY_DSN`` is set; every helper here is a
no-op before that. Events are scrubbed of credentials and of request
bodies, which carry receipt images and ledger payloads.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from receipt_ledger.core.config import settings


_SECRET_HEADERS = frozenset({"authorization", "cookie", "set-cookie", "x-actual-token"})
_DATA_URI_RE = re.compile(r"data:image/[\w.+-]+;base64,[A-Za-z0-9+/=]+")
_initialised = False


def _enabled() -> bool:
	return bool(settings.SENTRY_DSN)


def _scrub(event: Dict[str, Any], hint: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
	"""Strip ledger tokens, uploaded bytes and inline image data from an event."""
	request = event.get("request")
	if isinstance(request, dict):
		headers = request.get("headers")
		if isinstance(headers, dict):
			request["headers"] = {k: v for k, v in headers.items() if k.lower() not in _SECRET_HEADERS}
		request.pop("data", None)
	crumbs = (event.get("breadcrumbs") or {}).get("values") or []
	for crumb in crumbs:
		message = crumb.get("message")
		if isinstance(message, str):
			crumb["message"] = _DATA_URI_RE.sub("data:image/<redacted>", message)
	return event


def init_sentry(service: str) -> bool:
	"""Initialise Sentry for this process; returns False when no DSN is configured."""
	global _initialised
	if not _enabled():
		return False
	if _initialised:
		return True
	sentry_sdk.init(
		dsn=settings.SENTRY_DSN,
		integrations=[FastApiIntegration()],
		traces_sample_rate=float(settings.SENTRY_TRACES_SAMPLE_RATE or 0),
		profiles_sample_rate=float(settings.SENTRY_PROFILES_SAMPLE_RATE or 0),
		environment=settings.ENVIRONMENT,
		release=settings.SENTRY_RELEASE,
		send_default_pii=False,
		before_send=_scrub,
	)
	sentry_sdk.set_tag("service", service)
	sentry_sdk.set_tag("receipt.storage", settings.STORAGE_BACKEND)
	sentry_sdk.set_tag("receipt.payee_locks", settings.PAYEE_LOCK_BACKEND)
	_initialised = True
	return True


def sentry_set_tags(tags: Dict[str, Any]) -> None:
	"""Tag the current request scope; values are stringified and truncated."""
	if not _enabled():
		return
	scope = sentry_sdk.get_current_scope()
	for key, value in tags.items():
		scope.set_tag(str(key), "" if value is None else str(value)[:128])


def sentry_breadcrumb(category: str, message: str, level: str = "info", data: Optional[Dict[str, Any]] = None) -> None:
	"""Record a pipeline step (upload rejected, extraction timeout, commit...)."""
	if not _enabled():
		return
	sentry_sdk.add_breadcrumb(category=category, message=message, level=level, data=data or {})


def sentry_capture(exc: BaseException) -> None:
	if not _enabled():
		return
	sentry_sdk.capture_exception(exc)


__all__ = ["init_sentry", "sentry_set_tags", "sentry_breadcrumb", "sentry_capture"]
