"""HTTP + SSE surface for team runs and the knowledge base."""

from __future__ import annotations

import importlib
from typing import Optional


def load_model_factory(reference: str) -> object:
	"""
	Build a model client from a "package.module:factory" reference.

	The factory is called with no arguments and must return an object
	implementing ModelClient.complete().
	"""
	module_name, sep, attr = reference.partition(":")
	if not sep or not module_name or not attr:
		raise SystemExit(f"Model factory must look like 'package.module:factory', got {reference!r}")
	factory = getattr(importlib.import_module(module_name), attr)
	return factory()


def create_app(model: Optional[object] = None) -> object:
	"""Create the Starlette ASGI application."""
	from .app import build_app

	return build_app(model=model)


def run_web_server(host: str = "127.0.0.1", port: int = 8420, model_factory: str = "") -> None:
	"""Run the HTTP server."""
	try:
		import uvicorn
	except ImportError:
		raise SystemExit(
			"Web extras not installed. Install with: pip install -e '.[web]'"
		)

	model = load_model_factory(model_factory) if model_factory else None
	app = create_app(model=model)

	print(f"Team orchestrator API running at http://{host}:{port}")
	print("Press Ctrl+C to stop.")
	uvicorn.run(app, host=host, port=port, log_level="warning")
