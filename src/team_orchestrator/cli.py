"""CLI for team-orchestrator: serve, web, doctor, kb and run commands."""

import argparse
import asyncio
import json
import platform
import sys
from pathlib import Path
from typing import Optional

from importlib.metadata import version as pkg_version

from dotenv import load_dotenv

from .config import Config, load_config
from .errors import TeamOrchestratorError
from .logging_config import setup_logging


def _open_knowledge(config: Config):
	from .knowledge.embeddings import build_embedding_provider
	from .knowledge.store import KnowledgeStore

	return KnowledgeStore(
		str(config.knowledge_db_path),
		build_embedding_provider(config),
		window=config.chunk_window,
		overlap=config.chunk_overlap,
		embedding_concurrency=config.embedding_concurrency,
	)


def _open_runs(config: Config):
	from .orchestration.store import OrchestrationStore

	return OrchestrationStore(str(config.orchestration_db_path))


def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the MCP server (stdio transport)."""
	from .server import mcp
	mcp.run()


def cmd_web(args: argparse.Namespace) -> None:
	"""Run the HTTP + SSE server."""
	try:
		from .web import run_web_server
	except ImportError:
		print("Web extras not installed.")
		print("Install with: pip install -e '.[web]'")
		sys.exit(1)

	run_web_server(host=args.host, port=args.port, model_factory=args.model or "")


def _check_optional_extras() -> list[tuple[str, str]]:
	"""Check optional extras installation status.

	Returns list of (extra_name, status_string) tuples.
	"""
	extras = {
		"web": ["starlette", "uvicorn"],
		"local": ["sentence-transformers"],
	}
	results = []
	for extra_name, packages in extras.items():
		installed = []
		for pkg in packages:
			try:
				ver = pkg_version(pkg)
				installed.append(f"{pkg} {ver}")
			except Exception:
				pass
		if installed:
			results.append((extra_name, ", ".join(installed)))
		else:
			results.append((extra_name, f"NOT INSTALLED (pip install team-orchestrator[{extra_name}])"))
	return results


def _check_config_toml(config_dir: Path) -> tuple[str, Optional[str]]:
	"""Validate config.toml. Returns (status, issue_or_none)."""
	import tomllib

	toml_path = config_dir / "config.toml"
	if not toml_path.exists():
		return "not found (optional)", None
	try:
		with open(toml_path, "rb") as f:
			tomllib.load(f)
		return "valid", None
	except tomllib.TOMLDecodeError as e:
		msg = f"config.toml parse error: {e}"
		return f"INVALID ({e})", msg


def _check_embeddings(config: Config) -> tuple[str, Optional[str]]:
	"""Check that the configured embedding provider can be used. Returns (status, issue_or_none)."""
	if config.embedding_provider == "local":
		try:
			return f"local ({config.local_embedding_model}, sentence-transformers {pkg_version('sentence-transformers')})", None
		except Exception:
			return "local (sentence-transformers NOT INSTALLED)", "sentence-transformers is required for local embeddings"
	if not config.embedding_api_key:
		return "openai (NO API KEY)", "Set OPENROUTER_KEY or OPENAI_API_KEY to enable knowledge search"
	return f"openai ({config.embedding_model} via {config.embedding_base_url})", None


def _check_server_startup() -> tuple[str, Optional[str]]:
	"""Try importing and counting registered tools. Returns (status, issue_or_none)."""
	try:
		from .server import mcp as server_instance
		# FastMCP stores tools internally - count them
		tools = server_instance._tool_manager._tools
		count = len(tools)
		return f"OK ({count} tools registered)", None
	except Exception as e:
		return f"FAILED ({e})", f"Server startup failed: {e}"


def cmd_doctor(args: argparse.Namespace) -> None:
	"""Health check - verify installation and configuration."""
	print("team-orchestrator doctor")
	print(f"{'=' * 40}")

	config = load_config()
	issues: list[str] = []

	# System info
	py_ver = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
	print(f"  Python:       {py_ver}")
	print(f"  Platform:     {platform.system()} {platform.machine()}")
	print()

	# Core deps
	print("  Core deps:")
	core_deps = ["mcp", "aiosqlite", "pydantic", "platformdirs", "python-dotenv", "rich", "numpy", "openai"]
	for dep in core_deps:
		try:
			dep_ver = pkg_version(dep)
			print(f"    {dep:22s} {dep_ver}")
		except Exception:
			print(f"    {dep:22s} NOT INSTALLED")
			issues.append(f"{dep} package not installed")
	print()

	# Optional extras
	print("  Optional extras:")
	for extra_name, status in _check_optional_extras():
		print(f"    {extra_name:22s} {status}")
	print()

	# Config validation
	print("  Config:")
	print(f"    data dir:            {config.data_dir}")
	toml_status, toml_issue = _check_config_toml(config.config_dir)
	print(f"    config.toml:         {toml_status}")
	if toml_issue:
		issues.append(toml_issue)

	embed_status, embed_issue = _check_embeddings(config)
	print(f"    embeddings:          {embed_status}")
	if embed_issue:
		issues.append(embed_issue)
	print()

	# Server startup test
	print("  Server:")
	server_status, server_issue = _check_server_startup()
	print(f"    {server_status}")
	if server_issue:
		issues.append(server_issue)

	print()
	if issues:
		print(f"  {len(issues)} issue(s) found:")
		for issue in issues:
			print(f"    - {issue}")
		sys.exit(1)
	else:
		print("  All checks passed.")


async def _kb(args: argparse.Namespace, config: Config) -> int:
	from .knowledge.models import KnowledgeDocument
	from .visualizer.knowledge_views import render_document_list, render_search_results

	store = _open_knowledge(config)
	try:
		if args.kb_action == "list":
			render_document_list(args.conversation_id, await store.list(args.conversation_id))

		elif args.kb_action == "search":
			k = max(1, min(args.k, config.search_max_k))
			results = await store.search(args.conversation_id, args.query, k)
			render_search_results(args.query, results)

		elif args.kb_action == "add":
			content = Path(args.file).read_text() if args.file else args.content
			doc = await store.save(KnowledgeDocument(
				conversation_id=args.conversation_id,
				title=args.title,
				content=content or "",
				tags=[t.strip() for t in (args.tags or "").split(",") if t.strip()],
				dedupe_key=args.dedupe_key,
			))
			print(f"Saved {doc.document_id} ({doc.chunk_count} chunks)")

		elif args.kb_action == "delete":
			removed = await store.delete(args.document_id)
			print(f"Deleted {removed} document(s)")
	finally:
		await store.close()
	return 0


def cmd_kb(args: argparse.Namespace) -> None:
	"""Knowledge base subcommand."""
	if not getattr(args, "kb_action", None):
		print("Usage: team-orchestrator kb {list|search|add|delete}")
		sys.exit(1)

	config = load_config()
	try:
		asyncio.run(_kb(args, config))
	except TeamOrchestratorError as e:
		print(f"Error: {e}")
		sys.exit(1)


async def _run(args: argparse.Namespace, config: Config) -> int:
	from .visualizer.run_progress import render_run_progress, render_run_summary

	store = _open_runs(config)
	try:
		if args.run_action == "show":
			run = await store.get_state(args.conversation_id)
			if not run:
				print(f"No run found for conversation {args.conversation_id}.")
				return 1
			if args.json:
				print(json.dumps(run.to_document(), indent=2))
			elif args.summary:
				render_run_summary(run)
			else:
				render_run_progress(run)

		elif args.run_action == "clear":
			removed = await store.clear_state(args.conversation_id)
			print(f"Cleared {removed} run(s)")
	finally:
		await store.close()
	return 0


def cmd_run(args: argparse.Namespace) -> None:
	"""Run state subcommand."""
	if not getattr(args, "run_action", None):
		print("Usage: team-orchestrator run {show|clear}")
		sys.exit(1)

	config = load_config()
	try:
		code = asyncio.run(_run(args, config))
	except TeamOrchestratorError as e:
		print(f"Error: {e}")
		sys.exit(1)
	if code:
		sys.exit(code)


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="team-orchestrator",
		description="Multi-agent team runs with a shared per-conversation knowledge base",
	)
	subparsers = parser.add_subparsers(dest="command")

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run MCP server (stdio)")
	serve_parser.set_defaults(func=cmd_serve)

	# web
	web_parser = subparsers.add_parser("web", help="Run the HTTP + SSE server")
	web_parser.add_argument("--host", type=str, default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
	web_parser.add_argument("--port", type=int, default=8420, help="Server port (default: 8420)")
	web_parser.add_argument(
		"--model",
		type=str,
		default=None,
		help="Model client factory as 'package.module:factory' (enables run endpoints)",
	)
	web_parser.set_defaults(func=cmd_web)

	# doctor
	doctor_parser = subparsers.add_parser("doctor", help="Health check")
	doctor_parser.set_defaults(func=cmd_doctor)

	# kb
	kb_parser = subparsers.add_parser("kb", help="Inspect and edit a conversation's knowledge base")
	kb_subparsers = kb_parser.add_subparsers(dest="kb_action")

	kb_list = kb_subparsers.add_parser("list", help="List documents (newest first)")
	kb_list.add_argument("conversation_id", help="Conversation ID")

	kb_search = kb_subparsers.add_parser("search", help="Semantic search")
	kb_search.add_argument("conversation_id", help="Conversation ID")
	kb_search.add_argument("query", help="Search query")
	kb_search.add_argument("-k", type=int, default=5, help="Number of results (default: 5)")

	kb_add = kb_subparsers.add_parser("add", help="Add a document")
	kb_add.add_argument("conversation_id", help="Conversation ID")
	kb_add.add_argument("--title", type=str, required=True, help="Document title")
	source = kb_add.add_mutually_exclusive_group(required=True)
	source.add_argument("--file", type=str, help="Read content from a file")
	source.add_argument("--content", type=str, help="Inline content")
	kb_add.add_argument("--tags", type=str, default="", help="Comma-separated tags")
	kb_add.add_argument("--dedupe-key", type=str, default=None, help="Replace the document saved with this key")

	kb_delete = kb_subparsers.add_parser("delete", help="Delete a document")
	kb_delete.add_argument("document_id", help="Document ID")

	kb_parser.set_defaults(func=cmd_kb)

	# run
	run_parser = subparsers.add_parser("run", help="Inspect or clear a conversation's team run")
	run_subparsers = run_parser.add_subparsers(dest="run_action")

	run_show = run_subparsers.add_parser("show", help="Show run progress")
	run_show.add_argument("conversation_id", help="Conversation ID")
	run_show.add_argument("--summary", action="store_true", help="Show summary panel instead of tree")
	run_show.add_argument("--json", action="store_true", help="Print the stored run document")

	run_clear = run_subparsers.add_parser("clear", help="Delete the stored run")
	run_clear.add_argument("conversation_id", help="Conversation ID")

	run_parser.set_defaults(func=cmd_run)

	return parser


def main(argv: Optional[list[str]] = None) -> None:
	"""CLI entry point."""
	load_dotenv()
	parser = build_parser()
	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		sys.exit(1)

	try:
		config = load_config()
	except TeamOrchestratorError as e:
		print(f"Invalid configuration: {e}")
		sys.exit(1)
	setup_logging(config.log_dir, config.log_level)
	args.func(args)
