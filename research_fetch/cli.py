"""Command-line entry point: ask a question, fetch targets, or serve the API."""

import argparse
import asyncio
import sys
from collections.abc import Callable, Sequence
from datetime import datetime
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from research_fetch.clients import FirecrawlClient, SerpApiClient
from research_fetch.config import MAX_ITERATIONS_LIMIT, EngineConfig, ResearchParams
from research_fetch.exceptions import ResearchEngineError
from research_fetch.logging import configure_structlog, get_logger
from research_fetch.models import ResearchOutcome, ResearchResult
from research_fetch.orchestrator import ResearchOrchestrator
from research_fetch.research.refiner import AgentRefiner
from research_fetch.workflow import run_research_workflow

log = get_logger("research_fetch.cli")

DEFAULT_OUTPUT_DIR = Path("outputs")
PREVIEW_CHARS = 200


def _preview(text: str) -> str:
    text = " ".join(text.split())
    return text[:PREVIEW_CHARS] + "..." if len(text) > PREVIEW_CHARS else text


def format_result_as_markdown(result: ResearchResult) -> str:
    """Render a workflow result as a Markdown report."""
    lines = [
        f"# {result.question}",
        "",
        f"**Intent:** {result.plan.intent}",
        "",
        "---",
        "",
        "## Answer",
        "",
        result.summary.final_answer,
        "",
        f"**Confidence:** {result.summary.confidence:.2f}",
        "",
        "## Sources",
        "",
    ]
    lines.extend(f"{i}. [{source}]({source})" for i, source in enumerate(result.summary.sources, 1))
    lines.extend(["", "## Research Rounds", ""])
    for iteration in result.outcome.iterations:
        lines.append(f"### Round {iteration.iteration}")
        lines.append("")
        lines.extend(f"- `{target.text}` ({target.kind.value})" for target in iteration.targets)
        if iteration.analysis:
            lines.extend(["", iteration.analysis])
        lines.append("")
    lines.append(f"_Session ended {result.outcome.state.value} after {result.timings.total_ms} ms._")
    return "\n".join(lines)


def print_outcome(outcome: ResearchOutcome) -> None:
    print(f"State: {outcome.state.value} ({len(outcome.iterations)} rounds, {len(outcome.results)} results)")
    if outcome.cancel_reason:
        print(f"Cancel reason: {outcome.cancel_reason}")
    for target, results in outcome.results_by_target().items():
        print(f"\n{target}")
        for result in results:
            print(f"  {result.url}")
            print(f"    {_preview(result.content)}")


def _save(output_dir: Path, name: str, content: str) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / name
    path.write_text(content)
    log.info("cli.output.saved", path=str(path))
    return path


def build_orchestrator(config: EngineConfig) -> ResearchOrchestrator:
    return ResearchOrchestrator(SerpApiClient.from_env(), FirecrawlClient.from_env(), AgentRefiner(), config)


async def _ask(args: argparse.Namespace) -> int:
    result = await run_research_workflow(args.question, params=ResearchParams(max_iterations=args.max_iterations))
    print(result.summary.final_answer)
    print(f"\nConfidence: {result.summary.confidence:.2f}")
    print_outcome(result.outcome)

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    json_path = _save(args.output_dir, f"research_{timestamp}.json", result.model_dump_json(indent=2))
    md_path = _save(args.output_dir, f"report_{timestamp}.md", format_result_as_markdown(result))
    print(f"\nResults saved to: {json_path}")
    print(f"Report saved to: {md_path}")
    return 0


async def _fetch(args: argparse.Namespace) -> int:
    params = ResearchParams(
        max_iterations=args.max_iterations,
        max_results_total=args.max_results,
        research_goals=args.goal or [],
        date_window=args.date_window,
        research_context=args.context,
        session_timeout_ms=args.timeout_ms,
    )
    orchestrator = build_orchestrator(EngineConfig.from_env())
    outcome = await orchestrator.run(args.targets, params)
    print_outcome(outcome)

    if args.output_dir is not None:
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        path = _save(args.output_dir, f"outcome_{timestamp}.json", outcome.model_dump_json(indent=2))
        print(f"\nOutcome saved to: {path}")
    return 0


def _serve(args: argparse.Namespace) -> int:
    uvicorn.run("research_fetch.server:app", host=args.host, port=args.port)
    return 0


def bounded_int(minimum: int, maximum: int | None = None) -> Callable[[str], int]:
    """argparse type accepting integers in [minimum, maximum]."""

    def parse(value: str) -> int:
        try:
            number = int(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
        if number < minimum or (maximum is not None and number > maximum):
            bounds = f"between {minimum} and {maximum}" if maximum is not None else f"at least {minimum}"
            raise argparse.ArgumentTypeError(f"must be {bounds}, got {number}")
        return number

    return parse


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="research-fetch",
        description="Iterative web research with rate-limited content extraction",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Plan, research and summarize a question
  research-fetch ask "Which industry events did Entrust attend in 2024?"

  # Research explicit targets without planning or summary
  research-fetch fetch example.com "industry trends 2024" --goal "event dates"

  # Serve the HTTP API
  research-fetch serve --port 8080
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    iterations = bounded_int(1, MAX_ITERATIONS_LIMIT)

    ask = subparsers.add_parser("ask", help="Plan, research and summarize a question")
    ask.add_argument("question", help="Research question")
    ask.add_argument("--max-iterations", type=iterations, default=2, help="Research rounds (default: 2)")
    ask.add_argument("--output-dir", type=Path, default=DEFAULT_OUTPUT_DIR, help="Where to save results")

    fetch = subparsers.add_parser("fetch", help="Research explicit search targets")
    fetch.add_argument("targets", nargs="+", help="URLs, domains, site: queries or search phrases")
    fetch.add_argument("--max-iterations", type=iterations, default=2, help="Research rounds (default: 2)")
    fetch.add_argument("--max-results", type=bounded_int(1), default=20, help="Cap on accumulated results (default: 20)")
    fetch.add_argument("--goal", action="append", help="Information goal (repeatable)")
    fetch.add_argument("--context", help="Domain hint appended to search queries")
    fetch.add_argument("--date-window", help="Date range appended to search queries")
    fetch.add_argument("--timeout-ms", type=bounded_int(1), help="Whole-session timeout")
    fetch.add_argument("--output-dir", type=Path, help="Save the outcome as JSON here")

    serve = subparsers.add_parser("serve", help="Serve the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=bounded_int(1, 65535), default=8080)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point."""
    load_dotenv()
    configure_structlog(testing=True)
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        return _serve(args)

    runner = _ask if args.command == "ask" else _fetch
    try:
        return asyncio.run(runner(args))
    except KeyboardInterrupt:
        print("\nResearch interrupted by user", file=sys.stderr)
        return 130
    except ResearchEngineError as e:
        log.error("cli.failed", error_type=type(e).__name__, error=str(e))
        print(f"\nResearch failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
