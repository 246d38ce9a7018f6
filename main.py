"""Deep Report - local deep research tool

Simple CLI for running research queries.
"""

import argparse
import asyncio
import signal
import sys
from typing import Callable

from deepreport.agents.orchestrator import ResearchOrchestrator
from deepreport.config import load_settings
from deepreport.errors import ResearchError
from deepreport.intensity import ResearchIntensity, get_intensity_config
from deepreport.llm_client import get_client
from deepreport.models.events import ResearchStep
from deepreport.models.research import ResearchReport
from deepreport.services.cancellation import CancellationToken, ResearchCancelled
from deepreport.services.logger import setup_logging
from deepreport.tools.search_provider import get_search_client


def print_step(step: ResearchStep) -> None:
    data = step.data or {}
    if "streamed_content" in data:
        print(".", end="", flush=True)
        return
    prefix = f"[{step.progress.phase}] " if step.progress else ""
    print(f"\n[{step.type.value}] {prefix}{step.message}", flush=True)


def print_report(report: ResearchReport) -> None:
    meta = report.metadata
    print(f"\n\n[*] Research Complete!")
    print(f"   Intensity: {meta.intensity}")
    print(f"   Sources: {meta.total_sources}  Searches: {meta.total_searches}  Iterations: {meta.iterations}")
    print(f"   Runtime: {meta.research_duration}s")
    print(f"\n{'='*50}")
    print(f"REPORT: {report.query}")
    print(f"{'='*50}")
    for section in report.sections:
        print(f"\n## {section.title}\n")
        print(section.content)


def ask_clarifying_questions(questions) -> dict[str, str]:
    answers: dict[str, str] = {}
    print("\n[?] A few questions to focus the research (press Enter to skip):")
    for question in questions:
        hint = f" ({' / '.join(question.options)})" if question.options else ""
        if question.type == "confirm":
            hint = " (yes/no)"
        answer = input(f"  {question.question}{hint}: ").strip()
        if answer:
            answers[question.id] = answer
    return answers


def cancel_on_interrupt(token: CancellationToken) -> Callable[[], None]:
    """Route Ctrl-C to ``token`` so the run stops at its next checkpoint.

    Returns a callable that restores the default handler.
    """
    loop = asyncio.get_running_loop()

    def on_interrupt() -> None:
        print("\n[!] Cancelling at the next checkpoint...", flush=True)
        token.abort()

    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except NotImplementedError:
        # Windows event loops have no signal handlers; Ctrl-C stays a KeyboardInterrupt there.
        return lambda: None
    return lambda: loop.remove_signal_handler(signal.SIGINT)


async def run_research(args: argparse.Namespace) -> int:
    settings = load_settings()
    setup_logging(settings)

    config = settings.research_config(
        intensity=ResearchIntensity(args.intensity) if args.intensity else None,
        report_detail=args.detail,
        enable_adaptive_research=False if args.no_adaptive else None,
        max_research_iterations=args.iterations,
    )
    profile = get_intensity_config(config.intensity)
    low, high = profile.estimated_minutes

    print(f"Research query: {args.query}")
    print(f"Intensity: {config.intensity.value} (~{low}-{high} min), report detail: {config.report_detail}")
    print("-" * 50)

    orchestrator = ResearchOrchestrator(get_client(settings), get_search_client(settings), config)

    answers = None
    if args.clarify and settings.enable_clarifying_questions:
        questions = await orchestrator.generate_clarifying_questions(args.query)
        if questions:
            answers = ask_clarifying_questions(questions)

    token = CancellationToken()
    restore_interrupt = cancel_on_interrupt(token)
    try:
        report = await orchestrator.research(args.query, print_step, token, answers)
    except ResearchCancelled:
        print("\n[!] Research cancelled")
        return 130
    except ResearchError as e:
        print(f"\n[!] Error: {e}")
        return 1
    finally:
        restore_interrupt()

    print_report(report)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Deep Report research tool")
    parser.add_argument("--query", "-q", required=True, help="Research query")
    parser.add_argument(
        "--intensity",
        "-i",
        choices=[level.value for level in ResearchIntensity],
        help="Research intensity (default: from config)",
    )
    parser.add_argument(
        "--detail",
        "-d",
        choices=["standard", "detailed", "comprehensive"],
        help="Report detail level (default: from config)",
    )
    parser.add_argument("--iterations", type=int, help="Maximum adaptive research iterations")
    parser.add_argument("--no-adaptive", action="store_true", help="Disable gap-filling iterations")
    parser.add_argument("--clarify", action="store_true", help="Answer clarifying questions first")

    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(run_research(args)))
    except KeyboardInterrupt:
        print("\n[!] Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
