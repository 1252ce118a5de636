# tools/refine_text.py
# Usage: python tools/refine_text.py "some text"   (or pipe text on stdin)
import asyncio
import sys
from dataclasses import replace

from adapters.clipboard.base import ClipboardAdapter
from adapters.llm.openai_chat import OpenAIChatAdapter
from config import AppConfig
from orchestrator.enums.outcome import RefineOutcome
from orchestrator.refinement import RefinementSupervisor


class StdioClipboard(ClipboardAdapter):
    """Captures the command-line text; the refined result goes to stdout."""

    def __init__(self, text: str) -> None:
        self.text = text

    async def capture_selection(self, use_fallback: bool) -> str:
        return self.text

    def set_text(self, text: str) -> bool:
        print(text)
        return True

    async def paste(self) -> bool:
        return False


async def refine(text: str) -> int:
    cfg = replace(AppConfig.load_from_env().validated(), auto_paste=False)
    adapter = OpenAIChatAdapter(cfg.llm)
    supervisor = RefinementSupervisor(
        config=cfg, adapter=adapter, clipboard=StdioClipboard(text)
    )
    try:
        result = await supervisor.trigger()
    finally:
        await adapter.aclose()

    if result.outcome is not RefineOutcome.SUCCEEDED:
        print(f"{result.outcome.value}: {result.message}", file=sys.stderr)
        return 1
    return 0


text = " ".join(sys.argv[1:]) if len(sys.argv) > 1 else sys.stdin.read()
sys.exit(asyncio.run(refine(text)))
