import asyncio
import sys
from pathlib import Path

from cask.cask_config import load_config, ConfigError
from cask.cask_datatypes import CompletenessStatus, Error
from cask.cask_dispatch import KernelTransport
from cask.cask_errors import render_template
from cask.cask_runtime import Evaluator


# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


def _label(prefix: str, text: str) -> str:
    # Multi-line pretty output starts on its own line under the label
    if "\n" in text:
        return f"{prefix}\n{text}"
    return f"{prefix} {text}"


class ConsoleTransport(KernelTransport):
    """Prints results the way a terminal front-end shows them."""

    def send_display_data(self, context, data):
        print(data.get("text/plain", ""))

    def send_reply_value(self, context, execution_count, data):
        print(_label(f"(%o{execution_count})", data.get("text/plain", "")))

    def send_error(self, context, execution_count, kind, message):
        print(f"{kind}: {message}", file=sys.stderr)


def _show_payload(evaluator: Evaluator):
    for message in evaluator.payload_buffer.to_messages():
        match message:
            case {"source": "page", "data": data}:
                print(data.get("text/plain", ""))
            case {"source": "set_next_input", "text": text}:
                print(f"Next input: {text.rstrip()}")
    evaluator.clear_payload()


async def run_script_file(file_path: str):
    """Run a cask file non-interactively and exit with appropriate status."""
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    try:
        config = load_config()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(2)
    evaluator = Evaluator(ConsoleTransport(), config=config)
    _, results = await evaluator.evaluate_block(source)
    _show_payload(evaluator)
    if any(isinstance(r, Error) for r in results):
        raise SystemExit(1)


async def main(argv=None):
    """Run a file when provided, otherwise start the interactive REPL."""
    argv = sys.argv[1:] if argv is None else argv
    if argv and not argv[0].startswith("-"):
        await run_script_file(argv[0])
        return

    try:
        config = load_config()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(2)

    print("cask REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit. End statements with ; or $.")

    evaluator = Evaluator(ConsoleTransport(), config=config, input_provider=input)
    buffer = ""

    while True:
        try:
            if buffer:
                prompt = config.continuation_prompt
            else:
                prompt = render_template(config.prompt, {"count": evaluator.history.next_execution_count})
            raw = await ainput(prompt)
            if raw == "":
                raise EOFError
            line = raw.rstrip("\n")

            if not buffer:
                if not line.strip():
                    continue
                if line.strip() == "exit":
                    break

            buffer += line + "\n"
            if evaluator.probe_completeness(buffer) is CompletenessStatus.INCOMPLETE:
                continue

            source, buffer = buffer, ""
            await evaluator.evaluate_block(source)
            _show_payload(evaluator)
            if evaluator.quit_requested:
                break

        except EOFError:
            print("\nExiting.")
            break


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")


if __name__ == "__main__":
    run()
