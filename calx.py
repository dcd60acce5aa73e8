import sys
from pathlib import Path

from calx.calx_datatypes import CalxError
from calx.calx_runtime import ScriptRunner
from calx.calx_printer import Printer

# A basic input prompt.
def input_line(prompt: str) -> str:
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return sys.stdin.readline()

def print_result(result, printer):
    # Print side effects (from `print`)
    for effect in result.side_effects:
        if effect.get('topics') == ['stdout']:
            print(effect.get('message', ''))
    if result.value is not None:
        print(printer.pformat(result.value))

def run_script_file(file_path: str):
    """Run a CALX script file non-interactively and exit with appropriate status."""
    runner = ScriptRunner()
    printer = Printer()
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    result = runner.handle_script(source)
    if result.status == 'error':
        for effect in result.side_effects:
            if effect.get('topics') == ['stdout']:
                print(effect.get('message', ''))
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)
    print_result(result, printer)

def run_command(runner: ScriptRunner, line: str):
    """Handle a ':' REPL command."""
    command, _, rest = line.partition(" ")
    match command:
        case ":help":
            print(runner.describe_builtins())
        case ":ast":
            try:
                print(runner.describe_ast(rest))
            except CalxError as e:
                print(f"{type(e).__name__}: {e}", file=sys.stderr)
        case _:
            print(f"Unknown command: {command}", file=sys.stderr)

def main():
    """Run a script file when provided, otherwise start the interactive REPL."""
    if len(sys.argv) > 1:
        arg = sys.argv[1]
        # Treat argv[1] as a script file when it's not a flag; run_script_file handles missing files
        if not arg.startswith("-"):
            run_script_file(arg)
            return

    print("CALX REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit. ':help' lists the built-ins.")

    runner = ScriptRunner()
    printer = Printer()

    # REPL Loop
    while True:
        try:
            raw = input_line(">> ")
            if raw == "":
                raise EOFError
            line = raw.strip()

            if not line:
                continue
            if line == "exit":
                break
            if line.startswith(":"):
                run_command(runner, line)
                continue

            result = runner.handle_script(line)

            if result.status == 'error':
                # Pretty, location-aware message
                print(result.format_error(), file=sys.stderr)
                continue

            print_result(result, printer)

        except EOFError:
            print("\nExiting.")
            break

if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nExiting.")
