import json
import logging
import random
import readline  # noqa: F401  (line editing for input())
import sys
from typing import Callable, List, Optional

from .client import ChatSession
from .config import GLOBAL_SETTINGS
from .conversation import read_system_prompt
from .errors import ChatError, ConfigError, EmptyResponseError, HistoryLimitError
from .models import MODELS_LIST, all_parameters, format_model_info, format_number, is_known_model
from .stream import CONTENT, REASONING, REASONING_START, REASONING_STOP, Chunk
from .ui import Colors, Spinner, UI, eprint

logger = logging.getLogger(__name__)

COMMANDS_HELP = """Interactive commands:
  /help                          Show this help
  /exit, /quit                   Leave the chat
  /history                       Print the conversation file
  /clear                         Remove all messages from the conversation
  /save <file>                   Copy the conversation file to <file>
  /model [name]                  Show or switch the model
  /modelinfo [name]              Show a model's settings
  /randomodel                    Switch to a random model
  /persist-settings              Store the current settings in the conversation file
  /persist-system <file>         Store <file> as the conversation's system prompt
  /exportlast [-t] <file>        Export the last assistant response
  /exportlastn [-t] <n> <file>   Export the last n assistant responses
  /exportn [-t] <n> <file>       Export the Nth-to-last assistant response
  /<param> <value>               Set a model setting, stream or history_limit
  /<param> unset                 Revert it to its default

  -t strips the reasoning segments from exported text.
  A message ends with Ctrl+D on an empty line."""

COMMANDS = (
    "help", "exit", "quit", "history", "clear", "save", "model", "modelinfo",
    "randomodel", "persist-settings", "persist-system", "exportlast", "exportlastn", "exportn",
)


class ExitShell(Exception):
    """Raised by /exit and /quit"""


def describe_limit(error: HistoryLimitError) -> str:
    return (
        f"{UI.error('Conversation message limit reached.')}\n"
        f"File: {error.path}\n"
        f"Messages in file: {error.count}\n"
        f"Configured limit: {error.limit}\n\n"
        "Messages are never removed or rotated automatically.\n"
        "Options:\n"
        "  - Increase the limit with -L (or /history_limit) and re-run\n"
        "  - Use a different conversation file\n"
        "  - Clear the conversation with /clear"
    )


def describe_error(error: ChatError) -> str:
    text = UI.error(f"Error: {error}")
    if isinstance(error, EmptyResponseError) and error.body:
        text += f"\nRaw response:\n{error.body}"
    return text


def render_chunk(chunk: Chunk) -> str:
    if chunk.kind == REASONING_START:
        return f"\n{UI.reasoning_marker(chunk.text)}\n"
    if chunk.kind == REASONING_STOP:
        return f"\n{UI.reasoning_marker(chunk.text)}\n\n"
    if chunk.kind in (REASONING, CONTENT):
        return chunk.text
    return ""


def print_response(chunks, stream: bool, out=None) -> None:
    """Write chunks as they arrive; spin while a non-streamed body is pending"""
    out = out or sys.stdout
    spinner = None if stream else Spinner("Waiting for response")
    if spinner:
        spinner.start()
    try:
        for chunk in chunks:
            if spinner:
                spinner.stop()
                spinner = None
            out.write(render_chunk(chunk))
            out.flush()
    finally:
        if spinner:
            spinner.stop()
    out.write("\n")
    out.flush()


def _split_export_args(args: List[str]):
    strip = False
    if args and args[0] == "-t":
        strip = True
        args = args[1:]
    return strip, args


def _positive_int(text: str) -> int:
    try:
        n = int(text)
    except ValueError:
        raise ChatError(f"invalid number: {text}") from None
    if n < 1:
        raise ChatError(f"n must be at least 1, got {n}")
    return n


class Shell:
    """Read lines, dispatch /commands, send everything else as a user turn."""

    def __init__(self, session: ChatSession, input_func: Optional[Callable[[str], str]] = None):
        self.session = session
        self.input = input_func or input

    @property
    def settings(self):
        return self.session.settings

    @property
    def conversation(self):
        return self.session.conversation

    def banner(self):
        eprint()
        eprint(UI.DISCLAIMER)
        eprint(f"{UI.bold('NVIDIA chat')} {self.settings.summary()}")
        eprint(f"{Colors.MUTED}Conversation file:{Colors.RESET} {Colors.CYAN}{self.conversation.path}{Colors.RESET}")
        eprint(UI.muted("Type your message and end it with Ctrl+D. /help lists the commands."))

    def run(self) -> int:
        """Loop until /exit or EOF; the return value is the exit status"""
        self.banner()
        while True:
            try:
                first = self.input(UI.prompt())
            except EOFError:
                print()
                return 0

            try:
                if self.is_command(first):
                    self.handle_command(first.strip())
                    continue

                text = self.read_rest(first).strip()
                if not text:
                    continue
                self.send(text)
            except ExitShell:
                return 0
            except HistoryLimitError as e:
                eprint(describe_limit(e))
                return 1
            except ChatError as e:
                eprint(describe_error(e))

    def read_rest(self, first: str) -> str:
        lines = [first]
        while True:
            try:
                lines.append(self.input(""))
            except EOFError:
                break
        return "\n".join(lines)

    def is_command(self, line: str) -> bool:
        line = line.strip()
        if not line.startswith("/"):
            return False
        name = line[1:].split(maxsplit=1)[0] if len(line) > 1 else ""
        return name in COMMANDS or name in GLOBAL_SETTINGS or name in all_parameters()

    def send(self, text: str):
        print(UI.assistant_label())
        print_response(self.session.turn(text), self.settings.stream)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def handle_command(self, line: str):
        parts = line[1:].split()
        command, args = parts[0], parts[1:]

        if command in ("exit", "quit"):
            print(UI.muted("Goodbye!"))
            raise ExitShell()

        if command == "help":
            print(COMMANDS_HELP)
            return

        if command == "history":
            print(self.conversation.raw_text())
            return

        if command == "clear":
            self.conversation.clear()
            print(UI.success("Conversation history cleared."))
            return

        if command == "save":
            if len(args) != 1:
                print("Usage: /save <file>")
                return
            self.conversation.copy_to(args[0])
            print(UI.success(f"Conversation saved to {args[0]}"))
            return

        if command == "model":
            if not args:
                print(f"Current model: {UI.highlight(self.settings.model)}")
                print("\nAvailable models:")
                for name in MODELS_LIST:
                    print(f"  {name}")
                return
            self.switch_model(args[0])
            return

        if command == "modelinfo":
            print(format_model_info(args[0] if args else self.settings.model))
            return

        if command == "randomodel":
            choices = [m for m in MODELS_LIST if m != self.settings.model] or MODELS_LIST
            self.switch_model(random.choice(choices))
            return

        if command == "persist-settings":
            self.conversation.persist_settings(self.settings)
            print(UI.success(f"Settings for {self.settings.model} saved to {self.conversation.path}"))
            return

        if command == "persist-system":
            if len(args) != 1:
                print("Usage: /persist-system <file>")
                return
            self.conversation.persist_system(read_system_prompt(args[0]))
            print(UI.success("System prompt saved to the conversation."))
            return

        if command in ("exportlast", "exportlastn", "exportn"):
            self.export(command, args)
            return

        self.set_parameter(command, args)

    def switch_model(self, model: str):
        if not is_known_model(model):
            print(UI.warning(f"Unknown model '{model}'; using generic settings."))
        self.settings.switch_model(model)
        print(UI.success(f"Model set to: {model}"))
        print(UI.muted(self.settings.summary()))

    def export(self, command: str, args: List[str]):
        strip, args = _split_export_args(args)
        if command == "exportlast":
            if len(args) != 1:
                print("Usage: /exportlast [-t] <file>")
                return
            self.conversation.export_last(1, args[0], strip_thinking=strip)
            print(UI.success(f"Last response exported to {args[0]}"))
            return

        if len(args) != 2:
            print(f"Usage: /{command} [-t] <n> <file>")
            return
        n, target = _positive_int(args[0]), args[1]
        if command == "exportlastn":
            self.conversation.export_last(n, target, strip_thinking=strip)
            print(UI.success(f"Last {n} responses exported to {target}"))
        else:
            self.conversation.export_nth(n, target, strip_thinking=strip)
            print(UI.success(f"Response {n} from the end exported to {target}"))

    def set_parameter(self, name: str, args: List[str]):
        if not args:
            value = self.settings.get(name)
            print(f"{name} = {'null' if value is None else format_number(value)}")
            return
        text = " ".join(args)
        try:
            if text == "unset":
                value = self.settings.unset(name)
                label = "reverted to"
            else:
                value = self.settings.set(name, text)
                label = "set to"
        except ConfigError as e:
            print(UI.error(f"Error: {e}"), file=sys.stderr)
            return
        shown = "null" if value is None else format_number(value)
        if name in GLOBAL_SETTINGS:
            print(UI.success(f"{name} {label} {shown}"))
        else:
            print(UI.success(f"{name} {label} {shown} for {self.settings.model}"))
        logger.debug("effective settings: %s", json.dumps(self.settings.params, default=str))
