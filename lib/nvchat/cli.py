import argparse
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from . import __version__
from .client import ChatClient, ChatSession
from .config import Settings, default_conversation_path, get_api_key_from_env
from .conversation import Conversation, read_system_prompt
from .errors import ChatError, ConfigError, HistoryLimitError
from .models import BOOL, FLOAT, INT, MODELS_LIST, all_parameters, format_model_info
from .shell import COMMANDS_HELP, Shell, describe_error, describe_limit, print_response
from .ui import UI, configure_colors, eprint, install_signal_handler

logger = logging.getLogger(__name__)

# historic short spellings of some setting flags
FLAG_ALIASES = {
    "temperature": ["-T"],
    "top_p": ["-P"],
    "frequency_penalty": ["-f"],
    "presence_penalty": ["-r"],
    "max_tokens": ["-M"],
    "reasoning_effort": ["--reasoning"],
}

METAVARS = {FLOAT: "FLOAT", INT: "INT", BOOL: "true|false"}

EPILOG = f"""
Examples:
  nvidia-chat                                   # New conversation in ~/.cache/nvidia-chat
  nvidia-chat notes.json                        # Continue (or start) notes.json
  nvidia-chat -m deepseek-ai/deepseek-v3.1 -T 0.3 notes.json
  nvidia-chat --prompt "Summarize RFC 9110"     # One-shot, prints the answer only
  cat question.txt | nvidia-chat --prompt - notes.json
  nvidia-chat --modelinfo qwen/qwen3-coder-480b-a35b-instruct

The API key is read from -k or from the first of NVIDIA_BUILD_AI_ACCESS_TOKEN,
NVIDIA_ACCESS_TOKEN, ACCESS_TOKEN, NVIDIA_API_KEY, API_KEY that is set.

{COMMANDS_HELP}
"""


def _param_flag(name: str) -> str:
    return "--" + name.replace("_", "-")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nvidia-chat",
        description="Chat with models on the NVIDIA build API from the terminal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG
    )
    parser.add_argument("conversation_file", nargs="?", metavar="CONVERSATION_FILE",
                        help="Conversation JSON file (created if missing)")

    general = parser.add_argument_group("General Options")
    general.add_argument("-m", "--model", help="Model id (default: openai/gpt-oss-120b)")
    general.add_argument("-s", "--sys-prompt-file", metavar="FILE",
                         help="Use the content of FILE as system prompt for this run")
    general.add_argument("-S", dest="persist_system", action="store_true",
                         help="Store the -s system prompt in the conversation file")
    general.add_argument("--save-settings", action="store_true",
                         help="Store the effective settings in the conversation file")
    general.add_argument("-k", "--access-token", metavar="TOKEN", help="API key")
    general.add_argument("--prompt", metavar="TEXT|FILE|-",
                         help="Send one message and exit. '-' reads it from stdin")
    general.add_argument("-l", "--list", action="store_true", help="List the built-in models")
    general.add_argument("--modelinfo", metavar="MODEL", help="Show the settings a model accepts")
    general.add_argument("--base-url", help="API base URL")
    general.add_argument("--timeout", type=int, metavar="SECONDS", help="Request timeout")
    general.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    general.add_argument("--version", action="version", version=f"nvidia-chat {__version__}")

    settings = parser.add_argument_group(
        "Model Setting Options",
        "Ranges and defaults depend on the model, see --modelinfo."
    )
    for name, param in all_parameters().items():
        flags = FLAG_ALIASES.get(name, []) + [_param_flag(name)]
        settings.add_argument(*flags, dest=f"param_{name}", metavar=METAVARS.get(param.type, "VALUE"),
                              help=f"Set {name}")
    settings.add_argument("-L", "--limit", "--history-limit", dest="history_limit", metavar="N",
                          help="Refuse to continue once the file holds N messages (default: 40)")
    settings.add_argument("--stream", choices=["true", "false"], help="Stream the response")
    settings.add_argument("--no-stream", dest="stream", action="store_const", const="false",
                          help="Same as --stream false")
    return parser


def collect_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Setting flags that were given, as the raw strings typed"""
    overrides = {}
    for name in all_parameters():
        value = getattr(args, f"param_{name}")
        if value is not None:
            overrides[name] = value
    if args.history_limit is not None:
        overrides["history_limit"] = args.history_limit
    if args.stream is not None:
        overrides["stream"] = args.stream
    return overrides


def read_prompt(value: str) -> str:
    """--prompt takes '-' for stdin, a file path, or the text itself"""
    if value == "-":
        text = sys.stdin.read()
    elif os.path.isfile(value):
        try:
            with open(value, encoding="utf-8") as f:
                text = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(f"Failed to read prompt file: {e}") from e
    else:
        text = value
    if not text.strip():
        raise ConfigError("Empty prompt")
    return text


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    # urllib3 is chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.INFO if verbose else logging.WARNING)


def list_models():
    print(UI.bold("Supported models (built-in subset):"))
    for name in MODELS_LIST:
        print(f"  {name}")
    print()
    print("View the full models list and details at: https://build.nvidia.com/")


def open_conversation(path, settings: Settings, overrides: Dict[str, Any], args: argparse.Namespace,
                      system_prompt: str) -> Conversation:
    conversation = Conversation(path)
    conversation.ensure(settings)
    settings.load_file_settings(conversation.file_settings())
    settings.add_overrides(overrides)
    logger.debug("effective settings: %s", settings.summary())

    if args.save_settings:
        conversation.persist_settings(settings)
        eprint(UI.success(f"Persisted current settings into {conversation.path}"))
    if args.persist_system:
        conversation.persist_system(system_prompt)
        eprint(UI.success(f"Persisted system prompt into {conversation.path}"))
    return conversation


def run(args: argparse.Namespace) -> int:
    if args.list:
        list_models()
        return 0
    if args.modelinfo:
        print(format_model_info(args.modelinfo), end="")
        return 0

    api_key = args.access_token or get_api_key_from_env()
    if not api_key:
        raise ConfigError("No API key provided. Set NVIDIA_BUILD_AI_ACCESS_TOKEN or pass -k ACCESS_TOKEN")

    system_prompt = read_system_prompt(args.sys_prompt_file)
    if args.persist_system and not system_prompt:
        raise ConfigError("Persist system requested (-S) but no -s SYS_PROMPT_FILE provided")

    settings = Settings.from_environment(model=args.model, base_url=args.base_url, timeout=args.timeout)
    overrides = collect_overrides(args)
    client = ChatClient.from_settings(api_key, settings)

    if args.prompt is not None:
        prompt = read_prompt(args.prompt)
        if not args.conversation_file:
            if args.persist_system or args.save_settings:
                raise ConfigError("-S and --save-settings need a CONVERSATION_FILE")
            settings.add_overrides(overrides)
            for text in client.one_shot(prompt, settings, system_prompt):
                sys.stdout.write(text)
                sys.stdout.flush()
            sys.stdout.write("\n")
            return 0
        conversation = open_conversation(args.conversation_file, settings, overrides, args, system_prompt)
        session = ChatSession(client, conversation, settings, system_prompt)
        print_response(session.turn(prompt), settings.stream)
        return 0

    path = args.conversation_file
    if not path:
        path = default_conversation_path()
        eprint(f"Creating conversation file: {path}")
    conversation = open_conversation(path, settings, overrides, args, system_prompt)
    conversation.check_limit(settings.history_limit)

    install_signal_handler()
    session = ChatSession(client, conversation, settings, system_prompt)
    return Shell(session).run()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    configure_colors()

    try:
        return run(args)
    except HistoryLimitError as e:
        eprint(describe_limit(e))
        return 1
    except ChatError as e:
        eprint(describe_error(e))
        return 1


if __name__ == '__main__':
    sys.exit(main())
