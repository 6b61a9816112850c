import itertools
import os
import sys
import signal
import threading


# ============================================================================
# COLOR SCHEME & UI CONSTANTS
# ============================================================================

class Colors:
    """ANSI color codes for terminal styling"""
    # Basic colors
    RED = '\033[31m'
    GREEN = '\033[32m'
    YELLOW = '\033[33m'
    BLUE = '\033[34m'
    CYAN = '\033[36m'

    # Bright colors
    BRIGHT_BLACK = '\033[90m'
    BRIGHT_RED = '\033[91m'
    BRIGHT_GREEN = '\033[92m'
    BRIGHT_YELLOW = '\033[93m'
    BRIGHT_BLUE = '\033[94m'
    BRIGHT_CYAN = '\033[96m'

    # Styles
    BOLD = '\033[1m'
    DIM = '\033[2m'

    # Reset
    RESET = '\033[0m'

    # Semantic colors
    SUCCESS = BRIGHT_GREEN
    ERROR = BRIGHT_RED
    WARNING = BRIGHT_YELLOW
    INFO = BRIGHT_CYAN
    REASONING = GREEN
    PROMPT = BLUE + BOLD
    HEADER = BOLD
    MUTED = BRIGHT_BLACK

    @classmethod
    def disable(cls):
        """Blank every escape code (pipes, NO_COLOR)"""
        for name in dir(cls):
            if name.isupper():
                setattr(cls, name, '')


def configure_colors(stream=None):
    """Turn colors off when the output is not a terminal or NO_COLOR is set"""
    stream = stream or sys.stdout
    if os.getenv("NO_COLOR") is not None or not stream.isatty():
        Colors.disable()


class UI:
    """UI elements and formatting"""

    SPINNER = ['⠋', '⠙', '⠹', '⠸', '⠼', '⠴', '⠦', '⠧', '⠇', '⠏']

    DISCLAIMER = """AI models generate responses and outputs based on complex algorithms and
machine learning techniques, and those responses or outputs may be
inaccurate, harmful, biased or indecent. By testing this model, you assume
the risk of any harm caused by any response or output of the model. Please
do not upload any confidential information or personal data unless
expressly permitted. Your use is logged for security purposes.
"""

    @staticmethod
    def bold(text: str) -> str:
        return f"{Colors.BOLD}{text}{Colors.RESET}"

    @staticmethod
    def header(text: str) -> str:
        """Section title used by help and model info"""
        return f"{Colors.HEADER}{text}{Colors.RESET}"

    @staticmethod
    def highlight(text: str) -> str:
        return f"{Colors.BLUE}{text}{Colors.RESET}"

    @staticmethod
    def success(text: str) -> str:
        """Format success message"""
        return f"{Colors.SUCCESS}{text}{Colors.RESET}"

    @staticmethod
    def error(text: str) -> str:
        """Format error message"""
        return f"{Colors.ERROR}{text}{Colors.RESET}"

    @staticmethod
    def warning(text: str) -> str:
        """Format warning message"""
        return f"{Colors.WARNING}{text}{Colors.RESET}"

    @staticmethod
    def reasoning_marker(text: str) -> str:
        return f"{Colors.REASONING}{text}{Colors.RESET}"

    @staticmethod
    def muted(text: str) -> str:
        return f"{Colors.MUTED}{text}{Colors.RESET}"

    @staticmethod
    def prompt() -> str:
        """Get styled prompt"""
        return f"\n{Colors.PROMPT}You{Colors.RESET}: "

    @staticmethod
    def assistant_label() -> str:
        return f"\n{Colors.PROMPT}Assistant:{Colors.RESET}"


def eprint(*args, **kwargs):
    """print() to stderr; status output never mixes with the reply on stdout"""
    kwargs.setdefault("file", sys.stderr)
    print(*args, **kwargs)


class Spinner:
    """Braille spinner on stderr while a request is pending; silent without a TTY"""

    def __init__(self, text: str = ""):
        self.text = text
        self._done = threading.Event()
        self._thread = None
        self._width = 0

    @property
    def spinning(self) -> bool:
        return self._thread is not None

    def _run(self):
        for frame in itertools.cycle(UI.SPINNER):
            line = f"{frame} {self.text}..."
            self._width = len(line)
            sys.stderr.write(f"\r{Colors.CYAN}{frame}{Colors.RESET} {self.text}...")
            sys.stderr.flush()
            if self._done.wait(0.1):
                break

    def start(self):
        if self._thread is not None or not sys.stderr.isatty():
            return
        self._done.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self):
        if self._thread is None:
            return
        self._done.set()
        self._thread.join(timeout=0.5)
        self._thread = None
        sys.stderr.write("\r" + " " * self._width + "\r")
        sys.stderr.flush()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False


# set by the first Ctrl+C
_interrupted = threading.Event()


def signal_handler(sig, frame):
    """First Ctrl+C leaves through sys.exit; a second one kills the process"""
    if _interrupted.is_set():
        eprint(f"\n{UI.warning('Forced exit')}")
        os._exit(130)
    _interrupted.set()
    eprint(f"\n{UI.muted('Interrupted, exiting. Ctrl+C again to force.')}")
    sys.exit(0)


def install_signal_handler():
    signal.signal(signal.SIGINT, signal_handler)
