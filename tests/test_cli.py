import io
import json

import pytest
import requests

from nvchat import cli
from nvchat.cli import build_parser, collect_overrides, main

from conftest import FakePoster, FakeResponse, completion_body, sse_lines


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("NVIDIA_API_KEY", "nvapi-env")


@pytest.fixture
def poster(monkeypatch):
    fake = FakePoster()
    monkeypatch.setattr(requests.Session, "post", fake)
    return fake


@pytest.fixture(autouse=True)
def _keep_sigint(monkeypatch):
    monkeypatch.setattr(cli, "install_signal_handler", lambda: None)


def test_list_needs_no_api_key(capsys):
    assert main(["--list"]) == 0
    out = capsys.readouterr().out
    assert "openai/gpt-oss-120b" in out
    assert "build.nvidia.com" in out


def test_modelinfo(capsys):
    assert main(["--modelinfo", "bytedance/seed-oss-36b-instruct"]) == 0
    assert "thinking_budget" in capsys.readouterr().out


def test_modelinfo_unknown(capsys):
    assert main(["--modelinfo", "acme/x"]) == 1
    assert "not found" in capsys.readouterr().err


def test_missing_api_key(capsys):
    assert main(["--prompt", "hi"]) == 1
    assert "No API key provided" in capsys.readouterr().err


def test_flag_aliases():
    args = build_parser().parse_args(
        ["-T", "0.1", "-P", "0.5", "-M", "64", "--reasoning", "high", "-L", "5", "--no-stream", "--seed", "7"]
    )
    assert collect_overrides(args) == {
        "temperature": "0.1",
        "top_p": "0.5",
        "max_tokens": "64",
        "reasoning_effort": "high",
        "seed": "7",
        "history_limit": "5",
        "stream": "false",
    }


def test_one_shot_prints_content_only(api_key, poster, capsys):
    poster.responses.append(FakeResponse(lines=sse_lines({"reasoning_content": "hm"}, {"content": "4"})))
    assert main(["--prompt", "2+2?", "-T", "0.2"]) == 0
    assert capsys.readouterr().out == "4\n"
    assert poster.payload["temperature"] == 0.2
    assert poster.payload["messages"] == [{"role": "user", "content": "2+2?"}]


def test_access_token_flag_wins(api_key, poster, monkeypatch):
    seen = {}

    def fake_post(session, url, **kwargs):
        seen["auth"] = session.headers["Authorization"]
        return FakeResponse(body=completion_body("ok"))

    monkeypatch.setattr(requests.Session, "post", fake_post)
    assert main(["-k", "nvapi-flag", "--no-stream", "--prompt", "hi"]) == 0
    assert seen["auth"] == "Bearer nvapi-flag"


def test_prompt_from_stdin(api_key, poster, monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("from stdin\n"))
    poster.responses.append(FakeResponse(body=completion_body("ok")))
    assert main(["--no-stream", "--prompt", "-"]) == 0
    assert poster.payload["messages"][-1]["content"] == "from stdin\n"
    assert poster.payload["stream"] is False


def test_prompt_with_conversation_file(api_key, poster, tmp_path, capsys):
    prompt = tmp_path / "prompt.txt"
    prompt.write_text("Explain SSE")
    system = tmp_path / "sys.txt"
    system.write_text("Be brief.")
    conv = tmp_path / "conv.json"
    poster.responses.append(FakeResponse(lines=sse_lines({"content": "Server-sent events."})))

    code = main(["--prompt", str(prompt), "-s", str(system), "-S", "--save-settings",
                 "-T", "0.4", str(conv)])

    assert code == 0
    data = json.loads(conv.read_text())
    assert data["system"] == "Be brief."
    assert data["settings"]["models"]["openai/gpt-oss-120b"]["temperature"] == 0.4
    assert [m["role"] for m in data["messages"]] == ["user", "assistant"]
    assert data["messages"][0]["content"] == "Explain SSE"
    assert poster.payload["messages"][0] == {"role": "system", "content": "Be brief."}
    assert "Server-sent events." in capsys.readouterr().out


def test_invalid_override_exits(api_key, poster, capsys):
    assert main(["--prompt", "hi", "-T", "5"]) == 1
    assert "Invalid temperature" in capsys.readouterr().err
    assert poster.calls == []


def test_invalid_timeout_exits(api_key, poster, monkeypatch, capsys):
    assert main(["--timeout", "-1", "--prompt", "hi"]) == 1
    assert "invalid timeout" in capsys.readouterr().err

    monkeypatch.setenv("NVIDIA_CHAT_TIMEOUT", "0")
    assert main(["--prompt", "hi"]) == 1
    assert "invalid timeout" in capsys.readouterr().err
    assert poster.calls == []


def test_one_shot_rejects_persist_flags(api_key, poster, tmp_path, capsys):
    system = tmp_path / "sys.txt"
    system.write_text("Be brief.")
    assert main(["--save-settings", "--prompt", "hi"]) == 1
    assert "need a CONVERSATION_FILE" in capsys.readouterr().err
    assert main(["-s", str(system), "-S", "--prompt", "hi"]) == 1
    assert "need a CONVERSATION_FILE" in capsys.readouterr().err
    assert poster.calls == []


def test_prompt_with_file_shows_unparsable_body(api_key, poster, tmp_path, capsys):
    poster.responses.append(FakeResponse(body="upstream said no"))
    assert main(["--no-stream", "--prompt", "hi", str(tmp_path / "conv.json")]) == 1
    err = capsys.readouterr().err
    assert "no assistant content parsed" in err
    assert "upstream said no" in err


def test_persist_system_requires_file(api_key, capsys):
    assert main(["-S", "--prompt", "hi"]) == 1
    assert "-S" in capsys.readouterr().err


def test_missing_system_prompt_file(api_key, tmp_path, capsys):
    assert main(["-s", str(tmp_path / "nope.txt"), "--prompt", "hi"]) == 1
    assert "System prompt file not found" in capsys.readouterr().err


def test_interactive_creates_default_file(api_key, poster, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("NVIDIA_CHAT_HISTORY_DIR", str(tmp_path / "chats"))

    def eof(prompt=""):
        raise EOFError

    monkeypatch.setattr("builtins.input", eof)
    assert main([]) == 0
    files = list((tmp_path / "chats").glob("conversation-*.json"))
    assert len(files) == 1
    assert "Creating conversation file" in capsys.readouterr().err


def test_interactive_refuses_full_conversation(api_key, tmp_path, capsys):
    conv = tmp_path / "conv.json"
    conv.write_text(json.dumps({
        "system": "",
        "settings": {"default": {}, "models": {}},
        "messages": [{"role": "user", "content": "a"}, {"role": "assistant", "content": "b"}],
    }))
    assert main(["-L", "2", str(conv)]) == 1
    err = capsys.readouterr().err
    assert "Conversation message limit reached." in err
    assert "Configured limit: 2" in err


def test_history_limit_from_file(api_key, tmp_path, capsys):
    conv = tmp_path / "conv.json"
    conv.write_text(json.dumps({
        "system": "",
        "settings": {"history_limit": 1, "default": {}, "models": {}},
        "messages": [{"role": "user", "content": "a"}],
    }))
    assert main([str(conv)]) == 1
    assert "Configured limit: 1" in capsys.readouterr().err
