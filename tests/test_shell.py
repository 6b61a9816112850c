import json

import pytest

from nvchat.client import ChatClient, ChatSession
from nvchat.shell import Shell, render_chunk
from nvchat.stream import REASONING_BEGIN, REASONING_END, REASONING_START, REASONING_STOP, Chunk

from conftest import FakePoster, FakeResponse, sse_lines

EOF = object()


def feeder(*lines):
    """input() replacement; EOF entries and the end of the list raise EOFError"""
    remaining = list(lines)

    def fake_input(prompt=""):
        if not remaining:
            raise EOFError
        line = remaining.pop(0)
        if line is EOF:
            raise EOFError
        return line

    return fake_input


@pytest.fixture
def make_shell(monkeypatch, conversation, settings):
    def factory(*lines, responses=()):
        client = ChatClient.from_settings("nvapi-test", settings)
        poster = FakePoster(*responses)
        monkeypatch.setattr(client.http_session, "post", poster)
        session = ChatSession(client, conversation, settings)
        shell = Shell(session, input_func=feeder(*lines))
        shell.poster = poster
        return shell

    return factory


def test_render_chunk_markers():
    assert render_chunk(Chunk(REASONING_START, REASONING_BEGIN)) == f"\n{REASONING_BEGIN}\n"
    assert render_chunk(Chunk(REASONING_STOP, REASONING_END)) == f"\n{REASONING_END}\n\n"


def test_eof_on_first_line_exits(make_shell, capsys):
    shell = make_shell()
    assert shell.run() == 0
    err = capsys.readouterr().err
    assert "AI models generate responses" in err
    assert "model=openai/gpt-oss-120b" in err


def test_multiline_message_is_one_turn(make_shell, conversation, capsys):
    shell = make_shell("first line", "second line", EOF, "/exit",
                       responses=[FakeResponse(lines=sse_lines({"content": "Got it."}))])
    assert shell.run() == 0

    assert conversation.messages() == [
        {"role": "user", "content": "first line\nsecond line"},
        {"role": "assistant", "content": "Got it."},
    ]
    assert "Got it." in capsys.readouterr().out


def test_reasoning_is_shown_with_markers(make_shell, capsys):
    response = FakeResponse(lines=sse_lines({"reasoning_content": "pondering"}, {"content": "42"}))
    shell = make_shell("question", EOF, "/quit", responses=[response])
    shell.run()
    out = capsys.readouterr().out
    assert f"\n{REASONING_BEGIN}\npondering\n{REASONING_END}\n\n42" in out


def test_unknown_slash_line_is_sent_as_message(make_shell, conversation):
    shell = make_shell("/etc/hosts looks odd", EOF, "/exit",
                       responses=[FakeResponse(lines=sse_lines({"content": "ok"}))])
    shell.run()
    assert conversation.messages()[0]["content"] == "/etc/hosts looks odd"


def test_parameter_commands(make_shell, settings, capsys):
    shell = make_shell("/temperature 0.3", "/temperature 9", "/stream false", "/exit")
    shell.run()
    captured = capsys.readouterr()
    assert settings.params["temperature"] == 0.3
    assert settings.stream is False
    assert "temperature set to 0.3 for openai/gpt-oss-120b" in captured.out
    assert "out of range" in captured.err


def test_parameter_unset_and_show(make_shell, settings, capsys):
    shell = make_shell("/max_tokens 100", "/max_tokens unset", "/max_tokens", "/exit")
    shell.run()
    out = capsys.readouterr().out
    assert settings.params["max_tokens"] == 4096
    assert "max_tokens reverted to 4096" in out
    assert "max_tokens = 4096" in out


def test_parameter_of_other_model_is_rejected(make_shell, capsys):
    shell = make_shell("/thinking_budget 512", "/exit")
    shell.run()
    assert "unknown parameter: thinking_budget" in capsys.readouterr().err


def test_model_switch(make_shell, settings, capsys):
    shell = make_shell("/model deepseek-ai/deepseek-v3.1", "/model acme/new-model", "/exit")
    shell.run()
    out = capsys.readouterr().out
    assert settings.model == "acme/new-model"
    assert "Unknown model 'acme/new-model'" in out


def test_randomodel_picks_another_model(make_shell, settings):
    shell = make_shell("/randomodel", "/exit")
    shell.run()
    assert settings.model != "openai/gpt-oss-120b"


def test_persist_settings_and_history(make_shell, conversation, capsys):
    shell = make_shell("/temperature 0.2", "/persist-settings", "/history", "/exit")
    shell.run()
    assert conversation.file_settings()["models"]["openai/gpt-oss-120b"]["temperature"] == 0.2
    assert '"temperature": 0.2' in capsys.readouterr().out


def test_persist_system_and_clear(make_shell, conversation, tmp_path):
    prompt = tmp_path / "sys.txt"
    prompt.write_text("Answer in French.")
    conversation.append_message("user", "old")
    shell = make_shell(f"/persist-system {prompt}", "/clear", "/exit")
    shell.run()
    assert conversation.system() == "Answer in French."
    assert conversation.messages() == []


def test_save_and_export(make_shell, conversation, tmp_path):
    conversation.append_message("user", "q")
    conversation.append_message("assistant", f"{REASONING_BEGIN}\nx\n{REASONING_END}\n\nanswer")
    saved, exported = tmp_path / "saved.json", tmp_path / "last.md"
    shell = make_shell(f"/save {saved}", f"/exportlast -t {exported}", "/exit")
    shell.run()
    assert json.loads(saved.read_text())["messages"][0]["content"] == "q"
    assert exported.read_text() == "answer"


def test_export_errors_keep_the_loop_running(make_shell, tmp_path, capsys):
    shell = make_shell(f"/exportn 2 {tmp_path / 'x.md'}", "/exportlastn zero x.md", "/help", "/exit")
    assert shell.run() == 0
    captured = capsys.readouterr()
    assert "no assistant responses" in captured.err
    assert "invalid number" in captured.err
    assert "Interactive commands" in captured.out


def test_api_error_keeps_the_loop_running(make_shell, conversation, capsys):
    shell = make_shell("hi", EOF, "/exit", responses=[FakeResponse(503, body="busy", reason="Unavailable")])
    assert shell.run() == 0
    assert "API error: 503 Unavailable" in capsys.readouterr().err
    assert conversation.message_count() == 1


def test_unparsable_response_shows_raw_body(make_shell, conversation, capsys):
    shell = make_shell("/stream false", "hi", EOF, "/exit",
                       responses=[FakeResponse(body="<html>gateway hiccup</html>")])
    assert shell.run() == 0
    err = capsys.readouterr().err
    assert "no assistant content parsed" in err
    assert "<html>gateway hiccup</html>" in err
    assert [m["role"] for m in conversation.messages()] == ["user"]


def test_history_limit_ends_session(make_shell, conversation, settings, capsys):
    settings.set("history_limit", "1")
    conversation.append_message("user", "already here")
    shell = make_shell("one more", EOF, "/exit")
    assert shell.run() == 1
    assert "message limit reached" in capsys.readouterr().err
    assert shell.poster.calls == []
