"""Tests for argument, prompt and environment construction."""

import os
from dataclasses import replace

from cliagent.runners.args import (
    ImageFiles,
    SessionChoice,
    append_image_paths_to_prompt,
    build_cli_args,
    build_env,
    choose_session,
    resolve_prompt_input,
    system_prompt_for,
)
from cliagent.runners.backends import CLAUDE_CLI, CODEX_CLI
from cliagent.runners.models import ImageAttachment

FRESH = SessionChoice(session_id=None, is_new=True, resume=False)


class TestChooseSession:
    """Test which native id is sent and whether the run resumes."""

    def test_always_mints_id_for_fresh_run(self) -> None:
        choice = choose_session(CLAUDE_CLI, None)

        assert choice.is_new is True
        assert choice.resume is False
        assert choice.session_id and len(choice.session_id) == 36

    def test_always_reuses_existing_and_resumes(self) -> None:
        assert choose_session(CLAUDE_CLI, "s-1") == SessionChoice("s-1", is_new=False, resume=True)

    def test_existing_mode(self) -> None:
        assert choose_session(CODEX_CLI, None) == SessionChoice(None, is_new=True, resume=False)
        assert choose_session(CODEX_CLI, "t-1") == SessionChoice("t-1", is_new=False, resume=True)

    def test_none_mode_never_sends(self) -> None:
        descriptor = replace(CLAUDE_CLI, session_mode="none")
        assert choose_session(descriptor, "s-1") == SessionChoice(None, is_new=False, resume=False)

    def test_no_resume_without_resume_args(self) -> None:
        descriptor = replace(CODEX_CLI, resume_args=())
        assert choose_session(descriptor, "t-1").resume is False


class TestSystemPrompt:
    def test_when_first(self) -> None:
        descriptor = replace(CLAUDE_CLI, system_prompt_when="first")
        assert system_prompt_for(descriptor, "Be brief.", is_new=True) == "Be brief."
        assert system_prompt_for(descriptor, "Be brief.", is_new=False) is None

    def test_when_never_or_missing_arg(self) -> None:
        assert system_prompt_for(replace(CLAUDE_CLI, system_prompt_when="never"), "x", is_new=True) is None
        assert system_prompt_for(CODEX_CLI, "x", is_new=True) is None

    def test_blank_prompt(self) -> None:
        assert system_prompt_for(CLAUDE_CLI, "   ", is_new=True) is None


class TestPromptInput:
    def test_arg_by_default(self) -> None:
        assert resolve_prompt_input(CLAUDE_CLI, "hi").arg == "hi"

    def test_stdin_mode(self) -> None:
        prompt_input = resolve_prompt_input(replace(CLAUDE_CLI, input="stdin"), "hi")
        assert prompt_input.arg is None
        assert prompt_input.stdin == "hi"

    def test_length_threshold(self) -> None:
        descriptor = replace(CLAUDE_CLI, max_prompt_arg_chars=5)
        assert resolve_prompt_input(descriptor, "12345").arg == "12345"
        assert resolve_prompt_input(descriptor, "123456").stdin == "123456"


class TestBuildCliArgs:
    """Test argv assembly."""

    def test_fresh_claude_run(self) -> None:
        args = build_cli_args(
            CLAUDE_CLI,
            model="opus",
            session=SessionChoice("s-1", is_new=True, resume=False),
            system_prompt="Be brief.",
            prompt_arg="hello",
        )

        assert args == [
            *CLAUDE_CLI.args,
            "--model", "opus",
            "--append-system-prompt", "Be brief.",
            "--session-id", "s-1",
            "hello",
        ]

    def test_resume_skips_session_and_system_prompt(self) -> None:
        args = build_cli_args(
            CLAUDE_CLI,
            model="default",
            session=SessionChoice("s-1", is_new=False, resume=True),
            system_prompt="Be brief.",
            prompt_arg="hello",
        )

        assert args == [*CLAUDE_CLI.args, "--resume", "s-1", "hello"]

    def test_codex_resume_positional_id(self) -> None:
        args = build_cli_args(CODEX_CLI, model=None, session=SessionChoice("t-9", False, True), prompt_arg="go")

        assert args[:3] == ["exec", "resume", "t-9"]
        assert args[-1] == "go"

    def test_session_args_template(self) -> None:
        descriptor = replace(CLAUDE_CLI, session_args=("--conversation={sessionId}",))

        args = build_cli_args(descriptor, model=None, session=SessionChoice("s-2", True, False))

        assert args[-1] == "--conversation=s-2"
        assert "--session-id" not in args

    def test_images_repeat_and_list(self) -> None:
        session = FRESH
        repeat = build_cli_args(CODEX_CLI, model=None, session=session, image_paths=["/a.png", "/b.png"])
        listed = build_cli_args(
            replace(CODEX_CLI, image_mode="list"), model=None, session=session, image_paths=["/a.png", "/b.png"]
        )

        assert repeat[-4:] == ["--image", "/a.png", "--image", "/b.png"]
        assert listed[-2:] == ["--image", "/a.png,/b.png"]


class TestEnvAndImages:
    def test_build_env(self) -> None:
        descriptor = replace(CLAUDE_CLI, env={"EXTRA": "1"})
        env = build_env(descriptor, {"PATH": "/bin", "ANTHROPIC_API_KEY": "secret", "EXTRA": "0"})

        assert env == {"PATH": "/bin", "EXTRA": "1"}

    def test_append_image_paths(self) -> None:
        assert append_image_paths_to_prompt("Look ", ["/tmp/a.png"]) == "Look\n\n/tmp/a.png"
        assert append_image_paths_to_prompt("", ["/tmp/a.png"]) == "/tmp/a.png"
        assert append_image_paths_to_prompt("Look", []) == "Look"

    def test_image_files_cleanup(self) -> None:
        images = [ImageAttachment(data=b"raw", mime_type="image/jpeg"), ImageAttachment(data="cmF3")]

        with ImageFiles(images) as files:
            paths = list(files.paths)
            assert len(paths) == 2
            with open(paths[1], "rb") as f:
                assert f.read() == b"raw"

        assert not any(os.path.exists(p) for p in paths)
        assert not os.path.exists(os.path.dirname(paths[0]))

    def test_no_images_no_tempdir(self) -> None:
        with ImageFiles([]) as files:
            assert files.paths == []
