"""Argument and input construction for a CLI run."""

from __future__ import annotations

import base64
import mimetypes
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from cliagent.runners.backends.models import SESSION_ID_PLACEHOLDER, BackendDescriptor
from cliagent.runners.models import ImageAttachment


@dataclass(frozen=True)
class SessionChoice:
    session_id: str | None
    is_new: bool
    resume: bool


@dataclass(frozen=True)
class PromptInput:
    arg: str | None
    stdin: str | None


def choose_session(descriptor: BackendDescriptor, native_session_id: str | None) -> SessionChoice:
    """Decide which native id (if any) goes to the CLI and whether to resume.

    Resume happens iff a prior native id exists and the backend defines
    resume arguments.
    """
    existing = (native_session_id or "").strip() or None
    resume = bool(existing and descriptor.resume_args)

    if descriptor.session_mode == "none":
        return SessionChoice(session_id=None, is_new=existing is None, resume=False)
    if descriptor.session_mode == "existing":
        return SessionChoice(session_id=existing, is_new=existing is None, resume=resume)
    # "always": a fresh run gets a new id up front so it can be resumed later.
    if existing:
        return SessionChoice(session_id=existing, is_new=False, resume=resume)
    return SessionChoice(session_id=str(uuid.uuid4()), is_new=True, resume=False)


def system_prompt_for(descriptor: BackendDescriptor, prompt: str | None, *, is_new: bool) -> str | None:
    prompt = (prompt or "").strip()
    if not prompt or not descriptor.system_prompt_arg:
        return None
    if descriptor.system_prompt_when == "never":
        return None
    if descriptor.system_prompt_when == "first" and not is_new:
        return None
    return prompt


def resolve_prompt_input(descriptor: BackendDescriptor, prompt: str) -> PromptInput:
    if descriptor.input == "stdin":
        return PromptInput(arg=None, stdin=prompt)
    limit = descriptor.max_prompt_arg_chars
    if limit is not None and len(prompt) > limit:
        return PromptInput(arg=None, stdin=prompt)
    return PromptInput(arg=prompt, stdin=None)


def substitute_session_id(args: Sequence[str], session_id: str) -> list[str]:
    return [arg.replace(SESSION_ID_PLACEHOLDER, session_id) for arg in args]


def build_cli_args(
    descriptor: BackendDescriptor,
    *,
    model: str | None,
    session: SessionChoice,
    system_prompt: str | None = None,
    image_paths: Sequence[str] = (),
    prompt_arg: str | None = None,
) -> list[str]:
    """Full argv (without the command) for one run."""
    if session.resume and session.session_id:
        args = substitute_session_id(descriptor.resume_args, session.session_id)
    else:
        args = list(descriptor.args)

    if descriptor.model_arg and model and model != "default":
        args += [descriptor.model_arg, model]

    if not session.resume:
        if system_prompt and descriptor.system_prompt_arg:
            args += [descriptor.system_prompt_arg, system_prompt]
        if session.session_id:
            if descriptor.session_args:
                args += substitute_session_id(descriptor.session_args, session.session_id)
            elif descriptor.session_arg:
                args += [descriptor.session_arg, session.session_id]

    if image_paths and descriptor.image_arg:
        if descriptor.image_mode == "list":
            args += [descriptor.image_arg, ",".join(image_paths)]
        else:
            for path in image_paths:
                args += [descriptor.image_arg, path]

    if prompt_arg is not None:
        args.append(prompt_arg)
    return args


def build_env(descriptor: BackendDescriptor, base: Mapping[str, str] | None = None) -> dict[str, str]:
    """Inherited environment plus descriptor additions, minus cleared keys."""
    env = dict(os.environ if base is None else base)
    env.update(descriptor.env)
    for key in descriptor.clear_env:
        env.pop(key, None)
    return env


def append_image_paths_to_prompt(prompt: str, paths: Sequence[str]) -> str:
    if not paths:
        return prompt
    trimmed = prompt.rstrip()
    separator = "\n\n" if trimmed else ""
    return trimmed + separator + "\n".join(paths)


class ImageFiles:
    """Temporary files holding a run's image attachments; removed on exit."""

    def __init__(self, images: Sequence[ImageAttachment]):
        self.images = list(images)
        self.paths: list[str] = []
        self._dir: str | None = None

    def __enter__(self) -> "ImageFiles":
        if not self.images:
            return self
        self._dir = tempfile.mkdtemp(prefix="cliagent-images-")
        for index, image in enumerate(self.images, start=1):
            suffix = mimetypes.guess_extension(image.mime_type) or ".bin"
            path = Path(self._dir) / f"image-{index}{suffix}"
            data = image.data
            if isinstance(data, str):
                data = base64.b64decode(data)
            path.write_bytes(data)
            self.paths.append(str(path))
        return self

    def __exit__(self, *exc) -> None:
        if self._dir:
            shutil.rmtree(self._dir, ignore_errors=True)
            self._dir = None
