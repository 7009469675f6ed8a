from __future__ import annotations

import re

from aws_cdk import Tags
from constructs import Construct

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9-]")


class ApplicationEnvironment:
    """
    Names one deployment of one application, e.g. application "todo-app" in
    environment "staging". Every resource and parameter name derived from it
    starts with "<environment>-<application>".
    """

    def __init__(self, application_name: str, environment_name: str) -> None:
        self.application_name = application_name
        self.environment_name = environment_name

    def __str__(self) -> str:
        return _sanitize(f"{self.environment_name}-{self.application_name}")

    def prefix(self, name: str, character_limit: int | None = None) -> str:
        value = f"{self}-{name}"
        if character_limit is not None and len(value) > character_limit:
            return value[len(value) - character_limit:]
        return value

    def tag(self, construct: Construct) -> None:
        Tags.of(construct).add("environment", self.environment_name)
        Tags.of(construct).add("application", self.application_name)


def _sanitize(value: str) -> str:
    return _UNSAFE_CHARS.sub("", value)
