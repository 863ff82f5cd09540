"""Pluggy hook namespace and adapter hook specifications."""

from __future__ import annotations

from typing import Any

import pluggy

from botframe.schema import Activity

BOTFRAME_HOOK_NAMESPACE = "botframe"
hookspec = pluggy.HookspecMarker(BOTFRAME_HOOK_NAMESPACE)
hookimpl = pluggy.HookimplMarker(BOTFRAME_HOOK_NAMESPACE)


class BotFrameHookSpecs:
    """Hook contract for adapter extensions."""

    @hookspec
    def provide_middleware(self) -> Any:
        """Return one middleware or a list of middleware to append to the pipeline."""

    @hookspec
    def on_error(self, stage: str, error: Exception, activity: Activity | None) -> None:
        """Observe adapter errors from any stage."""
