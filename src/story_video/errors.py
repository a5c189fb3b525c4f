"""Error taxonomy for the story video pipeline.

Every error here is fatal to the run that raised it and is never retried.
The orchestrator catches them at the top level and turns the message into
the single terminal failure event of the run.
"""


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    pass


class InputMissing(PipelineError):
    """A required asset directory or file is absent or empty."""

    pass


class ParseEmpty(PipelineError):
    """The subtitle file yielded zero usable segments."""

    pass


class AssetNotFound(PipelineError):
    """An image, clip or audio file referenced by the plan is not on disk."""

    pass


class EngineFailure(PipelineError):
    """The encoder process failed, exited non-zero or timed out."""

    pass


class ProbeFailure(PipelineError):
    """Probing a media file's duration failed."""

    pass


class InvalidScene(PipelineError):
    """A scene or clip list cannot be rendered (e.g. zero duration)."""

    pass


class InvalidSessionId(PipelineError):
    """A session id is not a safe single path component."""

    pass


class RunAlreadyActive(PipelineError):
    """The session already has a run in flight."""

    pass
