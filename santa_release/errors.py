"""Exceptions raised by the release pipeline stages."""

from __future__ import annotations


class ReleaseError(RuntimeError):
    """Base class for failures that abort a release build."""


class ConfigurationError(ReleaseError):
    """The build inputs cannot produce a trustworthy release."""


class ResolutionError(ReleaseError):
    """An import resolves to neither a compilable source nor a module file."""


class ModuleSyntaxError(ReleaseError):
    """A module uses import or export syntax the bundler cannot link."""


class TransformError(ReleaseError):
    """A code transform engine rejected its input."""
