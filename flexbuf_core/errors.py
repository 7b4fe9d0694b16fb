class Error(Exception): pass

class BuilderState(Error):
    """The builder was misused: unclosed scope, mismatched marker, write after finish."""

class MalformedBuffer(Error): pass
class OutOfBounds(MalformedBuffer): pass
class DepthExceeded(Error): pass
class Utf8Error(Error): pass

class KeyNotFound(Error, KeyError):
    """A map lookup missed. Expected outcome, not a sign of corruption."""
