class SongwriterError(Exception):
    """Base error. `message` is safe to show to the user."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigError(SongwriterError):
    pass


class DeviceUnavailable(SongwriterError):
    pass


class InvalidStateTransition(SongwriterError):
    def __init__(self, action: str, state: str):
        super().__init__(f"Cannot {action} while {state}")
        self.action = action
        self.state = state


class GenerationFailed(SongwriterError):
    def __init__(self, reason: str):
        super().__init__(f"Failed to generate song: {reason}")
        self.reason = reason


class RenderFailed(SongwriterError):
    pass


class RenderTimedOut(SongwriterError):
    pass


class RenderCanceled(SongwriterError):
    pass


class PersistenceFailed(SongwriterError):
    pass


class NotFound(SongwriterError):
    pass
