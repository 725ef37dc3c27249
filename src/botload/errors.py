class BotloadError(Exception):
    pass


class ConfigurationError(BotloadError):
    """Invalid or missing run configuration. Raised before any traffic is sent."""


class InternalError(BotloadError):
    """Engine failure that must halt the run instead of under-reporting metrics."""


class UnknownMetricError(InternalError):
    def __init__(self, name: str) -> None:
        super().__init__(f"metric {name!r} was recorded before being declared")
        self.name = name


class TokenError(BotloadError):
    pass
