"""Error taxonomy for the card game engine.

Turn guards raise these; the service layer converts them into a
TurnResult at its public boundary.
"""

from heartdeck.models.dc_models import TurnErrorModel


class TurnError(Exception):
    code: TurnErrorModel = TurnErrorModel.invalid_state

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code.value)
        self.message = message or self.code.value


class NotYourTurn(TurnError):
    code = TurnErrorModel.not_your_turn


class InvalidStateTransition(TurnError):
    code = TurnErrorModel.invalid_state


class SkipLimitExceeded(TurnError):
    code = TurnErrorModel.skip_limit_exceeded


class SessionNotFound(TurnError):
    code = TurnErrorModel.session_not_found


class StaleWrite(TurnError):
    """The conditional write matched no row; the caller must re-fetch."""

    code = TurnErrorModel.stale_write


class CatalogInsufficient(Exception):
    code = TurnErrorModel.catalog_insufficient


class ChannelError(Exception):
    """Push channel failure. Recovered by the polling fallback."""

    code = TurnErrorModel.channel_error
