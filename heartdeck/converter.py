from typing import Dict, List

from heartdeck.domain.deck_rules import cycle_distribution
from heartdeck.models.dc_models import (
    CardModel,
    PlayRecord,
    SessionSnapshot,
)
from heartdeck.models.schema_models import CardGameSessionSchema, CardSchema


class DataConverter:
    """This class is used to convert data between different formats."""

    def convert_card_to_cardmodel(self, card: CardSchema | None) -> CardModel | None:
        if card is None:
            return None
        return CardModel(
            card_id=card.card_id,
            category=card.category,
            prompt=card.prompt,
            difficulty_level=card.difficulty_level,
        )

    def convert_session_to_snapshot(
        self,
        game_session: CardGameSessionSchema,
        current_card: CardSchema | None,
        response_counts: Dict[str, int],
        history: List[PlayRecord],
        cards_remaining: int,
    ) -> SessionSnapshot:
        """Convert the stored session to the SessionSnapshot sent to clients

        Args:
            game_session (CardGameSessionSchema): The stored game session
            current_card (CardSchema | None): The card on the table, if any
            response_counts (Dict[str, int]): Responses per participant id
            history (List[PlayRecord]): Resolved play history, oldest first
            cards_remaining (int): Undealt deck entries

        Returns:
            SessionSnapshot: The session state as a type for transmission to the client
        """
        participant_a = str(game_session.participant_a_id)
        participant_b = str(game_session.participant_b_id)
        return SessionSnapshot(
            session_id=game_session.session_id,
            participant_a_id=game_session.participant_a_id,
            participant_b_id=game_session.participant_b_id,
            current_turn=game_session.current_turn,
            status=game_session.status,
            phase=game_session.phase,
            draw_mode=game_session.draw_mode,
            current_card=self.convert_card_to_cardmodel(current_card),
            current_card_revealed=game_session.current_card_revealed,
            total_cards_played=game_session.total_cards_played,
            played_cards=game_session.played_cards,
            skipped_cards=game_session.skipped_cards,
            favorite_cards=game_session.favorite_cards,
            deck_size=game_session.deck_size,
            cards_remaining=cards_remaining,
            skips_remaining={
                participant_a: game_session.participant_a_skips_remaining,
                participant_b: game_session.participant_b_skips_remaining,
            },
            failed_tasks={
                participant_a: game_session.participant_a_failed_tasks,
                participant_b: game_session.participant_b_failed_tasks,
            },
            response_counts=response_counts,
            cycle_distribution=cycle_distribution(history),
            winner_id=game_session.winner_id,
            win_reason=game_session.win_reason,
            version=game_session.version,
        )
