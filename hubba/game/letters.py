"""
Letter Progression

The S.K.A.T.E. word and the helpers that grow a player's letters.
"""

SKATE = "SKATE"


def get_next_letter(letters: str) -> str:
    """
    Return the letter a player earns on their next miss.

    Args:
        letters: Letters the player already holds (a prefix of SKATE)

    Returns:
        str: The next letter, or "" once the word is complete
    """
    if len(letters) >= len(SKATE):
        return ""
    return SKATE[len(letters)]


def is_eliminated(letters: str) -> bool:
    """A player is out once their letters spell the whole word."""
    return letters == SKATE
