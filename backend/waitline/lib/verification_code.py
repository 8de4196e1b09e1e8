"""
Verification code generation for called customers.

Codes are short enough to read aloud at the host stand and drawn from an
alphabet without the look-alike glyphs I, O, 0 and 1.
"""
import secrets
from typing import Callable, Collection, Optional

from waitline.lib.logging import get_logger
from waitline.models.errors import CodeGenerationExhausted


logger = get_logger(__name__)


CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 4
DEFAULT_MAX_ATTEMPTS = 50


def normalize_code(code: str) -> str:
    """Canonical form used for comparisons (codes are case-insensitive)."""
    return code.strip().upper()


def is_valid_code(code: str) -> bool:
    """Check length and alphabet of a candidate code."""
    normalized = normalize_code(code)
    return len(normalized) == CODE_LENGTH and all(ch in CODE_ALPHABET for ch in normalized)


class VerificationCodeGenerator:
    """
    Collision-checked code generator.
    
    Args:
        max_attempts: Draws before giving up with CodeGenerationExhausted
        choice: Callable picking one symbol from the alphabet; tests inject a
            deterministic sequence here
    """
    
    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        choice: Optional[Callable[[str], str]] = None,
    ):
        self.max_attempts = max_attempts
        self._choice = choice or secrets.choice
    
    def draw(self) -> str:
        """Draw one code without any uniqueness check."""
        return "".join(self._choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
    
    def generate(self, taken: Collection[str] = ()) -> str:
        """
        Draw codes until one is not in ``taken``.
        
        Args:
            taken: Codes already issued today in the same queue
            
        Returns:
            A fresh 4-character code
            
        Raises:
            CodeGenerationExhausted: If every attempt collided
        """
        taken_normalized = {normalize_code(code) for code in taken}
        
        for attempt in range(1, self.max_attempts + 1):
            code = self.draw()
            if code not in taken_normalized:
                if attempt > 1:
                    logger.info(f"Verification code resolved after {attempt} draws")
                return code
        
        logger.error(
            f"Verification code generation exhausted after {self.max_attempts} attempts",
            extra={"extra_fields": {"taken_count": len(taken_normalized)}},
        )
        raise CodeGenerationExhausted(self.max_attempts)
