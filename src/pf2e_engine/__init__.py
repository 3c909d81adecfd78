"""
PF2e Sheet Engine - rules resolution and recalculation for Pathfinder 2e Remastered characters.
"""

from .models import *
from .content import ContentRepository, load_repository
from .recalculator import Recalculator, RecalculationResult, recalculate
from .character_builder import CharacterBuilder, CharacterBuilderError
from .character_io import CharacterImportError, decode_share_token, encode_share_token, export_json, import_json
from .level_up_engine import LevelUpEngine, LevelUpError, LevelUpResult
from .validators import CharacterValidator, ValidationReport

__version__ = "0.4.0"
__all__ = [
    "Character",
    "ContentRepository",
    "load_repository",
    "Recalculator",
    "RecalculationResult",
    "recalculate",
    "CharacterBuilder",
    "CharacterBuilderError",
    "CharacterImportError",
    "decode_share_token",
    "encode_share_token",
    "export_json",
    "import_json",
    "LevelUpEngine",
    "LevelUpError",
    "LevelUpResult",
    "CharacterValidator",
    "ValidationReport",
]
